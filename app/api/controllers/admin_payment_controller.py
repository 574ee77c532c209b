from collections import OrderedDict
from decimal import Decimal
from flask import request, jsonify, current_app
from app.extensions import db
from app.models.appointment_models import Appointment
from app.models.payment_models import TherapistPayment
from app.schemas import ListParams, RejectPayoutRequest
from app.api.controllers.admin_appointment_controller import payout_summary
from app.utils.decorators import current_user
from app.utils.email_util import send_payout_rejected_email
from app.utils.pagination_util import paginate_select
from app.utils.payout_util import summarize_therapist
from app.utils.status_util import LEGACY_STATUSES, reconcile, reconcile_payment

def _raw_statuses(*normalized):
    """Every stored status value, legacy included, that normalizes to one of ``normalized``."""
    values = set(normalized)
    values.update(raw for raw, current in LEGACY_STATUSES.items() if current in normalized)
    return sorted(values)

def _therapist_level(therapist):
    return therapist.therapist_profile.level if therapist and therapist.therapist_profile else None

def _group_by_therapist(appointments):
    """Per-therapist payout totals, recomputed from the given appointments."""
    config = current_app.config
    groups = OrderedDict()
    for appointment in appointments:
        groups.setdefault(appointment.therapist_id, []).append(appointment)

    results = []
    grand_total = Decimal('0.00')
    for therapist_id, therapist_appointments in groups.items():
        therapist = therapist_appointments[0].therapist
        level = _therapist_level(therapist)
        totals = summarize_therapist(
            therapist_appointments,
            level,
            percentages=config['PAYOUT_LEVEL_PERCENTAGES'],
            default=config['PAYOUT_DEFAULT_PERCENTAGE'],
        )
        grand_total += totals['total']
        results.append({
            'therapist_id': therapist_id,
            'therapist_name': therapist.full_name if therapist else None,
            'level': level,
            'session_count': totals['session_count'],
            'total': str(totals['total']),
            'appointments': [
                {**appt.to_dict(include_sessions=False), 'payout': payout_summary(appt)}
                for appt in therapist_appointments
            ],
        })
    return results, grand_total

def get_pending_payouts():
    """Completed, therapist-validated appointments whose payout has not been made."""
    appointments = db.session.scalars(
        db.select(Appointment)
        .where(Appointment.therapist_id.isnot(None))
        .where(Appointment.status.in_(_raw_statuses('completed')))
        .where(Appointment.therapist_validated.is_(True))
        .where(Appointment.therapist_paid.is_(False))
        .where(Appointment.is_payout_rejected.is_(False))
        .order_by(Appointment.therapist_id, Appointment.created_at)
    ).all()
    appointments = [appt for appt in appointments if reconcile(appt).payout_eligible]

    therapists, grand_total = _group_by_therapist(appointments)
    return jsonify({'therapists': therapists, 'total': str(grand_total)}), 200

def get_available_payouts():
    """Paid-for appointments still in progress, i.e. payouts that will come due."""
    appointments = db.session.scalars(
        db.select(Appointment)
        .where(Appointment.therapist_id.isnot(None))
        .where(Appointment.payment_status == 'completed')
        .where(Appointment.status.notin_(_raw_statuses('completed', 'cancelled')))
        .where(Appointment.therapist_paid.is_(False))
        .order_by(Appointment.therapist_id, Appointment.created_at)
    ).all()

    therapists, grand_total = _group_by_therapist(appointments)
    return jsonify({'therapists': therapists, 'total': str(grand_total)}), 200

def reject_payout(appointment_id):
    payload = RejectPayoutRequest.model_validate(request.get_json(silent=True) or {})
    appointment = db.get_or_404(Appointment, appointment_id)
    if not appointment.therapist_id:
        return jsonify({'error': 'Appointment has no therapist'}), 400
    if appointment.therapist_paid:
        return jsonify({'error': 'Payout has already been made'}), 400

    appointment.is_payout_rejected = True
    appointment.rejected_payout_note = payload.note
    db.session.commit()

    therapist = appointment.therapist
    send_payout_rejected_email(therapist.decrypted_email, therapist.full_name, appointment.id, payload.note)
    return jsonify({'message': 'Payout rejected', 'appointment': appointment.to_dict()}), 200

def mark_as_paid(appointment_id):
    """Records the therapist payout for an appointment."""
    appointment = db.get_or_404(Appointment, appointment_id)
    if not appointment.therapist_id:
        return jsonify({'error': 'Appointment has no therapist'}), 400
    if appointment.therapist_paid:
        return jsonify({'error': 'Payout has already been made'}), 400
    if appointment.is_payout_rejected:
        return jsonify({'error': 'Payout was rejected for this appointment'}), 400
    payment = reconcile_payment(appointment)
    if not payment.resolved:
        return jsonify({'error': f"Appointment payment is not resolved ({payment.label})"}), 400

    summary = payout_summary(appointment)
    admin = current_user()
    payout = TherapistPayment(
        therapist_id=appointment.therapist_id,
        amount=Decimal(summary['total']),
        payment_percentage=Decimal(summary['payment_percentage']),
        sessions=summary['sessions'],
        paid_by_id=admin.id,
    )
    payout.appointments.append(appointment)
    appointment.therapist_paid = True

    db.session.add(payout)
    db.session.commit()
    current_app.logger.info(
        f"Payout {payout.id} of {payout.amount} recorded for therapist {payout.therapist_id}"
    )
    return jsonify({
        'message': 'Payout recorded successfully',
        'payment': payout.to_dict(),
        'appointment': appointment.to_dict(),
    }), 200

def get_payout_history():
    params = ListParams.model_validate(request.args.to_dict())
    stmt = db.select(TherapistPayment)
    therapist_id = request.args.get('therapist', type=int)
    if therapist_id:
        stmt = stmt.where(TherapistPayment.therapist_id == therapist_id)
    stmt = stmt.order_by(TherapistPayment.paid_at.desc(), TherapistPayment.id.desc())

    payments, pagination = paginate_select(stmt, params.page, params.limit)
    return jsonify({
        'payments': [payment.to_dict() for payment in payments],
        'pagination': pagination,
        'request_token': params.request_token,
    }), 200
