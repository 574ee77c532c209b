from datetime import datetime, time
from flask import request, jsonify, current_app
from sqlalchemy import or_
from app.extensions import db
from app.models.user_models import User, TherapistProfile
from app.models.patient_profile_models import PatientProfile
from app.models.appointment_models import Appointment
from app.models.balance_models import Balance
from app.schemas import (
    AppointmentFilterParams, AssignTherapistRequest, PaymentStatusRequest, LinkPaymentRequest
)
from app.utils.decorators import current_user
from app.utils.email_util import send_assignment_email
from app.utils.pagination_util import paginate_select
from app.utils.payout_util import summarize_appointment
from app.utils.search_util import match_profile_user_ids
from app.utils.status_util import CLOSED_STATUS_VALUES, TERMINAL_STATUSES, reconcile_payment
from app.utils.stripe_util import stripe_client


def _json_body():
    return request.get_json(silent=True) or {}

def _money_summary(summary):
    """Decimal payout figures as strings for JSON."""
    return {
        'appointment_id': summary['appointment_id'],
        'payment_percentage': str(summary['payment_percentage']),
        'total': str(summary['total']),
        'sessions': [
            {**s, 'price': str(s['price']), 'payment_percentage': str(s['payment_percentage']),
             'adjusted_price': str(s['adjusted_price'])}
            for s in summary['sessions']
        ],
    }

def _therapist_level(appointment):
    if appointment.therapist and appointment.therapist.therapist_profile:
        return appointment.therapist.therapist_profile.level
    return None

def payout_summary(appointment):
    config = current_app.config
    return _money_summary(summarize_appointment(
        appointment,
        _therapist_level(appointment),
        percentages=config['PAYOUT_LEVEL_PERCENTAGES'],
        default=config['PAYOUT_DEFAULT_PERCENTAGE'],
    ))

def filter_appointments():
    """Paginated appointment list for the admin dashboard, newest first."""
    params = AppointmentFilterParams.model_validate(request.args.to_dict())
    stmt = db.select(Appointment)

    if params.search:
        conditions = [Appointment.plan.ilike(f"%{params.search}%")]
        patient_ids = match_profile_user_ids(PatientProfile, params.search)
        therapist_ids = match_profile_user_ids(TherapistProfile, params.search)
        if patient_ids:
            conditions.append(Appointment.patient_id.in_(patient_ids))
        if therapist_ids:
            conditions.append(Appointment.therapist_id.in_(therapist_ids))
        stmt = stmt.where(or_(*conditions))

    if params.therapist:
        stmt = stmt.where(Appointment.therapist_id == params.therapist)
    if params.plan:
        stmt = stmt.where(Appointment.plan == params.plan)
    if params.start_date:
        stmt = stmt.where(Appointment.date >= datetime.combine(params.start_date, time.min))
    if params.end_date:
        # Inclusive of the whole end day
        stmt = stmt.where(Appointment.date <= datetime.combine(params.end_date, time.max))

    stmt = stmt.order_by(Appointment.created_at.desc(), Appointment.id.desc())
    appointments, pagination = paginate_select(stmt, params.page, params.limit)

    return jsonify({
        'appointments': [appt.to_dict(include_sessions=False) for appt in appointments],
        'pagination': pagination,
        'request_token': params.request_token,
    }), 200

def get_appointment(appointment_id):
    appointment = db.get_or_404(Appointment, appointment_id)
    data = appointment.to_dict()
    data['status_history'] = [change.to_dict() for change in appointment.status_changes]
    return jsonify({'appointment': data}), 200

def get_appointment_sessions(appointment_id):
    appointment = db.get_or_404(Appointment, appointment_id)
    reconciliation = appointment.reconciliation()
    return jsonify({
        'appointment_id': appointment.id,
        'sessions': [session.to_dict() for session in appointment.sessions],
        'summary': reconciliation.sessions.model_dump(),
        'payout': payout_summary(appointment),
    }), 200

def delete_appointment(appointment_id):
    appointment = db.get_or_404(Appointment, appointment_id)
    db.session.delete(appointment)
    db.session.commit()
    current_app.logger.info(f"Appointment {appointment_id} deleted")
    return jsonify({'message': 'Appointment deleted successfully'}), 200

def assign_therapist(appointment_id):
    """Assigns a therapist to the appointment and to the patient's other open appointments."""
    payload = AssignTherapistRequest.model_validate(_json_body())
    appointment = db.get_or_404(Appointment, appointment_id)

    therapist = db.session.get(User, payload.therapist_id)
    if not therapist or therapist.role_name != 'therapist':
        return jsonify({'error': 'Therapist not found'}), 404
    if not therapist.is_active or therapist.is_banned:
        return jsonify({'error': 'Therapist account is not active'}), 400
    if appointment.normalized_status in ('completed', 'no-show'):
        return jsonify({'error': f"Cannot assign a therapist to a {appointment.status} appointment"}), 400

    admin = current_user()
    appointment.therapist_id = therapist.id
    appointment.is_accepted = False
    appointment.decline_comment = None
    appointment.set_status('matched_pending_therapist_acceptance', admin.id, 'Therapist assigned')

    others = db.session.scalars(
        db.select(Appointment)
        .where(Appointment.patient_id == appointment.patient_id)
        .where(Appointment.id != appointment.id)
        .where(Appointment.status.notin_(list(CLOSED_STATUS_VALUES)))
    ).all()
    for other in others:
        other.therapist_id = therapist.id

    profile = appointment.patient.patient_profile if appointment.patient else None
    if profile:
        profile.assigned_therapist_id = therapist.id

    db.session.commit()

    send_assignment_email(
        therapist.decrypted_email,
        therapist.full_name,
        appointment.patient.full_name if appointment.patient else 'a patient',
        appointment.date,
    )
    return jsonify({
        'message': 'Therapist assigned successfully',
        'appointment': appointment.to_dict(),
        'updated_appointments': len(others) + 1,
    }), 200

def revoke_therapist(appointment_id):
    appointment = db.get_or_404(Appointment, appointment_id)
    if not appointment.therapist_id:
        return jsonify({'error': 'No therapist is assigned to this appointment'}), 400
    if appointment.normalized_status in TERMINAL_STATUSES:
        return jsonify({'error': f"Cannot revoke the therapist of a {appointment.status} appointment"}), 400

    admin = current_user()
    previous_therapist_id = appointment.therapist_id
    appointment.therapist_id = None
    appointment.is_accepted = None
    appointment.set_status('pending_match', admin.id, 'Therapist revoked')

    profile = appointment.patient.patient_profile if appointment.patient else None
    if profile and profile.assigned_therapist_id == previous_therapist_id:
        profile.assigned_therapist_id = None

    db.session.commit()
    return jsonify({'message': 'Therapist revoked successfully', 'appointment': appointment.to_dict()}), 200

def update_payment_status(appointment_id):
    """Manual payment bookkeeping by an admin."""
    payload = PaymentStatusRequest.model_validate(_json_body())
    appointment = db.get_or_404(Appointment, appointment_id)
    admin = current_user()
    new_status = payload.payment_status

    appointment.payment_status = new_status
    if new_status in ('pending', 'failed'):
        appointment.set_status('unpaid', admin.id, f"Payment marked {new_status}")
    elif new_status == 'completed':
        appointment.stripe_verified = True
        if appointment.normalized_status in (None, 'unpaid', 'pending'):
            appointment.set_status('pending_match', admin.id, 'Payment marked completed')

    db.session.commit()
    return jsonify({'message': 'Payment status updated', 'appointment': appointment.to_dict()}), 200

def link_payment(appointment_id):
    """Links a historical processor payment to an appointment after verifying it."""
    payload = LinkPaymentRequest.model_validate(_json_body())
    appointment = db.get_or_404(Appointment, appointment_id)

    result = stripe_client.verify_payment_id(payload.payment_id)
    if result['status'] != 'valid':
        return jsonify({'error': 'Payment could not be verified', 'reason': result['reason']}), 400

    admin = current_user()
    appointment.checkout_session_id = payload.payment_id
    if payload.payment_id.startswith('pi_'):
        appointment.stripe_payment_intent_id = payload.payment_id
    appointment.payment_status = 'completed'
    appointment.stripe_payment_status = 'paid'
    appointment.stripe_verified = True
    appointment.stripe_checked_at = datetime.utcnow()
    if appointment.normalized_status in (None, 'unpaid', 'pending'):
        appointment.set_status('pending_match', admin.id, f"Linked payment {payload.payment_id}")

    db.session.commit()
    return jsonify({
        'message': 'Payment linked successfully',
        'payment': {**result, 'amount': str(result['amount']) if result['amount'] is not None else None},
        'appointment': appointment.to_dict(),
    }), 200

def use_balance(appointment_id):
    """Settles an appointment from the patient's balance."""
    appointment = db.get_or_404(Appointment, appointment_id)
    if appointment.is_balance:
        return jsonify({'error': 'Appointment is already settled from balance'}), 400
    if reconcile_payment(appointment).resolved:
        return jsonify({'error': 'Appointment is already paid'}), 400

    admin = current_user()
    balance = Balance.for_patient(appointment.patient_id, current_app.config['BALANCE_CURRENCY'])
    try:
        balance.use(appointment.price, appointment.id, admin.id)
    except ValueError as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 400

    appointment.is_balance = True
    appointment.payment_status = 'completed'
    if appointment.normalized_status in (None, 'unpaid', 'pending'):
        appointment.set_status('pending_match', admin.id, 'Settled from balance')

    db.session.commit()
    return jsonify({
        'message': 'Balance applied successfully',
        'appointment': appointment.to_dict(),
        'balance': balance.to_dict(include_history=False),
    }), 200

def refresh_payment(appointment_id):
    """Re-verifies the appointment's payment with the processor."""
    appointment = db.get_or_404(Appointment, appointment_id)
    if appointment.is_balance:
        return jsonify({'error': 'Balance-settled appointments are not verified with the processor'}), 400
    if not appointment.checkout_session_id and not appointment.stripe_payment_intent_id:
        return jsonify({'error': 'No payment to verify'}), 400

    result = stripe_client.refresh_appointment_payment(appointment)
    db.session.commit()

    return jsonify({
        'message': 'Payment verified' if result is not None else 'Payment verification failed',
        'verification': result,
        'appointment': appointment.to_dict(),
    }), 200
