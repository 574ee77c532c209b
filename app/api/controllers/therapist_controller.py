from flask import request, jsonify
from app.extensions import db
from app.models.appointment_models import Appointment, AppointmentSession, AppointmentStatusChange
from app.schemas import ListParams, ValidateSessionRequest, TherapistStatusRequest, SessionStatusRequest
from app.utils.decorators import current_user
from app.utils.pagination_util import paginate_select
from app.utils.status_util import allowed_transitions, is_transition_allowed, reconcile_payment

# Words the therapist dashboard sends for accept/reject
STATUS_ALIASES = {
    'accept': 'pending_scheduling',
    'accepted': 'pending_scheduling',
    'reject': 'cancelled',
    'rejected': 'cancelled',
    'no_show': 'no-show',
}

def _own_appointment(therapist, appointment_id):
    appointment = db.session.get(Appointment, appointment_id)
    if not appointment or appointment.therapist_id != therapist.id:
        return None
    return appointment

def _not_found():
    return jsonify({'error': 'Appointment not found or not assigned to you'}), 404

def get_my_appointments():
    therapist = current_user()
    params = ListParams.model_validate(request.args.to_dict())
    stmt = db.select(Appointment).where(Appointment.therapist_id == therapist.id)
    status = request.args.get('status')
    if status:
        stmt = stmt.where(Appointment.status == status)
    stmt = stmt.order_by(Appointment.date.desc(), Appointment.id.desc())

    appointments, pagination = paginate_select(stmt, params.page, params.limit)
    return jsonify({
        'appointments': [appt.to_dict() for appt in appointments],
        'pagination': pagination,
        'request_token': params.request_token,
    }), 200

def get_my_appointment(appointment_id):
    appointment = _own_appointment(current_user(), appointment_id)
    if not appointment:
        return _not_found()
    return jsonify({'appointment': appointment.to_dict()}), 200

def validate_session(appointment_id):
    """Therapist confirms a completed, paid session so it can be paid out."""
    ValidateSessionRequest.model_validate(request.get_json(silent=True) or {})
    therapist = current_user()
    appointment = _own_appointment(therapist, appointment_id)
    if not appointment:
        return _not_found()

    if appointment.therapist_validated:
        return jsonify({
            'message': 'Session already validated',
            'already_validated': True,
            'appointment': appointment.to_dict(),
        }), 200
    if appointment.normalized_status == 'no-show':
        return jsonify({
            'message': 'Session was marked as a no-show',
            'already_no_show': True,
            'appointment': appointment.to_dict(),
        }), 200
    if appointment.therapist_paid:
        return jsonify({'error': 'Payout has already been made for this session'}), 400
    if appointment.normalized_status != 'completed':
        return jsonify({'error': 'Only completed appointments can be validated'}), 400

    payment = reconcile_payment(appointment)
    if not payment.resolved:
        return jsonify({
            'error': 'Payment for this session is not verified',
            'payment': payment.model_dump(),
        }), 400

    appointment.therapist_validated = True
    appointment.payment_status = 'completed'
    appointment.status_changes.append(AppointmentStatusChange(
        from_status=appointment.status,
        to_status=appointment.status,
        changed_by_id=therapist.id,
        note='Validated by therapist',
    ))
    db.session.commit()
    return jsonify({'message': 'Session validated successfully', 'appointment': appointment.to_dict()}), 200

def update_appointment_status(appointment_id):
    """Accept, reject, complete or mark no-show through the status transition table."""
    payload = TherapistStatusRequest.model_validate(request.get_json(silent=True) or {})
    therapist = current_user()
    appointment = _own_appointment(therapist, appointment_id)
    if not appointment:
        return _not_found()

    requested = payload.status.lower()
    target = STATUS_ALIASES.get(requested, requested)
    current = appointment.normalized_status

    if not is_transition_allowed(current, target):
        return jsonify({
            'error': f"Cannot change status from '{appointment.status}' to '{payload.status}'",
            'allowed': allowed_transitions(current),
        }), 400

    awaiting_acceptance = current == 'matched_pending_therapist_acceptance'
    rejecting = awaiting_acceptance and target == 'cancelled'
    if rejecting and not payload.decline_comment:
        return jsonify({'error': 'A decline comment is required to reject an appointment'}), 400

    if target == 'completed':
        payment = reconcile_payment(appointment)
        if not payment.resolved:
            return jsonify({
                'error': 'Cannot complete an appointment whose payment is not resolved',
                'payment': payment.model_dump(),
            }), 400

    if awaiting_acceptance:
        appointment.is_accepted = not rejecting
    if rejecting:
        appointment.decline_comment = payload.decline_comment

    appointment.set_status(target, therapist.id, payload.decline_comment)
    db.session.commit()
    return jsonify({'message': 'Appointment status updated', 'appointment': appointment.to_dict()}), 200

def update_session_status(appointment_id, session_index):
    payload = SessionStatusRequest.model_validate(request.get_json(silent=True) or {})
    appointment = _own_appointment(current_user(), appointment_id)
    if not appointment:
        return _not_found()

    session = db.session.scalars(
        db.select(AppointmentSession)
        .where(AppointmentSession.appointment_id == appointment.id)
        .where(AppointmentSession.index == session_index)
    ).first()
    if not session:
        return jsonify({'error': 'Session not found'}), 404

    session.status = payload.status
    db.session.commit()
    return jsonify({
        'message': 'Session status updated',
        'session': session.to_dict(),
        'summary': appointment.reconciliation().sessions.model_dump(),
    }), 200

def get_rejected_payouts():
    therapist = current_user()
    appointments = db.session.scalars(
        db.select(Appointment)
        .where(Appointment.therapist_id == therapist.id)
        .where(Appointment.is_payout_rejected.is_(True))
        .order_by(Appointment.updated_at.desc())
    ).all()
    return jsonify({
        'appointments': [
            {**appt.to_dict(include_sessions=False), 'note': appt.rejected_payout_note}
            for appt in appointments
        ],
    }), 200
