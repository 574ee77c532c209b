from flask import request, jsonify, current_app
from app.extensions import db
from app.models.appointment_models import Appointment
from app.models.patient_profile_models import PatientOnboarding
from app.schemas import OnboardingRequest
from app.utils.decorators import current_user

def get_onboarding():
    patient = current_user()
    if not patient.onboarding:
        return jsonify({'onboarding': None, 'completed': False}), 200
    return jsonify({'onboarding': patient.onboarding.to_dict(), 'completed': True}), 200

def save_onboarding():
    """Creates or replaces the patient's questionnaire answers."""
    payload = OnboardingRequest.model_validate(request.get_json(silent=True) or {})
    patient = current_user()
    responses = [answer.model_dump() for answer in payload.responses]

    onboarding = patient.onboarding
    created = onboarding is None
    if created:
        onboarding = PatientOnboarding(user_id=patient.id)
        db.session.add(onboarding)
    onboarding.set_responses(responses)
    db.session.commit()

    return jsonify({
        'message': 'Onboarding saved successfully',
        'onboarding': onboarding.to_dict(),
    }), 201 if created else 200

def get_my_appointments():
    patient = current_user()
    appointments = patient.patient_appointments.order_by(Appointment.created_at.desc()).all()
    return jsonify({'appointments': [appt.to_dict() for appt in appointments]}), 200

def get_my_balance():
    patient = current_user()
    if not patient.balance:
        return jsonify({'balance': {
            'patient_id': patient.id,
            'amount': '0.00',
            'currency': current_app.config['BALANCE_CURRENCY'],
            'history': [],
        }}), 200
    return jsonify({'balance': patient.balance.to_dict()}), 200
