import secrets
import string
from flask import request, jsonify, current_app
from app.extensions import db
from app.models.user_models import User, Role, TherapistProfile, password_meets_policy
from app.models.patient_profile_models import PatientProfile
from app.models.appointment_models import Appointment
from app.models.balance_models import Balance
from app.schemas import (
    ListParams, CreatePatientRequest, CreateTherapistRequest, BanPatientRequest,
    VerifiedPaymentsRequest, BalanceAdjustmentRequest, TherapistLevelRequest
)
from app.api.controllers.auth_controller import create_patient_account
from app.utils.decorators import current_user
from app.utils.email_util import send_therapist_credentials_email
from app.utils.encryption_util import encryptor
from app.utils.pagination_util import paginate_select
from app.utils.search_util import match_profile_user_ids
from app.utils.status_util import CLOSED_STATUS_VALUES
from app.utils.stripe_util import stripe_client

def _generate_random_password(length=16):
    """Generates a secure random password that passes the complexity rules."""
    all_chars = string.ascii_letters + string.digits + '!@#$%^&*()_+-='
    while True:
        password = ''.join(secrets.choice(all_chars) for _ in range(length))
        if password_meets_policy(password):
            return password

def _get_user_with_role(user_id, role_name):
    user = db.session.get(User, user_id)
    if not user or user.role_name != role_name:
        return None
    return user

def _role_page(role_name, profile_model):
    params = ListParams.model_validate(request.args.to_dict())
    stmt = db.select(User).join(Role).where(Role.name == role_name)
    if params.search:
        stmt = stmt.where(User.id.in_(match_profile_user_ids(profile_model, params.search)))
    stmt = stmt.order_by(User.created_at.desc(), User.id.desc())
    users, pagination = paginate_select(stmt, params.page, params.limit)
    return users, pagination, params.request_token

# --- Patients ---

def list_patients():
    patients, pagination, request_token = _role_page('patient', PatientProfile)
    results = []
    for patient in patients:
        data = patient.to_dict()
        data['balance'] = patient.balance.to_dict(include_history=False) if patient.balance else None
        data['onboarding_completed'] = patient.onboarding is not None
        results.append(data)
    return jsonify({'patients': results, 'pagination': pagination, 'request_token': request_token}), 200

def create_patient():
    payload = CreatePatientRequest.model_validate(request.get_json(silent=True) or {})
    user, error = create_patient_account(payload)
    if error:
        return error
    return jsonify({'message': 'Patient created successfully', 'user_id': user.id, 'patient': user.to_dict()}), 201

def get_patient(patient_id):
    patient = _get_user_with_role(patient_id, 'patient')
    if not patient:
        return jsonify({'error': 'Patient not found'}), 404

    appointments = patient.patient_appointments.order_by(Appointment.created_at.desc()).all()
    data = patient.to_dict()
    data['appointments'] = [appt.to_dict(include_sessions=False) for appt in appointments]
    data['balance'] = patient.balance.to_dict() if patient.balance else None
    data['onboarding'] = patient.onboarding.to_dict() if patient.onboarding else None
    return jsonify({'patient': data}), 200

def ban_patient(patient_id):
    payload = BanPatientRequest.model_validate(request.get_json(silent=True) or {})
    patient = _get_user_with_role(patient_id, 'patient')
    if not patient:
        return jsonify({'error': 'Patient not found'}), 404

    patient.is_banned = payload.banned
    db.session.commit()
    state = 'banned' if payload.banned else 'unbanned'
    current_app.logger.info(f"Patient {patient.id} {state}")
    return jsonify({'message': f'Patient {state} successfully', 'patient': patient.to_dict()}), 200

def get_verified_payments():
    """Processor payments of a patient, located by customer id or email."""
    payload = VerifiedPaymentsRequest.model_validate(request.get_json(silent=True) or {})
    patient = _get_user_with_role(payload.user_id, 'patient')
    if not patient:
        return jsonify({'error': 'Patient not found'}), 404

    profile = patient.patient_profile
    email = payload.email or patient.decrypted_email
    customer_id = (profile.stripe_customer_id if profile else None) or payload.customer_id
    if not customer_id:
        customer_id = stripe_client.find_customer_id_by_email(email)

    if not customer_id:
        return jsonify({
            'error': 'No Stripe customer found',
            'can_search': True,
            'search_options': {'email': email, 'customer_id': payload.customer_id},
        }), 404

    if profile and not profile.stripe_customer_id:
        profile.stripe_customer_id = customer_id
        db.session.commit()

    result = stripe_client.list_customer_payments(customer_id)
    summary = result['summary']
    return jsonify({
        'payments': [
            {**payment, 'amount': str(payment['amount']) if payment['amount'] is not None else None}
            for payment in result['payments']
        ],
        'customer_id': customer_id,
        'email': email,
        'summary': {**summary, 'total_paid': str(summary['total_paid'])},
    }), 200

def get_patient_balance(patient_id):
    patient = _get_user_with_role(patient_id, 'patient')
    if not patient:
        return jsonify({'error': 'Patient not found'}), 404
    if not patient.balance:
        return jsonify({'balance': {
            'patient_id': patient.id,
            'amount': '0.00',
            'currency': current_app.config['BALANCE_CURRENCY'],
            'history': [],
        }}), 200
    return jsonify({'balance': patient.balance.to_dict()}), 200

def adjust_patient_balance(patient_id):
    payload = BalanceAdjustmentRequest.model_validate(request.get_json(silent=True) or {})
    patient = _get_user_with_role(patient_id, 'patient')
    if not patient:
        return jsonify({'error': 'Patient not found'}), 404

    admin = current_user()
    balance = Balance.for_patient(patient.id, current_app.config['BALANCE_CURRENCY'])
    try:
        if payload.action == 'add':
            balance.add(payload.amount, payload.reason, admin.id)
        else:
            balance.remove(payload.amount, payload.reason, admin.id)
    except ValueError as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 400

    db.session.commit()
    return jsonify({'message': 'Balance updated successfully', 'balance': balance.to_dict()}), 200

# --- Therapists ---

def list_therapists():
    therapists, pagination, request_token = _role_page('therapist', TherapistProfile)
    results = []
    for therapist in therapists:
        data = therapist.to_dict()
        data['open_appointments'] = therapist.therapist_appointments.filter(
            Appointment.status.notin_(list(CLOSED_STATUS_VALUES))
        ).count()
        results.append(data)
    return jsonify({'therapists': results, 'pagination': pagination, 'request_token': request_token}), 200

def create_therapist():
    """Creates a therapist account and emails them a temporary password."""
    payload = CreateTherapistRequest.model_validate(request.get_json(silent=True) or {})

    if User.find_by_username(payload.username):
        return jsonify({'error': 'Username already exists'}), 409
    if User.find_by_email(payload.email):
        return jsonify({'error': 'Email already exists'}), 409

    therapist_role = Role.query.filter_by(name='therapist').first()
    if not therapist_role:
        return jsonify({'error': "The 'therapist' role has not been configured."}), 500

    temp_password = _generate_random_password()
    user = User(role_id=therapist_role.id, must_change_password=True)
    user.set_username(payload.username)
    user.set_email(payload.email)
    user.set_password(temp_password)
    user.therapist_profile = TherapistProfile(
        full_name=encryptor.encrypt(payload.full_name),
        level=payload.level,
        specialization=payload.specialization,
    )

    db.session.add(user)
    db.session.commit()
    send_therapist_credentials_email(payload.email, payload.full_name, payload.username, temp_password)

    return jsonify({
        'message': 'Therapist registered successfully. Credentials have been sent to their email.',
        'user_id': user.id,
    }), 201

def update_therapist_level(therapist_id):
    payload = TherapistLevelRequest.model_validate(request.get_json(silent=True) or {})
    therapist = _get_user_with_role(therapist_id, 'therapist')
    if not therapist or not therapist.therapist_profile:
        return jsonify({'error': 'Therapist not found'}), 404

    therapist.therapist_profile.level = payload.level
    db.session.commit()
    return jsonify({'message': 'Therapist level updated', 'therapist': therapist.to_dict()}), 200
