from datetime import datetime
from decimal import Decimal

import pytest
from flask_jwt_extended import create_access_token

from app import create_app
from app.commands import seed_roles_and_permissions
from app.extensions import db as _db
from app.models.appointment_models import Appointment, AppointmentSession
from app.models.patient_profile_models import PatientProfile
from app.models.user_models import Role, TherapistProfile, User
from app.utils.encryption_util import encryptor
from app.utils.stripe_util import stripe_client

PASSWORD = 'Str0ng!Passw0rd'


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        _db.create_all()
        seed_roles_and_permissions()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db(app):
    return _db


def make_user(role_name, username, full_name=None, level=1, password=PASSWORD):
    role = Role.query.filter_by(name=role_name).first()
    user = User(role_id=role.id)
    user.set_username(username)
    user.set_email(f'{username}@example.com')
    user.set_password(password)
    full_name = full_name or username.title()
    if role_name == 'therapist':
        user.therapist_profile = TherapistProfile(full_name=encryptor.encrypt(full_name), level=level)
    elif role_name == 'patient':
        user.patient_profile = PatientProfile(full_name=encryptor.encrypt(full_name))
    _db.session.add(user)
    _db.session.commit()
    return user


def auth_headers(user):
    token = create_access_token(identity=str(user.id), additional_claims={'role': user.role_name})
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def admin(app):
    return make_user('admin', 'admin', 'Site Admin')


@pytest.fixture
def therapist(app):
    return make_user('therapist', 'drlee', 'Jordan Lee', level=2)


@pytest.fixture
def junior_therapist(app):
    return make_user('therapist', 'drpark', 'Sam Park', level=1)


@pytest.fixture
def patient(app):
    return make_user('patient', 'alex', 'Alex Morgan')


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture
def make_appointment(app):
    def _make(patient, therapist=None, sessions=None, **fields):
        fields.setdefault('price', Decimal('200.00'))
        fields.setdefault('status', 'pending_match')
        fields.setdefault('payment_status', 'pending')
        fields.setdefault('plan', 'single')
        fields.setdefault('date', datetime(2024, 5, 10, 15, 0))
        appointment = Appointment(
            patient_id=patient.id,
            therapist_id=therapist.id if therapist else None,
            **fields
        )
        for index, session in enumerate(sessions or []):
            appointment.sessions.append(AppointmentSession(index=index, **session))
        _db.session.add(appointment)
        _db.session.commit()
        return appointment
    return _make


@pytest.fixture
def fake_stripe(monkeypatch):
    """Replaces processor lookups with canned answers; tests fill in the dicts."""
    answers = {
        'verify_payment_id': {},
        'verify_payment': None,
        'customer_by_email': {},
        'payments': {},
    }

    def verify_payment_id(payment_id):
        return answers['verify_payment_id'].get(payment_id, {
            'status': 'invalid', 'reason': 'Payment not found', 'id': payment_id,
            'amount': None, 'currency': None,
        })

    def verify_payment(checkout_session_id=None, payment_intent_id=None):
        result = answers['verify_payment']
        if isinstance(result, Exception):
            raise result
        return result

    def find_customer_id_by_email(email):
        return answers['customer_by_email'].get(email)

    def list_customer_payments(customer_id, limit=100):
        payments = answers['payments'].get(customer_id, [])
        succeeded = [p for p in payments if p['status'] == 'succeeded']
        return {
            'payments': payments,
            'summary': {
                'total_count': len(payments),
                'succeeded_count': len(succeeded),
                'total_paid': sum((p['amount'] for p in succeeded), Decimal('0')),
            },
        }

    monkeypatch.setattr(stripe_client, 'verify_payment_id', verify_payment_id)
    monkeypatch.setattr(stripe_client, 'verify_payment', verify_payment)
    monkeypatch.setattr(stripe_client, 'find_customer_id_by_email', find_customer_id_by_email)
    monkeypatch.setattr(stripe_client, 'list_customer_payments', list_customer_payments)
    return answers
