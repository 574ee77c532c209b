from datetime import datetime, timedelta

from app.models.appointment_models import Appointment
from app.models.system_models import RevokedToken
from app.models.user_models import Role, User
from conftest import PASSWORD


def test_seeding_is_idempotent(app):
    runner = app.test_cli_runner()
    result = runner.invoke(args=['init-db'])
    assert result.exit_code == 0
    assert Role.query.count() == 3
    admin = Role.query.filter_by(name='admin').one()
    assert {p.resource for p in admin.permissions} >= {'appointments', 'users', 'payments'}


def test_create_admin(app):
    runner = app.test_cli_runner()
    result = runner.invoke(args=[
        'create-admin', '--username', 'root', '--email', 'root@example.com', '--password', PASSWORD,
    ])
    assert result.exit_code == 0
    assert User.find_by_username('root').role_name == 'admin'

    again = runner.invoke(args=[
        'create-admin', '--username', 'root', '--email', 'x@example.com', '--password', PASSWORD,
    ])
    assert again.exit_code != 0


def test_refresh_payments(app, db, patient, make_appointment, fake_stripe):
    checked = make_appointment(patient, checkout_session_id='cs_1')
    skipped = make_appointment(patient, checkout_session_id='cs_2', is_balance=True)
    fake_stripe['verify_payment'] = {
        'payment_status': 'paid', 'subscription_status': 'none', 'is_active': True,
        'payment_intent_status': 'succeeded', 'last_payment_error': None,
    }

    result = app.test_cli_runner().invoke(args=['refresh-payments'])

    assert result.exit_code == 0
    assert 'Re-verified 1 appointments' in result.output
    db.session.expire_all()
    assert db.session.get(Appointment, checked.id).stripe_verified is True
    assert db.session.get(Appointment, skipped.id).stripe_checked_at is None


def test_purge_revoked_tokens(app, db):
    now = datetime.utcnow()
    db.session.add_all([
        RevokedToken(jti='old', expires_at=now - timedelta(hours=1)),
        RevokedToken(jti='live', expires_at=now + timedelta(hours=1)),
    ])
    db.session.commit()

    result = app.test_cli_runner().invoke(args=['purge-revoked-tokens'])

    assert 'Purged 1 expired revoked tokens' in result.output
    assert RevokedToken.is_revoked('live')
    assert not RevokedToken.is_revoked('old')
