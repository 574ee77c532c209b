import click
from flask import current_app
from flask.cli import with_appcontext
from sqlalchemy import or_
from app.extensions import db
from app.models.user_models import Role, Permission

ROLES = [
    {'name': 'admin', 'description': 'Platform administration'},
    {'name': 'therapist', 'description': 'Therapist dashboard access'},
    {'name': 'patient', 'description': 'Patient portal access'},
]

PERMISSIONS = [
    # Admin dashboard
    {'name': 'admin_appointments', 'resource': 'appointments', 'action': 'admin'},
    {'name': 'admin_users', 'resource': 'users', 'action': 'admin'},
    {'name': 'admin_payments', 'resource': 'payments', 'action': 'admin'},
    # Therapist dashboard
    {'name': 'read_appointments', 'resource': 'appointments', 'action': 'read'},
    {'name': 'write_appointments', 'resource': 'appointments', 'action': 'write'},
    {'name': 'read_payments', 'resource': 'payments', 'action': 'read'},
    # Patient portal
    {'name': 'read_onboarding', 'resource': 'onboarding', 'action': 'read'},
    {'name': 'write_onboarding', 'resource': 'onboarding', 'action': 'write'},
    {'name': 'read_balances', 'resource': 'balances', 'action': 'read'},
]

ROLE_PERMISSIONS = {
    'therapist': ['read_appointments', 'write_appointments', 'read_payments'],
    'patient': ['read_appointments', 'read_onboarding', 'write_onboarding', 'read_balances'],
}

def seed_roles_and_permissions():
    """Creates the default roles and permissions; safe to run repeatedly."""
    for role_data in ROLES:
        if not Role.query.filter_by(name=role_data['name']).first():
            db.session.add(Role(**role_data))
    for perm_data in PERMISSIONS:
        if not Permission.query.filter_by(name=perm_data['name']).first():
            db.session.add(Permission(**perm_data))
    db.session.commit()

    # Admin gets everything
    Role.query.filter_by(name='admin').first().permissions = Permission.query.all()
    for role_name, permission_names in ROLE_PERMISSIONS.items():
        role = Role.query.filter_by(name=role_name).first()
        role.permissions = Permission.query.filter(Permission.name.in_(permission_names)).all()
    db.session.commit()

@click.command('init-db')
@with_appcontext
def init_db_command():
    """Create all tables plus the default roles and permissions."""
    db.create_all()
    seed_roles_and_permissions()
    click.echo("Database initialized successfully with roles and permissions!")

@click.command('create-admin')
@click.option('--username', prompt=True)
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@with_appcontext
def create_admin_command(username, email, password):
    """Create an admin account."""
    from app.models.user_models import User

    if User.find_by_username(username) or User.find_by_email(email):
        raise click.ClickException("Username or email already exists")

    role = Role.query.filter_by(name='admin').first()
    if not role:
        raise click.ClickException("Roles missing. Run 'flask init-db' first.")

    user = User(role_id=role.id)
    user.set_username(username)
    user.set_email(email)
    try:
        user.set_password(password)
    except ValueError as e:
        raise click.ClickException(str(e))

    db.session.add(user)
    db.session.commit()
    click.echo(f"Admin '{username}' created.")

@click.command('refresh-payments')
@click.option('--limit', default=500, show_default=True, help='Maximum appointments to re-verify.')
@with_appcontext
def refresh_payments_command(limit):
    """Re-verify processor payments of appointments not settled from a balance."""
    from app.models.appointment_models import Appointment
    from app.utils.stripe_util import stripe_client

    if not stripe_client.is_configured:
        raise click.ClickException("STRIPE_SECRET_KEY is not configured")

    appointments = db.session.scalars(
        db.select(Appointment)
        .where(Appointment.checkout_session_id.isnot(None))
        .where(or_(Appointment.is_balance.is_(None), Appointment.is_balance.is_(False)))
        .order_by(Appointment.created_at.desc())
        .limit(limit)
    ).all()

    failed = 0
    for appointment in appointments:
        result = stripe_client.refresh_appointment_payment(appointment)
        if result is None:
            failed += 1
    db.session.commit()

    current_app.logger.info(f"Re-verified {len(appointments)} appointments, {failed} failed")
    click.echo(f"Re-verified {len(appointments)} appointments ({failed} could not be verified).")

@click.command('purge-revoked-tokens')
@with_appcontext
def purge_revoked_tokens_command():
    """Delete revoked-token entries whose tokens have expired."""
    from app.models.system_models import RevokedToken

    removed = RevokedToken.purge_expired()
    current_app.logger.info(f"Purged {removed} expired revoked tokens")
    click.echo(f"Purged {removed} expired revoked tokens.")

def register_commands(app):
    app.cli.add_command(init_db_command)
    app.cli.add_command(create_admin_command)
    app.cli.add_command(refresh_payments_command)
    app.cli.add_command(purge_revoked_tokens_command)
