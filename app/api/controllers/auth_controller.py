from datetime import datetime, timezone
from flask import request, jsonify, current_app
from flask_jwt_extended import (
    create_access_token, create_refresh_token, get_jwt
)
from app.extensions import db
from app.models.user_models import User, Role
from app.models.patient_profile_models import PatientProfile
from app.models.system_models import RevokedToken
from app.schemas import CreatePatientRequest
from app.utils.decorators import current_user
from app.utils.encryption_util import encryptor

def create_patient_account(payload: CreatePatientRequest):
    """Creates a patient user plus profile. Returns ``(user, error_response)``."""
    if User.find_by_username(payload.username):
        return None, (jsonify({'error': 'Username already exists'}), 409)
    if User.find_by_email(payload.email):
        return None, (jsonify({'error': 'Email already exists'}), 409)

    role = Role.query.filter_by(name='patient').first()
    if not role:
        return None, (jsonify({'error': 'Patient role is not configured'}), 500)

    user = User(role_id=role.id)
    user.set_username(payload.username)
    user.set_email(payload.email)
    try:
        user.set_password(payload.password)
    except ValueError as e:
        return None, (jsonify({'error': str(e)}), 400)

    user.patient_profile = PatientProfile(
        full_name=encryptor.encrypt(payload.full_name),
        telephone=encryptor.encrypt(payload.telephone) if payload.telephone else None,
        timezone=payload.timezone or 'UTC',
    )
    db.session.add(user)
    db.session.commit()
    return user, None

def register_user():
    """Self-service registration; always creates a patient."""
    payload = CreatePatientRequest.model_validate(request.get_json(silent=True) or {})
    user, error = create_patient_account(payload)
    if error:
        return error
    return jsonify({'message': 'Patient account created', 'user_id': user.id}), 201

def _tokens_for(user):
    # Identity is the user id only; the role claim lets clients route without a lookup
    claims = {'role': user.role_name}
    return (
        create_access_token(identity=str(user.id), additional_claims=claims),
        create_refresh_token(identity=str(user.id)),
    )

def _password_expired(user):
    max_age = current_app.config['PASSWORD_MAX_AGE']
    return user.password_changed_at is not None and datetime.utcnow() - user.password_changed_at > max_age

def login_user():
    """Exchanges username and password for an access/refresh token pair."""
    data = request.get_json(silent=True) or {}
    username, password = data.get('username'), data.get('password')
    if not username or not password:
        return jsonify({'error': 'username and password are both required'}), 400

    user = User.find_by_username(username)
    if user is None:
        return jsonify({'error': 'Invalid credentials'}), 401
    if user.is_locked:
        return jsonify({'error': 'Too many failed attempts; try again later'}), 423
    if not user.check_password(password):
        return jsonify({'error': 'Invalid credentials'}), 401
    if not user.is_active or user.is_banned:
        return jsonify({'error': 'Account suspended' if user.is_banned else 'Account deactivated'}), 403
    if _password_expired(user):
        user.must_change_password = True
        db.session.commit()
        return jsonify({'error': 'Password has expired and must be changed'}), 403

    access, refresh = _tokens_for(user)
    return jsonify({
        'access_token': access,
        'refresh_token': refresh,
        'user': {
            'id': user.id,
            'username': encryptor.decrypt(user.username),
            'full_name': user.full_name,
            'role': user.role_name,
            'must_change_password': user.must_change_password,
        }
    }), 200

def logout_user():
    """Blocklists the presented token until its own expiry."""
    claims = get_jwt()
    expires_at = datetime.fromtimestamp(claims['exp'], tz=timezone.utc).replace(tzinfo=None)
    db.session.add(RevokedToken(jti=claims['jti'], expires_at=expires_at))
    db.session.commit()
    return jsonify({'message': 'Token revoked'}), 200

def refresh_token():
    user = current_user()
    if not user or not user.is_active or user.is_banned:
        return jsonify({'error': 'User not found or inactive'}), 403
    access, _ = _tokens_for(user)
    return jsonify({'access_token': access}), 200

def change_user_password():
    user = current_user()
    data = request.get_json(silent=True) or {}
    current, new = data.get('current_password'), data.get('new_password')

    if not current or not new:
        return jsonify({'error': 'current_password and new_password are both required'}), 400
    if not user.check_password(current):
        return jsonify({'error': 'Current password is incorrect'}), 401
    if new == current:
        return jsonify({'error': 'New password must differ from the current one'}), 400

    try:
        user.set_password(new)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    user.must_change_password = False
    db.session.commit()
    current_app.logger.info(f"User {user.id} changed their password")
    return jsonify({'message': 'Password updated'}), 200
