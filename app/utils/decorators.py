from functools import wraps
from flask import request, current_app, jsonify, make_response
from app.models.system_models import AuditLog
from app.extensions import db
from flask_jwt_extended import get_jwt_identity, verify_jwt_in_request
from sqlalchemy.exc import SQLAlchemyError
from app.models.user_models import User

# URL parameters that identify the resource an action touched
_RESOURCE_ID_KWARGS = ('appointment_id', 'patient_id', 'therapist_id', 'user_id')


def current_user():
    """Returns the User for the JWT in the current request, or None."""
    identity = get_jwt_identity()
    if identity is None:
        return None
    try:
        return db.session.get(User, int(identity))
    except (TypeError, ValueError):
        return None


def _write_audit(action, resource, resource_id, user_id, success, details):
    AuditLog.record(action, resource, success, details,
                    user_id=user_id, resource_id=resource_id, request=request)
    db.session.commit()
    log = current_app.audit_logger.info if success else current_app.audit_logger.error
    log(
        f"Action='{action}', Resource='{resource}', ResourceID='{resource_id}', "
        f"UserID='{user_id}', Success='{success}', Details='{details}'"
    )


def audit_log(action, resource):
    """Records every call of the wrapped view in the audit table and audit log.

    Failed calls are recorded too; an exception raised by the view is logged
    and then re-raised for the error handlers.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            resource_id = next(
                (str(kwargs[key]) for key in _RESOURCE_ID_KWARGS if key in kwargs), None
            )
            try:
                user_id = get_jwt_identity()
            except RuntimeError:
                # No JWT in this request (registration, login)
                user_id = None

            try:
                response = make_response(f(*args, **kwargs))
            except Exception as e:
                db.session.rollback()
                try:
                    _write_audit(action, resource, resource_id, user_id, False, f"An error occurred: {e}")
                except SQLAlchemyError as db_error:
                    current_app.audit_logger.error(f"Failed to log audit entry due to DB error: {db_error}")
                    db.session.rollback()
                raise

            success = response.status_code < 400
            body = response.get_json(silent=True) if response.is_json else None
            if success:
                details = f"Request successful. Status: {response.status_code}"
            else:
                details = f"Status: {response.status_code}. {(body or {}).get('error')}"

            if action == "PATIENT_REGISTRATION" and success and body:
                user_id = body.get('user_id')

            _write_audit(action, resource, resource_id, user_id, success, details)
            return response

        return decorated_function
    return decorator


def require_permission(resource, action):
    """Checks that the authenticated user's role grants ``action`` on ``resource``."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            verify_jwt_in_request()
            user = current_user()

            if not user or not user.is_active:
                return jsonify({'error': 'User not found or inactive'}), 403
            if user.is_banned:
                return jsonify({'error': 'Account suspended'}), 403

            if not user.role or not user.role.allows(resource, action):
                current_app.logger.warning(
                    f"User {user.id} ({user.role_name}) denied {action} on {resource}"
                )
                return jsonify({'error': 'Permission denied'}), 403

            return f(*args, **kwargs)
        return decorated_function
    return decorator
