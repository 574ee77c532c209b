# /app/models/system_models.py
from datetime import datetime
from app.extensions import db

class AuditLog(db.Model):
    """Who did what to which resource, and whether it succeeded."""
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), index=True)
    timestamp = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
    action = db.Column(db.String(100), nullable=False, index=True)
    resource = db.Column(db.String(100))
    resource_id = db.Column(db.String(100))
    success = db.Column(db.Boolean, default=True)
    details = db.Column(db.Text)
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.String(255))

    @classmethod
    def record(cls, action, resource, success, details, user_id=None, resource_id=None, request=None):
        """Adds an entry to the session; the caller commits."""
        entry = cls(
            user_id=int(user_id) if user_id is not None else None,
            action=action,
            resource=resource,
            resource_id=resource_id,
            success=success,
            details=details,
            ip_address=request.remote_addr if request else None,
            user_agent=(request.headers.get('User-Agent') or '')[:255] if request else None,
        )
        db.session.add(entry)
        return entry

class RevokedToken(db.Model):
    """JWTs revoked on logout, kept until they would have expired anyway."""
    __tablename__ = 'revoked_tokens'

    id = db.Column(db.Integer, primary_key=True)
    jti = db.Column(db.String(120), unique=True, nullable=False, index=True)
    revoked_at = db.Column(db.DateTime, default=datetime.utcnow)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)

    @classmethod
    def is_revoked(cls, jti):
        return db.session.query(cls.id).filter_by(jti=jti).first() is not None

    @classmethod
    def purge_expired(cls, now=None):
        """Deletes entries whose token has expired. Returns the number removed."""
        now = now or datetime.utcnow()
        removed = cls.query.filter(cls.expires_at < now).delete(synchronize_session=False)
        db.session.commit()
        return removed
