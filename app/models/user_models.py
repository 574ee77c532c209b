import hashlib
from datetime import datetime, timedelta
from app.extensions import db, bcrypt
from app.utils.encryption_util import encryptor

MAX_FAILED_LOGINS = 5
LOCKOUT_PERIOD = timedelta(minutes=30)
PASSWORD_MIN_LENGTH = 12
PASSWORD_SYMBOLS = '!@#$%^&*()_+-=[]{}|;:,.<>?'


def password_meets_policy(password) -> bool:
    """At least PASSWORD_MIN_LENGTH characters mixing cases, digits and symbols."""
    if not isinstance(password, str) or len(password) < PASSWORD_MIN_LENGTH:
        return False
    checks = (str.isupper, str.islower, str.isdigit, lambda c: c in PASSWORD_SYMBOLS)
    return all(any(check(c) for c in password) for check in checks)


def lookup_hash(value) -> str:
    """Deterministic, case-insensitive digest used to find rows by encrypted values."""
    if not value:
        return ""
    return hashlib.sha256(value.strip().lower().encode('utf-8')).hexdigest()


role_permissions = db.Table(
    'role_permissions',
    db.Column('role_id', db.Integer, db.ForeignKey('roles.id'), primary_key=True),
    db.Column('permission_id', db.Integer, db.ForeignKey('permissions.id'), primary_key=True)
)

class User(db.Model):
    """Admin, therapist or patient account.

    Username and email are stored encrypted; the ``*_hash`` columns exist only
    so accounts can be looked up without decrypting every row.
    """
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    role_id = db.Column(db.Integer, db.ForeignKey('roles.id'), nullable=False)

    # Identity (encrypted, with lookup digests)
    username = db.Column(db.String(255), nullable=False)
    username_hash = db.Column(db.String(64), unique=True, nullable=False, index=True)
    email = db.Column(db.String(255), nullable=False)
    email_hash = db.Column(db.String(64), unique=True, nullable=False, index=True)

    # Credentials and lockout
    password_hash = db.Column(db.String(255), nullable=False)
    password_changed_at = db.Column(db.DateTime, default=datetime.utcnow)
    must_change_password = db.Column(db.Boolean, default=False)
    failed_login_attempts = db.Column(db.Integer, default=0)
    account_locked = db.Column(db.Boolean, default=False)
    account_locked_until = db.Column(db.DateTime)
    last_login = db.Column(db.DateTime)

    # Access
    is_active = db.Column(db.Boolean, default=True)
    is_banned = db.Column(db.Boolean, default=False, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    role = db.relationship('Role', backref='users')
    audit_logs = db.relationship('AuditLog', backref='user', lazy='dynamic')
    therapist_profile = db.relationship(
        'TherapistProfile', back_populates='user', uselist=False, cascade="all, delete-orphan"
    )
    patient_profile = db.relationship(
        'PatientProfile',
        back_populates='user',
        foreign_keys='PatientProfile.user_id',
        uselist=False,
        cascade="all, delete-orphan"
    )
    therapist_appointments = db.relationship(
        'Appointment', foreign_keys='Appointment.therapist_id', back_populates='therapist', lazy='dynamic'
    )
    patient_appointments = db.relationship(
        'Appointment',
        foreign_keys='Appointment.patient_id',
        back_populates='patient',
        lazy='dynamic',
        cascade="all, delete-orphan"
    )

    @classmethod
    def find_by_username(cls, username):
        return cls.query.filter_by(username_hash=lookup_hash(username)).first()

    @classmethod
    def find_by_email(cls, email):
        return cls.query.filter_by(email_hash=lookup_hash(email)).first()

    def set_username(self, username: str) -> None:
        self.username = encryptor.encrypt(username)
        self.username_hash = lookup_hash(username)

    def set_email(self, email: str) -> None:
        self.email = encryptor.encrypt(email)
        self.email_hash = lookup_hash(email)

    def set_password(self, password: str) -> None:
        if not password_meets_policy(password):
            raise ValueError("Password does not meet complexity requirements")
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')
        self.password_changed_at = datetime.utcnow()

    @property
    def is_locked(self):
        return bool(self.account_locked and self.account_locked_until
                    and datetime.utcnow() < self.account_locked_until)

    def check_password(self, password: str) -> bool:
        """Verifies ``password`` and updates the failed-attempt counter and lockout.

        A locked account fails every check until LOCKOUT_PERIOD has passed.
        Commits the session.
        """
        if self.is_locked:
            return False
        if self.account_locked:
            # Lockout expired
            self.account_locked, self.account_locked_until, self.failed_login_attempts = False, None, 0

        valid = bcrypt.check_password_hash(self.password_hash, password)
        now = datetime.utcnow()
        if valid:
            self.failed_login_attempts = 0
            self.last_login = now
        else:
            self.failed_login_attempts = (self.failed_login_attempts or 0) + 1
            if self.failed_login_attempts >= MAX_FAILED_LOGINS:
                self.account_locked = True
                self.account_locked_until = now + LOCKOUT_PERIOD

        db.session.commit()
        return valid

    @property
    def role_name(self):
        return self.role.name if self.role else None

    @property
    def decrypted_email(self):
        return encryptor.decrypt(self.email)

    @property
    def full_name(self):
        """Display name from whichever profile the user has, else the username."""
        profile = self.therapist_profile or self.patient_profile
        if profile and profile.full_name:
            return encryptor.decrypt(profile.full_name)
        return encryptor.decrypt(self.username)

    def _profile_fields(self):
        if self.role_name == 'therapist' and self.therapist_profile:
            return {
                'level': self.therapist_profile.level,
                'specialization': self.therapist_profile.specialization,
            }
        if self.role_name == 'patient' and self.patient_profile:
            profile = self.patient_profile
            return {
                'telephone': encryptor.decrypt(profile.telephone),
                'timezone': profile.timezone,
                'stripe_customer_id': profile.stripe_customer_id,
                'assigned_therapist_id': profile.assigned_therapist_id,
            }
        return {}

    def to_dict(self):
        data = {
            'id': self.id,
            'username': encryptor.decrypt(self.username),
            'email': self.decrypted_email,
            'full_name': self.full_name,
            'role': self.role_name,
            'is_active': self.is_active,
            'is_banned': self.is_banned,
            'must_change_password': self.must_change_password,
            'last_login': self.last_login.isoformat() if self.last_login else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
        data.update(self._profile_fields())
        return data

class TherapistProfile(db.Model):
    """Therapist details; ``level`` decides the payout share."""
    __tablename__ = 'therapist_profiles'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, unique=True)
    full_name = db.Column(db.String(512), nullable=False)  # Encrypted
    level = db.Column(db.Integer, nullable=False, default=1)
    specialization = db.Column(db.String(100))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship('User', back_populates='therapist_profile')

class Role(db.Model):
    """admin, therapist or patient; grants a set of permissions."""
    __tablename__ = 'roles'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), unique=True, nullable=False)
    description = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    permissions = db.relationship('Permission', secondary=role_permissions, backref='roles')

    def allows(self, resource, action):
        return self.name == 'admin' or any(
            p.resource == resource and p.action == action for p in self.permissions
        )

class Permission(db.Model):
    """One ``action`` on one ``resource``, e.g. ``write`` on ``appointments``."""
    __tablename__ = 'permissions'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    resource = db.Column(db.String(100), nullable=False)
    action = db.Column(db.String(50), nullable=False)
    description = db.Column(db.String(255))
