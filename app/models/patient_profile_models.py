from datetime import datetime
from app.extensions import db
from app.utils.encryption_util import encryptor

class PatientProfile(db.Model):
    """Patient contact details, billing link and current therapist."""
    __tablename__ = 'patient_profiles'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, unique=True)

    # --- Personal Information (Encrypted) ---
    full_name = db.Column(db.String(512), nullable=False)
    telephone = db.Column(db.String(255))

    # --- Non-encrypted fields ---
    timezone = db.Column(db.String(64), default='UTC')
    stripe_customer_id = db.Column(db.String(255), index=True)
    assigned_therapist_id = db.Column(db.Integer, db.ForeignKey('users.id'))

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship('User', back_populates='patient_profile', foreign_keys=[user_id])
    assigned_therapist = db.relationship('User', foreign_keys=[assigned_therapist_id])

class PatientOnboarding(db.Model):
    """Intake questionnaire answers, stored encrypted as one JSON document."""
    __tablename__ = 'patient_onboarding'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, unique=True)
    responses = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship('User', backref=db.backref('onboarding', uselist=False, cascade="all, delete-orphan"))

    def get_responses(self):
        return encryptor.decrypt_json(self.responses, default=[])

    def set_responses(self, responses):
        self.responses = encryptor.encrypt_json(responses)

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'responses': self.get_responses(),
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
