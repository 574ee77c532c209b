from datetime import datetime
from app.extensions import db
from app.utils.status_util import reconcile, normalize_status

def _money(value):
    return str(value) if value is not None else None

class Appointment(db.Model):
    """A booked therapy appointment, possibly a package of several sessions.

    Payment state comes from three independent sources (the internal
    workflow, the payment processor and the patient balance); nothing here
    keeps them consistent. Read them through ``reconciliation()``.
    """
    __tablename__ = 'appointments'

    id = db.Column(db.Integer, primary_key=True)
    patient_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    therapist_id = db.Column(db.Integer, db.ForeignKey('users.id'), index=True)

    # Booking details
    date = db.Column(db.DateTime)
    plan = db.Column(db.String(100))
    therapy_type = db.Column(db.String(100))
    price = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    total_sessions = db.Column(db.Integer, nullable=False, default=1)

    # Internal workflow
    status = db.Column(db.String(50), nullable=False, default='unpaid', index=True)
    payment_status = db.Column(db.String(20), nullable=False, default='pending')
    is_accepted = db.Column(db.Boolean)
    decline_comment = db.Column(db.Text)

    # Payment processor signals
    checkout_session_id = db.Column(db.String(255), index=True)
    stripe_payment_intent_id = db.Column(db.String(255))
    stripe_payment_status = db.Column(db.String(50))
    stripe_verified = db.Column(db.Boolean)
    stripe_subscription_status = db.Column(db.String(50))
    is_stripe_active = db.Column(db.Boolean, default=False)
    stripe_checked_at = db.Column(db.DateTime)

    # Null means nobody recorded either way
    is_balance = db.Column(db.Boolean)

    # Payout
    therapist_validated = db.Column(db.Boolean, nullable=False, default=False)
    therapist_paid = db.Column(db.Boolean, nullable=False, default=False)
    is_payout_rejected = db.Column(db.Boolean, nullable=False, default=False)
    rejected_payout_note = db.Column(db.Text)
    payment_percentage = db.Column(db.Numeric(4, 3))

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    patient = db.relationship('User', foreign_keys=[patient_id], back_populates='patient_appointments')
    therapist = db.relationship('User', foreign_keys=[therapist_id], back_populates='therapist_appointments')
    sessions = db.relationship(
        'AppointmentSession',
        back_populates='appointment',
        order_by='AppointmentSession.index',
        cascade="all, delete-orphan"
    )
    status_changes = db.relationship(
        'AppointmentStatusChange',
        back_populates='appointment',
        order_by='AppointmentStatusChange.changed_at',
        cascade="all, delete-orphan"
    )

    def set_status(self, new_status, changed_by_id=None, note=None):
        """Moves to ``new_status`` and records the change in the audit trail."""
        if new_status == self.status:
            return
        self.status_changes.append(AppointmentStatusChange(
            from_status=self.status,
            to_status=new_status,
            changed_by_id=changed_by_id,
            note=note,
        ))
        self.status = new_status

    @property
    def normalized_status(self):
        return normalize_status(self.status)

    def signal_data(self):
        """Plain snake_case dict of the fields status reconciliation and payouts read."""
        return {
            'id': self.id,
            'status': self.status,
            'payment_status': self.payment_status,
            'stripe_payment_status': self.stripe_payment_status,
            'stripe_verified': self.stripe_verified,
            'stripe_subscription_status': self.stripe_subscription_status,
            'is_stripe_active': self.is_stripe_active,
            'is_balance': self.is_balance,
            'checkout_session_id': self.checkout_session_id,
            'therapist_id': self.therapist_id,
            'is_accepted': self.is_accepted,
            'decline_comment': self.decline_comment,
            'is_payout_rejected': self.is_payout_rejected,
            'rejected_payout_note': self.rejected_payout_note,
            'therapist_validated': self.therapist_validated,
            'therapist_paid': self.therapist_paid,
            'price': self.price,
            'total_sessions': self.total_sessions,
            'payment_percentage': self.payment_percentage,
            'sessions': [session.signal_data() for session in self.sessions],
        }

    def reconciliation(self):
        return reconcile(self.signal_data())

    def to_dict(self, include_sessions=True):
        data = {
            'id': self.id,
            'patient_id': self.patient_id,
            'patient_name': self.patient.full_name if self.patient else None,
            'therapist_id': self.therapist_id,
            'therapist_name': self.therapist.full_name if self.therapist else None,
            'date': self.date.isoformat() if self.date else None,
            'plan': self.plan,
            'therapy_type': self.therapy_type,
            'price': _money(self.price),
            'total_sessions': self.total_sessions,
            'status': self.status,
            'payment_status': self.payment_status,
            'is_accepted': self.is_accepted,
            'decline_comment': self.decline_comment,
            'checkout_session_id': self.checkout_session_id,
            'stripe_payment_status': self.stripe_payment_status,
            'stripe_verified': self.stripe_verified,
            'stripe_subscription_status': self.stripe_subscription_status,
            'is_stripe_active': self.is_stripe_active,
            'stripe_checked_at': self.stripe_checked_at.isoformat() if self.stripe_checked_at else None,
            'is_balance': self.is_balance,
            'therapist_validated': self.therapist_validated,
            'therapist_paid': self.therapist_paid,
            'is_payout_rejected': self.is_payout_rejected,
            'rejected_payout_note': self.rejected_payout_note,
            'payment_percentage': _money(self.payment_percentage),
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'reconciliation': self.reconciliation().model_dump(),
        }
        if include_sessions:
            data['sessions'] = [session.to_dict() for session in self.sessions]
        return data

class AppointmentSession(db.Model):
    """One dated session inside a multi-session appointment."""
    __tablename__ = 'appointment_sessions'

    id = db.Column(db.Integer, primary_key=True)
    appointment_id = db.Column(db.Integer, db.ForeignKey('appointments.id'), nullable=False, index=True)
    index = db.Column(db.Integer, nullable=False)
    date = db.Column(db.DateTime)
    price = db.Column(db.Numeric(10, 2))
    status = db.Column(db.String(50), nullable=False, default='in_progress')
    payment_status = db.Column(db.String(20), nullable=False, default='not_paid')
    payment_percentage = db.Column(db.Numeric(4, 3))

    appointment = db.relationship('Appointment', back_populates='sessions')

    __table_args__ = (
        db.UniqueConstraint('appointment_id', 'index', name='uq_appointment_session_index'),
    )

    def signal_data(self):
        return {
            'index': self.index,
            'date': self.date,
            'status': self.status,
            'payment_status': self.payment_status,
            'price': self.price,
            'payment_percentage': self.payment_percentage,
        }

    def to_dict(self):
        return {
            'index': self.index,
            'date': self.date.isoformat() if self.date else None,
            'price': _money(self.price),
            'status': self.status,
            'payment_status': self.payment_status,
            'payment_percentage': _money(self.payment_percentage),
        }

class AppointmentStatusChange(db.Model):
    """Audit trail of workflow status changes on an appointment."""
    __tablename__ = 'appointment_status_changes'

    id = db.Column(db.Integer, primary_key=True)
    appointment_id = db.Column(db.Integer, db.ForeignKey('appointments.id'), nullable=False, index=True)
    from_status = db.Column(db.String(50))
    to_status = db.Column(db.String(50), nullable=False)
    changed_by_id = db.Column(db.Integer, db.ForeignKey('users.id'))
    note = db.Column(db.Text)
    changed_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    appointment = db.relationship('Appointment', back_populates='status_changes')

    def to_dict(self):
        return {
            'from_status': self.from_status,
            'to_status': self.to_status,
            'changed_by_id': self.changed_by_id,
            'note': self.note,
            'changed_at': self.changed_at.isoformat() if self.changed_at else None,
        }
