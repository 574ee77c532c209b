from datetime import datetime
from app.extensions import db

therapist_payment_appointments = db.Table('therapist_payment_appointments',
    db.Column('payment_id', db.Integer, db.ForeignKey('therapist_payments.id'), primary_key=True),
    db.Column('appointment_id', db.Integer, db.ForeignKey('appointments.id'), primary_key=True)
)

class TherapistPayment(db.Model):
    """A payout made to a therapist, covering one or more appointments."""
    __tablename__ = 'therapist_payments'

    id = db.Column(db.Integer, primary_key=True)
    therapist_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    payment_percentage = db.Column(db.Numeric(4, 3), nullable=False)
    # Per-session breakdown as computed when the payout was made
    sessions = db.Column(db.JSON, nullable=False, default=list)
    status = db.Column(db.String(20), nullable=False, default='paid')
    note = db.Column(db.Text)
    paid_by_id = db.Column(db.Integer, db.ForeignKey('users.id'))
    paid_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    therapist = db.relationship('User', foreign_keys=[therapist_id])
    appointments = db.relationship('Appointment', secondary=therapist_payment_appointments, backref='payouts')

    def to_dict(self):
        return {
            'id': self.id,
            'therapist_id': self.therapist_id,
            'therapist_name': self.therapist.full_name if self.therapist else None,
            'amount': str(self.amount),
            'payment_percentage': str(self.payment_percentage),
            'sessions': self.sessions,
            'status': self.status,
            'note': self.note,
            'appointment_ids': [a.id for a in self.appointments],
            'paid_at': self.paid_at.isoformat() if self.paid_at else None,
        }
