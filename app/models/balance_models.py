from datetime import datetime
from decimal import Decimal
from app.extensions import db

class InsufficientBalanceError(ValueError):
    """Raised when a debit would take a balance below zero."""

class Balance(db.Model):
    """Pre-purchased credit a patient can spend on appointments."""
    __tablename__ = 'balances'

    id = db.Column(db.Integer, primary_key=True)
    patient_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, unique=True)
    amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default='AED')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    patient = db.relationship('User', backref=db.backref('balance', uselist=False, cascade="all, delete-orphan"))
    transactions = db.relationship(
        'BalanceTransaction',
        back_populates='balance',
        order_by='BalanceTransaction.created_at.desc()',
        cascade="all, delete-orphan"
    )

    @classmethod
    def for_patient(cls, patient_id, currency='AED'):
        """Returns the patient's balance, creating an empty one on first use."""
        balance = cls.query.filter_by(patient_id=patient_id).first()
        if balance is None:
            balance = cls(patient_id=patient_id, amount=Decimal('0.00'), currency=currency)
            db.session.add(balance)
        return balance

    def _record(self, action, amount, reason, performed_by_id, appointment_id=None):
        self.transactions.append(BalanceTransaction(
            action=action,
            amount=amount,
            reason=reason,
            performed_by_id=performed_by_id,
            appointment_id=appointment_id,
        ))

    def add(self, amount, reason, performed_by_id=None):
        amount = Decimal(amount)
        if amount <= 0:
            raise ValueError("Amount must be positive")
        self.amount = Decimal(self.amount or 0) + amount
        self._record('added', amount, reason, performed_by_id)

    def remove(self, amount, reason, performed_by_id=None):
        self._debit('removed', amount, reason, performed_by_id)

    def use(self, amount, appointment_id, performed_by_id=None):
        # Free appointments are settled with a zero entry
        self._debit(
            'used', amount, f"Applied to appointment #{appointment_id}", performed_by_id,
            appointment_id, allow_zero=True
        )

    def _debit(self, action, amount, reason, performed_by_id, appointment_id=None, allow_zero=False):
        amount = Decimal(amount if amount is not None else 0)
        if amount < 0 or (amount == 0 and not allow_zero):
            raise ValueError("Amount must be positive")
        current = Decimal(self.amount or 0)
        if amount > current:
            raise InsufficientBalanceError(
                f"Insufficient balance: {current} {self.currency} available, {amount} requested"
            )
        self.amount = current - amount
        self._record(action, amount, reason, performed_by_id, appointment_id)

    def to_dict(self, include_history=True):
        data = {
            'patient_id': self.patient_id,
            'amount': str(Decimal(self.amount or 0).quantize(Decimal('0.01'))),
            'currency': self.currency,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_history:
            data['history'] = [t.to_dict() for t in self.transactions]
        return data

class BalanceTransaction(db.Model):
    """One change to a patient balance."""
    __tablename__ = 'balance_transactions'

    id = db.Column(db.Integer, primary_key=True)
    balance_id = db.Column(db.Integer, db.ForeignKey('balances.id'), nullable=False, index=True)
    action = db.Column(db.String(10), nullable=False)  # added | removed | used
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    reason = db.Column(db.String(255))
    appointment_id = db.Column(db.Integer, db.ForeignKey('appointments.id'))
    performed_by_id = db.Column(db.Integer, db.ForeignKey('users.id'))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    balance = db.relationship('Balance', back_populates='transactions')

    def to_dict(self):
        return {
            'action': self.action,
            'amount': str(self.amount),
            'reason': self.reason,
            'appointment_id': self.appointment_id,
            'performed_by_id': self.performed_by_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
