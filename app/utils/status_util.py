# /app/utils/status_util.py
"""
Reconciles an appointment's independently updated status fields into one
display status and a set of action gates.

An appointment carries an internal workflow status, the processor's payment
and subscription signals, a balance flag and payout annotations. These are
not guaranteed to agree with each other, so every view asks this module for
the reconciled answer instead of branching on raw fields.

Nothing here touches the network, the database or the Flask context, and no
function raises on missing or malformed input.
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from app.schemas import BalanceFlag, load_appointment_signals, load_session_signals

SUCCESS = 'success'
WARNING = 'warning'
DANGER = 'danger'
NEUTRAL = 'neutral'

# Legacy workflow statuses still present on older rows
LEGACY_STATUSES = {
    'not_paid': 'unpaid',
    'pending_approval': 'matched_pending_therapist_acceptance',
    'approved': 'confirmed',
    'rejected': 'cancelled',
    'in_progress': 'confirmed',
    'completed_pending_validation': 'completed',
    'completed_validated': 'completed',
    'no_show': 'no-show',
}

STATUS_TRANSITIONS = {
    'unpaid': ['pending'],
    'pending': ['pending_match', 'unpaid'],
    'pending_match': ['matched_pending_therapist_acceptance'],
    'matched_pending_therapist_acceptance': ['pending_scheduling', 'cancelled'],
    'pending_scheduling': ['confirmed', 'cancelled'],
    'confirmed': ['completed', 'cancelled', 'no-show'],
    'rescheduled': ['confirmed'],
    'no-show': [],
    'cancelled': [],
    'completed': [],
}

TERMINAL_STATUSES = frozenset(s for s, targets in STATUS_TRANSITIONS.items() if not targets)

_STATUS_TAGS = {
    'unpaid': ('Unpaid', DANGER),
    'not_paid': ('Unpaid', DANGER),
    'pending': ('Pending', WARNING),
    'pending_match': ('Finding Therapist', WARNING),
    'matched_pending_therapist_acceptance': ('Pending Approval', WARNING),
    'pending_approval': ('Pending Approval', WARNING),
    'pending_scheduling': ('Scheduling', WARNING),
    'confirmed': ('Confirmed', SUCCESS),
    'approved': ('Confirmed', SUCCESS),
    'in_progress': ('In Progress', WARNING),
    'completed': ('Completed', SUCCESS),
    'completed_pending_validation': ('Completed', SUCCESS),
    'completed_validated': ('Completed', SUCCESS),
    'cancelled': ('Cancelled', DANGER),
    'rejected': ('Rejected', DANGER),
    'no-show': ('No Show', DANGER),
    'no_show': ('No Show', DANGER),
    'rescheduled': ('Rescheduled', WARNING),
}

LAPSED_SUBSCRIPTION_LABELS = {
    'canceled': ('CANCELED', DANGER),
    'past_due': ('PAST DUE', WARNING),
    'unpaid': ('UNPAID', DANGER),
}

SESSION_PAID_STATUSES = frozenset({'completed', 'paid'})
SESSION_UNPAID_STATUSES = frozenset({'not_paid', 'unpaid', 'pending'})


class StatusTag(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    style: str


class PaymentReconciliation(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    style: str
    resolved: bool
    code: str
    detail: Optional[str] = None


class SessionPaymentTag(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: Optional[int] = None
    date: Optional[str] = None
    label: str
    style: str
    paid: bool


class SessionPaymentSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    paid: int
    total: int
    label: str
    sessions: List[SessionPaymentTag] = []


class PayoutTag(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    style: str
    eligible: bool


class AppointmentReconciliation(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: StatusTag
    payment: PaymentReconciliation
    sessions: SessionPaymentSummary
    payout: PayoutTag
    can_complete: bool
    can_link_payment: bool
    payout_eligible: bool


def normalize_status(status) -> Optional[str]:
    """Maps a raw workflow status, legacy values included, onto the current set."""
    if not isinstance(status, str) or not status.strip():
        return None
    status = status.strip().lower()
    status = LEGACY_STATUSES.get(status, status)
    return status if status in STATUS_TRANSITIONS else None


def allowed_transitions(status) -> List[str]:
    return list(STATUS_TRANSITIONS.get(normalize_status(status), []))


def is_transition_allowed(from_status, to_status) -> bool:
    target = normalize_status(to_status)
    return target is not None and target in allowed_transitions(from_status)


def describe_status(status, decline_comment=None, is_accepted=None) -> StatusTag:
    raw = status.strip().lower() if isinstance(status, str) else None
    if raw is None or raw not in _STATUS_TAGS:
        return StatusTag(label='Unknown', style=NEUTRAL)

    if normalize_status(raw) == 'cancelled' and is_accepted is False and decline_comment:
        return StatusTag(label='Rejected', style=DANGER)

    label, style = _STATUS_TAGS[raw]
    return StatusTag(label=label, style=style)


def reconcile_payment(appointment) -> PaymentReconciliation:
    """Picks the single payment outcome for an appointment.

    Checked in order, first match wins:
    balance, active subscription, missing checkout session, failed
    verification, lapsed subscription, verified payment, and finally pending.
    """
    signals = load_appointment_signals(appointment)
    subscription = signals.stripe_subscription_status

    if signals.is_balance is BalanceFlag.BALANCE_USED:
        return PaymentReconciliation(
            label='Balance Used', style=SUCCESS, resolved=True, code='balance',
            detail='Settled from the patient balance'
        )

    if subscription == 'active' and signals.is_stripe_active:
        return PaymentReconciliation(
            label='Active Subscription', style=SUCCESS, resolved=True, code='subscription'
        )

    if not signals.checkout_session_id:
        return PaymentReconciliation(
            label='No Payment', style=NEUTRAL, resolved=False, code='no_payment',
            detail='No payment attempt recorded'
        )

    if signals.stripe_verified is False:
        return PaymentReconciliation(
            label='Payment Verification Failed', style=DANGER, resolved=False,
            code='verification_failed',
            detail='The payment processor could not confirm this payment; retry verification'
        )

    if subscription in LAPSED_SUBSCRIPTION_LABELS:
        label, style = LAPSED_SUBSCRIPTION_LABELS[subscription]
        return PaymentReconciliation(
            label=label, style=style, resolved=False, code='subscription_lapsed',
            detail=f'Subscription status: {subscription}'
        )

    if signals.stripe_verified is True or signals.stripe_payment_status == 'paid':
        return PaymentReconciliation(label='Paid', style=SUCCESS, resolved=True, code='paid')

    return PaymentReconciliation(label='Pending', style=WARNING, resolved=False, code='pending')


def describe_session_payment(session) -> SessionPaymentTag:
    """Paid/unpaid tag for one sub-session, from its own payment status only."""
    signals = load_session_signals(session)
    payment_status = signals.payment_status

    if payment_status in SESSION_PAID_STATUSES:
        label, style, paid = 'Paid', SUCCESS, True
    elif payment_status == 'refunded':
        label, style, paid = 'Refunded', NEUTRAL, False
    elif payment_status == 'failed':
        label, style, paid = 'Payment Failed', DANGER, False
    elif payment_status in SESSION_UNPAID_STATUSES:
        label, style, paid = 'Unpaid', WARNING, False
    else:
        label, style, paid = 'Pending', WARNING, False

    return SessionPaymentTag(index=signals.index, date=signals.date, label=label, style=style, paid=paid)


def session_payment_summary(appointment) -> SessionPaymentSummary:
    signals = load_appointment_signals(appointment)
    tags = [describe_session_payment(session) for session in signals.sessions]
    paid = sum(1 for tag in tags if tag.paid)
    return SessionPaymentSummary(
        paid=paid,
        total=len(tags),
        label=f'{paid} of {len(tags)} paid',
        sessions=tags,
    )


def describe_payout(appointment, payment: Optional[PaymentReconciliation] = None) -> PayoutTag:
    signals = load_appointment_signals(appointment)
    if payment is None:
        payment = reconcile_payment(signals)

    if signals.therapist_paid:
        return PayoutTag(label='Paid Out', style=SUCCESS, eligible=False)
    if signals.is_payout_rejected:
        return PayoutTag(label='Payout Rejected', style=DANGER, eligible=False)
    if payment.resolved and signals.therapist_id is not None:
        return PayoutTag(label='Awaiting Payout', style=WARNING, eligible=True)
    return PayoutTag(label='Not Payable', style=NEUTRAL, eligible=False)


def reconcile(appointment) -> AppointmentReconciliation:
    """Full reconciled view of an appointment, recomputed on every call."""
    signals = load_appointment_signals(appointment)
    payment = reconcile_payment(signals)
    payout = describe_payout(signals, payment)
    status = normalize_status(signals.status)

    return AppointmentReconciliation(
        status=describe_status(signals.status, signals.decline_comment, signals.is_accepted),
        payment=payment,
        sessions=session_payment_summary(signals),
        payout=payout,
        can_complete=payment.resolved and is_transition_allowed(status, 'completed'),
        can_link_payment=not payment.resolved and status not in TERMINAL_STATUSES,
        payout_eligible=payout.eligible,
    )


# Raw status values, legacy ones included, that mean the appointment is over
CLOSED_STATUS_VALUES = frozenset(
    raw for raw in list(STATUS_TRANSITIONS) + list(LEGACY_STATUSES)
    if normalize_status(raw) in TERMINAL_STATUSES
)
