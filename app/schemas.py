# /app/schemas.py
"""
Request bodies and internal signal models.

Incoming JSON is camelCase, ORM rows and internal dicts are snake_case;
every model here accepts both. The signal models are deliberately lenient:
anything malformed becomes ``None`` instead of failing validation so that a
single bad row can never break a list response.
"""
import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, List, Literal, Optional

from pydantic import (
    AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
)
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

_TRUE_STRINGS = {'true', '1', 'yes'}
_FALSE_STRINGS = {'false', '0', 'no'}


def _lenient_bool(value):
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    return None


def _lenient_str(value):
    if value is None:
        return None
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return None


def _lenient_decimal(value):
    if value is None or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    # NaN and Infinity parse but are not amounts
    return result if result.is_finite() else None


def _lenient_int(value):
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class BalanceFlag(str, Enum):
    """Whether an appointment was settled from a pre-purchased balance."""
    UNSET = 'unset'
    BALANCE_USED = 'balance_used'
    NOT_BALANCE_USED = 'not_balance_used'

    @classmethod
    def from_value(cls, value):
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        flag = _lenient_bool(value)
        if flag is True:
            return cls.BALANCE_USED
        if flag is False:
            return cls.NOT_BALANCE_USED
        return cls.UNSET


class _SignalModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra='ignore',
    )


class SessionSignals(_SignalModel):
    """One sub-session of a multi-session appointment."""
    index: Optional[int] = None
    date: Optional[str] = None
    status: Optional[str] = 'in_progress'
    payment_status: Optional[str] = Field(
        default='not_paid',
        validation_alias=AliasChoices('payment_status', 'paymentStatus', 'payment'),
    )
    price: Optional[Decimal] = None
    payment_percentage: Optional[Decimal] = None

    @field_validator('index', mode='before')
    @classmethod
    def _index(cls, value):
        return _lenient_int(value)

    @field_validator('date', mode='before')
    @classmethod
    def _date(cls, value):
        if isinstance(value, date):
            return value.isoformat()
        return _lenient_str(value)

    @field_validator('status', mode='before')
    @classmethod
    def _status(cls, value):
        value = _lenient_str(value)
        return value.lower() if value else 'in_progress'

    @field_validator('payment_status', mode='before')
    @classmethod
    def _payment_status(cls, value):
        value = _lenient_str(value)
        return value.lower() if value else 'not_paid'

    @field_validator('price', 'payment_percentage', mode='before')
    @classmethod
    def _decimals(cls, value):
        return _lenient_decimal(value)


class AppointmentSignals(_SignalModel):
    """Everything the status mapper and payout calculator read from an appointment."""
    id: Optional[int] = None
    status: Optional[str] = None
    payment_status: Optional[str] = None
    stripe_payment_status: Optional[str] = None
    stripe_verified: Optional[bool] = Field(
        default=None,
        validation_alias=AliasChoices('stripe_verified', 'stripeVerified', 'isStripeVerified'),
    )
    stripe_subscription_status: Optional[str] = None
    is_stripe_active: Optional[bool] = None
    is_balance: BalanceFlag = BalanceFlag.UNSET
    checkout_session_id: Optional[str] = None
    therapist_id: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices('therapist_id', 'therapistId', 'therapist'),
    )
    is_accepted: Optional[bool] = None
    decline_comment: Optional[str] = None
    is_payout_rejected: Optional[bool] = None
    rejected_payout_note: Optional[str] = None
    therapist_validated: Optional[bool] = None
    therapist_paid: Optional[bool] = None
    price: Optional[Decimal] = None
    total_sessions: Optional[int] = None
    payment_percentage: Optional[Decimal] = None
    sessions: List[SessionSignals] = Field(
        default_factory=list,
        validation_alias=AliasChoices('sessions', 'recurring'),
    )
    # A `recurring` list holds only the sessions after the main one
    recurring_only: bool = False

    @model_validator(mode='before')
    @classmethod
    def _mark_recurring(cls, data):
        if isinstance(data, dict) and 'recurring' in data and 'sessions' not in data:
            data = {**data, 'recurring_only': True}
        return data

    @field_validator('id', 'therapist_id', 'total_sessions', mode='before')
    @classmethod
    def _ints(cls, value):
        if isinstance(value, dict):
            value = value.get('id') or value.get('_id')
        return _lenient_int(value)

    @field_validator(
        'status', 'payment_status', 'stripe_payment_status',
        'stripe_subscription_status', mode='before'
    )
    @classmethod
    def _lowered(cls, value):
        value = _lenient_str(value)
        return value.lower() if value else None

    @field_validator('checkout_session_id', 'decline_comment', 'rejected_payout_note', mode='before')
    @classmethod
    def _strings(cls, value):
        return _lenient_str(value)

    @field_validator(
        'stripe_verified', 'is_stripe_active', 'is_accepted', 'is_payout_rejected',
        'therapist_validated', 'therapist_paid', mode='before'
    )
    @classmethod
    def _bools(cls, value):
        return _lenient_bool(value)

    @field_validator('is_balance', mode='before')
    @classmethod
    def _balance(cls, value):
        return BalanceFlag.from_value(value)

    @field_validator('price', 'payment_percentage', mode='before')
    @classmethod
    def _decimals(cls, value):
        return _lenient_decimal(value)

    @field_validator('sessions', mode='before')
    @classmethod
    def _sessions(cls, value):
        if not isinstance(value, (list, tuple)):
            return []
        items = []
        for position, item in enumerate(value):
            if hasattr(item, 'signal_data'):
                item = item.signal_data()
            elif isinstance(item, (str, date)):
                # Plain recurring dates carry no payment data of their own
                item = {'date': item}
            elif not isinstance(item, dict):
                continue
            item = dict(item)
            item.setdefault('index', position)
            items.append(item)
        return items


def load_appointment_signals(appointment) -> AppointmentSignals:
    """Builds AppointmentSignals from a dict, an ORM row or an existing model.

    Never raises: input that cannot be read at all yields the default signals.
    """
    if isinstance(appointment, AppointmentSignals):
        return appointment
    if hasattr(appointment, 'signal_data'):
        appointment = appointment.signal_data()
    if not isinstance(appointment, dict):
        return AppointmentSignals()
    try:
        return AppointmentSignals.model_validate(appointment)
    except ValidationError as e:
        logger.warning("Unreadable appointment signals, using defaults: %s", e.errors()[:3])
        return AppointmentSignals()


def load_session_signals(session) -> SessionSignals:
    if isinstance(session, SessionSignals):
        return session
    if hasattr(session, 'signal_data'):
        session = session.signal_data()
    elif isinstance(session, (str, date)):
        session = {'date': session}
    if not isinstance(session, dict):
        return SessionSignals()
    try:
        return SessionSignals.model_validate(session)
    except ValidationError as e:
        logger.warning("Unreadable session signals, using defaults: %s", e.errors()[:3])
        return SessionSignals()


# --- Request bodies ---

class RequestModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra='ignore',
        str_strip_whitespace=True,
    )


class AppointmentFilterParams(RequestModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1)
    search: Optional[str] = None
    therapist: Optional[int] = None
    plan: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    request_token: Optional[str] = None

    @field_validator('search', 'plan', 'request_token', 'therapist', 'start_date', 'end_date', mode='before')
    @classmethod
    def _blank_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class ListParams(RequestModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1)
    search: Optional[str] = None
    request_token: Optional[str] = None


class AssignTherapistRequest(RequestModel):
    therapist_id: int


class PaymentStatusRequest(RequestModel):
    payment_status: Literal['pending', 'completed', 'refunded', 'failed']


class LinkPaymentRequest(RequestModel):
    payment_id: str = Field(min_length=3)


class VerifiedPaymentsRequest(RequestModel):
    user_id: int
    customer_id: Optional[str] = None
    email: Optional[str] = None


class BanPatientRequest(RequestModel):
    banned: bool


class RejectPayoutRequest(RequestModel):
    note: str = Field(min_length=1)


class TherapistStatusRequest(RequestModel):
    status: str = Field(min_length=1)
    decline_comment: Optional[str] = None


class ValidateSessionRequest(RequestModel):
    status: Literal['completed']


class SessionStatusRequest(RequestModel):
    status: Literal['completed', 'no-show', 'cancelled', 'in_progress']


class BalanceAdjustmentRequest(RequestModel):
    action: Literal['add', 'remove']
    amount: Decimal = Field(gt=0, decimal_places=2)
    reason: str = Field(min_length=1)


class OnboardingAnswer(RequestModel):
    question: str = Field(min_length=1)
    answer: Any = None


class OnboardingRequest(RequestModel):
    responses: List[OnboardingAnswer]


class TherapistLevelRequest(RequestModel):
    level: Literal[1, 2]


class CreatePatientRequest(RequestModel):
    username: str = Field(min_length=3)
    email: str = Field(min_length=3)
    password: str
    full_name: str = Field(min_length=1)
    telephone: Optional[str] = None
    timezone: Optional[str] = None


class CreateTherapistRequest(RequestModel):
    username: str = Field(min_length=3)
    email: str = Field(min_length=3)
    full_name: str = Field(min_length=1)
    level: Literal[1, 2] = 1
    specialization: Optional[str] = None
