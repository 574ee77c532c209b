# /app/utils/payout_util.py
"""Therapist payout amounts: a level-based share of each session price."""
import logging
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

from app.schemas import load_appointment_signals

logger = logging.getLogger(__name__)

CENTS = Decimal('0.01')
DEFAULT_PERCENTAGE = Decimal('0.50')
DEFAULT_LEVEL_PERCENTAGES = {2: Decimal('0.57')}


def _to_decimal(value):
    if value is None or isinstance(value, bool):
        return None
    try:
        value = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return value if value.is_finite() else None


def _to_level(level):
    try:
        return int(level)
    except (TypeError, ValueError):
        return None


def _valid_override(override):
    """Returns the override as a Decimal when it lies in (0, 1], else None."""
    value = _to_decimal(override)
    if value is None:
        return None
    if value <= 0 or value > 1:
        logger.warning("Ignoring out-of-range payment percentage override: %s", override)
        return None
    return value


def _level_table(percentages):
    if percentages is None:
        return DEFAULT_LEVEL_PERCENTAGES
    table = {}
    for level, value in percentages.items():
        level, value = _to_level(level), _to_decimal(value)
        if level is not None and value is not None:
            table[level] = value
    return table


def payout_percentage(level, override=None, percentages=None, default=None) -> Decimal:
    """Share of the price owed to a therapist of the given level.

    A valid explicit override wins regardless of level.
    """
    explicit = _valid_override(override)
    if explicit is not None:
        return explicit
    table = _level_table(percentages)
    fallback = _to_decimal(default) or DEFAULT_PERCENTAGE
    return table.get(_to_level(level), fallback)


def quantize(amount) -> Decimal:
    return (_to_decimal(amount) or Decimal('0')).quantize(CENTS, rounding=ROUND_HALF_UP)


def adjusted_price(price, level, override=None, percentages=None, default=None) -> Decimal:
    percentage = payout_percentage(level, override, percentages, default)
    return quantize((_to_decimal(price) or Decimal('0')) * percentage)


def payout_sessions(appointment):
    """The sessions a payout covers, each with the nominal price it pays on.

    An appointment without sub-sessions counts as one main session at its
    full price. Sub-sessions without a price of their own share the
    appointment price evenly over ``total_sessions``. A ``recurring`` list
    omits the main session, so it is put back in front at that share.
    """
    signals = load_appointment_signals(appointment)
    price = signals.price or Decimal('0')

    if not signals.sessions:
        return [{
            'index': 0,
            'date': None,
            'price': price,
            'payment_percentage': None,
        }]

    main_missing = signals.recurring_only
    counted = len(signals.sessions) + (1 if main_missing else 0)
    total_sessions = signals.total_sessions or counted
    share = price / Decimal(total_sessions) if total_sessions else Decimal('0')

    payout = []
    if main_missing:
        payout.append({'index': 0, 'date': None, 'price': share, 'payment_percentage': None})
    for position, session in enumerate(signals.sessions):
        if main_missing:
            index = position + 1
        else:
            index = session.index if session.index is not None else position
        payout.append({
            'index': index,
            'date': session.date,
            'price': session.price if session.price is not None else share,
            'payment_percentage': session.payment_percentage,
        })
    return payout


def summarize_appointment(appointment, level, percentages=None, default=None):
    signals = load_appointment_signals(appointment)
    appointment_override = _valid_override(signals.payment_percentage)
    base_percentage = payout_percentage(level, appointment_override, percentages, default)

    sessions = []
    for session in payout_sessions(signals):
        override = _valid_override(session['payment_percentage'])
        percentage = override if override is not None else base_percentage
        sessions.append({
            'index': session['index'],
            'date': session['date'],
            'price': quantize(session['price']),
            'payment_percentage': percentage,
            'adjusted_price': quantize(session['price'] * percentage),
        })

    return {
        'appointment_id': signals.id,
        'payment_percentage': base_percentage,
        'sessions': sessions,
        'total': sum((s['adjusted_price'] for s in sessions), Decimal('0.00')),
    }


def summarize_therapist(appointments, level, percentages=None, default=None):
    """Total payable to one therapist over the given appointments."""
    summaries = [
        summarize_appointment(appointment, level, percentages, default)
        for appointment in appointments
    ]
    return {
        'level': _to_level(level),
        'appointments': summaries,
        'session_count': sum(len(s['sessions']) for s in summaries),
        'total': sum((s['total'] for s in summaries), Decimal('0.00')),
    }
