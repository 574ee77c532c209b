import copy
import itertools

import pytest

from app.schemas import BalanceFlag, load_appointment_signals
from app.utils.status_util import (
    CLOSED_STATUS_VALUES, allowed_transitions, describe_payout, describe_session_payment,
    describe_status, is_transition_allowed, normalize_status, reconcile, reconcile_payment,
    session_payment_summary,
)

SUBSCRIPTIONS = [None, 'none', 'canceled', 'past_due', 'unpaid', 'active']
TRI_STATE = [True, False, None]


def test_balance_wins_over_every_other_signal():
    for verified, subscription, active, checkout in itertools.product(
        TRI_STATE, SUBSCRIPTIONS, TRI_STATE, [None, 'cs_123']
    ):
        result = reconcile_payment({
            'isBalance': True,
            'stripeVerified': verified,
            'stripeSubscriptionStatus': subscription,
            'isStripeActive': active,
            'checkoutSessionId': checkout,
        })
        assert result.label == 'Balance Used'
        assert result.resolved is True


def test_missing_checkout_session_means_no_payment():
    for balance, verified, subscription, active in itertools.product(
        [False, None], TRI_STATE, SUBSCRIPTIONS, TRI_STATE
    ):
        if subscription == 'active' and active:
            continue
        result = reconcile_payment({
            'isBalance': balance,
            'stripeVerified': verified,
            'stripeSubscriptionStatus': subscription,
            'isStripeActive': active,
            'checkoutSessionId': None,
        })
        assert result.label == 'No Payment'
        assert result.resolved is False


def test_failed_verification_beats_subscription_and_paid_signals():
    for subscription, active, payment_status in itertools.product(
        SUBSCRIPTIONS, TRI_STATE, [None, 'paid', 'unpaid']
    ):
        if subscription == 'active' and active:
            continue
        result = reconcile_payment({
            'checkoutSessionId': 'cs_123',
            'stripeVerified': False,
            'stripeSubscriptionStatus': subscription,
            'isStripeActive': active,
            'stripePaymentStatus': payment_status,
        })
        assert result.label == 'Payment Verification Failed'
        assert result.style == 'danger'
        assert result.resolved is False


def test_lapsed_subscription_labels_are_distinct():
    base = {'checkoutSessionId': 'cs_123', 'isStripeActive': False}
    canceled = reconcile_payment({**base, 'stripeSubscriptionStatus': 'canceled'})
    past_due = reconcile_payment({**base, 'stripeSubscriptionStatus': 'past_due'})

    assert 'canceled' in canceled.label.lower()
    assert canceled.label != past_due.label
    assert canceled.resolved is False
    assert past_due.resolved is False


def test_active_subscription_is_resolved():
    result = reconcile_payment({
        'stripeSubscriptionStatus': 'active',
        'isStripeActive': True,
        'checkoutSessionId': 'cs_sub',
    })
    assert result.label == 'Active Subscription'
    assert result.resolved is True


def test_active_subscription_without_checkout_session():
    result = reconcile_payment({'stripeSubscriptionStatus': 'active', 'isStripeActive': True})
    assert result.label == 'Active Subscription'


def test_verified_one_time_payment_is_paid():
    result = reconcile_payment({
        'isBalance': None,
        'checkoutSessionId': 'cs_1',
        'stripeVerified': True,
        'stripeSubscriptionStatus': 'none',
    })
    assert result.label == 'Paid'
    assert result.resolved is True


def test_past_due_subscription_reads_past_due():
    result = reconcile_payment({
        'stripeSubscriptionStatus': 'past_due',
        'isStripeActive': False,
        'checkoutSessionId': 'cs_3',
    })
    assert result.label == 'PAST DUE'
    assert result.resolved is False


def test_checkout_without_verification_is_pending():
    result = reconcile_payment({'checkoutSessionId': 'cs_1'})
    assert result.label == 'Pending'
    assert result.style == 'warning'
    assert result.resolved is False


def test_processor_paid_status_counts_as_paid():
    result = reconcile_payment({'checkoutSessionId': 'cs_1', 'stripePaymentStatus': 'paid'})
    assert result.label == 'Paid'


def test_is_stripe_verified_alias_is_accepted():
    result = reconcile_payment({'checkoutSessionId': 'cs_1', 'isStripeVerified': 'false'})
    assert result.label == 'Payment Verification Failed'


def test_malformed_input_falls_back_to_no_payment():
    garbage = {
        'isBalance': 'maybe',
        'stripeVerified': 42,
        'sessions': 'nope',
        'checkoutSessionId': ['x'],
        'price': 'a lot',
    }
    result = reconcile_payment(garbage)
    assert result.label == 'No Payment'
    assert reconcile_payment(None).label == 'No Payment'
    assert reconcile(object()).payment.label == 'No Payment'


def test_reconciliation_is_idempotent_and_leaves_input_untouched():
    appointment = {
        'status': 'confirmed',
        'checkoutSessionId': 'cs_1',
        'stripeVerified': True,
        'therapistId': 4,
        'recurring': [{'date': '2024-05-01', 'paymentStatus': 'completed'}, '2024-05-08'],
    }
    snapshot = copy.deepcopy(appointment)

    assert reconcile(appointment) == reconcile(appointment)
    assert appointment == snapshot


def test_balance_flag_reads_tri_state():
    assert load_appointment_signals({'isBalance': True}).is_balance is BalanceFlag.BALANCE_USED
    assert load_appointment_signals({'isBalance': False}).is_balance is BalanceFlag.NOT_BALANCE_USED
    assert load_appointment_signals({}).is_balance is BalanceFlag.UNSET
    assert load_appointment_signals({'is_balance': 'balance_used'}).is_balance is BalanceFlag.BALANCE_USED


def test_therapist_reference_may_be_an_object():
    signals = load_appointment_signals({'therapist': {'id': 9, 'name': 'Dr. Who'}})
    assert signals.therapist_id == 9


@pytest.mark.parametrize('raw, expected', [
    ('approved', 'confirmed'),
    ('not_paid', 'unpaid'),
    ('completed_validated', 'completed'),
    ('no_show', 'no-show'),
    ('PENDING_MATCH', 'pending_match'),
    ('whatever', None),
    (None, None),
    (7, None),
])
def test_normalize_status(raw, expected):
    assert normalize_status(raw) == expected


def test_transitions():
    assert is_transition_allowed('confirmed', 'completed')
    assert is_transition_allowed('approved', 'completed')
    assert is_transition_allowed('matched_pending_therapist_acceptance', 'pending_scheduling')
    assert not is_transition_allowed('pending_match', 'completed')
    assert not is_transition_allowed('confirmed', 'bogus')
    assert allowed_transitions('completed') == []
    assert allowed_transitions('cancelled') == []
    assert allowed_transitions(None) == []


def test_closed_status_values_include_legacy_terminal_statuses():
    assert {'completed', 'cancelled', 'no-show', 'rejected', 'no_show', 'completed_validated'} <= CLOSED_STATUS_VALUES
    assert 'confirmed' not in CLOSED_STATUS_VALUES


def test_describe_status():
    assert describe_status('approved').label == 'Confirmed'
    assert describe_status('pending_match').label == 'Finding Therapist'
    assert describe_status('no-show').style == 'danger'
    assert describe_status('mystery').label == 'Unknown'
    assert describe_status(None).style == 'neutral'


def test_declined_cancellation_reads_rejected():
    tag = describe_status('cancelled', decline_comment='Not my specialty', is_accepted=False)
    assert tag.label == 'Rejected'
    assert describe_status('cancelled').label == 'Cancelled'


def test_session_payment_tags():
    assert describe_session_payment({'paymentStatus': 'completed'}).paid is True
    assert describe_session_payment({'paymentStatus': 'not_paid'}).label == 'Unpaid'
    assert describe_session_payment({'paymentStatus': 'failed'}).label == 'Payment Failed'
    assert describe_session_payment({'paymentStatus': 'refunded'}).paid is False
    assert describe_session_payment('2024-05-01').label == 'Unpaid'


def test_session_summary_counts_paid_sessions():
    summary = session_payment_summary({
        'sessions': [
            {'paymentStatus': 'completed'},
            {'paymentStatus': 'not_paid'},
            {'paymentStatus': 'completed'},
        ]
    })
    assert summary.paid == 2
    assert summary.total == 3
    assert summary.label == '2 of 3 paid'
    assert [tag.index for tag in summary.sessions] == [0, 1, 2]


def test_session_summary_ignores_appointment_payment_status():
    summary = session_payment_summary({'paymentStatus': 'completed', 'recurring': ['2024-05-01']})
    assert summary.label == '0 of 1 paid'


def test_payout_tag():
    paid = {'checkoutSessionId': 'cs_1', 'stripeVerified': True, 'therapistId': 3}
    assert describe_payout(paid).label == 'Awaiting Payout'
    assert describe_payout({**paid, 'therapistPaid': True}).label == 'Paid Out'
    assert describe_payout({**paid, 'isPayoutRejected': True}).label == 'Payout Rejected'
    assert describe_payout({**paid, 'therapistId': None}).eligible is False


def test_full_reconciliation_gates():
    paid = reconcile({
        'status': 'confirmed', 'checkoutSessionId': 'cs_1', 'stripeVerified': True, 'therapistId': 5,
    })
    assert paid.can_complete is True
    assert paid.can_link_payment is False
    assert paid.payout_eligible is True

    unpaid = reconcile({'status': 'confirmed', 'therapistId': 5})
    assert unpaid.can_complete is False
    assert unpaid.can_link_payment is True

    closed = reconcile({'status': 'cancelled'})
    assert closed.can_link_payment is False


@pytest.mark.parametrize('price', ['NaN', 'Infinity', '-inf'])
def test_non_finite_price_does_not_hide_payment(price):
    appointment = {'checkoutSessionId': 'cs_1', 'stripeVerified': True, 'price': price}
    assert load_appointment_signals(appointment).price is None
    assert reconcile_payment(appointment).label == 'Paid'


def test_recurring_items_carry_payment_under_payment_key():
    summary = session_payment_summary({
        'recurring': [
            {'date': '2024-05-08', 'status': 'completed', 'payment': 'paid'},
            {'date': '2024-05-15', 'status': 'completed', 'payment': 'not_paid'},
        ]
    })
    assert summary.label == '1 of 2 paid'
    assert [tag.paid for tag in summary.sessions] == [True, False]
