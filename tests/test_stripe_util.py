from decimal import Decimal
from types import SimpleNamespace

import pytest
import requests

from app.utils import stripe_util
from app.utils.stripe_util import StripeClient, StripeError


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code

    def json(self):
        return self._payload


@pytest.fixture
def client():
    client = StripeClient()
    client.secret_key = 'sk_test_123'
    client.api_base = 'https://stripe.test/v1'
    return client


@pytest.fixture
def stripe_api(monkeypatch):
    """Routes requests.get to canned responses keyed by path."""
    routes = {}
    calls = []

    def fake_get(url, params=None, auth=None, timeout=None):
        path = url.replace('https://stripe.test/v1/', '')
        calls.append({'path': path, 'params': params, 'auth': auth, 'timeout': timeout})
        response = routes.get(path)
        if isinstance(response, Exception):
            raise response
        if response is None:
            return FakeResponse({'error': {'message': f'No such object: {path}'}}, 404)
        return response

    monkeypatch.setattr(stripe_util.requests, 'get', fake_get)
    return SimpleNamespace(routes=routes, calls=calls)


def test_paid_checkout_session(client, stripe_api):
    stripe_api.routes['checkout/sessions/cs_1'] = FakeResponse({
        'payment_status': 'paid',
        'payment_intent': {'status': 'succeeded'},
        'subscription': None,
    })

    result = client.verify_payment('cs_1')

    assert result['payment_status'] == 'paid'
    assert result['is_active'] is True
    assert result['subscription_status'] == 'none'
    call = stripe_api.calls[0]
    assert call['auth'] == ('sk_test_123', '')
    assert ('expand[]', 'subscription') in call['params']


def test_past_due_subscription(client, stripe_api):
    stripe_api.routes['checkout/sessions/cs_2'] = FakeResponse({
        'payment_status': 'paid',
        'subscription': {'status': 'past_due'},
    })

    result = client.verify_payment('cs_2')

    assert result['subscription_status'] == 'past_due'
    assert result['is_active'] is False


def test_failed_payment_intent_reports_error(client, stripe_api):
    stripe_api.routes['payment_intents/pi_9'] = FakeResponse({
        'status': 'requires_payment_method',
        'last_payment_error': {'message': 'Your card was declined.'},
    })

    result = client.verify_payment(payment_intent_id='pi_9')

    assert result['payment_status'] == 'failed'
    assert result['last_payment_error'] == 'Your card was declined.'


def test_charge_linked_in_place_of_checkout(client, stripe_api):
    stripe_api.routes['charges/ch_5'] = FakeResponse({'paid': True, 'status': 'succeeded'})
    assert client.verify_payment('ch_5')['payment_status'] == 'paid'


def test_nothing_to_verify(client, stripe_api):
    result = client.verify_payment()
    assert result['payment_status'] == 'none'
    assert stripe_api.calls == []


def test_verify_payment_id_valid(client, stripe_api):
    stripe_api.routes['payment_intents/pi_ok'] = FakeResponse({
        'status': 'succeeded', 'amount_received': 12050, 'currency': 'aed',
    })

    result = client.verify_payment_id('pi_ok')

    assert result['status'] == 'valid'
    assert result['amount'] == Decimal('120.50')
    assert result['currency'] == 'aed'


def test_verify_payment_id_not_found(client, stripe_api):
    result = client.verify_payment_id('cs_missing')
    assert result['status'] == 'invalid'
    assert result['reason'] == 'Payment not found'


def test_verify_payment_id_unpaid(client, stripe_api):
    stripe_api.routes['charges/ch_1'] = FakeResponse({'paid': False, 'status': 'failed', 'amount': 500})
    result = client.verify_payment_id('ch_1')
    assert result['status'] == 'invalid'
    assert result['reason'] == 'Payment has not succeeded'


def test_verify_payment_id_rejects_unknown_prefix(client, stripe_api):
    result = client.verify_payment_id('in_123')
    assert result['status'] == 'invalid'
    assert stripe_api.calls == []


def test_server_error_is_raised(client, stripe_api):
    stripe_api.routes['payment_intents/pi_boom'] = FakeResponse({}, 500)
    with pytest.raises(StripeError) as excinfo:
        client.verify_payment_id('pi_boom')
    assert excinfo.value.status_code == 500


def test_network_failure_is_wrapped(client, stripe_api):
    stripe_api.routes['payment_intents/pi_slow'] = requests.ConnectionError('timed out')
    with pytest.raises(StripeError):
        client.verify_payment(payment_intent_id='pi_slow')


def test_unconfigured_client_refuses_lookups():
    with pytest.raises(StripeError):
        StripeClient().verify_payment('cs_1')


def test_customer_lookup_and_payment_list(client, stripe_api):
    stripe_api.routes['customers'] = FakeResponse({'data': [{'id': 'cus_1'}]})
    stripe_api.routes['payment_intents'] = FakeResponse({'data': [
        {'id': 'pi_1', 'amount': 10000, 'currency': 'aed', 'status': 'succeeded', 'created': 1714000000},
        {'id': 'pi_2', 'amount': 5000, 'currency': 'aed', 'status': 'canceled', 'created': None},
    ]})

    assert client.find_customer_id_by_email('alex@example.com') == 'cus_1'
    listing = client.list_customer_payments('cus_1')

    assert listing['summary'] == {'total_count': 2, 'succeeded_count': 1, 'total_paid': Decimal('100')}
    assert listing['payments'][0]['created'].startswith('2024-04-24')


def test_refresh_appointment_payment(client, stripe_api):
    stripe_api.routes['checkout/sessions/cs_1'] = FakeResponse({
        'payment_status': 'paid', 'payment_intent': {'status': 'succeeded'},
    })
    appointment = SimpleNamespace(
        id=1, is_balance=None, checkout_session_id='cs_1', stripe_payment_intent_id=None,
        stripe_verified=None, stripe_payment_status=None, stripe_subscription_status=None,
        is_stripe_active=None, stripe_checked_at=None,
    )

    client.refresh_appointment_payment(appointment)

    assert appointment.stripe_verified is True
    assert appointment.stripe_payment_status == 'paid'
    assert appointment.stripe_checked_at is not None


def test_refresh_marks_failed_verification(client, stripe_api):
    appointment = SimpleNamespace(
        id=2, is_balance=False, checkout_session_id='cs_gone', stripe_payment_intent_id=None,
        stripe_verified=None, stripe_checked_at=None,
    )

    assert client.refresh_appointment_payment(appointment) is None
    assert appointment.stripe_verified is False


def test_refresh_skips_balance_appointments(client, stripe_api):
    appointment = SimpleNamespace(id=3, is_balance=True, stripe_verified=None)
    assert client.refresh_appointment_payment(appointment) is None
    assert appointment.stripe_verified is None
    assert stripe_api.calls == []


def test_refresh_marks_declined_payment_as_failed(client, stripe_api):
    stripe_api.routes['payment_intents/pi_9'] = FakeResponse({
        'status': 'requires_payment_method',
        'last_payment_error': {'message': 'Your card was declined.'},
    })
    appointment = SimpleNamespace(
        id=4, is_balance=None, checkout_session_id=None, stripe_payment_intent_id='pi_9',
        stripe_verified=None, stripe_payment_status=None, stripe_subscription_status=None,
        is_stripe_active=None, stripe_checked_at=None,
    )

    client.refresh_appointment_payment(appointment)

    assert appointment.stripe_payment_status == 'failed'
    assert appointment.stripe_verified is False
