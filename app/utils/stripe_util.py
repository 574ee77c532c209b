# /app/utils/stripe_util.py
import logging
from datetime import datetime
from decimal import Decimal

import requests

logger = logging.getLogger(__name__)


class StripeError(Exception):
    """Raised when the payment processor cannot be reached or rejects a request."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _empty_result():
    return {
        'payment_status': 'none',
        'subscription_status': 'none',
        'is_active': False,
        'payment_intent_status': None,
        'last_payment_error': None,
    }


def _minor_to_major(amount):
    if amount is None:
        return None
    return Decimal(amount) / Decimal(100)


class StripeClient:
    """
    Minimal Stripe REST client for payment verification lookups.
    It must be initialized with the Flask app to load the secret key.
    """
    def __init__(self, app=None):
        self.secret_key = None
        self.api_base = 'https://api.stripe.com/v1'
        self.timeout = 20
        if app:
            self.init_app(app)

    def init_app(self, app):
        self.secret_key = app.config.get('STRIPE_SECRET_KEY')
        self.api_base = app.config.get('STRIPE_API_BASE', self.api_base).rstrip('/')
        self.timeout = app.config.get('STRIPE_TIMEOUT_SECONDS', self.timeout)
        if not self.secret_key:
            app.logger.warning("STRIPE_SECRET_KEY not configured. Payment verification is disabled.")

    @property
    def is_configured(self):
        return bool(self.secret_key)

    def _get(self, path, params=None):
        if not self.secret_key:
            raise StripeError("Stripe is not configured")

        try:
            response = requests.get(
                f"{self.api_base}/{path}",
                params=params,
                auth=(self.secret_key, ''),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Stripe request to {path} failed: {e}")
            raise StripeError(f"Could not reach Stripe: {e}") from e

        if response.status_code >= 400:
            try:
                message = response.json().get('error', {}).get('message')
            except ValueError:
                message = None
            message = message or f"Stripe returned HTTP {response.status_code}"
            logger.warning(f"Stripe request to {path} rejected ({response.status_code}): {message}")
            raise StripeError(message, status_code=response.status_code)

        return response.json()

    @staticmethod
    def _apply_payment_intent(result, intent):
        status = intent.get('status')
        result['payment_intent_status'] = status
        if status == 'succeeded':
            result['payment_status'] = 'paid'
            result['is_active'] = True
        elif status == 'requires_payment_method':
            result['payment_status'] = 'failed'
            error = intent.get('last_payment_error') or {}
            result['last_payment_error'] = error.get('message')
        elif status == 'canceled':
            result['payment_status'] = 'unpaid'

    def verify_payment(self, checkout_session_id=None, payment_intent_id=None):
        """Looks up the current payment and subscription state of a checkout.

        A checkout session is preferred; a payment intent (or a charge id
        linked in place of a session) is the fallback.
        """
        result = _empty_result()
        reference = checkout_session_id or payment_intent_id

        if checkout_session_id and checkout_session_id.startswith('cs_'):
            session = self._get(
                f"checkout/sessions/{checkout_session_id}",
                params=[('expand[]', 'payment_intent'), ('expand[]', 'subscription')],
            )
            result['payment_status'] = session.get('payment_status') or 'none'

            intent = session.get('payment_intent')
            if isinstance(intent, dict):
                self._apply_payment_intent(result, intent)

            subscription = session.get('subscription')
            if isinstance(subscription, dict):
                result['subscription_status'] = subscription.get('status') or 'none'
                result['is_active'] = result['subscription_status'] == 'active'
                if session.get('payment_status') == 'paid' and result['is_active']:
                    result['payment_status'] = 'paid'
            return result

        if reference and reference.startswith('pi_'):
            self._apply_payment_intent(result, self._get(f"payment_intents/{reference}"))
            return result

        if reference and reference.startswith('ch_'):
            charge = self._get(f"charges/{reference}")
            if charge.get('paid') and charge.get('status') == 'succeeded':
                result['payment_status'] = 'paid'
                result['is_active'] = True
            elif charge.get('status') == 'failed':
                result['payment_status'] = 'failed'
                result['last_payment_error'] = charge.get('failure_message')
            return result

        return result

    def verify_payment_id(self, payment_id):
        """Checks that a historical payment id exists and was actually paid."""
        invalid = {'status': 'invalid', 'id': payment_id, 'amount': None, 'currency': None}

        try:
            if payment_id.startswith('cs_'):
                session = self._get(f"checkout/sessions/{payment_id}")
                paid = session.get('payment_status') == 'paid'
                amount, currency = session.get('amount_total'), session.get('currency')
            elif payment_id.startswith('pi_'):
                intent = self._get(f"payment_intents/{payment_id}")
                paid = intent.get('status') == 'succeeded'
                amount, currency = intent.get('amount_received') or intent.get('amount'), intent.get('currency')
            elif payment_id.startswith('ch_'):
                charge = self._get(f"charges/{payment_id}")
                paid = bool(charge.get('paid')) and charge.get('status') == 'succeeded'
                amount, currency = charge.get('amount'), charge.get('currency')
            else:
                return {**invalid, 'reason': 'Unsupported payment id format'}
        except StripeError as e:
            if e.status_code == 404:
                return {**invalid, 'reason': 'Payment not found'}
            raise

        if not paid:
            return {**invalid, 'reason': 'Payment has not succeeded', 'amount': _minor_to_major(amount), 'currency': currency}

        return {
            'status': 'valid',
            'reason': None,
            'id': payment_id,
            'amount': _minor_to_major(amount),
            'currency': currency,
        }

    def find_customer_id_by_email(self, email):
        if not email:
            return None
        customers = self._get("customers", params={'email': email, 'limit': 1})
        data = customers.get('data') or []
        return data[0].get('id') if data else None

    def list_customer_payments(self, customer_id, limit=100):
        """Payments of one customer, newest first, with a paid total."""
        response = self._get("payment_intents", params={'customer': customer_id, 'limit': limit})
        payments = []
        for intent in response.get('data') or []:
            created = intent.get('created')
            payments.append({
                'id': intent.get('id'),
                'amount': _minor_to_major(intent.get('amount')),
                'currency': intent.get('currency'),
                'status': intent.get('status'),
                'description': intent.get('description'),
                'created': datetime.utcfromtimestamp(created).isoformat() if created else None,
            })

        succeeded = [p for p in payments if p['status'] == 'succeeded']
        summary = {
            'total_count': len(payments),
            'succeeded_count': len(succeeded),
            'total_paid': sum((p['amount'] or Decimal('0') for p in succeeded), Decimal('0')),
        }
        return {'payments': payments, 'summary': summary}

    def refresh_appointment_payment(self, appointment):
        """Re-verifies an appointment and stores the processor's signals on it.

        Balance-settled appointments are skipped. The caller commits.
        """
        if appointment.is_balance:
            return None

        appointment.stripe_checked_at = datetime.utcnow()
        try:
            result = self.verify_payment(
                appointment.checkout_session_id, appointment.stripe_payment_intent_id
            )
        except StripeError as e:
            logger.warning(f"Payment verification failed for appointment {appointment.id}: {e}")
            appointment.stripe_verified = False
            return None

        appointment.stripe_payment_status = result['payment_status']
        appointment.stripe_subscription_status = result['subscription_status']
        appointment.is_stripe_active = result['is_active']
        # Unknown until the processor settles; an explicit failure is shown as such
        appointment.stripe_verified = {'paid': True, 'failed': False}.get(result['payment_status'])
        return result


# Create a single, uninitialized instance to be imported by other modules.
stripe_client = StripeClient()
