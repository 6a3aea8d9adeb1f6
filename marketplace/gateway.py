"""
Payment gateway adapter.

The marketplace never moves money itself: it asks an external processor to
place a hold (authorize), turn the hold into a charge (capture) or give money
back (refund). Results of those requests arrive later as signed webhooks,
handled by marketplace.webhooks.

Every outbound call carries a caller-supplied idempotency key so a retry
after a local timeout cannot duplicate the financial effect.
"""

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from decimal import Decimal

import requests
from django.conf import settings
from django.utils.module_loading import import_string

from .exceptions import PaymentGatewayError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthorizationResult:
    reference: str
    client_token: str


@dataclass(frozen=True)
class OperationResult:
    reference: str
    status: str


def compute_signature(secret, timestamp, payload):
    """HMAC-SHA256 over ``"<timestamp>.<payload>"``, hex encoded."""
    if isinstance(payload, str):
        payload = payload.encode('utf-8')
    message = str(timestamp).encode('utf-8') + b'.' + payload
    return hmac.new(secret.encode('utf-8'), message, hashlib.sha256).hexdigest()


class PaymentGateway:
    """
    Contract every gateway backend implements.

    Subclasses implement ``authorize``, ``capture`` and ``refund``. Signature
    verification is shared: all supported processors sign
    ``"<timestamp>.<body>"`` with the webhook secret.
    """

    def __init__(self, webhook_secret='', currency='USD', tolerance_seconds=300, **options):
        self.webhook_secret = webhook_secret
        self.currency = currency
        self.tolerance_seconds = tolerance_seconds
        self.options = options

    def authorize(self, amount, idempotency_key, metadata=None):
        raise NotImplementedError

    def capture(self, payment_reference, amount, idempotency_key):
        raise NotImplementedError

    def refund(self, payment_reference, amount, idempotency_key):
        raise NotImplementedError

    def verify_signature(self, payload, signature, timestamp, now=None):
        """
        Check a webhook delivery came from the gateway.

        Args:
            payload: Raw request body (bytes)
            signature: Value of the signature header
            timestamp: Value of the timestamp header (unix seconds)
            now: Current unix time, for tests

        Returns:
            bool: True only for a fresh delivery with a matching signature
        """
        if not self.webhook_secret or not signature or not timestamp:
            return False

        try:
            sent_at = int(timestamp)
        except (TypeError, ValueError):
            logger.warning(f"Invalid webhook timestamp format: {timestamp!r}")
            return False

        current = int(now if now is not None else time.time())
        if abs(current - sent_at) > self.tolerance_seconds:
            logger.warning(
                f"Webhook timestamp outside tolerance: age={current - sent_at}s "
                f"(max {self.tolerance_seconds}s)"
            )
            return False

        expected = compute_signature(self.webhook_secret, sent_at, payload)
        return hmac.compare_digest(expected, signature)


class HTTPPaymentGateway(PaymentGateway):
    """JSON-over-HTTPS client for the hosted payment processor."""

    def __init__(self, api_url='', api_key='', timeout=10, session=None, **kwargs):
        super().__init__(**kwargs)
        self.api_url = api_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _post(self, path, payload, idempotency_key):
        url = f'{self.api_url}{path}'
        headers = {
            'Authorization': f'Bearer {self.api_key}',
            'Content-Type': 'application/json',
            'Idempotency-Key': idempotency_key,
        }
        try:
            response = self.session.post(url, json=payload, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.Timeout as exc:
            logger.error(f"Payment gateway timeout: POST {path} key={idempotency_key}", exc_info=True)
            raise PaymentGatewayError('The payment provider did not respond in time.') from exc
        except requests.HTTPError as exc:
            status_code = exc.response.status_code if exc.response is not None else 'unknown'
            logger.error(
                f"Payment gateway rejected POST {path}: status={status_code} key={idempotency_key}",
                exc_info=True,
            )
            raise PaymentGatewayError(f'The payment provider rejected the request (HTTP {status_code}).') from exc
        except (requests.RequestException, ValueError) as exc:
            logger.error(f"Payment gateway call failed: POST {path} key={idempotency_key}", exc_info=True)
            raise PaymentGatewayError() from exc

    def authorize(self, amount, idempotency_key, metadata=None):
        data = self._post(
            '/authorizations',
            {
                'amount': str(amount),
                'currency': self.currency,
                'capture_method': 'manual',
                'metadata': metadata or {},
            },
            idempotency_key,
        )
        try:
            return AuthorizationResult(reference=data['id'], client_token=data['client_token'])
        except (KeyError, TypeError) as exc:
            raise PaymentGatewayError('Unexpected authorization response from the payment provider.') from exc

    def capture(self, payment_reference, amount, idempotency_key):
        data = self._post(
            f'/authorizations/{payment_reference}/capture',
            {'amount': str(amount)},
            idempotency_key,
        )
        return OperationResult(reference=data.get('id', payment_reference), status=data.get('status', 'pending'))

    def refund(self, payment_reference, amount, idempotency_key):
        data = self._post(
            f'/authorizations/{payment_reference}/refunds',
            {'amount': str(amount)},
            idempotency_key,
        )
        try:
            return OperationResult(reference=data['id'], status=data.get('status', 'pending'))
        except (KeyError, TypeError) as exc:
            raise PaymentGatewayError('Unexpected refund response from the payment provider.') from exc


class SandboxPaymentGateway(PaymentGateway):
    """
    In-process gateway for local development and tests.

    Accepts every request and derives references from the idempotency key,
    so repeating a call returns the same reference just like the real
    processor. Confirmations are not sent; deliver them through the webhook
    endpoint (see ``compute_signature``).
    """

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.calls = []

    @staticmethod
    def _reference(prefix, idempotency_key):
        digest = hashlib.sha256(idempotency_key.encode('utf-8')).hexdigest()[:24]
        return f'{prefix}_{digest}'

    def authorize(self, amount, idempotency_key, metadata=None):
        self.calls.append(('authorize', Decimal(amount), idempotency_key))
        reference = self._reference('pay', idempotency_key)
        return AuthorizationResult(reference=reference, client_token=f'{reference}_secret')

    def capture(self, payment_reference, amount, idempotency_key):
        self.calls.append(('capture', Decimal(amount), idempotency_key))
        return OperationResult(reference=payment_reference, status='pending')

    def refund(self, payment_reference, amount, idempotency_key):
        self.calls.append(('refund', Decimal(amount), idempotency_key))
        return OperationResult(reference=self._reference('re', idempotency_key), status='pending')


def get_gateway():
    """Instantiate the gateway backend configured in ``settings.PAYMENT_GATEWAY``."""
    config = dict(settings.PAYMENT_GATEWAY)
    backend = import_string(config.pop('BACKEND'))
    return backend(
        api_url=config.get('API_URL', ''),
        api_key=config.get('API_KEY', ''),
        timeout=config.get('TIMEOUT', 10),
        webhook_secret=config.get('WEBHOOK_SECRET', ''),
        currency=config.get('CURRENCY', 'USD'),
        tolerance_seconds=getattr(settings, 'PAYMENT_WEBHOOK_TOLERANCE_SECONDS', 300),
    )
