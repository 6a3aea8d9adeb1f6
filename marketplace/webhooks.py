"""
Payment gateway webhook processing.

Each delivery is verified, de-duplicated by event id and dispatched to the
escrow coordinator. The resulting state change and the ProcessedWebhookEvent
record are committed together, so a redelivery after a crash either sees the
record (and does nothing) or repeats the whole effect.
"""

import json
import logging

from django.db import DatabaseError, IntegrityError, transaction

from .escrow import EscrowCoordinator
from .exceptions import (
    Conflict,
    InvalidSignature,
    MalformedEvent,
    RetryableWebhookError,
)
from .models import ProcessedWebhookEvent

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = 'X-Gateway-Signature'
TIMESTAMP_HEADER = 'X-Gateway-Timestamp'

RESULT_PROCESSED = 'processed'
RESULT_DUPLICATE = 'duplicate'
RESULT_IGNORED = 'ignored'

BOOKING_EVENTS = {
    'authorization.succeeded': 'on_authorization_succeeded',
    'authorization.failed': 'on_authorization_failed',
    'capture.succeeded': 'on_capture_succeeded',
    'capture.failed': 'on_capture_failed',
}

REFUND_EVENTS = {
    'refund.succeeded': 'on_refund_succeeded',
    'refund.failed': 'on_refund_failed',
}


class WebhookEventProcessor:
    """
    Turns signed gateway notifications into escrow state changes.

    Expected payload::

        {
            "id": "evt_123",
            "type": "authorization.succeeded",
            "data": {"payment_reference": "pay_...", "refund_reference": "re_..."}
        }
    """

    def __init__(self, coordinator=None):
        self.coordinator = coordinator or EscrowCoordinator()

    @property
    def gateway(self):
        return self.coordinator.gateway

    def process(self, payload, signature, timestamp):
        """
        Handle one delivery.

        Args:
            payload: Raw request body (bytes)
            signature: Signature header value
            timestamp: Timestamp header value

        Returns:
            str: 'processed', 'duplicate' or 'ignored'

        Raises:
            InvalidSignature: Signature or timestamp check failed
            MalformedEvent: Body is not a usable event
            RetryableWebhookError: Event could not be applied now
        """
        if not self.gateway.verify_signature(payload, signature, timestamp):
            logger.warning("Rejected webhook delivery with invalid signature")
            raise InvalidSignature()

        event = self.parse(payload)
        event_id = event['id']
        event_type = event['type']

        if ProcessedWebhookEvent.objects.filter(event_id=event_id).exists():
            logger.info(f"Duplicate webhook event {event_id} ({event_type}) acknowledged")
            return RESULT_DUPLICATE

        try:
            with transaction.atomic():
                result, booking, outcome = self._dispatch(event)
                ProcessedWebhookEvent.objects.create(
                    event_id=event_id,
                    event_type=event_type,
                    booking=booking,
                    outcome=outcome,
                )
        except IntegrityError:
            # Lost the race against a concurrent delivery of the same event
            if ProcessedWebhookEvent.objects.filter(event_id=event_id).exists():
                logger.info(f"Concurrent duplicate of webhook event {event_id} acknowledged")
                return RESULT_DUPLICATE
            logger.error(f"Integrity error while applying webhook event {event_id}", exc_info=True)
            raise RetryableWebhookError()
        except Conflict:
            logger.warning(f"Booking changed while applying webhook event {event_id}; asking for redelivery")
            raise RetryableWebhookError()
        except DatabaseError:
            logger.error(f"Database error while applying webhook event {event_id}", exc_info=True)
            raise RetryableWebhookError()

        logger.info(f"Webhook event {event_id} ({event_type}) handled: {outcome}")
        return result

    @staticmethod
    def parse(payload):
        try:
            event = json.loads(payload)
        except (TypeError, ValueError, UnicodeDecodeError):
            raise MalformedEvent('Webhook body is not valid JSON.')

        if not isinstance(event, dict):
            raise MalformedEvent('Webhook body must be a JSON object.')

        for key in ('id', 'type'):
            if not isinstance(event.get(key), str) or not event[key]:
                raise MalformedEvent(f'Webhook event is missing "{key}".')

        data = event.get('data') or {}
        if not isinstance(data, dict):
            raise MalformedEvent('Webhook event "data" must be an object.')
        event['data'] = data
        return event

    def _dispatch(self, event):
        event_type = event['type']
        data = event['data']

        if event_type not in BOOKING_EVENTS and event_type not in REFUND_EVENTS:
            logger.info(f"Ignoring unsupported webhook event type {event_type} ({event['id']})")
            return RESULT_IGNORED, None, ProcessedWebhookEvent.OUTCOME_IGNORED

        booking = self._booking_for(event)

        if event_type in BOOKING_EVENTS:
            handler = getattr(self.coordinator, BOOKING_EVENTS[event_type])
            applied = handler(booking)
        else:
            refund = self._refund_for(booking, data, event['id'])
            handler = getattr(self.coordinator, REFUND_EVENTS[event_type])
            applied = handler(booking, refund)

        outcome = ProcessedWebhookEvent.OUTCOME_APPLIED if applied else ProcessedWebhookEvent.OUTCOME_NOOP
        return RESULT_PROCESSED, booking, outcome

    def _booking_for(self, event):
        reference = event['data'].get('payment_reference')
        if not reference:
            raise MalformedEvent(f'Webhook event {event["id"]} has no payment_reference.')

        booking = self.coordinator.store.get_by_payment_reference(reference)
        if booking is None:
            # The reference may belong to a booking whose creation has not committed yet
            logger.warning(f"Webhook event {event['id']} references unknown payment {reference}")
            raise RetryableWebhookError(f'Unknown payment reference {reference}.')
        return booking

    @staticmethod
    def _refund_for(booking, data, event_id):
        refunds = booking.refunds.all()
        refund = None
        if data.get('refund_reference'):
            refund = refunds.filter(gateway_reference=data['refund_reference']).first()
        if refund is None and data.get('idempotency_key'):
            refund = refunds.filter(idempotency_key=data['idempotency_key']).first()

        if refund is None:
            if not data.get('refund_reference') and not data.get('idempotency_key'):
                raise MalformedEvent(f'Webhook event {event_id} does not identify a refund.')
            logger.warning(f"Webhook event {event_id} references an unknown refund of booking {booking.id}")
            raise RetryableWebhookError('Unknown refund reference.')
        return refund
