"""
Escrow coordinator.

Owns every change to a booking's ``status`` and ``payment_status``:

- consumer/provider actions (create, accept, start, complete, cancel,
  capture, refund), and
- gateway confirmations delivered by marketplace.webhooks.

Writes are optimistic check-and-set operations through BookingStore, and
each one is checked against the transition and correlation tables in
marketplace.state_machine. Gateway calls are made outside of any database
transaction that guards a state change.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from functools import partial

from django.conf import settings
from django.db import transaction
from django.db.models import F, Sum
from django.utils import timezone

from .exceptions import (
    Conflict,
    Forbidden,
    InvalidAmount,
    InvalidLocation,
    InvalidSchedule,
    InvalidTransition,
    ListingUnavailable,
    MarketplaceError,
    PaymentGatewayError,
    PaymentNotCapturable,
    PaymentNotRefundable,
)
from .gateway import get_gateway
from .models import Booking, Refund
from .pricing import CENT, haversine_km, quote_for_listing, to_money
from .state_machine import (
    REFUNDABLE_PAYMENT_STATUSES,
    BookingStatus,
    PaymentStatus,
    can_transition_booking,
    can_transition_payment,
    is_consistent,
    is_terminal,
)
from .store import BookingStore

logger = logging.getLogger(__name__)

# Largest price_total the Booking column can hold
_price_field = Booking._meta.get_field('price_total')
MAX_BOOKING_TOTAL = Decimal(10) ** (_price_field.max_digits - _price_field.decimal_places) - CENT


def idempotency_key(booking_id, operation, sequence=None):
    """Gateway idempotency key derived from the booking and the operation."""
    key = f'booking-{booking_id}-{operation}'
    if sequence is not None:
        key = f'{key}-{sequence}'
    return key


@dataclass
class BookingCreation:
    booking: Booking
    client_token: str


@dataclass
class TransitionResult:
    """Outcome of a fulfilment action plus any payment follow-up it triggered."""

    booking: Booking
    payment_action: str = None
    payment_outcome: dict = field(default_factory=dict)


class EscrowCoordinator:
    """
    Booking lifecycle and payment escrow orchestration.

    Args:
        gateway: PaymentGateway backend (defaults to the configured one)
        store: BookingStore instance
    """

    def __init__(self, gateway=None, store=None):
        self.gateway = gateway or get_gateway()
        self.store = store or BookingStore()

    # ------------------------------------------------------------------
    # Creation and authorization
    # ------------------------------------------------------------------

    def create_booking(self, consumer, listing, scheduled_at, dropoff_location,
                       pickup_location='', special_instructions='',
                       pickup_latitude=None, pickup_longitude=None,
                       dropoff_latitude=None, dropoff_longitude=None,
                       distance_km=None, duration_minutes=None, now=None):
        """
        Create a pending booking and request a payment hold for its price.

        The booking stays payment-pending until the gateway confirms the hold
        through a webhook. If the hold cannot even be requested, the booking
        is kept as cancelled/failed for audit and PaymentGatewayError is raised.

        Returns:
            BookingCreation: The booking and the client token the consumer
            uses to complete payment with the gateway.
        """
        now = now or timezone.now()

        if consumer is None or not consumer.is_consumer():
            raise Forbidden('Only consumers can create bookings.')

        if listing.provider_id == consumer.id:
            raise Forbidden('You cannot book your own listing.')

        if not listing.availability_status:
            raise ListingUnavailable()

        self._validate_schedule(scheduled_at, now)
        self._validate_location(
            listing, dropoff_location, pickup_location,
            pickup_latitude, pickup_longitude, dropoff_latitude, dropoff_longitude,
        )

        if distance_km is None:
            if None not in (pickup_latitude, pickup_longitude, dropoff_latitude, dropoff_longitude):
                distance_km = haversine_km(
                    pickup_latitude, pickup_longitude, dropoff_latitude, dropoff_longitude
                )
            else:
                distance_km = Decimal('0')

        try:
            quote = quote_for_listing(listing, distance_km, duration_minutes or 0)
        except ValueError as exc:
            raise InvalidAmount(str(exc))

        if quote.total > MAX_BOOKING_TOTAL:
            raise InvalidAmount(
                f'Total price of {quote.total} exceeds the maximum bookable amount of {MAX_BOOKING_TOTAL}.'
            )

        booking = self.store.create(
            consumer=consumer,
            provider=listing.provider,
            listing=listing,
            scheduled_at=scheduled_at,
            pickup_location=(pickup_location or '').strip(),
            dropoff_location=dropoff_location.strip(),
            pickup_latitude=pickup_latitude,
            pickup_longitude=pickup_longitude,
            dropoff_latitude=dropoff_latitude,
            dropoff_longitude=dropoff_longitude,
            special_instructions=special_instructions or '',
            distance_km=distance_km,
            duration_minutes=duration_minutes or 0,
            price_total=quote.total,
        )

        logger.info(
            f"Booking created. Booking ID: {booking.id}, Listing: {listing.id}, "
            f"Consumer: {consumer.id}, Provider: {listing.provider_id}, "
            f"Price: {quote.total}, Scheduled: {scheduled_at.isoformat()}"
        )

        try:
            authorization = self.gateway.authorize(
                amount=booking.price_total,
                idempotency_key=idempotency_key(booking.id, 'authorize'),
                metadata={'booking_id': str(booking.id)},
            )
        except PaymentGatewayError:
            logger.error(f"Authorization request failed for booking {booking.id}; cancelling it")
            self._write(
                booking,
                status=BookingStatus.CANCELLED,
                payment_status=PaymentStatus.FAILED,
                cancelled_at=timezone.now(),
            )
            raise

        booking = self.store.set_payment_reference(booking, authorization.reference, timezone.now())
        logger.info(
            f"Authorization requested. Booking ID: {booking.id}, "
            f"Payment reference: {authorization.reference}"
        )
        return BookingCreation(booking=booking, client_token=authorization.client_token)

    @staticmethod
    def _validate_schedule(scheduled_at, now):
        if not isinstance(scheduled_at, datetime):
            raise InvalidSchedule('Scheduled time is required.')
        if timezone.is_naive(scheduled_at):
            raise InvalidSchedule('Scheduled time must include timezone information.')
        if scheduled_at <= now:
            raise InvalidSchedule('Scheduled time must be in the future.')

    @staticmethod
    def _validate_location(listing, dropoff_location, pickup_location,
                           pickup_latitude, pickup_longitude,
                           dropoff_latitude, dropoff_longitude):
        if not dropoff_location or not dropoff_location.strip():
            raise InvalidLocation('Dropoff location is required.')

        if listing.requires_pickup and (not pickup_location or not pickup_location.strip()):
            raise InvalidLocation('Pickup location is required for this listing.')

        if listing.requires_coordinates and (dropoff_latitude is None or dropoff_longitude is None):
            raise InvalidLocation('Dropoff coordinates are required for this listing.')

        # Coordinates come in pairs
        if (pickup_latitude is None) != (pickup_longitude is None):
            raise InvalidLocation('Pickup latitude and longitude must be provided together.')
        if (dropoff_latitude is None) != (dropoff_longitude is None):
            raise InvalidLocation('Dropoff latitude and longitude must be provided together.')

        for name, value, bound in (
            ('Pickup latitude', pickup_latitude, 90),
            ('Pickup longitude', pickup_longitude, 180),
            ('Dropoff latitude', dropoff_latitude, 90),
            ('Dropoff longitude', dropoff_longitude, 180),
        ):
            if value is not None and not -bound <= Decimal(str(value)) <= bound:
                raise InvalidLocation(f'{name} must be between -{bound} and {bound}.')

    # ------------------------------------------------------------------
    # Fulfilment transitions
    # ------------------------------------------------------------------

    def accept(self, booking_id, actor):
        booking = self.store.get(booking_id)
        self._require_provider(booking, actor)
        booking = self._transition(booking, BookingStatus.ACCEPTED)
        logger.info(f"Booking accepted. Booking ID: {booking.id}, Provider: {actor.id}")
        return TransitionResult(booking=booking)

    def start(self, booking_id, actor):
        booking = self.store.get(booking_id)
        self._require_provider(booking, actor)
        booking = self._transition(booking, BookingStatus.IN_PROGRESS)
        logger.info(f"Booking started. Booking ID: {booking.id}, Provider: {actor.id}")
        return TransitionResult(booking=booking)

    def complete(self, booking_id, actor):
        """
        Mark the job done and request capture of the held funds.

        A failed capture request does not undo completion; it is reported in
        the result and can be retried with ``capture``.
        """
        booking = self.store.get(booking_id)
        self._require_provider(booking, actor)
        self._check_transition(booking, BookingStatus.COMPLETED)

        if booking.payment_status != PaymentStatus.AUTHORIZED:
            raise PaymentNotCapturable(
                f'Booking {booking.id} cannot be completed: payment is {booking.payment_status}, '
                f'not authorized.'
            )

        booking = self._write(
            booking,
            status=BookingStatus.COMPLETED,
            completed_at=timezone.now(),
        )
        logger.info(f"Booking completed. Booking ID: {booking.id}, Provider: {actor.id}")

        try:
            booking = self._request_capture(booking)
            outcome = {'requested': True}
        except PaymentGatewayError as exc:
            outcome = {'requested': False, 'error': str(exc.detail)}

        return TransitionResult(booking=booking, payment_action='capture', payment_outcome=outcome)

    def cancel(self, booking_id, actor, refund_amount=None):
        """
        Cancel a non-terminal booking and release or refund any held funds.

        The refund is best effort: its outcome is reported separately and a
        gateway failure does not undo the cancellation.
        """
        booking = self.store.get(booking_id)

        if not (booking.is_participant(actor) or getattr(actor, 'is_staff', False)):
            raise Forbidden('You do not have permission to modify this booking.')

        self._check_transition(booking, BookingStatus.CANCELLED)

        if refund_amount is not None:
            if booking.payment_status not in REFUNDABLE_PAYMENT_STATUSES:
                raise PaymentNotRefundable(
                    f'Booking {booking.id} has no captured or held funds to refund.'
                )
            self._validate_refund_amount(booking, refund_amount, self._outstanding_refunds(booking))

        previous_status = booking.status
        booking = self._write(
            booking,
            status=BookingStatus.CANCELLED,
            cancelled_at=timezone.now(),
        )
        logger.info(
            f"Booking cancelled. Booking ID: {booking.id}, Previous status: {previous_status}, "
            f"Payment status: {booking.payment_status}, Actor: {actor.id}"
        )

        if booking.payment_status not in REFUNDABLE_PAYMENT_STATUSES:
            return TransitionResult(booking=booking)

        try:
            refund = self._issue_refund(booking, refund_amount, actor)
            outcome = {'requested': True, 'refund_id': refund.id, 'amount': str(refund.amount)}
        except MarketplaceError as exc:
            logger.error(f"Refund after cancellation failed for booking {booking.id}: {exc.detail}")
            outcome = {'requested': False, 'error': str(exc.detail)}

        return TransitionResult(
            booking=self.store.get(booking.id),
            payment_action='refund',
            payment_outcome=outcome,
        )

    # ------------------------------------------------------------------
    # Explicit payment operations
    # ------------------------------------------------------------------

    def capture(self, booking_id, actor):
        """Request capture for a completed booking whose hold is authorized."""
        booking = self.store.get(booking_id)

        if booking.provider_id != getattr(actor, 'id', None):
            raise Forbidden('Only the booking provider can capture payment.')

        if booking.status != BookingStatus.COMPLETED or booking.payment_status != PaymentStatus.AUTHORIZED:
            raise PaymentNotCapturable(
                f'Booking {booking.id} is {booking.status}/{booking.payment_status}; capture requires '
                f'a completed booking with an authorized payment.'
            )

        return self._request_capture(booking)

    def refund(self, booking_id, actor, amount=None):
        """
        Refund all or part of a booking's payment.

        Returns:
            Refund: The refund request sent to the gateway
        """
        booking = self.store.get(booking_id)

        if booking.provider_id != getattr(actor, 'id', None) and not getattr(actor, 'is_staff', False):
            raise Forbidden('Only the booking provider or platform staff can issue refunds.')

        if booking.payment_status not in REFUNDABLE_PAYMENT_STATUSES:
            raise PaymentNotRefundable(
                f'Payment for booking {booking.id} is {booking.payment_status} and cannot be refunded.'
            )

        if booking.payment_status == PaymentStatus.AUTHORIZED and not is_terminal(booking.status):
            raise PaymentNotRefundable('Cancel the booking to release its payment hold.')

        return self._issue_refund(booking, amount, actor)

    def _request_capture(self, booking):
        result = self.gateway.capture(
            payment_reference=booking.payment_reference,
            amount=booking.price_total,
            idempotency_key=idempotency_key(booking.id, 'capture', booking.capture_attempt),
        )
        booking = self._write(booking, capture_requested_at=timezone.now())
        logger.info(
            f"Capture requested. Booking ID: {booking.id}, Amount: {booking.price_total}, "
            f"Gateway status: {result.status}"
        )
        return booking

    def _outstanding_refunds(self, booking):
        total = booking.refunds.exclude(status=Refund.STATUS_FAILED).aggregate(total=Sum('amount'))['total']
        return total or Decimal('0.00')

    def _validate_refund_amount(self, booking, amount, outstanding):
        try:
            amount = to_money(amount)
        except ValueError as exc:
            raise InvalidAmount(str(exc))

        if amount <= 0:
            raise InvalidAmount('Refund amount must be greater than 0.')

        if outstanding + amount > booking.price_total:
            raise InvalidAmount(
                f'Refund of {amount} would exceed the remaining refundable balance of '
                f'{booking.price_total - outstanding}.'
            )

        # A completed booking's hold is awaiting capture; a cancelled one may be partly released
        if (booking.status == BookingStatus.COMPLETED
                and booking.payment_status == PaymentStatus.AUTHORIZED
                and amount != booking.price_total - outstanding):
            raise InvalidAmount('The payment hold of a completed booking can only be released in full.')

        return amount

    def _issue_refund(self, booking, amount, actor):
        """
        Record a refund request and send it to the gateway.

        A request that never reached the gateway (e.g. a timeout) is resent
        with its original idempotency key before any new refund is created.
        """
        with transaction.atomic():
            # Serialises refund requests for this booking
            locked = Booking.objects.select_for_update().get(pk=booking.pk)

            unsent = locked.refunds.filter(
                status=Refund.STATUS_REQUESTED, gateway_reference__isnull=True
            ).first()

            if unsent is not None:
                if amount is not None and to_money(amount) != unsent.amount:
                    raise InvalidAmount(
                        f'A refund of {unsent.amount} for this booking is still pending.'
                    )
                refund = unsent
            else:
                outstanding = self._outstanding_refunds(locked)
                if amount is None:
                    amount = locked.price_total - outstanding
                    if amount <= 0:
                        raise PaymentNotRefundable(f'Booking {locked.id} has already been fully refunded.')
                amount = self._validate_refund_amount(locked, amount, outstanding)

                sequence = locked.refunds.count() + 1
                refund = Refund.objects.create(
                    booking=locked,
                    amount=amount,
                    idempotency_key=idempotency_key(locked.id, 'refund', sequence),
                    requested_by=actor if getattr(actor, 'pk', None) else None,
                )

        result = self.gateway.refund(
            payment_reference=booking.payment_reference,
            amount=refund.amount,
            idempotency_key=refund.idempotency_key,
        )
        Refund.objects.filter(pk=refund.pk, gateway_reference__isnull=True).update(
            gateway_reference=result.reference
        )
        refund.refresh_from_db()

        logger.info(
            f"Refund requested. Booking ID: {booking.id}, Refund ID: {refund.id}, "
            f"Amount: {refund.amount}, Gateway reference: {refund.gateway_reference}"
        )
        return refund

    # ------------------------------------------------------------------
    # Gateway confirmations (called by marketplace.webhooks)
    # ------------------------------------------------------------------

    def on_authorization_succeeded(self, booking):
        if booking.payment_status != PaymentStatus.PENDING:
            logger.info(
                f"Ignoring authorization success for booking {booking.id}: "
                f"payment already {booking.payment_status}"
            )
            return False

        booking = self._write(booking, payment_status=PaymentStatus.AUTHORIZED)
        logger.info(f"Payment authorized. Booking ID: {booking.id}")

        if booking.status == BookingStatus.CANCELLED:
            # Hold confirmed after the booking was cancelled: give it back
            transaction.on_commit(partial(self._release_hold, booking.id))
        return True

    def on_authorization_failed(self, booking):
        if booking.payment_status != PaymentStatus.PENDING:
            logger.info(
                f"Ignoring authorization failure for booking {booking.id}: "
                f"payment already {booking.payment_status}"
            )
            return False

        changes = {'payment_status': PaymentStatus.FAILED}
        if not is_terminal(booking.status):
            changes.update(status=BookingStatus.CANCELLED, cancelled_at=timezone.now())
        booking = self._write(booking, **changes)
        logger.info(f"Payment authorization failed; booking {booking.id} cancelled")
        return True

    def on_capture_succeeded(self, booking):
        if booking.payment_status != PaymentStatus.AUTHORIZED or booking.status != BookingStatus.COMPLETED:
            logger.info(
                f"Ignoring capture success for booking {booking.id}: "
                f"state is {booking.status}/{booking.payment_status}"
            )
            return False

        booking = self._write(booking, payment_status=PaymentStatus.PAID)
        logger.info(f"Payment captured. Booking ID: {booking.id}, Amount: {booking.price_total}")
        return True

    def on_capture_failed(self, booking):
        if booking.payment_status != PaymentStatus.AUTHORIZED:
            return False

        # Hold stays authorized so the provider can retry the capture under a new key
        booking = self._write(booking, capture_requested_at=None, capture_attempt=F('capture_attempt') + 1)
        logger.error(
            f"Gateway reported capture failure for booking {booking.id}; "
            f"next capture attempt: {booking.capture_attempt}"
        )
        return True

    def on_refund_succeeded(self, booking, refund):
        confirmed = Refund.objects.filter(pk=refund.pk, status=Refund.STATUS_REQUESTED).update(
            status=Refund.STATUS_SUCCEEDED,
            confirmed_at=timezone.now(),
        )
        if not confirmed:
            logger.info(f"Refund {refund.id} for booking {booking.id} already settled")
            return False

        refunded = booking.refunds.filter(
            status=Refund.STATUS_SUCCEEDED
        ).aggregate(total=Sum('amount'))['total'] or Decimal('0.00')

        target = PaymentStatus.REFUNDED if refunded >= booking.price_total else PaymentStatus.PARTIALLY_REFUNDED
        changes = {'refunded_amount': refunded}

        if can_transition_payment(booking.payment_status, target) and is_consistent(booking.status, target):
            changes['payment_status'] = target
        else:
            logger.error(
                f"Refund {refund.id} confirmed but booking {booking.id} cannot move from "
                f"{booking.payment_status} to {target}; recording amount only"
            )

        booking = self._write(booking, **changes)
        logger.info(
            f"Refund confirmed. Booking ID: {booking.id}, Refund ID: {refund.id}, "
            f"Refunded total: {refunded}, Payment status: {booking.payment_status}"
        )
        return True

    def on_refund_failed(self, booking, refund):
        failed = Refund.objects.filter(pk=refund.pk, status=Refund.STATUS_REQUESTED).update(
            status=Refund.STATUS_FAILED,
            confirmed_at=timezone.now(),
        )
        if failed:
            logger.error(f"Gateway reported refund failure. Booking ID: {booking.id}, Refund ID: {refund.id}")
        return bool(failed)

    def _release_hold(self, booking_id):
        booking = self.store.get(booking_id)
        try:
            self._issue_refund(booking, None, actor=None)
        except MarketplaceError as exc:
            logger.error(f"Could not release hold for cancelled booking {booking_id}: {exc.detail}")

    # ------------------------------------------------------------------
    # Timeouts
    # ------------------------------------------------------------------

    def expire_stale_authorizations(self, now=None):
        """
        Cancel bookings whose hold was never confirmed within the timeout.

        Returns:
            list: IDs of the bookings that were expired
        """
        now = now or timezone.now()
        cutoff = now - settings.PAYMENT_AUTHORIZATION_TIMEOUT
        expired = []

        for booking in self.store.stale_authorizations(cutoff):
            try:
                self._write(
                    booking,
                    status=BookingStatus.CANCELLED,
                    payment_status=PaymentStatus.FAILED,
                    cancelled_at=now,
                )
            except Conflict:
                # A confirmation landed first
                continue
            expired.append(booking.id)
            logger.info(
                f"Authorization expired. Booking ID: {booking.id}, "
                f"Requested at: {booking.authorization_requested_at}"
            )

        return expired

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_provider(booking, actor):
        if booking.provider_id != getattr(actor, 'id', None):
            raise Forbidden('Only the booking provider can perform this action.')

    @staticmethod
    def _check_transition(booking, new_status):
        if not can_transition_booking(booking.status, new_status):
            raise InvalidTransition(
                f'Invalid status transition from {booking.status} to {new_status}.'
            )

    def _transition(self, booking, new_status):
        self._check_transition(booking, new_status)
        return self._write(booking, status=new_status)

    def _write(self, booking, **changes):
        """Guarded write of ``changes`` against the state ``booking`` was read in."""
        new_status = changes.get('status', booking.status)
        new_payment_status = changes.get('payment_status', booking.payment_status)

        if new_status != booking.status and not can_transition_booking(booking.status, new_status):
            raise InvalidTransition(
                f'Invalid status transition from {booking.status} to {new_status}.'
            )
        if (new_payment_status != booking.payment_status
                and not can_transition_payment(booking.payment_status, new_payment_status)):
            raise InvalidTransition(
                f'Invalid payment status transition from {booking.payment_status} to {new_payment_status}.'
            )
        if not is_consistent(new_status, new_payment_status):
            raise InvalidTransition(
                f'A {new_status} booking cannot have payment status {new_payment_status}.'
            )

        return self.store.compare_and_set(
            booking,
            expected_status=booking.status,
            expected_payment_status=booking.payment_status,
            **changes,
        )
