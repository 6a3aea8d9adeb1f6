"""
Booking store: repository access to booking records.

All status writes go through ``compare_and_set``, a single conditional
UPDATE that only matches while the stored ``status``/``payment_status``
still equal the values the caller read. Two writers racing on the same
booking therefore cannot both win; the loser gets ``Conflict``.
"""

import logging

from django.core.exceptions import ValidationError
from django.utils import timezone

from .exceptions import BookingNotFound, Conflict
from .models import Booking
from .state_machine import BookingStatus, PaymentStatus

logger = logging.getLogger(__name__)


class BookingStore:
    """Thin repository over the Booking table."""

    def get(self, booking_id):
        try:
            return Booking.objects.select_related('consumer', 'provider', 'listing').get(pk=booking_id)
        except (Booking.DoesNotExist, ValueError, ValidationError):
            # Malformed UUIDs raise ValidationError before the query runs
            raise BookingNotFound(f'Booking with ID {booking_id} does not exist.')

    def get_by_payment_reference(self, payment_reference):
        return (
            Booking.objects.select_related('consumer', 'provider', 'listing')
            .filter(payment_reference=payment_reference)
            .first()
        )

    def create(self, **fields):
        return Booking.objects.create(**fields)

    def compare_and_set(self, booking, expected_status=None, expected_payment_status=None, **changes):
        """
        Apply ``changes`` only if the stored state still matches.

        Args:
            booking: Booking instance the caller read
            expected_status: Required stored status (defaults to booking.status)
            expected_payment_status: Required stored payment status
                (defaults to booking.payment_status)
            **changes: Field values to write

        Returns:
            Booking: Fresh copy of the updated record

        Raises:
            Conflict: If another writer changed the booking first
        """
        expected_status = expected_status or booking.status
        expected_payment_status = expected_payment_status or booking.payment_status

        changes['updated_at'] = timezone.now()
        updated = Booking.objects.filter(
            pk=booking.pk,
            status=expected_status,
            payment_status=expected_payment_status,
        ).update(**changes)

        if updated == 0:
            logger.warning(
                f"Optimistic update lost for booking {booking.pk}: "
                f"expected {expected_status}/{expected_payment_status}"
            )
            raise Conflict(
                f'Booking {booking.pk} is no longer {expected_status}/{expected_payment_status}. '
                f'Reload it and retry.'
            )

        return self.get(booking.pk)

    def set_payment_reference(self, booking, payment_reference, requested_at):
        """Record the gateway transaction id; only succeeds while unset."""
        updated = Booking.objects.filter(
            pk=booking.pk,
            payment_reference__isnull=True,
        ).update(
            payment_reference=payment_reference,
            authorization_requested_at=requested_at,
            updated_at=timezone.now(),
        )
        if updated == 0:
            raise Conflict(f'Booking {booking.pk} already has a payment reference.')
        return self.get(booking.pk)

    def stale_authorizations(self, cutoff):
        """Bookings still waiting for an authorization requested before ``cutoff``."""
        return (
            Booking.objects.filter(
                payment_status=PaymentStatus.PENDING,
                authorization_requested_at__lt=cutoff,
            )
            .exclude(status__in=[BookingStatus.COMPLETED, BookingStatus.CANCELLED])
            .order_by('authorization_requested_at')
        )
