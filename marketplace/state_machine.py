"""
Booking and payment state machines.

Fulfilment (``BookingStatus``) and money (``PaymentStatus``) settle on
different timelines, so they are tracked as two independent enums. The
tables below are the only place the legal edges and the legal combinations
of the two are written down; the escrow coordinator consults them before
every write.
"""

from django.db import models
from django.utils.translation import gettext_lazy as _


class BookingStatus(models.TextChoices):
    PENDING = 'pending', _('Pending')
    ACCEPTED = 'accepted', _('Accepted')
    IN_PROGRESS = 'in_progress', _('In progress')
    COMPLETED = 'completed', _('Completed')
    CANCELLED = 'cancelled', _('Cancelled')


class PaymentStatus(models.TextChoices):
    PENDING = 'pending', _('Pending')
    AUTHORIZED = 'authorized', _('Authorized')
    PAID = 'paid', _('Paid')
    FAILED = 'failed', _('Failed')
    REFUNDED = 'refunded', _('Refunded')
    PARTIALLY_REFUNDED = 'partially_refunded', _('Partially refunded')


BOOKING_TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.ACCEPTED, BookingStatus.CANCELLED},
    BookingStatus.ACCEPTED: {BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED},
    BookingStatus.IN_PROGRESS: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
}

# Refund edges are the only way out of paid/partially_refunded; nothing
# re-enters pending or authorized.
PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.AUTHORIZED, PaymentStatus.FAILED},
    PaymentStatus.AUTHORIZED: {
        PaymentStatus.PAID,
        PaymentStatus.REFUNDED,
        PaymentStatus.PARTIALLY_REFUNDED,
    },
    PaymentStatus.PAID: {PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED},
    PaymentStatus.PARTIALLY_REFUNDED: {
        PaymentStatus.PARTIALLY_REFUNDED,
        PaymentStatus.REFUNDED,
    },
    PaymentStatus.REFUNDED: set(),
    PaymentStatus.FAILED: set(),
}

TERMINAL_BOOKING_STATUSES = frozenset(
    status for status, targets in BOOKING_TRANSITIONS.items() if not targets
)

SETTLED_PAYMENT_STATUSES = frozenset({
    PaymentStatus.PAID,
    PaymentStatus.REFUNDED,
    PaymentStatus.PARTIALLY_REFUNDED,
    PaymentStatus.FAILED,
})

REFUNDABLE_PAYMENT_STATUSES = frozenset({
    PaymentStatus.AUTHORIZED,
    PaymentStatus.PAID,
    PaymentStatus.PARTIALLY_REFUNDED,
})

# Which payment states may coexist with each fulfilment state.
ALLOWED_COMBINATIONS = {
    BookingStatus.PENDING: {PaymentStatus.PENDING, PaymentStatus.AUTHORIZED},
    BookingStatus.ACCEPTED: {PaymentStatus.PENDING, PaymentStatus.AUTHORIZED},
    BookingStatus.IN_PROGRESS: {PaymentStatus.PENDING, PaymentStatus.AUTHORIZED},
    BookingStatus.COMPLETED: {
        PaymentStatus.AUTHORIZED,
        PaymentStatus.PAID,
        PaymentStatus.REFUNDED,
        PaymentStatus.PARTIALLY_REFUNDED,
    },
    BookingStatus.CANCELLED: {
        PaymentStatus.PENDING,
        PaymentStatus.AUTHORIZED,
        PaymentStatus.FAILED,
        PaymentStatus.REFUNDED,
        PaymentStatus.PARTIALLY_REFUNDED,
    },
}


def can_transition_booking(current, new):
    """Return True if ``current -> new`` is an edge of the booking machine."""
    try:
        return BookingStatus(new) in BOOKING_TRANSITIONS[BookingStatus(current)]
    except (ValueError, KeyError):
        return False


def can_transition_payment(current, new):
    """Return True if ``current -> new`` is an edge of the payment machine."""
    try:
        return PaymentStatus(new) in PAYMENT_TRANSITIONS[PaymentStatus(current)]
    except (ValueError, KeyError):
        return False


def is_consistent(status, payment_status):
    """Return True if the fulfilment/payment pair is an allowed combination."""
    try:
        return PaymentStatus(payment_status) in ALLOWED_COMBINATIONS[BookingStatus(status)]
    except (ValueError, KeyError):
        return False


def is_terminal(status):
    return status in TERMINAL_BOOKING_STATUSES
