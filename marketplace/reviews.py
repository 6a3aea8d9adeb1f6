"""
Review creation.

A review is accepted only for a completed booking, from one of its two
parties, about the other party. The rating projections of the reviewee and
the listing are recomputed in the same transaction.
"""

import logging

from django.db import IntegrityError, transaction

from .exceptions import (
    BookingNotCompleted,
    DuplicateReview,
    Forbidden,
    InvalidRating,
    SelfReview,
)
from .models import Review
from .ratings import recalculate_listing_rating, recalculate_user_rating
from .state_machine import BookingStatus
from .store import BookingStore

logger = logging.getLogger(__name__)


def validate_rating(rating):
    # bool is an int subclass; True must not pass as 1
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise InvalidRating()
    return rating


def create_review(booking_id, reviewer, rating, comment='', reviewee=None, store=None):
    """
    Record a review and refresh the affected ratings.

    Args:
        booking_id: Booking being reviewed
        reviewer: User writing the review
        rating: Integer between 1 and 5
        comment: Optional free text
        reviewee: User being reviewed (defaults to the other party)

    Returns:
        Review: The created review

    Raises:
        BookingNotFound, Forbidden, SelfReview, InvalidRating,
        BookingNotCompleted, DuplicateReview
    """
    store = store or BookingStore()
    booking = store.get(booking_id)

    if not booking.is_participant(reviewer):
        raise Forbidden('Only the consumer or provider of this booking can review it.')

    counterparty = booking.provider if reviewer.id == booking.consumer_id else booking.consumer
    if reviewee is None:
        reviewee = counterparty

    if reviewee.id == reviewer.id:
        raise SelfReview()

    if reviewee.id != counterparty.id:
        raise Forbidden('You can only review the other party of this booking.')

    validate_rating(rating)

    if booking.status != BookingStatus.COMPLETED:
        raise BookingNotCompleted()

    if Review.objects.filter(booking=booking, reviewer=reviewer).exists():
        raise DuplicateReview()

    try:
        with transaction.atomic():
            review = Review.objects.create(
                booking=booking,
                reviewer=reviewer,
                reviewee=reviewee,
                rating=rating,
                comment=comment or '',
            )
            recalculate_user_rating(reviewee)
            if reviewee.id == booking.provider_id:
                recalculate_listing_rating(booking.listing)
    except IntegrityError:
        # Concurrent submission won the unique constraint
        raise DuplicateReview()

    logger.info(
        f"Review created. Booking ID: {booking.id}, Reviewer: {reviewer.id}, "
        f"Reviewee: {reviewee.id}, Rating: {rating}"
    )
    return review
