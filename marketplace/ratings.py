"""
Rating aggregation.

Ratings are projections of the Review table: every call recomputes the mean
from all relevant reviews instead of adjusting a running value, so repeating
a recalculation is harmless and the management command can rebuild them at
any time.
"""

import logging
from decimal import Decimal, ROUND_HALF_UP

from django.db import transaction
from django.db.models import Avg, Count

from .models import Listing, Review, User

logger = logging.getLogger(__name__)

ZERO_RATING = Decimal('0.00')


def round_rating(value):
    """Two decimals, half up; no reviews means 0.00."""
    if value is None:
        return ZERO_RATING
    return Decimal(str(value)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


def compute_user_ratings(user):
    """
    Returns:
        tuple: (avg_rating_as_provider, avg_rating_as_consumer)
    """
    as_provider = Review.objects.filter(
        reviewee=user, booking__provider=user
    ).aggregate(avg=Avg('rating'))['avg']
    as_consumer = Review.objects.filter(
        reviewee=user, booking__consumer=user
    ).aggregate(avg=Avg('rating'))['avg']
    return round_rating(as_provider), round_rating(as_consumer)


def compute_listing_rating(listing):
    """
    Returns:
        tuple: (rating_average, total_reviews)
    """
    stats = Review.objects.filter(
        booking__listing=listing,
        reviewee_id=listing.provider_id,
    ).aggregate(avg=Avg('rating'), total=Count('id'))
    return round_rating(stats['avg']), stats['total'] or 0


def recalculate_user_rating(user):
    """Recompute both rating projections of ``user`` under a row lock."""
    with transaction.atomic():
        locked = User.objects.select_for_update().get(pk=user.pk)
        as_provider, as_consumer = compute_user_ratings(locked)
        locked.avg_rating_as_provider = as_provider
        locked.avg_rating_as_consumer = as_consumer
        locked.save(update_fields=['avg_rating_as_provider', 'avg_rating_as_consumer', 'updated_at'])

    logger.info(
        f"Updated ratings for user {locked.id}: provider={as_provider}, consumer={as_consumer}"
    )
    return locked


def recalculate_listing_rating(listing):
    with transaction.atomic():
        locked = Listing.objects.select_for_update().get(pk=listing.pk)
        rating_average, total_reviews = compute_listing_rating(locked)
        locked.rating_average = rating_average
        locked.total_reviews = total_reviews
        locked.save(update_fields=['rating_average', 'total_reviews', 'updated_at'])

    logger.info(
        f"Updated rating for listing {locked.id}: average={rating_average}, reviews={total_reviews}"
    )
    return locked
