"""
Test suite for reviews and rating aggregation.

Tests cover:
- Review eligibility (participants, completed bookings, one per reviewer)
- Rating validation
- User and listing rating projections
- The recalculate_ratings management command
"""

from decimal import Decimal
from io import StringIO

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from helpers import future
from marketplace.exceptions import (
    BookingNotCompleted,
    BookingNotFound,
    DuplicateReview,
    Forbidden,
    InvalidRating,
    SelfReview,
)
from marketplace.models import Listing, Review, User
from marketplace.ratings import compute_user_ratings, round_rating
from marketplace.reviews import create_review, validate_rating


@pytest.fixture
def make_completed_booking(coordinator, deliver, listing, provider):
    """Factory for completed bookings on ``listing``."""
    def _make(consumer, target_listing=None):
        booking = coordinator.create_booking(
            consumer=consumer,
            listing=target_listing or listing,
            scheduled_at=future(),
            pickup_location='A',
            dropoff_location='B',
        ).booking
        deliver('authorization.succeeded', booking)
        coordinator.accept(booking.id, provider)
        coordinator.start(booking.id, provider)
        coordinator.complete(booking.id, provider)
        return coordinator.store.get(booking.id)
    return _make


class TestValidateRating:

    @pytest.mark.parametrize('rating', [1, 3, 5])
    def test_valid(self, rating):
        assert validate_rating(rating) == rating

    @pytest.mark.parametrize('rating', [0, 6, -1, 4.5, '5', None, True])
    def test_invalid(self, rating):
        with pytest.raises(InvalidRating):
            validate_rating(rating)


class TestRoundRating:

    def test_no_reviews(self):
        assert round_rating(None) == Decimal('0.00')

    def test_half_up(self):
        assert round_rating(4.125) == Decimal('4.13')
        assert round_rating(Decimal('4.666666')) == Decimal('4.67')


@pytest.mark.django_db
class TestCreateReview:

    def test_consumer_reviews_provider(self, completed_booking, consumer, provider, listing):
        review = create_review(completed_booking.id, consumer, 5, comment='On time')

        assert review.reviewee == provider
        assert review.rating == 5

        provider.refresh_from_db()
        listing.refresh_from_db()
        assert provider.avg_rating_as_provider == Decimal('5.00')
        assert listing.rating_average == Decimal('5.00')
        assert listing.total_reviews == 1

    def test_provider_reviews_consumer(self, completed_booking, consumer, provider, listing):
        review = create_review(completed_booking.id, provider, 4)

        assert review.reviewee == consumer
        consumer.refresh_from_db()
        listing.refresh_from_db()
        assert consumer.avg_rating_as_consumer == Decimal('4.00')
        assert listing.total_reviews == 0

    def test_average_of_three_reviews(self, make_completed_booking, consumer, other_consumer, provider, listing):
        """Reviews of 5, 4 and 3 give an average of 4.00."""
        bookings = [
            make_completed_booking(consumer),
            make_completed_booking(other_consumer),
            make_completed_booking(consumer),
        ]
        for booking, rating in zip(bookings, [5, 4, 3]):
            create_review(booking.id, booking.consumer, rating)

        provider.refresh_from_db()
        listing.refresh_from_db()
        assert provider.avg_rating_as_provider == Decimal('4.00')
        assert listing.rating_average == Decimal('4.00')
        assert listing.total_reviews == 3

    def test_average_rounds_half_up(self, make_completed_booking, consumer, provider):
        for rating in [5, 4, 4]:
            booking = make_completed_booking(consumer)
            create_review(booking.id, consumer, rating)

        provider.refresh_from_db()
        assert provider.avg_rating_as_provider == Decimal('4.33')

    def test_roles_are_rated_separately(self, completed_booking, consumer, provider):
        create_review(completed_booking.id, provider, 2)

        assert compute_user_ratings(consumer) == (Decimal('0.00'), Decimal('2.00'))
        assert compute_user_ratings(provider) == (Decimal('0.00'), Decimal('0.00'))

    def test_booking_must_be_completed(self, authorized_booking, consumer):
        with pytest.raises(BookingNotCompleted):
            create_review(authorized_booking.id, consumer, 5)
        assert Review.objects.count() == 0

    def test_cancelled_booking_cannot_be_reviewed(self, pending_booking, coordinator, consumer):
        coordinator.cancel(pending_booking.id, consumer)
        with pytest.raises(BookingNotCompleted):
            create_review(pending_booking.id, consumer, 5)

    def test_duplicate_review_rejected(self, completed_booking, consumer, provider):
        create_review(completed_booking.id, consumer, 5)

        with pytest.raises(DuplicateReview):
            create_review(completed_booking.id, consumer, 1)

        provider.refresh_from_db()
        assert provider.avg_rating_as_provider == Decimal('5.00')

    def test_both_parties_may_review(self, completed_booking, consumer, provider):
        create_review(completed_booking.id, consumer, 5)
        create_review(completed_booking.id, provider, 3)
        assert Review.objects.filter(booking=completed_booking).count() == 2

    def test_self_review_rejected(self, completed_booking, consumer):
        with pytest.raises(SelfReview):
            create_review(completed_booking.id, consumer, 5, reviewee=consumer)

    def test_outsider_cannot_review(self, completed_booking, other_consumer):
        with pytest.raises(Forbidden):
            create_review(completed_booking.id, other_consumer, 5)

    def test_reviewee_must_be_counterparty(self, completed_booking, consumer, other_consumer):
        with pytest.raises(Forbidden):
            create_review(completed_booking.id, consumer, 5, reviewee=other_consumer)

    def test_invalid_rating_rejected(self, completed_booking, consumer):
        with pytest.raises(InvalidRating):
            create_review(completed_booking.id, consumer, 6)

    def test_unknown_booking(self, consumer):
        with pytest.raises(BookingNotFound):
            create_review('00000000-0000-0000-0000-000000000000', consumer, 5)


@pytest.mark.django_db
class TestRecalculateRatingsCommand:

    @pytest.fixture
    def drifted(self, completed_booking, consumer, provider, listing):
        """A reviewed booking whose stored projections have drifted."""
        create_review(completed_booking.id, consumer, 4)
        Listing.objects.filter(pk=listing.pk).update(rating_average=Decimal('1.00'), total_reviews=7)
        User.objects.filter(pk=provider.pk).update(avg_rating_as_provider=Decimal('2.50'))
        return completed_booking

    def test_rebuilds_projections(self, drifted, provider, listing):
        out = StringIO()
        call_command('recalculate_ratings', stdout=out)

        listing.refresh_from_db()
        provider.refresh_from_db()
        assert listing.rating_average == Decimal('4.00')
        assert listing.total_reviews == 1
        assert provider.avg_rating_as_provider == Decimal('4.00')
        assert 'Recalculation completed successfully.' in out.getvalue()

    def test_dry_run_changes_nothing(self, drifted, provider, listing):
        out = StringIO()
        call_command('recalculate_ratings', '--dry-run', stdout=out)

        listing.refresh_from_db()
        provider.refresh_from_db()
        assert listing.total_reviews == 7
        assert provider.avg_rating_as_provider == Decimal('2.50')

        output = out.getvalue()
        assert '[DRY-RUN]' in output
        assert 'Dry run completed. No changes saved.' in output

    def test_listings_only(self, drifted, provider, listing):
        call_command('recalculate_ratings', '--listings-only', stdout=StringIO())

        listing.refresh_from_db()
        provider.refresh_from_db()
        assert listing.total_reviews == 1
        assert provider.avg_rating_as_provider == Decimal('2.50')

    def test_users_only(self, drifted, provider, listing):
        call_command('recalculate_ratings', '--users-only', stdout=StringIO())

        listing.refresh_from_db()
        provider.refresh_from_db()
        assert listing.total_reviews == 7
        assert provider.avg_rating_as_provider == Decimal('4.00')

    def test_small_batches(self, drifted, provider, listing):
        call_command('recalculate_ratings', '--batch-size', '1', stdout=StringIO())

        listing.refresh_from_db()
        assert listing.rating_average == Decimal('4.00')

    def test_conflicting_flags(self):
        with pytest.raises(CommandError):
            call_command('recalculate_ratings', '--listings-only', '--users-only', stdout=StringIO())

    def test_invalid_batch_size(self):
        with pytest.raises(CommandError):
            call_command('recalculate_ratings', '--batch-size', '0', stdout=StringIO())
