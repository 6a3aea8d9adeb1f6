"""
Model and field validation tests.

Tests cover:
- User email normalization and full validation on update
- Coordinate validators
- Listing ownership rules
- Booking invariants enforced on save
"""

from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.test import TestCase

from marketplace.models import Booking, Listing, Review
from marketplace.validators import validate_latitude, validate_longitude

User = get_user_model()


class TestCoordinateValidators:

    @pytest.mark.parametrize('value', [None, Decimal('-90'), Decimal('0'), Decimal('90')])
    def test_latitude_valid(self, value):
        validate_latitude(value)

    @pytest.mark.parametrize('value', [Decimal('-90.000001'), Decimal('91')])
    def test_latitude_invalid(self, value):
        with pytest.raises(ValidationError):
            validate_latitude(value)

    @pytest.mark.parametrize('value', [Decimal('-180.5'), Decimal('181')])
    def test_longitude_invalid(self, value):
        with pytest.raises(ValidationError):
            validate_longitude(value)


class UserModelTests(TestCase):
    """Test email normalization and validation on the User model."""

    def setUp(self):
        self.user = User.objects.create_user(
            username='mixed',
            email='Mixed.Case@Test.com',
            password='testpass123',
            user_type='consumer'
        )

    def test_email_is_lowercased(self):
        self.assertEqual(self.user.email, 'mixed.case@test.com')

    def test_role_helpers(self):
        self.assertTrue(self.user.is_consumer())
        self.assertFalse(self.user.is_provider())

    def test_unknown_user_type_rejected_on_update(self):
        self.user.user_type = 'courier'
        with self.assertRaises(ValidationError):
            self.user.save()

    def test_email_lowercased_on_update(self):
        self.user.email = 'New.Address@Test.com'
        self.user.save()
        self.user.refresh_from_db()
        self.assertEqual(self.user.email, 'new.address@test.com')


class ListingModelTests(TestCase):
    """Test listing ownership and tariff validation."""

    def setUp(self):
        self.consumer = User.objects.create_user(
            username='consumer',
            email='consumer@test.com',
            password='testpass123',
            user_type='consumer'
        )
        self.provider = User.objects.create_user(
            username='provider',
            email='provider@test.com',
            password='testpass123',
            user_type='provider'
        )

    def test_consumer_cannot_own_listing(self):
        with self.assertRaises(ValidationError):
            Listing.objects.create(provider=self.consumer, service_name='Nope', base_price=Decimal('1.00'))

    def test_blank_service_name(self):
        with self.assertRaises(ValidationError):
            Listing.objects.create(provider=self.provider, service_name='  ', base_price=Decimal('1.00'))

    def test_negative_tariff(self):
        with self.assertRaises(ValidationError):
            Listing.objects.create(
                provider=self.provider,
                service_name='Courier',
                base_price=Decimal('1.00'),
                price_per_km=Decimal('-0.50'),
            )

    def test_defaults(self):
        listing = Listing.objects.create(
            provider=self.provider,
            service_name='Courier',
            base_price=Decimal('1.00'),
        )
        self.assertEqual(listing.service_type, 'delivery')
        self.assertTrue(listing.requires_pickup)
        self.assertFalse(listing.requires_coordinates)
        self.assertEqual(listing.rating_average, Decimal('0.00'))
        self.assertEqual(listing.total_reviews, 0)


@pytest.mark.django_db
class TestBookingInvariants:

    def test_price_is_fixed(self, pending_booking):
        booking = Booking.objects.get(pk=pending_booking.pk)
        booking.price_total = Decimal('1.00')
        with pytest.raises(ValidationError):
            booking.save()

    def test_payment_reference_is_immutable(self, pending_booking):
        booking = Booking.objects.get(pk=pending_booking.pk)
        booking.payment_reference = 'pay_other'
        with pytest.raises(ValidationError):
            booking.save()

    def test_illegal_transition_rejected_on_save(self, pending_booking):
        booking = Booking.objects.get(pk=pending_booking.pk)
        booking.status = 'completed'
        with pytest.raises(ValidationError):
            booking.save()

    def test_inconsistent_pair_rejected_on_save(self, pending_booking):
        booking = Booking.objects.get(pk=pending_booking.pk)
        booking.payment_status = 'failed'
        with pytest.raises(ValidationError):
            booking.save()

    def test_refundable_balance(self, completed_booking):
        assert completed_booking.refundable_balance == Decimal('42.00')


@pytest.mark.django_db
class TestReviewModel:

    def test_review_requires_completed_booking(self, pending_booking, consumer, provider):
        with pytest.raises(ValidationError):
            Review.objects.create(booking=pending_booking, reviewer=consumer, reviewee=provider, rating=5)

    def test_rating_bounds(self, completed_booking, consumer, provider):
        with pytest.raises(ValidationError):
            Review.objects.create(booking=completed_booking, reviewer=consumer, reviewee=provider, rating=0)
