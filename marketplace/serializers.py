"""
Serializers for the delivery marketplace API.

Input serializers only check request shape. Business rules (schedule,
locations, amounts, review eligibility) are enforced by the escrow and
review services so they hold for every caller, not just HTTP.
"""

from django.contrib.auth import get_user_model
from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

from .models import Booking, Listing, Refund, Review

User = get_user_model()


class EmailTokenObtainPairSerializer(TokenObtainPairSerializer):
    """
    Token pair serializer that authenticates with email instead of username.
    """
    username_field = 'email'

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        if 'username' in self.fields:
            del self.fields['username']
        if 'email' not in self.fields:
            self.fields['email'] = serializers.EmailField()


class ParticipantSerializer(serializers.ModelSerializer):
    """Public summary of a booking party."""

    class Meta:
        model = User
        fields = ['id', 'email', 'user_type', 'is_verified']
        read_only_fields = fields


class BookingSerializer(serializers.ModelSerializer):
    """
    Read representation of a booking, including its escrow state.
    """

    consumer = ParticipantSerializer(read_only=True)
    provider = ParticipantSerializer(read_only=True)
    refundable_balance = serializers.DecimalField(max_digits=10, decimal_places=2, read_only=True)

    class Meta:
        model = Booking
        fields = [
            'id',
            'listing',
            'consumer',
            'provider',
            'status',
            'payment_status',
            'scheduled_at',
            'pickup_location',
            'dropoff_location',
            'pickup_latitude',
            'pickup_longitude',
            'dropoff_latitude',
            'dropoff_longitude',
            'special_instructions',
            'distance_km',
            'duration_minutes',
            'price_total',
            'refunded_amount',
            'refundable_balance',
            'payment_reference',
            'completed_at',
            'cancelled_at',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields


class BookingCreateSerializer(serializers.Serializer):
    """
    Input for POST /api/bookings/.

    Fields:
    - listing: Required, listing ID
    - scheduled_at: Required, ISO 8601 datetime with timezone
    - dropoff_location: Drop-off address
    - pickup_location: Pickup address (required by most listings)
    - special_instructions: Optional notes for the provider
    - pickup/dropoff latitude and longitude: Optional coordinates
    - distance_km / duration_minutes: Optional trip estimate used for pricing
    """

    listing = serializers.PrimaryKeyRelatedField(queryset=Listing.objects.all())
    scheduled_at = serializers.DateTimeField()
    dropoff_location = serializers.CharField(max_length=300, required=False, allow_blank=True, default='')
    pickup_location = serializers.CharField(max_length=300, required=False, allow_blank=True, default='')
    special_instructions = serializers.CharField(required=False, allow_blank=True, default='')

    pickup_latitude = serializers.DecimalField(max_digits=9, decimal_places=6, required=False, allow_null=True)
    pickup_longitude = serializers.DecimalField(max_digits=9, decimal_places=6, required=False, allow_null=True)
    dropoff_latitude = serializers.DecimalField(max_digits=9, decimal_places=6, required=False, allow_null=True)
    dropoff_longitude = serializers.DecimalField(max_digits=9, decimal_places=6, required=False, allow_null=True)

    distance_km = serializers.DecimalField(
        max_digits=8, decimal_places=3, min_value=0, required=False, allow_null=True
    )
    duration_minutes = serializers.IntegerField(min_value=0, required=False, allow_null=True)


class CancelBookingSerializer(serializers.Serializer):
    refund_amount = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, allow_null=True)


class RefundRequestSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, allow_null=True)


class RefundSerializer(serializers.ModelSerializer):

    class Meta:
        model = Refund
        fields = [
            'id',
            'booking',
            'amount',
            'status',
            'idempotency_key',
            'gateway_reference',
            'created_at',
            'confirmed_at',
        ]
        read_only_fields = fields


class ReviewCreateSerializer(serializers.Serializer):
    """
    Input for POST /api/reviews/.

    The reviewee is always the other party of the booking. Rating range is
    checked by the review service so out-of-range values report
    ``invalid_rating``.
    """

    booking_id = serializers.UUIDField()
    rating = serializers.IntegerField()
    comment = serializers.CharField(required=False, allow_blank=True, default='')


class ReviewSerializer(serializers.ModelSerializer):
    reviewer = ParticipantSerializer(read_only=True)
    reviewee = ParticipantSerializer(read_only=True)

    class Meta:
        model = Review
        fields = ['id', 'booking', 'reviewer', 'reviewee', 'rating', 'comment', 'created_at']
        read_only_fields = fields


class UserRatingSerializer(serializers.ModelSerializer):
    """
    Rating summary of a user in both roles.
    """

    reviews_as_provider = serializers.SerializerMethodField()
    reviews_as_consumer = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = [
            'id',
            'user_type',
            'avg_rating_as_provider',
            'avg_rating_as_consumer',
            'reviews_as_provider',
            'reviews_as_consumer',
        ]
        read_only_fields = fields

    def get_reviews_as_provider(self, obj):
        return Review.objects.filter(reviewee=obj, booking__provider=obj).count()

    def get_reviews_as_consumer(self, obj):
        return Review.objects.filter(reviewee=obj, booking__consumer=obj).count()
