"""
Data model for the delivery marketplace.

Bookings, refunds, reviews and processed webhook events are never deleted:
they are the audit trail for money that moved and the history the rating
projections are rebuilt from.
"""

import uuid
from decimal import Decimal

from django.contrib.auth.models import AbstractUser
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator, MaxValueValidator
from django.db import models
from django.utils.translation import gettext_lazy as _

from .state_machine import (
    BookingStatus,
    PaymentStatus,
    can_transition_booking,
    can_transition_payment,
    is_consistent,
)
from .validators import validate_latitude, validate_longitude


RATING_VALIDATORS = [
    MinValueValidator(Decimal('0.00'), message=_('Rating cannot be negative.')),
    MaxValueValidator(Decimal('5.00'), message=_('Rating cannot exceed 5.00.')),
]


class User(AbstractUser):
    """
    Marketplace account.

    Additional fields:
    - email: Required, unique email address
    - user_type: Either 'consumer' or 'provider'
    - is_verified: Provider verification status
    - avg_rating_as_provider / avg_rating_as_consumer: Rating projections
      maintained by marketplace.ratings
    """

    USER_TYPE_CONSUMER = 'consumer'
    USER_TYPE_PROVIDER = 'provider'

    USER_TYPE_CHOICES = [
        (USER_TYPE_CONSUMER, 'Consumer'),
        (USER_TYPE_PROVIDER, 'Service Provider'),
    ]

    email = models.EmailField(
        _('email address'),
        unique=True,
        blank=False,
        null=False,
        error_messages={
            'unique': _('A user with that email already exists.'),
        },
        help_text=_('Required. Enter a valid email address.')
    )

    user_type = models.CharField(
        _('user type'),
        max_length=10,
        choices=USER_TYPE_CHOICES,
        blank=False,
        null=False,
        help_text=_('Required. Select whether you are a consumer or service provider.')
    )

    is_verified = models.BooleanField(
        _('verified status'),
        default=False,
        help_text=_('Indicates whether a service provider has been verified.')
    )

    avg_rating_as_provider = models.DecimalField(
        _('average rating as provider'),
        max_digits=3,
        decimal_places=2,
        default=Decimal('0.00'),
        validators=RATING_VALIDATORS,
        help_text=_('Average rating when acting as a service provider.')
    )

    avg_rating_as_consumer = models.DecimalField(
        _('average rating as consumer'),
        max_digits=3,
        decimal_places=2,
        default=Decimal('0.00'),
        validators=RATING_VALIDATORS,
        help_text=_('Average rating when acting as a consumer.')
    )

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('user')
        verbose_name_plural = _('users')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['email'], name='user_email_idx'),
            models.Index(fields=['user_type'], name='user_type_idx'),
        ]

    def __str__(self):
        return self.email or self.username

    def is_consumer(self):
        return self.user_type == self.USER_TYPE_CONSUMER

    def is_provider(self):
        return self.user_type == self.USER_TYPE_PROVIDER

    def clean(self):
        """
        Validate model fields.

        Ensures:
        - Email is provided and lower-cased
        - User type is provided

        Raises:
            ValidationError: If validation fails
        """
        super().clean()

        if self.email:
            self.email = self.email.lower()

        if not self.email:
            raise ValidationError({
                'email': _('Email address is required.')
            })

        if not self.user_type:
            raise ValidationError({
                'user_type': _('User type is required.')
            })

    def save(self, *args, **kwargs):
        # Normalize email to lowercase
        if self.email:
            self.email = self.email.lower()

        # Creation skips full_clean so duplicate emails surface as IntegrityError
        if self.pk is not None and not kwargs.get('update_fields'):
            self.full_clean()

        super().save(*args, **kwargs)


class Listing(models.Model):
    """
    A delivery service offered by a provider, together with its tariff.

    Fields:
    - provider: Foreign key to User (must be provider type)
    - service_name / description: Shown to consumers
    - service_type: delivery, courier or drone
    - base_price, price_per_km, price_per_minute, minimum_price: Tariff used
      by marketplace.pricing when a booking is created
    - requires_pickup: Pickup address is mandatory for bookings
    - requires_coordinates: Drop-off latitude/longitude are mandatory
    - availability_status: Whether the listing accepts new bookings
    - rating_average / total_reviews: Projections maintained by marketplace.ratings
    """

    SERVICE_TYPE_CHOICES = [
        ('delivery', 'Delivery'),
        ('courier', 'Courier'),
        ('drone', 'Drone'),
    ]

    provider = models.ForeignKey(
        User,
        on_delete=models.PROTECT,
        related_name='listings',
        help_text=_('Provider offering this service')
    )

    service_name = models.CharField(_('service name'), max_length=200)

    description = models.TextField(_('description'), blank=True, default='')

    service_type = models.CharField(
        _('service type'),
        max_length=20,
        choices=SERVICE_TYPE_CHOICES,
        default='delivery',
    )

    base_price = models.DecimalField(
        _('base price'),
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.00'))],
        help_text=_('Flat fee charged for every booking')
    )

    price_per_km = models.DecimalField(
        _('price per km'),
        max_digits=8,
        decimal_places=2,
        default=Decimal('0.00'),
        validators=[MinValueValidator(Decimal('0.00'))],
    )

    price_per_minute = models.DecimalField(
        _('price per minute'),
        max_digits=8,
        decimal_places=2,
        default=Decimal('0.00'),
        validators=[MinValueValidator(Decimal('0.00'))],
    )

    minimum_price = models.DecimalField(
        _('minimum price'),
        max_digits=10,
        decimal_places=2,
        default=Decimal('0.00'),
        validators=[MinValueValidator(Decimal('0.00'))],
    )

    requires_pickup = models.BooleanField(
        _('requires pickup'),
        default=True,
        help_text=_('Bookings must provide a pickup address')
    )

    requires_coordinates = models.BooleanField(
        _('requires coordinates'),
        default=False,
        help_text=_('Bookings must provide drop-off latitude and longitude')
    )

    availability_status = models.BooleanField(_('availability status'), default=True)

    rating_average = models.DecimalField(
        _('rating average'),
        max_digits=3,
        decimal_places=2,
        default=Decimal('0.00'),
        validators=RATING_VALIDATORS,
    )

    total_reviews = models.PositiveIntegerField(_('total reviews'), default=0)

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('listing')
        verbose_name_plural = _('listings')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['provider'], name='listing_provider_idx'),
            models.Index(fields=['availability_status'], name='listing_available_idx'),
        ]

    def __str__(self):
        return self.service_name

    def clean(self):
        super().clean()

        if self.provider_id and not self.provider.is_provider():
            raise ValidationError({
                'provider': _('Only users with user_type="provider" can create listings.')
            })

        if not self.service_name or not self.service_name.strip():
            raise ValidationError({
                'service_name': _('Service name cannot be empty.')
            })

    def save(self, *args, **kwargs):
        if not kwargs.get('update_fields'):
            self.full_clean()
        super().save(*args, **kwargs)


class Booking(models.Model):
    """
    One requested unit of delivery work and the money held against it.

    ``status`` tracks fulfilment, ``payment_status`` tracks the escrow. Both
    only change through marketplace.escrow, which writes them with a guarded
    conditional update (see marketplace.store).
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    consumer = models.ForeignKey(
        User,
        on_delete=models.PROTECT,
        related_name='consumer_bookings',
        help_text=_('Consumer who requested the booking')
    )

    provider = models.ForeignKey(
        User,
        on_delete=models.PROTECT,
        related_name='provider_bookings',
        help_text=_('Provider fulfilling the booking')
    )

    listing = models.ForeignKey(
        Listing,
        on_delete=models.PROTECT,
        related_name='bookings',
    )

    status = models.CharField(
        _('status'),
        max_length=20,
        choices=BookingStatus.choices,
        default=BookingStatus.PENDING,
    )

    payment_status = models.CharField(
        _('payment status'),
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
    )

    scheduled_at = models.DateTimeField(_('scheduled at'))

    pickup_location = models.CharField(_('pickup location'), max_length=300, blank=True, default='')
    dropoff_location = models.CharField(_('dropoff location'), max_length=300)

    pickup_latitude = models.DecimalField(
        max_digits=9, decimal_places=6, null=True, blank=True, validators=[validate_latitude]
    )
    pickup_longitude = models.DecimalField(
        max_digits=9, decimal_places=6, null=True, blank=True, validators=[validate_longitude]
    )
    dropoff_latitude = models.DecimalField(
        max_digits=9, decimal_places=6, null=True, blank=True, validators=[validate_latitude]
    )
    dropoff_longitude = models.DecimalField(
        max_digits=9, decimal_places=6, null=True, blank=True, validators=[validate_longitude]
    )

    special_instructions = models.TextField(_('special instructions'), blank=True, default='')

    distance_km = models.DecimalField(
        max_digits=8, decimal_places=3, default=Decimal('0.000'),
        validators=[MinValueValidator(Decimal('0'))],
    )
    duration_minutes = models.PositiveIntegerField(default=0)

    price_total = models.DecimalField(
        _('total price'),
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.00'))],
        help_text=_('Fixed at creation, never recomputed')
    )

    refunded_amount = models.DecimalField(
        _('refunded amount'),
        max_digits=10,
        decimal_places=2,
        default=Decimal('0.00'),
        help_text=_('Sum of confirmed refunds')
    )

    payment_reference = models.CharField(
        _('payment reference'),
        max_length=128,
        null=True,
        blank=True,
        unique=True,
        help_text=_('Gateway transaction id, immutable once set')
    )

    authorization_requested_at = models.DateTimeField(null=True, blank=True)
    capture_requested_at = models.DateTimeField(null=True, blank=True)
    capture_attempt = models.PositiveIntegerField(
        _('capture attempt'),
        default=1,
        help_text=_('Sequence number of the capture request; advanced when the gateway rejects a capture')
    )
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('booking')
        verbose_name_plural = _('bookings')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['consumer'], name='booking_consumer_idx'),
            models.Index(fields=['provider'], name='booking_provider_idx'),
            models.Index(fields=['status'], name='booking_status_idx'),
            models.Index(fields=['payment_status', 'authorization_requested_at'], name='booking_pending_auth_idx'),
            models.Index(fields=['scheduled_at'], name='booking_scheduled_idx'),
        ]

    def __str__(self):
        return f"Booking {self.id} ({self.status}/{self.payment_status})"

    def is_participant(self, user):
        return user is not None and user.id in (self.consumer_id, self.provider_id)

    @property
    def refundable_balance(self):
        return self.price_total - self.refunded_amount

    def clean(self):
        """
        Validate fields and, on update, the fulfilment and payment transitions.

        Raises:
            ValidationError: If validation fails
        """
        super().clean()

        if self.consumer_id and not self.consumer.is_consumer():
            raise ValidationError({
                'consumer': _('Only users with user_type="consumer" can make bookings.')
            })

        if self.provider_id and not self.provider.is_provider():
            raise ValidationError({
                'provider': _('Booking provider must have user_type="provider".')
            })

        if not self.dropoff_location or not self.dropoff_location.strip():
            raise ValidationError({
                'dropoff_location': _('Dropoff location cannot be empty.')
            })

        if not is_consistent(self.status, self.payment_status):
            raise ValidationError({
                'payment_status': _(
                    f'Payment status {self.payment_status} is not allowed for a {self.status} booking.'
                )
            })

        if self.pk is not None:
            old = Booking.objects.filter(pk=self.pk).values(
                'status', 'payment_status', 'payment_reference', 'price_total'
            ).first()
            if old is None:
                return

            if old['status'] != self.status and not can_transition_booking(old['status'], self.status):
                raise ValidationError({
                    'status': _(f'Invalid status transition from {old["status"]} to {self.status}.')
                })

            if (old['payment_status'] != self.payment_status
                    and not can_transition_payment(old['payment_status'], self.payment_status)):
                raise ValidationError({
                    'payment_status': _(
                        f'Invalid payment status transition from {old["payment_status"]} '
                        f'to {self.payment_status}.'
                    )
                })

            if old['payment_reference'] and old['payment_reference'] != self.payment_reference:
                raise ValidationError({
                    'payment_reference': _('Payment reference cannot be changed once set.')
                })

            if old['price_total'] != self.price_total:
                raise ValidationError({
                    'price_total': _('Total price is fixed at creation.')
                })

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)


class Refund(models.Model):
    """
    A single refund request against a booking's payment.

    Several partial refunds may exist for one booking; their confirmed sum
    never exceeds the booking's price_total.
    """

    STATUS_REQUESTED = 'requested'
    STATUS_SUCCEEDED = 'succeeded'
    STATUS_FAILED = 'failed'

    STATUS_CHOICES = [
        (STATUS_REQUESTED, 'Requested'),
        (STATUS_SUCCEEDED, 'Succeeded'),
        (STATUS_FAILED, 'Failed'),
    ]

    booking = models.ForeignKey(Booking, on_delete=models.PROTECT, related_name='refunds')

    amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))],
    )

    idempotency_key = models.CharField(max_length=128, unique=True)

    gateway_reference = models.CharField(max_length=128, null=True, blank=True, unique=True)

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_REQUESTED)

    requested_by = models.ForeignKey(
        User,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='refunds_requested',
    )

    created_at = models.DateTimeField(auto_now_add=True)
    confirmed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['created_at']
        indexes = [
            models.Index(fields=['booking', 'status'], name='refund_booking_status_idx'),
        ]

    def __str__(self):
        return f"Refund {self.amount} for booking {self.booking_id} ({self.status})"


class Review(models.Model):
    """
    Review left by one party of a completed booking about the other.

    At most one review per booking per direction.
    """

    reviewer = models.ForeignKey(
        User,
        on_delete=models.PROTECT,
        related_name='reviews_given',
        help_text=_('User writing the review')
    )

    reviewee = models.ForeignKey(
        User,
        on_delete=models.PROTECT,
        related_name='reviews_received',
        help_text=_('User receiving the review')
    )

    booking = models.ForeignKey(
        Booking,
        on_delete=models.PROTECT,
        related_name='reviews',
    )

    rating = models.PositiveSmallIntegerField(
        _('rating'),
        validators=[
            MinValueValidator(1, message=_('Rating must be at least 1.')),
            MaxValueValidator(5, message=_('Rating must be at most 5.'))
        ],
    )

    comment = models.TextField(_('comment'), blank=True, default='')

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    class Meta:
        verbose_name = _('review')
        verbose_name_plural = _('reviews')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['reviewee'], name='review_reviewee_idx'),
            models.Index(fields=['rating'], name='review_rating_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['booking', 'reviewer'],
                name='unique_review_per_booking_reviewer',
            ),
        ]

    def __str__(self):
        return f"Review by {self.reviewer.email} for {self.reviewee.email} - {self.rating}★"

    def clean(self):
        """
        Ensures:
        - Reviewer and reviewee are different users
        - Booking status is 'completed'
        - Reviewer and reviewee are the two parties of the booking

        Raises:
            ValidationError: If validation fails
        """
        super().clean()

        if self.reviewer_id and self.reviewee_id and self.reviewer_id == self.reviewee_id:
            raise ValidationError({
                'reviewee': _('Reviewer and reviewee cannot be the same user.')
            })

        if self.booking_id:
            if self.booking.status != BookingStatus.COMPLETED:
                raise ValidationError({
                    'booking': _('Only completed bookings can be reviewed.')
                })

            parties = {self.booking.consumer_id, self.booking.provider_id}
            if {self.reviewer_id, self.reviewee_id} != parties:
                raise ValidationError({
                    'reviewer': _('Reviewer and reviewee must be the two parties of the booking.')
                })

    def save(self, *args, **kwargs):
        # Uniqueness is left to the database so races surface as IntegrityError
        if not self.pk:
            self.full_clean(validate_unique=False, validate_constraints=False)
        super().save(*args, **kwargs)


class ProcessedWebhookEvent(models.Model):
    """
    Idempotency record for a payment gateway notification.

    Written in the same transaction as the effect of the event, so it exists
    if and only if that effect was committed.
    """

    OUTCOME_APPLIED = 'applied'
    OUTCOME_NOOP = 'noop'
    OUTCOME_IGNORED = 'ignored'

    OUTCOME_CHOICES = [
        (OUTCOME_APPLIED, 'Applied'),
        (OUTCOME_NOOP, 'No-op'),
        (OUTCOME_IGNORED, 'Ignored'),
    ]

    event_id = models.CharField(max_length=128, unique=True)
    event_type = models.CharField(max_length=64)
    booking = models.ForeignKey(
        Booking,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='webhook_events',
    )
    outcome = models.CharField(max_length=16, choices=OUTCOME_CHOICES)
    processed_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-processed_at']

    def __str__(self):
        return f"{self.event_type} {self.event_id} ({self.outcome})"
