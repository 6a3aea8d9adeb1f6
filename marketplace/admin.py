"""
Django admin configuration for the delivery marketplace.

Bookings, refunds, reviews and webhook events are the escrow audit trail, so
their admin pages are read-only; state changes go through the API.
"""

from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.utils.translation import gettext_lazy as _

from .models import Booking, Listing, ProcessedWebhookEvent, Refund, Review, User


class ReadOnlyAdmin(admin.ModelAdmin):
    """Admin that only lists and displays records."""

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """
    Extends Django's UserAdmin with marketplace fields.
    """

    list_display = [
        'email',
        'username',
        'user_type',
        'is_verified',
        'avg_rating_as_provider',
        'avg_rating_as_consumer',
        'is_staff',
        'is_active',
        'created_at',
    ]

    list_filter = [
        'user_type',
        'is_verified',
        'is_staff',
        'is_active',
        'created_at',
    ]

    search_fields = ['email', 'username', 'first_name', 'last_name']

    ordering = ['-created_at']

    fieldsets = (
        (None, {
            'fields': ('username', 'password')
        }),
        (_('Personal Info'), {
            'fields': ('first_name', 'last_name', 'email')
        }),
        (_('User Type & Verification'), {
            'fields': ('user_type', 'is_verified')
        }),
        (_('Ratings'), {
            'fields': ('avg_rating_as_provider', 'avg_rating_as_consumer')
        }),
        (_('Permissions'), {
            'fields': ('is_active', 'is_staff', 'is_superuser', 'groups', 'user_permissions'),
            'classes': ('collapse',),
        }),
        (_('Important Dates'), {
            'fields': ('last_login', 'date_joined', 'created_at', 'updated_at'),
            'classes': ('collapse',),
        }),
    )

    add_fieldsets = (
        (None, {
            'classes': ('wide',),
            'fields': ('username', 'email', 'password1', 'password2', 'user_type'),
        }),
    )

    # Ratings are projections; rebuild them with `manage.py recalculate_ratings`
    readonly_fields = [
        'avg_rating_as_provider',
        'avg_rating_as_consumer',
        'created_at',
        'updated_at',
        'last_login',
        'date_joined',
    ]

    date_hierarchy = 'created_at'

    list_per_page = 25


@admin.register(Listing)
class ListingAdmin(admin.ModelAdmin):

    list_display = [
        'service_name',
        'provider',
        'service_type',
        'base_price',
        'price_per_km',
        'price_per_minute',
        'minimum_price',
        'availability_status',
        'rating_average',
        'total_reviews',
    ]

    list_filter = ['service_type', 'availability_status', 'requires_pickup', 'requires_coordinates']

    search_fields = ['service_name', 'description', 'provider__email']

    readonly_fields = ['rating_average', 'total_reviews', 'created_at', 'updated_at']

    fieldsets = (
        (None, {
            'fields': ('provider', 'service_name', 'description', 'service_type', 'availability_status')
        }),
        (_('Tariff'), {
            'fields': ('base_price', 'price_per_km', 'price_per_minute', 'minimum_price')
        }),
        (_('Booking Requirements'), {
            'fields': ('requires_pickup', 'requires_coordinates')
        }),
        (_('Ratings'), {
            'fields': ('rating_average', 'total_reviews')
        }),
        (_('Timestamps'), {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',),
        }),
    )

    list_per_page = 25


class RefundInline(admin.TabularInline):
    model = Refund
    extra = 0
    fields = ['amount', 'status', 'idempotency_key', 'gateway_reference', 'created_at', 'confirmed_at']
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Booking)
class BookingAdmin(ReadOnlyAdmin):

    list_display = [
        'id',
        'consumer',
        'provider',
        'listing',
        'status',
        'payment_status',
        'price_total',
        'refunded_amount',
        'scheduled_at',
        'created_at',
    ]

    list_filter = ['status', 'payment_status', 'created_at']

    search_fields = ['id', 'payment_reference', 'consumer__email', 'provider__email']

    date_hierarchy = 'created_at'

    inlines = [RefundInline]

    list_per_page = 25


@admin.register(Review)
class ReviewAdmin(ReadOnlyAdmin):

    list_display = ['id', 'reviewer', 'reviewee', 'booking', 'rating', 'created_at']

    list_filter = ['rating', 'created_at']

    search_fields = ['reviewer__email', 'reviewee__email', 'comment']

    ordering = ['-created_at']

    list_per_page = 25


@admin.register(ProcessedWebhookEvent)
class ProcessedWebhookEventAdmin(ReadOnlyAdmin):

    list_display = ['event_id', 'event_type', 'booking', 'outcome', 'processed_at']

    list_filter = ['event_type', 'outcome']

    search_fields = ['event_id']

    list_per_page = 50
