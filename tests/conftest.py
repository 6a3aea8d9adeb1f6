"""
Shared fixtures for the marketplace test-suite.
"""

from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from helpers import WEBHOOK_SECRET, future, signed_event
from marketplace.escrow import EscrowCoordinator
from marketplace.gateway import SandboxPaymentGateway
from marketplace.models import Listing
from marketplace.webhooks import WebhookEventProcessor

User = get_user_model()


@pytest.fixture
def api_client():
    """Return API client for testing."""
    return APIClient()


@pytest.fixture
def consumer(db):
    return User.objects.create_user(
        email='consumer@test.com',
        username='consumer',
        password='TestPass123!',
        user_type='consumer',
    )


@pytest.fixture
def other_consumer(db):
    return User.objects.create_user(
        email='consumer2@test.com',
        username='consumer2',
        password='TestPass123!',
        user_type='consumer',
    )


@pytest.fixture
def provider(db):
    return User.objects.create_user(
        email='provider@test.com',
        username='provider',
        password='TestPass123!',
        user_type='provider',
        is_verified=True,
    )


@pytest.fixture
def staff_user(db):
    return User.objects.create_user(
        email='staff@test.com',
        username='staff',
        password='TestPass123!',
        user_type='consumer',
        is_staff=True,
    )


@pytest.fixture
def listing(provider):
    """Flat 42.00 delivery with no distance or time component."""
    return Listing.objects.create(
        provider=provider,
        service_name='Same-day Parcel Delivery',
        description='Parcels up to 20kg across town',
        base_price=Decimal('42.00'),
    )


@pytest.fixture
def metered_listing(provider):
    return Listing.objects.create(
        provider=provider,
        service_name='Metered Courier',
        service_type='courier',
        base_price=Decimal('5.00'),
        price_per_km=Decimal('1.50'),
        price_per_minute=Decimal('0.20'),
        minimum_price=Decimal('10.00'),
    )


@pytest.fixture
def drone_listing(provider):
    return Listing.objects.create(
        provider=provider,
        service_name='Drone Drop-off',
        service_type='drone',
        base_price=Decimal('15.00'),
        requires_pickup=False,
        requires_coordinates=True,
    )


@pytest.fixture
def gateway():
    return SandboxPaymentGateway(webhook_secret=WEBHOOK_SECRET)


@pytest.fixture
def coordinator(gateway):
    return EscrowCoordinator(gateway=gateway)


@pytest.fixture
def processor(coordinator):
    return WebhookEventProcessor(coordinator=coordinator)


@pytest.fixture
def deliver(processor):
    """Sign and process a gateway event; returns the processing result."""
    def _deliver(event_type, booking, **kwargs):
        payload, signature, timestamp = signed_event(event_type, booking.payment_reference, **kwargs)
        return processor.process(payload, signature, timestamp)
    return _deliver


@pytest.fixture
def pending_booking(coordinator, consumer, listing):
    return coordinator.create_booking(
        consumer=consumer,
        listing=listing,
        scheduled_at=future(),
        pickup_location='1 Warehouse Rd',
        dropoff_location='99 Customer Ave',
    ).booking


@pytest.fixture
def authorized_booking(pending_booking, deliver, coordinator):
    deliver('authorization.succeeded', pending_booking)
    return coordinator.store.get(pending_booking.id)


@pytest.fixture
def completed_booking(authorized_booking, coordinator, provider, deliver):
    coordinator.accept(authorized_booking.id, provider)
    coordinator.start(authorized_booking.id, provider)
    coordinator.complete(authorized_booking.id, provider)
    deliver('capture.succeeded', authorized_booking)
    return coordinator.store.get(authorized_booking.id)
