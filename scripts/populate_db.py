"""
Seed a development database with fake users, listings and bookings.

Bookings are driven through the escrow coordinator with the sandbox gateway,
and gateway confirmations are delivered as signed webhook events, so the
seeded data goes through the same state machine as production traffic.

Usage:
    python scripts/populate_db.py
"""

import json
import os
import random
import sys
import time
import uuid
from datetime import timedelta
from decimal import Decimal

import django
from faker import Faker

# Add project root to Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set up Django environment
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'delivery_marketplace.settings')
django.setup()

from django.conf import settings  # noqa: E402
from django.utils import timezone  # noqa: E402

from marketplace.escrow import EscrowCoordinator  # noqa: E402
from marketplace.gateway import SandboxPaymentGateway, compute_signature  # noqa: E402
from marketplace.models import Listing, User  # noqa: E402
from marketplace.reviews import create_review  # noqa: E402
from marketplace.webhooks import WebhookEventProcessor  # noqa: E402

fake = Faker()

WEBHOOK_SECRET = settings.PAYMENT_GATEWAY.get('WEBHOOK_SECRET') or 'whsec_seed'


def build_coordinator():
    gateway = SandboxPaymentGateway(webhook_secret=WEBHOOK_SECRET)
    return EscrowCoordinator(gateway=gateway)


def deliver(processor, event_type, booking, **data):
    """Sign and process a gateway event for ``booking``."""
    payload = json.dumps({
        'id': f'evt_{uuid.uuid4().hex}',
        'type': event_type,
        'data': {'payment_reference': booking.payment_reference, **data},
    }).encode('utf-8')
    timestamp = int(time.time())
    signature = compute_signature(WEBHOOK_SECRET, timestamp, payload)
    return processor.process(payload, signature, str(timestamp))


def create_users(num_consumers=10, num_providers=5):
    print(f"Creating {num_consumers} consumers and {num_providers} providers...")

    consumers = []
    providers = []

    for user_type, count, bucket in (
        (User.USER_TYPE_CONSUMER, num_consumers, consumers),
        (User.USER_TYPE_PROVIDER, num_providers, providers),
    ):
        for _ in range(count):
            email = fake.unique.email()
            user = User.objects.create_user(
                username=email.split('@')[0] + fake.unique.numerify('###'),
                email=email,
                password='password123',
                first_name=fake.first_name(),
                last_name=fake.last_name(),
                user_type=user_type,
                is_verified=user_type == User.USER_TYPE_PROVIDER and random.random() < 0.8,
            )
            bucket.append(user)

    print(f"Created {len(consumers)} consumers and {len(providers)} providers.")
    return consumers, providers


def create_listings(providers):
    print("Creating listings...")
    listings = []

    templates = [
        ('Same-day Parcel Delivery', 'delivery', True, False),
        ('Document Courier', 'courier', True, False),
        ('Drone Drop-off', 'drone', False, True),
        ('Grocery Run', 'delivery', True, False),
    ]

    for provider in providers:
        for service_name, service_type, requires_pickup, requires_coordinates in random.sample(templates, 2):
            listing = Listing.objects.create(
                provider=provider,
                service_name=service_name,
                description=fake.paragraph(),
                service_type=service_type,
                base_price=Decimal(random.uniform(5.0, 20.0)).quantize(Decimal('0.01')),
                price_per_km=Decimal(random.uniform(0.5, 2.0)).quantize(Decimal('0.01')),
                price_per_minute=Decimal(random.uniform(0.1, 0.5)).quantize(Decimal('0.01')),
                minimum_price=Decimal('10.00'),
                requires_pickup=requires_pickup,
                requires_coordinates=requires_coordinates,
            )
            listings.append(listing)

    print(f"Created {len(listings)} listings.")
    return listings


def create_bookings(consumers, listings, coordinator, processor):
    print("Creating bookings...")
    bookings = []

    for consumer in consumers:
        for _ in range(random.randint(0, 3)):
            listing = random.choice(listings)
            creation = coordinator.create_booking(
                consumer=consumer,
                listing=listing,
                scheduled_at=timezone.now() + timedelta(days=random.randint(1, 30)),
                pickup_location=fake.address() if listing.requires_pickup else '',
                dropoff_location=fake.address(),
                pickup_latitude=Decimal(str(fake.latitude())).quantize(Decimal('0.000001')),
                pickup_longitude=Decimal(str(fake.longitude())).quantize(Decimal('0.000001')),
                dropoff_latitude=Decimal(str(fake.latitude())).quantize(Decimal('0.000001')),
                dropoff_longitude=Decimal(str(fake.longitude())).quantize(Decimal('0.000001')),
                distance_km=Decimal(random.uniform(1.0, 40.0)).quantize(Decimal('0.001')),
                duration_minutes=random.randint(10, 120),
            )
            booking = creation.booking

            # Most holds are confirmed; the rest stay pending until they expire
            if random.random() < 0.85:
                deliver(processor, 'authorization.succeeded', booking)
            bookings.append(booking)

    print(f"Created {len(bookings)} bookings.")
    return bookings


def advance_bookings(bookings, coordinator, processor):
    print("Advancing bookings through fulfilment...")
    completed = []

    for booking in bookings:
        booking = coordinator.store.get(booking.id)
        if booking.payment_status != 'authorized':
            continue

        outcome = random.choice(['accepted', 'in_progress', 'completed', 'completed', 'cancelled'])
        provider = booking.provider

        if outcome == 'cancelled':
            result = coordinator.cancel(booking.id, booking.consumer)
            refund = result.booking.refunds.first()
            if refund is not None:
                deliver(processor, 'refund.succeeded', booking, refund_reference=refund.gateway_reference)
            continue

        coordinator.accept(booking.id, provider)
        if outcome == 'accepted':
            continue

        coordinator.start(booking.id, provider)
        if outcome == 'in_progress':
            continue

        coordinator.complete(booking.id, provider)
        deliver(processor, 'capture.succeeded', booking)
        completed.append(booking)

    print(f"Completed {len(completed)} bookings.")
    return completed


def create_reviews(completed):
    print("Creating reviews...")
    count = 0

    for booking in completed:
        # 70% chance of a review each way
        if random.random() < 0.7:
            create_review(booking.id, booking.consumer, random.randint(3, 5), comment=fake.sentence())
            count += 1
        if random.random() < 0.7:
            create_review(booking.id, booking.provider, random.randint(3, 5), comment=fake.sentence())
            count += 1

    print(f"Created {count} reviews.")


def main():
    print("Starting database population...")

    coordinator = build_coordinator()
    processor = WebhookEventProcessor(coordinator=coordinator)

    consumers, providers = create_users(num_consumers=20, num_providers=10)
    listings = create_listings(providers)
    bookings = create_bookings(consumers, listings, coordinator, processor)
    completed = advance_bookings(bookings, coordinator, processor)
    create_reviews(completed)

    print("Database population completed successfully!")


if __name__ == '__main__':
    main()
