"""
Tests for the booking store's optimistic check-and-set.
"""

import uuid
from unittest.mock import patch

import pytest

from marketplace.exceptions import BookingNotFound, Conflict
from marketplace.models import Booking
from marketplace.store import BookingStore


@pytest.mark.django_db
class TestBookingStore:

    def test_get_unknown_id(self):
        with pytest.raises(BookingNotFound):
            BookingStore().get(uuid.uuid4())

    def test_get_malformed_id(self):
        with pytest.raises(BookingNotFound):
            BookingStore().get('not-a-uuid')

    def test_compare_and_set_applies_when_state_matches(self, pending_booking):
        store = BookingStore()
        updated = store.compare_and_set(pending_booking, status='accepted')
        assert updated.status == 'accepted'
        assert updated.payment_status == 'pending'

    def test_compare_and_set_rejects_stale_snapshot(self, pending_booking):
        store = BookingStore()
        stale = store.get(pending_booking.id)
        store.compare_and_set(pending_booking, status='accepted')

        with pytest.raises(Conflict):
            store.compare_and_set(stale, status='cancelled')

        assert Booking.objects.get(pk=pending_booking.pk).status == 'accepted'

    def test_compare_and_set_checks_payment_status_too(self, pending_booking):
        store = BookingStore()
        stale = store.get(pending_booking.id)
        store.compare_and_set(pending_booking, payment_status='authorized')

        with pytest.raises(Conflict):
            store.compare_and_set(stale, status='accepted')

    def test_payment_reference_is_write_once(self, pending_booking):
        store = BookingStore()
        assert pending_booking.payment_reference

        with pytest.raises(Conflict):
            store.set_payment_reference(pending_booking, 'pay_other', pending_booking.created_at)

        assert store.get(pending_booking.id).payment_reference == pending_booking.payment_reference

    def test_get_by_payment_reference(self, pending_booking):
        store = BookingStore()
        assert store.get_by_payment_reference(pending_booking.payment_reference).id == pending_booking.id
        assert store.get_by_payment_reference('pay_missing') is None


@pytest.mark.django_db
class TestConcurrentAccept:
    """
    Two providers' requests read the same pending booking; only the first
    write may win.
    """

    def test_second_accept_gets_conflict(self, coordinator, pending_booking, provider):
        stale = coordinator.store.get(pending_booking.id)

        coordinator.accept(pending_booking.id, provider)

        with patch.object(BookingStore, 'get', return_value=stale):
            with pytest.raises(Conflict):
                coordinator.accept(pending_booking.id, provider)

        booking = Booking.objects.get(pk=pending_booking.pk)
        assert booking.status == 'accepted'

    def test_accept_racing_cancel(self, coordinator, pending_booking, provider, consumer):
        stale = coordinator.store.get(pending_booking.id)

        coordinator.cancel(pending_booking.id, consumer)

        with patch.object(BookingStore, 'get', return_value=stale):
            with pytest.raises(Conflict):
                coordinator.accept(pending_booking.id, provider)

        assert Booking.objects.get(pk=pending_booking.pk).status == 'cancelled'
