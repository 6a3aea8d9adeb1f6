"""
Tests for the booking and payment transition tables.
"""

import itertools

import pytest

from marketplace.state_machine import (
    ALLOWED_COMBINATIONS,
    BOOKING_TRANSITIONS,
    PAYMENT_TRANSITIONS,
    BookingStatus,
    PaymentStatus,
    can_transition_booking,
    can_transition_payment,
    is_consistent,
    is_terminal,
)


class TestBookingTransitions:

    @pytest.mark.parametrize('current,new', [
        ('pending', 'accepted'),
        ('accepted', 'in_progress'),
        ('in_progress', 'completed'),
        ('pending', 'cancelled'),
        ('accepted', 'cancelled'),
        ('in_progress', 'cancelled'),
    ])
    def test_allowed_edges(self, current, new):
        assert can_transition_booking(current, new)

    def test_only_listed_edges_are_allowed(self):
        for current, new in itertools.product(BookingStatus.values, repeat=2):
            expected = BookingStatus(new) in BOOKING_TRANSITIONS[BookingStatus(current)]
            assert can_transition_booking(current, new) is expected

    def test_nothing_reenters_pending(self):
        for status in BookingStatus.values:
            assert not can_transition_booking(status, 'pending')

    @pytest.mark.parametrize('status', ['completed', 'cancelled'])
    def test_terminal_states_have_no_exits(self, status):
        assert is_terminal(status)
        assert not any(can_transition_booking(status, other) for other in BookingStatus.values)

    def test_unknown_state_is_rejected(self):
        assert not can_transition_booking('pending', 'shipped')
        assert not can_transition_booking('lost', 'accepted')


class TestPaymentTransitions:

    @pytest.mark.parametrize('current,new', [
        ('pending', 'authorized'),
        ('pending', 'failed'),
        ('authorized', 'paid'),
        ('authorized', 'refunded'),
        ('authorized', 'partially_refunded'),
        ('paid', 'refunded'),
        ('paid', 'partially_refunded'),
        ('partially_refunded', 'partially_refunded'),
        ('partially_refunded', 'refunded'),
    ])
    def test_allowed_edges(self, current, new):
        assert can_transition_payment(current, new)

    def test_only_listed_edges_are_allowed(self):
        for current, new in itertools.product(PaymentStatus.values, repeat=2):
            expected = PaymentStatus(new) in PAYMENT_TRANSITIONS[PaymentStatus(current)]
            assert can_transition_payment(current, new) is expected

    def test_nothing_reenters_pending_or_authorized(self):
        for status in PaymentStatus.values:
            assert not can_transition_payment(status, 'pending')
            assert not can_transition_payment(status, 'authorized') or status == 'pending'

    @pytest.mark.parametrize('status', ['refunded', 'failed'])
    def test_settled_states_have_no_exits(self, status):
        assert not any(can_transition_payment(status, other) for other in PaymentStatus.values)

    def test_stale_authorization_after_capture_is_not_an_edge(self):
        assert not can_transition_payment('paid', 'authorized')


class TestCorrelation:

    @pytest.mark.parametrize('status,payment_status', [
        ('pending', 'pending'),
        ('accepted', 'authorized'),
        ('completed', 'paid'),
        ('completed', 'partially_refunded'),
        ('cancelled', 'failed'),
        ('cancelled', 'refunded'),
        ('cancelled', 'partially_refunded'),
    ])
    def test_allowed_pairs(self, status, payment_status):
        assert is_consistent(status, payment_status)

    @pytest.mark.parametrize('status,payment_status', [
        ('pending', 'paid'),
        ('in_progress', 'refunded'),
        ('completed', 'pending'),
        ('completed', 'failed'),
        ('accepted', 'failed'),
    ])
    def test_forbidden_pairs(self, status, payment_status):
        assert not is_consistent(status, payment_status)

    def test_every_status_has_a_row(self):
        assert set(ALLOWED_COMBINATIONS) == set(BookingStatus)
