"""
Tests for the pricing calculator.

Tests cover:
- Base + distance + duration composition
- Minimum price floor
- Half-up rounding to cents
- Rejection of negative and non-numeric inputs
- Listing tariffs and great-circle distance
"""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from marketplace.pricing import calculate_price, haversine_km, quote_for_listing, to_money


class TestCalculatePrice:

    def test_flat_price(self):
        quote = calculate_price(Decimal('42.00'))
        assert quote.total == Decimal('42.00')
        assert quote.distance_fare == Decimal('0.00')
        assert quote.time_fare == Decimal('0.00')

    def test_distance_and_duration_are_added(self):
        quote = calculate_price(
            base_price=Decimal('5.00'),
            distance_km=Decimal('12.5'),
            duration_minutes=30,
            price_per_km=Decimal('1.50'),
            price_per_minute=Decimal('0.20'),
        )
        assert quote.distance_fare == Decimal('18.75')
        assert quote.time_fare == Decimal('6.00')
        assert quote.total == Decimal('29.75')

    def test_minimum_price_applies_to_short_trips(self):
        quote = calculate_price(
            base_price=Decimal('2.00'),
            distance_km=Decimal('1'),
            price_per_km=Decimal('1.00'),
            minimum_price=Decimal('10.00'),
        )
        assert quote.total == Decimal('10.00')
        assert quote.base_fare + quote.distance_fare == Decimal('3.00')

    def test_minimum_price_ignored_when_trip_costs_more(self):
        quote = calculate_price(
            base_price=Decimal('20.00'),
            minimum_price=Decimal('10.00'),
        )
        assert quote.total == Decimal('20.00')

    def test_rounds_half_up_to_cents(self):
        quote = calculate_price(
            base_price=Decimal('0'),
            distance_km=Decimal('0.125'),
            price_per_km=Decimal('1.00'),
        )
        assert quote.total == Decimal('0.13')

    def test_accepts_strings_and_ints(self):
        quote = calculate_price('10', distance_km='2', price_per_km=3)
        assert quote.total == Decimal('16.00')

    @pytest.mark.parametrize('field', [
        'base_price', 'distance_km', 'duration_minutes',
        'price_per_km', 'price_per_minute', 'minimum_price',
    ])
    def test_negative_input_rejected(self, field):
        kwargs = {'base_price': Decimal('10.00'), field: Decimal('-1')}
        with pytest.raises(ValueError):
            calculate_price(**kwargs)

    def test_non_numeric_input_rejected(self):
        with pytest.raises(ValueError):
            calculate_price('ten euros')

    def test_infinite_input_rejected(self):
        with pytest.raises(ValueError):
            calculate_price(Decimal('Infinity'))

    def test_quote_as_dict_uses_strings(self):
        quote = calculate_price(Decimal('42'))
        assert quote.as_dict()['total'] == '42.00'


class TestQuoteForListing:

    def test_uses_listing_tariff(self):
        listing = SimpleNamespace(
            base_price=Decimal('5.00'),
            price_per_km=Decimal('1.50'),
            price_per_minute=Decimal('0.20'),
            minimum_price=Decimal('10.00'),
        )
        quote = quote_for_listing(listing, distance_km=Decimal('10'), duration_minutes=15)
        assert quote.total == Decimal('23.00')


class TestHelpers:

    def test_to_money(self):
        assert to_money('1.005') == Decimal('1.01')
        assert to_money(Decimal('3')) == Decimal('3.00')

    def test_to_money_rejects_garbage(self):
        with pytest.raises(ValueError):
            to_money('abc')

    def test_haversine_same_point_is_zero(self):
        assert haversine_km(52.52, 13.405, 52.52, 13.405) == Decimal('0.0')

    def test_haversine_berlin_to_paris(self):
        distance = haversine_km(Decimal('52.520008'), Decimal('13.404954'),
                                Decimal('48.856613'), Decimal('2.352222'))
        assert Decimal('870') < distance < Decimal('885')
