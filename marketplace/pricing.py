"""
Pricing calculator for delivery bookings.

Pure functions only: the price of a booking is derived from the listing's
tariff and the trip estimate once, at creation time, and stored on the
booking. Nothing here touches the database.
"""

import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

CENT = Decimal('0.01')
EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True)
class PriceQuote:
    """Itemised price for one booking."""

    base_fare: Decimal
    distance_fare: Decimal
    time_fare: Decimal
    minimum_price: Decimal
    total: Decimal

    def as_dict(self):
        return {
            'base_fare': str(self.base_fare),
            'distance_fare': str(self.distance_fare),
            'time_fare': str(self.time_fare),
            'minimum_price': str(self.minimum_price),
            'total': str(self.total),
        }


def to_money(value):
    """Coerce ``value`` to a two-decimal ``Decimal``, rounding half up."""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValueError(f'Not a monetary amount: {value!r}')
    if not amount.is_finite():
        raise ValueError(f'Not a monetary amount: {value!r}')
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_price(base_price, distance_km=0, duration_minutes=0,
                    price_per_km=0, price_per_minute=0, minimum_price=0):
    """
    Compute the total price of a trip.

    total = max(base + distance * per_km + duration * per_minute, minimum)

    Args:
        base_price: Flat fee charged for every booking
        distance_km: Estimated trip distance in kilometres
        duration_minutes: Estimated trip duration in minutes
        price_per_km: Distance rate
        price_per_minute: Time rate
        minimum_price: Floor applied to the final total

    Returns:
        PriceQuote: Itemised quote with a non-negative total

    Raises:
        ValueError: If any input is negative or not a number
    """
    inputs = {
        'base_price': base_price,
        'distance_km': distance_km or 0,
        'duration_minutes': duration_minutes or 0,
        'price_per_km': price_per_km or 0,
        'price_per_minute': price_per_minute or 0,
        'minimum_price': minimum_price or 0,
    }
    values = {}
    for name, raw in inputs.items():
        try:
            value = raw if isinstance(raw, Decimal) else Decimal(str(raw))
        except (InvalidOperation, ValueError, TypeError):
            raise ValueError(f'{name} must be a number, got {raw!r}')
        if not value.is_finite() or value < 0:
            raise ValueError(f'{name} must be a non-negative number, got {raw!r}')
        values[name] = value

    base_fare = to_money(values['base_price'])
    distance_fare = to_money(values['distance_km'] * values['price_per_km'])
    time_fare = to_money(values['duration_minutes'] * values['price_per_minute'])
    minimum = to_money(values['minimum_price'])

    total = max(base_fare + distance_fare + time_fare, minimum)

    return PriceQuote(
        base_fare=base_fare,
        distance_fare=distance_fare,
        time_fare=time_fare,
        minimum_price=minimum,
        total=total,
    )


def quote_for_listing(listing, distance_km=0, duration_minutes=0):
    """Price a trip using the tariff stored on ``listing``."""
    return calculate_price(
        base_price=listing.base_price,
        distance_km=distance_km,
        duration_minutes=duration_minutes,
        price_per_km=listing.price_per_km,
        price_per_minute=listing.price_per_minute,
        minimum_price=listing.minimum_price,
    )


def haversine_km(lat1, lon1, lat2, lon2):
    """Great-circle distance between two points, in kilometres."""
    lat1, lon1, lat2, lon2 = (float(v) for v in (lat1, lon1, lat2, lon2))
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = (math.sin(dlat / 2) ** 2 +
         math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) *
         math.sin(dlon / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return Decimal(str(round(EARTH_RADIUS_KM * c, 3)))
