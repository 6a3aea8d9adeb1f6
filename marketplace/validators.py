"""
Custom field validators for marketplace models.
"""

from decimal import Decimal

from django.core.exceptions import ValidationError


def validate_latitude(value):
    """Latitude must lie within [-90, 90]."""
    if value is None:
        return
    if not Decimal('-90') <= Decimal(str(value)) <= Decimal('90'):
        raise ValidationError(
            f'Latitude must be between -90 and 90, got {value}.',
            code='invalid_latitude'
        )


def validate_longitude(value):
    """Longitude must lie within [-180, 180]."""
    if value is None:
        return
    if not Decimal('-180') <= Decimal(str(value)) <= Decimal('180'):
        raise ValidationError(
            f'Longitude must be between -180 and 180, got {value}.',
            code='invalid_longitude'
        )
