"""
Error taxonomy for the booking and payment core.

Every error is a DRF ``APIException`` so views can hand the status code and
machine-readable code straight to the client.
"""

from rest_framework import status
from rest_framework.exceptions import APIException, NotFound


class MarketplaceError(APIException):
    """Base class for all domain errors raised by the core."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'The request could not be processed.'
    default_code = 'marketplace_error'
    retryable = False

    def __init__(self, detail=None, code=None):
        super().__init__(detail=detail, code=code or self.default_code)

    @property
    def code(self):
        return self.default_code

    def as_response_data(self):
        return {'detail': str(self.detail), 'code': self.code}


# Validation errors: rejected before any state change

class InvalidSchedule(MarketplaceError):
    default_detail = 'Scheduled time must be in the future.'
    default_code = 'invalid_schedule'


class InvalidLocation(MarketplaceError):
    default_detail = 'Required location information is missing or invalid.'
    default_code = 'invalid_location'


class InvalidAmount(MarketplaceError):
    default_detail = 'The requested amount is not valid for this booking.'
    default_code = 'invalid_amount'


class InvalidRating(MarketplaceError):
    default_detail = 'Rating must be an integer between 1 and 5.'
    default_code = 'invalid_rating'


class ListingUnavailable(MarketplaceError):
    default_detail = 'This listing is currently unavailable for booking.'
    default_code = 'listing_unavailable'


# Authorization errors

class Forbidden(MarketplaceError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'You do not have permission to perform this action on this booking.'
    default_code = 'forbidden'


class BookingNotFound(MarketplaceError, NotFound):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Booking not found.'
    default_code = 'not_found'


# State conflicts

class InvalidTransition(MarketplaceError):
    default_detail = 'This status change is not allowed from the current state.'
    default_code = 'invalid_transition'


class Conflict(MarketplaceError):
    """The booking changed underneath the caller; re-read and retry."""

    status_code = status.HTTP_409_CONFLICT
    default_detail = 'The booking was modified concurrently. Please retry.'
    default_code = 'conflict'
    retryable = True


class PaymentNotCapturable(MarketplaceError):
    default_detail = 'Payment can only be captured for a completed booking with an authorized payment.'
    default_code = 'payment_not_capturable'


class PaymentNotRefundable(MarketplaceError):
    default_detail = 'Payment for this booking cannot be refunded.'
    default_code = 'payment_not_refundable'


class BookingNotCompleted(MarketplaceError):
    default_detail = 'Only completed bookings can be reviewed.'
    default_code = 'booking_not_completed'


class DuplicateReview(MarketplaceError):
    default_detail = 'You have already reviewed this booking.'
    default_code = 'duplicate_review'


class SelfReview(MarketplaceError):
    default_detail = 'Reviewer and reviewee cannot be the same user.'
    default_code = 'self_review'


# External dependency

class PaymentGatewayError(MarketplaceError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = 'The payment provider could not process the request.'
    default_code = 'payment_gateway_error'
    retryable = True


# Inbound webhook integrity

class InvalidSignature(MarketplaceError):
    default_detail = 'Webhook signature verification failed.'
    default_code = 'invalid_signature'


class MalformedEvent(MarketplaceError):
    default_detail = 'Webhook payload is malformed.'
    default_code = 'malformed_event'


class RetryableWebhookError(MarketplaceError):
    """Tells the gateway to redeliver the event later."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = 'The event could not be applied right now. Please redeliver.'
    default_code = 'retry_later'
    retryable = True
