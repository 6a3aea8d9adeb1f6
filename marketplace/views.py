"""
API views for the delivery marketplace.

Views stay thin: they authenticate, validate request shape, call the escrow
coordinator / review service and translate ``MarketplaceError`` into a
``{"detail", "code"}`` body with the error's status code.
"""

import logging

from django.contrib.auth import get_user_model
from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView
from rest_framework_simplejwt.views import TokenObtainPairView

from .escrow import EscrowCoordinator
from .exceptions import Forbidden, MarketplaceError, RetryableWebhookError
from .permissions import IsBookingParticipant, IsConsumer
from .reviews import create_review
from .serializers import (
    BookingCreateSerializer,
    BookingSerializer,
    CancelBookingSerializer,
    EmailTokenObtainPairSerializer,
    RefundRequestSerializer,
    RefundSerializer,
    ReviewCreateSerializer,
    ReviewSerializer,
    UserRatingSerializer,
)
from .store import BookingStore
from .webhooks import SIGNATURE_HEADER, TIMESTAMP_HEADER, WebhookEventProcessor

User = get_user_model()
logger = logging.getLogger(__name__)


def get_client_ip(request):
    """
    Get client IP address from request.
    Handles proxy headers for accurate IP detection.
    """
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        return x_forwarded_for.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR')


def error_response(exc, request, action):
    """Log a rejected request and render the domain error."""
    user_id = getattr(request.user, 'id', None)
    logger.warning(
        f"{action} rejected: {exc.code} ({exc.detail}). "
        f"User: {user_id}, IP: {get_client_ip(request)}"
    )
    return Response(exc.as_response_data(), status=exc.status_code)


class EmailTokenObtainPairView(TokenObtainPairView):
    """
    JWT token pair endpoint authenticating with email and password.
    """
    serializer_class = EmailTokenObtainPairSerializer


class BookingCreateView(APIView):
    """
    Create a booking and request a payment hold for it.

    POST /api/bookings/
    Headers: Authorization: Bearer <access_token>
    Request body: {
        "listing": 1,
        "scheduled_at": "2026-12-10T14:00:00Z",
        "pickup_location": "123 Main St",
        "dropoff_location": "456 Oak Ave",
        "distance_km": "12.5",
        "duration_minutes": 30
    }

    Success response (201):
    {
        "booking_id": "<uuid>",
        "payment_client_token": "<token for completing payment with the gateway>",
        "booking": {...}
    }

    Error responses:
    - 400: Invalid data, invalid_schedule, invalid_location, listing_unavailable
    - 401: Missing, invalid, or expired JWT token
    - 403: Non-consumer attempting to create a booking
    - 502: Payment provider could not place the hold
    """
    permission_classes = [IsAuthenticated]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = 'booking_create'

    def post(self, request, *args, **kwargs):
        if not IsConsumer().has_permission(request, self):
            return error_response(Forbidden(IsConsumer.message), request, 'Booking creation')

        serializer = BookingCreateSerializer(data=request.data, context={'request': request})
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        try:
            creation = EscrowCoordinator().create_booking(consumer=request.user, **serializer.validated_data)
        except MarketplaceError as exc:
            return error_response(exc, request, 'Booking creation')
        except Exception:
            logger.error(
                f"Unexpected error creating booking. User: {request.user.id}, IP: {get_client_ip(request)}",
                exc_info=True,
            )
            raise

        return Response(
            {
                'booking_id': str(creation.booking.id),
                'payment_client_token': creation.client_token,
                'booking': BookingSerializer(creation.booking).data,
            },
            status=status.HTTP_201_CREATED,
        )


class BookingDetailView(APIView):
    """
    GET /api/bookings/<uuid>/

    Visible to the booking's consumer and provider, and to staff.
    """
    permission_classes = [IsAuthenticated]

    def get(self, request, booking_id, *args, **kwargs):
        try:
            booking = BookingStore().get(booking_id)
        except MarketplaceError as exc:
            return error_response(exc, request, 'Booking lookup')

        if not IsBookingParticipant().has_object_permission(request, self, booking):
            return error_response(Forbidden(IsBookingParticipant.message), request, 'Booking lookup')

        return Response(BookingSerializer(booking).data, status=status.HTTP_200_OK)


class BookingTransitionView(APIView):
    """
    Base view for provider-driven fulfilment steps.

    Subclasses name the coordinator method in ``transition``. Response body:
    ``{"booking": {...}, "payment": {...} | null}`` where ``payment``
    reports the capture or refund triggered by the step.
    """
    permission_classes = [IsAuthenticated]
    transition = None

    def perform(self, coordinator, request, booking_id):
        return getattr(coordinator, self.transition)(booking_id, request.user)

    def post(self, request, booking_id, *args, **kwargs):
        try:
            result = self.perform(EscrowCoordinator(), request, booking_id)
        except MarketplaceError as exc:
            return error_response(exc, request, f'Booking {self.transition}')

        payment = None
        if result.payment_action:
            payment = {'action': result.payment_action, **result.payment_outcome}

        return Response(
            {'booking': BookingSerializer(result.booking).data, 'payment': payment},
            status=status.HTTP_200_OK,
        )


class BookingAcceptView(BookingTransitionView):
    """POST /api/bookings/<uuid>/accept/ (provider)"""
    transition = 'accept'


class BookingStartView(BookingTransitionView):
    """POST /api/bookings/<uuid>/start/ (provider)"""
    transition = 'start'


class BookingCompleteView(BookingTransitionView):
    """
    POST /api/bookings/<uuid>/complete/ (provider)

    Requires an authorized payment. Capture is requested right away; if the
    request fails the booking stays completed and ``payment.requested`` is
    false so the provider can retry through /capture/.
    """
    transition = 'complete'


class BookingCancelView(BookingTransitionView):
    """
    POST /api/bookings/<uuid>/cancel/ (consumer, provider or staff)

    Request body: {"refund_amount": "10.00"} (optional, defaults to full refund)
    """
    transition = 'cancel'

    def post(self, request, booking_id, *args, **kwargs):
        serializer = CancelBookingSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        self.refund_amount = serializer.validated_data.get('refund_amount')
        return super().post(request, booking_id, *args, **kwargs)

    def perform(self, coordinator, request, booking_id):
        return coordinator.cancel(booking_id, request.user, refund_amount=self.refund_amount)


class BookingCaptureView(APIView):
    """
    POST /api/bookings/<uuid>/capture/ (provider)

    Retries capture for a completed booking. Returns 202: the charge is
    confirmed later by the gateway webhook.
    """
    permission_classes = [IsAuthenticated]

    def post(self, request, booking_id, *args, **kwargs):
        try:
            booking = EscrowCoordinator().capture(booking_id, request.user)
        except MarketplaceError as exc:
            return error_response(exc, request, 'Payment capture')

        return Response({'booking': BookingSerializer(booking).data}, status=status.HTTP_202_ACCEPTED)


class BookingRefundView(APIView):
    """
    POST /api/bookings/<uuid>/refund/ (provider or staff)

    Request body: {"amount": "5.00"} (optional, defaults to the remaining balance)
    """
    permission_classes = [IsAuthenticated]

    def post(self, request, booking_id, *args, **kwargs):
        serializer = RefundRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        try:
            refund = EscrowCoordinator().refund(
                booking_id, request.user, amount=serializer.validated_data.get('amount')
            )
        except MarketplaceError as exc:
            return error_response(exc, request, 'Refund')

        return Response(RefundSerializer(refund).data, status=status.HTTP_202_ACCEPTED)


class PaymentWebhookView(APIView):
    """
    POST /api/payments/webhook/

    Receives signed notifications from the payment gateway. A 2xx response
    is only returned once the event's effect is committed; 503 asks the
    gateway to redeliver.
    """
    authentication_classes = []
    permission_classes = [AllowAny]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = 'payment_webhook'

    def post(self, request, *args, **kwargs):
        processor = WebhookEventProcessor()
        try:
            result = processor.process(
                request.body,
                request.headers.get(SIGNATURE_HEADER),
                request.headers.get(TIMESTAMP_HEADER),
            )
        except RetryableWebhookError as exc:
            logger.warning(f"Webhook deferred for redelivery: {exc.detail}")
            return Response(exc.as_response_data(), status=exc.status_code)
        except MarketplaceError as exc:
            return error_response(exc, request, 'Webhook')

        return Response({'status': result}, status=status.HTTP_200_OK)


class ReviewCreateView(APIView):
    """
    POST /api/reviews/

    Request body: {"booking_id": "<uuid>", "rating": 5, "comment": "On time"}
    """
    permission_classes = [IsAuthenticated]

    def post(self, request, *args, **kwargs):
        serializer = ReviewCreateSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        data = serializer.validated_data
        try:
            review = create_review(
                data['booking_id'],
                request.user,
                data['rating'],
                comment=data.get('comment', ''),
            )
        except MarketplaceError as exc:
            return error_response(exc, request, 'Review creation')

        return Response(ReviewSerializer(review).data, status=status.HTTP_201_CREATED)


class UserRatingView(APIView):
    """GET /api/users/<id>/rating/"""
    permission_classes = [IsAuthenticated]

    def get(self, request, user_id, *args, **kwargs):
        user = get_object_or_404(User, pk=user_id)
        return Response(UserRatingSerializer(user).data, status=status.HTTP_200_OK)
