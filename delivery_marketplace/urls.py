"""
URL configuration for the delivery_marketplace project.
"""
from django.contrib import admin
from django.urls import path
from rest_framework_simplejwt.views import TokenRefreshView

from marketplace.views import (
    BookingAcceptView,
    BookingCancelView,
    BookingCaptureView,
    BookingCompleteView,
    BookingCreateView,
    BookingDetailView,
    BookingRefundView,
    BookingStartView,
    EmailTokenObtainPairView,
    PaymentWebhookView,
    ReviewCreateView,
    UserRatingView,
)


urlpatterns = [
    path('admin/', admin.site.urls),

    # JWT Authentication endpoints
    path('api/token/', EmailTokenObtainPairView.as_view(), name='token_obtain_pair'),
    path('api/token/refresh/', TokenRefreshView.as_view(), name='token_refresh'),

    # Booking endpoints
    path('api/bookings/', BookingCreateView.as_view(), name='booking_create'),
    path('api/bookings/<uuid:booking_id>/', BookingDetailView.as_view(), name='booking_detail'),
    path('api/bookings/<uuid:booking_id>/accept/', BookingAcceptView.as_view(), name='booking_accept'),
    path('api/bookings/<uuid:booking_id>/start/', BookingStartView.as_view(), name='booking_start'),
    path('api/bookings/<uuid:booking_id>/complete/', BookingCompleteView.as_view(), name='booking_complete'),
    path('api/bookings/<uuid:booking_id>/cancel/', BookingCancelView.as_view(), name='booking_cancel'),
    path('api/bookings/<uuid:booking_id>/capture/', BookingCaptureView.as_view(), name='booking_capture'),
    path('api/bookings/<uuid:booking_id>/refund/', BookingRefundView.as_view(), name='booking_refund'),

    # Payment gateway notifications
    path('api/payments/webhook/', PaymentWebhookView.as_view(), name='payment_webhook'),

    # Reviews and ratings
    path('api/reviews/', ReviewCreateView.as_view(), name='review_create'),
    path('api/users/<int:user_id>/rating/', UserRatingView.as_view(), name='user_rating'),
]
