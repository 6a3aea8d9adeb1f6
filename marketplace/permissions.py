"""
Custom permission classes for the delivery marketplace API.
"""

from rest_framework import permissions


class IsConsumer(permissions.BasePermission):
    """
    Allows only consumers to access the endpoint.

    Usage:
        class MyView(APIView):
            permission_classes = [IsAuthenticated, IsConsumer]
    """

    message = 'Only consumers can perform this action.'

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False

        return getattr(request.user, 'user_type', None) == 'consumer'


class IsBookingParticipant(permissions.BasePermission):
    """
    Object-level permission: the consumer or provider of a booking, or staff.

    Returns 403 Forbidden for any other authenticated user.
    """

    message = 'You do not have permission to view this booking.'

    def has_object_permission(self, request, view, obj):
        """
        Args:
            request: HTTP request object
            view: View being accessed
            obj: Booking instance

        Returns:
            bool: True if the user may see the booking
        """
        if not request.user or not request.user.is_authenticated:
            return False

        if request.user.is_staff:
            return True

        return request.user.id in (obj.consumer_id, obj.provider_id)
