# services/booking-service/src/apps/api/views/booking_views.py
"""
Booking API Views

Booking requests, lifecycle actions and booking queries. Domain errors
propagate to the shared exception handler, which renders them with their
status code and error code.
"""

import logging

from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import filters, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from apps.core.services import BookingService
from apps.api.serializers import (
    BookingSerializer,
    BookingDetailSerializer,
    BookingCreateSerializer,
    BookingDetailsUpdateSerializer,
    BookingRejectSerializer,
    BookingCancelSerializer,
    BookingReassignSerializer,
    BookingRateSerializer,
    BookingPaySerializer,
    ReassignmentRecordSerializer,
)
from .base import ActorMixin
from .filters import BookingFilter

logger = logging.getLogger(__name__)


class BookingViewSet(ActorMixin, viewsets.GenericViewSet):
    """
    ViewSet for bookings.

    Lists only bookings the caller takes part in (everything for admins)
    and exposes every lifecycle transition as a POST action.
    """

    serializer_class = BookingSerializer
    permission_classes = [IsAuthenticated]
    filter_backends = [DjangoFilterBackend, filters.OrderingFilter]
    filterset_class = BookingFilter
    ordering_fields = ['booking_date', 'booking_time', 'created_at', 'status']
    ordering = ['-booking_date', '-booking_time']

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.booking_service = BookingService()

    def get_queryset(self):
        return self.booking_service.list_bookings(
            self.actor, role=self.request.query_params.get('role') or None
        )

    def get_serializer_class(self):
        """Return appropriate serializer based on action."""
        if self.action == 'create':
            return BookingCreateSerializer
        elif self.action == 'partial_update':
            return BookingDetailsUpdateSerializer
        elif self.action in ('list', 'pending'):
            return BookingSerializer
        return BookingDetailSerializer

    def get_serializer_context(self):
        context = super().get_serializer_context()
        context['booking_service'] = self.booking_service
        context['actor'] = self.actor
        return context

    def _booking_response(self, booking, status_code=status.HTTP_200_OK):
        serializer = BookingDetailSerializer(booking, context=self.get_serializer_context())
        return Response(serializer.data, status=status_code)

    def _validated(self, serializer_class):
        serializer = serializer_class(data=self.request.data)
        serializer.is_valid(raise_exception=True)
        return serializer

    def _paginated(self, queryset):
        page = self.paginate_queryset(queryset)
        if page is not None:
            serializer = BookingSerializer(page, many=True, context=self.get_serializer_context())
            return self.get_paginated_response(serializer.data)
        serializer = BookingSerializer(queryset, many=True, context=self.get_serializer_context())
        return Response(serializer.data)

    # ==========================================================================
    # Requests and Queries
    # ==========================================================================

    def list(self, request, *args, **kwargs):
        """List the caller's bookings. ``role`` narrows to customer or provider side."""
        return self._paginated(self.filter_queryset(self.get_queryset()))

    def create(self, request, *args, **kwargs):
        """Request a booking."""
        serializer = self._validated(BookingCreateSerializer)
        booking = self.booking_service.create_booking(self.actor, serializer.to_command())
        return self._booking_response(booking, status.HTTP_201_CREATED)

    def retrieve(self, request, pk=None):
        booking = self.booking_service.get_booking(pk, self.actor)
        return self._booking_response(booking)

    def partial_update(self, request, pk=None):
        """Change notes, address or payment method."""
        serializer = self._validated(BookingDetailsUpdateSerializer)
        booking = self.booking_service.update_booking_details(pk, self.actor, serializer.to_update())
        return self._booking_response(booking)

    @action(detail=False, methods=['get'])
    def pending(self, request):
        """Requests waiting on the caller's decision."""
        return self._paginated(self.booking_service.list_pending_requests(self.actor))

    @action(detail=True, methods=['get'])
    def reassignments(self, request, pk=None):
        """Reassignment history of a booking, oldest first."""
        records = self.booking_service.get_reassignment_history(pk, self.actor)
        return Response(ReassignmentRecordSerializer(records, many=True).data)

    # ==========================================================================
    # Lifecycle Actions
    # ==========================================================================

    @action(detail=True, methods=['post'])
    def accept(self, request, pk=None):
        return self._booking_response(self.booking_service.accept(pk, self.actor))

    @action(detail=True, methods=['post'])
    def reject(self, request, pk=None):
        serializer = self._validated(BookingRejectSerializer)
        booking = self.booking_service.reject(pk, self.actor, serializer.validated_data['reason'])
        return self._booking_response(booking)

    @action(detail=True, methods=['post'])
    def reassign(self, request, pk=None):
        serializer = self._validated(BookingReassignSerializer)
        booking = self.booking_service.reassign(
            pk,
            self.actor,
            new_provider_id=serializer.validated_data.get('provider_id'),
            to_self=serializer.validated_data['to_self'],
        )
        return self._booking_response(booking)

    @action(detail=True, methods=['post'])
    def start(self, request, pk=None):
        return self._booking_response(self.booking_service.start(pk, self.actor))

    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        serializer = self._validated(BookingCancelSerializer)
        booking = self.booking_service.cancel(pk, self.actor, serializer.validated_data['reason'])
        return self._booking_response(booking)

    @action(detail=True, methods=['post'])
    def complete(self, request, pk=None):
        return self._booking_response(self.booking_service.complete(pk, self.actor))

    @action(detail=True, methods=['post'], url_path='no-show')
    def no_show(self, request, pk=None):
        return self._booking_response(self.booking_service.mark_no_show(pk, self.actor))

    @action(detail=True, methods=['post'])
    def rate(self, request, pk=None):
        serializer = self._validated(BookingRateSerializer)
        booking = self.booking_service.rate(
            pk, self.actor, serializer.validated_data['rating'], serializer.validated_data['review']
        )
        return self._booking_response(booking)

    @action(detail=True, methods=['post'])
    def pay(self, request, pk=None):
        serializer = self._validated(BookingPaySerializer)
        booking = self.booking_service.pay(pk, self.actor, serializer.validated_data.get('method'))
        return self._booking_response(booking)
