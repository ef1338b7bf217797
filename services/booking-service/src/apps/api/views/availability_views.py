# services/booking-service/src/apps/api/views/availability_views.py
"""
Availability API Views

Free slots per provider and service, and provider schedule management.
"""

import logging

from rest_framework import viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from apps.core.services import AvailabilityService
from apps.api.serializers import (
    DayAvailabilitySerializer,
    ScheduleSerializer,
    ScheduleUpdateSerializer,
    SlotQuerySerializer,
    WeekSlotQuerySerializer,
)
from .base import ActorMixin

logger = logging.getLogger(__name__)


class ProviderAvailabilityViewSet(ActorMixin, viewsets.ViewSet):
    """
    ViewSet for provider availability.

    ``slots`` answers a single day, ``week-slots`` a range of days
    starting today by default. Schedules are readable by anyone signed in
    and writable by the provider, its shop owner or an admin.
    """

    permission_classes = [IsAuthenticated]

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.availability_service = AvailabilityService()

    def _query(self, serializer_class):
        serializer = serializer_class(data=self.request.query_params)
        serializer.is_valid(raise_exception=True)
        return serializer.validated_data

    @action(detail=True, methods=['get'])
    def slots(self, request, pk=None):
        """Bookable start times for ``service_id`` on ``date``."""
        query = self._query(SlotQuerySerializer)
        day = self.availability_service.get_available_slots(pk, query['service_id'], query['date'])
        return Response(DayAvailabilitySerializer(day).data)

    @action(detail=True, methods=['get'], url_path='week-slots')
    def week_slots(self, request, pk=None):
        query = self._query(WeekSlotQuerySerializer)
        days = self.availability_service.get_provider_week_slots(
            pk, query['service_id'], start=query.get('start'), days=query.get('days')
        )
        return Response(DayAvailabilitySerializer(days, many=True).data)

    @action(detail=True, methods=['get', 'put'])
    def schedule(self, request, pk=None):
        if request.method == 'GET':
            schedule = self.availability_service.get_schedule(pk)
            return Response(ScheduleSerializer(schedule).data)

        serializer = ScheduleUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        schedule = self.availability_service.update_schedule(pk, serializer.to_update(), self.actor)
        return Response(ScheduleSerializer(schedule).data)
