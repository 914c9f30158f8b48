"""Views for the timetable API."""

import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from django.shortcuts import get_object_or_404

from rest_framework import status
from rest_framework.exceptions import ValidationError
from rest_framework.response import Response
from rest_framework.views import APIView

from .errors import (
    DomainError,
    EventNotFoundError,
    ExceptionNotFoundError,
    InvalidRangeError,
)
from .models import Academy, Schedule
from .serializers import (
    DateRangeQuerySerializer,
    EventCreateSerializer,
    EventReadSerializer,
    EventUpdateSerializer,
    OccurrenceOverrideSerializer,
    OccurrenceSerializer,
)
from . import services
from .types import EventUpdateData, OccurrenceOverrideData, PatternUpdateData

logger = logging.getLogger(__name__)


class DomainErrorMixin:
    """Maps domain and validation errors to 400/404 responses."""

    def handle_exception(self, exc):
        if isinstance(exc, (EventNotFoundError, ExceptionNotFoundError)):
            return Response({'code': exc.code.value, 'detail': exc.message},
                            status=status.HTTP_404_NOT_FOUND)
        if isinstance(exc, DomainError):
            return Response({'code': exc.code.value, 'detail': exc.message},
                            status=status.HTTP_400_BAD_REQUEST)
        if isinstance(exc, DjangoValidationError):
            exc = ValidationError(exc.messages)
        elif isinstance(exc, ValueError):
            exc = ValidationError({'detail': str(exc)})
        return super().handle_exception(exc)


class ScheduleOccurrenceListView(DomainErrorMixin, APIView):
    """
    List materialized occurrences of a schedule.

    GET /api/schedules/{id}/occurrences/?start=YYYY-MM-DD&end=YYYY-MM-DD
    """

    def get(self, request, schedule_id):
        """List occurrences within a date range."""
        schedule = get_object_or_404(Schedule, pk=schedule_id, is_deleted=False)
        query_serializer = DateRangeQuerySerializer(data=request.query_params)
        query_serializer.is_valid(raise_exception=True)

        start = query_serializer.validated_data['start']
        end = query_serializer.validated_data['end']
        try:
            occurrences = services.get_occurrences_in_range(schedule.pk, start, end)
        except InvalidRangeError:
            logger.info("Rejected range %s..%s for schedule %s", start, end, schedule.pk)
            raise

        serializer = OccurrenceSerializer(occurrences, many=True)
        return Response(serializer.data)


class ScheduleEventCreateView(DomainErrorMixin, APIView):
    """
    Create events in a schedule.

    POST /api/schedules/{id}/events/
    """

    def post(self, request, schedule_id):
        """Create a one-off, multi-day or recurring event."""
        schedule = get_object_or_404(Schedule, pk=schedule_id, is_deleted=False)
        serializer = EventCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        data = serializer.validated_data
        academy = self._academy_for(data)
        common = {
            'schedule': schedule,
            'title': data['title'],
            'start_time': data['start_time'],
            'end_time': data['end_time'],
            'category': data['category'],
            'academy': academy,
        }
        weekdays = data.get('weekdays')

        if data['is_recurring']:
            event, _ = services.create_recurring_event(
                weekdays=weekdays,
                start_date=data['event_date'],
                end_date=data.get('end_date'),
                **common
            )
            events = [event]
        elif weekdays is not None and len(weekdays) > 1:
            events = services.create_multi_day_events(
                weekdays=weekdays,
                base_date=data['event_date'],
                **common
            )
        else:
            events = [services.create_one_time_event(event_date=data['event_date'], **common)]

        response_serializer = EventReadSerializer(events, many=True)
        return Response(response_serializer.data, status=status.HTTP_201_CREATED)

    @staticmethod
    def _academy_for(data):
        if data.get('academy_id') is not None:
            return Academy.objects.get(pk=data['academy_id'])
        if data.get('academy_name', '').strip() and data.get('academy_subject'):
            return services.find_or_create_academy(data['academy_name'], data['academy_subject'])
        return None


class EventDetailView(DomainErrorMixin, APIView):
    """
    Retrieve, update, or delete an event.

    GET /api/events/{id}/ - Retrieve event
    PATCH /api/events/{id}/ - Update event (whole series for recurring events)
    DELETE /api/events/{id}/ - Delete event (and pattern for recurring events)
    """

    def get(self, request, pk):
        """Retrieve an event."""
        event = services.get_event(pk)
        serializer = EventReadSerializer(event)
        return Response(serializer.data)

    def patch(self, request, pk):
        """Update an event or every occurrence of a recurring event."""
        event = services.get_event(pk)
        serializer = EventUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        update_data = EventUpdateData(
            title=data.get('title'),
            start_time=data.get('start_time'),
            end_time=data.get('end_time'),
            event_date=data.get('event_date'),
            category=data.get('category'),
            academy_id=data.get('academy_id')
        )
        pattern_data = None
        if serializer.has_pattern_changes():
            pattern_data = PatternUpdateData(
                weekdays=data.get('weekdays'),
                start_date=data.get('start_date'),
                end_date=data.get('end_date'),
                clear_end_date='end_date' in data and data['end_date'] is None
            )
        updated_event = services.update_event_series(event, update_data, pattern_data)

        response_serializer = EventReadSerializer(updated_event)
        return Response(response_serializer.data)

    def delete(self, request, pk):
        """Delete an event."""
        event = services.get_event(pk)

        title = event.title
        services.delete_event(event)

        return Response({
            'message': f'Event "{title}" has been deleted.'
        }, status=status.HTTP_200_OK)


class OccurrenceDetailView(DomainErrorMixin, APIView):
    """
    Edit or delete a single occurrence of a recurring event.

    PUT /api/events/{id}/occurrences/{date}/ - Change this occurrence only
    DELETE /api/events/{id}/occurrences/{date}/ - Cancel this occurrence only
    """

    def put(self, request, pk, occurrence_date):
        """Override fields of one occurrence."""
        event = services.get_event(pk)
        serializer = OccurrenceOverrideSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        overrides = OccurrenceOverrideData(**serializer.validated_data)
        exception = services.modify_occurrence(event, occurrence_date, overrides)

        return Response({
            'exception_id': exception.id,
            'exception_date': occurrence_date.isoformat(),
            'exception_type': 'modify',
        }, status=status.HTTP_200_OK)

    def delete(self, request, pk, occurrence_date):
        """Cancel one occurrence."""
        event = services.get_event(pk)

        exception = services.cancel_occurrence(event, occurrence_date)

        return Response({
            'exception_id': exception.id,
            'exception_date': occurrence_date.isoformat(),
            'exception_type': 'cancel',
        }, status=status.HTTP_200_OK)


class OccurrenceRestoreView(DomainErrorMixin, APIView):
    """
    Revert an occurrence to its pattern by removing its exception.

    POST /api/events/{id}/occurrences/{date}/restore/
    """

    def post(self, request, pk, occurrence_date):
        """Restore one occurrence."""
        event = services.get_event(pk)

        services.restore_occurrence(event, occurrence_date)

        return Response({
            'message': f'Occurrence of "{event.title}" on {occurrence_date} has been restored.'
        }, status=status.HTTP_200_OK)
