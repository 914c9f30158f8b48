"""
URL routing for the timetable API.
"""

from datetime import date

from django.urls import path, register_converter

from .views import (
    EventDetailView,
    OccurrenceDetailView,
    OccurrenceRestoreView,
    ScheduleEventCreateView,
    ScheduleOccurrenceListView,
)


class IsoDateConverter:
    """Matches YYYY-MM-DD and converts to a date."""

    regex = r'\d{4}-\d{2}-\d{2}'

    def to_python(self, value):
        return date.fromisoformat(value)

    def to_url(self, value):
        return value.isoformat()


register_converter(IsoDateConverter, 'isodate')

urlpatterns = [
    path('schedules/<int:schedule_id>/occurrences/', ScheduleOccurrenceListView.as_view(), name='schedule-occurrences'),
    path('schedules/<int:schedule_id>/events/', ScheduleEventCreateView.as_view(), name='schedule-event-create'),
    path('events/<int:pk>/', EventDetailView.as_view(), name='event-detail'),
    path('events/<int:pk>/occurrences/<isodate:occurrence_date>/', OccurrenceDetailView.as_view(), name='occurrence-detail'),
    path('events/<int:pk>/occurrences/<isodate:occurrence_date>/restore/', OccurrenceRestoreView.as_view(), name='occurrence-restore'),
]
