"""
Store interfaces (repository pattern) and their implementations.

Stores must be swappable and return domain models from types.py. The
services layer only talks to these interfaces, so the engine runs the
same against the Django ORM or the in-memory store used in tests.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import date
from itertools import count
from typing import Dict, List, Optional

from django.db import transaction

from .models import Academy, Event, RecurringException as ExceptionRow, RecurringPattern as PatternRow
from .types import (
    AcademyInfo,
    AcademySubject,
    BaseEvent,
    CancelException,
    Category,
    ModifyException,
    RecurringException,
    RecurringPattern,
)


class ScheduleStore(ABC):
    """Interface for event, pattern and exception persistence."""

    @abstractmethod
    def load_regular_events(self, schedule_id: int, start: date, end: date) -> List[BaseEvent]:
        """Return one-off events of a schedule dated within [start, end]."""
        ...

    @abstractmethod
    def load_recurring_base_events(self, schedule_id: int, start: date, end: date) -> List[BaseEvent]:
        """Return recurring base events whose pattern window intersects [start, end]."""
        ...

    @abstractmethod
    def load_pattern(self, pattern_id: int) -> Optional[RecurringPattern]:
        """Return a pattern by ID, or None if not found."""
        ...

    @abstractmethod
    def load_exceptions(self, base_event_id: int, start: date, end: date) -> List[RecurringException]:
        """Return live exceptions of a base event dated within [start, end]."""
        ...

    @abstractmethod
    def upsert_exception(self, exception: RecurringException) -> RecurringException:
        """Create or replace the exception for (base_event_id, exception_date)."""
        ...

    @abstractmethod
    def delete_exception(self, exception_id: int) -> bool:
        """Remove an exception. Returns False if it did not exist."""
        ...


class AcademyStore(ABC):
    """Interface for academy display-field lookup."""

    @abstractmethod
    def load_academy(self, academy_id: int) -> Optional[AcademyInfo]:
        """Return an academy by ID, or None if missing or deleted."""
        ...


class DjangoScheduleStore(ScheduleStore, AcademyStore):
    """Database-backed store using the Django ORM."""

    def load_regular_events(self, schedule_id, start, end):
        rows = Event.objects.one_time_in_range(schedule_id, start, end).select_related('academy')
        return [_event_from_row(row) for row in rows]

    def load_recurring_base_events(self, schedule_id, start, end):
        patterns = PatternRow.objects.intersecting(start, end)
        rows = Event.objects.recurring_on_patterns(schedule_id, patterns).select_related('academy')
        return [_event_from_row(row) for row in rows]

    def load_pattern(self, pattern_id):
        row = PatternRow.objects.alive().filter(pk=pattern_id).first()
        if row is None:
            return None
        return RecurringPattern(
            id=row.pk,
            weekdays=row.weekdays,
            start_date=row.start_date,
            end_date=row.end_date,
        )

    def load_exceptions(self, base_event_id, start, end):
        rows = ExceptionRow.objects.for_event_in_range(base_event_id, start, end)
        return [_exception_from_row(row) for row in rows]

    @transaction.atomic
    def upsert_exception(self, exception):
        row, _ = ExceptionRow.objects.update_or_create(
            base_event_id=exception.base_event_id,
            exception_date=exception.exception_date,
            is_deleted=False,
            defaults=_exception_columns(exception),
        )
        return _exception_from_row(row)

    def delete_exception(self, exception_id):
        updated = ExceptionRow.objects.alive().filter(pk=exception_id).update(is_deleted=True)
        return updated > 0

    def load_academy(self, academy_id):
        row = Academy.objects.alive().filter(pk=academy_id).first()
        if row is None:
            return None
        return AcademyInfo(id=row.pk, name=row.name, subject=AcademySubject(row.subject))


def _event_from_row(row: Event) -> BaseEvent:
    academy = row.academy
    return BaseEvent(
        id=row.pk,
        schedule_id=row.schedule_id,
        title=row.title,
        start_time=row.start_time,
        end_time=row.end_time,
        category=Category(row.category),
        academy_id=row.academy_id,
        academy_name=academy.name if academy else None,
        academy_subject=AcademySubject(academy.subject) if academy else None,
        event_date=row.event_date,
        pattern_id=row.pattern_id,
    )


def _exception_from_row(row: ExceptionRow) -> RecurringException:
    if row.exception_type == ExceptionRow.CANCEL:
        return CancelException(
            id=row.pk,
            base_event_id=row.base_event_id,
            exception_date=row.exception_date,
        )
    return ModifyException(
        id=row.pk,
        base_event_id=row.base_event_id,
        exception_date=row.exception_date,
        title=row.modified_title,
        start_time=row.modified_start_time,
        end_time=row.modified_end_time,
        category=Category(row.modified_category) if row.modified_category else None,
        academy_id=row.modified_academy_id,
    )


def _exception_columns(exception: RecurringException) -> dict:
    """Column values for an exception row; a cancel clears every override."""
    if isinstance(exception, CancelException):
        return {
            'exception_type': ExceptionRow.CANCEL,
            'modified_title': None,
            'modified_start_time': None,
            'modified_end_time': None,
            'modified_category': None,
            'modified_academy_id': None,
        }
    return {
        'exception_type': ExceptionRow.MODIFY,
        'modified_title': exception.title,
        'modified_start_time': exception.start_time,
        'modified_end_time': exception.end_time,
        'modified_category': exception.category.value if exception.category else None,
        'modified_academy_id': exception.academy_id,
    }


class InMemoryScheduleStore(ScheduleStore, AcademyStore):
    """Dict-backed store for tests and embedding without a database."""

    def __init__(self) -> None:
        self.events: Dict[int, BaseEvent] = {}
        self.patterns: Dict[int, RecurringPattern] = {}
        self.exceptions: Dict[int, RecurringException] = {}
        self.academies: Dict[int, AcademyInfo] = {}
        self._exception_ids = count(1)
        self._lock = threading.Lock()

    def add_event(self, event: BaseEvent) -> BaseEvent:
        with self._lock:
            self.events[event.id] = event
        return event

    def add_pattern(self, pattern: RecurringPattern) -> RecurringPattern:
        with self._lock:
            self.patterns[pattern.id] = pattern
        return pattern

    def add_academy(self, academy: AcademyInfo) -> AcademyInfo:
        with self._lock:
            self.academies[academy.id] = academy
        return academy

    def load_regular_events(self, schedule_id, start, end):
        return [
            event for event in self._snapshot(self.events)
            if event.schedule_id == schedule_id
            and not event.is_recurring
            and start <= event.event_date <= end
        ]

    def load_recurring_base_events(self, schedule_id, start, end):
        events = []
        for event in self._snapshot(self.events):
            if event.schedule_id != schedule_id or not event.is_recurring:
                continue
            pattern = self.load_pattern(event.pattern_id)
            # Unknown patterns are passed through for the caller to report.
            if pattern is None or pattern.intersects(start, end):
                events.append(event)
        return events

    def load_pattern(self, pattern_id):
        with self._lock:
            return self.patterns.get(pattern_id)

    def load_exceptions(self, base_event_id, start, end):
        return [
            exception for exception in self._snapshot(self.exceptions)
            if exception.base_event_id == base_event_id
            and start <= exception.exception_date <= end
        ]

    def upsert_exception(self, exception):
        with self._lock:
            existing = self._find_exception(exception.base_event_id, exception.exception_date)
            exception_id = existing.id if existing else next(self._exception_ids)
            stored = replace(exception, id=exception_id)
            self.exceptions[exception_id] = stored
            return stored

    def delete_exception(self, exception_id):
        with self._lock:
            return self.exceptions.pop(exception_id, None) is not None

    def load_academy(self, academy_id):
        with self._lock:
            return self.academies.get(academy_id)

    def _snapshot(self, items):
        """Copy of a dict's values, taken under the write lock."""
        with self._lock:
            return list(items.values())

    def _find_exception(self, base_event_id, exception_date):
        for exception in self.exceptions.values():
            if exception.base_event_id == base_event_id and exception.exception_date == exception_date:
                return exception
        return None
