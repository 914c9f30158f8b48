"""
Service layer for timetable business logic.

Reads go through get_occurrences_in_range, which materializes recurring
events against a ScheduleStore. Writes work on Django models, except the
per-occurrence operations which upsert exceptions through the store.
"""

import logging
from datetime import date, time, timedelta
from typing import List, Optional, Tuple

from django.db import transaction

from .errors import (
    Anomaly,
    EventNotFoundError,
    ExceptionNotFoundError,
    InvalidOccurrenceDateError,
    InvalidRangeError,
    NotRecurringError,
)
from .materialization import apply_exceptions, generate_dates, merge_occurrences
from .models import Academy, Event, RecurringException as ExceptionRow, RecurringPattern, Schedule
from .stores import AcademyStore, DjangoScheduleStore, ScheduleStore
from .types import (
    AcademySubject,
    BaseEvent,
    CancelException,
    Category,
    EventUpdateData,
    ModifyException,
    Occurrence,
    OccurrenceOverrideData,
    PatternUpdateData,
    RecurringException,
    Weekday,
    WeekdaySet,
)

logger = logging.getLogger(__name__)


def get_occurrences_in_range(
    schedule_id: int,
    start_date: date,
    end_date: date,
    store: Optional[ScheduleStore] = None,
    academies: Optional[AcademyStore] = None
) -> List[Occurrence]:
    """
    Materialize every occurrence of a schedule within a date range.

    Args:
        schedule_id: Schedule to query
        start_date: Range start (inclusive)
        end_date: Range end (inclusive)
        store: ScheduleStore to read from (defaults to the Django store)
        academies: AcademyStore for academy overrides (defaults to store)

    Returns:
        Occurrences sorted by (event_date, start_time)

    Raises:
        InvalidRangeError: If start_date is after end_date
    """
    if start_date > end_date:
        raise InvalidRangeError(start_date, end_date)

    store = store or DjangoScheduleStore()
    academies = academies or store

    regular = [
        Occurrence.from_event(event, event.event_date)
        for event in store.load_regular_events(schedule_id, start_date, end_date)
    ]

    recurring = []
    for base_event in store.load_recurring_base_events(schedule_id, start_date, end_date):
        recurring.extend(
            _materialize_event(base_event, start_date, end_date, store, academies)
        )

    occurrences = merge_occurrences(regular, recurring)
    logger.debug(
        "Schedule %s %s..%s: %d one-off, %d recurring, %d after merge",
        schedule_id, start_date, end_date, len(regular), len(recurring), len(occurrences)
    )
    return occurrences


def _materialize_event(
    base_event: BaseEvent,
    start_date: date,
    end_date: date,
    store: ScheduleStore,
    academies: AcademyStore
) -> List[Occurrence]:
    """Expand one recurring base event and apply its exceptions."""
    pattern = store.load_pattern(base_event.pattern_id)
    if pattern is None:
        logger.warning(
            "%s: event %s references missing pattern %s",
            Anomaly.DANGLING_PATTERN.value,
            base_event.id,
            base_event.pattern_id,
        )
        return []

    dates = generate_dates(pattern, start_date, end_date)
    if not dates:
        return []

    exceptions = {
        exception.exception_date: exception
        for exception in store.load_exceptions(base_event.id, start_date, end_date)
    }
    return apply_exceptions(base_event, dates, exceptions, academies)


def get_event(event_id: int) -> Event:
    """
    Get a live event by ID.

    Raises:
        EventNotFoundError: If the event does not exist or was deleted
    """
    event = Event.objects.alive().select_related('pattern').filter(pk=event_id).first()
    if event is None:
        raise EventNotFoundError(event_id)
    return event


@transaction.atomic
def find_or_create_academy(name: str, subject: AcademySubject) -> Academy:
    """
    Reuse a live academy with the same name and subject, or create one.

    Raises:
        ValueError: If name is blank
    """
    name = name.strip()
    if not name:
        raise ValueError("Academy name is required")

    subject = AcademySubject(subject).value
    academy = Academy.objects.named(name, subject).first()
    if academy is None:
        academy = Academy.objects.create(name=name, subject=subject)
        logger.info("Created academy %s (%s)", academy.pk, name)
    return academy


@transaction.atomic
def create_one_time_event(
    schedule: Schedule,
    title: str,
    event_date: date,
    start_time: time,
    end_time: time,
    category: Category = Category.NONE,
    academy: Optional[Academy] = None
) -> Event:
    """
    Create a one-off event.

    Raises:
        ValueError: If the title is blank or start_time is not before end_time
    """
    _validate_times(start_time, end_time)

    event = Event.objects.create(
        schedule=schedule,
        title=_event_title(title, category, academy),
        event_date=event_date,
        start_time=start_time,
        end_time=end_time,
        category=Category(category).value,
        academy=academy,
    )
    logger.info("Created one-off event %s on %s", event.pk, event_date)
    return event


@transaction.atomic
def create_multi_day_events(
    schedule: Schedule,
    title: str,
    weekdays: WeekdaySet,
    base_date: date,
    start_time: time,
    end_time: time,
    category: Category = Category.NONE,
    academy: Optional[Academy] = None
) -> List[Event]:
    """
    Create one non-recurring event per weekday, each on the first matching
    date on or after base_date.

    Raises:
        ValueError: If no weekday is given or the times are invalid
    """
    if weekdays.is_empty:
        raise ValueError("At least one weekday is required")

    return [
        create_one_time_event(
            schedule=schedule,
            title=title,
            event_date=next_date_for_weekday(base_date, weekday),
            start_time=start_time,
            end_time=end_time,
            category=category,
            academy=academy,
        )
        for weekday in weekdays
    ]


def next_date_for_weekday(base_date: date, weekday: Weekday) -> date:
    """First date on or after base_date that falls on weekday."""
    days_until_target = (weekday - base_date.weekday()) % 7
    return base_date + timedelta(days=days_until_target)


@transaction.atomic
def create_recurring_event(
    schedule: Schedule,
    title: str,
    weekdays: WeekdaySet,
    start_date: date,
    start_time: time,
    end_time: time,
    category: Category = Category.NONE,
    academy: Optional[Academy] = None,
    end_date: Optional[date] = None
) -> Tuple[Event, RecurringPattern]:
    """
    Create a recurring base event together with its pattern.

    Args:
        schedule: Schedule the event belongs to
        title: Event title (academy events default to the academy name)
        weekdays: Days of week the event recurs on
        start_date: First date the pattern is active
        start_time: Time of day the event starts
        end_time: Time of day the event ends
        category: Event category
        academy: Optional academy for academy-category events
        end_date: Last date the pattern is active (None = no end)

    Returns:
        Tuple of (created Event, created RecurringPattern)

    Raises:
        ValueError: If validation fails
    """
    _validate_times(start_time, end_time)
    if end_date and start_date > end_date:
        raise ValueError("End date must not be before start date")

    pattern = RecurringPattern(start_date=start_date, end_date=end_date)
    pattern.set_weekdays(weekdays)
    pattern.save()

    event = Event.objects.create(
        schedule=schedule,
        title=_event_title(title, category, academy),
        start_time=start_time,
        end_time=end_time,
        category=Category(category).value,
        academy=academy,
        pattern=pattern,
    )
    logger.info("Created recurring event %s with pattern %s", event.pk, pattern.pk)
    return event, pattern


@transaction.atomic
def update_event(event: Event, update_data: EventUpdateData) -> Event:
    """
    Update a one-off event, or every occurrence of a recurring event.

    Occurrences that have a modify exception keep their overridden fields.

    Raises:
        ValueError: If the resulting times are invalid or a recurring
            event is given an event_date
    """
    if update_data.event_date is not None and event.is_recurring:
        raise ValueError("Recurring events have no event date")

    start_time = update_data.start_time or event.start_time
    end_time = update_data.end_time or event.end_time
    _validate_times(start_time, end_time)

    fields_to_update = {
        'title': update_data.title,
        'start_time': update_data.start_time,
        'end_time': update_data.end_time,
        'event_date': update_data.event_date,
        'category': Category(update_data.category).value if update_data.category else None,
        'academy_id': update_data.academy_id,
    }
    _apply_field_updates(event, fields_to_update)

    event.save()
    logger.info("Updated event %s", event.pk)
    return event


@transaction.atomic
def update_event_series(
    event: Event,
    update_data: EventUpdateData,
    pattern_data: Optional[PatternUpdateData] = None
) -> Event:
    """
    Update an event and, for recurring events, its pattern in one transaction.

    Raises:
        ValueError: If either update is invalid, or pattern changes are
            given for a one-off event
    """
    if pattern_data is not None and not event.is_recurring:
        raise ValueError("One-off events have no recurrence pattern")

    event = update_event(event, update_data)
    if pattern_data is not None:
        update_recurring_pattern(event.pattern, pattern_data)
    return event


@transaction.atomic
def update_recurring_pattern(
    pattern: RecurringPattern,
    update_data: PatternUpdateData
) -> RecurringPattern:
    """
    Update the weekdays, start date or end date of a pattern.

    Set clear_end_date to make the pattern open-ended again.

    Raises:
        ValueError: If the end date is before the start date
    """
    start_date = update_data.start_date or pattern.start_date
    if update_data.clear_end_date:
        end_date = None
    else:
        end_date = update_data.end_date or pattern.end_date

    if end_date is not None and end_date < start_date:
        raise ValueError("End date must not be before start date")

    if update_data.weekdays is not None:
        pattern.set_weekdays(update_data.weekdays)
    pattern.start_date = start_date
    pattern.end_date = end_date

    pattern.save()
    logger.info("Updated pattern %s", pattern.pk)
    return pattern


def modify_occurrence(
    event: Event,
    occurrence_date: date,
    overrides: OccurrenceOverrideData,
    store: Optional[ScheduleStore] = None
) -> RecurringException:
    """
    Edit a single occurrence of a recurring event ("this occurrence only").

    Creates the modify exception for the date, or replaces whatever
    exception already exists there.

    Raises:
        NotRecurringError: If the event is not recurring
        InvalidOccurrenceDateError: If the event does not occur on the date
        ValueError: If the resulting times are invalid
    """
    store = store or DjangoScheduleStore()
    _check_occurrence(event, occurrence_date, store)

    _validate_times(
        overrides.start_time or event.start_time,
        overrides.end_time or event.end_time
    )

    exception = store.upsert_exception(ModifyException(
        id=None,
        base_event_id=event.pk,
        exception_date=occurrence_date,
        title=overrides.title,
        start_time=overrides.start_time,
        end_time=overrides.end_time,
        category=Category(overrides.category) if overrides.category else None,
        academy_id=overrides.academy_id,
    ))
    logger.info("Modified occurrence of event %s on %s", event.pk, occurrence_date)
    return exception


def cancel_occurrence(
    event: Event,
    occurrence_date: date,
    store: Optional[ScheduleStore] = None
) -> RecurringException:
    """
    Remove a single occurrence of a recurring event ("this occurrence only").

    Raises:
        NotRecurringError: If the event is not recurring
        InvalidOccurrenceDateError: If the event does not occur on the date
    """
    store = store or DjangoScheduleStore()
    _check_occurrence(event, occurrence_date, store)

    exception = store.upsert_exception(CancelException(
        id=None,
        base_event_id=event.pk,
        exception_date=occurrence_date,
    ))
    logger.info("Cancelled occurrence of event %s on %s", event.pk, occurrence_date)
    return exception


def restore_occurrence(
    event: Event,
    occurrence_date: date,
    store: Optional[ScheduleStore] = None
) -> None:
    """
    Drop the exception on a date so the occurrence follows its pattern again.

    Raises:
        NotRecurringError: If the event is not recurring
        ExceptionNotFoundError: If there is no exception on the date
    """
    store = store or DjangoScheduleStore()
    if not event.is_recurring:
        raise NotRecurringError(event.pk)

    exceptions = store.load_exceptions(event.pk, occurrence_date, occurrence_date)
    if not exceptions:
        raise ExceptionNotFoundError(event.pk, occurrence_date)

    for exception in exceptions:
        store.delete_exception(exception.id)
    logger.info("Restored occurrence of event %s on %s", event.pk, occurrence_date)


@transaction.atomic
def delete_event(event: Event) -> None:
    """
    Delete an event.

    Deleting a recurring event also deletes its pattern and exceptions.
    """
    if event.is_recurring:
        RecurringPattern.objects.filter(pk=event.pattern_id).update(is_deleted=True)
        ExceptionRow.objects.alive().filter(base_event=event).update(is_deleted=True)

    event.is_deleted = True
    event.save()
    logger.info("Deleted event %s", event.pk)


def _check_occurrence(event: Event, occurrence_date: date, store: ScheduleStore) -> None:
    """Ensure the event is recurring and actually occurs on the date."""
    if not event.is_recurring:
        raise NotRecurringError(event.pk)

    pattern = store.load_pattern(event.pattern_id)
    if pattern is None or not generate_dates(pattern, occurrence_date, occurrence_date):
        raise InvalidOccurrenceDateError(event.pk, occurrence_date)


def _event_title(title: str, category: Category, academy: Optional[Academy]) -> str:
    """Academy events are titled after their academy unless given a title."""
    title = (title or '').strip()
    if not title and Category(category) == Category.ACADEMY and academy is not None:
        title = academy.name
    if not title:
        raise ValueError("Title is required")
    return title


def _validate_times(start_time: time, end_time: time) -> None:
    """Validate start_time is before end_time."""
    if start_time >= end_time:
        raise ValueError("Start time must be before end time")


def _apply_field_updates(obj, fields: dict) -> None:
    """Apply field updates to object if values are not None (DRY helper)."""
    for field_name, value in fields.items():
        if value is not None:
            setattr(obj, field_name, value)
