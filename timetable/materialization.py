"""
Recurring event materialization.

Three in-memory stages, composed by the services layer:
- generate_dates: pattern + range -> matching calendar dates
- apply_exceptions: dates + per-date overrides -> occurrences
- merge_occurrences: one-off + recurring occurrences -> deduplicated list

None of these touch the database; academy display fields are resolved
through whatever AcademyStore the caller passes in.
"""

import logging
from datetime import date, timedelta
from itertools import chain
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional

from .errors import Anomaly
from .types import (
    BaseEvent,
    CancelException,
    ModifyException,
    Occurrence,
    RecurringException,
    RecurringPattern,
)

if TYPE_CHECKING:
    from .stores import AcademyStore

logger = logging.getLogger(__name__)


def generate_dates(
    pattern: RecurringPattern,
    range_start: date,
    range_end: date
) -> List[date]:
    """
    Calculate the dates a pattern occurs on within a range.

    Args:
        pattern: RecurringPattern to expand
        range_start: First date of the query range (inclusive)
        range_end: Last date of the query range (inclusive)

    Returns:
        Ascending list of dates; empty if the pattern and range do not overlap
    """
    if pattern.weekdays.is_empty:
        logger.warning(
            "%s: pattern %s has no weekdays set",
            Anomaly.MALFORMED_PATTERN.value,
            pattern.id,
        )
        return []

    lower, upper = _clamp_range(pattern, range_start, range_end)

    dates = []
    current_date = lower
    while current_date <= upper:
        if pattern.weekdays.contains(current_date):
            dates.append(current_date)
        current_date += timedelta(days=1)

    return dates


def _clamp_range(pattern: RecurringPattern, range_start: date, range_end: date):
    """Intersect the query range with the pattern's validity window."""
    lower = max(range_start, pattern.start_date)
    upper = range_end
    if pattern.end_date is not None and pattern.end_date < upper:
        upper = pattern.end_date
    return lower, upper


def apply_exceptions(
    base_event: BaseEvent,
    dates: Iterable[date],
    exceptions: Dict[date, RecurringException],
    academies: "AcademyStore"
) -> List[Occurrence]:
    """
    Project a recurring base event onto dates, honouring per-date overrides.

    Args:
        base_event: The recurring BaseEvent
        dates: Dates produced by generate_dates for this event's pattern
        exceptions: Mapping of exception_date to exception for this event
        academies: AcademyStore used to re-resolve overridden academies

    Returns:
        List of Occurrence instances; cancelled dates are omitted
    """
    occurrences = []
    for occurrence_date in dates:
        exception = exceptions.get(occurrence_date)

        if exception is not None and exception.base_event_id != base_event.id:
            logger.warning(
                "%s: exception %s on %s references event %s, not %s",
                Anomaly.DANGLING_EXCEPTION.value,
                exception.id,
                occurrence_date,
                exception.base_event_id,
                base_event.id,
            )
            exception = None

        occurrence = _project(base_event, occurrence_date, exception, academies)
        if occurrence is not None:
            occurrences.append(occurrence)

    return occurrences


def _project(
    base_event: BaseEvent,
    occurrence_date: date,
    exception: Optional[RecurringException],
    academies: "AcademyStore"
) -> Optional[Occurrence]:
    """Build the occurrence for one date, or None if it is cancelled."""
    occurrence = Occurrence.from_event(base_event, occurrence_date)

    if exception is None:
        return occurrence
    if isinstance(exception, CancelException):
        return None
    if isinstance(exception, ModifyException):
        return _apply_modification(occurrence, base_event, exception, academies)

    raise TypeError(f"Unknown exception type: {type(exception).__name__}")


def _apply_modification(
    occurrence: Occurrence,
    base_event: BaseEvent,
    exception: ModifyException,
    academies: "AcademyStore"
) -> Occurrence:
    """Overlay the set fields of a modify exception on the base projection."""
    overrides = {
        'title': exception.title,
        'start_time': exception.start_time,
        'end_time': exception.end_time,
        'category': exception.category,
    }
    changes = {name: value for name, value in overrides.items() if value is not None}

    if exception.academy_id is not None:
        changes['academy_id'] = exception.academy_id
        changes.update(_resolve_academy_fields(base_event, exception, academies))

    return occurrence.with_changes(exception_id=exception.id, **changes)


def _resolve_academy_fields(
    base_event: BaseEvent,
    exception: ModifyException,
    academies: "AcademyStore"
) -> dict:
    """Look up display fields for an overridden academy, falling back to the base event's."""
    academy = academies.load_academy(exception.academy_id)
    if academy is None:
        logger.warning(
            "%s: academy %s for exception %s not found, keeping event %s display fields",
            Anomaly.ACADEMY_RESOLUTION_FAILURE.value,
            exception.academy_id,
            exception.id,
            base_event.id,
        )
        return {
            'academy_name': base_event.academy_name,
            'academy_subject': base_event.academy_subject,
        }
    return {'academy_name': academy.name, 'academy_subject': academy.subject}


def merge_occurrences(
    regular: Iterable[Occurrence],
    recurring: Iterable[Occurrence]
) -> List[Occurrence]:
    """
    Combine one-off and recurring occurrences, dropping duplicates.

    Two occurrences are duplicates when they share date, start time, title
    and category. An occurrence produced by an exception replaces a plain
    one; otherwise the first one seen is kept.

    Returns:
        Occurrences sorted by (event_date, start_time)
    """
    kept: Dict[tuple, Occurrence] = {}
    for occurrence in chain(regular, recurring):
        key = occurrence.dedup_key
        current = kept.get(key)
        if current is None:
            kept[key] = occurrence
        elif occurrence.is_exception and not current.is_exception:
            kept[key] = occurrence

    return sorted(kept.values(), key=lambda o: (o.event_date, o.start_time))
