"""
Data types and constants for the timetable engine.

This module contains:
- Domain value types (weekday mask, categories, patterns, events, exceptions)
- The derived Occurrence produced by materialization
- DTOs (Data Transfer Objects) for service layer operations
- Constants used across the application

Nothing in here depends on Django, so the engine can run against any store.
"""

from dataclasses import dataclass, replace
from datetime import date, time
from enum import Enum, IntEnum
from typing import FrozenSet, Iterable, Optional, Tuple, Union


DEFAULT_DAYS_AHEAD = 7


class Weekday(IntEnum):
    """Day of week, numbered like ``date.weekday()``."""
    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6

    @property
    def key(self) -> str:
        return self.name.lower()

    @classmethod
    def from_key(cls, key: str) -> 'Weekday':
        return cls[key.upper()]


class Category(str, Enum):
    SCHOOL = 'school'
    ACADEMY = 'academy'
    STUDY = 'study'
    REST = 'rest'
    NONE = 'none'


class AcademySubject(str, Enum):
    KOREAN = 'korean'
    MATH = 'math'
    ENGLISH = 'english'
    ARTS = 'arts'
    SOCIAL_SCIENCE = 'social_science'
    OTHER = 'other'


@dataclass(frozen=True)
class WeekdaySet:
    """Immutable weekly mask of the days a pattern recurs on."""
    days: FrozenSet[Weekday] = frozenset()

    @classmethod
    def of(cls, days: Iterable[Weekday]) -> 'WeekdaySet':
        return cls(days=frozenset(Weekday(day) for day in days))

    @classmethod
    def from_flags(cls, **flags: bool) -> 'WeekdaySet':
        """Build from ``monday=True, tuesday=False, ...`` style flags."""
        return cls.of(Weekday.from_key(key) for key, on in flags.items() if on)

    def to_flags(self) -> dict:
        return {day.key: day in self.days for day in Weekday}

    def contains(self, day: date) -> bool:
        return Weekday(day.weekday()) in self.days

    @property
    def is_empty(self) -> bool:
        return not self.days

    def __iter__(self):
        return iter(sorted(self.days))

    def __len__(self) -> int:
        return len(self.days)


@dataclass(frozen=True)
class AcademyInfo:
    """Display fields of an academy referenced by an event."""
    id: int
    name: str
    subject: AcademySubject


@dataclass(frozen=True)
class RecurringPattern:
    """Weekly recurrence rule; ``end_date`` of None means open ended."""
    id: int
    weekdays: WeekdaySet
    start_date: date
    end_date: Optional[date] = None

    def intersects(self, start: date, end: date) -> bool:
        return self.start_date <= end and (self.end_date is None or self.end_date >= start)


@dataclass(frozen=True)
class BaseEvent:
    """
    A persisted event before exceptions are applied.

    One-off events carry ``event_date``; recurring events carry
    ``pattern_id``. Never both, never neither.
    """
    id: int
    schedule_id: int
    title: str
    start_time: time
    end_time: time
    category: Category = Category.NONE
    academy_id: Optional[int] = None
    academy_name: Optional[str] = None
    academy_subject: Optional[AcademySubject] = None
    event_date: Optional[date] = None
    pattern_id: Optional[int] = None

    def __post_init__(self) -> None:
        if (self.event_date is None) == (self.pattern_id is None):
            raise ValueError("Event must have exactly one of event_date or pattern_id")
        if self.start_time >= self.end_time:
            raise ValueError("Start time must be before end time")

    @property
    def is_recurring(self) -> bool:
        return self.pattern_id is not None


@dataclass(frozen=True)
class CancelException:
    """Removes a single occurrence of a recurring event."""
    id: Optional[int]
    base_event_id: int
    exception_date: date


@dataclass(frozen=True)
class ModifyException:
    """Overrides fields of a single occurrence; None means inherit."""
    id: Optional[int]
    base_event_id: int
    exception_date: date
    title: Optional[str] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    category: Optional[Category] = None
    academy_id: Optional[int] = None


RecurringException = Union[CancelException, ModifyException]


@dataclass(frozen=True)
class Occurrence:
    """A concrete, dated projection of a base event after exceptions."""
    base_event_id: int
    schedule_id: int
    event_date: date
    title: str
    start_time: time
    end_time: time
    category: Category
    academy_id: Optional[int] = None
    academy_name: Optional[str] = None
    academy_subject: Optional[AcademySubject] = None
    pattern_id: Optional[int] = None
    exception_id: Optional[int] = None

    @classmethod
    def from_event(cls, event: BaseEvent, on: date) -> 'Occurrence':
        return cls(
            base_event_id=event.id,
            schedule_id=event.schedule_id,
            event_date=on,
            title=event.title,
            start_time=event.start_time,
            end_time=event.end_time,
            category=event.category,
            academy_id=event.academy_id,
            academy_name=event.academy_name,
            academy_subject=event.academy_subject,
            pattern_id=event.pattern_id,
        )

    def with_changes(self, **changes) -> 'Occurrence':
        return replace(self, **changes)

    @property
    def is_recurring(self) -> bool:
        return self.pattern_id is not None

    @property
    def is_exception(self) -> bool:
        return self.exception_id is not None

    @property
    def dedup_key(self) -> Tuple[date, time, str, Category]:
        return (self.event_date, self.start_time, self.title, self.category)


@dataclass
class EventUpdateData:
    """DTO for whole-event (or whole-series) update operations."""
    title: Optional[str] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    event_date: Optional[date] = None
    category: Optional[Category] = None
    academy_id: Optional[int] = None


@dataclass
class PatternUpdateData:
    """DTO for pattern update operations."""
    weekdays: Optional[WeekdaySet] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    clear_end_date: bool = False


@dataclass
class OccurrenceOverrideData:
    """DTO for "this occurrence only" edits."""
    title: Optional[str] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    category: Optional[Category] = None
    academy_id: Optional[int] = None
