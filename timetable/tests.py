"""
Tests for the timetable materialization engine.

Tests cover:
- Domain types (weekday mask, base event invariants)
- Occurrence generation, exception application and merging
- Query façade against the in-memory store
- Service layer against the Django store
- API endpoints
- Management commands
"""

import threading
from datetime import date, time, timedelta
from io import StringIO
from unittest import mock

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import SimpleTestCase, TestCase
from rest_framework import status
from rest_framework.test import APIClient, APITestCase

from . import services
from .errors import (
    EventNotFoundError,
    ExceptionNotFoundError,
    InvalidOccurrenceDateError,
    InvalidRangeError,
    NotRecurringError,
)
from .materialization import apply_exceptions, generate_dates, merge_occurrences
from .models import Academy, Event, RecurringException as ExceptionRow, RecurringPattern as PatternRow, Schedule
from .stores import InMemoryScheduleStore
from .types import (
    AcademyInfo,
    AcademySubject,
    BaseEvent,
    CancelException,
    Category,
    EventUpdateData,
    ModifyException,
    Occurrence,
    OccurrenceOverrideData,
    PatternUpdateData,
    RecurringPattern,
    Weekday,
    WeekdaySet,
)


MONDAYS_OF_JANUARY = [date(2025, 1, 6), date(2025, 1, 13), date(2025, 1, 20), date(2025, 1, 27)]


def make_pattern(*days, start_date=date(2025, 1, 6), end_date=None, pattern_id=1):
    return RecurringPattern(
        id=pattern_id,
        weekdays=WeekdaySet.of(days),
        start_date=start_date,
        end_date=end_date,
    )


def make_event(**overrides):
    fields = {
        'id': 1,
        'schedule_id': 1,
        'title': 'Sunrise Math',
        'start_time': time(16, 0),
        'end_time': time(17, 30),
        'category': Category.ACADEMY,
        'academy_id': 10,
        'academy_name': 'Sunrise Math',
        'academy_subject': AcademySubject.MATH,
        'pattern_id': 1,
    }
    fields.update(overrides)
    return BaseEvent(**fields)


def make_occurrence(**overrides):
    fields = {
        'base_event_id': 1,
        'schedule_id': 1,
        'event_date': date(2025, 1, 20),
        'title': 'Makeup Class',
        'start_time': time(16, 0),
        'end_time': time(17, 0),
        'category': Category.ACADEMY,
    }
    fields.update(overrides)
    return Occurrence(**fields)


class DomainTypeTests(SimpleTestCase):
    """Test invariants of the domain types."""

    def test_weekday_set_round_trips_flags(self):
        """Test flags convert to a WeekdaySet and back."""
        weekdays = WeekdaySet.from_flags(monday=True, wednesday=True, friday=False)

        self.assertEqual(list(weekdays), [Weekday.MONDAY, Weekday.WEDNESDAY])
        self.assertTrue(weekdays.to_flags()['wednesday'])
        self.assertFalse(weekdays.to_flags()['sunday'])

    def test_weekday_set_contains_date(self):
        """Test membership follows the date's weekday."""
        weekdays = WeekdaySet.of([Weekday.SUNDAY])

        self.assertTrue(weekdays.contains(date(2025, 1, 5)))
        self.assertFalse(weekdays.contains(date(2025, 1, 6)))

    def test_base_event_needs_exactly_one_of_date_or_pattern(self):
        """Test one-off and recurring are mutually exclusive."""
        with self.assertRaises(ValueError):
            make_event(event_date=date(2025, 1, 6))
        with self.assertRaises(ValueError):
            make_event(pattern_id=None)

    def test_base_event_rejects_end_before_start(self):
        """Test start_time must be before end_time."""
        with self.assertRaises(ValueError):
            make_event(start_time=time(18, 0), end_time=time(17, 0))


class GenerateDatesTests(SimpleTestCase):
    """Test occurrence date generation."""

    def test_monday_pattern_in_january(self):
        """Test the weekly Monday pattern yields every Monday from its start."""
        pattern = make_pattern(Weekday.MONDAY)

        dates = generate_dates(pattern, date(2025, 1, 1), date(2025, 1, 31))

        self.assertEqual(dates, MONDAYS_OF_JANUARY)

    def test_single_weekday_over_aligned_weeks(self):
        """Test N whole weeks yield exactly N dates on the weekday."""
        for weekday in Weekday:
            pattern = make_pattern(weekday, start_date=date(2024, 12, 30))

            dates = generate_dates(pattern, date(2025, 3, 3), date(2025, 3, 30))

            self.assertEqual(len(dates), 4)
            self.assertTrue(all(d.weekday() == weekday for d in dates))

    def test_crosses_year_boundary(self):
        """Test enumeration continues across December into January."""
        pattern = make_pattern(Weekday.TUESDAY, Weekday.THURSDAY, start_date=date(2024, 12, 1))

        dates = generate_dates(pattern, date(2024, 12, 29), date(2025, 1, 4))

        self.assertEqual(dates, [date(2024, 12, 31), date(2025, 1, 2)])

    def test_pattern_window_bounds_dates(self):
        """Test no date outside [start_date, end_date] is produced."""
        pattern = make_pattern(*Weekday, start_date=date(2025, 1, 10), end_date=date(2025, 1, 12))

        dates = generate_dates(pattern, date(2025, 1, 1), date(2025, 1, 31))

        self.assertEqual(dates, [date(2025, 1, 10), date(2025, 1, 11), date(2025, 1, 12)])

    def test_pattern_starting_after_range(self):
        """Test a pattern that starts after the range yields nothing."""
        pattern = make_pattern(Weekday.MONDAY, start_date=date(2025, 2, 3))

        self.assertEqual(generate_dates(pattern, date(2025, 1, 1), date(2025, 1, 31)), [])

    def test_pattern_without_weekdays(self):
        """Test an empty weekday mask yields nothing and is logged."""
        pattern = make_pattern()

        with self.assertLogs('timetable.materialization', level='WARNING') as logs:
            dates = generate_dates(pattern, date(2025, 1, 1), date(2025, 1, 31))

        self.assertEqual(dates, [])
        self.assertIn('MALFORMED_PATTERN', logs.output[0])

    def test_generation_is_restartable(self):
        """Test repeated calls give the same result."""
        pattern = make_pattern(Weekday.MONDAY, Weekday.FRIDAY)

        first = generate_dates(pattern, date(2025, 1, 1), date(2025, 2, 28))
        second = generate_dates(pattern, date(2025, 1, 1), date(2025, 2, 28))

        self.assertEqual(first, second)


class ApplyExceptionsTests(SimpleTestCase):
    """Test projection of recurring events through exceptions."""

    def setUp(self):
        self.academies = InMemoryScheduleStore()
        self.academies.add_academy(AcademyInfo(id=11, name='Star English', subject=AcademySubject.ENGLISH))
        self.event = make_event()

    def test_no_exceptions(self):
        """Test every date becomes an occurrence with the base fields."""
        occurrences = apply_exceptions(self.event, MONDAYS_OF_JANUARY, {}, self.academies)

        self.assertEqual([o.event_date for o in occurrences], MONDAYS_OF_JANUARY)
        self.assertTrue(all(o.title == 'Sunrise Math' for o in occurrences))
        self.assertFalse(any(o.is_exception for o in occurrences))

    def test_cancel_removes_only_its_date(self):
        """Test a cancel exception removes exactly one occurrence."""
        exceptions = {date(2025, 1, 13): CancelException(id=5, base_event_id=1, exception_date=date(2025, 1, 13))}

        occurrences = apply_exceptions(self.event, MONDAYS_OF_JANUARY, exceptions, self.academies)

        self.assertEqual(
            [o.event_date for o in occurrences],
            [date(2025, 1, 6), date(2025, 1, 20), date(2025, 1, 27)]
        )

    def test_modify_title_only_inherits_other_fields(self):
        """Test unset override fields keep the base event's values."""
        exceptions = {
            date(2025, 1, 20): ModifyException(
                id=6, base_event_id=1, exception_date=date(2025, 1, 20), title='Makeup Class'
            )
        }

        occurrences = apply_exceptions(self.event, MONDAYS_OF_JANUARY, exceptions, self.academies)
        modified = occurrences[2]

        self.assertEqual(modified.title, 'Makeup Class')
        self.assertEqual(modified.start_time, self.event.start_time)
        self.assertEqual(modified.end_time, self.event.end_time)
        self.assertEqual(modified.category, self.event.category)
        self.assertEqual(modified.academy_id, self.event.academy_id)
        self.assertEqual(modified.exception_id, 6)

    def test_modify_without_changes_is_still_tagged(self):
        """Test an override with no fields set still marks the occurrence."""
        exceptions = {date(2025, 1, 6): ModifyException(id=7, base_event_id=1, exception_date=date(2025, 1, 6))}

        occurrences = apply_exceptions(self.event, MONDAYS_OF_JANUARY, exceptions, self.academies)

        self.assertEqual(occurrences[0].title, 'Sunrise Math')
        self.assertTrue(occurrences[0].is_exception)

    def test_modified_academy_is_resolved(self):
        """Test an academy override refreshes the display fields."""
        exceptions = {
            date(2025, 1, 6): ModifyException(id=8, base_event_id=1, exception_date=date(2025, 1, 6), academy_id=11)
        }

        occurrence = apply_exceptions(self.event, MONDAYS_OF_JANUARY, exceptions, self.academies)[0]

        self.assertEqual(occurrence.academy_id, 11)
        self.assertEqual(occurrence.academy_name, 'Star English')
        self.assertEqual(occurrence.academy_subject, AcademySubject.ENGLISH)

    def test_missing_academy_falls_back_to_base(self):
        """Test an unresolvable academy keeps the base display fields."""
        exceptions = {
            date(2025, 1, 6): ModifyException(id=9, base_event_id=1, exception_date=date(2025, 1, 6), academy_id=99)
        }

        with self.assertLogs('timetable.materialization', level='WARNING') as logs:
            occurrence = apply_exceptions(self.event, MONDAYS_OF_JANUARY, exceptions, self.academies)[0]

        self.assertEqual(occurrence.academy_name, 'Sunrise Math')
        self.assertEqual(occurrence.academy_subject, AcademySubject.MATH)
        self.assertIn('ACADEMY_RESOLUTION_FAILURE', logs.output[0])

    def test_exception_for_another_event_is_skipped(self):
        """Test an exception referencing a different event is ignored."""
        exceptions = {date(2025, 1, 6): CancelException(id=10, base_event_id=42, exception_date=date(2025, 1, 6))}

        with self.assertLogs('timetable.materialization', level='WARNING') as logs:
            occurrences = apply_exceptions(self.event, MONDAYS_OF_JANUARY, exceptions, self.academies)

        self.assertEqual(len(occurrences), 4)
        self.assertIn('DANGLING_EXCEPTION', logs.output[0])


class MergeOccurrencesTests(SimpleTestCase):
    """Test merging and deduplication."""

    def test_exception_wins_in_either_order(self):
        """Test the exception-bearing duplicate survives regardless of input order."""
        plain = make_occurrence(base_event_id=2)
        modified = make_occurrence(pattern_id=1, exception_id=7)

        self.assertEqual(merge_occurrences([plain], [modified]), [modified])
        self.assertEqual(merge_occurrences([modified], [plain]), [modified])

    def test_first_seen_kept_without_exception(self):
        """Test the first duplicate is kept when neither carries an exception."""
        one_off = make_occurrence(base_event_id=2)
        recurring = make_occurrence(pattern_id=1)

        self.assertEqual(merge_occurrences([one_off], [recurring]), [one_off])

    def test_different_category_is_not_a_duplicate(self):
        """Test all four key fields must match."""
        first = make_occurrence()
        second = make_occurrence(category=Category.STUDY)

        self.assertEqual(len(merge_occurrences([first], [second])), 2)

    def test_merge_is_idempotent_and_order_independent(self):
        """Test re-merging or swapping inputs keeps the same set of keys."""
        regular = [make_occurrence(base_event_id=2), make_occurrence(event_date=date(2025, 1, 21))]
        recurring = [make_occurrence(pattern_id=1, exception_id=3), make_occurrence(start_time=time(9, 0))]

        merged = merge_occurrences(regular, recurring)
        swapped = merge_occurrences(recurring, regular)

        self.assertEqual(merge_occurrences(merged, []), merged)
        self.assertEqual({o.dedup_key for o in merged}, {o.dedup_key for o in swapped})
        self.assertEqual(len(merged), 3)

    def test_sorted_by_date_then_start_time(self):
        """Test output ordering."""
        late = make_occurrence(event_date=date(2025, 1, 21), start_time=time(8, 0))
        afternoon = make_occurrence(start_time=time(15, 0), title='B')
        morning = make_occurrence(start_time=time(9, 0), title='A')

        merged = merge_occurrences([late, afternoon], [morning])

        self.assertEqual(merged, [morning, afternoon, late])


class QueryFacadeTests(SimpleTestCase):
    """Test get_occurrences_in_range against the in-memory store."""

    def setUp(self):
        self.store = InMemoryScheduleStore()
        self.store.add_pattern(make_pattern(Weekday.MONDAY))
        self.store.add_academy(AcademyInfo(id=10, name='Sunrise Math', subject=AcademySubject.MATH))
        self.event = self.store.add_event(make_event())

    def _query(self, start=date(2025, 1, 1), end=date(2025, 1, 31)):
        return services.get_occurrences_in_range(1, start, end, store=self.store)

    def test_monday_scenario(self):
        """Test the plain weekly pattern."""
        occurrences = self._query()

        self.assertEqual([o.event_date for o in occurrences], MONDAYS_OF_JANUARY)
        self.assertTrue(all(o.pattern_id == 1 and o.base_event_id == 1 for o in occurrences))

    def test_cancel_scenario(self):
        """Test a cancel exception on 2025-01-13."""
        self.store.upsert_exception(CancelException(id=None, base_event_id=1, exception_date=date(2025, 1, 13)))

        occurrences = self._query()

        self.assertEqual(
            [o.event_date for o in occurrences],
            [date(2025, 1, 6), date(2025, 1, 20), date(2025, 1, 27)]
        )

    def test_modify_scenario(self):
        """Test a modify exception renaming the 2025-01-20 occurrence."""
        self.store.upsert_exception(ModifyException(
            id=None, base_event_id=1, exception_date=date(2025, 1, 20), title='Makeup Class'
        ))

        occurrences = self._query()
        by_date = {o.event_date: o for o in occurrences}

        self.assertEqual(by_date[date(2025, 1, 20)].title, 'Makeup Class')
        self.assertTrue(by_date[date(2025, 1, 20)].is_exception)
        self.assertEqual(by_date[date(2025, 1, 20)].start_time, time(16, 0))
        self.assertEqual(by_date[date(2025, 1, 13)].title, 'Sunrise Math')

    def test_inverted_range_rejected_before_store_access(self):
        """Test InvalidRangeError is raised without touching the store."""
        store = mock.create_autospec(InMemoryScheduleStore, instance=True)

        with self.assertRaises(InvalidRangeError):
            services.get_occurrences_in_range(1, date(2025, 2, 1), date(2025, 1, 1), store=store)

        self.assertEqual(store.mock_calls, [])

    def test_single_day_range(self):
        """Test a range of one day is valid."""
        occurrences = self._query(date(2025, 1, 13), date(2025, 1, 13))

        self.assertEqual([o.event_date for o in occurrences], [date(2025, 1, 13)])

    def test_one_off_merged_with_modified_occurrence(self):
        """Test a one-off event colliding with a modified occurrence is deduplicated."""
        self.store.add_event(make_event(
            id=2, title='Makeup Class', pattern_id=None, event_date=date(2025, 1, 20)
        ))
        self.store.upsert_exception(ModifyException(
            id=None, base_event_id=1, exception_date=date(2025, 1, 20), title='Makeup Class'
        ))

        on_the_20th = [o for o in self._query() if o.event_date == date(2025, 1, 20)]

        self.assertEqual(len(on_the_20th), 1)
        self.assertEqual(on_the_20th[0].base_event_id, 1)
        self.assertTrue(on_the_20th[0].is_exception)

    def test_other_schedules_are_ignored(self):
        """Test events of another schedule do not leak in."""
        self.store.add_event(make_event(id=3, schedule_id=2, pattern_id=None, event_date=date(2025, 1, 7)))

        self.assertEqual(len(self._query()), 4)

    def test_missing_pattern_is_skipped(self):
        """Test a base event with no resolvable pattern is logged and skipped."""
        self.store.add_event(make_event(id=3, title='Orphan', pattern_id=99))

        with self.assertLogs('timetable.services', level='WARNING') as logs:
            occurrences = self._query()

        self.assertEqual(len(occurrences), 4)
        self.assertIn('DANGLING_PATTERN', logs.output[0])

    def test_query_is_idempotent(self):
        """Test identical calls over unchanged stores return identical output."""
        self.store.upsert_exception(CancelException(id=None, base_event_id=1, exception_date=date(2025, 1, 6)))

        self.assertEqual(self._query(), self._query())

    def test_upsert_replaces_existing_exception(self):
        """Test a second exception on the same date replaces the first."""
        first = self.store.upsert_exception(
            CancelException(id=None, base_event_id=1, exception_date=date(2025, 1, 13))
        )
        second = self.store.upsert_exception(
            ModifyException(id=None, base_event_id=1, exception_date=date(2025, 1, 13), title='Moved')
        )

        self.assertEqual(first.id, second.id)
        self.assertEqual(len(self.store.exceptions), 1)
        self.assertEqual(len(self._query()), 4)

    def test_reads_during_concurrent_upserts(self):
        """Test loading exceptions while another thread keeps adding them."""
        def write():
            for offset in range(500):
                self.store.upsert_exception(CancelException(
                    id=None, base_event_id=1, exception_date=date(2025, 1, 1) + timedelta(days=offset)
                ))

        writer = threading.Thread(target=write)
        writer.start()
        while writer.is_alive():
            self.store.load_exceptions(1, date(2025, 1, 1), date(2026, 12, 31))
            self._query()
        writer.join()

        self.assertEqual(len(self.store.exceptions), 500)


class TimetableServiceTests(TestCase):
    """Test services against the Django store."""

    def setUp(self):
        self.schedule = Schedule.objects.create(name="Spring Term")
        self.academy = Academy.objects.create(name="Sunrise Math", subject=AcademySubject.MATH.value)
        self.event, self.pattern = services.create_recurring_event(
            schedule=self.schedule,
            title='',
            weekdays=WeekdaySet.of([Weekday.MONDAY]),
            start_date=date(2025, 1, 6),
            start_time=time(16, 0),
            end_time=time(17, 30),
            category=Category.ACADEMY,
            academy=self.academy,
        )

    def _dates(self, start=date(2025, 1, 1), end=date(2025, 1, 31)):
        occurrences = services.get_occurrences_in_range(self.schedule.pk, start, end)
        return [o.event_date for o in occurrences]

    def test_create_recurring_event(self):
        """Test the event takes the academy name and owns its pattern."""
        self.assertEqual(self.event.title, "Sunrise Math")
        self.assertTrue(self.event.is_recurring)
        self.assertIsNone(self.event.event_date)
        self.assertTrue(self.pattern.monday)
        self.assertFalse(self.pattern.tuesday)

    def test_query_expands_recurring_event(self):
        """Test materialization through the Django store."""
        occurrences = services.get_occurrences_in_range(self.schedule.pk, date(2025, 1, 1), date(2025, 1, 31))

        self.assertEqual([o.event_date for o in occurrences], MONDAYS_OF_JANUARY)
        self.assertEqual(occurrences[0].academy_name, "Sunrise Math")
        self.assertEqual(occurrences[0].pattern_id, self.pattern.pk)

    def test_pattern_end_date_bounds_query(self):
        """Test the pattern end date is inclusive."""
        services.update_recurring_pattern(self.pattern, PatternUpdateData(end_date=date(2025, 1, 20)))

        self.assertEqual(self._dates(), MONDAYS_OF_JANUARY[:3])

    def test_update_pattern_weekdays(self):
        """Test adding a weekday to the pattern."""
        services.update_recurring_pattern(
            self.pattern,
            PatternUpdateData(weekdays=WeekdaySet.of([Weekday.MONDAY, Weekday.WEDNESDAY]))
        )

        dates = self._dates()

        self.assertEqual(len(dates), 8)
        self.assertIn(date(2025, 1, 8), dates)

    def test_cancel_occurrence(self):
        """Test cancelling one occurrence."""
        services.cancel_occurrence(self.event, date(2025, 1, 13))

        self.assertEqual(self._dates(), [date(2025, 1, 6), date(2025, 1, 20), date(2025, 1, 27)])

    def test_modify_occurrence(self):
        """Test editing one occurrence only."""
        services.modify_occurrence(self.event, date(2025, 1, 20), OccurrenceOverrideData(title="Makeup Class"))

        occurrences = services.get_occurrences_in_range(self.schedule.pk, date(2025, 1, 20), date(2025, 1, 20))

        self.assertEqual(occurrences[0].title, "Makeup Class")
        self.assertEqual(occurrences[0].start_time, time(16, 0))
        self.assertEqual(occurrences[0].category, Category.ACADEMY)

    def test_repeated_edits_keep_single_exception(self):
        """Test exceptions are upserted per date."""
        services.modify_occurrence(self.event, date(2025, 1, 20), OccurrenceOverrideData(title="First"))
        services.modify_occurrence(self.event, date(2025, 1, 20), OccurrenceOverrideData(title="Second"))
        services.cancel_occurrence(self.event, date(2025, 1, 20))

        exceptions = ExceptionRow.objects.alive().filter(base_event=self.event)

        self.assertEqual(exceptions.count(), 1)
        self.assertEqual(exceptions.get().exception_type, ExceptionRow.CANCEL)
        self.assertIsNone(exceptions.get().modified_title)

    def test_restore_occurrence(self):
        """Test restoring reverts the date to the base pattern."""
        services.cancel_occurrence(self.event, date(2025, 1, 13))
        services.restore_occurrence(self.event, date(2025, 1, 13))

        self.assertEqual(self._dates(), MONDAYS_OF_JANUARY)
        self.assertFalse(ExceptionRow.objects.alive().exists())

        with self.assertRaises(ExceptionNotFoundError):
            services.restore_occurrence(self.event, date(2025, 1, 13))

    def test_cancel_after_restore(self):
        """Test a restored date can take a new exception."""
        services.cancel_occurrence(self.event, date(2025, 1, 13))
        services.restore_occurrence(self.event, date(2025, 1, 13))
        services.cancel_occurrence(self.event, date(2025, 1, 13))

        self.assertEqual(len(self._dates()), 3)

    def test_modify_rejects_date_outside_pattern(self):
        """Test a Tuesday cannot be edited on a Monday pattern."""
        with self.assertRaises(InvalidOccurrenceDateError):
            services.modify_occurrence(self.event, date(2025, 1, 14), OccurrenceOverrideData(title="Nope"))

    def test_modify_rejects_inverted_times(self):
        """Test overrides must keep start before end."""
        with self.assertRaises(ValueError):
            services.modify_occurrence(
                self.event, date(2025, 1, 20), OccurrenceOverrideData(start_time=time(18, 0))
            )

    def test_occurrence_operations_need_recurring_event(self):
        """Test per-occurrence operations reject one-off events."""
        one_off = services.create_one_time_event(
            self.schedule, "Field Trip", date(2025, 1, 15), time(9, 0), time(15, 0), Category.SCHOOL
        )

        with self.assertRaises(NotRecurringError):
            services.cancel_occurrence(one_off, date(2025, 1, 15))
        with self.assertRaises(NotRecurringError):
            services.restore_occurrence(one_off, date(2025, 1, 15))

    def test_deleted_academy_falls_back_to_base_fields(self):
        """Test an override pointing at a deleted academy degrades gracefully."""
        other = Academy.objects.create(name="Star English", subject=AcademySubject.ENGLISH.value)
        services.modify_occurrence(self.event, date(2025, 1, 6), OccurrenceOverrideData(academy_id=other.pk))
        other.is_deleted = True
        other.save()

        with self.assertLogs('timetable.materialization', level='WARNING'):
            occurrence = services.get_occurrences_in_range(
                self.schedule.pk, date(2025, 1, 6), date(2025, 1, 6)
            )[0]

        self.assertEqual(occurrence.academy_id, other.pk)
        self.assertEqual(occurrence.academy_name, "Sunrise Math")

    def test_one_off_duplicate_of_modified_occurrence(self):
        """Test the exception-bearing occurrence wins against a matching one-off event."""
        services.create_one_time_event(
            self.schedule, "Makeup Class", date(2025, 1, 20), time(16, 0), time(17, 0), Category.ACADEMY
        )
        services.modify_occurrence(self.event, date(2025, 1, 20), OccurrenceOverrideData(title="Makeup Class"))

        occurrences = services.get_occurrences_in_range(self.schedule.pk, date(2025, 1, 20), date(2025, 1, 20))

        self.assertEqual(len(occurrences), 1)
        self.assertTrue(occurrences[0].is_exception)

    def test_update_series_keeps_overrides(self):
        """Test a series edit flows into occurrences except overridden fields."""
        services.modify_occurrence(self.event, date(2025, 1, 20), OccurrenceOverrideData(title="Makeup Class"))

        services.update_event(self.event, EventUpdateData(title="Sunrise Math II", start_time=time(15, 0)))

        by_date = {
            o.event_date: o
            for o in services.get_occurrences_in_range(self.schedule.pk, date(2025, 1, 1), date(2025, 1, 31))
        }
        self.assertEqual(by_date[date(2025, 1, 13)].title, "Sunrise Math II")
        self.assertEqual(by_date[date(2025, 1, 20)].title, "Makeup Class")
        self.assertEqual(by_date[date(2025, 1, 20)].start_time, time(15, 0))

    def test_update_rejects_event_date_on_recurring(self):
        """Test a recurring event cannot be given a date."""
        with self.assertRaises(ValueError):
            services.update_event(self.event, EventUpdateData(event_date=date(2025, 1, 6)))

    def test_delete_recurring_event(self):
        """Test deleting a recurring event removes its pattern and exceptions."""
        services.cancel_occurrence(self.event, date(2025, 1, 13))

        services.delete_event(self.event)

        self.assertEqual(self._dates(), [])
        self.assertTrue(PatternRow.objects.get(pk=self.pattern.pk).is_deleted)
        self.assertFalse(ExceptionRow.objects.alive().exists())

    def test_create_multi_day_events(self):
        """Test one one-off event per weekday from the base date."""
        events = services.create_multi_day_events(
            schedule=self.schedule,
            title="Library",
            weekdays=WeekdaySet.of([Weekday.MONDAY, Weekday.WEDNESDAY, Weekday.FRIDAY]),
            base_date=date(2025, 1, 8),
            start_time=time(19, 0),
            end_time=time(20, 0),
            category=Category.STUDY,
        )

        self.assertEqual(
            sorted(e.event_date for e in events),
            [date(2025, 1, 8), date(2025, 1, 10), date(2025, 1, 13)]
        )
        self.assertFalse(any(e.is_recurring for e in events))

    def test_next_date_for_weekday(self):
        """Test the next matching date includes the base date itself."""
        self.assertEqual(services.next_date_for_weekday(date(2025, 1, 8), Weekday.WEDNESDAY), date(2025, 1, 8))
        self.assertEqual(services.next_date_for_weekday(date(2025, 1, 8), Weekday.TUESDAY), date(2025, 1, 14))

    def test_find_or_create_academy(self):
        """Test an existing academy is reused by name and subject."""
        same = services.find_or_create_academy(" Sunrise Math ", AcademySubject.MATH)
        other = services.find_or_create_academy("Sunrise Math", AcademySubject.ENGLISH)

        self.assertEqual(same.pk, self.academy.pk)
        self.assertNotEqual(other.pk, self.academy.pk)

    def test_create_event_rejects_inverted_times(self):
        """Test start time must be before end time."""
        with self.assertRaises(ValueError):
            services.create_one_time_event(
                self.schedule, "Backwards", date(2025, 1, 6), time(10, 0), time(9, 0)
            )

    def test_inverted_range(self):
        """Test the Django-backed query rejects an inverted range."""
        with self.assertRaises(InvalidRangeError):
            services.get_occurrences_in_range(self.schedule.pk, date(2025, 2, 1), date(2025, 1, 1))

    def test_get_event(self):
        """Test events are looked up among live events only."""
        self.assertEqual(services.get_event(self.event.pk), self.event)

        services.delete_event(self.event)

        with self.assertRaises(EventNotFoundError):
            services.get_event(self.event.pk)
        with self.assertRaises(EventNotFoundError):
            services.get_event(9999)

    def test_pattern_ended_before_range_is_not_loaded(self):
        """Test recurring events are only loaded when their pattern overlaps the range."""
        services.update_recurring_pattern(self.pattern, PatternUpdateData(end_date=date(2025, 1, 13)))

        self.assertEqual(self._dates(date(2025, 2, 1), date(2025, 2, 28)), [])
        self.assertEqual(
            list(PatternRow.objects.intersecting(date(2025, 1, 13), date(2025, 1, 31))),
            [self.pattern]
        )
        self.assertFalse(PatternRow.objects.intersecting(date(2025, 1, 14), date(2025, 1, 31)).exists())

    def test_clear_pattern_end_date(self):
        """Test an ended series can be made open-ended again."""
        services.update_recurring_pattern(self.pattern, PatternUpdateData(end_date=date(2025, 1, 13)))

        services.update_recurring_pattern(self.pattern, PatternUpdateData(clear_end_date=True))

        self.pattern.refresh_from_db()
        self.assertIsNone(self.pattern.end_date)
        self.assertEqual(self._dates(), MONDAYS_OF_JANUARY)

    def test_move_pattern_start_date(self):
        """Test moving the start date of a series."""
        services.update_recurring_pattern(self.pattern, PatternUpdateData(start_date=date(2025, 1, 15)))

        self.assertEqual(self._dates(), [date(2025, 1, 20), date(2025, 1, 27)])

    def test_pattern_start_after_end_rejected(self):
        """Test a start date after the existing end date is rejected."""
        services.update_recurring_pattern(self.pattern, PatternUpdateData(end_date=date(2025, 1, 20)))

        with self.assertRaises(ValueError):
            services.update_recurring_pattern(self.pattern, PatternUpdateData(start_date=date(2025, 1, 27)))

    def test_series_update_is_all_or_nothing(self):
        """Test an invalid pattern change leaves the event untouched."""
        with self.assertRaises(ValueError):
            services.update_event_series(
                self.event,
                EventUpdateData(title="Renamed"),
                PatternUpdateData(end_date=date(2024, 12, 1))
            )

        self.assertEqual(Event.objects.get(pk=self.event.pk).title, "Sunrise Math")

    def test_series_update_rejects_pattern_changes_on_one_off(self):
        """Test pattern fields cannot be applied to a one-off event."""
        one_off = services.create_one_time_event(
            self.schedule, "Field Trip", date(2025, 1, 15), time(9, 0), time(15, 0), Category.SCHOOL
        )

        with self.assertRaises(ValueError):
            services.update_event_series(
                one_off,
                EventUpdateData(title="Museum Trip"),
                PatternUpdateData(weekdays=WeekdaySet.of([Weekday.FRIDAY]))
            )

        self.assertEqual(Event.objects.get(pk=one_off.pk).title, "Field Trip")


class TimetableAPITests(APITestCase):
    """Test timetable API endpoints."""

    def setUp(self):
        """Set up test client and data."""
        self.client = APIClient()
        self.schedule = Schedule.objects.create(name="Spring Term")
        self.event, _ = services.create_recurring_event(
            schedule=self.schedule,
            title="Math Academy",
            weekdays=WeekdaySet.of([Weekday.MONDAY]),
            start_date=date(2025, 1, 6),
            start_time=time(16, 0),
            end_time=time(17, 30),
            category=Category.ACADEMY,
        )
        self.occurrences_url = f'/api/schedules/{self.schedule.pk}/occurrences/'

    def _list(self, start='2025-01-01', end='2025-01-31'):
        return self.client.get(self.occurrences_url, {'start': start, 'end': end})

    def test_list_occurrences(self):
        """Test listing occurrences in a range."""
        response = self._list()

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([o['event_date'] for o in response.data],
                         ['2025-01-06', '2025-01-13', '2025-01-20', '2025-01-27'])
        self.assertEqual(response.data[0]['start_time'], '16:00')
        self.assertEqual(response.data[0]['category'], 'academy')
        self.assertTrue(response.data[0]['is_recurring'])
        self.assertFalse(response.data[0]['is_exception'])

    def test_list_inverted_range(self):
        """Test an inverted range returns 400."""
        response = self._list(start='2025-02-01', end='2025-01-01')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'INVALID_RANGE')

    def test_list_unknown_schedule(self):
        """Test an unknown schedule returns 404."""
        response = self.client.get('/api/schedules/9999/occurrences/', {'start': '2025-01-01', 'end': '2025-01-31'})

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_create_recurring_event(self):
        """Test creating a recurring event via API."""
        data = {
            "title": "Piano",
            "event_date": "2025-01-07",
            "start_time": "18:00",
            "end_time": "19:00",
            "category": "study",
            "is_recurring": True,
            "weekdays": ["tuesday", "thursday"],
        }

        response = self.client.post(f'/api/schedules/{self.schedule.pk}/events/', data, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data[0]['pattern']['weekdays'], ['tuesday', 'thursday'])
        self.assertEqual(len(self._list().data), 4 + 8)

    def test_create_one_off_event_with_new_academy(self):
        """Test creating a one-off academy event finds or creates the academy."""
        data = {
            "event_date": "2025-01-08",
            "start_time": "14:00",
            "end_time": "15:00",
            "category": "academy",
            "academy_name": "Star English",
            "academy_subject": "english",
        }

        response = self.client.post(f'/api/schedules/{self.schedule.pk}/events/', data, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data[0]['title'], "Star English")
        self.assertEqual(response.data[0]['event_date'], '2025-01-08')
        self.assertTrue(Academy.objects.filter(name="Star English").exists())

    def test_create_event_rejects_inverted_times(self):
        """Test validation of start and end times."""
        data = {"title": "Bad", "event_date": "2025-01-08", "start_time": "15:00", "end_time": "14:00"}

        response = self.client.post(f'/api/schedules/{self.schedule.pk}/events/', data, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_modify_occurrence(self):
        """Test editing one occurrence via API."""
        response = self.client.put(
            f'/api/events/{self.event.pk}/occurrences/2025-01-20/',
            {"title": "Makeup Class"},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        occurrence = self._list().data[2]
        self.assertEqual(occurrence['title'], "Makeup Class")
        self.assertTrue(occurrence['is_exception'])
        self.assertEqual(occurrence['exception_id'], response.data['exception_id'])

    def test_modify_occurrence_on_wrong_day(self):
        """Test editing a date the pattern does not produce."""
        response = self.client.put(
            f'/api/events/{self.event.pk}/occurrences/2025-01-21/',
            {"title": "Makeup Class"},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'INVALID_OCCURRENCE_DATE')

    def test_cancel_and_restore_occurrence(self):
        """Test cancelling then restoring one occurrence via API."""
        url = f'/api/events/{self.event.pk}/occurrences/2025-01-13/'

        response = self.client.delete(url)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(self._list().data), 3)

        response = self.client.post(url + 'restore/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(self._list().data), 4)

    def test_restore_without_exception(self):
        """Test restoring a date that has no exception returns 404."""
        response = self.client.post(f'/api/events/{self.event.pk}/occurrences/2025-01-13/restore/')

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['code'], 'EXCEPTION_NOT_FOUND')

    def test_update_series(self):
        """Test updating an event and its pattern."""
        response = self.client.patch(
            f'/api/events/{self.event.pk}/',
            {"title": "Math Academy II", "end_date": "2025-01-13"},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['title'], "Math Academy II")
        self.assertEqual(response.data['pattern']['end_date'], '2025-01-13')
        self.assertEqual(len(self._list().data), 2)

    def test_delete_event(self):
        """Test deleting an event."""
        response = self.client.delete(f'/api/events/{self.event.pk}/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(self._list().data, [])
        self.assertEqual(self.client.get(f'/api/events/{self.event.pk}/').status_code, status.HTTP_404_NOT_FOUND)

    def test_get_unknown_event(self):
        """Test an unknown event returns 404 with its error code."""
        response = self.client.get('/api/events/9999/')

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['code'], 'EVENT_NOT_FOUND')

    def test_update_series_with_invalid_end_date(self):
        """Test a rejected pattern change does not keep the event change."""
        response = self.client.patch(
            f'/api/events/{self.event.pk}/',
            {"title": "Renamed", "end_date": "2024-12-01"},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.event.refresh_from_db()
        self.assertEqual(self.event.title, "Math Academy")

    def test_clear_series_end_date(self):
        """Test a null end date makes the series open-ended again."""
        url = f'/api/events/{self.event.pk}/'
        self.client.patch(url, {"end_date": "2025-01-13"}, format='json')

        response = self.client.patch(url, {"end_date": None}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIsNone(response.data['pattern']['end_date'])
        self.assertEqual(len(self._list().data), 4)

    def test_move_series_start_date(self):
        """Test moving the first date of a series."""
        response = self.client.patch(
            f'/api/events/{self.event.pk}/', {"start_date": "2025-01-14"}, format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['pattern']['start_date'], '2025-01-14')
        self.assertEqual([o['event_date'] for o in self._list().data], ['2025-01-20', '2025-01-27'])

    def test_pattern_fields_on_one_off_event(self):
        """Test weekdays or end date on a one-off event are rejected."""
        one_off = services.create_one_time_event(
            self.schedule, "Field Trip", date(2025, 1, 15), time(9, 0), time(15, 0), Category.SCHOOL
        )

        response = self.client.patch(
            f'/api/events/{one_off.pk}/',
            {"title": "Museum Trip", "weekdays": ["friday"]},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        one_off.refresh_from_db()
        self.assertEqual(one_off.title, "Field Trip")

    def test_update_event_with_unknown_academy(self):
        """Test an unknown academy on a series update returns 400."""
        response = self.client.patch(
            f'/api/events/{self.event.pk}/', {"academy_id": 9999}, format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('academy_id', response.data)

    def test_modify_occurrence_with_unknown_academy(self):
        """Test an unknown academy on an occurrence edit returns 400 and writes nothing."""
        response = self.client.put(
            f'/api/events/{self.event.pk}/occurrences/2025-01-13/',
            {"academy_id": 9999},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('academy_id', response.data)
        self.assertFalse(ExceptionRow.objects.filter(base_event=self.event).exists())

    def test_modify_occurrence_with_deleted_academy(self):
        """Test a soft-deleted academy cannot be assigned to an occurrence."""
        academy = Academy.objects.create(name="Closed Academy", subject="math", is_deleted=True)

        response = self.client.put(
            f'/api/events/{self.event.pk}/occurrences/2025-01-13/',
            {"academy_id": academy.pk},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class ManagementCommandTests(TestCase):
    """Test management commands."""

    def setUp(self):
        self.schedule = Schedule.objects.create(name="Spring Term")
        services.create_recurring_event(
            schedule=self.schedule,
            title="Math Academy",
            weekdays=WeekdaySet.of([Weekday.MONDAY]),
            start_date=date(2025, 1, 6),
            start_time=time(16, 0),
            end_time=time(17, 30),
            category=Category.ACADEMY,
        )

    def test_show_occurrences_command(self):
        """Test the show_occurrences management command."""
        out = StringIO()
        call_command('show_occurrences', str(self.schedule.pk), '--start=2025-01-06', '--days=14', stdout=out)

        output = out.getvalue()
        self.assertIn('2025-01-06 16:00-17:30 Math Academy [academy]', output)
        self.assertIn('2 occurrence(s)', output)

    def test_show_occurrences_rejects_empty_range(self):
        """Test a non-positive day count is rejected."""
        with self.assertRaises(CommandError):
            call_command('show_occurrences', str(self.schedule.pk), '--start=2025-01-06', '--days=0', stdout=StringIO())
