"""
Custom managers and querysets for timetable models.

QuerySets define chainable query methods.
Managers use QuerySets to enable method chaining.
No business logic should be here - only query operations.
"""

from django.db import models


class AcademyQuerySet(models.QuerySet):
    """Custom queryset for Academy model with chainable methods."""

    def alive(self):
        """Get academies that have not been deleted."""
        return self.filter(is_deleted=False)

    def named(self, name, subject):
        """Get live academies matching a name and subject."""
        return self.alive().filter(name=name, subject=subject)


class AcademyManager(models.Manager):
    """Custom manager for Academy model."""

    def get_queryset(self):
        """Return custom queryset for method chaining."""
        return AcademyQuerySet(self.model, using=self._db)

    def alive(self):
        return self.get_queryset().alive()

    def named(self, name, subject):
        return self.get_queryset().named(name, subject)


class RecurringPatternQuerySet(models.QuerySet):
    """Custom queryset for RecurringPattern model with chainable methods."""

    def alive(self):
        """Get patterns that have not been deleted."""
        return self.filter(is_deleted=False)

    def intersecting(self, start_date, end_date):
        """
        Get patterns whose validity window overlaps a date range.

        Args:
            start_date: date object (inclusive)
            end_date: date object (inclusive)
        """
        return self.alive().filter(
            start_date__lte=end_date
        ).filter(
            models.Q(end_date__isnull=True) | models.Q(end_date__gte=start_date)
        )


class RecurringPatternManager(models.Manager):
    """Custom manager for RecurringPattern model."""

    def get_queryset(self):
        """Return custom queryset for method chaining."""
        return RecurringPatternQuerySet(self.model, using=self._db)

    def alive(self):
        return self.get_queryset().alive()

    def intersecting(self, start_date, end_date):
        return self.get_queryset().intersecting(start_date, end_date)


class EventQuerySet(models.QuerySet):
    """Custom queryset for Event model with chainable methods."""

    def alive(self):
        """Get events that have not been deleted."""
        return self.filter(is_deleted=False)

    def for_schedule(self, schedule_id):
        return self.alive().filter(schedule_id=schedule_id)

    def one_time(self):
        """Get one-off (non-recurring) events."""
        return self.filter(pattern__isnull=True)

    def recurring(self):
        """Get recurring base events."""
        return self.filter(pattern__isnull=False)

    def one_time_in_range(self, schedule_id, start_date, end_date):
        """
        Get one-off events of a schedule dated within a range.

        Args:
            schedule_id: Schedule primary key
            start_date: date object (inclusive)
            end_date: date object (inclusive)
        """
        return self.for_schedule(schedule_id).one_time().filter(
            event_date__gte=start_date,
            event_date__lte=end_date
        )

    def recurring_on_patterns(self, schedule_id, patterns):
        """
        Get recurring base events of a schedule that use one of the patterns.

        Args:
            schedule_id: Schedule primary key
            patterns: RecurringPattern queryset, e.g. from intersecting()
        """
        return self.for_schedule(schedule_id).recurring().filter(pattern__in=patterns)


class EventManager(models.Manager):
    """Custom manager for Event model."""

    def get_queryset(self):
        """Return custom queryset for method chaining."""
        return EventQuerySet(self.model, using=self._db)

    def alive(self):
        return self.get_queryset().alive()

    def for_schedule(self, schedule_id):
        return self.get_queryset().for_schedule(schedule_id)

    def one_time_in_range(self, schedule_id, start_date, end_date):
        return self.get_queryset().one_time_in_range(schedule_id, start_date, end_date)

    def recurring_on_patterns(self, schedule_id, patterns):
        return self.get_queryset().recurring_on_patterns(schedule_id, patterns)


class RecurringExceptionQuerySet(models.QuerySet):
    """Custom queryset for RecurringException model with chainable methods."""

    def alive(self):
        """Get exceptions that have not been deleted (restored)."""
        return self.filter(is_deleted=False)

    def for_event_in_range(self, base_event_id, start_date, end_date):
        """
        Get live exceptions of a base event within a date range.

        Args:
            base_event_id: Event primary key
            start_date: date object (inclusive)
            end_date: date object (inclusive)
        """
        return self.alive().filter(
            base_event_id=base_event_id,
            exception_date__gte=start_date,
            exception_date__lte=end_date
        )


class RecurringExceptionManager(models.Manager):
    """Custom manager for RecurringException model."""

    def get_queryset(self):
        """Return custom queryset for method chaining."""
        return RecurringExceptionQuerySet(self.model, using=self._db)

    def alive(self):
        return self.get_queryset().alive()

    def for_event_in_range(self, base_event_id, start_date, end_date):
        return self.get_queryset().for_event_in_range(base_event_id, start_date, end_date)
