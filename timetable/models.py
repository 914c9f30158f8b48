"""
Models for the timetable.

Recurring events are never expanded into rows:
- RecurringPattern stores the weekly rule (weekday flags + validity window)
- Event stores both one-off events (event_date set) and recurring base
  events (pattern set)
- RecurringException stores per-date overrides of a recurring base event

Occurrences are materialized on read by services.get_occurrences_in_range.
Every table is soft-deleted through ``is_deleted``.
"""

from django.db import models
from django.core.exceptions import ValidationError

from .managers import (
    AcademyManager,
    EventManager,
    RecurringExceptionManager,
    RecurringPatternManager,
)
from .types import AcademySubject, Category, Weekday, WeekdaySet


CATEGORY_CHOICES = [
    (Category.SCHOOL.value, 'School/Institution'),
    (Category.ACADEMY.value, 'Academy'),
    (Category.STUDY.value, 'Study'),
    (Category.REST.value, 'Rest'),
    (Category.NONE.value, 'None'),
]

SUBJECT_CHOICES = [
    (AcademySubject.KOREAN.value, 'Korean'),
    (AcademySubject.MATH.value, 'Math'),
    (AcademySubject.ENGLISH.value, 'English'),
    (AcademySubject.ARTS.value, 'Arts & Athletics'),
    (AcademySubject.SOCIAL_SCIENCE.value, 'Social Science'),
    (AcademySubject.OTHER.value, 'Other'),
]


class Schedule(models.Model):
    """A named timetable that events belong to."""

    name = models.CharField(max_length=200)
    is_active = models.BooleanField(default=True)
    is_deleted = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-is_active', 'name']

    def __str__(self):
        return self.name


class Academy(models.Model):
    """Tuition academy referenced by academy-category events."""

    STATUS_CHOICES = [
        ('active', 'Active'),
        ('paused', 'Paused'),
    ]

    name = models.CharField(max_length=200)
    subject = models.CharField(max_length=20, choices=SUBJECT_CHOICES)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='active')
    is_deleted = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = AcademyManager()

    class Meta:
        ordering = ['name']
        verbose_name_plural = 'academies'
        indexes = [
            models.Index(fields=['name', 'subject']),
        ]

    def __str__(self):
        return f"{self.name} ({self.get_subject_display()})"


class RecurringPattern(models.Model):
    """
    Weekly recurrence rule shared with exactly one recurring Event.

    A pattern with no weekday flags is allowed; it simply never occurs.
    """

    monday = models.BooleanField(default=False)
    tuesday = models.BooleanField(default=False)
    wednesday = models.BooleanField(default=False)
    thursday = models.BooleanField(default=False)
    friday = models.BooleanField(default=False)
    saturday = models.BooleanField(default=False)
    sunday = models.BooleanField(default=False)

    start_date = models.DateField(
        help_text="First date this pattern is active"
    )
    end_date = models.DateField(
        null=True,
        blank=True,
        help_text="Last date this pattern is active (null = no end date)"
    )
    is_deleted = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = RecurringPatternManager()

    class Meta:
        indexes = [
            models.Index(fields=['start_date', 'end_date']),
        ]

    def __str__(self):
        days = ', '.join(day.key.capitalize()[:3] for day in self.weekdays) or 'no days'
        return f"Every {days} from {self.start_date}"

    @property
    def weekdays(self) -> WeekdaySet:
        """Weekday flags as a WeekdaySet."""
        return WeekdaySet.from_flags(**{day.key: getattr(self, day.key) for day in Weekday})

    def set_weekdays(self, weekdays: WeekdaySet) -> None:
        for key, on in weekdays.to_flags().items():
            setattr(self, key, on)

    def clean(self):
        """Validate pattern data."""
        super().clean()

        if self.end_date and self.start_date > self.end_date:
            raise ValidationError({
                'end_date': 'End date must not be before start date.'
            })

    def save(self, *args, **kwargs):
        """Save with validation."""
        self.full_clean()
        super().save(*args, **kwargs)


class Event(models.Model):
    """
    Stores one-off events and recurring base events.

    One-off events: event_date set, pattern = null
    Recurring events: pattern set, event_date = null
    """

    schedule = models.ForeignKey(
        Schedule,
        on_delete=models.CASCADE,
        related_name='events'
    )
    title = models.CharField(max_length=200)
    start_time = models.TimeField()
    end_time = models.TimeField()
    event_date = models.DateField(null=True, blank=True)
    category = models.CharField(
        max_length=20,
        choices=CATEGORY_CHOICES,
        default=Category.NONE.value
    )
    academy = models.ForeignKey(
        Academy,
        on_delete=models.SET_NULL,
        related_name='events',
        null=True,
        blank=True
    )
    pattern = models.OneToOneField(
        RecurringPattern,
        on_delete=models.CASCADE,
        related_name='event',
        null=True,
        blank=True,
        help_text="Recurrence rule (null for one-off events)"
    )
    is_deleted = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = EventManager()

    class Meta:
        ordering = ['start_time']
        indexes = [
            models.Index(fields=['schedule', 'event_date']),
            models.Index(fields=['academy']),
        ]

    def __str__(self):
        when = self.event_date.isoformat() if self.event_date else 'recurring'
        return f"{self.title} - {when} {self.start_time.strftime('%H:%M')}"

    @property
    def is_recurring(self):
        """Check if this is a recurring base event."""
        return self.pattern_id is not None

    def clean(self):
        """Validate event data."""
        super().clean()

        if (self.event_date is None) == (self.pattern_id is None):
            raise ValidationError(
                'An event needs either an event date or a recurring pattern, not both.'
            )
        if self.start_time and self.end_time and self.start_time >= self.end_time:
            raise ValidationError({
                'end_time': 'End time must be after start time.'
            })

    def save(self, *args, **kwargs):
        """Save with validation."""
        self.full_clean()
        super().save(*args, **kwargs)


class RecurringException(models.Model):
    """
    Per-date override of a recurring Event.

    cancel: the occurrence on exception_date is removed
    modify: non-null modified_* columns replace the base event's values
    """

    CANCEL = 'cancel'
    MODIFY = 'modify'
    TYPE_CHOICES = [
        (CANCEL, 'Cancel'),
        (MODIFY, 'Modify'),
    ]

    base_event = models.ForeignKey(
        Event,
        on_delete=models.CASCADE,
        related_name='exceptions'
    )
    exception_date = models.DateField()
    exception_type = models.CharField(max_length=10, choices=TYPE_CHOICES)

    modified_title = models.CharField(max_length=200, null=True, blank=True)
    modified_start_time = models.TimeField(null=True, blank=True)
    modified_end_time = models.TimeField(null=True, blank=True)
    modified_category = models.CharField(
        max_length=20,
        choices=CATEGORY_CHOICES,
        null=True,
        blank=True
    )
    modified_academy = models.ForeignKey(
        Academy,
        on_delete=models.SET_NULL,
        related_name='+',
        null=True,
        blank=True
    )
    is_deleted = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = RecurringExceptionManager()

    class Meta:
        ordering = ['exception_date']
        constraints = [
            models.UniqueConstraint(
                fields=['base_event', 'exception_date'],
                condition=models.Q(is_deleted=False),
                name='unique_live_exception_per_date',
            ),
        ]
        indexes = [
            models.Index(fields=['base_event', 'exception_date']),
        ]

    def __str__(self):
        return f"{self.get_exception_type_display()} {self.base_event_id} on {self.exception_date}"
