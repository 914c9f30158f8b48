"""
Serializers for the timetable API.
"""

from rest_framework import serializers

from .models import Academy, Event, RecurringPattern
from .types import AcademySubject, Category, Weekday, WeekdaySet


CATEGORY_VALUES = [category.value for category in Category]
SUBJECT_VALUES = [subject.value for subject in AcademySubject]
WEEKDAY_KEYS = [day.key for day in Weekday]


class WeekdayListField(serializers.ListField):
    """Accepts ``["monday", "wednesday"]`` and returns a WeekdaySet."""

    child = serializers.ChoiceField(choices=WEEKDAY_KEYS)

    def to_internal_value(self, data):
        keys = super().to_internal_value(data)
        return WeekdaySet.of(Weekday.from_key(key) for key in keys)

    def to_representation(self, value):
        return [day.key for day in value]


def validate_live_academy(value):
    """Reject academy ids that do not point at a live academy."""
    if value is not None and not Academy.objects.alive().filter(pk=value).exists():
        raise serializers.ValidationError('Unknown academy.')
    return value


class EnumValueField(serializers.ChoiceField):
    """Renders str-based enums by value."""

    def to_representation(self, value):
        if value is None:
            return None
        return getattr(value, 'value', value)


class OccurrenceSerializer(serializers.Serializer):
    """Serializer for materialized Occurrence objects (output only)."""

    base_event_id = serializers.IntegerField()
    schedule_id = serializers.IntegerField()
    pattern_id = serializers.IntegerField(allow_null=True)
    exception_id = serializers.IntegerField(allow_null=True)
    event_date = serializers.DateField()
    title = serializers.CharField()
    start_time = serializers.TimeField()
    end_time = serializers.TimeField()
    category = EnumValueField(choices=CATEGORY_VALUES)
    academy_id = serializers.IntegerField(allow_null=True)
    academy_name = serializers.CharField(allow_null=True)
    academy_subject = EnumValueField(choices=SUBJECT_VALUES, allow_null=True)
    is_recurring = serializers.BooleanField()
    is_exception = serializers.BooleanField()


class RecurringPatternSerializer(serializers.ModelSerializer):
    """Serializer for reading/displaying RecurringPattern (output)."""

    weekdays = WeekdayListField()

    class Meta:
        model = RecurringPattern
        fields = [
            'id',
            'weekdays',
            'start_date',
            'end_date',
        ]


class EventReadSerializer(serializers.ModelSerializer):
    """Serializer for reading/displaying Event (output)."""

    is_recurring = serializers.BooleanField()
    pattern = RecurringPatternSerializer(allow_null=True)

    class Meta:
        model = Event
        fields = [
            'id',
            'schedule',
            'title',
            'start_time',
            'end_time',
            'event_date',
            'category',
            'academy',
            'is_recurring',
            'pattern',
            'created_at',
            'updated_at',
        ]


class EventCreateSerializer(serializers.Serializer):
    """
    Serializer for creating events.

    - is_recurring=true: a recurring event starting on event_date
    - one weekday or none: a single one-off event on event_date
    - several weekdays: one one-off event per weekday from event_date on
    """

    title = serializers.CharField(max_length=200, required=False, allow_blank=True, default='')
    event_date = serializers.DateField()
    start_time = serializers.TimeField()
    end_time = serializers.TimeField()
    category = serializers.ChoiceField(choices=CATEGORY_VALUES, default=Category.NONE.value)
    academy_id = serializers.IntegerField(required=False, allow_null=True)
    academy_name = serializers.CharField(max_length=200, required=False, allow_blank=True)
    academy_subject = serializers.ChoiceField(choices=SUBJECT_VALUES, required=False)
    is_recurring = serializers.BooleanField(default=False)
    weekdays = WeekdayListField(required=False)
    end_date = serializers.DateField(required=False, allow_null=True)

    def validate(self, data):
        """Validate creation data."""
        if data['start_time'] >= data['end_time']:
            raise serializers.ValidationError({
                'end_time': 'End time must be after start time.'
            })

        if data['is_recurring'] and not data.get('weekdays'):
            raise serializers.ValidationError({
                'weekdays': 'Recurring events need at least one weekday.'
            })

        end_date = data.get('end_date')
        if end_date and end_date < data['event_date']:
            raise serializers.ValidationError({
                'end_date': 'End date must not be before start date.'
            })

        return data

    def validate_academy_id(self, value):
        return validate_live_academy(value)


class EventUpdateSerializer(serializers.Serializer):
    """Serializer for updating a whole event or series."""

    title = serializers.CharField(max_length=200, required=False)
    start_time = serializers.TimeField(required=False)
    end_time = serializers.TimeField(required=False)
    event_date = serializers.DateField(required=False)
    category = serializers.ChoiceField(choices=CATEGORY_VALUES, required=False)
    academy_id = serializers.IntegerField(required=False)
    weekdays = WeekdayListField(required=False)
    start_date = serializers.DateField(required=False)
    end_date = serializers.DateField(required=False, allow_null=True)

    PATTERN_FIELDS = ('weekdays', 'start_date', 'end_date')

    def validate_academy_id(self, value):
        return validate_live_academy(value)

    def has_pattern_changes(self):
        return any(name in self.validated_data for name in self.PATTERN_FIELDS)


class OccurrenceOverrideSerializer(serializers.Serializer):
    """Serializer for "this occurrence only" edits."""

    title = serializers.CharField(max_length=200, required=False)
    start_time = serializers.TimeField(required=False)
    end_time = serializers.TimeField(required=False)
    category = serializers.ChoiceField(choices=CATEGORY_VALUES, required=False)
    academy_id = serializers.IntegerField(required=False)

    def validate_academy_id(self, value):
        return validate_live_academy(value)


class DateRangeQuerySerializer(serializers.Serializer):
    """
    Serializer for date range query parameters.

    Ordering of start and end is checked by the service, which owns the
    invalid-range error.
    """

    start = serializers.DateField(required=True)
    end = serializers.DateField(required=True)
