"""
Admin configuration for the timetable app.
"""

from django.contrib import admin
from .models import Academy, Event, RecurringException, RecurringPattern, Schedule


class RecurringExceptionInline(admin.TabularInline):
    model = RecurringException
    fk_name = 'base_event'
    extra = 0
    fields = [
        'exception_date', 'exception_type', 'modified_title', 'modified_start_time',
        'modified_end_time', 'modified_category', 'modified_academy', 'is_deleted',
    ]


@admin.register(Schedule)
class ScheduleAdmin(admin.ModelAdmin):
    list_display = ['name', 'is_active', 'is_deleted', 'created_at']
    list_filter = ['is_active', 'is_deleted']


@admin.register(Academy)
class AcademyAdmin(admin.ModelAdmin):
    list_display = ['name', 'subject', 'status', 'is_deleted']
    list_filter = ['subject', 'status', 'is_deleted']
    search_fields = ['name']


@admin.register(RecurringPattern)
class RecurringPatternAdmin(admin.ModelAdmin):
    """Admin interface for RecurringPattern model."""

    list_display = ['__str__', 'start_date', 'end_date', 'is_deleted']
    list_filter = ['is_deleted']
    date_hierarchy = 'start_date'

    fieldsets = (
        ('Weekdays', {
            'fields': ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday')
        }),
        ('Pattern Boundaries', {
            'fields': ('start_date', 'end_date')
        }),
        ('Metadata', {
            'fields': ('is_deleted', 'created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )

    readonly_fields = ['created_at', 'updated_at']


@admin.register(Event)
class EventAdmin(admin.ModelAdmin):
    """Admin interface for Event model."""

    list_display = ['title', 'schedule', 'event_date', 'start_time', 'end_time', 'category', 'is_recurring', 'is_deleted']
    list_filter = ['schedule', 'category', 'is_deleted']
    search_fields = ['title']
    inlines = [RecurringExceptionInline]

    fieldsets = (
        ('Basic Information', {
            'fields': ('schedule', 'title', 'category', 'academy')
        }),
        ('Schedule', {
            'fields': ('event_date', 'pattern', 'start_time', 'end_time')
        }),
        ('Metadata', {
            'fields': ('is_deleted', 'created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )

    readonly_fields = ['created_at', 'updated_at']

    @admin.display(boolean=True)
    def is_recurring(self, obj):
        return obj.is_recurring
