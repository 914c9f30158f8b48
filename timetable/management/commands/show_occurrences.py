"""
Management command to print the materialized occurrences of a schedule.

Useful for checking what the timetable will show for a week without
going through the API.
"""

from datetime import date, timedelta

from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from timetable import services
from timetable.errors import InvalidRangeError
from timetable.types import DEFAULT_DAYS_AHEAD


class Command(BaseCommand):
    help = 'Print materialized occurrences of a schedule for a date range'

    def add_arguments(self, parser):
        parser.add_argument('schedule_id', type=int)
        parser.add_argument(
            '--start',
            type=date.fromisoformat,
            default=None,
            help='First date to show, YYYY-MM-DD (default: today)'
        )
        parser.add_argument(
            '--days',
            type=int,
            default=DEFAULT_DAYS_AHEAD,
            help=f'Number of days to show (default: {DEFAULT_DAYS_AHEAD})'
        )

    def handle(self, *args, **options):
        start = options['start'] or timezone.localdate()
        end = start + timedelta(days=options['days'] - 1)

        try:
            occurrences = services.get_occurrences_in_range(options['schedule_id'], start, end)
        except InvalidRangeError as exc:
            raise CommandError(exc.message)

        for occurrence in occurrences:
            marker = ' *' if occurrence.is_exception else ''
            self.stdout.write(
                f"{occurrence.event_date.isoformat()} "
                f"{occurrence.start_time.strftime('%H:%M')}-{occurrence.end_time.strftime('%H:%M')} "
                f"{occurrence.title} [{occurrence.category.value}]{marker}"
            )

        self.stdout.write(
            self.style.SUCCESS(
                f'{len(occurrences)} occurrence(s) from {start} to {end}'
            )
        )
