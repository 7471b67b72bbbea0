"""
Management command to promote students at the end of an academic year.

Usage:
    # Preview for the current academic year
    python manage.py promote_students --map "B1-A=B2-A" --map "B6="

    # Execute for a specific tenant and year
    python manage.py promote_students --schema=demo --year=2024/2025 \
        --map "B1-A=B2-A" --map "B6=" --execute

A map entry with nothing after "=" marks a final class: its admitted
students are counted but not moved.
"""
from django.core.management.base import BaseCommand, CommandError

from core.exceptions import EngineError
from core.models import AcademicYear
from students.promotion import promotion_execute, promotion_preview


class Command(BaseCommand):
    help = 'Promote admitted students to their next class'

    def add_arguments(self, parser):
        parser.add_argument(
            '--year',
            type=str,
            help='Source academic year (id or name); defaults to the current year',
        )
        parser.add_argument(
            '--map',
            action='append',
            default=[],
            dest='mappings',
            metavar='SOURCE=TARGET',
            help='Class mapping; repeat for every class. Leave TARGET empty for a final class',
        )
        parser.add_argument(
            '--execute',
            action='store_true',
            help='Apply the promotion (default is a preview)',
        )
        parser.add_argument(
            '--schema',
            type=str,
            help='Tenant schema name to run this command for',
        )

    def handle(self, *args, **options):
        schema = options.get('schema')

        if schema:
            from django_tenants.utils import schema_context

            with schema_context(schema):
                self._promote(options)
        else:
            self._promote(options)

    def _promote(self, options):
        promotion_map = self.parse_map(options['mappings'])
        year = self.get_year(options.get('year'))

        try:
            if options['execute']:
                summary = promotion_execute(year.pk, promotion_map)
            else:
                summary = promotion_preview(year.pk, promotion_map)
        except EngineError as e:
            raise CommandError(str(e))

        self.stdout.write(f"Academic year: {year.name}")
        for class_name, row in summary.items():
            target = row['target'] or '(leaves school)'
            self.stdout.write(
                f"  {class_name} -> {target}: {row['admitted']} admitted, {row['failed']} failed"
            )

        if options['execute']:
            self.stdout.write(self.style.SUCCESS('Promotion executed'))
        else:
            self.stdout.write(self.style.WARNING('Preview only; run again with --execute to apply'))

    def parse_map(self, mappings):
        if not mappings:
            raise CommandError('At least one --map SOURCE=TARGET is required')

        promotion_map = {}
        for mapping in mappings:
            source, sep, target = mapping.partition('=')
            source, target = source.strip(), target.strip()
            if not sep or not source:
                raise CommandError(f'Invalid mapping "{mapping}", expected SOURCE=TARGET')
            promotion_map[source] = target or None
        return promotion_map

    def get_year(self, value):
        if not value:
            year = AcademicYear.get_current()
            if year is None:
                raise CommandError('No current academic year; pass --year')
            return year

        lookup = {'pk': int(value)} if value.isdigit() else {'name': value}
        year = AcademicYear.objects.filter(**lookup).first()
        if year is None:
            raise CommandError(f'Academic year "{value}" not found')
        return year
