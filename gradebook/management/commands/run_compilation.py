"""
Management command to run one compilation scan.
Usage: python manage.py run_compilation [--process-due] [--stats]

For deployments without celery beat, schedule this from cron.
"""
from django.core.management.base import BaseCommand

from gradebook.compilation import CompilationScheduler
from gradebook.models import CompilationJob


class Command(BaseCommand):
    help = 'Create compilation jobs for submitted results and optionally process due jobs'

    def add_arguments(self, parser):
        parser.add_argument(
            '--process-due',
            action='store_true',
            help='Do not queue Celery tasks; due jobs are processed by this command only',
        )
        parser.add_argument(
            '--stats',
            action='store_true',
            help='Print job statistics after the scan',
        )

    def handle(self, *args, **options):
        if options['process_due']:
            scheduler = CompilationScheduler(dispatch=lambda job, countdown: None)
        else:
            scheduler = CompilationScheduler()

        created = scheduler.scan()
        self.stdout.write(
            self.style.SUCCESS(f"Created {len(created)} compilation job(s)")
        )
        for job in created:
            self.stdout.write(f"  {job}")

        if options['stats']:
            stats = CompilationJob.objects.statistics()
            self.stdout.write(
                f"Jobs: {stats['total']} total, {stats['completed']} completed, "
                f"{stats['failed']} failed, {stats['processing']} processing, "
                f"{stats['pending']} pending ({stats['success_rate']}% success)"
            )
