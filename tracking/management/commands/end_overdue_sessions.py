"""
Django management command to end sessions that have run past their window.
"""

from django.core.management.base import BaseCommand
from django.utils import timezone

from attendance.models import ClassSession
from tracking.lifecycle import SessionLifecycleManager


class Command(BaseCommand):
    help = "End overdue class sessions and finalize their attendance"

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="List overdue sessions without ending them",
        )

    def handle(self, *args, **options):
        manager = SessionLifecycleManager()
        now = timezone.now()

        if options["dry_run"]:
            overdue = ClassSession.objects.open().created_before(now - manager.auto_end_after)
            count = 0
            for session in overdue.select_related("course").order_by("created_at"):
                schedule = manager.calculate_auto_end_at(session.created_at, now)
                self.stdout.write(
                    f"Session {session.pk} ({session.course}) overdue since "
                    f"{schedule.auto_end_at:%Y-%m-%d %H:%M}"
                )
                count += 1
            self.stdout.write(self.style.WARNING(f"Dry run: {count} session(s) would be ended."))
            return

        results = manager.end_overdue_sessions(now)
        for result in results:
            summary = result.summary
            self.stdout.write(
                f"Ended session {result.session.pk}: {summary.total} records, "
                f"attendance rate {summary.attendance_rate}%"
            )
        self.stdout.write(self.style.SUCCESS(f"Ended {len(results)} overdue session(s)."))
