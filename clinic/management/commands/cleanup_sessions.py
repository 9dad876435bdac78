from django.conf import settings
from django.core.management.base import BaseCommand

from clinic.services.queue import cleanup_sessions


class Command(BaseCommand):
    help = "Delete archived queue sessions and unbilled completed queue entries past the retention window."

    def add_arguments(self, parser):
        parser.add_argument("--days", type=int, default=None,
                            help="Retention in days (default: SESSION_RETENTION_DAYS).")

    def handle(self, *args, **options):
        days = options.get("days") or settings.SESSION_RETENTION_DAYS
        result = cleanup_sessions(days)
        self.stdout.write(self.style.SUCCESS(
            f"Deleted {result['deletedSessions']} sessions and {result['deletedQueueEntries']} "
            f"queue entries older than {result['cutoffDate']}"
        ))
