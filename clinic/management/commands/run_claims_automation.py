from django.core.management.base import BaseCommand
from django.utils import timezone

from clinic.services.claims_automation import TASKS


class Command(BaseCommand):
    help = "Run claim automation: status rules, scheduled claim generation, notifications and approval timeouts."

    def add_arguments(self, parser):
        parser.add_argument(
            "--task",
            choices=sorted(TASKS),
            help="Run a single task instead of all of them.",
        )

    def handle(self, *args, **options):
        now = timezone.now()
        names = [options["task"]] if options.get("task") else list(TASKS)
        for name in names:
            count = TASKS[name](now)
            self.stdout.write(self.style.SUCCESS(f"{name}: {count}"))
        self.stdout.write(self.style.SUCCESS(f"Claim automation finished at {now.isoformat()}"))
