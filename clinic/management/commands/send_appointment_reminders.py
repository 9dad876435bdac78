from django.core.management.base import BaseCommand

from clinic.services.appointments import send_due_reminders


class Command(BaseCommand):
    help = "Send reminders for appointments booked for tomorrow and the day after."

    def handle(self, *args, **options):
        counts = send_due_reminders()
        self.stdout.write(self.style.SUCCESS(
            f"Processed {counts['processed']} appointments: {counts['sent']} sent, "
            f"{counts['skipped']} without contact details, {counts['failed']} failed"
        ))
