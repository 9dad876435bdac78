from django.contrib.auth.hashers import make_password
from django.core.management.base import BaseCommand

from clinic.models import Tenant, User

DEMO_SUBDOMAIN = "demo"

TEST_SET = [
    ("admin1", "admin"),
    ("doctor1", "doctor"),
    ("staff1", "staff"),
    ("super", "super_admin"),
]


class Command(BaseCommand):
    help = "Ensure a comped demo clinic and test users exist with password=123456 (idempotent)."

    def handle(self, *args, **opts):
        tenant, _ = Tenant.objects.get_or_create(
            subdomain=DEMO_SUBDOMAIN,
            defaults={
                "clinic_name": "Demo Clinic",
                "subscription_status": "active",
                "is_comped": True,
                "comp_reason": "demo",
            },
        )
        for username, role in TEST_SET:
            clinic = None if role == "super_admin" else tenant
            u, created = User.objects.get_or_create(
                username=username,
                defaults={"role": role, "tenant": clinic, "password": make_password("123456"), "is_active": True},
            )
            if not created:
                u.password = make_password("123456")
                u.role = role
                u.tenant = clinic
                u.is_active = True
                u.save(update_fields=["password", "role", "tenant", "is_active"])
            self.stdout.write(self.style.SUCCESS(f"ok: {username} ({role})"))
        self.stdout.write(self.style.SUCCESS("All test users ensured."))
