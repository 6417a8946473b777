import os

from django.conf import settings
from django.contrib.auth.hashers import make_password
from django.core.management.base import BaseCommand, CommandError

from billing.models import User

DEMO_USERS = [
    ("cashier1", "cashier"),
    ("accountant1", "accountant"),
    ("admin1", "admin"),
    ("super", "super"),
]


class Command(BaseCommand):
    help = "Ensure one demo user per billing role exists (idempotent)."

    def add_arguments(self, parser):
        parser.add_argument("--password", default=os.getenv("DEMO_USER_PASSWORD", ""))

    def handle(self, *args, **opts):
        password = opts["password"]
        if not password:
            if not settings.DEBUG:
                raise CommandError("--password or DEMO_USER_PASSWORD is required when DEBUG is off")
            password = "123456"

        for username, role in DEMO_USERS:
            u, created = User.objects.get_or_create(
                username=username,
                defaults={"role": role, "password": make_password(password), "is_active": True},
            )
            if not created:
                u.password = make_password(password)
                u.role = role
                u.is_active = True
                u.save(update_fields=["password", "role", "is_active"])
            self.stdout.write(self.style.SUCCESS(f"ok: {username} ({role})"))
        self.stdout.write(self.style.SUCCESS("All billing users ensured."))
