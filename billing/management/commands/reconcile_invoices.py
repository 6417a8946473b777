from django.core.management.base import BaseCommand

from billing.models import Invoice
from billing.services.ledger import expected_totals, recompute_balance


class Command(BaseCommand):
    help = "Compare stored invoice totals with their payment rows; --fix rewrites drifted invoices."

    def add_arguments(self, parser):
        parser.add_argument("--fix", action="store_true", help="recompute paid/balance/status for drifted invoices")

    def handle(self, *args, **options):
        checked = drifted = 0
        for invoice in Invoice.objects.order_by("created_at").iterator():
            checked += 1
            paid, balance = expected_totals(invoice)
            if paid == invoice.paid and balance == invoice.balance:
                continue
            drifted += 1
            self.stdout.write(self.style.WARNING(
                f"INV-{invoice.number}: stored paid={invoice.paid} balance={invoice.balance}, "
                f"payments say paid={paid} balance={balance}"
            ))
            if options["fix"]:
                fixed = recompute_balance(invoice.pk)
                self.stdout.write(f"  fixed -> paid={fixed.paid} balance={fixed.balance} status={fixed.status}")

        self.stdout.write(self.style.SUCCESS(f"checked {checked} invoices, {drifted} drifted"))
