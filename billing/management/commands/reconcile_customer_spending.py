from django.core.management.base import BaseCommand

from billing.payments import reconcile_customer_spending


class Command(BaseCommand):
    help = "Compare each customer's total spent with their paid invoices and optionally correct it."

    def add_arguments(self, parser):
        parser.add_argument(
            "--fix",
            action="store_true",
            help="Rewrite drifting totals from the sum of paid invoices.",
        )

    def handle(self, *args, **options):
        fix = options["fix"]
        drift = reconcile_customer_spending(fix=fix)

        if not drift:
            self.stdout.write(self.style.SUCCESS("Customer spending is consistent with paid invoices."))
            return

        for row in drift:
            self.stdout.write(
                f"- {row['name']} ({row['customer_id']}): recorded={row['recorded']} expected={row['expected']}"
            )

        if fix:
            self.stdout.write(self.style.SUCCESS(f"Corrected {len(drift)} customer(s)."))
        else:
            self.stdout.write(self.style.WARNING(f"Found {len(drift)} customer(s) with drift. Re-run with --fix to correct."))
