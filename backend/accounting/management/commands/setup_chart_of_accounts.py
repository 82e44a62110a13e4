# accounting/management/commands/setup_chart_of_accounts.py
"""
Install the default school chart of accounts.

Usage:
    python manage.py setup_chart_of_accounts
    python manage.py setup_chart_of_accounts --base-currency KES --currency USD --currency EUR
    python manage.py setup_chart_of_accounts --list
"""

from django.core.management.base import BaseCommand

from accounting.chart import DEFAULT_CHART, seed_chart_of_accounts
from projections.write_barrier import bootstrap_writes_allowed


class Command(BaseCommand):
    help = "Seed the default chart of accounts, base currency and posting journal"

    def add_arguments(self, parser):
        parser.add_argument(
            "--base-currency",
            type=str,
            default=None,
            help="Base currency code (default: LEDGER_BASE_CURRENCY)",
        )
        parser.add_argument(
            "--currency",
            action="append",
            dest="currencies",
            default=[],
            help="Additional currency code (repeatable)",
        )
        parser.add_argument(
            "--list",
            action="store_true",
            help="Print the default chart without writing",
        )

    def handle(self, *args, **options):
        if options["list"]:
            for account in DEFAULT_CHART:
                flag = " (receivable)" if account.is_receivable else ""
                self.stdout.write(f"  {account.code}  {account.name} [{account.account_type}]{flag}")
            return

        with bootstrap_writes_allowed():
            result = seed_chart_of_accounts(
                base_currency=options["base_currency"],
                extra_currencies=options["currencies"],
            )

        self.stdout.write(self.style.SUCCESS(
            f"Done! Created {len(result['created'])}, existing {len(result['existing'])}."
        ))
