# projections/management/commands/verify_ledger.py
"""
Verify every derived balance against the journal store and sub-ledger.

Never writes. Use recompute_balances to repair drift.

Usage:
    python manage.py verify_ledger
    python manage.py verify_ledger --json
    python manage.py verify_ledger --fail-on-drift     # exit 1 on drift (CI / cron)
"""

import json

from django.core.management.base import BaseCommand, CommandError

from projections.reconciliation import check_integrity


class Command(BaseCommand):
    help = "Check account balances, student balances and receivables for drift"

    def add_arguments(self, parser):
        parser.add_argument(
            "--json",
            action="store_true",
            help="Print the full report as JSON",
        )
        parser.add_argument(
            "--fail-on-drift",
            action="store_true",
            help="Exit with an error when any drift is found",
        )

    def handle(self, *args, **options):
        report = check_integrity()

        if options["json"]:
            self.stdout.write(json.dumps(report, indent=2, default=str))
        else:
            self._print_report(report)

        if options["fail_on_drift"] and not report["is_consistent"]:
            raise CommandError(f"Ledger drift detected: {report['drift']}")

    def _print_report(self, report):
        self.stdout.write("\n" + "=" * 60)
        self.stdout.write("LEDGER INTEGRITY CHECK")
        self.stdout.write("=" * 60)

        for scope in ("account_balances", "student_balances", "receivables"):
            section = report[scope]
            mismatches = section["mismatches"]
            line = f"  {scope}: {section['verified']}/{section['checked']} verified"
            if mismatches:
                self.stdout.write(self.style.ERROR(f"{line}, {len(mismatches)} mismatched"))
                for mismatch in mismatches[:20]:
                    self.stdout.write(f"    {mismatch}")
                if len(mismatches) > 20:
                    self.stdout.write(f"    ... {len(mismatches) - 20} more")
            else:
                self.stdout.write(self.style.SUCCESS(line))

        self.stdout.write("=" * 60)
        if report["is_consistent"]:
            self.stdout.write(self.style.SUCCESS("Ledger is consistent."))
        else:
            self.stdout.write(self.style.WARNING(
                "Drift found. Run: python manage.py recompute_balances --verify-first"
            ))
