# projections/management/commands/recompute_balances.py
"""
Management command to rebuild balances from the journal store.

This is the disaster recovery / maintenance tool for the balance tables.
The journal store and the student sub-ledger are the source of truth;
AccountBalance and StudentBalance can always be rebuilt.

Usage:
    # Rebuild both balance tables
    python manage.py recompute_balances

    # Rebuild only account balances / only student balances
    python manage.py recompute_balances --accounts
    python manage.py recompute_balances --students

    # Re-sum a single student's balance
    python manage.py recompute_balances --student STU-0001

    # Show the drift that would be fixed, without writing
    python manage.py recompute_balances --dry-run

    # Print the integrity report before rebuilding
    python manage.py recompute_balances --verify-first
"""

import logging
import time

from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from projections.account_balance import account_balance_projection
from projections.reconciliation import check_integrity
from projections.student_balance import student_balance_projection
from students import subledger
from students.models import Student

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    """Rebuild materialized balances."""

    help = "Rebuild AccountBalance / StudentBalance from the journal store and sub-ledger"

    def add_arguments(self, parser):
        # Target selection
        parser.add_argument(
            "--accounts",
            action="store_true",
            help="Rebuild account balances",
        )
        parser.add_argument(
            "--students",
            action="store_true",
            help="Rebuild student balances",
        )
        parser.add_argument(
            "--student",
            type=str,
            metavar="REG_NUMBER",
            help="Recalculate one student's balance",
        )

        # Operation modes
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be fixed without making changes",
        )
        parser.add_argument(
            "--verify-first",
            action="store_true",
            help="Print the integrity report before rebuilding",
        )

    def handle(self, *args, **options):
        if options["student"] and (options["accounts"] or options["students"]):
            raise CommandError("Cannot use --student with --accounts/--students")

        if options["verify_first"] or options["dry_run"]:
            self._verify()

        if options["dry_run"]:
            self.stdout.write(self.style.WARNING("\n[DRY RUN] No changes made."))
            return

        if options["student"]:
            return self._recalculate_student(options["student"])

        projections = []
        if options["accounts"]:
            projections.append(account_balance_projection)
        if options["students"]:
            projections.append(student_balance_projection)
        if not projections:
            projections = [account_balance_projection, student_balance_projection]

        start_time = time.time()
        with transaction.atomic():
            for projection in projections:
                self.stdout.write(f"  Rebuilding {projection.name}...")
                written = projection.recompute_all()
                self.stdout.write(self.style.SUCCESS(f"    {written:,} rows written"))

        elapsed = time.time() - start_time
        self.stdout.write(self.style.SUCCESS(f"\nREBUILD COMPLETE in {elapsed:.2f} seconds"))

        report = check_integrity()
        if not report["is_consistent"]:
            self.stdout.write(self.style.ERROR(f"Drift remains after rebuild: {report['drift']}"))

    def _verify(self):
        report = check_integrity()
        self.stdout.write("\nIntegrity before rebuild:")
        for scope, count in report["drift"].items():
            style = self.style.ERROR if count else self.style.SUCCESS
            self.stdout.write(style(f"  {scope}: {count} mismatched"))
        return report

    def _recalculate_student(self, reg_number):
        try:
            student = Student.objects.get(reg_number=reg_number)
        except Student.DoesNotExist:
            raise CommandError(f"Student not found: {reg_number}")

        before = subledger.get_balance(student)
        row = subledger.recalculate(student)
        self.stdout.write(self.style.SUCCESS(
            f"{student.reg_number}: {before} -> {row.balance}"
        ))
