# projections/student_balance.py
"""
Student Balance Projection.

StudentBalance = sum(CREDIT amounts) - sum(DEBIT amounts) over the
student's sub-ledger transactions. Maintained incrementally by
students.subledger and rebuilt by recompute_all()/recalculate().
"""

from decimal import Decimal
from typing import Any, Dict
import logging

from django.db import transaction
from django.db.models import Case, DecimalField, F, Sum, When
from django.utils import timezone

from accounting.journal_store import to_money
from projections.base import BaseProjection, drift_tolerance, projection_registry
from projections.models import StudentBalance
from projections.write_barrier import projection_writes_allowed
from students.models import Student, StudentTransaction


logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


def _signed_amount():
    return Case(
        When(type=StudentTransaction.Type.CREDIT, then=F("amount")),
        default=-F("amount"),
        output_field=DecimalField(max_digits=18, decimal_places=2),
    )


class StudentBalanceProjection(BaseProjection):
    """Maintains one balance row per student from sub-ledger transactions."""

    source_table = StudentTransaction._meta.db_table

    @property
    def name(self) -> str:
        return "student_balance"

    @staticmethod
    def signed(txn: StudentTransaction) -> Decimal:
        if txn.type == StudentTransaction.Type.CREDIT:
            return txn.amount
        return -txn.amount

    def apply_amount(self, student_id: int, delta: Decimal) -> StudentBalance:
        """Add ``delta`` to the student's balance under a row lock."""
        now = timezone.now()
        with projection_writes_allowed():
            StudentBalance.objects.get_or_create(
                student_id=student_id,
                defaults={"last_updated": now},
            )
            row = StudentBalance.objects.select_for_update().get(student_id=student_id)
            row.balance += delta
            row.last_updated = now
            row.save(update_fields=["balance", "last_updated"])
        return row

    def apply_transaction(self, txn: StudentTransaction) -> StudentBalance:
        return self.apply_amount(txn.student_id, self.signed(txn))

    def expected_balance(self, student_id: int) -> Decimal:
        total = (
            StudentTransaction.objects
            .filter(student_id=student_id)
            .aggregate(total=Sum(_signed_amount()))["total"]
        )
        return to_money(total)

    def recalculate(self, student: Student) -> StudentBalance:
        """Re-sum one student's transactions and overwrite the balance."""
        now = timezone.now()
        with transaction.atomic():
            Student.objects.select_for_update().get(pk=student.pk)
            total = self.expected_balance(student.pk)
            with projection_writes_allowed():
                row, _ = StudentBalance.objects.update_or_create(
                    student_id=student.pk,
                    defaults={"balance": total, "last_updated": now},
                )
        logger.info(f"Recalculated balance for student {student.reg_number}: {total}")
        return row

    def _aggregate(self) -> Dict[int, Decimal]:
        rows = (
            StudentTransaction.objects
            .values("student_id")
            .annotate(total=Sum(_signed_amount()))
            .order_by("student_id")
        )
        return {row["student_id"]: to_money(row["total"]) for row in rows}

    def _clear_projected_data(self) -> int:
        deleted, _ = StudentBalance.objects.all().delete()
        return deleted

    def _rebuild_rows(self) -> int:
        now = timezone.now()
        rows = [
            StudentBalance(student_id=student_id, balance=total, last_updated=now)
            for student_id, total in self._aggregate().items()
        ]
        StudentBalance.objects.bulk_create(rows)
        return len(rows)

    def verify(self) -> Dict[str, Any]:
        expected = self._aggregate()
        stored = {
            row.student_id: row
            for row in StudentBalance.objects.select_related("student")
        }
        tolerance = drift_tolerance()

        mismatches = []
        for student_id in sorted(set(expected) | set(stored)):
            exp = expected.get(student_id, ZERO)
            row = stored.get(student_id)
            projected = row.balance if row else ZERO
            if abs(projected - exp) >= tolerance:
                mismatches.append({
                    "student_id": student_id,
                    "missing_projection": row is None,
                    "projected_balance": str(projected),
                    "expected_balance": str(exp),
                })

        return self._report(len(set(expected) | set(stored)), mismatches)

    def get_balance(self, student: Student) -> Decimal:
        row = StudentBalance.objects.filter(student=student).first()
        return row.balance if row else ZERO


student_balance_projection = StudentBalanceProjection()

projection_registry.register(student_balance_projection)
