# projections/reconciliation.py
"""
Ledger integrity checks and repair.

check_integrity() compares every derived balance with the journal store
and the sub-ledger:
1. AccountBalance rows vs. a fresh aggregation of journal lines
2. StudentBalance rows vs. a fresh sum of student transactions
3. Per student: movement on student-tagged receivable lines
   (sum(debit - credit)) vs. sub-ledger sum(DEBIT) - sum(CREDIT)

It never writes. repair() rebuilds both materialized tables from scratch
and checks again. Receivable drift cannot be repaired this way (both sides
are source tables); it is reported for investigation.
"""

from decimal import Decimal
from typing import Any, Dict, List
import logging

from django.db import transaction
from django.db.models import Case, DecimalField, F, Sum, When
from django.utils import timezone

from accounting.exceptions import IntegrityDriftError
from accounting.journal_store import to_money
from accounting.models import JournalLine
from ops.metrics import set_drift
from projections.account_balance import account_balance_projection
from projections.base import drift_tolerance
from projections.student_balance import student_balance_projection
from students.models import StudentTransaction


logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


def _receivable_movement_by_student() -> Dict[int, Decimal]:
    rows = (
        JournalLine.objects
        .filter(student__isnull=False, account__is_receivable=True)
        .values("student_id")
        .annotate(debit=Sum("debit"), credit=Sum("credit"))
        .order_by("student_id")
    )
    return {row["student_id"]: to_money(row["debit"]) - to_money(row["credit"]) for row in rows}


def _subledger_movement_by_student() -> Dict[int, Decimal]:
    rows = (
        StudentTransaction.objects
        .values("student_id")
        .annotate(total=Sum(Case(
            When(type=StudentTransaction.Type.DEBIT, then=F("amount")),
            default=-F("amount"),
            output_field=DecimalField(max_digits=18, decimal_places=2),
        )))
        .order_by("student_id")
    )
    return {row["student_id"]: to_money(row["total"]) for row in rows}


def verify_receivables() -> Dict[str, Any]:
    """Compare each student's tagged receivable movement with their sub-ledger."""
    receivable = _receivable_movement_by_student()
    subledger = _subledger_movement_by_student()
    tolerance = drift_tolerance()

    student_ids = sorted(set(receivable) | set(subledger))
    mismatches: List[Dict[str, Any]] = []
    for student_id in student_ids:
        ledger_amount = receivable.get(student_id, ZERO)
        subledger_amount = subledger.get(student_id, ZERO)
        if abs(ledger_amount - subledger_amount) >= tolerance:
            mismatches.append({
                "student_id": student_id,
                "receivable_movement": str(ledger_amount),
                "subledger_movement": str(subledger_amount),
            })

    return {
        "projection": "receivables",
        "checked": len(student_ids),
        "verified": len(student_ids) - len(mismatches),
        "mismatches": mismatches,
    }


def check_integrity(raise_on_drift: bool = False) -> Dict[str, Any]:
    """
    Verify every derived balance. Never auto-corrects.

    Returns:
        {
            "checked_at": "...",
            "is_consistent": bool,
            "drift": {"account_balances": n, "student_balances": n, "receivables": n},
            "account_balances": {...verify report...},
            "student_balances": {...},
            "receivables": {...},
        }

    Raises:
        IntegrityDriftError: when raise_on_drift and any scope drifted
    """
    sections = {
        "account_balances": account_balance_projection.verify(),
        "student_balances": student_balance_projection.verify(),
        "receivables": verify_receivables(),
    }
    drift = {scope: len(section["mismatches"]) for scope, section in sections.items()}
    for scope, count in drift.items():
        set_drift(scope, count)

    report = {
        "checked_at": timezone.now().isoformat(),
        "is_consistent": not any(drift.values()),
        "drift": drift,
        **sections,
    }

    if report["is_consistent"]:
        logger.info("Ledger integrity check passed")
    else:
        logger.error(f"Ledger integrity drift detected: {drift}", extra={"drift": drift})
        if raise_on_drift:
            raise IntegrityDriftError(f"Ledger integrity drift detected: {drift}", details=report)

    return report


def repair() -> Dict[str, Any]:
    """
    Rebuild AccountBalance and StudentBalance from the source tables.

    Both recomputes run in one transaction; the post-repair check runs
    after commit.
    """
    with transaction.atomic():
        rebuilt = {
            projection.name: projection.recompute_all()
            for projection in (account_balance_projection, student_balance_projection)
        }

    report = check_integrity()
    logger.info(f"Ledger repair complete: {rebuilt}; consistent={report['is_consistent']}")
    return {"rebuilt": rebuilt, "report": report}
