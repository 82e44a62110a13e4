"""
Celery tasks for ledger integrity and balance maintenance.

Tasks:
- check_ledger_integrity: Verify derived balances (scheduled via beat)
- recompute_all_balances: Rebuild AccountBalance and StudentBalance
- recalculate_student_balance: Re-sum one student's sub-ledger

Usage:
    from projections.tasks import recalculate_student_balance
    recalculate_student_balance.delay(student_id=student.id)

    # Scheduled periodic check: CELERY_BEAT_SCHEDULE in settings, or
    # Django admin -> Periodic Tasks
"""
import logging

from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task(bind=True)
def check_ledger_integrity(self, raise_on_drift: bool = False) -> dict:
    """
    Run the full integrity check and report drift.

    Drift is reported (log + gauges), never corrected here; run
    recompute_all_balances or ``manage.py recompute_balances``.
    """
    from projections.reconciliation import check_integrity

    report = check_integrity(raise_on_drift=raise_on_drift)
    if not report["is_consistent"]:
        logger.warning(f"Scheduled integrity check found drift: {report['drift']}")
    return {
        "is_consistent": report["is_consistent"],
        "drift": report["drift"],
        "checked_at": report["checked_at"],
    }


@shared_task(
    bind=True,
    max_retries=1,
    time_limit=3600,  # 1 hour
)
def recompute_all_balances(self) -> dict:
    """
    Rebuild both balance tables from the journal store and sub-ledger.

    Returns:
        Dict with rows written per projection and the post-repair drift
    """
    from projections.reconciliation import repair

    logger.info("Recomputing all balances")
    result = repair()
    return {
        "rebuilt": result["rebuilt"],
        "is_consistent": result["report"]["is_consistent"],
        "drift": result["report"]["drift"],
    }


@shared_task(bind=True)
def recalculate_student_balance(self, student_id: int) -> dict:
    """Re-sum a single student's transactions into StudentBalance."""
    from students import subledger
    from students.models import Student

    try:
        student = Student.objects.get(pk=student_id)
    except Student.DoesNotExist:
        logger.error(f"Student {student_id} not found")
        return {"error": f"Student {student_id} not found"}

    row = subledger.recalculate(student)
    return {
        "student_id": student_id,
        "reg_number": student.reg_number,
        "balance": str(row.balance),
    }
