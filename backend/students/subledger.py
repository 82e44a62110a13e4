# students/subledger.py
"""
Student Sub-Ledger.

    record()            -> append a DEBIT/CREDIT and move StudentBalance
    reverse()           -> append the opposite transaction (grace period)
    assert_reversible() -> the reverse() preconditions, without side effects
    remove()            -> grace-period delete path (inverse balance delta)
    recalculate()       -> re-sum one student's transactions

Callers (the posting commands) always pass the journal entry the
transaction belongs to and run inside the same atomic block as the
journal post.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
import logging

from django.db import transaction
from django.utils import timezone

from accounting.exceptions import (
    GracePeriodExpiredError,
    PreconditionFailedError,
    ValidationError,
)
from accounting.journal_store import to_money
from accounting.policies import grace_period_days, within_grace_period
from projections.models import StudentBalance
from projections.student_balance import student_balance_projection
from projections.write_barrier import command_writes_allowed
from students.models import Student, StudentTransaction


logger = logging.getLogger(__name__)


def get_student(student_id: Any, *, lock: bool = False) -> Student:
    """Resolve a student by primary key; ValidationError when absent."""
    queryset = Student.objects.select_for_update() if lock else Student.objects
    try:
        return queryset.get(pk=student_id)
    except (Student.DoesNotExist, ValueError, TypeError):
        raise ValidationError(f"Student {student_id} not found.", details={"student_id": student_id})


@transaction.atomic
def record(
    student: Student,
    type: str,
    amount: Decimal,
    description: str,
    *,
    journal_entry,
    term: str = "",
    academic_year: Optional[int] = None,
    context: str = "",
    created_by: str = "",
    reversal_of: Optional[StudentTransaction] = None,
    transaction_date: Optional[datetime] = None,
) -> StudentTransaction:
    """
    Append a transaction and update the student's balance.

    Raises:
        ValidationError: bad amount/type, missing student or journal entry
    """
    if student is None or not getattr(student, "pk", None):
        raise ValidationError("A student is required.")
    if journal_entry is None or not getattr(journal_entry, "pk", None):
        raise ValidationError(
            "Student transactions must reference the journal entry that produced them.",
            details={"student_id": student.pk},
        )
    if type not in StudentTransaction.Type.values:
        raise ValidationError(f"Invalid transaction type: {type!r}", details={"type": type})
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError("Amount must be greater than zero.", details={"amount": str(amount)})

    with command_writes_allowed():
        txn = StudentTransaction.objects.create(
            student=student,
            type=type,
            amount=amount,
            description=description[:255],
            term=term or "",
            academic_year=academic_year,
            context=context,
            journal_entry=journal_entry,
            reversal_of=reversal_of,
            transaction_date=transaction_date or timezone.now(),
            created_by=created_by,
        )

    balance = student_balance_projection.apply_transaction(txn)
    logger.info(
        f"Recorded {type} {amount} for student {student.reg_number}; balance {balance.balance}",
        extra={"student_id": student.pk, "transaction_id": txn.pk, "entry_id": journal_entry.pk},
    )
    return txn


def assert_reversible(
    txn: StudentTransaction,
    *,
    grace_days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> None:
    """
    Raise unless ``txn`` may still be reversed or deleted.

    The grace boundary is inclusive: exactly ``grace_days`` days is allowed.
    """
    if txn.is_reversal:
        raise PreconditionFailedError(
            "A reversal cannot itself be reversed.",
            details={"transaction_id": txn.pk},
        )
    if txn.is_reversed:
        raise PreconditionFailedError(
            "Transaction was already reversed.",
            details={"transaction_id": txn.pk},
        )

    grace_days = grace_period_days() if grace_days is None else grace_days
    allowed, reason = within_grace_period(txn.transaction_date, now=now, grace_days=grace_days)
    if not allowed:
        raise GracePeriodExpiredError(
            reason,
            details={
                "transaction_id": txn.pk,
                "transaction_date": txn.transaction_date.isoformat(),
                "grace_days": grace_days,
            },
        )


@transaction.atomic
def reverse(
    txn: StudentTransaction,
    *,
    journal_entry,
    grace_days: Optional[int] = None,
    now: Optional[datetime] = None,
    created_by: str = "",
    description: Optional[str] = None,
) -> StudentTransaction:
    """
    Post the opposite-type transaction for the same amount.

    History is preserved: the original row is never edited.

    Raises:
        GracePeriodExpiredError: more than ``grace_days`` days since posting
        PreconditionFailedError: already reversed, or txn is itself a reversal
    """
    txn = StudentTransaction.objects.select_for_update().select_related("student").get(pk=txn.pk)
    assert_reversible(txn, grace_days=grace_days, now=now)

    return record(
        txn.student,
        StudentTransaction.OPPOSITE[txn.type],
        txn.amount,
        description or f"Reversal: {txn.description}",
        journal_entry=journal_entry,
        term=txn.term,
        academic_year=txn.academic_year,
        context=txn.context,
        created_by=created_by,
        reversal_of=txn,
        transaction_date=now,
    )


@transaction.atomic
def remove(txn: StudentTransaction) -> Decimal:
    """
    Delete a transaction and apply the inverse balance delta.

    Only the grace-period delete path calls this; callers check
    assert_reversible() first. Returns the delta applied.
    """
    txn = StudentTransaction.objects.select_for_update().get(pk=txn.pk)
    delta = -student_balance_projection.signed(txn)
    student_id = txn.student_id
    with command_writes_allowed():
        txn.delete()
    student_balance_projection.apply_amount(student_id, delta)
    return delta


def recalculate(student: Student) -> StudentBalance:
    return student_balance_projection.recalculate(student)


def get_balance(student: Student) -> Decimal:
    return student_balance_projection.get_balance(student)
