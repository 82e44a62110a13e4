# accounting/commands.py
"""
Command layer for ledger postings.

Commands are the single point where money moves. Callers (API views,
management commands, tasks) call commands; commands enforce rules, post
to both ledgers and schedule the audit record.

Pattern:
1. Validate input (DRF serializers, validate_input)
2. Check business preconditions under row locks
3. Post the journal entry (journal_store.post / post_compensating)
4. Record the sub-ledger transaction linked to that entry
5. Apply the balance deltas (account_balance_projection.apply_entry)
6. Schedule the audit record (emit_audit, after commit)
7. Return CommandResult

Steps 1-6 run in one transaction.atomic block wrapped by the retry policy
(see posting_command). ALL ledger writes MUST go through commands.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence
import functools
import logging

from django.db import transaction
from rest_framework.exceptions import ValidationError as DRFValidationError

from accounting import chart, journal_store
from accounting.authz import ActorContext
from accounting.exceptions import (
    LedgerError,
    PreconditionFailedError,
    TransientConflictError,
    ValidationError,
)
from accounting.journal_store import LineSpec
from accounting.models import JournalEntry, PostingJournal
from accounting.policies import can_reverse_entry
from accounting.retry import RetryPolicy, default_retry_policy
from accounting.serializers import (
    ManualAdjustmentResultSerializer,
    ManualAdjustmentSerializer,
    ReversalResultSerializer,
    validate_input,
)
from audit.emitter import emit_audit
from ops.metrics import record_failure, record_posting
from projections.account_balance import account_balance_projection


logger = logging.getLogger(__name__)


class CommandResult:
    """
    Wrapper for command results with success/failure info.

    Usage:
        result = pay_fee(actor, student_id=..., category="TUITION", ...)
        if result.success:
            payment = result.data["payment"]
        else:
            error = result.error          # LedgerError
        payload = result.to_payload()     # {success, message, data|error}
    """

    def __init__(
        self,
        success: bool,
        data=None,
        error: Optional[LedgerError] = None,
        message: str = "",
        serializer_class=None,
    ):
        self.success = success
        self.data = data
        self.error = error
        self.message = message
        self.serializer_class = serializer_class

    @classmethod
    def ok(cls, data=None, message: str = "", serializer_class=None):
        return cls(success=True, data=data, message=message, serializer_class=serializer_class)

    @classmethod
    def fail(cls, error: LedgerError, message: Optional[str] = None):
        return cls(success=False, error=error, message=message or error.message)

    def to_payload(self) -> Dict[str, Any]:
        payload = {"success": self.success, "message": self.message}
        if self.success:
            data = self.data
            if self.serializer_class is not None and data is not None:
                data = self.serializer_class(data).data
            payload["data"] = data
        else:
            payload["error"] = self.error.to_dict()
        return payload

    def __repr__(self):
        if self.success:
            return f"<CommandResult ok: {self.message}>"
        return f"<CommandResult fail: {self.error.code}: {self.message}>"


def posting_command(
    kind: str,
    serializer_class=None,
    retry_policy: Optional[RetryPolicy] = None,
) -> Callable:
    """
    Turn a function that raises LedgerError into a retrying, atomic command.

    The wrapped function receives ``actor`` first and returns the result
    data. It runs inside transaction.atomic(); transient lock conflicts
    re-run the whole block per the retry policy. Ledger errors (and DRF
    validation errors, converted) become CommandResult.fail with every
    write rolled back.
    """

    def decorator(func: Callable) -> Callable:
        atomic_func = transaction.atomic(func)

        @functools.wraps(func)
        def wrapper(actor: ActorContext, *args, **kwargs) -> CommandResult:
            policy = retry_policy or default_retry_policy()
            try:
                data = policy.run(atomic_func, actor, *args, **kwargs)
            except DRFValidationError as exc:
                error = ValidationError("Invalid input.", details={"fields": exc.detail})
            except LedgerError as exc:
                error = exc
            else:
                record_posting(kind)
                logger.info(f"Command {kind} succeeded for actor {actor.actor_id}")
                return CommandResult.ok(
                    data,
                    message=f"{kind.replace('_', ' ').capitalize()} completed.",
                    serializer_class=serializer_class,
                )

            record_failure(kind, error.code)
            if isinstance(error, TransientConflictError):
                logger.warning(
                    f"Command {kind} gave up after {error.attempts} attempts: {error.message}",
                    extra={"details": error.details},
                )
            else:
                logger.info(
                    f"Command {kind} rejected: {error.message}",
                    extra={"error_code": error.code},
                )
            return CommandResult.fail(error)

        wrapper.kind = kind
        return wrapper

    return decorator


def entry_snapshot(entry: JournalEntry) -> Dict[str, Any]:
    """Minimal audit view of a journal entry."""
    return {
        "entry_number": entry.entry_number,
        "entry_date": entry.entry_date,
        "reference": entry.reference,
        "reverses": entry.reverses_id,
        "totals": {
            code: {side: str(amount) for side, amount in totals.items()}
            for code, totals in entry.totals_by_currency().items()
        },
    }


# =============================================================================
# Manual adjustments
# =============================================================================

def _tag_receivable_lines(lines: Sequence[dict], student_id: int) -> tuple[List[LineSpec], Decimal]:
    """
    Build LineSpecs, tagging receivable lines with the student.

    Returns the specs and the net receivable movement (debit - credit).
    Student-tagged lines must be in the base currency; the sub-ledger is
    single-currency.
    """
    base_code = chart.get_base_currency().code
    specs, net = [], Decimal("0.00")
    for line in lines:
        account = chart.get_postable_account(line["account_code"])
        currency = line.get("currency") or base_code
        tagged = account.is_receivable
        if tagged:
            if currency != base_code:
                raise ValidationError(
                    f"Receivable line for account {account.code} must be in {base_code}.",
                    details={"account_code": account.code, "currency": currency},
                )
            net += line["debit"] - line["credit"]
        specs.append(LineSpec(
            account_code=account.code,
            debit=line["debit"],
            credit=line["credit"],
            currency=currency,
            description=line.get("description", ""),
            student_id=student_id if tagged else None,
        ))
    return specs, net


@posting_command("manual_adjustment", serializer_class=ManualAdjustmentResultSerializer)
def post_manual_adjustment(
    actor: ActorContext,
    description: str,
    lines: Sequence[dict],
    entry_date: Optional[date] = None,
    reference: str = "",
    journal: Optional[PostingJournal] = None,
    student_id: Optional[int] = None,
):
    """
    Post a free-form balanced entry, possibly spanning several currencies.

    With ``student_id``, receivable lines are tagged with the student and
    the net receivable movement is recorded on the student's sub-ledger
    (DEBIT when the receivable grows, CREDIT when it shrinks).
    """
    from students import subledger
    from students.models import StudentTransaction

    data = validate_input(ManualAdjustmentSerializer, {
        "description": description,
        "lines": list(lines),
        "entry_date": entry_date,
        "reference": reference,
    })

    student = None
    if student_id is not None:
        student = subledger.get_student(student_id, lock=True)
        specs, net = _tag_receivable_lines(data["lines"], student.pk)
    else:
        specs = [
            LineSpec(
                account_code=line["account_code"],
                debit=line["debit"],
                credit=line["credit"],
                currency=line["currency"] or None,
                description=line["description"],
            )
            for line in data["lines"]
        ]
        net = Decimal("0.00")

    entry = journal_store.post(
        lines=specs,
        description=data["description"],
        reference=data["reference"],
        entry_date=data["entry_date"],
        journal=journal,
        created_by=actor.actor_id,
    )

    txn = None
    if student is not None and net != 0:
        txn = subledger.record(
            student,
            StudentTransaction.Type.DEBIT if net > 0 else StudentTransaction.Type.CREDIT,
            abs(net),
            data["description"],
            journal_entry=entry,
            context="manual_adjustment",
            created_by=actor.actor_id,
        )

    account_balance_projection.apply_entry(entry)

    emit_audit(
        "journal_entry.adjusted",
        "JournalEntry",
        entry.pk,
        actor.actor_id,
        after={**entry_snapshot(entry), "student_transaction": txn.pk if txn else None},
    )
    return {"entry": entry, "student_transaction": txn}


# =============================================================================
# Reversal
# =============================================================================

@posting_command("journal_reversal", serializer_class=ReversalResultSerializer)
def reverse_journal_entry(actor: ActorContext, entry_id: int, reason: str = ""):
    """
    Post the compensating entry for a journal entry without sub-ledger rows.

    Entries produced by student postings are reversed through
    billing.commands.reverse_student_transaction so both ledgers move.
    """
    try:
        original = JournalEntry.objects.select_for_update().get(pk=entry_id)
    except JournalEntry.DoesNotExist:
        raise ValidationError(f"Journal entry {entry_id} not found.", details={"entry_id": entry_id})

    allowed, why = can_reverse_entry(original)
    if not allowed:
        raise PreconditionFailedError(why, details={"entry_id": original.pk})
    if original.student_transactions.exists():
        raise PreconditionFailedError(
            f"{original.entry_number} has student transactions; reverse them instead.",
            details={"entry_id": original.pk},
        )

    reversal = journal_store.post_compensating(
        original,
        created_by=actor.actor_id,
        description=f"Reversal of {original.entry_number}: {reason or original.description}",
    )
    account_balance_projection.apply_entry(reversal)

    emit_audit(
        "journal_entry.reversed",
        "JournalEntry",
        original.pk,
        actor.actor_id,
        before=entry_snapshot(original),
        after={**entry_snapshot(reversal), "reason": reason},
    )
    return {"original": original, "reversal": reversal}
