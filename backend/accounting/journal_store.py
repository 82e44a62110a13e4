# accounting/journal_store.py
"""
Journal Store: the append-only system of record.

    post()               -> validate and append a balanced entry
    post_compensating()  -> append the equal-and-opposite entry
    delete()             -> remove an entry, return the balance reversals

The store never touches materialized balances. Callers hand the posted
entry (or the returned BalanceDelta list) to the account balance
projection inside the same transaction.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, List, Optional, Sequence
import logging

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import Sum
from django.utils import timezone

from accounting import chart
from accounting.exceptions import (
    PreconditionFailedError,
    UnbalancedEntryError,
    ValidationError,
)
from accounting.models import Account, DocumentSequence, JournalEntry, JournalLine, PostingJournal
from accounting.policies import can_delete_entry, can_reverse_entry
from projections.write_barrier import command_writes_allowed


logger = logging.getLogger(__name__)

MONEY_Q = Decimal("0.01")
ZERO = Decimal("0.00")


def balance_tolerance() -> Decimal:
    return Decimal(str(getattr(settings, "LEDGER_BALANCE_TOLERANCE", "0.01")))


def to_money(value: Any, field_name: str = "amount") -> Decimal:
    """Convert input to a Decimal quantized to cents."""
    if value is None or value == "":
        return ZERO
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"Invalid {field_name}: {value!r}", details={field_name: str(value)})
    if not amount.is_finite():
        raise ValidationError(f"Invalid {field_name}: {value!r}", details={field_name: str(value)})
    return amount.quantize(MONEY_Q, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class LineSpec:
    """A proposed journal line, before account/currency resolution."""

    account_code: str
    debit: Decimal = ZERO
    credit: Decimal = ZERO
    currency: Optional[str] = None
    description: str = ""
    student_id: Optional[int] = None


@dataclass(frozen=True)
class BalanceDelta:
    """
    Change to apply to one AccountBalance row.

    ``balance_delta`` is already signed by the account's normal side.
    """

    account_id: int
    currency_id: int
    debit: Decimal
    credit: Decimal
    balance_delta: Decimal


@dataclass
class _ResolvedLine:
    account: Account
    currency_id: int
    currency_code: str
    debit: Decimal
    credit: Decimal
    description: str
    student_id: Optional[int] = None


def next_sequence_value(name: str) -> int:
    """
    Allocate the next value of a named sequence.
    Uses select_for_update to avoid concurrent duplicates.
    """
    with command_writes_allowed():
        try:
            seq = DocumentSequence.objects.select_for_update().get(name=name)
        except DocumentSequence.DoesNotExist:
            try:
                with transaction.atomic():
                    seq = DocumentSequence.objects.create(name=name, next_value=1)
            except IntegrityError:
                seq = DocumentSequence.objects.select_for_update().get(name=name)
        value = seq.next_value
        seq.next_value = value + 1
        seq.save(update_fields=["next_value", "updated_at"])
    return value


def _resolve_lines(lines: Sequence[LineSpec]) -> List[_ResolvedLine]:
    if len(lines) < 2:
        raise ValidationError(
            "A journal entry needs at least two lines.",
            details={"line_count": len(lines)},
        )

    resolved = []
    currencies = {}
    for index, spec in enumerate(lines, start=1):
        debit = to_money(spec.debit, "debit")
        credit = to_money(spec.credit, "credit")
        if debit < 0 or credit < 0:
            raise ValidationError(
                f"Line {index}: amounts cannot be negative.",
                details={"line": index, "debit": str(debit), "credit": str(credit)},
            )
        if (debit > 0) == (credit > 0):
            raise ValidationError(
                f"Line {index}: exactly one of debit/credit must be non-zero.",
                details={"line": index, "debit": str(debit), "credit": str(credit)},
            )

        currency_key = (spec.currency or "").upper()
        if currency_key not in currencies:
            currencies[currency_key] = chart.get_currency(spec.currency)
        currency = currencies[currency_key]

        resolved.append(_ResolvedLine(
            account=chart.get_postable_account(spec.account_code),
            currency_id=currency.id,
            currency_code=currency.code,
            debit=debit,
            credit=credit,
            description=spec.description[:255],
            student_id=spec.student_id,
        ))
    return resolved


def _assert_balanced(lines: Iterable[_ResolvedLine]) -> None:
    totals: dict[str, dict[str, Decimal]] = {}
    for line in lines:
        bucket = totals.setdefault(line.currency_code, {"debit": ZERO, "credit": ZERO})
        bucket["debit"] += line.debit
        bucket["credit"] += line.credit

    tolerance = balance_tolerance()
    unbalanced = {
        code: {"debit": str(t["debit"]), "credit": str(t["credit"])}
        for code, t in totals.items()
        if abs(t["debit"] - t["credit"]) >= tolerance
    }
    if unbalanced:
        raise UnbalancedEntryError(
            "Entry is not balanced for currencies: " + ", ".join(sorted(unbalanced)),
            details={"currencies": unbalanced},
        )


def post(
    *,
    lines: Sequence[LineSpec],
    description: str = "",
    reference: str = "",
    entry_date: Optional[date] = None,
    journal: Optional[PostingJournal] = None,
    created_by: str = "",
    reverses: Optional[JournalEntry] = None,
) -> JournalEntry:
    """
    Validate and append a journal entry.

    Raises:
        ValidationError: malformed lines or unknown currency
        UnknownAccountError: absent or inactive account
        UnbalancedEntryError: debits != credits for some currency
    """
    resolved = _resolve_lines(lines)
    _assert_balanced(resolved)

    with transaction.atomic():
        sequence_value = next_sequence_value("journal_entry_number")
        with command_writes_allowed():
            entry = JournalEntry.objects.create(
                entry_number=f"JE-{sequence_value:06d}",
                journal=journal or chart.get_default_journal(),
                entry_date=entry_date or timezone.localdate(),
                description=description,
                reference=reference,
                reverses=reverses,
                created_by=created_by,
            )
            JournalLine.objects.bulk_create([
                JournalLine(
                    entry=entry,
                    line_no=line_no,
                    account=line.account,
                    currency_id=line.currency_id,
                    debit=line.debit,
                    credit=line.credit,
                    description=line.description,
                    student_id=line.student_id,
                )
                for line_no, line in enumerate(resolved, start=1)
            ])

    logger.info(
        f"Posted {entry.entry_number} ({len(resolved)} lines) ref={reference!r}",
        extra={"entry_id": entry.id, "reference": reference},
    )
    return entry


def build_compensating_lines(entry: JournalEntry) -> List[LineSpec]:
    """Swap debit/credit of every line of ``entry``."""
    return [
        LineSpec(
            account_code=line.account.code,
            debit=line.credit,
            credit=line.debit,
            currency=line.currency.code,
            description=f"Reversal: {line.description}".strip(),
            student_id=line.student_id,
        )
        for line in entry.lines.select_related("account", "currency").order_by("line_no")
    ]


def post_compensating(
    entry: JournalEntry,
    *,
    created_by: str = "",
    description: Optional[str] = None,
    entry_date: Optional[date] = None,
) -> JournalEntry:
    """
    Post the equal-and-opposite entry for ``entry``.

    Compensating lines reuse the original accounts even if one has since been
    deactivated; reversing history must stay possible.
    """
    with transaction.atomic():
        entry = JournalEntry.objects.select_for_update().get(pk=entry.pk)
        allowed, reason = can_reverse_entry(entry)
        if not allowed:
            raise PreconditionFailedError(reason, details={"entry_id": entry.id})

        specs = build_compensating_lines(entry)
        sequence_value = next_sequence_value("journal_entry_number")
        accounts = {line.account.code: line.account for line in entry.lines.select_related("account")}
        currencies = {line.currency.code: line.currency_id for line in entry.lines.select_related("currency")}
        with command_writes_allowed():
            reversal = JournalEntry.objects.create(
                entry_number=f"JE-{sequence_value:06d}",
                journal=entry.journal,
                entry_date=entry_date or timezone.localdate(),
                description=description or f"Reversal of {entry.entry_number}: {entry.description}",
                reference=entry.reference,
                reverses=entry,
                created_by=created_by,
            )
            JournalLine.objects.bulk_create([
                JournalLine(
                    entry=reversal,
                    line_no=line_no,
                    account=accounts[spec.account_code],
                    currency_id=currencies[spec.currency],
                    debit=spec.debit,
                    credit=spec.credit,
                    description=spec.description[:255],
                    student_id=spec.student_id,
                )
                for line_no, spec in enumerate(specs, start=1)
            ])

    logger.info(
        f"Posted compensating entry {reversal.entry_number} for {entry.entry_number}",
        extra={"entry_id": reversal.id, "reverses": entry.id},
    )
    return reversal


def balance_deltas_for(entry: JournalEntry, sign: int = 1) -> List[BalanceDelta]:
    """
    Aggregate an entry's lines into per (account, currency) deltas.

    ``sign=-1`` yields the reversal of the entry's effect.
    """
    rows = (
        entry.lines
        .values("account_id", "account__account_type", "currency_id")
        .annotate(debit=Sum("debit"), credit=Sum("credit"))
        .order_by("account_id", "currency_id")
    )
    deltas = []
    for row in rows:
        debit = (row["debit"] or ZERO) * sign
        credit = (row["credit"] or ZERO) * sign
        deltas.append(BalanceDelta(
            account_id=row["account_id"],
            currency_id=row["currency_id"],
            debit=debit,
            credit=credit,
            balance_delta=Account.signed_balance(row["account__account_type"], debit, credit),
        ))
    return deltas


def delete(entry_id: int) -> List[BalanceDelta]:
    """
    Remove an entry and its lines.

    Returns the (account, currency) reversals the caller must apply to
    AccountBalance; balances are not touched here.

    Raises:
        ValidationError: entry does not exist
        PreconditionFailedError: entry has a compensating entry, or a
            sub-ledger transaction still references it
    """
    with transaction.atomic():
        try:
            entry = JournalEntry.objects.select_for_update().get(pk=entry_id)
        except JournalEntry.DoesNotExist:
            raise ValidationError(f"Journal entry {entry_id} not found.", details={"entry_id": entry_id})

        allowed, reason = can_delete_entry(entry)
        if not allowed:
            raise PreconditionFailedError(reason, details={"entry_id": entry.id})
        if entry.student_transactions.exists():
            raise PreconditionFailedError(
                f"{entry.entry_number} is referenced by student transactions.",
                details={"entry_id": entry.id},
            )

        deltas = balance_deltas_for(entry, sign=-1)
        entry_number = entry.entry_number
        with command_writes_allowed():
            entry.lines.all().delete()
            entry.delete()

    logger.info(
        f"Deleted journal entry {entry_number}; {len(deltas)} balance reversals pending",
        extra={"entry_id": entry_id},
    )
    return deltas
