# accounting/models.py
"""
Accounting models for the school ledger.

The journal store is the system of record:
- JournalEntry: Entry headers (append-only)
- JournalLine: Debit/credit lines (never edited after posting)

Reference data:
- Currency: Currencies lines can be posted in (one base currency)
- PostingJournal: Logical grouping of entries ("Fees Journal", ...)
- Account: Chart of Accounts

Write models:
- DocumentSequence: Counters for entry and receipt numbers

Journal tables are command-owned: they may only be written inside
command_writes_allowed() (see projections/write_barrier.py). Balances
derived from them live in projections/models.py.
"""

from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import models

from projections.write_barrier import CommandOwnedModel, WriteBarrierQuerySet


MONEY_MAX_DIGITS = 18
MONEY_DECIMAL_PLACES = 2
ZERO = Decimal("0.00")


class Currency(models.Model):
    code = models.CharField(max_length=3, unique=True)
    name = models.CharField(max_length=100, blank=True, default="")
    is_base = models.BooleanField(default=False)

    class Meta:
        ordering = ["code"]
        verbose_name_plural = "Currencies"
        constraints = [
            models.UniqueConstraint(
                fields=["is_base"],
                condition=models.Q(is_base=True),
                name="uniq_base_currency",
            ),
        ]

    def __str__(self):
        return self.code


class PostingJournal(models.Model):
    """A logical grouping of journal entries, e.g. "Fees Journal"."""

    name = models.CharField(max_length=100, unique=True)
    description = models.TextField(blank=True, default="")
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name


class Account(models.Model):
    """
    Chart of Accounts entry.

    The code's leading digit encodes the natural ordering
    (1=Asset, 2=Liability, 3=Equity, 4=Revenue, 5=Expense).

    Once any journal line references an account its code, type, parent and
    receivable flag are frozen: balance sign logic and the receivable
    reconciliation depend on them. Name and active flag stay editable.
    """

    class AccountType(models.TextChoices):
        ASSET = "ASSET", "Asset"
        LIABILITY = "LIABILITY", "Liability"
        EQUITY = "EQUITY", "Equity"
        REVENUE = "REVENUE", "Revenue"
        EXPENSE = "EXPENSE", "Expense"

    class NormalBalance(models.TextChoices):
        DEBIT = "DEBIT", "Debit"
        CREDIT = "CREDIT", "Credit"

    # Map account types to their normal balance
    NORMAL_BALANCE_MAP = {
        AccountType.ASSET: NormalBalance.DEBIT,
        AccountType.EXPENSE: NormalBalance.DEBIT,
        AccountType.LIABILITY: NormalBalance.CREDIT,
        AccountType.EQUITY: NormalBalance.CREDIT,
        AccountType.REVENUE: NormalBalance.CREDIT,
    }

    # Leading code digit for each type
    CODE_PREFIX = {
        AccountType.ASSET: "1",
        AccountType.LIABILITY: "2",
        AccountType.EQUITY: "3",
        AccountType.REVENUE: "4",
        AccountType.EXPENSE: "5",
    }

    FROZEN_FIELDS = ("code", "account_type", "is_receivable", "parent_id")

    code = models.CharField(max_length=20, unique=True)
    name = models.CharField(max_length=255)
    account_type = models.CharField(
        max_length=20,
        choices=AccountType.choices,
        db_column="type",
    )
    parent = models.ForeignKey(
        "self",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="children",
    )
    is_active = models.BooleanField(default=True)
    is_receivable = models.BooleanField(
        default=False,
        help_text="Student receivable account; lines are tagged with the student",
    )
    description = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["code"]
        indexes = [
            models.Index(fields=["account_type"]),
            models.Index(fields=["parent"]),
        ]

    def __str__(self):
        return f"{self.code} - {self.name}"

    @property
    def normal_balance(self) -> str:
        return self.NORMAL_BALANCE_MAP[self.account_type]

    @classmethod
    def signed_balance(cls, account_type: str, debit: Decimal, credit: Decimal) -> Decimal:
        """Balance in the account's normal direction for the given totals."""
        if cls.NORMAL_BALANCE_MAP[account_type] == cls.NormalBalance.DEBIT:
            return debit - credit
        return credit - debit

    def has_postings(self) -> bool:
        if not self.pk:
            return False
        return self.journal_lines.exists()

    def clean(self):
        if self.account_type and self.code and not self.code.startswith(self.CODE_PREFIX[self.account_type]):
            raise ValidationError(
                f"Account code {self.code} does not match type {self.account_type} "
                f"(expected leading digit {self.CODE_PREFIX[self.account_type]})."
            )
        if self.parent_id and self.parent_id == self.pk:
            raise ValidationError("Account cannot be its own parent.")
        if self.parent and self.parent.account_type != self.account_type:
            raise ValidationError(
                f"Account type {self.account_type} cannot be a child of {self.parent.account_type}."
            )

    def save(self, *args, **kwargs):
        if self.pk:
            stored = (
                Account.objects.filter(pk=self.pk)
                .values(*self.FROZEN_FIELDS)
                .first()
            )
            changed = [
                field for field in self.FROZEN_FIELDS
                if stored and stored[field] != getattr(self, field)
            ]
            if changed and self.has_postings():
                raise ValidationError(
                    f"Account {stored['code']} is referenced by journal lines; "
                    f"{', '.join(changed)} can no longer change."
                )
        super().save(*args, **kwargs)


class JournalEntry(CommandOwnedModel, models.Model):
    """
    Journal entry header.

    Entries are append-only. Corrections are compensating entries
    (``reverses`` points at the corrected entry) or, within the grace
    period, an atomic delete of the whole entry.
    """

    objects = WriteBarrierQuerySet.as_manager()

    entry_number = models.CharField(max_length=30, unique=True)
    journal = models.ForeignKey(
        PostingJournal,
        on_delete=models.PROTECT,
        related_name="entries",
    )
    entry_date = models.DateField()
    description = models.TextField(blank=True, default="")
    reference = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="External reference, used as a lookup key",
    )
    reverses = models.ForeignKey(
        "self",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="reversals",
    )
    created_by = models.CharField(max_length=100, blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["id"]
        verbose_name_plural = "Journal entries"
        indexes = [
            models.Index(fields=["reference"]),
            models.Index(fields=["entry_date"]),
        ]

    def __str__(self):
        return f"{self.entry_number} {self.description}"

    @property
    def is_reversal(self) -> bool:
        return self.reverses_id is not None

    @property
    def is_reversed(self) -> bool:
        return self.reversals.exists()

    def totals_by_currency(self) -> dict[str, dict[str, Decimal]]:
        totals: dict[str, dict[str, Decimal]] = {}
        for line in self.lines.select_related("currency"):
            bucket = totals.setdefault(line.currency.code, {"debit": ZERO, "credit": ZERO})
            bucket["debit"] += line.debit
            bucket["credit"] += line.credit
        return totals


class JournalLine(CommandOwnedModel, models.Model):
    """
    A single debit or credit line.

    Exactly one of debit/credit is non-zero. Receivable lines carry the
    student they belong to so AR can be reconciled with the sub-ledger.
    """

    objects = WriteBarrierQuerySet.as_manager()

    entry = models.ForeignKey(
        JournalEntry,
        on_delete=models.CASCADE,
        related_name="lines",
    )
    line_no = models.PositiveIntegerField()
    account = models.ForeignKey(
        Account,
        on_delete=models.PROTECT,
        related_name="journal_lines",
    )
    currency = models.ForeignKey(
        Currency,
        on_delete=models.PROTECT,
        related_name="journal_lines",
    )
    debit = models.DecimalField(
        max_digits=MONEY_MAX_DIGITS,
        decimal_places=MONEY_DECIMAL_PLACES,
        default=ZERO,
    )
    credit = models.DecimalField(
        max_digits=MONEY_MAX_DIGITS,
        decimal_places=MONEY_DECIMAL_PLACES,
        default=ZERO,
    )
    description = models.CharField(max_length=255, blank=True, default="")
    student = models.ForeignKey(
        "students.Student",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="journal_lines",
    )

    class Meta:
        ordering = ["entry_id", "line_no"]
        constraints = [
            models.CheckConstraint(
                check=models.Q(debit__gte=0) & models.Q(credit__gte=0),
                name="journal_line_non_negative",
            ),
            models.CheckConstraint(
                check=(
                    (models.Q(debit__gt=0) & models.Q(credit=0))
                    | (models.Q(debit=0) & models.Q(credit__gt=0))
                ),
                name="journal_line_one_side",
            ),
            models.UniqueConstraint(
                fields=["entry", "line_no"],
                name="uniq_journal_line_no",
            ),
        ]
        indexes = [
            models.Index(fields=["account", "currency"]),
            models.Index(fields=["student", "account"]),
        ]

    def __str__(self):
        return f"{self.entry_id}#{self.line_no} {self.account_id} Dr {self.debit} Cr {self.credit}"


class DocumentSequence(CommandOwnedModel, models.Model):
    """
    Counters for sequential identifiers (entry numbers, receipts).

    Allocated by commands under select_for_update.
    """

    objects = WriteBarrierQuerySet.as_manager()

    name = models.CharField(max_length=100, unique=True)
    next_value = models.BigIntegerField(default=1)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.name}={self.next_value}"
