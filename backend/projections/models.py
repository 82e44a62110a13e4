# projections/models.py
"""
Projection models (materialized balances).

These tables are DERIVED from the journal store and the student
sub-ledger. They can be:
- Rebuilt from scratch (recompute_all)
- Updated incrementally as entries are posted

NEVER modify these tables directly. They are owned by their projections
and only writable inside projection_writes_allowed().
"""

from decimal import Decimal

from django.db import models

from accounting.models import Account, Currency
from projections.write_barrier import ProjectionOwnedModel, WriteBarrierQuerySet


class AccountBalance(ProjectionOwnedModel, models.Model):
    """
    Materialized balance per (account, currency).

    The balance follows accounting conventions:
    - For DEBIT-normal accounts (Assets, Expenses): balance = debits - credits
    - For CREDIT-normal accounts (Liabilities, Equity, Revenue): balance = credits - debits

    Attributes:
        account: The account this balance belongs to
        currency: Currency of the lines summed into this row
        balance: Current balance (positive = normal direction)
        debit_total: Sum of all debits posted
        credit_total: Sum of all credits posted
        as_of: When the row was last recomputed or updated
    """

    objects = WriteBarrierQuerySet.as_manager()

    account = models.ForeignKey(
        Account,
        on_delete=models.CASCADE,
        related_name="balances",
    )
    currency = models.ForeignKey(
        Currency,
        on_delete=models.PROTECT,
        related_name="account_balances",
    )

    balance = models.DecimalField(
        max_digits=18,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text="Current balance (positive = normal direction)",
    )
    debit_total = models.DecimalField(
        max_digits=18,
        decimal_places=2,
        default=Decimal("0.00"),
    )
    credit_total = models.DecimalField(
        max_digits=18,
        decimal_places=2,
        default=Decimal("0.00"),
    )
    as_of = models.DateTimeField()

    class Meta:
        verbose_name = "Account Balance"
        verbose_name_plural = "Account Balances"
        constraints = [
            models.UniqueConstraint(
                fields=["account", "currency"],
                name="uniq_account_balance_currency",
            ),
        ]

    def __str__(self):
        return f"{self.account.code}/{self.currency.code}: {self.balance}"

    def _recalculate_balance(self):
        """Recalculate balance based on account's normal balance."""
        self.balance = Account.signed_balance(
            self.account.account_type,
            self.debit_total,
            self.credit_total,
        )


class StudentBalance(ProjectionOwnedModel, models.Model):
    """
    Materialized student balance: sum(CREDIT) - sum(DEBIT).

    Negative means the student owes the school.
    """

    objects = WriteBarrierQuerySet.as_manager()

    student = models.OneToOneField(
        "students.Student",
        on_delete=models.CASCADE,
        related_name="current_balance",
    )
    balance = models.DecimalField(
        max_digits=18,
        decimal_places=2,
        default=Decimal("0.00"),
    )
    last_updated = models.DateTimeField()

    class Meta:
        verbose_name = "Student Balance"
        verbose_name_plural = "Student Balances"

    def __str__(self):
        return f"{self.student_id}: {self.balance}"
