# billing/posting_rules.py
"""
Static posting rules.

Every business event resolves its debit/credit accounts from these tables
by account code; account names are never searched. The tables are checked
against the chart at startup (billing/checks.py).

    resolve(PostingKind.CHARGE, FeeCategory.TUITION)
        -> PostingRule(debit="1100", credit="4000")
    resolve(PostingKind.PAYMENT, FeeCategory.BOARDING, PaymentMethod.BANK_TRANSFER)
        -> PostingRule(debit="1010", credit="1110")
"""

from dataclasses import dataclass
from typing import Dict, Iterator, Optional, Tuple

from django.db import models

from accounting.exceptions import ValidationError


class FeeCategory(models.TextChoices):
    TUITION = "TUITION", "Tuition"
    BOARDING = "BOARDING", "Boarding"
    TRANSPORT = "TRANSPORT", "Transport"
    UNIFORM = "UNIFORM", "Uniform"
    ADDITIONAL = "ADDITIONAL", "Additional fee"
    OTHER = "OTHER", "Other"


class PaymentMethod(models.TextChoices):
    CASH = "CASH", "Cash"
    MOBILE_MONEY = "MOBILE_MONEY", "Mobile money"
    BANK_TRANSFER = "BANK_TRANSFER", "Bank transfer"
    CHEQUE = "CHEQUE", "Cheque"


class PostingKind(models.TextChoices):
    CHARGE = "CHARGE", "Charge"
    PAYMENT = "PAYMENT", "Payment"
    WAIVER = "WAIVER", "Waiver"
    REFUND = "REFUND", "Refund"


RECEIVABLE_ACCOUNTS: Dict[str, str] = {
    FeeCategory.TUITION: "1100",
    FeeCategory.BOARDING: "1110",
    FeeCategory.TRANSPORT: "1110",
    FeeCategory.UNIFORM: "1110",
    FeeCategory.ADDITIONAL: "1100",
    FeeCategory.OTHER: "1100",
}

REVENUE_ACCOUNTS: Dict[str, str] = {
    FeeCategory.TUITION: "4000",
    FeeCategory.BOARDING: "4100",
    FeeCategory.TRANSPORT: "4200",
    FeeCategory.UNIFORM: "4300",
    FeeCategory.ADDITIONAL: "4400",
    FeeCategory.OTHER: "4900",
}

# (expense, receivable); additional fees are waived through "other"
WAIVER_EXPENSE_ACCOUNTS: Dict[str, Tuple[str, str]] = {
    FeeCategory.TUITION: ("5600", "1100"),
    FeeCategory.BOARDING: ("5610", "1110"),
    FeeCategory.TRANSPORT: ("5620", "1110"),
    FeeCategory.UNIFORM: ("5630", "1110"),
    FeeCategory.ADDITIONAL: ("5640", "1100"),
    FeeCategory.OTHER: ("5640", "1100"),
}

SETTLEMENT_ACCOUNTS: Dict[str, str] = {
    PaymentMethod.CASH: "1000",
    PaymentMethod.MOBILE_MONEY: "1000",
    PaymentMethod.BANK_TRANSFER: "1010",
    PaymentMethod.CHEQUE: "1010",
}


@dataclass(frozen=True)
class PostingRule:
    debit: str
    credit: str


def _lookup(table: Dict[str, str], key: Optional[str], label: str) -> str:
    try:
        return table[key]
    except KeyError:
        raise ValidationError(f"Unknown {label}: {key!r}", details={label: key})


def resolve(kind: str, category: str, method: Optional[str] = None) -> PostingRule:
    """
    Resolve the debit/credit account codes for a business event.

    Raises:
        ValidationError: unknown kind, category, or (for payments/refunds) method
    """
    receivable = _lookup(RECEIVABLE_ACCOUNTS, category, "category")

    if kind == PostingKind.CHARGE:
        return PostingRule(debit=receivable, credit=REVENUE_ACCOUNTS[category])
    if kind == PostingKind.PAYMENT:
        return PostingRule(debit=_lookup(SETTLEMENT_ACCOUNTS, method, "method"), credit=receivable)
    if kind == PostingKind.REFUND:
        return PostingRule(debit=receivable, credit=_lookup(SETTLEMENT_ACCOUNTS, method, "method"))
    if kind == PostingKind.WAIVER:
        expense, waiver_receivable = WAIVER_EXPENSE_ACCOUNTS[category]
        return PostingRule(debit=expense, credit=waiver_receivable)
    raise ValidationError(f"Unknown posting kind: {kind!r}", details={"kind": kind})


def iter_rule_codes() -> Iterator[Tuple[str, str, str, str]]:
    """Yield (table, key, account code, expected account type) for every rule."""
    for category, code in RECEIVABLE_ACCOUNTS.items():
        yield "RECEIVABLE_ACCOUNTS", str(category), code, "ASSET"
    for category, code in REVENUE_ACCOUNTS.items():
        yield "REVENUE_ACCOUNTS", str(category), code, "REVENUE"
    for category, (expense, receivable) in WAIVER_EXPENSE_ACCOUNTS.items():
        yield "WAIVER_EXPENSE_ACCOUNTS", str(category), expense, "EXPENSE"
        yield "WAIVER_EXPENSE_ACCOUNTS", str(category), receivable, "ASSET"
    for method, code in SETTLEMENT_ACCOUNTS.items():
        yield "SETTLEMENT_ACCOUNTS", str(method), code, "ASSET"
