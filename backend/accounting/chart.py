# accounting/chart.py
"""
Chart of Accounts registry.

DEFAULT_CHART is the school chart the posting rules are written against.
``seed_chart_of_accounts()`` installs it (idempotently) together with the
base currency and the default posting journal.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, Optional
import logging

from django.conf import settings
from django.db import transaction

from accounting.exceptions import UnknownAccountError, ValidationError
from accounting.models import Account, Currency, PostingJournal
from accounting.policies import can_post_to_account


logger = logging.getLogger(__name__)

AccountType = Account.AccountType


@dataclass(frozen=True)
class ChartAccount:
    code: str
    name: str
    account_type: str
    parent_code: Optional[str] = None
    is_receivable: bool = False


DEFAULT_CHART: tuple[ChartAccount, ...] = (
    # Assets (1000-1999)
    ChartAccount("1000", "Cash on Hand", AccountType.ASSET),
    ChartAccount("1010", "Bank Account", AccountType.ASSET),
    ChartAccount("1100", "Accounts Receivable - Tuition", AccountType.ASSET, is_receivable=True),
    ChartAccount("1110", "Accounts Receivable - Boarding and Other", AccountType.ASSET, is_receivable=True),
    # Liabilities (2000-2999)
    ChartAccount("2000", "Accounts Payable", AccountType.LIABILITY),
    ChartAccount("2300", "Student Deposits", AccountType.LIABILITY),
    # Equity (3000-3999)
    ChartAccount("3000", "Owner's Equity", AccountType.EQUITY),
    ChartAccount("3998", "Retained Earnings", AccountType.EQUITY),
    # Revenue (4000-4999)
    ChartAccount("4000", "Tuition Revenue", AccountType.REVENUE),
    ChartAccount("4100", "Boarding Revenue", AccountType.REVENUE),
    ChartAccount("4200", "Transport Revenue", AccountType.REVENUE),
    ChartAccount("4300", "Uniform Sales Revenue", AccountType.REVENUE),
    ChartAccount("4400", "Additional Fees Revenue", AccountType.REVENUE),
    ChartAccount("4900", "Other Revenue", AccountType.REVENUE),
    # Expenses (5000-5999)
    ChartAccount("5000", "General Expenses", AccountType.EXPENSE),
    ChartAccount("5600", "Tuition Fee Waivers", AccountType.EXPENSE),
    ChartAccount("5610", "Boarding Fee Waivers", AccountType.EXPENSE),
    ChartAccount("5620", "Transport Fee Waivers", AccountType.EXPENSE),
    ChartAccount("5630", "Uniform Waivers", AccountType.EXPENSE),
    ChartAccount("5640", "Other Fee Waivers", AccountType.EXPENSE),
)


def default_chart_by_code() -> Dict[str, ChartAccount]:
    return {account.code: account for account in DEFAULT_CHART}


def get_base_currency() -> Currency:
    """Return the base currency, creating it from settings on first use."""
    currency = Currency.objects.filter(is_base=True).first()
    if currency is not None:
        return currency
    code = getattr(settings, "LEDGER_BASE_CURRENCY", "USD")
    currency, _ = Currency.objects.get_or_create(code=code, defaults={"is_base": True, "name": code})
    if not currency.is_base:
        currency.is_base = True
        currency.save(update_fields=["is_base"])
    return currency


def get_currency(code: Optional[str]) -> Currency:
    if not code:
        return get_base_currency()
    try:
        return Currency.objects.get(code=code.upper())
    except Currency.DoesNotExist:
        raise ValidationError(f"Unknown currency: {code}", details={"currency": code})


def get_default_journal() -> PostingJournal:
    name = getattr(settings, "LEDGER_DEFAULT_JOURNAL", "Fees Journal")
    journal, _ = PostingJournal.objects.get_or_create(name=name)
    return journal


def get_postable_account(code: str) -> Account:
    """Resolve an account by code, rejecting absent or inactive accounts."""
    account = Account.objects.filter(code=code).first()
    allowed, reason = can_post_to_account(account, code)
    if not allowed:
        raise UnknownAccountError(reason, details={"account_code": code})
    return account


def receivable_account_ids() -> list[int]:
    return list(Account.objects.filter(is_receivable=True).values_list("id", flat=True))


@transaction.atomic
def seed_chart_of_accounts(
    accounts: Iterable[ChartAccount] = DEFAULT_CHART,
    base_currency: Optional[str] = None,
    extra_currencies: Iterable[str] = (),
) -> dict:
    """
    Install the chart, base currency and default journal.

    Existing accounts are left as they are (their type may be frozen by
    postings); only missing accounts are created.

    Returns:
        {"created": [...codes], "existing": [...codes]}
    """
    if base_currency:
        Currency.objects.filter(is_base=True).exclude(code=base_currency).update(is_base=False)
        currency, _ = Currency.objects.get_or_create(code=base_currency, defaults={"name": base_currency})
        if not currency.is_base:
            currency.is_base = True
            currency.save(update_fields=["is_base"])
    else:
        get_base_currency()

    for code in extra_currencies:
        Currency.objects.get_or_create(code=code.upper(), defaults={"name": code.upper()})

    get_default_journal()

    created, existing = [], []
    by_code = {}
    for spec in accounts:
        account, was_created = Account.objects.get_or_create(
            code=spec.code,
            defaults={
                "name": spec.name,
                "account_type": spec.account_type,
                "is_receivable": spec.is_receivable,
            },
        )
        by_code[spec.code] = (account, spec)
        (created if was_created else existing).append(spec.code)

    for account, spec in by_code.values():
        if spec.parent_code and account.parent_id is None and spec.parent_code in by_code:
            account.parent = by_code[spec.parent_code][0]
            account.save(update_fields=["parent"])

    logger.info(f"Chart of accounts seeded: {len(created)} created, {len(existing)} existing")
    return {"created": created, "existing": existing}
