# tests/test_posting_rules.py
"""
Tests for the static posting rules and their system checks.
"""

import pytest

from accounting.exceptions import ValidationError
from accounting.models import Account
from billing import posting_rules
from billing.checks import check_posting_rules_against_chart, check_posting_rules_against_database
from billing.posting_rules import FeeCategory, PaymentMethod, PostingKind, PostingRule, resolve


class TestResolve:

    @pytest.mark.parametrize("category,debit,credit", [
        (FeeCategory.TUITION, "1100", "4000"),
        (FeeCategory.BOARDING, "1110", "4100"),
        (FeeCategory.TRANSPORT, "1110", "4200"),
        (FeeCategory.UNIFORM, "1110", "4300"),
        (FeeCategory.ADDITIONAL, "1100", "4400"),
        (FeeCategory.OTHER, "1100", "4900"),
    ])
    def test_charges(self, category, debit, credit):
        assert resolve(PostingKind.CHARGE, category) == PostingRule(debit=debit, credit=credit)

    @pytest.mark.parametrize("method,settlement", [
        (PaymentMethod.CASH, "1000"),
        (PaymentMethod.MOBILE_MONEY, "1000"),
        (PaymentMethod.BANK_TRANSFER, "1010"),
        (PaymentMethod.CHEQUE, "1010"),
    ])
    def test_payments_and_refunds_mirror(self, method, settlement):
        payment = resolve(PostingKind.PAYMENT, FeeCategory.TUITION, method)
        refund = resolve(PostingKind.REFUND, FeeCategory.TUITION, method)

        assert payment == PostingRule(debit=settlement, credit="1100")
        assert refund == PostingRule(debit="1100", credit=settlement)

    def test_waiver(self):
        assert resolve(PostingKind.WAIVER, FeeCategory.TRANSPORT) == PostingRule(debit="5620", credit="1110")

    def test_unknown_category(self):
        with pytest.raises(ValidationError) as exc_info:
            resolve(PostingKind.CHARGE, "LIBRARY")
        assert exc_info.value.details == {"category": "LIBRARY"}

    def test_payment_requires_known_method(self):
        with pytest.raises(ValidationError, match="Unknown method"):
            resolve(PostingKind.PAYMENT, FeeCategory.TUITION, "BARTER")

    def test_unknown_kind(self):
        with pytest.raises(ValidationError, match="Unknown posting kind"):
            resolve("DONATION", FeeCategory.TUITION)


class TestChartCheck:

    def test_default_rules_match_chart(self):
        assert check_posting_rules_against_chart() == []

    def test_code_missing_from_chart(self, monkeypatch):
        monkeypatch.setitem(posting_rules.REVENUE_ACCOUNTS, FeeCategory.OTHER, "4999")

        errors = check_posting_rules_against_chart()

        assert [error.id for error in errors] == ["billing.E001"]
        assert "4999" in errors[0].msg

    def test_type_mismatch(self, monkeypatch):
        monkeypatch.setitem(posting_rules.SETTLEMENT_ACCOUNTS, PaymentMethod.CHEQUE, "4900")

        errors = check_posting_rules_against_chart()

        assert [error.id for error in errors] == ["billing.E002"]


@pytest.mark.django_db
class TestDatabaseCheck:

    def test_skipped_without_databases(self):
        assert check_posting_rules_against_database(databases=None) == []

    def test_seeded_chart_passes(self, ledger):
        assert check_posting_rules_against_database(databases=["default"]) == []

    def test_missing_accounts_reported(self, db):
        errors = check_posting_rules_against_database(databases=["default"])

        assert errors
        assert {error.id for error in errors} == {"billing.E003"}

    def test_inactive_account_reported(self, ledger):
        Account.objects.filter(code="4300").update(is_active=False)

        errors = check_posting_rules_against_database(databases=["default"])

        assert [error.id for error in errors] == ["billing.E004"]
