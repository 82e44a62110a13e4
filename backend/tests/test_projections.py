# tests/test_projections.py
"""
Tests for the balance projections.

Tests cover:
- Incremental account balance updates (signed by normal side)
- recompute_all() idempotency and agreement with incremental mode
- verify() drift detection
- Trial balance
- Student balance maintenance and recalculation
"""

import pytest
from decimal import Decimal

from accounting import journal_store
from accounting.journal_store import LineSpec
from accounting.models import Account, Currency
from projections.account_balance import AccountBalanceProjection, account_balance_projection
from projections.base import projection_registry
from projections.models import AccountBalance, StudentBalance
from projections.student_balance import student_balance_projection
from students import subledger
from students.models import StudentTransaction


def _post(lines):
    entry = journal_store.post(lines=lines)
    account_balance_projection.apply_entry(entry)
    return entry


def _snapshot_balances():
    return sorted(
        AccountBalance.objects.values_list("account__code", "currency__code", "debit_total", "credit_total", "balance")
    )


@pytest.fixture
def posted_activity(ledger):
    """A small mixed history: charges, a payment, a waiver and a reversal."""
    _post([
        LineSpec(account_code="1100", debit=Decimal("500.00")),
        LineSpec(account_code="4000", credit=Decimal("500.00")),
    ])
    _post([
        LineSpec(account_code="1000", debit=Decimal("200.00")),
        LineSpec(account_code="1100", credit=Decimal("200.00")),
    ])
    _post([
        LineSpec(account_code="5600", debit=Decimal("50.00")),
        LineSpec(account_code="1100", credit=Decimal("50.00")),
    ])
    charge = _post([
        LineSpec(account_code="1110", debit=Decimal("80.00")),
        LineSpec(account_code="4200", credit=Decimal("80.00")),
    ])
    reversal = journal_store.post_compensating(charge)
    account_balance_projection.apply_entry(reversal)


# =============================================================================
# Account Balance Projection
# =============================================================================

@pytest.mark.django_db
class TestAccountBalanceProjection:

    def test_registered(self):
        assert projection_registry.get("account_balance") is account_balance_projection
        assert "student_balance" in projection_registry.names()

    def test_posted_entry_updates_balances(self, ledger, account_balance):
        _post([
            LineSpec(account_code="1100", debit=Decimal("1000.00")),
            LineSpec(account_code="4000", credit=Decimal("1000.00")),
        ])

        receivable = AccountBalance.objects.get(account__code="1100")
        assert receivable.debit_total == Decimal("1000.00")
        assert receivable.credit_total == Decimal("0.00")
        assert receivable.balance == Decimal("1000.00")  # Debit normal

        revenue = AccountBalance.objects.get(account__code="4000")
        assert revenue.credit_total == Decimal("1000.00")
        assert revenue.balance == Decimal("1000.00")  # Credit normal

    def test_balances_kept_per_currency(self, ledger):
        _post([
            LineSpec(account_code="1010", debit=Decimal("100.00"), currency="USD"),
            LineSpec(account_code="4900", credit=Decimal("100.00"), currency="USD"),
            LineSpec(account_code="1010", debit=Decimal("70.00"), currency="EUR"),
            LineSpec(account_code="4900", credit=Decimal("70.00"), currency="EUR"),
        ])

        rows = dict(
            AccountBalance.objects.filter(account__code="1010").values_list("currency__code", "balance")
        )
        assert rows == {"USD": Decimal("100.00"), "EUR": Decimal("70.00")}

    def test_post_then_reverse_restores_balances(self, ledger, account_balance):
        entry = _post([
            LineSpec(account_code="1100", debit=Decimal("300.00")),
            LineSpec(account_code="4100", credit=Decimal("300.00")),
        ])
        reversal = journal_store.post_compensating(entry)
        account_balance_projection.apply_entry(reversal)

        assert account_balance("1100") == Decimal("0.00")
        assert account_balance("4100") == Decimal("0.00")
        row = AccountBalance.objects.get(account__code="1100")
        assert row.debit_total == Decimal("300.00")
        assert row.credit_total == Decimal("300.00")

    def test_delete_deltas_restore_balances(self, ledger, account_balance):
        entry = _post([
            LineSpec(account_code="1100", debit=Decimal("300.00")),
            LineSpec(account_code="4000", credit=Decimal("300.00")),
        ])

        account_balance_projection.apply_deltas(journal_store.delete(entry.pk))

        assert account_balance("1100") == Decimal("0.00")
        assert account_balance("4000") == Decimal("0.00")
        assert account_balance_projection.verify()["mismatches"] == []

    def test_apply_deltas_signs_by_normal_side(self, ledger):
        cash = Account.objects.get(code="1000")
        revenue = Account.objects.get(code="4000")
        usd = Currency.objects.get(code="USD")
        # Both rows end up against their normal side.
        deltas = [
            journal_store.BalanceDelta(cash.pk, usd.pk, Decimal("10.00"), Decimal("35.00"), Decimal("-25.00")),
            journal_store.BalanceDelta(revenue.pk, usd.pk, Decimal("40.00"), Decimal("15.00"), Decimal("-25.00")),
        ]

        account_balance_projection.apply_deltas(deltas)
        account_balance_projection.apply_deltas(deltas)

        cash_row = AccountBalance.objects.get(account=cash)
        assert (cash_row.debit_total, cash_row.credit_total) == (Decimal("20.00"), Decimal("70.00"))
        assert cash_row.balance == Decimal("-50.00")  # Debit normal
        revenue_row = AccountBalance.objects.get(account=revenue)
        assert (revenue_row.debit_total, revenue_row.credit_total) == (Decimal("80.00"), Decimal("30.00"))
        assert revenue_row.balance == Decimal("-50.00")  # Credit normal

    def test_incremental_apply_agrees_with_recompute(self, ledger):
        _post([
            LineSpec(account_code="1000", debit=Decimal("250.00")),
            LineSpec(account_code="1100", credit=Decimal("250.00")),
        ])
        _post([
            LineSpec(account_code="1100", debit=Decimal("400.00")),
            LineSpec(account_code="4000", credit=Decimal("400.00")),
        ])
        _post([
            LineSpec(account_code="4000", debit=Decimal("30.00")),
            LineSpec(account_code="1000", credit=Decimal("30.00")),
        ])
        incremental = _snapshot_balances()

        account_balance_projection.recompute_all()

        assert _snapshot_balances() == incremental
        balances = {code: bal for code, _, _, _, bal in incremental}
        assert balances == {
            "1000": Decimal("220.00"),
            "1100": Decimal("150.00"),
            "4000": Decimal("370.00"),
        }

    def test_recompute_all_is_idempotent(self, posted_activity):
        account_balance_projection.recompute_all()
        first = _snapshot_balances()
        account_balance_projection.recompute_all()

        assert _snapshot_balances() == first

    def test_incremental_matches_full_recompute(self, posted_activity):
        incremental = _snapshot_balances()

        account_balance_projection.recompute_all()

        assert _snapshot_balances() == incremental
        assert account_balance_projection.verify()["mismatches"] == []

    def test_verify_detects_drift(self, posted_activity):
        AccountBalance.objects.filter(account__code="4000").update(balance=Decimal("999.00"))

        report = account_balance_projection.verify()

        assert len(report["mismatches"]) == 1
        mismatch = report["mismatches"][0]
        assert mismatch["account_code"] == "4000"
        assert mismatch["expected_balance"] == "500.00"
        assert mismatch["projected_balance"] == "999.00"

    def test_verify_detects_missing_row(self, posted_activity):
        AccountBalance.objects.filter(account__code="1000").delete()

        report = account_balance_projection.verify()

        assert [m["account_code"] for m in report["mismatches"]] == ["1000"]
        assert report["mismatches"][0]["missing_projection"] is True

    def test_recompute_repairs_drift(self, posted_activity):
        AccountBalance.objects.filter(account__code="4000").update(balance=Decimal("999.00"))

        AccountBalanceProjection().recompute_all()

        assert account_balance_projection.verify()["mismatches"] == []
        assert account_balance_projection.get_balance(Account.objects.get(code="4000")) == Decimal("500.00")

    def test_trial_balance_is_balanced(self, posted_activity):
        trial = account_balance_projection.get_trial_balance()

        usd = trial["currencies"]["USD"]
        assert usd["is_balanced"] is True
        assert usd["total_debit"] == usd["total_credit"]
        codes = [row["code"] for row in usd["accounts"]]
        assert codes == sorted(codes)


# =============================================================================
# Student Balance Projection
# =============================================================================

@pytest.mark.django_db
class TestStudentBalanceProjection:

    def _record(self, student, txn_type, amount):
        entry = journal_store.post(lines=[
            LineSpec(account_code="1100", debit=Decimal(amount), student_id=student.pk),
            LineSpec(account_code="4000", credit=Decimal(amount)),
        ])
        return subledger.record(student, txn_type, Decimal(amount), "test", journal_entry=entry)

    def test_debit_and_credit_move_balance(self, ledger, student):
        self._record(student, StudentTransaction.Type.DEBIT, "500.00")
        self._record(student, StudentTransaction.Type.CREDIT, "200.00")

        assert student_balance_projection.get_balance(student) == Decimal("-300.00")

    def test_recalculate_overwrites_drift(self, ledger, student):
        self._record(student, StudentTransaction.Type.DEBIT, "500.00")
        StudentBalance.objects.filter(student=student).update(balance=Decimal("12.34"))

        row = student_balance_projection.recalculate(student)

        assert row.balance == Decimal("-500.00")

    def test_recompute_all_matches_incremental(self, ledger, student, second_student):
        self._record(student, StudentTransaction.Type.DEBIT, "500.00")
        self._record(second_student, StudentTransaction.Type.DEBIT, "80.00")
        self._record(second_student, StudentTransaction.Type.CREDIT, "100.00")
        before = sorted(StudentBalance.objects.values_list("student_id", "balance"))

        written = student_balance_projection.recompute_all()

        assert written == 2
        assert sorted(StudentBalance.objects.values_list("student_id", "balance")) == before

    def test_verify_detects_drift(self, ledger, student):
        self._record(student, StudentTransaction.Type.DEBIT, "500.00")
        StudentBalance.objects.filter(student=student).update(balance=Decimal("0.00"))

        report = student_balance_projection.verify()

        assert report["mismatches"] == [{
            "student_id": student.pk,
            "missing_projection": False,
            "projected_balance": "0.00",
            "expected_balance": "-500.00",
        }]

    def test_student_without_transactions_has_zero_balance(self, student):
        assert student_balance_projection.get_balance(student) == Decimal("0.00")
