# projections/account_balance.py
"""
Account Balance Projection.

This is the core projection that maintains account balances per
(account, currency) from the journal store.

Incremental mode:
- apply_entry(entry): called once per posted entry (including
  compensating entries), inside the posting transaction
- apply_deltas(deltas): applies the reversals returned by
  journal_store.delete()

Full recompute:
- recompute_all(): deletes every AccountBalance row and re-aggregates all
  journal lines grouped by (account, type, currency)

verify() compares the stored rows with that aggregation, which is the
canonical definition of "what is the balance?".
"""

from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Tuple
import logging

from django.db.models import Sum
from django.utils import timezone

from accounting.journal_store import BalanceDelta, balance_deltas_for, to_money
from accounting.models import Account, JournalEntry, JournalLine
from projections.base import BaseProjection, drift_tolerance, projection_registry
from projections.models import AccountBalance
from projections.write_barrier import projection_writes_allowed


logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


class AccountBalanceProjection(BaseProjection):
    """
    Maintains materialized account balances from journal lines.

    Flow:
    1. Command posts a journal entry through the journal store
    2. Command calls apply_entry() in the same transaction
    3. AccountBalance rows are locked and updated in (account, currency) order

    Rows are locked in a fixed order so two postings touching the same
    accounts cannot deadlock on each other.
    """

    source_table = JournalLine._meta.db_table

    @property
    def name(self) -> str:
        return "account_balance"

    # =========================================================================
    # Incremental mode
    # =========================================================================

    def apply_entry(self, entry: JournalEntry) -> List[BalanceDelta]:
        """Apply every line of a freshly posted entry."""
        deltas = balance_deltas_for(entry)
        self.apply_deltas(deltas)
        return deltas

    def apply_deltas(self, deltas: Iterable[BalanceDelta]) -> None:
        """Add each delta to its AccountBalance row, creating rows as needed."""
        ordered = sorted(deltas, key=lambda d: (d.account_id, d.currency_id))
        if not ordered:
            return

        accounts = Account.objects.in_bulk({d.account_id for d in ordered})
        now = timezone.now()

        with projection_writes_allowed():
            for delta in ordered:
                balance = self._locked_row(delta.account_id, delta.currency_id, now)
                balance.account = accounts[delta.account_id]
                balance.debit_total += delta.debit
                balance.credit_total += delta.credit
                balance._recalculate_balance()
                balance.as_of = now
                balance.save(update_fields=["debit_total", "credit_total", "balance", "as_of"])

                logger.debug(
                    f"Updated balance for account {delta.account_id}/{delta.currency_id}: "
                    f"debit={delta.debit}, credit={delta.credit}, new_balance={balance.balance}"
                )

    def _locked_row(self, account_id: int, currency_id: int, now) -> AccountBalance:
        AccountBalance.objects.get_or_create(
            account_id=account_id,
            currency_id=currency_id,
            defaults={"as_of": now},
        )
        return AccountBalance.objects.select_for_update().get(
            account_id=account_id,
            currency_id=currency_id,
        )

    # =========================================================================
    # Full recompute
    # =========================================================================

    def _aggregate(self) -> Dict[Tuple[int, int], Dict[str, Any]]:
        rows = (
            JournalLine.objects
            .values("account_id", "account__account_type", "currency_id")
            .annotate(debit=Sum("debit"), credit=Sum("credit"))
            .order_by("account_id", "currency_id")
        )
        expected = {}
        for row in rows:
            debit = to_money(row["debit"])
            credit = to_money(row["credit"])
            expected[(row["account_id"], row["currency_id"])] = {
                "debit": debit,
                "credit": credit,
                "balance": Account.signed_balance(row["account__account_type"], debit, credit),
            }
        return expected

    def _clear_projected_data(self) -> int:
        deleted, _ = AccountBalance.objects.all().delete()
        return deleted

    def _rebuild_rows(self) -> int:
        now = timezone.now()
        rows = [
            AccountBalance(
                account_id=account_id,
                currency_id=currency_id,
                debit_total=totals["debit"],
                credit_total=totals["credit"],
                balance=totals["balance"],
                as_of=now,
            )
            for (account_id, currency_id), totals in self._aggregate().items()
        ]
        AccountBalance.objects.bulk_create(rows)
        return len(rows)

    # =========================================================================
    # Verification
    # =========================================================================

    def verify(self) -> Dict[str, Any]:
        """
        Compare projected balances with a fresh aggregation of journal lines.

        Missing rows count as zero; rows without any lines must be zero.
        """
        expected = self._aggregate()
        tolerance = drift_tolerance()

        stored = {
            (row.account_id, row.currency_id): row
            for row in AccountBalance.objects.select_related("account", "currency")
        }

        mismatches = []
        for key in sorted(set(expected) | set(stored)):
            exp = expected.get(key, {"debit": ZERO, "credit": ZERO, "balance": ZERO})
            row = stored.get(key)
            projected = {
                "debit": row.debit_total if row else ZERO,
                "credit": row.credit_total if row else ZERO,
                "balance": row.balance if row else ZERO,
            }
            if any(abs(projected[k] - exp[k]) >= tolerance for k in ("debit", "credit", "balance")):
                mismatches.append({
                    "account_id": key[0],
                    "account_code": row.account.code if row else Account.objects.get(pk=key[0]).code,
                    "currency_id": key[1],
                    "missing_projection": row is None,
                    "projected_balance": str(projected["balance"]),
                    "expected_balance": str(exp["balance"]),
                    "projected_debit": str(projected["debit"]),
                    "expected_debit": str(exp["debit"]),
                    "projected_credit": str(projected["credit"]),
                    "expected_credit": str(exp["credit"]),
                })

        return self._report(len(set(expected) | set(stored)), mismatches)

    # =========================================================================
    # Reads
    # =========================================================================

    def get_balance(self, account: Account, currency=None) -> Decimal:
        """Current balance of an account (base currency unless given)."""
        from accounting.chart import get_base_currency

        currency = currency or get_base_currency()
        row = AccountBalance.objects.filter(account=account, currency=currency).first()
        return row.balance if row else ZERO

    def get_trial_balance(self) -> Dict[str, Any]:
        """
        Generate a trial balance per currency from projected balances.

        Returns:
            {
                "as_of_date": "2026-01-26",
                "currencies": {
                    "USD": {
                        "accounts": [{"code": "1000", "debit": "...", "credit": "...", ...}],
                        "total_debit": "...",
                        "total_credit": "...",
                        "is_balanced": True,
                    },
                },
            }
        """
        balances = (
            AccountBalance.objects
            .select_related("account", "currency")
            .order_by("currency__code", "account__code")
        )

        currencies: Dict[str, Dict[str, Any]] = {}
        for bal in balances:
            account = bal.account
            section = currencies.setdefault(bal.currency.code, {
                "accounts": [],
                "total_debit": ZERO,
                "total_credit": ZERO,
            })

            # Show the balance on its natural side; a negative balance flips it
            if account.normal_balance == Account.NormalBalance.DEBIT:
                debit, credit = (bal.balance, ZERO) if bal.balance >= 0 else (ZERO, -bal.balance)
            else:
                debit, credit = (ZERO, bal.balance) if bal.balance >= 0 else (-bal.balance, ZERO)

            section["accounts"].append({
                "code": account.code,
                "name": account.name,
                "account_type": account.account_type,
                "normal_balance": account.normal_balance,
                "debit": str(debit),
                "credit": str(credit),
                "balance": str(bal.balance),
            })
            section["total_debit"] += debit
            section["total_credit"] += credit

        for section in currencies.values():
            section["is_balanced"] = section["total_debit"] == section["total_credit"]
            section["total_debit"] = str(section["total_debit"])
            section["total_credit"] = str(section["total_credit"])

        return {
            "as_of_date": date.today().isoformat(),
            "currencies": currencies,
        }


account_balance_projection = AccountBalanceProjection()

# Register the projection
projection_registry.register(account_balance_projection)
