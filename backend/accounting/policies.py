# accounting/policies.py
"""
Business policy functions for ledger operations.

Policies answer: "Is this action allowed given the current state?"
They do NOT perform the action; that's the command's job.

Usage:
    allowed, reason = can_reverse_entry(entry)
    if not allowed:
        raise PreconditionFailedError(reason)

Design Principles:
1. Policies are pure functions (no side effects)
2. Policies return (bool, str) tuples for clear error messages
3. Commands compose policies as needed
"""

from datetime import datetime, timedelta
from typing import Optional

from django.conf import settings
from django.utils import timezone


def grace_period_days() -> int:
    return int(getattr(settings, "LEDGER_GRACE_PERIOD_DAYS", 30))


def within_grace_period(
    occurred_at: datetime,
    now: Optional[datetime] = None,
    grace_days: Optional[int] = None,
) -> tuple[bool, str]:
    """
    Check whether an action on a posting made at ``occurred_at`` is still allowed.

    The boundary is inclusive: exactly ``grace_days`` days after posting is
    still inside the grace period.
    """
    now = now or timezone.now()
    grace_days = grace_period_days() if grace_days is None else grace_days
    elapsed = now - occurred_at
    if elapsed > timedelta(days=grace_days):
        return False, (
            f"Grace period of {grace_days} days has expired "
            f"({elapsed.days} days since posting)."
        )
    return True, ""


def can_post_to_account(account, code: str = "") -> tuple[bool, str]:
    if account is None:
        return False, f"Account {code} not found."
    if not account.is_active:
        return False, f"Account {account.code} is inactive."
    return True, ""


def can_reverse_entry(entry) -> tuple[bool, str]:
    if entry.is_reversal:
        return False, f"{entry.entry_number} is itself a reversal."
    if entry.is_reversed:
        return False, f"{entry.entry_number} was already reversed."
    return True, ""


def can_delete_entry(entry) -> tuple[bool, str]:
    if entry.is_reversed:
        return False, f"{entry.entry_number} has a compensating entry."
    return True, ""

