# projections/base.py
"""
Base classes for balance projections.

A projection owns one materialized table derived from the ledger.
Projections:
- Apply changes incrementally inside the posting transaction
- Can be rebuilt from scratch from the source tables (recompute_all)
- Can compare their stored state with a fresh recompute (verify)

Both modes must agree: recompute_all() is the definition of correctness,
incremental updates are an optimisation of it.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Dict, List, Optional
import logging

from django.conf import settings
from django.db import connection, transaction

from projections.write_barrier import projection_writes_allowed


logger = logging.getLogger(__name__)


def drift_tolerance() -> Decimal:
    return Decimal(str(getattr(settings, "LEDGER_BALANCE_TOLERANCE", "0.01")))


def lock_source_table(table: str) -> None:
    """
    Block concurrent writers to ``table`` until the current transaction ends.

    PostgreSQL: explicit SHARE lock (readers proceed, posts wait).
    SQLite: the engine serializes writers already.
    Other vendors: not enforced; a repair must not overlap with posting.
    """
    if not connection.in_atomic_block:
        raise RuntimeError("lock_source_table() must run inside transaction.atomic().")
    vendor = connection.vendor
    if vendor == "postgresql":
        with connection.cursor() as cursor:
            cursor.execute(f'LOCK TABLE "{table}" IN SHARE MODE')
    elif vendor != "sqlite":
        logger.warning(
            f"No table lock available for {vendor}; recompute assumes no concurrent posts to {table}"
        )


class BaseProjection(ABC):
    """
    Base class for all balance projections.

    Subclasses must implement:
    - name: Unique identifier for this projection
    - _clear_projected_data(): Remove every materialized row
    - _rebuild_rows(): Recreate rows from the source tables
    - verify(): Compare stored rows against a fresh aggregation
    """

    source_table: Optional[str] = None

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique name for this projection."""
        pass

    @abstractmethod
    def _clear_projected_data(self) -> int:
        """Delete all projected rows. Returns the number of rows removed."""
        pass

    @abstractmethod
    def _rebuild_rows(self) -> int:
        """Aggregate the source tables into fresh rows. Returns rows written."""
        pass

    @abstractmethod
    def verify(self) -> Dict[str, Any]:
        """
        Compare stored rows with a fresh aggregation. Never writes.

        Returns:
            {"projection": name, "checked": n, "verified": n, "mismatches": [...]}
        """
        pass

    def recompute_all(self) -> int:
        """
        Rebuild this projection from scratch.

        Idempotent: running it twice yields identical rows.

        Returns:
            Number of rows written
        """
        with transaction.atomic():
            if self.source_table:
                lock_source_table(self.source_table)
            with projection_writes_allowed():
                cleared = self._clear_projected_data()
                written = self._rebuild_rows()

        logger.info(f"Projection {self.name} recomputed: cleared {cleared}, wrote {written} rows")
        return written

    def _report(self, checked: int, mismatches: List[Dict[str, Any]]) -> Dict[str, Any]:
        return {
            "projection": self.name,
            "checked": checked,
            "verified": checked - len(mismatches),
            "mismatches": mismatches,
        }


class ProjectionRegistry:
    """
    Registry of all projections.

    Usage:
        projection_registry.register(AccountBalanceProjection())

        for projection in projection_registry.all():
            projection.recompute_all()
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._projections = {}
        return cls._instance

    def register(self, projection: BaseProjection) -> None:
        """Register a projection."""
        self._projections[projection.name] = projection

    def get(self, name: str) -> Optional[BaseProjection]:
        """Get a projection by name."""
        return self._projections.get(name)

    def all(self) -> List[BaseProjection]:
        """Get all registered projections."""
        return list(self._projections.values())

    def names(self) -> List[str]:
        """Get all projection names."""
        return list(self._projections.keys())


# Global registry instance
projection_registry = ProjectionRegistry()
