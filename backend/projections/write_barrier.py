# projections/write_barrier.py
"""
Thread-local write contexts for ledger and balance tables.

The journal store, student sub-ledger and sequences are command-owned and
only save inside ``command_writes_allowed()``. Materialized balances are
projection-owned and only save inside ``projection_writes_allowed()``.
Seeding and data migrations use the bootstrap/migration contexts.
"""

from contextlib import contextmanager
import threading

from django.conf import settings
from django.db import models


COMMAND = "command"
PROJECTION = "projection"
BOOTSTRAP = "bootstrap"
MIGRATION = "migration"

_state = threading.local()


def _context_stack() -> list[str]:
    stack = getattr(_state, "write_context_stack", None)
    if stack is None:
        stack = []
        _state.write_context_stack = stack
    return stack


def current_write_context() -> str | None:
    stack = _context_stack()
    return stack[-1] if stack else None


def write_context_allowed(allowed_contexts: set[str]) -> bool:
    ctx = current_write_context()
    if ctx is None:
        return False
    return ctx in allowed_contexts


def assert_write_allowed(model_name: str, allowed_contexts: set[str], hint: str) -> None:
    """Raise RuntimeError unless the current context may write ``model_name``."""
    if write_context_allowed(allowed_contexts) or getattr(settings, "TESTING", False):
        return
    raise RuntimeError(
        f"{model_name} writes are only allowed within {hint}. "
        f"Current context: {current_write_context() or 'none'}."
    )


@contextmanager
def _push_write_context(name: str):
    stack = _context_stack()
    stack.append(name)
    try:
        yield
    finally:
        stack.pop()


@contextmanager
def command_writes_allowed():
    with _push_write_context(COMMAND):
        yield


@contextmanager
def projection_writes_allowed():
    with _push_write_context(PROJECTION):
        yield


@contextmanager
def migration_writes_allowed():
    with _push_write_context(MIGRATION):
        yield


@contextmanager
def bootstrap_writes_allowed():
    with _push_write_context(BOOTSTRAP):
        yield


class CommandOwnedModel:
    """
    Mixin for write models that only the command layer may change.

    Append-only tables (journal, sub-ledger) and allocation counters.
    """

    write_contexts = {COMMAND, MIGRATION, BOOTSTRAP}

    def save(self, *args, **kwargs):
        assert_write_allowed(self.__class__.__name__, self.write_contexts, "command_writes_allowed()")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        assert_write_allowed(self.__class__.__name__, self.write_contexts, "command_writes_allowed()")
        return super().delete(*args, **kwargs)


class ProjectionOwnedModel:
    """Mixin for derived read models that only projections may change."""

    write_contexts = {PROJECTION}

    def save(self, *args, **kwargs):
        assert_write_allowed(self.__class__.__name__, self.write_contexts, "projection_writes_allowed()")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        assert_write_allowed(self.__class__.__name__, self.write_contexts, "projection_writes_allowed()")
        return super().delete(*args, **kwargs)


def _hint_for(model) -> str:
    if PROJECTION in model.write_contexts:
        return "projection_writes_allowed()"
    return "command_writes_allowed()"


class WriteBarrierQuerySet(models.QuerySet):
    """
    QuerySet that applies the owning model's write barrier to bulk operations.

    ``save()``/``delete()`` on instances are covered by the model mixins;
    bulk_create, update and delete bypass them, so they are checked here.
    """

    def _assert_writable(self):
        assert_write_allowed(self.model.__name__, self.model.write_contexts, _hint_for(self.model))

    def bulk_create(self, objs, *args, **kwargs):
        self._assert_writable()
        return super().bulk_create(objs, *args, **kwargs)

    def update(self, **kwargs):
        self._assert_writable()
        return super().update(**kwargs)

    def delete(self):
        self._assert_writable()
        return super().delete()

    delete.alters_data = True
    delete.queryset_only = True
