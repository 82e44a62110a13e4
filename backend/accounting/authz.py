# accounting/authz.py
"""
Actor identity passed into commands.

Authentication happens outside the ledger; commands only need an opaque
actor id to stamp ``created_by`` on entries, transactions and audit records.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ActorContext:
    """
    Immutable context for the current actor.

    Attributes:
        actor_id: Opaque identifier supplied by the auth layer
        name: Display name for logs and audit records
    """
    actor_id: str
    name: str = ""

    def __str__(self):
        return self.name or self.actor_id


SYSTEM_ACTOR = ActorContext(actor_id="system", name="System")
