# audit/models.py
"""
Audit records.

One row per posting, reversal, refund and deletion. Records are written
after the posting transaction commits (see audit/emitter.py) and are
immutable once saved.
"""

from django.db import models


class AuditRecord(models.Model):
    """
    Immutable audit record.
    """

    action = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Action name (e.g., 'fee_payment.posted')",
    )

    entity_type = models.CharField(
        max_length=50,
        db_index=True,
        help_text="Entity type (e.g., 'FeePayment', 'JournalEntry')",
    )

    entity_id = models.CharField(
        max_length=64,
        db_index=True,
    )

    actor_id = models.CharField(
        max_length=100,
        blank=True,
        default="",
    )

    before = models.JSONField(null=True, blank=True)
    after = models.JSONField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(fields=["entity_type", "entity_id"]),
        ]

    def __str__(self):
        return f"{self.action} [{self.entity_type}#{self.entity_id}] @{self.created_at}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Audit records are immutable and cannot be modified.")
        super().save(*args, **kwargs)
