# audit/emitter.py
"""
Audit emission.

emit_audit() schedules the write with transaction.on_commit():
- a rolled-back posting emits nothing
- an audit failure is logged and never propagates into the posting

Snapshots are normalized to JSON-safe values (Decimals, dates and UUIDs
become strings) with Django's JSON encoder.
"""

from typing import Any, Dict, Optional
import json
import logging

from django.core.serializers.json import DjangoJSONEncoder
from django.db import transaction

from audit.models import AuditRecord


logger = logging.getLogger(__name__)


def _json_safe(snapshot: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if snapshot is None:
        return None
    return json.loads(json.dumps(snapshot, cls=DjangoJSONEncoder, sort_keys=True))


def write_audit(
    action: str,
    entity_type: str,
    entity_id: Any,
    actor_id: str = "",
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None,
) -> Optional[AuditRecord]:
    """Persist one audit record now. Returns None when the write fails."""
    try:
        return AuditRecord.objects.create(
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id),
            actor_id=actor_id or "",
            before=_json_safe(before),
            after=_json_safe(after),
        )
    except Exception:
        logger.exception(f"Failed to write audit record {action} for {entity_type}#{entity_id}")
        return None


def emit_audit(
    action: str,
    entity_type: str,
    entity_id: Any,
    actor_id: str = "",
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Schedule an audit record for after the current transaction commits.

    Outside a transaction the record is written immediately. Snapshots are
    taken now; one that cannot be serialized is logged and dropped.
    """
    try:
        before, after = _json_safe(before), _json_safe(after)
    except Exception:
        logger.exception(f"Failed to snapshot audit record {action} for {entity_type}#{entity_id}")
        return
    transaction.on_commit(
        lambda: write_audit(action, entity_type, entity_id, actor_id, before, after)
    )
