"""
Audit trail service.
Append-only audit events with integrity hashing, written to the structured log.
"""
import hashlib
import json
from typing import Optional, Dict, Any

import structlog

from ..models.models import utcnow


log = structlog.get_logger("mainthub.audit")


class AuditTrail:
    def __init__(self, integrity_secret: Optional[str] = None):
        self.integrity_secret = integrity_secret

    def record(
        self,
        entity_type: str,
        entity_id: Any,
        action: str,
        actor_id: Optional[Any] = None,
        changes: Optional[Dict] = None,
        context: Optional[Dict] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Emit one audit event.

        Args:
            entity_type: Type of entity (task|task_note|task_attachment|user)
            entity_id: Entity ID
            action: Action performed (CREATE|UPDATE|DELETE|DEACTIVATE|REACTIVATE|LOGIN)
            actor_id: User ID who performed the action
            changes: Before/after diff
            context: Additional context

        Returns:
            The event as logged, or None if it could not be built. Audit
            failures never fail the operation being audited.
        """
        try:
            event = {
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action,
                "actor_id": str(actor_id) if actor_id else None,
                "timestamp_utc": utcnow().isoformat(),
                "changes": changes,
                "context": context,
            }
            # Remove None values and sort keys for consistency
            event = {k: v for k, v in event.items() if v is not None}
            if self.integrity_secret:
                canonical_json = json.dumps(event, sort_keys=True, default=str)
                hash_input = f"{canonical_json}:{self.integrity_secret}"
                event["integrity_hash"] = hashlib.sha256(hash_input.encode()).hexdigest()
            log.info("audit", **event)
            return event
        except (TypeError, ValueError):
            log.warning("audit_failed", entity_type=entity_type, action=action, exc_info=True)
            return None


def compute_diff(before: Dict, after: Dict) -> Dict:
    """
    Compute a diff between two dictionaries.

    Returns:
        Dict with before/after values for changed fields
    """
    diff = {}
    for key in set(before.keys()) | set(after.keys()):
        before_val = before.get(key)
        after_val = after.get(key)
        if before_val != after_val:
            diff[key] = {"before": before_val, "after": after_val}
    return diff
