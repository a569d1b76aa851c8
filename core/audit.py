"""
Universal audit trail for all entity changes.

Every mutation to every entity is logged here. The audit log is:
- Append-only (entries never modified or deleted)
- Actor-attributed (who made the change)
- Detailed (captures old and new values)

Entries are written through the store, so a change made inside
store.transaction() is audited in the same transaction and rolls back
with it.
"""

from enum import Enum
from uuid import UUID, uuid4
from typing import Any

from utils.timezone import now_utc


class AuditAction(Enum):
    """Type of change made to an entity."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


def compute_changes(
    old: dict[str, Any],
    new: dict[str, Any],
    exclude_fields: set[str] | None = None
) -> dict[str, dict[str, Any]]:
    """
    Compute changes between two entity states.

    Args:
        old: Previous state of entity
        new: New state of entity
        exclude_fields: Fields to ignore (defaults to {"updated_at"})

    Returns:
        Dict of {field: {"old": old_val, "new": new_val}} for changed fields.
        Empty dict if no changes.
    """
    exclude = exclude_fields or {"updated_at"}
    changes = {}

    all_keys = set(old.keys()) | set(new.keys())
    for key in all_keys:
        if key in exclude:
            continue

        old_val = old.get(key)
        new_val = new.get(key)

        if old_val != new_val:
            changes[key] = {"old": old_val, "new": new_val}

    return changes


class AuditLogger:
    """
    Universal audit trail for all entity changes.

    IMPORTANT: Always use model_dump(mode="json") when passing Pydantic models
    to ensure UUIDs and datetimes are serialized to JSON-compatible strings.

    Usage:
        audit = AuditLogger(store)

        audit.log_change(
            entity_type="service_request",
            entity_id=request.id,
            action=AuditAction.CREATE,
            changes={"created": data.model_dump(mode="json", exclude_none=True)},
            actor_id=actor.id,
        )

        changes = compute_changes(
            old.model_dump(mode="json"),
            new.model_dump(mode="json")
        )
        audit.log_change(
            entity_type="service_request",
            entity_id=request.id,
            action=AuditAction.UPDATE,
            changes=changes,
            actor_id=actor.id,
        )

        history = audit.get_entity_history("service_request", request.id)
    """

    def __init__(self, store):
        self.store = store

    def log_change(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        changes: dict[str, Any],
        actor_id: UUID | None = None
    ) -> None:
        """
        Log an entity change.

        Args:
            entity_type: Type of entity ("service_request", "ledger_item", etc.)
            entity_id: ID of the entity
            action: The action performed (CREATE, UPDATE, DELETE)
            changes: The changes made (format depends on action)
            actor_id: Actor who made the change (None for system changes)

        Changes format by action:
        - CREATE: {"created": {full entity data}}
        - UPDATE: {"field": {"old": old_val, "new": new_val}, ...}
        - DELETE: {"deleted": {full entity data at deletion}}
        """
        self.store.insert_audit_entry(
            entry_id=uuid4(),
            actor_id=actor_id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action.value,
            changes=changes,
            created_at=now_utc(),
        )

    def get_entity_history(
        self,
        entity_type: str,
        entity_id: UUID
    ) -> list[dict[str, Any]]:
        """
        Get full audit history for an entity.

        Args:
            entity_type: Type of entity ("service_request", "invoice", etc.)
            entity_id: ID of the entity

        Returns:
            List of audit entries, newest first.
        """
        return self.store.list_audit_entries(entity_type, entity_id)
