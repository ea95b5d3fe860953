"""Change-audit log adapters.

The order stores call an ``AuditLogPort`` after every successful mutation
with plain-dict snapshots of the entity before and after the write. The
snapshot taken before a mutation is a value copy built right after the
entity was loaded, so it never aliases the instance being modified.
"""

import dataclasses
import logging
import uuid
from datetime import datetime
from enum import Enum

from .models import ChangeLogModel

logger = logging.getLogger("orders.audit")


class AuditAction:
    CREATE = "Create"
    UPDATE = "Update"
    DELETE = "Delete"


def snapshot(entity) -> dict | None:
    """Return a JSON-serialisable copy of a domain dataclass, or None."""
    if entity is None:
        return None
    return _plain(dataclasses.asdict(entity))


def _plain(value):
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    return value


class LoggingAuditLog:
    """Writes audit entries to the ``orders.audit`` logger."""

    def record(self, action, entity_type, entity_id, before, after):
        logger.info(
            "entity changed",
            extra={
                "action": action,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "before": before,
                "after": after,
            },
        )


class DatabaseAuditLog(LoggingAuditLog):
    """Stores audit entries in the ``change_log`` table.

    The row is written through the caller's connection, so it commits or
    rolls back together with the mutation it describes.
    """

    def record(self, action, entity_type, entity_id, before, after):
        ChangeLogModel.objects.create(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            before=before,
            after=after,
        )
        super().record(action, entity_type, entity_id, before, after)
