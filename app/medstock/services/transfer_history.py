from __future__ import annotations

from datetime import datetime
from enum import Enum

from app.medstock.core.context import Actor
from app.medstock.db.models import Transfer, TransferHistory, TransferItem

TRANSFER_CREATED = "transfer.created"
TRANSFER_CANCELLED = "transfer.cancelled"
ITEM_APPROVED = "item.approved"
ITEM_PREPARED = "item.prepared"
ITEM_DELIVERED = "item.delivered"
ITEM_CANCELLED = "item.cancelled"


def _status_value(status: Enum | str | None) -> str | None:
    if status is None:
        return None
    return status.value if isinstance(status, Enum) else str(status)


class TransferHistoryRecorder:
    """Appends history rows to a transfer inside the caller's unit of work."""

    def record(
        self,
        transfer: Transfer,
        *,
        action: str,
        to_status,
        actor: Actor,
        from_status=None,
        item: TransferItem | None = None,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> TransferHistory:
        entry = TransferHistory(
            organization_id=transfer.organization_id,
            item_id=item.id if item is not None else None,
            sequence=len(transfer.history) + 1,
            action=action,
            from_status=_status_value(from_status),
            to_status=_status_value(to_status),
            actor_user_id=actor.user_id,
            actor_snapshot=actor.snapshot(),
            notes=notes,
            created_at=now or datetime.utcnow(),
        )
        transfer.history.append(entry)
        return entry
