import logging
from dataclasses import dataclass
from datetime import datetime

from app.medstock.db.models import AuditEvent
from app.medstock.repos.audit import AuditRepository

logger = logging.getLogger(__name__)


@dataclass
class AuditEventPayload:
    organization_id: str
    user_id: str | None
    department_id: str | None
    trace_id: str | None
    actor: str
    action: str
    entity_type: str | None
    entity_id: str | None
    before: dict | None
    after: dict | None
    metadata: dict | None
    result: str
    actor_role: str | None = None


class AuditService:
    """Best-effort audit logging.

    Failures are logged and swallowed so a committed workflow change is never
    reported as failed because its audit row could not be written.
    """

    def __init__(self, db):
        self.repo = AuditRepository(db)

    def record_event(self, payload: AuditEventPayload) -> None:
        metadata = dict(payload.metadata or {})
        metadata.setdefault("actor_role", payload.actor_role)
        try:
            event = AuditEvent(
                organization_id=payload.organization_id,
                user_id=payload.user_id,
                department_id=payload.department_id,
                trace_id=payload.trace_id,
                actor=payload.actor,
                action=payload.action,
                entity_type=payload.entity_type or "unknown",
                entity_id=payload.entity_id,
                before_payload=payload.before,
                after_payload=payload.after,
                event_metadata=metadata,
                result=payload.result,
                created_at=datetime.utcnow(),
            )
            self.repo.create(event)
        except Exception:
            self.repo.db.rollback()
            logger.exception(
                "Failed to write audit event",
                extra={
                    "action": payload.action,
                    "trace_id": payload.trace_id,
                    "organization_id": payload.organization_id,
                    "entity_id": payload.entity_id,
                },
            )

    def list_events(self, organization_id: str, **filters):
        return self.repo.list_for_organization(organization_id, **filters)


def record_actor_event(
    db,
    request,
    actor,
    *,
    action: str,
    entity_type: str,
    entity_id,
    after: dict | None = None,
    before: dict | None = None,
    metadata: dict | None = None,
) -> None:
    """Audit a successful write made by ``actor`` during ``request``."""
    AuditService(db).record_event(
        AuditEventPayload(
            organization_id=actor.organization_id,
            user_id=actor.user_id,
            department_id=actor.department_id,
            trace_id=getattr(request.state, "trace_id", "") or None,
            actor=actor.username,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            before=before,
            after=after,
            metadata=metadata,
            result="success",
            actor_role=actor.role.value,
        )
    )
