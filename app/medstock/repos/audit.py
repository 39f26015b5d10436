from sqlalchemy import func, select

from app.medstock.db.models import AuditEvent


class AuditRepository:
    def __init__(self, db):
        self.db = db

    def create(self, event: AuditEvent) -> AuditEvent:
        self.db.add(event)
        self.db.commit()
        self.db.refresh(event)
        return event

    def list_for_organization(
        self,
        organization_id: str,
        *,
        action_prefix: str | None = None,
        entity_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[AuditEvent], int]:
        stmt = select(AuditEvent).where(AuditEvent.organization_id == organization_id)
        count_stmt = select(func.count()).select_from(AuditEvent).where(AuditEvent.organization_id == organization_id)
        if action_prefix:
            stmt = stmt.where(AuditEvent.action.startswith(action_prefix))
            count_stmt = count_stmt.where(AuditEvent.action.startswith(action_prefix))
        if entity_id:
            stmt = stmt.where(AuditEvent.entity_id == entity_id)
            count_stmt = count_stmt.where(AuditEvent.entity_id == entity_id)
        rows = (
            self.db.execute(stmt.order_by(AuditEvent.created_at.desc()).offset(offset).limit(limit))
            .scalars()
            .all()
        )
        return rows, self.db.execute(count_stmt).scalar_one()
