from fastapi import APIRouter, Depends, Query

from app.medstock.core.context import Actor
from app.medstock.core.deps import require_org_role
from app.medstock.core.enums import OrgRole
from app.medstock.db.session import get_db
from app.medstock.schemas.audit import AuditEventListResponse, AuditEventResponse
from app.medstock.services.audit import AuditService

router = APIRouter()


@router.get("/medstock/audit-events", response_model=AuditEventListResponse)
def list_audit_events(
    action: str | None = Query(None, description="Action prefix, e.g. transfers."),
    entity_id: str | None = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(require_org_role(OrgRole.ADMIN, OrgRole.OWNER)),
    db=Depends(get_db),
):
    rows, total = AuditService(db).list_events(
        actor.organization_id,
        action_prefix=action,
        entity_id=entity_id,
        limit=limit,
        offset=offset,
    )
    return AuditEventListResponse(
        rows=[AuditEventResponse.model_validate(row) for row in rows],
        total=total,
        limit=limit,
        offset=offset,
    )
