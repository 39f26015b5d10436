from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from fastapi.encoders import jsonable_encoder

from app.medstock.core.config import settings
from app.medstock.core.context import Actor
from app.medstock.core.deps import get_actor, require_org_role
from app.medstock.core.enums import OrgRole, TransferStatus
from app.medstock.core.error_catalog import NotFound, PermissionDenied
from app.medstock.db.session import get_db
from app.medstock.repos.organizations import OrganizationRepository
from app.medstock.repos.transfers import TransferQueryFilters
from app.medstock.routers.transfers import transfer_list_response
from app.medstock.schemas.organizations import DepartmentCreateRequest, DepartmentListResponse, DepartmentResponse
from app.medstock.schemas.stock import (
    BatchReceiveRequest,
    BatchUpdateRequest,
    DepartmentStockResponse,
    StockBatchResponse,
    StockResponse,
)
from app.medstock.schemas.transfers import TransferListResponse
from app.medstock.services.audit import record_actor_event
from app.medstock.services.inventory import InventoryService
from app.medstock.services.transfers import TransferWorkflowService

router = APIRouter()


def _stock_response(stock) -> StockResponse:
    batches = [batch for batch in stock.batches if batch.is_active]
    return StockResponse(
        id=stock.id,
        department_id=stock.department_id,
        product_id=stock.product_id,
        product_code=stock.product.code,
        product_name=stock.product.name,
        location=stock.location,
        total_quantity=sum(batch.total_quantity for batch in batches),
        available_quantity=sum(batch.available_quantity for batch in batches),
        reserved_quantity=sum(batch.reserved_quantity for batch in batches),
        last_movement_at=stock.last_movement_at,
        batches=[StockBatchResponse.model_validate(batch) for batch in batches],
    )


@router.get("/medstock/departments", response_model=DepartmentListResponse)
def list_departments(actor: Actor = Depends(get_actor), db=Depends(get_db)):
    rows = OrganizationRepository(db).list_departments(actor.organization_id)
    return DepartmentListResponse(rows=[DepartmentResponse.model_validate(row) for row in rows])


@router.post("/medstock/departments", response_model=DepartmentResponse, status_code=201)
def create_department(
    request: Request,
    payload: DepartmentCreateRequest,
    actor: Actor = Depends(require_org_role(OrgRole.ADMIN, OrgRole.OWNER)),
    db=Depends(get_db),
):
    department = InventoryService(db).create_department(actor.organization_id, payload.name, payload.slug)
    response = DepartmentResponse.model_validate(department)
    record_actor_event(
        db,
        request,
        actor,
        action="departments.create",
        entity_type="department",
        entity_id=department.id,
        after=response.model_dump(mode="json"),
    )
    return response


@router.get("/medstock/departments/{department_id}/stocks", response_model=DepartmentStockResponse)
def department_stock(department_id: UUID, actor: Actor = Depends(get_actor), db=Depends(get_db)):
    stocks = InventoryService(db).department_stock(actor.organization_id, department_id)
    return DepartmentStockResponse(department_id=department_id, rows=[_stock_response(stock) for stock in stocks])


@router.post(
    "/medstock/departments/{department_id}/stocks/batches",
    response_model=StockBatchResponse,
    status_code=201,
)
def receive_batch(
    department_id: UUID,
    request: Request,
    payload: BatchReceiveRequest,
    actor: Actor = Depends(get_actor),
    db=Depends(get_db),
):
    if not actor.can_act_for(department_id):
        raise PermissionDenied("members may only receive stock for their own department")
    batch = InventoryService(db).receive_batch(
        actor.organization_id,
        department_id,
        product_id=payload.product_id,
        lot_number=payload.lot_number,
        quantity=payload.quantity,
        expiry_date=payload.expiry_date,
        manufacture_date=payload.manufacture_date,
        supplier=payload.supplier,
        location=payload.location,
    )
    response = StockBatchResponse.model_validate(batch)
    record_actor_event(
        db,
        request,
        actor,
        action="stock.receive_batch",
        entity_type="stock_batch",
        entity_id=batch.id,
        after=response.model_dump(mode="json"),
        metadata={"department_id": str(department_id)},
    )
    return response


@router.patch(
    "/medstock/departments/{department_id}/stocks/batches/{batch_id}",
    response_model=StockBatchResponse,
)
def update_batch(
    department_id: UUID,
    batch_id: UUID,
    request: Request,
    payload: BatchUpdateRequest,
    actor: Actor = Depends(get_actor),
    db=Depends(get_db),
):
    if not actor.can_act_for(department_id):
        raise PermissionDenied("members may only edit batches of their own department")
    batch, changes = InventoryService(db).update_batch(
        actor.organization_id, department_id, batch_id, payload.model_dump(exclude_unset=True)
    )
    response = StockBatchResponse.model_validate(batch)
    if changes:
        record_actor_event(
            db,
            request,
            actor,
            action="stock.update_batch",
            entity_type="stock_batch",
            entity_id=batch.id,
            after=response.model_dump(mode="json"),
            metadata={"department_id": str(department_id), "changes": jsonable_encoder(changes)},
        )
    return response


@router.delete(
    "/medstock/departments/{department_id}/stocks/batches/{batch_id}",
    response_model=StockBatchResponse,
)
def deactivate_batch(
    department_id: UUID,
    batch_id: UUID,
    request: Request,
    actor: Actor = Depends(require_org_role(OrgRole.ADMIN, OrgRole.OWNER)),
    db=Depends(get_db),
):
    batch = InventoryService(db).deactivate_batch(actor.organization_id, department_id, batch_id)
    response = StockBatchResponse.model_validate(batch)
    record_actor_event(
        db,
        request,
        actor,
        action="stock.deactivate_batch",
        entity_type="stock_batch",
        entity_id=batch.id,
        after=response.model_dump(mode="json"),
        metadata={"department_id": str(department_id), "lot_number": batch.lot_number},
    )
    return response


def _department_transfers(db, actor: Actor, department_id: UUID, *, direction: str, status, limit, offset):
    if OrganizationRepository(db).get_department(actor.organization_id, department_id, active_only=False) is None:
        raise NotFound("department not found", department_id=str(department_id))
    side = "supplying_department_id" if direction == "outgoing" else "requesting_department_id"
    filters = TransferQueryFilters(
        organization_id=actor.organization_id,
        status=status,
        limit=limit,
        offset=offset,
        **{side: str(department_id)},
    )
    rows, total = TransferWorkflowService(db).list_transfers(filters)
    return transfer_list_response(rows, total, filters)


@router.get("/medstock/departments/{department_id}/transfers/outgoing", response_model=TransferListResponse)
def outgoing_transfers(
    department_id: UUID,
    status: TransferStatus | None = None,
    limit: int = Query(20, ge=1, le=settings.TRANSFER_LIST_MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_actor),
    db=Depends(get_db),
):
    return _department_transfers(db, actor, department_id, direction="outgoing", status=status, limit=limit, offset=offset)


@router.get("/medstock/departments/{department_id}/transfers/incoming", response_model=TransferListResponse)
def incoming_transfers(
    department_id: UUID,
    status: TransferStatus | None = None,
    limit: int = Query(20, ge=1, le=settings.TRANSFER_LIST_MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_actor),
    db=Depends(get_db),
):
    return _department_transfers(db, actor, department_id, direction="incoming", status=status, limit=limit, offset=offset)
