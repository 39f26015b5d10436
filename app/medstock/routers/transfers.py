from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from app.medstock.core.config import settings
from app.medstock.core.context import Actor
from app.medstock.core.deps import get_actor
from app.medstock.core.enums import TransferPriority, TransferStatus
from app.medstock.core.error_catalog import ErrorCatalog
from app.medstock.core.metrics import metrics
from app.medstock.db.session import get_db
from app.medstock.repos.transfers import TransferQueryFilters
from app.medstock.schemas.errors import ITEM_ACTION_ERRORS, TRANSFER_CREATE_ERRORS
from app.medstock.schemas.transfers import (
    CancelRequest,
    DepartmentRef,
    ItemApproveRequest,
    ItemDeliverRequest,
    ItemPrepareRequest,
    TransferCreateRequest,
    TransferListResponse,
    TransferResponse,
    TransferSummaryResponse,
)
from app.medstock.services.audit import record_actor_event
from app.medstock.services.batch_allocator import AllocationRequest
from app.medstock.services.idempotency import IdempotencyService, extract_idempotency_key
from app.medstock.services.transfers import NewTransfer, TransferLine, TransferWorkflowService


router = APIRouter()


def transfer_list_response(rows, total: int, filters: TransferQueryFilters) -> TransferListResponse:
    return TransferListResponse(
        rows=[
            TransferSummaryResponse(
                id=row.id,
                code=row.code,
                title=row.title,
                status=row.status,
                priority=row.priority,
                requesting_department=DepartmentRef.model_validate(row.requesting_department),
                supplying_department=DepartmentRef.model_validate(row.supplying_department),
                requested_by_snapshot=row.requested_by_snapshot,
                requested_at=row.requested_at,
                updated_at=row.updated_at,
                item_count=len(row.items),
            )
            for row in rows
        ],
        total=total,
        limit=filters.limit,
        offset=filters.offset,
    )


def _transfer_response(service: TransferWorkflowService, actor: Actor, transfer_id) -> TransferResponse:
    return TransferResponse.model_validate(service.get_transfer(actor, transfer_id))


def _status_snapshot(response: TransferResponse, item_id: UUID | None = None) -> dict:
    snapshot = {"code": response.code, "status": response.status.value}
    if item_id is not None:
        item = next((item for item in response.items if item.id == item_id), None)
        if item is not None:
            snapshot["item_status"] = item.status.value
    return snapshot


@router.get("/medstock/transfers", response_model=TransferListResponse)
def list_transfers(
    status: TransferStatus | None = None,
    priority: TransferPriority | None = None,
    search: str | None = None,
    requesting_department_id: UUID | None = None,
    supplying_department_id: UUID | None = None,
    limit: int = Query(20, ge=1, le=settings.TRANSFER_LIST_MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_actor),
    db=Depends(get_db),
):
    filters = TransferQueryFilters(
        organization_id=actor.organization_id,
        status=status,
        priority=priority,
        search=search,
        requesting_department_id=str(requesting_department_id) if requesting_department_id else None,
        supplying_department_id=str(supplying_department_id) if supplying_department_id else None,
        limit=limit,
        offset=offset,
    )
    rows, total = TransferWorkflowService(db).list_transfers(filters)
    return transfer_list_response(rows, total, filters)


@router.post(
    "/medstock/transfers",
    response_model=TransferResponse,
    status_code=201,
    responses=TRANSFER_CREATE_ERRORS,
)
def create_transfer(
    request: Request,
    payload: TransferCreateRequest,
    actor: Actor = Depends(get_actor),
    db=Depends(get_db),
):
    context = None
    idempotency_key = extract_idempotency_key(request.headers)
    if idempotency_key:
        context, replay = IdempotencyService(db).start(
            organization_id=actor.organization_id,
            endpoint=str(request.url.path),
            method=request.method,
            idempotency_key=idempotency_key,
            request_hash=IdempotencyService.fingerprint(payload.model_dump(mode="json")),
        )
        if replay:
            metrics.increment_idempotency_replay()
            return JSONResponse(
                status_code=replay.status_code,
                content=replay.response_body,
                headers={"X-Idempotency-Result": ErrorCatalog.IDEMPOTENCY_REPLAY.code},
            )
        request.state.idempotency = context

    service = TransferWorkflowService(db)
    transfer = service.create_transfer(
        actor,
        NewTransfer(
            requesting_department_id=payload.requesting_department_id,
            supplying_department_id=payload.supplying_department_id,
            title=payload.title,
            priority=payload.priority,
            request_reason=payload.request_reason,
            notes=payload.notes,
            lines=[
                TransferLine(
                    product_id=line.product_id,
                    requested_quantity=line.requested_quantity,
                    notes=line.notes,
                )
                for line in payload.items
            ],
        ),
    )
    response = TransferResponse.model_validate(transfer)
    if context is not None:
        context.record_success(status_code=201, response_body=response.model_dump(mode="json"))
    record_actor_event(
        db,
        request,
        actor,
        action="transfers.create",
        entity_type="transfer",
        entity_id=response.id,
        after=_status_snapshot(response),
        metadata={"items": len(response.items), "idempotency_key": idempotency_key},
    )
    return response


@router.get("/medstock/transfers/{transfer_id}", response_model=TransferResponse)
def get_transfer(transfer_id: UUID, actor: Actor = Depends(get_actor), db=Depends(get_db)):
    return _transfer_response(TransferWorkflowService(db), actor, transfer_id)


@router.post(
    "/medstock/transfers/{transfer_id}/cancel",
    response_model=TransferResponse,
    responses=ITEM_ACTION_ERRORS,
)
def cancel_transfer(
    transfer_id: UUID,
    request: Request,
    payload: CancelRequest,
    actor: Actor = Depends(get_actor),
    db=Depends(get_db),
):
    service = TransferWorkflowService(db)
    transfer = service.cancel_transfer(actor, transfer_id, payload.reason)
    response = TransferResponse.model_validate(transfer)
    record_actor_event(
        db,
        request,
        actor,
        action="transfers.cancel",
        entity_type="transfer",
        entity_id=transfer_id,
        after=_status_snapshot(response),
        metadata={"reason": payload.reason},
    )
    return response


def _item_action_response(db, request, actor, service, *, transfer_id, item_id, action, metadata=None):
    response = _transfer_response(service, actor, transfer_id)
    record_actor_event(
        db,
        request,
        actor,
        action=action,
        entity_type="transfer_item",
        entity_id=item_id,
        after=_status_snapshot(response, item_id),
        metadata={"transfer_id": str(transfer_id), **(metadata or {})},
    )
    return response


@router.post(
    "/medstock/transfers/{transfer_id}/items/{item_id}/approve",
    response_model=TransferResponse,
    responses=ITEM_ACTION_ERRORS,
)
def approve_item(
    transfer_id: UUID,
    item_id: UUID,
    request: Request,
    payload: ItemApproveRequest,
    actor: Actor = Depends(get_actor),
    db=Depends(get_db),
):
    service = TransferWorkflowService(db)
    service.approve_item(actor, item_id, payload.approved_quantity, notes=payload.notes, transfer_id=transfer_id)
    return _item_action_response(
        db,
        request,
        actor,
        service,
        transfer_id=transfer_id,
        item_id=item_id,
        action="transfers.approve_item",
        metadata={"approved_quantity": payload.approved_quantity},
    )


@router.post(
    "/medstock/transfers/{transfer_id}/items/{item_id}/prepare",
    response_model=TransferResponse,
    responses=ITEM_ACTION_ERRORS,
)
def prepare_item(
    transfer_id: UUID,
    item_id: UUID,
    request: Request,
    payload: ItemPrepareRequest,
    actor: Actor = Depends(get_actor),
    db=Depends(get_db),
):
    service = TransferWorkflowService(db)
    service.prepare_item(
        actor,
        item_id,
        payload.prepared_quantity,
        batches=[AllocationRequest(batch_id=line.batch_id, quantity=line.quantity) for line in payload.batches],
        auto_allocate=payload.auto_allocate,
        notes=payload.notes,
        transfer_id=transfer_id,
    )
    return _item_action_response(
        db,
        request,
        actor,
        service,
        transfer_id=transfer_id,
        item_id=item_id,
        action="transfers.prepare_item",
        metadata={"prepared_quantity": payload.prepared_quantity, "auto_allocate": payload.auto_allocate},
    )


@router.post(
    "/medstock/transfers/{transfer_id}/items/{item_id}/deliver",
    response_model=TransferResponse,
    responses=ITEM_ACTION_ERRORS,
)
def deliver_item(
    transfer_id: UUID,
    item_id: UUID,
    request: Request,
    payload: ItemDeliverRequest,
    actor: Actor = Depends(get_actor),
    db=Depends(get_db),
):
    service = TransferWorkflowService(db)
    service.deliver_item(actor, item_id, payload.received_quantity, notes=payload.notes, transfer_id=transfer_id)
    return _item_action_response(
        db,
        request,
        actor,
        service,
        transfer_id=transfer_id,
        item_id=item_id,
        action="transfers.deliver_item",
        metadata={"received_quantity": payload.received_quantity},
    )


@router.post(
    "/medstock/transfers/{transfer_id}/items/{item_id}/cancel",
    response_model=TransferResponse,
    responses=ITEM_ACTION_ERRORS,
)
def cancel_item(
    transfer_id: UUID,
    item_id: UUID,
    request: Request,
    payload: CancelRequest,
    actor: Actor = Depends(get_actor),
    db=Depends(get_db),
):
    service = TransferWorkflowService(db)
    service.cancel_item(actor, item_id, payload.reason, transfer_id=transfer_id)
    return _item_action_response(
        db,
        request,
        actor,
        service,
        transfer_id=transfer_id,
        item_id=item_id,
        action="transfers.cancel_item",
        metadata={"reason": payload.reason},
    )
