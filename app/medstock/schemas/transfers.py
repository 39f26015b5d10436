from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.medstock.core.enums import ItemStatus, TransferPriority, TransferStatus


_TRANSFER_CREATE_EXAMPLE = {
    "title": "Weekly replenishment",
    "requesting_department_id": "6a8e3e51-0c55-4b33-9e5b-9c0f2a1d7e01",
    "supplying_department_id": "0d1f2a3b-4c5d-4e6f-8a9b-0c1d2e3f4a5b",
    "priority": "URGENT",
    "request_reason": "Stock running low after weekend admissions",
    "items": [
        {"product_id": "3f0c3c86-4f9b-4d7e-a6ce-7a3b0c1f2d10", "requested_quantity": 40},
        {"product_id": "9b2e6d11-7c3a-4b8f-9e21-5a6c7d8e9f00", "requested_quantity": 12},
    ],
}


class TransferItemCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    product_id: UUID
    requested_quantity: int
    notes: str | None = None


class TransferCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", json_schema_extra={"example": _TRANSFER_CREATE_EXAMPLE})

    title: str = Field(max_length=255)
    requesting_department_id: UUID
    supplying_department_id: UUID
    priority: TransferPriority = TransferPriority.NORMAL
    request_reason: str | None = None
    notes: str | None = None
    items: list[TransferItemCreate]


class ItemApproveRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    approved_quantity: int
    notes: str | None = None


class BatchAllocationInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    batch_id: UUID
    quantity: int


class ItemPrepareRequest(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={
            "examples": [
                {
                    "prepared_quantity": 30,
                    "batches": [
                        {"batch_id": "1c2d3e4f-5a6b-4c7d-8e9f-0a1b2c3d4e5f", "quantity": 20},
                        {"batch_id": "2d3e4f5a-6b7c-4d8e-9f0a-1b2c3d4e5f6a", "quantity": 10},
                    ],
                },
                {"prepared_quantity": 30, "auto_allocate": True},
            ]
        },
    )

    prepared_quantity: int
    batches: list[BatchAllocationInput] = Field(default_factory=list)
    auto_allocate: bool = False
    notes: str | None = None


class ItemDeliverRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    received_quantity: int
    notes: str | None = None


class CancelRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: str = Field(min_length=1)


class DepartmentRef(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    slug: str


class ProductRef(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    code: str
    name: str
    base_unit: str


class TransferItemBatchResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    batch_id: UUID
    position: int
    lot_number: str
    expiry_date: date | None
    quantity: int


class TransferItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    transfer_id: UUID
    line_number: int
    product_id: UUID
    product: ProductRef | None = None
    status: ItemStatus
    requested_quantity: int
    approved_quantity: int | None
    prepared_quantity: int | None
    received_quantity: int | None
    notes: str | None
    cancel_reason: str | None
    approved_at: datetime | None
    prepared_at: datetime | None
    delivered_at: datetime | None
    cancelled_at: datetime | None
    batches: list[TransferItemBatchResponse] = Field(default_factory=list)


class TransferHistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sequence: int
    action: str
    item_id: UUID | None
    from_status: str | None
    to_status: str
    actor_user_id: UUID
    actor_snapshot: dict
    notes: str | None
    created_at: datetime


class TransferSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    code: str
    title: str
    status: TransferStatus
    priority: TransferPriority
    requesting_department: DepartmentRef
    supplying_department: DepartmentRef
    requested_by_snapshot: dict
    requested_at: datetime
    updated_at: datetime
    item_count: int = 0


class TransferResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    code: str
    title: str
    status: TransferStatus
    priority: TransferPriority
    request_reason: str | None
    notes: str | None
    cancel_reason: str | None
    requesting_department: DepartmentRef
    supplying_department: DepartmentRef
    requested_by_user_id: UUID
    requested_by_snapshot: dict
    requested_at: datetime
    approved_at: datetime | None
    prepared_at: datetime | None
    delivered_at: datetime | None
    cancelled_at: datetime | None
    updated_at: datetime
    items: list[TransferItemResponse]
    history: list[TransferHistoryResponse]


class TransferListResponse(BaseModel):
    rows: list[TransferSummaryResponse]
    total: int
    limit: int
    offset: int
