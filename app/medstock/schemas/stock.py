from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.medstock.core.enums import BatchStatus


class BatchReceiveRequest(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={
            "example": {
                "product_id": "3f0c3c86-4f9b-4d7e-a6ce-7a3b0c1f2d10",
                "lot_number": "LOT-2026-001",
                "quantity": 120,
                "expiry_date": "2027-06-30",
                "supplier": "Acme Pharma",
            }
        },
    )

    product_id: UUID
    lot_number: str = Field(min_length=1, max_length=100)
    quantity: int = Field(gt=0)
    expiry_date: date | None = None
    manufacture_date: date | None = None
    supplier: str | None = Field(default=None, max_length=255)
    location: str | None = Field(default=None, max_length=100)


class BatchUpdateRequest(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={"example": {"status": "QUARANTINED", "quantity": 96}},
    )

    lot_number: str | None = Field(default=None, min_length=1, max_length=100)
    expiry_date: date | None = None
    manufacture_date: date | None = None
    supplier: str | None = Field(default=None, max_length=255)
    status: BatchStatus | None = None
    quantity: int | None = Field(default=None, ge=0)


class StockBatchResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    stock_id: UUID
    lot_number: str
    expiry_date: date | None
    manufacture_date: date | None
    supplier: str | None
    total_quantity: int
    available_quantity: int
    reserved_quantity: int
    status: BatchStatus
    is_active: bool
    received_at: datetime


class StockResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    department_id: UUID
    product_id: UUID
    product_code: str
    product_name: str
    location: str | None
    total_quantity: int
    available_quantity: int
    reserved_quantity: int
    last_movement_at: datetime | None
    batches: list[StockBatchResponse]


class DepartmentStockResponse(BaseModel):
    department_id: UUID
    rows: list[StockResponse]
