"""Batch selection and stock movements for transfer items.

Planning is pure: ``plan_fefo`` and ``plan_explicit`` only look at batch
snapshots. Reservation, release and settlement go through guarded updates on
``stock_batches`` so two preparers can never reserve the same units.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime
import uuid

from app.medstock.core.enums import BatchStatus
from app.medstock.core.error_catalog import (
    AllocationMismatch,
    InsufficientBatchStock,
    InvalidTransition,
    NotFound,
    QuantityOutOfRange,
)
from app.medstock.db.models import StockBatch, Transfer, TransferItem, TransferItemBatch
from app.medstock.repos.stock import StockRepository


@dataclass(frozen=True)
class AllocationRequest:
    batch_id: uuid.UUID
    quantity: int


@dataclass(frozen=True)
class PlannedAllocation:
    batch: StockBatch
    quantity: int


def _fefo_key(batch: StockBatch):
    # Undated batches sort after every dated one.
    return (batch.expiry_date is None, batch.expiry_date or date.max, batch.received_at or datetime.min)


def plan_fefo(batches: Iterable[StockBatch], quantity: int, *, today: date | None = None) -> list[PlannedAllocation]:
    """Cover ``quantity`` from the earliest-expiring usable batches."""
    today = today or date.today()
    usable = [
        batch
        for batch in batches
        if batch.available_quantity > 0 and (batch.expiry_date is None or batch.expiry_date >= today)
    ]
    plan: list[PlannedAllocation] = []
    remaining = quantity
    for batch in sorted(usable, key=_fefo_key):
        if remaining <= 0:
            break
        take = min(batch.available_quantity, remaining)
        plan.append(PlannedAllocation(batch=batch, quantity=take))
        remaining -= take
    if remaining > 0:
        raise InsufficientBatchStock(
            "not enough unexpired stock to cover the prepared quantity",
            requested=quantity,
            shortfall=remaining,
        )
    return plan


def merge_requests(requests: Iterable[AllocationRequest]) -> list[AllocationRequest]:
    """Combine repeated batch ids, keeping the order each batch first appeared in."""
    merged: dict[uuid.UUID, int] = {}
    for request in requests:
        merged[request.batch_id] = merged.get(request.batch_id, 0) + request.quantity
    return [AllocationRequest(batch_id=batch_id, quantity=quantity) for batch_id, quantity in merged.items()]


def plan_explicit(
    requests: Sequence[AllocationRequest],
    batches: Iterable[StockBatch],
    quantity: int,
) -> list[PlannedAllocation]:
    for request in requests:
        if request.quantity <= 0:
            raise QuantityOutOfRange(
                "allocated quantities must be greater than zero",
                batch_id=str(request.batch_id),
                quantity=request.quantity,
            )
    merged = merge_requests(requests)
    allocated = sum(request.quantity for request in merged)
    if allocated != quantity:
        raise AllocationMismatch(
            "allocated quantities must add up to the prepared quantity",
            allocated=allocated,
            prepared=quantity,
        )

    by_id = {batch.id: batch for batch in batches}
    plan: list[PlannedAllocation] = []
    for request in merged:
        batch = by_id.get(request.batch_id)
        if batch is None:
            raise NotFound("batch is not available to this transfer", batch_id=str(request.batch_id))
        if batch.available_quantity < request.quantity:
            raise InsufficientBatchStock(
                "batch does not hold enough available stock",
                batch_id=str(batch.id),
                available=batch.available_quantity,
                requested=request.quantity,
            )
        plan.append(PlannedAllocation(batch=batch, quantity=request.quantity))
    return plan


class BatchAllocator:
    def __init__(self, db):
        self.db = db
        self.stock_repo = StockRepository(db)

    def plan(
        self,
        transfer: Transfer,
        item: TransferItem,
        quantity: int,
        *,
        requests: Sequence[AllocationRequest] = (),
        auto_allocate: bool = False,
    ) -> list[PlannedAllocation]:
        if auto_allocate and requests:
            raise AllocationMismatch("send either explicit batches or auto_allocate, not both")
        if not auto_allocate and not requests:
            raise AllocationMismatch("batches are required unless auto_allocate is set")
        candidates = self.stock_repo.candidate_batches(
            department_id=transfer.supplying_department_id,
            product_id=item.product_id,
            lock=True,
        )
        if auto_allocate:
            return plan_fefo(candidates, quantity)
        return plan_explicit(requests, candidates, quantity)

    def reserve(self, item: TransferItem, plan: Sequence[PlannedAllocation], now: datetime) -> list[TransferItemBatch]:
        rows = []
        for position, planned in enumerate(plan):
            if not self.stock_repo.reserve(planned.batch.id, planned.quantity):
                raise InsufficientBatchStock(
                    "batch availability changed while preparing",
                    batch_id=str(planned.batch.id),
                    requested=planned.quantity,
                )
            row = TransferItemBatch(
                organization_id=item.organization_id,
                batch_id=planned.batch.id,
                position=position,
                lot_number=planned.batch.lot_number,
                expiry_date=planned.batch.expiry_date,
                quantity=planned.quantity,
                created_at=now,
            )
            item.batches.append(row)
            rows.append(row)
            self.db.expire(planned.batch)
        return rows

    def release(self, item: TransferItem) -> None:
        """Hand every reserved unit back to its batch and drop the allocation rows."""
        for row in list(item.batches):
            if not self.stock_repo.release(row.batch_id, row.quantity):
                raise InvalidTransition(
                    "batch reservation no longer covers this allocation",
                    batch_id=str(row.batch_id),
                    quantity=row.quantity,
                )
            self._expire_batch(row.batch_id)
        item.batches.clear()

    def settle(self, transfer: Transfer, item: TransferItem, received_quantity: int, now: datetime) -> None:
        """Ship ``received_quantity`` out of the reserved batches into the requesting department.

        Allocation rows are consumed in position order; anything prepared but not
        received goes back to the source batch's available quantity.
        """
        destination = self.stock_repo.get_or_create_stock(
            organization_id=transfer.organization_id,
            department_id=transfer.requesting_department_id,
            product_id=item.product_id,
        )
        credited: dict[str, StockBatch] = {}
        remaining = received_quantity
        for row in item.batches:
            shipped = min(row.quantity, remaining)
            remaining -= shipped
            if not self.stock_repo.consume_reservation(row.batch_id, row.quantity, shipped):
                raise InvalidTransition(
                    "batch reservation no longer covers this allocation",
                    batch_id=str(row.batch_id),
                    quantity=row.quantity,
                )
            source = self.db.get(StockBatch, row.batch_id)
            self.db.expire(source)
            if source.total_quantity == 0:
                source.status = BatchStatus.DEPLETED
            if source.stock is not None:
                source.stock.last_movement_at = now
            if shipped > 0:
                self._credit(destination, source, shipped, credited, now)
        destination.last_movement_at = now
        destination.updated_at = now

    def _credit(self, destination, source: StockBatch, quantity: int, credited: dict, now: datetime) -> None:
        target = credited.get(source.lot_number)
        if target is None:
            target = self.stock_repo.find_batch_by_lot(destination.id, source.lot_number)
        if target is None:
            target = StockBatch(
                organization_id=destination.organization_id,
                stock_id=destination.id,
                lot_number=source.lot_number,
                expiry_date=source.expiry_date,
                manufacture_date=source.manufacture_date,
                supplier=source.supplier,
                total_quantity=quantity,
                available_quantity=quantity,
                reserved_quantity=0,
                status=BatchStatus.AVAILABLE,
                received_at=now,
                updated_at=now,
            )
            self.db.add(target)
        else:
            target.total_quantity = (target.total_quantity or 0) + quantity
            target.available_quantity = (target.available_quantity or 0) + quantity
            target.updated_at = now
            if target.status is BatchStatus.DEPLETED:
                target.status = BatchStatus.AVAILABLE
            # A lot is a single row per stock, so a removed lot comes back when restocked.
            target.is_active = True
        credited[source.lot_number] = target

    def _expire_batch(self, batch_id) -> None:
        batch = self.db.get(StockBatch, batch_id)
        if batch is not None:
            self.db.expire(batch)
