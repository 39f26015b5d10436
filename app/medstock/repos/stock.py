from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import selectinload

from app.medstock.core.enums import BatchStatus
from app.medstock.db.models import Stock, StockBatch


class StockRepository:
    def __init__(self, db):
        self.db = db

    def get_stock(self, department_id, product_id) -> Stock | None:
        stmt = select(Stock).where(Stock.department_id == department_id, Stock.product_id == product_id)
        return self.db.execute(stmt).scalars().first()

    def get_or_create_stock(self, *, organization_id, department_id, product_id) -> Stock:
        stock = self.get_stock(department_id, product_id)
        if stock is not None:
            return stock
        stock = Stock(organization_id=organization_id, department_id=department_id, product_id=product_id)
        self.db.add(stock)
        self.db.flush()
        return stock

    def list_department_stock(self, organization_id, department_id) -> list[Stock]:
        stmt = (
            select(Stock)
            .where(Stock.organization_id == organization_id, Stock.department_id == department_id)
            .options(selectinload(Stock.product), selectinload(Stock.batches))
        )
        return self.db.execute(stmt).scalars().all()

    def candidate_batches(self, *, department_id, product_id, lock: bool = False) -> list[StockBatch]:
        """Active, available batches of a product held by a department."""
        stmt = (
            select(StockBatch)
            .join(Stock, Stock.id == StockBatch.stock_id)
            .where(
                Stock.department_id == department_id,
                Stock.product_id == product_id,
                StockBatch.is_active.is_(True),
                StockBatch.status == BatchStatus.AVAILABLE,
            )
        )
        if lock:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalars().all()

    def find_batch_by_lot(self, stock_id, lot_number: str) -> StockBatch | None:
        stmt = select(StockBatch).where(StockBatch.stock_id == stock_id, StockBatch.lot_number == lot_number)
        return self.db.execute(stmt.with_for_update()).scalars().one_or_none()

    def get_department_batch(self, *, organization_id, department_id, batch_id, lock: bool = False) -> StockBatch | None:
        stmt = (
            select(StockBatch)
            .join(Stock, Stock.id == StockBatch.stock_id)
            .where(
                StockBatch.id == batch_id,
                StockBatch.organization_id == organization_id,
                Stock.department_id == department_id,
                StockBatch.is_active.is_(True),
            )
        )
        if lock:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalars().first()

    def _guarded_update(self, batch_id, guard, **values) -> bool:
        values["updated_at"] = datetime.utcnow()
        result = self.db.execute(
            update(StockBatch)
            .where(StockBatch.id == batch_id, guard)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def reserve(self, batch_id, quantity: int) -> bool:
        """Move ``quantity`` from available to reserved while availability still covers it."""
        return self._guarded_update(
            batch_id,
            StockBatch.available_quantity >= quantity,
            available_quantity=StockBatch.available_quantity - quantity,
            reserved_quantity=StockBatch.reserved_quantity + quantity,
        )

    def release(self, batch_id, quantity: int) -> bool:
        return self._guarded_update(
            batch_id,
            StockBatch.reserved_quantity >= quantity,
            available_quantity=StockBatch.available_quantity + quantity,
            reserved_quantity=StockBatch.reserved_quantity - quantity,
        )

    def consume_reservation(self, batch_id, reserved: int, shipped: int) -> bool:
        """Drop a reservation, ship ``shipped`` units out and return the rest to available."""
        return self._guarded_update(
            batch_id,
            StockBatch.reserved_quantity >= reserved,
            reserved_quantity=StockBatch.reserved_quantity - reserved,
            total_quantity=StockBatch.total_quantity - shipped,
            available_quantity=StockBatch.available_quantity + (reserved - shipped),
        )
