"""Organization reference data and stock receipts.

Departments and products are the catalog the transfer engine refers to;
``receive_batch`` is how stock enters a department outside of a transfer.
"""

from __future__ import annotations

from datetime import date, datetime
import re

from app.medstock.core.enums import BatchStatus
from app.medstock.core.error_catalog import AppError, ErrorCatalog, NotFound
from app.medstock.db.models import Department, Product, StockBatch
from app.medstock.repos.organizations import OrganizationRepository
from app.medstock.repos.stock import StockRepository


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.strip().lower()).strip("-")
    return slug or "department"


class InventoryService:
    def __init__(self, db):
        self.db = db
        self.organizations = OrganizationRepository(db)
        self.stock = StockRepository(db)

    def create_department(self, organization_id: str, name: str, slug: str | None = None) -> Department:
        slug = slugify(slug or name)
        if self.organizations.department_slug_exists(organization_id, slug):
            raise AppError(ErrorCatalog.DUPLICATE_RESOURCE, details={"message": "department slug already exists", "slug": slug})
        department = Department(organization_id=organization_id, name=name.strip(), slug=slug, is_active=True)
        self.db.add(department)
        self.db.commit()
        self.db.refresh(department)
        return department

    def create_product(
        self,
        organization_id: str,
        *,
        code: str,
        name: str,
        generic_name: str | None = None,
        base_unit: str = "unit",
    ) -> Product:
        code = code.strip().upper()
        if self.organizations.product_code_exists(organization_id, code):
            raise AppError(ErrorCatalog.DUPLICATE_RESOURCE, details={"message": "product code already exists", "code": code})
        product = Product(
            organization_id=organization_id,
            code=code,
            name=name.strip(),
            generic_name=generic_name,
            base_unit=base_unit,
            is_active=True,
        )
        self.db.add(product)
        self.db.commit()
        self.db.refresh(product)
        return product

    def receive_batch(
        self,
        organization_id: str,
        department_id,
        *,
        product_id,
        lot_number: str,
        quantity: int,
        expiry_date: date | None = None,
        manufacture_date: date | None = None,
        supplier: str | None = None,
        location: str | None = None,
    ) -> StockBatch:
        """Register incoming stock for a department as a new available batch.

        A lot number is unique within a department's stock of a product; a second
        receipt of the same lot is rejected rather than split across two rows.
        """
        if quantity <= 0:
            raise AppError(
                ErrorCatalog.VALIDATION_ERROR,
                details={"message": "received quantity must be greater than zero", "quantity": quantity},
            )
        if self.organizations.get_department(organization_id, department_id) is None:
            raise NotFound("department not found", department_id=str(department_id))
        if not self.organizations.get_products(organization_id, [product_id]):
            raise NotFound("product not found", product_id=str(product_id))

        lot_number = lot_number.strip()
        now = datetime.utcnow()
        try:
            stock = self.stock.get_or_create_stock(
                organization_id=organization_id, department_id=department_id, product_id=product_id
            )
            if self.stock.find_batch_by_lot(stock.id, lot_number) is not None:
                raise AppError(
                    ErrorCatalog.DUPLICATE_RESOURCE,
                    details={"message": "lot number already exists for this stock", "lot_number": lot_number},
                )
            if location:
                stock.location = location
            stock.last_movement_at = now
            stock.updated_at = now
            batch = StockBatch(
                organization_id=organization_id,
                stock_id=stock.id,
                lot_number=lot_number,
                expiry_date=expiry_date,
                manufacture_date=manufacture_date,
                supplier=supplier,
                total_quantity=quantity,
                available_quantity=quantity,
                reserved_quantity=0,
                status=BatchStatus.AVAILABLE,
                received_at=now,
                updated_at=now,
            )
            self.db.add(batch)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(batch)
        return batch

    def _department_batch(self, organization_id: str, department_id, batch_id) -> StockBatch:
        if self.organizations.get_department(organization_id, department_id) is None:
            raise NotFound("department not found", department_id=str(department_id))
        batch = self.stock.get_department_batch(
            organization_id=organization_id, department_id=department_id, batch_id=batch_id, lock=True
        )
        if batch is None:
            raise NotFound("batch not found", batch_id=str(batch_id))
        return batch

    def update_batch(self, organization_id: str, department_id, batch_id, changes: dict) -> tuple[StockBatch, dict]:
        """Apply a partial edit to a batch and return it with a ``{field: {from, to}}`` change log.

        ``quantity`` sets the batch total; the difference is applied to the
        available quantity, which may not drop below zero because reserved units
        are already committed to prepared transfer items.
        """
        try:
            batch = self._department_batch(organization_id, department_id, batch_id)
            applied: dict = {}

            lot_number = changes.get("lot_number")
            if lot_number is not None:
                lot_number = lot_number.strip()
                if lot_number != batch.lot_number:
                    if self.stock.find_batch_by_lot(batch.stock_id, lot_number) is not None:
                        raise AppError(
                            ErrorCatalog.DUPLICATE_RESOURCE,
                            details={"message": "lot number already exists for this stock", "lot_number": lot_number},
                        )
                    applied["lot_number"] = (batch.lot_number, lot_number)
                    batch.lot_number = lot_number

            for field in ("expiry_date", "manufacture_date", "supplier"):
                if field in changes and changes[field] != getattr(batch, field):
                    applied[field] = (getattr(batch, field), changes[field])
                    setattr(batch, field, changes[field])

            status = changes.get("status")
            if status is not None and status is not batch.status:
                if status is BatchStatus.DEPLETED:
                    raise AppError(
                        ErrorCatalog.VALIDATION_ERROR,
                        details={"message": "batches become depleted through stock movements only"},
                    )
                applied["status"] = (batch.status, status)
                batch.status = status

            quantity = changes.get("quantity")
            if quantity is not None and quantity != batch.total_quantity:
                available = batch.available_quantity + (quantity - batch.total_quantity)
                if available < 0:
                    raise AppError(
                        ErrorCatalog.VALIDATION_ERROR,
                        details={
                            "message": "cannot reduce quantity below the reserved amount",
                            "quantity": quantity,
                            "reserved_quantity": batch.reserved_quantity,
                        },
                    )
                applied["quantity"] = (batch.total_quantity, quantity)
                batch.total_quantity = quantity
                batch.available_quantity = available
                if quantity == 0 and batch.status is BatchStatus.AVAILABLE:
                    batch.status = BatchStatus.DEPLETED
                elif quantity > 0 and batch.status is BatchStatus.DEPLETED:
                    batch.status = BatchStatus.AVAILABLE

            if applied:
                now = datetime.utcnow()
                batch.updated_at = now
                batch.stock.last_movement_at = now
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(batch)
        return batch, {field: {"from": old, "to": new} for field, (old, new) in applied.items()}

    def deactivate_batch(self, organization_id: str, department_id, batch_id) -> StockBatch:
        """Soft-delete a batch; a batch backing prepared transfer items cannot be removed."""
        try:
            batch = self._department_batch(organization_id, department_id, batch_id)
            if batch.reserved_quantity > 0:
                raise AppError(
                    ErrorCatalog.BATCH_RESERVED,
                    details={"batch_id": str(batch.id), "reserved_quantity": batch.reserved_quantity},
                )
            now = datetime.utcnow()
            batch.is_active = False
            batch.updated_at = now
            batch.stock.last_movement_at = now
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(batch)
        return batch

    def department_stock(self, organization_id: str, department_id):
        if self.organizations.get_department(organization_id, department_id, active_only=False) is None:
            raise NotFound("department not found", department_id=str(department_id))
        return self.stock.list_department_stock(organization_id, department_id)
