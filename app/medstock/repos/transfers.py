from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, or_, select
from sqlalchemy.orm import selectinload

from app.medstock.core.enums import TransferPriority, TransferStatus
from app.medstock.db.models import Transfer, TransferItem


@dataclass(frozen=True)
class TransferQueryFilters:
    organization_id: str
    status: TransferStatus | None = None
    priority: TransferPriority | None = None
    search: str | None = None
    requesting_department_id: str | None = None
    supplying_department_id: str | None = None
    limit: int = 20
    offset: int = 0


def _detail_options():
    return (
        selectinload(Transfer.items).selectinload(TransferItem.product),
        selectinload(Transfer.items).selectinload(TransferItem.batches),
        selectinload(Transfer.history),
        selectinload(Transfer.requesting_department),
        selectinload(Transfer.supplying_department),
    )


class TransferRepository:
    def __init__(self, db):
        self.db = db

    def list_transfers(self, filters: TransferQueryFilters) -> tuple[list[Transfer], int]:
        conditions = [Transfer.organization_id == filters.organization_id]
        if filters.status is not None:
            conditions.append(Transfer.status == filters.status)
        if filters.priority is not None:
            conditions.append(Transfer.priority == filters.priority)
        if filters.requesting_department_id:
            conditions.append(Transfer.requesting_department_id == filters.requesting_department_id)
        if filters.supplying_department_id:
            conditions.append(Transfer.supplying_department_id == filters.supplying_department_id)
        if filters.search:
            pattern = f"%{filters.search.strip()}%"
            conditions.append(or_(Transfer.code.ilike(pattern), Transfer.title.ilike(pattern)))

        query = (
            select(Transfer)
            .where(*conditions)
            .options(
                selectinload(Transfer.items),
                selectinload(Transfer.requesting_department),
                selectinload(Transfer.supplying_department),
            )
            .order_by(Transfer.requested_at.desc())
            .offset(filters.offset)
            .limit(filters.limit)
        )
        rows = self.db.execute(query).scalars().all()
        total = self.db.execute(select(func.count()).select_from(Transfer).where(*conditions)).scalar_one()
        return rows, total

    def get_transfer(self, transfer_id, organization_id, *, for_update: bool = False) -> Transfer | None:
        query = select(Transfer).where(Transfer.id == transfer_id, Transfer.organization_id == organization_id)
        if for_update:
            query = query.with_for_update()
        return self.db.execute(query).scalars().first()

    def get_transfer_with_details(self, transfer_id, organization_id) -> Transfer | None:
        query = (
            select(Transfer)
            .where(Transfer.id == transfer_id, Transfer.organization_id == organization_id)
            .options(*_detail_options())
        )
        return self.db.execute(query).scalars().first()

    def get_item(self, item_id, organization_id, *, for_update: bool = False) -> TransferItem | None:
        query = (
            select(TransferItem)
            .where(TransferItem.id == item_id, TransferItem.organization_id == organization_id)
            .options(selectinload(TransferItem.batches))
        )
        if for_update:
            query = query.with_for_update()
        return self.db.execute(query).scalars().first()

    def code_exists(self, organization_id, code: str) -> bool:
        query = select(Transfer.id).where(Transfer.organization_id == organization_id, Transfer.code == code)
        return self.db.execute(query).first() is not None

    def count_requested_between(self, organization_id, start: datetime, end: datetime) -> int:
        query = (
            select(func.count())
            .select_from(Transfer)
            .where(
                Transfer.organization_id == organization_id,
                Transfer.requested_at >= start,
                Transfer.requested_at < end,
            )
        )
        return int(self.db.execute(query).scalar_one() or 0)
