"""Transfer workflow: building requests and moving items through their lifecycle.

Every mutating operation runs as one unit of work. The item is claimed with a
compare-and-set on its status, batch quantities move through guarded updates,
and the transfer status is re-derived from all of its items before commit.
Any failure rolls the whole operation back.
"""

from __future__ import annotations

from collections.abc import Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
import uuid

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.attributes import set_committed_value

from app.medstock.core.config import settings
from app.medstock.core.context import Actor
from app.medstock.core.enums import ItemStatus, TransferPriority, TransferStatus
from app.medstock.core.error_catalog import (
    AppError,
    ErrorCatalog,
    InvalidTransferRequest,
    InvalidTransition,
    NotFound,
    PermissionDenied,
    QuantityOutOfRange,
)
from app.medstock.core.logging import log_json
from app.medstock.core.metrics import metrics
from app.medstock.db.models import Transfer, TransferItem
from app.medstock.repos.organizations import OrganizationRepository
from app.medstock.repos.transfers import TransferQueryFilters, TransferRepository
from app.medstock.services import transfer_history as history_actions
from app.medstock.services.batch_allocator import AllocationRequest, BatchAllocator
from app.medstock.services.transfer_history import TransferHistoryRecorder
from app.medstock.services.transfer_status import StatusPolicy, aggregate_status, stamp_phase_timestamps

logger = logging.getLogger("medstock.transfers")

_OPEN_ITEM_STATES = (ItemStatus.PENDING, ItemStatus.APPROVED, ItemStatus.PREPARED)


@dataclass(frozen=True)
class TransferLine:
    product_id: uuid.UUID
    requested_quantity: int
    notes: str | None = None


@dataclass(frozen=True)
class NewTransfer:
    requesting_department_id: uuid.UUID
    supplying_department_id: uuid.UUID
    title: str
    lines: Sequence[TransferLine]
    priority: TransferPriority = TransferPriority.NORMAL
    request_reason: str | None = None
    notes: str | None = None


class TransferWorkflowService:
    def __init__(self, db, *, status_policy: StatusPolicy | str | None = None):
        self.db = db
        self.repo = TransferRepository(db)
        self.organizations = OrganizationRepository(db)
        self.allocator = BatchAllocator(db)
        self.history = TransferHistoryRecorder()
        self.status_policy = StatusPolicy(status_policy or settings.TRANSFER_STATUS_POLICY)

    # -- queries -------------------------------------------------------------

    def get_transfer(self, actor: Actor, transfer_id) -> Transfer:
        transfer = self.repo.get_transfer_with_details(transfer_id, actor.organization_id)
        if transfer is None:
            raise NotFound("transfer not found", transfer_id=str(transfer_id))
        return transfer

    def list_transfers(self, filters: TransferQueryFilters) -> tuple[list[Transfer], int]:
        return self.repo.list_transfers(filters)

    # -- creation ------------------------------------------------------------

    def create_transfer(self, actor: Actor, request: NewTransfer) -> Transfer:
        self._validate_new_transfer(request)
        requesting = self.organizations.get_department(actor.organization_id, request.requesting_department_id)
        supplying = self.organizations.get_department(actor.organization_id, request.supplying_department_id)
        if requesting is None or supplying is None:
            raise InvalidTransferRequest(
                "departments must be active departments of the organization",
                requesting_department_id=str(request.requesting_department_id),
                supplying_department_id=str(request.supplying_department_id),
            )
        if not actor.can_act_for(requesting.id):
            raise PermissionDenied("members may only request transfers for their own department")

        product_ids = [line.product_id for line in request.lines]
        known = {product.id for product in self.organizations.get_products(actor.organization_id, product_ids)}
        missing = [str(product_id) for product_id in product_ids if product_id not in known]
        if missing:
            raise InvalidTransferRequest("unknown or inactive products", product_ids=missing)

        now = datetime.utcnow()
        with self._unit_of_work(conflict=AppError(ErrorCatalog.TRANSFER_CODE_CONFLICT)):
            transfer = Transfer(
                id=uuid.uuid4(),
                organization_id=actor.organization_id,
                code=self._next_code(actor.organization_id, now),
                title=request.title.strip(),
                requesting_department_id=requesting.id,
                supplying_department_id=supplying.id,
                status=TransferStatus.PENDING,
                priority=request.priority,
                request_reason=request.request_reason,
                notes=request.notes,
                requested_by_user_id=actor.user_id,
                requested_by_snapshot=actor.snapshot(),
                requested_at=now,
                created_at=now,
                updated_at=now,
            )
            for line_number, line in enumerate(request.lines, start=1):
                transfer.items.append(
                    TransferItem(
                        id=uuid.uuid4(),
                        organization_id=actor.organization_id,
                        line_number=line_number,
                        product_id=line.product_id,
                        status=ItemStatus.PENDING,
                        requested_quantity=line.requested_quantity,
                        notes=line.notes,
                        created_at=now,
                        updated_at=now,
                    )
                )
            self.db.add(transfer)
            self.history.record(
                transfer,
                action=history_actions.TRANSFER_CREATED,
                to_status=TransferStatus.PENDING,
                actor=actor,
                notes=request.request_reason,
                now=now,
            )
            transfer_id = transfer.id
            code = transfer.code

        self._log_transition(
            history_actions.TRANSFER_CREATED,
            actor,
            transfer_id=transfer_id,
            to_status=TransferStatus.PENDING,
            code=code,
            items=len(request.lines),
        )
        return self.get_transfer(actor, transfer_id)

    @staticmethod
    def _validate_new_transfer(request: NewTransfer) -> None:
        if not request.title or not request.title.strip():
            raise InvalidTransferRequest("title is required")
        if not request.lines:
            raise InvalidTransferRequest("a transfer needs at least one item")
        if request.requesting_department_id == request.supplying_department_id:
            raise InvalidTransferRequest("requesting and supplying departments must differ")
        invalid = [index for index, line in enumerate(request.lines) if line.requested_quantity <= 0]
        if invalid:
            raise InvalidTransferRequest("requested_quantity must be greater than zero", lines=invalid)
        seen: set = set()
        duplicates = []
        for line in request.lines:
            if line.product_id in seen:
                duplicates.append(str(line.product_id))
            seen.add(line.product_id)
        if duplicates:
            raise InvalidTransferRequest("each product may appear only once", product_ids=duplicates)

    def _next_code(self, organization_id, now: datetime) -> str:
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        next_month = (month_start + timedelta(days=32)).replace(day=1)
        sequence = self.repo.count_requested_between(organization_id, month_start, next_month) + 1
        while True:
            code = f"{settings.TRANSFER_CODE_PREFIX}-{now:%Y%m}-{sequence:04d}"
            if not self.repo.code_exists(organization_id, code):
                return code
            sequence += 1

    # -- item transitions ----------------------------------------------------

    def approve_item(
        self, actor: Actor, item_id, approved_quantity: int, *, notes: str | None = None, transfer_id=None
    ) -> TransferItem:
        transfer, item = self._load_item(actor, item_id, transfer_id)
        self._authorize(actor, transfer.supplying_department_id, "approve")
        self._require_status(item, ItemStatus.PENDING, verb="approve")
        if approved_quantity <= 0 or approved_quantity > item.requested_quantity:
            raise QuantityOutOfRange(
                "approved quantity must be between 1 and the requested quantity",
                approved_quantity=approved_quantity,
                requested_quantity=item.requested_quantity,
            )

        now = datetime.utcnow()
        with self._unit_of_work():
            self._claim(item, ItemStatus.PENDING, ItemStatus.APPROVED, now)
            item.approved_quantity = approved_quantity
            item.approved_at = now
            if notes:
                item.notes = notes
            self._after_item_transition(
                actor, transfer, item, history_actions.ITEM_APPROVED, ItemStatus.PENDING, notes, now
            )
        return self._finish(actor, transfer.id, item, history_actions.ITEM_APPROVED, ItemStatus.PENDING)

    def prepare_item(
        self,
        actor: Actor,
        item_id,
        prepared_quantity: int,
        *,
        batches: Sequence[AllocationRequest] = (),
        auto_allocate: bool = False,
        notes: str | None = None,
        transfer_id=None,
    ) -> TransferItem:
        transfer, item = self._load_item(actor, item_id, transfer_id)
        self._authorize(actor, transfer.supplying_department_id, "prepare")
        self._require_status(item, ItemStatus.APPROVED, verb="prepare")
        if prepared_quantity <= 0 or prepared_quantity > (item.approved_quantity or 0):
            raise QuantityOutOfRange(
                "prepared quantity must be between 1 and the approved quantity",
                prepared_quantity=prepared_quantity,
                approved_quantity=item.approved_quantity,
            )
        plan = self.allocator.plan(
            transfer, item, prepared_quantity, requests=list(batches), auto_allocate=auto_allocate
        )

        now = datetime.utcnow()
        with self._unit_of_work():
            self._claim(item, ItemStatus.APPROVED, ItemStatus.PREPARED, now)
            self.allocator.reserve(item, plan, now)
            item.prepared_quantity = prepared_quantity
            item.prepared_at = now
            if notes:
                item.notes = notes
            self._after_item_transition(
                actor, transfer, item, history_actions.ITEM_PREPARED, ItemStatus.APPROVED, notes, now
            )
        return self._finish(
            actor,
            transfer.id,
            item,
            history_actions.ITEM_PREPARED,
            ItemStatus.APPROVED,
            batches=len(plan),
            auto_allocate=auto_allocate,
        )

    def deliver_item(
        self, actor: Actor, item_id, received_quantity: int, *, notes: str | None = None, transfer_id=None
    ) -> TransferItem:
        transfer, item = self._load_item(actor, item_id, transfer_id)
        self._authorize(actor, transfer.requesting_department_id, "deliver")
        self._require_status(item, ItemStatus.PREPARED, verb="deliver")
        if received_quantity <= 0 or received_quantity > (item.prepared_quantity or 0):
            raise QuantityOutOfRange(
                "received quantity must be between 1 and the prepared quantity",
                received_quantity=received_quantity,
                prepared_quantity=item.prepared_quantity,
            )

        now = datetime.utcnow()
        with self._unit_of_work():
            self._claim(item, ItemStatus.PREPARED, ItemStatus.DELIVERED, now)
            self.allocator.settle(transfer, item, received_quantity, now)
            item.received_quantity = received_quantity
            item.delivered_at = now
            if notes:
                item.notes = notes
            self._after_item_transition(
                actor, transfer, item, history_actions.ITEM_DELIVERED, ItemStatus.PREPARED, notes, now
            )
        return self._finish(actor, transfer.id, item, history_actions.ITEM_DELIVERED, ItemStatus.PREPARED)

    def cancel_item(self, actor: Actor, item_id, reason: str, *, transfer_id=None) -> TransferItem:
        transfer, item = self._load_item(actor, item_id, transfer_id)
        if not (
            actor.can_act_for(transfer.supplying_department_id) or actor.can_act_for(transfer.requesting_department_id)
        ):
            raise PermissionDenied("only the requesting or supplying department may cancel this item")
        self._require_status(item, *_OPEN_ITEM_STATES, verb="cancel")
        reason = self._require_reason(reason)

        now = datetime.utcnow()
        from_status = item.status
        with self._unit_of_work():
            self._cancel_open_item(actor, transfer, item, reason, now)
            self._refresh_status(transfer, now)
        return self._finish(actor, transfer.id, item, history_actions.ITEM_CANCELLED, from_status)

    def cancel_transfer(self, actor: Actor, transfer_id, reason: str) -> Transfer:
        if not actor.is_org_admin:
            raise PermissionDenied("only organization admins may cancel a whole transfer")
        transfer = self.repo.get_transfer(transfer_id, actor.organization_id, for_update=True)
        if transfer is None:
            raise NotFound("transfer not found", transfer_id=str(transfer_id))
        open_items = [item for item in transfer.items if not item.status.is_terminal]
        if not open_items:
            raise InvalidTransition(
                "transfer has no open items left to cancel",
                transfer_id=str(transfer.id),
                status=transfer.status.value,
            )
        reason = self._require_reason(reason)

        now = datetime.utcnow()
        from_status = transfer.status
        with self._unit_of_work():
            for item in open_items:
                self._cancel_open_item(actor, transfer, item, reason, now)
            transfer.status = TransferStatus.CANCELLED
            transfer.cancel_reason = reason
            transfer.updated_at = now
            stamp_phase_timestamps(transfer, TransferStatus.CANCELLED, now)
            self.history.record(
                transfer,
                action=history_actions.TRANSFER_CANCELLED,
                from_status=from_status,
                to_status=TransferStatus.CANCELLED,
                actor=actor,
                notes=reason,
                now=now,
            )

        self._log_transition(
            history_actions.TRANSFER_CANCELLED,
            actor,
            transfer_id=transfer_id,
            from_status=from_status,
            to_status=TransferStatus.CANCELLED,
            items=len(open_items),
        )
        return self.get_transfer(actor, transfer_id)

    # -- helpers -------------------------------------------------------------

    @contextmanager
    def _unit_of_work(self, *, conflict: AppError | None = None):
        try:
            yield
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise (conflict or InvalidTransition("transfer changed concurrently, reload and retry")) from exc
        except Exception:
            self.db.rollback()
            raise

    def _load_item(self, actor: Actor, item_id, transfer_id=None) -> tuple[Transfer, TransferItem]:
        item = self.repo.get_item(item_id, actor.organization_id, for_update=True)
        if item is None or (transfer_id is not None and str(item.transfer_id) != str(transfer_id)):
            raise NotFound("transfer item not found", item_id=str(item_id))
        transfer = self.repo.get_transfer(item.transfer_id, actor.organization_id, for_update=True)
        if transfer is None:
            raise NotFound("transfer not found", transfer_id=str(item.transfer_id))
        return transfer, item

    @staticmethod
    def _authorize(actor: Actor, department_id, action: str) -> None:
        if not actor.can_act_for(department_id):
            raise PermissionDenied(
                f"not allowed to {action} items for this department",
                department_id=str(department_id),
            )

    @staticmethod
    def _require_status(item: TransferItem, *allowed: ItemStatus, verb: str) -> None:
        if item.status not in allowed:
            raise InvalidTransition(
                f"cannot {verb} an item in status {item.status.value}",
                item_id=str(item.id),
                status=item.status.value,
            )

    @staticmethod
    def _require_reason(reason: str | None) -> str:
        if reason is None or not reason.strip():
            raise InvalidTransferRequest("a cancellation reason is required")
        return reason.strip()

    def _claim(self, item: TransferItem, expected: ItemStatus, target: ItemStatus, now: datetime) -> None:
        """Move the item from ``expected`` to ``target`` only if nobody else moved it first."""
        result = self.db.execute(
            update(TransferItem)
            .where(TransferItem.id == item.id, TransferItem.status == expected)
            .values(status=target, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidTransition(
                "item status changed concurrently, reload and retry",
                item_id=str(item.id),
                expected_status=expected.value,
            )
        set_committed_value(item, "status", target)
        set_committed_value(item, "updated_at", now)

    def _cancel_open_item(self, actor: Actor, transfer: Transfer, item: TransferItem, reason: str, now) -> None:
        from_status = item.status
        self._claim(item, from_status, ItemStatus.CANCELLED, now)
        if from_status is ItemStatus.PREPARED:
            self.allocator.release(item)
        item.cancel_reason = reason
        item.cancelled_at = now
        self.history.record(
            transfer,
            action=history_actions.ITEM_CANCELLED,
            from_status=from_status,
            to_status=ItemStatus.CANCELLED,
            actor=actor,
            item=item,
            notes=reason,
            now=now,
        )

    def _after_item_transition(self, actor, transfer, item, action, from_status, notes, now) -> None:
        self.history.record(
            transfer,
            action=action,
            from_status=from_status,
            to_status=item.status,
            actor=actor,
            item=item,
            notes=notes,
            now=now,
        )
        self._refresh_status(transfer, now)

    def _refresh_status(self, transfer: Transfer, now: datetime) -> TransferStatus:
        status = aggregate_status((item.status for item in transfer.items), self.status_policy)
        if transfer.status != status:
            transfer.status = status
        stamp_phase_timestamps(transfer, status, now)
        transfer.updated_at = now
        return status

    def _finish(self, actor, transfer_id, item, action, from_status, **extra) -> TransferItem:
        self._log_transition(
            action,
            actor,
            transfer_id=transfer_id,
            item_id=item.id,
            from_status=from_status,
            to_status=item.status,
            **extra,
        )
        return item

    @staticmethod
    def _log_transition(action: str, actor: Actor, *, transfer_id, item_id=None, from_status=None, to_status, **extra):
        metrics.increment_transfer_transition(action)
        log_json(
            logger,
            {
                "event": "transfer.transition",
                "action": action,
                "organization_id": actor.organization_id,
                "transfer_id": str(transfer_id),
                "item_id": str(item_id) if item_id else None,
                "from_status": getattr(from_status, "value", from_status),
                "to_status": getattr(to_status, "value", to_status),
                "actor_user_id": actor.user_id,
                **extra,
            },
        )
