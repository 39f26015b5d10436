from datetime import datetime
import re
import uuid
from types import SimpleNamespace

import pytest
from sqlalchemy import func, select

from app.medstock.core.enums import BatchStatus, ItemStatus, TransferStatus
from app.medstock.core.error_catalog import (
    AllocationMismatch,
    AppError,
    ErrorCatalog,
    InsufficientBatchStock,
    InvalidTransferRequest,
    InvalidTransition,
    NotFound,
    PermissionDenied,
    QuantityOutOfRange,
)
from app.medstock.db.models import StockBatch, Transfer, TransferHistory, TransferItem, TransferItemBatch
from app.medstock.repos.stock import StockRepository
from app.medstock.services.batch_allocator import AllocationRequest
from app.medstock.services.inventory import InventoryService
from app.medstock.services.transfers import NewTransfer, TransferLine, TransferWorkflowService
from tests.medstock_helpers import (
    actor_for,
    add_batch,
    allocated_to_prepared_items,
    create_organization,
    create_product,
    create_user,
    future,
    new_transfer,
)


@pytest.fixture()
def world(db_session):
    organization, pharmacy, ward = create_organization(db_session, suffix="wf")
    admin = create_user(db_session, organization, suffix="admin", role="ADMIN")
    pharmacist = create_user(db_session, organization, suffix="pharmacist", department=pharmacy)
    nurse = create_user(db_session, organization, suffix="nurse", department=ward)
    amoxicillin = create_product(db_session, organization, code="AMOX-500")
    paracetamol = create_product(db_session, organization, code="PARA-1G")
    return SimpleNamespace(
        db=db_session,
        organization=organization,
        pharmacy=pharmacy,
        ward=ward,
        admin=actor_for(admin),
        pharmacist=actor_for(pharmacist),
        nurse=actor_for(nurse),
        amoxicillin=amoxicillin,
        paracetamol=paracetamol,
        service=TransferWorkflowService(db_session),
    )


def _request(world, lines):
    return world.service.create_transfer(world.nurse, new_transfer(world.ward, world.pharmacy, lines))


def _item(transfer, line_number: int) -> TransferItem:
    return next(item for item in transfer.items if item.line_number == line_number)


def _approved(world, quantity: int = 10):
    transfer = _request(world, [(world.amoxicillin, quantity)])
    item = _item(transfer, 1)
    world.service.approve_item(world.pharmacist, item.id, quantity)
    return transfer.id, item.id


def test_create_transfer_builds_pending_aggregate(world):
    transfer = _request(world, [(world.amoxicillin, 10), (world.paracetamol, 5)])

    assert transfer.status is TransferStatus.PENDING
    assert re.fullmatch(r"REQ-\d{6}-0001", transfer.code)
    assert [(item.line_number, item.status, item.requested_quantity) for item in transfer.items] == [
        (1, ItemStatus.PENDING, 10),
        (2, ItemStatus.PENDING, 5),
    ]
    assert len(transfer.history) == 1
    created = transfer.history[0]
    assert created.action == "transfer.created"
    assert created.from_status is None
    assert created.to_status == "PENDING"
    assert created.actor_snapshot["username"] == "user-nurse"
    assert transfer.requested_by_snapshot["role"] == "MEMBER"


def test_transfer_codes_increment_within_month(world):
    first = _request(world, [(world.amoxicillin, 1)])
    second = _request(world, [(world.amoxicillin, 2)])

    assert first.code.endswith("-0001")
    assert second.code.endswith("-0002")
    assert first.code[:-5] == second.code[:-5]


@pytest.mark.parametrize(
    "build",
    [
        pytest.param(lambda w: new_transfer(w.ward, w.pharmacy, []), id="empty-items"),
        pytest.param(lambda w: new_transfer(w.ward, w.ward, [(w.amoxicillin, 3)]), id="same-department"),
        pytest.param(lambda w: new_transfer(w.ward, w.pharmacy, [(w.amoxicillin, 0)]), id="zero-quantity"),
        pytest.param(lambda w: new_transfer(w.ward, w.pharmacy, [(w.amoxicillin, -4)]), id="negative-quantity"),
        pytest.param(
            lambda w: new_transfer(w.ward, w.pharmacy, [(w.amoxicillin, 1), (w.amoxicillin, 2)]),
            id="duplicate-product",
        ),
        pytest.param(
            lambda w: NewTransfer(
                requesting_department_id=w.ward.id,
                supplying_department_id=uuid.uuid4(),
                title="Unknown supplier",
                lines=[TransferLine(product_id=w.amoxicillin.id, requested_quantity=1)],
            ),
            id="unknown-department",
        ),
        pytest.param(
            lambda w: NewTransfer(
                requesting_department_id=w.ward.id,
                supplying_department_id=w.pharmacy.id,
                title="Unknown product",
                lines=[TransferLine(product_id=uuid.uuid4(), requested_quantity=1)],
            ),
            id="unknown-product",
        ),
    ],
)
def test_invalid_creation_persists_nothing(world, build):
    with pytest.raises(InvalidTransferRequest):
        world.service.create_transfer(world.nurse, build(world))

    db = world.db
    assert db.scalar(select(func.count()).select_from(Transfer)) == 0
    assert db.scalar(select(func.count()).select_from(TransferItem)) == 0
    assert db.scalar(select(func.count()).select_from(TransferHistory)) == 0


def test_member_cannot_request_for_another_department(world):
    with pytest.raises(PermissionDenied):
        world.service.create_transfer(
            world.pharmacist, new_transfer(world.ward, world.pharmacy, [(world.amoxicillin, 1)])
        )


def test_two_item_transfer_completes_after_full_delivery(world):
    add_batch(world.db, world.organization, world.pharmacy, world.amoxicillin, lot="AMX-1", quantity=20, expiry=future(90))
    para_batch = add_batch(
        world.db, world.organization, world.pharmacy, world.paracetamol, lot="PAR-1", quantity=10, expiry=future(60)
    )
    transfer = _request(world, [(world.amoxicillin, 10), (world.paracetamol, 5)])
    transfer_id = transfer.id
    first, second = _item(transfer, 1).id, _item(transfer, 2).id

    item = world.service.approve_item(world.pharmacist, first, 8)
    assert item.status is ItemStatus.APPROVED
    assert world.service.get_transfer(world.admin, transfer_id).status is TransferStatus.PENDING

    world.service.approve_item(world.pharmacist, second, 5)
    assert world.service.get_transfer(world.admin, transfer_id).status is TransferStatus.APPROVED

    world.service.prepare_item(world.pharmacist, first, 8, auto_allocate=True)
    world.service.prepare_item(
        world.pharmacist, second, 5, batches=[AllocationRequest(batch_id=para_batch.id, quantity=5)]
    )
    assert world.service.get_transfer(world.admin, transfer_id).status is TransferStatus.PREPARED

    world.service.deliver_item(world.nurse, first, 8)
    assert world.service.get_transfer(world.admin, transfer_id).status is TransferStatus.PREPARED
    world.service.deliver_item(world.nurse, second, 5)

    transfer = world.service.get_transfer(world.admin, transfer_id)
    assert transfer.status is TransferStatus.COMPLETED
    assert transfer.approved_at is not None
    assert transfer.prepared_at is not None
    assert transfer.delivered_at is not None
    for item in transfer.items:
        assert item.received_quantity <= item.prepared_quantity <= item.approved_quantity <= item.requested_quantity
        assert sum(allocation.quantity for allocation in item.batches) == item.prepared_quantity
    assert [entry.sequence for entry in transfer.history] == list(range(1, 8))
    assert [entry.action for entry in transfer.history][-2:] == ["item.delivered", "item.delivered"]


def test_delivery_moves_stock_to_requesting_department(world):
    source = add_batch(
        world.db, world.organization, world.pharmacy, world.amoxicillin, lot="AMX-7", quantity=20, expiry=future(30)
    )
    transfer_id, item_id = _approved(world, 10)
    world.service.prepare_item(
        world.pharmacist, item_id, 10, batches=[AllocationRequest(batch_id=source.id, quantity=10)]
    )

    world.service.deliver_item(world.nurse, item_id, 7)

    world.db.refresh(source)
    assert (source.total_quantity, source.available_quantity, source.reserved_quantity) == (13, 13, 0)
    stock = StockRepository(world.db).get_stock(world.ward.id, world.amoxicillin.id)
    assert stock is not None
    [received] = stock.batches
    assert received.lot_number == "AMX-7"
    assert received.expiry_date == source.expiry_date
    assert (received.total_quantity, received.available_quantity) == (7, 7)
    transfer = world.service.get_transfer(world.admin, transfer_id)
    assert transfer.status is TransferStatus.COMPLETED
    assert _item(transfer, 1).received_quantity == 7


def test_approve_zero_quantity_keeps_item_pending(world):
    transfer = _request(world, [(world.amoxicillin, 10)])
    item_id = _item(transfer, 1).id

    with pytest.raises(QuantityOutOfRange):
        world.service.approve_item(world.pharmacist, item_id, 0)
    with pytest.raises(QuantityOutOfRange):
        world.service.approve_item(world.pharmacist, item_id, 11)

    item = world.db.get(TransferItem, item_id)
    world.db.refresh(item)
    assert item.status is ItemStatus.PENDING
    assert item.approved_quantity is None


def test_partial_approval_is_allowed(world):
    transfer = _request(world, [(world.amoxicillin, 10)])

    item = world.service.approve_item(world.pharmacist, _item(transfer, 1).id, 4, notes="short on stock")

    assert item.approved_quantity == 4
    assert item.notes == "short on stock"


def test_prepare_allocation_mismatch_touches_no_batches(world):
    first = add_batch(world.db, world.organization, world.pharmacy, world.amoxicillin, lot="A", quantity=20)
    second = add_batch(world.db, world.organization, world.pharmacy, world.amoxicillin, lot="B", quantity=20)
    _, item_id = _approved(world, 10)

    with pytest.raises(AllocationMismatch):
        world.service.prepare_item(
            world.pharmacist,
            item_id,
            10,
            batches=[
                AllocationRequest(batch_id=first.id, quantity=3),
                AllocationRequest(batch_id=second.id, quantity=4),
            ],
        )

    for batch in (first, second):
        world.db.refresh(batch)
        assert (batch.available_quantity, batch.reserved_quantity) == (20, 0)
    item = world.db.get(TransferItem, item_id)
    world.db.refresh(item)
    assert item.status is ItemStatus.APPROVED


def test_prepare_beyond_batch_availability_fails(world):
    batch = add_batch(world.db, world.organization, world.pharmacy, world.amoxicillin, lot="LOW", quantity=5)
    _, item_id = _approved(world, 8)

    with pytest.raises(InsufficientBatchStock):
        world.service.prepare_item(
            world.pharmacist, item_id, 8, batches=[AllocationRequest(batch_id=batch.id, quantity=8)]
        )

    world.db.refresh(batch)
    assert batch.available_quantity == 5


def test_prepare_rejects_unknown_batch_and_non_positive_lines(world):
    batch = add_batch(world.db, world.organization, world.pharmacy, world.amoxicillin, lot="X", quantity=5)
    _, item_id = _approved(world, 4)

    with pytest.raises(NotFound):
        world.service.prepare_item(
            world.pharmacist, item_id, 4, batches=[AllocationRequest(batch_id=uuid.uuid4(), quantity=4)]
        )
    with pytest.raises(QuantityOutOfRange):
        world.service.prepare_item(
            world.pharmacist,
            item_id,
            4,
            batches=[
                AllocationRequest(batch_id=batch.id, quantity=5),
                AllocationRequest(batch_id=batch.id, quantity=-1),
            ],
        )


def test_prepare_merges_repeated_batch_lines(world):
    batch = add_batch(world.db, world.organization, world.pharmacy, world.amoxicillin, lot="X", quantity=9)
    _, item_id = _approved(world, 5)

    item = world.service.prepare_item(
        world.pharmacist,
        item_id,
        5,
        batches=[
            AllocationRequest(batch_id=batch.id, quantity=2),
            AllocationRequest(batch_id=batch.id, quantity=3),
        ],
    )

    assert [(allocation.batch_id, allocation.quantity) for allocation in item.batches] == [(batch.id, 5)]
    world.db.refresh(batch)
    assert (batch.available_quantity, batch.reserved_quantity) == (4, 5)


def test_auto_allocation_picks_earliest_expiry_first(world):
    late = add_batch(world.db, world.organization, world.pharmacy, world.amoxicillin, lot="LATE", quantity=10, expiry=future(100))
    undated = add_batch(world.db, world.organization, world.pharmacy, world.amoxicillin, lot="UNDATED", quantity=10)
    expired = add_batch(world.db, world.organization, world.pharmacy, world.amoxicillin, lot="OLD", quantity=50, expiry=future(-1))
    early = add_batch(world.db, world.organization, world.pharmacy, world.amoxicillin, lot="EARLY", quantity=4, expiry=future(10))
    _, item_id = _approved(world, 12)

    item = world.service.prepare_item(world.pharmacist, item_id, 12, auto_allocate=True)

    assert [(allocation.lot_number, allocation.quantity) for allocation in item.batches] == [("EARLY", 4), ("LATE", 8)]
    for batch, available in ((early, 0), (late, 2), (undated, 10), (expired, 50)):
        world.db.refresh(batch)
        assert batch.available_quantity == available


def test_auto_allocation_without_enough_stock_reserves_nothing(world):
    batch = add_batch(world.db, world.organization, world.pharmacy, world.amoxicillin, lot="ONLY", quantity=3, expiry=future(5))
    _, item_id = _approved(world, 6)

    with pytest.raises(InsufficientBatchStock):
        world.service.prepare_item(world.pharmacist, item_id, 6, auto_allocate=True)

    world.db.refresh(batch)
    assert (batch.available_quantity, batch.reserved_quantity) == (3, 0)


def test_cancel_prepared_item_releases_allocation(world):
    batch = add_batch(world.db, world.organization, world.pharmacy, world.amoxicillin, lot="X", quantity=20)
    transfer_id, item_id = _approved(world, 5)
    world.service.prepare_item(world.pharmacist, item_id, 5, batches=[AllocationRequest(batch_id=batch.id, quantity=5)])
    world.db.refresh(batch)
    assert batch.available_quantity == 15

    item = world.service.cancel_item(world.nurse, item_id, "Patient discharged")

    assert item.status is ItemStatus.CANCELLED
    assert item.cancel_reason == "Patient discharged"
    world.db.refresh(batch)
    assert (batch.available_quantity, batch.reserved_quantity) == (20, 0)
    assert world.db.scalar(
        select(func.count()).select_from(TransferItemBatch).where(TransferItemBatch.transfer_item_id == item_id)
    ) == 0
    transfer = world.service.get_transfer(world.admin, transfer_id)
    assert transfer.status is TransferStatus.CANCELLED
    last = transfer.history[-1]
    assert (last.action, last.from_status, last.to_status) == ("item.cancelled", "PREPARED", "CANCELLED")


def test_terminal_items_reject_every_transition(world):
    batch = add_batch(world.db, world.organization, world.pharmacy, world.amoxicillin, lot="X", quantity=20)
    transfer_id, item_id = _approved(world, 5)
    world.service.prepare_item(world.pharmacist, item_id, 5, batches=[AllocationRequest(batch_id=batch.id, quantity=5)])
    world.service.deliver_item(world.nurse, item_id, 5)
    history_before = len(world.service.get_transfer(world.admin, transfer_id).history)

    attempts = [
        lambda: world.service.approve_item(world.admin, item_id, 1),
        lambda: world.service.prepare_item(world.admin, item_id, 1, auto_allocate=True),
        lambda: world.service.deliver_item(world.admin, item_id, 1),
        lambda: world.service.cancel_item(world.admin, item_id, "too late"),
    ]
    for attempt in attempts:
        with pytest.raises(InvalidTransition):
            attempt()

    transfer = world.service.get_transfer(world.admin, transfer_id)
    item = _item(transfer, 1)
    assert item.status is ItemStatus.DELIVERED
    assert (item.approved_quantity, item.prepared_quantity, item.received_quantity) == (5, 5, 5)
    assert item.cancel_reason is None
    assert len(transfer.history) == history_before


def test_delivered_and_cancelled_mix_is_partial(world):
    batch = add_batch(world.db, world.organization, world.pharmacy, world.amoxicillin, lot="X", quantity=20)
    transfer = _request(world, [(world.amoxicillin, 5), (world.paracetamol, 5)])
    transfer_id = transfer.id
    first, second = _item(transfer, 1).id, _item(transfer, 2).id

    world.service.approve_item(world.pharmacist, first, 5)
    world.service.prepare_item(world.pharmacist, first, 5, batches=[AllocationRequest(batch_id=batch.id, quantity=5)])
    world.service.deliver_item(world.nurse, first, 5)
    world.service.cancel_item(world.pharmacist, second, "Not stocked")

    assert world.service.get_transfer(world.admin, transfer_id).status is TransferStatus.PARTIAL


def test_scope_rules_for_item_actions(world):
    transfer = _request(world, [(world.amoxicillin, 5)])
    item_id = _item(transfer, 1).id

    with pytest.raises(PermissionDenied):
        world.service.approve_item(world.nurse, item_id, 5)
    world.service.approve_item(world.admin, item_id, 5)

    with pytest.raises(NotFound):
        world.service.approve_item(world.admin, uuid.uuid4(), 5)
    with pytest.raises(NotFound):
        world.service.cancel_item(world.admin, item_id, "wrong transfer", transfer_id=uuid.uuid4())


def test_cancel_transfer_cancels_open_items_only(world):
    batch = add_batch(world.db, world.organization, world.pharmacy, world.amoxicillin, lot="X", quantity=20)
    transfer = _request(world, [(world.amoxicillin, 5), (world.paracetamol, 5)])
    transfer_id = transfer.id
    first, second = _item(transfer, 1).id, _item(transfer, 2).id
    world.service.approve_item(world.pharmacist, first, 5)
    world.service.prepare_item(world.pharmacist, first, 5, batches=[AllocationRequest(batch_id=batch.id, quantity=5)])

    with pytest.raises(PermissionDenied):
        world.service.cancel_transfer(world.pharmacist, transfer_id, "no longer needed")

    transfer = world.service.cancel_transfer(world.admin, transfer_id, "no longer needed")

    assert transfer.status is TransferStatus.CANCELLED
    assert transfer.cancel_reason == "no longer needed"
    assert transfer.cancelled_at is not None
    assert {item.status for item in transfer.items} == {ItemStatus.CANCELLED}
    assert [entry.action for entry in transfer.history][-3:] == ["item.cancelled", "item.cancelled", "transfer.cancelled"]
    world.db.refresh(batch)
    assert (batch.available_quantity, batch.reserved_quantity) == (20, 0)

    with pytest.raises(InvalidTransition):
        world.service.cancel_transfer(world.admin, transfer_id, "again")
    assert second in {item.id for item in transfer.items}


def test_stale_item_status_loses_the_race(world):
    from app.medstock.db.session import SessionLocal

    transfer = _request(world, [(world.amoxicillin, 5)])
    item_id = _item(transfer, 1).id

    other = SessionLocal()
    try:
        stale = other.get(TransferItem, item_id)
        assert stale.status is ItemStatus.PENDING
        world.service.approve_item(world.pharmacist, item_id, 5)

        with pytest.raises(InvalidTransition):
            TransferWorkflowService(other)._claim(stale, ItemStatus.PENDING, ItemStatus.CANCELLED, datetime.utcnow())
    finally:
        other.close()

    item = world.db.get(TransferItem, item_id)
    world.db.refresh(item)
    assert item.status is ItemStatus.APPROVED


def test_concurrent_preparations_cannot_overdraw_a_batch(world):
    from app.medstock.db.session import SessionLocal

    batch = add_batch(world.db, world.organization, world.pharmacy, world.amoxicillin, lot="SHARED", quantity=20)
    _, first = _approved(world, 15)
    _, second = _approved(world, 10)

    other = SessionLocal()
    try:
        assert other.get(StockBatch, batch.id).available_quantity == 20
        world.service.prepare_item(
            world.pharmacist, first, 15, batches=[AllocationRequest(batch_id=batch.id, quantity=15)]
        )

        with pytest.raises(InsufficientBatchStock):
            TransferWorkflowService(other).prepare_item(
                world.pharmacist, second, 10, batches=[AllocationRequest(batch_id=batch.id, quantity=10)]
            )
    finally:
        other.close()

    world.db.refresh(batch)
    assert (batch.available_quantity, batch.reserved_quantity) == (5, 15)
    assert allocated_to_prepared_items(world.db, batch.id) == batch.reserved_quantity


def test_most_advanced_policy_reports_the_leading_item(world):
    service = TransferWorkflowService(world.db, status_policy="most_advanced")
    transfer = service.create_transfer(
        world.nurse, new_transfer(world.ward, world.pharmacy, [(world.amoxicillin, 5), (world.paracetamol, 5)])
    )

    service.approve_item(world.pharmacist, _item(transfer, 1).id, 5)

    assert service.get_transfer(world.admin, transfer.id).status is TransferStatus.APPROVED


@pytest.mark.parametrize("quantity", [0, -2, 11], ids=["zero", "negative", "above-approved"])
def test_prepare_quantity_must_fit_the_approval(world, quantity):
    batch = add_batch(world.db, world.organization, world.pharmacy, world.amoxicillin, lot="X", quantity=50)
    _, item_id = _approved(world, 10)

    with pytest.raises(QuantityOutOfRange):
        world.service.prepare_item(
            world.pharmacist, item_id, quantity, batches=[AllocationRequest(batch_id=batch.id, quantity=quantity)]
        )

    item = world.db.get(TransferItem, item_id)
    world.db.refresh(item)
    assert item.status is ItemStatus.APPROVED
    assert item.prepared_quantity is None
    assert item.batches == []
    world.db.refresh(batch)
    assert (batch.available_quantity, batch.reserved_quantity) == (50, 0)


@pytest.mark.parametrize("quantity", [0, -1, 7], ids=["zero", "negative", "above-prepared"])
def test_deliver_quantity_must_fit_the_preparation(world, quantity):
    batch = add_batch(world.db, world.organization, world.pharmacy, world.amoxicillin, lot="X", quantity=50)
    _, item_id = _approved(world, 10)
    world.service.prepare_item(world.pharmacist, item_id, 6, batches=[AllocationRequest(batch_id=batch.id, quantity=6)])

    with pytest.raises(QuantityOutOfRange):
        world.service.deliver_item(world.nurse, item_id, quantity)

    item = world.db.get(TransferItem, item_id)
    world.db.refresh(item)
    assert item.status is ItemStatus.PREPARED
    assert item.received_quantity is None
    assert [(allocation.batch_id, allocation.quantity) for allocation in item.batches] == [(batch.id, 6)]
    world.db.refresh(batch)
    assert (batch.total_quantity, batch.available_quantity, batch.reserved_quantity) == (50, 44, 6)
    assert StockRepository(world.db).get_stock(world.ward.id, world.amoxicillin.id) is None


def test_fully_shipped_batch_is_depleted(world):
    batch = add_batch(world.db, world.organization, world.pharmacy, world.amoxicillin, lot="LAST", quantity=5)
    _, item_id = _approved(world, 5)
    world.service.prepare_item(world.pharmacist, item_id, 5, batches=[AllocationRequest(batch_id=batch.id, quantity=5)])

    world.service.deliver_item(world.nurse, item_id, 5)

    world.db.refresh(batch)
    assert (batch.total_quantity, batch.available_quantity, batch.reserved_quantity) == (0, 0, 0)
    assert batch.status is BatchStatus.DEPLETED
    received = StockRepository(world.db).get_stock(world.ward.id, world.amoxicillin.id).batches
    assert [(row.lot_number, row.status) for row in received] == [("LAST", BatchStatus.AVAILABLE)]


def test_partly_shipped_batch_stays_available(world):
    batch = add_batch(world.db, world.organization, world.pharmacy, world.amoxicillin, lot="MANY", quantity=8)
    _, item_id = _approved(world, 5)
    world.service.prepare_item(world.pharmacist, item_id, 5, batches=[AllocationRequest(batch_id=batch.id, quantity=5)])

    world.service.deliver_item(world.nurse, item_id, 5)

    world.db.refresh(batch)
    assert batch.total_quantity == 3
    assert batch.status is BatchStatus.AVAILABLE


@pytest.mark.parametrize("withdraw", ["deactivate", "quarantine"])
def test_withdrawn_lots_are_not_allocated(world, withdraw):
    withdrawn = add_batch(
        world.db, world.organization, world.pharmacy, world.amoxicillin, lot="RECALLED", quantity=10, expiry=future(5)
    )
    usable = add_batch(
        world.db, world.organization, world.pharmacy, world.amoxicillin, lot="GOOD", quantity=10, expiry=future(200)
    )
    inventory = InventoryService(world.db)
    if withdraw == "deactivate":
        inventory.deactivate_batch(world.organization.id, world.pharmacy.id, withdrawn.id)
    else:
        inventory.update_batch(world.organization.id, world.pharmacy.id, withdrawn.id, {"status": BatchStatus.QUARANTINED})
    _, explicit_item = _approved(world, 4)
    _, fefo_item = _approved(world, 4)

    with pytest.raises(NotFound):
        world.service.prepare_item(
            world.pharmacist, explicit_item, 4, batches=[AllocationRequest(batch_id=withdrawn.id, quantity=4)]
        )
    item = world.service.prepare_item(world.pharmacist, fefo_item, 4, auto_allocate=True)

    assert [(allocation.lot_number, allocation.quantity) for allocation in item.batches] == [("GOOD", 4)]
    world.db.refresh(withdrawn)
    world.db.refresh(usable)
    assert (withdrawn.available_quantity, withdrawn.reserved_quantity) == (10, 0)
    assert (usable.available_quantity, usable.reserved_quantity) == (6, 4)


def test_batch_backing_a_prepared_item_cannot_be_removed(world):
    batch = add_batch(world.db, world.organization, world.pharmacy, world.amoxicillin, lot="HELD", quantity=10)
    _, item_id = _approved(world, 4)
    world.service.prepare_item(world.pharmacist, item_id, 4, batches=[AllocationRequest(batch_id=batch.id, quantity=4)])
    inventory = InventoryService(world.db)

    with pytest.raises(AppError) as excinfo:
        inventory.deactivate_batch(world.organization.id, world.pharmacy.id, batch.id)
    assert excinfo.value.error is ErrorCatalog.BATCH_RESERVED
    with pytest.raises(AppError) as excinfo:
        inventory.update_batch(world.organization.id, world.pharmacy.id, batch.id, {"quantity": 3})
    assert excinfo.value.error is ErrorCatalog.VALIDATION_ERROR

    world.db.refresh(batch)
    assert batch.is_active is True
    assert (batch.total_quantity, batch.available_quantity, batch.reserved_quantity) == (10, 6, 4)
    assert allocated_to_prepared_items(world.db, batch.id) == 4
