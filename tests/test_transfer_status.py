from itertools import permutations
from types import SimpleNamespace
from datetime import datetime

import pytest

from app.medstock.core.enums import ItemStatus, TransferStatus
from app.medstock.services.transfer_status import StatusPolicy, aggregate_status, stamp_phase_timestamps

P, A, R, D, C = (
    ItemStatus.PENDING,
    ItemStatus.APPROVED,
    ItemStatus.PREPARED,
    ItemStatus.DELIVERED,
    ItemStatus.CANCELLED,
)


@pytest.mark.parametrize(
    "statuses,expected",
    [
        ([], TransferStatus.PENDING),
        ([P, P], TransferStatus.PENDING),
        ([A, P], TransferStatus.PENDING),
        ([A, A], TransferStatus.APPROVED),
        ([R, A], TransferStatus.APPROVED),
        ([R, R], TransferStatus.PREPARED),
        ([D, R], TransferStatus.PREPARED),
        ([C, A], TransferStatus.APPROVED),
        ([D, D], TransferStatus.COMPLETED),
        ([C, C], TransferStatus.CANCELLED),
        ([D, C], TransferStatus.PARTIAL),
        ([D, C, C], TransferStatus.PARTIAL),
    ],
)
def test_least_advanced_policy(statuses, expected):
    assert aggregate_status(statuses) is expected


@pytest.mark.parametrize(
    "statuses,expected",
    [
        ([A, P], TransferStatus.APPROVED),
        ([R, P, A], TransferStatus.PREPARED),
        ([D, P], TransferStatus.PENDING),
        ([D, D], TransferStatus.COMPLETED),
        ([D, C], TransferStatus.PARTIAL),
    ],
)
def test_most_advanced_policy(statuses, expected):
    assert aggregate_status(statuses, StatusPolicy.MOST_ADVANCED) is expected


def test_status_ignores_item_order():
    statuses = [P, A, R, D, C]
    for policy in StatusPolicy:
        results = {aggregate_status(order, policy) for order in permutations(statuses)}
        assert len(results) == 1


def test_status_accepts_raw_values():
    assert aggregate_status(["DELIVERED", "DELIVERED"], "least_advanced") is TransferStatus.COMPLETED


def test_unknown_policy_is_rejected():
    with pytest.raises(ValueError):
        aggregate_status([P], "newest")


def test_phase_timestamps_are_stamped_once():
    first = datetime(2024, 3, 1, 8, 0)
    later = datetime(2024, 3, 2, 8, 0)
    transfer = SimpleNamespace(approved_at=None, prepared_at=None, delivered_at=None, cancelled_at=None)

    stamp_phase_timestamps(transfer, TransferStatus.APPROVED, first)
    stamp_phase_timestamps(transfer, TransferStatus.PREPARED, later)

    assert transfer.approved_at == first
    assert transfer.prepared_at == later
    assert transfer.delivered_at is None
    assert transfer.cancelled_at is None
