"""Derivation of a transfer's overall status from its item statuses."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from enum import Enum

from app.medstock.core.enums import ItemStatus, TransferStatus

# Non-terminal item states, least advanced first.
IN_PROGRESS_ORDER = (ItemStatus.PENDING, ItemStatus.APPROVED, ItemStatus.PREPARED)

_PHASE_TIMESTAMPS = {
    TransferStatus.PENDING: (),
    TransferStatus.APPROVED: ("approved_at",),
    TransferStatus.PREPARED: ("approved_at", "prepared_at"),
    TransferStatus.DELIVERED: ("approved_at", "prepared_at", "delivered_at"),
    TransferStatus.COMPLETED: ("approved_at", "prepared_at", "delivered_at"),
    TransferStatus.PARTIAL: ("approved_at", "prepared_at", "delivered_at"),
    TransferStatus.CANCELLED: ("cancelled_at",),
}


class StatusPolicy(str, Enum):
    """How an in-progress transfer is summarised when its open items disagree."""

    LEAST_ADVANCED = "least_advanced"
    MOST_ADVANCED = "most_advanced"


def aggregate_status(
    statuses: Iterable[ItemStatus | str],
    policy: StatusPolicy | str = StatusPolicy.LEAST_ADVANCED,
) -> TransferStatus:
    """Compute the transfer status for a multiset of item statuses.

    The result depends only on which statuses are present, never on the order
    items were processed in:

    * any open item (PENDING/APPROVED/PREPARED) -> the least advanced open
      state, or the most advanced one under ``MOST_ADVANCED``;
    * only DELIVERED -> COMPLETED;
    * only CANCELLED -> CANCELLED;
    * DELIVERED and CANCELLED -> PARTIAL.
    """
    policy = StatusPolicy(policy)
    present = {ItemStatus(status) for status in statuses}
    if not present:
        return TransferStatus.PENDING

    open_states = [state for state in IN_PROGRESS_ORDER if state in present]
    if open_states:
        chosen = open_states[0] if policy is StatusPolicy.LEAST_ADVANCED else open_states[-1]
        return TransferStatus(chosen.value)

    if present == {ItemStatus.DELIVERED}:
        return TransferStatus.COMPLETED
    if present == {ItemStatus.CANCELLED}:
        return TransferStatus.CANCELLED
    return TransferStatus.PARTIAL


def stamp_phase_timestamps(transfer, status: TransferStatus, now: datetime) -> None:
    for attribute in _PHASE_TIMESTAMPS[status]:
        if getattr(transfer, attribute) is None:
            setattr(transfer, attribute, now)
