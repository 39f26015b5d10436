from enum import Enum


class OrgRole(str, Enum):
    MEMBER = "MEMBER"
    ADMIN = "ADMIN"
    OWNER = "OWNER"


class TransferPriority(str, Enum):
    NORMAL = "NORMAL"
    URGENT = "URGENT"
    CRITICAL = "CRITICAL"


class ItemStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    PREPARED = "PREPARED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (ItemStatus.DELIVERED, ItemStatus.CANCELLED)


class TransferStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    PREPARED = "PREPARED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    PARTIAL = "PARTIAL"
    COMPLETED = "COMPLETED"


class BatchStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    QUARANTINED = "QUARANTINED"
    DEPLETED = "DEPLETED"


ADMIN_ROLES = frozenset({OrgRole.ADMIN, OrgRole.OWNER})
