from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from fastapi import Request

from app.medstock.core.enums import ADMIN_ROLES, OrgRole


@dataclass(frozen=True)
class RequestContext:
    user_id: str | None
    organization_id: str | None
    department_id: str | None
    role: str | None
    trace_id: str


def build_request_context(
    *,
    user_id: str | None,
    organization_id: str | None,
    department_id: str | None,
    role: str | None,
    trace_id: str,
) -> RequestContext:
    return RequestContext(
        user_id=user_id,
        organization_id=organization_id,
        department_id=department_id,
        role=role,
        trace_id=trace_id,
    )


def get_request_context(request: Request) -> RequestContext:
    context = getattr(request.state, "context", None)
    if isinstance(context, RequestContext):
        return context
    return build_request_context(
        user_id=getattr(request.state, "user_id", None),
        organization_id=getattr(request.state, "organization_id", None),
        department_id=getattr(request.state, "department_id", None),
        role=getattr(request.state, "role", None),
        trace_id=getattr(request.state, "trace_id", ""),
    )


@dataclass(frozen=True)
class Actor:
    """Who is acting, resolved once per request.

    ``snapshot()`` is the point-in-time copy written next to history and audit
    rows; it is never re-resolved from the user table afterwards.
    """

    user_id: str
    organization_id: str
    role: OrgRole
    username: str
    display_name: str
    department_id: str | None = None
    captured_at: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def from_user(cls, user) -> Actor:
        full_name = " ".join(part for part in (user.first_name, user.last_name) if part)
        return cls(
            user_id=str(user.id),
            organization_id=str(user.organization_id),
            role=OrgRole(user.role),
            username=user.username,
            display_name=full_name or user.username,
            department_id=str(user.department_id) if user.department_id else None,
        )

    @property
    def is_org_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    def can_act_for(self, department_id) -> bool:
        if self.is_org_admin:
            return True
        return self.department_id is not None and self.department_id == str(department_id)

    def snapshot(self) -> dict:
        return {
            "user_id": self.user_id,
            "username": self.username,
            "name": self.display_name,
            "role": self.role.value,
            "department_id": self.department_id,
            "captured_at": self.captured_at.isoformat(),
        }
