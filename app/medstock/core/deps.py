from fastapi import Depends, Request
from jose import JWTError
from pydantic import ValidationError

from app.medstock.core.context import Actor, RequestContext, build_request_context, get_request_context
from app.medstock.core.enums import OrgRole
from app.medstock.core.error_catalog import AppError, ErrorCatalog
from app.medstock.core.security import TokenData, decode_token, oauth2_scheme
from app.medstock.db.session import get_db
from app.medstock.repos.users import UserRepository


def get_current_token_data(token: str = Depends(oauth2_scheme)) -> TokenData:
    try:
        payload = decode_token(token)
        return TokenData(**payload)
    except (JWTError, ValidationError, TypeError) as exc:
        raise AppError(ErrorCatalog.INVALID_TOKEN) from exc


def get_current_user(token_data: TokenData = Depends(get_current_token_data), db=Depends(get_db)):
    user_id = token_data.sub
    if not user_id:
        raise AppError(ErrorCatalog.INVALID_TOKEN)

    user = UserRepository(db).get_by_id_in_organization(user_id, token_data.organization_id)
    if user is None:
        raise AppError(ErrorCatalog.INVALID_TOKEN)
    return user


def require_active_user(user=Depends(get_current_user)):
    if not user.is_active or user.status != "active":
        raise AppError(ErrorCatalog.USER_INACTIVE)
    return user


def require_request_context(
    request: Request,
    token_data: TokenData = Depends(get_current_token_data),
) -> RequestContext:
    context = build_request_context(
        user_id=token_data.sub,
        organization_id=token_data.organization_id,
        department_id=token_data.department_id,
        role=token_data.role,
        trace_id=getattr(request.state, "trace_id", ""),
    )
    request.state.context = context
    return context


def get_actor(
    user=Depends(require_active_user),
    context: RequestContext = Depends(require_request_context),
) -> Actor:
    """The acting user as seen by the workflow; role and department come from the database, not the token."""
    return Actor.from_user(user)


def require_org_role(*roles: OrgRole):
    allowed = frozenset(roles)

    def dependency(actor: Actor = Depends(get_actor)) -> Actor:
        if actor.role not in allowed:
            raise AppError(ErrorCatalog.PERMISSION_DENIED)
        return actor

    return dependency


__all__ = [
    "get_current_token_data",
    "get_current_user",
    "require_active_user",
    "require_request_context",
    "get_request_context",
    "get_actor",
    "require_org_role",
]
