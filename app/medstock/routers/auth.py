from urllib.parse import parse_qs

from fastapi import APIRouter, Depends, Request

from app.medstock.core.deps import require_active_user
from app.medstock.core.error_catalog import AppError
from app.medstock.db.session import get_db
from app.medstock.repos.users import UserRepository
from app.medstock.schemas.auth import LoginRequest, TokenResponse, UserResponse
from app.medstock.services.audit import AuditEventPayload, AuditService
from app.medstock.services.auth import AuthService

router = APIRouter()


def _record_login(db, user, *, identifier: str, trace_id: str, result: str, error_code: str | None = None) -> None:
    AuditService(db).record_event(
        AuditEventPayload(
            organization_id=str(user.organization_id),
            user_id=str(user.id),
            department_id=str(user.department_id) if user.department_id else None,
            trace_id=trace_id or None,
            actor=identifier,
            action="auth.login" if result == "success" else "auth.login.failed",
            entity_type="user",
            entity_id=str(user.id),
            before=None,
            after=None,
            metadata={"error_code": error_code} if error_code else None,
            result=result,
            actor_role=user.role,
        )
    )


@router.post(
    "/login",
    response_model=TokenResponse,
    summary="Login (JSON)",
    description="Login with email or username_or_email and receive a bearer token.",
)
def login(request: Request, payload: LoginRequest, db=Depends(get_db)):
    identifier = payload.email or payload.username_or_email
    trace_id = getattr(request.state, "trace_id", "")
    try:
        user, token = AuthService(db).login(identifier, payload.password)
    except AppError as exc:
        candidates = UserRepository(db).list_by_username_or_email(identifier)
        if candidates:
            _record_login(
                db,
                candidates[0],
                identifier=identifier,
                trace_id=trace_id,
                result="failure",
                error_code=exc.error.code,
            )
        raise

    _record_login(db, user, identifier=user.username, trace_id=trace_id, result="success")
    return TokenResponse(access_token=token, trace_id=trace_id)


@router.post(
    "/token",
    summary="OAuth2 token",
    description="Password flow for the interactive docs, using form-data username/password.",
)
async def oauth2_token(request: Request, db=Depends(get_db)):
    form_data = parse_qs((await request.body()).decode())
    username = (form_data.get("username") or [""])[0]
    password = (form_data.get("password") or [""])[0]
    _, token = AuthService(db).login(username, password)
    return {"access_token": token, "token_type": "bearer"}


@router.get("/me", response_model=UserResponse)
def me(request: Request, current_user=Depends(require_active_user)):
    return UserResponse(
        id=str(current_user.id),
        organization_id=str(current_user.organization_id),
        department_id=str(current_user.department_id) if current_user.department_id else None,
        username=current_user.username,
        email=current_user.email,
        first_name=current_user.first_name,
        last_name=current_user.last_name,
        role=current_user.role,
        status=current_user.status,
        is_active=current_user.is_active,
        trace_id=getattr(request.state, "trace_id", ""),
    )
