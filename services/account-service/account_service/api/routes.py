"""HTTP route definitions for the account service."""

from __future__ import annotations

import logging

from account_schemas import AccountView, UserInfo
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field

from ..config import get_settings
from ..domain.account import Account
from ..domain.contracts import CreateAccountInput
from ..domain.errors import AccountError, StorageUnavailable
from ..domain.result import Err
from ..domain.service import AccountService
from ..localization import Localizer
from ..security.sessions import Session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/user")

settings = get_settings()


class CreateAccountRequest(BaseModel):
    """Payload accepted when registering an account."""

    user_name: str = Field(..., min_length=1, max_length=256)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)


class ConfirmEmailRequest(BaseModel):
    """Account id and token taken from the confirmation link."""

    id: str = Field(..., min_length=1)
    token: str = Field(..., min_length=1)


class LogInRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


class SetPasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1, max_length=128)
    new_password: str = Field(..., min_length=6, max_length=128)


def account_view(account: Account) -> AccountView:
    """Build a response model from the domain aggregate."""
    return AccountView(
        account_id=account.account_id,
        user_name=account.user_name,
        email=account.email,
        email_confirmed=account.email_confirmed,
        created_at=account.created_at,
    )


def get_service(request: Request) -> AccountService:
    """Resolve the `AccountService` stored on the FastAPI application state."""
    service: AccountService = request.app.state.account_service
    return service


def get_localizer(request: Request) -> Localizer:
    localizer: Localizer = request.app.state.localizer
    return localizer


def get_session_evidence(request: Request) -> str | None:
    """Extract the session cookie value, if the client sent one."""
    return request.cookies.get(settings.session_cookie_name)


def require_session(
    evidence: str | None = Depends(get_session_evidence),
    service: AccountService = Depends(get_service),
    localizer: Localizer = Depends(get_localizer),
) -> Session:
    """Reject anonymous callers before the handler runs."""
    session = service.sessions.resolve(evidence)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=localizer[AccountError.UNAUTHENTICATED.value],
        )
    return session


def _attach_session(response: Response, session: Session) -> None:
    response.set_cookie(
        settings.session_cookie_name,
        session.session_id,
        max_age=settings.session_ttl_seconds,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )


def _detach_session(response: Response) -> None:
    response.delete_cookie(settings.session_cookie_name)


def _http_error(error: AccountError, localizer: Localizer) -> HTTPException:
    status_code = status.HTTP_400_BAD_REQUEST
    if error is AccountError.UNAUTHENTICATED:
        status_code = status.HTTP_401_UNAUTHORIZED
    return HTTPException(status_code=status_code, detail=localizer[error.value])


@router.post("/create", response_model=AccountView)
def create_account(
    response: Response,
    payload: CreateAccountRequest,
    service: AccountService = Depends(get_service),
    localizer: Localizer = Depends(get_localizer),
) -> AccountView:
    """Register an account and log it in."""
    result = service.create(
        CreateAccountInput(user_name=payload.user_name, email=payload.email, password=payload.password)
    )
    if isinstance(result, Err):
        raise _http_error(result.error, localizer)
    _attach_session(response, result.value.session)
    return account_view(result.value.account)


@router.post("/confirm-email", response_model=AccountView)
def confirm_email(
    response: Response,
    payload: ConfirmEmailRequest,
    service: AccountService = Depends(get_service),
    localizer: Localizer = Depends(get_localizer),
) -> AccountView:
    """Confirm an email address and log the account in."""
    result = service.confirm_email(payload.id, payload.token)
    if isinstance(result, Err):
        raise _http_error(result.error, localizer)
    _attach_session(response, result.value.session)
    return account_view(result.value.account)


@router.get("/info", response_model=UserInfo)
def get_user_info(
    response: Response,
    evidence: str | None = Depends(get_session_evidence),
    service: AccountService = Depends(get_service),
) -> UserInfo:
    """Describe the caller; stale sessions are cleared as a side effect."""
    current = service.get_current_user(evidence).value
    if evidence and not current.is_authenticated:
        _detach_session(response)
    return UserInfo(
        exposed_claims=dict(current.claims),
        is_authenticated=current.is_authenticated,
        current_user=account_view(current.account) if current.account else None,
    )


@router.post("/log-in", status_code=status.HTTP_204_NO_CONTENT)
def log_in(
    response: Response,
    payload: LogInRequest,
    service: AccountService = Depends(get_service),
    localizer: Localizer = Depends(get_localizer),
) -> None:
    result = service.log_in(payload.email, payload.password)
    if isinstance(result, Err):
        raise _http_error(result.error, localizer)
    _attach_session(response, result.value.session)


@router.delete("/log-out", status_code=status.HTTP_204_NO_CONTENT)
def log_out(
    response: Response,
    session: Session = Depends(require_session),
    service: AccountService = Depends(get_service),
) -> None:
    service.log_out(session.session_id)
    _detach_session(response)


@router.put("/password", status_code=status.HTTP_204_NO_CONTENT)
def set_password(
    payload: SetPasswordRequest,
    session: Session = Depends(require_session),
    service: AccountService = Depends(get_service),
    localizer: Localizer = Depends(get_localizer),
) -> None:
    """Change the caller's password; the current session stays active."""
    result = service.set_password(session.session_id, payload.current_password, payload.new_password)
    if isinstance(result, Err):
        raise _http_error(result.error, localizer)


def register_exception_handlers(app: FastAPI) -> None:
    """Map storage outages to 503 responses."""

    @app.exception_handler(StorageUnavailable)
    async def storage_unavailable(request: Request, exc: StorageUnavailable) -> JSONResponse:
        logger.error("storage unavailable while serving %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "storage unavailable"},
        )
