"""
api/routes/v1/auth.py -- Authentication and session REST endpoints.

Routes:
  POST /api/v1/auth/register            -- create a password account
  POST /api/v1/auth/login               -- password login; fills the session cookie
  POST /api/v1/auth/refresh             -- new access token from a refresh token
  POST /api/v1/auth/logout              -- clear server slots and the session cookie
  GET  /api/v1/auth/check               -- {"authenticated": bool}, never 401
  GET  /api/v1/auth/me                  -- current user info (requires auth)
  POST /api/v1/auth/email/verification  -- email a verification code (requires auth)
  POST /api/v1/auth/email/verify        -- spend a verification code (requires auth)
  POST /api/v1/auth/password/forgot     -- email a reset code (public)
  POST /api/v1/auth/password/reset      -- spend a reset code, set new password (public)
  GET  /api/v1/auth/tenants             -- tenants of the current user (requires auth)
  POST /api/v1/auth/tenants/active      -- switch the session's tenant (requires auth)

Security:
  [H2] POST /login, /email/verification and /password/forgot are rate-limited per IP.
  [C1] Wrong email and wrong password produce the same 401 body.
  [M5] Cache-Control: no-store on responses that carry tokens.
  Unknown and expired codes produce the same 400 body; /password/forgot answers
  202 whether or not the email exists.

Handlers are plain def so argon2 work runs in the threadpool, not on the event loop.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_limit, otp_request_limit
from api.models import (
    CheckResponse,
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    ResetPasswordRequest,
    SwitchTenantRequest,
    TenantResponse,
    UserInfo,
    VerifyEmailRequest,
)
from auth.dependencies import get_current_session, get_facade, store_session, try_get_session
from auth.errors import AuthFailure
from auth.models import ClientSession
from core.config import Settings

# Auth policy:
# - register, login, refresh, check, password/forgot, password/reset: public
# - logout, me, email/*, tenants*: require an authenticated session
router = APIRouter()

# Generic messages per failure code. Client-facing codes only; internal ones
# have already been collapsed by Outcome.public() in the facade.
_FAILURES: dict[AuthFailure, tuple[int, str, str]] = {
    AuthFailure.INVALID_CREDENTIALS: (401, "bad_credentials", "Invalid email or password."),
    AuthFailure.ACCOUNT_HAS_NO_PASSWORD: (
        400,
        "no_password",
        "This account signs in through an external provider.",
    ),
    AuthFailure.TOKEN_EXPIRED: (401, "unauthorized", "Authentication required."),
    AuthFailure.TOKEN_INVALID: (401, "unauthorized", "Authentication required."),
    AuthFailure.OTP_NOT_FOUND_OR_EXPIRED: (400, "invalid_code", "The code is invalid or has expired."),
    AuthFailure.ACCOUNT_NOT_FOUND: (404, "not_found", "Account not found."),
    AuthFailure.EMAIL_TAKEN: (409, "conflict", "An account with that email already exists."),
    AuthFailure.EMAIL_ALREADY_VERIFIED: (409, "already_verified", "Email address is already verified."),
    AuthFailure.TENANT_NOT_FOUND: (404, "not_found", "Tenant not found."),
}


def _failure(error: AuthFailure) -> HTTPException:
    status, code, message = _FAILURES.get(error, (400, "bad_request", "Request could not be completed."))
    return HTTPException(status_code=status, detail={"code": code, "message": message})


def _settings(request: Request) -> Settings:
    return request.app.state.settings


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=MeResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> MeResponse:
    """Create a password account. Disabled when SELF_REGISTRATION_ENABLED=false."""
    if not _settings(request).self_registration_enabled:
        raise HTTPException(
            status_code=403,
            detail={"code": "registration_disabled", "message": "Self-registration is disabled."},
        )
    outcome = get_facade(request).register(body.email, body.password, body.first_name, body.last_name)
    if not outcome.ok:
        raise _failure(outcome.error)
    return MeResponse.from_user(outcome.value)


@limiter.limit(login_limit)  # [H2] brute-force mitigation -- must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; fill the session cookie.

    One facade call does lookup and verification together, and every failure
    up to the password check returns the same "bad_credentials" body.
    """
    outcome = get_facade(request).login(body.email, body.password)
    if not outcome.ok:
        status, code, message = _FAILURES[outcome.error]
        resp = JSONResponse(status_code=status, content={"error": {"code": code, "message": message}})
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    result = outcome.value
    store_session(request, result.session)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            expires_in=_settings(request).access_token_ttl_seconds,
            user=UserInfo(display_name=result.user.display_name),
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/refresh", response_model=RefreshResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange the current refresh token for a new access token.

    A refresh token superseded by a newer login is rejected with 401.
    """
    outcome = get_facade(request).refresh(body.refresh_token)
    if not outcome.ok:
        raise _failure(outcome.error)
    store_session(request, outcome.value)
    resp = JSONResponse(
        content=RefreshResponse(
            access_token=outcome.value.access_token,
            expires_in=_settings(request).access_token_ttl_seconds,
        ).model_dump()
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.get("/auth/check", response_model=CheckResponse)
def check(request: Request) -> CheckResponse:
    """Report whether the session cookie is authenticated, refreshing it if needed."""
    return CheckResponse(authenticated=try_get_session(request) is not None)


@limiter.limit(otp_request_limit)  # [H2]
@router.post("/auth/password/forgot", response_model=MessageResponse, status_code=202)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    """Email a reset code if the account exists. Same response either way."""
    get_facade(request).request_password_reset(body.email)
    return MessageResponse(message="If that account exists, a reset code has been sent.")


@router.post("/auth/password/reset", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    """Spend a reset code and set a new password. All existing sessions end."""
    outcome = get_facade(request).reset_password(body.user_id, body.token, body.new_password)
    if not outcome.ok:
        raise _failure(outcome.error)
    request.session.clear()
    return MessageResponse(message="Password updated. Please sign in again.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, session: ClientSession = Depends(get_current_session)) -> MessageResponse:
    """Clear the user's server-side token slots and the session cookie."""
    outcome = get_facade(request).logout(session.subject_handle)
    request.session.clear()
    if not outcome.ok:
        raise _failure(outcome.error)
    return MessageResponse(message="Logged out.")


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, session: ClientSession = Depends(get_current_session)) -> MeResponse:
    """Return identity information for the currently authenticated user."""
    user = get_facade(request).current_user(session)
    if user is None:
        raise _failure(AuthFailure.TOKEN_INVALID)
    return MeResponse.from_user(user)


@limiter.limit(otp_request_limit)  # [H2]
@router.post("/auth/email/verification", response_model=MessageResponse, status_code=202)
def request_email_verification(
    request: Request, session: ClientSession = Depends(get_current_session)
) -> MessageResponse:
    """Email a verification code to the current user's address."""
    outcome = get_facade(request).request_email_verification(session.subject_handle)
    if not outcome.ok:
        raise _failure(outcome.error)
    return MessageResponse(message="Verification code sent.")


@router.post("/auth/email/verify", response_model=MessageResponse)
def verify_email(
    request: Request, body: VerifyEmailRequest, session: ClientSession = Depends(get_current_session)
) -> MessageResponse:
    outcome = get_facade(request).verify_email(session.subject_handle, body.token)
    if not outcome.ok:
        raise _failure(outcome.error)
    return MessageResponse(message="Email address verified.")


@router.get("/auth/tenants", response_model=list[TenantResponse])
def list_tenants(request: Request, session: ClientSession = Depends(get_current_session)) -> list[TenantResponse]:
    tenants = get_facade(request).tenants_of(session.subject_handle)
    return [TenantResponse.from_tenant(t, session.tenant_id) for t in tenants]


@router.post("/auth/tenants/active", response_model=MessageResponse)
def switch_tenant(
    request: Request, body: SwitchTenantRequest, session: ClientSession = Depends(get_current_session)
) -> MessageResponse:
    """Attach a tenant the user belongs to as the session's active tenant."""
    outcome = get_facade(request).switch_tenant(session, body.tenant_id)
    if not outcome.ok:
        raise _failure(outcome.error)
    store_session(request, session)
    return MessageResponse(message="Active tenant updated.")
