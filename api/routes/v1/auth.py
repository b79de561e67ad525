"""
api/routes/v1/auth.py -- Registration, session and password-reset endpoints.

Routes:
  POST /api/v1/auth/register          -- create unverified account; emails OTP; 201
  POST /api/v1/auth/verify-email      -- confirm account with OTP
  POST /api/v1/auth/resend-otp        -- new verification OTP (silent for unknown emails)
  POST /api/v1/auth/login             -- tokens in body; refresh token also as cookie
  POST /api/v1/auth/refresh-token     -- new access token from refresh cookie or body
  POST /api/v1/auth/logout            -- clears the refresh cookie
  POST /api/v1/auth/forgot-password   -- emails reset OTP (same answer for any email)
  POST /api/v1/auth/verify-otp        -- trades reset OTP for a reset token
  POST /api/v1/auth/reset-password    -- sets new password; reset token as Bearer

Security:
  [H2] login/refresh use AUTH_LIMIT; anything that sends mail or checks an
       OTP uses SENSITIVE_LIMIT. Everything else falls under the default.
  [M5] Cache-Control: no-store on every response that carries a token.
  [M6] forgot-password answers identically whether or not the email exists.
  The reset token is read from the Authorization header only, never from a
  cookie, so a browser cannot be tricked into submitting one.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import AUTH_LIMIT, SENSITIVE_LIMIT, limiter
from api.models import (
    AccessTokenResponse,
    EmailRequest,
    LoginRequest,
    LoginResponse,
    OtpRequest,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    ResetTokenResponse,
    UserResponse,
)
from api.responses import send_response
from auth.dependencies import bearer_token
from auth.service import AuthService
from auth.tokens import REFRESH_COOKIE, clear_refresh_cookie, set_refresh_cookie
from core.errors import MissingTokenError

# Auth policy: every route here is public. reset-password authenticates with
# the reset token via bearer_token(), not with a session.
router = APIRouter()

FORGOT_PASSWORD_MESSAGE = "If an account exists for this email, a reset code has been sent."
RESEND_OTP_MESSAGE = "If the account is pending verification, a new code has been sent."


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Registration and verification
# ---------------------------------------------------------------------------


@limiter.limit(SENSITIVE_LIMIT)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/register", status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an unverified account and email it a 6-digit code.

    If the email cannot be delivered the account is rolled back and the
    client gets 502 email_delivery_failed, so it can simply retry.
    """
    user = _service(request).register(
        first_name=body.first_name,
        last_name=body.last_name,
        email=body.email,
        password=body.password,
        avatar=str(body.avatar) if body.avatar else None,
    )
    return send_response(
        201,
        "User registered successfully. Please check your email for OTP.",
        UserResponse.from_domain(user),
    )


@limiter.limit(SENSITIVE_LIMIT)
@router.post("/auth/verify-email")
def verify_email(request: Request, body: OtpRequest) -> JSONResponse:
    _service(request).verify_email(body.email, body.otp)
    return send_response(200, "Email verified successfully. You can now login.")


@limiter.limit(SENSITIVE_LIMIT)
@router.post("/auth/resend-otp")
def resend_otp(request: Request, body: EmailRequest) -> JSONResponse:
    _service(request).resend_verification(body.email)
    return send_response(200, RESEND_OTP_MESSAGE)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@limiter.limit(AUTH_LIMIT)  # [H2]
@router.post("/auth/login")
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Returns both tokens in the body and also sets the refresh token as an
    httpOnly cookie for browser clients.
    """
    result = _service(request).login(body.email, body.password)
    settings = request.app.state.settings
    resp = send_response(200, "User logged in successfully", LoginResponse.from_domain(result))
    set_refresh_cookie(
        resp,
        result.refresh_token,
        max_age=result.meta.refresh_expires_in,
        secure=settings.secure_cookies,
    )
    return _no_store(resp)


@limiter.limit(AUTH_LIMIT)
@router.post("/auth/refresh-token")
def refresh_token(request: Request, body: RefreshRequest | None = None) -> JSONResponse:
    """Issue a new access token. The refreshToken cookie takes precedence over the body."""
    token = request.cookies.get(REFRESH_COOKIE) or (body.refresh_token if body else None)
    if not token:
        raise MissingTokenError.at("refreshToken", "Refresh token is required")
    result = _service(request).refresh(token)
    resp = send_response(200, "Access token refreshed successfully", AccessTokenResponse.from_domain(result))
    return _no_store(resp)


@router.post("/auth/logout")
def logout(request: Request) -> JSONResponse:
    """Clear the refresh cookie. Tokens are stateless, so nothing is revoked server-side."""
    resp = send_response(200, "Logged out successfully")
    clear_refresh_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@limiter.limit(SENSITIVE_LIMIT)
@router.post("/auth/forgot-password")
def forgot_password(request: Request, body: EmailRequest) -> JSONResponse:
    """Send a reset code if the account exists. [M6]"""
    _service(request).forgot_password(body.email)
    return send_response(200, FORGOT_PASSWORD_MESSAGE)


@limiter.limit(SENSITIVE_LIMIT)
@router.post("/auth/verify-otp")
def verify_otp(request: Request, body: OtpRequest) -> JSONResponse:
    reset_token = _service(request).verify_otp(body.email, body.otp)
    resp = send_response(200, "OTP verified successfully", ResetTokenResponse(reset_token=reset_token))
    return _no_store(resp)


@limiter.limit(SENSITIVE_LIMIT)
@router.post("/auth/reset-password")
def reset_password(
    request: Request,
    body: ResetPasswordRequest,
    token: str = Depends(bearer_token),
) -> JSONResponse:
    _service(request).reset_password(token, body.new_password)
    return send_response(200, "Password reset successfully")
