"""
auth/service.py -- Registration, verification, login and password-reset flows.

AuthService composes the credential store, password hasher, OTP engine,
token issuer and email sender. Every collaborator is injected, so the whole
flow runs in tests without a network or a real mail server.

Account states:
    Unregistered --register--> PendingVerification --verify_email--> Verified

Password reset (forgot_password -> verify_otp -> reset_password) is a side
channel: it never changes is_verified.

Information hiding:
  forgot_password() and resend_verification() succeed silently for unknown
  emails, and verify_otp() folds "no such user", "wrong code" and "expired
  code" into one InvalidOrExpiredOtpError, so neither flow can be used to
  test whether an email is registered. login() deliberately does tell
  NotFoundError apart from BadCredentialsError.

Layer rule: no imports from api/. Email goes through the EmailSender
protocol and the mailer templates.
"""

from __future__ import annotations

import logging

from auth.hashing import BcryptHasher
from auth.models import AccessResult, LoginResult, PublicUser, Role, TokenClaims, User
from auth.otp import OtpEngine
from auth.store import UserStore
from auth.tokens import TokenIssuer
from core.config import Settings
from core.errors import (
    BadCredentialsError,
    ConflictError,
    EmailDeliveryFailedError,
    EmailNotVerifiedError,
    ErrorSource,
    InvalidOrExpiredOtpError,
    NotFoundError,
    TokenInvalidError,
)
from mailer import EmailSender, SendResult, render_template

logger = logging.getLogger("authstarter.auth.service")


def _user_not_found() -> NotFoundError:
    return NotFoundError("User not found", [ErrorSource("email", "No account associated with this email")])


class AuthService:
    """Use cases of the authentication flow. Construct once at startup."""

    def __init__(
        self,
        store: UserStore,
        hasher: BcryptHasher,
        otp: OtpEngine,
        tokens: TokenIssuer,
        mailer: EmailSender,
        settings: Settings,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.otp = otp
        self.tokens = tokens
        self.mailer = mailer
        self.settings = settings

    # ------------------------------------------------------------------
    # Registration and email verification
    # ------------------------------------------------------------------

    def register(
        self,
        first_name: str,
        last_name: str,
        email: str,
        password: str,
        avatar: str | None = None,
    ) -> PublicUser:
        """Create an unverified account and email it a verification code.

        All-or-nothing: if the code cannot be issued or the email cannot be
        delivered, the new record is deleted before the error propagates, so
        the same email can register again right away.

        Raises:
            ConflictError:            the email is already registered.
            EmailDeliveryFailedError: the verification email was not delivered.
        """
        if self.store.find_by_email(email) is not None:
            raise ConflictError(
                "User already exists",
                [ErrorSource("email", "An account with this email already exists")],
            )

        user = self.store.create(
            User(
                email=email,
                first_name=first_name,
                last_name=last_name,
                role=Role.USER,
                password=self.hasher.hash(password),
                is_verified=False,
                avatar=avatar,
            )
        )

        try:
            code = self.otp.issue(user)
            result = self._send_code(user, code, "otp")
        except Exception:
            self.store.delete(user.id)
            raise

        if not result.success:
            self.store.delete(user.id)
            logger.warning("Registration rolled back for user_id=%s: verification email failed", user.id)
            raise EmailDeliveryFailedError("Email delivery failed. Try again.")

        logger.info("User registered: user_id=%s", user.id)
        return user.public()

    def verify_email(self, email: str, otp: str) -> None:
        """Mark the account verified if otp matches its active, unexpired code.

        Raises:
            NotFoundError:   no account for email.
            ConflictError:   the account is already verified. Its active code, if
                             any, belongs to a password reset and is left alone.
            InvalidOtpError: no active code, or a different one.
            OtpExpiredError: right code, but past its expiry.
        """
        user = self.store.find_by_email(email, include_secrets=True)
        if user is None:
            raise _user_not_found()

        if user.is_verified:
            raise ConflictError.at("email", "Email is already verified")

        self.otp.verify(user, otp)

        self.store.update_by_id(user.id, is_verified=True, otp=None, otp_expires=None)
        logger.info("Email verified: user_id=%s", user.id)

    def resend_verification(self, email: str) -> None:
        """Send a fresh verification code to a pending account.

        Unknown and already-verified emails return silently.
        """
        user = self.store.find_by_email(email)
        if user is None or user.is_verified:
            return

        code = self.otp.issue(user)
        if not self._send_code(user, code, "resend_otp").success:
            raise EmailDeliveryFailedError("Failed to send email")

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> LoginResult:
        """Check credentials and issue an access + refresh token pair.

        Raises:
            NotFoundError:         no account for email.
            EmailNotVerifiedError: the account has not been verified yet.
            BadCredentialsError:   the password does not match.
        """
        user = self.store.find_by_email(email, include_secrets=True)
        if user is None:
            raise _user_not_found()

        if not user.is_verified:
            raise EmailNotVerifiedError.at("email", "Please verify your email before logging in")

        if not self.hasher.compare(password, user.password):
            raise BadCredentialsError.at("password", "Incorrect password")

        claims = TokenClaims(user_id=user.id, email=user.email, role=user.role)
        logger.info("User logged in: user_id=%s", user.id)
        return LoginResult(
            access_token=self.tokens.issue_access_token(claims),
            refresh_token=self.tokens.issue_refresh_token(claims),
            meta=self.tokens.token_meta(),
            user=user.public(),
        )

    def refresh(self, refresh_token: str) -> AccessResult:
        """Exchange a refresh token for a new access token.

        The access token carries the user's current email and role, not the
        ones frozen into the refresh token. Refresh tokens are not rotated.
        """
        claims = self.tokens.verify_refresh_token(refresh_token)
        user = self.store.find_by_id(claims.user_id)
        if user is None:
            raise TokenInvalidError.at("authorization", "User no longer exists")
        if not user.is_verified:
            raise EmailNotVerifiedError.at("email", "Please verify your email before logging in")

        fresh = TokenClaims(user_id=user.id, email=user.email, role=user.role)
        return AccessResult(access_token=self.tokens.issue_access_token(fresh), meta=self.tokens.token_meta())

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def forgot_password(self, email: str) -> None:
        """Email a password-reset code to the account, if there is one.

        Unknown emails return silently with no side effects. A delivery
        failure raises but leaves the freshly issued code in place.
        """
        user = self.store.find_by_email(email)
        if user is None:
            logger.debug("forgot_password for unknown email ignored")
            return

        code = self.otp.issue(user)
        if not self._send_code(user, code, "password_reset").success:
            raise EmailDeliveryFailedError("Failed to send email")
        logger.info("Password reset code sent: user_id=%s", user.id)

    def verify_otp(self, email: str, otp: str) -> str:
        """Trade a valid reset code for a short-lived reset token.

        The code stays active until reset_password() consumes it.

        Raises:
            InvalidOrExpiredOtpError: unknown email, wrong code or expired code.
        """
        user = self.store.find_by_email_and_otp(email, otp.strip(), self.otp.clock())
        if user is None:
            raise InvalidOrExpiredOtpError.at("otp", "Invalid or expired OTP")
        return self.tokens.issue_reset_token(user.email, user.role)

    def reset_password(self, reset_token: str, new_password: str) -> None:
        """Set a new password for the account named by a reset token.

        The reset code that verify_otp() left in place is consumed here, and
        a token is only accepted while a code is active. A second use of the
        same token therefore fails until the next forgot_password().

        Raises:
            TokenExpiredError / TokenInvalidError: the token is unusable or already used (401).
            TokenInvalidPurposeError:              not a reset token (403).
            NotFoundError:                         the account is gone.
        """
        claims = self.tokens.verify_reset_token(reset_token)

        user = self.store.find_by_email(claims.email, include_secrets=True)
        if user is None:
            raise NotFoundError("User not found")
        if user.otp is None:
            raise TokenInvalidError.at("authorization", "Reset token has already been used")

        self.store.update_by_id(user.id, password=self.hasher.hash(new_password), otp=None, otp_expires=None)
        logger.info("Password reset: user_id=%s", user.id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _send_code(self, user: User, code: str, template: str) -> SendResult:
        rendered = render_template(
            template,
            app_name=self.settings.app_name,
            otp=code,
            expires_in_minutes=self.otp.expire_minutes,
            recipient_name=user.first_name,
            support_email=self.settings.support_email or None,
        )
        return self.mailer.send(user.email, rendered.subject, rendered.html, rendered.text)
