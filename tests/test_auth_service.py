"""
tests/test_auth_service.py -- Tests for the AuthService flows (auth/service.py).

Covers:
  - register: persisted unverified, exactly one OTP email, all-or-nothing on delivery failure
  - verify_email: succeeds iff code matches and is unexpired; clears OTP, sets is_verified;
    already-verified accounts are refused without touching a pending reset code
  - resend_verification: fresh code for pending accounts, silent otherwise
  - login: NotFound vs EmailNotVerified vs BadCredentials; token claims
  - refresh: new access token reflects the current role
  - forgot_password: silent for unknown emails, no rollback on delivery failure
  - verify_otp / reset_password: reset token flow, purpose check, single use
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from jose import jwt

from auth.models import Role
from core.errors import (
    BadCredentialsError,
    ConflictError,
    EmailDeliveryFailedError,
    EmailNotVerifiedError,
    InvalidOrExpiredOtpError,
    InvalidOtpError,
    NotFoundError,
    OtpExpiredError,
    TokenInvalidError,
    TokenInvalidPurposeError,
)

EMAIL = "a@x.com"
PASSWORD = "Pass1234!"


def _register(service, email: str = EMAIL, password: str = PASSWORD):
    return service.register(first_name="Ada", last_name="Lovelace", email=email, password=password)


def _register_and_verify(service, mailer, email: str = EMAIL, password: str = PASSWORD):
    _register(service, email, password)
    service.verify_email(email, mailer.last_to(email).code)


class TestRegister:
    """AuthService.register()."""

    def test_persists_unverified_user_and_sends_one_email(self, auth_service, store, mailer):
        user = _register(auth_service)

        stored = store.find_by_email(EMAIL, include_secrets=True)
        assert stored.id == user.id
        assert stored.is_verified is False
        assert stored.role == Role.USER
        assert stored.password != PASSWORD
        assert stored.otp is not None
        assert len(mailer.sent) == 1
        assert mailer.sent[0].to == EMAIL
        assert stored.otp == mailer.sent[0].code

    def test_public_user_has_no_secrets(self, auth_service):
        user = _register(auth_service)
        assert not hasattr(user, "password")
        assert not hasattr(user, "otp")

    def test_duplicate_email_conflicts(self, auth_service, mailer):
        _register(auth_service)
        with pytest.raises(ConflictError):
            _register(auth_service, email="A@X.com")
        assert len(mailer.sent) == 1

    def test_delivery_failure_removes_user(self, auth_service, store, mailer):
        mailer.fail = True
        with pytest.raises(EmailDeliveryFailedError):
            _register(auth_service)
        assert store.find_by_email(EMAIL) is None

    def test_sender_exception_removes_user(self, auth_service, store, mailer):
        mailer.error = RuntimeError("smtp exploded")
        with pytest.raises(RuntimeError):
            _register(auth_service)
        assert store.find_by_email(EMAIL) is None

    def test_can_register_again_after_failed_delivery(self, auth_service, store, mailer):
        mailer.fail = True
        with pytest.raises(EmailDeliveryFailedError):
            _register(auth_service)
        mailer.fail = False
        _register(auth_service)
        assert store.find_by_email(EMAIL) is not None


class TestVerifyEmail:
    """AuthService.verify_email()."""

    def test_success_verifies_and_clears_otp(self, auth_service, store, mailer):
        _register(auth_service)
        auth_service.verify_email(EMAIL, mailer.last_to(EMAIL).code)

        stored = store.find_by_email(EMAIL, include_secrets=True)
        assert stored.is_verified is True
        assert stored.otp is None
        assert stored.otp_expires is None

    def test_wrong_code(self, auth_service, store, mailer):
        _register(auth_service)
        code = mailer.last_to(EMAIL).code
        wrong = "000000" if code != "000000" else "111111"
        with pytest.raises(InvalidOtpError):
            auth_service.verify_email(EMAIL, wrong)
        assert store.find_by_email(EMAIL).is_verified is False

    def test_expired_code_is_expired_not_invalid(self, auth_service, store, mailer, clock):
        _register(auth_service)
        code = mailer.last_to(EMAIL).code
        clock.advance(minutes=10, seconds=1)
        with pytest.raises(OtpExpiredError):
            auth_service.verify_email(EMAIL, code)
        assert store.find_by_email(EMAIL).is_verified is False

    def test_unknown_email(self, auth_service):
        with pytest.raises(NotFoundError):
            auth_service.verify_email("ghost@x.com", "123456")

    def test_code_cannot_be_reused(self, auth_service, mailer):
        _register(auth_service)
        code = mailer.last_to(EMAIL).code
        auth_service.verify_email(EMAIL, code)
        with pytest.raises(ConflictError):
            auth_service.verify_email(EMAIL, code)

    def test_verified_account_keeps_reset_code(self, auth_service, store, mailer):
        _register_and_verify(auth_service, mailer)
        auth_service.forgot_password(EMAIL)
        reset_code = mailer.last_to(EMAIL).code
        token = auth_service.verify_otp(EMAIL, reset_code)

        with pytest.raises(ConflictError):
            auth_service.verify_email(EMAIL, reset_code)

        assert store.find_by_email(EMAIL, include_secrets=True).otp == reset_code
        auth_service.reset_password(token, "N3w-password!")
        assert auth_service.login(EMAIL, "N3w-password!").access_token


class TestResendVerification:
    """AuthService.resend_verification()."""

    def test_pending_account_gets_new_code(self, auth_service, store, mailer):
        _register(auth_service)
        auth_service.resend_verification(EMAIL)

        assert len(mailer.sent) == 2
        assert mailer.sent[1].subject != mailer.sent[0].subject
        assert store.find_by_email(EMAIL, include_secrets=True).otp == mailer.sent[1].code

    def test_unknown_email_is_silent(self, auth_service, mailer):
        auth_service.resend_verification("ghost@x.com")
        assert mailer.sent == []

    def test_verified_account_is_silent(self, auth_service, mailer):
        _register_and_verify(auth_service, mailer)
        auth_service.resend_verification(EMAIL)
        assert len(mailer.sent) == 1


class TestLogin:
    """AuthService.login() outcomes are distinguishable."""

    def test_full_scenario_returns_user_role_token(self, auth_service, mailer, tokens):
        _register_and_verify(auth_service, mailer)
        result = auth_service.login(EMAIL, PASSWORD)

        claims = tokens.verify_access_token(result.access_token)
        assert claims.role == Role.USER
        assert claims.email == EMAIL
        assert tokens.verify_refresh_token(result.refresh_token).user_id == result.user.id
        assert result.meta.token_type == "Bearer"

    def test_unknown_email_is_not_found(self, auth_service):
        with pytest.raises(NotFoundError):
            auth_service.login("ghost@x.com", PASSWORD)

    def test_unverified_account_with_right_password(self, auth_service):
        _register(auth_service)
        with pytest.raises(EmailNotVerifiedError) as exc_info:
            auth_service.login(EMAIL, PASSWORD)
        assert exc_info.value.status_code == 401

    def test_verified_account_with_wrong_password(self, auth_service, mailer):
        _register_and_verify(auth_service, mailer)
        with pytest.raises(BadCredentialsError) as exc_info:
            auth_service.login(EMAIL, "wrong-password")
        assert exc_info.value.status_code == 401

    def test_email_is_case_insensitive(self, auth_service, mailer):
        _register_and_verify(auth_service, mailer)
        assert auth_service.login("A@X.COM", PASSWORD).user.email == EMAIL


class TestRefresh:
    """AuthService.refresh()."""

    def test_new_access_token_carries_current_role(self, auth_service, store, mailer, tokens):
        _register_and_verify(auth_service, mailer)
        login = auth_service.login(EMAIL, PASSWORD)
        store.update_by_id(login.user.id, role=Role.ADMIN)

        result = auth_service.refresh(login.refresh_token)
        assert tokens.verify_access_token(result.access_token).role == Role.ADMIN

    def test_access_token_cannot_refresh(self, auth_service, mailer):
        _register_and_verify(auth_service, mailer)
        login = auth_service.login(EMAIL, PASSWORD)
        with pytest.raises(TokenInvalidError):
            auth_service.refresh(login.access_token)

    def test_deleted_user_cannot_refresh(self, auth_service, store, mailer):
        _register_and_verify(auth_service, mailer)
        login = auth_service.login(EMAIL, PASSWORD)
        store.delete(login.user.id)
        with pytest.raises(TokenInvalidError):
            auth_service.refresh(login.refresh_token)


class TestForgotPassword:
    """AuthService.forgot_password() information hiding."""

    def test_unknown_email_has_no_side_effects(self, auth_service, store, mailer):
        assert auth_service.forgot_password("ghost@x.com") is None
        assert mailer.sent == []
        assert store.find_by_email("ghost@x.com") is None

    def test_known_email_gets_reset_code(self, auth_service, store, mailer):
        _register_and_verify(auth_service, mailer)
        auth_service.forgot_password(EMAIL)

        message = mailer.last_to(EMAIL)
        assert "reset" in message.subject.lower()
        assert store.find_by_email(EMAIL, include_secrets=True).otp == message.code

    def test_delivery_failure_keeps_account(self, auth_service, store, mailer):
        _register_and_verify(auth_service, mailer)
        mailer.fail = True
        with pytest.raises(EmailDeliveryFailedError):
            auth_service.forgot_password(EMAIL)
        assert store.find_by_email(EMAIL).is_verified is True


class TestPasswordReset:
    """verify_otp() and reset_password()."""

    def _reset_token(self, service, mailer) -> str:
        service.forgot_password(EMAIL)
        return service.verify_otp(EMAIL, mailer.last_to(EMAIL).code)

    def test_round_trip_new_password_works_old_fails(self, auth_service, mailer):
        _register_and_verify(auth_service, mailer)
        token = self._reset_token(auth_service, mailer)

        auth_service.reset_password(token, "N3w-password!")

        assert auth_service.login(EMAIL, "N3w-password!").access_token
        with pytest.raises(BadCredentialsError):
            auth_service.login(EMAIL, PASSWORD)

    def test_reset_clears_otp_and_keeps_verification(self, auth_service, store, mailer):
        _register_and_verify(auth_service, mailer)
        auth_service.reset_password(self._reset_token(auth_service, mailer), "N3w-password!")

        stored = store.find_by_email(EMAIL, include_secrets=True)
        assert stored.otp is None
        assert stored.is_verified is True

    def test_verify_otp_leaves_code_in_place(self, auth_service, store, mailer):
        _register_and_verify(auth_service, mailer)
        self._reset_token(auth_service, mailer)
        assert store.find_by_email(EMAIL, include_secrets=True).otp is not None

    def test_reset_token_is_single_use(self, auth_service, mailer):
        _register_and_verify(auth_service, mailer)
        token = self._reset_token(auth_service, mailer)
        auth_service.reset_password(token, "N3w-password!")
        with pytest.raises(TokenInvalidError):
            auth_service.reset_password(token, "Another-pass1")

    @pytest.mark.parametrize("case", ["unknown_email", "wrong_code", "expired"])
    def test_verify_otp_failures_are_indistinguishable(self, case, auth_service, mailer, clock):
        _register_and_verify(auth_service, mailer)
        auth_service.forgot_password(EMAIL)
        code = mailer.last_to(EMAIL).code
        email = EMAIL
        if case == "unknown_email":
            email = "ghost@x.com"
        elif case == "wrong_code":
            code = "000000" if code != "000000" else "111111"
        else:
            clock.advance(minutes=11)

        with pytest.raises(InvalidOrExpiredOtpError) as exc_info:
            auth_service.verify_otp(email, code)
        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "Invalid or expired OTP"

    def test_access_token_rejected_for_reset(self, auth_service, mailer):
        _register_and_verify(auth_service, mailer)
        access = auth_service.login(EMAIL, PASSWORD).access_token
        with pytest.raises(TokenInvalidPurposeError):
            auth_service.reset_password(access, "N3w-password!")

    def test_token_without_purpose_rejected(self, auth_service, mailer, settings):
        _register_and_verify(auth_service, mailer)
        token = self._reset_token(auth_service, mailer)
        payload = jwt.get_unverified_claims(token)
        del payload["purpose"]
        tampered = jwt.encode(payload, settings.effective_reset_secret, algorithm="HS256")

        with pytest.raises(TokenInvalidPurposeError):
            auth_service.reset_password(tampered, "N3w-password!")

    def test_deleted_account(self, auth_service, store, mailer):
        _register_and_verify(auth_service, mailer)
        token = self._reset_token(auth_service, mailer)
        store.delete(store.find_by_email(EMAIL).id)
        with pytest.raises(NotFoundError):
            auth_service.reset_password(token, "N3w-password!")


def test_otp_expiry_window_is_ten_minutes(auth_service, store, mailer, clock):
    _register(auth_service)
    stored = store.find_by_email(EMAIL, include_secrets=True)
    assert stored.otp_expires - clock.now == timedelta(minutes=10)
