"""
Workflow tests for AuthService against a fresh SQLite store with a frozen
clock, a deterministic OTP code and an in-memory notifier.
"""
import asyncio
import datetime as dt

import pytest

from storefront.core.errors import AppError, ErrorKind, MSG_DUPLICATE_ACCOUNT
from storefront.core.security import TokenType, hash_token, verify_password
from storefront.models.otp import OtpVerification
from storefront.models.refresh_token import RefreshToken
from storefront.models.user import Role, User
from storefront.schemas.auth import SignupRequest
from storefront.services import auth as auth_service_module
from storefront.services.notifier import TemplateKind


pytestmark = pytest.mark.asyncio

FIXED_OTP = "123456"
WRONG_OTP = "654321"
PASSWORD = "Sup3rSecret!"


def _signup(email: str = "jane.doe@mail.com") -> SignupRequest:
    return SignupRequest(firstName="Jane", lastName="Doe", email=email, password=PASSWORD)


async def _verified(auth_service, email: str = "jane.doe@mail.com"):
    await auth_service.signup(_signup(email))
    return await auth_service.verify_email(email, FIXED_OTP)


async def _raises(kind: ErrorKind, awaitable) -> AppError:
    with pytest.raises(AppError) as exc:
        await awaitable
    assert exc.value.kind is kind, exc.value
    return exc.value


async def _lock_after_lookup(monkeypatch, email: str, now: dt.datetime) -> None:
    """Lock the account but hand the workflow the row as it was read just before."""
    stale = await User.get(email=email)
    await User.filter(id=stale.id).update(
        failed_otp_attempts=10,
        account_locked_until=now + dt.timedelta(minutes=60),
    )

    async def lookup(_email):
        return stale

    monkeypatch.setattr(auth_service_module, "find_active_by_email", lookup)


class TestSignup:

    async def test_creates_unverified_user_and_sends_code(self, db, auth_service, notifier, frozen_clock):
        result = await auth_service.signup(_signup())

        user = await User.get(email="jane.doe@mail.com")
        assert result.userId == user.public_id
        assert user.public_id.startswith("USR-")
        assert user.username == "jane.doe"
        assert user.email_verified is False
        assert user.role == Role.USER
        assert verify_password(PASSWORD, user.password_hash)
        assert notifier.kinds_for(user.email) == [TemplateKind.VERIFICATION_OTP]
        assert notifier.sent[0][2]["otp"] == FIXED_OTP

    async def test_duplicate_email(self, db, auth_service, frozen_clock):
        await auth_service.signup(_signup())
        await _raises(ErrorKind.DUPLICATE_RESOURCE, auth_service.signup(_signup()))

    async def test_email_pending_deletion(self, create_user, auth_service, frozen_clock):
        user, _ = await create_user(email="gone@mail.com")
        await User.filter(id=user.id).update(is_deleted=True)

        err = await _raises(ErrorKind.DUPLICATE_RESOURCE, auth_service.signup(_signup("gone@mail.com")))
        assert "scheduled for deletion" in err.message

    async def test_username_collision_gets_suffix(self, db, auth_service, frozen_clock):
        await auth_service.signup(_signup("sam@mail.com"))
        await auth_service.signup(_signup("sam@other.com"))
        await auth_service.signup(_signup("sam@third.com"))

        usernames = await User.all().order_by("id").values_list("username", flat=True)
        assert usernames == ["sam", "sam1", "sam2"]

    async def test_username_race_is_retried(self, create_user, auth_service, frozen_clock, monkeypatch):
        taken, _ = await create_user()
        names = iter([taken.username, "jane_fresh"])

        async def derive(_email):
            return next(names)

        monkeypatch.setattr(auth_service_module, "derive_username", derive)
        await auth_service.signup(_signup())
        assert (await User.get(email="jane.doe@mail.com")).username == "jane_fresh"

    async def test_username_race_is_not_reported_as_email_taken(self, create_user, auth_service, frozen_clock,
                                                               monkeypatch):
        taken, _ = await create_user()

        async def derive(_email):
            return taken.username

        monkeypatch.setattr(auth_service_module, "derive_username", derive)
        err = await _raises(ErrorKind.DUPLICATE_RESOURCE, auth_service.signup(_signup()))
        assert err.message == MSG_DUPLICATE_ACCOUNT
        assert not await User.filter(email="jane.doe@mail.com").exists()

    async def test_admin_role(self, db, auth_service, frozen_clock):
        await auth_service.signup(_signup(), role=Role.ADMIN)
        assert (await User.get(email="jane.doe@mail.com")).role == Role.ADMIN


class TestVerifyEmail:

    async def test_success_signs_in(self, db, auth_service, notifier, frozen_clock):
        session = await _verified(auth_service)

        user = await User.get(email="jane.doe@mail.com")
        assert user.email_verified is True
        assert session.user.emailVerified is True
        assert session.tokenType == "Bearer"
        assert session.expiresIn == 15 * 60
        claims = auth_service.tokens.verify(session.accessToken, expected_type=TokenType.ACCESS)
        assert claims.user_id == user.id
        assert await RefreshToken.filter(token_hash=hash_token(session.refreshToken)).exists()
        assert TemplateKind.WELCOME in notifier.kinds_for(user.email)

    async def test_wrong_code_counts_toward_lock(self, db, auth_service, frozen_clock):
        await auth_service.signup(_signup())
        await _raises(ErrorKind.INVALID_OTP, auth_service.verify_email("jane.doe@mail.com", WRONG_OTP))

        user = await User.get(email="jane.doe@mail.com")
        assert user.failed_otp_attempts == 1

    async def test_expired_code_does_not_count(self, db, auth_service, frozen_clock):
        await auth_service.signup(_signup())
        frozen_clock.advance(minutes=6)
        await _raises(ErrorKind.OTP_EXPIRED, auth_service.verify_email("jane.doe@mail.com", FIXED_OTP))

        user = await User.get(email="jane.doe@mail.com")
        assert user.failed_otp_attempts == 0

    async def test_unknown_email(self, db, auth_service, frozen_clock):
        await _raises(ErrorKind.NOT_FOUND, auth_service.verify_email("nobody@mail.com", FIXED_OTP))

    async def test_tenth_failure_locks_account(self, db, auth_service, frozen_clock):
        email = "jane.doe@mail.com"
        await auth_service.signup(_signup(email))
        for _ in range(5):
            await _raises(ErrorKind.INVALID_OTP, auth_service.verify_email(email, WRONG_OTP))
        await _raises(ErrorKind.MAX_OTP_ATTEMPTS_EXCEEDED, auth_service.verify_email(email, WRONG_OTP))

        frozen_clock.advance(seconds=61)
        await auth_service.resend_otp(email)
        for _ in range(4):
            await _raises(ErrorKind.INVALID_OTP, auth_service.verify_email(email, WRONG_OTP))
        err = await _raises(ErrorKind.ACCOUNT_LOCKED, auth_service.verify_email(email, WRONG_OTP))
        assert err.retry_after == 3600

        # Correct code is refused while locked
        await _raises(ErrorKind.ACCOUNT_LOCKED, auth_service.verify_email(email, FIXED_OTP))
        await _raises(ErrorKind.ACCOUNT_LOCKED, auth_service.login(email, PASSWORD))

        frozen_clock.advance(minutes=61)
        await _raises(ErrorKind.EMAIL_NOT_VERIFIED, auth_service.login(email, PASSWORD))

    async def test_lock_set_after_the_lookup_refuses_correct_code(self, db, auth_service, frozen_clock, monkeypatch):
        email = "jane.doe@mail.com"
        await auth_service.signup(_signup(email))
        await _lock_after_lookup(monkeypatch, email, frozen_clock.now)

        await _raises(ErrorKind.ACCOUNT_LOCKED, auth_service.verify_email(email, FIXED_OTP))
        user = await User.get(email=email)
        assert user.email_verified is False
        assert user.is_locked(frozen_clock.now)
        assert await OtpVerification.filter(user_id=user.id).exists()

    async def test_correct_code_racing_the_locking_failure_gets_no_session(self, db, auth_service, frozen_clock):
        email = "jane.doe@mail.com"
        await auth_service.signup(_signup(email))
        await User.filter(email=email).update(failed_otp_attempts=9)

        results = await asyncio.gather(
            auth_service.verify_email(email, WRONG_OTP),
            auth_service.verify_email(email, FIXED_OTP),
            return_exceptions=True,
        )

        assert [getattr(r, "kind", r) for r in results] == [ErrorKind.ACCOUNT_LOCKED] * 2
        user = await User.get(email=email)
        assert user.email_verified is False
        assert user.failed_otp_attempts == 10
        assert user.is_locked(frozen_clock.now)
        assert not await RefreshToken.filter(user_id=user.id).exists()


class TestResendOtp:

    async def test_already_verified(self, db, auth_service, frozen_clock):
        await _verified(auth_service)
        await _raises(ErrorKind.BAD_REQUEST, auth_service.resend_otp("jane.doe@mail.com"))

    async def test_cooldown(self, db, auth_service, frozen_clock):
        await auth_service.signup(_signup())
        err = await _raises(ErrorKind.RATE_LIMIT_EXCEEDED, auth_service.resend_otp("jane.doe@mail.com"))
        assert err.retry_after == 60

    async def test_new_code_replaces_old(self, db, auth_service, notifier, frozen_clock):
        await auth_service.signup(_signup())
        frozen_clock.advance(seconds=61)
        await auth_service.resend_otp("jane.doe@mail.com")

        assert await OtpVerification.filter(email="jane.doe@mail.com").count() == 1
        assert notifier.kinds_for("jane.doe@mail.com") == [TemplateKind.VERIFICATION_OTP] * 2


class TestLogin:

    async def test_success(self, db, auth_service, frozen_clock):
        await _verified(auth_service)
        session = await auth_service.login("jane.doe@mail.com", PASSWORD)
        assert session.user.email == "jane.doe@mail.com"
        assert await RefreshToken.all().count() == 2

    async def test_wrong_password_and_unknown_email_look_the_same(self, db, auth_service, frozen_clock):
        await _verified(auth_service)
        wrong = await _raises(ErrorKind.INVALID_CREDENTIALS, auth_service.login("jane.doe@mail.com", "nope"))
        unknown = await _raises(ErrorKind.INVALID_CREDENTIALS, auth_service.login("x@mail.com", PASSWORD))
        assert wrong.message == unknown.message

    async def test_unverified(self, db, auth_service, frozen_clock):
        await auth_service.signup(_signup())
        await _raises(ErrorKind.EMAIL_NOT_VERIFIED, auth_service.login("jane.doe@mail.com", PASSWORD))

    async def test_success_resets_failure_counter(self, db, auth_service, frozen_clock):
        await _verified(auth_service)
        await User.filter(email="jane.doe@mail.com").update(failed_otp_attempts=4)

        await auth_service.login("jane.doe@mail.com", PASSWORD)
        assert (await User.get(email="jane.doe@mail.com")).failed_otp_attempts == 0

    async def test_deleted_account(self, db, auth_service, frozen_clock):
        await _verified(auth_service)
        await User.filter(email="jane.doe@mail.com").update(is_deleted=True)
        await _raises(ErrorKind.INVALID_CREDENTIALS, auth_service.login("jane.doe@mail.com", PASSWORD))

    async def test_lock_set_after_the_lookup_is_kept(self, db, auth_service, frozen_clock, monkeypatch):
        await _verified(auth_service)
        email = "jane.doe@mail.com"
        await _lock_after_lookup(monkeypatch, email, frozen_clock.now)

        await _raises(ErrorKind.ACCOUNT_LOCKED, auth_service.login(email, PASSWORD))
        user = await User.get(email=email)
        assert user.is_locked(frozen_clock.now)
        assert user.failed_otp_attempts == 10


class TestRefreshAndLogout:

    async def test_refresh_returns_same_refresh_token(self, db, auth_service, frozen_clock):
        session = await _verified(auth_service)
        frozen_clock.advance(minutes=20)

        refreshed = await auth_service.refresh_access_token(session.refreshToken)
        assert refreshed.refreshToken == session.refreshToken
        assert refreshed.accessToken != session.accessToken
        auth_service.tokens.verify(refreshed.accessToken, expected_type=TokenType.ACCESS)

    async def test_access_token_is_not_a_refresh_token(self, db, auth_service, frozen_clock):
        session = await _verified(auth_service)
        await _raises(ErrorKind.INVALID_TOKEN, auth_service.refresh_access_token(session.accessToken))

    async def test_logout_invalidates_every_refresh_token(self, db, auth_service, frozen_clock):
        first = await _verified(auth_service)
        second = await auth_service.login("jane.doe@mail.com", PASSWORD)

        user = await User.get(email="jane.doe@mail.com")
        await auth_service.logout(user.id)

        for token in (first.refreshToken, second.refreshToken):
            await _raises(ErrorKind.INVALID_TOKEN, auth_service.refresh_access_token(token))

    async def test_logout_is_idempotent(self, db, auth_service, frozen_clock):
        await _verified(auth_service)
        user = await User.get(email="jane.doe@mail.com")
        await auth_service.logout(user.id)
        await auth_service.logout(user.id)
        assert await RefreshToken.filter(user_id=user.id).count() == 0

    async def test_stored_record_expiry(self, db, auth_service, frozen_clock):
        session = await _verified(auth_service)
        record = await RefreshToken.get(token_hash=hash_token(session.refreshToken))
        await RefreshToken.filter(id=record.id).update(expires_at=frozen_clock.now - dt.timedelta(seconds=1))

        await _raises(ErrorKind.TOKEN_EXPIRED, auth_service.refresh_access_token(session.refreshToken))
        assert not await RefreshToken.filter(id=record.id).exists()


class TestPasswordReset:

    async def test_full_flow(self, db, auth_service, notifier, frozen_clock):
        session = await _verified(auth_service)
        email = "jane.doe@mail.com"

        await auth_service.forgot_password(email)
        assert TemplateKind.PASSWORD_RESET_OTP in notifier.kinds_for(email)

        temp = await auth_service.verify_reset_otp(email, FIXED_OTP)
        assert temp.expiresIn == 300
        await auth_service.reset_password(temp.temporaryToken, "N3wPassword!")

        await _raises(ErrorKind.INVALID_CREDENTIALS, auth_service.login(email, PASSWORD))
        await auth_service.login(email, "N3wPassword!")
        await _raises(ErrorKind.INVALID_TOKEN, auth_service.refresh_access_token(session.refreshToken))
        assert TemplateKind.PASSWORD_RESET_CONFIRMATION in notifier.kinds_for(email)

    async def test_temporary_token_expires(self, db, auth_service, frozen_clock):
        await _verified(auth_service)
        await auth_service.forgot_password("jane.doe@mail.com")
        temp = await auth_service.verify_reset_otp("jane.doe@mail.com", FIXED_OTP)

        frozen_clock.advance(seconds=301)
        await _raises(ErrorKind.TOKEN_EXPIRED, auth_service.reset_password(temp.temporaryToken, "N3wPassword!"))

    async def test_access_token_cannot_reset(self, db, auth_service, frozen_clock):
        session = await _verified(auth_service)
        await _raises(ErrorKind.INVALID_TOKEN, auth_service.reset_password(session.accessToken, "N3wPassword!"))

    async def test_forgot_password_for_unknown_email(self, db, auth_service, frozen_clock):
        await _raises(ErrorKind.NOT_FOUND, auth_service.forgot_password("nobody@mail.com"))

    async def test_wrong_reset_code(self, db, auth_service, frozen_clock):
        await _verified(auth_service)
        await auth_service.forgot_password("jane.doe@mail.com")
        await _raises(ErrorKind.INVALID_OTP, auth_service.verify_reset_otp("jane.doe@mail.com", WRONG_OTP))


class TestNotifierFailure:

    async def test_workflow_succeeds_when_notifier_raises(self, db, auth_service, frozen_clock):
        class Broken:
            async def send(self, *args, **kwargs):
                raise RuntimeError("smtp down")

        auth_service.notifier = Broken()
        result = await auth_service.signup(_signup())
        assert result.email == "jane.doe@mail.com"
