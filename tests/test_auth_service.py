"""Auth flows exercised directly on AuthService."""

import asyncio

import pytest

from blogapi.auth_service import AuthService
from blogapi.errors import (AlreadyVerified, DuplicateEmail, ErrorCode, InvalidCredentials,
                            InvalidToken, MailDeliveryError, NotFound, TokenExpired,
                            Unauthenticated, Unverified, ValidationError)
from blogapi.security import REFRESH, TokenIssuer

pytestmark = [pytest.mark.unit, pytest.mark.asyncio]

EMAIL = "a@example.com"
PASSWORD = "password123"


async def _verified_user(service: AuthService):
    user, token = await service.register("A", EMAIL, PASSWORD)
    await service.verify_email(token)
    return user


# --- registration / verification ---


async def test_register_creates_unverified_user_and_mails_token(service, mailer, collection):
    user, token = await service.register("A", EMAIL, PASSWORD)

    assert user.verified is False
    assert collection.raw(EMAIL)["verification_token"] == token
    assert mailer.sent[-1]["to"] == EMAIL
    assert mailer.last_token() == token


async def test_register_duplicate_email(service):
    await service.register("A", EMAIL, PASSWORD)
    with pytest.raises(DuplicateEmail):
        await service.register("B", "A@Example.com", PASSWORD)


async def test_register_mail_failure_stores_nothing(service, mailer, collection):
    mailer.fail = True
    with pytest.raises(MailDeliveryError):
        await service.register("A", EMAIL, PASSWORD)
    assert collection.docs == []


async def test_login_requires_verification(service):
    await service.register("A", EMAIL, PASSWORD)
    with pytest.raises(Unverified):
        await service.login(EMAIL, PASSWORD)


async def test_verify_then_login(service):
    user, token = await service.register("A", EMAIL, PASSWORD)

    verified = await service.verify_email(token)
    assert verified.verified is True

    logged_in, pair = await service.login(EMAIL, PASSWORD)
    assert logged_in.id == user.id
    assert pair.access_token and pair.refresh_token


async def test_verify_twice_is_already_verified(service):
    _, token = await service.register("A", EMAIL, PASSWORD)
    await service.verify_email(token)

    with pytest.raises(AlreadyVerified):
        await service.verify_email(token)


async def test_verify_unknown_token(service, tokens):
    await service.register("A", EMAIL, PASSWORD)
    with pytest.raises(InvalidToken):
        await service.verify_email(tokens.issue_verification_token("64b000000000000000000000"))
    with pytest.raises(InvalidToken):
        await service.verify_email("garbage")
    with pytest.raises(ValidationError):
        await service.verify_email(None)


async def test_expired_verification_token_still_on_record(service, settings, users, collection):
    user, _ = await service.register("A", EMAIL, PASSWORD)
    expired = TokenIssuer(settings.model_copy(update={"verification_expire_hours": -1}))
    stale = expired.issue_verification_token(user.id)
    await users.set_verification_token(user.id, stale)

    with pytest.raises(TokenExpired):
        await service.verify_email(stale)
    assert collection.raw(EMAIL)["verified"] is False


async def test_resend_verification_replaces_token(service):
    _, first = await service.register("A", EMAIL, PASSWORD)
    second = await service.resend_verification(EMAIL)

    with pytest.raises(InvalidToken):
        await service.verify_email(first)
    await service.verify_email(second)
    with pytest.raises(AlreadyVerified):
        await service.resend_verification(EMAIL)
    with pytest.raises(NotFound):
        await service.resend_verification("nobody@example.com")


# --- login / sessions ---


async def test_wrong_password_and_unknown_email_look_the_same(service):
    await _verified_user(service)

    with pytest.raises(InvalidCredentials) as wrong_password:
        await service.login(EMAIL, "wrong-password")
    with pytest.raises(InvalidCredentials) as unknown_email:
        await service.login("nobody@example.com", PASSWORD)
    assert wrong_password.value.to_dict() == unknown_email.value.to_dict()


async def test_login_persists_refresh_token(service, collection):
    await _verified_user(service)
    _, pair = await service.login(EMAIL, PASSWORD)
    assert collection.raw(EMAIL)["refresh_token"] == pair.refresh_token


async def test_new_login_invalidates_previous_refresh_token(service):
    await _verified_user(service)
    _, first = await service.login(EMAIL, PASSWORD)
    await service.login(EMAIL, PASSWORD)

    with pytest.raises(Unauthenticated):
        await service.refresh(first.refresh_token)


async def test_refresh_rotates_and_old_token_cannot_be_replayed(service, collection):
    await _verified_user(service)
    _, pair = await service.login(EMAIL, PASSWORD)

    _, rotated = await service.refresh(pair.refresh_token)
    assert rotated.refresh_token != pair.refresh_token
    assert collection.raw(EMAIL)["refresh_token"] == rotated.refresh_token

    with pytest.raises(Unauthenticated) as exc:
        await service.refresh(pair.refresh_token)
    assert exc.value.context == {"reason": "token_revoked"}


async def test_concurrent_refresh_has_one_winner(service, collection):
    await _verified_user(service)
    _, pair = await service.login(EMAIL, PASSWORD)

    results = await asyncio.gather(
        service.refresh(pair.refresh_token),
        service.refresh(pair.refresh_token),
        return_exceptions=True,
    )
    losers = [r for r in results if isinstance(r, Unauthenticated)]
    winners = [r for r in results if not isinstance(r, BaseException)]
    assert len(losers) == 1 and len(winners) == 1
    assert losers[0].context == {"reason": "token_revoked"}
    assert collection.raw(EMAIL)["refresh_token"] == winners[0][1].refresh_token


async def test_rotation_from_stale_token_is_refused(service, tokens, users, collection):
    user = await _verified_user(service)
    _, pair = await service.login(EMAIL, PASSWORD)
    await users.set_refresh_token(user.id, "issued-elsewhere")

    with pytest.raises(Unauthenticated) as exc:
        await tokens.issue_access_and_refresh(user.id, users, rotate_from=pair.refresh_token)
    assert exc.value.context == {"reason": "token_revoked"}
    assert collection.raw(EMAIL)["refresh_token"] == "issued-elsewhere"


async def test_refresh_rejects_missing_and_malformed(service, tokens):
    with pytest.raises(Unauthenticated) as missing:
        await service.refresh(None)
    assert missing.value.context["reason"] == "missing_token"

    with pytest.raises(Unauthenticated) as wrong_kind:
        await service.refresh(tokens.issue_access_token("64b000000000000000000000"))
    assert wrong_kind.value.context["reason"] == ErrorCode.INVALID_TOKEN.value


async def test_refresh_expired_token(service, settings):
    expired = TokenIssuer(settings.model_copy(update={"refresh_token_expire_days": -1}))
    with pytest.raises(Unauthenticated) as exc:
        await service.refresh(expired.issue_refresh_token("64b000000000000000000000"))
    assert exc.value.context["reason"] == ErrorCode.TOKEN_EXPIRED.value


async def test_refresh_for_missing_user(service, tokens):
    with pytest.raises(NotFound):
        await service.refresh(tokens.issue_refresh_token("64b000000000000000000000"))


async def test_logout_revokes_refresh_token(service, tokens):
    user = await _verified_user(service)
    _, pair = await service.login(EMAIL, PASSWORD)

    await service.logout(user.id)
    with pytest.raises(Unauthenticated):
        await service.refresh(pair.refresh_token)
    assert tokens.decode(pair.refresh_token, REFRESH)["sub"] == user.id


async def test_authenticate(service):
    user = await _verified_user(service)
    _, pair = await service.login(EMAIL, PASSWORD)

    assert (await service.authenticate(pair.access_token)).id == user.id
    with pytest.raises(Unauthenticated):
        await service.authenticate(None)
    with pytest.raises(Unauthenticated):
        await service.authenticate(pair.refresh_token)


async def test_authenticate_unknown_user(service, tokens):
    with pytest.raises(Unauthenticated) as exc:
        await service.authenticate(tokens.issue_access_token("64b000000000000000000000"))
    assert exc.value.context["reason"] == "user_not_found"


# --- passwords ---


async def test_forgot_and_reset_password(service, mailer, collection):
    await _verified_user(service)
    token = await service.forgot_password(EMAIL)

    assert mailer.sent[-1]["subject"] == "Reset your password"
    assert mailer.last_token() == token
    assert collection.raw(EMAIL)["forget_password_token"] == token

    await service.reset_password(token, "newpassword123")
    assert collection.raw(EMAIL)["forget_password_token"] is None
    with pytest.raises(InvalidCredentials):
        await service.login(EMAIL, PASSWORD)
    await service.login(EMAIL, "newpassword123")


async def test_reset_token_is_single_use(service):
    await _verified_user(service)
    token = await service.forgot_password(EMAIL)
    await service.reset_password(token, "newpassword123")

    with pytest.raises(InvalidToken):
        await service.reset_password(token, "anotherpassword1")


async def test_reset_revokes_sessions(service):
    await _verified_user(service)
    _, pair = await service.login(EMAIL, PASSWORD)
    await service.reset_password(await service.forgot_password(EMAIL), "newpassword123")

    with pytest.raises(Unauthenticated):
        await service.refresh(pair.refresh_token)


async def test_reset_with_expired_token(service, settings, users):
    user = await _verified_user(service)
    expired = TokenIssuer(settings.model_copy(update={"reset_token_expire_minutes": -1}))
    stale = expired.issue_reset_token(user.id)
    await users.set_reset_token(user.id, stale)

    with pytest.raises(TokenExpired):
        await service.reset_password(stale, "newpassword123")


async def test_reset_requires_token(service):
    with pytest.raises(ValidationError):
        await service.reset_password("", "newpassword123")


async def test_forgot_password_unknown_email(service, mailer):
    with pytest.raises(NotFound):
        await service.forgot_password("nobody@example.com")
    assert mailer.sent == []


async def test_forgot_password_mail_failure_keeps_no_token(service, mailer, collection):
    await _verified_user(service)
    mailer.fail = True

    with pytest.raises(MailDeliveryError):
        await service.forgot_password(EMAIL)
    assert collection.raw(EMAIL)["forget_password_token"] is None


async def test_change_password(service):
    user = await _verified_user(service)

    with pytest.raises(InvalidCredentials):
        await service.change_password(user.id, "wrong-password", "newpassword123")

    await service.change_password(user.id, PASSWORD, "newpassword123")
    await service.login(EMAIL, "newpassword123")
