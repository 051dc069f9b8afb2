import pytest
from datetime import timedelta
from jose import jwt

from common.exceptions import AccountInactive, InvalidCredentials, InvalidOrExpiredSession
from common.models import TenantStatus
from oauth_service.app.services.auth_session import (
    AUTH_SESSION_AUDIENCE,
    AuthSessionIdentity,
    AuthSessionSigner,
    authenticate,
)
from oauth_service.tests.factories import TEST_PASSWORD, TEST_SECRET

IDENTITY = AuthSessionIdentity(
    user_id="0b7f5c7e-3f7a-4d8e-9c1f-2a5e6b7c8d9e",
    tenant_id="5d1e2f3a-4b5c-4d6e-8f70-8192a3b4c5d6",
    email="dana.rep@acme.example",
    role="USER",
)


@pytest.fixture
def signer(clock):
    return AuthSessionSigner(TEST_SECRET, ttl=timedelta(minutes=2), clock=clock)


def test_round_trip(signer):
    assert signer.verify(signer.issue(IDENTITY)) == IDENTITY


def test_claims_are_identity_only(signer):
    claims = jwt.get_unverified_claims(signer.issue(IDENTITY))
    assert set(claims) == {"user_id", "tenant_id", "email", "role", "aud", "iat", "exp"}
    assert claims["aud"] == AUTH_SESSION_AUDIENCE
    assert claims["exp"] - claims["iat"] == 120


def test_expires_after_two_minutes(signer, clock):
    token = signer.issue(IDENTITY)
    clock.advance(minutes=1, seconds=59)
    assert signer.verify(token) == IDENTITY
    clock.advance(seconds=1)
    with pytest.raises(InvalidOrExpiredSession):
        signer.verify(token)


def test_other_secret_rejected(signer, clock):
    forged = AuthSessionSigner("a-different-secret", clock=clock).issue(IDENTITY)
    with pytest.raises(InvalidOrExpiredSession):
        signer.verify(forged)


def test_access_token_is_not_a_session(signer, service):
    access_token = service.auth_manager.create_access_token(IDENTITY.__dict__)
    with pytest.raises(InvalidOrExpiredSession):
        signer.verify(access_token)


def test_garbage_rejected(signer):
    with pytest.raises(InvalidOrExpiredSession):
        signer.verify("not.a.jwt")


@pytest.mark.asyncio
async def test_authenticate_is_case_insensitive(db_session, service, test_user):
    user = await authenticate(db_session, service.auth_manager, "DANA.REP@ACME.EXAMPLE", TEST_PASSWORD)
    assert user.id == test_user.id


@pytest.mark.asyncio
async def test_unknown_email_and_wrong_password_look_alike(db_session, service, test_user):
    with pytest.raises(InvalidCredentials) as unknown:
        await authenticate(db_session, service.auth_manager, "nobody@acme.example", TEST_PASSWORD)
    with pytest.raises(InvalidCredentials) as wrong:
        await authenticate(db_session, service.auth_manager, test_user.email, "wrong-password")
    assert unknown.value.message == wrong.value.message


@pytest.mark.asyncio
async def test_inactive_user(db_session, service, test_user):
    test_user.is_active = False
    await db_session.commit()
    with pytest.raises(AccountInactive):
        await authenticate(db_session, service.auth_manager, test_user.email, TEST_PASSWORD)


@pytest.mark.asyncio
async def test_suspended_tenant(db_session, service, test_user, tenant):
    tenant.status = TenantStatus.SUSPENDED
    await db_session.commit()
    with pytest.raises(AccountInactive):
        await authenticate(db_session, service.auth_manager, test_user.email, TEST_PASSWORD)


@pytest.mark.asyncio
async def test_inactive_user_with_wrong_password_is_bad_credentials(db_session, service, test_user):
    test_user.is_active = False
    await db_session.commit()
    with pytest.raises(InvalidCredentials):
        await authenticate(db_session, service.auth_manager, test_user.email, "wrong-password")


@pytest.mark.asyncio
async def test_unknown_email_does_not_hash(db_session, service, monkeypatch):
    assert service.auth_manager._dummy_hash.startswith("$2b$")

    def _no_hashing(password):
        raise AssertionError("login path must not hash")

    monkeypatch.setattr(service.auth_manager, "hash_password", _no_hashing)
    with pytest.raises(InvalidCredentials):
        await authenticate(db_session, service.auth_manager, "nobody@acme.example", TEST_PASSWORD)
