import asyncio
import hashlib
import pytest
from sqlalchemy import select

from common.database import atomic_session_operation, db_manager
from common.exceptions import ClientMismatch, InvalidRefreshToken, RefreshTokenExpired
from oauth_service.app.models.refresh_token_models import OAuthRefreshToken
from oauth_service.app.services.refresh_token_store import hash_token


async def _issue(service, db_session, oauth_client, test_user, scope="crm:read crm:write"):
    async with atomic_session_operation(db_session):
        return await service.refresh_tokens(db_session).issue(
            test_user.id, test_user.tenant_id, oauth_client.client_id, scope
        )


async def _stored_hashes(db_session):
    db_session.expire_all()
    result = await db_session.execute(select(OAuthRefreshToken.token_hash))
    return set(result.scalars().all())


def test_hash_is_sha256_hex():
    assert hash_token("abc") == hashlib.sha256(b"abc").hexdigest()


@pytest.mark.asyncio
async def test_only_hash_is_persisted(db_session, service, oauth_client, test_user):
    raw = await _issue(service, db_session, oauth_client, test_user)

    assert len(raw) == 64
    assert await _stored_hashes(db_session) == {hash_token(raw)}


@pytest.mark.asyncio
async def test_rotate_replaces_token(db_session, service, oauth_client, test_user):
    raw = await _issue(service, db_session, oauth_client, test_user)

    async with atomic_session_operation(db_session):
        rotated = await service.refresh_tokens(db_session).rotate(raw, oauth_client.client_id)

    assert rotated.raw_token != raw
    assert rotated.user_id == test_user.id
    assert rotated.tenant_id == test_user.tenant_id
    assert rotated.scope == "crm:read crm:write"
    assert await _stored_hashes(db_session) == {hash_token(rotated.raw_token)}


@pytest.mark.asyncio
async def test_old_token_rejected_after_rotation(db_session, service, oauth_client, test_user):
    raw = await _issue(service, db_session, oauth_client, test_user)
    async with atomic_session_operation(db_session):
        await service.refresh_tokens(db_session).rotate(raw, oauth_client.client_id)

    with pytest.raises(InvalidRefreshToken):
        await service.refresh_tokens(db_session).rotate(raw, oauth_client.client_id)


@pytest.mark.asyncio
async def test_unknown_token(db_session, service, oauth_client):
    with pytest.raises(InvalidRefreshToken):
        await service.refresh_tokens(db_session).rotate("f" * 64, oauth_client.client_id)


@pytest.mark.asyncio
async def test_expired_token(db_session, service, oauth_client, test_user, clock):
    raw = await _issue(service, db_session, oauth_client, test_user)
    clock.advance(days=7, seconds=1)
    with pytest.raises(RefreshTokenExpired):
        await service.refresh_tokens(db_session).rotate(raw, oauth_client.client_id)


@pytest.mark.asyncio
async def test_client_mismatch_keeps_token(db_session, service, oauth_client, test_user):
    raw = await _issue(service, db_session, oauth_client, test_user)
    with pytest.raises(ClientMismatch):
        await service.refresh_tokens(db_session).rotate(raw, "some-other-client")
    await db_session.rollback()

    assert await _stored_hashes(db_session) == {hash_token(raw)}


@pytest.mark.asyncio
async def test_failed_issue_rolls_back_rotation(db_session, service, oauth_client, test_user, monkeypatch):
    raw = await _issue(service, db_session, oauth_client, test_user)
    store = service.refresh_tokens(db_session)

    async def broken_issue(*args, **kwargs):
        raise RuntimeError("storage failure")

    monkeypatch.setattr(store, "issue", broken_issue)
    with pytest.raises(RuntimeError):
        async with atomic_session_operation(db_session):
            await store.rotate(raw, oauth_client.client_id)

    # The delete was rolled back with the failed insert
    assert await _stored_hashes(db_session) == {hash_token(raw)}


@pytest.mark.asyncio
async def test_concurrent_rotation_succeeds_once(db_session, service, oauth_client, test_user):
    raw = await _issue(service, db_session, oauth_client, test_user)

    async def attempt():
        async with db_manager.async_session() as session:
            try:
                async with atomic_session_operation(session):
                    rotated = await service.refresh_tokens(session).rotate(raw, oauth_client.client_id)
                return rotated.raw_token
            except InvalidRefreshToken:
                return None

    results = await asyncio.gather(attempt(), attempt())
    winners = [r for r in results if r is not None]
    assert len(winners) == 1
    assert await _stored_hashes(db_session) == {hash_token(winners[0])}
