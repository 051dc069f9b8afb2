import asyncio
import re
import pytest

from common.database import atomic_session_operation, db_manager
from common.exceptions import (
    ClientMismatch,
    CodeAlreadyUsed,
    CodeExpired,
    InvalidCode,
    InvalidVerifier,
    RedirectMismatch,
)
from oauth_service.app.models.auth_code_models import AuthorizationCode
from oauth_service.tests.factories import REDIRECT_URI


async def _create_code(service, db_session, oauth_client, test_user, challenge, scope="crm:read"):
    async with atomic_session_operation(db_session):
        return await service.codes(db_session).create(
            client_id=oauth_client.client_id,
            user_id=test_user.id,
            tenant_id=test_user.tenant_id,
            redirect_uri=REDIRECT_URI,
            code_challenge=challenge,
            scope=scope,
            state="xyz",
        )


@pytest.mark.asyncio
async def test_create_stores_unused_code(db_session, service, oauth_client, test_user, pkce_pair, clock):
    _, challenge = pkce_pair
    code = await _create_code(service, db_session, oauth_client, test_user, challenge)

    assert re.fullmatch(r"[0-9a-f]{64}", code)
    record = await db_session.get(AuthorizationCode, code)
    assert record.used_at is None
    assert record.code_challenge_method == "S256"
    assert record.state == "xyz"
    assert (record.expires_at - clock()).total_seconds() == 300


@pytest.mark.asyncio
async def test_create_rejects_plain_method(db_session, service, oauth_client, test_user):
    with pytest.raises(ValueError):
        await service.codes(db_session).create(
            client_id=oauth_client.client_id,
            user_id=test_user.id,
            tenant_id=test_user.tenant_id,
            redirect_uri=REDIRECT_URI,
            code_challenge="abc",
            code_challenge_method="plain",
        )


@pytest.mark.asyncio
async def test_redeem_returns_bound_identity(db_session, service, oauth_client, test_user, pkce_pair):
    verifier, challenge = pkce_pair
    code = await _create_code(service, db_session, oauth_client, test_user, challenge)

    async with atomic_session_operation(db_session):
        grant = await service.codes(db_session).redeem(code, verifier, oauth_client.client_id, REDIRECT_URI)

    assert grant.user_id == test_user.id
    assert grant.tenant_id == test_user.tenant_id
    assert grant.scope == "crm:read"


@pytest.mark.asyncio
async def test_second_redeem_is_replay(db_session, service, oauth_client, test_user, pkce_pair):
    verifier, challenge = pkce_pair
    code = await _create_code(service, db_session, oauth_client, test_user, challenge)
    client_id = oauth_client.client_id
    store = service.codes(db_session)

    async with atomic_session_operation(db_session):
        await store.redeem(code, verifier, client_id, REDIRECT_URI)

    # Reload the code row so used_at reflects the committed update
    db_session.expire_all()
    with pytest.raises(CodeAlreadyUsed):
        await store.redeem(code, verifier, client_id, REDIRECT_URI)


@pytest.mark.asyncio
async def test_unknown_code(db_session, service, oauth_client, pkce_pair):
    verifier, _ = pkce_pair
    with pytest.raises(InvalidCode):
        await service.codes(db_session).redeem("0" * 64, verifier, oauth_client.client_id, REDIRECT_URI)


@pytest.mark.asyncio
async def test_expired_code(db_session, service, oauth_client, test_user, pkce_pair, clock):
    verifier, challenge = pkce_pair
    code = await _create_code(service, db_session, oauth_client, test_user, challenge)

    clock.advance(minutes=5)
    with pytest.raises(CodeExpired):
        await service.codes(db_session).redeem(code, verifier, oauth_client.client_id, REDIRECT_URI)


@pytest.mark.asyncio
async def test_code_valid_just_before_expiry(db_session, service, oauth_client, test_user, pkce_pair, clock):
    verifier, challenge = pkce_pair
    code = await _create_code(service, db_session, oauth_client, test_user, challenge)

    clock.advance(minutes=4, seconds=59)
    async with atomic_session_operation(db_session):
        grant = await service.codes(db_session).redeem(code, verifier, oauth_client.client_id, REDIRECT_URI)
    assert grant.user_id == test_user.id


@pytest.mark.asyncio
async def test_wrong_client(db_session, service, oauth_client, test_user, pkce_pair):
    verifier, challenge = pkce_pair
    code = await _create_code(service, db_session, oauth_client, test_user, challenge)
    with pytest.raises(ClientMismatch):
        await service.codes(db_session).redeem(code, verifier, "another-client", REDIRECT_URI)


@pytest.mark.asyncio
async def test_wrong_redirect(db_session, service, oauth_client, test_user, pkce_pair):
    verifier, challenge = pkce_pair
    code = await _create_code(service, db_session, oauth_client, test_user, challenge)
    with pytest.raises(RedirectMismatch):
        await service.codes(db_session).redeem(code, verifier, oauth_client.client_id, REDIRECT_URI + "/")


@pytest.mark.asyncio
async def test_wrong_verifier_does_not_burn_code(db_session, service, oauth_client, test_user, pkce_pair):
    verifier, challenge = pkce_pair
    code = await _create_code(service, db_session, oauth_client, test_user, challenge)
    store = service.codes(db_session)

    with pytest.raises(InvalidVerifier):
        await store.redeem(code, "x" * 64, oauth_client.client_id, REDIRECT_URI)

    async with atomic_session_operation(db_session):
        grant = await store.redeem(code, verifier, oauth_client.client_id, REDIRECT_URI)
    assert grant.user_id == test_user.id


@pytest.mark.asyncio
async def test_checks_run_in_order(db_session, service, oauth_client, test_user, pkce_pair, clock):
    # Expired and wrong client and wrong verifier: expiry is reported first
    _, challenge = pkce_pair
    code = await _create_code(service, db_session, oauth_client, test_user, challenge)
    clock.advance(minutes=10)
    with pytest.raises(CodeExpired):
        await service.codes(db_session).redeem(code, "bad", "other", "https://evil.example/cb")


@pytest.mark.asyncio
async def test_concurrent_redeem_succeeds_once(db_session, service, oauth_client, test_user, pkce_pair):
    verifier, challenge = pkce_pair
    code = await _create_code(service, db_session, oauth_client, test_user, challenge)

    async def attempt():
        async with db_manager.async_session() as session:
            try:
                async with atomic_session_operation(session):
                    await service.codes(session).redeem(code, verifier, oauth_client.client_id, REDIRECT_URI)
                return "redeemed"
            except CodeAlreadyUsed:
                return "replay"

    results = await asyncio.gather(attempt(), attempt(), attempt())
    assert sorted(results) == ["redeemed", "replay", "replay"]


@pytest.mark.asyncio
async def test_purge_expired(db_session, service, oauth_client, test_user, pkce_pair, clock):
    _, challenge = pkce_pair
    await _create_code(service, db_session, oauth_client, test_user, challenge)
    clock.advance(minutes=6)
    async with atomic_session_operation(db_session):
        removed = await service.codes(db_session).purge_expired()
    assert removed == 1
