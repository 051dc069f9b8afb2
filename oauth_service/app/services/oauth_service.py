from sqlalchemy.ext.asyncio import AsyncSession
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit
from uuid import UUID
from pydantic import ValidationError
import structlog

from common.audit_logger import log_audit_event
from common.auth import AuthManager
from common.config import Settings
from common.database import atomic_session_operation, utcnow
from common.exceptions import InvalidRequest, InvalidScope, UnsupportedGrantType, UserInactive
from common.models import TenantStatus
from common.utils import get_user_by_id
from oauth_service.app.models.oauth_models import OAuthClient
from oauth_service.app.schemas.oauth import (
    DEFAULT_SCOPE,
    SUPPORTED_SCOPES,
    AuthorizationCodeGrant,
    AuthorizationParams,
    ClientRegistrationRequest,
    ConsentForm,
    LoginForm,
    RefreshTokenGrant,
)
from oauth_service.app.services.auth_code_store import AuthorizationCodeStore
from oauth_service.app.services.auth_session import (
    AuthSessionIdentity,
    AuthSessionSigner,
    authenticate,
)
from oauth_service.app.services.client_registry import ClientRegistry
from oauth_service.app.services.refresh_token_store import RefreshTokenStore

logger = structlog.get_logger("crm.oauth.service")


def build_redirect_uri(base_uri: str, params: Mapping[str, Optional[str]]) -> str:
    """Append query parameters to a registered redirect URI, keeping any query it already has."""
    parts = urlsplit(base_uri)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend((k, v) for k, v in params.items() if v is not None)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


def check_scope(scope: Optional[str]) -> None:
    if not scope:
        return
    unknown = [s for s in scope.split() if s not in SUPPORTED_SCOPES]
    if unknown:
        raise InvalidScope(f"Unsupported scope: {' '.join(unknown)}")


@dataclass(frozen=True)
class ConsentContext:
    client: OAuthClient
    display_name: str
    auth_session_token: str
    params: AuthorizationParams

    @property
    def scopes(self) -> List[str]:
        return (self.params.scope or DEFAULT_SCOPE).split()


class OAuthService:
    """
    Authorization server state machine.

    Each public method is one HTTP step; nothing is kept between calls.
    Identity travels in the signed auth-session token until a code is
    minted, and in the code or refresh-token row after that.
    """

    def __init__(self, settings: Settings, auth_manager: Optional[AuthManager] = None,
                 clock: Callable[[], datetime] = utcnow):
        self.settings = settings
        self.auth_manager = auth_manager or AuthManager.from_settings(settings)
        self.clock = clock
        self.session_signer = AuthSessionSigner(
            secret_key=settings.jwt_secret_key,
            algorithm=settings.jwt_algorithm,
            ttl=timedelta(minutes=settings.auth_session_expire_minutes),
            clock=clock,
        )
        self.code_ttl = timedelta(minutes=settings.authorization_code_expire_minutes)
        self.refresh_ttl = timedelta(days=settings.oauth_refresh_token_expire_days)

    # ── store factories (one per request session) ──────────────────────────────
    def clients(self, db: AsyncSession) -> ClientRegistry:
        return ClientRegistry(db)

    def codes(self, db: AsyncSession) -> AuthorizationCodeStore:
        return AuthorizationCodeStore(db, clock=self.clock, ttl=self.code_ttl)

    def refresh_tokens(self, db: AsyncSession) -> RefreshTokenStore:
        return RefreshTokenStore(db, clock=self.clock, ttl=self.refresh_ttl)

    @property
    def access_token_ttl_seconds(self) -> int:
        return self.auth_manager.access_token_expire_minutes * 60

    # ── registration ───────────────────────────────────────────────────────────
    async def register_client(self, db: AsyncSession, request: ClientRegistrationRequest) -> OAuthClient:
        async with atomic_session_operation(db):
            client = await self.clients(db).register(
                request.client_name, request.redirect_uris, request.grant_types
            )
        await log_audit_event(
            event_type="oauth_client_registered",
            details={"client_id": client.client_id, "grant_types": client.grant_types},
        )
        return client

    async def validate_client(self, db: AsyncSession, client_id: str, redirect_uri: str,
                              scope: Optional[str] = None) -> OAuthClient:
        """Checks client, then exact redirect, then requested scope."""
        client = await self.clients(db).validate(client_id, redirect_uri)
        check_scope(scope)
        return client

    # ── login and consent ──────────────────────────────────────────────────────
    async def authenticate(self, db: AsyncSession, email: str, password: str):
        try:
            return await authenticate(db, self.auth_manager, email, password)
        except Exception as e:
            await log_audit_event(
                event_type="oauth_login_failed",
                details={"reason": getattr(e, "kind", type(e).__name__)},
            )
            raise

    async def begin_consent(self, db: AsyncSession, form: LoginForm,
                            client: Optional[OAuthClient] = None) -> ConsentContext:
        """Login step: validate the client, check credentials, hand back what the consent page needs."""
        if client is None:
            client = await self.validate_client(db, form.client_id, form.redirect_uri, form.scope)
        user = await self.authenticate(db, form.email, form.password)
        identity = AuthSessionIdentity.from_user(user)
        token = self.session_signer.issue(identity)
        logger.info("User authenticated for consent", client_id=client.client_id, user_id=identity.user_id)
        return ConsentContext(
            client=client,
            display_name=user.display_name,
            auth_session_token=token,
            params=AuthorizationParams(**form.model_dump(include=set(AuthorizationParams.model_fields))),
        )

    async def decide_consent(self, db: AsyncSession, form: ConsentForm) -> str:
        """Consent step. Returns the URL the browser should be redirected to."""
        identity = self.session_signer.verify(form.auth_session_token)
        client = await self.validate_client(db, form.client_id, form.redirect_uri, form.scope)

        if form.decision == "deny":
            await log_audit_event(
                event_type="oauth_consent_denied",
                user_id=identity.user_id,
                details={"client_id": client.client_id},
            )
            return build_redirect_uri(form.redirect_uri, {"error": "access_denied", "state": form.state})

        async with atomic_session_operation(db):
            code = await self.codes(db).create(
                client_id=client.client_id,
                user_id=UUID(identity.user_id),
                tenant_id=UUID(identity.tenant_id),
                redirect_uri=form.redirect_uri,
                code_challenge=form.code_challenge,
                code_challenge_method=form.code_challenge_method,
                scope=form.scope,
                state=form.state,
            )
        await log_audit_event(
            event_type="oauth_consent_allowed",
            user_id=identity.user_id,
            details={"client_id": client.client_id, "scope": form.scope or DEFAULT_SCOPE},
        )
        return build_redirect_uri(form.redirect_uri, {"code": code, "state": form.state})

    # ── token endpoint ─────────────────────────────────────────────────────────
    async def exchange_token(self, db: AsyncSession, grant_type: Optional[str], params: Mapping[str, Any]) -> Dict[str, Any]:
        if not grant_type:
            raise InvalidRequest("grant_type is required")
        if grant_type == "authorization_code":
            return await self.exchange_authorization_code(db, _parse_grant(AuthorizationCodeGrant, params))
        if grant_type == "refresh_token":
            return await self.refresh_access_token(db, _parse_grant(RefreshTokenGrant, params))
        raise UnsupportedGrantType()

    async def exchange_authorization_code(self, db: AsyncSession, grant: AuthorizationCodeGrant) -> Dict[str, Any]:
        async with atomic_session_operation(db):
            redeemed = await self.codes(db).redeem(
                grant.code, grant.code_verifier, grant.client_id, grant.redirect_uri
            )
            response = await self._issue_tokens(
                db, redeemed.user_id, redeemed.tenant_id, grant.client_id, redeemed.scope
            )
        await log_audit_event(
            event_type="oauth_token_issued",
            user_id=str(redeemed.user_id),
            details={"client_id": grant.client_id, "grant_type": "authorization_code"},
        )
        return response

    async def refresh_access_token(self, db: AsyncSession, grant: RefreshTokenGrant) -> Dict[str, Any]:
        async with atomic_session_operation(db):
            rotated = await self.refresh_tokens(db).rotate(grant.refresh_token, grant.client_id)
            response = await self._issue_tokens(
                db, rotated.user_id, rotated.tenant_id, grant.client_id, rotated.scope,
                refresh_token=rotated.raw_token,
            )
        await log_audit_event(
            event_type="oauth_token_refreshed",
            user_id=str(rotated.user_id),
            details={"client_id": grant.client_id, "grant_type": "refresh_token"},
        )
        return response

    async def _issue_tokens(self, db: AsyncSession, user_id, tenant_id, client_id: str, scope: Optional[str],
                            refresh_token: Optional[str] = None) -> Dict[str, Any]:
        user = await get_user_by_id(db, user_id, tenant_id)
        if user is None or not user.is_active or user.tenant is None or user.tenant.status != TenantStatus.ACTIVE:
            raise UserInactive()

        access_token = self.auth_manager.create_access_token(
            asdict(AuthSessionIdentity.from_user(user)), now=self.clock()
        )
        if refresh_token is None:
            refresh_token = await self.refresh_tokens(db).issue(user.id, user.tenant_id, client_id, scope)

        return {
            "access_token": access_token,
            "token_type": "bearer",
            "expires_in": self.access_token_ttl_seconds,
            "refresh_token": refresh_token,
            "scope": scope or DEFAULT_SCOPE,
        }

    # ── maintenance ────────────────────────────────────────────────────────────
    async def cleanup_expired_grants(self, db: AsyncSession) -> Dict[str, int]:
        async with atomic_session_operation(db):
            codes = await self.codes(db).purge_expired()
            tokens = await self.refresh_tokens(db).purge_expired()
        if codes or tokens:
            logger.info("Expired OAuth grants removed", authorization_codes=codes, refresh_tokens=tokens)
        return {"authorization_codes": codes, "refresh_tokens": tokens}


def _parse_grant(model, params: Mapping[str, Any]):
    try:
        return model.model_validate({k: v for k, v in params.items() if k in model.model_fields})
    except ValidationError as e:
        missing = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
        raise InvalidRequest(f"Missing or invalid parameters: {', '.join(missing)}") from e
