from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import List, Literal, Optional
from urllib.parse import urlparse

SUPPORTED_SCOPES = ["crm:read", "crm:write"]
DEFAULT_SCOPE = "crm:read crm:write"
SUPPORTED_GRANT_TYPES = ["authorization_code", "refresh_token"]


def _normalize_scope(value: Optional[str]) -> Optional[str]:
    if value is None or not value.strip():
        return None
    return " ".join(value.split())


# ────────────────────────────────────────────────────────────────────────────────
# Dynamic client registration
# ────────────────────────────────────────────────────────────────────────────────
class ClientRegistrationRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    client_name: str = Field(..., min_length=1, description="Human-readable client name shown on the consent page")
    redirect_uris: List[str] = Field(..., min_length=1, description="Exact-match absolute redirect URIs")
    grant_types: List[str] = Field(default_factory=lambda: ["authorization_code"], description="Subset of authorization_code, refresh_token")
    token_endpoint_auth_method: str = Field("none", description="Only 'none' (public clients) is supported")

    @field_validator("client_name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("client_name must not be blank")
        return v

    @field_validator("redirect_uris")
    @classmethod
    def absolute_uris(cls, v: List[str]) -> List[str]:
        for uri in v:
            parsed = urlparse(uri)
            if not parsed.scheme or not parsed.netloc or parsed.fragment:
                raise ValueError(f"redirect_uri must be an absolute URI without fragment: {uri}")
        return v

    @field_validator("grant_types")
    @classmethod
    def supported_grants(cls, v: List[str]) -> List[str]:
        unsupported = [g for g in v if g not in SUPPORTED_GRANT_TYPES]
        if unsupported:
            raise ValueError(f"Unsupported grant_types: {', '.join(unsupported)}")
        if not v:
            return ["authorization_code"]
        return v

    @field_validator("token_endpoint_auth_method")
    @classmethod
    def public_client_only(cls, v: str) -> str:
        if v != "none":
            raise ValueError("Only token_endpoint_auth_method 'none' is supported")
        return v


class ClientRegistrationResponse(BaseModel):
    client_id: str
    client_name: str
    redirect_uris: List[str]
    grant_types: List[str]
    token_endpoint_auth_method: str = "none"
    client_id_issued_at: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


# ────────────────────────────────────────────────────────────────────────────────
# Authorization (browser-facing)
# ────────────────────────────────────────────────────────────────────────────────
class AuthorizationParams(BaseModel):
    """Parameters carried from the authorize query through login to consent."""
    client_id: str = Field(..., min_length=1)
    redirect_uri: str = Field(..., min_length=1)
    code_challenge: str = Field(..., min_length=1, max_length=128)
    code_challenge_method: Literal["S256"]
    state: Optional[str] = None
    scope: Optional[str] = None

    @field_validator("scope")
    @classmethod
    def normalize_scope(cls, v: Optional[str]) -> Optional[str]:
        return _normalize_scope(v)

    @field_validator("state")
    @classmethod
    def empty_state_is_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None


class AuthorizationRequest(AuthorizationParams):
    response_type: Literal["code"] = Field(..., description="Must be 'code' for authorization code flow")


class LoginForm(AuthorizationParams):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class ConsentForm(AuthorizationParams):
    auth_session_token: str = Field(..., min_length=1)
    decision: Literal["allow", "deny"]


# ────────────────────────────────────────────────────────────────────────────────
# Token endpoint
# ────────────────────────────────────────────────────────────────────────────────
class AuthorizationCodeGrant(BaseModel):
    code: str = Field(..., min_length=1)
    code_verifier: str = Field(..., min_length=1)
    client_id: str = Field(..., min_length=1)
    redirect_uri: str = Field(..., min_length=1)


class RefreshTokenGrant(BaseModel):
    refresh_token: str = Field(..., min_length=1)
    client_id: str = Field(..., min_length=1)

