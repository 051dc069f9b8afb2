from common.models import Tenant, TenantStatus, User, UserRole
from .oauth_models import OAuthClient
from .auth_code_models import AuthorizationCode
from .refresh_token_models import OAuthRefreshToken

__all__ = [
    "Tenant",
    "TenantStatus",
    "User",
    "UserRole",
    "OAuthClient",
    "AuthorizationCode",
    "OAuthRefreshToken",
]
