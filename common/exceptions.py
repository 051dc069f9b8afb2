from fastapi import HTTPException, status


class CRMException(HTTPException):
    def __init__(self, status_code: int = 500, message: str = "Internal Server Error"):
        self.message = message
        self.status_code = status_code
        super().__init__(status_code=status_code, detail=self.message)


# ────────────────────────────────────────────────────────────────────────────────
# OAuth errors
#
# ``kind`` is the stable internal name (logged, asserted in tests); ``error``
# is the RFC 6749 code that goes on the wire.
# ────────────────────────────────────────────────────────────────────────────────
class OAuthError(CRMException):
    kind: str = "OAuthError"
    error: str = "invalid_request"
    default_status: int = status.HTTP_400_BAD_REQUEST
    default_message: str = "Invalid request"

    def __init__(self, message: str = None):
        super().__init__(self.default_status, message or self.default_message)

    @property
    def description(self) -> str:
        return self.message

    def to_payload(self) -> dict:
        return {"error": self.error, "error_description": self.description}


# Client-side request errors (400)
class InvalidClient(OAuthError):
    kind = "InvalidClient"
    error = "invalid_client"
    default_message = "Unknown client_id"


class InvalidRedirectUri(OAuthError):
    kind = "InvalidRedirectUri"
    default_message = "redirect_uri is not registered for this client"


class InvalidRequest(OAuthError):
    kind = "InvalidRequest"


class InvalidScope(OAuthError):
    kind = "InvalidScope"
    error = "invalid_scope"
    default_message = "Requested scope is not supported"


class InvalidClientMetadata(OAuthError):
    kind = "InvalidClientMetadata"
    error = "invalid_client_metadata"
    default_message = "Invalid client metadata"


class UnsupportedGrantType(OAuthError):
    kind = "UnsupportedGrantType"
    error = "unsupported_grant_type"
    default_message = "Unsupported grant_type"


# Grant failures. All share the wire code invalid_grant and a generic
# description so a caller cannot tell which check failed.
class GrantError(OAuthError):
    kind = "GrantError"
    error = "invalid_grant"
    default_message = "Invalid or expired grant"

    @property
    def description(self) -> str:
        return GrantError.default_message


class InvalidCode(GrantError):
    kind = "InvalidCode"
    default_message = "Authorization code not found"


class CodeAlreadyUsed(GrantError):
    kind = "CodeAlreadyUsed"
    default_message = "Authorization code already used"


class CodeExpired(GrantError):
    kind = "CodeExpired"
    default_message = "Authorization code expired"


class ClientMismatch(GrantError):
    kind = "ClientMismatch"
    default_message = "Grant was issued to a different client"


class RedirectMismatch(GrantError):
    kind = "RedirectMismatch"
    default_message = "redirect_uri does not match the authorization request"


class InvalidVerifier(GrantError):
    kind = "InvalidVerifier"
    default_message = "PKCE verification failed"


class InvalidRefreshToken(GrantError):
    kind = "InvalidRefreshToken"
    default_message = "Refresh token not found"


class RefreshTokenExpired(GrantError):
    kind = "RefreshTokenExpired"
    default_message = "Refresh token expired"


class UserInactive(GrantError):
    kind = "UserInactive"
    default_message = "User no longer exists or is inactive"


# Human login failures (401)
class AuthError(OAuthError):
    kind = "AuthError"
    error = "access_denied"
    default_status = status.HTTP_401_UNAUTHORIZED


class InvalidCredentials(AuthError):
    kind = "InvalidCredentials"
    default_message = "Invalid email or password"


class AccountInactive(AuthError):
    kind = "AccountInactive"
    default_message = "Account is inactive"


class InvalidOrExpiredSession(AuthError):
    kind = "InvalidOrExpiredSession"
    default_message = "Your sign-in session expired. Please start again."
