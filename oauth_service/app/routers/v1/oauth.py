from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession
from pydantic import ValidationError
from typing import Any, Dict, Optional
import structlog

from common.database import db_manager
from common.exceptions import AuthError, InvalidClientMetadata, InvalidRequest, OAuthError
from common.rate_limiter import rate_limiter, get_rate_limit

from oauth_service.app.dependencies import get_oauth_service
from oauth_service.app.schemas.oauth import (
    AuthorizationParams,
    AuthorizationRequest,
    ClientRegistrationRequest,
    ClientRegistrationResponse,
    ConsentForm,
    LoginForm,
)
from oauth_service.app.services.oauth_service import OAuthService
from oauth_service.app.utils.views import render_consent_page, render_error_page, render_login_page

router = APIRouter(prefix="/oauth", tags=["oauth"])
logger = structlog.get_logger("crm.oauth.routes")

NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}
CARRIED_FIELDS = set(AuthorizationParams.model_fields)


def _oauth_error_response(exc: OAuthError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload(), headers=NO_STORE)


def _server_error_response() -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "server_error", "error_description": "Internal server error"},
        headers=NO_STORE,
    )


def _error_page(message: str, status_code: int = status.HTTP_400_BAD_REQUEST,
                title: str = "Authorization error") -> HTMLResponse:
    return HTMLResponse(render_error_page(title, message), status_code=status_code)


def _validation_message(exc: ValidationError) -> str:
    fields = sorted({str(err["loc"][0]) for err in exc.errors() if err.get("loc")})
    return f"Invalid or missing parameters: {', '.join(fields)}" if fields else "Invalid request"


async def _read_params(request: Request) -> Dict[str, Any]:
    """Token requests arrive form-encoded per RFC 6749, but JSON bodies are accepted too."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError as e:
            raise InvalidRequest("Malformed JSON body") from e
        if not isinstance(body, dict):
            raise InvalidRequest("Request body must be an object")
        return body
    form = await request.form()
    return {key: value for key, value in form.items() if isinstance(value, str)}


# ================================
# DYNAMIC CLIENT REGISTRATION
# ================================
@router.post("/register", status_code=status.HTTP_201_CREATED)
@rate_limiter.limit(get_rate_limit("oauth", "register"))
async def register_client(
    request: Request,
    db: AsyncSession = Depends(db_manager.get_session),
    service: OAuthService = Depends(get_oauth_service),
):
    """RFC 7591 registration for public clients"""
    try:
        try:
            payload = await request.json()
        except ValueError as e:
            raise InvalidClientMetadata("Request body must be JSON") from e
        try:
            registration = ClientRegistrationRequest.model_validate(payload)
        except ValidationError as e:
            raise InvalidClientMetadata(_validation_message(e)) from e

        client = await service.register_client(db, registration)
    except OAuthError as e:
        logger.info("Client registration rejected", reason=e.message)
        return _oauth_error_response(e)
    except Exception:
        logger.exception("Client registration failed")
        return _server_error_response()

    response = ClientRegistrationResponse(
        client_id=client.client_id,
        client_name=client.client_name,
        redirect_uris=client.redirect_uris,
        grant_types=client.grant_types,
        token_endpoint_auth_method="none",
        client_id_issued_at=int(service.clock().timestamp()),
    )
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=response.model_dump(), headers=NO_STORE)


# ================================
# AUTHORIZATION (LOGIN + CONSENT)
# ================================
@router.get("/authorize", response_class=HTMLResponse)
async def authorize(
    request: Request,
    db: AsyncSession = Depends(db_manager.get_session),
    service: OAuthService = Depends(get_oauth_service),
):
    """Render the login page for a valid authorization request."""
    try:
        params = AuthorizationRequest.model_validate(dict(request.query_params))
    except ValidationError as e:
        return _error_page(_validation_message(e))

    try:
        client = await service.validate_client(db, params.client_id, params.redirect_uri, params.scope)
    except OAuthError as e:
        return _error_page(e.message)

    return HTMLResponse(render_login_page(client.client_name, params.model_dump(include=CARRIED_FIELDS)))


@router.post("/authorize", response_class=HTMLResponse)
@rate_limiter.limit(get_rate_limit("oauth", "login"))
async def authorize_login(
    request: Request,
    db: AsyncSession = Depends(db_manager.get_session),
    service: OAuthService = Depends(get_oauth_service),
):
    """Handle the login form and render the consent page."""
    raw = await request.form()
    try:
        form = LoginForm.model_validate({k: v for k, v in raw.items() if isinstance(v, str)})
    except ValidationError as e:
        return _error_page(_validation_message(e))

    carried = form.model_dump(include=CARRIED_FIELDS)
    try:
        client = await service.validate_client(db, form.client_id, form.redirect_uri, form.scope)
    except OAuthError as e:
        return _error_page(e.message)

    try:
        context = await service.begin_consent(db, form, client=client)
    except AuthError as e:
        return HTMLResponse(
            render_login_page(client.client_name, carried, error=e.message, email=form.email),
            status_code=status.HTTP_401_UNAUTHORIZED,
        )
    except Exception:
        logger.exception("Login step failed", client_id=form.client_id)
        return _error_page("Something went wrong. Please try again.",
                           status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, title="Server error")

    return HTMLResponse(render_consent_page(
        client_name=client.client_name,
        display_name=context.display_name,
        scopes=context.scopes,
        auth_session_token=context.auth_session_token,
        params=carried,
    ))


@router.post("/authorize/consent")
async def authorize_consent(
    request: Request,
    db: AsyncSession = Depends(db_manager.get_session),
    service: OAuthService = Depends(get_oauth_service),
):
    """Apply the user's allow/deny decision and redirect back to the client."""
    raw = await request.form()
    try:
        form = ConsentForm.model_validate({k: v for k, v in raw.items() if isinstance(v, str)})
    except ValidationError as e:
        return _error_page(_validation_message(e))

    try:
        location = await service.decide_consent(db, form)
    except OAuthError as e:
        return _error_page(e.message)
    except Exception:
        logger.exception("Consent step failed", client_id=form.client_id)
        return _error_page("Something went wrong. Please try again.",
                           status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, title="Server error")

    return RedirectResponse(location, status_code=status.HTTP_302_FOUND)


# ================================
# TOKEN ENDPOINT
# ================================
@router.post("/token")
@rate_limiter.limit(get_rate_limit("oauth", "token"))
async def token(
    request: Request,
    db: AsyncSession = Depends(db_manager.get_session),
    service: OAuthService = Depends(get_oauth_service),
):
    """OAuth 2.1 token endpoint: authorization_code and refresh_token grants"""
    grant_type: Optional[str] = None
    try:
        params = await _read_params(request)
        grant_type = params.get("grant_type")
        result = await service.exchange_token(db, grant_type, params)
    except OAuthError as e:
        logger.info("Token request rejected", grant_type=grant_type, kind=e.kind)
        return _oauth_error_response(e)
    except Exception:
        logger.exception("Token request failed", grant_type=grant_type)
        return _server_error_response()

    return JSONResponse(content=result, headers=NO_STORE)
