from fastapi import Request

from common.config import Settings
from oauth_service.app.services.oauth_service import OAuthService


def get_oauth_service(request: Request) -> OAuthService:
    return request.app.state.oauth_service


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings
