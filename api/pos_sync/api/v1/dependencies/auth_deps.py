"""
Dependencias de autenticación de la API local.

El token viaja como `Authorization: Bearer <token>` (o `X-API-Key`).
"""
from typing import Callable, Optional

from fastapi import Depends, Request

from pos_sync.application.interfaces.auth_capability import AuthCapability, Principal
from pos_sync.core.config import settings
from pos_sync.infrastructure.security.static_token_auth import StaticTokenAuth
from pos_sync.shared.exceptions.auth import ForbiddenException, UnauthorizedException


def extract_token(request: Request) -> Optional[str]:
    auth = request.headers.get("Authorization", "")
    if auth.lower().startswith("bearer "):
        return auth.split(" ", 1)[1].strip()
    api_key = request.headers.get("X-API-Key")
    if api_key:
        return api_key.strip()
    return None


def get_auth(request: Request) -> AuthCapability:
    """Capacidad de auth registrada en app.state (o la de ADMIN_TOKEN)."""
    auth = getattr(request.app.state, "auth", None)
    if auth is None:
        auth = StaticTokenAuth(settings.ADMIN_TOKEN)
        request.app.state.auth = auth
    return auth


def require_permission(permission: str) -> Callable:
    """
    Fabrica de dependencias que exige un permiso.

    Uso:
        principal: Principal = Depends(require_permission(PERMISSION_SYNC_READ))
    """

    def dependency(request: Request, auth: AuthCapability = Depends(get_auth)) -> Principal:
        principal = auth.verify_token(extract_token(request))
        if principal is None:
            raise UnauthorizedException("Token inválido o ausente")
        if not auth.has_permission(principal, permission):
            raise ForbiddenException(permission)
        return principal

    return dependency
