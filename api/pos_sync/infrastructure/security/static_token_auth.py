"""
Autenticación de la API local con un token estático (ADMIN_TOKEN por env).

IMPORTANTE:
- Un solo token con todos los permisos (terminal POS de un operador).
- Sin token configurado la API queda abierta: solo para desarrollo.
"""

from __future__ import annotations

import hmac
from typing import Optional

from pos_sync.application.interfaces.auth_capability import (
    PERMISSION_SYNC_ADMIN,
    PERMISSION_SYNC_READ,
    PERMISSION_SYNC_WRITE,
    Principal,
)


ALL_PERMISSIONS = frozenset({PERMISSION_SYNC_READ, PERMISSION_SYNC_WRITE, PERMISSION_SYNC_ADMIN})


class StaticTokenAuth:
    """
    Verifica un bearer token contra el token esperado.

    Usa comparación en tiempo constante (hmac.compare_digest) para reducir leaks
    por timing.
    """

    def __init__(self, expected_token: str) -> None:
        self._expected_token = expected_token or ""

    def is_configured(self) -> bool:
        return bool(self._expected_token)

    def verify_token(self, token: Optional[str]) -> Optional[Principal]:
        if not self.is_configured():
            return Principal(subject="anonymous", permissions=ALL_PERMISSIONS)

        # compare_digest requiere mismo tipo: str vs str (OK en py3)
        if token and hmac.compare_digest(token, self._expected_token):
            return Principal(subject="admin", permissions=ALL_PERMISSIONS)
        return None

    def has_permission(self, principal: Principal, permission: str) -> bool:
        return permission in principal.permissions
