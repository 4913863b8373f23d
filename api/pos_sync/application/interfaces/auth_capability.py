"""
Interfaz de la capacidad de autenticación/permisos.

El motor no implementa un sistema de usuarios: solo consume este contrato.
Implementaciones:
- StaticTokenAuth (token único por env).
- Fake/stub para tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol


# Permisos usados por la API de administración
PERMISSION_SYNC_READ = "sync:read"
PERMISSION_SYNC_WRITE = "sync:write"
PERMISSION_SYNC_ADMIN = "sync:admin"


@dataclass(frozen=True)
class Principal:
    """Identidad autenticada (mínima) y sus permisos."""

    subject: str
    permissions: frozenset = field(default_factory=frozenset)


class AuthCapability(Protocol):
    """Verifica tokens y permisos."""

    def verify_token(self, token: Optional[str]) -> Optional[Principal]:
        """Retorna el Principal si el token es válido, None si no."""
        ...

    def has_permission(self, principal: Principal, permission: str) -> bool:
        ...
