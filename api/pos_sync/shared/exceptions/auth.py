"""
Excepciones relacionadas con autenticación y autorización de la API local.
"""
from pos_sync.shared.exceptions.base import AppException


class AuthException(AppException):
    """Excepción base para errores de autenticación."""

    def __init__(self, message: str, error_code: str = "AUTH_ERROR", details=None):
        super().__init__(
            message=message,
            status_code=401,
            error_code=error_code,
            details=details
        )


class UnauthorizedException(AuthException):
    """Excepción para acceso sin token o con token inválido."""

    def __init__(self, message: str = "No autorizado"):
        super().__init__(
            message=message,
            error_code="UNAUTHORIZED"
        )


class ForbiddenException(AppException):
    """Excepción para un token válido sin el permiso requerido."""

    def __init__(self, permission: str):
        super().__init__(
            message=f"Permiso requerido: {permission}",
            status_code=403,
            error_code="FORBIDDEN",
            details={"permission": permission}
        )
