"""
Políticas de espera entre reintentos de conexión.

Módulo puro (sin I/O): el canal realtime y el monitor de salud solo le
piden el retardo del intento N y si ya se agoto el tope.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ExponentialBackoff:
    """
    delay(n) = min(base * 2**(n-1), max_delay), con n >= 1.

    - base_delay: retardo del primer reintento (segundos)
    - max_delay: techo del retardo (segundos)
    - max_attempts: intentos consecutivos permitidos antes de detenerse
    """

    base_delay: float = 1.0
    max_delay: float = 30.0
    max_attempts: int = 5

    def __post_init__(self) -> None:
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("Los retardos de backoff no pueden ser negativos")
        if self.max_attempts < 0:
            raise ValueError("max_attempts no puede ser negativo")

    def delay(self, attempt: int) -> float:
        if attempt < 1:
            return 0.0
        # Se acota el exponente para no construir enteros enormes
        exponent = min(attempt - 1, 62)
        return min(self.base_delay * (2 ** exponent), self.max_delay)

    def exhausted(self, attempts: int) -> bool:
        return attempts >= self.max_attempts


@dataclass(frozen=True)
class LinearBackoff:
    """delay(n) = step * n. Usado por el monitor de salud."""

    step: float = 5.0
    max_attempts: int = 5

    def delay(self, attempt: int) -> float:
        return self.step * max(attempt, 0)

    def exhausted(self, attempts: int) -> bool:
        return attempts >= self.max_attempts
