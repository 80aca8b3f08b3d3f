# NG-HEADER: Nombre de archivo: errors.py
# NG-HEADER: Ubicación: services/errors.py
# NG-HEADER: Descripción: Jerarquía de errores de dominio y su código HTTP.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Errores de dominio.

Los servicios lanzan estas excepciones después de hacer rollback; los handlers
de ``services/api.py`` las convierten al sobre ``{success, message, error}``.
"""
from __future__ import annotations

from typing import Any


class AppError(Exception):
    """Error base con código HTTP y código corto legible por máquina."""

    status_code = 500
    code = "error"

    def __init__(self, message: str, *, data: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.data = data


class ValidationFailed(AppError):
    status_code = 400
    code = "validation_error"


class AuthError(AppError):
    status_code = 401
    code = "unauthorized"


class Forbidden(AppError):
    status_code = 403
    code = "forbidden"


class NotFound(AppError):
    status_code = 404
    code = "not_found"


class Conflict(AppError):
    status_code = 409
    code = "conflict"


class PreconditionFailed(AppError):
    """Estado o cantidad insuficiente. El mensaje incluye límite y pedido."""

    status_code = 409
    code = "precondition_failed"


class ConfigurationError(AppError):
    """Falta un dato de referencia (estado o tipo de evento) en la taxonomía."""

    status_code = 500
    code = "configuration_error"
