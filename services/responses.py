# NG-HEADER: Nombre de archivo: responses.py
# NG-HEADER: Ubicación: services/responses.py
# NG-HEADER: Descripción: Sobre JSON uniforme para respuestas de la API.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Helpers del sobre ``{success, message, data?, error?}``."""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from fastapi.encoders import jsonable_encoder


def _encode(data: Any) -> Any:
    # Decimal -> float para que el front no reciba strings
    return jsonable_encoder(data, custom_encoder={Decimal: float})


def ok(message: str, data: Any = None) -> dict:
    body: dict[str, Any] = {"success": True, "message": message}
    if data is not None:
        body["data"] = _encode(data)
    return body


def ok_list(message: str, items: list) -> dict:
    return {"success": True, "message": message, "count": len(items), "data": _encode(items)}


def fail(message: str, error: Optional[str] = None, data: Any = None) -> dict:
    body: dict[str, Any] = {"success": False, "message": message}
    if error:
        body["error"] = error
    if data is not None:
        body["data"] = _encode(data)
    return body
