# NG-HEADER: Nombre de archivo: codes.py
# NG-HEADER: Ubicación: db/codes.py
# NG-HEADER: Descripción: Generadores de códigos legibles para lotes y órdenes.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Códigos legibles (QR) de lotes y números de orden.

Formato: ``<PREFIJO>-<yyyymmddHHMMSS>-<6 hex>``. El sufijo aleatorio evita
colisiones dentro del mismo segundo; la unicidad final la garantiza el índice
único de la tabla.
"""
from __future__ import annotations

import secrets
from datetime import datetime, timezone


def _stamp(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y%m%d%H%M%S")


def new_batch_code(now: datetime | None = None) -> str:
    return f"BATCH-{_stamp(now)}-{secrets.token_hex(3).upper()}"


def new_order_number(now: datetime | None = None) -> str:
    return f"ORD-{_stamp(now)}-{secrets.token_hex(3).upper()}"
