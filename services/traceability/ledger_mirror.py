# NG-HEADER: Nombre de archivo: ledger_mirror.py
# NG-HEADER: Ubicación: services/traceability/ledger_mirror.py
# NG-HEADER: Descripción: Cliente de lectura del espejo de ledger distribuido.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Lectura opcional de transacciones de un espejo de ledger externo.

Es un enriquecimiento: cualquier falla (sin URL, URL mal formada, timeout,
HTTP no 2xx, JSON inválido) se loguea y devuelve ``available=False`` con lista vacía.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from core.config import settings

logger = logging.getLogger("agrichain.ledger_mirror")


@dataclass
class MirrorResult:
    available: bool
    transactions: list[dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"available": self.available, "transactions": self.transactions}
        if self.error:
            data["error"] = self.error
        return data


async def fetch_product_transactions(
    product_id: int,
    *,
    base_url: Optional[str] = None,
    timeout: Optional[float] = None,
) -> MirrorResult:
    base = (base_url or settings.ledger_mirror_url or "").rstrip("/")
    if not base:
        return MirrorResult(available=False)
    url = f"{base}/products/{product_id}/transactions"
    try:
        async with httpx.AsyncClient(timeout=timeout or settings.ledger_mirror_timeout) as client:
            r = await client.get(url)
            r.raise_for_status()
            payload = r.json()
    except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
        logger.warning("ledger mirror no disponible producto=%s url=%s: %s", product_id, url, e)
        return MirrorResult(available=False, error=type(e).__name__)
    txs = payload.get("transactions", []) if isinstance(payload, dict) else payload
    if not isinstance(txs, list):
        logger.warning("ledger mirror devolvió formato inesperado producto=%s", product_id)
        return MirrorResult(available=False, error="unexpected_payload")
    return MirrorResult(available=True, transactions=[t for t in txs if isinstance(t, dict)])
