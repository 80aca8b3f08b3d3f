# NG-HEADER: Nombre de archivo: health.py
# NG-HEADER: Ubicación: services/routers/health.py
# NG-HEADER: Descripción: Endpoints de healthcheck y conectividad de base de datos.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Endpoints de health.

- Liveness básico (`/health`)
- Conectividad DB y taxonomía sembrada (`/health/db`)
"""
from __future__ import annotations

import time
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import EventType, Status
from db.session import get_db

router = APIRouter(prefix="/health", tags=["health"])
START_TIME = time.monotonic()


@router.get("")
async def health_root() -> Dict[str, Any]:
    """Liveness simple del backend (si responde, está vivo)."""
    return {"success": True, "message": "ok", "data": {"uptime_s": round(time.monotonic() - START_TIME, 1)}}


@router.get("/db")
async def health_db(db: AsyncSession = Depends(get_db)) -> Dict[str, Any]:
    t0 = time.perf_counter()
    try:
        await db.execute(text("SELECT 1"))
        statuses = await db.scalar(select(func.count()).select_from(Status))
        event_types = await db.scalar(select(func.count()).select_from(EventType))
    except Exception as e:  # pragma: no cover - depende del motor
        return {"success": False, "message": "db no disponible", "error": str(e)}
    return {
        "success": True,
        "message": "ok",
        "data": {
            "latency_ms": round((time.perf_counter() - t0) * 1000, 2),
            "statuses": statuses,
            "event_types": event_types,
        },
    }
