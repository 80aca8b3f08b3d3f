# NG-HEADER: Nombre de archivo: traceability.py
# NG-HEADER: Ubicación: services/routers/traceability.py
# NG-HEADER: Descripción: Endpoints públicos de trazabilidad por código de lote.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Consulta pública (QR): no requiere token."""
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from db.session import get_session
from services.responses import ok, ok_list
from services.traceability.engine import batch_events, batch_genealogy, product_blockchain, trace_batch

router = APIRouter(prefix="/traceability", tags=["traceability"])


@router.get("/batch/{batch_code}")
async def trace(batch_code: str, db: AsyncSession = Depends(get_session)):
    return ok("Trazabilidad del lote", await trace_batch(db, batch_code))


@router.get("/batch/{batch_code}/genealogy")
async def genealogy(batch_code: str, db: AsyncSession = Depends(get_session)):
    return ok("Genealogía del lote", await batch_genealogy(db, batch_code))


@router.get("/batch/{batch_code}/events")
async def events(batch_code: str, db: AsyncSession = Depends(get_session)):
    return ok_list("Eventos del lote", await batch_events(db, batch_code))


@router.get("/product/{product_id}/blockchain")
async def blockchain(product_id: int, db: AsyncSession = Depends(get_session)):
    return ok("Transacciones del ledger", await product_blockchain(db, product_id))
