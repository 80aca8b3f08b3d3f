# NG-HEADER: Nombre de archivo: transporter.py
# NG-HEADER: Ubicación: services/routers/transporter.py
# NG-HEADER: Descripción: Endpoints del transportista: viajes, entregas y eventos de ruta.
# NG-HEADER: Lineamientos: Ver AGENTS.md
from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Batch, Product, Status
from db.session import get_session
from services.auth import CurrentUser, require_roles
from services.ledger.batches import batch_to_dict
from services.ledger.events import (
    add_attachments,
    add_readings,
    attachment_to_dict,
    event_to_dict,
    log_transport_event,
    reading_to_dict,
    status_names,
)
from services.logistics.transitions import deliver_batch
from services.responses import ok, ok_list
from services.routers.farmer import AttachmentIn, ReadingIn

router = APIRouter(prefix="/transporter", tags=["transporter"])

transporter_only = require_roles("TRANSPORTER")


class DeliverIn(BaseModel):
    batch_id: int
    location: Optional[str] = None


class TransportEventIn(BaseModel):
    batch_id: int
    event_type: str = "Transport Checkpoint"
    location: Optional[str] = None
    details: Optional[dict[str, Any]] = None
    attachments: list[AttachmentIn] = Field(default_factory=list)
    iot_data: list[ReadingIn] = Field(default_factory=list)


class AttachmentsIn(BaseModel):
    attachments: list[AttachmentIn]


class ReadingsIn(BaseModel):
    iot_data: list[ReadingIn]


@router.get("/jobs")
async def jobs(user: CurrentUser = Depends(transporter_only), db: AsyncSession = Depends(get_session)):
    """Lotes en tránsito asignados al transportista o sin asignar."""
    statuses = await status_names(db)
    stmt = (
        select(Batch, Product.title)
        .join(Product, Product.id == Batch.product_id)
        .join(Status, Status.id == Batch.current_status_id)
        .where(Status.name == "In Transit", or_(Batch.carrier_id.is_(None), Batch.carrier_id == user.id))
        .order_by(Batch.updated_at, Batch.id)
    )
    rows = (await db.execute(stmt)).all()
    return ok_list("Viajes", [batch_to_dict(b, statuses, product_title=t) for b, t in rows])


@router.post("/deliver")
async def deliver(payload: DeliverIn, user: CurrentUser = Depends(transporter_only), db: AsyncSession = Depends(get_session)):
    batch = await deliver_batch(db, user, batch_id=payload.batch_id, location=payload.location)
    statuses = await status_names(db)
    return ok("Lote entregado", batch_to_dict(batch, statuses))


@router.post("/events", status_code=201)
async def log_event(
    payload: TransportEventIn, user: CurrentUser = Depends(transporter_only), db: AsyncSession = Depends(get_session)
):
    logged = await log_transport_event(
        db,
        user,
        batch_id=payload.batch_id,
        event_type=payload.event_type,
        location=payload.location,
        details=payload.details,
        attachments=[a.model_dump() for a in payload.attachments],
        readings=[r.model_dump() for r in payload.iot_data],
    )
    data = event_to_dict(logged.event, payload.event_type)
    data["attachments"] = [attachment_to_dict(a) for a in logged.attachments]
    data["iot_data"] = [reading_to_dict(r) for r in logged.readings]
    return ok("Evento registrado", data)


@router.post("/events/{event_id}/attachments", status_code=201)
async def attach(
    event_id: int,
    payload: AttachmentsIn,
    user: CurrentUser = Depends(transporter_only),
    db: AsyncSession = Depends(get_session),
):
    rows = await add_attachments(db, user, event_id, [a.model_dump() for a in payload.attachments])
    return ok_list("Adjuntos agregados", [attachment_to_dict(a) for a in rows])


@router.post("/events/{event_id}/iot-data", status_code=201)
async def iot_data(
    event_id: int,
    payload: ReadingsIn,
    user: CurrentUser = Depends(transporter_only),
    db: AsyncSession = Depends(get_session),
):
    rows = await add_readings(db, user, event_id, [r.model_dump() for r in payload.iot_data])
    return ok_list("Lecturas agregadas", [reading_to_dict(r) for r in rows])
