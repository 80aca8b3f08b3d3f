# NG-HEADER: Nombre de archivo: events.py
# NG-HEADER: Ubicación: services/ledger/events.py
# NG-HEADER: Descripción: Registro de eventos de lote, chain log, adjuntos y lecturas IoT.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Eventos del ledger.

``record_event`` es el único punto que inserta en ``events``: agrega además la
fila de ``product_chain_log`` con el estado del lote en ese momento. Las
funciones ``log_*`` son operaciones completas (con commit) usadas por los
routers de agricultor y transportista.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import (
    Batch,
    DeviceRawData,
    Event,
    EventAttachment,
    EventType,
    ProductChainLog,
    Status,
)
from services.auth import CurrentUser
from services.errors import (
    ConfigurationError,
    Forbidden,
    NotFound,
    PreconditionFailed,
    ValidationFailed,
)

logger = logging.getLogger("agrichain.ledger")

# Tipos que el agricultor puede registrar sobre sus propios lotes
FARMER_EVENT_TYPES = frozenset(
    {"Chemical", "Fertilizer Applied", "Pesticide Applied", "Irrigation", "Quality Check", "Harvest Log"}
)
TRANSPORT_EVENT_TYPES = frozenset({"Transport Start", "Transport Checkpoint", "Transport End"})


async def get_status(db: AsyncSession, name: str) -> Status:
    row = await db.scalar(select(Status).where(Status.name == name))
    if row is None:
        raise ConfigurationError(f"Estado '{name}' ausente en la taxonomía")
    return row


async def get_event_type(db: AsyncSession, name: str) -> EventType:
    row = await db.scalar(select(EventType).where(EventType.name == name))
    if row is None:
        raise ConfigurationError(f"Tipo de evento '{name}' ausente en la taxonomía")
    return row


async def status_names(db: AsyncSession) -> dict[int, str]:
    rows = await db.execute(select(Status.id, Status.name))
    return {sid: name for sid, name in rows.all()}


async def lock_batch(db: AsyncSession, batch_id: int) -> Batch:
    """``SELECT ... FOR UPDATE`` sobre el lote; relee el estado confirmado."""
    stmt = (
        select(Batch)
        .where(Batch.id == batch_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    batch = await db.scalar(stmt)
    if batch is None:
        raise NotFound(f"Lote {batch_id} no encontrado")
    return batch


async def record_event(
    db: AsyncSession,
    *,
    batch: Batch,
    event_type: str,
    actor_id: Optional[int],
    location: Optional[str] = None,
    details: Optional[dict] = None,
    tx_hash: Optional[str] = None,
) -> Event:
    """Inserta el evento y su fila de chain log (estado actual del lote)."""
    etype = await get_event_type(db, event_type)
    ev = Event(
        event_type_id=etype.id,
        batch_id=batch.id,
        actor_user_id=actor_id,
        location_coords=location,
        blockchain_tx_hash=tx_hash,
        details=details,
    )
    db.add(ev)
    await db.flush()
    db.add(
        ProductChainLog(
            product_id=batch.product_id,
            batch_id=batch.id,
            event_id=ev.id,
            status_id=batch.current_status_id,
        )
    )
    return ev


def _attachment_rows(event_id: int, items: Iterable[dict]) -> list[EventAttachment]:
    out = []
    for it in items:
        url = (it.get("file_url") or "").strip()
        if not url:
            raise ValidationFailed("Adjunto sin file_url")
        out.append(
            EventAttachment(
                event_id=event_id,
                file_url=url,
                file_type=it.get("file_type"),
                description=it.get("description"),
            )
        )
    return out


def _reading_rows(event_id: int, items: Iterable[dict]) -> list[DeviceRawData]:
    out = []
    for it in items:
        kind = (it.get("reading_type") or "").strip()
        if not kind:
            raise ValidationFailed("Lectura IoT sin reading_type")
        out.append(
            DeviceRawData(
                event_id=event_id,
                device_id=it.get("device_id"),
                reading_type=kind,
                value=it.get("value"),
                unit=it.get("unit"),
                payload=it.get("payload"),
            )
        )
    return out


@dataclass
class LoggedEvent:
    event: Event
    attachments: list[EventAttachment]
    readings: list[DeviceRawData]


async def _log_with_children(
    db: AsyncSession,
    batch: Batch,
    event_type: str,
    user: CurrentUser,
    location: Optional[str],
    details: Optional[dict],
    attachments: Iterable[dict],
    readings: Iterable[dict],
) -> LoggedEvent:
    ev = await record_event(
        db, batch=batch, event_type=event_type, actor_id=user.id, location=location, details=details
    )
    atts = _attachment_rows(ev.id, attachments)
    reads = _reading_rows(ev.id, readings)
    db.add_all([*atts, *reads])
    return LoggedEvent(ev, atts, reads)


async def log_farmer_event(
    db: AsyncSession,
    user: CurrentUser,
    *,
    batch_id: int,
    event_type: str,
    location: Optional[str] = None,
    details: Optional[dict] = None,
    attachments: Iterable[dict] = (),
    readings: Iterable[dict] = (),
) -> LoggedEvent:
    """Registra un evento de campo sobre un lote propio del agricultor."""
    if event_type not in FARMER_EVENT_TYPES:
        raise ValidationFailed(
            f"Tipo de evento '{event_type}' no permitido; use uno de: {', '.join(sorted(FARMER_EVENT_TYPES))}"
        )
    try:
        batch = await lock_batch(db, batch_id)
        if batch.current_owner_id != user.id:
            raise Forbidden("El lote no pertenece al usuario")
        logged = await _log_with_children(
            db, batch, event_type, user, location, details, attachments, readings
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info("evento %s lote=%s user=%s", event_type, batch_id, user.id)
    return logged


async def log_transport_event(
    db: AsyncSession,
    user: CurrentUser,
    *,
    batch_id: int,
    event_type: str,
    location: Optional[str] = None,
    details: Optional[dict] = None,
    attachments: Iterable[dict] = (),
    readings: Iterable[dict] = (),
) -> LoggedEvent:
    """Registra un evento de ruta sobre un lote en tránsito asignado (o sin asignar)."""
    if event_type not in TRANSPORT_EVENT_TYPES:
        raise ValidationFailed(
            f"Tipo de evento '{event_type}' no permitido; use uno de: {', '.join(sorted(TRANSPORT_EVENT_TYPES))}"
        )
    try:
        batch = await lock_batch(db, batch_id)
        in_transit = await get_status(db, "In Transit")
        if batch.current_status_id != in_transit.id:
            current = (await db.get(Status, batch.current_status_id)).name
            raise PreconditionFailed(
                f"Estado actual '{current}', requerido 'In Transit'",
                data={"current": current, "required": "In Transit"},
            )
        if batch.carrier_id is not None and batch.carrier_id != user.id:
            raise Forbidden("El lote está asignado a otro transportista")
        logged = await _log_with_children(
            db, batch, event_type, user, location, details, attachments, readings
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info("evento %s lote=%s transportista=%s", event_type, batch_id, user.id)
    return logged


async def _own_event(db: AsyncSession, user: CurrentUser, event_id: int) -> Event:
    ev = await db.get(Event, event_id)
    if ev is None:
        raise NotFound(f"Evento {event_id} no encontrado")
    if ev.actor_user_id != user.id:
        raise Forbidden("Sólo el autor del evento puede agregarle datos")
    return ev


async def add_attachments(
    db: AsyncSession, user: CurrentUser, event_id: int, items: list[dict]
) -> list[EventAttachment]:
    if not items:
        raise ValidationFailed("Lista de adjuntos vacía")
    try:
        ev = await _own_event(db, user, event_id)
        rows = _attachment_rows(ev.id, items)
        db.add_all(rows)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return rows


async def add_readings(
    db: AsyncSession, user: CurrentUser, event_id: int, items: list[dict]
) -> list[DeviceRawData]:
    if not items:
        raise ValidationFailed("Lista de lecturas vacía")
    try:
        ev = await _own_event(db, user, event_id)
        rows = _reading_rows(ev.id, items)
        db.add_all(rows)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return rows


def event_to_dict(ev: Event, type_name: str | None = None) -> dict[str, Any]:
    return {
        "id": ev.id,
        "event_type": type_name,
        "batch_id": ev.batch_id,
        "actor_user_id": ev.actor_user_id,
        "location": ev.location_coords,
        "blockchain_tx": ev.blockchain_tx_hash,
        "details": ev.details,
        "recorded_at": ev.recorded_at,
    }


def attachment_to_dict(a: EventAttachment) -> dict[str, Any]:
    return {
        "id": a.id,
        "event_id": a.event_id,
        "file_url": a.file_url,
        "file_type": a.file_type,
        "description": a.description,
        "created_at": a.created_at,
    }


def reading_to_dict(r: DeviceRawData) -> dict[str, Any]:
    return {
        "id": r.id,
        "event_id": r.event_id,
        "device_id": r.device_id,
        "reading_type": r.reading_type,
        "value": r.value,
        "unit": r.unit,
        "payload": r.payload,
        "recorded_at": r.recorded_at,
    }
