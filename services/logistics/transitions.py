# NG-HEADER: Nombre de archivo: transitions.py
# NG-HEADER: Ubicación: services/logistics/transitions.py
# NG-HEADER: Descripción: Transiciones de despacho, entrega y venta al consumidor.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Transiciones de estado de logística.

ship (distribuidor) -> In Transit, deliver (transportista) -> In Shop,
sell (tienda) -> Sold. Cada una bloquea la fila del lote y, si la
precondición no se cumple, informa el estado actual y el requerido.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from db.models import Batch, Status, User
from services.auth import CurrentUser
from services.commerce.wallet import credit, money
from services.errors import Forbidden, NotFound, PreconditionFailed, ValidationFailed
from services.ledger.batches import parse_quantity
from services.ledger.events import get_status, lock_batch, record_event

logger = logging.getLogger("agrichain.logistics")


async def _require_status(db: AsyncSession, batch: Batch, required: list[str]) -> str:
    current = (await db.get(Status, batch.current_status_id)).name
    if current not in required:
        wanted = required[0] if len(required) == 1 else " o ".join(required)
        raise PreconditionFailed(
            f"Estado actual '{current}', requerido '{wanted}'",
            data={"current": current, "required": required},
        )
    return current


def _require_owner(batch: Batch, user: CurrentUser) -> None:
    if batch.current_owner_id != user.id:
        raise Forbidden("El lote pertenece a otro usuario")


async def _user_with_role(db: AsyncSession, user_id: int, role: str, field: str) -> User:
    other = await db.get(User, user_id)
    if other is None:
        raise NotFound(f"{field}: usuario {user_id} no encontrado")
    if other.role != role:
        raise ValidationFailed(f"{field}: el usuario {user_id} no tiene rol {role}")
    return other


async def ship_batch(
    db: AsyncSession,
    user: CurrentUser,
    *,
    batch_id: int,
    destination_owner_id: int,
    carrier_id: Optional[int] = None,
    location: Optional[str] = None,
) -> Batch:
    try:
        batch = await lock_batch(db, batch_id)
        _require_owner(batch, user)
        await _require_status(db, batch, list(settings.ship_ready_statuses))
        if Decimal(batch.remaining_quantity) <= 0:
            raise PreconditionFailed(
                f"Lote {batch.batch_code} sin cantidad disponible. Disponible: {batch.remaining_quantity}",
                data={"available": batch.remaining_quantity},
            )
        await _user_with_role(db, destination_owner_id, "SHOPKEEPER", "destination_owner_id")
        if carrier_id is not None:
            await _user_with_role(db, carrier_id, "TRANSPORTER", "carrier_id")
        in_transit = await get_status(db, "In Transit")
        batch.current_status_id = in_transit.id
        batch.destination_owner_id = destination_owner_id
        batch.carrier_id = carrier_id
        await record_event(
            db,
            batch=batch,
            event_type="Transport Start",
            actor_id=user.id,
            location=location,
            details={"destination_owner_id": destination_owner_id, "carrier_id": carrier_id},
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info("lote %s despachado a tienda=%s carrier=%s", batch.batch_code, destination_owner_id, carrier_id)
    return batch


async def deliver_batch(
    db: AsyncSession,
    user: CurrentUser,
    *,
    batch_id: int,
    location: Optional[str] = None,
) -> Batch:
    try:
        batch = await lock_batch(db, batch_id)
        await _require_status(db, batch, ["In Transit"])
        if batch.carrier_id is not None and batch.carrier_id != user.id:
            raise Forbidden("El lote está asignado a otro transportista")
        if batch.destination_owner_id is None:
            raise PreconditionFailed(
                f"Lote {batch.batch_code} sin tienda destino",
                data={"current": None, "required": "destination_owner_id"},
            )
        in_shop = await get_status(db, "In Shop")
        previous_owner = batch.current_owner_id
        batch.current_status_id = in_shop.id
        batch.current_owner_id = batch.destination_owner_id
        batch.carrier_id = user.id
        await record_event(
            db,
            batch=batch,
            event_type="Transport End",
            actor_id=user.id,
            location=location,
            details={"from_owner_id": previous_owner, "to_owner_id": batch.destination_owner_id},
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info("lote %s entregado por transportista=%s", batch.batch_code, user.id)
    return batch


async def sell_to_consumer(
    db: AsyncSession,
    user: CurrentUser,
    *,
    batch_id: int,
    final_price: Any,
    location: Optional[str] = None,
) -> Batch:
    """Venta final en tienda: acredita ``final_price`` a la billetera del dueño."""
    price = money(parse_quantity(final_price, "final_price"))
    if price <= 0:
        raise ValidationFailed("final_price debe ser mayor a 0")
    try:
        batch = await lock_batch(db, batch_id)
        _require_owner(batch, user)
        await _require_status(db, batch, ["In Shop"])
        sold_qty = Decimal(batch.remaining_quantity)
        sold = await get_status(db, "Sold")
        batch.current_status_id = sold.id
        batch.remaining_quantity = Decimal("0")
        await credit(db, user_id=user.id, amount=price, reason="shop_sale", batch_id=batch.id)
        await record_event(
            db,
            batch=batch,
            event_type="Sale",
            actor_id=user.id,
            location=location,
            details={"final_price": str(price), "quantity": str(sold_qty)},
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info("lote %s vendido en tienda por %s", batch.batch_code, price)
    return batch
