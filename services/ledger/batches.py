# NG-HEADER: Nombre de archivo: batches.py
# NG-HEADER: Ubicación: services/ledger/batches.py
# NG-HEADER: Descripción: Alta, fraccionamiento y compra de lotes bajo lock de fila.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Operaciones del ledger de lotes.

Cada operación es una única transacción: cualquier excepción hace rollback
completo antes de propagarse. Las mutaciones de un lote existente toman
``SELECT ... FOR UPDATE`` sobre su fila y validan contra el estado releído,
de modo que el perdedor de una carrera ve lo que confirmó el ganador.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from db.codes import new_batch_code
from db.models import Batch, Product, Status
from services.auth import CurrentUser
from services.commerce.wallet import money, transfer
from services.errors import (
    ConfigurationError,
    Conflict,
    Forbidden,
    NotFound,
    PreconditionFailed,
    ValidationFailed,
)
from services.ledger.events import get_status, lock_batch, record_event

logger = logging.getLogger("agrichain.ledger")

ZERO = Decimal("0")


def parse_quantity(value: Any, field: str) -> Decimal:
    if value is None or value == "":
        raise ValidationFailed(f"Falta el campo '{field}'")
    try:
        q = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValidationFailed(f"'{field}' debe ser numérico") from e
    if not q.is_finite():
        raise ValidationFailed(f"'{field}' debe ser numérico")
    return q


async def create_batch(
    db: AsyncSession,
    user: CurrentUser,
    *,
    initial_quantity: Any,
    quantity_unit: str = "kg",
    product_id: Optional[int] = None,
    product: Optional[dict] = None,
    harvest_date: Optional[date] = None,
    price_per_unit: Any = None,
    location: Optional[str] = None,
) -> tuple[Batch, Product]:
    """Cosecha: crea un lote raíz con su evento Harvest.

    Acepta ``product_id`` de un producto propio o un ``product`` inline
    (``{title, crop_details}``) que se crea en la misma transacción.
    """
    qty = parse_quantity(initial_quantity, "initial_quantity")
    if qty <= 0:
        raise ValidationFailed("initial_quantity debe ser mayor a 0")
    unit = (quantity_unit or "").strip()
    if not unit:
        raise ValidationFailed("Falta el campo 'quantity_unit'")
    price = None
    if price_per_unit is not None:
        price = money(parse_quantity(price_per_unit, "price_per_unit"))
        if price < 0:
            raise ValidationFailed("price_per_unit no puede ser negativo")
    if product_id is None and not product:
        raise ValidationFailed("Debe indicar product_id o product")

    try:
        if product_id is not None:
            prod = await db.get(Product, product_id)
            if prod is None:
                raise NotFound(f"Producto {product_id} no encontrado")
            if prod.owner_id != user.id:
                raise Forbidden("El producto pertenece a otro agricultor")
        else:
            title = (product.get("title") or "").strip()
            if not title:
                raise ValidationFailed("Falta el campo 'product.title'")
            prod = Product(owner_id=user.id, title=title, crop_details=product.get("crop_details"))
            db.add(prod)
            await db.flush()

        harvested = await get_status(db, "Harvested")
        batch = Batch(
            batch_code=new_batch_code(),
            product_id=prod.id,
            parent_batch_id=None,
            current_owner_id=user.id,
            current_status_id=harvested.id,
            initial_quantity=qty,
            remaining_quantity=qty,
            quantity_unit=unit,
            price_per_unit=price,
            harvest_date=harvest_date,
        )
        db.add(batch)
        await db.flush()
        await record_event(
            db,
            batch=batch,
            event_type="Harvest",
            actor_id=user.id,
            location=location,
            details={"initial_quantity": str(qty), "quantity_unit": unit},
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info("lote creado %s producto=%s qty=%s%s", batch.batch_code, prod.id, qty, unit)
    return batch, prod


@dataclass
class SplitResult:
    parent: Batch
    children: list[Batch]
    total: Decimal


async def _child_status(db: AsyncSession) -> Status:
    try:
        return await get_status(db, "Processing")
    except ConfigurationError:
        logger.warning("Estado 'Processing' ausente; usando '%s'", settings.split_fallback_status)
        return await get_status(db, settings.split_fallback_status)


async def split_batch(
    db: AsyncSession,
    user: CurrentUser,
    *,
    parent_batch_id: int,
    splits: Sequence[dict],
    location: Optional[str] = None,
) -> SplitResult:
    """Fracciona un lote propio en lotes hijos.

    El padre debe estar en uno de ``SHIP_READY_STATUSES`` (un lote en tránsito
    o ya en tienda no se fracciona). Las entradas con cantidad 0 se ignoran.
    La suma se descuenta del padre y, si el remanente llega a 0, el padre pasa
    a 'In Warehouse'.
    """
    if not splits:
        raise ValidationFailed("La lista de fracciones está vacía")
    parsed: list[tuple[Decimal, Optional[str]]] = []
    for i, s in enumerate(splits):
        q = parse_quantity(s.get("quantity"), f"splits[{i}].quantity")
        if q < 0:
            raise ValidationFailed(f"splits[{i}].quantity no puede ser negativo")
        unit = (s.get("quantity_unit") or "").strip() or None
        parsed.append((q, unit))
    total = sum((q for q, _ in parsed), ZERO)
    if total <= 0:
        raise ValidationFailed("La suma de las fracciones debe ser mayor a 0")

    try:
        parent = await lock_batch(db, parent_batch_id)
        if parent.current_owner_id != user.id:
            raise Forbidden("El lote pertenece a otro usuario")
        ready = list(settings.ship_ready_statuses)
        current = (await db.get(Status, parent.current_status_id)).name
        if current not in ready:
            raise PreconditionFailed(
                f"Estado actual '{current}', requerido '{' o '.join(ready)}'",
                data={"current": current, "required": ready},
            )
        for i, (_, unit) in enumerate(parsed):
            if unit is not None and unit != parent.quantity_unit:
                raise ValidationFailed(
                    f"splits[{i}].quantity_unit '{unit}' no coincide con la unidad del lote '{parent.quantity_unit}'"
                )
        remaining = Decimal(parent.remaining_quantity)
        if total > remaining:
            raise PreconditionFailed(
                f"Cantidad insuficiente en el lote {parent.batch_code}. Disponible: {remaining}, Solicitado: {total}",
                data={"batch_id": parent.id, "available": remaining, "requested": total},
            )
        child_status = await _child_status(db)
        children: list[Batch] = []
        for q, _ in parsed:
            if q == 0:
                continue
            child = Batch(
                batch_code=new_batch_code(),
                product_id=parent.product_id,
                parent_batch_id=parent.id,
                current_owner_id=user.id,
                current_status_id=child_status.id,
                initial_quantity=q,
                remaining_quantity=q,
                quantity_unit=parent.quantity_unit,
                price_per_unit=parent.price_per_unit,
                harvest_date=parent.harvest_date,
            )
            db.add(child)
            await db.flush()
            await record_event(
                db,
                batch=child,
                event_type="Split",
                actor_id=user.id,
                location=location,
                details={"parent_batch_code": parent.batch_code, "quantity": str(q)},
            )
            children.append(child)
        parent.remaining_quantity = remaining - total
        if parent.remaining_quantity == 0:
            warehouse = await get_status(db, "In Warehouse")
            parent.current_status_id = warehouse.id
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info(
        "lote %s fraccionado en %d (total=%s, remanente=%s)",
        parent.batch_code,
        len(children),
        total,
        parent.remaining_quantity,
    )
    return SplitResult(parent=parent, children=children, total=total)


@dataclass
class PurchaseResult:
    batch: Batch
    seller_id: int
    amount: Decimal


async def buy_batch(db: AsyncSession, user: CurrentUser, *, batch_id: int) -> PurchaseResult:
    """Compra del lote completo a su dueño actual (agricultor).

    El costo es ``price_per_unit × remaining_quantity`` (o el precio por
    defecto) y se liquida entre billeteras en la misma transacción.
    """
    try:
        batch = await lock_batch(db, batch_id)
        if batch.current_owner_id == user.id:
            raise Conflict("El lote ya pertenece al comprador")
        harvested = await get_status(db, "Harvested")
        if batch.current_status_id != harvested.id:
            current = (await db.get(Status, batch.current_status_id)).name
            raise PreconditionFailed(
                f"Estado actual '{current}', requerido 'Harvested'",
                data={"current": current, "required": "Harvested"},
            )
        remaining = Decimal(batch.remaining_quantity)
        if remaining <= 0:
            raise PreconditionFailed(
                f"Lote {batch.batch_code} agotado. Disponible: {remaining}",
                data={"available": remaining},
            )
        price = Decimal(batch.price_per_unit) if batch.price_per_unit is not None else settings.default_price_per_unit
        cost = money(price * remaining)
        seller_id = batch.current_owner_id
        if cost > 0:
            await transfer(
                db,
                payer_id=user.id,
                payee_id=seller_id,
                amount=cost,
                reason="batch_purchase",
                batch_id=batch.id,
            )
        warehouse = await get_status(db, "In Warehouse")
        batch.current_owner_id = user.id
        batch.current_status_id = warehouse.id
        await record_event(
            db,
            batch=batch,
            event_type="Sold",
            actor_id=user.id,
            details={"seller_id": seller_id, "buyer_id": user.id, "amount": str(cost)},
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info("lote %s comprado por user=%s a user=%s (%s)", batch.batch_code, user.id, seller_id, cost)
    return PurchaseResult(batch=batch, seller_id=seller_id, amount=cost)


def batch_to_dict(
    b: Batch,
    statuses: dict[int, str],
    *,
    product_title: Optional[str] = None,
    owner_name: Optional[str] = None,
) -> dict[str, Any]:
    data = {
        "id": b.id,
        "batch_code": b.batch_code,
        "product_id": b.product_id,
        "parent_batch_id": b.parent_batch_id,
        "current_owner_id": b.current_owner_id,
        "current_status": statuses.get(b.current_status_id),
        "initial_quantity": b.initial_quantity,
        "remaining_quantity": b.remaining_quantity,
        "quantity_unit": b.quantity_unit,
        "price_per_unit": b.price_per_unit,
        "harvest_date": b.harvest_date,
        "destination_owner_id": b.destination_owner_id,
        "carrier_id": b.carrier_id,
        "created_at": b.created_at,
    }
    if product_title is not None:
        data["product_title"] = product_title
    if owner_name is not None:
        data["owner_name"] = owner_name
    return data
