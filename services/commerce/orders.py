# NG-HEADER: Nombre de archivo: orders.py
# NG-HEADER: Ubicación: services/commerce/orders.py
# NG-HEADER: Descripción: Órdenes de compra parciales sobre uno o más lotes (todo o nada).
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Motor de órdenes.

Una orden descuenta cantidades de uno o más lotes del mismo vendedor. Todos
los lotes se bloquean en una sola sentencia (ids únicos, orden por id) y la
validación se hace sobre la cantidad acumulada por lote antes de escribir
nada; si un ítem falla no queda ni la orden ni descuentos.
"""
from __future__ import annotations

import logging
from collections import OrderedDict
from decimal import Decimal
from typing import Any, Sequence

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from db.codes import new_order_number
from db.models import Batch, Order, OrderItem
from services.auth import CurrentUser
from services.commerce.wallet import money
from services.errors import Conflict, Forbidden, NotFound, PreconditionFailed, ValidationFailed
from services.ledger.batches import parse_quantity
from services.ledger.events import get_status, record_event

logger = logging.getLogger("agrichain.commerce")


def _parse_items(items: Sequence[dict]) -> list[dict]:
    if not items:
        raise ValidationFailed("La orden no tiene ítems")
    parsed = []
    for i, it in enumerate(items):
        raw_id = it.get("batch_id")
        if raw_id is None:
            raise ValidationFailed(f"items[{i}]: falta el campo 'batch_id'")
        try:
            batch_id = int(raw_id)
        except (TypeError, ValueError) as e:
            raise ValidationFailed(f"items[{i}].batch_id debe ser entero") from e
        qty = parse_quantity(it.get("quantity"), f"items[{i}].quantity")
        if qty <= 0:
            raise ValidationFailed(f"items[{i}].quantity debe ser mayor a 0")
        if it.get("unit_price") is None:
            raise ValidationFailed(f"items[{i}]: falta el campo 'unit_price'")
        unit_price = money(parse_quantity(it["unit_price"], f"items[{i}].unit_price"))
        if unit_price < 0:
            raise ValidationFailed(f"items[{i}].unit_price no puede ser negativo")
        parsed.append({"batch_id": batch_id, "quantity": qty, "unit_price": unit_price})
    return parsed


async def _lock_batches(db: AsyncSession, ids: list[int]) -> dict[int, Batch]:
    stmt = (
        select(Batch)
        .where(Batch.id.in_(ids))
        .order_by(Batch.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return {b.id: b for b in (await db.scalars(stmt)).all()}


async def create_order(db: AsyncSession, user: CurrentUser, items: Sequence[dict]) -> Order:
    """Crea y completa una orden.

    Cada ítem trae ``batch_id``, ``quantity`` y ``unit_price``; el total sale
    de los precios informados. La orden queda impaga (``is_paid=False``).
    """
    parsed = _parse_items(items)
    ids = list(OrderedDict.fromkeys(it["batch_id"] for it in parsed))
    try:
        batches = await _lock_batches(db, sorted(ids))
        for bid in ids:
            if bid not in batches:
                raise NotFound(f"Lote {bid} no encontrado")

        seller_id = batches[parsed[0]["batch_id"]].current_owner_id
        others = {batches[bid].current_owner_id for bid in ids} - {seller_id}
        if others:
            raise ValidationFailed(
                "La orden mezcla lotes de distintos vendedores; cree una orden por vendedor",
                data={"sellers": sorted({seller_id, *others})},
            )
        if seller_id == user.id:
            raise Conflict("No se puede comprar un lote propio")

        requested: dict[int, Decimal] = {}
        total = Decimal("0")
        for it in parsed:
            b = batches[it["batch_id"]]
            requested[b.id] = requested.get(b.id, Decimal("0")) + it["quantity"]
            available = Decimal(b.remaining_quantity)
            if requested[b.id] > available:
                raise PreconditionFailed(
                    f"Cantidad insuficiente para el lote {b.batch_code}. Disponible: {available}, Solicitado: {requested[b.id]}",
                    data={"batch_id": b.id, "available": available, "requested": requested[b.id]},
                )
            it["subtotal"] = money(it["quantity"] * it["unit_price"])
            total += it["subtotal"]

        order = Order(
            order_number=new_order_number(),
            buyer_id=user.id,
            seller_id=seller_id,
            total_amount=money(total),
            is_paid=False,
            is_completed=False,
            items=[],
        )
        db.add(order)
        await db.flush()

        sold = await get_status(db, "Sold")
        for it in parsed:
            b = batches[it["batch_id"]]
            b.remaining_quantity = Decimal(b.remaining_quantity) - it["quantity"]
            if b.remaining_quantity == 0:
                b.current_status_id = sold.id
                b.current_owner_id = user.id
            order.items.append(
                OrderItem(
                    batch_id=b.id,
                    quantity=it["quantity"],
                    unit_price=it["unit_price"],
                    subtotal=it["subtotal"],
                )
            )
            await record_event(
                db,
                batch=b,
                event_type="Sold",
                actor_id=user.id,
                details={
                    "order_number": order.order_number,
                    "quantity": str(it["quantity"]),
                    "unit_price": str(it["unit_price"]),
                },
            )
        order.is_completed = True
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info(
        "orden %s comprador=%s vendedor=%s items=%d total=%s",
        order.order_number,
        user.id,
        seller_id,
        len(parsed),
        order.total_amount,
    )
    return order


async def list_orders(db: AsyncSession, user: CurrentUser) -> list[Order]:
    stmt = (
        select(Order)
        .where(or_(Order.buyer_id == user.id, Order.seller_id == user.id))
        .options(selectinload(Order.items))
        .order_by(Order.id.desc())
    )
    return list((await db.scalars(stmt)).all())


async def get_order(db: AsyncSession, user: CurrentUser, order_id: int) -> Order:
    stmt = select(Order).where(Order.id == order_id).options(selectinload(Order.items))
    order = await db.scalar(stmt)
    if order is None:
        raise NotFound(f"Orden {order_id} no encontrada")
    if user.id not in (order.buyer_id, order.seller_id):
        raise Forbidden("La orden no pertenece al usuario")
    return order


def order_to_dict(order: Order) -> dict[str, Any]:
    return {
        "id": order.id,
        "order_number": order.order_number,
        "buyer_id": order.buyer_id,
        "seller_id": order.seller_id,
        "total_amount": order.total_amount,
        "is_paid": order.is_paid,
        "is_completed": order.is_completed,
        "created_at": order.created_at,
        "items": [
            {
                "id": it.id,
                "batch_id": it.batch_id,
                "quantity": it.quantity,
                "unit_price": it.unit_price,
                "subtotal": it.subtotal,
            }
            for it in order.items
        ],
    }
