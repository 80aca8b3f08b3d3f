# NG-HEADER: Nombre de archivo: commerce.py
# NG-HEADER: Ubicación: services/routers/commerce.py
# NG-HEADER: Descripción: Endpoints de órdenes de compra parciales.
# NG-HEADER: Lineamientos: Ver AGENTS.md
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from db.session import get_session
from services.auth import CurrentUser, get_current_user
from services.commerce.orders import create_order, get_order, list_orders, order_to_dict
from services.responses import ok, ok_list

router = APIRouter(prefix="/commerce", tags=["commerce"])


class OrderItemIn(BaseModel):
    batch_id: Optional[int] = None
    quantity: Optional[Decimal] = None
    unit_price: Optional[Decimal] = None


class OrderIn(BaseModel):
    items: list[OrderItemIn] = Field(default_factory=list)


@router.post("/orders", status_code=201)
async def post_order(payload: OrderIn, user: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_session)):
    order = await create_order(db, user, [it.model_dump() for it in payload.items])
    return ok("Orden creada", order_to_dict(order))


@router.get("/orders")
async def get_orders(user: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_session)):
    orders = await list_orders(db, user)
    return ok_list("Órdenes", [order_to_dict(o) for o in orders])


@router.get("/orders/{order_id}")
async def get_one(order_id: int, user: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_session)):
    order = await get_order(db, user, order_id)
    return ok("Orden", order_to_dict(order))
