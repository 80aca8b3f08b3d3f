# NG-HEADER: Nombre de archivo: shop.py
# NG-HEADER: Ubicación: services/routers/shop.py
# NG-HEADER: Descripción: Endpoints de la tienda: inventario recibido y venta al consumidor.
# NG-HEADER: Lineamientos: Ver AGENTS.md
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Batch, Product, Status
from db.session import get_session
from services.auth import CurrentUser, require_roles
from services.ledger.batches import batch_to_dict
from services.ledger.events import status_names
from services.logistics.transitions import sell_to_consumer
from services.responses import ok, ok_list

router = APIRouter(prefix="/shop", tags=["shop"])

shopkeeper_only = require_roles("SHOPKEEPER")


class SellIn(BaseModel):
    batch_id: int
    final_price: Decimal
    location: Optional[str] = None


@router.get("/inventory")
async def inventory(user: CurrentUser = Depends(shopkeeper_only), db: AsyncSession = Depends(get_session)):
    statuses = await status_names(db)
    stmt = (
        select(Batch, Product.title)
        .join(Product, Product.id == Batch.product_id)
        .join(Status, Status.id == Batch.current_status_id)
        .where(Batch.current_owner_id == user.id, Status.name == "In Shop")
        .order_by(Batch.id.desc())
    )
    rows = (await db.execute(stmt)).all()
    return ok_list("Inventario de tienda", [batch_to_dict(b, statuses, product_title=t) for b, t in rows])


@router.post("/sell")
async def sell(payload: SellIn, user: CurrentUser = Depends(shopkeeper_only), db: AsyncSession = Depends(get_session)):
    batch = await sell_to_consumer(
        db, user, batch_id=payload.batch_id, final_price=payload.final_price, location=payload.location
    )
    statuses = await status_names(db)
    data = batch_to_dict(batch, statuses)
    data["final_price"] = payload.final_price
    return ok("Venta registrada", data)
