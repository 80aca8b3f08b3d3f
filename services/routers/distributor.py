# NG-HEADER: Nombre de archivo: distributor.py
# NG-HEADER: Ubicación: services/routers/distributor.py
# NG-HEADER: Descripción: Endpoints del distribuidor: mercado, compra, fraccionamiento y despacho.
# NG-HEADER: Lineamientos: Ver AGENTS.md
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Batch, Product, Status, User
from db.session import get_session
from services.auth import CurrentUser, require_roles
from services.ledger.batches import batch_to_dict, buy_batch, split_batch
from services.ledger.events import status_names
from services.logistics.transitions import ship_batch
from services.responses import ok, ok_list

router = APIRouter(prefix="/distributor", tags=["distributor"])

distributor_only = require_roles("DISTRIBUTOR")


class BuyIn(BaseModel):
    batch_id: int


class SplitEntry(BaseModel):
    quantity: Decimal
    quantity_unit: Optional[str] = None


class SplitIn(BaseModel):
    parent_batch_id: int
    splits: list[SplitEntry] = Field(default_factory=list)
    location: Optional[str] = None


class ShipIn(BaseModel):
    batch_id: int
    destination_owner_id: int
    carrier_id: Optional[int] = None
    location: Optional[str] = None


@router.get("/marketplace")
async def marketplace(_: CurrentUser = Depends(distributor_only), db: AsyncSession = Depends(get_session)):
    """Lotes cosechados con cantidad disponible, con nombre del agricultor."""
    statuses = await status_names(db)
    stmt = (
        select(Batch, Product.title, User.name, User.username)
        .join(Product, Product.id == Batch.product_id)
        .join(User, User.id == Batch.current_owner_id)
        .join(Status, Status.id == Batch.current_status_id)
        .where(Status.name == "Harvested", Batch.remaining_quantity > 0)
        .order_by(Batch.created_at.desc(), Batch.id.desc())
    )
    rows = (await db.execute(stmt)).all()
    items = [
        batch_to_dict(b, statuses, product_title=title, owner_name=name or username)
        for b, title, name, username in rows
    ]
    return ok_list("Lotes disponibles", items)


@router.post("/buy")
async def buy(payload: BuyIn, user: CurrentUser = Depends(distributor_only), db: AsyncSession = Depends(get_session)):
    result = await buy_batch(db, user, batch_id=payload.batch_id)
    statuses = await status_names(db)
    data = batch_to_dict(result.batch, statuses)
    data["amount_paid"] = result.amount
    data["seller_id"] = result.seller_id
    return ok("Lote comprado", data)


@router.post("/split-batch", status_code=201)
async def split(payload: SplitIn, user: CurrentUser = Depends(distributor_only), db: AsyncSession = Depends(get_session)):
    result = await split_batch(
        db,
        user,
        parent_batch_id=payload.parent_batch_id,
        splits=[s.model_dump() for s in payload.splits],
        location=payload.location,
    )
    statuses = await status_names(db)
    return ok(
        f"Lote fraccionado en {len(result.children)}",
        {
            "parent": batch_to_dict(result.parent, statuses),
            "children": [batch_to_dict(c, statuses) for c in result.children],
            "total_split": result.total,
        },
    )


@router.get("/inventory")
async def inventory(user: CurrentUser = Depends(distributor_only), db: AsyncSession = Depends(get_session)):
    statuses = await status_names(db)
    stmt = (
        select(Batch, Product.title)
        .join(Product, Product.id == Batch.product_id)
        .where(Batch.current_owner_id == user.id)
        .order_by(Batch.id.desc())
    )
    rows = (await db.execute(stmt)).all()
    return ok_list("Inventario", [batch_to_dict(b, statuses, product_title=t) for b, t in rows])


@router.post("/ship")
async def ship(payload: ShipIn, user: CurrentUser = Depends(distributor_only), db: AsyncSession = Depends(get_session)):
    batch = await ship_batch(
        db,
        user,
        batch_id=payload.batch_id,
        destination_owner_id=payload.destination_owner_id,
        carrier_id=payload.carrier_id,
        location=payload.location,
    )
    statuses = await status_names(db)
    return ok("Lote despachado", batch_to_dict(batch, statuses))
