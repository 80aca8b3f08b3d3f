# NG-HEADER: Nombre de archivo: farmer.py
# NG-HEADER: Ubicación: services/routers/farmer.py
# NG-HEADER: Descripción: Endpoints del agricultor: productos, cosechas y eventos de campo.
# NG-HEADER: Lineamientos: Ver AGENTS.md
from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Batch, Product
from db.session import get_session
from services.auth import CurrentUser, require_roles
from services.errors import ValidationFailed
from services.ledger.batches import batch_to_dict, create_batch
from services.ledger.events import (
    attachment_to_dict,
    event_to_dict,
    log_farmer_event,
    reading_to_dict,
    status_names,
)
from services.responses import ok, ok_list

router = APIRouter(prefix="/farmer", tags=["farmer"])

farmer_only = require_roles("FARMER")


class ProductIn(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    crop_details: Optional[str] = None


class BatchIn(BaseModel):
    product_id: Optional[int] = None
    product: Optional[ProductIn] = None
    initial_quantity: Decimal
    quantity_unit: str = "kg"
    harvest_date: Optional[date] = None
    price_per_unit: Optional[Decimal] = None
    location: Optional[str] = None


class AttachmentIn(BaseModel):
    file_url: str
    file_type: Optional[str] = None
    description: Optional[str] = None


class ReadingIn(BaseModel):
    reading_type: str
    value: Optional[float] = None
    unit: Optional[str] = None
    device_id: Optional[str] = None
    payload: Optional[dict[str, Any]] = None


class FarmerEventIn(BaseModel):
    batch_id: int
    event_type: str
    location: Optional[str] = None
    details: Optional[dict[str, Any]] = None
    attachments: list[AttachmentIn] = Field(default_factory=list)
    iot_data: list[ReadingIn] = Field(default_factory=list)


def _product_out(p: Product) -> dict:
    return {"id": p.id, "title": p.title, "crop_details": p.crop_details, "owner_id": p.owner_id, "created_at": p.created_at}


@router.get("/products")
async def list_products(user: CurrentUser = Depends(farmer_only), db: AsyncSession = Depends(get_session)):
    rows = (await db.scalars(select(Product).where(Product.owner_id == user.id).order_by(Product.id))).all()
    return ok_list("Productos", [_product_out(p) for p in rows])


@router.post("/products", status_code=201)
async def create_product(
    payload: ProductIn, user: CurrentUser = Depends(farmer_only), db: AsyncSession = Depends(get_session)
):
    title = payload.title.strip()
    if not title:
        raise ValidationFailed("Falta el campo 'title'")
    try:
        prod = Product(owner_id=user.id, title=title, crop_details=payload.crop_details)
        db.add(prod)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return ok("Producto creado", _product_out(prod))


@router.get("/batches")
async def list_batches(user: CurrentUser = Depends(farmer_only), db: AsyncSession = Depends(get_session)):
    statuses = await status_names(db)
    stmt = (
        select(Batch, Product.title)
        .join(Product, Product.id == Batch.product_id)
        .where(Product.owner_id == user.id)
        .order_by(Batch.id.desc())
    )
    rows = (await db.execute(stmt)).all()
    return ok_list("Lotes", [batch_to_dict(b, statuses, product_title=title) for b, title in rows])


@router.post("/batches", status_code=201)
async def harvest(payload: BatchIn, user: CurrentUser = Depends(farmer_only), db: AsyncSession = Depends(get_session)):
    batch, prod = await create_batch(
        db,
        user,
        product_id=payload.product_id,
        product=payload.product.model_dump() if payload.product else None,
        initial_quantity=payload.initial_quantity,
        quantity_unit=payload.quantity_unit,
        harvest_date=payload.harvest_date,
        price_per_unit=payload.price_per_unit,
        location=payload.location,
    )
    statuses = await status_names(db)
    return ok("Lote creado", batch_to_dict(batch, statuses, product_title=prod.title))


@router.post("/events", status_code=201)
async def log_event(
    payload: FarmerEventIn, user: CurrentUser = Depends(farmer_only), db: AsyncSession = Depends(get_session)
):
    logged = await log_farmer_event(
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
