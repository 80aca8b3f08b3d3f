# NG-HEADER: Nombre de archivo: seed.py
# NG-HEADER: Ubicación: db/seed.py
# NG-HEADER: Descripción: Creación de esquema y siembra de taxonomía y usuarios demo.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Inicialización de base de datos.

- ``init_db``: crea tablas (``create_all``) y siembra la taxonomía de estados y
  tipos de evento. Idempotente: se ejecuta en cada arranque de la API.
- ``seed_demo_users``: usuarios de demostración (uno por rol) con contraseña
  conocida, sólo para entornos locales.
"""
from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from db.base import Base
from db.models import EventType, Status, User

logger = logging.getLogger("agrichain.seed")

STATUSES: tuple[tuple[str, str], ...] = (
    ("Harvested", "Cosechado por el agricultor, disponible para compra"),
    ("Processing", "Fraccionado por el distribuidor"),
    ("In Warehouse", "En depósito del distribuidor"),
    ("In Transit", "Despachado hacia la tienda"),
    ("In Shop", "Recibido por la tienda"),
    ("Sold", "Vendido"),
)

EVENT_TYPES: tuple[tuple[str, str], ...] = (
    ("Harvest", "Cosecha y alta del lote"),
    ("Harvest Log", "Registro de campo del agricultor"),
    ("Chemical", "Aplicación química genérica"),
    ("Fertilizer Applied", "Fertilización"),
    ("Pesticide Applied", "Aplicación de pesticida"),
    ("Irrigation", "Riego"),
    ("Quality Check", "Control de calidad"),
    ("Split", "Fraccionamiento en lotes hijos"),
    ("Sold", "Transferencia de propiedad"),
    ("Transport Start", "Inicio de transporte"),
    ("Transport Checkpoint", "Punto de control en ruta"),
    ("Transport End", "Entrega en destino"),
    ("Sale", "Venta al consumidor final"),
)

DEMO_USERS: tuple[tuple[str, str, str], ...] = (
    ("farmer", "Demo Farmer", "FARMER"),
    ("distributor", "Demo Distributor", "DISTRIBUTOR"),
    ("transporter", "Demo Transporter", "TRANSPORTER"),
    ("shop", "Demo Shop", "SHOPKEEPER"),
    ("consumer", "Demo Consumer", "CONSUMER"),
)


async def _ensure_names(db: AsyncSession, model, rows: Iterable[tuple[str, str]]) -> int:
    existing = set((await db.scalars(select(model.name))).all())
    added = 0
    for name, desc in rows:
        if name in existing:
            continue
        db.add(model(name=name, description=desc))
        added += 1
    return added


async def seed_taxonomy(db: AsyncSession) -> int:
    """Inserta los estados y tipos de evento faltantes. Devuelve filas nuevas."""
    added = await _ensure_names(db, Status, STATUSES)
    added += await _ensure_names(db, EventType, EVENT_TYPES)
    await db.commit()
    if added:
        logger.info("Taxonomía sembrada: %d filas nuevas", added)
    return added


async def init_db(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with AsyncSession(engine, expire_on_commit=False) as db:
        await seed_taxonomy(db)


async def seed_demo_users(db: AsyncSession, password: str = "demo1234") -> list[str]:
    """Crea un usuario por rol si no existe. Devuelve los usernames creados."""
    # Import diferido: services.auth depende de db.session
    from services.auth import hash_pw
    from services.commerce.wallet import open_wallet

    created: list[str] = []
    for username, name, role in DEMO_USERS:
        exists = await db.scalar(select(User.id).where(User.username == username))
        if exists:
            continue
        user = User(username=username, name=name, role=role, password_hash=hash_pw(password))
        db.add(user)
        await db.flush()
        await open_wallet(db, user)
        created.append(username)
    await db.commit()
    return created
