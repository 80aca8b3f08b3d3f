# NG-HEADER: Nombre de archivo: engine.py
# NG-HEADER: Ubicación: services/traceability/engine.py
# NG-HEADER: Descripción: Reconstrucción de genealogía y línea de tiempo de un lote.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Motor de trazabilidad.

Flujo de ``trace_batch``:
1. Resolver el lote por código.
2. Traer en una sola consulta todos los lotes del mismo producto.
3. Armar el mapa id -> lote y padre -> hijos y recorrerlo de forma iterativa:
   cadena hacia arriba (padres) y árbol hacia abajo (hijos). El recorrido usa
   conjunto de visitados y tope de profundidad (``MAX_LINEAGE_DEPTH``), así
   termina aunque los punteros estén corruptos.
4. Línea de tiempo de todos los eventos del linaje, ordenada por
   ``(recorded_at, id)``, con adjuntos, lecturas IoT y actor.
5. Etapas por rol y resumen del recorrido (``taxonomy``).
6. Transacciones del espejo de ledger (opcional, nunca hace fallar la traza).

Sólo lectura, sin locks.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from db.models import Batch, DeviceRawData, Event, EventAttachment, EventType, Product, User
from services.errors import NotFound
from services.ledger.events import attachment_to_dict, reading_to_dict, status_names
from services.traceability import ledger_mirror
from services.traceability.taxonomy import group_by_stage, journey_summary

logger = logging.getLogger("agrichain.traceability")


@dataclass
class LineageNode:
    id: int
    batch_code: str
    product_id: int
    parent_batch_id: Optional[int]
    initial_quantity: Decimal
    remaining_quantity: Decimal
    quantity_unit: str
    status: Optional[str]
    harvest_date: Optional[date] = None
    created_at: Optional[datetime] = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "batch_code": self.batch_code,
            "product_id": self.product_id,
            "parent_batch_id": self.parent_batch_id,
            "initial_quantity": self.initial_quantity,
            "remaining_quantity": self.remaining_quantity,
            "quantity_unit": self.quantity_unit,
            "status": self.status,
            "harvest_date": self.harvest_date,
            "created_at": self.created_at,
        }


class Lineage:
    """Grafo de linaje de un producto en memoria."""

    def __init__(self, nodes: Iterable[LineageNode], max_depth: int | None = None) -> None:
        self.max_depth = max_depth if max_depth is not None else settings.max_lineage_depth
        self.by_id: dict[int, LineageNode] = {n.id: n for n in nodes}
        self.children_of: dict[int, list[int]] = defaultdict(list)
        for nid in sorted(self.by_id):
            parent = self.by_id[nid].parent_batch_id
            if parent is not None and parent != nid and parent in self.by_id:
                self.children_of[parent].append(nid)

    def ancestors(self, start_id: int) -> tuple[list[int], bool]:
        """Cadena ``[start, padre, abuelo, ...]`` y si se cortó por ciclo o profundidad."""
        chain = [start_id]
        seen = {start_id}
        cur = self.by_id[start_id].parent_batch_id
        while cur is not None and cur in self.by_id:
            if cur in seen or len(chain) > self.max_depth:
                logger.warning("linaje cortado en lote %s (ciclo o profundidad)", cur)
                return chain, True
            chain.append(cur)
            seen.add(cur)
            cur = self.by_id[cur].parent_batch_id
        return chain, False

    def descendants(self, start_id: int, exclude: Iterable[int] = ()) -> tuple[dict[str, Any], bool]:
        """Árbol de hijos con raíz en ``start_id`` (cada nodo con ``children``)."""
        truncated = False
        root = self.by_id[start_id].as_dict()
        root["children"] = []
        visited = set(exclude) | {start_id}
        stack: list[tuple[int, dict[str, Any], int]] = [(start_id, root, 0)]
        while stack:
            nid, node, depth = stack.pop()
            for cid in self.children_of.get(nid, ()):
                if cid in visited or depth + 1 > self.max_depth:
                    truncated = True
                    continue
                visited.add(cid)
                child = self.by_id[cid].as_dict()
                child["children"] = []
                node["children"].append(child)
                stack.append((cid, child, depth + 1))
        return root, truncated

    def genealogy(self, start_id: int) -> dict[str, Any]:
        chain, up_cut = self.ancestors(start_id)
        tree, down_cut = self.descendants(start_id, exclude=chain)
        node = tree
        for pid in chain[1:]:
            parent = self.by_id[pid].as_dict()
            node["parent"] = parent
            node = parent
        node["parent"] = None
        start = self.by_id[start_id]
        parent_code = None
        if start.parent_batch_id is not None and start.parent_batch_id in self.by_id:
            parent_code = self.by_id[start.parent_batch_id].batch_code
        return {
            "is_root": start.parent_batch_id is None,
            "parent_batch_code": parent_code,
            "root_batch_code": self.by_id[chain[-1]].batch_code,
            "path": [self.by_id[i].batch_code for i in reversed(chain)],
            "truncated": up_cut or down_cut,
            "tree": tree,
        }


async def _batch_by_code(db: AsyncSession, batch_code: str) -> Batch:
    code = (batch_code or "").strip()
    batch = await db.scalar(select(Batch).where(Batch.batch_code == code)) if code else None
    if batch is None:
        raise NotFound(f"Lote '{batch_code}' no encontrado")
    return batch


async def load_lineage(db: AsyncSession, product_id: int) -> Lineage:
    statuses = await status_names(db)
    rows = (await db.scalars(select(Batch).where(Batch.product_id == product_id))).all()
    nodes = [
        LineageNode(
            id=b.id,
            batch_code=b.batch_code,
            product_id=b.product_id,
            parent_batch_id=b.parent_batch_id,
            initial_quantity=b.initial_quantity,
            remaining_quantity=b.remaining_quantity,
            quantity_unit=b.quantity_unit,
            status=statuses.get(b.current_status_id),
            harvest_date=b.harvest_date,
            created_at=b.created_at,
        )
        for b in rows
    ]
    return Lineage(nodes)


async def load_timeline(db: AsyncSession, lineage: Lineage) -> list[dict[str, Any]]:
    ids = list(lineage.by_id)
    if not ids:
        return []
    stmt = (
        select(Event, EventType.name, User)
        .join(EventType, EventType.id == Event.event_type_id)
        .outerjoin(User, User.id == Event.actor_user_id)
        .where(Event.batch_id.in_(ids))
        .order_by(Event.recorded_at, Event.id)
    )
    rows = (await db.execute(stmt)).all()
    event_ids = [ev.id for ev, _, _ in rows]

    atts: dict[int, list[dict]] = defaultdict(list)
    reads: dict[int, list[dict]] = defaultdict(list)
    if event_ids:
        for a in (
            await db.scalars(
                select(EventAttachment).where(EventAttachment.event_id.in_(event_ids)).order_by(EventAttachment.id)
            )
        ).all():
            atts[a.event_id].append(attachment_to_dict(a))
        for r in (
            await db.scalars(
                select(DeviceRawData).where(DeviceRawData.event_id.in_(event_ids)).order_by(DeviceRawData.id)
            )
        ).all():
            reads[r.event_id].append(reading_to_dict(r))

    timeline = []
    for ev, type_name, actor in rows:
        timeline.append(
            {
                "id": ev.id,
                "event_type": type_name,
                "batch_id": ev.batch_id,
                "batch_code": lineage.by_id[ev.batch_id].batch_code,
                "recorded_at": ev.recorded_at,
                "actor": (
                    {"id": actor.id, "username": actor.username, "name": actor.name, "role": actor.role}
                    if actor is not None
                    else None
                ),
                "location": ev.location_coords,
                "blockchain_tx": ev.blockchain_tx_hash,
                "details": ev.details,
                "attachments": atts.get(ev.id, []),
                "iot_data": reads.get(ev.id, []),
            }
        )
    return timeline


async def trace_batch(db: AsyncSession, batch_code: str) -> dict[str, Any]:
    """Historia completa de un lote para la vista del consumidor."""
    batch = await _batch_by_code(db, batch_code)
    product = await db.get(Product, batch.product_id)
    owner = await db.get(User, batch.current_owner_id)
    lineage = await load_lineage(db, batch.product_id)
    genealogy = lineage.genealogy(batch.id)
    timeline = await load_timeline(db, lineage)
    mirror = await ledger_mirror.fetch_product_transactions(batch.product_id)
    node = lineage.by_id[batch.id]

    logger.info(
        "traza %s: %d lotes, %d eventos, mirror=%s",
        batch.batch_code,
        len(lineage.by_id),
        len(timeline),
        mirror.available,
    )
    return {
        "batch": {
            "id": batch.id,
            "batch_code": batch.batch_code,
            "product": {
                "id": product.id,
                "title": product.title,
                "crop_details": product.crop_details,
                "owner_id": product.owner_id,
            }
            if product
            else None,
            "current_owner": (
                {"id": owner.id, "username": owner.username, "name": owner.name, "role": owner.role}
                if owner
                else None
            ),
            "current_status": node.status,
            "initial_quantity": batch.initial_quantity,
            "remaining_quantity": batch.remaining_quantity,
            "quantity_unit": batch.quantity_unit,
            "harvest_date": batch.harvest_date,
            "created_at": batch.created_at,
        },
        "genealogy": genealogy,
        "timeline": timeline,
        "lifecycle_stages": group_by_stage(timeline),
        "blockchain": mirror.as_dict(),
        "summary": {
            "total_events": len(timeline),
            "origin": "Split from parent batch" if batch.parent_batch_id else "Harvested from farm",
            "journey": journey_summary(ev["event_type"] for ev in timeline),
        },
    }


async def batch_genealogy(db: AsyncSession, batch_code: str) -> dict[str, Any]:
    batch = await _batch_by_code(db, batch_code)
    lineage = await load_lineage(db, batch.product_id)
    return lineage.genealogy(batch.id)


async def batch_events(db: AsyncSession, batch_code: str) -> list[dict[str, Any]]:
    batch = await _batch_by_code(db, batch_code)
    lineage = await load_lineage(db, batch.product_id)
    return await load_timeline(db, lineage)


async def product_blockchain(db: AsyncSession, product_id: int) -> dict[str, Any]:
    product = await db.get(Product, product_id)
    if product is None:
        raise NotFound(f"Producto {product_id} no encontrado")
    result = await ledger_mirror.fetch_product_transactions(product_id)
    return {"product_id": product_id, **result.as_dict()}
