# NG-HEADER: Nombre de archivo: taxonomy.py
# NG-HEADER: Ubicación: services/traceability/taxonomy.py
# NG-HEADER: Descripción: Tablas de clasificación de eventos por rol y resumen del recorrido.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Clasificación de eventos para la vista del consumidor.

Las reglas viven en tablas: para sumar un tipo de evento basta con agregar
una fila acá, sin tocar el recorrido del linaje.
"""
from __future__ import annotations

from typing import Iterable, Optional

STAGES: tuple[str, ...] = ("farmer", "distributor", "transporter", "retailer")

# Rol del actor -> etapa
ACTOR_ROLE_STAGE: dict[str, str] = {
    "FARMER": "farmer",
    "DISTRIBUTOR": "distributor",
    "TRANSPORTER": "transporter",
    "SHOPKEEPER": "retailer",
}

# Fallback cuando el actor no se puede clasificar (sin actor o CONSUMER)
EVENT_TYPE_STAGE: dict[str, str] = {
    "Harvest": "farmer",
    "Harvest Log": "farmer",
    "Chemical": "farmer",
    "Fertilizer Applied": "farmer",
    "Pesticide Applied": "farmer",
    "Irrigation": "farmer",
    "Split": "distributor",
    "Quality Check": "distributor",
    "Transport Start": "transporter",
    "Transport Checkpoint": "transporter",
    "Transport End": "transporter",
    "Sold": "retailer",
    "Sale": "retailer",
}

# Orden fijo del checklist: (tipo de evento, frase)
JOURNEY_MILESTONES: tuple[tuple[str, str], ...] = (
    ("Harvest", "🌾 Harvested from farm"),
    ("Fertilizer Applied", "🌱 Fertilizer applied"),
    ("Pesticide Applied", "🛡️ Pesticide applied"),
    ("Irrigation", "💧 Irrigated"),
    ("Transport Start", "🚚 Transported"),
    ("Quality Check", "✅ Quality checked"),
    ("Split", "📦 Split into smaller batches"),
    ("Sold", "💰 Sold"),
)
JOURNEY_FALLBACK = "📋 Product journey tracked"


def classify_stage(event_type: Optional[str], actor_role: Optional[str]) -> Optional[str]:
    """Etapa del evento: primero por rol del actor, después por tipo."""
    if actor_role and actor_role in ACTOR_ROLE_STAGE:
        return ACTOR_ROLE_STAGE[actor_role]
    if event_type:
        return EVENT_TYPE_STAGE.get(event_type)
    return None


def journey_summary(event_types: Iterable[Optional[str]]) -> list[str]:
    seen = {t for t in event_types if t}
    phrases = [phrase for etype, phrase in JOURNEY_MILESTONES if etype in seen]
    return phrases or [JOURNEY_FALLBACK]


def group_by_stage(events: Iterable[dict]) -> dict[str, list[dict]]:
    """Agrupa eventos ya serializados (claves ``event_type`` y ``actor.role``)."""
    out: dict[str, list[dict]] = {s: [] for s in STAGES}
    for ev in events:
        actor = ev.get("actor") or {}
        stage = classify_stage(ev.get("event_type"), actor.get("role"))
        if stage in out:
            out[stage].append(ev)
    return out
