#!/usr/bin/env python
# NG-HEADER: Nombre de archivo: test_lineage.py
# NG-HEADER: Ubicación: tests/test_lineage.py
# NG-HEADER: Descripción: Unit tests del grafo de linaje y de las tablas de etapas/resumen.
# NG-HEADER: Lineamientos: Ver AGENTS.md
from __future__ import annotations

from decimal import Decimal

from services.traceability.engine import Lineage, LineageNode
from services.traceability.taxonomy import (
    JOURNEY_FALLBACK,
    classify_stage,
    group_by_stage,
    journey_summary,
)


def node(nid, parent=None, qty="10"):
    return LineageNode(
        id=nid,
        batch_code=f"B{nid}",
        product_id=1,
        parent_batch_id=parent,
        initial_quantity=Decimal(qty),
        remaining_quantity=Decimal(qty),
        quantity_unit="kg",
        status="Processing",
    )


def test_children_sorted_by_id():
    lin = Lineage([node(1), node(7, 1), node(3, 1), node(5, 3)], max_depth=10)
    gen = lin.genealogy(1)
    assert gen["is_root"] is True
    assert gen["truncated"] is False
    assert [c["batch_code"] for c in gen["tree"]["children"]] == ["B3", "B7"]
    assert gen["tree"]["children"][0]["children"][0]["batch_code"] == "B5"


def test_cycle_terminates_and_is_flagged():
    lin = Lineage([node(1, 2), node(2, 1)], max_depth=10)
    gen = lin.genealogy(1)
    assert gen["truncated"] is True
    assert gen["path"] == ["B2", "B1"]
    assert gen["tree"]["children"] == []


def test_self_parent_is_ignored_as_child():
    lin = Lineage([node(1, 1)], max_depth=10)
    chain, cut = lin.ancestors(1)
    assert chain == [1]
    assert cut is True


def test_depth_bound():
    nodes = [node(1)] + [node(i, i - 1) for i in range(2, 6)]
    lin = Lineage(nodes, max_depth=2)

    chain, cut = lin.ancestors(5)
    assert chain == [5, 4, 3]
    assert cut is True

    tree, cut = lin.descendants(1)
    assert cut is True
    assert tree["children"][0]["children"][0]["batch_code"] == "B3"
    assert tree["children"][0]["children"][0]["children"] == []


def test_missing_parent_reference_stops_chain():
    # el padre pertenece a otro producto o no existe
    lin = Lineage([node(4, 99)], max_depth=10)
    gen = lin.genealogy(4)
    assert gen["is_root"] is False
    assert gen["parent_batch_code"] is None
    assert gen["root_batch_code"] == "B4"
    assert gen["truncated"] is False


def test_journey_summary_uses_fixed_order():
    assert journey_summary(["Sold", "Split", "Harvest", "Harvest"]) == [
        "🌾 Harvested from farm",
        "📦 Split into smaller batches",
        "💰 Sold",
    ]
    assert journey_summary(["Transport Checkpoint", None]) == [JOURNEY_FALLBACK]
    assert journey_summary([]) == [JOURNEY_FALLBACK]


def test_classify_stage():
    assert classify_stage("Harvest", "DISTRIBUTOR") == "distributor"
    assert classify_stage("Sale", "CONSUMER") == "retailer"
    assert classify_stage("Transport Start", None) == "transporter"
    assert classify_stage("Something Else", None) is None
    assert classify_stage(None, None) is None


def test_group_by_stage():
    events = [
        {"event_type": "Harvest", "actor": {"role": "FARMER"}},
        {"event_type": "Split", "actor": None},
        {"event_type": "Unknown", "actor": {"role": "CONSUMER"}},
    ]
    grouped = group_by_stage(events)
    assert list(grouped) == ["farmer", "distributor", "transporter", "retailer"]
    assert len(grouped["farmer"]) == 1
    assert grouped["distributor"][0]["event_type"] == "Split"
    assert sum(len(v) for v in grouped.values()) == 2
