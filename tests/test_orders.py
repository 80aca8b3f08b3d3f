#!/usr/bin/env python
# NG-HEADER: Nombre de archivo: test_orders.py
# NG-HEADER: Ubicación: tests/test_orders.py
# NG-HEADER: Descripción: Órdenes parciales todo-o-nada, vendedor único y acceso por participante.
# NG-HEADER: Lineamientos: Ver AGENTS.md
from __future__ import annotations

import re

import pytest

from flows import buy, get_batch, harvest, split

pytestmark = pytest.mark.asyncio


async def _stock(client, users, distributor="distributor", quantities=(40, 60)):
    root = await harvest(client, users["farmer"], qty=sum(quantities))
    await buy(client, users[distributor], root["id"])
    data = await split(client, users[distributor], root["id"], *quantities)
    return root, data["children"]


async def test_order_decrements_and_completes(client, users):
    _, (a, b) = await _stock(client, users)
    r = await client.post(
        "/commerce/orders",
        json={
            "items": [
                {"batch_id": a["id"], "quantity": 10, "unit_price": 2.5},
                {"batch_id": b["id"], "quantity": 5, "unit_price": 10},
            ]
        },
        headers=users["shop"]["headers"],
    )
    assert r.status_code == 201, r.text
    order = r.json()["data"]
    assert re.fullmatch(r"ORD-\d{14}-[0-9A-F]{6}", order["order_number"])
    assert order["buyer_id"] == users["shop"]["id"]
    assert order["seller_id"] == users["distributor"]["id"]
    assert order["is_completed"] is True
    assert order["is_paid"] is False
    # 10 x 2.5 + 5 x 10
    assert order["total_amount"] == 75
    assert [i["subtotal"] for i in order["items"]] == [25, 50]

    assert (await get_batch(client, a["batch_code"]))["remaining_quantity"] == 30
    assert (await get_batch(client, b["batch_code"]))["remaining_quantity"] == 55
    # las órdenes no mueven billeteras
    r = await client.get("/auth/me/wallet", headers=users["shop"]["headers"])
    assert r.json()["data"]["balance"] == 20000


async def test_full_consumption_marks_sold_and_transfers(client, users):
    _, (a, _) = await _stock(client, users)
    r = await client.post(
        "/commerce/orders", json={"items": [{"batch_id": a["id"], "quantity": 40, "unit_price": 10}]}, headers=users["shop"]["headers"]
    )
    assert r.status_code == 201, r.text
    after = await get_batch(client, a["batch_code"])
    assert after["remaining_quantity"] == 0
    assert after["current_status"] == "Sold"
    assert after["current_owner"]["id"] == users["shop"]["id"]


async def test_order_is_all_or_nothing(client, users):
    _, (a, b) = await _stock(client, users)
    h = users["shop"]["headers"]
    r = await client.post(
        "/commerce/orders",
        json={"items": [{"batch_id": a["id"], "quantity": 10, "unit_price": 10}, {"batch_id": b["id"], "quantity": 61, "unit_price": 10}]},
        headers=h,
    )
    assert r.status_code == 409
    body = r.json()
    assert body["data"]["available"] == 60 and body["data"]["requested"] == 61
    assert "Disponible: 60" in body["message"] and "Solicitado: 61" in body["message"]

    assert (await get_batch(client, a["batch_code"]))["remaining_quantity"] == 40
    assert (await get_batch(client, b["batch_code"]))["remaining_quantity"] == 60
    r = await client.get("/commerce/orders", headers=h)
    assert r.json()["count"] == 0


async def test_repeated_batch_checks_cumulative_quantity(client, users):
    _, (a, _) = await _stock(client, users)
    r = await client.post(
        "/commerce/orders",
        json={"items": [{"batch_id": a["id"], "quantity": 30, "unit_price": 10}, {"batch_id": a["id"], "quantity": 20, "unit_price": 10}]},
        headers=users["shop"]["headers"],
    )
    assert r.status_code == 409
    assert r.json()["data"]["requested"] == 50
    assert (await get_batch(client, a["batch_code"]))["remaining_quantity"] == 40


async def test_multi_seller_order_rejected(client, users):
    _, (a, _) = await _stock(client, users)
    _, (c, _) = await _stock(client, users, distributor="distributor2", quantities=(10, 10))
    r = await client.post(
        "/commerce/orders",
        json={"items": [{"batch_id": a["id"], "quantity": 1, "unit_price": 10}, {"batch_id": c["id"], "quantity": 1, "unit_price": 10}]},
        headers=users["shop"]["headers"],
    )
    assert r.status_code == 400
    assert sorted(r.json()["data"]["sellers"]) == sorted([users["distributor"]["id"], users["distributor2"]["id"]])
    assert (await get_batch(client, a["batch_code"]))["remaining_quantity"] == 40
    assert (await get_batch(client, c["batch_code"]))["remaining_quantity"] == 10


async def test_order_validation(client, users):
    _, (a, _) = await _stock(client, users)
    h = users["shop"]["headers"]
    bad = [
        {"items": []},
        {"items": [{"quantity": 1, "unit_price": 10}]},
        {"items": [{"batch_id": a["id"]}]},
        {"items": [{"batch_id": a["id"], "quantity": 0, "unit_price": 10}]},
    ]
    for payload in bad:
        r = await client.post("/commerce/orders", json=payload, headers=h)
        assert r.status_code == 400, (payload, r.text)

    # sin precio unitario no se inventa uno
    r = await client.post(
        "/commerce/orders",
        json={"items": [{"batch_id": a["id"], "quantity": 10, "unit_price": 10}, {"batch_id": a["id"], "quantity": 10}]},
        headers=h,
    )
    assert r.status_code == 400
    body = r.json()
    assert body["error"] == "validation_error"
    assert body["message"] == "items[1]: falta el campo 'unit_price'"
    assert (await get_batch(client, a["batch_code"]))["remaining_quantity"] == 40

    r = await client.post("/commerce/orders", json={"items": [{"batch_id": 999, "quantity": 1, "unit_price": 10}]}, headers=h)
    assert r.status_code == 404

    # comprar lo propio
    r = await client.post(
        "/commerce/orders",
        json={"items": [{"batch_id": a["id"], "quantity": 1, "unit_price": 10}]},
        headers=users["distributor"]["headers"],
    )
    assert r.status_code == 409


async def test_order_visibility(client, users):
    _, (a, _) = await _stock(client, users)
    r = await client.post(
        "/commerce/orders", json={"items": [{"batch_id": a["id"], "quantity": 5, "unit_price": 10}]}, headers=users["shop"]["headers"]
    )
    oid = r.json()["data"]["id"]

    for who in ("shop", "distributor"):
        r = await client.get(f"/commerce/orders/{oid}", headers=users[who]["headers"])
        assert r.status_code == 200
        assert r.json()["data"]["items"][0]["quantity"] == 5
        r = await client.get("/commerce/orders", headers=users[who]["headers"])
        assert r.json()["count"] == 1

    r = await client.get(f"/commerce/orders/{oid}", headers=users["consumer"]["headers"])
    assert r.status_code == 403
    r = await client.get("/commerce/orders/9999", headers=users["shop"]["headers"])
    assert r.status_code == 404
