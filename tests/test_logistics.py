#!/usr/bin/env python
# NG-HEADER: Nombre de archivo: test_logistics.py
# NG-HEADER: Ubicación: tests/test_logistics.py
# NG-HEADER: Descripción: Despacho, entrega, venta en tienda y eventos de ruta del transportista.
# NG-HEADER: Lineamientos: Ver AGENTS.md
from __future__ import annotations

import pytest

from flows import buy, get_batch, harvest

pytestmark = pytest.mark.asyncio


async def _ship(client, users, batch_id, carrier=True):
    body = {"batch_id": batch_id, "destination_owner_id": users["shop"]["id"]}
    if carrier:
        body["carrier_id"] = users["transporter"]["id"]
    return await client.post("/distributor/ship", json=body, headers=users["distributor"]["headers"])


async def _warehouse_batch(client, users, qty=25):
    b = await harvest(client, users["farmer"], qty=qty)
    await buy(client, users["distributor"], b["id"])
    return b


async def test_ship_deliver_sell(client, users):
    b = await _warehouse_batch(client, users)

    r = await _ship(client, users, b["id"])
    assert r.status_code == 200, r.text
    data = r.json()["data"]
    assert data["current_status"] == "In Transit"
    assert data["destination_owner_id"] == users["shop"]["id"]
    assert data["carrier_id"] == users["transporter"]["id"]

    r = await client.get("/transporter/jobs", headers=users["transporter"]["headers"])
    assert [j["id"] for j in r.json()["data"]] == [b["id"]]

    r = await client.post("/transporter/deliver", json={"batch_id": b["id"]}, headers=users["transporter"]["headers"])
    assert r.status_code == 200, r.text
    data = r.json()["data"]
    assert data["current_status"] == "In Shop"
    assert data["current_owner_id"] == users["shop"]["id"]

    r = await client.get("/shop/inventory", headers=users["shop"]["headers"])
    assert r.json()["count"] == 1

    r = await client.post(
        "/shop/sell", json={"batch_id": b["id"], "final_price": 250}, headers=users["shop"]["headers"]
    )
    assert r.status_code == 200, r.text
    data = r.json()["data"]
    assert data["current_status"] == "Sold"
    assert data["remaining_quantity"] == 0
    assert data["final_price"] == 250

    r = await client.get("/auth/me/wallet", headers=users["shop"]["headers"])
    wallet = r.json()["data"]
    assert wallet["balance"] == 20250
    assert wallet["transactions"][0]["reason"] == "shop_sale"

    r = await client.get("/shop/inventory", headers=users["shop"]["headers"])
    assert r.json()["count"] == 0


async def test_transition_preconditions(client, users):
    b = await harvest(client, users["farmer"], qty=10)

    # recién cosechado: todavía no es del distribuidor
    r = await _ship(client, users, b["id"])
    assert r.status_code == 403

    await buy(client, users["distributor"], b["id"])
    r = await client.post("/transporter/deliver", json={"batch_id": b["id"]}, headers=users["transporter"]["headers"])
    assert r.status_code == 409
    assert r.json()["data"] == {"current": "In Warehouse", "required": ["In Transit"]}

    r = await client.post("/shop/sell", json={"batch_id": b["id"], "final_price": 5}, headers=users["shop"]["headers"])
    assert r.status_code == 403

    r = await _ship(client, users, b["id"])
    assert r.status_code == 200
    # un segundo despacho ya no corresponde
    r = await _ship(client, users, b["id"])
    assert r.status_code == 409
    assert r.json()["data"]["current"] == "In Transit"

    r = await client.get("/transporter/jobs", headers=users["transporter"]["headers"])
    assert r.json()["count"] == 1

    after = await get_batch(client, b["batch_code"])
    assert after["current_status"] == "In Transit"


async def test_sell_requires_positive_price(client, users):
    b = await _warehouse_batch(client, users)
    await _ship(client, users, b["id"])
    await client.post("/transporter/deliver", json={"batch_id": b["id"]}, headers=users["transporter"]["headers"])

    for price in (0, -10):
        r = await client.post(
            "/shop/sell", json={"batch_id": b["id"], "final_price": price}, headers=users["shop"]["headers"]
        )
        assert r.status_code == 400, price
    assert (await get_batch(client, b["batch_code"]))["current_status"] == "In Shop"


async def test_ship_destination_must_be_shopkeeper(client, users):
    b = await _warehouse_batch(client, users)
    r = await client.post(
        "/distributor/ship",
        json={"batch_id": b["id"], "destination_owner_id": users["consumer"]["id"]},
        headers=users["distributor"]["headers"],
    )
    assert r.status_code == 400
    r = await client.post(
        "/distributor/ship",
        json={
            "batch_id": b["id"],
            "destination_owner_id": users["shop"]["id"],
            "carrier_id": users["farmer"]["id"],
        },
        headers=users["distributor"]["headers"],
    )
    assert r.status_code == 400
    r = await client.post(
        "/distributor/ship",
        json={"batch_id": b["id"], "destination_owner_id": 9999},
        headers=users["distributor"]["headers"],
    )
    assert r.status_code == 404
    assert (await get_batch(client, b["batch_code"]))["current_status"] == "In Warehouse"


async def test_unassigned_shipment_is_open_to_any_transporter(client, users):
    b = await _warehouse_batch(client, users)
    r = await _ship(client, users, b["id"], carrier=False)
    assert r.json()["data"]["carrier_id"] is None

    r = await client.get("/transporter/jobs", headers=users["transporter"]["headers"])
    assert r.json()["count"] == 1
    r = await client.post("/transporter/deliver", json={"batch_id": b["id"]}, headers=users["transporter"]["headers"])
    assert r.status_code == 200
    assert r.json()["data"]["carrier_id"] == users["transporter"]["id"]


async def test_transport_events_and_children(client, users):
    b = await _warehouse_batch(client, users)
    h = users["transporter"]["headers"]

    # antes del despacho no hay ruta que registrar
    r = await client.post("/transporter/events", json={"batch_id": b["id"]}, headers=h)
    assert r.status_code == 409

    await _ship(client, users, b["id"])
    r = await client.post(
        "/transporter/events",
        json={
            "batch_id": b["id"],
            "location": "-31.4,-64.2",
            "iot_data": [{"reading_type": "temperature", "value": 4.5, "unit": "C", "device_id": "truck-7"}],
        },
        headers=h,
    )
    assert r.status_code == 201, r.text
    ev = r.json()["data"]
    assert ev["event_type"] == "Transport Checkpoint"
    assert ev["iot_data"][0]["value"] == 4.5
    assert (await get_batch(client, b["batch_code"]))["current_status"] == "In Transit"

    r = await client.post(
        f"/transporter/events/{ev['id']}/attachments",
        json={"attachments": [{"file_url": "https://files.test/remito.pdf", "file_type": "application/pdf"}]},
        headers=h,
    )
    assert r.status_code == 201
    assert r.json()["count"] == 1

    r = await client.post(
        f"/transporter/events/{ev['id']}/iot-data",
        json={"iot_data": [{"reading_type": "humidity", "value": 80}]},
        headers=h,
    )
    assert r.status_code == 201

    # tipo de evento ajeno a la ruta
    r = await client.post(
        "/transporter/events", json={"batch_id": b["id"], "event_type": "Irrigation"}, headers=h
    )
    assert r.status_code == 400

    other = await client.post(
        "/auth/register",
        json={"username": "trucker2", "password": "secret123", "role": "TRANSPORTER"},
    )
    h2 = {"Authorization": f"Bearer {other.json()['data']['token']}"}
    r = await client.post(
        f"/transporter/events/{ev['id']}/iot-data",
        json={"iot_data": [{"reading_type": "humidity", "value": 10}]},
        headers=h2,
    )
    assert r.status_code == 403
    r = await client.post("/transporter/events", json={"batch_id": b["id"]}, headers=h2)
    assert r.status_code == 403
