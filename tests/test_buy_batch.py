#!/usr/bin/env python
# NG-HEADER: Nombre de archivo: test_buy_batch.py
# NG-HEADER: Ubicación: tests/test_buy_batch.py
# NG-HEADER: Descripción: Compra de lote completo con liquidación de billeteras.
# NG-HEADER: Lineamientos: Ver AGENTS.md
from __future__ import annotations

import pytest
from sqlalchemy import update

from db.models import Batch

from flows import buy, get_batch, harvest

pytestmark = pytest.mark.asyncio


async def _balance(client, user) -> float:
    r = await client.get("/auth/me/wallet", headers=user["headers"])
    return r.json()["data"]["balance"]


async def test_buy_transfers_ownership_and_settles(client, users):
    b = await harvest(client, users["farmer"], qty=10, price_per_unit=12.5)

    r = await client.get("/distributor/marketplace", headers=users["distributor"]["headers"])
    listed = r.json()["data"]
    assert [x["id"] for x in listed] == [b["id"]]
    assert listed[0]["owner_name"] == "Finca Uno"

    data = await buy(client, users["distributor"], b["id"])
    assert data["current_owner_id"] == users["distributor"]["id"]
    assert data["current_status"] == "In Warehouse"
    assert data["amount_paid"] == 125
    assert data["remaining_quantity"] == 10

    assert await _balance(client, users["distributor"]) == 49875
    assert await _balance(client, users["farmer"]) == 125

    r = await client.get("/auth/me/wallet", headers=users["farmer"]["headers"])
    tx = r.json()["data"]["transactions"][0]
    assert tx["credit"] == 125 and tx["counterparty_id"] == users["distributor"]["id"]

    # ya no figura en el mercado
    r = await client.get("/distributor/marketplace", headers=users["distributor"]["headers"])
    assert r.json()["count"] == 0


async def test_buy_uses_default_price(client, users):
    b = await harvest(client, users["farmer"], qty=100)
    data = await buy(client, users["distributor"], b["id"])
    assert data["amount_paid"] == 1000


async def test_buy_wrong_status(client, users):
    b = await harvest(client, users["farmer"], qty=10)
    await buy(client, users["distributor"], b["id"])
    r = await client.post("/distributor/buy", json={"batch_id": b["id"]}, headers=users["distributor2"]["headers"])
    assert r.status_code == 409
    assert r.json()["data"] == {"current": "In Warehouse", "required": "Harvested"}
    assert await _balance(client, users["distributor2"]) == 50000


async def test_buy_own_batch_is_conflict(client, users):
    b = await harvest(client, users["farmer"], qty=10)
    await buy(client, users["distributor"], b["id"])
    r = await client.post("/distributor/buy", json={"batch_id": b["id"]}, headers=users["distributor"]["headers"])
    assert r.status_code == 409
    assert r.json()["error"] == "conflict"


async def test_buy_insufficient_funds_changes_nothing(client, users):
    b = await harvest(client, users["farmer"], qty=10000)
    r = await client.post("/distributor/buy", json={"batch_id": b["id"]}, headers=users["distributor"]["headers"])
    assert r.status_code == 409
    body = r.json()
    assert "100000.00" in body["message"] and "50000.00" in body["message"]
    assert body["data"] == {"needed": 100000, "available": 50000}

    after = await get_batch(client, b["batch_code"])
    assert after["current_status"] == "Harvested"
    assert after["current_owner"]["id"] == users["farmer"]["id"]
    assert await _balance(client, users["distributor"]) == 50000
    assert await _balance(client, users["farmer"]) == 0


async def test_buy_exhausted_or_missing(client, users, db):
    b = await harvest(client, users["farmer"], qty=10)
    await db.execute(update(Batch).where(Batch.id == b["id"]).values(remaining_quantity=0))
    await db.commit()

    r = await client.post("/distributor/buy", json={"batch_id": b["id"]}, headers=users["distributor"]["headers"])
    assert r.status_code == 409
    assert r.json()["data"]["available"] == 0

    r = await client.post("/distributor/buy", json={"batch_id": 999}, headers=users["distributor"]["headers"])
    assert r.status_code == 404
