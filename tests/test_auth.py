#!/usr/bin/env python
# NG-HEADER: Nombre de archivo: test_auth.py
# NG-HEADER: Ubicación: tests/test_auth.py
# NG-HEADER: Descripción: Registro, login JWT, roles y saldos iniciales de billetera.
# NG-HEADER: Lineamientos: Ver AGENTS.md
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from core.config import settings
from flows import register

pytestmark = pytest.mark.asyncio


async def test_register_login_and_me(client):
    user = await register(client, "ana", "FARMER", "Ana")
    r = await client.post("/auth/login", json={"username": "ANA", "password": "secret123"})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["success"] is True
    token = body["data"]["token"]
    claims = jwt.decode(token, settings.secret_key, algorithms=["HS256"])
    assert claims["sub"] == str(user["id"])
    assert claims["role"] == "FARMER"
    assert claims["username"] == "ana"

    r = await client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 200
    assert r.json()["data"]["username"] == "ana"
    assert "X-Correlation-Id" in r.headers


async def test_register_rejects_duplicate_and_bad_role(client):
    await register(client, "ana", "FARMER")
    r = await client.post("/auth/register", json={"username": "ana", "password": "secret123", "role": "FARMER"})
    assert r.status_code == 409
    assert r.json()["error"] == "conflict"

    r = await client.post("/auth/register", json={"username": "beto", "password": "secret123", "role": "ADMIN"})
    assert r.status_code == 400
    assert r.json()["success"] is False

    # password demasiado corta -> validación por campo
    r = await client.post("/auth/register", json={"username": "carla", "password": "x", "role": "FARMER"})
    assert r.status_code == 400
    body = r.json()
    assert body["error"] == "validation_error"
    assert any(f["field"] == "password" for f in body["data"]["fields"])


async def test_login_bad_password(client):
    await register(client, "ana", "FARMER")
    r = await client.post("/auth/login", json={"username": "ana", "password": "nope-nope"})
    assert r.status_code == 401
    assert r.json() == {"success": False, "message": "Credenciales inválidas", "error": "unauthorized"}


async def test_missing_invalid_and_expired_tokens(client):
    user = await register(client, "ana", "FARMER")
    r = await client.get("/auth/me")
    assert r.status_code == 401

    r = await client.get("/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401

    expired = jwt.encode(
        {
            "sub": str(user["id"]),
            "username": "ana",
            "role": "FARMER",
            "exp": datetime.now(timezone.utc) - timedelta(minutes=1),
        },
        settings.secret_key,
        algorithm="HS256",
    )
    r = await client.get("/auth/me", headers={"Authorization": f"Bearer {expired}"})
    assert r.status_code == 401
    assert r.json()["message"] == "Token expirado"


async def test_role_gate_returns_403(client, users):
    r = await client.get("/distributor/marketplace", headers=users["farmer"]["headers"])
    assert r.status_code == 403
    assert r.json()["error"] == "forbidden"
    r = await client.get("/farmer/batches", headers=users["consumer"]["headers"])
    assert r.status_code == 403


async def test_opening_balances_by_role(client, users):
    r = await client.get("/auth/me/wallet", headers=users["distributor"]["headers"])
    data = r.json()["data"]
    assert data["balance"] == 50000
    assert data["transactions"][0]["reason"] == "opening_balance"

    r = await client.get("/auth/me/wallet", headers=users["shop"]["headers"])
    assert r.json()["data"]["balance"] == 20000

    r = await client.get("/auth/me/wallet", headers=users["farmer"]["headers"])
    assert r.json()["data"] == {"balance": 0, "transactions": []}


async def test_health_endpoints(client):
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json()["success"] is True
    r = await client.get("/health/db")
    data = r.json()["data"]
    assert data["statuses"] == 6
    assert data["event_types"] == 13
