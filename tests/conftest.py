#!/usr/bin/env python
# NG-HEADER: Nombre de archivo: conftest.py
# NG-HEADER: Ubicación: tests/conftest.py
# NG-HEADER: Descripción: Fixtures y configuración compartida de Pytest.
# NG-HEADER: Lineamientos: Ver AGENTS.md
import os
import sys
import tempfile
from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio

# Asegurar path del proyecto antes de importar módulos internos
project_root = Path(__file__).resolve().parents[1]
tests_dir = Path(__file__).resolve().parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))
if str(project_root) not in sys.path:
    sys.path.append(str(project_root))

# -------- Entorno base de tests --------
# El engine global apunta a un archivo descartable; cada test usa su propia DB.
_TMP_DIR = Path(tempfile.mkdtemp(prefix="agrichain-tests-"))
os.environ["ENV"] = "dev"
os.environ["DB_URL"] = f"sqlite+aiosqlite:///{_TMP_DIR / 'global.db'}"
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.pop("LEDGER_MIRROR_URL", None)

from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402

from core.config import settings  # noqa: E402
from db.seed import init_db  # noqa: E402
from db.session import build_engine, get_session  # noqa: E402
from services.api import app  # noqa: E402
from flows import register  # noqa: E402


@pytest_asyncio.fixture
async def engine(tmp_path):
    """DB SQLite en archivo por test (permite varias conexiones concurrentes)."""
    eng = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'agrichain.db'}")
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Cliente HTTP async contra la app con la sesión del test."""

    async def _override() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _override
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.pop(get_session, None)


@pytest.fixture(autouse=True)
def _no_ledger_mirror(monkeypatch):
    """Por defecto no hay espejo de ledger; los tests que lo necesitan lo configuran."""
    monkeypatch.setattr(settings, "ledger_mirror_url", None)
    yield


@pytest_asyncio.fixture
async def users(client) -> dict:
    """Un usuario por rol (más un segundo agricultor y distribuidor)."""
    return {
        "farmer": await register(client, "farmer", "FARMER", "Finca Uno"),
        "farmer2": await register(client, "farmer2", "FARMER", "Finca Dos"),
        "distributor": await register(client, "distributor", "DISTRIBUTOR"),
        "distributor2": await register(client, "distributor2", "DISTRIBUTOR"),
        "transporter": await register(client, "transporter", "TRANSPORTER"),
        "shop": await register(client, "shop", "SHOPKEEPER"),
        "consumer": await register(client, "consumer", "CONSUMER"),
    }
