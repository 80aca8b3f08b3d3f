# NG-HEADER: Nombre de archivo: session.py
# NG-HEADER: Ubicación: db/session.py
# NG-HEADER: Descripción: Creación del engine y sesiones de SQLAlchemy.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Sesión asíncrona para SQLAlchemy."""
import os
from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from core.config import settings

# ``DEBUG_SQL=1`` activa el modo ``echo`` para ver las consultas generadas.
ECHO = os.getenv("DEBUG_SQL", "0") == "1"


def _install_sqlite_write_lock(engine: AsyncEngine) -> None:
    """Abre cada transacción SQLite con ``BEGIN IMMEDIATE``.

    SQLite ignora ``SELECT ... FOR UPDATE``; tomar el lock de escritura al
    comenzar la transacción serializa las mutaciones concurrentes igual que el
    lock de fila en Postgres: el segundo escritor espera al commit del primero
    y luego revalida contra el estado confirmado.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):  # pragma: no cover - wiring
        # Desactiva el BEGIN implícito del driver; lo emitimos nosotros
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):  # pragma: no cover - wiring
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(db_url: str) -> AsyncEngine:
    """Crea el engine asíncrono para ``db_url`` con los ajustes del proyecto."""
    if db_url.startswith("sqlite+"):
        # Una conexión por sesión: las transacciones concurrentes no comparten conexión
        eng = create_async_engine(
            db_url,
            echo=ECHO,
            future=True,
            poolclass=NullPool,
            connect_args={"timeout": 30},
        )
        _install_sqlite_write_lock(eng)
        return eng
    return create_async_engine(db_url, echo=ECHO, pool_pre_ping=True, future=True)


engine = build_engine(os.getenv("DB_URL") or settings.db_url)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as session:
        yield session


# Compatibilidad: algunos módulos esperan ``get_db`` como alias.
get_db = get_session
