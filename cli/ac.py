# NG-HEADER: Nombre de archivo: ac.py
# NG-HEADER: Ubicación: cli/ac.py
# NG-HEADER: Descripción: CLI de AgriChain (base, usuarios demo, trazas y servidor de desarrollo).
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""CLI principal de AgriChain usando Typer."""
from __future__ import annotations

import asyncio
import json
import os
import sys

import typer
import uvicorn
from fastapi.encoders import jsonable_encoder

from db.seed import init_db, seed_demo_users
from db.session import SessionLocal, engine
from services.errors import NotFound
from services.traceability.engine import trace_batch

app = typer.Typer(help="Herramientas de línea de comandos para AgriChain")


@app.command()
def db_init() -> None:
    """Crea las tablas y siembra estados y tipos de evento."""
    asyncio.run(init_db(engine))
    typer.echo("Esquema y taxonomía listos")


@app.command()
def seed_demo(password: str = typer.Option("demo1234", help="Contraseña de los usuarios demo")) -> None:
    """Crea un usuario demo por rol (farmer, distributor, transporter, shop, consumer)."""

    async def _run() -> list[str]:
        await init_db(engine)
        async with SessionLocal() as session:
            return await seed_demo_users(session, password=password)

    created = asyncio.run(_run())
    if created:
        typer.echo("Usuarios creados: " + ", ".join(created))
    else:
        typer.echo("Los usuarios demo ya existían")


@app.command()
def trace(batch_code: str, summary: bool = typer.Option(False, "--summary", help="Sólo el recorrido")) -> None:
    """Imprime la traza completa de un lote en JSON."""

    async def _run() -> dict:
        async with SessionLocal() as session:
            return await trace_batch(session, batch_code)

    try:
        story = asyncio.run(_run())
    except NotFound as e:
        typer.echo(e.message, err=True)
        raise typer.Exit(code=1)
    if summary:
        for line in story["summary"]["journey"]:
            typer.echo(line)
        return
    typer.echo(json.dumps(jsonable_encoder(story), indent=2, ensure_ascii=False, default=str))


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", envvar="AGRICHAIN_HOST", help="Interfaz de escucha"),
    port: int = typer.Option(8000, envvar="AGRICHAIN_PORT", help="Puerto HTTP"),
    reload: bool = typer.Option(False, "--reload", help="Recarga al editar (sólo desarrollo)"),
) -> None:
    """Levanta la API con uvicorn.

    En Windows fuerza el event loop Selector, que psycopg async necesita.
    """
    if sys.platform.startswith("win"):
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    uvicorn.run(
        "services.api:app",
        host=host,
        port=port,
        reload=reload,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
        access_log=True,
    )


if __name__ == "__main__":
    app()
