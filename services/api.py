# NG-HEADER: Nombre de archivo: api.py
# NG-HEADER: Ubicación: services/api.py
# NG-HEADER: Descripción: Aplicación FastAPI: logging, middleware, handlers de error y routers.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Aplicación FastAPI principal de AgriChain."""

import logging
from logging.handlers import RotatingFileHandler
import os
import time
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi import HTTPException as FastHTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from core.config import settings
from db.seed import init_db
from db.session import engine
from services.errors import AppError
from services.responses import fail
from .routers import (
    auth,
    commerce,
    distributor,
    farmer,
    health,
    shop,
    traceability,
    transporter,
)

raw_level = os.getenv("LOG_LEVEL", settings.log_level) or "INFO"
level_name = raw_level.strip().upper()
if level_name not in logging._nameToLevel:
    level_name = "INFO"
logger = logging.getLogger("agrichain")
logger.setLevel(level_name)
LOG_DIR = Path(__file__).resolve().parents[1] / "logs"
try:
    LOG_DIR.mkdir(parents=True, exist_ok=True)
except OSError:
    pass
fmt = logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")
stream_handler = logging.StreamHandler()
stream_handler.setFormatter(fmt)

file_handler = None
log_path = LOG_DIR / "backend.log"
try:
    with open(log_path, "a", encoding="utf-8"):
        pass
    # delay=True evita abrir el archivo hasta el primer log
    file_handler = RotatingFileHandler(
        str(log_path), maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8", delay=True
    )
    file_handler.setFormatter(fmt)
    logger.addHandler(file_handler)
except OSError:
    # Sin permisos: continuar solo con consola
    file_handler = None

logger.addHandler(stream_handler)

handlers = [h for h in (file_handler, stream_handler) if h is not None]
for _name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
    logging.getLogger(_name).handlers = handlers
    logging.getLogger(_name).setLevel(level_name)

# `redirect_slashes=False` evita redirecciones 307 que rompen el preflight de CORS.
app = FastAPI(title="AgriChain", redirect_slashes=False)

logger.info("DB effective URL: %s", engine.url.render_as_string(hide_password=True))


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Registra cada solicitud y captura excepciones con un correlation-id."""
    start = time.perf_counter()
    corr = request.headers.get("x-correlation-id") or request.headers.get("x-request-id")
    if not corr:
        corr = f"req-{int(time.time()*1000):x}-{os.getpid():x}"
    try:
        resp = await call_next(request)
    except (FastHTTPException, StarletteHTTPException):
        raise
    except Exception:
        dur = (time.perf_counter() - start) * 1000
        logger.exception("EXC %s %s cid=%s (%.2fms)", request.method, request.url.path, corr, dur)
        return JSONResponse(
            fail("Error interno del servidor", "internal_error", {"correlation_id": corr}),
            status_code=500,
            headers={"X-Correlation-Id": corr},
        )
    dur = (time.perf_counter() - start) * 1000
    resp.headers["X-Correlation-Id"] = corr
    logger.info("%s %s -> %s cid=%s (%.2fms)", request.method, request.url.path, resp.status_code, corr, dur)
    return resp


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):  # type: ignore[override]
    if exc.status_code >= 500:
        logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    else:
        logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(fail(exc.message, exc.code, exc.data), status_code=exc.status_code)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
    message = exc.detail if isinstance(exc.detail, str) else "Error HTTP"
    return JSONResponse(fail(message, "http_error"), status_code=exc.status_code, headers=getattr(exc, "headers", None))


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):  # type: ignore[override]
    """Violación de constraint: 409 genérico sin filtrar detalles del motor."""
    raw = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    logger.warning("IntegrityError %s %s: %s", request.method, request.url.path, raw)
    return JSONResponse(fail("Conflicto de integridad de datos", "conflict"), status_code=409)


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
    """Errores de validación por campo, en formato sobre y status 400."""
    fields = []
    for e in exc.errors():
        loc = ".".join(str(p) for p in e.get("loc", []) if p != "body")
        fields.append({"field": loc, "message": e.get("msg")})
    logger.info(
        "validación fallida %s %s: %s",
        request.method,
        request.url.path,
        "; ".join(f"{f['field']}: {f['message']}" for f in fields),
    )
    summary = ", ".join(f["field"] for f in fields) or "body"
    return JSONResponse(
        fail(f"Datos inválidos: {summary}", "validation_error", {"fields": fields}),
        status_code=400,
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(farmer.router)
app.include_router(distributor.router)
app.include_router(transporter.router)
app.include_router(shop.router)
app.include_router(commerce.router)
app.include_router(traceability.router)
app.include_router(health.router)


@app.on_event("startup")
async def _init_schema():
    """Crea el esquema y siembra la taxonomía (idempotente)."""
    await init_db(engine)
    logger.info("Esquema y taxonomía listos")
