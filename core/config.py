# NG-HEADER: Nombre de archivo: config.py
# NG-HEADER: Ubicación: core/config.py
# NG-HEADER: Descripción: Constantes y configuración central del backend AgriChain.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Configuración central del backend."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import Decimal
from dotenv import load_dotenv

# Marcador que debe sustituirse en producción
SECRET_KEY_PLACEHOLDER = "REEMPLAZAR_SECRET_KEY"

# Carga automática de variables definidas en .env
load_dotenv()


def _expand_local(origins: list[str]) -> list[str]:
    """Duplica ``localhost``/``127.0.0.1`` para evitar errores de CORS en desarrollo."""
    out: set[str] = set()
    for o in origins:
        o = o.strip()
        if not o:
            continue
        out.add(o)
        if o.startswith("http://localhost:"):
            out.add(o.replace("http://localhost:", "http://127.0.0.1:"))
        if o.startswith("http://127.0.0.1:"):
            out.add(o.replace("http://127.0.0.1:", "http://localhost:"))
    return list(out)


def _csv(raw: str) -> list[str]:
    return [p.strip() for p in raw.split(",") if p.strip()]


@dataclass
class Settings:
    """Parámetros de configuración leídos de variables de entorno."""

    env: str = os.getenv("ENV", "dev")
    db_url: str = os.getenv("DB_URL", "")
    # Soporte para componer la URL si no se pasa DB_URL directamente
    db_host: str = os.getenv("DB_HOST", "localhost")
    db_port: str = os.getenv("DB_PORT", "5432")
    db_name: str = os.getenv("DB_NAME", "agrichain")
    db_user: str = os.getenv("DB_USER", "agrichain")
    db_pass: str = os.getenv("DB_PASS", "")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # JWT
    secret_key: str = os.getenv("SECRET_KEY", SECRET_KEY_PLACEHOLDER)
    jwt_algorithm: str = "HS256"
    token_expire_minutes: int = int(os.getenv("TOKEN_EXPIRE_MINUTES", "1440"))
    allowed_origins: list[str] = field(default_factory=list)

    # Saldos iniciales de billetera por rol (demo)
    distributor_start_balance: Decimal = Decimal(os.getenv("DISTRIBUTOR_START_BALANCE", "50000"))
    shopkeeper_start_balance: Decimal = Decimal(os.getenv("SHOPKEEPER_START_BALANCE", "20000"))
    # Precio por unidad cuando el lote no define uno propio
    default_price_per_unit: Decimal = Decimal(os.getenv("DEFAULT_PRICE_PER_UNIT", "10"))

    # Trazabilidad
    max_lineage_depth: int = int(os.getenv("MAX_LINEAGE_DEPTH", "64"))
    ledger_mirror_url: str | None = os.getenv("LEDGER_MIRROR_URL") or None
    ledger_mirror_timeout: float = float(os.getenv("LEDGER_MIRROR_TIMEOUT", "5"))

    # Estados de lote configurables
    split_fallback_status: str = os.getenv("SPLIT_FALLBACK_STATUS", "In Warehouse")
    ship_ready_statuses: list[str] = field(
        default_factory=lambda: _csv(os.getenv("SHIP_READY_STATUSES", "In Warehouse,Processing"))
    )

    def __post_init__(self) -> None:
        if not self.db_url:
            # Intentar construir desde variables sueltas
            if self.db_pass:
                from urllib.parse import quote_plus as _qp
                pw_enc = _qp(self.db_pass)
            else:
                pw_enc = ""
            if self.db_user and pw_enc:
                self.db_url = f"postgresql+psycopg://{self.db_user}:{pw_enc}@{self.db_host}:{self.db_port}/{self.db_name}"
        if not self.db_url:
            if self.env == "dev":
                # Fallback local sin Postgres
                self.db_url = "sqlite+aiosqlite:///./agrichain.db"
            else:
                raise RuntimeError("DB_URL debe definirse en el entorno")
        if self.secret_key == SECRET_KEY_PLACEHOLDER:
            if self.env == "dev":
                # En desarrollo se usa una clave predecible para simplificar pruebas
                self.secret_key = "dev-secret-key"
            else:
                raise RuntimeError(
                    "SECRET_KEY debe sobrescribirse; reemplace el placeholder 'REEMPLAZAR_SECRET_KEY'"
                )
        if self.max_lineage_depth < 1:
            raise RuntimeError("MAX_LINEAGE_DEPTH debe ser >= 1")

        origins = _csv(os.getenv("ALLOWED_ORIGINS", ""))
        if self.env == "dev":
            if not origins:
                origins = ["http://localhost:5173", "http://localhost:3000"]
            origins = _expand_local(origins)
        elif not origins:
            raise RuntimeError(
                "En producción, ALLOWED_ORIGINS debe definir al menos un origen"
            )
        self.allowed_origins = origins


settings = Settings()
