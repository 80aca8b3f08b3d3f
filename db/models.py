# NG-HEADER: Nombre de archivo: models.py
# NG-HEADER: Ubicación: db/models.py
# NG-HEADER: Descripción: Modelos ORM del ledger de lotes, eventos, órdenes y billeteras.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Modelos principales de la base de datos."""
from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Numeric,
    String,
    Text,
    CheckConstraint,
    Index,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

ROLES = ("FARMER", "DISTRIBUTOR", "TRANSPORTER", "SHOPKEEPER", "CONSUMER")

# Cantidades con 3 decimales (kg/g/litros), dinero con 2
QTY = Numeric(14, 3)
MONEY = Numeric(14, 2)


def utcnow() -> datetime:
    """UTC naive, igual que lo guarda SQLite y ``timestamp without time zone``."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    """Usuario del sistema con rol único y billetera."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    username: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    name: Mapped[Optional[str]] = mapped_column(String(100))
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    wallet_balance: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint(
            "role IN ('FARMER','DISTRIBUTOR','TRANSPORTER','SHOPKEEPER','CONSUMER')",
            name="role",
        ),
        CheckConstraint("wallet_balance >= 0", name="wallet_non_negative"),
    )


class WalletTransaction(Base):
    """Movimiento de billetera (append-only). El saldo corriente vive en ``users``."""

    __tablename__ = "wallet_transactions"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    debit: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    credit: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    balance_after: Mapped[Decimal] = mapped_column(MONEY)
    reason: Mapped[str] = mapped_column(String(32))
    batch_id: Mapped[Optional[int]] = mapped_column(ForeignKey("batches.id", ondelete="SET NULL"))
    counterparty_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(default=utcnow)


class Product(Base):
    """Plantilla de producto de un agricultor (cultivo)."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(primary_key=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    title: Mapped[str] = mapped_column(String(200))
    crop_details: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)


# --- Taxonomía (datos de referencia sembrados al iniciar) ---


class Status(Base):
    __tablename__ = "statuses"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(50), unique=True)
    description: Mapped[Optional[str]] = mapped_column(String(200))


class EventType(Base):
    __tablename__ = "event_types"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(50), unique=True)
    description: Mapped[Optional[str]] = mapped_column(String(200))


# --- Ledger de lotes ---


class Batch(Base):
    """Unidad trazable: cantidad de un producto con código, dueño, estado y linaje."""

    __tablename__ = "batches"

    id: Mapped[int] = mapped_column(primary_key=True)
    batch_code: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), index=True)
    # NULL = lote raíz (cosecha)
    parent_batch_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("batches.id", ondelete="SET NULL"), index=True
    )
    current_owner_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    current_status_id: Mapped[int] = mapped_column(ForeignKey("statuses.id"))
    initial_quantity: Mapped[Decimal] = mapped_column(QTY)
    remaining_quantity: Mapped[Decimal] = mapped_column(QTY)
    quantity_unit: Mapped[str] = mapped_column(String(16), default="kg")
    price_per_unit: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    harvest_date: Mapped[Optional[date]] = mapped_column(Date)
    # Logística: tienda destino y transportista asignado al despachar
    destination_owner_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    carrier_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("initial_quantity > 0", name="initial_positive"),
        CheckConstraint("remaining_quantity >= 0", name="remaining_non_negative"),
        CheckConstraint("remaining_quantity <= initial_quantity", name="remaining_le_initial"),
    )


class Event(Base):
    """Registro inmutable de algo que le ocurrió a un lote."""

    __tablename__ = "events"

    id: Mapped[int] = mapped_column(primary_key=True)
    event_type_id: Mapped[int] = mapped_column(ForeignKey("event_types.id"))
    batch_id: Mapped[int] = mapped_column(ForeignKey("batches.id", ondelete="CASCADE"), index=True)
    actor_user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    location_coords: Mapped[Optional[str]] = mapped_column(String(64))
    blockchain_tx_hash: Mapped[Optional[str]] = mapped_column(String(100))
    details: Mapped[Optional[dict]] = mapped_column(JSON)
    recorded_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (Index("ix_events_batch_recorded", "batch_id", "recorded_at"),)


class EventAttachment(Base):
    __tablename__ = "event_attachments"

    id: Mapped[int] = mapped_column(primary_key=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), index=True)
    file_url: Mapped[str] = mapped_column(String(600))
    file_type: Mapped[Optional[str]] = mapped_column(String(64))
    description: Mapped[Optional[str]] = mapped_column(String(300))
    created_at: Mapped[datetime] = mapped_column(default=utcnow)


class DeviceRawData(Base):
    """Lectura IoT asociada a un evento (temperatura, humedad, etc.)."""

    __tablename__ = "device_raw_data"

    id: Mapped[int] = mapped_column(primary_key=True)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), index=True)
    device_id: Mapped[Optional[str]] = mapped_column(String(100))
    reading_type: Mapped[str] = mapped_column(String(50))
    value: Mapped[Optional[float]] = mapped_column(Float)
    unit: Mapped[Optional[str]] = mapped_column(String(16))
    payload: Mapped[Optional[dict]] = mapped_column(JSON)
    recorded_at: Mapped[datetime] = mapped_column(default=utcnow)


class ProductChainLog(Base):
    """Fila desnormalizada producto/lote/evento/estado para acelerar consultas."""

    __tablename__ = "product_chain_log"

    id: Mapped[int] = mapped_column(primary_key=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), index=True)
    batch_id: Mapped[int] = mapped_column(ForeignKey("batches.id", ondelete="CASCADE"))
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"))
    status_id: Mapped[int] = mapped_column(ForeignKey("statuses.id"))
    created_at: Mapped[datetime] = mapped_column(default=utcnow)


# --- Comercio ---


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_number: Mapped[str] = mapped_column(String(64), unique=True)
    buyer_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    seller_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    total_amount: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    # El monto queda impago: la orden sólo registra la transferencia de mercadería
    is_paid: Mapped[bool] = mapped_column(Boolean, default=False)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)

    items: Mapped[list["OrderItem"]] = relationship(back_populates="order", cascade="all, delete-orphan")


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), index=True)
    batch_id: Mapped[int] = mapped_column(ForeignKey("batches.id"))
    quantity: Mapped[Decimal] = mapped_column(QTY)
    unit_price: Mapped[Decimal] = mapped_column(MONEY)
    subtotal: Mapped[Decimal] = mapped_column(MONEY)

    __table_args__ = (CheckConstraint("quantity > 0", name="quantity_positive"),)

    order: Mapped["Order"] = relationship(back_populates="items")
