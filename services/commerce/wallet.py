# NG-HEADER: Nombre de archivo: wallet.py
# NG-HEADER: Ubicación: services/commerce/wallet.py
# NG-HEADER: Descripción: Ledger de billeteras: saldo corriente más movimientos append-only.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Movimientos de billetera.

Cada cambio de ``users.wallet_balance`` se hace con la fila del usuario
bloqueada y deja una fila en ``wallet_transactions`` con el saldo resultante.
Estas funciones no hacen commit: corren dentro de la transacción del llamador.
"""
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from db.models import User, WalletTransaction
from services.errors import NotFound, PreconditionFailed

CENT = Decimal("0.01")


def money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def start_balance_for(role: str) -> Decimal:
    if role == "DISTRIBUTOR":
        return money(settings.distributor_start_balance)
    if role == "SHOPKEEPER":
        return money(settings.shopkeeper_start_balance)
    return Decimal("0.00")


async def open_wallet(db: AsyncSession, user: User) -> Optional[WalletTransaction]:
    """Asigna el saldo inicial del rol a un usuario recién creado."""
    amount = start_balance_for(user.role)
    user.wallet_balance = amount
    if amount <= 0:
        return None
    tx = WalletTransaction(
        user_id=user.id,
        credit=amount,
        debit=Decimal("0"),
        balance_after=amount,
        reason="opening_balance",
    )
    db.add(tx)
    return tx


async def lock_wallets(db: AsyncSession, user_ids: Iterable[int]) -> dict[int, User]:
    """Bloquea las filas de usuario en una sola sentencia (orden por id)."""
    ids = sorted(set(user_ids))
    stmt = (
        select(User)
        .where(User.id.in_(ids))
        .order_by(User.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    rows = {u.id: u for u in (await db.scalars(stmt)).all()}
    missing = [i for i in ids if i not in rows]
    if missing:
        raise NotFound(f"Usuario {missing[0]} no encontrado")
    return rows


def _post(
    db: AsyncSession,
    user: User,
    *,
    debit: Decimal = Decimal("0"),
    credit: Decimal = Decimal("0"),
    reason: str,
    batch_id: int | None = None,
    counterparty_id: int | None = None,
) -> WalletTransaction:
    user.wallet_balance = money(Decimal(user.wallet_balance or 0) - debit + credit)
    tx = WalletTransaction(
        user_id=user.id,
        debit=debit,
        credit=credit,
        balance_after=user.wallet_balance,
        reason=reason,
        batch_id=batch_id,
        counterparty_id=counterparty_id,
    )
    db.add(tx)
    return tx


async def transfer(
    db: AsyncSession,
    *,
    payer_id: int,
    payee_id: int,
    amount: Decimal,
    reason: str,
    batch_id: int | None = None,
) -> tuple[WalletTransaction, WalletTransaction]:
    """Debita al pagador y acredita al cobrador.

    Raises:
        PreconditionFailed: saldo insuficiente (informa necesario y disponible).
    """
    amount = money(amount)
    wallets = await lock_wallets(db, (payer_id, payee_id))
    payer, payee = wallets[payer_id], wallets[payee_id]
    balance = money(payer.wallet_balance or 0)
    if balance < amount:
        raise PreconditionFailed(
            f"Fondos insuficientes. Necesario: {amount}, Disponible: {balance}",
            data={"needed": amount, "available": balance},
        )
    out = _post(db, payer, debit=amount, reason=reason, batch_id=batch_id, counterparty_id=payee_id)
    inc = _post(db, payee, credit=amount, reason=reason, batch_id=batch_id, counterparty_id=payer_id)
    return out, inc


async def credit(
    db: AsyncSession,
    *,
    user_id: int,
    amount: Decimal,
    reason: str,
    batch_id: int | None = None,
) -> WalletTransaction:
    wallets = await lock_wallets(db, (user_id,))
    return _post(db, wallets[user_id], credit=money(amount), reason=reason, batch_id=batch_id)


async def wallet_history(db: AsyncSession, user_id: int, limit: int = 100) -> list[WalletTransaction]:
    stmt = (
        select(WalletTransaction)
        .where(WalletTransaction.user_id == user_id)
        .order_by(WalletTransaction.id.desc())
        .limit(limit)
    )
    return list((await db.scalars(stmt)).all())
