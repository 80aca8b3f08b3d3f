# NG-HEADER: Nombre de archivo: auth.py
# NG-HEADER: Ubicación: services/routers/auth.py
# NG-HEADER: Descripción: Registro, login con JWT y datos del usuario actual.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Endpoints de autenticación y billetera del usuario."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import ROLES, User
from db.session import get_session
from services.auth import CurrentUser, create_access_token, get_current_user, hash_pw, verify_pw
from services.commerce.wallet import open_wallet, wallet_history
from services.errors import AuthError, Conflict, NotFound, ValidationFailed
from services.responses import ok

router = APIRouter(prefix="/auth", tags=["auth"])

logger = logging.getLogger("agrichain.auth")


class RegisterIn(BaseModel):
    username: str = Field(min_length=3, max_length=64)
    password: str = Field(min_length=6)
    name: Optional[str] = None
    role: str


class LoginIn(BaseModel):
    username: str
    password: str


def _user_out(user: User) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "name": user.name,
        "role": user.role,
        "wallet_balance": user.wallet_balance,
    }


@router.post("/register", status_code=201)
async def register(payload: RegisterIn, db: AsyncSession = Depends(get_session)):
    role = payload.role.strip().upper()
    if role not in ROLES:
        raise ValidationFailed(f"Rol inválido '{payload.role}'; use uno de: {', '.join(ROLES)}")
    username = payload.username.strip()
    exists = await db.scalar(select(User.id).where(func.lower(User.username) == username.lower()))
    if exists:
        raise Conflict("El nombre de usuario ya está registrado")
    try:
        user = User(
            username=username,
            name=(payload.name or "").strip() or None,
            role=role,
            password_hash=hash_pw(payload.password),
        )
        db.add(user)
        await db.flush()
        await open_wallet(db, user)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info("[register] user_id=%s role=%s", user.id, role)
    return ok("Usuario registrado", {"token": create_access_token(user), "user": _user_out(user)})


@router.post("/login")
async def login(payload: LoginIn, db: AsyncSession = Depends(get_session)):
    ident = (payload.username or "").strip()
    user = await db.scalar(select(User).where(func.lower(User.username) == ident.lower()))
    if not user or not verify_pw(payload.password, user.password_hash):
        logger.debug("[login:bad_credentials] username=%s", ident)
        raise AuthError("Credenciales inválidas")
    logger.info("[login:ok] user_id=%s role=%s", user.id, user.role)
    return ok("Login correcto", {"token": create_access_token(user), "user": _user_out(user)})


@router.get("/me")
async def me(user: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_session)):
    row = await db.get(User, user.id)
    return ok("Usuario actual", _user_out(row))


@router.get("/me/wallet")
async def my_wallet(user: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_session)):
    row = await db.get(User, user.id)
    if row is None:
        raise NotFound("Usuario no encontrado")
    history = await wallet_history(db, user.id)
    return ok(
        "Billetera",
        {
            "balance": row.wallet_balance,
            "transactions": [
                {
                    "id": t.id,
                    "debit": t.debit,
                    "credit": t.credit,
                    "balance_after": t.balance_after,
                    "reason": t.reason,
                    "batch_id": t.batch_id,
                    "counterparty_id": t.counterparty_id,
                    "created_at": t.created_at,
                }
                for t in history
            ],
        },
    )
