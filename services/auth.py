# NG-HEADER: Nombre de archivo: auth.py
# NG-HEADER: Ubicación: services/auth.py
# NG-HEADER: Descripción: Hashing de contraseñas, tokens JWT y dependencias de rol.
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Utilidades de autenticación.

El token Bearer es un JWT HS256 con claims ``sub`` (id de usuario como
string), ``username``, ``role`` y ``exp``. Cada request revalida que el usuario
siga existiendo y toma el rol de la base, no del token.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.hash import argon2
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from db.models import User
from db.session import get_session
from services.errors import AuthError, Forbidden

logger = logging.getLogger("agrichain.auth")

bearer_scheme = HTTPBearer(auto_error=False)


def hash_pw(pwd: str) -> str:
    """Hashea una contraseña usando Argon2id."""

    return argon2.using(type="ID").hash(pwd)


def verify_pw(pwd: str, hashed: str) -> bool:
    """Verifica una contraseña contra el hash almacenado."""

    try:
        return argon2.verify(pwd, hashed)
    except ValueError:
        # Hash corrupto o de otro esquema
        return False


@dataclass
class TokenClaims:
    """Datos extraídos de un token JWT validado."""

    sub: str
    username: str
    role: str
    exp: float


@dataclass
class CurrentUser:
    id: int
    username: str
    name: Optional[str]
    role: str


def create_access_token(user: User, expires_minutes: int | None = None) -> str:
    minutes = expires_minutes if expires_minutes is not None else settings.token_expire_minutes
    exp = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    payload = {"sub": str(user.id), "username": user.username, "role": user.role, "exp": exp}
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> TokenClaims:
    """Valida firma y expiración.

    Raises:
        AuthError: token expirado, mal formado o con claims incompletos.
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError as e:
        raise AuthError("Token expirado") from e
    except jwt.InvalidTokenError as e:
        raise AuthError("Token inválido") from e
    sub = payload.get("sub")
    role = payload.get("role")
    if not sub or not role:
        raise AuthError("Token inválido: faltan claims")
    return TokenClaims(
        sub=str(sub),
        username=str(payload.get("username") or ""),
        role=str(role),
        exp=float(payload.get("exp", 0)),
    )


async def get_current_user(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_session),
) -> CurrentUser:
    if creds is None or (creds.scheme or "").lower() != "bearer":
        raise AuthError("Falta el token de acceso")
    claims = decode_token(creds.credentials)
    try:
        user_id = int(claims.sub)
    except ValueError as e:
        raise AuthError("Token inválido") from e
    user = await db.get(User, user_id)
    if user is None:
        raise AuthError("Usuario inexistente")
    return CurrentUser(id=user.id, username=user.username, name=user.name, role=user.role)


def require_roles(*roles: str) -> Callable:
    """Dependencia que valida que el usuario tenga uno de los roles dados."""

    async def _dep(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in roles:
            logger.info("acceso denegado: user=%s role=%s requiere=%s", user.id, user.role, roles)
            raise Forbidden(f"Rol {user.role} no autorizado; requiere {', '.join(roles)}")
        return user

    return _dep
