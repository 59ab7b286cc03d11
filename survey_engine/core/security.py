# survey_engine/core/security.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from survey_engine.core.config import settings

# Solo para docs/Swagger; el login vive en el proveedor de identidad
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")
ADMIN_ROLE_NAMES = {"admin", "administrator", "administrador", "superadmin", "hr_admin"}


@dataclass(frozen=True)
class Identity:
    """Lo único que el motor sabe del usuario: quién es y si es admin."""

    member_id: UUID
    is_admin: bool = False
    roles: frozenset[str] = field(default_factory=frozenset)


def create_access_token(subject: dict[str, Any], expires_minutes: int | None = None) -> str:
    """
    Genera un JWT con 'exp' e 'iat'.
    - 'sub' se normaliza a str.
    En producción los tokens los firma el proveedor de identidad; esto se usa
    en scripts y tests.
    """
    if expires_minutes is None:
        expires_minutes = settings.JWT_EXPIRE_MINUTES

    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=expires_minutes)

    claims = dict(subject)
    if "sub" in claims and not isinstance(claims["sub"], str):
        claims["sub"] = str(claims["sub"])

    to_encode = {
        **claims,
        "iat": int(now.timestamp()),
        "exp": exp,
    }
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict[str, Any]:
    """
    Decodifica exigiendo 'exp' e 'iat' y verificando expiración.
    """
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require": ["exp", "iat"], "verify_exp": True},
            leeway=5,  # pequeño margen por skew de reloj
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expirado")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token inválido")


def _roles_from_claims(claims: dict | None) -> set[str]:
    if not claims:
        return set()
    raw = claims.get("roles") or claims.get("role") or []
    if isinstance(raw, str):
        return {raw}
    if isinstance(raw, Iterable):
        return {str(x) for x in raw}
    return set()


def identity_from_claims(claims: dict[str, Any]) -> Identity:
    sub = claims.get("sub")
    if not sub:
        raise HTTPException(status_code=401, detail="Token sin sujeto")
    try:
        member_id = UUID(str(sub))
    except ValueError:
        raise HTTPException(status_code=401, detail="Token con 'sub' inválido")

    roles = _roles_from_claims(claims)
    is_admin = bool(claims.get("is_admin")) or bool({r.lower() for r in roles} & ADMIN_ROLE_NAMES)
    return Identity(member_id=member_id, is_admin=is_admin, roles=frozenset(roles))


def get_current_identity(token: str = Depends(oauth2_scheme)) -> Identity:
    return identity_from_claims(decode_token(token))


def get_admin_identity(identity: Identity = Depends(get_current_identity)) -> Identity:
    if not identity.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Solo administradores")
    return identity
