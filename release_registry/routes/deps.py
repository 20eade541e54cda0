"""
Shared route dependencies.

Authentication happens upstream; the gateway forwards the caller's identity
in ``X-Registry-*`` headers.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException, Request

from ..core.registrar import ReleaseRegistrar
from ..schemas.release import OwnerClaim

ADMIN_ROLE = "ADMIN"


@dataclass(frozen=True)
class Principal:
    """The authenticated caller."""

    user_id: str
    email: Optional[str] = None
    role: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return (self.role or "").upper() == ADMIN_ROLE

    def owner_claim(self) -> OwnerClaim:
        return OwnerClaim(owner_id=self.user_id, elevated=self.is_admin)


def get_registrar(request: Request) -> ReleaseRegistrar:
    """The Registrar built by the application lifespan."""
    registrar = getattr(request.app.state, "registrar", None)
    if registrar is None:
        raise HTTPException(status_code=503, detail="Registrar not initialized")
    return registrar


def get_optional_principal(
    x_registry_user: Optional[str] = Header(default=None),
    x_registry_email: Optional[str] = Header(default=None),
    x_registry_role: Optional[str] = Header(default=None),
) -> Optional[Principal]:
    if not x_registry_user:
        return None
    return Principal(user_id=x_registry_user, email=x_registry_email, role=x_registry_role)


def get_principal(
    x_registry_user: Optional[str] = Header(default=None),
    x_registry_email: Optional[str] = Header(default=None),
    x_registry_role: Optional[str] = Header(default=None),
) -> Principal:
    if not x_registry_user:
        raise HTTPException(status_code=401, detail="Authentication required")
    return Principal(user_id=x_registry_user, email=x_registry_email, role=x_registry_role)


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None
