from dataclasses import dataclass, field

from fastapi import Depends, HTTPException, Request, status

from app.models import PrincipalRole as Role
from app.permissions import permissions_for_role


@dataclass
class Principal:
    id: int
    username: str
    role: Role
    active: bool
    permissions: frozenset[str] = field(default_factory=frozenset)

    def can(self, permission: str) -> bool:
        return permission in self.permissions


def build_principal(*, id: int, username: str, role: Role, active: bool) -> Principal:
    return Principal(
        id=id,
        username=username,
        role=role,
        active=active,
        permissions=permissions_for_role(role),
    )


def get_current_principal(request: Request) -> Principal:
    principal = getattr(request.state, "principal", None)
    if not principal:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    if not principal.active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
    return principal


def require_permission(*required: str):
    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not all(principal.can(p) for p in required):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
        return principal

    return _dep
