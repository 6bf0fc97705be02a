from dataclasses import dataclass
from enum import Enum

from fastapi import Depends, HTTPException, Request, status


class Role(str, Enum):
    ADMIN = "ADMIN"
    STAFF = "STAFF"


@dataclass
class Principal:
    id: int
    username: str
    role: Role
    warehouse_id: int | None
    active: bool


def get_current_principal(request: Request) -> Principal:
    principal = getattr(request.state, "principal", None)
    if not principal:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    if not principal.active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
    return principal


def is_admin_role(role: Role) -> bool:
    return role == Role.ADMIN


def require_role(*allowed: Role):
    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden: insufficient role")
        return principal

    return _dep


def resolve_warehouse_scope(principal: Principal, requested_warehouse_id: int | None) -> int | None:
    # Staff only ever see and post into their assigned warehouse.
    if principal.role == Role.STAFF and principal.warehouse_id is not None:
        return principal.warehouse_id
    return requested_warehouse_id
