from collections.abc import Callable

from fastapi import Depends, HTTPException, status

from inventory_service.core.security import ActorClaims
from inventory_service.core.security_current import get_current_actor

STORE_PERMISSION_MATRIX: dict[str, set[str]] = {
    "owner": {"*"},
    "manager": {
        "inventory.view",
        "inventory.adjust",
        "inventory.reserve",
        "inventory.alerts.manage",
    },
    "staff": {
        "inventory.view",
        "inventory.reserve",
    },
}


def role_permissions(role: str) -> set[str]:
    normalized = (role or "").strip().lower()
    return set(STORE_PERMISSION_MATRIX.get(normalized, set()))


def has_permission(*, role: str, permission: str) -> bool:
    permissions = role_permissions(role)
    if "*" in permissions:
        return True
    return permission in permissions


def require_permission(permission: str) -> Callable[[ActorClaims], ActorClaims]:
    normalized_permission = (permission or "").strip().lower()
    if not normalized_permission:
        raise ValueError("Permission key is required")

    def dependency(actor: ActorClaims = Depends(get_current_actor)) -> ActorClaims:
        if not has_permission(role=actor.role, permission=normalized_permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permission for this action",
            )
        return actor

    return dependency
