from typing import Dict, FrozenSet

from fastapi import Depends, HTTPException, status

from app.auth.dependencies import get_current_user
from app.auth.schemas import CurrentUser
from app.core.enums import UserRole

FEE_MODULE = "fees"

# Built-in fee capabilities per role. A token may grant extra actions via permissions["fees"].
ROLE_CAPABILITIES: Dict[str, FrozenSet[str]] = {
    UserRole.ACCOUNTANT.value: frozenset({"read", "create", "update", "pay", "schedule", "bill", "summary"}),
    UserRole.TEACHER.value: frozenset({"summary"}),
    UserRole.STUDENT.value: frozenset({"summary"}),
    UserRole.PARENT.value: frozenset({"summary"}),
}

ADMIN_ROLES = (UserRole.SUPER_ADMIN.value, UserRole.ADMIN.value)


def has_fee_capability(current_user: CurrentUser, action: str) -> bool:
    if current_user.role in ADMIN_ROLES:
        return True
    if action in ROLE_CAPABILITIES.get(current_user.role, frozenset()):
        return True
    module_perms = (current_user.permissions or {}).get(FEE_MODULE, {})
    return bool(module_perms.get(action, False))


def require_fee_capability(action: str):
    """
    Dependency factory to enforce a fee ledger capability.

    Example:
        Depends(require_fee_capability("pay"))
    """

    async def _checker(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if not has_fee_capability(current_user, action):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return current_user

    return _checker


async def require_school_admin(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """Require ADMIN or SUPER_ADMIN role. Used for waivers, deletes and the late-fee sweep."""
    if current_user.role not in ADMIN_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only a school administrator can perform this action",
        )
    return current_user
