"""
Permission checking for equipment, time clock and attendance operations.

Permission keys are ``area:action`` strings (``equipment:write``,
``timeclock:read``, ...). A user's effective map is the union of its roles'
maps with ``permissions_override`` applied last.
"""
from ..errors import PermissionDeniedError
from ..models.models import User


BYPASS_ROLES = {"admin", "super_admin"}

EQUIPMENT_READ = "equipment:read"
EQUIPMENT_WRITE = "equipment:write"
TIMECLOCK_READ = "timeclock:read"
TIMECLOCK_WRITE = "timeclock:write"
ATTENDANCE_READ = "attendance:read"
ATTENDANCE_WRITE = "attendance:write"

ALL_PERMISSIONS = (
    EQUIPMENT_READ,
    EQUIPMENT_WRITE,
    TIMECLOCK_READ,
    TIMECLOCK_WRITE,
    ATTENDANCE_READ,
    ATTENDANCE_WRITE,
)

# Seeded roles; admin and super_admin need no map
DEFAULT_ROLES = {
    "super_admin": ("Full access, including hard deletes", {}),
    "admin": ("Full access", {}),
    "manager": ("Runs the floor", {p: True for p in ALL_PERMISSIONS}),
    "kiosk": ("Shared time clock terminal", {TIMECLOCK_READ: True, TIMECLOCK_WRITE: True}),
    "viewer": ("Read only", {EQUIPMENT_READ: True, TIMECLOCK_READ: True, ATTENDANCE_READ: True}),
}


def _role_names(user: User) -> set:
    return {(r.name or "").lower() for r in user.roles}


def is_admin(user: User) -> bool:
    """Check if user has an admin-level role."""
    return bool(_role_names(user) & BYPASS_ROLES)


def is_super_admin(user: User) -> bool:
    return "super_admin" in _role_names(user)


def get_user_permission_map(user: User) -> dict:
    """Get combined permission map from roles and user overrides"""
    perm_map = {}
    for r in user.roles:
        if r.permissions:
            perm_map.update(r.permissions)
    if user.permissions_override:
        perm_map.update(user.permissions_override)
    return perm_map


def has_permission(user: User, perm: str) -> bool:
    if is_admin(user):
        return True
    return bool(get_user_permission_map(user).get(perm))


def ensure_permission(user: User, perm: str) -> None:
    if not has_permission(user, perm):
        raise PermissionDeniedError(f"Missing permission: {perm}")


def ensure_super_admin(user: User) -> None:
    # Admin bypass does not apply here
    if not is_super_admin(user):
        raise PermissionDeniedError("Only a super admin can perform this action")
