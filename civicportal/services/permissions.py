"""
Permission checks for the activity programme.
Role evaluation itself lives upstream; these helpers only read role names.
"""
from typing import List, Optional

from ..errors import AuthorizationError
from ..models.models import User


ADMIN_ROLES = {"admin", "super_admin"}
COORDINATOR_ROLE = "coordinator"


def role_names(user: Optional[User]) -> set:
    if user is None:
        return set()
    return {(getattr(r, "name", None) or "").lower() for r in user.roles}


def is_admin(user: Optional[User]) -> bool:
    return bool(role_names(user) & ADMIN_ROLES)


def is_coordinator(user: Optional[User]) -> bool:
    return COORDINATOR_ROLE in role_names(user)


def primary_role(user: Optional[User]) -> str:
    if is_admin(user):
        return "admin"
    if is_coordinator(user):
        return "coordinator"
    return "citizen" if user is not None else "anonymous"


def managed_establishments(user: Optional[User]) -> List[str]:
    if user is None:
        return []
    return [str(e) for e in (user.managed_establishment_ids or [])]


def can_manage_establishment(user: Optional[User], establishment_id) -> bool:
    """
    - Admin can manage any establishment
    - Coordinator can manage the establishments assigned to them
    """
    if is_admin(user):
        return True
    if is_coordinator(user):
        return str(establishment_id) in managed_establishments(user)
    return False


def ensure_can_manage(user: Optional[User], establishment_id) -> None:
    if not can_manage_establishment(user, establishment_id):
        raise AuthorizationError(
            "You do not manage this establishment",
            details={"establishment_id": str(establishment_id)},
        )


def ensure_admin(user: Optional[User], action: str) -> None:
    if not is_admin(user):
        raise AuthorizationError(f"Only administrators may {action}")
