"""
Authorization gate. Authentication happens upstream; the resolved actor id arrives in the X-User-Id header.
An actor may act on a user's resources if it is that user or an administrator.
"""
from fastapi import Depends
from fastapi.security import APIKeyHeader

from storefront.config import settings
from storefront.errors import ForbiddenError
from storefront.validation import is_valid_id

actor_header = APIKeyHeader(name="X-User-Id", auto_error=False)

ACCESS_DENIED = "Access denied"


class AuthorizationGate:
    def __init__(self, admin_user_ids: list[int] | set[int]):
        self._admins = set(admin_user_ids)

    def is_admin(self, actor_id: int) -> bool:
        return actor_id in self._admins

    def approve(self, actor_id: int, resource_owner_id: int | None) -> bool:
        return self.is_admin(actor_id) or (resource_owner_id is not None and actor_id == resource_owner_id)


def get_authorization_gate() -> AuthorizationGate:
    return AuthorizationGate(settings.admin_user_ids)


async def get_actor_id(raw: str | None = Depends(actor_header)) -> int:
    if raw is None or not is_valid_id(raw):
        raise ForbiddenError(ACCESS_DENIED)
    return int(raw)


async def require_current_user(
    userId: str,
    actor_id: int = Depends(get_actor_id),
    gate: AuthorizationGate = Depends(get_authorization_gate),
) -> int:
    """Allow the user named in the path, or an admin. Runs before the path id is validated."""
    owner_id = int(userId) if is_valid_id(userId) else None
    if not gate.approve(actor_id, owner_id):
        raise ForbiddenError(ACCESS_DENIED)
    return actor_id


async def require_admin(
    actor_id: int = Depends(get_actor_id),
    gate: AuthorizationGate = Depends(get_authorization_gate),
) -> int:
    if not gate.is_admin(actor_id):
        raise ForbiddenError(ACCESS_DENIED)
    return actor_id
