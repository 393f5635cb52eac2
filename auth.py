"""
Identity and role checks for the API.

Authentication itself happens upstream: the auth provider (or the proxy in
front of this service) puts the caller's stable identity in a request header.
Handlers receive that identity explicitly and pass it down to storage.
"""
import os
import logging
from enum import Enum
from typing import Optional

from fastapi import Request

from errors import Forbidden, MarketplaceError, Unauthenticated
from schemas import Role, User
from storage import Storage

logger = logging.getLogger(__name__)

AUTH_USER_HEADER = os.getenv("AUTH_USER_HEADER", "X-User-Id")


class Capability(str, Enum):
    SELL = "sell"
    MODERATE = "moderate"


ROLE_CAPABILITIES = {
    Role.BUYER: frozenset(),
    Role.SELLER: frozenset({Capability.SELL}),
    Role.ADMIN: frozenset({Capability.SELL, Capability.MODERATE}),
}


def has_capability(role: Optional[Role], capability: Capability) -> bool:
    if role is None:
        return False
    return capability in ROLE_CAPABILITIES[Role(role)]


def get_storage(request: Request) -> Storage:
    storage = getattr(request.app.state, "storage", None)
    if storage is None:
        logger.error("No storage configured; set DATABASE_URL and DATABASE_NAME")
        raise MarketplaceError()
    return storage


def require_identity(request: Request) -> str:
    identity = request.headers.get(AUTH_USER_HEADER, "").strip()
    if not identity:
        raise Unauthenticated()
    return identity


def require_capability(storage: Storage, user_id: str, capability: Capability, message: str) -> User:
    """Load the caller and make sure their role grants `capability`."""
    user = storage.get_user(user_id)
    if user is None or not has_capability(user.role, capability):
        raise Forbidden(message)
    return user


def can_manage(user: Optional[User], owner_id: str) -> bool:
    """Owners manage their own rows; admins manage everything."""
    if user is None:
        return False
    return user.id == owner_id or has_capability(user.role, Capability.MODERATE)
