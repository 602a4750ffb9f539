from typing import Callable, Optional

from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel

from settlement import SettlementEngine
from utils import log

logger = log.get_logger(__name__)

ROLES = ("buyer", "producer", "certifier", "admin")


class Identity(BaseModel):
    id: str
    role: str


def identity_from_headers(request: Request) -> Optional[Identity]:
    """Default resolver: trust the headers set by the upstream auth proxy."""
    user_id = request.headers.get("x-user-id")
    role = (request.headers.get("x-user-role") or "").lower()
    if not user_id or role not in ROLES:
        return None
    return Identity(id=user_id, role=role)


async def current_user_get(request: Request) -> Identity:
    resolver: Callable[[Request], Optional[Identity]] = getattr(
        request.app.state, "identity_resolver", identity_from_headers
    )
    identity = resolver(request)
    if identity is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return identity


def require_role(*roles: str):
    """Dependency factory ensuring the caller holds one of ``roles``."""

    async def dependency(user: Identity = Depends(current_user_get)) -> Identity:
        if user.role not in roles:
            logger.warning(f"User {user.id} with role {user.role} denied, requires one of {roles}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role: {' or '.join(roles)}",
            )
        return user

    return dependency


require_buyer = require_role("buyer")
require_certifier = require_role("certifier", "admin")


def get_engine(request: Request) -> SettlementEngine:
    return request.app.state.engine
