"""Simple token-based auth helpers for the scamreg API."""

from __future__ import annotations

from typing import Callable, Dict, Optional

from fastapi import Depends, Header, HTTPException, status

from scamreg.models import Actor, Role

# Minimal token -> user mapping for development deployments.
# Credential issuance belongs to an external identity provider.
_API_TOKENS: Dict[str, Dict[str, str]] = {
    "dev-member-token": {"user_id": "member_1", "role": "member"},
    "dev-member-2-token": {"user_id": "member_2", "role": "member"},
    "dev-moderator-token": {"user_id": "moderator_1", "role": "moderator"},
    "dev-moderator-2-token": {"user_id": "moderator_2", "role": "moderator"},
    "dev-admin-token": {"user_id": "admin", "role": "admin"},
}

_ROLE_RANK = {Role.MEMBER: 0, Role.MODERATOR: 1, Role.ADMIN: 2}


def require_token(x_api_key: Optional[str] = Header(None)) -> Actor:
    """Validate the API key header and return the calling :class:`Actor`.

    Args:
        x_api_key: Value of the ``X-API-KEY`` header.

    Raises:
        HTTPException: 401 if missing, 403 if unknown.
    """

    if not x_api_key:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-API-KEY")
    user = _API_TOKENS.get(x_api_key)
    if not user:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid API key")
    return Actor(user_id=user["user_id"], role=Role(user["role"]))


def require_role(required_role: str) -> Callable[..., Actor]:
    """Dependency factory enforcing a minimum role (member < moderator < admin)."""

    minimum = _ROLE_RANK[Role(required_role)]

    def _checker(actor: Actor = Depends(require_token)) -> Actor:
        if _ROLE_RANK[actor.role] >= minimum:
            return actor
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role")

    return _checker


__all__ = ["require_role", "require_token"]
