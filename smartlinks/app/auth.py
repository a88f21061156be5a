from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

bearer_scheme = HTTPBearer(auto_error=False)

KNOWN_ROLES = frozenset({"admin", "manager", "analyst"})
MANAGEMENT_ROLES = ("manager", "admin")
ANALYTICS_ROLES = ("analyst", "manager", "admin")
DEV_OWNER_ID = "dev-local"


@dataclass(frozen=True)
class Operator:
    """Dashboard user behind a management request.

    Campaigns belong to the user that created them. Admins see every
    campaign; everyone else only their own.
    """

    user_id: str
    roles: frozenset[str]

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles

    def owns(self, owner_id: Optional[str]) -> bool:
        return self.is_admin or (owner_id is not None and owner_id == self.user_id)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def _operator_from_claims(claims: dict) -> Operator:
    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject.strip():
        raise _unauthorized("token missing subject")
    raw_roles = claims.get("roles", [])
    if not isinstance(raw_roles, list):
        raise _unauthorized("token roles must be a list")
    roles = frozenset(str(role).strip() for role in raw_roles) & KNOWN_ROLES
    if not roles:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="token has no known roles")
    return Operator(user_id=subject.strip(), roles=roles)


def current_operator(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Operator:
    settings = request.app.state.settings
    if not settings.auth_enabled:
        return Operator(user_id=DEV_OWNER_ID, roles=KNOWN_ROLES)
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise _unauthorized("missing bearer token")
    try:
        claims = jwt.decode(
            credentials.credentials,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
        )
    except jwt.InvalidTokenError as exc:
        raise _unauthorized("invalid auth token") from exc
    return _operator_from_claims(claims)


def require_roles(*allowed: str) -> Callable[[Operator], Operator]:
    allowed_roles = frozenset(allowed)

    def dependency(operator: Operator = Depends(current_operator)) -> Operator:
        if operator.roles.isdisjoint(allowed_roles):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"insufficient role. required any of: {sorted(allowed_roles)}",
            )
        return operator

    return dependency


def can_manage() -> Callable[[Operator], Operator]:
    return require_roles(*MANAGEMENT_ROLES)


def can_view() -> Callable[[Operator], Operator]:
    return require_roles(*ANALYTICS_ROLES)
