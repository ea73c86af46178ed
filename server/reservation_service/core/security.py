"""Authenticated caller identity and bearer token decoding."""

from dataclasses import dataclass

import jwt
from jwt import PyJWTError

from .config import settings
from .exceptions import AuthenticationError

ADMIN_ROLES = frozenset({"admin", "manager"})


@dataclass(frozen=True)
class Actor:
    """Authenticated caller."""

    account_id: str
    roles: tuple[str, ...] = ()

    @property
    def is_admin(self) -> bool:
        return bool(ADMIN_ROLES.intersection(self.roles))

    def owns(self, account_id: str | None) -> bool:
        return account_id is not None and account_id == self.account_id


def decode_bearer_token(authorization: str) -> Actor:
    """
    Validate an ``Authorization: Bearer <jwt>`` header value.

    Raises:
        AuthenticationError: If the header or token is invalid
    """
    try:
        scheme, token = authorization.split()
    except ValueError:
        raise AuthenticationError("Invalid authorization header format")
    if scheme.lower() != "bearer":
        raise AuthenticationError("Invalid authentication scheme")

    try:
        # exp is verified by PyJWT when present
        payload = jwt.decode(token, settings.bearer_token_secret, algorithms=["HS256"])
    except PyJWTError as e:
        raise AuthenticationError(f"Token validation failed: {str(e)}")

    account_id = payload.get("sub")
    if not account_id:
        raise AuthenticationError("Invalid token payload")

    roles = payload.get("roles") or []
    return Actor(account_id=str(account_id), roles=tuple(str(role) for role in roles))
