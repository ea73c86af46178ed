"""FastAPI dependencies for authentication and shared collaborators."""

from typing import Optional

from fastapi import Depends, Header

from ..services.notifications import NotificationDispatcher, notification_dispatcher
from ..services.payment_gateway import PaymentGateway, StripePaymentGateway
from .config import settings
from .exceptions import AuthenticationError, AuthorizationError
from .security import ADMIN_ROLES, Actor, decode_bearer_token


async def get_current_actor(
    authorization: Optional[str] = Header(None, alias="Authorization")
) -> Actor:
    """
    Authentication dependency that validates Bearer tokens.

    Args:
        authorization: Authorization header with Bearer token

    Returns:
        Actor: Caller identity and roles from the validated token

    Raises:
        AuthenticationError: If the token is missing or invalid
    """
    if not authorization:
        raise AuthenticationError("Authorization header missing")
    return decode_bearer_token(authorization)


async def get_optional_actor(
    authorization: Optional[str] = Header(None, alias="Authorization")
) -> Optional[Actor]:
    """Like get_current_actor, but guests without a header get None."""
    if not authorization:
        return None
    return decode_bearer_token(authorization)


async def require_operator(actor: Actor = Depends(get_current_actor)) -> Actor:
    """Only administrators and managers may review reconciliation failures."""
    if not actor.is_admin:
        raise AuthorizationError(required_permissions=sorted(ADMIN_ROLES))
    return actor


_gateway: PaymentGateway | None = None


def get_payment_gateway() -> PaymentGateway:
    """Process-wide gateway client built from settings on first use."""
    global _gateway
    if _gateway is None:
        _gateway = StripePaymentGateway(
            api_key=settings.stripe_secret_key.get_secret_value() if settings.stripe_secret_key else None,
            webhook_secret=(
                settings.stripe_webhook_secret.get_secret_value() if settings.stripe_webhook_secret else None
            ),
            timeout_seconds=settings.gateway_timeout_seconds,
            tolerance_seconds=settings.webhook_tolerance_seconds,
            field_limit=settings.intent_metadata_field_limit,
        )
    return _gateway


def get_notification_dispatcher() -> NotificationDispatcher:
    return notification_dispatcher


CurrentActor = Depends(get_current_actor)
OptionalActor = Depends(get_optional_actor)
OperatorActor = Depends(require_operator)
PaymentGatewayDependency = Depends(get_payment_gateway)
NotificationsDependency = Depends(get_notification_dispatcher)
