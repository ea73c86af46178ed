"""Payment authorization: price the reservation and attach its intent."""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.exceptions import AuthorizationError, ReservationProblem
from ..core.security import Actor
from ..models.reservation import Reservation
from ..schemas.payment import AuthorizeReservationRequest, PaymentStatusResponse
from ..schemas.reservation import Holder, PendingIntent
from .cart_checkout import item_prefix
from .failure_log import FailureLogService
from .intent_codec import IntentCodec
from .materializer import support_message
from .payment_gateway import Authorization, PaymentGateway
from .webhook_verifier import CART_MARKER

logger = logging.getLogger(__name__)


class AuthorizationService:
    """Creates gateway authorizations that carry a pending reservation."""

    def __init__(self, db: AsyncSession, gateway: PaymentGateway, codec: IntentCodec | None = None):
        self.db = db
        self.gateway = gateway
        self.codec = codec or IntentCodec(settings.intent_metadata_field_limit)

    def build_intent(self, request: AuthorizeReservationRequest, holder: Holder) -> PendingIntent:
        return PendingIntent(
            details=request.details,
            service_id=request.service_id,
            option_id=request.option_id,
            party_size=request.party_size,
            participants=tuple(request.participants),
            holder=holder,
            total_amount=request.unit_amount * request.party_size,
            currency=request.currency or settings.default_currency,
        )

    async def authorize_reservation(
        self,
        request: AuthorizeReservationRequest,
        holder: Holder,
    ) -> tuple[Authorization, dict[str, str]]:
        """
        Authorize a card payment for one reservation.

        The intent is encoded before the gateway is called, so an intent that
        cannot fit the metadata limits is rejected before any money moves.

        Returns:
            Tuple of (authorization, metadata the intent was encoded into)
        """
        intent = self.build_intent(request, holder)
        metadata = self.codec.encode(intent)

        authorization = await self.gateway.create_authorization(
            amount=intent.total_amount,
            currency=intent.currency,
            metadata=metadata,
            description=f"{intent.category.value} reservation for {request.service_id}",
        )

        logger.info(
            "Reservation payment authorized",
            extra={
                "authorization_id": authorization.id,
                "category": intent.category.value,
                "amount": intent.total_amount,
                "currency": intent.currency,
                "slots": sorted(metadata),
            }
        )
        return authorization, metadata

    def _intent_holder(self, authorization: Authorization) -> str | None:
        """Account that authorized the payment, read back from its intent."""
        prefix = item_prefix(0) if CART_MARKER in authorization.metadata else ""
        try:
            return self.codec.decode(authorization.metadata, prefix=prefix).holder.account_id
        except ReservationProblem:
            return None

    async def payment_status(self, authorization_id: str, actor: Actor) -> PaymentStatusResponse:
        """
        Gateway status plus the reservations materialized from the payment.

        Raises:
            AuthorizationError: If the caller neither holds the payment nor administers
        """
        authorization = await self.gateway.retrieve_authorization(authorization_id)

        stmt = (
            select(Reservation.id, Reservation.account_id)
            .where(Reservation.gateway_payment_id == authorization_id)
            .order_by(Reservation.payment_reference)
        )
        result = await self.db.execute(stmt)
        rows = result.all()

        holders = {account_id for _, account_id in rows} | {self._intent_holder(authorization)}
        if not (actor.is_admin or any(actor.owns(holder) for holder in holders)):
            raise AuthorizationError("Only the payment holder or an administrator may view this payment")

        reservation_ids = [str(rid) for rid, _ in rows]

        message = None
        if await FailureLogService(self.db).has_open_failure(authorization_id):
            message = support_message(authorization_id)

        return PaymentStatusResponse(
            authorization_id=authorization.id,
            gateway_status=authorization.status,
            amount=authorization.amount,
            currency=authorization.currency,
            reservation_ids=reservation_ids,
            message=message,
        )
