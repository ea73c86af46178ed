"""Reservation service for the plain creation path, queries and feedback."""

import logging
from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.database import utcnow
from ..core.exceptions import AuthorizationError, ConflictError, NotFoundError
from ..core.security import Actor
from ..models.reservation import Reservation, ReservationStatus
from ..schemas.reservation import CreateReservationRequest, Holder, PendingIntent
from .materializer import build_reservation

logger = logging.getLogger(__name__)


class FeedbackNotAllowedError(ConflictError):
    """Exception when feedback is submitted before the service was delivered."""

    def __init__(self, reservation_id: str, reason: str):
        super().__init__(detail=f"Feedback cannot be added to reservation {reservation_id}: {reason}")
        self.problem_details.update({
            "code": "FEEDBACK_NOT_ALLOWED",
            "retryable": False,
            "reservation_id": reservation_id,
        })


class ReservationService:
    """Service for reservation-related operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_reservation(self, request: CreateReservationRequest, holder: Holder) -> Reservation:
        """
        Create a pending reservation that is not gated on a card payment.

        It is confirmed later through the split-payment ledger once the
        remaining balance reaches zero.
        """
        intent = PendingIntent(
            details=request.details,
            service_id=request.service_id,
            option_id=request.option_id,
            party_size=request.party_size,
            participants=tuple(request.participants),
            holder=holder,
            total_amount=request.unit_amount * request.party_size,
            currency=request.currency or settings.default_currency,
        )
        reservation = build_reservation(intent, ReservationStatus.PENDING)
        self.db.add(reservation)
        await self.db.commit()

        logger.info(
            "Pending reservation created",
            extra={
                "reservation_id": str(reservation.id),
                "category": reservation.category,
                "account_id": holder.account_id,
                "total_amount": reservation.total_amount,
            }
        )
        return reservation

    async def get_reservation(self, reservation_id: UUID) -> Reservation:
        """
        Get a reservation by ID.

        Raises:
            NotFoundError: If reservation not found
        """
        stmt = (
            select(Reservation)
            .where(Reservation.id == reservation_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        reservation = result.scalar_one_or_none()
        if reservation is None:
            raise NotFoundError(resource_type="reservation", resource_id=str(reservation_id))
        return reservation

    async def get_for_actor(self, reservation_id: UUID, actor: Actor) -> Reservation:
        reservation = await self.get_reservation(reservation_id)
        if not (actor.is_admin or actor.owns(reservation.account_id)):
            raise AuthorizationError("Reservation belongs to another account")
        return reservation

    async def list_reservations(
        self,
        account_id: str,
        status: ReservationStatus | None = None,
        limit: int = 50,
    ) -> list[Reservation]:
        stmt = (
            select(Reservation)
            .where(Reservation.account_id == account_id)
            .order_by(Reservation.created_at.desc())
            .limit(limit)
        )
        if status is not None:
            stmt = stmt.where(Reservation.status == status.value)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def add_feedback(
        self,
        reservation_id: UUID,
        actor: Actor,
        rating: int,
        comment: str | None = None,
        today: date | None = None,
    ) -> Reservation:
        """
        Attach feedback once the service has been delivered.

        Raises:
            FeedbackNotAllowedError: If the reservation is not confirmed, the
                service date has not passed, or feedback already exists
        """
        reservation = await self.get_reservation(reservation_id)
        if not actor.owns(reservation.account_id):
            raise AuthorizationError("Only the reservation holder may leave feedback")

        if reservation.status != ReservationStatus.CONFIRMED:
            raise FeedbackNotAllowedError(str(reservation_id), f"reservation is {reservation.status}")
        if reservation.feedback_rating is not None:
            raise FeedbackNotAllowedError(str(reservation_id), "feedback was already submitted")

        details = reservation.details
        service_date = date.fromisoformat(details.get("end_date") or details["date"])
        if service_date >= (today or utcnow().date()):
            raise FeedbackNotAllowedError(str(reservation_id), f"service date {service_date} has not passed")

        reservation.feedback_rating = rating
        reservation.feedback_comment = comment
        reservation.feedback_submitted_at = utcnow()
        await self.db.commit()

        logger.info("Feedback added", extra={"reservation_id": str(reservation_id), "rating": rating})
        return reservation
