"""Reservation router for queries, cancellation, split payments and feedback."""

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.database import get_db
from ..core.dependencies import CurrentActor, NotificationsDependency, PaymentGatewayDependency
from ..core.exceptions import AuthorizationError, ProblemDetailsException
from ..core.security import Actor
from ..schemas.reservation import (
    AddFeedbackRequest,
    CancelReservationRequest,
    CreateReservationRequest,
    GetReservationRequest,
    Holder,
    ListReservationsRequest,
    RecordPaymentRequest,
    Reservation,
    ReservationList,
    UpdatePaymentStatusRequest,
)
from ..services.cancellation_service import CancellationService
from ..services.idempotency_service import IdempotencyService
from ..services.ledger_service import LedgerService
from ..services.notifications import NotificationDispatcher
from ..services.payment_gateway import PaymentGateway
from ..services.reservation_service import ReservationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/reservation", tags=["reservation"])

# Define dependencies to avoid B008 linting errors
DB_DEPENDENCY = Depends(get_db)
IDEMPOTENCY_KEY_DEPENDENCY = Header(..., alias="Idempotency-Key")


def _to_response(reservation) -> dict[str, Any]:
    return Reservation.from_model(reservation).model_dump(mode="json")


async def _handle_idempotent_operation(
    method: str,
    idempotency_key: str,
    request_body: dict[str, Any],
    operation_func,
    db: AsyncSession
) -> JSONResponse:
    """Handle idempotent operation with caching."""
    idempotency_service = IdempotencyService(db)

    # Check for existing response
    cached_response = await idempotency_service.check_idempotency(
        idempotency_key=idempotency_key,
        method=method,
        request_body=request_body
    )

    if cached_response:
        status_code, response_body = cached_response
        return JSONResponse(status_code=status_code, content=response_body)

    # Execute operation
    try:
        result = await operation_func()

        if isinstance(result, JSONResponse):
            response_dict = json.loads(result.body.decode('utf-8'))
            status_code = result.status_code
        else:
            response_dict = result
            status_code = 200

        # Store response for future idempotent requests
        await idempotency_service.store_response(
            idempotency_key=idempotency_key,
            method=method,
            request_body=request_body,
            status_code=status_code,
            response_body=response_dict,
            ttl_hours=settings.idempotency_ttl_hours
        )

        return JSONResponse(status_code=status_code, content=response_dict)

    except ProblemDetailsException as e:
        # The operation may have left the session mid-transaction
        await db.rollback()
        # Store error response for idempotency
        await idempotency_service.store_response(
            idempotency_key=idempotency_key,
            method=method,
            request_body=request_body,
            status_code=e.status_code,
            response_body=e.problem_details,
            ttl_hours=settings.idempotency_ttl_hours
        )
        raise


@router.post("/create", response_model=Reservation)
async def create_reservation(
    request: CreateReservationRequest,
    actor: Actor = CurrentActor,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """
    Create a pending reservation settled later through the payment ledger.

    Card-paid reservations are never created here: they are materialized from
    the payment gateway webhook.
    """
    reservation_service = ReservationService(db)

    try:
        reservation = await reservation_service.create_reservation(
            request, Holder(account_id=actor.account_id)
        )
        return JSONResponse(status_code=201, content=_to_response(reservation))

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in reservation creation",
            extra={"account_id": actor.account_id, "service_id": request.service_id, "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/get", response_model=Reservation)
async def get_reservation(
    request: GetReservationRequest,
    actor: Actor = CurrentActor,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """
    Get reservation details.

    This is a read operation and does not require idempotency.
    """
    reservation_service = ReservationService(db)
    reservation = await reservation_service.get_for_actor(request.reservation_id, actor)
    return JSONResponse(status_code=200, content=_to_response(reservation))


@router.post("/list", response_model=ReservationList)
async def list_reservations(
    request: ListReservationsRequest,
    actor: Actor = CurrentActor,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """List the caller's reservations, newest first."""
    reservation_service = ReservationService(db)
    reservations = await reservation_service.list_reservations(
        account_id=actor.account_id,
        status=request.status,
        limit=request.limit,
    )
    content = {"reservations": [_to_response(r) for r in reservations]}
    return JSONResponse(status_code=200, content=content)


@router.post("/cancel", response_model=Reservation)
async def cancel_reservation(
    request: CancelReservationRequest,
    actor: Actor = CurrentActor,
    db: AsyncSession = DB_DEPENDENCY,
    gateway: PaymentGateway = PaymentGatewayDependency,
    notifications: NotificationDispatcher = NotificationsDependency
) -> JSONResponse:
    """
    Cancel a reservation and refund the holder.

    The refund is issued before anything is written locally; a gateway
    failure leaves the reservation untouched and safe to retry.
    """
    cancellation_service = CancellationService(db, gateway, notifications=notifications)

    try:
        reservation = await cancellation_service.cancel(
            reservation_id=request.reservation_id,
            actor=actor,
            reason=request.reason,
            refund_amount=request.refund_amount,
        )
        return JSONResponse(status_code=200, content=_to_response(reservation))

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in reservation cancellation",
            extra={"reservation_id": str(request.reservation_id), "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


async def _require_manageable(db: AsyncSession, reservation_id, actor: Actor) -> None:
    reservation = await ReservationService(db).get_reservation(reservation_id)
    if not (actor.is_admin or actor.owns(reservation.account_id)):
        raise AuthorizationError("Only the reservation holder or an administrator may record payments")


@router.post("/record-payment", response_model=Reservation)
async def record_payment(
    request: RecordPaymentRequest,
    actor: Actor = CurrentActor,
    db: AsyncSession = DB_DEPENDENCY,
    idempotency_key: str = IDEMPOTENCY_KEY_DEPENDENCY
) -> JSONResponse:
    """
    Record one participant's share of a split payment.

    This operation is idempotent based on the Idempotency-Key header.
    """
    ledger_service = LedgerService(db)

    async def operation():
        await _require_manageable(db, request.reservation_id, actor)
        reservation, entry = await ledger_service.record_payment(
            reservation_id=request.reservation_id,
            participant=request.participant,
            amount=request.amount,
            method=request.method,
            status=request.status,
        )

        logger.info(
            "Split payment recorded",
            extra={
                "reservation_id": str(request.reservation_id),
                "entry_id": str(entry.id),
                "amount": request.amount,
                "idempotency_key": idempotency_key
            }
        )
        return _to_response(reservation)

    try:
        return await _handle_idempotent_operation(
            method="reservation/record-payment",
            idempotency_key=idempotency_key,
            request_body=request.model_dump(mode="json"),
            operation_func=operation,
            db=db
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in payment recording",
            extra={
                "reservation_id": str(request.reservation_id),
                "idempotency_key": idempotency_key,
                "error": str(e)
            },
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/update-payment-status", response_model=Reservation)
async def update_payment_status(
    request: UpdatePaymentStatusRequest,
    actor: Actor = CurrentActor,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """Mark a ledger entry paid or pending after settlement out of band."""
    await _require_manageable(db, request.reservation_id, actor)
    reservation, _ = await LedgerService(db).update_entry_status(
        reservation_id=request.reservation_id,
        entry_id=request.entry_id,
        status=request.status,
    )
    return JSONResponse(status_code=200, content=_to_response(reservation))


@router.post("/add-feedback", response_model=Reservation)
async def add_feedback(
    request: AddFeedbackRequest,
    actor: Actor = CurrentActor,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    reservation = await ReservationService(db).add_feedback(
        reservation_id=request.reservation_id,
        actor=actor,
        rating=request.rating,
        comment=request.comment,
    )
    return JSONResponse(status_code=200, content=_to_response(reservation))
