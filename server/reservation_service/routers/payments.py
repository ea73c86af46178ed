"""Payment router: authorizations that carry a pending reservation."""

import logging
from typing import Optional

import pydantic
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import get_db
from ..core.dependencies import CurrentActor, OptionalActor, PaymentGatewayDependency
from ..core.exceptions import ProblemDetailsException, ValidationError
from ..core.security import Actor
from ..schemas.payment import (
    AuthorizationResponse,
    AuthorizeReservationRequest,
    PaymentStatusRequest,
    PaymentStatusResponse,
)
from ..schemas.reservation import Holder
from ..services.authorization_service import AuthorizationService
from ..services.payment_gateway import PaymentGateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/payment", tags=["payment"])

DB_DEPENDENCY = Depends(get_db)


def _holder_for(actor: Optional[Actor], request: AuthorizeReservationRequest) -> Holder:
    """Signed-in callers hold by account; guests must name themselves."""
    if actor is None and not (request.guest_name and request.guest_email):
        raise ValidationError(
            detail="guest_name and guest_email are required when not signed in",
            errors={
                field: "Field required for guest checkout"
                for field in ("guest_name", "guest_email")
                if not getattr(request, field)
            },
        )
    try:
        return Holder(
            account_id=actor.account_id if actor else None,
            guest_name=request.guest_name,
            guest_email=request.guest_email,
        )
    except pydantic.ValidationError as e:
        raise ValidationError(
            detail="Invalid reservation holder",
            errors={
                ".".join(str(p) for p in err["loc"]) or "holder": err["msg"]
                for err in e.errors()
            },
        ) from e


@router.post("/authorize", response_model=AuthorizationResponse)
async def authorize_reservation(
    request: AuthorizeReservationRequest,
    actor: Optional[Actor] = OptionalActor,
    db: AsyncSession = DB_DEPENDENCY,
    gateway: PaymentGateway = PaymentGatewayDependency
) -> JSONResponse:
    """
    Authorize a card payment for one reservation.

    No reservation exists until the gateway reports the payment succeeded.
    """
    holder = _holder_for(actor, request)
    authorization_service = AuthorizationService(db, gateway)

    try:
        authorization, metadata = await authorization_service.authorize_reservation(request, holder)
        response_data = AuthorizationResponse(
            authorization_id=authorization.id,
            client_secret=authorization.client_secret,
            amount=authorization.amount,
            currency=authorization.currency,
            metadata_slots=sorted(metadata),
        )
        return JSONResponse(status_code=201, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in payment authorization",
            extra={"service_id": request.service_id, "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/status", response_model=PaymentStatusResponse)
async def payment_status(
    request: PaymentStatusRequest,
    actor: Actor = CurrentActor,
    db: AsyncSession = DB_DEPENDENCY,
    gateway: PaymentGateway = PaymentGatewayDependency
) -> JSONResponse:
    """Gateway status of an authorization and the reservations it produced; holder or admin only."""
    response_data = await AuthorizationService(db, gateway).payment_status(request.authorization_id, actor)

    logger.debug(
        "Payment status requested",
        extra={
            "authorization_id": request.authorization_id,
            "account_id": actor.account_id,
            "gateway_status": response_data.gateway_status,
        }
    )
    return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))
