"""Operator router for reviewing reconciliation failures."""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import get_db
from ..core.dependencies import OperatorActor
from ..core.security import Actor
from ..schemas.operations import FailureList, FailureRecord, ListFailuresRequest, ResolveFailureRequest
from ..services.failure_log import FailureLogService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/operations", tags=["operations"])

DB_DEPENDENCY = Depends(get_db)


@router.post("/failures/list", response_model=FailureList)
async def list_failures(
    request: ListFailuresRequest,
    operator: Actor = OperatorActor,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """
    List payments that were charged but produced no (or a rolled back) reservation.

    Restricted to administrators and managers.
    """
    failures = await FailureLogService(db).list_failures(
        include_resolved=request.include_resolved,
        limit=request.limit,
    )
    response_data = FailureList(failures=[FailureRecord.model_validate(f) for f in failures])
    return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))


@router.post("/failures/resolve", response_model=FailureRecord)
async def resolve_failure(
    request: ResolveFailureRequest,
    operator: Actor = OperatorActor,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    failure = await FailureLogService(db).resolve(
        failure_id=request.failure_id,
        resolved_by=operator.account_id,
        note=request.note,
    )
    logger.info(
        "Reconciliation failure resolved",
        extra={"failure_id": str(request.failure_id), "resolved_by": operator.account_id}
    )
    return JSONResponse(status_code=200, content=FailureRecord.model_validate(failure).model_dump(mode="json"))
