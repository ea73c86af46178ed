"""Operator-visible failure log for payments that did not reconcile."""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import utcnow
from ..core.exceptions import NotFoundError
from ..core.observability import get_logger, metrics_collector
from ..models.failure import MaterializationFailure

log = get_logger(__name__)

REFUND_REJECTED = "REFUND_GATEWAY_ERROR"
REFUND_OUTCOME_UNKNOWN = "REFUND_OUTCOME_UNKNOWN"
REFUND_FAILURE_CODES = (REFUND_REJECTED, REFUND_OUTCOME_UNKNOWN)


class FailureLogService:
    """Records and resolves reconciliation failures."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(
        self,
        error_code: str,
        detail: str,
        payment_reference: str | None = None,
        event_id: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> MaterializationFailure:
        """
        Persist a failure; the customer has usually been charged already.

        A redelivered event that fails the same way returns the open record
        instead of queueing it for review twice.
        """
        if event_id is not None:
            existing = await self.find_open(event_id, error_code)
            if existing is not None:
                log.info(
                    "reconciliation_failure_repeated",
                    failure_id=str(existing.id),
                    payment_reference=payment_reference,
                    event_id=event_id,
                    error_code=error_code,
                )
                return existing

        failure = MaterializationFailure(
            payment_reference=payment_reference,
            event_id=event_id,
            error_code=error_code,
            detail=detail,
            payload=payload or {},
        )
        self.db.add(failure)
        await self.db.commit()

        metrics_collector.record_materialization_failure(error_code)
        log.error(
            "reconciliation_failure_recorded",
            failure_id=str(failure.id),
            payment_reference=payment_reference,
            event_id=event_id,
            error_code=error_code,
            detail=detail,
        )
        return failure

    async def list_failures(self, include_resolved: bool = False, limit: int = 50) -> list[MaterializationFailure]:
        stmt = select(MaterializationFailure).order_by(MaterializationFailure.created_at.desc()).limit(limit)
        if not include_resolved:
            stmt = stmt.where(MaterializationFailure.resolved.is_(False))
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def find_open(self, event_id: str, error_code: str) -> MaterializationFailure | None:
        stmt = select(MaterializationFailure).where(
            MaterializationFailure.event_id == event_id,
            MaterializationFailure.error_code == error_code,
            MaterializationFailure.resolved.is_(False),
        ).limit(1)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def count_failures(self, payment_reference: str, error_code: str, reservation_id: str) -> int:
        """Failures of one kind recorded against a reservation, resolved ones included."""
        stmt = select(MaterializationFailure.payload).where(
            MaterializationFailure.payment_reference == payment_reference,
            MaterializationFailure.error_code == error_code,
        )
        result = await self.db.execute(stmt)
        return sum(1 for payload in result.scalars().all() if payload.get("reservation_id") == reservation_id)

    async def has_open_failure(self, payment_reference: str) -> bool:
        """Whether a charged payment still lacks its reservations; refund problems do not count."""
        stmt = select(MaterializationFailure.id).where(
            MaterializationFailure.payment_reference == payment_reference,
            MaterializationFailure.error_code.not_in(REFUND_FAILURE_CODES),
            MaterializationFailure.resolved.is_(False),
        ).limit(1)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def resolve(self, failure_id: UUID, resolved_by: str, note: str | None = None) -> MaterializationFailure:
        """Mark a failure as handled by an operator."""
        failure = await self.db.get(MaterializationFailure, failure_id)
        if failure is None:
            raise NotFoundError(resource_type="failure", resource_id=str(failure_id))

        if not failure.resolved:
            resolved_at: datetime = utcnow()
            failure.resolved = True
            failure.resolved_by = resolved_by
            failure.resolution_note = note
            failure.resolved_at = resolved_at
            await self.db.commit()
            log.info("reconciliation_failure_resolved", failure_id=str(failure_id), resolved_by=resolved_by)

        return failure
