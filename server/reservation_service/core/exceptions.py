"""Custom exceptions following RFC 9457 Problem Details for HTTP APIs."""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

PROBLEM_BASE_URI = "https://reservations.example.com/problems"


class ProblemDetailsException(HTTPException):
    """
    Base exception class following RFC 9457 Problem Details for HTTP APIs.

    https://tools.ietf.org/rfc/rfc9457.txt
    """

    def __init__(
        self,
        status_code: int,
        title: str,
        detail: Optional[str] = None,
        type_uri: Optional[str] = None,
        instance: Optional[str] = None,
        extensions: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize Problem Details exception.

        Args:
            status_code: HTTP status code
            title: Short, human-readable summary of the problem type
            detail: Human-readable explanation specific to this occurrence
            type_uri: URI reference that identifies the problem type
            instance: URI reference that identifies the specific occurrence
            extensions: Additional problem-specific information
            headers: HTTP headers to include in response
        """
        self.status_code = status_code
        self.title = title
        self.detail = detail
        self.type_uri = type_uri or f"about:blank#{status_code}"
        self.instance = instance
        self.extensions = extensions or {}

        self.problem_details = {
            "type": self.type_uri,
            "title": self.title,
            "status": self.status_code,
        }

        if self.detail:
            self.problem_details["detail"] = self.detail

        if self.instance:
            self.problem_details["instance"] = self.instance

        self.problem_details.update(self.extensions)

        super().__init__(
            status_code=status_code,
            detail=self.problem_details,
            headers=headers
        )

    @property
    def code(self) -> str | None:
        """Application-specific error code, when one was set."""
        return self.problem_details.get("code")

    @property
    def message(self) -> str:
        """Human-readable detail; HTTPException replaces ``detail`` with the problem body."""
        return self.problem_details.get("detail") or self.title


class ValidationError(ProblemDetailsException):
    """Exception for request validation errors."""

    def __init__(
        self,
        detail: str = "The request data failed validation",
        errors: Optional[Dict[str, Any]] = None,
        instance: Optional[str] = None,
    ):
        extensions = {}
        if errors:
            extensions["errors"] = errors

        super().__init__(
            status_code=400,
            title="Validation Error",
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/validation-error",
            instance=instance,
            extensions=extensions,
        )


class AuthenticationError(ProblemDetailsException):
    """Exception for authentication errors."""

    def __init__(
        self,
        detail: str = "Authentication credentials are required",
        instance: Optional[str] = None,
    ):
        super().__init__(
            status_code=401,
            title="Authentication Required",
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/authentication-required",
            instance=instance,
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthorizationError(ProblemDetailsException):
    """Exception for authorization errors."""

    def __init__(
        self,
        detail: str = "Insufficient permissions to access this resource",
        required_permissions: Optional[list] = None,
        instance: Optional[str] = None,
    ):
        extensions = {}
        if required_permissions:
            extensions["required_permissions"] = required_permissions

        super().__init__(
            status_code=403,
            title="Access Forbidden",
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/access-forbidden",
            instance=instance,
            extensions=extensions,
        )


class NotFoundError(ProblemDetailsException):
    """Exception for resource not found errors."""

    def __init__(
        self,
        resource_type: str = "resource",
        resource_id: Optional[str] = None,
        detail: Optional[str] = None,
        instance: Optional[str] = None,
    ):
        if not detail:
            detail = f"The requested {resource_type}"
            if resource_id:
                detail += f" with ID '{resource_id}'"
            detail += " could not be found"

        extensions = {
            "resource_type": resource_type,
        }
        if resource_id:
            extensions["resource_id"] = resource_id

        super().__init__(
            status_code=404,
            title="Resource Not Found",
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/resource-not-found",
            instance=instance,
            extensions=extensions,
        )


class ConflictError(ProblemDetailsException):
    """Exception for resource conflict errors."""

    def __init__(
        self,
        detail: str = "The request conflicts with the current state of the resource",
        conflicting_resource: Optional[Dict[str, Any]] = None,
        instance: Optional[str] = None,
    ):
        extensions = {}
        if conflicting_resource:
            extensions["conflicting_resource"] = conflicting_resource

        super().__init__(
            status_code=409,
            title="Resource Conflict",
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/resource-conflict",
            instance=instance,
            extensions=extensions,
        )


# Reconciliation exceptions

class ReservationProblem(ProblemDetailsException):
    """Domain problem carrying a stable code and a retry hint."""

    def __init__(
        self,
        status_code: int,
        title: str,
        code: str,
        detail: str,
        retryable: bool = False,
        extensions: Optional[Dict[str, Any]] = None,
    ):
        payload = {"code": code, "retryable": retryable}
        payload.update(extensions or {})
        super().__init__(
            status_code=status_code,
            title=title,
            detail=detail,
            type_uri=f"{PROBLEM_BASE_URI}/{code.lower().replace('_', '-')}",
            extensions=payload,
        )


class MalformedIntent(ReservationProblem):
    """Intent metadata is absent, undecodable or missing required fields."""

    def __init__(self, detail: str, missing_fields: Optional[list[str]] = None):
        extensions = {"missing_fields": missing_fields} if missing_fields else None
        super().__init__(422, "Malformed Reservation Intent", "MALFORMED_INTENT", detail, extensions=extensions)


class IntentTooLarge(ReservationProblem):
    """Intent does not fit the gateway metadata limits even when split."""

    def __init__(self, slot: str, size: int, limit: int):
        super().__init__(
            422,
            "Reservation Intent Too Large",
            "INTENT_TOO_LARGE",
            f"Encoded slot '{slot}' is {size} bytes; the gateway accepts at most {limit}",
            extensions={"slot": slot, "size": size, "limit": limit},
        )


class CategoryValidationError(ReservationProblem):
    """Fields present do not satisfy the rules of the reservation category."""

    def __init__(self, category: str | None, detail: str, errors: Optional[list[dict]] = None):
        extensions: Dict[str, Any] = {"category": category}
        if errors:
            extensions["errors"] = errors
        super().__init__(422, "Category Validation Failed", "CATEGORY_VALIDATION", detail, extensions=extensions)


class PaymentAmountMismatch(ReservationProblem):
    """Charged amount differs from the amount the intent was priced at."""

    def __init__(self, reference: str, charged: int, expected: int):
        super().__init__(
            409,
            "Payment Amount Mismatch",
            "PAYMENT_AMOUNT_MISMATCH",
            f"Payment {reference} charged {charged} but the reservation total is {expected}",
            extensions={"reference": reference, "charged": charged, "expected": expected},
        )


class DuplicateMaterialization(ReservationProblem):
    """Another delivery already created the reservation for this reference."""

    def __init__(self, reference: str):
        super().__init__(
            409,
            "Reservation Already Materialized",
            "DUPLICATE_MATERIALIZATION",
            f"A reservation already exists for payment reference {reference}",
            extensions={"reference": reference},
        )


class OverpaymentError(ReservationProblem):
    """Recording the payment would exceed the reservation total."""

    def __init__(self, reservation_id: str, amount: int, amount_paid: int, total_amount: int):
        super().__init__(
            409,
            "Overpayment",
            "OVERPAYMENT",
            f"Payment of {amount} exceeds the outstanding balance of reservation {reservation_id}",
            extensions={
                "reservation_id": reservation_id,
                "amount": amount,
                "amount_paid": amount_paid,
                "total_amount": total_amount,
            },
        )


class AlreadyCanceled(ReservationProblem):
    """The reservation is already canceled; nothing was changed."""

    def __init__(self, reservation_id: str):
        super().__init__(
            409,
            "Reservation Already Canceled",
            "ALREADY_CANCELED",
            f"Reservation {reservation_id} is already canceled",
            extensions={"reservation_id": reservation_id},
        )


class RefundAmountExceedsPaid(ReservationProblem):
    """Requested refund is larger than what was actually paid."""

    def __init__(self, reservation_id: str, refund_amount: int, amount_paid: int):
        super().__init__(
            422,
            "Refund Exceeds Amount Paid",
            "REFUND_EXCEEDS_PAID",
            f"Refund of {refund_amount} exceeds the {amount_paid} paid on reservation {reservation_id}",
            extensions={
                "reservation_id": reservation_id,
                "refund_amount": refund_amount,
                "amount_paid": amount_paid,
            },
        )


class PaymentGatewayError(ReservationProblem):
    """The gateway could not create or read an authorization; safe to retry."""

    def __init__(self, detail: str):
        super().__init__(502, "Payment Gateway Unavailable", "PAYMENT_GATEWAY_ERROR", detail, retryable=True)


class RefundGatewayError(ReservationProblem):
    """The gateway rejected or failed the refund; local state is unchanged."""

    def __init__(self, reservation_id: str, detail: str, status_code: int = 502, code: str = "REFUND_GATEWAY_ERROR"):
        super().__init__(
            status_code,
            "Refund Failed",
            code,
            detail,
            extensions={"reservation_id": reservation_id},
        )


class RefundOutcomeUnknown(RefundGatewayError):
    """The refund call timed out; the money movement must be reconciled by hand."""

    def __init__(self, reservation_id: str, detail: str):
        super().__init__(reservation_id, detail, status_code=504, code="REFUND_OUTCOME_UNKNOWN")


class WebhookSignatureError(ReservationProblem):
    """Inbound notification could not be authenticated."""

    def __init__(self, detail: str = "Webhook signature verification failed"):
        super().__init__(400, "Invalid Webhook Signature", "INVALID_SIGNATURE", detail)


class EmptyCartError(ReservationProblem):
    """Checkout was requested for a cart without items."""

    def __init__(self, account_id: str):
        super().__init__(
            409,
            "Cart Is Empty",
            "EMPTY_CART",
            f"Cart for account {account_id} has no items to check out",
        )


async def problem_details_handler(request: Request, exc: ProblemDetailsException) -> JSONResponse:
    """
    Exception handler for Problem Details exceptions.

    Args:
        request: FastAPI request object
        exc: Problem Details exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.problem_details,
        headers=exc.headers,
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render FastAPI request validation failures as Problem Details with violations."""
    violations = [
        {
            "path": ".".join(str(part) for part in error.get("loc", ())),
            "message": error.get("msg", "Invalid value"),
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content={
            "type": f"{PROBLEM_BASE_URI}/request-validation",
            "title": "Request Validation Failed",
            "status": 422,
            "detail": "The request body or parameters are invalid",
            "instance": str(request.url),
            "violations": violations,
        },
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Generic exception handler that converts unhandled exceptions to Problem Details format.

    Args:
        request: FastAPI request object
        exc: Unhandled exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    error_id = str(uuid.uuid4())

    problem_details = {
        "type": f"{PROBLEM_BASE_URI}/internal-server-error",
        "title": "Internal Server Error",
        "status": 500,
        "detail": "An unexpected error occurred while processing the request",
        "instance": str(request.url),
        "error_id": error_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    return JSONResponse(
        status_code=500,
        content=problem_details,
    )
