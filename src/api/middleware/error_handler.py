"""Global error handling middleware for consistent error responses."""

import logging
import time
import traceback
from typing import Any, Callable

from fastapi import HTTPException, Request, Response, status
from fastapi.responses import JSONResponse

from src.schemas.common import ErrorResponse

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base exception for API errors.

    Use this class to raise application-specific errors that should
    be returned to the client with a specific status code and message.
    """

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_type: str = "api_error",
        details: list[dict[str, Any]] | None = None,
    ) -> None:
        """Initialize API error.

        Args:
            message: Human-readable error message.
            status_code: HTTP status code to return.
            error_type: Error category/type for client handling.
            details: Optional additional error details.
        """
        self.message = message
        self.status_code = status_code
        self.error_type = error_type
        self.details = details
        super().__init__(message)


class NotFoundError(APIError):
    """Resource not found error."""

    def __init__(self, message: str = "Resource not found", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            error_type="not_found",
            details=details,
        )


class ExpiredError(APIError):
    """Resource exists but is past its exposure window."""

    def __init__(self, message: str = "Resource has expired", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_410_GONE,
            error_type="expired",
            details=details,
        )


class CartValidationError(APIError):
    """Client-caused cart error. Returned immediately, never retried."""

    def __init__(
        self,
        message: str,
        error_type: str,
        details: list[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_type=error_type,
            details=details,
        )


class EmptyCartError(CartValidationError):
    """The submitted cart has no items."""

    def __init__(self, message: str = "Cart is empty") -> None:
        super().__init__(message=message, error_type="empty_cart")


class ProductNotFoundError(CartValidationError):
    """A cart line references a product missing from the catalog."""

    def __init__(self, product_id: str) -> None:
        super().__init__(
            message=f"Product not found: {product_id}",
            error_type="product_not_found",
            details=[{"loc": ["items", "id"], "msg": product_id, "type": "product_not_found"}],
        )
        self.product_id = product_id


class ProductUnavailableError(CartValidationError):
    """A cart line references an out-of-stock product."""

    def __init__(self, product_id: str, product_name: str) -> None:
        super().__init__(
            message=f"Product out of stock: {product_name}",
            error_type="product_unavailable",
            details=[{"loc": ["items", "id"], "msg": product_id, "type": "product_unavailable"}],
        )
        self.product_id = product_id


class InvalidQuantityError(CartValidationError):
    """A cart line quantity is not an integer within bounds."""

    def __init__(self, product_id: str, quantity: Any) -> None:
        super().__init__(
            message=f"Invalid quantity for product {product_id}",
            error_type="invalid_quantity",
            details=[{"loc": ["items", "quantity"], "msg": str(quantity), "type": "invalid_quantity"}],
        )
        self.product_id = product_id


class InvalidShippingCostError(CartValidationError):
    """Shipping cost is negative or above the configured maximum."""

    def __init__(self, message: str = "Invalid shipping cost") -> None:
        super().__init__(message=message, error_type="invalid_shipping_cost")


class InvalidSignatureError(APIError):
    """Provider event could not be authenticated."""

    def __init__(self, message: str = "Invalid signature") -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_type="invalid_signature",
        )


class PaymentNotCompletedError(APIError):
    """Provider reported that the payment did not complete."""

    def __init__(self, message: str = "Payment not completed", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            error_type="payment_not_completed",
            details=details,
        )


class PaymentProviderError(APIError):
    """A payment provider call failed (auth, create or capture).

    The message is client-safe; provider response bodies are logged by the
    raiser and never attached here.
    """

    def __init__(self, message: str = "Payment provider request failed", provider: str | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            error_type="payment_provider_error",
        )
        self.provider = provider


class RateLimitError(APIError):
    """Rate limit exceeded error."""

    def __init__(
        self,
        message: str = "Too many checkout attempts. Please try again later.",
        retry_after: int = 60,
        limit: int = 10,
        details: list[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            error_type="rate_limit_exceeded",
            details=details,
        )
        self.retry_after = retry_after
        self.limit = limit


def create_error_response(
    error_type: str,
    message: str,
    status_code: int,
    details: list[dict[str, Any]] | None = None,
    request_id: str | None = None,
) -> JSONResponse:
    """Create a standardized JSON error response.

    Args:
        error_type: Error category for client handling.
        message: Human-readable error description.
        status_code: HTTP status code.
        details: Optional error details.
        request_id: Optional request ID for tracing.

    Returns:
        JSONResponse: Formatted error response.
    """
    error_response = ErrorResponse.from_exception(
        error_type=error_type,
        message=message,
        details=details,
        request_id=request_id,
    )
    return JSONResponse(
        status_code=status_code,
        content=error_response.model_dump(mode="json", exclude_none=True),
    )


async def error_handler_middleware(request: Request, call_next: Callable[[Request], Any]) -> Response:
    """Middleware to catch and format all exceptions.

    Ensures consistent error response format across the application.
    Logs full stack traces for debugging while returning safe messages to clients.

    Args:
        request: The incoming request.
        call_next: Next middleware or route handler.

    Returns:
        Response: Either the successful response or formatted error response.
    """
    request_id = request.headers.get("X-Request-ID")

    try:
        response = await call_next(request)
        return response

    except RateLimitError as e:
        logger.warning(
            "Rate limit exceeded: %s",
            e.message,
            extra={"request_id": request_id, "retry_after": e.retry_after},
        )
        response = create_error_response(
            error_type=e.error_type,
            message=e.message,
            status_code=e.status_code,
            details=e.details,
            request_id=request_id,
        )
        response.headers["Retry-After"] = str(e.retry_after)
        response.headers["X-RateLimit-Limit"] = str(e.limit)
        response.headers["X-RateLimit-Remaining"] = "0"
        response.headers["X-RateLimit-Reset"] = str(int(time.time()) + e.retry_after)
        return response

    except APIError as e:
        logger.warning(
            "API error: %s - %s",
            e.error_type,
            e.message,
            extra={"request_id": request_id, "status_code": e.status_code},
        )
        return create_error_response(
            error_type=e.error_type,
            message=e.message,
            status_code=e.status_code,
            details=e.details,
            request_id=request_id,
        )

    except HTTPException as e:
        logger.warning(
            "HTTP exception: %s - %s",
            e.status_code,
            e.detail,
            extra={"request_id": request_id},
        )
        return create_error_response(
            error_type="http_error",
            message=str(e.detail),
            status_code=e.status_code,
            request_id=request_id,
        )

    except Exception as e:
        logger.error(
            "Unhandled exception: %s\n%s",
            str(e),
            traceback.format_exc(),
            extra={"request_id": request_id},
        )
        return create_error_response(
            error_type="internal_error",
            message="An unexpected error occurred",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            request_id=request_id,
        )
