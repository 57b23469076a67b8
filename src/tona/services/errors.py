"""Classification of raw failures into the domain error taxonomy."""

import logging
from collections.abc import Callable

import httpx
from pydantic import ValidationError as PydanticValidationError

from tona.adapters.tona_api import TransportError, TransportErrorKind
from tona.domain.errors import AppError, NetworkError, UnknownError

_logger = logging.getLogger(__name__)


def classify_error(
    exc: BaseException, fallback: Callable[[BaseException], AppError] | None = None
) -> AppError:
    """Convert any failure into exactly one domain error."""
    if isinstance(exc, AppError):
        return exc
    if isinstance(exc, TransportError):
        return _from_transport(exc)
    if isinstance(exc, httpx.TimeoutException):
        return NetworkError.timeout()
    if isinstance(exc, httpx.InvalidURL | httpx.UnsupportedProtocol):
        return NetworkError.invalid_response()
    if isinstance(exc, httpx.TransportError):
        return NetworkError.no_connection()
    if isinstance(exc, PydanticValidationError):
        return UnknownError("Failed to decode response")
    if fallback is not None:
        return fallback(exc)
    _logger.warning("Unclassified failure: %r", exc)
    return UnknownError(str(exc) or type(exc).__name__)


def _from_transport(exc: TransportError) -> AppError:
    if exc.kind is TransportErrorKind.CONNECTION:
        return NetworkError.no_connection()
    if exc.kind is TransportErrorKind.TIMEOUT:
        return NetworkError.timeout()
    if exc.kind is TransportErrorKind.SERVER_ERROR:
        return NetworkError.server_error(exc.status_code or 500)
    if exc.kind is TransportErrorKind.REQUEST_FAILED:
        return NetworkError.request_failed(exc.detail or "Request failed")
    if exc.kind is TransportErrorKind.INVALID_RESPONSE:
        return NetworkError.invalid_response(exc.status_code)
    if exc.kind is TransportErrorKind.INVALID_URL:
        return NetworkError.invalid_response()
    return UnknownError(exc.description)
