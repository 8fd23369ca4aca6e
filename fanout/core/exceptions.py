import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from fanout.notifications.contracts import DeviceNotFoundError, EventValidationError, NotificationError

logger = logging.getLogger("uvicorn.error")

# Request fields that hold push credentials or user content.
_REDACTED_KEYS = frozenset({"input", "body", "payload", "credential", "fcmToken", "webPushSubscription", "keys"})

_NOTIFICATION_ERRORS: dict[type[NotificationError], tuple[int, str | None]] = {DeviceNotFoundError: (status.HTTP_404_NOT_FOUND, "Device not found"), EventValidationError: (status.HTTP_422_UNPROCESSABLE_ENTITY, None)}


def _coerce_json_safe(value: Any) -> Any:
  """Convert unsupported values into JSON-safe primitives for error responses."""
  # Return primitives unchanged.
  if value is None or isinstance(value, bool | int | float | str):
    return value
  # Recurse through containers so nested values stay serializable.
  if isinstance(value, dict):
    return {str(key): _coerce_json_safe(item) for key, item in value.items()}
  if isinstance(value, list | tuple | set):
    return [_coerce_json_safe(item) for item in value]
  # Pydantic puts raw exceptions in ctx["error"].
  if isinstance(value, BaseException):
    message = str(value)
    return f"{type(value).__name__}: {message}" if message else type(value).__name__
  return str(value)


def _error_payload(detail: Any, *, request_id: str | None = None) -> dict[str, Any]:
  payload: dict[str, Any] = {"detail": detail}
  if request_id:
    payload["requestId"] = request_id
  return payload


def _request_id(request: Request) -> str | None:
  return getattr(request.state, "request_id", None)


def _sanitize_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
  """Return pydantic errors without the submitted values or docs links."""
  sanitized: list[dict[str, Any]] = []
  for error in errors:
    # Submitted values may be push credentials.
    scrubbed = {key: value for key, value in error.items() if key not in {"input", "url"}}
    ctx = scrubbed.get("ctx")
    # Some validators copy the input into ctx as well.
    if isinstance(ctx, dict):
      scrubbed["ctx"] = {key: value for key, value in ctx.items() if key != "input"}
    sanitized.append(_coerce_json_safe(scrubbed))
  return sanitized


def _sanitize_http_detail(detail: Any) -> Any:
  """Drop credential-bearing keys from an HTTPException detail before logging it."""
  if isinstance(detail, dict):
    return {key: _sanitize_http_detail(value) for key, value in detail.items() if key not in _REDACTED_KEYS}
  if isinstance(detail, list):
    return [_sanitize_http_detail(item) for item in detail]
  return detail


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
  """Catch-all for unhandled errors; only the request id reaches the client."""
  request_id = _request_id(request)
  logger.error("Global exception request_id=%s path=%s error_type=%s", request_id, request.url.path, type(exc).__name__, exc_info=True)
  return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=_error_payload("Internal Server Error", request_id=request_id))


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
  request_id = _request_id(request)
  sanitized_errors = _sanitize_validation_errors(exc.errors())
  logger.warning("Request validation failed request_id=%s path=%s method=%s errors=%s", request_id, request.url.path, request.method, sanitized_errors)
  return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=_error_payload(sanitized_errors, request_id=request_id))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
  """Pass 4xx details through; replace 5xx details with a generic message."""
  from fanout.config import get_settings

  request_id = _request_id(request)
  # Server errors never leak their detail.
  if exc.status_code >= 500:
    logger.error("HTTPException request_id=%s path=%s status_code=%s detail=%s", request_id, request.url.path, exc.status_code, _sanitize_http_detail(exc.detail))
    return JSONResponse(status_code=exc.status_code, content=_error_payload("Internal Server Error", request_id=request_id))

  # Client errors are noisy; log them only when asked.
  if get_settings().log_http_4xx:
    logger.warning("HTTPException request_id=%s path=%s status_code=%s detail=%s", request_id, request.url.path, exc.status_code, _sanitize_http_detail(exc.detail))

  return JSONResponse(status_code=exc.status_code, content=_error_payload(exc.detail, request_id=request_id), headers=getattr(exc, "headers", None))


async def notification_exception_handler(request: Request, exc: NotificationError) -> JSONResponse:
  """Map domain errors raised by routes to client errors."""
  request_id = _request_id(request)
  # First matching entry wins; unmapped domain errors are server bugs.
  status_code, detail = next(((code, message) for error_type, (code, message) in _NOTIFICATION_ERRORS.items() if isinstance(exc, error_type)), (status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error"))
  if status_code >= 500:
    logger.error("Unmapped notification error request_id=%s path=%s error_type=%s", request_id, request.url.path, type(exc).__name__, exc_info=exc)
  else:
    logger.info("Notification request rejected request_id=%s path=%s status_code=%s reason=%s", request_id, request.url.path, status_code, exc)
  return JSONResponse(status_code=status_code, content=_error_payload(detail or str(exc), request_id=request_id))


def register_exception_handlers(app: FastAPI) -> None:
  app.add_exception_handler(Exception, global_exception_handler)
  app.add_exception_handler(HTTPException, http_exception_handler)
  app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
  app.add_exception_handler(NotificationError, notification_exception_handler)
