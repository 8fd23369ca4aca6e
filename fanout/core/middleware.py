import logging
import re
import time
import uuid
from typing import Any

from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Receive, Scope, Send

logger = logging.getLogger("fanout.core.middleware")

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")
# Probe traffic is only logged at debug level.
_QUIET_PATHS = frozenset({"/health"})


def _header(scope: Scope, name: bytes) -> str | None:
  for key, value in scope.get("headers", []):
    if key.lower() == name:
      return value.decode("latin-1")
  return None


def resolve_request_id(raw: str | None) -> str:
  """Reuse a caller supplied request id when it is log-safe, else mint one."""
  if raw and _REQUEST_ID_RE.fullmatch(raw):
    return raw
  return str(uuid.uuid4())


class RequestLoggingMiddleware:
  """Log one line per request and response with a shared request id.

  Bodies are never read: device registrations carry push credentials and
  event payloads carry user content.
  """

  def __init__(self, app: ASGIApp) -> None:
    self.app = app

  async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
    if scope["type"] != "http":
      await self.app(scope, receive, send)
      return

    # Published events carry the publisher's id so a dispatch can be traced end to end.
    request_id = resolve_request_id(_header(scope, b"x-request-id"))
    scope.setdefault("state", {})["request_id"] = request_id

    method = scope.get("method", "UNKNOWN")
    path = scope.get("path", "")
    level = logging.DEBUG if path in _QUIET_PATHS else logging.INFO
    logger.log(level, "Incoming request request_id=%s %s %s", request_id, method, path)

    started = time.perf_counter()
    status_code: int | None = None

    async def send_wrapper(message: dict[str, Any]) -> None:
      nonlocal status_code
      if message.get("type") == "http.response.start":
        status_code = message.get("status")
        MutableHeaders(scope=message)["x-request-id"] = request_id

      await send(message)

    try:
      await self.app(scope, receive, send_wrapper)
    finally:
      elapsed_ms = (time.perf_counter() - started) * 1000
      if status_code is None or status_code >= 500:
        level = logging.WARNING
      logger.log(level, "Response request_id=%s %s %s status=%s (took %.2fms)", request_id, method, path, status_code or 0, elapsed_ms)


class SecurityHeadersMiddleware:
  """Strip server fingerprint headers and forbid content sniffing."""

  def __init__(self, app: ASGIApp) -> None:
    self.app = app

  async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
    if scope["type"] != "http":
      await self.app(scope, receive, send)
      return

    async def send_wrapper(message: dict[str, Any]) -> None:
      if message["type"] == "http.response.start":
        headers = MutableHeaders(scope=message)
        for name in ("x-powered-by", "server"):
          if name in headers:
            del headers[name]
        headers.setdefault("x-content-type-options", "nosniff")

      await send(message)

    await self.app(scope, receive, send_wrapper)
