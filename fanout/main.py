from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fanout.api.routes import devices, events
from fanout.config import get_settings
from fanout.core.exceptions import register_exception_handlers
from fanout.core.lifespan import lifespan
from fanout.core.middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware

settings = get_settings()

app = FastAPI(title="fanout", version="0.1.0", lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)

# Only the device routes are called from browsers; the event route is server to server.
app.add_middleware(CORSMiddleware, allow_origins=settings.allowed_origins, allow_credentials=True, allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"], allow_headers=["content-type", "authorization", "x-request-id"], expose_headers=["x-request-id"])

register_exception_handlers(app)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(SecurityHeadersMiddleware)


@app.get("/health", include_in_schema=False)
async def health_check() -> dict[str, str]:
  """Return a simple health status."""
  return {"status": "ok", "version": app.version}


app.include_router(devices.router, prefix="/v1/push", tags=["push"])
app.include_router(events.router, prefix="/internal", tags=["internal"])
