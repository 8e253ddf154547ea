from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError

from clubhub.api.routes import triggers
from clubhub.core.exceptions import fanout_exception_handler, global_exception_handler, http_exception_handler, malformed_event_exception_handler, request_validation_exception_handler
from clubhub.core.lifespan import lifespan
from clubhub.notifications.contracts import FanoutError, MalformedEventError

app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)

app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
app.add_exception_handler(MalformedEventError, malformed_event_exception_handler)
app.add_exception_handler(FanoutError, fanout_exception_handler)


@app.get("/health", include_in_schema=False)
async def health_check() -> dict[str, str]:
  """Return a simple health status."""
  return {"status": "ok", "version": "0.1.0"}


app.include_router(triggers.router, prefix="/triggers", tags=["triggers"])
