import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from clubhub.core.firebase import initialize_firebase
from clubhub.core.logging import initialize_logging


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Set up logging and Firebase before the first event is handled."""
  from clubhub.config import get_settings

  settings = get_settings()
  logger = logging.getLogger("clubhub.core.lifespan")

  try:
    initialize_logging(settings)
    logger.info("Startup complete environment=%s", settings.environment)
  except RuntimeError:
    # Keep serving on stdout when the log directory is not writable.
    logger.warning("File logging setup failed; continuing with default handlers.", exc_info=True)

  initialize_firebase(settings)
  if not settings.trigger_secret:
    logger.warning("CLUBHUB_TRIGGER_SECRET is not set; trigger deliveries will be rejected.")

  yield
