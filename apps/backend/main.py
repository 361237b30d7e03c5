# apps/backend/main.py

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

# -----------------------------------------------------------------------------
# Paths + Python path
# -----------------------------------------------------------------------------
BASE_DIR = Path(__file__).resolve().parent  # .../apps/backend
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

# -----------------------------------------------------------------------------
# Load .env (MUST be before Settings are read)
# -----------------------------------------------------------------------------
ENV_PATH = BASE_DIR / ".env"
load_dotenv(ENV_PATH)

from tracker.core.config import Settings, get_settings  # noqa: E402
from tracker.core.logging_setup import configure_logging  # noqa: E402
from tracker.db import make_engine  # noqa: E402
from tracker.deps import get_store  # noqa: E402
from tracker.routes.events import router as events_router  # noqa: E402
from tracker.routes.stats import router as stats_router  # noqa: E402
from tracker.schema import SchemaError, ensure_schema  # noqa: E402
from tracker.services.event_store import EventStore, StoreUnavailable  # noqa: E402

logger = logging.getLogger("tracker.main")


# -----------------------------------------------------------------------------
# Startup / shutdown
# -----------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    configure_logging(settings.log_level)

    engine = make_engine(settings.database_url, busy_timeout_s=settings.write_timeout_s)
    try:
        version = ensure_schema(engine)
    except SchemaError:
        logger.exception("schema migration failed, refusing to start")
        engine.dispose()
        raise

    app.state.store = EventStore(engine)
    app.state.schema_version = version
    logger.info("%s ready (schema v%d, %s)", settings.app_name, version, engine.url.render_as_string(hide_password=True))

    yield

    logger.info("shutting down")
    app.state.store.dispose()


# -----------------------------------------------------------------------------
# Create app
# -----------------------------------------------------------------------------
def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(title="Tiny Tracker", version="0.3.0", lifespan=lifespan)
    app.state.settings = settings

    # No default cross-origin policy: origins are a per-deployment decision.
    if settings.cors_allow_origins or settings.cors_allow_origin_regex:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allow_origins,
            allow_origin_regex=settings.cors_allow_origin_regex,
            allow_credentials=True,
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

    app.include_router(events_router, tags=["collect"])
    app.include_router(stats_router, tags=["stats"])

    # -------------------------------------------------------------------------
    # Basic health check
    # -------------------------------------------------------------------------
    @app.get("/health")
    def health(store: EventStore = Depends(get_store)):
        try:
            store.ping()
        except StoreUnavailable:
            raise HTTPException(status_code=503, detail="event store unavailable")
        return {"status": "ok", "schema_version": app.state.schema_version}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8080)
