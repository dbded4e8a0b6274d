"""
Entry point for the passgate backend.

This script creates the FastAPI application, includes all API routers and
starts the passcode sweeper. Run with:

    uvicorn passgate.main:app --reload

"""

from __future__ import annotations

import logging
import os
import threading

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .core.db import engine
from .models import Base
from .services.passcode_sweeper import run_passcode_sweeper
from .scripts.run_migrations import run_migrations_to_head

from .api import api_router
from .core.config import settings, get_app_env
from .core.errors import InfrastructureError, log_exception


def _flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes"}


def create_app() -> FastAPI:
    app = FastAPI(title="Passgate Backend", version="0.1.0")
    app.include_router(api_router)
    app.state.passcode_sweeper_stop = None
    app.state.passcode_sweeper_thread = None

    @app.exception_handler(InfrastructureError)
    def _infrastructure_error(request: Request, exc: InfrastructureError) -> JSONResponse:
        logging.getLogger("api").warning("Store unavailable path=%s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=503,
            content={"detail": "Service temporarily unavailable"},
            headers={"Retry-After": "1"},
        )

    @app.on_event("startup")
    def _init_db() -> None:
        logger = logging.getLogger("startup")
        env = get_app_env()
        if _flag("AUTO_CREATE_DB", settings.auto_create_db):
            try:
                Base.metadata.create_all(bind=engine)
            except Exception as exc:
                log_exception(logger, "DB create_all failed", exc=exc)
                if env == "prod":
                    raise
        if _flag("AUTO_RUN_MIGRATIONS", settings.auto_run_migrations):
            try:
                run_migrations_to_head()
            except Exception as exc:
                log_exception(logger, "DB migrations failed", exc=exc)
                if env == "prod":
                    raise
        if _flag("ENABLE_PASSCODE_SWEEPER", settings.enable_passcode_sweeper):
            stop_event = threading.Event()
            thread = threading.Thread(
                target=run_passcode_sweeper,
                args=(stop_event,),
                daemon=True,
                name="passcode-sweeper",
            )
            thread.start()
            app.state.passcode_sweeper_stop = stop_event
            app.state.passcode_sweeper_thread = thread

    @app.on_event("shutdown")
    def _shutdown() -> None:
        stop_event = getattr(app.state, "passcode_sweeper_stop", None)
        if stop_event:
            stop_event.set()
        thread = getattr(app.state, "passcode_sweeper_thread", None)
        if thread:
            thread.join(timeout=5)

    return app


app = create_app()
