from __future__ import annotations

import logging
import sys
from typing import Optional

from fastapi import FastAPI, Request
from sqlalchemy.exc import SQLAlchemyError

from perfdash.config import AppConfig
from perfdash.db import init_db, make_engine
from perfdash.errors import InvalidConfiguration, PerfDashError
from perfdash.services.audit import AuditProvider, build_provider
from perfdash.services.migrate import migrate_local_results
from perfdash.services.store import build_store
from perfdash.web.routers import admin, history, runs

APP_NAME = "perfdash"

logger = logging.getLogger(__name__)


def create_app(config: Optional[AppConfig] = None, provider: Optional[AuditProvider] = None) -> FastAPI:
    app = FastAPI(title=f"{APP_NAME} API")
    app.state.config = config or AppConfig.from_env()
    app.state.provider = provider
    app.state.provider_error = None

    app.include_router(runs.router)
    app.include_router(history.router)
    app.include_router(admin.router, prefix="/admin")
    print(f"[INFO] Mounted routers: {[m.__name__ for m in (runs, history, admin)]}", file=sys.stderr)

    @app.on_event("startup")
    async def startup_event():
        cfg: AppConfig = app.state.config
        engine = make_engine(cfg)
        if engine is not None and cfg.create_schema:
            try:
                await init_db(engine)
            except (SQLAlchemyError, OSError) as e:
                logger.error("Could not create lighthouse_results schema: %s", e)
        app.state.engine = engine
        app.state.store = build_store(cfg, engine)

        if app.state.provider is None:
            try:
                app.state.provider = build_provider(cfg)
            except InvalidConfiguration as e:
                logger.warning("Audit provider unavailable: %s", e)
                app.state.provider_error = str(e)

        try:
            report = await migrate_local_results(app.state.store, retain_failed=cfg.migration_retain_failed)
            app.state.migration = report
        except PerfDashError as e:
            logger.error("Migration failed: %s", e)

    @app.on_event("shutdown")
    async def shutdown_event():
        engine = getattr(app.state, "engine", None)
        if engine is not None:
            await engine.dispose()

    @app.get("/")
    async def index(request: Request):
        cfg: AppConfig = request.app.state.config
        return {
            "app": APP_NAME,
            "remote_configured": cfg.remote_configured,
            "audit_source": cfg.audit_source,
            "provider_ready": request.app.state.provider is not None,
        }

    return app


app = create_app()
