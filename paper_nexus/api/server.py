from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from paper_nexus import __version__
from paper_nexus.auth.crud import bootstrap_admin_if_needed
from paper_nexus.auth.metrics import ActiveVerificationGauge
from paper_nexus.config import DEV_JWT_SECRET, Config, load_config
from paper_nexus.db import init_db
from paper_nexus.errors import AppError
from paper_nexus.logging_config import setup_logging

from .auth_routes import router as auth_router
from .forum_routes import router as forum_router
from .papers_routes import router as papers_router

logger = logging.getLogger(__name__)


def _on_startup(cfg: Config) -> None:
    if cfg.JWT_SECRET == DEV_JWT_SECRET:
        if cfg.is_production:
            raise RuntimeError("JWT_SECRET must be set in production")
        logger.warning("JWT_SECRET is the development default; set it before deploying")

    # Ensure schema exists.
    init_db(cfg.DB_DSN)

    # Bootstrap first admin if needed (only when users table is empty)
    boot = bootstrap_admin_if_needed(cfg)
    if boot:
        logger.info("Bootstrapped initial admin user: username=%s", boot.get("username"))


def create_app(cfg: Optional[Config] = None) -> FastAPI:
    cfg = cfg or load_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        setup_logging(level=cfg.LOG_LEVEL, structured=cfg.LOG_STRUCTURED, log_file=cfg.LOG_FILE)
        _on_startup(cfg)
        logger.info("Paper Nexus API started (env=%s)", cfg.ENV)
        yield
        logger.info("Paper Nexus API stopped")

    app = FastAPI(title="Paper Nexus API", version=__version__, lifespan=lifespan)

    # Make config available to auth deps.
    app.state.cfg = cfg
    app.state.verification_gauge = ActiveVerificationGauge.from_config(cfg)

    # CORS is mainly needed for local development (frontend dev server -> API).
    _cors_origins = [o.strip() for o in (cfg.CORS_ALLOW_ORIGINS or "").split(",") if o.strip()]
    if _cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=_cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.code)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        fields: Dict[str, str] = {}
        for err in exc.errors():
            loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
            fields[".".join(loc) or "body"] = str(err.get("msg", "invalid"))
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "code": "validation_error", "fields": fields},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"error": "An error occurred. Please try again later", "code": "server_error"},
        )

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {"status": "ok", "version": __version__}

    app.include_router(auth_router)
    app.include_router(forum_router)
    app.include_router(papers_router)
    return app


app = create_app()
