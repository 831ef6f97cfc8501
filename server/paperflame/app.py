"""
FastAPI application entry point for the PaperFlame backend.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from paperflame.config import get_settings
from paperflame.errors import PaperFlameError
from paperflame.routes import router

logger = logging.getLogger(__name__)


async def _domain_error_handler(request: Request, exc: PaperFlameError) -> JSONResponse:
    logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=409, content={"detail": str(exc)})


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="PaperFlame API", version="0.1.0")
    app.include_router(router, prefix=settings.api_prefix)
    app.add_exception_handler(PaperFlameError, _domain_error_handler)
    return app


app = create_app()
