"""
FastAPI application entry point for the storage service.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from vss import __version__
from vss.config import Settings, get_settings
from vss.cors import OriginPolicy, OriginRejected, create_cors_headers, validate_origin
from vss.routes import router

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def _validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    policy: OriginPolicy = request.app.state.origin_policy
    try:
        allow_origin = validate_origin(request.headers.get("origin"), policy)
    except OriginRejected:
        return JSONResponse(
            status_code=404, content={"detail": ""}, headers=create_cors_headers("*")
        )
    response = await request_validation_exception_handler(request, exc)
    response.headers.update(create_cors_headers(allow_origin))
    return response


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    if settings is None:
        settings = get_settings()
    configure_logging(settings.log_level)
    if not settings.auth_enabled:
        logger.warning("AUTH_KEY not set; store_id is taken from request payloads")

    app = FastAPI(title="VSS", version=__version__)
    app.state.settings = settings
    app.state.origin_policy = OriginPolicy.from_settings(settings)
    app.dependency_overrides[get_settings] = lambda: settings
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.include_router(router)
    return app


app = create_app()
