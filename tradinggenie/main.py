import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv

package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from tradinggenie.core.config import settings, validate_config
from tradinggenie.core.database import create_all_tables
from tradinggenie.core.logging import configure_logging
from tradinggenie.core.middleware.request_id import RequestIdMiddleware
from tradinggenie.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from tradinggenie.api import admin, billing, health
from tradinggenie.features.billing.service import BillingServices, build_services


def create_app(services: Optional[BillingServices] = None) -> FastAPI:
    """
    Build the application.

    `services` replaces the Stripe-backed container built at startup; tests
    pass one wired with fakes.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger = logging.getLogger("tradinggenie")
        logger.info("Starting Trading Genie backend...")
        create_all_tables()
        if getattr(app.state, "billing", None) is None:
            app.state.billing = build_services(settings)
        try:
            yield
        finally:
            logger.info("Stopping Trading Genie backend...")

    app = FastAPI(title="Trading Genie - Backend", version=settings.APP_VERSION, lifespan=lifespan)
    app.state.billing = services

    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(billing.router, prefix="/api")
    app.include_router(admin.router, prefix="/api")
    app.include_router(health.router, prefix="/api")
    app.include_router(health.root_router)
    return app


configure_logging(settings.ENV)
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))

app = create_app()


if __name__ == "__main__":
    logging.getLogger("tradinggenie").info(f"Trading Genie backend running on port {settings.PORT}")
    uvicorn.run("tradinggenie.main:app", host="0.0.0.0", port=settings.PORT)
