# FastAPI application entry point that builds the services
# and registers the device sign-in routes.

import logging
from typing import Optional

from fastapi import FastAPI

from devicelink.core.config import Settings, settings as default_settings
from devicelink.core.errors import register_exception_handlers
from devicelink.core.logging import setup_logging
from devicelink.routes.auth import router as auth_router
from devicelink.services.container import Services, build_services

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    settings = settings or default_settings
    setup_logging(settings.LOG_LEVEL)

    app = FastAPI(title=settings.APP_NAME)
    app.state.services = services or build_services(settings)
    register_exception_handlers(app)
    app.include_router(auth_router)

    @app.get("/health")
    def health():
        return {"ok": True}

    logger.info("App created: name=%s backend=%s", settings.APP_NAME, settings.STORE_BACKEND)
    return app


app = create_app()
