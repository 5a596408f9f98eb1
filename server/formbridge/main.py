from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from formbridge.api.routes import health, integrations, payment_webhooks
from formbridge.core.config import get_settings
from formbridge.core.logging import configure_logging, get_logger
from formbridge.db.session import lifespan


configure_logging()
logger = get_logger(__name__)


def create_application() -> FastAPI:
    settings = get_settings()
    application = FastAPI(title=settings.app_name, lifespan=lifespan)
    application.include_router(health.router)
    application.include_router(integrations.router)
    application.include_router(payment_webhooks.router)

    if settings.allowed_origins:
        application.add_middleware(
            CORSMiddleware,
            allow_origins=[str(origin).rstrip("/") for origin in settings.allowed_origins],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    return application


app = create_application()
