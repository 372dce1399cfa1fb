from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from app.core.config import Settings
from app.core.database import Database
from app.routers import checkout, subscriptions, webhook
from app.services.reconciliation_service import ReconciliationService
from app.services.status_service import SubscriptionStatusService
from app.services.stripe_service import StripeService

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s - %(message)s',
        handlers=[logging.StreamHandler()]
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    database = Database.from_settings(settings)
    try:
        await database.ping()
        logger.info("✅ Database connection established")
        if settings.auto_create_tables:
            await database.init_models()
    except Exception:
        await database.dispose()
        logger.exception("❌ Database connection failed")
        raise

    stripe_service = StripeService.from_settings(settings)
    if not settings.stripe_secret_key:
        logger.warning("STRIPE_SECRET_KEY not set; Stripe calls will fail")
    if not settings.stripe_webhook_secret:
        logger.warning("STRIPE_WEBHOOK_SECRET not set; webhooks will be rejected")

    app.state.database = database
    app.state.stripe_service = stripe_service
    app.state.reconciliation_service = ReconciliationService.from_settings(
        settings, database.session_factory, stripe_service
    )
    app.state.status_service = SubscriptionStatusService(
        database.session_factory,
        database_timeout=settings.database_timeout_seconds
    )
    logger.info("🔗 Stripe webhook endpoint: /stripe-webhook")
    try:
        yield
    finally:
        await database.dispose()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings()
    configure_logging(settings)

    app = FastAPI(
        title="Atlas Subscription API",
        description="Links Stripe subscriptions to wallet addresses",
        version="1.0.0",
        redirect_slashes=False,
        lifespan=lifespan
    )
    app.state.settings = settings

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.environment == "development" else [settings.frontend_url],
        allow_credentials=False if settings.environment == "development" else True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        return JSONResponse(content={
            "status": "healthy",
            "service": "Atlas Subscription API",
            "version": "1.0.0"
        })

    # Include routers
    app.include_router(webhook.router, tags=["Webhooks"])
    app.include_router(checkout.router, tags=["Checkout"])
    app.include_router(subscriptions.router, prefix="/api", tags=["Subscriptions"])

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    from app.core.config import settings
    uvicorn.run(app, host=settings.host, port=settings.port)
