from contextlib import asynccontextmanager
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from vtc_api import auth, routes
from vtc_api.config import Settings, get_settings
from vtc_api.database import Database
from vtc_api.errors import PaymentProviderError, VTCError
from vtc_api.log import configure_logging
from vtc_api.reconciliation import PaymentReconciler
from vtc_api.store import PaymentStore
from vtc_api.stripe_service import StripeGateway

logger = structlog.get_logger(component="server")

DEFAULT_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "https://vtc-client.onrender.com",
]
# any localhost port, Vercel previews and custom domains
ORIGIN_REGEX = r"^(http://localhost:\d+|http://127\.0\.0\.1:\d+|https://.*\.vercel\.(app|com))$"


def _warn_missing_config(settings: Settings) -> None:
    if not settings.payments_enabled:
        logger.warning("STRIPE_SECRET_KEY is not set, payments are disabled")
    if not settings.webhooks_enabled:
        logger.warning("STRIPE_WEBHOOK_SECRET is not set, Stripe webhooks will not be processed")
    if not settings.jwt_secret:
        logger.warning("JWT_SECRET is not set, login is disabled")


def _error_body(error: Exception) -> dict:
    message = getattr(error, "message", None) or str(error) or "An error occurred"
    return {"message": message, "error": f"{error.__class__.__name__}: {message}"}


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level, json_output=not settings.is_development)
    _warn_missing_config(settings)

    database = Database(settings.database_url)
    gateway = StripeGateway(settings)
    store = PaymentStore(database)
    reconciler = PaymentReconciler(gateway, store, development=settings.is_development)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await database.connect()
        yield
        await database.disconnect()

    app = FastAPI(title="VTC Booking API", lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database
    app.state.gateway = gateway
    app.state.store = store
    app.state.reconciler = reconciler

    app.add_middleware(
        CORSMiddleware,
        allow_origins=DEFAULT_ORIGINS + settings.cors_origins,
        allow_origin_regex=ORIGIN_REGEX,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
    )

    app.include_router(routes.router)
    app.include_router(auth.router)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"message": "Invalid request body"})

    @app.exception_handler(PaymentProviderError)
    async def provider_error_handler(request: Request, exc: PaymentProviderError):
        logger.error("payment provider error", path=request.url.path, error=exc.message)
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc))

    @app.exception_handler(VTCError)
    async def vtc_error_handler(request: Request, exc: VTCError):
        return JSONResponse(status_code=exc.status_code, content={"message": exc.message})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("server error", path=request.url.path)
        return JSONResponse(status_code=500, content=_error_body(exc))

    @app.get("/")
    async def health():
        return {
            "message": "VTC API Server is running",
            "status": "OK",
            "endpoints": {
                "payments": "/api/payments",
                "auth": "/api/auth",
            },
        }

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("vtc_api.main:app", host="0.0.0.0", port=app.state.settings.port)
