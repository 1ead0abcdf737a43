import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import settings
from app.core.database import dispose_db, init_db
from app.core.errors import EmailDeliveryError, StorageUnavailable
from app.core.i18n import LocaleMiddleware
from app.core.logging_config import setup_logging
from app.core.middleware import NoStoreMiddleware, RequestContextMiddleware
from app.web.routes import api, auth, health, pages

setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize app on startup."""
    await init_db()
    yield
    await dispose_db()


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="Magic link sign-in and bot account linking",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=settings.ALLOWED_HOSTS,
)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(NoStoreMiddleware)
# Locale negotiation - sets a per-request locale
app.add_middleware(LocaleMiddleware)

# Include routers
app.include_router(pages.router, tags=["pages"])
app.include_router(auth.router, tags=["auth"])
app.include_router(api.router, prefix="/api", tags=["api"])
app.include_router(health.router, tags=["health"])


@app.exception_handler(StorageUnavailable)
async def storage_unavailable_handler(request: Request, exc: StorageUnavailable):
    logger.error("Storage unavailable on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"error": "service_unavailable", "detail": "Storage is temporarily unavailable."},
    )


@app.exception_handler(EmailDeliveryError)
async def email_delivery_handler(request: Request, exc: EmailDeliveryError):
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "error": "email_unavailable",
            "detail": "Login is temporarily unavailable. Please try again later.",
        },
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
