from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
import time
import logging
from invest_backend.core.config import settings
from invest_backend.core.database import engine, init_db, AsyncSessionLocal
from invest_backend.api import auth, user, products, recharge, withdrawals, referral, admin
from invest_backend.middleware import AuditLoggingMiddleware
from invest_backend.services.catalog_service import CatalogService
from invest_backend.services.user_service import UserService
from invest_backend.utils.lock_manager import get_lock_manager

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def bootstrap_data() -> None:
    """Seed the default catalog and the bootstrap admin when configured."""
    async with AsyncSessionLocal() as session:
        if settings.seed_default_products:
            await CatalogService(session).seed_default_products()

        if settings.admin_password:
            await UserService(session).ensure_admin_user(
                phone_number=settings.admin_phone_number,
                username=settings.admin_username,
                password=settings.admin_password
            )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info(f"Starting {settings.app_name}...")

    try:
        logger.info("Creating database tables...")
        await init_db()
        await bootstrap_data()
        logger.info("Database ready")
    except Exception as e:
        logger.error(f"Failed to initialise database: {e}")
        raise

    yield

    logger.info(f"Shutting down {settings.app_name}...")
    await get_lock_manager().close()
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    description="Backend API for an investment platform: plans, daily income, recharges, withdrawals and referrals",
    version=settings.version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_HOSTS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if settings.enable_audit_logging:
    app.add_middleware(AuditLoggingMiddleware, api_prefix=settings.api_prefix)


# Request timing middleware
@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    """Add processing time to response headers."""
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)
    return response


# Global exception handlers
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Render every HTTP error, including the platform's own, as {"error": message}."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None)
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are client errors like any other validation failure."""
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", []) if part != "body")
        message = f"Invalid {field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")
    else:
        message = "Invalid request"

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": message}
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"}
    )


# Include API routers
app.include_router(auth.router, prefix=settings.api_prefix)
app.include_router(user.router, prefix=settings.api_prefix)
app.include_router(products.router, prefix=settings.api_prefix)
app.include_router(recharge.router, prefix=settings.api_prefix)
app.include_router(withdrawals.router, prefix=settings.api_prefix)
app.include_router(referral.router, prefix=settings.api_prefix)
app.include_router(admin.router, prefix=settings.api_prefix)


@app.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "version": settings.version,
        "environment": settings.environment
    }


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.version,
        "docs_url": "/docs",
        "health_check": "/health",
        "api_prefix": settings.api_prefix,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "invest_backend.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True if settings.environment == "development" else False,
        log_level="info"
    )
