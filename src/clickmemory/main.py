import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.clickmemory import config
from src.clickmemory.auth import get_csrf_service
from src.clickmemory.csrf import CsrfSweeper
from src.clickmemory.database import engine, get_db
from src.clickmemory.errors import ApiError, ServiceNotConfigured
from src.clickmemory.identity import close_identity_verifier, get_identity_verifier
from src.clickmemory.routers import csrf as csrf_router
from src.clickmemory.routers import keys as keys_router

logger = logging.getLogger(__name__)


def _resolve(app: FastAPI, dependency):
    """Call *dependency* the way routes see it, honouring test overrides."""
    return app.dependency_overrides.get(dependency, dependency)()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Production refuses to start without the identity provider configured.
    if config.IS_PROD:
        missing = config.missing_env_vars()
        if missing:
            logger.error("startup_config_missing vars=%s", ",".join(missing))
            raise RuntimeError(f"Missing environment variables: {', '.join(missing)}")

    # Verify the DB is reachable at startup (also triggers the data/ mkdir in
    # database.py if it hasn't happened yet).
    with engine.connect():
        pass

    # Sweep with whichever service the routes use (tests override it).
    sweeper = CsrfSweeper(_resolve(app, get_csrf_service), config.CSRF_SWEEP_INTERVAL_SECONDS)
    sweeper.start()
    app.state.csrf_sweeper = sweeper
    try:
        yield
    finally:
        await sweeper.stop()
        close_identity_verifier()


app = FastAPI(title="ClickMemory API", lifespan=lifespan)


@app.exception_handler(ApiError)
async def _api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": exc.code, "message": exc.message}},
        headers=headers,
    )


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler: return clean JSON instead of leaking stack traces."""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": {"code": "internal_error", "message": "An internal server error occurred"}},
    )


app.include_router(csrf_router.router)
app.include_router(keys_router.router)


@app.get("/health")
def health(request: Request, db: Session = Depends(get_db)):
    """Report environment, database and identity provider status; 503 if any is unhealthy."""
    errors: list[str] = []
    services = {"environment": "healthy", "database": "healthy", "identity_provider": "healthy"}

    missing = config.missing_env_vars()
    if missing:
        services["environment"] = "unhealthy"
        errors.append(f"Missing environment variables: {', '.join(missing)}")

    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("health_database_failure")
        services["database"] = "unhealthy"
        errors.append("Database connection failed")

    try:
        provider_ok = _resolve(request.app, get_identity_verifier).provider.ping()
    except ServiceNotConfigured:
        provider_ok = False
    if not provider_ok:
        logger.warning("health_identity_provider_failure")
        services["identity_provider"] = "unhealthy"
        errors.append("Identity provider is unreachable")

    healthy = not errors
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "services": services,
            "errors": errors,
        },
    )
