import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from auxin_api import config
from auxin_api.errors import ServiceError, UpstreamError
from auxin_api.routes import appointments, auth, email_verification
from auxin_api.services.container import Services, build_services
from auxin_api.utils.clock import utcnow

logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger("uvicorn.error")

NO_STORE_PREFIXES = ("/api/auth", "/auth")


@asynccontextmanager
async def lifespan(app: FastAPI):
    pool = app.state.services.pool
    try:
        await pool.get_database()
    except Exception as e:
        # Not fatal: the next request that needs the database retries.
        logger.error("Initial database connection failed: %s", e)
    yield
    await pool.close()


def _first_validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query"))
    message = first.get("msg", "Invalid value")
    return f"{field}: {message}" if field else message


def create_app(services: Services = None) -> FastAPI:
    app = FastAPI(title="Auxin API", lifespan=lifespan)
    app.state.services = services or build_services()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.allowed_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
    )

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        if request.url.path.startswith(NO_STORE_PREFIXES):
            response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, private"
            response.headers["Pragma"] = "no-cache"
            response.headers["Expires"] = "0"
        return response

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        if isinstance(exc, UpstreamError):
            logger.error("%s on %s: %s", exc.code, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            content = {"success": False, "error": "Route not found", "code": "NOT_FOUND"}
        else:
            content = {"success": False, "error": str(exc.detail), "code": "HTTP_ERROR"}
        return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": _first_validation_message(exc), "code": "VALIDATION_ERROR"},
        )

    @app.exception_handler(Exception)
    async def universal_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception on path %s:\n%s", request.url.path, traceback.format_exc())
        content = {"success": False, "error": "Internal server error", "code": "INTERNAL_ERROR"}
        if config.ENVIRONMENT == "development":
            content["detail"] = str(exc)
        return JSONResponse(status_code=500, content=content)

    for prefix in ("/api/auth", "/auth"):
        app.include_router(auth.router, prefix=prefix)
        app.include_router(email_verification.router, prefix=prefix)
    app.include_router(appointments.router, prefix="/api/appointments")

    @app.get("/api/health")
    async def health(request: Request):
        database = await request.app.state.services.pool.ping()
        return {
            "status": "ok",
            "timestamp": utcnow().isoformat() + "Z",
            "database": "connected" if database else "disconnected",
        }

    return app


app = create_app()
