# storefront/main.py
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from storefront.config import settings
from storefront.core.db import init_db, close_db
from storefront.core.errors import AppError, ErrorKind, MSG_INTERNAL
from storefront.core.bootstrap import ensure_default_admin

from storefront.api.v1.routers import auth, users
from storefront.services.auth import get_auth_service
from storefront.services.maintenance import MaintenanceTask

logger = logging.getLogger("uvicorn.error")

app = FastAPI(title=settings.APP_NAME)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_response(error: AppError) -> JSONResponse:
    headers = {}
    if error.retry_after is not None:
        headers["Retry-After"] = str(error.retry_after)
    return JSONResponse(
        status_code=error.status_code,
        content={"success": False, "error": error.to_dict()},
        headers=headers,
    )


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.kind is ErrorKind.INTERNAL:
        logger.error("[api] %s %s -> %s", request.method, request.url.path, exc.message)
    return _error_response(exc)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    fields = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "header")]
        fields[".".join(loc) or "request"] = err.get("msg", "Invalid value")
    return _error_response(AppError(ErrorKind.BAD_REQUEST, "Validation failed", details={"fields": fields}))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("[api] unhandled error on %s %s", request.method, request.url.path)
    return _error_response(AppError(ErrorKind.INTERNAL, MSG_INTERNAL))


@app.on_event("startup")
async def on_startup():
    await init_db()
    # Ensure there's a default admin account on first run
    await ensure_default_admin()
    service = get_auth_service()
    app.state.maintenance = MaintenanceTask(
        service.otp,
        service.refresh_tokens,
        interval=settings.otp_sweep_interval_seconds,
    )
    app.state.maintenance.start()


@app.on_event("shutdown")
async def on_shutdown():
    maintenance = getattr(app.state, "maintenance", None)
    if maintenance is not None:
        await maintenance.stop()
    await get_auth_service().notifier.aclose()
    await close_db()


# REST
app.include_router(auth.router, prefix="/api/v1")
app.include_router(users.router, prefix="/api/v1")


@app.get("/healthz")
def healthz():
    return {"ok": True}
