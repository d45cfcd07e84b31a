import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.v1.pricing import router as pricing_router
from app.api.v1.service_area import router as service_area_router
from app.api.v1.services import router as services_router
from app.api.v1.status_feed import router as status_feed_router
from app.core.config import get_settings
from app.core.dependencies import SessionLocal
from app.services.status_watch import StatusSessionRegistry
from app.services.transition_service import create_audit_log
from app.utils.rate_limit import get_client_ip, rate_limiter

settings = get_settings()

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Something went wrong. Please try again."
RATE_LIMIT_WINDOW_SECONDS = 60

app = FastAPI(
    title="Helpr API",
    version="1.0.0",
    docs_url="/docs" if settings.docs_enabled else None,
    openapi_url="/openapi.json" if settings.openapi_enabled else None,
)
app.state.status_sessions = StatusSessionRegistry()

if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )

app.include_router(services_router, prefix="/api/v1", tags=["services"])
app.include_router(status_feed_router, prefix="/api/v1", tags=["status"])
app.include_router(pricing_router, prefix="/api/v1", tags=["pricing"])
app.include_router(service_area_router, prefix="/api/v1", tags=["places"])


@app.exception_handler(StarletteHTTPException)
async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
    # Hide internal details for 5xx unless explicitly enabled.
    if exc.status_code >= 500 and not get_settings().expose_error_details:
        return JSONResponse(status_code=exc.status_code, content={"detail": GENERIC_ERROR_MESSAGE})
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    if get_settings().expose_error_details:
        return JSONResponse(status_code=500, content={"detail": str(exc)})
    return JSONResponse(status_code=500, content={"detail": GENERIC_ERROR_MESSAGE})


def _record_rate_limit_block(ip: str, path: str, limit: int) -> None:
    if SessionLocal is None:
        return
    db = SessionLocal()
    try:
        create_audit_log(
            db,
            entity_type="system",
            entity_id="rate_limit",
            action="RATE_LIMIT_BLOCKED",
            old_value=None,
            new_value=None,
            actor_type="SYSTEM",
            actor_id=None,
            metadata={"ip": ip, "path": path, "limit": limit, "window_seconds": RATE_LIMIT_WINDOW_SECONDS},
        )
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Failed to audit rate limit block for %s", ip)
    finally:
        db.close()


@app.middleware("http")
async def api_rate_limit_middleware(request: Request, call_next):
    path = request.url.path
    if request.method == "OPTIONS" or not path.startswith("/api/v1"):
        return await call_next(request)

    current = get_settings()
    if not current.rate_limit_api_enabled:
        return await call_next(request)

    ip = get_client_ip(request) or "unknown"
    allowed, _ = rate_limiter.allow(f"api:ip:{ip}", current.rate_limit_api_per_min, RATE_LIMIT_WINDOW_SECONDS)
    if not allowed:
        _record_rate_limit_block(ip, path, current.rate_limit_api_per_min)
        return JSONResponse(status_code=429, content={"detail": "Too Many Requests"})
    return await call_next(request)


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    if not get_settings().security_headers_enabled:
        return response

    headers = response.headers
    headers.setdefault("X-Content-Type-Options", "nosniff")
    headers.setdefault("X-Frame-Options", "DENY")
    headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    headers.setdefault("Cache-Control", "no-store")
    headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'; base-uri 'none'")
    return response


@app.get("/health")
async def health_check():
    return {"status": "ok"}
