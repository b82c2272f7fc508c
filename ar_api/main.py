import asyncio
from fastapi import FastAPI, Depends, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import structlog

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ar_api.config import settings
from ar_api.database import init_db, close_db, get_db
from ar_api.logging_config import setup_logging
from ar_api.services.email_service import close_http_client
from ar_api.services.storage import memo_storage
from ar_api.middleware.correlation import CorrelationIdMiddleware

# Import models so they are registered with Base.metadata
import ar_api.models  # noqa: F401

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("starting_ar_collections", env=settings.ENVIRONMENT)
    await init_db()
    yield
    await close_http_client()
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Global exception handlers, normalizing every error to
# {"error": {"code": "...", "message": "..."}}
# ---------------------------------------------------------------------------

_STATUS_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
    413: "PAYLOAD_TOO_LARGE",
    502: "UPSTREAM_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, str):
        code = _STATUS_CODES.get(exc.status_code, "HTTP_ERROR")
        detail = {"error": {"code": code, "message": detail}}
    elif isinstance(detail, dict) and "error" not in detail:
        detail = {"error": detail}
    return JSONResponse(status_code=exc.status_code, content=detail, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Request validation failed",
                "details": exc.errors(),
            }
        },
    )


app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_origin_regex=settings.CORS_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Requested-With", "X-Request-ID"],
)


@app.get("/health", tags=["System"])
async def health(response: Response, db: AsyncSession = Depends(get_db)):
    health_status = {"status": "healthy", "version": settings.APP_VERSION, "checks": {}}

    try:
        await db.execute(text("SELECT 1"))
        health_status["checks"]["db"] = "ok"
    except Exception as e:
        logger.error("health_check_db_failed", error=str(e))
        health_status["checks"]["db"] = "error"
        health_status["status"] = "unhealthy"

    # Attachments are optional for serving invoices, so storage only degrades
    try:
        await asyncio.to_thread(memo_storage.s3.head_bucket, Bucket=memo_storage.bucket)
        health_status["checks"]["storage"] = "ok"
    except Exception as e:
        logger.warning("health_check_storage_failed", error=str(e))
        health_status["checks"]["storage"] = "error"
        if health_status["status"] == "healthy":
            health_status["status"] = "degraded"

    if health_status["status"] == "unhealthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return health_status


# --- Routers ---
from ar_api.routes.invoices import router as invoices_router  # noqa: E402
from ar_api.routes.tickets import router as tickets_router  # noqa: E402
from ar_api.routes.reminders import router as reminders_router  # noqa: E402
from ar_api.routes.activity_logs import router as activity_logs_router  # noqa: E402
from ar_api.routes.sync import router as sync_router  # noqa: E402
from ar_api.routes.users import router as users_router  # noqa: E402
from ar_api.routes.auto_ticket_rules import router as rules_router  # noqa: E402
from ar_api.routes.search import router as search_router  # noqa: E402
from ar_api.routes.email_config import router as email_config_router  # noqa: E402
from ar_api.routes.webhooks import router as webhooks_router  # noqa: E402
from ar_api.jobs.scheduled import router as jobs_router  # noqa: E402

app.include_router(invoices_router, prefix="/api/v1/invoices", tags=["Invoices"])
app.include_router(tickets_router, prefix="/api/v1/tickets", tags=["Tickets"])
app.include_router(reminders_router, prefix="/api/v1/reminders", tags=["Reminders"])
app.include_router(activity_logs_router, prefix="/api/v1/activity-logs", tags=["Activity Logs"])
app.include_router(sync_router, prefix="/api/v1/sync", tags=["Sync"])
app.include_router(users_router, prefix="/api/v1/users", tags=["Users"])
app.include_router(rules_router, prefix="/api/v1/auto-ticket-rules", tags=["Auto Ticket Rules"])
app.include_router(search_router, prefix="/api/v1/search", tags=["Search"])
app.include_router(email_config_router, prefix="/api/v1/email", tags=["Email Config"])
app.include_router(jobs_router, prefix="/internal/jobs", tags=["Internal Jobs"])
app.include_router(webhooks_router, prefix="/internal/webhooks", tags=["Webhooks"])
