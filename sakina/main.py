from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException
from pathlib import Path
from sakina.config import settings
from sakina.database import engine, Base, check_db_connection, get_pool_status
from sakina.exceptions import SakinaError
from sakina.middleware.rate_limit import RateLimitMiddleware, RequestValidationMiddleware
from sakina.services.storage_service import get_storage
from sakina.utils.responses import success_response, error_response
from sakina.api import (
    auth, users, subscriptions, payment, catalog, user_programs,
    sessions, analytics, notifications, favorites, upload, admin,
)
# Register every mapped class before create_all and relationship resolution
from sakina.models import (  # noqa: F401
    user, package, coupon, subscription, payment as payment_model, category, track, program,
    user_program, custom_program, listening_session, notification, favorite,
)
import logging

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

Base.metadata.create_all(bind=engine)

Path(settings.UPLOAD_DIR).mkdir(parents=True, exist_ok=True)

app = FastAPI(
    title=settings.APP_NAME,
    description="Meditation and audio content platform with subscriptions",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list({settings.FRONTEND_URL, *settings.CORS_ORIGINS}),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RateLimitMiddleware)
app.add_middleware(RequestValidationMiddleware)

app.mount("/uploads", StaticFiles(directory=settings.UPLOAD_DIR), name="uploads")

app.include_router(auth.router)
app.include_router(users.router)
app.include_router(user_programs.router)
app.include_router(subscriptions.router)
app.include_router(payment.router)
app.include_router(catalog.categories_router)
app.include_router(catalog.tracks_router)
app.include_router(catalog.programs_router)
app.include_router(sessions.router)
app.include_router(analytics.router)
app.include_router(notifications.router)
app.include_router(favorites.router)
app.include_router(upload.router)
app.include_router(admin.router)


# ============================================
# ERROR HANDLERS
# ============================================

@app.exception_handler(SakinaError)
async def sakina_exception_handler(request: Request, exc: SakinaError):
    if exc.status_code >= 500:
        logger.error(f"❌ {request.method} {request.url.path}: {exc.message}")
    return error_response(exc.message, exc.status_code, exc.extra)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return error_response(message, exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return error_response("Validation failed", 400, {"errors": errors})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    # Full detail stays in the server log
    logger.error(f"❌ Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return error_response("An unexpected error occurred", 500)


# ============================================
# HEALTH
# ============================================

@app.get("/")
async def root():
    return success_response({
        "name": settings.APP_NAME,
        "status": "running",
        "version": "1.0.0",
    })


@app.get("/health")
async def health_check():
    database_ok = check_db_connection()
    data = {
        "status": "healthy" if database_ok else "degraded",
        "database": "connected" if database_ok else "unavailable",
        "pool": get_pool_status(),
        "environment": settings.ENVIRONMENT,
        "storage": settings.STORAGE_BACKEND,
    }
    if settings.use_s3:
        data["storage_reachable"] = get_storage().test_connection()
    return success_response(data, status_code=200 if database_ok else 503)


@app.on_event("startup")
async def startup_event():
    Path(settings.UPLOAD_DIR).mkdir(parents=True, exist_ok=True)
    logger.info(f"🚀 {settings.APP_NAME} started ({settings.ENVIRONMENT}, storage={settings.STORAGE_BACKEND})")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("sakina.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
