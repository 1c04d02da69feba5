# miconsultorio/main.py
import os
import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from .config import settings
from .database import init_db
from .errors import ApiError
from .jobs.scheduler import start_scheduler

# Routers
from .routers.appointments import router as appointments_router
from .routers.users import router as users_router
from .routers.packages import router as packages_router
from .routers.clinics import router as clinics_router
from .routers.payments import router as payments_router
from .routers.billing import router as billing_router
from .routers.ai import router as ai_router
from .routers.admin import router as admin_router

# ──────────────────────────────────────────────────────────────────────────────
# LOGGING
# Controla niveles con variables de entorno:
#   LOG_LEVEL, SQLA_LOG_LEVEL, UVICORN_LOG_LEVEL
# ──────────────────────────────────────────────────────────────────────────────
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

logging.getLogger("sqlalchemy.engine").setLevel(
    getattr(logging, os.getenv("SQLA_LOG_LEVEL", "WARNING"), logging.WARNING)
)
logging.getLogger("uvicorn.error").setLevel(
    getattr(logging, os.getenv("UVICORN_LOG_LEVEL", "INFO"), logging.INFO)
)

logger = logging.getLogger(__name__)

# ──────────────────────────────────────────────────────────────────────────────
# FastAPI App
# ──────────────────────────────────────────────────────────────────────────────
app = FastAPI(title=settings.APP_NAME)


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    if exc.status_code >= 500:
        logger.error("%s %s → %s", request.method, request.url.path, exc.message)
    body = {"success": False, "message": exc.message, **exc.extra}
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(body))


# Monta rutas
app.include_router(appointments_router)
app.include_router(users_router)
app.include_router(packages_router)
app.include_router(clinics_router)
app.include_router(payments_router)
app.include_router(billing_router)
app.include_router(ai_router)
app.include_router(admin_router, prefix="/admin")  # ← el admin.py NO debe repetir /admin

# ──────────────────────────────────────────────────────────────────────────────
# Ciclo de vida
# ──────────────────────────────────────────────────────────────────────────────
@app.on_event("startup")
def on_startup():
    init_db()
    if settings.SCHEDULER_ENABLED:
        start_scheduler()
    logger.info("Startup completo: %s (%s)", settings.APP_NAME, settings.ENV)


@app.get("/")
def root():
    return {"ok": True, "app": settings.APP_NAME, "env": settings.ENV}
