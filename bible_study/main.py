import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .database import Database
from .errors import StudyError
from .routers.admin_studies import router as admin_studies_router
from .settings.config import settings

logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(title="Bible Study App")

# Enable CORS if needed
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Update for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ----------------------
# Route Includes
# ----------------------
app.include_router(admin_studies_router)


# -----------------------------------------------------
# Study pipeline errors -> JSON
# Internal exception text stays in the server log.
# -----------------------------------------------------
@app.exception_handler(StudyError)
async def _study_error_handler(request: Request, exc: StudyError):
    if exc.status_code >= 500:
        logger.error("%s %s -> %s (%s)", request.method, request.url.path, exc.kind, exc.compensation.value)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


# ----------------------
# Persistence lifecycle
# ----------------------
@app.on_event("startup")
async def on_startup():
    db = Database(
        settings.DATABASE_URL,
        echo=settings.DB_ECHO,
        pool_timeout=settings.INGEST_TX_ACQUIRE_TIMEOUT_SEC,
    ).open()
    # Only run create_all in dev, never in prod with Alembic
    if settings.RUN_DB_CREATE_ALL:
        await db.create_all()
    app.state.db = db


@app.on_event("shutdown")
async def on_shutdown():
    db = getattr(app.state, "db", None)
    if db is not None:
        await db.close()


@app.get("/healthz")
async def healthz():
    return {"ok": True}
