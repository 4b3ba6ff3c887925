import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from zapcart import __version__
from zapcart.core.config import DATABASE_URL
from zapcart.core.database import Base, SessionLocal, engine
from zapcart.core.logging_setup import configure_logging
from zapcart.core.metrics import ingestion_metrics, request_metrics
from zapcart.core.startup_checks import ensure_migrations_applied, validate_database_environment
from zapcart.middleware.observability import ObservabilityMiddleware
import zapcart.models  # garante que os models são importados antes do create_all
from zapcart.routers.notifications import router as notifications_router
from zapcart.routers.sending_jobs import router as sending_jobs_router
from zapcart.routers.webhook import router as webhook_router
from zapcart.services.confirmations import expire_pending_confirmations

configure_logging()

logger = logging.getLogger(__name__)
REPO_ROOT = Path(__file__).resolve().parents[1]
ALEMBIC_CONFIG_PATH = Path(os.getenv("ALEMBIC_CONFIG", str(REPO_ROOT / "alembic.ini")))


def _startup_tasks() -> None:
    validate_database_environment()
    if DATABASE_URL.startswith("sqlite"):
        Base.metadata.create_all(bind=engine)
    ensure_migrations_applied(engine=engine, alembic_config_path=ALEMBIC_CONFIG_PATH)

    db = SessionLocal()
    try:
        expire_pending_confirmations(db)
    finally:
        db.close()


@asynccontextmanager
async def lifespan(_: FastAPI):
    _startup_tasks()
    yield


app = FastAPI(title="ZapCart API", version=__version__, lifespan=lifespan)

app.add_middleware(ObservabilityMiddleware)

app.include_router(webhook_router)
app.include_router(notifications_router)
app.include_router(sending_jobs_router)


@app.get("/")
def root():
    return {"status": "ok", "service": "zapcart"}


@app.get("/health")
def health():
    return {"status": "ok", "version": __version__}


@app.get("/internal/metrics")
def metrics():
    return {"requests": request_metrics.snapshot(), "ingestion": ingestion_metrics.snapshot()}
