import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from kitchen_orders.core.config import CORS_ORIGINS, DATABASE_URL
from kitchen_orders.core.database import Base, engine
from kitchen_orders.core.errors import KitchenError
from kitchen_orders.core.logging_setup import configure_logging
from kitchen_orders.core.startup_checks import ensure_migrations_applied, validate_database_environment
from kitchen_orders.middleware.observability import ObservabilityMiddleware
import kitchen_orders.models  # garante que os models são importados antes do create_all

from kitchen_orders.routers.orders import router as orders_router
from kitchen_orders.routers.stock import router as stock_router
from kitchen_orders.routers.kds import router as kds_router
from kitchen_orders.routers.menu import router as menu_router
from kitchen_orders.routers.stats import router as stats_router
from kitchen_orders.routers.internal_metrics import router as internal_metrics_router

configure_logging()

logger = logging.getLogger(__name__)
STARTUP_PREFIX = "[STARTUP]"
REPO_ROOT = Path(__file__).resolve().parents[1]
ALEMBIC_CONFIG_PATH = Path(
    os.getenv("ALEMBIC_CONFIG", str(REPO_ROOT / "alembic.ini"))
)


def _startup_tasks() -> None:
    try:
        validate_database_environment()
        if DATABASE_URL.startswith("sqlite"):
            Base.metadata.create_all(bind=engine)
        ensure_migrations_applied(engine=engine, alembic_config_path=ALEMBIC_CONFIG_PATH)
    except Exception:
        logger.exception("%s ERROR startup failed", STARTUP_PREFIX)
        raise


@asynccontextmanager
async def lifespan(_: FastAPI):
    _startup_tasks()
    yield


app = FastAPI(
    title="Kitchen Orders API",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(ObservabilityMiddleware)


@app.exception_handler(KitchenError)
async def kitchen_error_handler(_: Request, exc: KitchenError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# Routers
app.include_router(orders_router)
app.include_router(stock_router)
app.include_router(kds_router)
app.include_router(menu_router)
app.include_router(stats_router)
app.include_router(internal_metrics_router)


@app.get("/")
def root():
    return {"status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}
