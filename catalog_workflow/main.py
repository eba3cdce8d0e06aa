import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from catalog_workflow.settings import settings
from catalog_workflow.api.v1.jobs import router as jobs_router
from catalog_workflow.api.v1.workflows import router as workflows_router
from catalog_workflow.api.v1.admin import router as admin_router
from catalog_workflow.api.v1.metrics import router as metrics_router

def configure_logging(level: str):
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

@asynccontextmanager
async def lifespan(app: FastAPI):
    from catalog_workflow.db.session import AsyncSessionLocal, engine as db_engine, init_models
    from catalog_workflow.engine import build_engine

    logger = logging.getLogger("uvicorn")

    # Tests and embedding processes install their own engine
    owns_engine = getattr(app.state, "engine", None) is None

    if owns_engine:
        configure_logging(settings.LOG_LEVEL)

        if settings.CREATE_TABLES_ON_STARTUP:
            await init_models(db_engine)
            logger.info("BOOTSTRAP: database tables ensured")

        app.state.engine = build_engine(AsyncSessionLocal, settings)

    await app.state.engine.start()

    yield

    # Shutdown
    await app.state.engine.stop()
    if owns_engine:
        app.state.engine = None
        await db_engine.dispose()

def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.PROJECT_NAME,
        lifespan=lifespan
    )

    app.include_router(jobs_router, prefix="/api/v1/jobs", tags=["jobs"])
    app.include_router(workflows_router, prefix="/api/v1/workflows", tags=["workflows"])
    app.include_router(admin_router, prefix="/api/v1/admin", tags=["admin"])
    app.include_router(metrics_router, tags=["metrics"])

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app

app = create_app()
