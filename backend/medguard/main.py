import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from medguard.core.config import settings
from medguard.database.db import engine, Base, SessionLocal
from medguard.models import models  # registers tables on Base.metadata
from medguard.routes import health, systems, analysis, alerts, reports
from medguard.services.alert_aggregator import AlertAggregator
from medguard.services.alert_store import AlertStore
from medguard.services.log_source_adapter import LogSourceAdapter
from medguard.services.sweep_scheduler import SweepScheduler
from medguard.services.sync_orchestrator import SyncOrchestrator


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s"
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    Base.metadata.create_all(bind=engine)

    adapter = LogSourceAdapter()
    store = AlertStore(SessionLocal)
    aggregator = AlertAggregator(adapter, store)
    orchestrator = SyncOrchestrator(SessionLocal, adapter, aggregator)
    scheduler = SweepScheduler(orchestrator, settings.SWEEP_INTERVAL_SECONDS)

    app.state.adapter = adapter
    app.state.alert_store = store
    app.state.orchestrator = orchestrator
    app.state.scheduler = scheduler
    scheduler.start()
    try:
        yield
    finally:
        await scheduler.stop()
        await adapter.aclose()


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        description="Multi-source log ingestion and threat alerting for hospital IoT systems",
        version="1.0.0",
        lifespan=lifespan
    )

    # CORS Configuration - Allow all origins for development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health check is included at the root for easy access
    app.include_router(health.router)

    # V1 API Routes
    app.include_router(systems.router, prefix="/api/v1", tags=["external-systems"])
    app.include_router(analysis.router, prefix="/api/v1", tags=["analysis"])
    app.include_router(alerts.router, prefix="/api/v1", tags=["alerts"])
    app.include_router(reports.router, prefix="/api/v1", tags=["reports"])
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("medguard.main:app", host="0.0.0.0", port=settings.PORT, reload=settings.DEBUG)
