"""Main FastAPI application - ping monitor with analytics API."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .database import engine, init_db, close_db
from .routers import analytics_router
from .services.monitor import Monitor
from .services.prober import Prober
from .services.reporter import ReportGenerator, ReportScheduler
from .services.store import SampleStore

# Configure logging
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    logger.info(f"Starting netmonitor for targets {settings.target_list}")

    # A database that cannot be opened or created aborts startup
    await init_db(engine)
    logger.info("Database initialized")

    store = SampleStore(
        engine,
        raw_retention_days=settings.raw_retention_days,
        aggregate_retention_days=settings.aggregate_retention_days,
        aggregation_window_days=settings.aggregation_window_days,
    )
    app.state.store = store

    monitor = Monitor(
        settings.target_list,
        store,
        Prober(),
        interval=settings.interval_seconds,
        timeout=settings.timeout_seconds,
        pipeline_capacity=settings.pipeline_capacity,
        maintenance_interval=settings.maintenance_interval_seconds,
    )
    monitor.start()
    app.state.monitor = monitor

    report_scheduler = None
    if settings.report_interval_hours > 0:
        report_scheduler = ReportScheduler(
            ReportGenerator(store, settings.report_dir),
            interval_hours=settings.report_interval_hours,
            report_hours=settings.report_hours,
        )
        report_scheduler.start()

    yield

    # Shutdown
    if report_scheduler:
        report_scheduler.stop()
    monitor.stop()
    await monitor.wait()
    if monitor.dropped_samples:
        logger.warning(f"{monitor.dropped_samples} samples were dropped on a full queue")

    await close_db(engine)
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="netmonitor",
        description="Network reachability monitor - ping history, outages and failure patterns",
        version="1.0.0",
        lifespan=lifespan,
    )

    # CORS middleware for the dashboard
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(analytics_router)

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        monitor = getattr(app.state, "monitor", None)
        return {
            "status": "healthy",
            "targets": settings.target_list,
            "monitoring": bool(monitor and monitor.running),
        }

    return app


# Create the application instance
app = create_app()


def run():
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.web_port)


if __name__ == "__main__":
    run()
