"""FastAPI application factory"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from loan_monitor.api.middleware import RequestIDMiddleware, MetricsMiddleware
from loan_monitor.api.v1 import loans, repayments
from loan_monitor.infrastructure.database.session import init_db
from loan_monitor.infrastructure.observability.logging import setup_logging
from loan_monitor.runner.scheduler import RepaymentScheduler, build_scheduler
from loan_monitor.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def create_app(scheduler: RepaymentScheduler | None = None) -> FastAPI:
    """Create and configure FastAPI application"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db()
        if settings.scheduler_enabled:
            app.state.scheduler.start(settings.repayment_interval_seconds)
        yield
        await app.state.scheduler.stop()

    app = FastAPI(
        title="Loan Monitor",
        description="Exchange loan monitoring and automated repayment service",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.scheduler = scheduler or build_scheduler()

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        current = app.state.scheduler
        return {
            "status": "ok",
            "service": settings.service_name,
            "dry_run": current.market.dry_run,
            "cycle_in_progress": current.busy,
        }

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(repayments.router, prefix="/v1", tags=["repayments"])
    app.include_router(loans.router, prefix="/v1", tags=["loans"])

    return app


app = create_app()
