"""
Safe Yield Rebalancer API
Serves the monitor value polled by the automation service, the decision
query and the plan submission endpoint.

Run:
    uvicorn main:app --host 0.0.0.0 --port 8000
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from infrastructure.errors import ErrorHandlingMiddleware, error_tracker, register_exception_handlers
from api.monitor_router import router as monitor_router
from sentry_config import init_sentry

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("Main")


def create_app() -> FastAPI:
    init_sentry()

    app = FastAPI(
        title="Safe Yield Rebalancer",
        description="Aave V3 / Compound V3 yield comparison and Safe module rebalancing",
        version="1.0.0",
    )

    # The monitor endpoint is polled cross-origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )
    app.add_middleware(ErrorHandlingMiddleware)
    register_exception_handlers(app)

    app.include_router(monitor_router)

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    @app.get("/api/errors")
    async def error_stats():
        return error_tracker.get_stats()

    logger.info("Rebalancer API ready")
    return app


app = create_app()
