from contextlib import asynccontextmanager
from typing import AsyncGenerator

import uvicorn
from fastapi import FastAPI

from hospital_etl import __version__
from hospital_etl.core.config import get_settings
from hospital_etl.core.database import init_db
from hospital_etl.core.exceptions import AppException, app_exception_handler
from hospital_etl.core.logging import get_logger, setup_logging
from hospital_etl.interfaces.http.routes import api_router

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    logger.info("Starting application...")
    init_db()
    yield
    logger.info("Shutting down...")


def create_application() -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        description="ETL pipeline for hospital data uploads",
        version=__version__,
        debug=settings.debug,
        lifespan=lifespan,
    )

    app.add_exception_handler(AppException, app_exception_handler)
    app.include_router(api_router, prefix="/api/v1")

    @app.get("/health")
    def health_check() -> dict:
        """Health check endpoint."""
        return {"status": "healthy", "version": __version__}

    return app


app = create_application()


if __name__ == "__main__":
    uvicorn.run("hospital_etl.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
