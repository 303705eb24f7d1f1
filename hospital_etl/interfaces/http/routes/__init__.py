from fastapi import APIRouter

from .pipeline import router as pipeline_router

api_router = APIRouter()

api_router.include_router(pipeline_router, prefix="/pipeline", tags=["ETL Pipeline"])
