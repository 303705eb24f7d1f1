from typing import Any, Dict
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from sqlmodel import Session

from hospital_etl.core.database import get_session
from hospital_etl.core.exceptions import NotFoundError
from hospital_etl.infrastructure.db.models import DataUpload, PipelineJob
from hospital_etl.services.pipeline_service import PipelineService

router = APIRouter()


def _get_upload(db: Session, upload_id: UUID) -> DataUpload:
    data_upload = db.get(DataUpload, upload_id)
    if not data_upload:
        raise NotFoundError("DataUpload", upload_id)
    return data_upload


@router.post("/uploads/{upload_id}/start")
def start_pipeline(upload_id: UUID, db: Session = Depends(get_session)) -> Any:
    """Run extract, transform and load for an upload"""
    service = PipelineService(db, _get_upload(db, upload_id))
    result = service.start_pipeline()
    if result.get("errors"):
        return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=result)
    return result


@router.post("/jobs/{job_id}/retry")
def retry_job(job_id: UUID, db: Session = Depends(get_session)) -> Dict[str, Any]:
    """Re-run a failed or cancelled job"""
    job = db.get(PipelineJob, job_id)
    if not job:
        raise NotFoundError("PipelineJob", job_id)

    service = PipelineService(db, _get_upload(db, job.data_upload_id))
    return service.retry_failed_job(job).summary()


@router.post("/uploads/{upload_id}/cancel")
def cancel_pipeline(upload_id: UUID, db: Session = Depends(get_session)) -> Dict[str, Any]:
    """Cancel running and pending jobs of an upload"""
    return PipelineService(db, _get_upload(db, upload_id)).cancel_running_jobs()


@router.get("/uploads/{upload_id}/status")
def pipeline_status(upload_id: UUID, db: Session = Depends(get_session)) -> Dict[str, Any]:
    """Aggregate status across the upload's jobs"""
    return PipelineService(db, _get_upload(db, upload_id)).get_pipeline_status()


@router.get("/uploads/{upload_id}/estimate")
def estimate_processing_time(upload_id: UUID, db: Session = Depends(get_session)) -> Dict[str, Any]:
    return PipelineService(db, _get_upload(db, upload_id)).estimate_processing_time()


@router.post("/uploads/{upload_id}/cleanup")
def cleanup_intermediate_data(
    upload_id: UUID,
    keep_days: int = Query(7, ge=0, description="Keep raw and staging rows newer than this many days"),
    db: Session = Depends(get_session),
) -> Dict[str, Any]:
    """Purge old raw and staging rows"""
    return PipelineService(db, _get_upload(db, upload_id)).cleanup_intermediate_data(keep_days)
