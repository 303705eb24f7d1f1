from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.status import HTTP_400_BAD_REQUEST
from typing import Any, Dict, List, Optional, Union


class AppException(Exception):
    def __init__(self, message: str,
                 error_code: Optional[str] = None,
                 status_code: int = HTTP_400_BAD_REQUEST,
                 details: Optional[Dict[str, Any]] = None,):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message='{self.message}', status_code={self.status_code})"


class ValidationException(AppException):
    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        value: Optional[Any] = None,
        errors: Optional[List[str]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.field = field
        self.value = value
        self.errors = errors or []

        exception_details = details or {}
        if field:
            exception_details["field"] = field
        if value is not None:
            exception_details["value"] = value
        if self.errors:
            exception_details["errors"] = self.errors

        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            details=exception_details,
            status_code=422,
        )


class NotFoundError(AppException):
    """Exception raised when a resource is not found."""

    def __init__(
        self,
        resource: str = "Resource",
        resource_id: Optional[Union[str, int]] = None,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.resource = resource
        self.resource_id = resource_id

        if not message:
            if resource_id:
                message = f"{resource} with ID '{resource_id}' not found"
            else:
                message = f"{resource} not found"

        exception_details = details or {}
        exception_details.update({
            "resource": resource,
            "resource_id": str(resource_id) if resource_id is not None else None,
        })

        super().__init__(
            message=message,
            error_code="NOT_FOUND",
            details=exception_details,
            status_code=404,
        )


class ConflictError(AppException):
    """Exception raised when there's a conflict with current state."""

    def __init__(
        self,
        message: str = "Conflict with current state",
        resource: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.resource = resource

        exception_details = details or {}
        if resource:
            exception_details["resource"] = resource

        super().__init__(
            message=message,
            error_code="CONFLICT",
            details=exception_details,
            status_code=409,
        )


class DatabaseError(AppException):
    """Exception raised for database-related errors."""

    def __init__(
        self,
        message: str = "Database error occurred",
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.operation = operation

        exception_details = details or {}
        if operation:
            exception_details["operation"] = operation

        super().__init__(
            message=message,
            error_code="DATABASE_ERROR",
            details=exception_details,
            status_code=500,
        )


class ServiceError(AppException):
    """Raised by services when an operation cannot be completed."""

    def __init__(self, message: str = "Service error occurred", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="SERVICE_ERROR",
            details=details,
            status_code=500,
        )


class FileProcessingException(AppException):
    """Raised when a source file cannot be read or a row cannot be parsed."""

    def __init__(
        self,
        message: str = "File processing failed",
        file_path: Optional[str] = None,
        row_number: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.file_path = file_path
        self.row_number = row_number

        exception_details = details or {}
        if file_path:
            exception_details["file_path"] = file_path
        if row_number is not None:
            exception_details["row_number"] = row_number

        super().__init__(
            message=message,
            error_code="FILE_PROCESSING_ERROR",
            details=exception_details,
            status_code=422,
        )


class UnsupportedFileTypeError(FileProcessingException):
    """Raised when no reader is registered for a MIME type or extension."""

    def __init__(self, file_type: Optional[str], supported_types: Optional[List[str]] = None):
        self.file_type = file_type
        super().__init__(
            message=f"Unsupported file type: {file_type}",
            details={"file_type": file_type, "supported_types": supported_types or []},
        )
        self.error_code = "UNSUPPORTED_FILE_TYPE"
        self.status_code = 415


class DataTransformationException(AppException):
    """Raised when a raw row cannot be turned into a staging row."""

    def __init__(self, message: str = "Data transformation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="DATA_TRANSFORMATION_ERROR",
            details=details,
            status_code=422,
        )


class MappingNotFoundError(AppException):
    """Raised when an upload has no active field mappings."""

    def __init__(self, data_upload_id: Any):
        super().__init__(
            message="No active field mappings found. Please configure field mappings first.",
            error_code="MAPPING_NOT_FOUND",
            details={"data_upload_id": str(data_upload_id)},
            status_code=422,
        )


class ErrorBudgetExceededError(AppException):
    """Raised when a stage's row failures exceed its tolerated fraction of the input."""

    def __init__(self, stage: str, error_rows: int, total_rows: int, threshold: float):
        self.stage = stage
        self.error_rows = error_rows
        self.total_rows = total_rows
        self.threshold = threshold

        super().__init__(
            message=f"Too many errors during {stage} ({error_rows}/{total_rows})",
            error_code="ERROR_BUDGET_EXCEEDED",
            details={
                "stage": stage,
                "error_rows": error_rows,
                "total_rows": total_rows,
                "threshold": threshold,
            },
            status_code=422,
        )


class PipelineAlreadyRunningError(ConflictError):
    """Raised when a pipeline for the same upload is already in flight."""

    def __init__(self, data_upload_id: Any):
        super().__init__(
            message="An ETL pipeline is already running for this upload",
            resource="pipeline",
            details={"data_upload_id": str(data_upload_id)},
        )
        self.error_code = "PIPELINE_ALREADY_RUNNING"


class JobNotRestartableError(ConflictError):
    """Raised when retry is requested for a job that is not failed or cancelled."""

    def __init__(self, job_id: Any, status: str):
        super().__init__(
            message=f"Job {job_id} cannot be restarted from status '{status}'",
            resource="job",
            details={"job_id": str(job_id), "status": status},
        )
        self.error_code = "JOB_NOT_RESTARTABLE"


def app_exception_handler(request: Request, exc: AppException):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.message,
            "error_code": exc.error_code,
            "details": exc.details,
        }
    )
