"""
Extract stage: stream the uploaded file into the per-hospital raw table.
"""

from typing import Any, Dict, Optional

from hospital_etl.core.enums import JobType
from hospital_etl.core.exceptions import ErrorBudgetExceededError, FileProcessingException
from hospital_etl.infrastructure.db.table_manager import raw_table_name
from hospital_etl.processors import MalformedRow, get_processor
from hospital_etl.services.base import BaseETLService
from hospital_etl.utils.date_utils import utc_now


class ExtractService(BaseETLService):
    """
    Reads the source file twice: a counting pass for progress, then the
    real pass that writes one raw row per non-blank source row, in file
    order, flushed every `extract_batch_size` rows.
    """

    job_type = JobType.EXTRACT

    def run(self) -> Optional[Dict[str, Any]]:
        upload = self.data_upload
        processor = get_processor(upload.file_type or upload.file_extension, encoding=self.settings.csv_encoding)

        table_name = raw_table_name(upload.hospital_id, upload.data_category)
        table = self.table_manager.ensure_raw_table(table_name, upload.hospital_id, upload.data_category)
        removed = self.table_manager.delete_rows_for_job(table_name, self.etl_job.id)
        if removed:
            self.job_logger.info(f"Removed {removed} raw rows left by an earlier attempt")

        total_rows = processor.count_rows(upload.file_path)
        headers = processor.read_headers(upload.file_path)
        self.job_logger.info(f"Extracting {total_rows} rows from {upload.file_name} into {table_name}")

        upload.total_rows = total_rows
        self.db.add(upload)
        self.update_progress(0, total_rows, {"headers": headers, "error_rows": 0, "raw_table": table_name})

        batch_size = self.settings.extract_batch_size
        threshold = self.settings.extract_error_threshold
        batch = []
        preview = []
        processed_rows = 0
        error_rows = 0

        for row in processor.iter_rows(upload.file_path):
            try:
                if isinstance(row, MalformedRow):
                    raise FileProcessingException(
                        f"Malformed row: {row.reason}",
                        file_path=upload.file_path,
                        row_number=row.line_number,
                    )
                if processor.is_blank_row(row):
                    continue

                batch.append(self.build_raw_record(row, processed_rows + 1))
                if len(preview) < self.settings.preview_rows:
                    preview.append(row)
                processed_rows += 1
            except Exception as e:
                error_rows += 1
                self.job_logger.warning(f"Skipping row: {e}")

            if error_rows > total_rows * threshold:
                raise ErrorBudgetExceededError("extraction", error_rows, total_rows, threshold)

            if len(batch) >= batch_size:
                self.flush_batch(table, batch)
                batch = []
                self.update_progress(processed_rows, total_rows, {"error_rows": error_rows})
                if self.is_cancelled():
                    return None

        self.flush_batch(table, batch)
        upload.original_data = {"headers": headers, "preview": preview, "total_rows": total_rows}
        self.db.add(upload)

        return {
            "total_rows": total_rows,
            "processed_rows": processed_rows,
            "error_rows": error_rows,
            "success_rate": round(processed_rows / total_rows * 100, 2) if total_rows else 0,
            "headers": headers,
            "raw_table": table_name,
        }

    def build_raw_record(self, row: Dict[str, Any], row_number: int) -> Dict[str, Any]:
        now = utc_now()
        return {
            **self.reference_fields(),
            "row_number": row_number,
            "source_data": row,
            "extracted_at": now,
            "created_at": now,
        }
