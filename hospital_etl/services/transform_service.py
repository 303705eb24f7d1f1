"""
Transform stage: apply field mappings and category calculators to raw rows
and write the validated result to the staging table.
"""

import json
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select

from hospital_etl.core.enums import JobType
from hospital_etl.core.exceptions import ErrorBudgetExceededError, MappingNotFoundError
from hospital_etl.infrastructure.db.models import FieldMapping
from hospital_etl.infrastructure.db.table_manager import raw_table_name, staging_table_name
from hospital_etl.services.base import BaseETLService
from hospital_etl.transformers.categories import get_category_strategy
from hospital_etl.transformers.row_validator import RowValidator
from hospital_etl.transformers.value_transformer import ValueTransformer
from hospital_etl.utils.date_utils import utc_now


class TransformService(BaseETLService):
    """
    Invalid rows are written to staging with their validation errors and
    `is_valid` false; only rows whose processing raised count against the
    error budget.
    """

    job_type = JobType.TRANSFORM

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.value_transformer = ValueTransformer(self.job_logger)
        self.validator = RowValidator()
        self.strategy = get_category_strategy(self.data_upload.category_key)

    def run(self) -> Optional[Dict[str, Any]]:
        upload = self.data_upload
        mappings = self.get_field_mappings()
        if not mappings:
            raise MappingNotFoundError(upload.id)

        extract_job = self.predecessor_job()
        raw_table = self.table_manager.ensure_raw_table(
            raw_table_name(upload.hospital_id, upload.data_category), upload.hospital_id, upload.data_category
        )

        staging_name = staging_table_name(upload.hospital_id, upload.data_category)
        staging_table = self.table_manager.ensure_staging_table(
            staging_name, mappings, upload.data_category, upload.hospital_id
        )
        self.table_manager.delete_rows_for_job(staging_name, self.etl_job.id)

        source_filter = raw_table.c.etl_job_id == extract_job.id
        total_rows = self.db.execute(
            select(func.count()).select_from(raw_table).where(source_filter)
        ).scalar_one()

        self.job_logger.info(
            f"Transforming {total_rows} rows with {len(mappings)} mappings into {staging_name}"
        )
        self.update_progress(0, total_rows, {"error_rows": 0, "staging_table": staging_name})

        batch_size = self.settings.transform_batch_size
        threshold = self.settings.transform_error_threshold
        processed_rows = 0
        failed_rows = 0
        invalid_rows = 0
        last_row_number = 0

        while True:
            page = self.db.execute(
                select(raw_table.c.row_number, raw_table.c.source_data)
                .where(source_filter, raw_table.c.row_number > last_row_number)
                .order_by(raw_table.c.row_number)
                .limit(batch_size)
            ).all()
            if not page:
                break

            batch = []
            for row_number, source_data in page:
                last_row_number = row_number
                try:
                    source = self._load_source(source_data)
                    transformed = self.transform_row(source, mappings)
                    errors = self.validator.validate(transformed, mappings)
                    if errors:
                        invalid_rows += 1
                    batch.append(self.build_staging_record(row_number, source, transformed, errors))
                    processed_rows += 1
                except Exception as e:
                    failed_rows += 1
                    self.job_logger.warning(f"Row {row_number} could not be transformed: {e}")

                if failed_rows > total_rows * threshold:
                    raise ErrorBudgetExceededError("transformation", failed_rows, total_rows, threshold)

            self.flush_batch(staging_table, batch)
            self.update_progress(processed_rows, total_rows, {"error_rows": failed_rows + invalid_rows})
            if self.is_cancelled():
                return None

        valid_rows = processed_rows - invalid_rows
        return {
            "total_rows": total_rows,
            "processed_rows": processed_rows,
            "error_rows": failed_rows + invalid_rows,
            "failed_rows": failed_rows,
            "valid_rows": valid_rows,
            "success_rate": round(valid_rows / total_rows * 100, 2) if total_rows else 0,
            "mappings_applied": len(mappings),
            "skipped_mappings": list(self.skipped_mappings),
            "staging_table": staging_name,
            "source_job_id": str(extract_job.id),
        }

    def transform_row(self, source: Dict[str, Any], mappings: List[FieldMapping]) -> Dict[str, Any]:
        """Apply every mapping, then the category's calculated fields."""
        transformed = {}
        for mapping in mappings:
            raw_value = source.get(mapping.source_field)
            transformed[mapping.target_field] = self.value_transformer.transform(raw_value, mapping)

        try:
            return self.strategy.calculate(transformed)
        except Exception as e:
            self.job_logger.warning(f"Calculated fields skipped for {self.strategy.name}: {e}")
            return transformed

    def build_staging_record(self, row_number: int, source: Dict[str, Any],
                             transformed: Dict[str, Any], errors: List[str]) -> Dict[str, Any]:
        now = utc_now()
        return {
            **transformed,
            **self.reference_fields(),
            "row_number": row_number,
            "source_data": source,
            "validation_errors": errors,
            "is_valid": not errors,
            "created_at": now,
            "updated_at": now,
        }

    @staticmethod
    def _load_source(source_data: Any) -> Dict[str, Any]:
        if isinstance(source_data, str):
            source_data = json.loads(source_data)
        if not isinstance(source_data, dict):
            raise ValueError("source_data is not a JSON object")
        return source_data
