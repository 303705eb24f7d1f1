"""
Load stage: copy valid staging rows into the permanent core category tables.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import Table, func, select

from hospital_etl.core.enums import JobType
from hospital_etl.core.exceptions import DataTransformationException
from hospital_etl.infrastructure.db.models.etl_control.pipeline_jobs import core_table_names
from hospital_etl.infrastructure.db.table_manager import staging_table_name
from hospital_etl.services.base import BaseETLService
from hospital_etl.transformers.categories import get_category_strategy
from hospital_etl.utils.date_utils import utc_now


class LoadService(BaseETLService):
    """
    Only staging rows with `is_valid` true are selected. A batch whose
    insert fails is rolled back and counted in `failed_batches` and
    `error_rows`; the stage still completes unless nothing was loaded.
    """

    job_type = JobType.LOAD

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.strategy = get_category_strategy(self.data_upload.category_key)

    def run(self) -> Optional[Dict[str, Any]]:
        upload = self.data_upload
        mappings = self.get_field_mappings()
        transform_job = self.predecessor_job()

        staging_table = self.table_manager.ensure_staging_table(
            staging_table_name(upload.hospital_id, upload.data_category),
            mappings,
            upload.data_category,
            upload.hospital_id,
        )

        target_names = (self.etl_job.job_config or {}).get("target_tables") or core_table_names(upload.data_category)
        core_tables: List[Table] = []
        for name in target_names:
            core_tables.append(self.table_manager.ensure_core_table(name, upload.data_category, mappings))
            self.table_manager.delete_rows_for_job(name, self.etl_job.id)

        job_rows = staging_table.c.etl_job_id == transform_job.id
        valid_filter = staging_table.c.is_valid.is_(True)
        total_rows = self._count(staging_table, job_rows, valid_filter)
        excluded_rows = self._count(staging_table, job_rows) - total_rows

        self.job_logger.info(
            f"Loading {total_rows} valid rows into {', '.join(target_names)} ({excluded_rows} invalid rows excluded)"
        )
        self.update_progress(0, total_rows, {"error_rows": 0, "core_tables": target_names})

        batch_size = self.settings.load_batch_size
        loaded_rows = 0
        error_rows = 0
        failed_batches = 0
        last_id = 0

        while True:
            page = self.db.execute(
                select(staging_table)
                .where(job_rows, valid_filter, staging_table.c.id > last_id)
                .order_by(staging_table.c.id)
                .limit(batch_size)
            ).mappings().all()
            if not page:
                break

            last_id = page[-1]["id"]
            records = [self.build_core_record(dict(row)) for row in page]

            try:
                for table in core_tables:
                    self.flush_batch(table, records)
                loaded_rows += len(records)
            except Exception as e:
                self.db.rollback()
                failed_batches += 1
                error_rows += len(records)
                self.job_logger.error(f"Batch ending at staging row {last_id} failed to load: {e}")

            self.update_progress(loaded_rows + error_rows, total_rows, {"error_rows": error_rows})
            if self.is_cancelled():
                return None

        if failed_batches and not loaded_rows:
            raise DataTransformationException(
                "Every batch failed to load",
                details={"failed_batches": failed_batches, "error_rows": error_rows},
            )

        return {
            "total_rows": total_rows,
            "processed_rows": loaded_rows,
            "error_rows": error_rows,
            "failed_batches": failed_batches,
            "excluded_rows": excluded_rows,
            "success_rate": round(loaded_rows / total_rows * 100, 2) if total_rows else 100,
            "core_tables": target_names,
            "source_job_id": str(transform_job.id),
        }

    def build_core_record(self, staging_row: Dict[str, Any]) -> Dict[str, Any]:
        """Mapped and derived staging columns, the core envelope, then category enrichment."""
        now = utc_now()
        record = dict(staging_row)
        record.update(self.reference_fields())
        record.update({
            "source_reference": staging_row["id"],
            "data_category": self.data_upload.category_key,
            "created_at": now,
            "updated_at": now,
        })
        return self.strategy.enrich(record, staging_row)

    def _count(self, table: Table, *criteria) -> int:
        return self.db.execute(select(func.count()).select_from(table).where(*criteria)).scalar_one()
