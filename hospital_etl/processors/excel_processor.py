# ==============================================
# hospital_etl/processors/excel_processor.py
# ==============================================
from typing import Iterator, List

import openpyxl
import pandas as pd
import xlrd

from .base_processor import BaseProcessor, Row
from hospital_etl.core.exceptions import FileProcessingException
from hospital_etl.core.logging import get_logger

logger = get_logger(__name__)


class ExcelProcessor(BaseProcessor):
    """
    Excel file processor supporting both XLSX and XLS formats.
    Only the first worksheet is read; its first row is the header.
    """

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.sheet_name = kwargs.get('sheet_name', 0)

    def read_headers(self, file_path: str) -> List[str]:
        self.ensure_exists(file_path)
        try:
            df = pd.read_excel(file_path, sheet_name=self.sheet_name, nrows=0)
        except Exception as e:
            raise FileProcessingException(f"Failed to read Excel file: {str(e)}", file_path=file_path)
        return [str(column).strip() for column in df.columns]

    def iter_rows(self, file_path: str) -> Iterator[Row]:
        """
        Read the worksheet as text and yield one cleaned dict per row

        Args:
            file_path: Path to Excel file

        Yields:
            Row dictionaries keyed by header
        """
        self.ensure_exists(file_path)
        try:
            df = pd.read_excel(
                file_path,
                sheet_name=self.sheet_name,
                dtype=str,
                keep_default_na=False,
            )
        except Exception as e:
            self.logger.error(f"Error reading Excel file: {str(e)}")
            raise FileProcessingException(f"Failed to read Excel file: {str(e)}", file_path=file_path)

        for start in range(0, len(df), self.chunk_size):
            chunk = df.iloc[start:start + self.chunk_size]
            for record in chunk.to_dict('records'):
                yield self.clean_record(record)

    def count_rows(self, file_path: str) -> int:
        """Row count from workbook metadata, header excluded; may include trailing empty rows."""
        path = self.ensure_exists(file_path)
        try:
            if path.suffix.lower() == '.xls':
                workbook = xlrd.open_workbook(file_path, on_demand=True)
                sheet = workbook.sheet_by_index(0)
                total = sheet.nrows
                workbook.release_resources()
            else:
                workbook = openpyxl.load_workbook(file_path, read_only=True)
                total = workbook.worksheets[0].max_row or 0
                workbook.close()
        except Exception as e:
            raise FileProcessingException(f"Failed to open workbook: {str(e)}", file_path=file_path)

        return max(total - 1, 0)

