# ==============================================
# hospital_etl/processors/base_processor.py
# ==============================================
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from hospital_etl.core.exceptions import FileProcessingException
from hospital_etl.core.logging import get_logger
from hospital_etl.transformers.value_transformer import is_blank

logger = get_logger(__name__)

Row = Union[Dict[str, Any], "MalformedRow"]


class MalformedRow:
    """A source line that could not be mapped onto the header row."""

    def __init__(self, values: List[Any], reason: str, line_number: Optional[int] = None):
        self.values = values
        self.reason = reason
        self.line_number = line_number

    def __repr__(self) -> str:
        return f"MalformedRow(line={self.line_number}, reason='{self.reason}')"


class BaseProcessor(ABC):
    """
    Abstract base class for the file readers used by the extract stage.
    A reader yields one dict per data row, keyed by the header row.
    """

    def __init__(self, chunk_size: int = 10000, **kwargs):
        """
        Initialize base processor

        Args:
            chunk_size: Rows parsed per pandas chunk
            **kwargs: Reader-specific options
        """
        self.chunk_size = chunk_size
        self.logger = logger
        self.config = kwargs

    @abstractmethod
    def read_headers(self, file_path: str) -> List[str]:
        """
        Read the header row

        Args:
            file_path: Path to the file

        Returns:
            Column names in file order
        """

    @abstractmethod
    def iter_rows(self, file_path: str) -> Iterator[Row]:
        """
        Stream data rows in file order

        Args:
            file_path: Path to the file

        Yields:
            Row dictionaries, or MalformedRow markers for lines that do not fit the header
        """

    def count_rows(self, file_path: str) -> int:
        """Total data rows (header excluded); a full pass over the file."""
        return sum(1 for _ in self.iter_rows(file_path))

    def ensure_exists(self, file_path: str) -> Path:
        path = Path(file_path)
        if not path.exists():
            raise FileProcessingException(f"File not found: {file_path}", file_path=file_path)
        return path

    @staticmethod
    def is_blank_row(row: Dict[str, Any]) -> bool:
        return all(is_blank(value) for value in row.values())

    @staticmethod
    def clean_record(record: Dict[Any, Any]) -> Dict[str, Optional[str]]:
        """Strip keys and values; empty cells become None."""
        cleaned = {}
        for key, value in record.items():
            name = key.strip() if isinstance(key, str) else str(key)
            if value is None or is_blank(value):
                cleaned[name] = None
            else:
                cleaned[name] = str(value).strip()
        return cleaned
