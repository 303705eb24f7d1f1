# ==============================================
# hospital_etl/processors/__init__.py
# ==============================================
from hospital_etl.core.exceptions import UnsupportedFileTypeError

from .base_processor import BaseProcessor, MalformedRow
from .csv_processor import CSVProcessor
from .excel_processor import ExcelProcessor

# Processor registry keyed by upload file type, MIME type or extension
PROCESSOR_REGISTRY = {
    'csv': CSVProcessor,
    '.csv': CSVProcessor,
    'text/csv': CSVProcessor,
    'application/csv': CSVProcessor,

    'excel': ExcelProcessor,
    'xlsx': ExcelProcessor,
    'xls': ExcelProcessor,
    '.xlsx': ExcelProcessor,
    '.xls': ExcelProcessor,
    'application/vnd.ms-excel': ExcelProcessor,
    'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet': ExcelProcessor,
}


def get_processor(file_type: str, **kwargs) -> BaseProcessor:
    """
    Factory function to get appropriate processor based on file type

    Args:
        file_type: File type, MIME type or extension
        **kwargs: Additional arguments to pass to processor

    Returns:
        Processor instance

    Raises:
        UnsupportedFileTypeError: If file type is not supported
    """
    key = (file_type or '').lower()
    processor_class = PROCESSOR_REGISTRY.get(key)

    if not processor_class and key:
        # Try to match partial MIME types
        if 'spreadsheet' in key or 'excel' in key:
            processor_class = ExcelProcessor
        elif 'csv' in key:
            processor_class = CSVProcessor

    if not processor_class:
        raise UnsupportedFileTypeError(file_type, get_supported_types())

    return processor_class(**kwargs)


def get_supported_types():
    """Get list of all supported file types"""
    return list(PROCESSOR_REGISTRY.keys())


__all__ = [
    "BaseProcessor",
    "MalformedRow",
    "CSVProcessor",
    "ExcelProcessor",
    "PROCESSOR_REGISTRY",
    "get_processor",
    "get_supported_types",
]
