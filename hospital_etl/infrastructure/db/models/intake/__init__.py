from .hospitals import Hospital
from .data_uploads import DataUpload, ALLOWED_FILE_TYPES

__all__ = [
    "Hospital",
    "DataUpload",
    "ALLOWED_FILE_TYPES",
]
