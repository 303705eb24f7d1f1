from .field_mappings import FieldMapping

__all__ = ["FieldMapping"]
