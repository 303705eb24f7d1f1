# ==============================================
# hospital_etl/transformers/__init__.py
# ==============================================
from .value_transformer import ValueTransformer, coerce_for_storage
from .row_validator import RowValidator
from .categories import CATEGORY_REGISTRY, CategoryStrategy, get_category_strategy, register_category

__all__ = [
    "ValueTransformer",
    "coerce_for_storage",
    "RowValidator",
    "CategoryStrategy",
    "CATEGORY_REGISTRY",
    "get_category_strategy",
    "register_category",
]
