# ==============================================
# hospital_etl/transformers/value_transformer.py
# ==============================================
import math
import re
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from hospital_etl.core.enums import FieldDataType, MappingType
from hospital_etl.core.logging import get_logger
from hospital_etl.utils.date_utils import parse_date, parse_datetime

logger = get_logger(__name__)

TRUE_TOKENS = frozenset(["true", "1", "yes", "y", "t"])
FALSE_TOKENS = frozenset(["false", "0", "no", "n", "f"])

_LEADING_INT = re.compile(r"^\s*([-+]?\d+)")
_LEADING_FLOAT = re.compile(r"^\s*([-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)")
_FORMULAS = [
    ("multiply", re.compile(r"multiply_by_(\d+\.?\d*)")),
    ("divide", re.compile(r"divide_by_(\d+\.?\d*)")),
    ("add", re.compile(r"add_(\d+\.?\d*)")),
    ("subtract", re.compile(r"subtract_(\d+\.?\d*)")),
]


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict, tuple, set)):
        return len(value) == 0
    return False


def _clean_numeric_text(value: Any) -> str:
    return str(value).replace(",", "").strip()


def to_integer(value: Any) -> int:
    """Best-effort integer parse: "12abc" -> 12, "12.7" -> 12, "abc" -> 0."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, (float, Decimal)):
        return int(value) if math.isfinite(value) else 0

    match = _LEADING_INT.match(_clean_numeric_text(value))
    return int(match.group(1)) if match else 0


def to_decimal(value: Any) -> float:
    """Best-effort float parse: "12.5kg" -> 12.5, "abc" -> 0.0."""
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float, Decimal)):
        result = float(value)
        return result if math.isfinite(result) else 0.0

    match = _LEADING_FLOAT.match(_clean_numeric_text(value))
    return float(match.group(1)) if match else 0.0


def to_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in TRUE_TOKENS


class ValueTransformer:
    """
    Converts one raw cell according to a field mapping.

    `transform` never raises: a failure is logged and the raw value is
    returned unchanged, so one bad cell cannot abort a batch.
    """

    def __init__(self, logger_=None):
        self.logger = logger_ or logger

    def transform(self, raw_value: Any, mapping) -> Any:
        if mapping is None:
            return raw_value

        try:
            mapping_type = MappingType(mapping.mapping_type)
            if mapping_type == MappingType.DIRECT:
                return self.transform_direct(raw_value, mapping.data_type)
            if mapping_type == MappingType.CALCULATED:
                return self.transform_calculated(raw_value, mapping.transformation_rules or {})
            if mapping_type == MappingType.LOOKUP:
                return self.transform_lookup(raw_value, mapping.transformation_rules or {})
            if mapping_type == MappingType.CONDITIONAL:
                return self.transform_conditional(raw_value, mapping.transformation_rules or {})
            return raw_value
        except Exception as e:
            self.logger.error(f"Transform error for field {getattr(mapping, 'target_field', '?')}: {e}")
            return raw_value

    def transform_direct(self, value: Any, data_type: Any) -> Any:
        # blank stays None for every type; only non-blank text falls back to 0 or False
        if is_blank(value):
            return None

        data_type = FieldDataType(data_type) if data_type else FieldDataType.STRING
        if data_type == FieldDataType.INTEGER:
            return to_integer(value)
        if data_type == FieldDataType.DECIMAL:
            return to_decimal(value)
        if data_type == FieldDataType.BOOLEAN:
            return to_boolean(value)
        if data_type == FieldDataType.DATE:
            return parse_date(value)
        if data_type == FieldDataType.DATETIME:
            return parse_datetime(value)
        return str(value).strip() if isinstance(value, str) else str(value)

    def transform_calculated(self, value: Any, rules: Dict[str, Any]) -> Any:
        formula = rules.get("formula")
        if not formula or is_blank(value):
            return value

        for operation, pattern in _FORMULAS:
            match = pattern.search(str(formula))
            if not match:
                continue

            operand = float(match.group(1))
            number = to_decimal(value)
            if operation == "multiply":
                return number * operand
            if operation == "divide":
                return 0 if operand == 0 else number / operand
            if operation == "add":
                return number + operand
            return number - operand

        return value

    def transform_lookup(self, value: Any, rules: Dict[str, Any]) -> Any:
        lookup_table = rules.get("lookup_table") or {}
        key = "" if value is None else str(value)
        replacement = lookup_table.get(key)
        return value if replacement is None else replacement

    def transform_conditional(self, value: Any, rules: Dict[str, Any]) -> Any:
        for condition in rules.get("conditions") or []:
            if self.evaluate_condition(value, condition):
                return condition.get("result")
        return value

    @staticmethod
    def evaluate_condition(value: Any, condition: Dict[str, Any]) -> bool:
        operator = condition.get("operator")
        operand = condition.get("operand")
        text = "" if value is None else str(value)
        operand_text = "" if operand is None else str(operand)

        if operator == "equals":
            return text == operand_text
        if operator == "contains":
            return operand_text in text
        if operator == "starts_with":
            return text.startswith(operand_text)
        if operator == "ends_with":
            return text.endswith(operand_text)
        if operator == "greater_than":
            return to_decimal(text) > to_decimal(operand_text)
        if operator == "less_than":
            return to_decimal(text) < to_decimal(operand_text)
        return False


def coerce_for_storage(value: Any, data_type: Any) -> Any:
    """
    Convert a value to the Python type its column stores, or None when it
    cannot be represented there.
    """
    if is_blank(value):
        return None

    data_type = FieldDataType(data_type) if data_type else FieldDataType.STRING

    if data_type == FieldDataType.INTEGER:
        if isinstance(value, (bool, int)):
            return int(value)
        if isinstance(value, (float, Decimal)):
            return int(value) if math.isfinite(value) else None
        text = _clean_numeric_text(value)
        try:
            return int(float(text))
        except (ValueError, OverflowError):
            return None

    if data_type == FieldDataType.DECIMAL:
        if isinstance(value, (bool, int, float, Decimal)):
            result = float(value)
            return result if math.isfinite(result) else None
        try:
            result = float(_clean_numeric_text(value))
        except ValueError:
            return None
        return result if math.isfinite(result) else None

    if data_type == FieldDataType.BOOLEAN:
        if isinstance(value, bool):
            return value
        token = str(value).strip().lower()
        if token in TRUE_TOKENS:
            return True
        if token in FALSE_TOKENS:
            return False
        return None

    if data_type == FieldDataType.DATE:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        return parse_date(value)

    if data_type == FieldDataType.DATETIME:
        return parse_datetime(value)

    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def as_float(value: Any) -> Optional[float]:
    """Numeric view of a value for business rules; None when blank or non-numeric."""
    if is_blank(value) or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        result = float(value)
        return result if math.isfinite(result) else None
    try:
        result = float(_clean_numeric_text(value))
    except ValueError:
        return None
    return result if math.isfinite(result) else None
