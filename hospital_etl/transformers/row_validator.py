# ==============================================
# hospital_etl/transformers/row_validator.py
# ==============================================
import math
import re
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List

from hospital_etl.core.enums import FieldDataType
from hospital_etl.transformers.value_transformer import FALSE_TOKENS, TRUE_TOKENS, as_float, is_blank
from hospital_etl.utils.date_utils import parse_datetime

INTEGER_PATTERN = re.compile(r"^-?\d+$")
DECIMAL_PATTERN = re.compile(r"^-?\d+\.?\d*$")
BOOLEAN_TOKENS = TRUE_TOKENS | FALSE_TOKENS


def _finite_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    if isinstance(value, Decimal):
        return value.is_finite()
    return isinstance(value, float) and math.isfinite(value)


def is_valid_data_type(value: Any, expected_type: Any) -> bool:
    """
    Check a transformed value against a mapping's declared data type.

    Numbers are judged by value; their text form ("1e-05") is never
    pattern-matched. Strings must look like plain decimal literals.
    """
    expected_type = FieldDataType(expected_type) if expected_type else FieldDataType.STRING

    if expected_type == FieldDataType.INTEGER:
        if _finite_number(value):
            return value == int(value)
        return isinstance(value, str) and bool(INTEGER_PATTERN.match(value.strip()))
    if expected_type == FieldDataType.DECIMAL:
        if _finite_number(value):
            return True
        return isinstance(value, str) and bool(DECIMAL_PATTERN.match(value.strip()))
    if expected_type == FieldDataType.BOOLEAN:
        return str(value).lower() in BOOLEAN_TOKENS
    if expected_type in (FieldDataType.DATE, FieldDataType.DATETIME):
        return isinstance(value, date) or parse_datetime(value) is not None
    return True


class RowValidator:
    """
    Checks a transformed row against its mappings.

    Errors are returned, never raised: an invalid row is still written to
    staging, tagged with these messages, and the load stage skips it.
    """

    def validate(self, transformed_row: Dict[str, Any], mappings: Iterable) -> List[str]:
        errors: List[str] = []

        for mapping in mappings:
            field = mapping.target_field
            value = transformed_row.get(field)

            if is_blank(value):
                if mapping.is_required:
                    errors.append(f"Required field '{field}' is missing or empty")
                continue

            data_type = FieldDataType(mapping.data_type) if mapping.data_type else FieldDataType.STRING
            if not is_valid_data_type(value, data_type):
                errors.append(f"Field '{field}' has invalid data type. Expected: {data_type.value}")
                continue

            errors.extend(self._check_rules(field, value, mapping.validation_rules or {}))

        return errors

    def _check_rules(self, field: str, value: Any, rules: Dict[str, Any]) -> List[str]:
        errors = []

        if "min_value" in rules or "max_value" in rules:
            number = as_float(value)
            if number is not None:
                if rules.get("min_value") is not None and number < float(rules["min_value"]):
                    errors.append(f"Field '{field}' must be at least {rules['min_value']}")
                if rules.get("max_value") is not None and number > float(rules["max_value"]):
                    errors.append(f"Field '{field}' must be at most {rules['max_value']}")

        if rules.get("max_length") is not None and len(str(value)) > int(rules["max_length"]):
            errors.append(f"Field '{field}' exceeds maximum length of {rules['max_length']}")

        if rules.get("pattern") and not re.fullmatch(rules["pattern"], str(value)):
            errors.append(f"Field '{field}' does not match the expected format")

        allowed = rules.get("allowed_values")
        if allowed and str(value) not in {str(item) for item in allowed}:
            errors.append(f"Field '{field}' must be one of: {', '.join(str(item) for item in allowed)}")

        return errors
