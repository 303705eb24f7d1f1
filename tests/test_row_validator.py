"""Tests for row validation against mapping constraints."""

from uuid import uuid4

from hospital_etl.core.enums import FieldDataType
from hospital_etl.infrastructure.db.models import FieldMapping
from hospital_etl.transformers.row_validator import RowValidator, is_valid_data_type
from hospital_etl.transformers.value_transformer import ValueTransformer


def _make_mapping(target, data_type=FieldDataType.STRING, is_required=False, validation_rules=None):
    return FieldMapping(
        data_upload_id=uuid4(),
        source_field=target,
        target_field=target,
        data_type=data_type,
        is_required=is_required,
        validation_rules=validation_rules,
    )


def test_valid_row_has_no_errors():
    mappings = [
        _make_mapping("department", is_required=True),
        _make_mapping("revenue", FieldDataType.DECIMAL),
        _make_mapping("beds", FieldDataType.INTEGER),
    ]
    row = {"department": "ICU", "revenue": 1200.5, "beds": 12}

    assert RowValidator().validate(row, mappings) == []


def test_required_field_missing_or_blank():
    mappings = [_make_mapping("revenue", FieldDataType.DECIMAL, is_required=True)]
    validator = RowValidator()

    assert validator.validate({}, mappings) == ["Required field 'revenue' is missing or empty"]
    assert validator.validate({"revenue": "  "}, mappings) == ["Required field 'revenue' is missing or empty"]


def test_optional_blank_field_is_not_flagged():
    mappings = [_make_mapping("cost", FieldDataType.DECIMAL)]
    assert RowValidator().validate({"cost": None}, mappings) == []


def test_type_mismatch_is_reported():
    mappings = [_make_mapping("beds", FieldDataType.INTEGER)]
    errors = RowValidator().validate({"beds": "12.5"}, mappings)

    assert errors == ["Field 'beds' has invalid data type. Expected: integer"]


def test_type_predicates():
    assert is_valid_data_type("-42", FieldDataType.INTEGER)
    assert is_valid_data_type("-3.5", FieldDataType.DECIMAL)
    assert not is_valid_data_type("3.5.1", FieldDataType.DECIMAL)
    assert is_valid_data_type("Yes", FieldDataType.BOOLEAN)
    assert not is_valid_data_type("maybe", FieldDataType.BOOLEAN)
    assert is_valid_data_type("2024-01-31", FieldDataType.DATE)
    assert not is_valid_data_type("yesterday-ish", FieldDataType.DATE)
    assert not is_valid_data_type(True, FieldDataType.INTEGER)


def test_validation_rules():
    mappings = [
        _make_mapping("score", FieldDataType.DECIMAL, validation_rules={"min_value": 0, "max_value": 100}),
        _make_mapping("gender", validation_rules={"allowed_values": ["M", "F"]}),
        _make_mapping("code", validation_rules={"max_length": 4, "pattern": r"[A-Z]+"}),
    ]
    row = {"score": 120, "gender": "X", "code": "abcde"}

    errors = RowValidator().validate(row, mappings)

    assert "Field 'score' must be at most 100" in errors
    assert "Field 'gender' must be one of: M, F" in errors
    assert "Field 'code' exceeds maximum length of 4" in errors
    assert "Field 'code' does not match the expected format" in errors


def test_numbers_are_checked_by_value_not_text():
    """Floats whose repr uses exponent notation are still valid decimals."""
    mappings = [_make_mapping("amount", FieldDataType.DECIMAL), _make_mapping("beds", FieldDataType.INTEGER)]
    validator = RowValidator()

    assert validator.validate({"amount": 0.00001, "beds": 12}, mappings) == []
    assert validator.validate({"amount": 1e16, "beds": 3.0}, mappings) == []
    assert validator.validate({"amount": float("nan")}, mappings) == [
        "Field 'amount' has invalid data type. Expected: decimal"
    ]
    assert not is_valid_data_type(3.5, FieldDataType.INTEGER)
    assert not is_valid_data_type(False, FieldDataType.DECIMAL)


def test_blank_required_boolean_is_flagged_after_transform():
    mapping = _make_mapping("is_insured", FieldDataType.BOOLEAN, is_required=True)
    row = {"is_insured": ValueTransformer().transform("", mapping)}

    assert RowValidator().validate(row, [mapping]) == ["Required field 'is_insured' is missing or empty"]
