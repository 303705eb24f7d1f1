"""Tests for the per-category calculators and load-time enrichment."""

from datetime import date

import pytest

from hospital_etl.core.enums import DataCategory
from hospital_etl.transformers.categories import (
    age_group,
    calculate_financial,
    calculate_operational,
    calculate_patient,
    calculate_quality,
    classify_patient,
    efficiency_score,
    enrich_financial,
    get_category_strategy,
    quality_tier,
    satisfaction_grade,
)


def test_profit_and_margin():
    """revenue=100, cost=80 gives profit 20 and a 20% margin."""
    row = calculate_financial({"revenue": 100, "cost": 80})

    assert row["profit"] == 20
    assert row["profit_margin"] == 20.0


def test_budget_variance():
    row = calculate_financial({"budget": 100, "revenue": 110})

    assert row["budget_variance"] == 10
    assert row["budget_variance_percent"] == 10.0


def test_zero_revenue_guards_margin():
    row = calculate_financial({"revenue": 0, "cost": 50})

    assert row["profit"] == -50
    assert row["profit_margin"] == 0


def test_unparseable_financial_values_are_skipped():
    row = calculate_financial({"revenue": "n/a", "cost": "80"})
    assert "profit" not in row


def test_operational_rates():
    row = calculate_operational({"bed_count": "200", "occupied_beds": "150", "staff_count": "50", "patient_count": "200"})

    assert row["occupancy_rate"] == 75.0
    assert row["staff_patient_ratio"] == 4.0


def test_operational_zero_beds():
    row = calculate_operational({"bed_count": "0", "occupied_beds": "10"})
    assert row["occupancy_rate"] == 0


@pytest.mark.parametrize("score,grade", [(95, "A"), (90, "A"), (85, "B"), (70, "C"), (60, "D"), (59.9, "F")])
def test_satisfaction_grade_bands(score, grade):
    assert satisfaction_grade(score) == grade


def test_quality_calculator_sets_grade():
    assert calculate_quality({"satisfaction_score": "82"})["satisfaction_grade"] == "B"
    assert "satisfaction_grade" not in calculate_quality({"satisfaction_score": ""})


@pytest.mark.parametrize("age,group", [(5, "소아"), (17, "소아"), (18, "청년"), (39, "청년"), (40, "중년"), (64, "중년"), (65, "노년")])
def test_age_group_bands(age, group):
    assert age_group(age) == group


def test_patient_length_of_stay():
    row = calculate_patient({"admission_date": "2024-01-01", "discharge_date": "2024-01-11", "age": "70"})

    assert row["length_of_stay"] == 10
    assert row["age_group"] == "노년"


def test_patient_bad_dates_are_fail_soft():
    row = calculate_patient({"admission_date": "garbage", "discharge_date": "2024-01-11"})
    assert "length_of_stay" not in row


def test_enrich_financial_fiscal_fields():
    record = enrich_financial({}, {"date": date(2024, 8, 15), "revenue": 1234.5678, "cost": None})

    assert record["fiscal_year"] == 2024
    assert record["fiscal_quarter"] == 3
    assert record["fiscal_month"] == 8
    assert record["revenue_normalized"] == 1234.57
    assert record["cost_normalized"] is None


def test_efficiency_score_blend():
    """Occupancy weighted 0.7, inverse staff ratio weighted 0.3."""
    assert efficiency_score({"occupancy_rate": 80, "staff_patient_ratio": 4}) == 63.5
    assert efficiency_score({}) is None


@pytest.mark.parametrize("score,tier", [(95, "Excellent"), (80, "Good"), (75, "Average"), (60, "Below Average"), (10, "Poor"), (None, "Poor")])
def test_quality_tier(score, tier):
    assert quality_tier(score) == tier


@pytest.mark.parametrize("row,category", [
    ({"age": 10, "length_of_stay": 40}, "Pediatric"),
    ({"age": 50, "length_of_stay": 31}, "Long-term"),
    ({"age": 50, "length_of_stay": 2}, "Short-term"),
    ({"age": 50, "length_of_stay": 7}, "Standard"),
])
def test_classify_patient(row, category):
    assert classify_patient(row) == category


def test_unknown_category_falls_back_to_general():
    assert get_category_strategy("imaging").name == "general"
    assert get_category_strategy(None).core_table_name == "core_general_data"
    assert get_category_strategy(DataCategory.FINANCIAL).core_table_name == "core_financial_data"
