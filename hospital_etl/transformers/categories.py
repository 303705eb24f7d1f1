# ==============================================
# hospital_etl/transformers/categories.py
# ==============================================
"""
Category strategies: for each data category, the fixed business columns of
its core table, the columns its transform-time calculator adds to staging,
the calculator itself and the load-time enrichment.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import JSON, Boolean, Date, Integer, Numeric, String, Text
from sqlalchemy.types import TypeEngine

from hospital_etl.core.enums import DataCategory
from hospital_etl.core.logging import get_logger
from hospital_etl.transformers.value_transformer import as_float, is_blank, to_integer
from hospital_etl.utils.date_utils import parse_date

logger = get_logger(__name__)

MONEY = Numeric(15, 2, asdecimal=False)
RATE = Numeric(10, 2, asdecimal=False)

ColumnDef = Tuple[str, TypeEngine]

# present on every core table regardless of category
COMMON_CORE_COLUMNS: List[ColumnDef] = [
    ("department", String(100)),
    ("date", Date()),
    ("description", Text()),
]


@dataclass
class CategoryStrategy:
    name: str
    core_columns: List[ColumnDef]
    derived_columns: List[ColumnDef] = field(default_factory=list)
    calculate: Callable[[Dict[str, Any]], Dict[str, Any]] = lambda row: row
    enrich: Callable[[Dict[str, Any], Dict[str, Any]], Dict[str, Any]] = lambda record, staging_row: record

    @property
    def core_table_name(self) -> str:
        return f"core_{self.name}_data"


def _present(row: Dict[str, Any], *keys: str) -> bool:
    return all(not is_blank(row.get(key)) for key in keys)


# ---------------------------------------------------------------------------
# transform-time calculators
# ---------------------------------------------------------------------------

def calculate_financial(row: Dict[str, Any]) -> Dict[str, Any]:
    if _present(row, "revenue", "cost"):
        revenue, cost = as_float(row["revenue"]), as_float(row["cost"])
        if revenue is not None and cost is not None:
            row["profit"] = revenue - cost
            row["profit_margin"] = round((revenue - cost) / revenue * 100, 2) if revenue > 0 else 0

    if _present(row, "budget", "revenue"):
        budget, revenue = as_float(row["budget"]), as_float(row["revenue"])
        if budget is not None and revenue is not None:
            row["budget_variance"] = revenue - budget
            row["budget_variance_percent"] = round((revenue - budget) / budget * 100, 2) if budget > 0 else 0

    return row


def calculate_operational(row: Dict[str, Any]) -> Dict[str, Any]:
    if _present(row, "bed_count", "occupied_beds"):
        total_beds = to_integer(row["bed_count"])
        occupied = to_integer(row["occupied_beds"])
        row["occupancy_rate"] = round(occupied / total_beds * 100, 2) if total_beds > 0 else 0

    if _present(row, "staff_count", "patient_count"):
        staff = to_integer(row["staff_count"])
        patients = to_integer(row["patient_count"])
        row["staff_patient_ratio"] = round(patients / staff, 2) if staff > 0 else 0

    return row


def satisfaction_grade(score: float) -> str:
    if score >= 90:
        return "A"
    if score >= 80:
        return "B"
    if score >= 70:
        return "C"
    if score >= 60:
        return "D"
    return "F"


def calculate_quality(row: Dict[str, Any]) -> Dict[str, Any]:
    score = as_float(row.get("satisfaction_score"))
    if score is not None:
        row["satisfaction_grade"] = satisfaction_grade(score)
    return row


def age_group(age: int) -> str:
    if age < 18:
        return "소아"
    if age < 40:
        return "청년"
    if age < 65:
        return "중년"
    return "노년"


def calculate_patient(row: Dict[str, Any]) -> Dict[str, Any]:
    if _present(row, "admission_date", "discharge_date"):
        admission = parse_date(row["admission_date"])
        discharge = parse_date(row["discharge_date"])
        if admission and discharge:
            row["length_of_stay"] = (discharge - admission).days

    if _present(row, "age"):
        row["age_group"] = age_group(to_integer(row["age"]))

    return row


# ---------------------------------------------------------------------------
# load-time enrichment
# ---------------------------------------------------------------------------

def fiscal_quarter(value: Any) -> Optional[int]:
    parsed = parse_date(value)
    return (parsed.month - 1) // 3 + 1 if parsed else None


def normalize_currency(amount: Any) -> Optional[float]:
    number = as_float(amount)
    return round(number, 2) if number is not None else None


def efficiency_score(staging_row: Dict[str, Any]) -> Optional[float]:
    """Occupancy weighted 0.7, inverse staff/patient ratio (capped at 100) weighted 0.3."""
    occupancy = as_float(staging_row.get("occupancy_rate")) or 0.0
    ratio = as_float(staging_row.get("staff_patient_ratio")) or 0.0

    if occupancy == 0 and ratio == 0:
        return None

    ratio_component = min(100 / ratio, 100) if ratio > 0 else 0
    return round(occupancy * 0.7 + ratio_component * 0.3, 2)


def quality_tier(score: Any) -> str:
    score = as_float(score) or 0.0
    if score >= 90:
        return "Excellent"
    if score >= 80:
        return "Good"
    if score >= 70:
        return "Average"
    if score >= 60:
        return "Below Average"
    return "Poor"


def classify_patient(staging_row: Dict[str, Any]) -> str:
    age = to_integer(staging_row.get("age") or 0)
    los = to_integer(staging_row.get("length_of_stay") or 0)

    if age < 18:
        return "Pediatric"
    if los > 30:
        return "Long-term"
    if los < 3:
        return "Short-term"
    return "Standard"


def enrich_financial(record: Dict[str, Any], staging_row: Dict[str, Any]) -> Dict[str, Any]:
    report_date = parse_date(staging_row.get("date"))
    record["fiscal_year"] = report_date.year if report_date else None
    record["fiscal_quarter"] = fiscal_quarter(report_date)
    record["fiscal_month"] = report_date.month if report_date else None
    record["revenue_normalized"] = normalize_currency(staging_row.get("revenue"))
    record["cost_normalized"] = normalize_currency(staging_row.get("cost"))
    return record


def enrich_operational(record: Dict[str, Any], staging_row: Dict[str, Any]) -> Dict[str, Any]:
    report_date = parse_date(staging_row.get("date"))
    record["report_date"] = report_date
    record["report_year"] = report_date.year if report_date else None
    record["report_month"] = report_date.month if report_date else None
    record["efficiency_score"] = efficiency_score(staging_row)
    return record


def enrich_quality(record: Dict[str, Any], staging_row: Dict[str, Any]) -> Dict[str, Any]:
    score = as_float(staging_row.get("satisfaction_score"))
    record["assessment_date"] = parse_date(staging_row.get("date"))
    record["quality_tier"] = quality_tier(score)
    record["satisfaction_normalized"] = round(min(score, 100), 2) if score is not None else None
    return record


def enrich_patient(record: Dict[str, Any], staging_row: Dict[str, Any]) -> Dict[str, Any]:
    admission = parse_date(staging_row.get("admission_date"))
    record["admission_year"] = admission.year if admission else None
    record["admission_month"] = admission.month if admission else None
    record["patient_category"] = classify_patient(staging_row)
    return record


# ---------------------------------------------------------------------------
# registry
# ---------------------------------------------------------------------------

CATEGORY_REGISTRY: Dict[str, CategoryStrategy] = {}


def register_category(strategy: CategoryStrategy) -> CategoryStrategy:
    CATEGORY_REGISTRY[strategy.name] = strategy
    return strategy


register_category(CategoryStrategy(
    name=DataCategory.FINANCIAL.value,
    core_columns=[
        ("revenue", MONEY),
        ("cost", MONEY),
        ("profit", MONEY),
        ("budget", MONEY),
        ("profit_margin", RATE),
        ("budget_variance", MONEY),
        ("budget_variance_percent", RATE),
        ("account_code", String(50)),
        ("fiscal_year", Integer()),
        ("fiscal_quarter", Integer()),
        ("fiscal_month", Integer()),
        ("revenue_normalized", MONEY),
        ("cost_normalized", MONEY),
    ],
    derived_columns=[
        ("profit", MONEY),
        ("profit_margin", RATE),
        ("budget_variance", MONEY),
        ("budget_variance_percent", RATE),
    ],
    calculate=calculate_financial,
    enrich=enrich_financial,
))

register_category(CategoryStrategy(
    name=DataCategory.OPERATIONAL.value,
    core_columns=[
        ("bed_count", Integer()),
        ("occupied_beds", Integer()),
        ("staff_count", Integer()),
        ("patient_count", Integer()),
        ("occupancy_rate", RATE),
        ("staff_patient_ratio", RATE),
        ("los_average", RATE),
        ("turnover_rate", RATE),
        ("report_date", Date()),
        ("report_year", Integer()),
        ("report_month", Integer()),
        ("efficiency_score", RATE),
    ],
    derived_columns=[
        ("occupancy_rate", RATE),
        ("staff_patient_ratio", RATE),
    ],
    calculate=calculate_operational,
    enrich=enrich_operational,
))

register_category(CategoryStrategy(
    name=DataCategory.QUALITY.value,
    core_columns=[
        ("patient_id", String(100)),
        ("satisfaction_score", RATE),
        ("satisfaction_grade", String(2)),
        ("readmission", Boolean()),
        ("complication", Boolean()),
        ("infection", Boolean()),
        ("mortality", Boolean()),
        ("assessment_date", Date()),
        ("quality_tier", String(20)),
        ("satisfaction_normalized", RATE),
    ],
    derived_columns=[
        ("satisfaction_grade", String(2)),
    ],
    calculate=calculate_quality,
    enrich=enrich_quality,
))

register_category(CategoryStrategy(
    name=DataCategory.PATIENT.value,
    core_columns=[
        ("patient_id", String(100)),
        ("age", Integer()),
        ("gender", String(20)),
        ("age_group", String(20)),
        ("admission_date", Date()),
        ("discharge_date", Date()),
        ("length_of_stay", Integer()),
        ("diagnosis", String(255)),
        ("doctor", String(100)),
        ("admission_year", Integer()),
        ("admission_month", Integer()),
        ("patient_category", String(20)),
    ],
    derived_columns=[
        ("length_of_stay", Integer()),
        ("age_group", String(20)),
    ],
    calculate=calculate_patient,
    enrich=enrich_patient,
))

register_category(CategoryStrategy(
    name=DataCategory.GENERAL.value,
    core_columns=[
        ("name", String(255)),
        ("category", String(100)),
        ("value", MONEY),
        ("metadata", JSON()),
    ],
))


def get_category_strategy(category: Any) -> CategoryStrategy:
    """Strategy for a category tag or enum; unknown and missing categories use `general`."""
    if isinstance(category, DataCategory):
        category = category.value
    strategy = CATEGORY_REGISTRY.get(category or DataCategory.GENERAL.value)
    if strategy is None:
        logger.warning(f"No strategy registered for category '{category}', using general")
        strategy = CATEGORY_REGISTRY[DataCategory.GENERAL.value]
    return strategy
