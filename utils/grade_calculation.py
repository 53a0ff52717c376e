import math

from utils.records import CATEGORIES
from utils.transmutation import transmute


def _as_number(value) -> float:
    """Numeric value of a score/HPS/weight cell; blanks and junk count as 0."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return 0 if isinstance(value, float) and math.isnan(value) else value
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    return 0 if math.isnan(number) else number


def _sum_items(items) -> float:
    return sum(_as_number(v) for v in (items or {}).values())


def aggregate_category(scores: dict, hps: dict, weight) -> dict:
    """Sum one assessment category and derive its percentage and weighted scores.

    Items the student has no score for count as 0, items without a configured
    HPS add nothing to the maximum. With no HPS configured the percentage
    (and therefore the weighted score) is 0.
    """
    total = _sum_items(scores)
    max_possible = _sum_items(hps)
    percent_score = (total / max_possible) * 100 if max_possible > 0 else 0.0
    weighted_score = percent_score * (_as_number(weight) / 100)
    return {
        "total": total,
        "max_possible": max_possible,
        "percent_score": percent_score,
        "weighted_score": weighted_score,
    }


def zero_breakdown() -> dict:
    return {"total": 0, "max_possible": 0, "percent_score": 0.0, "weighted_score": 0.0}


def calculate_grade(score_record, config) -> dict:
    """Compute a student's initial and quarterly grade for one class record.

    Returns:
    {
      "initial_grade": 96.0,
      "quarterly_grade": 97,
      "categories": {
         "ww": {"total": 18, "max_possible": 20, "percent_score": 90.0, "weighted_score": 18.0},
         "pt": {...},
         "qa": {...}
      }
    }

    A missing score record or config is a normal state (nothing entered yet)
    and yields an all-zero result with quarterly_grade 0.
    """
    if score_record is None or config is None:
        return {
            "initial_grade": 0.0,
            "quarterly_grade": 0,
            "categories": {c: zero_breakdown() for c in CATEGORIES},
        }

    categories = {
        c: aggregate_category(score_record.scores(c), config.hps(c), config.weight(c))
        for c in CATEGORIES
    }
    initial_grade = sum(categories[c]["weighted_score"] for c in CATEGORIES)
    return {
        "initial_grade": initial_grade,
        "quarterly_grade": transmute(initial_grade),
        "categories": categories,
    }
