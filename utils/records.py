import json
import math
import re
from dataclasses import dataclass, field
from typing import Dict, Optional

CATEGORIES = ("ww", "pt", "qa")
CATEGORY_LABELS = {
    "ww": "Written Works",
    "pt": "Performance Tasks",
    "qa": "Quarterly Assessment",
}
# Highest item index a category accepts
ITEM_LIMITS = {"ww": 10, "pt": 10, "qa": 1}
DEFAULT_WEIGHTS = {"ww": 20, "pt": 60, "qa": 20}

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def coerce_int(value) -> int:
    """Parse cell input as an integer, falling back to 0.

    Text keeps its leading integer ("18", " 7 ", "12pts" -> 12); anything
    without one ("abc", "", None) becomes 0. Floats are truncated.
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return 0
        return int(value)
    match = _LEADING_INT.match(str(value))
    return int(match.group(1)) if match else 0


def normalize_category(category) -> str:
    """Accept "ww", "WW", "scores_ww" or "hps_ww" and return the short key."""
    key = str(category or "").strip().lower()
    for prefix in ("scores_", "hps_", "weight_"):
        if key.startswith(prefix):
            key = key[len(prefix):]
    if key not in CATEGORIES:
        raise ValueError(f"Unknown category: {category!r}")
    return key


def _item_map(raw) -> Dict[int, int]:
    """Normalize a stored {"1": 20, ...} mapping (dict or JSON text) to int keys."""
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw or "{}")
        except ValueError:
            return {}
    if not isinstance(raw, dict):
        return {}
    items = {}
    for key, value in raw.items():
        try:
            index = int(key)
        except (TypeError, ValueError):
            continue
        items[index] = coerce_int(value)
    return items


def _dump_items(items: Dict[int, int]) -> Dict[str, int]:
    return {str(index): value for index, value in sorted(items.items())}


def _as_float(value) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _weight(row: dict, category: str):
    """Stored NULL weights stay None (counted as 0); absent keys get the default."""
    key = f"weight_{category}"
    if key not in row:
        return DEFAULT_WEIGHTS[category]
    value = row[key]
    if value is None or isinstance(value, (int, float)):
        return value
    return coerce_int(value)


@dataclass
class CategoryConfig:
    """Highest possible scores and weights for one class record context."""

    grade_level: str
    section: str
    subject: str
    quarter: int
    hps_ww: Dict[int, int] = field(default_factory=dict)
    hps_pt: Dict[int, int] = field(default_factory=dict)
    hps_qa: Dict[int, int] = field(default_factory=dict)
    weight_ww: Optional[float] = DEFAULT_WEIGHTS["ww"]
    weight_pt: Optional[float] = DEFAULT_WEIGHTS["pt"]
    weight_qa: Optional[float] = DEFAULT_WEIGHTS["qa"]
    id: Optional[int] = None

    @classmethod
    def default(cls, grade_level, section, subject, quarter) -> "CategoryConfig":
        return cls(grade_level, section, subject, int(quarter))

    @classmethod
    def from_row(cls, row: dict) -> "CategoryConfig":
        return cls(
            grade_level=row.get("grade_level") or "",
            section=row.get("section") or "",
            subject=row.get("subject") or "",
            quarter=coerce_int(row.get("quarter")),
            hps_ww=_item_map(row.get("hps_ww")),
            hps_pt=_item_map(row.get("hps_pt")),
            hps_qa=_item_map(row.get("hps_qa")),
            weight_ww=_weight(row, "ww"),
            weight_pt=_weight(row, "pt"),
            weight_qa=_weight(row, "qa"),
            id=row.get("id"),
        )

    def to_row(self) -> dict:
        return {
            "id": self.id,
            "grade_level": self.grade_level,
            "section": self.section,
            "subject": self.subject,
            "quarter": self.quarter,
            "hps_ww": _dump_items(self.hps_ww),
            "hps_pt": _dump_items(self.hps_pt),
            "hps_qa": _dump_items(self.hps_qa),
            "weight_ww": self.weight_ww,
            "weight_pt": self.weight_pt,
            "weight_qa": self.weight_qa,
        }

    @property
    def key(self) -> tuple:
        return (self.grade_level, self.section, self.subject, self.quarter)

    def hps(self, category: str) -> Dict[int, int]:
        return getattr(self, f"hps_{category}")

    def weight(self, category: str):
        return getattr(self, f"weight_{category}")

    @property
    def weight_total(self) -> float:
        # Displayed only; weights are never normalized to 100
        return sum((self.weight(c) or 0) for c in CATEGORIES)


@dataclass
class ScoreRecord:
    """One student's raw scores for a subject and quarter."""

    student_id: str
    subject: str
    quarter: int
    scores_ww: Dict[int, int] = field(default_factory=dict)
    scores_pt: Dict[int, int] = field(default_factory=dict)
    scores_qa: Dict[int, int] = field(default_factory=dict)
    initial_grade: float = 0.0
    quarterly_grade: int = 0
    id: Optional[int] = None

    @classmethod
    def from_row(cls, row: dict) -> "ScoreRecord":
        return cls(
            student_id=str(row.get("student_id")),
            subject=row.get("subject") or "",
            quarter=coerce_int(row.get("quarter")),
            scores_ww=_item_map(row.get("scores_ww")),
            scores_pt=_item_map(row.get("scores_pt")),
            scores_qa=_item_map(row.get("scores_qa")),
            initial_grade=_as_float(row.get("initial_grade")),
            quarterly_grade=coerce_int(row.get("quarterly_grade")),
            id=row.get("id"),
        )

    def to_row(self) -> dict:
        return {
            "id": self.id,
            "student_id": self.student_id,
            "subject": self.subject,
            "quarter": self.quarter,
            "scores_ww": _dump_items(self.scores_ww),
            "scores_pt": _dump_items(self.scores_pt),
            "scores_qa": _dump_items(self.scores_qa),
            "initial_grade": self.initial_grade,
            "quarterly_grade": self.quarterly_grade,
        }

    @property
    def key(self) -> tuple:
        return (self.student_id, self.subject, self.quarter)

    def scores(self, category: str) -> Dict[int, int]:
        return getattr(self, f"scores_{category}")
