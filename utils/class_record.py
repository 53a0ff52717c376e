import logging
import re
from dataclasses import replace
from typing import Dict, List, Optional

import numpy as np

from utils.errors import MissingSchemaError, PersistenceError, StoreError
from utils.grade_calculation import calculate_grade
from utils.records import (
    CATEGORIES,
    ITEM_LIMITS,
    CategoryConfig,
    ScoreRecord,
    coerce_int,
    normalize_category,
)

logger = logging.getLogger(__name__)

PASSING_GRADE = 75
_ROW_SPLIT = re.compile(r"\r\n|\n|\r")


def student_display_name(student: dict) -> str:
    last = student.get("last_name") or ""
    first = student.get("first_name") or ""
    return f"{last}, {first}"


def _grade_stats(grades: List[int]) -> dict:
    """Class-level statistics over the quarterly grades of graded students."""
    if not grades:
        return {
            "graded_count": 0,
            "mean": None,
            "median": None,
            "std_dev": None,
            "highest": None,
            "lowest": None,
            "passing_count": 0,
            "failing_count": 0,
        }
    arr = np.array(grades, dtype=float)
    passing = int(np.count_nonzero(arr >= PASSING_GRADE))
    return {
        "graded_count": len(grades),
        "mean": round(float(np.mean(arr)), 2),
        "median": round(float(np.median(arr)), 2),
        "std_dev": round(float(np.std(arr)), 2),
        "highest": int(arr.max()),
        "lowest": int(arr.min()),
        "passing_count": passing,
        "failing_count": len(grades) - passing,
    }


class ClassRecordAggregator:
    """In-memory gradebook for one (grade level, section, subject, quarter).

    The roster order is the store's canonical order (sex descending, then last
    name) and is what bulk paste rows map onto. Nothing here talks to the
    store except load_context() and save().
    """

    def __init__(self, store):
        self.store = store
        self.context: Optional[tuple] = None
        self.config: Optional[CategoryConfig] = None
        self.students: List[dict] = []
        self.scores: Dict[str, ScoreRecord] = {}

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    def load_context(self, grade_level, section, subject, quarter):
        """Fetch (or default) the config, the roster and its score records.

        Raises MissingSchemaError when a backing table is not provisioned.
        State is only replaced once every fetch succeeded.
        """
        quarter = int(quarter)
        config = self.store.fetch_config(grade_level, section, subject, quarter)
        if config is None:
            logger.info(
                f"No class record config for {grade_level}/{section}/{subject}/Q{quarter}; using defaults"
            )
            config = CategoryConfig.default(grade_level, section, subject, quarter)

        students = self.store.fetch_students(grade_level, section)
        student_ids = [str(s.get("id")) for s in students]
        records = (
            self.store.fetch_scores(student_ids, subject, quarter) if student_ids else []
        )

        self.restore(config, students, records)
        return self.config, list(self.scores.values())

    def restore(self, config: CategoryConfig, students: List[dict], records=None):
        """Install already-fetched state (e.g. what the browser is editing)."""
        self.config = config
        self.context = config.key
        self.students = list(students or [])
        roster_ids = {str(s.get("id")) for s in self.students}
        self.scores = {}
        for record in records or []:
            if record.student_id in roster_ids:
                self.scores[record.student_id] = record
        return self

    @property
    def roster_ids(self) -> List[str]:
        return [str(s.get("id")) for s in self.students]

    def _require_context(self):
        if self.config is None:
            raise RuntimeError("No class record context loaded")

    def _record_for(self, student_id: str) -> ScoreRecord:
        record = self.scores.get(student_id)
        if record is None:
            record = ScoreRecord(
                student_id=student_id,
                subject=self.config.subject,
                quarter=self.config.quarter,
            )
            self.scores[student_id] = record
        return record

    @staticmethod
    def _check_item(category: str, item_index) -> int:
        index = coerce_int(item_index)
        if not 1 <= index <= ITEM_LIMITS[category]:
            raise ValueError(
                f"Item {item_index!r} is outside 1..{ITEM_LIMITS[category]} for {category}"
            )
        return index

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------
    def set_score(self, student_id, category, item_index, value) -> int:
        self._require_context()
        category = normalize_category(category)
        index = self._check_item(category, item_index)
        student_id = str(student_id)
        if student_id not in self.roster_ids:
            raise ValueError(f"Student {student_id} is not on this roster")
        score = coerce_int(value)
        self._record_for(student_id).scores(category)[index] = score
        return score

    def set_hps(self, category, item_index, value) -> int:
        self._require_context()
        category = normalize_category(category)
        index = self._check_item(category, item_index)
        hps = coerce_int(value)
        self.config.hps(category)[index] = hps
        return hps

    def set_weight(self, category, value) -> int:
        self._require_context()
        category = normalize_category(category)
        weight = coerce_int(value)
        setattr(self.config, f"weight_{category}", weight)
        return weight

    def bulk_paste(self, anchor_student_id, category, anchor_item_index, grid_text) -> int:
        """Spread a tab/newline separated block of scores across the roster.

        Row 0 lands on the anchor student, each following row on the next
        student in roster order; column 0 lands on the anchor item. Cells
        beyond the category's item limit and rows beyond the roster are
        dropped, blank lines are skipped and non-numeric cells become 0.
        Returns the number of cells written. Never raises on bad input.
        """
        if self.config is None:
            return 0
        try:
            category = normalize_category(category)
        except ValueError:
            return 0
        roster = self.roster_ids
        try:
            start_row = roster.index(str(anchor_student_id))
        except ValueError:
            return 0
        start_col = coerce_int(anchor_item_index)
        limit = ITEM_LIMITS[category]
        if start_col < 1:
            return 0

        text = grid_text if isinstance(grid_text, str) else str(grid_text or "")
        lines = [line for line in _ROW_SPLIT.split(text) if line.strip()]

        written = 0
        for row_offset, line in enumerate(lines):
            row = start_row + row_offset
            if row >= len(roster):
                break
            for col_offset, cell in enumerate(line.split("\t")):
                item = start_col + col_offset
                if item > limit:
                    break
                self._record_for(roster[row]).scores(category)[item] = coerce_int(cell)
                written += 1
        return written

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------
    def compute_roster(self) -> dict:
        """Grade every student in roster order.

        Pure: reads the in-memory state only and may be called on every
        render. Ungraded students (no score record) get quarterly_grade 0 and
        are left out of the class statistics.
        """
        rows = []
        groups = {"M": [], "F": []}
        graded = []
        for position, student in enumerate(self.students, start=1):
            sid = str(student.get("id"))
            grades = calculate_grade(self.scores.get(sid), self.config)
            quarterly = grades["quarterly_grade"]
            sex = "M" if (student.get("sex") or "").upper() == "M" else "F"
            groups[sex].append(sid)
            if quarterly:
                graded.append(quarterly)
            rows.append(
                {
                    "position": position,
                    "student_id": sid,
                    "name": student_display_name(student),
                    "sex": sex,
                    "initial_grade": grades["initial_grade"],
                    "quarterly_grade": quarterly,
                    "categories": grades["categories"],
                    "failing": 0 < quarterly < PASSING_GRADE,
                }
            )

        config = self.config
        return {
            "context": list(self.context) if self.context else None,
            "rows": rows,
            "groups": groups,
            "hps_totals": {
                c: (sum(config.hps(c).values()) if config else 0) for c in CATEGORIES
            },
            "weights": {c: (config.weight(c) if config else 0) for c in CATEGORIES},
            "weight_total": config.weight_total if config else 0,
            "summary": _grade_stats(graded),
        }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def save(self) -> dict:
        """Persist the config and every score record.

        Derived grades are recomputed right before writing. A failing write
        raises PersistenceError naming the stage ("config" or "scores");
        MissingSchemaError passes through unchanged. In-memory edits are kept
        either way so the edit can be retried.
        """
        self._require_context()
        try:
            self.store.upsert_config(self.config)
        except MissingSchemaError:
            raise
        except StoreError as exc:
            logger.error(f"Class record config save failed for {self.context}: {exc}")
            raise PersistenceError("config", str(exc)) from exc

        payload = []
        for record in self.scores.values():
            grades = calculate_grade(record, self.config)
            payload.append(
                replace(
                    record,
                    initial_grade=grades["initial_grade"],
                    quarterly_grade=grades["quarterly_grade"],
                )
            )

        if payload:
            try:
                self.store.upsert_scores(payload)
            except MissingSchemaError:
                raise
            except StoreError as exc:
                logger.error(f"Class record scores save failed for {self.context}: {exc}")
                raise PersistenceError("scores", str(exc)) from exc

        for saved in payload:
            record = self.scores[saved.student_id]
            record.initial_grade = saved.initial_grade
            record.quarterly_grade = saved.quarterly_grade

        logger.info(f"Class record saved for {self.context}: {len(payload)} score records")
        return {"config_saved": True, "scores_saved": len(payload)}
