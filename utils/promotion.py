import math

ACTIONS = {
    "Promoted": "promoted",
    "Conditional": "conditional",
    "Retained": "retained",
}

# (exclusive upper bound, key, label); the first bound the average falls
# under wins, None catches everything from 90 up.
LEARNING_PROGRESS_BANDS = [
    (75, "did_not_meet", "Did Not Meet Expectations (75 below)"),
    (80, "fairly_satisfactory", "Fairly Satisfactory (75-79)"),
    (85, "satisfactory", "Satisfactory (80-84)"),
    (90, "very_satisfactory", "Very Satisfactory (85-89)"),
    (None, "outstanding", "Outstanding (90-100)"),
]


def _empty_counts() -> dict:
    return {"male": 0, "female": 0, "total": 0}


def empty_tally() -> dict:
    tally = {key: _empty_counts() for key in ACTIONS.values()}
    tally["learning_progress"] = {
        key: _empty_counts() for _, key, _ in LEARNING_PROGRESS_BANDS
    }
    return tally


def _bump(counts: dict, sex_key: str):
    counts[sex_key] += 1
    counts["total"] += 1


def sex_key(student: dict) -> str:
    """Tally column for a student; anything other than "M" counts as female."""
    return "male" if (student.get("sex") or "").strip().upper() == "M" else "female"


def parse_general_average(value):
    """Return the general average as a float, or None when blank/non-numeric."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    if math.isnan(number):
        return None
    return number


def learning_progress_band(general_average):
    """Band key for a general average, or None when it is not gradeable.

    0, blank and non-numeric averages are not counted as "did not meet";
    they are left out of every band.
    """
    average = parse_general_average(general_average)
    if average is None or average <= 0:
        return None
    for upper, key, _ in LEARNING_PROGRESS_BANDS:
        if upper is None or average < upper:
            return key
    return None


def aggregate(students, records_by_student_id) -> dict:
    """SF6 summary: promotion status and learning progress tallied by sex.

    students: roster rows carrying at least "id" and "sex".
    records_by_student_id: {student_id: {"general_average", "action_taken", ...}}

    Students without a recognised action_taken are in none of the promotion
    counters; students without a numeric, non-zero general average are in
    none of the progress bands. Inputs are not modified.
    """
    tally = empty_tally()
    records = {str(k): v for k, v in (records_by_student_id or {}).items()}

    for student in students or []:
        record = records.get(str(student.get("id"))) or {}
        column = sex_key(student)

        action = ACTIONS.get(record.get("action_taken") or "")
        if action:
            _bump(tally[action], column)

        band = learning_progress_band(record.get("general_average"))
        if band:
            _bump(tally["learning_progress"][band], column)

    return tally


def aggregate_by_grade_level(students, records_by_student_id) -> dict:
    """Run aggregate() separately for each grade level found in the roster."""
    by_grade = {}
    for student in students or []:
        by_grade.setdefault(student.get("grade_level") or "", []).append(student)
    return {
        grade_level: aggregate(members, records_by_student_id)
        for grade_level, members in by_grade.items()
    }
