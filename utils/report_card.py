from utils.attendance import monthly_summary

SUBJECTS = [
    "English",
    "Mathematics",
    "Science",
    "Filipino",
    "Araling Panlipunan",
    "ESP/Values Education",
    "MAPEH",
    "Technology and Livelihood Education",
]

CORE_VALUES = [
    (
        "Maka-Diyos",
        [
            "Expresses one's spiritual beliefs while respecting the spiritual beliefs of others.",
            "Shows adherence to ethical acts.",
        ],
    ),
    (
        "Makatao",
        [
            "Is sensitive to individual, social, and cultural differences.",
            "Demonstrates contributions toward solidarity.",
        ],
    ),
    (
        "Makakalikasan",
        [
            "Cares for the environment and utilizes resources wisely, judiciously, and economically.",
        ],
    ),
    (
        "Makabansa",
        [
            "Demonstrates pride in being a Filipino; exercises the rights and responsibilities of a Filipino citizen.",
            "Demonstrates appropriate behavior in carrying out activities in the school, community, and country.",
        ],
    ),
]


def initialize_subject_grades(student_id, rows) -> list:
    """One grade row per subject, in SUBJECTS order, filling gaps with blanks."""
    existing = {row.get("subject"): row for row in rows or []}
    grades = []
    for subject in SUBJECTS:
        row = existing.get(subject)
        if row is None:
            row = {
                "student_id": student_id,
                "subject": subject,
                "quarter_1": "",
                "quarter_2": "",
                "quarter_3": "",
                "quarter_4": "",
                "final_grade": "",
                "remarks": "",
            }
        grades.append(row)
    return grades


def initialize_learner_values(student_id, rows) -> list:
    """One row per core-value behaviour statement, keyed by the statement text."""
    existing = {row.get("behavior_statement"): row for row in rows or []}
    values = []
    for area, statements in CORE_VALUES:
        for statement in statements:
            row = existing.get(statement)
            if row is None:
                row = {
                    "student_id": student_id,
                    "core_value": area,
                    "behavior_statement": statement,
                    "q1": "",
                    "q2": "",
                    "q3": "",
                    "q4": "",
                }
            values.append(row)
    return values


def build_report_card(student: dict, grade_rows, value_rows, attendance_rows) -> dict:
    student_id = student.get("id")
    return {
        "student": student,
        "grades": initialize_subject_grades(student_id, grade_rows),
        "values": initialize_learner_values(student_id, value_rows),
        "attendance": monthly_summary(attendance_rows),
    }


QUARTER_FIELDS = ("quarter_1", "quarter_2", "quarter_3", "quarter_4", "final_grade")
VALUE_FIELDS = ("q1", "q2", "q3", "q4")
# Always, Sometimes, Rarely, Not Observed
MARKINGS = ("AO", "SO", "RO", "NO")

_STATEMENT_AREAS = {
    statement: area for area, statements in CORE_VALUES for statement in statements
}


def _grade_value(value, field, subject):
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{subject} {field} must be a number, got {value!r}")


def clean_subject_grades(student_id, rows) -> list:
    """Validate posted SF9 grade rows; blanks become NULL, unknown subjects are rejected."""
    cleaned = []
    for row in rows or []:
        subject = row.get("subject")
        if subject not in SUBJECTS:
            raise ValueError(f"Unknown subject: {subject!r}")
        entry = {"student_id": student_id, "subject": subject}
        for field in QUARTER_FIELDS:
            entry[field] = _grade_value(row.get(field), field, subject)
        entry["remarks"] = (row.get("remarks") or "").strip() or None
        cleaned.append(entry)
    return cleaned


def clean_learner_values(student_id, rows) -> list:
    """Validate posted core-value rows; the core value is taken from the statement."""
    cleaned = []
    for row in rows or []:
        statement = row.get("behavior_statement")
        area = _STATEMENT_AREAS.get(statement)
        if area is None:
            raise ValueError(f"Unknown behavior statement: {statement!r}")
        entry = {"student_id": student_id, "core_value": area, "behavior_statement": statement}
        for field in VALUE_FIELDS:
            mark = (row.get(field) or "").strip().upper() or None
            if mark is not None and mark not in MARKINGS:
                raise ValueError(f"Invalid marking {mark!r}; expected one of {', '.join(MARKINGS)}")
            entry[field] = mark
        cleaned.append(entry)
    return cleaned
