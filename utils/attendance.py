import calendar
from datetime import date

ABSENT = "x"
TARDY = "T"
PRESENT = ""

# Clicking a day cycles: unmarked -> absent -> tardy -> unmarked ...
# A present day has no key at all.
_NEXT_STATUS = {None: ABSENT, PRESENT: ABSENT, ABSENT: TARDY, TARDY: None}

# Report cards assume a fixed number of school days per month
SCHOOL_DAYS_PER_MONTH = 20
MAX_DAYS = 31


def parse_month_key(month_key: str):
    """Split "YYYY-MM" into (year, month); raises ValueError when malformed."""
    try:
        year_text, month_text = str(month_key).split("-")
        year, month = int(year_text), int(month_text)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid month key: {month_key!r}")
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month key: {month_key!r}")
    return year, month


def day_status(month_key: str, day: int) -> dict:
    year, month = parse_month_key(month_key)
    days_in_month = calendar.monthrange(year, month)[1]
    if not 1 <= day <= days_in_month:
        return {"day": day, "is_weekend": False, "is_invalid": True}
    is_weekend = date(year, month, day).weekday() >= 5
    return {"day": day, "is_weekend": is_weekend, "is_invalid": False}


def month_calendar(month_key: str) -> list:
    """Status of columns 1..31 for the SF2 grid."""
    return [day_status(month_key, day) for day in range(1, MAX_DAYS + 1)]


def is_school_day(month_key: str, day: int) -> bool:
    status = day_status(month_key, day)
    return not (status["is_weekend"] or status["is_invalid"])


def next_status(current):
    return _NEXT_STATUS.get(current, ABSENT)


def toggle_day(days: dict, month_key: str, day) -> dict:
    """Return a copy of days with the given day advanced to its next status.

    Advancing past tardy removes the day's key.
    """
    day = int(day)
    if not is_school_day(month_key, day):
        raise ValueError(f"Day {day} of {month_key} is not a school day")
    updated = dict(days or {})
    status = next_status(updated.get(str(day)))
    if status is None:
        updated.pop(str(day), None)
    else:
        updated[str(day)] = status
    return updated


def clean_days(month_key: str, days: dict) -> dict:
    """Drop entries for weekends, non-existent dates, unknown marks and present days."""
    cleaned = {}
    for key, status in (days or {}).items():
        try:
            day = int(key)
        except (TypeError, ValueError):
            continue
        if status not in (ABSENT, TARDY) or not is_school_day(month_key, day):
            continue
        cleaned[str(day)] = status
    return cleaned


def count_marks(days: dict) -> dict:
    values = list((days or {}).values())
    return {"absent": values.count(ABSENT), "tardy": values.count(TARDY)}


def monthly_summary(records) -> dict:
    """SF9 attendance summary keyed by two-digit month ("01".."12").

    Days present is SCHOOL_DAYS_PER_MONTH minus absences, not a calendar
    count. Months without a record stay at zero.
    """
    summary = {
        f"{month:02d}": {"present": 0, "absent": 0, "tardy": 0}
        for month in range(1, 13)
    }
    for record in records or []:
        try:
            _, month = parse_month_key(record.get("month_key"))
        except ValueError:
            continue
        marks = count_marks(record.get("attendance_data"))
        summary[f"{month:02d}"] = {
            "present": SCHOOL_DAYS_PER_MONTH - marks["absent"],
            "absent": marks["absent"],
            "tardy": marks["tardy"],
        }
    return summary
