import logging
from datetime import date

from flask import Blueprint, current_app, jsonify, request, session

from utils.attendance import clean_days, count_marks, month_calendar, parse_month_key, toggle_day
from utils.auth_utils import ADMIN, HEAD_TEACHER, current_role, login_required
from utils.errors import StoreError, store_error_response
from utils.promotion import ACTIONS, aggregate, aggregate_by_grade_level, parse_general_average
from utils.report_card import build_report_card, clean_learner_values, clean_subject_grades

logger = logging.getLogger(__name__)


school_forms_bp = Blueprint("school_forms", __name__)

# SF3 remarks for books that did not come back in good order
BOOK_REMARKS = ("Lost", "Unreturned", "Damaged")


def _store():
    return current_app.extensions["record_store"]


def _resolve_section():
    """Return ({"grade_level", "section_name"}, None) or (None, error response).

    Advisers always get their own section. Admin picks any section through the
    grade_level/section query arguments.
    """
    if current_role() == ADMIN:
        grade_level = (request.args.get("grade_level") or "").strip()
        section = (request.args.get("section") or "").strip()
        if not (grade_level and section):
            return None, (jsonify({"error": "grade_level and section are required"}), 400)
        return {"grade_level": grade_level, "section_name": section}, None

    advisory = _store().fetch_adviser_section(session.get("user_id"))
    if not advisory:
        return None, (jsonify({"error": "not_an_adviser"}), 403)
    return advisory, None


def _roster(section: dict):
    return _store().fetch_students(section["grade_level"], section["section_name"])


def _section_payload(section: dict) -> dict:
    return {"grade_level": section["grade_level"], "section": section["section_name"]}


def _parse_date(value) -> date:
    """ISO "YYYY-MM-DD", or today when blank."""
    if not value:
        return date.today()
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValueError(f"Invalid date: {value!r}")


# GET /api/sf1/students: School Form 1 roster of the adviser's section
@school_forms_bp.route("/api/sf1/students", methods=["GET"], endpoint="sf1_students")
@login_required
def sf1_students():
    try:
        section, error = _resolve_section()
        if error:
            return error
        students = _roster(section)
        return jsonify({"section": _section_payload(section), "students": students})
    except StoreError as e:
        return store_error_response(e)
    except Exception as e:
        logger.error(f"Error loading SF1 roster: {str(e)}")
        return jsonify({"error": "Failed to load students"}), 500


# GET /api/sf2/attendance?month=YYYY-MM: monthly grid with per-student counts
@school_forms_bp.route("/api/sf2/attendance", methods=["GET"], endpoint="sf2_get_attendance")
@login_required
def sf2_get_attendance():
    month_key = request.args.get("month") or ""
    try:
        parse_month_key(month_key)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    try:
        section, error = _resolve_section()
        if error:
            return error
        students = _roster(section)
        stored = _store().fetch_attendance([s["id"] for s in students], month_key)

        records = {}
        for student in students:
            entry = stored.get(student["id"]) or {}
            days = clean_days(month_key, entry.get("attendance_data"))
            records[student["id"]] = {
                "attendance_data": days,
                "remarks": entry.get("remarks") or "",
                **count_marks(days),
            }
        return jsonify(
            {
                "section": _section_payload(section),
                "month": month_key,
                "calendar": month_calendar(month_key),
                "students": students,
                "records": records,
            }
        )
    except StoreError as e:
        return store_error_response(e)
    except Exception as e:
        logger.error(f"Error loading SF2 attendance for {month_key}: {str(e)}")
        return jsonify({"error": "Failed to load attendance"}), 500


# POST /api/sf2/attendance/toggle: advance one day to its next mark (not persisted)
@school_forms_bp.route(
    "/api/sf2/attendance/toggle", methods=["POST"], endpoint="sf2_toggle_day"
)
@login_required
def sf2_toggle_day():
    data = request.get_json(silent=True) or {}
    month_key = data.get("month") or ""
    try:
        days = toggle_day(data.get("attendance_data") or {}, month_key, data.get("day"))
    except (TypeError, ValueError) as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"attendance_data": days, **count_marks(days)})


# POST /api/sf2/attendance: save a month of attendance for the section
@school_forms_bp.route("/api/sf2/attendance", methods=["POST"], endpoint="sf2_save_attendance")
@login_required
def sf2_save_attendance():
    data = request.get_json(silent=True) or {}
    month_key = data.get("month") or ""
    try:
        parse_month_key(month_key)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    try:
        section, error = _resolve_section()
        if error:
            return error
        roster_ids = {s["id"] for s in _roster(section)}
        rows = []
        for record in data.get("records") or []:
            if not isinstance(record, dict):
                continue
            student_id = str(record.get("student_id"))
            if student_id not in roster_ids:
                continue
            rows.append(
                {
                    "student_id": student_id,
                    "month_key": month_key,
                    "attendance_data": clean_days(month_key, record.get("attendance_data")),
                    "remarks": record.get("remarks") or "",
                }
            )
        saved = _store().upsert_attendance(rows)
        logger.info(f"Saved SF2 attendance for {saved} students ({month_key})")
        return jsonify({"success": True, "saved": saved})
    except StoreError as e:
        return store_error_response(e)
    except Exception as e:
        logger.error(f"Error saving SF2 attendance for {month_key}: {str(e)}")
        return jsonify({"error": "Failed to save attendance"}), 500


# GET /api/sf5/academic-records: general averages and actions taken
@school_forms_bp.route(
    "/api/sf5/academic-records", methods=["GET"], endpoint="sf5_get_records"
)
@login_required
def sf5_get_records():
    try:
        section, error = _resolve_section()
        if error:
            return error
        students = _roster(section)
        records = _store().fetch_academic_records([s["id"] for s in students])
        return jsonify(
            {"section": _section_payload(section), "students": students, "records": records}
        )
    except StoreError as e:
        return store_error_response(e)
    except Exception as e:
        logger.error(f"Error loading SF5 records: {str(e)}")
        return jsonify({"error": "Failed to load academic records"}), 500


# POST /api/sf5/academic-records: upsert by student
@school_forms_bp.route(
    "/api/sf5/academic-records", methods=["POST"], endpoint="sf5_save_records"
)
@login_required
def sf5_save_records():
    data = request.get_json(silent=True) or {}
    posted = [r for r in data.get("records") or [] if isinstance(r, dict)]
    for record in posted:
        action = record.get("action_taken") or None
        if action is not None and action not in ACTIONS:
            return jsonify({"error": f"Invalid action_taken: {action}"}), 400

    try:
        section, error = _resolve_section()
        if error:
            return error
        roster_ids = {s["id"] for s in _roster(section)}
        rows = [
            {
                "student_id": str(r.get("student_id")),
                "general_average": parse_general_average(r.get("general_average")),
                "action_taken": r.get("action_taken") or None,
                "incomplete_subjects": r.get("incomplete_subjects") or None,
            }
            for r in posted
            if str(r.get("student_id")) in roster_ids
        ]
        saved = _store().upsert_academic_records(rows)
        logger.info(f"Saved {saved} SF5 academic records")
        return jsonify({"success": True, "saved": saved})
    except StoreError as e:
        return store_error_response(e)
    except Exception as e:
        logger.error(f"Error saving SF5 records: {str(e)}")
        return jsonify({"error": "Failed to save academic records"}), 500


# GET /api/sf6/summary: promotion and learning progress tallies by sex
@school_forms_bp.route("/api/sf6/summary", methods=["GET"], endpoint="sf6_summary")
@login_required
def sf6_summary():
    try:
        # Head Teacher and Admin may summarize a whole grade level
        scope_grade = (request.args.get("grade_level") or "").strip()
        if (
            request.args.get("scope") == "grade_level"
            and current_role() in (ADMIN, HEAD_TEACHER)
            and scope_grade
        ):
            students = _store().fetch_students(scope_grade)
            records = _store().fetch_academic_records([s["id"] for s in students])
            return jsonify(
                {
                    "grade_level": scope_grade,
                    "summary": aggregate(students, records),
                    "by_grade_level": aggregate_by_grade_level(students, records),
                }
            )

        section, error = _resolve_section()
        if error:
            return error
        students = _roster(section)
        records = _store().fetch_academic_records([s["id"] for s in students])
        return jsonify(
            {"section": _section_payload(section), "summary": aggregate(students, records)}
        )
    except StoreError as e:
        return store_error_response(e)
    except Exception as e:
        logger.error(f"Error building SF6 summary: {str(e)}")
        return jsonify({"error": "Failed to build summary"}), 500


def _deny_other_section(student: dict):
    """403 unless the user is Admin or advises the student's section."""
    if current_role() == ADMIN:
        return None
    advisory = _store().fetch_adviser_section(session.get("user_id"))
    if not advisory or (
        advisory["grade_level"] != student.get("grade_level")
        or advisory["section_name"] != student.get("section")
    ):
        return jsonify({"error": "access_denied"}), 403
    return None


# GET /api/sf9/<student_id>: report card data for one learner
@school_forms_bp.route("/api/sf9/<student_id>", methods=["GET"], endpoint="sf9_report_card")
@login_required
def sf9_report_card(student_id):
    try:
        store = _store()
        student = store.fetch_student(student_id)
        if not student:
            return jsonify({"error": "Student not found"}), 404
        denied = _deny_other_section(student)
        if denied:
            return denied

        card = build_report_card(
            student,
            store.fetch_subject_grades(student["id"]),
            store.fetch_learner_values(student["id"]),
            store.fetch_attendance_history(student["id"]),
        )
        return jsonify(card)
    except StoreError as e:
        return store_error_response(e)
    except Exception as e:
        logger.error(f"Error building SF9 for student {student_id}: {str(e)}")
        return jsonify({"error": "Failed to build report card"}), 500


# POST /api/sf9/<student_id>: upsert subject grades and observed values
@school_forms_bp.route("/api/sf9/<student_id>", methods=["POST"], endpoint="sf9_save")
@login_required
def sf9_save(student_id):
    data = request.get_json(silent=True) or {}
    grade_rows = [r for r in data.get("grades") or [] if isinstance(r, dict)]
    value_rows = [r for r in data.get("values") or [] if isinstance(r, dict)]

    try:
        store = _store()
        student = store.fetch_student(student_id)
        if not student:
            return jsonify({"error": "Student not found"}), 404
        denied = _deny_other_section(student)
        if denied:
            return denied

        try:
            grades = clean_subject_grades(student["id"], grade_rows)
            values = clean_learner_values(student["id"], value_rows)
        except ValueError as e:
            return jsonify({"error": str(e)}), 400

        saved_grades = store.upsert_subject_grades(grades)
        saved_values = store.upsert_learner_values(values)
        logger.info(
            f"Saved SF9 for student {student['id']}: {saved_grades} grades, {saved_values} values"
        )
        return jsonify({"success": True, "grades_saved": saved_grades, "values_saved": saved_values})
    except StoreError as e:
        return store_error_response(e)
    except Exception as e:
        logger.error(f"Error saving SF9 for student {student_id}: {str(e)}")
        return jsonify({"error": "Failed to save report card"}), 500


# GET /api/sf3/books: textbooks issued to the section, grouped by student
@school_forms_bp.route("/api/sf3/books", methods=["GET"], endpoint="sf3_get_books")
@login_required
def sf3_get_books():
    try:
        section, error = _resolve_section()
        if error:
            return error
        students = _roster(section)
        books = _store().fetch_books([s["id"] for s in students])
        return jsonify(
            {"section": _section_payload(section), "students": students, "books": books}
        )
    except StoreError as e:
        return store_error_response(e)
    except Exception as e:
        logger.error(f"Error loading SF3 books: {str(e)}")
        return jsonify({"error": "Failed to load books"}), 500


# POST /api/sf3/books: issue a textbook to a learner of the section
@school_forms_bp.route("/api/sf3/books", methods=["POST"], endpoint="sf3_issue_book")
@login_required
def sf3_issue_book():
    data = request.get_json(silent=True) or {}
    student_id = str(data.get("student_id") or "")
    book_title = str(data.get("book_title") or "").strip()
    subject = str(data.get("subject") or "").strip() or None
    if not student_id or not book_title:
        return jsonify({"error": "student_id and book_title are required"}), 400
    try:
        date_issued = _parse_date(data.get("date_issued"))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    try:
        section, error = _resolve_section()
        if error:
            return error
        if student_id not in {s["id"] for s in _roster(section)}:
            return jsonify({"error": "Student is not in this section"}), 404
        book_id = _store().issue_book(student_id, book_title, subject, date_issued)
        logger.info(f"Issued '{book_title}' to student {student_id}")
        return (
            jsonify(
                {
                    "success": True,
                    "book": {
                        "id": book_id,
                        "student_id": student_id,
                        "book_title": book_title,
                        "subject": subject,
                        "date_issued": date_issued.isoformat(),
                        "date_returned": None,
                    },
                }
            ),
            201,
        )
    except StoreError as e:
        return store_error_response(e)
    except Exception as e:
        logger.error(f"Error issuing book to student {student_id}: {str(e)}")
        return jsonify({"error": "Failed to issue book"}), 500


# POST /api/sf3/books/<book_id>/return: stamp the return date
@school_forms_bp.route(
    "/api/sf3/books/<int:book_id>/return", methods=["POST"], endpoint="sf3_return_book"
)
@login_required
def sf3_return_book(book_id):
    data = request.get_json(silent=True) or {}
    remarks = data.get("remarks") or None
    if remarks is not None and remarks not in BOOK_REMARKS:
        return jsonify({"error": f"Invalid remarks: {remarks}"}), 400
    try:
        date_returned = _parse_date(data.get("date_returned"))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    try:
        section, error = _resolve_section()
        if error:
            return error
        store = _store()
        book = store.fetch_book(book_id)
        if not book or book["student_id"] not in {s["id"] for s in _roster(section)}:
            return jsonify({"error": "Book not found"}), 404
        if not store.return_book(book_id, date_returned, remarks):
            return jsonify({"error": "Book was already returned"}), 409
        logger.info(f"Book {book_id} returned by student {book['student_id']}")
        return jsonify(
            {"success": True, "book_id": book_id, "date_returned": date_returned.isoformat()}
        )
    except StoreError as e:
        return store_error_response(e)
    except Exception as e:
        logger.error(f"Error returning book {book_id}: {str(e)}")
        return jsonify({"error": "Failed to return book"}), 500
