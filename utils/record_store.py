import json
import logging
from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional

import pymysql

from utils.errors import DuplicateEntryError, MissingSchemaError, StoreError
from utils.records import CategoryConfig, ScoreRecord

logger = logging.getLogger(__name__)

# MySQL "Table '%s.%s' doesn't exist"
ER_NO_SUCH_TABLE = 1146
# MySQL "Duplicate entry '%s' for key %d"
ER_DUP_ENTRY = 1062

STUDENT_ORDER = "ORDER BY sex DESC, last_name ASC, first_name ASC"


def _error_code(exc):
    code = exc.args[0] if exc.args else None
    return code if isinstance(code, int) else None


def _is_missing_table(exc) -> bool:
    # Other "does not exist" errors (definer, routine) carry their own codes
    code = _error_code(exc)
    if code is not None:
        return code == ER_NO_SUCH_TABLE
    message = str(exc)
    return "doesn't exist" in message or "does not exist" in message


def _translate_error(exc, table: str) -> StoreError:
    if _is_missing_table(exc):
        logger.error(f"Table '{table}' is not provisioned: {exc}")
        return MissingSchemaError(table, str(exc))
    if _error_code(exc) == ER_DUP_ENTRY:
        logger.warning(f"Duplicate entry in '{table}': {exc}")
        return DuplicateEntryError(table, str(exc))
    logger.error(f"Database error on '{table}': {exc}")
    return StoreError(str(exc))


def _load_json(raw) -> dict:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return value if isinstance(value, dict) else {}


def _placeholders(values) -> str:
    return ", ".join(["%s"] * len(values))


class RecordStore:
    """PyMySQL-backed persistence for class records and school forms.

    Every call takes a connection from get_connection (the thread-local
    connection in production). Reads return plain dicts or the records
    dataclasses; writes are upserts keyed by the tables' unique constraints.
    Database failures surface as MissingSchemaError when the table is not
    provisioned, DuplicateEntryError on a unique-key collision and
    StoreError otherwise.
    """

    def __init__(self, get_connection):
        self._get_connection = get_connection

    @contextmanager
    def _cursor(self, table: str, write: bool = False):
        conn = None
        try:
            conn = self._get_connection()
            with conn.cursor() as cursor:
                yield cursor
            if write:
                conn.commit()
        except Exception as exc:
            if write and conn is not None:
                self._rollback(conn)
            if isinstance(exc, pymysql.MySQLError):
                raise _translate_error(exc, table) from exc
            raise

    @staticmethod
    def _rollback(conn):
        try:
            conn.rollback()
        except Exception as e:
            logger.warning(f"Rollback failed: {e}")

    # ------------------------------------------------------------------
    # Class record
    # ------------------------------------------------------------------
    def fetch_config(self, grade_level, section, subject, quarter) -> Optional[CategoryConfig]:
        with self._cursor("class_record_meta") as cursor:
            cursor.execute(
                """
                SELECT id, grade_level, section, subject, quarter,
                       hps_ww, hps_pt, hps_qa, weight_ww, weight_pt, weight_qa
                FROM class_record_meta
                WHERE grade_level = %s AND section = %s AND subject = %s AND quarter = %s
                LIMIT 1
                """,
                (grade_level, section, subject, int(quarter)),
            )
            row = cursor.fetchone()
        return CategoryConfig.from_row(row) if row else None

    def fetch_scores(self, student_ids: Iterable, subject, quarter) -> List[ScoreRecord]:
        ids = [str(sid) for sid in student_ids or []]
        if not ids:
            return []
        with self._cursor("class_record_scores") as cursor:
            cursor.execute(
                f"""
                SELECT id, student_id, subject, quarter, scores_ww, scores_pt, scores_qa,
                       initial_grade, quarterly_grade
                FROM class_record_scores
                WHERE subject = %s AND quarter = %s AND student_id IN ({_placeholders(ids)})
                """,
                (subject, int(quarter), *ids),
            )
            rows = cursor.fetchall() or []
        return [ScoreRecord.from_row(row) for row in rows]

    def upsert_config(self, config: CategoryConfig):
        row = config.to_row()
        with self._cursor("class_record_meta", write=True) as cursor:
            cursor.execute(
                """
                INSERT INTO class_record_meta
                    (grade_level, section, subject, quarter,
                     hps_ww, hps_pt, hps_qa, weight_ww, weight_pt, weight_qa)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON DUPLICATE KEY UPDATE
                    hps_ww = VALUES(hps_ww),
                    hps_pt = VALUES(hps_pt),
                    hps_qa = VALUES(hps_qa),
                    weight_ww = VALUES(weight_ww),
                    weight_pt = VALUES(weight_pt),
                    weight_qa = VALUES(weight_qa)
                """,
                (
                    row["grade_level"],
                    row["section"],
                    row["subject"],
                    row["quarter"],
                    json.dumps(row["hps_ww"]),
                    json.dumps(row["hps_pt"]),
                    json.dumps(row["hps_qa"]),
                    row["weight_ww"],
                    row["weight_pt"],
                    row["weight_qa"],
                ),
            )

    def upsert_scores(self, records: Iterable[ScoreRecord]) -> int:
        params = []
        for record in records or []:
            row = record.to_row()
            params.append(
                (
                    row["student_id"],
                    row["subject"],
                    row["quarter"],
                    json.dumps(row["scores_ww"]),
                    json.dumps(row["scores_pt"]),
                    json.dumps(row["scores_qa"]),
                    row["initial_grade"],
                    row["quarterly_grade"],
                )
            )
        if not params:
            return 0
        with self._cursor("class_record_scores", write=True) as cursor:
            cursor.executemany(
                """
                INSERT INTO class_record_scores
                    (student_id, subject, quarter, scores_ww, scores_pt, scores_qa,
                     initial_grade, quarterly_grade)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                ON DUPLICATE KEY UPDATE
                    scores_ww = VALUES(scores_ww),
                    scores_pt = VALUES(scores_pt),
                    scores_qa = VALUES(scores_qa),
                    initial_grade = VALUES(initial_grade),
                    quarterly_grade = VALUES(quarterly_grade)
                """,
                params,
            )
        return len(params)

    # ------------------------------------------------------------------
    # Roster and sections
    # ------------------------------------------------------------------
    def fetch_students(self, grade_level, section=None) -> List[dict]:
        """Roster in canonical order: sex descending (M before F), then last name."""
        query = "SELECT * FROM students WHERE grade_level = %s"
        params = [grade_level]
        if section:
            query += " AND section = %s"
            params.append(section)
        with self._cursor("students") as cursor:
            cursor.execute(f"{query} {STUDENT_ORDER}", tuple(params))
            rows = cursor.fetchall() or []
        for row in rows:
            row["id"] = str(row.get("id"))
        return list(rows)

    def fetch_student(self, student_id) -> Optional[dict]:
        with self._cursor("students") as cursor:
            cursor.execute("SELECT * FROM students WHERE id = %s", (str(student_id),))
            row = cursor.fetchone()
        if row:
            row["id"] = str(row.get("id"))
        return row

    def fetch_adviser_section(self, user_id) -> Optional[dict]:
        """The section a user advises, as {"id", "grade_level", "section_name"}."""
        with self._cursor("sections") as cursor:
            cursor.execute(
                """
                SELECT id, grade_level, section_name
                FROM sections
                WHERE adviser_id = %s
                ORDER BY grade_level, section_name
                LIMIT 1
                """,
                (user_id,),
            )
            return cursor.fetchone()

    def fetch_sections(self) -> List[dict]:
        """Every section with its adviser's name and enrolment count."""
        with self._cursor("sections") as cursor:
            cursor.execute(
                """
                SELECT s.id, s.grade_level, s.section_name, s.adviser_id,
                       CONCAT(p.last_name, ', ', p.first_name) AS adviser_name,
                       (SELECT COUNT(*) FROM students st
                        WHERE st.grade_level = s.grade_level
                          AND st.section = s.section_name) AS student_count
                FROM sections s
                LEFT JOIN profiles p ON p.id = s.adviser_id
                ORDER BY s.grade_level, s.section_name
                """
            )
            return list(cursor.fetchall() or [])

    def can_grade(self, user_id, grade_level, section, subject) -> bool:
        """True when the user advises the section or is assigned the subject there."""
        with self._cursor("section_assignments") as cursor:
            cursor.execute(
                """
                SELECT 1
                FROM sections s
                LEFT JOIN section_assignments sa
                       ON sa.section_id = s.id AND sa.subject = %s AND sa.teacher_id = %s
                WHERE s.grade_level = %s AND s.section_name = %s
                  AND (s.adviser_id = %s OR sa.id IS NOT NULL)
                LIMIT 1
                """,
                (subject, user_id, grade_level, section, user_id),
            )
            return cursor.fetchone() is not None

    def fetch_section(self, section_id) -> Optional[dict]:
        with self._cursor("sections") as cursor:
            cursor.execute(
                "SELECT id, grade_level, section_name, adviser_id FROM sections WHERE id = %s",
                (str(section_id),),
            )
            return cursor.fetchone()

    def create_section(self, section_id, grade_level, section_name, adviser_id=None):
        with self._cursor("sections", write=True) as cursor:
            cursor.execute(
                """
                INSERT INTO sections (id, grade_level, section_name, adviser_id)
                VALUES (%s, %s, %s, %s)
                """,
                (str(section_id), grade_level, section_name, adviser_id),
            )

    def update_section(self, section_id, grade_level, section_name) -> int:
        """Rename a section and move its enrolled students along with it.

        Returns the number of students moved.
        """
        with self._cursor("sections", write=True) as cursor:
            cursor.execute(
                "SELECT grade_level, section_name FROM sections WHERE id = %s",
                (str(section_id),),
            )
            current = cursor.fetchone()
            if not current:
                return 0
            cursor.execute(
                "UPDATE sections SET grade_level = %s, section_name = %s WHERE id = %s",
                (grade_level, section_name, str(section_id)),
            )
            cursor.execute(
                """
                UPDATE students SET grade_level = %s, section = %s
                WHERE grade_level = %s AND section = %s
                """,
                (grade_level, section_name, current["grade_level"], current["section_name"]),
            )
            return cursor.rowcount or 0

    def set_adviser(self, section_id, adviser_id):
        """Assign an adviser, or clear it when adviser_id is None."""
        with self._cursor("sections", write=True) as cursor:
            cursor.execute(
                "UPDATE sections SET adviser_id = %s WHERE id = %s",
                (adviser_id, str(section_id)),
            )

    def fetch_section_assignments(self, section_id) -> Dict[str, str]:
        """{subject: teacher_id} for one section."""
        with self._cursor("section_assignments") as cursor:
            cursor.execute(
                "SELECT subject, teacher_id FROM section_assignments WHERE section_id = %s",
                (str(section_id),),
            )
            rows = cursor.fetchall() or []
        return {row["subject"]: row["teacher_id"] for row in rows}

    def assign_subject_teacher(self, section_id, subject, teacher_id):
        """Set the teacher of a subject in a section; a None teacher removes the assignment."""
        with self._cursor("section_assignments", write=True) as cursor:
            if teacher_id:
                cursor.execute(
                    """
                    INSERT INTO section_assignments (section_id, subject, teacher_id)
                    VALUES (%s, %s, %s)
                    ON DUPLICATE KEY UPDATE teacher_id = VALUES(teacher_id)
                    """,
                    (str(section_id), subject, teacher_id),
                )
            else:
                cursor.execute(
                    "DELETE FROM section_assignments WHERE section_id = %s AND subject = %s",
                    (str(section_id), subject),
                )

    # ------------------------------------------------------------------
    # SF5 / SF6
    # ------------------------------------------------------------------
    def fetch_academic_records(self, student_ids: Iterable) -> Dict[str, dict]:
        ids = [str(sid) for sid in student_ids or []]
        if not ids:
            return {}
        with self._cursor("student_academic_records") as cursor:
            cursor.execute(
                f"""
                SELECT student_id, general_average, action_taken, incomplete_subjects
                FROM student_academic_records
                WHERE student_id IN ({_placeholders(ids)})
                """,
                tuple(ids),
            )
            rows = cursor.fetchall() or []
        return {str(row["student_id"]): row for row in rows}

    def upsert_academic_records(self, records: Iterable[dict]) -> int:
        params = [
            (
                str(r.get("student_id")),
                r.get("general_average"),
                r.get("action_taken"),
                r.get("incomplete_subjects"),
            )
            for r in records or []
        ]
        if not params:
            return 0
        with self._cursor("student_academic_records", write=True) as cursor:
            cursor.executemany(
                """
                INSERT INTO student_academic_records
                    (student_id, general_average, action_taken, incomplete_subjects)
                VALUES (%s, %s, %s, %s)
                ON DUPLICATE KEY UPDATE
                    general_average = VALUES(general_average),
                    action_taken = VALUES(action_taken),
                    incomplete_subjects = VALUES(incomplete_subjects)
                """,
                params,
            )
        return len(params)

    # ------------------------------------------------------------------
    # SF2 / SF9
    # ------------------------------------------------------------------
    def fetch_attendance(self, student_ids: Iterable, month_key: str) -> Dict[str, dict]:
        """{student_id: {"attendance_data": {...}, "remarks": ...}} for one month."""
        ids = [str(sid) for sid in student_ids or []]
        if not ids:
            return {}
        with self._cursor("attendance_records") as cursor:
            cursor.execute(
                f"""
                SELECT student_id, month_key, attendance_data, remarks
                FROM attendance_records
                WHERE month_key = %s AND student_id IN ({_placeholders(ids)})
                """,
                (month_key, *ids),
            )
            rows = cursor.fetchall() or []
        return {
            str(row["student_id"]): {
                "attendance_data": _load_json(row.get("attendance_data")),
                "remarks": row.get("remarks") or "",
            }
            for row in rows
        }

    def fetch_attendance_history(self, student_id) -> List[dict]:
        with self._cursor("attendance_records") as cursor:
            cursor.execute(
                """
                SELECT month_key, attendance_data
                FROM attendance_records
                WHERE student_id = %s
                ORDER BY month_key
                """,
                (str(student_id),),
            )
            rows = cursor.fetchall() or []
        return [
            {
                "month_key": row.get("month_key"),
                "attendance_data": _load_json(row.get("attendance_data")),
            }
            for row in rows
        ]

    def upsert_attendance(self, records: Iterable[dict]) -> int:
        params = [
            (
                str(r.get("student_id")),
                r.get("month_key"),
                json.dumps(r.get("attendance_data") or {}),
                r.get("remarks") or "",
            )
            for r in records or []
        ]
        if not params:
            return 0
        with self._cursor("attendance_records", write=True) as cursor:
            cursor.executemany(
                """
                INSERT INTO attendance_records (student_id, month_key, attendance_data, remarks)
                VALUES (%s, %s, %s, %s)
                ON DUPLICATE KEY UPDATE
                    attendance_data = VALUES(attendance_data),
                    remarks = VALUES(remarks)
                """,
                params,
            )
        return len(params)

    def fetch_subject_grades(self, student_id) -> List[dict]:
        with self._cursor("subject_grades") as cursor:
            cursor.execute(
                """
                SELECT student_id, subject, quarter_1, quarter_2, quarter_3, quarter_4,
                       final_grade, remarks
                FROM subject_grades
                WHERE student_id = %s
                """,
                (str(student_id),),
            )
            return list(cursor.fetchall() or [])

    def fetch_learner_values(self, student_id) -> List[dict]:
        with self._cursor("learner_values") as cursor:
            cursor.execute(
                """
                SELECT student_id, core_value, behavior_statement, q1, q2, q3, q4
                FROM learner_values
                WHERE student_id = %s
                """,
                (str(student_id),),
            )
            return list(cursor.fetchall() or [])

    def upsert_subject_grades(self, rows: Iterable[dict]) -> int:
        params = [
            (
                str(r.get("student_id")),
                r.get("subject"),
                r.get("quarter_1"),
                r.get("quarter_2"),
                r.get("quarter_3"),
                r.get("quarter_4"),
                r.get("final_grade"),
                r.get("remarks"),
            )
            for r in rows or []
        ]
        if not params:
            return 0
        with self._cursor("subject_grades", write=True) as cursor:
            cursor.executemany(
                """
                INSERT INTO subject_grades
                    (student_id, subject, quarter_1, quarter_2, quarter_3, quarter_4,
                     final_grade, remarks)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                ON DUPLICATE KEY UPDATE
                    quarter_1 = VALUES(quarter_1),
                    quarter_2 = VALUES(quarter_2),
                    quarter_3 = VALUES(quarter_3),
                    quarter_4 = VALUES(quarter_4),
                    final_grade = VALUES(final_grade),
                    remarks = VALUES(remarks)
                """,
                params,
            )
        return len(params)

    def upsert_learner_values(self, rows: Iterable[dict]) -> int:
        params = [
            (
                str(r.get("student_id")),
                r.get("core_value"),
                r.get("behavior_statement"),
                r.get("q1"),
                r.get("q2"),
                r.get("q3"),
                r.get("q4"),
            )
            for r in rows or []
        ]
        if not params:
            return 0
        with self._cursor("learner_values", write=True) as cursor:
            cursor.executemany(
                """
                INSERT INTO learner_values
                    (student_id, core_value, behavior_statement, q1, q2, q3, q4)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                ON DUPLICATE KEY UPDATE
                    core_value = VALUES(core_value),
                    q1 = VALUES(q1),
                    q2 = VALUES(q2),
                    q3 = VALUES(q3),
                    q4 = VALUES(q4)
                """,
                params,
            )
        return len(params)

    # ------------------------------------------------------------------
    # SF3
    # ------------------------------------------------------------------
    @staticmethod
    def _book_row(row: dict) -> dict:
        book = dict(row)
        book["student_id"] = str(book.get("student_id"))
        for key in ("date_issued", "date_returned"):
            value = book.get(key)
            if hasattr(value, "isoformat"):
                book[key] = value.isoformat()
        return book

    def fetch_books(self, student_ids: Iterable) -> Dict[str, List[dict]]:
        """{student_id: [book, ...]} with each student's books in issue order."""
        ids = [str(sid) for sid in student_ids or []]
        if not ids:
            return {}
        with self._cursor("book_assignments") as cursor:
            cursor.execute(
                f"""
                SELECT id, student_id, book_title, subject, date_issued, date_returned, remarks
                FROM book_assignments
                WHERE student_id IN ({_placeholders(ids)})
                ORDER BY date_issued, id
                """,
                tuple(ids),
            )
            rows = cursor.fetchall() or []
        books = {}
        for row in rows:
            book = self._book_row(row)
            books.setdefault(book["student_id"], []).append(book)
        return books

    def fetch_book(self, book_id) -> Optional[dict]:
        with self._cursor("book_assignments") as cursor:
            cursor.execute(
                """
                SELECT id, student_id, book_title, subject, date_issued, date_returned, remarks
                FROM book_assignments
                WHERE id = %s
                """,
                (int(book_id),),
            )
            row = cursor.fetchone()
        return self._book_row(row) if row else None

    def issue_book(self, student_id, book_title, subject, date_issued, remarks=None):
        """Record a textbook handed to a learner; returns the new assignment id."""
        with self._cursor("book_assignments", write=True) as cursor:
            cursor.execute(
                """
                INSERT INTO book_assignments
                    (student_id, book_title, subject, date_issued, remarks)
                VALUES (%s, %s, %s, %s, %s)
                """,
                (str(student_id), book_title, subject, date_issued, remarks),
            )
            return getattr(cursor, "lastrowid", None)

    def return_book(self, book_id, date_returned, remarks=None) -> bool:
        """Stamp the return date; False when the book is unknown or already returned."""
        with self._cursor("book_assignments", write=True) as cursor:
            cursor.execute(
                """
                UPDATE book_assignments
                SET date_returned = %s, remarks = COALESCE(%s, remarks)
                WHERE id = %s AND date_returned IS NULL
                """,
                (date_returned, remarks, int(book_id)),
            )
            return bool(cursor.rowcount)
