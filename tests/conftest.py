import copy
import os
import sys

import pytest

# Ensure project root is on sys.path so tests can import app.py
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from app import app as flask_app
from utils.errors import DuplicateEntryError, MissingSchemaError, StoreError

GRADE = "Grade 7"
SECTION = "Rizal"
SUBJECT = "Mathematics"

# Already in canonical order: males first, then by last name
STUDENTS = [
    {"id": "s1", "lrn": "100000000001", "last_name": "Aquino", "first_name": "Jose", "sex": "M", "grade_level": GRADE, "section": SECTION},
    {"id": "s2", "lrn": "100000000002", "last_name": "Cruz", "first_name": "Pedro", "sex": "M", "grade_level": GRADE, "section": SECTION},
    {"id": "s3", "lrn": "100000000003", "last_name": "Santos", "first_name": "Juan", "sex": "M", "grade_level": GRADE, "section": SECTION},
    {"id": "s4", "lrn": "100000000004", "last_name": "Bautista", "first_name": "Maria", "sex": "F", "grade_level": GRADE, "section": SECTION},
    {"id": "s5", "lrn": "100000000005", "last_name": "Reyes", "first_name": "Ana", "sex": "F", "grade_level": GRADE, "section": SECTION},
    {"id": "s6", "lrn": "100000000006", "last_name": "Luna", "first_name": "Rosa", "sex": "F", "grade_level": GRADE, "section": "Bonifacio"},
]

SECTIONS = [
    {"id": "sec-1", "grade_level": GRADE, "section_name": SECTION, "adviser_id": "adviser-1"},
    {"id": "sec-2", "grade_level": GRADE, "section_name": "Bonifacio", "adviser_id": "adviser-2"},
]


class FakeStore:
    """In-memory stand-in for RecordStore with switchable table failures."""

    def __init__(self, students=None, sections=None):
        self.students = copy.deepcopy(students or [])
        self.sections = copy.deepcopy(sections or [])
        self.assignments = set()  # (teacher_id, grade_level, section, subject)
        self.configs = {}
        self.scores = {}
        self.academic = {}
        self.attendance = {}
        self.subject_grades = {}
        self.learner_values = {}
        self.books = []
        self.missing_tables = set()
        self.failing_tables = set()
        self.writes = []

    def _check(self, table, write=False):
        if table in self.missing_tables:
            raise MissingSchemaError(table)
        if write and table in self.failing_tables:
            raise StoreError(f"write to {table} failed")
        if write:
            self.writes.append(table)

    # class record
    def fetch_config(self, grade_level, section, subject, quarter):
        self._check("class_record_meta")
        return copy.deepcopy(self.configs.get((grade_level, section, subject, int(quarter))))

    def upsert_config(self, config):
        self._check("class_record_meta", write=True)
        self.configs[config.key] = copy.deepcopy(config)

    def fetch_scores(self, student_ids, subject, quarter):
        self._check("class_record_scores")
        ids = {str(i) for i in student_ids}
        return [
            copy.deepcopy(record)
            for key, record in self.scores.items()
            if key[0] in ids and key[1] == subject and key[2] == int(quarter)
        ]

    def upsert_scores(self, records):
        self._check("class_record_scores", write=True)
        records = list(records)
        for record in records:
            self.scores[record.key] = copy.deepcopy(record)
        return len(records)

    # roster and sections
    def fetch_students(self, grade_level, section=None):
        self._check("students")
        rows = [
            dict(s)
            for s in self.students
            if s["grade_level"] == grade_level and (not section or s["section"] == section)
        ]
        rows.sort(key=lambda s: (s["last_name"], s["first_name"]))
        rows.sort(key=lambda s: s["sex"], reverse=True)
        return rows

    def fetch_student(self, student_id):
        self._check("students")
        for s in self.students:
            if s["id"] == str(student_id):
                return dict(s)
        return None

    def fetch_adviser_section(self, user_id):
        self._check("sections")
        for s in self.sections:
            if s["adviser_id"] == user_id:
                return {k: s[k] for k in ("id", "grade_level", "section_name")}
        return None

    def fetch_sections(self):
        self._check("sections")
        return [
            dict(
                s,
                student_count=len(self.fetch_students(s["grade_level"], s["section_name"])),
            )
            for s in self.sections
        ]

    def can_grade(self, user_id, grade_level, section, subject):
        self._check("section_assignments")
        for s in self.sections:
            if (
                s["grade_level"] == grade_level
                and s["section_name"] == section
                and s["adviser_id"] == user_id
            ):
                return True
        return (user_id, grade_level, section, subject) in self.assignments

    def fetch_section(self, section_id):
        self._check("sections")
        for s in self.sections:
            if s["id"] == str(section_id):
                return dict(s)
        return None

    def create_section(self, section_id, grade_level, section_name, adviser_id=None):
        self._check("sections", write=True)
        for s in self.sections:
            if (s["grade_level"], s["section_name"]) == (grade_level, section_name):
                raise DuplicateEntryError("sections")
        self.sections.append(
            {"id": section_id, "grade_level": grade_level, "section_name": section_name, "adviser_id": adviser_id}
        )

    def update_section(self, section_id, grade_level, section_name):
        self._check("sections", write=True)
        section = next((s for s in self.sections if s["id"] == str(section_id)), None)
        if section is None:
            return 0
        moved = 0
        for student in self.students:
            if (student["grade_level"], student["section"]) == (section["grade_level"], section["section_name"]):
                student["grade_level"], student["section"] = grade_level, section_name
                moved += 1
        section["grade_level"], section["section_name"] = grade_level, section_name
        return moved

    def set_adviser(self, section_id, adviser_id):
        self._check("sections", write=True)
        for s in self.sections:
            if s["id"] == str(section_id):
                s["adviser_id"] = adviser_id

    def fetch_section_assignments(self, section_id):
        self._check("section_assignments")
        section = self.fetch_section(section_id)
        return {
            subject: teacher
            for teacher, grade, name, subject in self.assignments
            if (grade, name) == (section["grade_level"], section["section_name"])
        }

    def assign_subject_teacher(self, section_id, subject, teacher_id):
        self._check("section_assignments", write=True)
        section = self.fetch_section(section_id)
        key = (section["grade_level"], section["section_name"], subject)
        self.assignments = {a for a in self.assignments if a[1:] != key}
        if teacher_id:
            self.assignments.add((teacher_id, *key))

    # SF5 / SF6
    def fetch_academic_records(self, student_ids):
        self._check("student_academic_records")
        return {
            str(i): dict(self.academic[str(i)])
            for i in student_ids
            if str(i) in self.academic
        }

    def upsert_academic_records(self, records):
        self._check("student_academic_records", write=True)
        records = list(records)
        for r in records:
            self.academic[str(r["student_id"])] = dict(r)
        return len(records)

    # SF2 / SF9
    def fetch_attendance(self, student_ids, month_key):
        self._check("attendance_records")
        result = {}
        for i in student_ids:
            row = self.attendance.get((str(i), month_key))
            if row:
                result[str(i)] = {
                    "attendance_data": dict(row["attendance_data"]),
                    "remarks": row.get("remarks") or "",
                }
        return result

    def fetch_attendance_history(self, student_id):
        self._check("attendance_records")
        return [
            {"month_key": key[1], "attendance_data": dict(row["attendance_data"])}
            for key, row in sorted(self.attendance.items())
            if key[0] == str(student_id)
        ]

    def upsert_attendance(self, records):
        self._check("attendance_records", write=True)
        records = list(records)
        for r in records:
            self.attendance[(str(r["student_id"]), r["month_key"])] = dict(r)
        return len(records)

    def fetch_subject_grades(self, student_id):
        self._check("subject_grades")
        return [dict(r) for r in self.subject_grades.get(str(student_id), [])]

    def fetch_learner_values(self, student_id):
        self._check("learner_values")
        return [dict(r) for r in self.learner_values.get(str(student_id), [])]

    def upsert_subject_grades(self, rows):
        self._check("subject_grades", write=True)
        rows = list(rows)
        for r in rows:
            existing = self.subject_grades.setdefault(str(r["student_id"]), [])
            existing[:] = [g for g in existing if g["subject"] != r["subject"]] + [dict(r)]
        return len(rows)

    def upsert_learner_values(self, rows):
        self._check("learner_values", write=True)
        rows = list(rows)
        for r in rows:
            existing = self.learner_values.setdefault(str(r["student_id"]), [])
            existing[:] = [
                v for v in existing if v["behavior_statement"] != r["behavior_statement"]
            ] + [dict(r)]
        return len(rows)

    # SF3
    def fetch_books(self, student_ids):
        self._check("book_assignments")
        ids = {str(i) for i in student_ids}
        books = {}
        for book in self.books:
            if book["student_id"] in ids:
                books.setdefault(book["student_id"], []).append(dict(book))
        return books

    def fetch_book(self, book_id):
        self._check("book_assignments")
        for book in self.books:
            if book["id"] == int(book_id):
                return dict(book)
        return None

    def issue_book(self, student_id, book_title, subject, date_issued, remarks=None):
        self._check("book_assignments", write=True)
        book_id = len(self.books) + 1
        self.books.append(
            {
                "id": book_id,
                "student_id": str(student_id),
                "book_title": book_title,
                "subject": subject,
                "date_issued": date_issued.isoformat(),
                "date_returned": None,
                "remarks": remarks,
            }
        )
        return book_id

    def return_book(self, book_id, date_returned, remarks=None):
        self._check("book_assignments", write=True)
        for book in self.books:
            if book["id"] == int(book_id) and book["date_returned"] is None:
                book["date_returned"] = date_returned.isoformat()
                book["remarks"] = remarks or book["remarks"]
                return True
        return False


@pytest.fixture
def store():
    fake = FakeStore(STUDENTS, SECTIONS)
    fake.assignments.add(("teacher-1", GRADE, SECTION, SUBJECT))
    return fake


@pytest.fixture
def app(store, monkeypatch):
    monkeypatch.setitem(flask_app.config, "TESTING", True)
    monkeypatch.setitem(flask_app.config, "WTF_CSRF_ENABLED", False)
    monkeypatch.setitem(flask_app.extensions, "record_store", store)
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login(client):
    """Put a user in the session the way the auth service would."""

    def _login(user_id="teacher-1", role="Teacher"):
        with client.session_transaction() as sess:
            sess["user_id"] = user_id
            sess["role"] = role
        return client

    return _login
