from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


class Profile(db.Model):
    """Staff profile mirrored from the auth service (Teacher, Head Teacher, Admin)."""

    __tablename__ = "profiles"

    id = db.Column(db.String(36), primary_key=True)
    first_name = db.Column(db.String(50), nullable=False)
    last_name = db.Column(db.String(50), nullable=False)
    email = db.Column(db.String(100), nullable=True)
    role = db.Column(db.String(20), nullable=False, default="Teacher")
    main_subject = db.Column(db.String(60), nullable=True)
    main_grade_level = db.Column(db.String(20), nullable=True)
    created_at = db.Column(db.DateTime, default=db.func.current_timestamp())

    def __repr__(self):
        return f"<Profile {self.last_name}, {self.first_name} ({self.role})>"


class Section(db.Model):
    __tablename__ = "sections"

    id = db.Column(db.String(36), primary_key=True)
    grade_level = db.Column(db.String(20), nullable=False)
    section_name = db.Column(db.String(50), nullable=False)
    adviser_id = db.Column(db.String(36), db.ForeignKey("profiles.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=db.func.current_timestamp())

    adviser = db.relationship("Profile", backref="advisory_sections")

    __table_args__ = (
        db.UniqueConstraint("grade_level", "section_name", name="unique_section"),
    )

    def __repr__(self):
        return f"<Section {self.grade_level} - {self.section_name}>"


class SectionAssignment(db.Model):
    """Subject teacher assigned to a section."""

    __tablename__ = "section_assignments"

    id = db.Column(db.Integer, primary_key=True)
    section_id = db.Column(db.String(36), db.ForeignKey("sections.id"), nullable=False)
    teacher_id = db.Column(db.String(36), db.ForeignKey("profiles.id"), nullable=False)
    subject = db.Column(db.String(60), nullable=False)
    created_at = db.Column(db.DateTime, default=db.func.current_timestamp())

    section = db.relationship("Section", backref="assignments")
    teacher = db.relationship("Profile", backref="assignments")

    __table_args__ = (
        db.UniqueConstraint("section_id", "subject", name="unique_section_subject"),
    )


class Student(db.Model):
    """SF1 learner record."""

    __tablename__ = "students"

    id = db.Column(db.String(36), primary_key=True)
    lrn = db.Column(db.String(12), nullable=False)
    last_name = db.Column(db.String(50), nullable=False)
    first_name = db.Column(db.String(50), nullable=False)
    middle_name = db.Column(db.String(50), nullable=True)
    extension_name = db.Column(db.String(10), nullable=True)
    grade_level = db.Column(db.String(20), nullable=False)
    section = db.Column(db.String(50), nullable=False)
    sex = db.Column(db.String(1), nullable=True)  # M, F
    birth_date = db.Column(db.Date, nullable=True)
    age = db.Column(db.Integer, nullable=True)
    birth_place = db.Column(db.String(100), nullable=True)
    religion = db.Column(db.String(50), nullable=True)
    address_house_no = db.Column(db.String(50), nullable=True)
    address_barangay = db.Column(db.String(100), nullable=True)
    address_municipality = db.Column(db.String(100), nullable=True)
    address_province = db.Column(db.String(100), nullable=True)
    address_zip = db.Column(db.String(10), nullable=True)
    father_name = db.Column(db.String(100), nullable=True)
    mother_maiden_name = db.Column(db.String(100), nullable=True)
    guardian_name = db.Column(db.String(100), nullable=True)
    guardian_relationship = db.Column(db.String(50), nullable=True)
    guardian_contact = db.Column(db.String(20), nullable=True)
    learning_modality = db.Column(db.String(30), nullable=True)
    remarks = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime, default=db.func.current_timestamp())

    __table_args__ = (db.Index("ix_students_grade_section", "grade_level", "section"),)

    def __repr__(self):
        return f"<Student {self.lrn} {self.last_name}, {self.first_name}>"


class ClassRecordMeta(db.Model):
    """Highest possible scores and category weights for one class record."""

    __tablename__ = "class_record_meta"

    id = db.Column(db.Integer, primary_key=True)
    grade_level = db.Column(db.String(20), nullable=False)
    section = db.Column(db.String(50), nullable=False)
    subject = db.Column(db.String(60), nullable=False)
    quarter = db.Column(db.Integer, nullable=False)
    hps_ww = db.Column(db.JSON, nullable=False, default=dict)
    hps_pt = db.Column(db.JSON, nullable=False, default=dict)
    hps_qa = db.Column(db.JSON, nullable=False, default=dict)
    weight_ww = db.Column(db.Float, nullable=True, default=20)
    weight_pt = db.Column(db.Float, nullable=True, default=60)
    weight_qa = db.Column(db.Float, nullable=True, default=20)
    updated_at = db.Column(
        db.DateTime,
        default=db.func.current_timestamp(),
        onupdate=db.func.current_timestamp(),
    )

    __table_args__ = (
        db.UniqueConstraint(
            "grade_level", "section", "subject", "quarter", name="unique_class_record"
        ),
    )


class ClassRecordScore(db.Model):
    """Raw scores of one student; grades are cached at save time."""

    __tablename__ = "class_record_scores"

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.String(36), db.ForeignKey("students.id"), nullable=False)
    subject = db.Column(db.String(60), nullable=False)
    quarter = db.Column(db.Integer, nullable=False)
    scores_ww = db.Column(db.JSON, nullable=False, default=dict)
    scores_pt = db.Column(db.JSON, nullable=False, default=dict)
    scores_qa = db.Column(db.JSON, nullable=False, default=dict)
    initial_grade = db.Column(db.Float, nullable=False, default=0)
    quarterly_grade = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(
        db.DateTime,
        default=db.func.current_timestamp(),
        onupdate=db.func.current_timestamp(),
    )

    __table_args__ = (
        db.UniqueConstraint(
            "student_id", "subject", "quarter", name="unique_student_subject_quarter"
        ),
    )


class BookAssignment(db.Model):
    """SF3 textbook issued to a learner; date_returned stays NULL while the book is out."""

    __tablename__ = "book_assignments"

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.String(36), db.ForeignKey("students.id"), nullable=False)
    book_title = db.Column(db.String(150), nullable=False)
    subject = db.Column(db.String(60), nullable=True)
    date_issued = db.Column(db.Date, nullable=False)
    date_returned = db.Column(db.Date, nullable=True)
    remarks = db.Column(db.String(20), nullable=True)  # Lost, Unreturned, Damaged

    __table_args__ = (db.Index("ix_book_assignments_student", "student_id"),)


class AcademicRecord(db.Model):
    """SF5 entry: general average and action taken for the current term."""

    __tablename__ = "student_academic_records"

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(
        db.String(36), db.ForeignKey("students.id"), unique=True, nullable=False
    )
    general_average = db.Column(db.Float, nullable=True)
    action_taken = db.Column(db.String(20), nullable=True)  # Promoted, Conditional, Retained
    incomplete_subjects = db.Column(db.Text, nullable=True)


class AttendanceRecord(db.Model):
    """SF2 month of attendance marks: {"1": "x", "2": "T", ...}."""

    __tablename__ = "attendance_records"

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.String(36), db.ForeignKey("students.id"), nullable=False)
    month_key = db.Column(db.String(7), nullable=False)  # YYYY-MM
    attendance_data = db.Column(db.JSON, nullable=False, default=dict)
    remarks = db.Column(db.String(255), nullable=True)

    __table_args__ = (
        db.UniqueConstraint("student_id", "month_key", name="unique_student_month"),
    )


class SubjectGrade(db.Model):
    """SF9 subject grade row."""

    __tablename__ = "subject_grades"

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.String(36), db.ForeignKey("students.id"), nullable=False)
    subject = db.Column(db.String(60), nullable=False)
    quarter_1 = db.Column(db.Float, nullable=True)
    quarter_2 = db.Column(db.Float, nullable=True)
    quarter_3 = db.Column(db.Float, nullable=True)
    quarter_4 = db.Column(db.Float, nullable=True)
    final_grade = db.Column(db.Float, nullable=True)
    remarks = db.Column(db.String(50), nullable=True)

    __table_args__ = (
        db.UniqueConstraint("student_id", "subject", name="unique_student_subject"),
    )


class LearnerValue(db.Model):
    """SF9 observed values, one row per behaviour statement."""

    __tablename__ = "learner_values"

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.String(36), db.ForeignKey("students.id"), nullable=False)
    core_value = db.Column(db.String(50), nullable=False)
    behavior_statement = db.Column(db.String(255), nullable=False)
    q1 = db.Column(db.String(2), nullable=True)  # AO, SO, RO, NO
    q2 = db.Column(db.String(2), nullable=True)
    q3 = db.Column(db.String(2), nullable=True)
    q4 = db.Column(db.String(2), nullable=True)

    __table_args__ = (
        db.UniqueConstraint(
            "student_id", "behavior_statement", name="unique_student_statement"
        ),
    )
