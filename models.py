from sqlalchemy import (
    Column, Integer, String, Float, Boolean, DateTime, Date,
    ForeignKey, Text, CheckConstraint, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship, declared_attr
from datetime import datetime, date, timezone
from typing import Optional
from database import Base
import enum


def utcnow():
    return datetime.now(timezone.utc)


class StudentStatus(str, enum.Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    SUSPENDED = "Suspended"
    GRADUATED = "Graduated"
    TRANSFERRED = "Transferred"
    WITHDRAWN = "Withdrawn"


class MarkType(str, enum.Enum):
    MIDTERM = "midterm"
    TERMINAL = "terminal"


class ExamStatus(str, enum.Enum):
    SCHEDULED = "Scheduled"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"


STUDENT_STATUS_VALUES = [s.value for s in StudentStatus]


class AcademicYear(Base):
    __tablename__ = "academic_years"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), unique=True, nullable=False)  # e.g. "2024/2025"
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    is_active = Column(Boolean, default=True)
    is_current = Column(Boolean, default=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    terms = relationship("AcademicTerm", back_populates="academic_year")


class AcademicTerm(Base):
    __tablename__ = "academic_terms"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), nullable=False)  # "First Term", "Second Term", ...
    academic_year_id = Column(Integer, ForeignKey("academic_years.id"), nullable=False)
    start_date = Column(Date)
    end_date = Column(Date)
    is_current = Column(Boolean, default=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    academic_year = relationship("AcademicYear", back_populates="terms")


class Teacher(Base):
    __tablename__ = "teachers"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(100), nullable=False)
    middle_name = Column(String(100))
    surname = Column(String(100), nullable=False)
    email = Column(String(255), unique=True)
    phone = Column(String(20))
    department = Column(String(100))
    status = Column(String(20), default="active")

    created_at = Column(DateTime(timezone=True), default=utcnow)

    classes = relationship("Class", back_populates="teacher")

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.middle_name, self.surname) if part and part.strip())


class Class(Base):
    __tablename__ = "classes"

    id = Column(Integer, primary_key=True, index=True)
    class_name = Column(String(100), nullable=False, index=True)  # e.g. "JSS 1"
    category = Column(String(20), nullable=False)  # "Junior", "Senior"
    section = Column(String(50))  # e.g. "Gold", "Silver"
    academic_year = Column(String(50))
    class_teacher_id = Column(Integer, ForeignKey("teachers.id"))
    teacher_name = Column(String(255))
    max_students = Column(Integer, default=40)
    current_students = Column(Integer, default=0)
    subjects_count = Column(Integer, default=0)
    room_number = Column(String(20))
    status = Column(String(20), default="active")
    description = Column(Text)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    teacher = relationship("Teacher", back_populates="classes")
    students = relationship("Student", back_populates="class_rel")

    @property
    def full_name(self) -> str:
        return f"{self.class_name} {self.section}".strip() if self.section else self.class_name


class Subject(Base):
    __tablename__ = "subjects"

    id = Column(Integer, primary_key=True, index=True)
    subject_name = Column(String(100), nullable=False)
    subject_code = Column(String(20), unique=True, nullable=False)
    department = Column(String(100), nullable=False)
    class_level = Column(String(100), nullable=False)
    teacher_id = Column(Integer, ForeignKey("teachers.id"))
    description = Column(Text)
    is_core = Column(Boolean, default=False)
    is_elective = Column(Boolean, default=False)
    credit_hours = Column(Integer, default=1)
    status = Column(String(20), default="active")

    created_at = Column(DateTime(timezone=True), default=utcnow)


class Student(Base):
    __tablename__ = "students"
    __table_args__ = (
        CheckConstraint(
            "status IN ('Active', 'Inactive', 'Suspended', 'Graduated', 'Transferred', 'Withdrawn')",
            name="students_status_check",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(100), nullable=False)
    middle_name = Column(String(100))
    surname = Column(String(100), nullable=False)
    email = Column(String(255))
    phone = Column(String(20))
    date_of_birth = Column(Date)
    gender = Column(String(10))
    home_address = Column(Text)

    # Academic information
    reg_number = Column(String(50), unique=True, nullable=False)
    class_id = Column(Integer, ForeignKey("classes.id"))
    current_class = Column(String(100), nullable=False)
    section = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default=StudentStatus.ACTIVE.value)
    admission_date = Column(Date, default=date.today)

    # Guardian / emergency contact
    parent_name = Column(String(255))
    parent_phone = Column(String(20))
    parent_email = Column(String(255))
    emergency_contact = Column(String(255))
    emergency_phone = Column(String(20))

    # Login credentials
    username = Column(String(100), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    credential_method = Column(String(20), default="auto")  # "auto", "custom"
    send_credentials_to = Column(String(20), default="parent")

    medical_info = Column(Text)
    notes = Column(Text)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    class_rel = relationship("Class", back_populates="students")

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.middle_name, self.surname) if part and part.strip())


class Exam(Base):
    __tablename__ = "exams"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    mark_type = Column(String(20), nullable=False, default=MarkType.MIDTERM.value)
    session = Column(String(50))
    academic_year_id = Column(Integer, ForeignKey("academic_years.id"), nullable=False)
    academic_term_id = Column(Integer, ForeignKey("academic_terms.id"), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    class_id = Column(Integer, ForeignKey("classes.id"), nullable=True)  # NULL means every class

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    academic_year = relationship("AcademicYear")
    academic_term = relationship("AcademicTerm")

    def status_on(self, today: Optional[date] = None) -> ExamStatus:
        today = today or date.today()
        if today < self.start_date:
            return ExamStatus.SCHEDULED
        if today > self.end_date:
            return ExamStatus.COMPLETED
        return ExamStatus.IN_PROGRESS

    @property
    def status(self) -> ExamStatus:
        return self.status_on()

    @property
    def scope(self) -> str:
        return "ALL" if self.class_id is None else str(self.class_id)


class ScoreColumns:
    """Columns shared by the midterm and terminal score tables.

    One row per score key (student, subject, class, academic year, term).
    """

    id = Column(Integer, primary_key=True, index=True)

    @declared_attr
    def student_id(cls):
        return Column(Integer, ForeignKey("students.id"), nullable=False)

    @declared_attr
    def exam_id(cls):
        return Column(Integer, ForeignKey("exams.id"), nullable=True)

    @declared_attr
    def subject_id(cls):
        return Column(Integer, ForeignKey("subjects.id"), nullable=False)

    @declared_attr
    def class_id(cls):
        return Column(Integer, ForeignKey("classes.id"), nullable=False)

    @declared_attr
    def academic_year_id(cls):
        return Column(Integer, ForeignKey("academic_years.id"), nullable=False)

    @declared_attr
    def academic_term_id(cls):
        return Column(Integer, ForeignKey("academic_terms.id"), nullable=False)

    # Denormalized for display
    student_name = Column(String(255))
    reg_number = Column(String(50))
    subject_name = Column(String(100))
    class_name = Column(String(100))

    ca1_score = Column(Float, nullable=False, default=0)
    ca2_score = Column(Float, nullable=False, default=0)
    exam_score = Column(Float, nullable=False, default=0)
    total_score = Column(Float, nullable=False, default=0)
    percentage = Column(Integer, nullable=False, default=0)
    grade = Column(String(2), nullable=False, default="F")

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


SCORE_KEY = ("student_id", "subject_id", "class_id", "academic_year_id", "academic_term_id")


class MidtermScore(ScoreColumns, Base):
    __tablename__ = "midterm_scores"
    __table_args__ = (
        UniqueConstraint(*SCORE_KEY, name="midterm_scores_score_key"),
        Index("ix_midterm_scores_exam_subject", "exam_id", "subject_id"),
    )


class TerminalScore(ScoreColumns, Base):
    __tablename__ = "terminal_scores"
    __table_args__ = (
        UniqueConstraint(*SCORE_KEY, name="terminal_scores_score_key"),
        Index("ix_terminal_scores_exam_subject", "exam_id", "subject_id"),
    )


SCORE_MODELS = {
    MarkType.MIDTERM: MidtermScore,
    MarkType.TERMINAL: TerminalScore,
}


class UploadDeadline(Base):
    __tablename__ = "upload_deadlines"
    __table_args__ = (
        UniqueConstraint("deadline_type", "academic_year_id", "academic_term_id", name="upload_deadlines_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    deadline_type = Column(String(50), nullable=False)  # "e_notes", "exam_questions"
    academic_year_id = Column(Integer, ForeignKey("academic_years.id"), nullable=False)
    academic_term_id = Column(Integer, ForeignKey("academic_terms.id"), nullable=False)
    deadline_date = Column(DateTime(timezone=True), nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    academic_year = relationship("AcademicYear")
    academic_term = relationship("AcademicTerm")

    @property
    def year_name(self) -> str:
        return self.academic_year.name if self.academic_year else "Unknown Year"

    @property
    def term_name(self) -> str:
        return self.academic_term.name if self.academic_term else "Unknown Term"


# Weekly e-notes expected per term
E_NOTES_WEEKS = 11


class UploadColumns:
    """Metadata of a document a teacher submitted; file contents are stored elsewhere."""

    id = Column(Integer, primary_key=True, index=True)

    @declared_attr
    def teacher_id(cls):
        return Column(Integer, ForeignKey("teachers.id"), nullable=False)

    @declared_attr
    def subject_id(cls):
        return Column(Integer, ForeignKey("subjects.id"), nullable=False)

    @declared_attr
    def class_id(cls):
        return Column(Integer, ForeignKey("classes.id"), nullable=False)

    @declared_attr
    def academic_year_id(cls):
        return Column(Integer, ForeignKey("academic_years.id"), nullable=False)

    @declared_attr
    def academic_term_id(cls):
        return Column(Integer, ForeignKey("academic_terms.id"), nullable=False)

    file_name = Column(String(255), nullable=False)
    file_path = Column(String(500), nullable=False)
    file_size = Column(Integer)
    upload_date = Column(DateTime(timezone=True), default=utcnow)
    uploaded_by_admin = Column(Boolean, default=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


UPLOAD_KEY = ("teacher_id", "subject_id", "class_id", "academic_year_id", "academic_term_id")


class ExamQuestionsUpload(UploadColumns, Base):
    __tablename__ = "exam_questions_uploads"
    __table_args__ = (
        UniqueConstraint(*UPLOAD_KEY, name="exam_questions_uploads_key"),
    )


class ENotesUpload(UploadColumns, Base):
    __tablename__ = "e_notes_uploads"
    __table_args__ = (
        UniqueConstraint(*UPLOAD_KEY, "week_number", name="e_notes_uploads_key"),
        CheckConstraint(f"week_number BETWEEN 1 AND {E_NOTES_WEEKS}", name="e_notes_uploads_week_check"),
    )

    week_number = Column(Integer, nullable=False)
