from sqlalchemy.orm import Session
from sqlalchemy import or_, func, desc, asc
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from fastapi import HTTPException, status
from typing import List, Optional, Dict, Any, Tuple
from datetime import datetime, date, timezone
from collections import defaultdict
import logging
import re
import secrets

from passlib.context import CryptContext

import models
from models import MarkType, SCORE_KEY, SCORE_MODELS, STUDENT_STATUS_VALUES
from schemas import (
    AcademicYearCreate, AcademicTermCreate, ClassCreate, TeacherCreate,
    SubjectCreate, StudentCreate, ExamBase, ScoreSubmission, UploadDeadlineCreate,
    UploadCreate, ExamQuestionsUploadCreate, ENotesUploadCreate
)
from scoring import normalize_scores, apply_carry_forward, round_half_up

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

UNIQUE_VIOLATION = "23505"
CHECK_VIOLATION = "23514"

UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}

# Columns rewritten when a score row for the same key already exists
SCORE_UPDATE_COLUMNS = (
    "exam_id", "student_name", "reg_number", "subject_name", "class_name",
    "ca1_score", "ca2_score", "exam_score", "total_score", "percentage", "grade", "updated_at",
)

MISSING_SCORE_FIELDS = "Missing required fields: subject_id, class info, academic_year, academic_term"


def bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def not_found(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


def describe_integrity_error(exc: IntegrityError, **context: Any) -> str:
    """Turn a constraint violation into text a school administrator can act on.

    Works from the SQLSTATE code when the driver exposes one (PostgreSQL)
    and falls back to the message text (SQLite).
    """
    orig = exc.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    message = str(orig)
    lowered = message.lower()

    if code == UNIQUE_VIOLATION or "unique constraint" in lowered:
        if "username" in lowered:
            return f'Username "{context.get("username", "")}" already exists. Please try again.'
        if "reg_number" in lowered:
            return f'Registration number "{context.get("reg_number", "")}" already exists.'
        if "subject_code" in lowered:
            return f'Subject code "{context.get("subject_code", "")}" already exists.'
        return "A record with this information already exists."

    if code == CHECK_VIOLATION or "check constraint" in lowered:
        if "students_status_check" in lowered:
            return (
                f'Invalid status value "{context.get("status", "")}". '
                f'Status must be one of: {", ".join(STUDENT_STATUS_VALUES)}'
            )
        return "Data validation failed. Please check all field values."

    return f"Database error: {message}"


def like_pattern(value: str) -> str:
    """Containment pattern for LIKE/ILIKE with wildcards in value escaped."""
    escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def normalize_status(value: Optional[str]) -> str:
    """Map a status in any letter case onto one of the stored values."""
    if not value:
        return models.StudentStatus.ACTIVE.value
    lookup = {s.lower(): s for s in STUDENT_STATUS_VALUES}
    normalized = lookup.get(value.strip().lower())
    if normalized is None:
        raise bad_request(
            f'Invalid status value "{value}". Must be one of: {", ".join(STUDENT_STATUS_VALUES)}'
        )
    return normalized


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


class CRUDService:
    def __init__(self, db: Session):
        self.db = db

    def _commit(self, **context: Any) -> None:
        """Commit, translating constraint violations into a 500 with readable text."""
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.error("Integrity error on commit: %s", e.orig)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=describe_integrity_error(e, **context)
            )

    # Academic calendar
    def get_academic_years(self) -> List[models.AcademicYear]:
        return self.db.query(models.AcademicYear).order_by(desc(models.AcademicYear.start_date)).all()

    def get_academic_year(self, year_id: int) -> Optional[models.AcademicYear]:
        return self.db.query(models.AcademicYear).filter(models.AcademicYear.id == year_id).first()

    def create_academic_year(self, year_data: AcademicYearCreate) -> models.AcademicYear:
        if year_data.end_date <= year_data.start_date:
            raise bad_request("end_date must be after start_date")
        year = models.AcademicYear(
            name=year_data.year_name,
            start_date=year_data.start_date,
            end_date=year_data.end_date,
            is_active=year_data.is_active,
            is_current=False
        )
        self.db.add(year)
        self._commit()
        self.db.refresh(year)
        return year

    def set_current_academic_year(self, year_id: int) -> models.AcademicYear:
        year = self.get_academic_year(year_id)
        if not year:
            raise not_found("Academic year not found")
        self.db.query(models.AcademicYear).filter(
            models.AcademicYear.id != year_id
        ).update({models.AcademicYear.is_current: False}, synchronize_session=False)
        year.is_current = True
        self._commit()
        self.db.refresh(year)
        return year

    def get_academic_terms(self, academic_year_id: Optional[int] = None) -> List[models.AcademicTerm]:
        query = self.db.query(models.AcademicTerm)
        if academic_year_id:
            query = query.filter(models.AcademicTerm.academic_year_id == academic_year_id)
        return query.order_by(asc(models.AcademicTerm.id)).all()

    def get_academic_term(self, term_id: int) -> Optional[models.AcademicTerm]:
        return self.db.query(models.AcademicTerm).filter(models.AcademicTerm.id == term_id).first()

    def create_academic_term(self, term_data: AcademicTermCreate) -> models.AcademicTerm:
        if not self.get_academic_year(term_data.academic_year_id):
            raise bad_request(f"Academic year not found: {term_data.academic_year_id}")
        term = models.AcademicTerm(**term_data.model_dump(), is_current=False)
        self.db.add(term)
        self._commit()
        self.db.refresh(term)
        return term

    def set_current_academic_term(self, term_id: int) -> models.AcademicTerm:
        term = self.get_academic_term(term_id)
        if not term:
            raise not_found("Academic term not found")
        self.db.query(models.AcademicTerm).filter(
            models.AcademicTerm.id != term_id
        ).update({models.AcademicTerm.is_current: False}, synchronize_session=False)
        term.is_current = True
        self._commit()
        self.db.refresh(term)
        return term

    def _current_period(self) -> Tuple[Optional[models.AcademicYear], Optional[models.AcademicTerm]]:
        year = self.db.query(models.AcademicYear).filter(models.AcademicYear.is_current == True).first()
        term = self.db.query(models.AcademicTerm).filter(models.AcademicTerm.is_current == True).first()
        return year, term

    def get_current_academic_info(self) -> Dict[str, Any]:
        year, term = self._current_period()
        if not year:
            raise not_found("No current academic year found")
        if not term:
            raise not_found("No current academic term found")
        return {
            "academic_year_id": year.id,
            "academic_term_id": term.id,
            "year_name": year.name,
            "term_name": term.name
        }

    # Teachers
    def get_teachers(self) -> List[models.Teacher]:
        return self.db.query(models.Teacher).order_by(asc(models.Teacher.first_name)).all()

    def get_teacher(self, teacher_id: int) -> Optional[models.Teacher]:
        return self.db.query(models.Teacher).filter(models.Teacher.id == teacher_id).first()

    def create_teacher(self, teacher_data: TeacherCreate) -> models.Teacher:
        teacher = models.Teacher(**teacher_data.model_dump())
        self.db.add(teacher)
        self._commit()
        self.db.refresh(teacher)
        return teacher

    # Classes
    def get_classes(self) -> List[models.Class]:
        return self.db.query(models.Class).order_by(asc(models.Class.class_name), asc(models.Class.id)).all()

    def get_class(self, class_id: int) -> Optional[models.Class]:
        return self.db.query(models.Class).filter(models.Class.id == class_id).first()

    def create_class(self, class_data: ClassCreate) -> models.Class:
        teacher = self.get_teacher(class_data.selected_teacher_id)
        if not teacher:
            raise bad_request(f"Teacher not found: {class_data.selected_teacher_id}")

        # A teacher is class teacher of at most one class
        assigned = self.db.query(models.Class).filter(
            models.Class.class_teacher_id == teacher.id
        ).first()
        if assigned:
            raise bad_request(
                f"{teacher.full_name} is already assigned to class {assigned.full_name}"
            )

        class_obj = models.Class(
            class_name=class_data.name,
            category=class_data.category,
            section=class_data.section,
            academic_year=class_data.academic_year,
            class_teacher_id=teacher.id,
            teacher_name=teacher.full_name,
            max_students=class_data.max_students,
            current_students=0,
            subjects_count=0,
            status=class_data.status.lower(),
            description=class_data.description
        )
        self.db.add(class_obj)
        self._commit()
        self.db.refresh(class_obj)
        logger.info("Created class %s (id=%s) for teacher %s", class_obj.full_name, class_obj.id, teacher.id)
        return class_obj

    def find_class_candidates(self, class_name: str) -> List[models.Class]:
        """Classes whose name, or name plus section, matches class_name.

        Matching is exact or case-insensitive containment; results are ordered
        by id so the fallback choice is stable.
        """
        pattern = like_pattern(class_name.strip())
        full_name = models.Class.class_name + " " + func.coalesce(models.Class.section, "")
        return self.db.query(models.Class).filter(
            or_(
                models.Class.class_name == class_name,
                models.Class.class_name.ilike(pattern, escape="\\"),
                full_name.ilike(pattern, escape="\\")
            )
        ).order_by(asc(models.Class.id)).all()

    def resolve_class_id(self, class_id: Optional[int] = None, class_name: Optional[str] = None) -> Optional[int]:
        """Canonical class id for a request, or None when nothing matches.

        An explicit class_id always wins. Among several name matches an exact
        "<name> <section>" or bare "<name>" match is preferred, then a
        case-insensitive exact match, then the lowest id.
        """
        if class_id:
            return class_id
        if not class_name or not class_name.strip():
            return None

        candidates = self.find_class_candidates(class_name)
        if not candidates:
            logger.warning("No class found for name %r", class_name)
            return None

        if len(candidates) > 1:
            for candidate in candidates:
                if f"{candidate.class_name} {candidate.section}" == class_name or candidate.class_name == class_name:
                    return candidate.id
            lowered = class_name.strip().lower()
            for candidate in candidates:
                if candidate.full_name.lower() == lowered or candidate.class_name.lower() == lowered:
                    return candidate.id
            logger.warning(
                "Class name %r is ambiguous (%d matches); using lowest id %s",
                class_name, len(candidates), candidates[0].id
            )
        return candidates[0].id

    # Subjects
    def get_subjects(self) -> List[models.Subject]:
        return self.db.query(models.Subject).order_by(desc(models.Subject.created_at), desc(models.Subject.id)).all()

    def get_subject(self, subject_id: int) -> Optional[models.Subject]:
        return self.db.query(models.Subject).filter(models.Subject.id == subject_id).first()

    def create_subject(self, subject_data: SubjectCreate) -> models.Subject:
        existing = self.db.query(models.Subject).filter(
            models.Subject.subject_code == subject_data.subject_code
        ).first()
        if existing:
            raise bad_request(f'Subject code "{subject_data.subject_code}" already exists.')

        subject = models.Subject(**subject_data.model_dump(), credit_hours=1)
        self.db.add(subject)
        self._commit(subject_code=subject_data.subject_code)
        self.db.refresh(subject)
        return subject

    # Students
    def get_students(self) -> List[models.Student]:
        return self.db.query(models.Student).order_by(asc(models.Student.first_name), asc(models.Student.id)).all()

    def get_student(self, student_id: int) -> Optional[models.Student]:
        return self.db.query(models.Student).filter(models.Student.id == student_id).first()

    def get_class_students(self, class_id: int) -> Tuple[models.Class, List[models.Student]]:
        class_obj = self.get_class(class_id)
        if not class_obj:
            raise not_found("Class not found")
        students = self.db.query(models.Student).filter(
            or_(
                models.Student.class_id == class_id,
                models.Student.current_class == class_obj.full_name
            ),
            models.Student.status == models.StudentStatus.ACTIVE.value
        ).order_by(asc(models.Student.first_name)).all()
        return class_obj, students

    def _username_taken(self, username: str) -> bool:
        return self.db.query(models.Student.id).filter(models.Student.username == username).first() is not None

    def generate_username(self, first_name: str, surname: str) -> str:
        base = "{}.{}".format(
            re.sub(r"\s+", "", first_name).lower(),
            re.sub(r"\s+", "", surname).lower()
        )
        if not self._username_taken(base):
            return base
        for counter in range(1, 100):
            candidate = f"{base}{counter}"
            if not self._username_taken(candidate):
                return candidate
        raise bad_request(f'Could not generate a unique username for "{base}"')

    def generate_reg_number(self, year: Optional[int] = None) -> str:
        year = year or date.today().year
        prefix = f"REG{year}"
        existing = self.db.query(models.Student.reg_number).filter(
            models.Student.reg_number.like(f"{prefix}%")
        ).all()
        numbers = [int(r[0][len(prefix):]) for r in existing if r[0][len(prefix):].isdigit()]
        return f"{prefix}{(max(numbers) + 1 if numbers else 1):03d}"

    def create_student(self, student_data: StudentCreate, default_password: Optional[str] = None) -> models.Student:
        """Create a student with generated credentials and registration number."""
        if not student_data.first_name or not student_data.surname:
            raise bad_request("First name and surname are required")

        class_obj = None
        if student_data.class_id:
            class_obj = self.get_class(student_data.class_id)
            if not class_obj:
                raise bad_request(f"Class not found: {student_data.class_id}")

        current_class = student_data.current_class or (class_obj.class_name if class_obj else None)
        section = student_data.section or (class_obj.section if class_obj else None)
        if not current_class or not section:
            raise bad_request("Class and section are required")

        status_value = normalize_status(student_data.status)

        if student_data.credential_method == "custom":
            username = student_data.custom_username or ""
            password = student_data.custom_password or ""
            if not username or not password:
                raise bad_request("Custom username and password are required when using custom credential method")
            if self._username_taken(username):
                raise bad_request(f'Username "{username}" already exists. Please choose another.')
        else:
            username = self.generate_username(student_data.first_name, student_data.surname)
            password = default_password or secrets.token_urlsafe(9)

        reg_number = student_data.reg_number or self.generate_reg_number()
        if student_data.reg_number:
            taken = self.db.query(models.Student.id).filter(models.Student.reg_number == reg_number).first()
            if taken:
                raise bad_request(f'Registration number "{reg_number}" already exists.')

        student = models.Student(
            first_name=student_data.first_name,
            middle_name=student_data.middle_name or None,
            surname=student_data.surname,
            email=student_data.email,
            phone=student_data.phone,
            date_of_birth=student_data.date_of_birth,
            gender=student_data.gender,
            home_address=student_data.home_address,
            reg_number=reg_number,
            class_id=class_obj.id if class_obj else None,
            current_class=current_class,
            section=section,
            status=status_value,
            admission_date=date.today(),
            parent_name=student_data.parent_name,
            parent_phone=student_data.parent_phone,
            parent_email=student_data.parent_email,
            emergency_contact=student_data.emergency_contact,
            emergency_phone=student_data.emergency_phone,
            username=username,
            password_hash=hash_password(password),
            credential_method=student_data.credential_method or "auto",
            send_credentials_to=student_data.send_credentials_to or "parent",
            medical_info=student_data.medical_info,
            notes=student_data.notes
        )
        self.db.add(student)

        if class_obj:
            class_obj.current_students = (class_obj.current_students or 0) + 1

        self._commit(username=username, reg_number=reg_number, status=status_value)
        self.db.refresh(student)
        logger.info("Created student %s (id=%s, status=%s)", reg_number, student.id, status_value)
        return student

    # Exams
    def get_exams(self, class_id: Optional[int] = None) -> List[models.Exam]:
        query = self.db.query(models.Exam)
        if class_id:
            # Exams without a class apply to every class
            query = query.filter(or_(models.Exam.class_id == class_id, models.Exam.class_id.is_(None)))
        return query.order_by(desc(models.Exam.created_at), desc(models.Exam.id)).all()

    def get_exam(self, exam_id: int) -> Optional[models.Exam]:
        return self.db.query(models.Exam).filter(models.Exam.id == exam_id).first()

    def _check_exam_references(self, exam_data: ExamBase) -> None:
        if not self.get_academic_year(exam_data.academic_year_id):
            raise bad_request(f"Academic year not found: {exam_data.academic_year_id}")
        if not self.get_academic_term(exam_data.academic_term_id):
            raise bad_request(f"Academic term not found: {exam_data.academic_term_id}")
        if exam_data.class_id and not self.get_class(exam_data.class_id):
            raise bad_request(f"Class not found: {exam_data.class_id}")

    def create_exam(self, exam_data: ExamBase) -> models.Exam:
        self._check_exam_references(exam_data)
        data = exam_data.model_dump()
        data["mark_type"] = exam_data.mark_type.value
        exam = models.Exam(**data)
        self.db.add(exam)
        self._commit()
        self.db.refresh(exam)
        return exam

    def update_exam(self, exam_id: int, exam_data: ExamBase) -> models.Exam:
        exam = self.get_exam(exam_id)
        if not exam:
            raise not_found("Exam not found")
        self._check_exam_references(exam_data)

        update_data = exam_data.model_dump()
        update_data["mark_type"] = exam_data.mark_type.value
        for field, value in update_data.items():
            setattr(exam, field, value)

        exam.updated_at = datetime.now(timezone.utc)
        self._commit()
        self.db.refresh(exam)
        return exam

    def delete_exam(self, exam_id: int) -> bool:
        exam = self.get_exam(exam_id)
        if not exam:
            return False
        # Score rows outlive the exam; they are keyed on student/subject/class/term
        for model in SCORE_MODELS.values():
            self.db.query(model).filter(model.exam_id == exam_id).update(
                {model.exam_id: None}, synchronize_session=False
            )
        self.db.delete(exam)
        self._commit()
        return True

    # Upload deadlines
    def get_upload_deadlines(self) -> List[models.UploadDeadline]:
        return self.db.query(models.UploadDeadline).order_by(
            desc(models.UploadDeadline.created_at), desc(models.UploadDeadline.id)
        ).all()

    def save_upload_deadline(self, deadline_data: UploadDeadlineCreate) -> Tuple[models.UploadDeadline, bool]:
        """Create the deadline for (type, year, term) or move the existing one."""
        if not self.get_academic_year(deadline_data.academic_year_id):
            raise bad_request(f"Academic year not found: {deadline_data.academic_year_id}")
        if not self.get_academic_term(deadline_data.academic_term_id):
            raise bad_request(f"Academic term not found: {deadline_data.academic_term_id}")

        existing = self.db.query(models.UploadDeadline).filter(
            models.UploadDeadline.deadline_type == deadline_data.deadline_type,
            models.UploadDeadline.academic_year_id == deadline_data.academic_year_id,
            models.UploadDeadline.academic_term_id == deadline_data.academic_term_id
        ).first()

        if existing:
            existing.deadline_date = deadline_data.deadline_date
            existing.updated_at = datetime.now(timezone.utc)
            self._commit()
            self.db.refresh(existing)
            return existing, True

        deadline = models.UploadDeadline(**deadline_data.model_dump())
        self.db.add(deadline)
        self._commit()
        self.db.refresh(deadline)
        return deadline, False

    # Teacher uploads
    def get_exam_questions_uploads(self) -> List[models.ExamQuestionsUpload]:
        return self.db.query(models.ExamQuestionsUpload).order_by(
            desc(models.ExamQuestionsUpload.created_at), desc(models.ExamQuestionsUpload.id)
        ).all()

    def get_e_notes_uploads(self) -> List[models.ENotesUpload]:
        return self.db.query(models.ENotesUpload).order_by(
            desc(models.ENotesUpload.created_at), desc(models.ENotesUpload.id)
        ).all()

    def _check_upload_references(self, upload_data: UploadCreate) -> None:
        if not self.get_teacher(upload_data.teacher_id):
            raise bad_request(f"Teacher not found: {upload_data.teacher_id}")
        if not self.get_subject(upload_data.subject_id):
            raise bad_request(f"Subject not found: {upload_data.subject_id}")
        if not self.get_class(upload_data.class_id):
            raise bad_request(f"Class not found: {upload_data.class_id}")
        if not self.get_academic_year(upload_data.academic_year_id):
            raise bad_request(f"Academic year not found: {upload_data.academic_year_id}")
        if not self.get_academic_term(upload_data.academic_term_id):
            raise bad_request(f"Academic term not found: {upload_data.academic_term_id}")

    def _save_upload(self, model, upload_data: UploadCreate, key: Tuple[str, ...], folder: str) -> Tuple[Any, bool]:
        """Record upload metadata, replacing an earlier upload for the same key."""
        self._check_upload_references(upload_data)

        now = datetime.now(timezone.utc)
        data = upload_data.model_dump()
        data["file_path"] = f"/uploads/{folder}/{upload_data.file_name}"
        data["upload_date"] = now

        existing = self.db.query(model).filter_by(**{field: data[field] for field in key}).first()
        if existing:
            for field, value in data.items():
                setattr(existing, field, value)
            existing.updated_at = now
            self._commit()
            self.db.refresh(existing)
            logger.info("Replaced %s upload %s (teacher=%s)", folder, existing.id, existing.teacher_id)
            return existing, True

        upload = model(**data)
        self.db.add(upload)
        self._commit()
        self.db.refresh(upload)
        logger.info("Recorded %s upload %s (teacher=%s)", folder, upload.id, upload.teacher_id)
        return upload, False

    def save_exam_questions_upload(
        self, upload_data: ExamQuestionsUploadCreate
    ) -> Tuple[models.ExamQuestionsUpload, bool]:
        return self._save_upload(models.ExamQuestionsUpload, upload_data, models.UPLOAD_KEY, "exam-questions")

    def save_e_notes_upload(self, upload_data: ENotesUploadCreate) -> Tuple[models.ENotesUpload, bool]:
        return self._save_upload(
            models.ENotesUpload, upload_data, models.UPLOAD_KEY + ("week_number",), "e-notes"
        )

    def get_upload_summary(self) -> Dict[str, Any]:
        """Per-teacher submission status for the current year and term.

        Empty when no academic year and term are marked current.
        """
        year, term = self._current_period()
        if not year or not term:
            logger.warning("Upload summary requested with no current academic year or term")
            return {"summary": [], "stats": None, "academic_info": None, "deadlines": []}

        teachers = self.db.query(models.Teacher).filter(
            models.Teacher.status == "active"
        ).order_by(asc(models.Teacher.first_name), asc(models.Teacher.id)).all()

        exam_question_teachers = {
            teacher_id for (teacher_id,) in self.db.query(models.ExamQuestionsUpload.teacher_id).filter(
                models.ExamQuestionsUpload.academic_year_id == year.id,
                models.ExamQuestionsUpload.academic_term_id == term.id
            )
        }
        weeks = defaultdict(set)
        for teacher_id, week in self.db.query(models.ENotesUpload.teacher_id, models.ENotesUpload.week_number).filter(
            models.ENotesUpload.academic_year_id == year.id,
            models.ENotesUpload.academic_term_id == term.id
        ):
            weeks[teacher_id].add(week)

        summary = []
        for teacher in teachers:
            weeks_submitted = len(weeks.get(teacher.id, ()))
            summary.append({
                "teacher_id": teacher.id,
                "teacher_name": teacher.full_name,
                "teacher_email": teacher.email,
                "department": teacher.department,
                "exam_questions_submitted": teacher.id in exam_question_teachers,
                "e_notes_weeks_submitted": weeks_submitted,
                "e_notes_completion_percentage": round_half_up(weeks_submitted / models.E_NOTES_WEEKS * 100),
            })

        completion = [t["e_notes_completion_percentage"] for t in summary]
        submitted = sum(1 for t in summary if t["exam_questions_submitted"])
        stats = {
            "total_teachers": len(summary),
            "exam_questions_submitted": submitted,
            "exam_questions_pending": len(summary) - submitted,
            "e_notes_fully_completed": sum(1 for p in completion if p == 100),
            "e_notes_partially_completed": sum(1 for p in completion if 0 < p < 100),
            "e_notes_not_started": sum(1 for p in completion if p == 0),
        }

        deadlines = self.db.query(models.UploadDeadline).filter(
            models.UploadDeadline.academic_year_id == year.id,
            models.UploadDeadline.academic_term_id == term.id
        ).order_by(asc(models.UploadDeadline.deadline_type)).all()

        return {
            "summary": summary,
            "stats": stats,
            "academic_info": {
                "academic_year_id": year.id,
                "academic_term_id": term.id,
                "year_name": year.name,
                "term_name": term.name
            },
            "deadlines": deadlines,
        }

    # Scores
    def _prepare_score_rows(
        self,
        mark_type: MarkType,
        submission: ScoreSubmission,
        class_obj: models.Class,
        subject: models.Subject
    ) -> List[Dict[str, Any]]:
        entries = {}
        for entry in submission.scores:
            entries[entry.student_id] = entry
        if len(entries) != len(submission.scores):
            logger.warning(
                "Dropped %d duplicate score entries; the last entry per student wins",
                len(submission.scores) - len(entries)
            )

        student_ids = list(entries)
        students = {
            s.id: s for s in self.db.query(models.Student).filter(models.Student.id.in_(student_ids)).all()
        }

        midterms = {}
        if mark_type == MarkType.TERMINAL:
            midterms = {
                m.student_id: m for m in self.db.query(models.MidtermScore).filter(
                    models.MidtermScore.student_id.in_(student_ids),
                    models.MidtermScore.subject_id == subject.id,
                    models.MidtermScore.class_id == class_obj.id,
                    models.MidtermScore.academic_year_id == submission.academic_year,
                    models.MidtermScore.academic_term_id == submission.academic_term
                ).all()
            }

        now = datetime.now(timezone.utc)
        rows = []
        for student_id, entry in entries.items():
            ca1, ca2 = entry.ca1_score, entry.ca2_score
            if mark_type == MarkType.TERMINAL:
                ca1, ca2 = apply_carry_forward(ca1, ca2, midterms.get(student_id), entry.carry_forward)

            normalized = normalize_scores(ca1, ca2, entry.exam_score, mark_type)
            student = students.get(student_id)
            if student is None:
                logger.warning("Scoring unknown student id %s", student_id)

            rows.append({
                "student_id": student_id,
                "student_name": student.full_name if student else "Unknown Student",
                "reg_number": student.reg_number if student else "N/A",
                "exam_id": submission.exam_id,
                "subject_id": subject.id,
                "subject_name": subject.subject_name,
                "class_id": class_obj.id,
                "class_name": submission.class_name or class_obj.full_name,
                "academic_year_id": submission.academic_year,
                "academic_term_id": submission.academic_term,
                "ca1_score": normalized.ca1,
                "ca2_score": normalized.ca2,
                "exam_score": normalized.exam,
                "total_score": normalized.total,
                "percentage": normalized.percentage,
                "grade": normalized.grade,
                "created_at": now,
                "updated_at": now,
            })
        return rows

    def _upsert_score_rows(self, model, rows: List[Dict[str, Any]]) -> None:
        insert = UPSERT_DIALECTS.get(self.db.get_bind().dialect.name)
        if insert is not None:
            stmt = insert(model.__table__).values(rows)
            stmt = stmt.on_conflict_do_update(
                index_elements=list(SCORE_KEY),
                set_={column: stmt.excluded[column] for column in SCORE_UPDATE_COLUMNS}
            )
            self.db.execute(stmt)
            return

        # Dialects without ON CONFLICT: update in place or add, same transaction
        for row in rows:
            existing = self.db.query(model).filter_by(**{k: row[k] for k in SCORE_KEY}).first()
            if existing is None:
                self.db.add(model(**row))
                continue
            for column in SCORE_UPDATE_COLUMNS:
                setattr(existing, column, row[column])

    def save_scores(self, mark_type: MarkType, submission: ScoreSubmission) -> int:
        """Normalize and store a batch of scores for one subject, class and term.

        Rows are written with a single insert-on-conflict-update keyed on the
        score key, inside one transaction, so resubmitting a batch replaces
        the earlier rows instead of duplicating them.
        """
        mark_type = MarkType(mark_type)
        if not submission.scores:
            raise bad_request("Scores array is required")
        if (
            not submission.subject_id
            or (not submission.class_name and not submission.class_id)
            or not submission.academic_year
            or not submission.academic_term
        ):
            raise bad_request(MISSING_SCORE_FIELDS)

        class_id = self.resolve_class_id(submission.class_id, submission.class_name)
        if not class_id:
            raise bad_request(f"Class not found: {submission.class_name}")
        class_obj = self.get_class(class_id)
        if not class_obj:
            raise bad_request(f"Class not found: {class_id}")

        subject = self.get_subject(submission.subject_id)
        if not subject:
            raise bad_request(f"Subject not found: {submission.subject_id}")

        if submission.exam_id:
            exam = self.get_exam(submission.exam_id)
            if not exam:
                raise bad_request(f"Exam not found: {submission.exam_id}")
            if exam.mark_type != mark_type.value:
                raise bad_request(
                    f"Exam {exam.id} is a {exam.mark_type} exam; {mark_type.value} scores cannot be saved against it"
                )

        rows = self._prepare_score_rows(mark_type, submission, class_obj, subject)
        model = SCORE_MODELS[mark_type]

        try:
            self._upsert_score_rows(model, rows)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.error("Failed to save %s scores: %s", mark_type.value, e.orig)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Failed to save scores: {describe_integrity_error(e)}"
            )
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Saved %d %s scores (subject=%s, class=%s, year=%s, term=%s)",
            len(rows), mark_type.value, subject.id, class_obj.id,
            submission.academic_year, submission.academic_term
        )
        return len(rows)

    def get_scores(
        self,
        mark_type: MarkType,
        subject_id: int,
        class_id: int,
        academic_year_id: int,
        academic_term_id: int,
        exam_id: Optional[int] = None
    ) -> List[Any]:
        model = SCORE_MODELS[MarkType(mark_type)]
        query = self.db.query(model).filter(
            model.subject_id == subject_id,
            model.class_id == class_id,
            model.academic_year_id == academic_year_id,
            model.academic_term_id == academic_term_id
        )
        if exam_id:
            query = query.filter(model.exam_id == exam_id)
        return query.order_by(desc(model.created_at), desc(model.id)).all()

    def get_scored_students(
        self,
        mark_type: MarkType,
        class_id: int,
        academic_year_id: Optional[int] = None,
        academic_term_id: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Distinct students that have score rows for a class and term."""
        model = SCORE_MODELS[MarkType(mark_type)]
        query = self.db.query(model).filter(model.class_id == class_id)
        if academic_year_id:
            query = query.filter(model.academic_year_id == academic_year_id)
        if academic_term_id:
            query = query.filter(model.academic_term_id == academic_term_id)

        students = {}
        for row in query.order_by(asc(model.id)).all():
            if row.student_id not in students:
                students[row.student_id] = {
                    "id": row.student_id,
                    "student_name": row.student_name,
                    "reg_number": row.reg_number,
                    "class_id": row.class_id,
                    "class_name": row.class_name
                }
        return list(students.values())
