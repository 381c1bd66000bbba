from pydantic import BaseModel, Field, EmailStr, validator, ConfigDict
from typing import Optional, List, Dict, Any
from datetime import datetime, date

from models import MarkType, ExamStatus, E_NOTES_WEEKS


# Base Schemas
class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class TimestampMixin(BaseModel):
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# Academic Calendar Schemas
class AcademicYearCreate(BaseSchema):
    year_name: str = Field(..., min_length=1, max_length=50)
    start_date: date
    end_date: date
    is_active: bool = True


class AcademicYearResponse(BaseSchema):
    id: int
    name: str
    start_date: date
    end_date: date
    is_active: bool = True
    is_current: bool = False


class AcademicTermCreate(BaseSchema):
    name: str = Field(..., min_length=1, max_length=50)
    academic_year_id: int
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class AcademicTermResponse(BaseSchema):
    id: int
    name: str
    academic_year_id: int
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_current: bool = False


class CurrentAcademicInfo(BaseSchema):
    academic_year_id: int
    academic_term_id: int
    year_name: str
    term_name: str


# Class Schemas
class ClassCreate(BaseSchema):
    name: str = Field(..., min_length=1)
    category: str
    section: str
    academic_year: str
    selected_teacher_id: int
    max_students: int = Field(..., gt=0)
    status: str = "active"
    description: Optional[str] = None

    @validator("category")
    def validate_category(cls, v):
        normalized = v.strip().capitalize()
        if normalized not in ("Junior", "Senior"):
            raise ValueError("Category must be Junior or Senior")
        return normalized


class ClassResponse(BaseSchema, TimestampMixin):
    id: int
    class_name: str
    category: str
    section: Optional[str] = None
    academic_year: Optional[str] = None
    class_teacher_id: Optional[int] = None
    teacher_name: Optional[str] = "Unassigned"
    max_students: int = 0
    current_students: int = 0
    subjects_count: int = 0
    status: str = "active"
    description: Optional[str] = None


# Teacher Schemas
class TeacherCreate(BaseSchema):
    first_name: str
    middle_name: Optional[str] = None
    surname: str
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    department: Optional[str] = None


class TeacherResponse(TeacherCreate):
    id: int
    status: str = "active"


# Subject Schemas
class SubjectCreate(BaseSchema):
    subject_name: str = Field(..., min_length=1)
    subject_code: str = Field(..., min_length=1, max_length=20)
    department: str
    class_level: str
    teacher_id: Optional[int] = None
    description: Optional[str] = None
    is_core: bool = False
    is_elective: bool = False
    status: str = "active"


class SubjectResponse(SubjectCreate):
    id: int
    credit_hours: int = 1
    created_at: Optional[datetime] = None


# Student Schemas
class StudentCreate(BaseSchema):
    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    surname: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    home_address: Optional[str] = None

    class_id: Optional[int] = None
    current_class: Optional[str] = None
    section: Optional[str] = None
    reg_number: Optional[str] = None
    status: Optional[str] = None

    parent_name: Optional[str] = None
    parent_phone: Optional[str] = None
    parent_email: Optional[EmailStr] = None
    emergency_contact: Optional[str] = None
    emergency_phone: Optional[str] = None

    credential_method: str = "auto"
    custom_username: Optional[str] = None
    custom_password: Optional[str] = None
    send_credentials_to: str = "parent"

    medical_info: Optional[str] = None
    notes: Optional[str] = None

    @validator("email", "parent_email", pre=True)
    def blank_email_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class StudentResponse(BaseSchema, TimestampMixin):
    id: int
    first_name: str
    middle_name: Optional[str] = None
    surname: str
    full_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    reg_number: str
    class_id: Optional[int] = None
    current_class: str
    section: str
    status: str
    admission_date: Optional[date] = None
    parent_name: Optional[str] = None
    parent_phone: Optional[str] = None
    parent_email: Optional[str] = None
    username: str
    credential_method: str = "auto"
    send_credentials_to: str = "parent"


class StudentCreated(StudentResponse):
    message: str


class ClassStudent(BaseSchema):
    id: int
    first_name: str
    middle_name: Optional[str] = None
    surname: str
    full_name: str
    reg_number: str
    username: str
    status: str
    class_id: int
    class_name: str


# Exam Schemas
class ExamBase(BaseSchema):
    name: str = Field(..., min_length=1)
    mark_type: MarkType = MarkType.MIDTERM
    session: Optional[str] = None
    academic_year_id: int
    academic_term_id: int
    start_date: date
    end_date: date
    class_id: Optional[int] = None  # None means every class

    @validator("end_date")
    def validate_dates(cls, v, values):
        start = values.get("start_date")
        if start is not None and v < start:
            raise ValueError("end_date must not be before start_date")
        return v


class ExamCreate(ExamBase):
    pass


class ExamResponse(BaseSchema, TimestampMixin):
    id: int
    name: str
    mark_type: MarkType
    session: Optional[str] = None
    academic_year_id: int
    academic_term_id: int
    start_date: date
    end_date: date
    class_id: Optional[int] = None
    scope: str = "ALL"
    status: ExamStatus


# Score Schemas
class ScoreEntry(BaseModel):
    """One student's raw marks as typed into the entry grid."""

    student_id: int
    ca1_score: Optional[Any] = None
    ca2_score: Optional[Any] = None
    exam_score: Optional[Any] = None
    carry_forward: Optional[bool] = None


class ScoreSubmission(BaseModel):
    scores: Optional[List[ScoreEntry]] = None
    exam_id: Optional[int] = None
    subject_id: Optional[int] = None
    class_name: Optional[str] = None
    class_id: Optional[int] = None
    academic_year: Optional[int] = None
    academic_term: Optional[int] = None


class ScoreRow(BaseSchema):
    id: int
    student_id: int
    student_name: Optional[str] = None
    reg_number: Optional[str] = None
    exam_id: Optional[int] = None
    subject_id: int
    subject_name: Optional[str] = None
    class_id: int
    class_name: Optional[str] = None
    academic_year_id: int
    academic_term_id: int
    ca1_score: float
    ca2_score: float
    exam_score: float
    total_score: float
    percentage: int
    grade: str
    created_at: Optional[datetime] = None


class ScoreStudentSummary(BaseSchema):
    id: int
    student_name: Optional[str] = None
    reg_number: Optional[str] = None
    class_id: int
    class_name: Optional[str] = None


class ScoreSaveResponse(BaseSchema):
    message: str
    count: int


# Result Schemas
class SubjectResult(BaseSchema):
    subject_id: int
    subject_name: Optional[str] = None
    ca1_score: float
    ca2_score: float
    exam_score: float
    total_score: float
    percentage: int
    grade: str
    class_average: float
    class_highest: float
    class_lowest: float


class StudentExamResults(BaseSchema):
    student_id: int
    student_name: Optional[str] = None
    exam_id: int
    exam_name: str
    mark_type: MarkType
    class_id: Optional[int] = None
    subjects: List[SubjectResult]
    total_marks: float
    average_percentage: int
    overall_grade: str
    subjects_passed: int
    subjects_failed: int
    rank: Optional[int] = None
    class_size: int


class SubjectStatistics(BaseSchema):
    subject_id: int
    subject_name: Optional[str] = None
    students: int
    average: float
    highest: float
    lowest: float


class RankedStudent(BaseSchema):
    student_id: int
    student_name: Optional[str] = None
    total_marks: float
    subjects: int
    rank: int


class ClassExamSummary(BaseSchema):
    class_id: int
    exam_id: int
    exam_name: str
    mark_type: MarkType
    subjects: List[SubjectStatistics]
    rankings: List[RankedStudent]


# Upload Deadline Schemas
class UploadDeadlineCreate(BaseSchema):
    deadline_type: str = Field(..., min_length=1)
    academic_year_id: int
    academic_term_id: int
    deadline_date: datetime


class UploadDeadlineResponse(BaseSchema, TimestampMixin):
    id: int
    deadline_type: str
    academic_year_id: int
    academic_term_id: int
    deadline_date: datetime
    year_name: str = "Unknown Year"
    term_name: str = "Unknown Term"


class UploadDeadlineSaved(BaseSchema):
    success: bool = True
    deadline: UploadDeadlineResponse
    updated: bool


# Teacher Upload Schemas
class UploadCreate(BaseSchema):
    teacher_id: int
    subject_id: int
    class_id: int
    academic_year_id: int
    academic_term_id: int
    file_name: str = Field(..., min_length=1, max_length=255)
    file_size: Optional[int] = Field(None, ge=0)
    uploaded_by_admin: bool = False

    @validator("file_name")
    def validate_docx(cls, v):
        if not v.strip().lower().endswith(".docx"):
            raise ValueError("Only DOCX files are allowed")
        return v.strip()


class ExamQuestionsUploadCreate(UploadCreate):
    pass


class ENotesUploadCreate(UploadCreate):
    week_number: int = Field(..., ge=1, le=E_NOTES_WEEKS)


class ExamQuestionsUploadResponse(BaseSchema, TimestampMixin):
    id: int
    teacher_id: int
    subject_id: int
    class_id: int
    academic_year_id: int
    academic_term_id: int
    file_name: str
    file_path: str
    file_size: Optional[int] = None
    upload_date: Optional[datetime] = None
    uploaded_by_admin: bool = False


class ENotesUploadResponse(ExamQuestionsUploadResponse):
    week_number: int


class ExamQuestionsUploadSaved(BaseSchema):
    success: bool = True
    upload: ExamQuestionsUploadResponse
    updated: bool


class ENotesUploadSaved(BaseSchema):
    success: bool = True
    upload: ENotesUploadResponse
    updated: bool


class TeacherUploadStatus(BaseSchema):
    teacher_id: int
    teacher_name: str
    teacher_email: Optional[str] = None
    department: Optional[str] = None
    exam_questions_submitted: bool
    e_notes_weeks_submitted: int
    e_notes_completion_percentage: int


class UploadStats(BaseSchema):
    total_teachers: int
    exam_questions_submitted: int
    exam_questions_pending: int
    e_notes_fully_completed: int
    e_notes_partially_completed: int
    e_notes_not_started: int


class UploadSummary(BaseSchema):
    summary: List[TeacherUploadStatus] = []
    stats: Optional[UploadStats] = None
    academic_info: Optional[CurrentAcademicInfo] = None
    deadlines: List[UploadDeadlineResponse] = []


# API Response Schemas
class SuccessResponse(BaseSchema):
    success: bool = True
    message: str
    data: Optional[Any] = None


class ErrorResponse(BaseSchema):
    success: bool = False
    error: str
    code: str
    details: Optional[Dict[str, Any]] = None


class SetupResponse(BaseSchema):
    success: bool = True
    message: str
    instructions: str
    sql: str


class HealthResponse(BaseSchema):
    status: str
    timestamp: datetime
    version: str
    services: Dict[str, str]
