from fastapi import FastAPI, Depends, HTTPException, status, Query
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from typing import Any, List, Optional
from datetime import datetime, timezone
import logging

import pandas as pd

from config import Settings, configure_logging, get_settings
from database import get_db, engine, Base, render_schema_sql
from models import MarkType
from schemas import (
    # Academic calendar schemas
    AcademicYearCreate, AcademicYearResponse, AcademicTermCreate, AcademicTermResponse,
    CurrentAcademicInfo,
    # Class, teacher and subject schemas
    ClassCreate, ClassResponse, TeacherCreate, TeacherResponse, SubjectCreate, SubjectResponse,
    # Student schemas
    StudentCreate, StudentResponse, StudentCreated, ClassStudent,
    # Exam schemas
    ExamCreate, ExamResponse,
    # Score and result schemas
    ScoreSubmission, ScoreRow, ScoreStudentSummary, ScoreSaveResponse,
    StudentExamResults, ClassExamSummary,
    # Upload deadline schemas
    UploadDeadlineCreate, UploadDeadlineResponse, UploadDeadlineSaved,
    # Teacher upload schemas
    ExamQuestionsUploadCreate, ExamQuestionsUploadResponse, ExamQuestionsUploadSaved,
    ENotesUploadCreate, ENotesUploadResponse, ENotesUploadSaved, UploadSummary,
    # General schemas
    SuccessResponse, ErrorResponse, SetupResponse, HealthResponse
)
from crud import CRUDService
from results import ResultAggregator

API_VERSION = "1.0.0"

settings = get_settings()
configure_logging(settings)
logger = logging.getLogger(__name__)

# Create database tables
Base.metadata.create_all(bind=engine)

# Initialize FastAPI app
app = FastAPI(
    title="School Portal API",
    description="""Administration and marks-entry backend for a secondary school portal.

    Features:
    - Midterm and terminal marks entry with clamping and grading
    - Carry-forward of midterm marks into terminal CA columns
    - Per-student exam results with class averages and rank
    - Students, classes, subjects, exams and academic calendar
    - Teacher upload tracking against deadlines
    """,
    version=API_VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

SCORE_EXPORT_COLUMNS = list(ScoreRow.model_fields)


def _load_scores(
    crud: CRUDService,
    mark_type: MarkType,
    exam_id: Optional[int],
    subject_id: Optional[int],
    class_id: Optional[int],
    class_name: Optional[str],
    academic_year: Optional[int],
    academic_term: Optional[int]
) -> List[Any]:
    if not subject_id or not academic_year or not academic_term:
        return []
    resolved_class_id = crud.resolve_class_id(class_id, class_name)
    if not resolved_class_id:
        return []
    return crud.get_scores(mark_type, subject_id, resolved_class_id, academic_year, academic_term, exam_id)


# ========== MARKS ENTRY ENDPOINTS ==========

@app.get("/api/admin/marks/students-by-class", response_model=List[ClassStudent])
async def get_students_by_class(
    classId: Optional[int] = None,
    db: Session = Depends(get_db)
):
    """Active students of a class, for the marks-entry grid"""
    if not classId:
        raise HTTPException(status_code=400, detail="classId is required")

    crud = CRUDService(db)
    class_obj, students = crud.get_class_students(classId)

    return [
        ClassStudent(
            id=s.id,
            first_name=s.first_name,
            middle_name=s.middle_name,
            surname=s.surname,
            full_name=s.full_name,
            reg_number=s.reg_number,
            username=s.username,
            status=s.status,
            class_id=class_obj.id,
            class_name=class_obj.full_name
        )
        for s in students
    ]


@app.post("/api/admin/marks/{mark_type}", response_model=ScoreSaveResponse)
async def save_marks(
    mark_type: MarkType,
    submission: ScoreSubmission,
    db: Session = Depends(get_db)
):
    """Save a batch of midterm or terminal scores"""
    crud = CRUDService(db)
    count = crud.save_scores(mark_type, submission)
    label = "Midterm" if mark_type == MarkType.MIDTERM else "Terminal"
    return ScoreSaveResponse(message=f"{label} scores saved successfully", count=count)


@app.get("/api/admin/marks/{mark_type}")
async def get_marks(
    mark_type: MarkType,
    exam_id: Optional[int] = None,
    subject_id: Optional[int] = None,
    class_id: Optional[int] = None,
    classId: Optional[int] = None,
    class_name: Optional[str] = None,
    academic_year: Optional[int] = None,
    academicYearId: Optional[int] = None,
    academic_term: Optional[int] = None,
    academicTermId: Optional[int] = None,
    getStudentsList: bool = False,
    db: Session = Depends(get_db)
):
    """Stored scores for a subject, class and term, newest first"""
    crud = CRUDService(db)
    class_id = class_id or classId
    academic_year = academic_year or academicYearId
    academic_term = academic_term or academicTermId

    if getStudentsList:
        resolved_class_id = crud.resolve_class_id(class_id, class_name)
        if not resolved_class_id:
            return []
        students = crud.get_scored_students(mark_type, resolved_class_id, academic_year, academic_term)
        return [ScoreStudentSummary.model_validate(s) for s in students]

    rows = _load_scores(crud, mark_type, exam_id, subject_id, class_id, class_name, academic_year, academic_term)
    return [ScoreRow.model_validate(r) for r in rows]


@app.get("/api/admin/marks/{mark_type}/export")
async def export_marks(
    mark_type: MarkType,
    exam_id: Optional[int] = None,
    subject_id: Optional[int] = None,
    class_id: Optional[int] = None,
    classId: Optional[int] = None,
    class_name: Optional[str] = None,
    academic_year: Optional[int] = None,
    academicYearId: Optional[int] = None,
    academic_term: Optional[int] = None,
    academicTermId: Optional[int] = None,
    db: Session = Depends(get_db)
):
    """Export stored scores as CSV"""
    crud = CRUDService(db)
    rows = _load_scores(
        crud, mark_type, exam_id, subject_id, class_id or classId, class_name,
        academic_year or academicYearId, academic_term or academicTermId
    )

    df = pd.DataFrame(
        [ScoreRow.model_validate(r).model_dump() for r in rows],
        columns=SCORE_EXPORT_COLUMNS
    )
    csv_content = df.to_csv(index=False)
    filename = f"{mark_type.value}_scores_{datetime.now(timezone.utc).strftime('%Y%m%d')}.csv"

    return Response(
        content=csv_content,
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"}
    )


# ========== RESULT ENDPOINTS ==========

@app.get("/api/students/{student_id}/results", response_model=StudentExamResults)
async def get_student_results(
    student_id: int,
    exam_id: int = Query(...),
    db: Session = Depends(get_db)
):
    """A student's scores for one exam with class statistics and rank"""
    aggregator = ResultAggregator(db)
    return aggregator.student_exam_results(student_id, exam_id)


@app.get("/api/admin/results/class", response_model=ClassExamSummary)
async def get_class_results(
    class_id: int = Query(...),
    exam_id: int = Query(...),
    db: Session = Depends(get_db)
):
    """Per-subject statistics and rankings for a class in one exam"""
    aggregator = ResultAggregator(db)
    return aggregator.class_exam_summary(class_id, exam_id)


# ========== STUDENT ENDPOINTS ==========

@app.post("/api/admin/students", response_model=StudentCreated)
async def create_student(
    student_data: StudentCreate,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings)
):
    """Register a student and generate login credentials"""
    crud = CRUDService(db)
    student = crud.create_student(student_data, default_password=settings.default_student_password)

    return StudentCreated(
        **StudentResponse.model_validate(student).model_dump(),
        message=(
            f"Student created successfully. Username: {student.username}. "
            f"Credentials will be sent to {student.send_credentials_to}."
        )
    )


@app.get("/api/admin/students", response_model=List[StudentResponse])
async def get_students(db: Session = Depends(get_db)):
    crud = CRUDService(db)
    return [StudentResponse.model_validate(s) for s in crud.get_students()]


@app.get("/api/admin/students/{student_id}", response_model=StudentResponse)
async def get_student(student_id: int, db: Session = Depends(get_db)):
    crud = CRUDService(db)
    student = crud.get_student(student_id)
    if not student:
        raise HTTPException(status_code=404, detail="Student not found")
    return StudentResponse.model_validate(student)


# ========== CLASS, TEACHER & SUBJECT ENDPOINTS ==========

@app.post("/api/admin/classes", response_model=ClassResponse)
async def create_class(class_data: ClassCreate, db: Session = Depends(get_db)):
    """Create a class and assign its class teacher"""
    crud = CRUDService(db)
    return ClassResponse.model_validate(crud.create_class(class_data))


@app.get("/api/admin/classes", response_model=List[ClassResponse])
async def get_classes(db: Session = Depends(get_db)):
    crud = CRUDService(db)
    return [ClassResponse.model_validate(c) for c in crud.get_classes()]


@app.post("/api/admin/teachers", response_model=TeacherResponse)
async def create_teacher(teacher_data: TeacherCreate, db: Session = Depends(get_db)):
    crud = CRUDService(db)
    return TeacherResponse.model_validate(crud.create_teacher(teacher_data))


@app.get("/api/admin/teachers", response_model=List[TeacherResponse])
async def get_teachers(db: Session = Depends(get_db)):
    crud = CRUDService(db)
    return [TeacherResponse.model_validate(t) for t in crud.get_teachers()]


@app.post("/api/admin/subjects", response_model=SubjectResponse)
async def create_subject(subject_data: SubjectCreate, db: Session = Depends(get_db)):
    crud = CRUDService(db)
    return SubjectResponse.model_validate(crud.create_subject(subject_data))


@app.get("/api/admin/subjects", response_model=List[SubjectResponse])
async def get_subjects(db: Session = Depends(get_db)):
    crud = CRUDService(db)
    return [SubjectResponse.model_validate(s) for s in crud.get_subjects()]


# ========== EXAM ENDPOINTS ==========

@app.post("/api/admin/exams", response_model=ExamResponse)
async def create_exam(exam_data: ExamCreate, db: Session = Depends(get_db)):
    """Create an exam for one class, or for every class when class_id is omitted"""
    crud = CRUDService(db)
    exam = crud.create_exam(exam_data)
    logger.info("Created %s exam %r (id=%s)", exam.mark_type, exam.name, exam.id)
    return ExamResponse.model_validate(exam)


@app.get("/api/admin/exams", response_model=List[ExamResponse])
async def get_exams(class_id: Optional[int] = None, db: Session = Depends(get_db)):
    crud = CRUDService(db)
    return [ExamResponse.model_validate(e) for e in crud.get_exams(class_id)]


@app.put("/api/admin/exams/{exam_id}", response_model=ExamResponse)
async def update_exam(exam_id: int, exam_data: ExamCreate, db: Session = Depends(get_db)):
    crud = CRUDService(db)
    return ExamResponse.model_validate(crud.update_exam(exam_id, exam_data))


@app.delete("/api/admin/exams/{exam_id}", response_model=SuccessResponse)
async def delete_exam(exam_id: int, db: Session = Depends(get_db)):
    crud = CRUDService(db)
    if not crud.delete_exam(exam_id):
        raise HTTPException(status_code=404, detail="Exam not found")
    return SuccessResponse(message="Exam deleted successfully")


# ========== ACADEMIC CALENDAR ENDPOINTS ==========

@app.post("/api/admin/academic-years", response_model=AcademicYearResponse)
async def create_academic_year(year_data: AcademicYearCreate, db: Session = Depends(get_db)):
    crud = CRUDService(db)
    return AcademicYearResponse.model_validate(crud.create_academic_year(year_data))


@app.get("/api/admin/academic-years", response_model=List[AcademicYearResponse])
async def get_academic_years(db: Session = Depends(get_db)):
    crud = CRUDService(db)
    return [AcademicYearResponse.model_validate(y) for y in crud.get_academic_years()]


@app.post("/api/admin/academic-years/{year_id}/set-current", response_model=AcademicYearResponse)
async def set_current_academic_year(year_id: int, db: Session = Depends(get_db)):
    crud = CRUDService(db)
    return AcademicYearResponse.model_validate(crud.set_current_academic_year(year_id))


@app.post("/api/admin/academic-terms", response_model=AcademicTermResponse)
async def create_academic_term(term_data: AcademicTermCreate, db: Session = Depends(get_db)):
    crud = CRUDService(db)
    return AcademicTermResponse.model_validate(crud.create_academic_term(term_data))


@app.get("/api/admin/academic-terms", response_model=List[AcademicTermResponse])
async def get_academic_terms(academic_year_id: Optional[int] = None, db: Session = Depends(get_db)):
    crud = CRUDService(db)
    return [AcademicTermResponse.model_validate(t) for t in crud.get_academic_terms(academic_year_id)]


@app.post("/api/admin/academic-terms/{term_id}/set-current", response_model=AcademicTermResponse)
async def set_current_academic_term(term_id: int, db: Session = Depends(get_db)):
    crud = CRUDService(db)
    return AcademicTermResponse.model_validate(crud.set_current_academic_term(term_id))


@app.get("/api/admin/current-academic-info", response_model=CurrentAcademicInfo)
async def get_current_academic_info(db: Session = Depends(get_db)):
    """The academic year and term flagged as current"""
    crud = CRUDService(db)
    return crud.get_current_academic_info()


# ========== UPLOAD DEADLINE ENDPOINTS ==========

@app.post("/api/admin/upload-deadlines", response_model=UploadDeadlineSaved)
async def save_upload_deadline(deadline_data: UploadDeadlineCreate, db: Session = Depends(get_db)):
    """Set the deadline for a (type, year, term), replacing any earlier one"""
    crud = CRUDService(db)
    deadline, updated = crud.save_upload_deadline(deadline_data)
    return UploadDeadlineSaved(
        deadline=UploadDeadlineResponse.model_validate(deadline),
        updated=updated
    )


@app.get("/api/admin/upload-deadlines", response_model=List[UploadDeadlineResponse])
async def get_upload_deadlines(db: Session = Depends(get_db)):
    crud = CRUDService(db)
    return [UploadDeadlineResponse.model_validate(d) for d in crud.get_upload_deadlines()]


# ========== TEACHER UPLOAD ENDPOINTS ==========

@app.post("/api/admin/exam-questions-uploads", response_model=ExamQuestionsUploadSaved)
async def save_exam_questions_upload(upload_data: ExamQuestionsUploadCreate, db: Session = Depends(get_db)):
    """Record an exam-questions document, replacing the teacher's earlier one for the same class and subject"""
    crud = CRUDService(db)
    upload, updated = crud.save_exam_questions_upload(upload_data)
    return ExamQuestionsUploadSaved(upload=ExamQuestionsUploadResponse.model_validate(upload), updated=updated)


@app.get("/api/admin/exam-questions-uploads", response_model=List[ExamQuestionsUploadResponse])
async def get_exam_questions_uploads(db: Session = Depends(get_db)):
    crud = CRUDService(db)
    return [ExamQuestionsUploadResponse.model_validate(u) for u in crud.get_exam_questions_uploads()]


@app.post("/api/admin/e-notes-uploads", response_model=ENotesUploadSaved)
async def save_e_notes_upload(upload_data: ENotesUploadCreate, db: Session = Depends(get_db)):
    """Record a week's e-notes document"""
    crud = CRUDService(db)
    upload, updated = crud.save_e_notes_upload(upload_data)
    return ENotesUploadSaved(upload=ENotesUploadResponse.model_validate(upload), updated=updated)


@app.get("/api/admin/e-notes-uploads", response_model=List[ENotesUploadResponse])
async def get_e_notes_uploads(db: Session = Depends(get_db)):
    crud = CRUDService(db)
    return [ENotesUploadResponse.model_validate(u) for u in crud.get_e_notes_uploads()]


@app.get("/api/admin/upload-summary", response_model=UploadSummary)
async def get_upload_summary(db: Session = Depends(get_db)):
    """Which active teachers have submitted exam questions and weekly e-notes this term"""
    crud = CRUDService(db)
    data = crud.get_upload_summary()
    data["deadlines"] = [UploadDeadlineResponse.model_validate(d) for d in data["deadlines"]]
    return UploadSummary(**data)


# ========== SETUP & HEALTH ==========

@app.post("/api/setup-supabase", response_model=SetupResponse)
async def setup_database(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings)
):
    """Check the database connection and return the schema DDL to run by hand"""
    if not settings.database_url or not settings.anon_key:
        raise HTTPException(
            status_code=400,
            detail="Database environment variables not configured. Set DATABASE_URL and DATABASE_ANON_KEY."
        )

    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("Database connection check failed: %s", e)
        raise HTTPException(status_code=500, detail=f"Database connection failed: {e}")

    return SetupResponse(
        message="Database connection is working. Run the SQL below to create any missing tables.",
        instructions="Open the SQL editor of your database project, paste the SQL and run it.",
        sql=render_schema_sql()
    )


@app.get("/api/health", response_model=HealthResponse)
async def health_check(db: Session = Depends(get_db)):
    """System health check"""
    try:
        db.execute(text("SELECT 1"))
        database_status = "connected"
    except SQLAlchemyError as e:
        logger.error("Health check could not reach the database: %s", e)
        database_status = "unavailable"

    return HealthResponse(
        status="healthy" if database_status == "connected" else "degraded",
        timestamp=datetime.now(timezone.utc),
        version=API_VERSION,
        services={"database": database_status}
    )


# ========== ERROR HANDLERS ==========

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc):
    """Custom HTTP exception handler"""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=str(exc.detail),
            code=f"HTTP_{exc.status_code}",
            details={"path": request.url.path}
        ).model_dump()
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc):
    """Malformed or incomplete request bodies are client errors"""
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else error.get("msg", ""))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse(
            error="; ".join(messages) or "Invalid request",
            code="VALIDATION_ERROR",
            details={"path": request.url.path, "errors": jsonable_encoder(exc.errors())}
        ).model_dump()
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    """General exception handler"""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error="Internal server error",
            code="INTERNAL_ERROR",
            details={"path": request.url.path}
        ).model_dump()
    )


# ========== STARTUP ==========

@app.on_event("startup")
async def startup_event():
    """Run on application startup"""
    logger.info(
        "School Portal API %s starting (environment=%s, database=%s)",
        API_VERSION, settings.environment, engine.dialect.name
    )


# ========== MAIN EXECUTION ==========

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower()
    )
