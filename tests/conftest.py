import os
from datetime import date, timedelta

# Settings are read once at import time, so the test database must be in
# place before the application modules load.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from fastapi.testclient import TestClient

import models
from app import app
from crud import hash_password
from database import Base, SessionLocal, engine


@pytest.fixture(autouse=True)
def fresh_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


def add_student(db, first_name, surname, class_obj, status="Active"):
    student = models.Student(
        first_name=first_name,
        surname=surname,
        reg_number=f"REG-{first_name}-{surname}",
        username=f"{first_name}.{surname}".lower(),
        password_hash=hash_password("password123"),
        class_id=class_obj.id,
        current_class=class_obj.class_name,
        section=class_obj.section,
        status=status,
    )
    db.add(student)
    db.commit()
    db.refresh(student)
    return student


def add_exam(db, school, mark_type="midterm", name="First Term Midterm", class_id=None):
    today = date.today()
    exam = models.Exam(
        name=name,
        mark_type=mark_type,
        academic_year_id=school["year"],
        academic_term_id=school["term"],
        start_date=today - timedelta(days=3),
        end_date=today + timedelta(days=3),
        class_id=class_id,
    )
    db.add(exam)
    db.commit()
    db.refresh(exam)
    return exam


@pytest.fixture
def school(db):
    """A year and term, two JSS 1 sections, two subjects and three Gold students.

    Silver is created first so that it holds the lower id.
    """
    year = models.AcademicYear(name="2024/2025", start_date=date(2024, 9, 1), end_date=date(2025, 7, 31))
    db.add(year)
    db.commit()
    term = models.AcademicTerm(name="First Term", academic_year_id=year.id)
    db.add(term)

    silver = models.Class(class_name="JSS 1", category="Junior", section="Silver", academic_year="2024/2025")
    gold = models.Class(class_name="JSS 1", category="Junior", section="Gold", academic_year="2024/2025")
    db.add(silver)
    db.commit()
    db.add(gold)

    maths = models.Subject(subject_name="Mathematics", subject_code="MTH", department="Sciences", class_level="JSS")
    english = models.Subject(subject_name="English", subject_code="ENG", department="Arts", class_level="JSS")
    db.add_all([maths, english])
    db.commit()

    ada = add_student(db, "Ada", "Obi", gold)
    bola = add_student(db, "Bola", "Ade", gold)
    chidi = add_student(db, "Chidi", "Eze", gold)

    return {
        "year": year.id,
        "term": term.id,
        "silver": silver.id,
        "gold": gold.id,
        "maths": maths.id,
        "english": english.id,
        "ada": ada.id,
        "bola": bola.id,
        "chidi": chidi.id,
    }


def submission(school, scores, subject="maths", class_key="gold", **extra):
    body = {
        "scores": scores,
        "subject_id": school[subject],
        "class_id": school[class_key],
        "academic_year": school["year"],
        "academic_term": school["term"],
    }
    body.update(extra)
    return body


def score_query(school, subject="maths", class_key="gold"):
    return {
        "subject_id": school[subject],
        "class_id": school[class_key],
        "academic_year": school["year"],
        "academic_term": school["term"],
    }
