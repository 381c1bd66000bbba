import pytest

import models


@pytest.fixture
def teachers(db):
    grace = models.Teacher(first_name="Grace", surname="Adebayo", email="grace.adebayo@stmarys.edu.ng", department="Sciences")
    tunde = models.Teacher(first_name="Tunde", surname="Bakare", department="Arts")
    musa = models.Teacher(first_name="Musa", surname="Bello", status="inactive")
    db.add_all([grace, tunde, musa])
    db.commit()
    return {"grace": grace.id, "tunde": tunde.id, "musa": musa.id}


def upload(school, teacher_id, file_name="questions.docx", **extra):
    body = {
        "teacher_id": teacher_id,
        "subject_id": school["maths"],
        "class_id": school["gold"],
        "academic_year_id": school["year"],
        "academic_term_id": school["term"],
        "file_name": file_name,
        "file_size": 20480,
    }
    body.update(extra)
    return body


def make_current(client, school):
    assert client.post(f"/api/admin/academic-years/{school['year']}/set-current").status_code == 200
    assert client.post(f"/api/admin/academic-terms/{school['term']}/set-current").status_code == 200


def test_exam_questions_resubmission_replaces_upload(client, school, teachers):
    first = client.post("/api/admin/exam-questions-uploads", json=upload(school, teachers["grace"]))
    assert first.status_code == 200
    first = first.json()
    assert first["updated"] is False
    assert first["upload"]["file_path"] == "/uploads/exam-questions/questions.docx"
    assert first["upload"]["uploaded_by_admin"] is False

    second = client.post(
        "/api/admin/exam-questions-uploads",
        json=upload(school, teachers["grace"], file_name="questions-v2.docx", uploaded_by_admin=True),
    ).json()
    assert second["updated"] is True
    assert second["upload"]["id"] == first["upload"]["id"]
    assert second["upload"]["file_name"] == "questions-v2.docx"
    assert second["upload"]["uploaded_by_admin"] is True

    uploads = client.get("/api/admin/exam-questions-uploads").json()
    assert [u["file_name"] for u in uploads] == ["questions-v2.docx"]


def test_e_notes_are_kept_per_week(client, school, teachers):
    for week in (1, 2):
        body = upload(school, teachers["grace"], file_name=f"week{week}.docx", week_number=week)
        assert client.post("/api/admin/e-notes-uploads", json=body).json()["updated"] is False

    again = client.post(
        "/api/admin/e-notes-uploads",
        json=upload(school, teachers["grace"], file_name="week1-revised.docx", week_number=1),
    ).json()
    assert again["updated"] is True
    assert again["upload"]["week_number"] == 1
    assert again["upload"]["file_path"] == "/uploads/e-notes/week1-revised.docx"

    uploads = client.get("/api/admin/e-notes-uploads").json()
    assert sorted((u["week_number"], u["file_name"]) for u in uploads) == [
        (1, "week1-revised.docx"),
        (2, "week2.docx"),
    ]


@pytest.mark.parametrize("week", [0, 12])
def test_e_notes_week_out_of_range(client, school, teachers, db, week):
    response = client.post(
        "/api/admin/e-notes-uploads",
        json=upload(school, teachers["grace"], file_name="notes.docx", week_number=week),
    )
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"
    assert db.query(models.ENotesUpload).count() == 0


def test_only_docx_files_accepted(client, school, teachers):
    response = client.post("/api/admin/exam-questions-uploads", json=upload(school, teachers["grace"], file_name="questions.pdf"))
    assert response.status_code == 400
    assert "Only DOCX files are allowed" in response.json()["error"]


def test_upload_with_unknown_references(client, school, teachers):
    response = client.post("/api/admin/exam-questions-uploads", json=upload(school, 999))
    assert response.status_code == 400
    assert response.json()["error"] == "Teacher not found: 999"

    response = client.post("/api/admin/exam-questions-uploads", json=upload(school, teachers["grace"], class_id=999))
    assert response.status_code == 400
    assert response.json()["error"] == "Class not found: 999"


def test_upload_summary_without_current_period(client, school, teachers):
    response = client.get("/api/admin/upload-summary")
    assert response.status_code == 200
    assert response.json() == {"summary": [], "stats": None, "academic_info": None, "deadlines": []}


def test_upload_summary_tracks_active_teachers(client, school, teachers, db):
    make_current(client, school)
    second_term = models.AcademicTerm(name="Second Term", academic_year_id=school["year"])
    db.add(second_term)
    db.commit()

    client.post("/api/admin/exam-questions-uploads", json=upload(school, teachers["grace"]))
    for week in range(1, 12):
        client.post("/api/admin/e-notes-uploads", json=upload(school, teachers["grace"], file_name="notes.docx", week_number=week))
    for week in (1, 2, 3):
        client.post("/api/admin/e-notes-uploads", json=upload(school, teachers["tunde"], file_name="notes.docx", week_number=week))
    # Other terms and inactive teachers do not count
    client.post("/api/admin/exam-questions-uploads", json=upload(school, teachers["tunde"], academic_term_id=second_term.id))
    client.post("/api/admin/exam-questions-uploads", json=upload(school, teachers["musa"]))

    for deadline_type, term_id in (("exam_questions", school["term"]), ("e_notes", school["term"]), ("e_notes", second_term.id)):
        client.post("/api/admin/upload-deadlines", json={
            "deadline_type": deadline_type,
            "academic_year_id": school["year"],
            "academic_term_id": term_id,
            "deadline_date": "2024-10-01T17:00:00",
        })

    data = client.get("/api/admin/upload-summary").json()

    assert data["academic_info"] == {
        "academic_year_id": school["year"],
        "academic_term_id": school["term"],
        "year_name": "2024/2025",
        "term_name": "First Term",
    }
    assert [
        (t["teacher_name"], t["exam_questions_submitted"], t["e_notes_weeks_submitted"], t["e_notes_completion_percentage"])
        for t in data["summary"]
    ] == [
        ("Grace Adebayo", True, 11, 100),
        ("Tunde Bakare", False, 3, 27),
    ]
    assert data["summary"][0]["teacher_email"] == "grace.adebayo@stmarys.edu.ng"
    assert data["stats"] == {
        "total_teachers": 2,
        "exam_questions_submitted": 1,
        "exam_questions_pending": 1,
        "e_notes_fully_completed": 1,
        "e_notes_partially_completed": 1,
        "e_notes_not_started": 0,
    }
    assert [(d["deadline_type"], d["term_name"]) for d in data["deadlines"]] == [
        ("e_notes", "First Term"),
        ("exam_questions", "First Term"),
    ]
