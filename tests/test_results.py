from types import SimpleNamespace

import pytest

import models
from conftest import add_exam, add_student, submission
from results import competition_ranks, sum_by_student, summarize_totals


def test_competition_ranks_share_ties_and_skip():
    ranks = competition_ranks({1: 70, 2: 60, 3: 60, 4: 50})
    assert ranks == {1: 1, 2: 2, 3: 2, 4: 4}


def test_summarize_totals():
    assert summarize_totals([40, 30, 20]) == {"average": 30.0, "highest": 40.0, "lowest": 20.0}
    assert summarize_totals([10, 10, 11]) == {"average": 10.33, "highest": 11.0, "lowest": 10.0}
    assert summarize_totals([]) == {"average": 0.0, "highest": 0.0, "lowest": 0.0}


@pytest.fixture
def midterm_exam(client, school, db):
    exam = add_exam(db, school)
    maths = submission(school, [
        {"student_id": school["ada"], "ca1_score": 10, "ca2_score": 10, "exam_score": 20},
        {"student_id": school["bola"], "ca1_score": 8, "ca2_score": 8, "exam_score": 14},
        {"student_id": school["chidi"], "ca1_score": 5, "ca2_score": 5, "exam_score": 10},
    ], exam_id=exam.id)
    english = submission(school, [
        {"student_id": school["ada"], "ca1_score": 5, "ca2_score": 5, "exam_score": 10},
        {"student_id": school["bola"], "ca1_score": 10, "ca2_score": 10, "exam_score": 20},
        {"student_id": school["chidi"], "ca1_score": 10, "ca2_score": 5, "exam_score": 5},
    ], subject="english", exam_id=exam.id)
    assert client.post("/api/admin/marks/midterm", json=maths).status_code == 200
    assert client.post("/api/admin/marks/midterm", json=english).status_code == 200
    return exam


def test_student_results_with_class_statistics(client, school, midterm_exam):
    response = client.get(f"/api/students/{school['ada']}/results", params={"exam_id": midterm_exam.id})
    assert response.status_code == 200
    result = response.json()

    assert result["student_name"] == "Ada Obi"
    assert result["mark_type"] == "midterm"
    assert result["class_id"] == school["gold"]
    assert [s["subject_name"] for s in result["subjects"]] == ["English", "Mathematics"]

    english, maths = result["subjects"]
    assert maths["total_score"] == 40
    assert maths["percentage"] == 100
    assert maths["class_average"] == 30
    assert maths["class_highest"] == 40
    assert maths["class_lowest"] == 20
    assert english["percentage"] == 50
    assert english["grade"] == "D"

    assert result["total_marks"] == 60
    assert result["average_percentage"] == 75
    assert result["overall_grade"] == "B"
    assert result["subjects_passed"] == 2
    assert result["subjects_failed"] == 0
    assert result["rank"] == 2
    assert result["class_size"] == 3


def test_rank_ignores_other_classes(client, school, db, midterm_exam):
    silver = db.get(models.Class, school["silver"])
    star = add_student(db, "Efe", "Uche", silver)
    body = submission(school, [
        {"student_id": star.id, "ca1_score": 10, "ca2_score": 10, "exam_score": 20},
    ], class_key="silver", exam_id=midterm_exam.id)
    assert client.post("/api/admin/marks/midterm", json=body).status_code == 200

    bola = client.get(f"/api/students/{school['bola']}/results", params={"exam_id": midterm_exam.id}).json()
    assert bola["rank"] == 1
    assert bola["class_size"] == 3

    efe = client.get(f"/api/students/{star.id}/results", params={"exam_id": midterm_exam.id}).json()
    assert efe["rank"] == 1
    assert efe["class_size"] == 1


def test_student_without_scores_has_empty_results(client, school, db, midterm_exam):
    gold = db.get(models.Class, school["gold"])
    late = add_student(db, "Funmi", "Bello", gold)

    result = client.get(f"/api/students/{late.id}/results", params={"exam_id": midterm_exam.id}).json()
    assert result["subjects"] == []
    assert result["rank"] is None
    assert result["total_marks"] == 0


def test_student_results_unknown_ids(client, school, midterm_exam):
    response = client.get("/api/students/999/results", params={"exam_id": midterm_exam.id})
    assert response.status_code == 404
    assert response.json()["error"] == "Student not found"

    response = client.get(f"/api/students/{school['ada']}/results", params={"exam_id": 999})
    assert response.status_code == 404
    assert response.json()["error"] == "Exam not found"


def test_terminal_exam_reads_terminal_scores(client, school, db, midterm_exam):
    exam = add_exam(db, school, mark_type="terminal", name="First Term Examination")
    body = submission(school, [
        {"student_id": school["ada"], "ca1_score": 20, "ca2_score": 20, "exam_score": 30},
    ], exam_id=exam.id)
    assert client.post("/api/admin/marks/terminal", json=body).status_code == 200

    result = client.get(f"/api/students/{school['ada']}/results", params={"exam_id": exam.id}).json()
    assert result["mark_type"] == "terminal"
    assert len(result["subjects"]) == 1
    assert result["subjects"][0]["percentage"] == 70
    assert result["rank"] == 1


def test_class_summary_rankings(client, school, midterm_exam):
    response = client.get("/api/admin/results/class", params={
        "class_id": school["gold"],
        "exam_id": midterm_exam.id,
    })
    assert response.status_code == 200
    summary = response.json()

    assert [s["subject_name"] for s in summary["subjects"]] == ["English", "Mathematics"]
    english = summary["subjects"][0]
    assert english["students"] == 3
    assert english["highest"] == 40
    assert english["lowest"] == 20

    assert [(r["student_name"], r["total_marks"], r["rank"]) for r in summary["rankings"]] == [
        ("Bola Ade", 70, 1),
        ("Ada Obi", 60, 2),
        ("Chidi Eze", 40, 3),
    ]


def test_class_summary_ties(client, school, db):
    exam = add_exam(db, school)
    body = submission(school, [
        {"student_id": school["ada"], "ca1_score": 10, "ca2_score": 10, "exam_score": 10},
        {"student_id": school["bola"], "ca1_score": 10, "ca2_score": 10, "exam_score": 10},
        {"student_id": school["chidi"], "ca1_score": 5, "ca2_score": 5, "exam_score": 5},
    ], exam_id=exam.id)
    client.post("/api/admin/marks/midterm", json=body)

    summary = client.get("/api/admin/results/class", params={
        "class_id": school["gold"],
        "exam_id": exam.id,
    }).json()
    assert [(r["student_name"], r["rank"]) for r in summary["rankings"]] == [
        ("Ada Obi", 1),
        ("Bola Ade", 1),
        ("Chidi Eze", 3),
    ]


def test_class_summary_unknown_class(client, school, midterm_exam):
    response = client.get("/api/admin/results/class", params={"class_id": 999, "exam_id": midterm_exam.id})
    assert response.status_code == 404


def test_sum_by_student_is_order_independent():
    rows = [
        SimpleNamespace(student_id=1, total_score=0.1),
        SimpleNamespace(student_id=1, total_score=0.2),
        SimpleNamespace(student_id=1, total_score=0.3),
        SimpleNamespace(student_id=2, total_score=0.3),
        SimpleNamespace(student_id=2, total_score=0.2),
        SimpleNamespace(student_id=2, total_score=0.1),
    ]
    totals = sum_by_student(rows)
    assert totals == {1: 0.6, 2: 0.6}
    assert competition_ranks(totals) == {1: 1, 2: 1}


def test_equal_decimal_totals_share_a_rank(client, school, db):
    civic = models.Subject(subject_name="Civic Education", subject_code="CVE", department="Arts", class_level="JSS")
    db.add(civic)
    db.commit()
    exam = add_exam(db, school)

    # Same marks per student, entered in opposite order across subjects
    for subject_id, ada_ca1, bola_ca1 in (
        (school["maths"], 0.1, 0.3),
        (school["english"], 0.2, 0.2),
        (civic.id, 0.3, 0.1),
    ):
        body = submission(school, [
            {"student_id": school["ada"], "ca1_score": ada_ca1},
            {"student_id": school["bola"], "ca1_score": bola_ca1},
        ], exam_id=exam.id)
        body["subject_id"] = subject_id
        assert client.post("/api/admin/marks/midterm", json=body).status_code == 200

    summary = client.get("/api/admin/results/class", params={
        "class_id": school["gold"],
        "exam_id": exam.id,
    }).json()
    assert [(r["student_name"], r["total_marks"], r["rank"]) for r in summary["rankings"]] == [
        ("Ada Obi", 0.6, 1),
        ("Bola Ade", 0.6, 1),
    ]

    ada = client.get(f"/api/students/{school['ada']}/results", params={"exam_id": exam.id}).json()
    bola = client.get(f"/api/students/{school['bola']}/results", params={"exam_id": exam.id}).json()
    assert ada["rank"] == bola["rank"] == 1
    assert ada["total_marks"] == bola["total_marks"] == 0.6
