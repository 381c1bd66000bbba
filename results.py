import logging
import math
from collections import defaultdict
from typing import Any, Dict, List

import numpy as np
from fastapi import HTTPException, status
from sqlalchemy import asc
from sqlalchemy.orm import Session

import models
from models import MarkType, SCORE_MODELS
from scoring import PASS_MARK, classify_grade, round_half_up

logger = logging.getLogger(__name__)


def competition_ranks(totals: Dict[int, float]) -> Dict[int, int]:
    """Standard competition ranking: 1 + number of strictly greater totals.

    Equal totals share a rank and the following rank is skipped (1, 2, 2, 4).
    """
    values = np.array(list(totals.values()), dtype=float)
    return {key: int(np.sum(values > total)) + 1 for key, total in totals.items()}


def summarize_totals(totals: List[float]) -> Dict[str, float]:
    if not totals:
        return {"average": 0.0, "highest": 0.0, "lowest": 0.0}
    values = np.array(totals, dtype=float)
    return {
        "average": round(float(np.mean(values)), 2),
        "highest": round(float(np.max(values)), 2),
        "lowest": round(float(np.min(values)), 2),
    }


def sum_by_student(rows) -> Dict[int, float]:
    """Per-student sum of total_score, exact and rounded to 2 places.

    Equal marks entered in a different order must compare equal for ranking.
    """
    per_student = defaultdict(list)
    for row in rows:
        per_student[row.student_id].append(row.total_score)
    return {student_id: round(math.fsum(totals), 2) for student_id, totals in per_student.items()}


class ResultAggregator:
    """Read-side view of stored scores: per-subject class statistics and rank."""

    def __init__(self, db: Session):
        self.db = db

    def _get_exam(self, exam_id: int) -> models.Exam:
        exam = self.db.query(models.Exam).filter(models.Exam.id == exam_id).first()
        if not exam:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Exam not found")
        return exam

    def _class_rows(self, model, exam_id: int, class_id: int) -> List[Any]:
        return self.db.query(model).filter(
            model.exam_id == exam_id,
            model.class_id == class_id
        ).order_by(asc(model.id)).all()

    def student_exam_results(self, student_id: int, exam_id: int) -> Dict[str, Any]:
        student = self.db.query(models.Student).filter(models.Student.id == student_id).first()
        if not student:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student not found")
        exam = self._get_exam(exam_id)
        mark_type = MarkType(exam.mark_type)
        model = SCORE_MODELS[mark_type]

        rows = self.db.query(model).filter(
            model.student_id == student_id,
            model.exam_id == exam_id
        ).order_by(asc(model.subject_name), asc(model.id)).all()

        result = {
            "student_id": student.id,
            "student_name": student.full_name,
            "exam_id": exam.id,
            "exam_name": exam.name,
            "mark_type": mark_type,
            "class_id": None,
            "subjects": [],
            "total_marks": 0.0,
            "average_percentage": 0,
            "overall_grade": "F",
            "subjects_passed": 0,
            "subjects_failed": 0,
            "rank": None,
            "class_size": 0,
        }
        if not rows:
            logger.info("No %s scores for student %s in exam %s", mark_type.value, student_id, exam_id)
            return result

        class_id = rows[0].class_id
        peers = self._class_rows(model, exam_id, class_id)

        subject_totals = defaultdict(list)
        student_totals = sum_by_student(peers)
        for row in peers:
            subject_totals[row.subject_id].append(row.total_score)

        subjects = []
        for row in rows:
            stats = summarize_totals(subject_totals[row.subject_id])
            subjects.append({
                "subject_id": row.subject_id,
                "subject_name": row.subject_name,
                "ca1_score": row.ca1_score,
                "ca2_score": row.ca2_score,
                "exam_score": row.exam_score,
                "total_score": row.total_score,
                "percentage": row.percentage,
                "grade": row.grade,
                "class_average": stats["average"],
                "class_highest": stats["highest"],
                "class_lowest": stats["lowest"],
            })

        percentages = [row.percentage for row in rows]
        average_percentage = float(np.mean(percentages))
        ranks = competition_ranks(student_totals)

        result.update({
            "class_id": class_id,
            "subjects": subjects,
            "total_marks": round(math.fsum(row.total_score for row in rows), 2),
            "average_percentage": round_half_up(average_percentage),
            "overall_grade": classify_grade(average_percentage),
            "subjects_passed": sum(1 for p in percentages if p >= PASS_MARK),
            "subjects_failed": sum(1 for p in percentages if p < PASS_MARK),
            "rank": ranks.get(student_id),
            "class_size": len(student_totals),
        })
        return result

    def class_exam_summary(self, class_id: int, exam_id: int) -> Dict[str, Any]:
        class_obj = self.db.query(models.Class).filter(models.Class.id == class_id).first()
        if not class_obj:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Class not found")
        exam = self._get_exam(exam_id)
        mark_type = MarkType(exam.mark_type)
        rows = self._class_rows(SCORE_MODELS[mark_type], exam_id, class_id)

        subject_totals = defaultdict(list)
        student_totals = sum_by_student(rows)
        subject_names = {}
        student_subjects = defaultdict(int)
        student_names = {}
        for row in rows:
            subject_totals[row.subject_id].append(row.total_score)
            subject_names[row.subject_id] = row.subject_name
            student_subjects[row.student_id] += 1
            student_names[row.student_id] = row.student_name

        subjects = []
        for subject_id, totals in subject_totals.items():
            stats = summarize_totals(totals)
            subjects.append({
                "subject_id": subject_id,
                "subject_name": subject_names[subject_id],
                "students": len(totals),
                **stats,
            })
        subjects.sort(key=lambda s: (s["subject_name"] or "", s["subject_id"]))

        ranks = competition_ranks(student_totals) if student_totals else {}
        rankings = sorted(
            (
                {
                    "student_id": student_id,
                    "student_name": student_names[student_id],
                    "total_marks": total,
                    "subjects": student_subjects[student_id],
                    "rank": ranks[student_id],
                }
                for student_id, total in student_totals.items()
            ),
            key=lambda r: (r["rank"], r["student_name"] or "", r["student_id"])
        )

        return {
            "class_id": class_id,
            "exam_id": exam.id,
            "exam_name": exam.name,
            "mark_type": mark_type,
            "subjects": subjects,
            "rankings": rankings,
        }
