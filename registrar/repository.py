"""Typed reads and writes over a unit of work."""

from typing import List, Optional

from registrar.database import UnitOfWork
from registrar.schemas import Course, Exam, Grade, User


def get_user(uow: UnitOfWork, user_id: str, role: Optional[str] = None) -> Optional[User]:
    filt = {"id": user_id}
    if role:
        filt["role"] = role
    doc = uow.find_one("user", filt)
    return User.model_validate(doc) if doc else None


def get_course(uow: UnitOfWork, code: str) -> Optional[Course]:
    doc = uow.find_one("course", {"code": code})
    return Course.model_validate(doc) if doc else None


def get_courses(uow: UnitOfWork, codes: List[str]) -> List[Course]:
    """Courses for ``codes`` in the order the codes are given; unknown codes are skipped."""
    if not codes:
        return []
    by_code = {d["code"]: Course.model_validate(d) for d in uow.find("course", {"code": {"$in": list(codes)}})}
    return [by_code[c] for c in codes if c in by_code]


def get_grades(uow: UnitOfWork, student_id: str) -> List[Grade]:
    docs = uow.find("grade", {"student_id": student_id}, sort=[("date_graded", 1)])
    return [Grade.model_validate(d) for d in docs]


def get_exam(uow: UnitOfWork, exam_id: str) -> Optional[Exam]:
    doc = uow.find_one("exam", {"exam_id": exam_id})
    return Exam.model_validate(doc) if doc else None


def save_user(uow: UnitOfWork, user: User) -> None:
    uow.save("user", "id", user)


def save_course(uow: UnitOfWork, course: Course) -> None:
    uow.save("course", "code", course)


def save_exam(uow: UnitOfWork, exam: Exam) -> None:
    uow.save("exam", "exam_id", exam)
