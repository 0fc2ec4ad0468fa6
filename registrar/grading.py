"""
Grades, GPA and academic standing.

Grade documents are the source of truth. A student's ``performance`` block and
``academic_history`` are a projection of them, rebuilt by
``recompute_performance`` after every grade change and at term completion.
"""

import math
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Dict, List, Optional

from registrar import repository
from registrar.app_logger import get_logger
from registrar.database import Store
from registrar.enrollment import release_student
from registrar.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    StaleDocumentError,
    ValidationError,
)
from registrar.schemas import Course, Grade, GradeRecord, HistoryCourse, TermHistory, User
from registrar.terms import current_term, term_sort_key

logger = get_logger("grading")

TOTAL_PROGRAM_CREDITS = 140

GRADE_CUTOFFS = [
    (90, "A"),
    (85, "A-"),
    (80, "B+"),
    (75, "B"),
    (70, "B-"),
    (65, "C+"),
    (60, "C"),
    (55, "C-"),
    (50, "D+"),
    (45, "D"),
]

GRADE_POINTS = {
    "A": 4.0,
    "A-": 3.7,
    "B+": 3.3,
    "B": 3.0,
    "B-": 2.7,
    "C+": 2.3,
    "C": 2.0,
    "C-": 1.7,
    "D+": 1.3,
    "D": 1.0,
    "F": 0.0,
}


def letter_grade(score: float) -> str:
    for cutoff, letter in GRADE_CUTOFFS:
        if score >= cutoff:
            return letter
    return "F"


def grade_points(letter: str) -> float:
    return GRADE_POINTS.get(letter, 0.0)


def is_passing(letter: str) -> bool:
    return letter != "F"


def weighted_gpa(records) -> float:
    """Credit-weighted mean of grade points, 0 when there are no credits."""
    credits = sum(r.credit_hours for r in records)
    if credits == 0:
        return 0.0
    points = sum(grade_points(r.grade) * r.credit_hours for r in records)
    return round(points / credits, 2)


def academic_level(completed_credits: int) -> str:
    if completed_credits < 35:
        return "First"
    if completed_credits < 70:
        return "Second"
    if completed_credits < 105:
        return "Third"
    return "Fourth"


def max_allowed_credit_hours(cgpa: float) -> int:
    if cgpa < 2.0:
        return 12
    if cgpa < 3.3:
        return 18
    return 21


def _chronological(grades: List[Grade]) -> List[Grade]:
    return sorted(grades, key=lambda g: (term_sort_key(g.term), g.attempt_number))


def _as_record(grade: Grade) -> GradeRecord:
    return GradeRecord(
        code=grade.course_code,
        name=grade.course_name,
        credit_hours=grade.credit_hours,
        score=grade.score,
        grade=grade.grade,
        term=grade.term,
        attempt_number=grade.attempt_number,
        is_retake=grade.is_retake,
    )


def recompute_performance(student: User, grades: List[Grade], term: str) -> User:
    """
    Rebuild ``student.performance`` and ``student.academic_history`` from ``grades``.

    Depends only on the grades, the student's current registrations and term
    status, so running it twice gives the same result.
    """
    ordered = _chronological(grades)
    latest: Dict[str, Grade] = {}
    latest_pass: Dict[str, Grade] = {}
    for grade in ordered:
        latest[grade.course_code] = grade
        if is_passing(grade.grade):
            latest_pass[grade.course_code] = grade

    passed = [_as_record(g) for g in latest_pass.values()]
    failed = []
    for code, grade in latest.items():
        if grade.grade != "F" or code in latest_pass:
            continue
        # a retake in progress supersedes the earlier failure
        if code in student.registered_courses and grade.term != term:
            continue
        failed.append(_as_record(grade))

    performance = student.performance
    performance.passed_courses = passed
    performance.failed_courses = failed
    performance.cgpa = weighted_gpa(passed)
    performance.term_gpa = weighted_gpa([g for g in ordered if g.term == term and is_passing(g.grade)])
    completed = min(max(sum(r.credit_hours for r in passed), 0), TOTAL_PROGRAM_CREDITS)
    performance.total_credit_hours_completed = completed
    performance.remaining_credit_hours = TOTAL_PROGRAM_CREDITS - completed
    performance.academic_level = academic_level(completed)
    performance.max_allowed_credit_hours = max_allowed_credit_hours(performance.cgpa) if ordered else 18
    student.academic_level = performance.academic_level

    by_term: "OrderedDict[str, List[Grade]]" = OrderedDict()
    for grade in ordered:
        by_term.setdefault(grade.term, []).append(grade)
    history = []
    for grade_term, term_grades in by_term.items():
        counted = [g for g in term_grades if is_passing(g.grade)]
        history.append(TermHistory(
            term=grade_term,
            courses=[
                HistoryCourse(
                    code=g.course_code,
                    name=g.course_name,
                    credit_hours=g.credit_hours,
                    score=g.score,
                    grade=g.grade,
                    status="passed" if is_passing(g.grade) else "failed",
                    attempt_number=g.attempt_number,
                )
                for g in term_grades
            ],
            term_gpa=weighted_gpa(counted),
            total_credits=sum(g.credit_hours for g in counted),
            status=performance.term_status if grade_term == term else "completed",
        ))
    student.academic_history = history
    return student


def _check_score(score: float) -> None:
    if score is None or math.isnan(score) or score < 0 or score > 100:
        raise ValidationError("Invalid score range")


def _course_for_doctor(uow, course_code: str, doctor_id: str) -> Course:
    course = repository.get_course(uow, course_code)
    if course is None or course.doctor_id != doctor_id:
        raise AuthorizationError("Not authorized to manage grades for this course")
    return course


def _grade_key(student_id: str, course_code: str, term: str) -> dict:
    return {"student_id": student_id, "course_code": course_code, "term": term}


def add_grade(store: Store, doctor_id: str, student_id: str, course_code: str, score: float,
              term: Optional[str] = None) -> dict:
    term = term or current_term()
    _check_score(score)
    with store.unit_of_work() as uow:
        course = _course_for_doctor(uow, course_code, doctor_id)
        student = repository.get_user(uow, student_id, role="student")
        if student is None:
            raise NotFoundError("Student not found")
        if uow.find_one("grade", _grade_key(student_id, course_code, term)) is not None:
            raise ConflictError("Grade already exists for this student in the current term")
        if student_id not in course.registered_students:
            raise NotFoundError("Student is not registered in this course")

        history = repository.get_grades(uow, student_id)
        attempt = len([g for g in history if g.course_code == course_code]) + 1
        grade = Grade(
            student_id=student_id,
            course_code=course_code,
            course_name=course.name,
            doctor_id=doctor_id,
            score=score,
            grade=letter_grade(score),
            term=term,
            credit_hours=course.credit_hours,
            attempt_number=attempt,
            is_retake=attempt > 1,
        )
        uow.insert("grade", grade)

        if is_passing(grade.grade):
            release_student(student, course)
            repository.save_course(uow, course)
        recompute_performance(student, history + [grade], term)
        repository.save_user(uow, student)

    logger.info("Graded %s in %s: %s (%s), attempt %d", student_id, course_code, score, grade.grade, attempt)
    return {
        "message": "Grade added successfully",
        "grade": grade.model_dump(by_alias=True),
        "performance": student.performance.model_dump(by_alias=True),
    }


def update_grade(store: Store, doctor_id: str, student_id: str, course_code: str, score: float,
                 term: Optional[str] = None) -> dict:
    term = term or current_term()
    _check_score(score)
    with store.unit_of_work() as uow:
        course = _course_for_doctor(uow, course_code, doctor_id)
        student = repository.get_user(uow, student_id, role="student")
        if student is None:
            raise NotFoundError("Student not found")
        key = _grade_key(student_id, course_code, term)
        if uow.find_one("grade", key) is None:
            raise NotFoundError("Grade not found for the current term")

        letter = letter_grade(score)
        uow.update("grade", key, {"score": score, "grade": letter, "date_graded": datetime.now(timezone.utc)})
        grades = repository.get_grades(uow, student_id)
        for grade in grades:
            if grade.course_code == course_code and grade.term == term:
                grade.score = score
                grade.grade = letter
                updated = grade

        if is_passing(letter) and (student_id in course.registered_students
                                   or course_code in student.registered_courses):
            release_student(student, course)
            repository.save_course(uow, course)
        recompute_performance(student, grades, term)
        repository.save_user(uow, student)

    logger.info("Updated grade of %s in %s to %s (%s)", student_id, course_code, score, letter)
    return {
        "message": "Grade updated successfully",
        "grade": updated.model_dump(by_alias=True),
        "performance": student.performance.model_dump(by_alias=True),
    }


def delete_grade(store: Store, doctor_id: str, student_id: str, course_code: str,
                 term: Optional[str] = None) -> dict:
    term = term or current_term()
    with store.unit_of_work() as uow:
        _course_for_doctor(uow, course_code, doctor_id)
        student = repository.get_user(uow, student_id, role="student")
        if student is None:
            raise NotFoundError("Student not found")
        grades = repository.get_grades(uow, student_id)
        for_course = _chronological([g for g in grades if g.course_code == course_code])
        if not for_course:
            raise NotFoundError("Grade not found")
        removed = for_course[-1]
        uow.delete("grade", _grade_key(student_id, course_code, removed.term))
        remaining = [g for g in grades if not (g.course_code == course_code and g.term == removed.term)]
        recompute_performance(student, remaining, term)
        repository.save_user(uow, student)

    logger.info("Deleted grade of %s in %s for %s", student_id, course_code, removed.term)
    return {"message": "Grade deleted successfully", "performance": student.performance.model_dump(by_alias=True)}


def _dump_grades(docs: List[dict]) -> List[dict]:
    grades = _chronological([Grade.model_validate(d) for d in docs])
    return [g.model_dump(by_alias=True) for g in grades]


def all_grades(store: Store) -> List[dict]:
    return _dump_grades(store.get_documents("grade"))


def student_grades(store: Store, student_id: str) -> List[dict]:
    docs = store.get_documents("grade", {"student_id": student_id})
    if not docs:
        raise NotFoundError("No grades found for this student")
    return _dump_grades(docs)


def course_grades(store: Store, doctor_id: str, course_code: str) -> List[dict]:
    with store.unit_of_work() as uow:
        _course_for_doctor(uow, course_code, doctor_id)
    return _dump_grades(store.get_documents("grade", {"course_code": course_code}))


def student_course_grade(store: Store, doctor_id: str, course_code: str, student_id: str) -> dict:
    with store.unit_of_work() as uow:
        _course_for_doctor(uow, course_code, doctor_id)
    grades = _dump_grades(store.get_documents("grade", {"course_code": course_code, "student_id": student_id}))
    if not grades:
        raise NotFoundError("Grade not found")
    return grades[-1]


def student_performance(store: Store, student_id: str) -> dict:
    with store.unit_of_work() as uow:
        student = repository.get_user(uow, student_id, role="student")
    if student is None:
        raise NotFoundError("Student not found")
    return {
        "studentId": student.id,
        "name": student.name,
        "academicLevel": student.academic_level,
        "performance": student.performance.model_dump(by_alias=True),
        "academicHistory": [h.model_dump(by_alias=True) for h in student.academic_history],
        "currentTermCourses": [c.model_dump(by_alias=True) for c in student.current_term_courses],
    }


# Term completion
def complete_term_for_student(store: Store, student_id: str, term: str) -> None:
    with store.unit_of_work() as uow:
        student = repository.get_user(uow, student_id, role="student")
        if student is None:
            raise NotFoundError("Student not found")
        grades = repository.get_grades(uow, student_id)
        failed_now = [g.course_code for g in grades if g.term == term and g.grade == "F"]
        for code in failed_now:
            if code not in student.registered_courses:
                continue
            course = repository.get_course(uow, code)
            if course is not None:
                release_student(student, course)
                repository.save_course(uow, course)
            else:
                student.registered_courses = [c for c in student.registered_courses if c != code]
        student.current_term_courses = []
        student.performance.term_status = "completed"
        recompute_performance(student, grades, term)
        repository.save_user(uow, student)


def process_term_completion(store: Store, term: Optional[str] = None) -> dict:
    """Finalize ``term`` for every student, one unit of work per student."""
    term = term or current_term()
    students = [
        d for d in store.get_documents("user", {"role": "student"}, sort=[("id", 1)])
        if d.get("current_term_courses") or (d.get("performance") or {}).get("failed_courses")
    ]
    processed, failed = 0, []
    for doc in students:
        try:
            complete_term_for_student(store, doc["id"], term)
            processed += 1
        except StaleDocumentError as exc:
            logger.warning("Term completion for %s skipped: %s", doc["id"], exc.message)
            failed.append({"studentId": doc["id"], "error": exc.message})
    logger.info("Term %s completed for %d students, %d failed", term, processed, len(failed))
    return {
        "message": "Term completion processed",
        "term": term,
        "processed": processed,
        "failed": failed,
    }
