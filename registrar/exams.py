"""
Exam scheduling and room seating.

Seating is a deterministic partition: the roster, sorted by name, fills the
rooms in the order they were given, ``room_capacity`` students per room.
"""

import math
import re
from typing import List

from registrar import repository
from registrar.app_logger import get_logger
from registrar.conflicts import to_minutes
from registrar.database import Store
from registrar.errors import InsufficientRoomCapacity, NotFoundError, ValidationError
from registrar.schemas import CLOCK_PATTERN, Course, Exam, ExamCreate, ExamRoom, ExamSeat, ExamUpdate, User

logger = get_logger("exams")

_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_CLOCK = re.compile(CLOCK_PATTERN)


def distribute_students(roster: List[ExamSeat], room_numbers: List[str], capacity: int) -> List[ExamRoom]:
    """Fill rooms in order, ``capacity`` seats each; no room is opened once the roster is seated."""
    if len(room_numbers) * capacity < len(roster):
        raise InsufficientRoomCapacity(
            not_assigned=len(roster) - len(room_numbers) * capacity,
            required_rooms=math.ceil(len(roster) / capacity),
        )
    rooms = []
    for index, room_number in enumerate(room_numbers):
        seats = roster[index * capacity:(index + 1) * capacity]
        if not seats:
            break
        rooms.append(ExamRoom(room_number=room_number, students=list(seats)))
    return rooms


def _check_rooms(room_numbers) -> None:
    if not room_numbers:
        raise ValidationError("Please provide an array of room numbers")


def _check_times(start_time: str, end_time: str) -> None:
    if not (_CLOCK.match(start_time or "") and _CLOCK.match(end_time or "")):
        raise ValidationError("Invalid time format. Please use hh:mm AM/PM")
    start, end = to_minutes(start_time), to_minutes(end_time)
    if start is None or end is None:
        raise ValidationError("Invalid time format. Please use hh:mm AM/PM")
    if end <= start:
        raise ValidationError("Exam end time must be after its start time")


def _room_counts(exam: Exam) -> List[dict]:
    return [{"roomNumber": r.room_number, "studentCount": len(r.students)} for r in exam.rooms]


def _seat_students(uow, exam: Exam) -> int:
    """Record each seated student's room for ``exam``."""
    seated = 0
    for room in exam.rooms:
        for seat in room.students:
            student = repository.get_user(uow, seat.student_id, role="student")
            if student is None:
                continue
            if exam.exam_id not in student.exams:
                student.exams.append(exam.exam_id)
            student.exam_rooms[exam.exam_id] = room.room_number
            repository.save_user(uow, student)
            seated += 1
    return seated


def add_exam(store: Store, data: ExamCreate) -> dict:
    _check_rooms(data.room_numbers)
    if not _DATE.match(data.exam_date or ""):
        raise ValidationError("Invalid exam date format. Please use YYYY-MM-DD")
    _check_times(data.start_time, data.end_time)

    with store.unit_of_work() as uow:
        if repository.get_exam(uow, data.exam_id) is not None:
            raise ValidationError(f"Exam with ID {data.exam_id} already exists")
        course = repository.get_course(uow, data.course_code)
        if course is None:
            raise NotFoundError("Course not found")

        students = [
            User.model_validate(d)
            for d in uow.find("user", {"id": {"$in": course.registered_students}, "role": "student"},
                              sort=[("name", 1)])
        ]
        roster = [ExamSeat(student_id=s.id, name=s.name) for s in students]
        rooms = distribute_students(roster, data.room_numbers, data.room_capacity)

        exam = Exam(course_name=course.name, rooms=rooms, **data.model_dump())
        uow.insert("exam", exam)
        _seat_students(uow, exam)

    logger.info("Exam %s for %s seated %d students in %d rooms",
                exam.exam_id, exam.course_code, len(roster), len(rooms))
    return {
        "message": "Exam created with room assignments",
        "exam": {
            "examId": exam.exam_id,
            "course": exam.course_code,
            "department": exam.department,
            "totalStudents": len(roster),
            "rooms": _room_counts(exam),
        },
    }


def update_exam(store: Store, exam_id: str, data: ExamUpdate) -> dict:
    changes = data.model_dump(exclude_unset=True)
    with store.unit_of_work() as uow:
        exam = repository.get_exam(uow, exam_id)
        if exam is None:
            raise NotFoundError("Exam not found")

        if changes.get("course_code") and changes["course_code"] != exam.course_code:
            course = repository.get_course(uow, changes["course_code"])
            if course is None:
                raise NotFoundError("New course not found")
            exam.course_name = course.name

        for field, value in changes.items():
            if value is not None:
                setattr(exam, field, value)
        _check_times(exam.start_time, exam.end_time)

        affected = 0
        if changes.get("room_numbers") is not None or changes.get("room_capacity") is not None:
            _check_rooms(exam.room_numbers)
            seated = [seat for room in exam.rooms for seat in room.students]
            exam.rooms = distribute_students(seated, exam.room_numbers, exam.room_capacity)
            affected = _seat_students(uow, exam)

        repository.save_exam(uow, exam)

    logger.info("Exam %s updated, %d students reseated", exam_id, affected)
    return {
        "message": "Exam updated successfully",
        "exam": exam.model_dump(by_alias=True, exclude={"version"}),
        "updatedStudents": affected,
    }


def delete_exam(store: Store, exam_id: str) -> dict:
    with store.unit_of_work() as uow:
        exam = repository.get_exam(uow, exam_id)
        if exam is None:
            raise NotFoundError("Exam not found")
        student_ids = [seat.student_id for room in exam.rooms for seat in room.students]
        for student_id in student_ids:
            student = repository.get_user(uow, student_id)
            if student is None:
                continue
            student.exams = [e for e in student.exams if e != exam_id]
            student.exam_rooms.pop(exam_id, None)
            repository.save_user(uow, student)
        uow.delete("exam", {"exam_id": exam_id})

    logger.info("Exam %s deleted, %d students updated", exam_id, len(student_ids))
    return {"message": "Exam deleted successfully", "deletedExamId": exam_id, "affectedStudents": len(student_ids)}


def list_exams(store: Store) -> List[dict]:
    exams = [Exam.model_validate(d) for d in store.get_documents("exam")]
    exams.sort(key=lambda e: (e.exam_date, to_minutes(e.start_time) or 0))
    codes = sorted({e.course_code for e in exams})
    courses = {
        d["code"]: Course.model_validate(d)
        for d in store.get_documents("course", {"code": {"$in": codes}})
    } if codes else {}

    listing = []
    for exam in exams:
        course = courses.get(exam.course_code)
        entry = exam.model_dump(by_alias=True, exclude={"version"})
        entry["courseName"] = course.name if course else exam.course_name
        entry["registeredStudents"] = len(course.registered_students) if course else 0
        entry["roomSummary"] = _room_counts(exam)
        listing.append(entry)
    return listing
