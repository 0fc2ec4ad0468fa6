"""Read-only views of a student's catalog, timetable and exams."""

from datetime import date, datetime
from typing import Dict, Iterable, List, Optional

from registrar import repository
from registrar.conflicts import to_minutes
from registrar.database import Store
from registrar.errors import NotFoundError, ValidationError
from registrar.schemas import Course, Exam, User
from registrar.terms import current_term

NO_DOCTOR = "No doctor assigned"
NO_TA = "No TA assigned"


def _student(store: Store, student_id: str) -> User:
    with store.unit_of_work() as uow:
        student = repository.get_user(uow, student_id, role="student")
    if student is None:
        raise NotFoundError("Student not found.")
    return student


def _names(store: Store, ids: Iterable[Optional[str]], role: str) -> Dict[str, str]:
    wanted = sorted({i for i in ids if i})
    if not wanted:
        return {}
    docs = store.get_documents("user", {"id": {"$in": wanted}, "role": role})
    return {d["id"]: d["name"] for d in docs}


def _sessions(sessions) -> List[dict]:
    return [s.model_dump(by_alias=True) for s in sessions]


def _section_summaries(course: Course, ta_names: Dict[str, str]) -> List[dict]:
    return [
        {
            "sectionId": section.section_id,
            "sessions": _sessions(section.sessions),
            "teachingAssistant": ta_names.get(section.ta_id, NO_TA),
            "capacity": section.capacity,
            "registeredStudents": len(section.registered_students),
        }
        for section in course.sections
    ]


def available_courses(store: Store, student_id: str) -> dict:
    """Failed courses, plus unpassed courses whose prerequisites are all passed."""
    student = _student(store, student_id)
    passed = set(student.performance.passed_codes)
    failed = student.performance.failed_codes

    courses = [Course.model_validate(d) for d in store.get_documents("course", sort=[("code", 1)])]
    available = [
        c for c in courses
        if c.code in failed or (c.code not in passed and all(p in passed for p in c.prerequisites))
    ]
    doctors = _names(store, (c.doctor_id for c in available), "doctor")
    tas = _names(store, (s.ta_id for c in available for s in c.sections), "ta")

    return {
        "message": "Available courses fetched successfully.",
        "courses": [
            {
                "code": c.code,
                "name": c.name,
                "lectureSessions": _sessions(c.lecture_sessions),
                "doctorName": doctors.get(c.doctor_id, NO_DOCTOR),
                "sections": _section_summaries(c, tas),
                "isFailedCourse": c.code in failed,
                "isRegistered": c.code in student.registered_courses,
                "creditHours": c.credit_hours,
                "prerequisites": c.prerequisites,
            }
            for c in available
        ],
        "failedCourses": failed,
        "registeredCourses": student.registered_courses,
    }


def course_sections(store: Store, student_id: str, course_code: str) -> dict:
    student = _student(store, student_id)
    if course_code not in student.registered_courses:
        raise ValidationError("You are not registered for this course.")
    with store.unit_of_work() as uow:
        course = repository.get_course(uow, course_code)
    if course is None:
        raise NotFoundError("Course not found.")

    doctors = _names(store, [course.doctor_id], "doctor")
    tas = _names(store, (s.ta_id for s in course.sections), "ta")
    return {
        "message": "Course sections fetched successfully.",
        "sections": _section_summaries(course, tas),
        "course": {
            "code": course.code,
            "name": course.name,
            "lectureSessions": _sessions(course.lecture_sessions),
            "doctorName": doctors.get(course.doctor_id, NO_DOCTOR),
        },
    }


def student_timetable(store: Store, student_id: str) -> dict:
    """``{day: [entries]}``: one lecture entry per course and day, plus the student's own section."""
    student = _student(store, student_id)
    with store.unit_of_work() as uow:
        courses = repository.get_courses(uow, student.registered_courses)
    doctors = _names(store, (c.doctor_id for c in courses), "doctor")
    tas = _names(store, (s.ta_id for c in courses for s in c.sections), "ta")

    timetable: Dict[str, List[dict]] = {}
    for course in courses:
        for session in course.lecture_sessions:
            day = timetable.setdefault(session.day, [])
            if any(e["code"] == course.code and e["type"] == "Lecture" for e in day):
                continue
            day.append({
                "type": "Lecture",
                "name": course.name,
                "code": course.code,
                "room": session.room,
                "startTime": session.start_time,
                "endTime": session.end_time,
                "doctorName": doctors.get(course.doctor_id, NO_DOCTOR),
            })
        section = course.section_of(student.id)
        if section is None:
            continue
        for session in section.sessions:
            day = timetable.setdefault(session.day, [])
            if any(e["code"] == course.code and e.get("sectionId") == section.section_id for e in day):
                continue
            day.append({
                "type": "Section",
                "name": course.name,
                "code": course.code,
                "room": session.room,
                "startTime": session.start_time,
                "endTime": session.end_time,
                "teachingAssistant": tas.get(section.ta_id, NO_TA),
                "sectionId": section.section_id,
            })
    return {"message": "Timetable generated successfully", "timetable": timetable}


def _overlaps(first: dict, second: dict) -> bool:
    if first["date"] != second["date"]:
        return False
    start1, end1 = first["_window"]
    start2, end2 = second["_window"]
    if None in (start1, end1, start2, end2):
        return False
    return start1 < end2 and start2 < end1


def student_exams(store: Store, student_id: str, today: Optional[date] = None) -> dict:
    student = _student(store, student_id)
    today = today or date.today()
    term = current_term(today)
    season, _, year = term.partition(" ")

    if not student.registered_courses:
        return {
            "semester": term,
            "exams": [],
            "message": "You are not currently registered for any courses",
        }

    docs = store.get_documents(
        "exam",
        {
            "course_code": {"$in": student.registered_courses},
            "$or": [{"semester": term}, {"semester": season, "academic_year": year}],
        },
        sort=[("exam_date", 1)],
    )
    entries = []
    for exam in (Exam.model_validate(d) for d in docs):
        room = next(
            (r.room_number for r in exam.rooms if any(s.student_id == student.id for s in r.students)),
            "Not assigned",
        )
        exam_day = datetime.strptime(exam.exam_date, "%Y-%m-%d").date()
        entries.append({
            "examId": exam.exam_id,
            "courseCode": exam.course_code,
            "courseName": exam.course_name,
            "examType": exam.exam_type,
            "date": exam.exam_date,
            "day": exam_day.strftime("%A"),
            "time": f"{exam.start_time} - {exam.end_time}",
            "location": room,
            "status": "Upcoming" if exam_day > today else "Completed",
            "hasConflict": False,
            "_window": (to_minutes(exam.start_time), to_minutes(exam.end_time)),
        })

    entries.sort(key=lambda e: (e["date"], e["_window"][0] or 0))
    for i, exam in enumerate(entries):
        for other in entries[i + 1:]:
            if _overlaps(exam, other):
                exam["hasConflict"] = other["hasConflict"] = True
    for exam in entries:
        del exam["_window"]

    return {
        "semester": term,
        "exams": entries,
        "message": f"Found {len(entries)} exams",
        "stats": {
            "upcoming": sum(1 for e in entries if e["status"] == "Upcoming"),
            "completed": sum(1 for e in entries if e["status"] == "Completed"),
            "conflicts": sum(1 for e in entries if e["hasConflict"]),
        },
    }
