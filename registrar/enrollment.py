"""
Course and section enrollment.

Every operation validates against one unit of work and only then mutates the
student and course documents, which are committed together. When two requests
race for the last seat, the loser's versioned save fails; the roster is then
re-read so the caller gets a capacity error rather than a generic conflict.
"""

from typing import Dict, List, Optional

from registrar import repository
from registrar.app_logger import get_logger
from registrar.conflicts import find_schedule_conflict
from registrar.database import Store
from registrar.errors import (
    CapacityError,
    ConflictError,
    NotFoundError,
    ScheduleConflictError,
    StaleDocumentError,
    ValidationError,
)
from registrar.schemas import Course, CourseRecord, SectionChoice, User
from registrar.terms import current_term

logger = get_logger("enrollment")


def discard_section_ids(registered: List[str], section_ids: List[str]) -> List[str]:
    """Remove one entry per id; the same id can name sections of different courses."""
    remaining = list(registered)
    for section_id in section_ids:
        if section_id in remaining:
            remaining.remove(section_id)
    return remaining


def release_student(student: User, course: Course) -> List[str]:
    """Take the student off the course and its sections; returns the section ids released."""
    released = [s.section_id for s in course.sections if student.id in s.registered_students]
    for section in course.sections:
        section.registered_students = [sid for sid in section.registered_students if sid != student.id]
    course.registered_students = [sid for sid in course.registered_students if sid != student.id]
    student.registered_courses = [c for c in student.registered_courses if c != course.code]
    student.registered_sections = discard_section_ids(student.registered_sections, released)
    student.current_term_courses = [c for c in student.current_term_courses if c.code != course.code]
    return released


def _load_student(uow, student_id: str) -> User:
    student = repository.get_user(uow, student_id, role="student")
    if student is None:
        raise NotFoundError("Student not found")
    return student


def _has_failing_grade(uow, student_id: str, course_code: str, term: str) -> bool:
    return uow.find_one(
        "grade", {"student_id": student_id, "course_code": course_code, "term": term, "grade": "F"}
    ) is not None


def _passed_codes(student: User) -> List[str]:
    failed = set(student.performance.failed_codes)
    return [c for c in student.performance.passed_codes if c not in failed]


def _retake_details(uow, student_id: str, codes: List[str]) -> List[dict]:
    details = []
    for code in codes:
        attempts = [
            {"term": d["term"], "grade": d["grade"], "attemptNumber": d.get("attempt_number", 1)}
            for d in uow.find("grade", {"student_id": student_id, "course_code": code})
            if d["grade"] == "F"
        ]
        details.append({
            "courseCode": code,
            "previousAttempts": attempts,
            "nextAttemptNumber": max([a["attemptNumber"] for a in attempts] + [0]) + 1,
        })
    return details


def _capacity_or_conflict(store: Store, targets: Dict[str, Optional[str]]) -> Exception:
    """Re-read the authoritative rosters after a lost race."""
    with store.unit_of_work() as uow:
        full_courses, full_sections = [], []
        for code, section_id in targets.items():
            course = repository.get_course(uow, code)
            if course is None:
                continue
            if section_id is None:
                if course.is_full:
                    full_courses.append(code)
            else:
                section = course.section(section_id)
                if section is not None and section.is_full:
                    full_sections.append({"courseCode": code, "sectionId": section_id})
    if full_courses:
        return CapacityError(f"Courses are full: {', '.join(full_courses)}", fullCourses=full_courses)
    if full_sections:
        return CapacityError("Sections are full", fullSections=full_sections)
    return ConflictError("Registration conflicted with a concurrent update, please retry")


def register_for_courses(store: Store, student_id: str, course_codes: List[str],
                         term: Optional[str] = None) -> dict:
    term = term or current_term()
    codes = list(dict.fromkeys(c.strip() for c in course_codes if c and c.strip()))
    if not codes:
        raise ValidationError("No course codes provided")

    try:
        with store.unit_of_work() as uow:
            student = _load_student(uow, student_id)
            courses = repository.get_courses(uow, codes)

            found = {c.code for c in courses}
            missing = [c for c in codes if c not in found]
            if missing:
                raise NotFoundError(f"Courses not found: {', '.join(missing)}", missingCourses=missing)

            already = [c for c in codes if c in student.registered_courses]
            if already:
                raise ValidationError(f"Already registered for: {', '.join(already)}", alreadyRegistered=already)

            passed = _passed_codes(student)
            failed = set(student.performance.failed_codes)
            invalid = [c for c in codes if c in passed]
            if invalid:
                raise ValidationError(f"Cannot register for passed courses: {', '.join(invalid)}",
                                      invalidCourses=invalid)
            retakes = [c for c in codes if c in failed]

            prerequisite_errors = []
            for course in courses:
                if course.code in failed:
                    continue
                lacking = [p for p in course.prerequisites if p not in passed]
                if lacking:
                    prerequisite_errors.append({"courseCode": course.code, "missingPrerequisites": lacking})
            if prerequisite_errors:
                raise ValidationError("Missing prerequisites for some courses",
                                      prerequisiteErrors=prerequisite_errors)

            full = [c.code for c in courses if c.is_full]
            if full:
                raise CapacityError(f"Courses are full: {', '.join(full)}", fullCourses=full)

            current_hours = sum(c.credit_hours for c in student.current_term_courses)
            new_hours = sum(c.credit_hours for c in courses)
            max_allowed = student.performance.max_allowed_credit_hours
            if current_hours + new_hours > max_allowed:
                raise ValidationError(
                    f"Exceeds maximum allowed credit hours ({max_allowed})",
                    currentHours=current_hours,
                    attemptedAdditionalHours=new_hours,
                    maxAllowed=max_allowed,
                )

            enrolled = repository.get_courses(uow, student.registered_courses)
            for course in courses:
                hit = find_schedule_conflict(student.id, enrolled, course.lecture_sessions)
                if hit:
                    raise ScheduleConflictError(
                        f"Time conflict with an existing {hit['type']} in {hit['courseCode']}.",
                        conflictingCourse=course.code,
                        conflictWith=hit,
                    )

            retake_details = _retake_details(uow, student.id, retakes)

            student.registered_courses = list(dict.fromkeys(student.registered_courses + codes))
            held = {c.code for c in student.current_term_courses}
            student.current_term_courses += [
                CourseRecord(code=c.code, name=c.name, credit_hours=c.credit_hours)
                for c in courses if c.code not in held
            ]
            student.performance.failed_courses = [
                fc for fc in student.performance.failed_courses if fc.code not in codes
            ]
            student.performance.term_status = "active"
            for course in courses:
                if student.id not in course.registered_students:
                    course.registered_students.append(student.id)
                repository.save_course(uow, course)
            repository.save_user(uow, student)
    except StaleDocumentError:
        logger.info("Course registration for %s lost a race on %s", student_id, codes)
        raise _capacity_or_conflict(store, {c: None for c in codes})

    logger.info("Student %s registered for %s in %s", student_id, codes, term)
    response = {
        "message": "Successfully registered for courses",
        "registeredCourses": codes,
        "term": term,
        "totalCreditHours": current_hours + new_hours,
    }
    if retake_details:
        response["retakeDetails"] = retake_details
    return response


def _single_section_error(choice: SectionChoice, report: dict, conflict: Optional[dict], sessions) -> Exception:
    if report["missingCourses"]:
        return NotFoundError(f"Course {choice.course_code} not found")
    if report["notRegisteredCourses"]:
        return ValidationError(f"Not registered for course {choice.course_code}")
    if report["missingSections"]:
        return NotFoundError(f"Section {choice.section_id} not found")
    if report["fullSections"]:
        return CapacityError(f"Section {choice.section_id} is full")
    return ScheduleConflictError(
        "Time conflict detected",
        conflictDetails={
            "requestedSection": {
                "courseCode": choice.course_code,
                "sectionId": choice.section_id,
                "sessions": [{"day": s.day, "time": f"{s.start_time}-{s.end_time}"} for s in sessions],
            },
            "conflictingWith": conflict or {"type": "unknown"},
            "suggestion": "Please choose a different section or adjust your schedule",
        },
    )


def register_for_sections(store: Store, student_id: str, choices: List[SectionChoice]) -> dict:
    if not choices:
        raise ValidationError("No registration requests provided")

    per_course: Dict[str, List[str]] = {}
    for choice in choices:
        per_course.setdefault(choice.course_code, []).append(choice.section_id)
    multiple = [code for code, ids in per_course.items() if len(ids) > 1]
    if multiple:
        raise ValidationError("Cannot register for multiple sections of the same course",
                              coursesWithMultipleSections=multiple)

    try:
        with store.unit_of_work() as uow:
            student = _load_student(uow, student_id)
            courses = {c.code: c for c in repository.get_courses(uow, list(per_course))}

            already = []
            for choice in choices:
                course = courses.get(choice.course_code)
                held = course.section_of(student.id) if course else None
                if held is not None:
                    already.append({"courseCode": choice.course_code, "existingSection": held.section_id})
            if already:
                raise ValidationError("Already registered in a section for some courses",
                                      alreadyRegisteredSections=already)

            enrolled = repository.get_courses(uow, student.registered_courses)
            report = {
                "missingCourses": [],
                "notRegisteredCourses": [],
                "missingSections": [],
                "fullSections": [],
                "timeConflicts": [],
            }
            conflict = None
            for choice in choices:
                code, section_id = choice.course_code, choice.section_id
                course = courses.get(code)
                if course is None:
                    report["missingCourses"].append(code)
                    continue
                if code not in student.registered_courses:
                    report["notRegisteredCourses"].append(code)
                    continue
                section = course.section(section_id)
                if section is None:
                    report["missingSections"].append({"courseCode": code, "sectionId": section_id})
                    continue
                if section.is_full:
                    report["fullSections"].append({"courseCode": code, "sectionId": section_id})
                    continue
                conflict = find_schedule_conflict(student.id, enrolled, section.sessions)
                if conflict:
                    report["timeConflicts"].append({
                        "courseCode": code,
                        "sectionId": section_id,
                        "message": f"Time conflict with an existing {conflict['type']} in {conflict['courseCode']}.",
                    })

            if any(report.values()):
                if len(choices) == 1:
                    choice = choices[0]
                    course = courses.get(choice.course_code)
                    section = course.section(choice.section_id) if course else None
                    raise _single_section_error(choice, report, conflict, section.sessions if section else [])
                raise ValidationError("Registration validation failed", **report)

            registered = []
            for choice in choices:
                course = courses[choice.course_code]
                section = course.section(choice.section_id)
                if student.id not in section.registered_students:
                    section.registered_students.append(student.id)
                student.registered_sections.append(choice.section_id)
                registered.append({"courseCode": choice.course_code, "sectionId": choice.section_id})
            for course in courses.values():
                repository.save_course(uow, course)
            repository.save_user(uow, student)
    except StaleDocumentError:
        logger.info("Section registration for %s lost a race", student_id)
        raise _capacity_or_conflict(store, {c.course_code: c.section_id for c in choices})

    logger.info("Student %s registered for sections %s", student_id, registered)
    if len(choices) == 1:
        return {"message": "Successfully registered for section", "registeredSection": registered[0]}
    return {"message": "Successfully registered for all sections", "registeredSections": registered}


def drop_course(store: Store, student_id: str, course_code: str, term: Optional[str] = None) -> dict:
    term = term or current_term()
    with store.unit_of_work() as uow:
        student = _load_student(uow, student_id)
        course = repository.get_course(uow, course_code)
        if course is None:
            raise NotFoundError("Course not found.")
        if course_code in student.performance.passed_codes:
            raise ValidationError("Cannot drop a course you have already passed.")
        if course_code not in student.registered_courses:
            raise ValidationError("Not currently registered for this course.")
        if _has_failing_grade(uow, student.id, course_code, term):
            raise ValidationError("Cannot drop a course that has already been graded for this term.")

        dropped = release_student(student, course)
        repository.save_course(uow, course)
        repository.save_user(uow, student)

    logger.info("Student %s dropped %s (sections %s)", student_id, course_code, dropped)
    return {
        "message": f"Successfully dropped course {course_code} and all associated sections.",
        "droppedSections": dropped,
    }


def drop_section(store: Store, student_id: str, course_code: str, section_id: str,
                 term: Optional[str] = None) -> dict:
    term = term or current_term()
    with store.unit_of_work() as uow:
        student = _load_student(uow, student_id)
        course = repository.get_course(uow, course_code)
        if course is None:
            raise NotFoundError(f'Course with code "{course_code}" not found.')
        section = course.section(section_id)
        if section is None:
            raise NotFoundError(f'Section with ID "{section_id}" not found.')
        if course_code in student.performance.passed_codes:
            raise ValidationError("Cannot drop a section for a course you have already passed.")
        if course_code not in student.registered_courses:
            raise ValidationError("Not registered for this course.")
        if _has_failing_grade(uow, student.id, course_code, term):
            raise ValidationError("Cannot drop a section for a course that has already been graded this term.")

        in_roster = student.id in section.registered_students
        in_profile = section_id in student.registered_sections
        if not in_roster and not in_profile:
            raise ValidationError("You are not registered for this section.")

        section.registered_students = [sid for sid in section.registered_students if sid != student.id]
        student.registered_sections = discard_section_ids(student.registered_sections, [section_id])
        repository.save_course(uow, course)
        repository.save_user(uow, student)

    logger.info("Student %s dropped section %s of %s", student_id, section_id, course_code)
    return {"message": f"Successfully dropped section {section_id} in course {course_code}."}
