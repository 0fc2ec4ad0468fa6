"""
User directory and course catalog administration.

Bulk additions validate and store each item on its own; the caller gets a
``success``/``errors`` report per item instead of an all-or-nothing answer.
Every other mutation runs in a single unit of work together with the
cascades it implies (doctor and TA assignments, student registrations).
"""

from typing import Any, Dict, List, Optional, Tuple

import pydantic
from pymongo.errors import DuplicateKeyError

from registrar import repository
from registrar.app_logger import get_logger
from registrar.conflicts import to_minutes
from registrar.database import Store
from registrar.enrollment import discard_section_ids, release_student
from registrar.errors import NotFoundError, RegistrarError, ValidationError
from registrar.schemas import (
    Course,
    CourseCreate,
    CourseUpdate,
    Section,
    SectionCreate,
    SectionUpdate,
    TimeSession,
    User,
    UserCreate,
    UserUpdate,
)
from registrar.terms import current_term, season

logger = get_logger("catalog")

STUDENT_FIELDS = ("department", "academic_level", "status", "academic_advisor")


def public_user(user: User) -> dict:
    return user.model_dump(by_alias=True, exclude={"version"})


def public_course(course: Course) -> dict:
    return course.model_dump(by_alias=True, exclude={"version"})


def _bulk_result(kind: str, total: int, success: List[dict], errors: List[dict]) -> Tuple[int, dict]:
    """201 when every item was stored, 207 when some were, 400 when none were."""
    plural = f"{kind}s"
    if errors and not success:
        return 400, {"message": f"All {plural} failed to add", "errors": errors}
    if errors:
        message = f"{kind.capitalize()} addition failed" if total == 1 else f"Some {plural} were added successfully"
        return 207, {"message": message, "success": success, "errors": errors}
    message = f"{kind.capitalize()} added successfully" if total == 1 else f"All {plural} were added successfully"
    return 201, {"message": message, "success": success, "errors": []}


def _item_error(exc: Exception) -> str:
    if isinstance(exc, RegistrarError):
        return exc.message
    if isinstance(exc, pydantic.ValidationError):
        return "; ".join(f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors())
    return "duplicate key"


def _as_list(payload: Any) -> List[Any]:
    items = payload if isinstance(payload, list) else [payload]
    if not items:
        raise ValidationError("Request body should contain at least one item")
    return items


def _staff(uow, user_id: Optional[str], role: str) -> Optional[User]:
    if not user_id:
        return None
    return repository.get_user(uow, user_id, role=role)


def _cached_user(uow, cache: Dict[str, User], user_id: Optional[str], role: Optional[str] = None) -> Optional[User]:
    """Load each user once per unit of work so several changes land on one copy."""
    if not user_id:
        return None
    if user_id not in cache:
        user = repository.get_user(uow, user_id, role=role)
        if user is None:
            return None
        cache[user_id] = user
    return cache[user_id]


def _check_sessions(sessions: List[TimeSession]) -> None:
    for session in sessions:
        start, end = to_minutes(session.start_time), to_minutes(session.end_time)
        if start is None or end is None:
            raise ValidationError(f"Invalid session time {session.start_time}-{session.end_time} on {session.day}")
        if end <= start:
            raise ValidationError(f"Session on {session.day} ends before it starts")


def _check_sections(uow, sections: List[Section], capacity: int) -> List[User]:
    """Validate a full section list; returns the TAs it references."""
    ids = [s.section_id for s in sections]
    if len(ids) != len(set(ids)):
        raise ValidationError("Section IDs must be unique within a course")
    if sum(s.capacity for s in sections) > capacity:
        raise ValidationError("Total section capacity exceeds course capacity")
    tas = []
    for section in sections:
        _check_sessions(section.sessions)
        if section.ta_id:
            ta = _staff(uow, section.ta_id, "ta")
            if ta is None:
                raise ValidationError(f"Invalid TA ID ({section.ta_id}) or user is not a TA.")
            tas.append(ta)
    return tas


def _assign_section(ta: User, section_id: str) -> None:
    ta.assigned_sections.append(section_id)


def _unassign_section(ta: Optional[User], section_id: str) -> None:
    if ta is not None:
        ta.assigned_sections = discard_section_ids(ta.assigned_sections, [section_id])


# Users
def _add_user(store: Store, item: Any) -> User:
    data = UserCreate.model_validate(item)
    fields = data.model_dump()
    if data.role != "student":
        for name in STUDENT_FIELDS:
            fields[name] = None
    elif fields.get("status") is None:
        fields["status"] = "Active"
    user = User(**fields)
    with store.unit_of_work() as uow:
        if uow.find_one("user", {"id": user.id}) is not None:
            raise ValidationError("User with this ID already exists")
        if uow.find_one("user", {"email": user.email}) is not None:
            raise ValidationError("User with this email already exists")
        uow.insert("user", user)
    return user


def add_users(store: Store, payload: Any) -> Tuple[int, dict]:
    items = _as_list(payload)
    success, errors = [], []
    for item in items:
        try:
            user = _add_user(store, item)
        except (RegistrarError, pydantic.ValidationError, DuplicateKeyError) as exc:
            item_id = item.get("id") if isinstance(item, dict) else None
            logger.info("Rejected user %s: %s", item_id, exc)
            errors.append({"id": item_id or "N/A", "message": f"Failed to add user: {_item_error(exc)}"})
            continue
        logger.info("Added %s %s", user.role, user.id)
        success.append({"id": user.id, "message": "User added successfully", "user": public_user(user)})
    return _bulk_result("user", len(items), success, errors)


def update_user(store: Store, user_id: str, data: UserUpdate) -> dict:
    changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
    with store.unit_of_work() as uow:
        user = repository.get_user(uow, user_id)
        if user is None:
            raise NotFoundError("User not found")
        email = changes.get("email")
        if email and email != user.email and uow.find_one("user", {"email": email}) is not None:
            raise ValidationError("User with this email already exists")
        for name, value in changes.items():
            if name in STUDENT_FIELDS and user.role != "student":
                continue
            setattr(user, name, value)
        repository.save_user(uow, user)
    logger.info("Updated user %s (%s)", user_id, ", ".join(sorted(changes)) or "no changes")
    return {"message": "User updated successfully", "user": public_user(user)}


def delete_user(store: Store, user_id: str) -> dict:
    with store.unit_of_work() as uow:
        if repository.get_user(uow, user_id) is None:
            raise NotFoundError("User not found")
        uow.delete("user", {"id": user_id})
    logger.info("Deleted user %s", user_id)
    return {"message": "User deleted successfully"}


def list_users(store: Store, role: Optional[str] = None) -> List[dict]:
    filt = {"role": role} if role else {}
    return [public_user(User.model_validate(d)) for d in store.get_documents("user", filt, sort=[("id", 1)])]


# Courses
def _add_course(store: Store, item: Any) -> Course:
    data = CourseCreate.model_validate(item)
    fields = data.model_dump()
    fields["semester"] = fields.get("semester") or season(current_term())
    fields["department"] = fields.get("department") or "General"
    for section in fields["sections"]:
        section["registered_students"] = []
    course = Course(**fields)
    _check_sessions(course.lecture_sessions)

    with store.unit_of_work() as uow:
        if uow.find_one("course", {"code": course.code}) is not None:
            raise ValidationError("Course with this code already exists")
        doctor = _staff(uow, course.doctor_id, "doctor")
        if doctor is None:
            raise ValidationError("Invalid doctor ID or user is not a doctor")
        tas = {ta.id: ta for ta in _check_sections(uow, course.sections, course.capacity)}

        uow.insert("course", course)
        if course.code not in doctor.assigned_courses:
            doctor.assigned_courses.append(course.code)
        repository.save_user(uow, doctor)
        for section in course.sections:
            if section.ta_id:
                _assign_section(tas[section.ta_id], section.section_id)
        for ta in tas.values():
            repository.save_user(uow, ta)
    return course


def add_courses(store: Store, payload: Any) -> Tuple[int, dict]:
    items = _as_list(payload)
    success, errors = [], []
    for item in items:
        try:
            course = _add_course(store, item)
        except (RegistrarError, pydantic.ValidationError, DuplicateKeyError) as exc:
            code = item.get("code") if isinstance(item, dict) else None
            logger.info("Rejected course %s: %s", code, exc)
            errors.append({"code": code or "N/A", "message": f"Failed to add course: {_item_error(exc)}"})
            continue
        logger.info("Added course %s taught by %s", course.code, course.doctor_id)
        success.append({"code": course.code, "message": "Course added successfully", "course": public_course(course)})
    return _bulk_result("course", len(items), success, errors)


def update_course(store: Store, code: str, data: CourseUpdate) -> dict:
    changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
    with store.unit_of_work() as uow:
        course = repository.get_course(uow, code)
        if course is None:
            raise NotFoundError("Course not found")

        new_doctor_id = changes.pop("doctor_id", None)
        if new_doctor_id and new_doctor_id != course.doctor_id:
            new_doctor = _staff(uow, new_doctor_id, "doctor")
            if new_doctor is None:
                raise ValidationError("Invalid doctor ID or user is not a doctor")
            old_doctor = _staff(uow, course.doctor_id, "doctor")
            if old_doctor is not None:
                old_doctor.assigned_courses = [c for c in old_doctor.assigned_courses if c != code]
                repository.save_user(uow, old_doctor)
            if code not in new_doctor.assigned_courses:
                new_doctor.assigned_courses.append(code)
            repository.save_user(uow, new_doctor)
            course.doctor_id = new_doctor_id

        old_sections = None
        if "sections" in changes:
            old_sections = {s.section_id: s for s in course.sections}
            sections = [Section.model_validate(s) for s in changes.pop("sections")]
            for section in sections:
                previous = old_sections.get(section.section_id)
                if not section.registered_students and previous is not None:
                    section.registered_students = previous.registered_students
            course.sections = sections
        if "lecture_sessions" in changes:
            course.lecture_sessions = [TimeSession.model_validate(s) for s in changes.pop("lecture_sessions")]
        for name, value in changes.items():
            setattr(course, name, value)

        if len(course.registered_students) > course.capacity:
            raise ValidationError("Course capacity cannot be below the number of registered students")
        _check_sessions(course.lecture_sessions)
        tas = _check_sections(uow, course.sections, course.capacity)
        if old_sections is not None:
            touched: Dict[str, User] = {}
            for ta in tas:
                touched.setdefault(ta.id, ta)
            _carry_sections(uow, touched, old_sections, course.sections)
            for user in touched.values():
                repository.save_user(uow, user)
        repository.save_course(uow, course)

    logger.info("Updated course %s", code)
    return {"message": "Course updated successfully", "course": public_course(course)}


def _carry_sections(uow, touched: Dict[str, User], old_sections: Dict[str, Section],
                    sections: List[Section]) -> None:
    """Bring students and TAs in line with a replaced section list."""
    kept = {s.section_id: s for s in sections}
    for old in old_sections.values():
        new = kept.get(old.section_id)
        if new is None:
            for student_id in old.registered_students:
                student = _cached_user(uow, touched, student_id)
                if student is not None:
                    student.registered_sections = discard_section_ids(student.registered_sections, [old.section_id])
        if old.ta_id and (new is None or new.ta_id != old.ta_id):
            _unassign_section(_cached_user(uow, touched, old.ta_id, "ta"), old.section_id)
    for section in sections:
        old = old_sections.get(section.section_id)
        if section.ta_id and (old is None or old.ta_id != section.ta_id):
            _assign_section(touched[section.ta_id], section.section_id)


def delete_course(store: Store, code: str) -> dict:
    with store.unit_of_work() as uow:
        course = repository.get_course(uow, code)
        if course is None:
            raise NotFoundError("Course not found")

        student_ids = set(course.registered_students)
        for section in course.sections:
            student_ids.update(section.registered_students)
        for student_id in sorted(student_ids):
            student = repository.get_user(uow, student_id)
            if student is not None:
                release_student(student, course)
                repository.save_user(uow, student)

        doctor = _staff(uow, course.doctor_id, "doctor")
        if doctor is not None:
            doctor.assigned_courses = [c for c in doctor.assigned_courses if c != code]
            repository.save_user(uow, doctor)
        tas: Dict[str, User] = {}
        for section in course.sections:
            _unassign_section(_cached_user(uow, tas, section.ta_id, "ta"), section.section_id)
        for ta in tas.values():
            repository.save_user(uow, ta)
        uow.delete("course", {"code": code})

    logger.info("Deleted course %s, released %d students", code, len(student_ids))
    return {"message": "Course deleted successfully"}


def list_courses(store: Store) -> List[dict]:
    return [public_course(Course.model_validate(d)) for d in store.get_documents("course", sort=[("code", 1)])]


def courses_by_doctor(store: Store, doctor_id: str) -> dict:
    courses = store.get_documents("course", {"doctor_id": doctor_id}, sort=[("code", 1)])
    if not courses:
        raise NotFoundError("No courses found for this doctor")
    docs = store.get_documents("user", {"id": doctor_id, "role": "doctor"})
    if not docs:
        raise NotFoundError("Doctor not found")
    doctor = docs[0]
    return {
        "doctor": {"id": doctor["id"], "name": doctor["name"], "email": doctor["email"]},
        "courses": [public_course(Course.model_validate(d)) for d in courses],
    }


# Sections
def _course_and_section(uow, code: str, section_id: str) -> Tuple[Course, Section]:
    course = repository.get_course(uow, code)
    if course is None:
        raise NotFoundError("Course not found.")
    section = course.section(section_id)
    if section is None:
        raise NotFoundError("Section not found.")
    return course, section


def add_section(store: Store, code: str, data: SectionCreate) -> dict:
    _check_sessions(data.sessions)
    with store.unit_of_work() as uow:
        course = repository.get_course(uow, code)
        if course is None:
            raise NotFoundError("Course not found.")
        if course.section(data.section_id) is not None:
            raise ValidationError("Section with this ID already exists.")
        ta = _staff(uow, data.ta_id, "ta")
        if data.ta_id and ta is None:
            raise ValidationError("Invalid TA ID or user is not a TA.")
        if sum(s.capacity for s in course.sections) + data.capacity > course.capacity:
            raise ValidationError("Adding this section exceeds the course capacity.")

        section = Section(**data.model_dump())
        course.sections.append(section)
        repository.save_course(uow, course)
        if ta is not None:
            _assign_section(ta, section.section_id)
            repository.save_user(uow, ta)

    logger.info("Added section %s to %s", section.section_id, code)
    return {"message": "Section added successfully.", "section": section.model_dump(by_alias=True)}


def delete_section(store: Store, code: str, section_id: str) -> dict:
    with store.unit_of_work() as uow:
        course, section = _course_and_section(uow, code, section_id)
        for student_id in section.registered_students:
            student = repository.get_user(uow, student_id)
            if student is not None:
                student.registered_sections = discard_section_ids(student.registered_sections, [section_id])
                repository.save_user(uow, student)
        ta = _staff(uow, section.ta_id, "ta")
        if ta is not None:
            _unassign_section(ta, section_id)
            repository.save_user(uow, ta)
        course.sections = [s for s in course.sections if s.section_id != section_id]
        repository.save_course(uow, course)

    logger.info("Deleted section %s of %s", section_id, code)
    return {"message": "Section deleted successfully."}


def update_section(store: Store, code: str, section_id: str, data: SectionUpdate) -> dict:
    fields_set = data.model_fields_set
    with store.unit_of_work() as uow:
        course, section = _course_and_section(uow, code, section_id)
        old_ta = _staff(uow, section.ta_id, "ta")
        touched: Dict[str, User] = {}

        new_id = data.new_section_id
        if new_id and new_id != section_id:
            if course.section(new_id) is not None:
                raise ValidationError("Section with this ID already exists.")
            for student_id in section.registered_students:
                student = repository.get_user(uow, student_id)
                if student is not None:
                    student.registered_sections = discard_section_ids(student.registered_sections, [section_id])
                    student.registered_sections.append(new_id)
                    touched[student.id] = student
            section.section_id = new_id

        if data.new_sessions is not None:
            _check_sessions(data.new_sessions)
            section.sessions = list(data.new_sessions)

        if data.capacity is not None:
            if data.capacity < len(section.registered_students):
                raise ValidationError("Section capacity cannot be below the number of registered students.")
            others = sum(s.capacity for s in course.sections if s is not section)
            if others + data.capacity > course.capacity:
                raise ValidationError("Section capacity exceeds the course capacity.")
            section.capacity = data.capacity

        if "ta_id" in fields_set:
            new_ta = _staff(uow, data.ta_id, "ta")
            if data.ta_id and new_ta is None:
                raise ValidationError("Invalid TA ID or user is not a TA.")
            if old_ta is not None:
                _unassign_section(old_ta, section_id)
                touched[old_ta.id] = old_ta
            if new_ta is not None:
                new_ta = touched.get(new_ta.id, new_ta)
                _assign_section(new_ta, section.section_id)
                touched[new_ta.id] = new_ta
            section.ta_id = data.ta_id
        elif old_ta is not None and section.section_id != section_id:
            _unassign_section(old_ta, section_id)
            _assign_section(old_ta, section.section_id)
            touched[old_ta.id] = old_ta

        for user in touched.values():
            repository.save_user(uow, user)
        repository.save_course(uow, course)

    logger.info("Updated section %s of %s", section_id, code)
    return {"message": "Section updated successfully.", "section": section.model_dump(by_alias=True)}


def list_sections(store: Store) -> dict:
    courses = [Course.model_validate(d) for d in store.get_documents("course", sort=[("code", 1)])]
    staff = {d["id"]: d["name"] for d in store.get_documents("user", {"role": {"$in": ["doctor", "ta"]}})}
    sections = []
    for course in courses:
        for section in course.sections:
            entry = section.model_dump(by_alias=True)
            entry["courseCode"] = course.code
            entry["courseName"] = course.name
            entry["doctorName"] = staff.get(course.doctor_id)
            entry["taName"] = staff.get(section.ta_id) if section.ta_id else None
            sections.append(entry)
    return {"message": "Sections fetched successfully.", "sections": sections}
