from fastapi import APIRouter, Depends

from registrar import enrollment, views
from registrar.auth import current_student
from registrar.database import Store, get_store
from registrar.schemas import (
    CourseRegistrationRequest,
    DropCourseRequest,
    DropSectionRequest,
    SectionRegistrationRequest,
    User,
)

router = APIRouter(prefix="/student", tags=["student"])


# ---------- Registration ----------
@router.post("/register-course/{user_id}")
def register_course(payload: CourseRegistrationRequest, student: User = Depends(current_student),
                    store: Store = Depends(get_store)):
    return enrollment.register_for_courses(store, student.id, payload.codes)


@router.post("/register-section/{user_id}")
def register_section(payload: SectionRegistrationRequest, student: User = Depends(current_student),
                     store: Store = Depends(get_store)):
    return enrollment.register_for_sections(store, student.id, payload.items)


@router.post("/drop-course/{user_id}")
def drop_course(payload: DropCourseRequest, student: User = Depends(current_student),
                store: Store = Depends(get_store)):
    return enrollment.drop_course(store, student.id, payload.course_code)


@router.post("/drop-section/{user_id}")
def drop_section(payload: DropSectionRequest, student: User = Depends(current_student),
                 store: Store = Depends(get_store)):
    return enrollment.drop_section(store, student.id, payload.course_code, payload.section_id)


# ---------- Views ----------
@router.get("/available-courses/{user_id}")
def available_courses(student: User = Depends(current_student), store: Store = Depends(get_store)):
    return views.available_courses(store, student.id)


@router.get("/course-sections/{course_code}/{user_id}")
def course_sections(course_code: str, student: User = Depends(current_student),
                    store: Store = Depends(get_store)):
    return views.course_sections(store, student.id, course_code)


@router.get("/time-table/{user_id}")
def time_table(student: User = Depends(current_student), store: Store = Depends(get_store)):
    return views.student_timetable(store, student.id)


@router.get("/exams/{user_id}")
def exams(student: User = Depends(current_student), store: Store = Depends(get_store)):
    return views.student_exams(store, student.id)
