from typing import Any, Optional

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder

from registrar import catalog, exams
from registrar.auth import require_role
from registrar.database import Store, get_store
from registrar.schemas import (
    CourseUpdate,
    ExamCreate,
    ExamUpdate,
    Role,
    SectionCreate,
    SectionUpdate,
    UserUpdate,
)

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_role("admin"))])


def _bulk(result) -> JSONResponse:
    status_code, body = result
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


# ---------- Users ----------
@router.post("/add-user")
def add_user(payload: Any = Body(...), store: Store = Depends(get_store)):
    return _bulk(catalog.add_users(store, payload))


@router.delete("/delete-user/{user_id}")
def delete_user(user_id: str, store: Store = Depends(get_store)):
    return catalog.delete_user(store, user_id)


@router.put("/update-user/{user_id}")
def update_user(user_id: str, payload: UserUpdate, store: Store = Depends(get_store)):
    return catalog.update_user(store, user_id, payload)


@router.get("/users")
def list_users(role: Optional[Role] = None, store: Store = Depends(get_store)):
    return catalog.list_users(store, role)


# ---------- Courses ----------
@router.post("/add-course")
def add_course(payload: Any = Body(...), store: Store = Depends(get_store)):
    return _bulk(catalog.add_courses(store, payload))


@router.delete("/delete-course/{code}")
def delete_course(code: str, store: Store = Depends(get_store)):
    return catalog.delete_course(store, code)


@router.put("/update-course/{code}")
def update_course(code: str, payload: CourseUpdate, store: Store = Depends(get_store)):
    return catalog.update_course(store, code, payload)


@router.get("/courses")
def list_courses(store: Store = Depends(get_store)):
    return catalog.list_courses(store)


@router.get("/coursesByDoctors/{doctor_id}")
def courses_by_doctor(doctor_id: str, store: Store = Depends(get_store)):
    return catalog.courses_by_doctor(store, doctor_id)


# ---------- Sections ----------
@router.post("/add-section/{course_code}", status_code=201)
def add_section(course_code: str, payload: SectionCreate, store: Store = Depends(get_store)):
    return catalog.add_section(store, course_code, payload)


@router.delete("/delete-section/{course_code}/{section_id}")
def delete_section(course_code: str, section_id: str, store: Store = Depends(get_store)):
    return catalog.delete_section(store, course_code, section_id)


@router.put("/update-section/{course_code}/{section_id}")
def update_section(course_code: str, section_id: str, payload: SectionUpdate,
                   store: Store = Depends(get_store)):
    return catalog.update_section(store, course_code, section_id, payload)


@router.get("/sections")
def list_sections(store: Store = Depends(get_store)):
    return catalog.list_sections(store)


# ---------- Exams ----------
@router.post("/add-exam", status_code=201)
def add_exam(payload: ExamCreate, store: Store = Depends(get_store)):
    return exams.add_exam(store, payload)


@router.put("/update-exam/{exam_id}")
def update_exam(exam_id: str, payload: ExamUpdate, store: Store = Depends(get_store)):
    return exams.update_exam(store, exam_id, payload)


@router.delete("/delete-exam/{exam_id}")
def delete_exam(exam_id: str, store: Store = Depends(get_store)):
    return exams.delete_exam(store, exam_id)


@router.get("/exams")
def list_exams(store: Store = Depends(get_store)):
    return exams.list_exams(store)
