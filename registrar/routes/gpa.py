from fastapi import APIRouter, Depends

from registrar import grading
from registrar.auth import require_role
from registrar.database import Store, get_store
from registrar.errors import AuthorizationError
from registrar.schemas import GradeCreate, GradeUpdate, User

router = APIRouter(prefix="/gpa", tags=["gpa"])

doctor_only = require_role("doctor")
admin_only = require_role("admin")


@router.post("/add-grade", status_code=201)
def add_grade(payload: GradeCreate, doctor: User = Depends(doctor_only), store: Store = Depends(get_store)):
    return grading.add_grade(store, doctor.id, payload.student_id, payload.course_code, payload.score)


@router.get("/get-all-grades", dependencies=[Depends(admin_only)])
def get_all_grades(store: Store = Depends(get_store)):
    return grading.all_grades(store)


@router.get("/get-grade/{student_id}", dependencies=[Depends(admin_only)])
def get_grade(student_id: str, store: Store = Depends(get_store)):
    return grading.student_grades(store, student_id)


@router.put("/update-grade/{student_id}/{course_code}")
def update_grade(student_id: str, course_code: str, payload: GradeUpdate,
                 doctor: User = Depends(doctor_only), store: Store = Depends(get_store)):
    return grading.update_grade(store, doctor.id, student_id, course_code, payload.score)


@router.delete("/delete-grade/{student_id}/{course_code}")
def delete_grade(student_id: str, course_code: str, doctor: User = Depends(doctor_only),
                 store: Store = Depends(get_store)):
    return grading.delete_grade(store, doctor.id, student_id, course_code)


@router.get("/get-grades-for-course/{course_code}")
def get_grades_for_course(course_code: str, doctor: User = Depends(doctor_only),
                          store: Store = Depends(get_store)):
    return grading.course_grades(store, doctor.id, course_code)


@router.get("/get-student-grade/{course_code}/{student_id}")
def get_student_grade(course_code: str, student_id: str, doctor: User = Depends(doctor_only),
                      store: Store = Depends(get_store)):
    return grading.student_course_grade(store, doctor.id, course_code, student_id)


@router.get("/performance/{student_id}")
def performance(student_id: str, user: User = Depends(require_role("student", "admin")),
                store: Store = Depends(get_store)):
    if user.role == "student" and user.id != student_id:
        raise AuthorizationError("Unauthorized access")
    return grading.student_performance(store, student_id)


@router.post("/process-term-completion", dependencies=[Depends(admin_only)])
def process_term_completion(store: Store = Depends(get_store)):
    return grading.process_term_completion(store)
