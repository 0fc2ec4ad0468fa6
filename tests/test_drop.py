import pytest

from factories import passed_record
from registrar import enrollment
from registrar.errors import NotFoundError, ValidationError
from registrar.schemas import CourseRecord, Grade, Performance


@pytest.fixture
def enrolled(add_user, add_course, add_section):
    add_course(
        "CS101",
        sections=[add_section("S-1", students=["S1"]), add_section("S-2")],
        registered_students=["S1"],
    )
    add_user(
        "S1",
        registered_courses=["CS101"],
        registered_sections=["S-1"],
        current_term_courses=[CourseRecord(code="CS101", name="Course CS101", credit_hours=3)],
    )


def _failing_grade(store, term):
    store.create_document("grade", Grade(
        student_id="S1", course_code="CS101", course_name="Course CS101", doctor_id="D1",
        score=20, grade="F", term=term, credit_hours=3,
    ))


def test_drop_course_releases_sections(store, enrolled, load_user, load_course):
    result = enrollment.drop_course(store, "S1", "CS101", term="Fall 2025")

    assert result["droppedSections"] == ["S-1"]
    student = load_user("S1")
    assert student.registered_courses == []
    assert student.registered_sections == []
    assert student.current_term_courses == []
    course = load_course("CS101")
    assert course.registered_students == []
    assert course.section("S-1").registered_students == []


def test_drop_unknown_course(store, enrolled):
    with pytest.raises(NotFoundError):
        enrollment.drop_course(store, "S1", "NOPE")


def test_drop_passed_course(store, add_user, add_course):
    add_course("CS101")
    add_user("S1", performance=Performance(passed_courses=[passed_record("CS101")]))
    with pytest.raises(ValidationError):
        enrollment.drop_course(store, "S1", "CS101")


def test_drop_course_not_registered(store, add_user, add_course):
    add_course("CS101")
    add_user("S1")
    with pytest.raises(ValidationError):
        enrollment.drop_course(store, "S1", "CS101")


def test_graded_course_cannot_be_dropped_this_term(store, enrolled, load_user):
    _failing_grade(store, "Fall 2025")

    with pytest.raises(ValidationError):
        enrollment.drop_course(store, "S1", "CS101", term="Fall 2025")
    assert load_user("S1").registered_courses == ["CS101"]

    enrollment.drop_course(store, "S1", "CS101", term="Spring 2026")
    assert load_user("S1").registered_courses == []


def test_drop_section(store, enrolled, load_user, load_course):
    result = enrollment.drop_section(store, "S1", "CS101", "S-1", term="Fall 2025")

    assert "S-1" in result["message"]
    assert load_user("S1").registered_sections == []
    assert load_user("S1").registered_courses == ["CS101"]
    assert load_course("CS101").section("S-1").registered_students == []


def test_drop_section_not_joined(store, enrolled):
    with pytest.raises(ValidationError):
        enrollment.drop_section(store, "S1", "CS101", "S-2")


def test_drop_missing_section(store, enrolled):
    with pytest.raises(NotFoundError):
        enrollment.drop_section(store, "S1", "CS101", "S-9")


def test_drop_section_of_graded_course(store, enrolled):
    _failing_grade(store, "Fall 2025")
    with pytest.raises(ValidationError):
        enrollment.drop_section(store, "S1", "CS101", "S-1", term="Fall 2025")
