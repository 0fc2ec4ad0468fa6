import pytest

from factories import make_session
from registrar import catalog
from registrar.errors import NotFoundError, ValidationError
from registrar.schemas import CourseUpdate, Section, SectionCreate, SectionUpdate, UserUpdate


def user_payload(user_id, role="student", **fields):
    return {"id": user_id, "name": f"User {user_id}", "email": f"{user_id.lower()}@uni.edu", "role": role, **fields}


def test_add_single_user(store, load_user):
    status, body = catalog.add_users(store, user_payload("S1", department="CS"))

    assert status == 201
    assert body["message"] == "User added successfully"
    assert body["success"][0]["user"]["department"] == "CS"
    assert load_user("S1").status == "Active"


def test_student_fields_dropped_for_staff(store, load_user):
    catalog.add_users(store, user_payload("D1", role="doctor", department="CS", academicLevel="First"))

    doctor = load_user("D1")
    assert doctor.department is None
    assert doctor.academic_level is None


def test_bulk_users_partial_success(store):
    status, body = catalog.add_users(store, [
        user_payload("S1"),
        user_payload("S2", email="s1@uni.edu"),
        {"name": "no id"},
    ])

    assert status == 207
    assert [s["id"] for s in body["success"]] == ["S1"]
    assert [e["id"] for e in body["errors"]] == ["S2", "N/A"]
    assert "email already exists" in body["errors"][0]["message"]


def test_bulk_users_all_fail(store, add_user):
    add_user("S1")
    status, body = catalog.add_users(store, [user_payload("S1")])
    assert status == 400
    assert body["message"] == "All users failed to add"


def test_update_user_ignores_student_fields_for_staff(store, add_user, load_user):
    add_user("D1", role="doctor")

    catalog.update_user(store, "D1", UserUpdate(name="Dr. Who", department="CS"))

    doctor = load_user("D1")
    assert doctor.name == "Dr. Who"
    assert doctor.department is None


def test_update_and_delete_unknown_user(store):
    with pytest.raises(NotFoundError):
        catalog.update_user(store, "GHOST", UserUpdate(name="x"))
    with pytest.raises(NotFoundError):
        catalog.delete_user(store, "GHOST")


def test_list_users_by_role(store, add_user):
    add_user("S1")
    add_user("D1", role="doctor")
    assert [u["id"] for u in catalog.list_users(store, "doctor")] == ["D1"]
    assert len(catalog.list_users(store)) == 2


@pytest.fixture
def staff(add_user):
    add_user("D1", role="doctor")
    add_user("D2", role="doctor")
    add_user("T1", role="ta")
    add_user("T2", role="ta")


def course_payload(code="CS101", **fields):
    payload = {
        "code": code,
        "name": "Intro",
        "doctorId": "D1",
        "capacity": 10,
        "lectureSessions": [{"day": "Sunday", "startTime": "09:00 AM", "endTime": "10:00 AM", "room": "L1"}],
        "sections": [{"sectionId": "S-1", "capacity": 5, "taId": "T1", "sessions": []}],
    }
    payload.update(fields)
    return payload


def set_rosters(store, load_course, course_roster=(), section_roster=(), section_id="S-1"):
    course = load_course("CS101")
    course.registered_students = list(course_roster)
    course.section(section_id).registered_students = list(section_roster)
    store["course"].replace_one({"code": "CS101"}, course.model_dump())


def test_add_course_assigns_staff(store, staff, load_user, load_course):
    status, body = catalog.add_courses(store, course_payload())

    assert status == 201
    course = load_course("CS101")
    assert course.credit_hours == 3
    assert course.department == "General"
    assert load_user("D1").assigned_courses == ["CS101"]
    assert load_user("T1").assigned_sections == ["S-1"]


@pytest.mark.parametrize("overrides", [
    {"doctorId": "T1"},
    {"sections": [{"sectionId": "S-1", "capacity": 5}, {"sectionId": "S-1", "capacity": 1}]},
    {"sections": [{"sectionId": "S-1", "capacity": 11}]},
    {"sections": [{"sectionId": "S-1", "capacity": 5, "taId": "D2"}]},
    {"lectureSessions": [{"day": "Sunday", "startTime": "late", "endTime": "later", "room": "L1"}]},
])
def test_add_course_rejections(store, staff, overrides):
    status, body = catalog.add_courses(store, course_payload(**overrides))
    assert status == 400
    assert store["course"].count_documents({}) == 0


def test_duplicate_course_code(store, staff):
    catalog.add_courses(store, course_payload())
    status, body = catalog.add_courses(store, [course_payload(), course_payload("CS102")])
    assert status == 207
    assert body["errors"][0]["code"] == "CS101"


def test_update_course_moves_doctor(store, staff, load_user):
    catalog.add_courses(store, course_payload())

    catalog.update_course(store, "CS101", CourseUpdate(doctor_id="D2", credit_hours=4))

    assert load_user("D1").assigned_courses == []
    assert load_user("D2").assigned_courses == ["CS101"]
    with pytest.raises(ValidationError):
        catalog.update_course(store, "CS101", CourseUpdate(doctor_id="T1"))
    with pytest.raises(NotFoundError):
        catalog.update_course(store, "NOPE", CourseUpdate(credit_hours=2))


def test_delete_course_cascades(store, staff, add_user, load_user, load_course):
    catalog.add_courses(store, course_payload())
    add_user("S1", registered_courses=["CS101"], registered_sections=["S-1"])
    set_rosters(store, load_course, course_roster=["S1"], section_roster=["S1"])

    catalog.delete_course(store, "CS101")

    assert load_course("CS101") is None
    student = load_user("S1")
    assert student.registered_courses == []
    assert student.registered_sections == []
    assert load_user("D1").assigned_courses == []
    assert load_user("T1").assigned_sections == []


def test_add_section_rules(store, staff, load_user, load_course):
    catalog.add_courses(store, course_payload())

    catalog.add_section(store, "CS101", SectionCreate(section_id="S-2", capacity=5, ta_id="T2"))
    assert [s.section_id for s in load_course("CS101").sections] == ["S-1", "S-2"]
    assert load_user("T2").assigned_sections == ["S-2"]

    with pytest.raises(ValidationError):
        catalog.add_section(store, "CS101", SectionCreate(section_id="S-2", capacity=1))
    with pytest.raises(ValidationError):
        catalog.add_section(store, "CS101", SectionCreate(section_id="S-3", capacity=1))
    with pytest.raises(NotFoundError):
        catalog.add_section(store, "NOPE", SectionCreate(section_id="S-3", capacity=1))


def test_update_section_rename_reaches_students(store, staff, add_user, load_user, load_course):
    catalog.add_courses(store, course_payload())
    add_user("S1", registered_courses=["CS101"], registered_sections=["S-1"])
    set_rosters(store, load_course, section_roster=["S1"])

    catalog.update_section(store, "CS101", "S-1", SectionUpdate(
        new_section_id="S-1A",
        new_sessions=[make_session("Monday", "01:00 PM", "02:00 PM")],
    ))

    course = load_course("CS101")
    assert course.section("S-1A").registered_students == ["S1"]
    assert len(course.section("S-1A").sessions) == 1
    assert load_user("S1").registered_sections == ["S-1A"]
    assert load_user("T1").assigned_sections == ["S-1A"]


def test_update_section_capacity_and_ta(store, staff, load_user, load_course):
    catalog.add_courses(store, course_payload())
    set_rosters(store, load_course, section_roster=["A", "B"])

    with pytest.raises(ValidationError):
        catalog.update_section(store, "CS101", "S-1", SectionUpdate(capacity=1))
    with pytest.raises(ValidationError):
        catalog.update_section(store, "CS101", "S-1", SectionUpdate(capacity=11))

    catalog.update_section(store, "CS101", "S-1", SectionUpdate(capacity=3, ta_id="T2"))
    assert load_course("CS101").section("S-1").ta_id == "T2"
    assert load_user("T1").assigned_sections == []
    assert load_user("T2").assigned_sections == ["S-1"]

    catalog.update_section(store, "CS101", "S-1", SectionUpdate(ta_id=None))
    assert load_course("CS101").section("S-1").ta_id is None
    assert load_user("T2").assigned_sections == []


def test_delete_section_cascades(store, staff, add_user, load_user, load_course):
    catalog.add_courses(store, course_payload())
    add_user("S1", registered_courses=["CS101"], registered_sections=["S-1"])
    set_rosters(store, load_course, section_roster=["S1"])

    catalog.delete_section(store, "CS101", "S-1")

    assert load_course("CS101").sections == []
    assert load_user("S1").registered_sections == []
    assert load_user("T1").assigned_sections == []
    with pytest.raises(NotFoundError):
        catalog.delete_section(store, "CS101", "S-1")


def test_listings(store, staff):
    catalog.add_courses(store, [course_payload(), course_payload("CS102", doctorId="D2", sections=[])])

    assert [c["code"] for c in catalog.list_courses(store)] == ["CS101", "CS102"]
    by_doctor = catalog.courses_by_doctor(store, "D2")
    assert by_doctor["doctor"]["id"] == "D2"
    assert [c["code"] for c in by_doctor["courses"]] == ["CS102"]
    with pytest.raises(NotFoundError):
        catalog.courses_by_doctor(store, "T1")
    sections = catalog.list_sections(store)["sections"]
    assert sections[0]["taName"] == "User T1"
    assert sections[0]["doctorName"] == "User D1"


def two_sections(second_ta="T1"):
    return [
        {"sectionId": "S-1", "capacity": 5, "taId": "T1"},
        {"sectionId": "S-2", "capacity": 5, "taId": second_ta},
    ]


def test_delete_course_unassigns_every_section_of_a_ta(store, staff, load_user):
    catalog.add_courses(store, course_payload(sections=two_sections()))
    assert load_user("T1").assigned_sections == ["S-1", "S-2"]

    catalog.delete_course(store, "CS101")

    assert load_user("T1").assigned_sections == []


def test_update_course_cascades_removed_sections(store, staff, add_user, load_user, load_course):
    catalog.add_courses(store, course_payload(sections=two_sections(second_ta="T2")))
    add_user("S1", registered_courses=["CS101"], registered_sections=["S-2"])
    set_rosters(store, load_course, course_roster=["S1"], section_roster=["S1"], section_id="S-2")

    catalog.update_course(store, "CS101", CourseUpdate(sections=[Section(section_id="S-1", capacity=5, ta_id="T1")]))

    assert [s.section_id for s in load_course("CS101").sections] == ["S-1"]
    student = load_user("S1")
    assert student.registered_sections == []
    assert student.registered_courses == ["CS101"]
    assert load_user("T1").assigned_sections == ["S-1"]
    assert load_user("T2").assigned_sections == []


def test_update_course_moves_section_to_new_ta(store, staff, load_user, load_course):
    catalog.add_courses(store, course_payload())

    catalog.update_course(store, "CS101", CourseUpdate(sections=[Section(section_id="S-1", capacity=5, ta_id="T2")]))

    assert load_course("CS101").section("S-1").ta_id == "T2"
    assert load_user("T1").assigned_sections == []
    assert load_user("T2").assigned_sections == ["S-1"]


def test_ta_keeps_same_section_id_of_another_course(store, staff, load_user):
    catalog.add_courses(store, [course_payload(), course_payload("CS102")])
    assert load_user("T1").assigned_sections == ["S-1", "S-1"]

    catalog.delete_section(store, "CS101", "S-1")

    assert load_user("T1").assigned_sections == ["S-1"]
