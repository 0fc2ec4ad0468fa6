from datetime import date

import pytest

from registrar import exams, views
from registrar.errors import InsufficientRoomCapacity, NotFoundError, ValidationError
from registrar.schemas import ExamCreate, ExamSeat, ExamUpdate


def seats(n):
    return [ExamSeat(student_id=f"S{i}", name=f"Student {i:02d}") for i in range(n)]


def test_rooms_fill_in_order():
    rooms = exams.distribute_students(seats(5), ["A", "B", "C"], 2)

    assert [r.room_number for r in rooms] == ["A", "B", "C"]
    assert [[s.student_id for s in r.students] for r in rooms] == [["S0", "S1"], ["S2", "S3"], ["S4"]]


def test_no_empty_rooms_are_opened():
    rooms = exams.distribute_students(seats(2), ["A", "B", "C"], 5)
    assert [r.room_number for r in rooms] == ["A"]
    assert exams.distribute_students([], ["A"], 5) == []


def test_distribution_is_stable():
    roster = seats(7)
    assert exams.distribute_students(roster, ["A", "B"], 4) == exams.distribute_students(roster, ["A", "B"], 4)


def test_insufficient_capacity():
    with pytest.raises(InsufficientRoomCapacity) as excinfo:
        exams.distribute_students(seats(7), ["A", "B"], 3)

    assert excinfo.value.not_assigned == 1
    assert excinfo.value.required_rooms == 3
    assert excinfo.value.to_dict() == {
        "message": "Not enough room capacity. 1 students could not be assigned.",
        "notAssigned": 1,
        "requiredRooms": 3,
    }


def test_fifty_five_students_in_two_rooms_of_thirty():
    rooms = exams.distribute_students(seats(55), ["A", "B"], 30)
    assert [len(r.students) for r in rooms] == [30, 25]


def test_thirty_five_students_in_three_rooms_of_ten():
    with pytest.raises(InsufficientRoomCapacity) as excinfo:
        exams.distribute_students(seats(35), ["A", "B", "C"], 10)

    assert excinfo.value.not_assigned == 5
    assert excinfo.value.required_rooms == 4


@pytest.fixture
def course(add_user, add_course):
    add_user("S1", name="Zed", registered_courses=["CS101"])
    add_user("S2", name="Amy", registered_courses=["CS101"])
    add_user("S3", name="Bob", registered_courses=["CS101"])
    add_course("CS101", registered_students=["S1", "S2", "S3"])


def _exam(**overrides):
    fields = dict(
        exam_id="EX1", course_code="CS101", exam_date="2030-01-10",
        start_time="09:00 AM", end_time="11:00 AM", room_numbers=["H1", "H2"],
        room_capacity=2, semester="Fall", academic_year="2029", department="CS",
    )
    fields.update(overrides)
    return ExamCreate(**fields)


def test_add_exam_seats_roster_by_name(store, course, load_user):
    result = exams.add_exam(store, _exam())

    assert result["exam"]["totalStudents"] == 3
    assert result["exam"]["rooms"] == [
        {"roomNumber": "H1", "studentCount": 2},
        {"roomNumber": "H2", "studentCount": 1},
    ]
    assert load_user("S2").exam_rooms == {"EX1": "H1"}
    assert load_user("S3").exam_rooms == {"EX1": "H1"}
    assert load_user("S1").exam_rooms == {"EX1": "H2"}
    assert load_user("S1").exams == ["EX1"]


def test_add_exam_validation(store, course):
    with pytest.raises(ValidationError):
        exams.add_exam(store, _exam(room_numbers=[]))
    with pytest.raises(ValidationError):
        exams.add_exam(store, _exam(exam_date="10/01/2030"))
    with pytest.raises(ValidationError):
        exams.add_exam(store, _exam(start_time="9 o'clock"))
    with pytest.raises(NotFoundError):
        exams.add_exam(store, _exam(course_code="NOPE"))
    with pytest.raises(InsufficientRoomCapacity):
        exams.add_exam(store, _exam(room_numbers=["H1"]))
    assert store["exam"].count_documents({}) == 0


def test_duplicate_exam_id(store, course):
    exams.add_exam(store, _exam())
    with pytest.raises(ValidationError) as excinfo:
        exams.add_exam(store, _exam(department="Math"))
    assert excinfo.value.message == "Exam with ID EX1 already exists"


def test_update_exam_reseats_each_student(store, course, load_user):
    exams.add_exam(store, _exam())

    result = exams.update_exam(store, "EX1", ExamUpdate(room_numbers=["K1", "K2", "K3"], room_capacity=1))

    assert result["updatedStudents"] == 3
    assert load_user("S2").exam_rooms["EX1"] == "K1"
    assert load_user("S3").exam_rooms["EX1"] == "K2"
    assert load_user("S1").exam_rooms["EX1"] == "K3"


def test_update_exam_to_unknown_course(store, course):
    exams.add_exam(store, _exam())
    with pytest.raises(NotFoundError):
        exams.update_exam(store, "EX1", ExamUpdate(course_code="NOPE"))
    with pytest.raises(NotFoundError):
        exams.update_exam(store, "EX9", ExamUpdate(exam_date="2030-02-01"))


def test_delete_exam_cleans_students(store, course, load_user):
    exams.add_exam(store, _exam())

    result = exams.delete_exam(store, "EX1")

    assert result["affectedStudents"] == 3
    assert load_user("S1").exams == []
    assert load_user("S1").exam_rooms == {}
    assert store["exam"].count_documents({}) == 0


def test_list_exams_in_time_order(store, course):
    exams.add_exam(store, _exam(exam_id="EX2", start_time="01:00 PM", end_time="02:00 PM"))
    exams.add_exam(store, _exam(exam_id="EX1", start_time="09:00 AM", end_time="10:00 AM"))

    listing = exams.list_exams(store)

    assert [e["examId"] for e in listing] == ["EX1", "EX2"]
    assert listing[0]["registeredStudents"] == 3


def test_student_exam_view(store, course):
    exams.add_exam(store, _exam(exam_id="EX1", semester="Spring", academic_year="2030"))
    exams.add_exam(store, _exam(exam_id="EX2", semester="Spring 2030", start_time="10:00 AM", end_time="12:00 PM"))
    exams.add_exam(store, _exam(exam_id="EX3", semester="Fall", academic_year="2029"))

    view = views.student_exams(store, "S2", today=date(2030, 1, 5))

    assert view["semester"] == "Spring 2030"
    assert [e["examId"] for e in view["exams"]] == ["EX1", "EX2"]
    first = view["exams"][0]
    assert first["location"] == "H1"
    assert first["day"] == "Thursday"
    assert first["status"] == "Upcoming"
    assert all(e["hasConflict"] for e in view["exams"])
    assert view["stats"] == {"upcoming": 2, "completed": 0, "conflicts": 2}
