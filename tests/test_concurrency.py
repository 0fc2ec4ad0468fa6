"""
Races are reproduced deterministically: the first commit lets a competing
registration run to completion before applying its own writes.
"""

import pytest

from registrar import enrollment
from registrar.database import UnitOfWork
from registrar.errors import CapacityError, ConflictError
from registrar.schemas import SectionChoice


@pytest.fixture
def interleave(monkeypatch):
    def _install(competitor):
        original = UnitOfWork.commit
        state = {"raced": False}

        def racing_commit(self):
            if not state["raced"]:
                state["raced"] = True
                competitor()
            original(self)

        monkeypatch.setattr(UnitOfWork, "commit", racing_commit)
    return _install


def test_last_course_seat_goes_to_one_student(store, add_user, add_course, interleave, load_user, load_course):
    add_user("S1")
    add_user("S2")
    add_course("CS101", capacity=1)
    interleave(lambda: enrollment.register_for_courses(store, "S2", ["CS101"]))

    with pytest.raises(CapacityError) as excinfo:
        enrollment.register_for_courses(store, "S1", ["CS101"])

    assert excinfo.value.details["fullCourses"] == ["CS101"]
    assert load_course("CS101").registered_students == ["S2"]
    assert load_user("S1").registered_courses == []
    assert load_user("S2").registered_courses == ["CS101"]


def test_last_section_seat_goes_to_one_student(store, add_user, add_course, add_section, interleave,
                                              load_user, load_course):
    add_user("S1", registered_courses=["CS101"])
    add_user("S2", registered_courses=["CS101"])
    add_course("CS101", sections=[add_section("S-1", capacity=1)], registered_students=["S1", "S2"])
    choice = [SectionChoice(course_code="CS101", section_id="S-1")]
    interleave(lambda: enrollment.register_for_sections(store, "S2", choice))

    with pytest.raises(CapacityError):
        enrollment.register_for_sections(store, "S1", choice)

    section = load_course("CS101").section("S-1")
    assert section.registered_students == ["S2"]
    assert len(section.registered_students) <= section.capacity
    assert load_user("S1").registered_sections == []


def test_lost_race_with_room_left_is_a_conflict(store, add_user, add_course, interleave, load_course):
    add_user("S1")
    add_user("S2")
    add_course("CS101", capacity=5)
    interleave(lambda: enrollment.register_for_courses(store, "S2", ["CS101"]))

    with pytest.raises(ConflictError):
        enrollment.register_for_courses(store, "S1", ["CS101"])

    assert load_course("CS101").registered_students == ["S2"]
