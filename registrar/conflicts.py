"""
Timetable conflict checking.

Sessions overlap when they fall on the same day and their half-open minute
intervals ``[start, end)`` intersect. Times are 12-hour clock strings
("hh:mm AM"); anything that does not parse never conflicts, so callers that
need strict input validate it with ``to_minutes`` first.
"""

import re
from typing import Iterable, List, Optional

from registrar.app_logger import get_logger
from registrar.schemas import Course, TimeSession

logger = get_logger("conflicts")

_CLOCK = re.compile(r"(\d{1,2}):(\d{2})\s*(AM|PM)", re.IGNORECASE)


def to_minutes(value: Optional[str]) -> Optional[int]:
    """Minutes since midnight for a 12-hour clock string, or None if it does not parse."""
    if not value:
        return None
    match = _CLOCK.search(value)
    if not match:
        return None
    hour, minute, period = int(match.group(1)), int(match.group(2)), match.group(3).upper()
    if period == "PM" and hour != 12:
        hour += 12
    elif period == "AM" and hour == 12:
        hour = 0
    return hour * 60 + minute


def is_time_conflict(first: TimeSession, second: TimeSession) -> bool:
    if first.day != second.day:
        return False
    start1, end1 = to_minutes(first.start_time), to_minutes(first.end_time)
    start2, end2 = to_minutes(second.start_time), to_minutes(second.end_time)
    if None in (start1, end1, start2, end2):
        logger.warning(
            "Unparsable session time, treating as no conflict: %s-%s vs %s-%s",
            first.start_time, first.end_time, second.start_time, second.end_time,
        )
        return False
    return start1 < end2 and start2 < end1


def _first_overlap(existing: Iterable[TimeSession], new_sessions: List[TimeSession]) -> Optional[TimeSession]:
    for session in existing:
        for candidate in new_sessions:
            if is_time_conflict(session, candidate):
                return session
    return None


def find_schedule_conflict(student_id: str, enrolled_courses: List[Course],
                           new_sessions: List[TimeSession]) -> Optional[dict]:
    """
    First clash between ``new_sessions`` and the student's current schedule.

    ``enrolled_courses`` is scanned in order; within a course, lectures are
    checked before the section that holds the student.
    """
    for course in enrolled_courses:
        hit = _first_overlap(course.lecture_sessions, new_sessions)
        if hit is not None:
            return {
                "type": "lecture",
                "courseCode": course.code,
                "day": hit.day,
                "time": f"{hit.start_time}-{hit.end_time}",
            }
        section = course.section_of(student_id)
        if section is not None:
            hit = _first_overlap(section.sessions, new_sessions)
            if hit is not None:
                return {
                    "type": "section",
                    "courseCode": course.code,
                    "sectionId": section.section_id,
                    "day": hit.day,
                    "time": f"{hit.start_time}-{hit.end_time}",
                }
    return None
