"""
Database Schemas for the Registrar

Each top-level document model corresponds to a MongoDB collection:
- User -> "user"
- Course -> "course" (sections and time sessions are embedded)
- Grade -> "grade"
- Exam -> "exam"

Documents are stored with snake_case keys (``model_dump()``); the HTTP API
speaks camelCase (``model_dump(by_alias=True)`` and aliased request bodies).
"""

from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel

Weekday = Literal["Saturday", "Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday"]
Role = Literal["admin", "doctor", "student", "ta"]
LetterGrade = Literal["A", "A-", "B+", "B", "B-", "C+", "C", "C-", "D+", "D", "F"]
AcademicLevel = Literal["First", "Second", "Third", "Fourth"]

CLOCK_PATTERN = r"^(0?[1-9]|1[0-2]):[0-5][0-9]\s*(AM|PM|am|pm)$"


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Courses
class TimeSession(ApiModel):
    model_config = ConfigDict(frozen=True)

    day: Weekday
    start_time: str = Field(..., description="12-hour clock, e.g. 09:00 AM")
    end_time: str = Field(..., description="12-hour clock, e.g. 10:30 AM")
    room: str
    kind: Optional[Literal["Lecture", "Section"]] = Field(None, alias="type")

    @field_validator("room")
    @classmethod
    def _strip_room(cls, v: str) -> str:
        return v.strip()


class Section(ApiModel):
    section_id: str
    ta_id: Optional[str] = None
    capacity: int = Field(..., ge=1)
    registered_students: List[str] = Field(default_factory=list)
    sessions: List[TimeSession] = Field(default_factory=list)

    @computed_field
    @property
    def is_full(self) -> bool:
        return len(self.registered_students) >= self.capacity


class Course(ApiModel):
    code: str = Field(..., description="Globally unique course code e.g. CS101")
    name: str
    doctor_id: str
    credit_hours: int = Field(3, ge=1)
    prerequisites: List[str] = Field(default_factory=list)
    capacity: int = Field(30, ge=1)
    sections: List[Section] = Field(default_factory=list)
    lecture_sessions: List[TimeSession] = Field(default_factory=list)
    registered_students: List[str] = Field(default_factory=list)
    semester: Literal["Fall", "Spring", "Summer"] = "Fall"
    department: Optional[str] = None
    is_active: bool = True
    version: int = 0

    @field_validator("prerequisites")
    @classmethod
    def _upper_prerequisites(cls, v: List[str]) -> List[str]:
        return [p.strip().upper() for p in v]

    @computed_field
    @property
    def is_full(self) -> bool:
        return len(self.registered_students) >= self.capacity

    def section(self, section_id: str) -> Optional[Section]:
        return next((s for s in self.sections if s.section_id == section_id), None)

    def section_of(self, student_id: str) -> Optional[Section]:
        """The section of this course that holds the student, if any."""
        return next((s for s in self.sections if student_id in s.registered_students), None)


# Users and academic records
class CourseRecord(ApiModel):
    code: str
    name: str
    credit_hours: int


class GradeRecord(ApiModel):
    code: str
    name: str
    credit_hours: int
    score: float
    grade: LetterGrade
    term: str
    attempt_number: int = 1
    is_retake: bool = False


class HistoryCourse(ApiModel):
    code: str
    name: str
    credit_hours: int
    score: float
    grade: LetterGrade
    status: Literal["passed", "failed"]
    attempt_number: int = 1


class TermHistory(ApiModel):
    term: str
    courses: List[HistoryCourse] = Field(default_factory=list)
    term_gpa: float = 0
    total_credits: int = 0
    status: Literal["active", "completed"] = "completed"


class Performance(ApiModel):
    cgpa: float = 0
    term_gpa: float = 0
    passed_courses: List[GradeRecord] = Field(default_factory=list)
    failed_courses: List[GradeRecord] = Field(default_factory=list)
    total_credit_hours_completed: int = 0
    remaining_credit_hours: int = 140
    academic_level: AcademicLevel = "First"
    max_allowed_credit_hours: int = 18
    term_status: Literal["active", "completed"] = "active"

    @property
    def passed_codes(self) -> List[str]:
        return [c.code for c in self.passed_courses]

    @property
    def failed_codes(self) -> List[str]:
        return [c.code for c in self.failed_courses]


class User(ApiModel):
    id: str = Field(..., description="Institution id, unique")
    name: str
    email: EmailStr
    role: Role
    phone_number: Optional[str] = None
    date_of_birth: Optional[str] = None
    gender: Optional[Literal["Male", "Female"]] = None
    address: Optional[str] = None
    is_active: bool = True
    # student-only
    department: Optional[str] = None
    academic_level: Optional[AcademicLevel] = None
    status: Optional[Literal["Active", "Suspended", "Graduated"]] = None
    academic_advisor: Optional[str] = None
    registered_courses: List[str] = Field(default_factory=list)
    registered_sections: List[str] = Field(default_factory=list)
    current_term_courses: List[CourseRecord] = Field(default_factory=list)
    performance: Performance = Field(default_factory=Performance)
    academic_history: List[TermHistory] = Field(default_factory=list)
    exams: List[str] = Field(default_factory=list)
    exam_rooms: Dict[str, str] = Field(default_factory=dict)
    # staff-only
    assigned_courses: List[str] = Field(default_factory=list)
    assigned_sections: List[str] = Field(default_factory=list)
    version: int = 0


class Grade(ApiModel):
    student_id: str
    course_code: str
    course_name: str
    doctor_id: str
    score: float = Field(..., ge=0, le=100)
    grade: LetterGrade
    term: str
    credit_hours: int
    is_retake: bool = False
    attempt_number: int = 1
    date_graded: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# Exams
class ExamSeat(ApiModel):
    student_id: str
    name: str


class ExamRoom(ApiModel):
    room_number: str
    students: List[ExamSeat] = Field(default_factory=list)


class Exam(ApiModel):
    exam_id: str
    course_code: str
    course_name: str
    exam_date: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$")
    start_time: str = Field(..., pattern=CLOCK_PATTERN)
    end_time: str = Field(..., pattern=CLOCK_PATTERN)
    room_numbers: List[str]
    rooms: List[ExamRoom] = Field(default_factory=list)
    room_capacity: int = Field(30, ge=1)
    semester: str
    academic_year: Optional[str] = None
    academic_level: Optional[AcademicLevel] = None
    exam_type: Literal["Midterm", "Final"] = "Final"
    department: str
    version: int = 0


# Request bodies
class CourseRegistrationRequest(ApiModel):
    course_codes: Union[List[str], str]

    @property
    def codes(self) -> List[str]:
        return self.course_codes if isinstance(self.course_codes, list) else [self.course_codes]


class SectionChoice(ApiModel):
    course_code: str
    section_id: str


class SectionRegistrationRequest(ApiModel):
    registrations: Union[List[SectionChoice], SectionChoice]

    @property
    def items(self) -> List[SectionChoice]:
        if isinstance(self.registrations, list):
            return self.registrations
        return [self.registrations]


class DropCourseRequest(ApiModel):
    course_code: str


class DropSectionRequest(ApiModel):
    course_code: str
    section_id: str


class UserCreate(ApiModel):
    id: str
    name: str
    email: EmailStr
    role: Role
    phone_number: Optional[str] = None
    date_of_birth: Optional[str] = None
    gender: Optional[Literal["Male", "Female"]] = None
    address: Optional[str] = None
    department: Optional[str] = None
    academic_level: Optional[AcademicLevel] = None
    status: Optional[Literal["Active", "Suspended", "Graduated"]] = None
    academic_advisor: Optional[str] = None


class UserUpdate(ApiModel):
    email: Optional[EmailStr] = None
    name: Optional[str] = None
    phone_number: Optional[str] = None
    address: Optional[str] = None
    department: Optional[str] = None
    academic_level: Optional[AcademicLevel] = None
    status: Optional[Literal["Active", "Suspended", "Graduated"]] = None
    academic_advisor: Optional[str] = None


class CourseCreate(ApiModel):
    code: str
    name: str
    doctor_id: str
    credit_hours: int = Field(3, ge=1)
    prerequisites: List[str] = Field(default_factory=list)
    capacity: int = Field(30, ge=1)
    sections: List[Section] = Field(default_factory=list)
    lecture_sessions: List[TimeSession] = Field(default_factory=list)
    semester: Optional[Literal["Fall", "Spring", "Summer"]] = None
    department: Optional[str] = None


class CourseUpdate(ApiModel):
    name: Optional[str] = None
    doctor_id: Optional[str] = None
    credit_hours: Optional[int] = Field(None, ge=1)
    prerequisites: Optional[List[str]] = None
    capacity: Optional[int] = Field(None, ge=1)
    sections: Optional[List[Section]] = None
    lecture_sessions: Optional[List[TimeSession]] = None
    semester: Optional[Literal["Fall", "Spring", "Summer"]] = None
    department: Optional[str] = None
    is_active: Optional[bool] = None


class SectionCreate(ApiModel):
    section_id: str
    ta_id: Optional[str] = None
    capacity: int = Field(..., ge=1)
    sessions: List[TimeSession] = Field(default_factory=list)


class SectionUpdate(ApiModel):
    new_section_id: Optional[str] = None
    new_sessions: Optional[List[TimeSession]] = None
    ta_id: Optional[str] = None
    capacity: Optional[int] = Field(None, ge=1)


class GradeCreate(ApiModel):
    student_id: str
    course_code: str
    score: float


class GradeUpdate(ApiModel):
    score: float


class ExamCreate(ApiModel):
    exam_id: str
    course_code: str
    exam_date: str
    start_time: str
    end_time: str
    room_numbers: List[str] = Field(default_factory=list)
    room_capacity: int = Field(30, ge=1)
    semester: str
    academic_year: Optional[str] = None
    academic_level: Optional[AcademicLevel] = None
    exam_type: Literal["Midterm", "Final"] = "Final"
    department: str


class ExamUpdate(ApiModel):
    course_code: Optional[str] = None
    exam_date: Optional[str] = Field(None, pattern=r"^\d{4}-\d{2}-\d{2}$")
    start_time: Optional[str] = Field(None, pattern=CLOCK_PATTERN)
    end_time: Optional[str] = Field(None, pattern=CLOCK_PATTERN)
    room_numbers: Optional[List[str]] = None
    room_capacity: Optional[int] = Field(None, ge=1)
    semester: Optional[str] = None
    academic_year: Optional[str] = None
    exam_type: Optional[Literal["Midterm", "Final"]] = None
