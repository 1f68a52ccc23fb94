"""
Canonical Student / Course / Assignment records.

One record type per entity. Fields that older snapshots may lack (as_of,
parent ids) are optional with defaults, so every backend can build the same
types. Classification predicates live on Assignment and take an optional
reference ``now`` (see ignitia.model.dates).
"""
import html
from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ignitia.model import dates
from ignitia.model.dates import Moment

FINISHED = 100
DONE_STATUSES = frozenset({"Skipped", "Completed", "Graded"})


class Assignment(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    student_id: int = 0
    course_id: int = 0
    unit: int = 0
    title: str = ""
    type: str = ""
    progress: int = 0
    due: str = ""
    completed: str = ""
    score: int = 0  # 0 means not graded
    status: str = ""
    as_of: Optional[datetime] = None

    def __str__(self) -> str:
        return f'Unit: {self.unit}, {self.type}, "{self.title}", Due: {self.due}, Status: {self.status}'

    @property
    def due_date(self) -> date:
        return dates.parse_date(self.due)

    @property
    def complete_date(self) -> date:
        return dates.parse_date(self.completed)

    def is_incomplete(self) -> bool:
        return self.status not in DONE_STATUSES

    def is_current(self, now: Optional[Moment] = None) -> bool:
        """Due or completed within the current Monday-based week."""
        start, end = dates.this_week(now), dates.next_week(now)
        if start <= self.due_date < end:
            return True
        return start <= self.complete_date < end

    def is_future(self, now: Optional[Moment] = None) -> bool:
        return self.due_date > dates.tomorrow(now)

    def is_past(self, now: Optional[Moment] = None) -> bool:
        return self.due_date < dates.today(now)

    def is_due(self, now: Optional[Moment] = None) -> bool:
        """Unfinished work due today or earlier (overdue work included)."""
        if not self.is_incomplete():
            return False
        if self.progress == FINISHED:
            return False
        return self.due_date < dates.tomorrow(now)

    def is_overdue(self, now: Optional[Moment] = None) -> bool:
        """Due work whose due date is strictly before today."""
        if not self.is_due(now):
            return False
        return self.due_date < dates.today(now)


class Course(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    student_id: int = 0
    title: str = ""
    assignments: Dict[int, Assignment] = Field(default_factory=dict)

    def sorted_assignments(self) -> List[Assignment]:
        return sorted(
            self.assignments.values(),
            key=lambda a: (a.unit, a.due_date, a.complete_date, a.title),
        )

    def incomplete_assignments(self) -> int:
        return sum(1 for a in self.assignments.values() if a.is_incomplete())

    def due_assignments(self, now: Optional[Moment] = None) -> int:
        return sum(1 for a in self.assignments.values() if a.is_due(now))

    def overdue_assignments(self, now: Optional[Moment] = None) -> int:
        return sum(1 for a in self.assignments.values() if a.is_overdue(now))


class Student(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    display_name: str = ""  # HTML-entity-escaped, as sent by the portal
    courses: Dict[int, Course] = Field(default_factory=dict)

    @property
    def name(self) -> str:
        return html.unescape(self.display_name)

    def sorted_courses(self) -> List[Course]:
        return sorted(self.courses.values(), key=lambda c: c.title)

    def incomplete_courses(self) -> int:
        return sum(1 for c in self.courses.values() if c.incomplete_assignments() > 0)

    def due_assignments(self, now: Optional[Moment] = None) -> int:
        return sum(c.due_assignments(now) for c in self.courses.values())

    def overdue_assignments(self, now: Optional[Moment] = None) -> int:
        return sum(c.overdue_assignments(now) for c in self.courses.values())


class Data(BaseModel):
    """The full tree of one collection cycle."""

    as_of: datetime = Field(default_factory=datetime.now)
    students: Dict[int, Student] = Field(default_factory=dict)

    def sorted_students(self) -> List[Student]:
        return [self.students[k] for k in sorted(self.students)]
