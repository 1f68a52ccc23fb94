"""
Read / Write / Full contracts shared by the collector and the storage backends.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from ignitia.model.records import Assignment, Course, Data, Student


class Read(ABC):
    """Anything that can produce the Student/Course/Assignment tree."""

    @abstractmethod
    def students(self) -> List[Student]:
        pass

    @abstractmethod
    def courses(self, student: Student) -> List[Course]:
        pass

    @abstractmethod
    def assignments(self, student: Student, course: Course) -> List[Assignment]:
        pass


class Write(ABC):
    """Durable snapshot of a Read source."""

    @abstractmethod
    def save(self, reader: Read) -> None:
        """Walk the full hierarchy of reader and persist every level."""
        pass

    @abstractmethod
    def save_students(self, students: List[Student]) -> None:
        pass

    @abstractmethod
    def save_courses(self, student: Student, courses: List[Course]) -> None:
        pass

    @abstractmethod
    def save_assignments(self, student: Student, course: Course, assignments: List[Assignment]) -> None:
        pass


class Full(Read, Write):
    """A storage backend: Read + Write plus connection repair and a sticky error."""

    @abstractmethod
    def reset(self) -> Optional[Exception]:
        """Re-establish the storage connection and clear the recorded error."""
        pass

    @abstractmethod
    def error(self) -> Optional[Exception]:
        """Last persistent error, kept until reset()."""
        pass


def load(reader: Read, as_of: Optional[datetime] = None) -> Data:
    """Materialise the full tree from any Read source."""
    data = Data(as_of=as_of or datetime.now())
    for student in reader.students():
        courses = {}
        for course in reader.courses(student):
            assignments = {a.id: a for a in reader.assignments(student, course)}
            courses[course.id] = course.model_copy(update={"assignments": assignments})
        data.students[student.id] = student.model_copy(update={"courses": courses})
    return data


class DataReader(Read):
    """Read view over an already collected (or previously loaded) tree."""

    def __init__(self, data: Data):
        self.data = data

    def students(self) -> List[Student]:
        return self.data.sorted_students()

    def courses(self, student: Student) -> List[Course]:
        found = self.data.students.get(student.id)
        if found is None:
            return []
        return [found.courses[k] for k in sorted(found.courses)]

    def assignments(self, student: Student, course: Course) -> List[Assignment]:
        found = self.data.students.get(student.id)
        if found is None or course.id not in found.courses:
            return []
        return sorted(found.courses[course.id].assignments.values(), key=lambda a: a.due_date)
