"""
Relational backend: SQLite through SQLAlchemy.

Every write is an upsert. save() walks the reader first, then writes all
students in one transaction, all courses in a second and all assignments
(with their history rows) in a third. Storage errors are logged, kept as a
PersistenceError until reset(), and re-raised from the save methods; reads
return empty lists while an error is recorded.
"""
import logging
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar

from sqlalchemy import func, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ignitia.core.db import create_db_engine, session_scope, sqlite_url
from ignitia.core.errors import PersistenceError
from ignitia.model.dates import format_date
from ignitia.model.records import Assignment, Course, Student
from ignitia.persistence.base import Full, Read
from ignitia.persistence.models import (
    AssignmentHistoryRow,
    AssignmentRow,
    CourseRow,
    StudentCourseRow,
    StudentRow,
)

T = TypeVar("T")

CourseBatch = Sequence[Tuple[Student, Sequence[Course]]]
AssignmentBatch = Sequence[Tuple[Student, Course, Sequence[Assignment]]]


def is_sqlite_path(conn: str) -> bool:
    return conn.endswith(".db")


class SQLiteModel(Full):
    def __init__(self, db_path: str, logger: Optional[logging.Logger] = None):
        self.db_path = db_path
        self.logger = logger or logging.getLogger(self.__class__.__name__)
        self._engine: Optional[Engine] = None
        self._factory: Optional[sessionmaker] = None
        self._error: Optional[PersistenceError] = None
        self.reset()

    # ---- connection ---------------------------------------------------------

    def error(self) -> Optional[PersistenceError]:
        return self._error

    def reset(self) -> Optional[PersistenceError]:
        if self._engine is not None:
            if self._error is None:
                return None
            self.close()

        self._error = None
        try:
            self._engine, self._factory = create_db_engine(sqlite_url(self.db_path))
        except (SQLAlchemyError, OSError) as e:
            self._record(PersistenceError(f"opening {self.db_path}: {e}"))
        return self._error

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
        self._engine = None
        self._factory = None

    def _record(self, err: PersistenceError) -> PersistenceError:
        self.logger.error(f"model error: {err}")
        self._error = err
        return err

    def _write(self, what: str, fn: Callable[[Session], None]) -> None:
        if self._error is not None:
            raise self._error
        try:
            with session_scope(self._factory) as session:
                fn(session)
        except SQLAlchemyError as e:
            raise self._record(PersistenceError(f"{what}: {e}")) from e

    def _read(self, what: str, fn: Callable[[Session], List[T]]) -> List[T]:
        if self._error is not None:
            self.logger.debug(f"{what}: skipped, backend has a recorded error")
            return []
        try:
            with session_scope(self._factory) as session:
                return fn(session)
        except SQLAlchemyError as e:
            self._record(PersistenceError(f"{what}: {e}"))
            return []

    # ---- Write --------------------------------------------------------------

    def save(self, reader: Read) -> None:
        students = reader.students()
        courses = [(student, reader.courses(student)) for student in students]
        assignments = [
            (student, course, reader.assignments(student, course))
            for student, student_courses in courses
            for course in student_courses
        ]

        self._write("saving students", lambda session: self._save_students(session, students))
        self._write("saving courses", lambda session: self._save_courses(session, courses))
        self._write("saving assignments", lambda session: self._save_assignments(session, assignments))
        self.logger.info(
            f"Saved {len(students)} student(s), {sum(len(c) for _, c in courses)} course(s), "
            f"{sum(len(a) for _, _, a in assignments)} assignment(s) to {self.db_path}"
        )

    def save_students(self, students: List[Student]) -> None:
        self._write("saving students", lambda session: self._save_students(session, students))

    def save_courses(self, student: Student, courses: List[Course]) -> None:
        self._write("saving courses", lambda session: self._save_courses(session, [(student, courses)]))

    def save_assignments(self, student: Student, course: Course, assignments: List[Assignment]) -> None:
        self._write(
            "saving assignments",
            lambda session: self._save_assignments(session, [(student, course, assignments)]),
        )

    def _save_students(self, session: Session, students: Sequence[Student]) -> None:
        for student in students:
            stmt = sqlite_insert(StudentRow).values(id=student.id, name=student.display_name)
            session.execute(stmt.on_conflict_do_update(
                index_elements=[StudentRow.id],
                set_={"name": stmt.excluded.name},
            ))

    def _save_courses(self, session: Session, batch: CourseBatch) -> None:
        for student, courses in batch:
            for course in courses:
                stmt = sqlite_insert(CourseRow).values(id=course.id, title=course.title)
                session.execute(stmt.on_conflict_do_update(
                    index_elements=[CourseRow.id],
                    set_={"title": stmt.excluded.title},
                ))
                session.execute(
                    sqlite_insert(StudentCourseRow)
                    .values(student_id=student.id, course_id=course.id)
                    .on_conflict_do_nothing()
                )

    def _save_assignments(self, session: Session, batch: AssignmentBatch) -> None:
        for student, course, assignments in batch:
            for assignment in assignments:
                stmt = sqlite_insert(AssignmentRow).values(
                    course_id=course.id,
                    id=assignment.id,
                    unit=assignment.unit,
                    title=assignment.title,
                    assignment_type=assignment.type,
                )
                session.execute(stmt.on_conflict_do_update(
                    index_elements=[AssignmentRow.course_id, AssignmentRow.id],
                    set_={
                        "unit": stmt.excluded.unit,
                        "title": stmt.excluded.title,
                        "assignment_type": stmt.excluded.assignment_type,
                    },
                ))

                history = sqlite_insert(AssignmentHistoryRow).values(
                    student_id=student.id,
                    course_id=course.id,
                    assignment_id=assignment.id,
                    as_of=assignment.as_of or datetime.now(),
                    progress=assignment.progress,
                    due=format_date(assignment.due),
                    completed=format_date(assignment.completed),
                    score=assignment.score,
                    status=assignment.status,
                )
                session.execute(history.on_conflict_do_update(
                    index_elements=[
                        AssignmentHistoryRow.student_id,
                        AssignmentHistoryRow.course_id,
                        AssignmentHistoryRow.assignment_id,
                        AssignmentHistoryRow.as_of,
                    ],
                    set_={
                        "progress": history.excluded.progress,
                        "due": history.excluded.due,
                        "completed": history.excluded.completed,
                        "score": history.excluded.score,
                        "status": history.excluded.status,
                    },
                ))

    # ---- Read ---------------------------------------------------------------

    def students(self) -> List[Student]:
        def query(session: Session) -> List[Student]:
            rows = session.execute(select(StudentRow).order_by(StudentRow.id)).scalars().all()
            return [Student(id=r.id, display_name=r.name) for r in rows]

        return self._read("reading students", query)

    def courses(self, student: Student) -> List[Course]:
        def query(session: Session) -> List[Course]:
            rows = session.execute(
                select(CourseRow)
                .join(StudentCourseRow, StudentCourseRow.course_id == CourseRow.id)
                .where(StudentCourseRow.student_id == student.id)
                .order_by(CourseRow.id)
            ).scalars().all()
            return [Course(id=r.id, student_id=student.id, title=r.title) for r in rows]

        return self._read("reading courses", query)

    def assignments(self, student: Student, course: Course) -> List[Assignment]:
        """Latest history row of each assignment, sorted by due date."""
        def query(session: Session) -> List[Assignment]:
            latest = (
                select(
                    AssignmentHistoryRow.assignment_id.label("assignment_id"),
                    func.max(AssignmentHistoryRow.as_of).label("as_of"),
                )
                .where(
                    AssignmentHistoryRow.student_id == student.id,
                    AssignmentHistoryRow.course_id == course.id,
                )
                .group_by(AssignmentHistoryRow.assignment_id)
                .subquery()
            )
            rows = session.execute(
                select(AssignmentRow, AssignmentHistoryRow)
                .join(latest, latest.c.assignment_id == AssignmentRow.id)
                .join(
                    AssignmentHistoryRow,
                    (AssignmentHistoryRow.assignment_id == latest.c.assignment_id)
                    & (AssignmentHistoryRow.as_of == latest.c.as_of)
                    & (AssignmentHistoryRow.student_id == student.id)
                    & (AssignmentHistoryRow.course_id == course.id),
                )
                .where(AssignmentRow.course_id == course.id)
            ).all()
            assignments = [
                Assignment(
                    id=meta.id,
                    student_id=student.id,
                    course_id=course.id,
                    unit=meta.unit,
                    title=meta.title,
                    type=meta.assignment_type,
                    progress=hist.progress,
                    due=hist.due,
                    completed=hist.completed,
                    score=hist.score,
                    status=hist.status,
                    as_of=hist.as_of,
                )
                for meta, hist in rows
            ]
            return sorted(assignments, key=lambda a: a.due_date)

        return self._read("reading assignments", query)

    def history(self, student: Student, course: Course, assignment: Assignment) -> List[Assignment]:
        """Every recorded observation of one assignment, oldest first."""
        def query(session: Session) -> List[Assignment]:
            meta = session.get(AssignmentRow, (course.id, assignment.id))
            rows = session.execute(
                select(AssignmentHistoryRow)
                .where(
                    AssignmentHistoryRow.student_id == student.id,
                    AssignmentHistoryRow.course_id == course.id,
                    AssignmentHistoryRow.assignment_id == assignment.id,
                )
                .order_by(AssignmentHistoryRow.as_of)
            ).scalars().all()
            return [
                Assignment(
                    id=assignment.id,
                    student_id=student.id,
                    course_id=course.id,
                    unit=meta.unit if meta else 0,
                    title=meta.title if meta else "",
                    type=meta.assignment_type if meta else "",
                    progress=r.progress,
                    due=r.due,
                    completed=r.completed,
                    score=r.score,
                    status=r.status,
                    as_of=r.as_of,
                )
                for r in rows
            ]

        return self._read("reading assignment history", query)
