"""
SQLAlchemy tables for the relational backend.

- student / course / student_courses: current identity and titles (upserted).
- assignment: per-course assignment metadata; assignment ids are only unique
  within a course, so the key is (course_id, id).
- assignment_history: one row per (student, course, assignment, as_of); rows
  accumulate across snapshots and the latest one is the current state.
"""
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text

from ignitia.core.db import Base


def _now() -> datetime:
    """Local now as naive datetime for DateTime(timezone=False) columns."""
    return datetime.now()


class StudentRow(Base):
    __tablename__ = "student"

    id = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(String(255), nullable=False, default="")


class CourseRow(Base):
    __tablename__ = "course"

    id = Column(Integer, primary_key=True, autoincrement=False)
    title = Column(String(255), nullable=False, default="")


class StudentCourseRow(Base):
    """Enrollment join between student and course."""
    __tablename__ = "student_courses"

    student_id = Column(Integer, ForeignKey("student.id"), primary_key=True)
    course_id = Column(Integer, ForeignKey("course.id"), primary_key=True)


class AssignmentRow(Base):
    __tablename__ = "assignment"

    course_id = Column(Integer, ForeignKey("course.id"), primary_key=True)
    id = Column(Integer, primary_key=True, autoincrement=False)
    unit = Column(Integer, nullable=False, default=0)
    title = Column(Text, nullable=False, default="")
    assignment_type = Column(String(64), nullable=False, default="")


class AssignmentHistoryRow(Base):
    """Progress/score/status of one assignment as observed at as_of."""
    __tablename__ = "assignment_history"

    student_id = Column(Integer, ForeignKey("student.id"), primary_key=True)
    course_id = Column(Integer, primary_key=True)
    assignment_id = Column(Integer, primary_key=True)
    as_of = Column(DateTime(timezone=False), primary_key=True, default=_now)
    progress = Column(Integer, nullable=False, default=0)
    due = Column(String(32), nullable=False, default="")  # YYYY-MM-DD or empty
    completed = Column(String(32), nullable=False, default="")
    score = Column(Integer, nullable=False, default=0)
    status = Column(String(64), nullable=False, default="")
