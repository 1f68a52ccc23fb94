"""
Namespaced key-value backend on a NATS JetStream KV bucket.

The whole tree lives in one JSON document under a fixed key, with every
entity filed under its composite key ("<student>", "<student>.<course>",
"<student>.<course>.<assignment>"). save() replaces the document with a
single put, so a reader sees either the previous snapshot or the new one,
never a half-written tree. Reads load the document once per students() call
and select entities by key prefix.

nats-py is asyncio based; each backend runs a private event loop in a daemon
thread and the synchronous Read/Write methods wait on it.
"""
import asyncio
import concurrent.futures
import logging
import threading
from datetime import datetime
from typing import Any, Coroutine, Dict, List, Optional, TypeVar

import nats
from nats.errors import Error as NATSError
from nats.js.errors import BucketNotFoundError, KeyNotFoundError
from pydantic import BaseModel, Field

from ignitia.core.config import DEFAULT_TIMEOUT
from ignitia.core.errors import PersistenceError
from ignitia.model.records import Assignment, Course, Student
from ignitia.persistence.base import Full, Read

T = TypeVar("T")

SNAPSHOT_BUCKET = "ignitia_snapshot"
SNAPSHOT_KEY = "snapshot"

_STORAGE_ERRORS = (
    NATSError,
    OSError,
    ValueError,
    asyncio.TimeoutError,
    concurrent.futures.TimeoutError,
)


def is_nats_url(conn: str) -> bool:
    return conn.startswith("nats://")


def student_key(student_id: int) -> str:
    return f"{student_id}"


def course_key(student_id: int, course_id: int) -> str:
    return f"{student_id}.{course_id}"


def assignment_key(student_id: int, course_id: int, assignment_id: int) -> str:
    return f"{student_id}.{course_id}.{assignment_id}"


class Snapshot(BaseModel):
    """The stored document. Entities are kept flat; nesting comes from the keys."""

    as_of: Optional[datetime] = None
    students: Dict[str, Student] = Field(default_factory=dict)
    courses: Dict[str, Course] = Field(default_factory=dict)
    assignments: Dict[str, Assignment] = Field(default_factory=dict)

    def put_student(self, student: Student) -> None:
        self.students[student_key(student.id)] = student.model_copy(update={"courses": {}})

    def put_course(self, student: Student, course: Course) -> None:
        self.courses[course_key(student.id, course.id)] = course.model_copy(
            update={"student_id": student.id, "assignments": {}}
        )

    def put_assignment(self, student: Student, course: Course, assignment: Assignment) -> None:
        self.assignments[assignment_key(student.id, course.id, assignment.id)] = assignment.model_copy(
            update={"student_id": student.id, "course_id": course.id}
        )


def _with_prefix(items: Dict[str, T], prefix: str) -> List[T]:
    return [items[key] for key in sorted(items) if key.startswith(prefix)]


class NATSModel(Full):
    def __init__(
        self,
        conn_url: str,
        bucket: str = SNAPSHOT_BUCKET,
        timeout: float = DEFAULT_TIMEOUT,
        logger: Optional[logging.Logger] = None,
    ):
        self.conn_url = conn_url
        self.bucket = bucket
        self.timeout = timeout
        self.logger = logger or logging.getLogger(self.__class__.__name__)

        self._error: Optional[PersistenceError] = None
        self._conn = None
        self._kv = None
        self._snapshot: Optional[Snapshot] = None
        self._setup_async_loop()

    def _setup_async_loop(self) -> None:
        """Setup async event loop in background thread."""
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._loop.run_forever, daemon=True)
        self._thread.start()

    def _run(self, coro: Coroutine[Any, Any, T]) -> T:
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        try:
            return future.result(self.timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise

    # ---- connection ---------------------------------------------------------

    def error(self) -> Optional[PersistenceError]:
        return self._error

    def reset(self) -> Optional[PersistenceError]:
        if self._kv is not None and self._error is None:
            return None

        self._disconnect()
        self._error = None
        self._snapshot = None
        try:
            self._run(self._connect())
        except _STORAGE_ERRORS as e:
            self._record(PersistenceError(f"connecting to {self.conn_url}: {e!r}"))
        return self._error

    def close(self) -> None:
        self._disconnect()
        self._loop.call_soon_threadsafe(self._loop.stop)

    async def _connect(self) -> None:
        self._conn = await nats.connect(
            servers=[self.conn_url],
            connect_timeout=self.timeout,
            allow_reconnect=False,
            max_reconnect_attempts=0,
            error_cb=self._on_error,
        )
        js = self._conn.jetstream()
        try:
            self._kv = await js.key_value(self.bucket)
        except BucketNotFoundError:
            self.logger.info(f"Creating key-value bucket {self.bucket}")
            self._kv = await js.create_key_value(bucket=self.bucket)

    async def _on_error(self, e: Exception) -> None:
        self.logger.warning(f"nats error on {self.conn_url}: {e!r}")

    def _disconnect(self) -> None:
        conn, self._conn, self._kv = self._conn, None, None
        if conn is None:
            return
        try:
            self._run(conn.close())
        except _STORAGE_ERRORS as e:
            self.logger.warning(f"warning while closing connection: {e}")

    def _record(self, err: PersistenceError) -> PersistenceError:
        self.logger.error(f"model error: {err}")
        self._error = err
        return err

    def _ready(self) -> bool:
        if self._error is not None:
            return False
        if self._kv is None:
            return self.reset() is None
        return True

    # ---- document -----------------------------------------------------------

    async def _get(self) -> Snapshot:
        try:
            entry = await self._kv.get(SNAPSHOT_KEY)
        except KeyNotFoundError:
            return Snapshot()
        if not entry.value:
            return Snapshot()
        return Snapshot.model_validate_json(entry.value)

    async def _put(self, snapshot: Snapshot) -> None:
        await self._kv.put(SNAPSHOT_KEY, snapshot.model_dump_json().encode())

    def _load(self, refresh: bool = False) -> Optional[Snapshot]:
        if not self._ready():
            return None
        if self._snapshot is None or refresh:
            try:
                self._snapshot = self._run(self._get())
            except _STORAGE_ERRORS as e:
                self._record(PersistenceError(f"reading {self.bucket}/{SNAPSHOT_KEY}: {e}"))
                return None
        return self._snapshot

    def _store(self, what: str, snapshot: Snapshot) -> None:
        if not self._ready():
            raise self._error
        try:
            self._run(self._put(snapshot))
        except _STORAGE_ERRORS as e:
            raise self._record(PersistenceError(f"{what}: {e}")) from e
        self._snapshot = snapshot

    def _merge(self, what: str, update) -> None:
        """Read-modify-write of the stored document."""
        snapshot = self._load(refresh=True)
        if snapshot is None:
            raise self._error
        snapshot = snapshot.model_copy(deep=True)
        update(snapshot)
        snapshot.as_of = datetime.now()
        self._store(what, snapshot)

    # ---- Write --------------------------------------------------------------

    def save(self, reader: Read) -> None:
        snapshot = Snapshot(as_of=datetime.now())
        for student in reader.students():
            snapshot.put_student(student)
            for course in reader.courses(student):
                snapshot.put_course(student, course)
                for assignment in reader.assignments(student, course):
                    snapshot.put_assignment(student, course, assignment)

        self._store("saving snapshot", snapshot)
        self.logger.info(
            f"Saved {len(snapshot.students)} student(s), {len(snapshot.courses)} course(s), "
            f"{len(snapshot.assignments)} assignment(s) to {self.conn_url}"
        )

    def save_students(self, students: List[Student]) -> None:
        def update(snapshot: Snapshot) -> None:
            for student in students:
                snapshot.put_student(student)

        self._merge("saving students", update)

    def save_courses(self, student: Student, courses: List[Course]) -> None:
        def update(snapshot: Snapshot) -> None:
            for course in courses:
                snapshot.put_course(student, course)

        self._merge("saving courses", update)

    def save_assignments(self, student: Student, course: Course, assignments: List[Assignment]) -> None:
        def update(snapshot: Snapshot) -> None:
            for assignment in assignments:
                snapshot.put_assignment(student, course, assignment)

        self._merge("saving assignments", update)

    # ---- Read ---------------------------------------------------------------

    def students(self) -> List[Student]:
        snapshot = self._load(refresh=True)
        if snapshot is None:
            return []
        return sorted(
            (s.model_copy() for s in snapshot.students.values()),
            key=lambda s: s.id,
        )

    def courses(self, student: Student) -> List[Course]:
        snapshot = self._load()
        if snapshot is None:
            return []
        courses = _with_prefix(snapshot.courses, f"{student.id}.")
        return sorted((c.model_copy() for c in courses), key=lambda c: c.id)

    def assignments(self, student: Student, course: Course) -> List[Assignment]:
        snapshot = self._load()
        if snapshot is None:
            return []
        assignments = _with_prefix(snapshot.assignments, f"{student.id}.{course.id}.")
        return sorted((a.model_copy() for a in assignments), key=lambda a: a.due_date)
