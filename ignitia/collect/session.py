"""
Authenticated scraping session for the Ignitia parent portal.

Logs in through the portal's HTML form, then walks students -> courses ->
assignments through the JSON endpoints the portal's own UI uses. The first
error anywhere (transport, status, content type, decoding, login) is kept
and every later fetch becomes a no-op, so one failure stops the rest of the
walk without crashing the caller. reset() starts over.
"""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup

from ignitia.collect.decode import decode_courses, decode_envelope, decode_students
from ignitia.core.config import DEFAULT_TIMEOUT, DEFAULT_USER_AGENT
from ignitia.core.errors import AuthenticationError, IgnitiaError, MarshalError, TransportError
from ignitia.model.records import Assignment, Course, Data, Student
from ignitia.persistence.base import Read

logger = logging.getLogger(__name__)

STUDENTS_PATH = "/owsoo/parent/populateStudents"
COURSES_PATH = "/owsoo/parent/populateCourses"
ASSIGNMENTS_PATH = "/owsoo/parent/listAssignmentsByCourse"

LOGIN_FORM_SELECTOR = "#loginForm"
LOGIN_ERROR_SELECTOR = ".login-error"

# The portal caps assignments per course well below this, so one page is everything.
PAGE_SIZE = 1000

JSON_MEDIA_TYPE = "application/json"


class SessionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    FETCHING = "fetching"
    DONE = "done"
    FAILED = "failed"


def _ts() -> int:
    return int(time.time())


def _media_type(response: requests.Response) -> str:
    return response.headers.get("Content-Type", "").split(";")[0].strip().lower()


class CollectionSession(Read):
    """One portal account: login once, then fetch the student/course/assignment tree."""

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = DEFAULT_TIMEOUT,
        workers: int = 1,
        logger: Optional[logging.Logger] = None,
        log_requests: bool = False,
        log_json: bool = False,
        session_factory: Callable[[], requests.Session] = requests.Session,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.username = username
        self.password = password
        self.user_agent = user_agent
        self.timeout = timeout
        self.workers = max(1, int(workers or 1))
        self.logger = logger or logging.getLogger(self.__class__.__name__)
        self.log_requests = log_requests
        self.log_json = log_json
        self._session_factory = session_factory

        self.state = SessionState.UNAUTHENTICATED
        self._client: Optional[requests.Session] = None
        self._error: Optional[IgnitiaError] = None
        self._lock = threading.Lock()
        self._init_lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        portal: Dict[str, Any],
        logging_settings: Optional[Dict[str, Any]] = None,
        session_factory: Optional[Callable[[], requests.Session]] = None,
    ) -> "CollectionSession":
        logging_settings = logging_settings or {}
        return cls(
            base_url=portal.get("base_url", ""),
            username=portal.get("username", ""),
            password=portal.get("password", ""),
            user_agent=portal.get("user_agent") or DEFAULT_USER_AGENT,
            timeout=portal.get("timeout") or DEFAULT_TIMEOUT,
            workers=portal.get("workers", 1),
            log_requests=bool(logging_settings.get("requests", False)),
            log_json=bool(logging_settings.get("json", False)),
            session_factory=session_factory or requests.Session,
        )

    # ---- sticky error -------------------------------------------------------

    def error(self) -> Optional[IgnitiaError]:
        with self._lock:
            return self._error

    def reset(self) -> None:
        """Drop the authenticated client and the recorded error."""
        with self._lock:
            if self._client is not None:
                self._client.close()
            self._client = None
            self._error = None
            self.state = SessionState.UNAUTHENTICATED

    def _fail(self, err: IgnitiaError) -> None:
        with self._lock:
            if self._error is not None:
                return
            self._error = err
            self.state = SessionState.FAILED
        self._emit(logging.ERROR, f"Collection session failed: {err}")

    def _failed(self) -> bool:
        with self._lock:
            return self._error is not None

    def _set_state(self, state: SessionState) -> None:
        """Move to state unless the session has already failed."""
        with self._lock:
            if self.state is SessionState.FAILED:
                return
            self.state = state

    # ---- Read ---------------------------------------------------------------

    def students(self) -> List[Student]:
        payload = self._fetch_json("GET", f"{self.base_url}{STUDENTS_PATH}", params={"_": _ts()})
        if payload is None:
            return []
        try:
            students = decode_students(payload)
        except IgnitiaError as e:
            self._fail(e)
            return []
        return sorted(students, key=lambda s: s.id)

    def courses(self, student: Student) -> List[Course]:
        payload = self._fetch_json(
            "GET",
            f"{self.base_url}{COURSES_PATH}",
            params={"student_id": student.id, "_": _ts()},
        )
        if payload is None:
            return []
        try:
            courses = decode_courses(payload)
        except IgnitiaError as e:
            self._fail(e)
            return []
        for course in courses:
            course.student_id = student.id
        return sorted(courses, key=lambda c: c.id)

    def assignments(self, student: Student, course: Course) -> List[Assignment]:
        form = {
            "student_id": str(student.id),
            "enrollment_id": str(course.id),
            "nd": str(_ts()),
            "rows": str(PAGE_SIZE),
            "page": "1",
        }
        payload = self._fetch_json("POST", f"{self.base_url}{ASSIGNMENTS_PATH}", data=form)
        if payload is None:
            return []
        try:
            envelope = decode_envelope(payload)
        except IgnitiaError as e:
            self._fail(e)
            return []
        as_of = datetime.now()
        for assignment in envelope.assignments:
            assignment.student_id = student.id
            assignment.course_id = course.id
            assignment.as_of = as_of
        return envelope.assignments

    def data(self) -> Data:
        """Collect the full tree for one cycle. Check error() afterwards."""
        result = Data(as_of=datetime.now())
        for student in self.students():
            student.courses = {}
            courses = self.courses(student)
            for course, assignments in zip(courses, self._assignments_for(student, courses)):
                course.assignments = {a.id: a for a in assignments}
                student.courses[course.id] = course
            result.students[student.id] = student

        self._set_state(SessionState.DONE)
        self._emit(
            logging.INFO,
            f"Collected {len(result.students)} student(s), "
            f"{sum(len(s.courses) for s in result.students.values())} course(s)"
        )
        return result

    def _assignments_for(self, student: Student, courses: List[Course]) -> List[List[Assignment]]:
        if self.workers <= 1 or len(courses) <= 1:
            return [self.assignments(student, course) for course in courses]
        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            return list(executor.map(lambda course: self.assignments(student, course), courses))

    # ---- transport ----------------------------------------------------------

    def _new_client(self) -> requests.Session:
        client = self._session_factory()
        client.headers["User-Agent"] = self.user_agent
        if self.log_requests:
            client.hooks["response"].append(self._log_response)
        return client

    def _clone(self) -> requests.Session:
        """Fresh client carrying the authenticated headers and cookies."""
        clone = self._new_client()
        clone.headers.update(self._client.headers)
        clone.cookies.update(self._client.cookies)
        return clone

    def _ensure_client(self) -> Optional[requests.Session]:
        with self._init_lock:
            if self._client is not None:
                return self._client
            if self._failed():
                return None

            client = self._new_client()
            try:
                self._login(client)
            except IgnitiaError as e:
                client.close()
                self._fail(e)
                return None

            self._client = client
            self._set_state(SessionState.AUTHENTICATED)
            return client

    def _login(self, client: requests.Session) -> None:
        page = self._request(client, "GET", self.base_url, expect_json=False)
        soup = BeautifulSoup(page.text, "html.parser")
        self._check_login_error(soup)

        form = soup.select_one(LOGIN_FORM_SELECTOR)
        if form is None:
            self._emit(logging.DEBUG, "No login form found; session already authenticated")
            return

        self._set_state(SessionState.AUTHENTICATING)
        action = urljoin(page.url or self.base_url, form.get("action") or "")
        self._emit(logging.INFO, f"Logging in to {action} as {self.username}")
        result = self._request(
            client,
            "POST",
            action,
            data={"j_username": self.username, "j_password": self.password},
            expect_json=False,
        )
        self._check_login_error(BeautifulSoup(result.text, "html.parser"))

    def _check_login_error(self, soup: BeautifulSoup) -> None:
        marker = soup.select_one(LOGIN_ERROR_SELECTOR)
        if marker is not None:
            raise AuthenticationError(f"error logging in: {marker.get_text(strip=True)}")

    def _fetch_json(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, str]] = None,
    ) -> Optional[Any]:
        """One request on a cloned client. Returns decoded JSON, or None once the session has failed."""
        if self._ensure_client() is None or self._failed():
            return None

        self._set_state(SessionState.FETCHING)
        clone = self._clone()
        try:
            response = self._request(clone, method, url, params=params, data=data)
            try:
                return response.json()
            except ValueError as e:
                raise MarshalError(f"invalid JSON from {method} {url}: {e}") from e
        except IgnitiaError as e:
            self._fail(e)
            return None
        finally:
            clone.close()

    def _request(
        self,
        client: requests.Session,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, str]] = None,
        expect_json: bool = True,
    ) -> requests.Response:
        self._log_request(method, url)
        try:
            response = client.request(method, url, params=params, data=data, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(f"{method} {url}: {e}") from e

        if not 200 <= response.status_code < 300:
            raise TransportError(
                f"unexpected status {response.status_code} ({response.reason}) for {method} {url}: {response.text[:200]}",
                status_code=response.status_code,
            )

        if expect_json and _media_type(response) != JSON_MEDIA_TYPE:
            raise TransportError(
                f"unexpected content type {response.headers.get('Content-Type')!r} for {method} {url}",
                status_code=response.status_code,
            )
        return response

    # ---- request logging ----------------------------------------------------

    def _emit(self, level: int, message: str) -> None:
        """Write to the injected log sink; a failing sink never fails a fetch."""
        try:
            self.logger.log(level, message)
        except Exception as e:
            logger.debug(f"log sink failed: {e!r}")

    def _log_request(self, method: str, url: str) -> None:
        if not self.log_requests:
            return
        self._emit(logging.INFO, f"{method} {url}")

    def _log_response(self, response: requests.Response, *args: Any, **kwargs: Any) -> None:
        try:
            elapsed_ms = int(response.elapsed.total_seconds() * 1000) if response.elapsed else 0
            self._emit(logging.INFO, f"response {response.status_code} {response.reason} for {response.url} ({elapsed_ms} ms)")
            if self._should_log_body(response):
                self._emit(logging.INFO, f"response body:\n---\n{response.text}\n---")
        except Exception as e:
            logger.debug(f"response logging failed: {e!r}")

    def _should_log_body(self, response: requests.Response) -> bool:
        if response.status_code >= 400:
            return True
        media_type = _media_type(response)
        if not media_type:
            return True
        if media_type == JSON_MEDIA_TYPE:
            return self.log_json
        return False
