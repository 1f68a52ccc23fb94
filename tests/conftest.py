# tests/conftest.py

import json
from datetime import date, datetime
from urllib.parse import parse_qs, urlparse

import pytest
import requests
from requests.adapters import BaseAdapter
from requests.structures import CaseInsensitiveDict

from ignitia.collect.session import CollectionSession
from ignitia.model.records import Assignment, Course, Data, Student

PORTAL_URL = "http://portal.test"

# A Wednesday; its week runs Monday 2024-05-13 to Sunday 2024-05-19.
WEDNESDAY = date(2024, 5, 15)

LOGIN_PAGE = """
<html><body>
  <form id="loginForm" method="post" action="/j_security_check">
    <input name="j_username"><input name="j_password" type="password">
  </form>
</body></html>
"""

WELCOME_PAGE = "<html><body><h1>Welcome</h1></body></html>"

LOGIN_FAILED_PAGE = """
<html><body>
  <div class="login-error">Invalid username or password</div>
  <form id="loginForm" method="post" action="/j_security_check"></form>
</body></html>
"""


def json_reply(body, status=200):
    return status, "application/json;charset=UTF-8", body


def html_reply(body, status=200):
    return status, "text/html;charset=UTF-8", body


class FakePortal(BaseAdapter):
    """Transport adapter answering from a (method, path) routing table."""

    def __init__(self):
        super().__init__()
        self.routes = {}
        self.requests = []

    def route(self, method, path, reply):
        self.routes[(method, path)] = reply

    def calls(self, method, path):
        return [r for r in self.requests if r.method == method and (urlparse(r.url).path or "/") == path]

    def send(self, request, **kwargs):
        self.requests.append(request)
        path = urlparse(request.url).path or "/"
        reply = self.routes.get((request.method, path))
        if reply is None:
            status, content_type, body = html_reply("not found", status=404)
        elif callable(reply):
            status, content_type, body = reply(request)
        else:
            status, content_type, body = reply

        if not isinstance(body, (str, bytes)):
            body = json.dumps(body)
        if isinstance(body, str):
            body = body.encode("utf-8")

        response = requests.Response()
        response.status_code = status
        response.reason = "OK" if status < 400 else "Error"
        response.headers = CaseInsensitiveDict({"Content-Type": content_type})
        response._content = body
        response.encoding = "utf-8"
        response.url = request.url
        response.request = request
        return response

    def close(self):
        pass


def form_of(request):
    return {k: v[0] for k, v in parse_qs(request.body or "").items()}


def query_of(request):
    return {k: v[0] for k, v in parse_qs(urlparse(request.url).query).items()}


def assignment_row(row_id, unit=1, title="Reading", typ="Lesson", progress=0,
                   due="2024-05-15", completed=None, score=0, status="Not Started"):
    return {"id": row_id, "cell": [row_id, unit, title, typ, progress, due, completed, score, status]}


def envelope(rows, page=1):
    return {"page": page, "total": 1, "records": len(rows), "rows": rows}


@pytest.fixture
def portal():
    fake = FakePortal()
    fake.route("GET", "/", html_reply(LOGIN_PAGE))
    fake.route("POST", "/j_security_check", html_reply(WELCOME_PAGE))
    fake.route("GET", "/owsoo/parent/populateStudents", json_reply([
        {"id": 2, "displayName": "Sam &amp; Co"},
        {"id": 1, "displayName": "Alex"},
    ]))

    def courses(request):
        student_id = query_of(request)["student_id"]
        if student_id == "1":
            return json_reply([{"id": 11, "title": "Math"}, {"id": 10, "title": "English"}])
        return json_reply([{"id": 20, "title": "Science"}])

    def assignments(request):
        course_id = form_of(request)["enrollment_id"]
        return json_reply(envelope([
            assignment_row(int(course_id) * 100 + 2, due="2024-05-20"),
            assignment_row(int(course_id) * 100 + 1, due="2024-05-14"),
        ]))

    fake.route("GET", "/owsoo/parent/populateCourses", courses)
    fake.route("POST", "/owsoo/parent/listAssignmentsByCourse", assignments)
    return fake


@pytest.fixture
def session_factory(portal):
    def factory():
        client = requests.Session()
        client.mount(PORTAL_URL, portal)
        return client

    return factory


@pytest.fixture
def make_session(session_factory):
    created = []

    def factory(**kwargs):
        options = {
            "base_url": PORTAL_URL,
            "username": "parent@example.com",
            "password": "secret",
            "session_factory": session_factory,
        }
        options.update(kwargs)
        session = CollectionSession(**options)
        created.append(session)
        return session

    yield factory
    for session in created:
        session.reset()


@pytest.fixture
def sample_data():
    as_of = datetime(2024, 5, 15, 8, 30)
    math = Course(id=11, student_id=1, title="Math", assignments={
        1101: Assignment(id=1101, student_id=1, course_id=11, unit=1, title="Fractions", type="Lesson",
                         progress=40, due="2024-05-14", status="In Progress", as_of=as_of),
        1102: Assignment(id=1102, student_id=1, course_id=11, unit=1, title="Quiz 1", type="Quiz",
                         progress=100, due="2024-05-10", completed="2024-05-09", score=92,
                         status="Graded", as_of=as_of),
    })
    english = Course(id=10, student_id=1, title="English", assignments={
        1001: Assignment(id=1001, student_id=1, course_id=10, unit=2, title="Essay", type="Project",
                         due="2024-05-22", status="Not Started", as_of=as_of),
    })
    science = Course(id=20, student_id=2, title="Science", assignments={
        1101: Assignment(id=1101, student_id=2, course_id=20, unit=3, title="Cells", type="Lesson",
                         progress=10, due="05/15/2024", status="In Progress", as_of=as_of),
    })
    return Data(as_of=as_of, students={
        1: Student(id=1, display_name="Alex", courses={10: english, 11: math}),
        2: Student(id=2, display_name="Sam &amp; Co", courses={20: science}),
    })
