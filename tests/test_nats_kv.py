# tests/test_nats_kv.py

import pytest
from nats.js.errors import BucketNotFoundError, KeyNotFoundError

from ignitia.core.errors import PersistenceError
from ignitia.model.records import Course, Student
from ignitia.persistence import nats_kv
from ignitia.persistence.base import DataReader, load
from ignitia.persistence.nats_kv import SNAPSHOT_BUCKET, SNAPSHOT_KEY, NATSModel, is_nats_url


class FakeEntry:
    def __init__(self, value):
        self.value = value


class FakeKV:
    def __init__(self):
        self.values = {}
        self.puts = 0

    async def get(self, key):
        if key not in self.values:
            raise KeyNotFoundError()
        return FakeEntry(self.values[key])

    async def put(self, key, value):
        self.puts += 1
        self.values[key] = value
        return self.puts


class FakeJetStream:
    def __init__(self, server):
        self.server = server

    async def key_value(self, bucket):
        if bucket not in self.server.buckets:
            raise BucketNotFoundError()
        return self.server.buckets[bucket]

    async def create_key_value(self, bucket):
        self.server.buckets[bucket] = FakeKV()
        return self.server.buckets[bucket]


class FakeConnection:
    def __init__(self, server):
        self.server = server
        self.closed = False

    def jetstream(self):
        return FakeJetStream(self.server)

    async def close(self):
        self.closed = True


class FakeServer:
    def __init__(self):
        self.options = {}
        self.buckets = {}
        self.down = False
        self.connections = []

    async def connect(self, servers, **options):
        self.options = options
        if self.down:
            raise OSError("connection refused")
        conn = FakeConnection(self)
        self.connections.append(conn)
        return conn


@pytest.fixture
def server(monkeypatch):
    fake = FakeServer()
    monkeypatch.setattr(nats_kv.nats, "connect", fake.connect)
    return fake


@pytest.fixture
def make_model(server):
    created = []

    def factory():
        backend = NATSModel("nats://localhost:4222", timeout=5)
        created.append(backend)
        return backend

    yield factory
    for backend in created:
        backend.close()


def test_is_nats_url():
    assert is_nats_url("nats://localhost:4222")
    assert not is_nats_url("progress.db")


def test_empty_bucket_reads_empty(make_model, server):
    backend = make_model()
    assert backend.students() == []
    assert backend.error() is None
    assert SNAPSHOT_BUCKET in server.buckets


def test_save_is_a_single_put(make_model, server, sample_data):
    backend = make_model()
    backend.save(DataReader(sample_data))

    kv = server.buckets[SNAPSHOT_BUCKET]
    assert kv.puts == 1
    assert list(kv.values) == [SNAPSHOT_KEY]


def test_round_trip_through_new_connection(make_model, sample_data):
    make_model().save(DataReader(sample_data))
    loaded = load(make_model())

    assert sorted(loaded.students) == [1, 2]
    assert loaded.students[2].display_name == "Sam &amp; Co"
    assert sorted(loaded.students[1].courses) == [10, 11]
    math = loaded.students[1].courses[11]
    assert sorted(math.assignments) == [1101, 1102]
    assert math.assignments[1102].score == 92
    assert math.assignments[1102].as_of == sample_data.as_of
    assert loaded.students[2].courses[20].assignments[1101].title == "Cells"


def test_keys_are_namespaced_by_student(make_model, sample_data):
    backend = make_model()
    backend.save(DataReader(sample_data))
    backend.students()

    assert [c.id for c in backend.courses(Student(id=2))] == [20]
    assert [a.id for a in backend.assignments(Student(id=1), Course(id=11))] == [1102, 1101]
    assert backend.assignments(Student(id=1), Course(id=20)) == []


def test_partial_saves_merge(make_model):
    backend = make_model()
    student = Student(id=1, display_name="Alex")
    backend.save_students([student])
    backend.save_courses(student, [Course(id=10, title="English")])

    assert [s.display_name for s in backend.students()] == ["Alex"]
    assert [c.title for c in backend.courses(student)] == ["English"]


def test_connection_failure_and_reset(make_model, server):
    server.down = True
    backend = make_model()

    assert backend.students() == []
    assert isinstance(backend.error(), PersistenceError)
    with pytest.raises(PersistenceError):
        backend.save_students([Student(id=1)])

    server.down = False
    assert backend.reset() is None
    backend.save_students([Student(id=1)])
    assert [s.id for s in backend.students()] == [1]


def test_corrupt_document_is_recorded(make_model, server):
    backend = make_model()
    backend.students()
    server.buckets[SNAPSHOT_BUCKET].values[SNAPSHOT_KEY] = b"{broken"

    assert backend.students() == []
    assert isinstance(backend.error(), PersistenceError)


def test_connect_never_retries(make_model, server):
    backend = make_model()
    backend.students()

    assert server.options["allow_reconnect"] is False
    assert server.options["max_reconnect_attempts"] == 0
    assert server.options["error_cb"] is not None


def test_connect_error_names_the_cause(make_model, server):
    server.down = True
    backend = make_model()
    backend.reset()

    assert "OSError" in str(backend.error())
    assert "connection refused" in str(backend.error())
