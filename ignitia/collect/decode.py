"""
Strict decoding of the portal's JSON payloads into records.

The portal's JSON is loosely typed and undocumented, so every payload is
checked field by field against the shape we expect and rejected with a
ValidationError / MarshalError that names the offending field. Nothing is
coerced except the due/completed columns, which may be null.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List

from ignitia.core.errors import MarshalError, ValidationError
from ignitia.model.records import Assignment, Course, Student

ROW_COLUMNS = 9

# (attribute, expected kind) for each position of a row's "cell" list.
# The first column duplicates the row id and is only type-checked.
_CELL_LAYOUT = (
    ("ID", "number"),
    ("Unit", "number"),
    ("Title", "string"),
    ("Type", "string"),
    ("Progress", "number"),
    ("Due", "string or null"),
    ("Completed", "string or null"),
    ("Score", "number"),
    ("Status", "string"),
)


@dataclass
class Envelope:
    """One page of the assignments endpoint."""

    page: int = 0
    total: int = 0
    records: int = 0
    assignments: List[Assignment] = field(default_factory=list)


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    return type(value).__name__


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _matches(value: Any, kind: str) -> bool:
    if kind == "number":
        return _is_number(value)
    if kind == "string":
        return isinstance(value, str)
    return value is None or isinstance(value, str)


def decode_assignment(raw: Any) -> Assignment:
    """Decode one {"id": number, "cell": [9 values]} row."""
    if not isinstance(raw, dict):
        raise ValidationError(f"unexpected type for row: got {_type_name(raw)} ({raw!r}), expected object")

    row_id = raw.get("id")
    if not _is_number(row_id):
        raise ValidationError(
            f"unexpected type for cell id: got {_type_name(row_id)} ({row_id!r}), expected number"
        )

    cells = raw.get("cell")
    if not isinstance(cells, list):
        raise ValidationError(
            f"unexpected type for cell values: got {_type_name(cells)} ({cells!r}), expected list"
        )

    if len(cells) != ROW_COLUMNS:
        raise ValidationError(
            f"unexpected length of items: got {len(cells)} ({cells!r}), expected {ROW_COLUMNS}"
        )

    for index, ((name, kind), value) in enumerate(zip(_CELL_LAYOUT, cells)):
        if not _matches(value, kind):
            raise ValidationError(
                f"unexpected type for {name} (items[{index}]): got {_type_name(value)} ({value!r}), expected {kind}"
            )

    _, unit, title, typ, progress, due, completed, score, status = cells
    return Assignment(
        id=int(row_id),
        unit=int(unit),
        title=title,
        type=typ,
        progress=int(progress),
        due=due or "",
        completed=completed or "",
        score=int(score),
        status=status,
    )


def _page_number(value: Any) -> int:
    if _is_number(value):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError as e:
            raise MarshalError(f"unexpected value for page: expected number, got {value!r}: {e}") from e
    raise MarshalError(
        f"unexpected type for page: got {_type_name(value)} ({value!r}), expected number or string"
    )


def _count(payload: Dict[str, Any], key: str) -> int:
    value = payload.get(key, 0)
    if not _is_number(value):
        raise MarshalError(f"unexpected type for {key}: got {_type_name(value)} ({value!r}), expected number")
    return int(value)


def decode_envelope(payload: Any) -> Envelope:
    """
    Decode the paginated assignments envelope {page, total, records, rows}.

    rows is either a list of row objects or an empty object (no rows).
    Duplicate ids keep the last occurrence; the result is sorted by due date.
    """
    if not isinstance(payload, dict):
        raise MarshalError(f"unexpected type for envelope: got {_type_name(payload)}, expected object")

    envelope = Envelope(
        page=_page_number(payload.get("page")),
        total=_count(payload, "total"),
        records=_count(payload, "records"),
    )

    rows = payload.get("rows")
    if isinstance(rows, dict):
        if rows:
            raise MarshalError(
                f"unexpected type for rows: got object with {len(rows)} keys, expected list or empty object"
            )
        return envelope

    if not isinstance(rows, list):
        raise MarshalError(f"unexpected type for rows: got {_type_name(rows)}, expected list or empty object")

    by_id: Dict[int, Assignment] = {}
    for row in rows:
        if not isinstance(row, dict):
            raise MarshalError(f"unexpected type for cells: got {_type_name(row)}, expected object")
        assignment = decode_assignment(row)
        by_id[assignment.id] = assignment

    envelope.assignments = sorted(by_id.values(), key=lambda a: a.due_date)
    return envelope


def _decode_list(payload: Any, what: str) -> List[Dict[str, Any]]:
    if not isinstance(payload, list):
        raise ValidationError(f"unexpected type for {what}: got {_type_name(payload)}, expected list")
    for item in payload:
        if not isinstance(item, dict):
            raise ValidationError(f"unexpected type for {what} entry: got {_type_name(item)}, expected object")
        if not _is_number(item.get("id")):
            raise ValidationError(
                f"unexpected type for {what} id: got {_type_name(item.get('id'))} ({item.get('id')!r}), expected number"
            )
    return payload


def _text(item: Dict[str, Any], key: str, what: str) -> str:
    value = item.get(key, "")
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"unexpected type for {what} {key}: got {_type_name(value)} ({value!r}), expected string")
    return value


def decode_students(payload: Any) -> List[Student]:
    """
    Decode the student list: [{"id": number, "displayName": string}, ...].

    A missing or null displayName decodes to ""; any other non-string is rejected.
    """
    return [
        Student(id=int(item["id"]), display_name=_text(item, "displayName", "student"))
        for item in _decode_list(payload, "students")
    ]


def decode_courses(payload: Any) -> List[Course]:
    """
    Decode a student's course list: [{"id": number, "title": string}, ...].

    A missing or null title decodes to ""; any other non-string is rejected.
    """
    return [
        Course(id=int(item["id"]), title=_text(item, "title", "course"))
        for item in _decode_list(payload, "courses")
    ]
