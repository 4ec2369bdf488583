import pytest
from conftest import FakeAccessor
from sqlalchemy.exc import OperationalError

from datadesk.core.name_case import capitalize_name, capitalize_names, capitalize_word


@pytest.mark.parametrize("value,expected", [
    ("john", "John"),
    ("McDONALD", "Mcdonald"),
    ("mary  ann", "Mary  Ann"),
    ("", ""),
    (None, None),
    (42, 42),
])
def test_capitalize_name(value, expected):
    assert capitalize_name(value) == expected


def test_capitalize_word():
    assert capitalize_word("éMILE") == "Émile"
    assert capitalize_word("") == ""


def users():
    return [
        {"id": 1, "first_name": "john", "last_name": "SMITH", "email": "J@X.COM"},
        {"id": 2, "first_name": "Ann", "last_name": "Lee"},
        {"id": 3, "first_name": "bo", "last_name": None},
    ]


def test_dry_run_lists_changes_without_writing(run):
    accessor = FakeAccessor(name="users", rows=users())
    result = run(capitalize_names(accessor, users()))
    assert accessor.updates == []
    assert result.updatedCount == 0
    assert [(c.key, c.field, c.before, c.after) for c in result.changes] == [
        (1, "first_name", "john", "John"),
        (1, "last_name", "SMITH", "Smith"),
        (3, "first_name", "bo", "Bo"),
    ]


def test_apply_writes_only_changed_names(run):
    accessor = FakeAccessor(name="users", rows=users())
    result = run(capitalize_names(accessor, users(), dry_run=False))
    assert accessor.updates == [
        ({"id": 1}, {"first_name": "John", "last_name": "Smith"}),
        ({"id": 3}, {"first_name": "Bo"}),
    ]
    assert result.updatedCount == 2
    assert result.errors == []
    assert result.keyField == "id"


def test_apply_collects_row_errors(run):
    def locked(where):
        if where["id"] == 1:
            return OperationalError("UPDATE", {}, Exception(1205, "Lock wait timeout exceeded"))
        return None

    accessor = FakeAccessor(name="users", fail_on=locked, missing=[3])
    result = run(capitalize_names(accessor, users(), dry_run=False))
    assert result.updatedCount == 0
    assert result.errors == [
        "Failed to update users.id=1: Lock wait timeout exceeded",
        "No row matched users.id=3; nothing updated",
    ]
