"""SqlPropertyStore behaviour against the test database."""

from uuid import uuid4

import pytest
from sqlalchemy import insert

import userprops.features.user_properties.store as store_module
from userprops.core.database import user_properties
from userprops.features.user_properties.store import (
    InvalidIdentifierError,
    RecordNotFoundError,
    SqlPropertyStore,
    UniqueViolationError,
    ensure_identifier,
)

PROTECTED = {"id", "anonymousId"}


@pytest.fixture
def store():
    return SqlPropertyStore()


def make_values(workspace_id, name, **extra):
    values = {
        "workspace_id": workspace_id,
        "name": name,
        "definition": {"type": "Trait", "path": name},
    }
    values.update(extra)
    return values


def test_ensure_identifier_accepts_uuid_strings():
    value = str(uuid4())
    assert ensure_identifier(value) == value


@pytest.mark.parametrize("value", ["", "abc", "1234", None])
def test_ensure_identifier_rejects_malformed(value):
    with pytest.raises(InvalidIdentifierError):
        ensure_identifier(value)


def test_insert_generates_id(store, workspace_id):
    row = store.insert(make_values(workspace_id, "email"))
    ensure_identifier(row.id)
    assert row.workspace_id == workspace_id
    assert row.definition == {"type": "Trait", "path": "email"}
    assert row.definition_updated_at is None
    assert row.created_at is not None


def test_insert_duplicate_name_raises_unique_violation(store, workspace_id):
    store.insert(make_values(workspace_id, "email"))
    with pytest.raises(UniqueViolationError):
        store.insert(make_values(workspace_id, "email"))


def test_upsert_by_id_creates_then_updates(store, workspace_id):
    property_id = str(uuid4())
    row, created = store.upsert_by_id(
        property_id,
        make_values(workspace_id, "email"),
        {"name": "email"},
        excluded_names=PROTECTED,
    )
    assert created is True
    assert row.id == property_id

    updated, created = store.upsert_by_id(
        property_id,
        make_values(workspace_id, "email"),
        {"example_value": "a@example.com"},
        excluded_names=PROTECTED,
    )
    assert created is False
    assert updated.id == property_id
    assert updated.example_value == "a@example.com"


def test_upsert_by_id_hides_protected_rows(store, workspace_id):
    row = store.insert(make_values(workspace_id, "anonymousId", definition={"type": "AnonymousId"}))
    with pytest.raises(RecordNotFoundError):
        store.upsert_by_id(row.id, make_values(workspace_id, "other"), {"name": "other"}, excluded_names=PROTECTED)
    assert store.get_by_id(row.id).name == "anonymousId"


def test_upsert_by_id_updates_row_inserted_by_concurrent_writer(store, workspace_id, monkeypatch):
    property_id = str(uuid4())
    real_insert_for = store_module._conflict_insert_for

    def insert_for_after_competing_write(session):
        # Another request creates the same id just before this statement runs
        session.execute(
            insert(user_properties).values(
                id=property_id,
                workspace_id=workspace_id,
                name="primaryEmail",
                definition={"type": "Trait", "path": "primaryEmail"},
            )
        )
        return real_insert_for(session)

    monkeypatch.setattr(store_module, "_conflict_insert_for", insert_for_after_competing_write)

    row, created = store.upsert_by_id(
        property_id,
        make_values(workspace_id, "email"),
        {"name": "email", "definition": {"type": "Trait", "path": "email"}},
        excluded_names=PROTECTED,
    )
    assert created is False
    assert row.name == "email"
    assert [r.id for r in store.find_by_workspace(workspace_id)] == [property_id]


def test_upsert_by_id_duplicate_name_still_conflicts(store, workspace_id):
    store.insert(make_values(workspace_id, "email"))
    with pytest.raises(UniqueViolationError):
        store.upsert_by_id(str(uuid4()), make_values(workspace_id, "email"), {"name": "email"})


def test_update_by_id_missing_row(store):
    with pytest.raises(RecordNotFoundError):
        store.update_by_id(str(uuid4()), {"name": "email"}, excluded_names=PROTECTED)


def test_update_by_id_with_no_values_checks_existence(store, workspace_id):
    row = store.insert(make_values(workspace_id, "email"))
    assert store.update_by_id(row.id, {}, excluded_names=PROTECTED).id == row.id
    with pytest.raises(RecordNotFoundError):
        store.update_by_id(str(uuid4()), {}, excluded_names=PROTECTED)


def test_update_by_id_rejects_malformed_id(store):
    with pytest.raises(InvalidIdentifierError):
        store.update_by_id("nope", {"name": "email"})


def test_find_by_workspace_is_scoped_and_sorted(store, workspace_id):
    store.insert(make_values(workspace_id, "plan"))
    store.insert(make_values(workspace_id, "email"))
    store.insert(make_values(str(uuid4()), "company"))

    rows = store.find_by_workspace(workspace_id)
    assert [r.name for r in rows] == ["email", "plan"]


def test_assignment_upsert_replaces_value(store, workspace_id):
    row = store.insert(make_values(workspace_id, "email"))
    store.upsert_assignment(row.id, workspace_id, "user-1", "old@example.com")
    store.upsert_assignment(row.id, workspace_id, "user-1", "new@example.com")

    values = store.find_values(row.id, workspace_id)
    assert len(values) == 1
    assert values[0].value == "new@example.com"


def test_assignment_requires_property_in_workspace(store, workspace_id):
    row = store.insert(make_values(workspace_id, "email"))
    with pytest.raises(RecordNotFoundError):
        store.upsert_assignment(row.id, str(uuid4()), "user-1", "x")


def test_deletes_skip_protected_names(store, workspace_id):
    plain = store.insert(make_values(workspace_id, "email"))
    protected = store.insert(make_values(workspace_id, "id", definition={"type": "Id"}))
    store.upsert_assignment(plain.id, workspace_id, "user-1", "a")
    store.upsert_assignment(protected.id, workspace_id, "user-1", "b")

    ids = [plain.id, protected.id]
    with store.transaction() as session:
        assert store.delete_assignments_by_property_excluding_names(ids, PROTECTED, session=session) == 1
        assert store.delete_properties_excluding_names(ids, PROTECTED, session=session) == 1

    assert store.get_by_id(plain.id) is None
    assert store.get_by_id(protected.id) is not None
    assert len(store.find_values(protected.id, workspace_id)) == 1


def test_transaction_rolls_back_on_error(store, workspace_id):
    row = store.insert(make_values(workspace_id, "email"))
    with pytest.raises(RuntimeError):
        with store.transaction() as session:
            store.delete_properties_excluding_names([row.id], PROTECTED, session=session)
            raise RuntimeError("abort")
    assert store.get_by_id(row.id) is not None
