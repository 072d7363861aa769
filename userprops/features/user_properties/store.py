"""
userprops/features/user_properties/store.py

Relational persistence for user properties and their assignments.

Every method accepts an optional ``session`` so callers can group several
statements in one transaction (see ``transaction()``); without one, each call
runs in its own committed session. Row counts are returned for bulk deletes.

Faults are split into ``RecordNotFoundError`` (no matching row),
``InvalidIdentifierError`` (id is not a UUID) and ``UniqueViolationError``
(id or workspace/name collision). Anything else from SQLAlchemy propagates.
"""

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, Iterator, List, Optional, Protocol, Sequence, Tuple
from uuid import UUID, uuid4

from sqlalchemy import and_, delete, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from userprops.core.database import (
    get_db_session,
    user_properties,
    user_property_assignments,
)


class PropertyStoreError(Exception):
    """Base class for store faults the service knows how to translate."""


class RecordNotFoundError(PropertyStoreError):
    pass


class InvalidIdentifierError(PropertyStoreError):
    pass


class UniqueViolationError(PropertyStoreError):
    pass


@dataclass
class UserPropertyRow:
    id: str
    workspace_id: str
    name: str
    definition: Any
    definition_updated_at: Optional[datetime]
    example_value: Any
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class UserPropertyAssignmentRow:
    user_property_id: str
    user_id: str
    workspace_id: str
    value: str


class PropertyStore(Protocol):
    def transaction(self) -> Any: ...

    def insert(self, values: Dict[str, Any], *, session: Optional[Session] = None) -> UserPropertyRow: ...

    def upsert_by_id(
        self,
        property_id: str,
        create: Dict[str, Any],
        update_values: Dict[str, Any],
        *,
        excluded_names: Iterable[str] = (),
        session: Optional[Session] = None,
    ) -> Tuple[UserPropertyRow, bool]: ...

    def update_by_id(
        self,
        property_id: str,
        values: Dict[str, Any],
        *,
        excluded_names: Iterable[str] = (),
        session: Optional[Session] = None,
    ) -> UserPropertyRow: ...

    def get_by_id(self, property_id: str, *, session: Optional[Session] = None) -> Optional[UserPropertyRow]: ...

    def find_by_workspace(self, workspace_id: str, *, session: Optional[Session] = None) -> List[UserPropertyRow]: ...

    def find_values(self, property_id: str, workspace_id: str, *, session: Optional[Session] = None) -> List[UserPropertyAssignmentRow]: ...

    def upsert_assignment(
        self,
        property_id: str,
        workspace_id: str,
        user_id: str,
        value: str,
        *,
        session: Optional[Session] = None,
    ) -> UserPropertyAssignmentRow: ...

    def delete_assignments_by_property_excluding_names(
        self, ids: Sequence[str], excluded: Iterable[str], *, session: Optional[Session] = None
    ) -> int: ...

    def delete_properties_excluding_names(
        self, ids: Sequence[str], excluded: Iterable[str], *, session: Optional[Session] = None
    ) -> int: ...


def ensure_identifier(value: Any) -> str:
    """Return ``value`` unchanged if it is a UUID string, else raise InvalidIdentifierError."""
    try:
        UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        raise InvalidIdentifierError(f"malformed identifier: {value!r}")
    return str(value)


def _not_protected(excluded: Iterable[str]) -> list:
    names = sorted(set(excluded))
    if not names:
        return []
    return [user_properties.c.name.not_in(names)]


def _conflict_insert_for(session: Session):
    """Dialect insert() supporting ON CONFLICT, or None for other backends."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    return None


def _row_to_property(row) -> UserPropertyRow:
    return UserPropertyRow(
        id=row.id,
        workspace_id=row.workspace_id,
        name=row.name,
        definition=row.definition,
        definition_updated_at=row.definition_updated_at,
        example_value=row.example_value,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_assignment(row) -> UserPropertyAssignmentRow:
    return UserPropertyAssignmentRow(
        user_property_id=row.user_property_id,
        user_id=row.user_id,
        workspace_id=row.workspace_id,
        value=row.value,
    )


class SqlPropertyStore:
    """SQLAlchemy Core implementation of PropertyStore."""

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        with get_db_session() as session:
            yield session

    @contextmanager
    def _session(self, session: Optional[Session]) -> Iterator[Session]:
        if session is not None:
            yield session
            return
        with get_db_session() as own:
            yield own

    @staticmethod
    def _fetch(session: Session, property_id: str) -> Optional[UserPropertyRow]:
        row = session.execute(
            select(user_properties).where(user_properties.c.id == property_id)
        ).first()
        return _row_to_property(row) if row else None

    def insert(self, values: Dict[str, Any], *, session: Optional[Session] = None) -> UserPropertyRow:
        property_id = ensure_identifier(values["id"]) if values.get("id") else str(uuid4())
        row_values = {**values, "id": property_id}
        try:
            with self._session(session) as s:
                s.execute(insert(user_properties).values(**row_values))
                return self._fetch(s, property_id)
        except IntegrityError as exc:
            raise UniqueViolationError("user property conflicts with an existing row") from exc

    def upsert_by_id(
        self,
        property_id: str,
        create: Dict[str, Any],
        update_values: Dict[str, Any],
        *,
        excluded_names: Iterable[str] = (),
        session: Optional[Session] = None,
    ) -> Tuple[UserPropertyRow, bool]:
        """Insert ``create`` under ``property_id``, or apply ``update_values`` to the existing row.

        The insert is ``ON CONFLICT (id) DO NOTHING``, so a row created by a
        concurrent writer turns this call into an update. An existing row whose
        name is excluded is treated as missing.

        Returns:
            (row, created) where ``created`` is True when this call inserted the row.
        """
        property_id = ensure_identifier(property_id)
        try:
            with self._session(session) as s:
                insert_fn = _conflict_insert_for(s)
                if insert_fn is None:
                    created = self._fetch(s, property_id) is None
                    if created:
                        s.execute(insert(user_properties).values(id=property_id, **create))
                else:
                    result = s.execute(
                        insert_fn(user_properties)
                        .values(id=property_id, **create)
                        .on_conflict_do_nothing(index_elements=[user_properties.c.id])
                    )
                    created = result.rowcount == 1
                if not created:
                    row = self.update_by_id(
                        property_id, update_values, excluded_names=excluded_names, session=s
                    )
                    return row, False
                return self._fetch(s, property_id), True
        except IntegrityError as exc:
            raise UniqueViolationError("user property conflicts with an existing row") from exc

    def update_by_id(
        self,
        property_id: str,
        values: Dict[str, Any],
        *,
        excluded_names: Iterable[str] = (),
        session: Optional[Session] = None,
    ) -> UserPropertyRow:
        property_id = ensure_identifier(property_id)
        conditions = [user_properties.c.id == property_id, *_not_protected(excluded_names)]
        try:
            with self._session(session) as s:
                if values:
                    result = s.execute(
                        update(user_properties).where(and_(*conditions)).values(**values)
                    )
                    matched = result.rowcount
                else:
                    matched = len(s.execute(select(user_properties.c.id).where(and_(*conditions))).all())
                if matched <= 0:
                    raise RecordNotFoundError(f"user property {property_id} not found")
                return self._fetch(s, property_id)
        except IntegrityError as exc:
            raise UniqueViolationError("user property conflicts with an existing row") from exc

    def get_by_id(self, property_id: str, *, session: Optional[Session] = None) -> Optional[UserPropertyRow]:
        with self._session(session) as s:
            return self._fetch(s, property_id)

    def find_by_workspace(self, workspace_id: str, *, session: Optional[Session] = None) -> List[UserPropertyRow]:
        with self._session(session) as s:
            rows = s.execute(
                select(user_properties)
                .where(user_properties.c.workspace_id == workspace_id)
                .order_by(user_properties.c.name)
            ).all()
            return [_row_to_property(row) for row in rows]

    def find_values(self, property_id: str, workspace_id: str, *, session: Optional[Session] = None) -> List[UserPropertyAssignmentRow]:
        with self._session(session) as s:
            rows = s.execute(
                select(user_property_assignments)
                .where(
                    and_(
                        user_property_assignments.c.user_property_id == property_id,
                        user_property_assignments.c.workspace_id == workspace_id,
                    )
                )
                .order_by(user_property_assignments.c.user_id)
            ).all()
            return [_row_to_assignment(row) for row in rows]

    def upsert_assignment(
        self,
        property_id: str,
        workspace_id: str,
        user_id: str,
        value: str,
        *,
        session: Optional[Session] = None,
    ) -> UserPropertyAssignmentRow:
        property_id = ensure_identifier(property_id)
        key = and_(
            user_property_assignments.c.user_property_id == property_id,
            user_property_assignments.c.user_id == user_id,
        )
        with self._session(session) as s:
            owner = self._fetch(s, property_id)
            if owner is None or owner.workspace_id != workspace_id:
                raise RecordNotFoundError(f"user property {property_id} not found in workspace {workspace_id}")
            existing = s.execute(select(user_property_assignments.c.user_id).where(key)).first()
            if existing is None:
                s.execute(
                    insert(user_property_assignments).values(
                        user_property_id=property_id,
                        user_id=user_id,
                        workspace_id=workspace_id,
                        value=value,
                    )
                )
            else:
                s.execute(update(user_property_assignments).where(key).values(value=value))
            row = s.execute(select(user_property_assignments).where(key)).first()
            return _row_to_assignment(row)

    def delete_assignments_by_property_excluding_names(
        self, ids: Sequence[str], excluded: Iterable[str], *, session: Optional[Session] = None
    ) -> int:
        checked = [ensure_identifier(i) for i in ids]
        owners = select(user_properties.c.id).where(
            and_(user_properties.c.id.in_(checked), *_not_protected(excluded))
        )
        with self._session(session) as s:
            result = s.execute(
                delete(user_property_assignments).where(
                    user_property_assignments.c.user_property_id.in_(owners)
                )
            )
            return result.rowcount

    def delete_properties_excluding_names(
        self, ids: Sequence[str], excluded: Iterable[str], *, session: Optional[Session] = None
    ) -> int:
        checked = [ensure_identifier(i) for i in ids]
        with self._session(session) as s:
            result = s.execute(
                delete(user_properties).where(
                    and_(user_properties.c.id.in_(checked), *_not_protected(excluded))
                )
            )
            return result.rowcount
