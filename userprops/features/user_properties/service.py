"""
userprops/features/user_properties/service.py

User property service.

Handles:
- Upsert (create with a supplied or generated id, full update, partial update)
- Listing definitions for a workspace
- Listing materialized values of a property
- Deleting a property together with its assignments

Reserved ("protected") names are injected at construction and can never be
created, updated or deleted here. Stored definitions are re-validated on every
read so a malformed row surfaces as a server fault instead of leaking out.
"""

from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional

from userprops.core.config import get_protected_user_properties
from userprops.core.errors import (
    ConflictError,
    DataIntegrityError,
    NotFoundError,
    ProtectedPropertyError,
    ValidationError,
)
from userprops.core.logging import log_event
from userprops.core.metrics import (
    user_property_integrity_failures_total,
    user_property_mutations_total,
)
from userprops.features.user_properties.schema_validation import SchemaValidator
from userprops.features.user_properties.store import (
    InvalidIdentifierError,
    PropertyStore,
    RecordNotFoundError,
    SqlPropertyStore,
    UniqueViolationError,
    UserPropertyRow,
)
from userprops.models.user_property import (
    UpsertUserPropertyResource,
    UserPropertyAssignmentResource,
    UserPropertyDefinition,
    UserPropertyResource,
    dump_definition,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserPropertyService:
    def __init__(
        self,
        store: Optional[PropertyStore] = None,
        validator: Optional[SchemaValidator] = None,
        protected_names: Optional[Iterable[str]] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store if store is not None else SqlPropertyStore()
        self.validator = validator if validator is not None else SchemaValidator()
        if protected_names is None:
            protected_names = get_protected_user_properties()
        self.protected_names = frozenset(protected_names)
        self.clock = clock

    def is_protected(self, name: Optional[str]) -> bool:
        return name is not None and name in self.protected_names

    # ===== UPSERT =====

    def upsert(self, data: UpsertUserPropertyResource) -> UserPropertyResource:
        """Create or update a user property.

        With ``id`` and all of ``workspaceId``/``name``/``definition`` the row
        is inserted under that id or fully updated. With only the create
        fields a new id is generated. With ``id`` alone (plus any subset of
        fields) only the supplied fields are changed.

        Raises:
            ProtectedPropertyError: ``name`` is reserved.
            ValidationError: no ``id`` and not enough fields to create, or malformed ``id``.
            NotFoundError: partial update targets no (non-protected) row.
            ConflictError: name already taken in the workspace.
            DataIntegrityError: the stored definition fails schema validation.
        """
        if self.is_protected(data.name):
            user_property_mutations_total.inc(labels={"type": "rejected"})
            log_event(
                "warning",
                "user_property.protected_rejected",
                workspace_id=data.workspace_id,
                property_id=data.id,
                error_code="protected_property",
                extra={"property_name": data.name},
            )
            raise ProtectedPropertyError(f"User property name {data.name!r} is reserved")

        can_create = bool(data.workspace_id and data.name and data.definition)
        supplied = data.model_fields_set
        definition = dump_definition(data.definition) if data.definition else None

        try:
            if can_create and data.id:
                row, created = self.store.upsert_by_id(
                    data.id,
                    create={
                        "workspace_id": data.workspace_id,
                        "name": data.name,
                        "definition": definition,
                        "example_value": data.example_value,
                    },
                    update_values=self._update_values(data, definition, supplied),
                    excluded_names=self.protected_names,
                )
                mutation = "created" if created else "updated"
            elif can_create:
                row = self.store.insert({
                    "workspace_id": data.workspace_id,
                    "name": data.name,
                    "definition": definition,
                    "example_value": data.example_value,
                })
                mutation = "created"
            elif data.id:
                row = self.store.update_by_id(
                    data.id,
                    self._update_values(data, definition, supplied),
                    excluded_names=self.protected_names,
                )
                mutation = "updated"
            else:
                raise ValidationError("id is required unless workspaceId, name and definition are all provided")
        except InvalidIdentifierError as exc:
            raise ValidationError(str(exc)) from exc
        except RecordNotFoundError as exc:
            raise NotFoundError(f"User property {data.id} not found") from exc
        except UniqueViolationError as exc:
            raise ConflictError(
                f"User property {data.name!r} already exists in workspace {data.workspace_id}"
            ) from exc

        user_property_mutations_total.inc(labels={"type": mutation})
        log_event(
            "info",
            f"user_property.{mutation}",
            workspace_id=row.workspace_id,
            property_id=row.id,
            extra={"property_name": row.name},
        )
        return self._to_resource(row, operation="upsert")

    def _update_values(self, data: UpsertUserPropertyResource, definition: Optional[dict], supplied) -> dict:
        # Partial update: omitted fields are left as stored
        values = {}
        if data.workspace_id:
            values["workspace_id"] = data.workspace_id
        if data.name:
            values["name"] = data.name
        if definition is not None:
            values["definition"] = definition
            values["definition_updated_at"] = self.clock()
        if "example_value" in supplied:
            values["example_value"] = data.example_value
        return values

    # ===== READS =====

    def list_definitions(self, workspace_id: str) -> List[UserPropertyResource]:
        """All valid properties of a workspace, ordered by name.

        Rows with a definition that no longer validates are logged and skipped.
        """
        resources = []
        for row in self.store.find_by_workspace(workspace_id):
            try:
                resources.append(self._to_resource(row, operation="list"))
            except DataIntegrityError:
                continue
        return resources

    def list_values(self, property_id: str, workspace_id: str) -> List[UserPropertyAssignmentResource]:
        rows = self.store.find_values(property_id, workspace_id)
        return [
            UserPropertyAssignmentResource(
                user_property_id=row.user_property_id,
                user_id=row.user_id,
                workspace_id=row.workspace_id,
                value=row.value,
            )
            for row in rows
        ]

    def record_assignment(self, property_id: str, workspace_id: str, user_id: str, value: str) -> UserPropertyAssignmentResource:
        """Store the computed value of a property for one user (insert or replace)."""
        try:
            row = self.store.upsert_assignment(property_id, workspace_id, user_id, value)
        except (RecordNotFoundError, InvalidIdentifierError) as exc:
            raise NotFoundError(f"User property {property_id} not found") from exc
        return UserPropertyAssignmentResource(
            user_property_id=row.user_property_id,
            user_id=row.user_id,
            workspace_id=row.workspace_id,
            value=row.value,
        )

    # ===== DELETE =====

    def delete(self, property_id: str) -> None:
        """Delete a non-protected property and its assignments in one transaction.

        Raises:
            NotFoundError: id unknown, malformed, or names a protected property.
        """
        try:
            with self.store.transaction() as session:
                removed_assignments = self.store.delete_assignments_by_property_excluding_names(
                    [property_id], self.protected_names, session=session
                )
                deleted = self.store.delete_properties_excluding_names(
                    [property_id], self.protected_names, session=session
                )
        except (RecordNotFoundError, InvalidIdentifierError) as exc:
            raise NotFoundError(f"User property {property_id} not found") from exc

        if deleted <= 0:
            raise NotFoundError(f"User property {property_id} not found")

        user_property_mutations_total.inc(labels={"type": "deleted"})
        log_event(
            "info",
            "user_property.deleted",
            property_id=property_id,
            extra={"assignments_removed": removed_assignments},
        )

    # ===== HELPERS =====

    def _to_resource(self, row: UserPropertyRow, *, operation: str) -> UserPropertyResource:
        result = self.validator.validate(row.definition, UserPropertyDefinition)
        if result.is_err():
            user_property_integrity_failures_total.inc(labels={"operation": operation})
            log_event(
                "error",
                "user_property.invalid_definition",
                workspace_id=row.workspace_id,
                property_id=row.id,
                error_code="data_integrity_error",
                extra={"operation": operation, "reason": result.error.message},
            )
            raise DataIntegrityError(f"Stored definition for user property {row.id} is invalid")

        return UserPropertyResource(
            id=row.id,
            name=row.name,
            workspace_id=row.workspace_id,
            definition=result.value,
            example_value=row.example_value,
        )


user_property_service = UserPropertyService()


def get_user_property_service() -> UserPropertyService:
    """FastAPI dependency; override in tests via app.dependency_overrides."""
    return user_property_service
