"""
userprops/models/user_property.py

User property definitions and API resources.

A user property is a named rule, scoped to a workspace, describing how a value
is derived from user data. The rule itself (``UserPropertyDefinition``) is a
tagged variant discriminated by ``type``:

- ``Id`` / ``AnonymousId``: the user's identifiers
- ``Trait``: value at a dotted path in identify traits
- ``Performed``: value at a path of the latest matching track event
- ``PerformedMany``: every track event matching one of the listed names
- ``Group``: composite of ``AnyOf`` and leaf nodes, starting at ``entry``

Wire format is camelCase (``workspaceId``, ``exampleValue``).
"""

from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class _DefinitionModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)


class IdUserPropertyDefinition(_DefinitionModel):
    type: Literal["Id"]


class AnonymousIdUserPropertyDefinition(_DefinitionModel):
    type: Literal["AnonymousId"]


class TraitUserPropertyDefinition(_DefinitionModel):
    type: Literal["Trait"]
    path: str = Field(min_length=1)


class PerformedUserPropertyDefinition(_DefinitionModel):
    type: Literal["Performed"]
    event: str = Field(min_length=1)
    path: str = Field(min_length=1)


class PerformedManyEvent(_DefinitionModel):
    event: str = Field(min_length=1)


class PerformedManyUserPropertyDefinition(_DefinitionModel):
    type: Literal["PerformedMany"]
    or_: List[PerformedManyEvent] = Field(alias="or", min_length=1)


# Group nodes

class AnyOfGroupNode(_DefinitionModel):
    type: Literal["AnyOf"]
    id: str = Field(min_length=1)
    children: List[str] = Field(min_length=1)


class TraitGroupNode(TraitUserPropertyDefinition):
    id: str = Field(min_length=1)


class PerformedGroupNode(PerformedUserPropertyDefinition):
    id: str = Field(min_length=1)


GroupNode = Annotated[
    Union[AnyOfGroupNode, TraitGroupNode, PerformedGroupNode],
    Field(discriminator="type"),
]


class GroupUserPropertyDefinition(_DefinitionModel):
    type: Literal["Group"]
    entry: str = Field(min_length=1)
    nodes: List[GroupNode] = Field(min_length=1)

    @model_validator(mode="after")
    def check_node_references(self):
        ids = [node.id for node in self.nodes]
        if len(ids) != len(set(ids)):
            raise ValueError("group node ids must be unique")
        known = set(ids)
        if self.entry not in known:
            raise ValueError(f"entry {self.entry!r} does not reference a node")
        for node in self.nodes:
            if isinstance(node, AnyOfGroupNode):
                missing = [child for child in node.children if child not in known]
                if missing:
                    raise ValueError(f"node {node.id!r} references unknown children: {missing}")
        return self


UserPropertyDefinition = Annotated[
    Union[
        IdUserPropertyDefinition,
        AnonymousIdUserPropertyDefinition,
        TraitUserPropertyDefinition,
        PerformedUserPropertyDefinition,
        PerformedManyUserPropertyDefinition,
        GroupUserPropertyDefinition,
    ],
    Field(discriminator="type"),
]


def dump_definition(definition: BaseModel) -> dict:
    """JSON-ready form of a definition, as stored and returned."""
    return definition.model_dump(mode="json", by_alias=True)


# API resources

class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UpsertUserPropertyResource(_CamelModel):
    """Create-or-update request. Only fields the caller sends are applied on update."""

    id: Optional[str] = None
    workspace_id: Optional[str] = None
    name: Optional[str] = None
    definition: Optional[UserPropertyDefinition] = None
    example_value: Optional[Any] = None


class UserPropertyResource(_CamelModel):
    id: str
    name: str
    workspace_id: str
    definition: UserPropertyDefinition
    example_value: Optional[Any] = None


class GetUserPropertiesResponse(_CamelModel):
    properties: List[UserPropertyResource]


class UserPropertyAssignmentResource(_CamelModel):
    user_property_id: str
    user_id: str
    workspace_id: str
    value: str


class GetUserPropertyValuesResponse(_CamelModel):
    values: List[UserPropertyAssignmentResource]


class DeleteUserPropertyRequest(_CamelModel):
    id: str
