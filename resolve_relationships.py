"""Resolve the entity fields contributed by columns and relationships of a table."""

from __future__ import annotations

import dataclasses
import enum
from typing import Iterator

from naming import pluralize, snake
from schema_model import (
    ClassificationError,
    Column,
    ConfigurationError,
    Relationship,
    RelationshipType,
    Table,
)

# Methods every generated entity class defines.
ENTITY_RESERVED = ("prop", "props")


class Side(enum.Enum):
    OWNER = "owner"
    INVERSE = "inverse"
    MANY_TO_MANY = "many_to_many"


class Cardinality(enum.Enum):
    SINGLE = "single"
    COLLECTION = "collection"


@dataclasses.dataclass(frozen=True)
class EntityField:
    name: str
    column: Column | None = None
    related: Table | None = dataclasses.field(default=None, compare=False)
    cardinality: Cardinality = Cardinality.SINGLE
    relationship: Relationship | None = dataclasses.field(default=None, compare=False, repr=False)

    @property
    def read_only(self) -> bool:
        return self.column is not None and (self.column.dynamic or self.column.read_only)


def _or(name: str, fallback: str) -> str:
    return name if name else fallback


def _field(name: str, related: Table, cardinality: Cardinality, rel: Relationship) -> EntityField:
    return EntityField(name=snake(name), related=related, cardinality=cardinality, relationship=rel)


def resolve_field(table: Table, rel: Relationship, side: Side) -> list[EntityField]:
    """Return the entity field(s) ``rel`` contributes to ``table`` seen from ``side``.

    Exactly one field is returned, except for a self-referential many-to-many
    relationship which yields one collection per side.
    """
    if not isinstance(rel.type, RelationshipType):
        raise ClassificationError(f"table {table.name}: unknown relationship type: {rel.type!r}")

    if side is Side.OWNER:
        other = rel.inversed_table
        if rel.type is RelationshipType.ONE_TO_MANY:
            return [_field(_or(rel.inversed_name, pluralize(other.name)), other, Cardinality.COLLECTION, rel)]
        if rel.type in (RelationshipType.ONE_TO_ONE, RelationshipType.MANY_TO_ONE):
            return [_field(_or(rel.inversed_name, other.name), other, Cardinality.SINGLE, rel)]
        raise ConfigurationError(f"table {table.name}: many-to-many relationship listed as owned")

    if side is Side.INVERSE:
        other = rel.owner_table
        if rel.type is RelationshipType.MANY_TO_ONE:
            return [_field(_or(rel.owner_name, pluralize(other.name)), other, Cardinality.COLLECTION, rel)]
        if rel.type in (RelationshipType.ONE_TO_ONE, RelationshipType.ONE_TO_MANY):
            return [_field(_or(rel.owner_name, other.name), other, Cardinality.SINGLE, rel)]
        raise ConfigurationError(f"table {table.name}: many-to-many relationship listed as inversed")

    if rel.type is not RelationshipType.MANY_TO_MANY:
        raise ConfigurationError(f"table {table.name}: {rel.type.value} relationship listed as many-to-many")

    if rel.owner_table is table and rel.inversed_table is table:
        if not rel.owner_name or not rel.inversed_name:
            raise ConfigurationError(
                f"table {table.name}: self-referential many-to-many relationship requires owner_name and inversed_name"
            )
        return [
            _field(rel.inversed_name, table, Cardinality.COLLECTION, rel),
            _field(rel.owner_name, table, Cardinality.COLLECTION, rel),
        ]
    if rel.owner_table is table:
        other = rel.inversed_table
        return [_field(_or(rel.inversed_name, pluralize(other.name)), other, Cardinality.COLLECTION, rel)]
    if rel.inversed_table is table:
        other = rel.owner_table
        return [_field(_or(rel.owner_name, pluralize(other.name)), other, Cardinality.COLLECTION, rel)]
    raise ConfigurationError(f"table {table.name}: does not participate in many-to-many relationship")


def iter_entity_fields(table: Table) -> Iterator[EntityField]:
    """One-shot sequence: columns, then owned, inversed and many-to-many relationships."""
    for col in table.columns:
        yield EntityField(name=snake(col.name), column=col)
    for rel in table.owned_relationships:
        yield from resolve_field(table, rel, Side.OWNER)
    for rel in table.inversed_relationships:
        yield from resolve_field(table, rel, Side.INVERSE)
    for rel in table.many_to_many_relationships:
        yield from resolve_field(table, rel, Side.MANY_TO_MANY)


def entity_fields(table: Table) -> list[EntityField]:
    fields: list[EntityField] = []
    seen: set[str] = set()
    for f in iter_entity_fields(table):
        if f.name in ENTITY_RESERVED:
            raise ConfigurationError(f"table {table.name}: field {f.name!r} clashes with a generated entity method")
        if f.name in seen:
            raise ConfigurationError(
                f"table {table.name}: field {f.name!r} resolved more than once, set owner_name/inversed_name"
            )
        seen.add(f.name)
        fields.append(f)
    return fields


def joinable_relationships(table: Table) -> list[Relationship]:
    return [
        r
        for r in table.owned_relationships
        if r.type in (RelationshipType.ONE_TO_ONE, RelationshipType.MANY_TO_ONE)
    ]


def join_name(rel: Relationship) -> str:
    """Field name used for the join descriptor of an owned relationship."""
    return snake(_or(rel.inversed_name, rel.inversed_table.name))
