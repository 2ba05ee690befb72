"""Naming, counting and partitioning of table constraints."""

from __future__ import annotations

from schema_model import (
    ClassificationError,
    Constraint,
    ConstraintType,
    StructuralError,
    Table,
)

STANDALONE_TYPES = (ConstraintType.INDEX, ConstraintType.UNIQUE_INDEX)
INLINE_TYPES = (
    ConstraintType.PRIMARY_KEY,
    ConstraintType.CHECK,
    ConstraintType.UNIQUE,
    ConstraintType.FOREIGN_KEY,
    ConstraintType.EXCLUSION,
)


def ensure_known(c: Constraint) -> ConstraintType:
    if not isinstance(c.type, ConstraintType):
        table = c.primary_table.name if c.primary_table is not None else "<missing table>"
        raise ClassificationError(f"table {table}: unknown constraint type: {c.type!r}")
    return c.type


def name_of(c: Constraint) -> str:
    ctype = ensure_known(c)
    table = c.primary_table
    if table is None:
        raise StructuralError(f"{ctype.name.lower()} constraint has no owning table")
    schema = table.schema.name if table.schema is not None and table.schema.name else "public"
    if not c.primary_columns:
        return f"{schema}.{table.name}_{ctype.value}"
    cols = "_".join(col.name for col in c.primary_columns)
    return f"{schema}.{table.name}_{cols}_{ctype.value}"


def join_columns(c: Constraint, sep: str = ", ", referenced: bool = False) -> str:
    cols = c.columns if referenced else c.primary_columns
    return sep.join(col.name for col in cols)


def count_of(constraints: list[Constraint], *types: ConstraintType) -> int:
    return sum(1 for c in constraints if c.type in types)


def partition(constraints: list[Constraint]) -> tuple[list[Constraint], list[Constraint]]:
    """Split constraints into those rendered inside CREATE TABLE and standalone index statements."""
    inline: list[Constraint] = []
    standalone: list[Constraint] = []
    seen: set[str] = set()
    for c in constraints:
        name = name_of(c)
        if name in seen:
            raise StructuralError(f"duplicate constraint name: {name}")
        seen.add(name)
        if c.type in STANDALONE_TYPES:
            standalone.append(c)
        else:
            inline.append(c)
    return inline, standalone


def working_constraints(table: Table) -> list[Constraint]:
    """Table constraints plus foreign keys synthesized from multi-column owned relationships."""
    constraints = list(table.constraints)
    for rel in table.owned_relationships:
        if len(rel.owner_columns) == 1:
            continue
        if rel.owner_foreign_key is not None:
            constraints.append(rel.owner_foreign_key)
    return constraints
