#!/usr/bin/env python3
"""Generate PostgreSQL DDL (schema, functions, tables, indexes) from a schema model."""

from __future__ import annotations

import argparse
from pathlib import Path

from classify_constraints import (
    INLINE_TYPES,
    count_of,
    ensure_known,
    join_columns,
    name_of,
    partition,
    working_constraints,
)
from load_schema import load_schema_file
from schema_model import (
    Column,
    Constraint,
    ConstraintType,
    Event,
    Function,
    FunctionBehaviour,
    ReferentialError,
    Schema,
    StructuralError,
    Table,
)

HEADER_COMMENT = "-- do not modify, generated by schemagen"

# Existence guards on CREATE INDEX need PostgreSQL 9.5.
INDEX_IF_NOT_EXISTS_VERSION = 9.5


def sql_literal(text: str) -> str:
    return "'" + text.replace("'", "''") + "'"


def render_function(f: Function) -> str:
    if not f.name:
        raise StructuralError("missing function name")

    args = ", ".join(f"{arg.name} {arg.type}" for arg in f.args)
    lines: list[str] = [
        f"CREATE OR REPLACE FUNCTION {f.name}({args}) RETURNS {f.type}",
        f"\tAS {sql_literal(f.body)}",
        "\tLANGUAGE SQL",
    ]
    if f.behaviour in (FunctionBehaviour.VOLATILE, FunctionBehaviour.IMMUTABLE, FunctionBehaviour.STABLE):
        lines.append(f"\t{f.behaviour.value}")
    lines[-1] = lines[-1] + ";"
    return "\n".join(lines)


def render_foreign_key(c: Constraint) -> str:
    table = c.primary_table.name if c.primary_table is not None else "<missing table>"
    if not c.primary_columns:
        raise StructuralError(f"table {table}: foreign key constraint requires at least one column")
    if not c.columns:
        raise ReferentialError(f"table {table}: foreign key constraint requires at least one reference column")
    if c.table is None:
        raise ReferentialError(f"table {table}: foreign key constraint is missing reference table")

    out = (
        f'CONSTRAINT "{name_of(c)}" FOREIGN KEY ({join_columns(c)}) '
        f"REFERENCES {c.table.full_name()} ({join_columns(c, referenced=True)})"
    )
    if c.on_delete is not None:
        out += f" ON DELETE {c.on_delete.value}"
    if c.on_update is not None:
        out += f" ON UPDATE {c.on_update.value}"
    return out


def render_exclusion(c: Constraint) -> str:
    if len(c.operators) != len(c.primary_columns) or not c.primary_columns:
        table = c.primary_table.name if c.primary_table is not None else "<missing table>"
        raise StructuralError(f"table {table}: exclusion constraint requires one operator per column")
    elements = ", ".join(f"{col.name} WITH {op}" for col, op in zip(c.primary_columns, c.operators))
    return f'CONSTRAINT "{name_of(c)}" EXCLUDE USING {c.using} ({elements})'


def render_constraint(c: Constraint) -> str:
    ctype = ensure_known(c)
    if ctype is ConstraintType.UNIQUE:
        return f'CONSTRAINT "{name_of(c)}" UNIQUE ({join_columns(c)})'
    if ctype is ConstraintType.PRIMARY_KEY:
        return f'CONSTRAINT "{name_of(c)}" PRIMARY KEY ({join_columns(c)})'
    if ctype is ConstraintType.FOREIGN_KEY:
        return render_foreign_key(c)
    if ctype is ConstraintType.CHECK:
        return f'CONSTRAINT "{name_of(c)}" CHECK ({c.check})'
    if ctype is ConstraintType.EXCLUSION:
        return render_exclusion(c)
    raise StructuralError(f"{ctype.name.lower()} constraint cannot be rendered inline: {name_of(c)}")


def render_index(c: Constraint, version: float) -> str:
    unique = "UNIQUE " if c.type is ConstraintType.UNIQUE_INDEX else ""
    guard = "IF NOT EXISTS " if version >= INDEX_IF_NOT_EXISTS_VERSION else ""
    stmt = f'CREATE {unique}INDEX {guard}"{name_of(c)}" ON {c.primary_table.full_name()} ({join_columns(c)})'
    if c.type is ConstraintType.UNIQUE_INDEX and c.where:
        stmt += f" WHERE {c.where}"
    return stmt + ";"


def render_column(col: Column) -> str:
    parts = [col.name, str(col.type)]
    if col.collate:
        parts.append(f"COLLATE {col.collate}")
    default = col.default_on(Event.INSERT)
    if default:
        parts.append(f"DEFAULT {default}")
    if col.not_null:
        parts.append("NOT NULL")
    return " ".join(parts)


def render_table_sql(t: Table) -> tuple[str, list[Constraint]]:
    """Render CREATE TABLE and return it with the table's standalone index constraints."""
    if not t.name:
        raise StructuralError("missing table name")
    if not t.columns:
        raise StructuralError(f"table {t.name} has no columns")

    stored = [c for c in t.columns if not c.dynamic]
    if not stored:
        raise StructuralError(f"table {t.name} has no stored columns")

    constraints = working_constraints(t)
    inline, standalone = partition(constraints)
    nb_of_constraints = count_of(constraints, *INLINE_TYPES)

    head = "CREATE "
    if t.temporary:
        head += "TEMPORARY "
    head += "TABLE "
    if t.if_not_exists:
        head += "IF NOT EXISTS "
    lines: list[str] = [f"{head}{t.full_name()} ("]

    for idx, col in enumerate(stored):
        trailing = "," if idx < len(stored) - 1 or nb_of_constraints > 0 else ""
        lines.append(f"\t{render_column(col)}{trailing}")

    if nb_of_constraints > 0:
        lines.append("")
    for idx, c in enumerate(inline):
        trailing = "," if idx < nb_of_constraints - 1 else ""
        lines.append(f"\t{render_constraint(c)}{trailing}")

    lines.append(");")
    return "\n".join(lines), standalone


def generate_sql(schema: Schema, version: float = 0.0) -> str:
    if schema.if_not_exists and not schema.name:
        raise StructuralError("missing schema name")

    lines: list[str] = [HEADER_COMMENT, ""]
    if schema.name:
        guard = "IF NOT EXISTS " if schema.if_not_exists else ""
        lines.append(f"CREATE SCHEMA {guard}{schema.name};")
        lines.append("")

    for f in schema.functions:
        if f is None:
            continue
        lines.append(render_function(f))
        lines.append("")

    for t in schema.tables:
        table_sql, indexes = render_table_sql(t)
        lines.append(table_sql)
        for c in indexes:
            lines.append(render_index(c, version))
        lines.append("")

    lines.append("")
    return "\n".join(lines)


def write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate PostgreSQL DDL from a YAML schema")
    parser.add_argument("--schema", default="schema.yaml", help="Input YAML schema")
    parser.add_argument("--out-sql", default="schema.sql", help="Output SQL file")
    parser.add_argument("--version", type=float, default=None, help="Target PostgreSQL version")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    schema, options = load_schema_file(Path(args.schema))
    version = args.version if args.version is not None else options.version

    out_sql = Path(args.out_sql)
    write_text(out_sql, generate_sql(schema, version))
    print(f"Generated {out_sql}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
