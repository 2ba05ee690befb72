"""Build a schema model and generator options from a declarative YAML document."""

from __future__ import annotations

from pathlib import Path

try:
    import yaml
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required. Install with: pip install pyyaml") from exc

from generate_code import Components, GeneratorOptions, parse_components
from schema_model import (
    BaseType,
    ClassificationError,
    Column,
    ConfigurationError,
    Constraint,
    ConstraintType,
    CustomType,
    Event,
    Function,
    FunctionArgument,
    FunctionBehaviour,
    PyType,
    ReferentialAction,
    RelationshipType,
    Schema,
    StructuralError,
    Table,
    relate,
    type_from_sql,
)

CONSTRAINT_TYPES: dict[str, ConstraintType] = {
    "primary_key": ConstraintType.PRIMARY_KEY,
    "unique": ConstraintType.UNIQUE,
    "foreign_key": ConstraintType.FOREIGN_KEY,
    "check": ConstraintType.CHECK,
    "index": ConstraintType.INDEX,
    "unique_index": ConstraintType.UNIQUE_INDEX,
    "exclusion": ConstraintType.EXCLUSION,
}

RELATIONSHIP_TYPES: dict[str, RelationshipType] = {t.value: t for t in RelationshipType}

ACTIONS: dict[str, ReferentialAction] = {
    "cascade": ReferentialAction.CASCADE,
    "restrict": ReferentialAction.RESTRICT,
    "set_null": ReferentialAction.SET_NULL,
    "set_default": ReferentialAction.SET_DEFAULT,
}

BEHAVIOURS: dict[str, FunctionBehaviour] = {
    "": FunctionBehaviour.UNSPECIFIED,
    "volatile": FunctionBehaviour.VOLATILE,
    "immutable": FunctionBehaviour.IMMUTABLE,
    "stable": FunctionBehaviour.STABLE,
}


def lookup(mapping: dict, key: str | None, what: str):
    norm = (key or "").strip().lower().replace("-", "_").replace(" ", "_")
    if norm not in mapping:
        raise ClassificationError(f"unknown {what}: {key!r}")
    return mapping[norm]


def parse_py_type(spec: dict | str | None) -> PyType | None:
    if spec is None:
        return None
    if isinstance(spec, str):
        head = spec.split("[", 1)[0]
        module = head.rsplit(".", 1)[0] if "." in head else ""
        return PyType(name=spec, module=module)
    return PyType(name=spec["name"], module=spec.get("module", ""))


def parse_custom_types(cfg: dict) -> dict[str, CustomType]:
    types: dict[str, CustomType] = {}
    for name, spec in (cfg or {}).items():
        mandatory = parse_py_type(spec.get("mandatory"))
        types[name] = CustomType(
            sql=spec["sql"],
            mandatory=mandatory,
            optional=parse_py_type(spec.get("optional")) or mandatory,
            criteria=parse_py_type(spec.get("criteria")),
        )
    return types


def resolve_type(name: str, custom_types: dict[str, CustomType]) -> BaseType | CustomType:
    if name in custom_types:
        return custom_types[name]
    return type_from_sql(name)


def pick_columns(table: Table, names: list[str] | None, context: str) -> list[Column]:
    cols: list[Column] = []
    for name in names or []:
        col = table.column(name)
        if col is None:
            raise ConfigurationError(f"{context}: unknown column {table.name}.{name}")
        cols.append(col)
    return cols


def parse_column(spec: dict, custom_types: dict[str, CustomType]) -> Column:
    if not spec.get("name"):
        raise StructuralError("column without name")
    defaults: dict[Event, str] = {}
    raw_default = spec.get("default")
    if isinstance(raw_default, dict):
        for event, expr in raw_default.items():
            defaults[lookup({e.value: e for e in Event}, event, "default event")] = str(expr)
    elif raw_default is not None:
        defaults[Event.INSERT] = str(raw_default)

    return Column(
        name=spec["name"],
        type=resolve_type(str(spec.get("type", "TEXT")), custom_types),
        not_null=bool(spec.get("not_null", False)),
        collate=spec.get("collate", ""),
        defaults=defaults,
        primary_key=bool(spec.get("primary_key", False)),
        unique=bool(spec.get("unique", False)),
        dynamic=bool(spec.get("dynamic", False)),
        read_only=bool(spec.get("read_only", False)),
    )


def parse_table(spec: dict, custom_types: dict[str, CustomType]) -> Table:
    if not spec.get("name"):
        raise StructuralError("table without name")
    table = Table(
        name=spec["name"],
        temporary=bool(spec.get("temporary", False)),
        if_not_exists=bool(spec.get("if_not_exists", False)),
    )
    table.columns = [parse_column(c, custom_types) for c in spec.get("columns", [])]

    pk = [c for c in table.columns if c.primary_key]
    if pk:
        table.constraints.append(Constraint(type=ConstraintType.PRIMARY_KEY, primary_table=table, primary_columns=pk))
    for col in table.columns:
        if col.unique:
            table.constraints.append(Constraint(type=ConstraintType.UNIQUE, primary_table=table, primary_columns=[col]))

    for cspec in spec.get("constraints", []):
        ctype = lookup(CONSTRAINT_TYPES, cspec.get("type"), "constraint type")
        if ctype is ConstraintType.FOREIGN_KEY:
            raise ConfigurationError(f"table {table.name}: declare foreign keys as relationships")
        context = f"table {table.name}"
        cols = pick_columns(table, cspec.get("columns"), context)
        if ctype is ConstraintType.PRIMARY_KEY:
            for col in cols:
                col.primary_key = True
        table.constraints.append(
            Constraint(
                type=ctype,
                primary_table=table,
                primary_columns=cols,
                check=cspec.get("check", ""),
                where=cspec.get("where", ""),
                using=cspec.get("using", "gist"),
                operators=list(cspec.get("operators", [])),
            )
        )
    return table


def parse_relationships(schema: Schema, owner: Table, specs: list[dict]) -> None:
    for rspec in specs:
        rel_type = lookup(RELATIONSHIP_TYPES, rspec.get("type"), "relationship type")
        context = f"table {owner.name}: {rel_type.value} relationship"
        target = schema.table(rspec.get("table", ""))
        if target is None:
            raise ConfigurationError(f"{context}: unknown table {rspec.get('table')!r}")

        through = None
        if rspec.get("through"):
            through = schema.table(rspec["through"])
            if through is None:
                raise ConfigurationError(f"{context}: unknown through table {rspec['through']!r}")

        owner_columns = pick_columns(owner, rspec.get("columns"), context)
        if "references" in rspec:
            inversed_columns = pick_columns(target, rspec["references"], context)
        elif owner_columns:
            inversed_columns = target.primary_key_columns()
        else:
            inversed_columns = []

        relate(
            rel_type,
            owner,
            target,
            owner_columns=owner_columns,
            inversed_columns=inversed_columns,
            owner_name=rspec.get("owner_name", ""),
            inversed_name=rspec.get("inversed_name", ""),
            through=through,
            on_delete=lookup(ACTIONS, rspec["on_delete"], "referential action") if rspec.get("on_delete") else None,
            on_update=lookup(ACTIONS, rspec["on_update"], "referential action") if rspec.get("on_update") else None,
        )


def parse_function(spec: dict, custom_types: dict[str, CustomType]) -> Function:
    return Function(
        name=spec.get("name", ""),
        type=resolve_type(str(spec.get("returns", "VOID")), custom_types),
        body=spec.get("body", ""),
        args=[
            FunctionArgument(name=a["name"], type=resolve_type(str(a["type"]), custom_types))
            for a in spec.get("args", [])
        ],
        behaviour=lookup(BEHAVIOURS, spec.get("behaviour", ""), "function behaviour"),
    )


def parse_schema(doc: dict) -> Schema:
    custom_types = parse_custom_types(doc.get("custom_types", {}))
    spec = doc.get("schema", {})

    schema = Schema(name=spec.get("name", ""), if_not_exists=bool(spec.get("if_not_exists", False)))
    schema.functions = [parse_function(f, custom_types) for f in spec.get("functions", [])]

    # Tables first so that relationships may point forward.
    table_specs = spec.get("tables", [])
    for tspec in table_specs:
        schema.add_table(parse_table(tspec, custom_types))
    for tspec, table in zip(table_specs, schema.tables):
        parse_relationships(schema, table, tspec.get("relationships", []))
    return schema


def parse_options(cfg: dict | None) -> GeneratorOptions:
    cfg = cfg or {}
    components = cfg.get("components", "all")
    return GeneratorOptions(
        version=float(cfg.get("version", 0.0)),
        package=cfg.get("package", ""),
        imports=list(cfg.get("imports", [])),
        components=parse_components(components) if components else Components.ALL,
    )


def load_schema_text(text: str) -> tuple[Schema, GeneratorOptions]:
    doc = yaml.safe_load(text) or {}
    return parse_schema(doc), parse_options(doc.get("generator"))


def load_schema_file(path: Path) -> tuple[Schema, GeneratorOptions]:
    return load_schema_text(path.read_text(encoding="utf-8"))
