"""Generate a Python data access layer (entities, criteria, joins, repositories) from a schema model."""

from __future__ import annotations

import dataclasses
import enum
from typing import Iterable

from classify_constraints import name_of, partition, working_constraints
from naming import constant, public, snake
from resolve_relationships import (
    Cardinality,
    EntityField,
    entity_fields,
    join_name,
    joinable_relationships,
)
from schema_model import (
    Column,
    ConfigurationError,
    ConstraintType,
    CustomType,
    Event,
    Mode,
    Schema,
    StructuralError,
    Table,
)

BASELINE_IMPORTS = ("dataclasses", "datetime", "decimal", "enum", "typing", "uuid")
DEFAULT_PACKAGE = "main"

# Attributes every generated criteria class reserves for tree links.
CRITERIA_RESERVED = ("operator", "child", "sibling", "parent")

# Methods every generated iterator class defines.
ITERATOR_RESERVED = ("next", "close", "err", "columns", "ent")


class Components(enum.IntFlag):
    INSERT = 1 << 0
    FIND = 1 << 1
    UPDATE = 1 << 2
    UPSERT = 1 << 3
    COUNT = 1 << 4
    DELETE = 1 << 5
    HELPERS = 1 << 6

    REPOSITORY = INSERT | FIND | UPDATE | UPSERT | COUNT | DELETE
    ALL = REPOSITORY | HELPERS


def parse_components(value: str | Iterable[str]) -> Components:
    """Parse ``"all"``, ``"insert,find"`` or a list of component names."""
    names = value.split(",") if isinstance(value, str) else list(value)
    out = Components(0)
    for name in names:
        key = name.strip().upper()
        if not key:
            continue
        try:
            out |= Components[key]
        except KeyError:
            raise ConfigurationError(f"unknown component: {name!r}") from None
    return out


@dataclasses.dataclass
class GeneratorOptions:
    version: float = 0.0
    package: str = ""
    imports: list[str] = dataclasses.field(default_factory=list)
    components: Components = Components.ALL
    plugins: list = dataclasses.field(default_factory=list)

    def has(self, *components: Components) -> bool:
        return any(self.components & c for c in components)


@dataclasses.dataclass(frozen=True)
class TableNames:
    table: Table

    @property
    def base(self) -> str:
        return public(self.table.name)

    @property
    def func(self) -> str:
        return snake(self.table.name)

    @property
    def entity(self) -> str:
        return f"{self.base}Entity"

    @property
    def criteria(self) -> str:
        return f"{self.base}Criteria"

    @property
    def join(self) -> str:
        return f"{self.base}Join"

    @property
    def find_expr(self) -> str:
        return f"{self.base}FindExpr"

    @property
    def count_expr(self) -> str:
        return f"{self.base}CountExpr"

    @property
    def patch(self) -> str:
        return f"{self.base}Patch"

    @property
    def iterator(self) -> str:
        return f"{self.base}Iterator"

    @property
    def repository(self) -> str:
        return f"{self.base}RepositoryBase"

    @property
    def table_const(self) -> str:
        return constant("table", self.table.name)

    @property
    def columns_const(self) -> str:
        return constant("table", self.table.name, "columns")

    def column_const(self, col: Column) -> str:
        return constant("table", self.table.name, "column", col.name)

    @property
    def where_clause(self) -> str:
        return snake(self.table.name, "criteria", "where", "clause")


def column_type(col: Column, mode: Mode, opts: GeneratorOptions) -> str | None:
    for plugin in opts.plugins:
        hook = getattr(plugin, "property_type", None)
        if hook is None:
            continue
        override = hook(col, mode)
        if override:
            return override
    return col.type.type_of(mode)


def entity_mode(col: Column) -> Mode:
    return Mode.MANDATORY if col.not_null or col.primary_key else Mode.OPTIONAL


def indent(lines: Iterable[str], level: int = 1) -> list[str]:
    pad = "    " * level
    return [pad + line if line else "" for line in lines]


def block(lines: list[str]) -> str:
    return "\n".join(lines) + "\n"


def render_package(package: str) -> str:
    pkg = package or DEFAULT_PACKAGE
    return block([f'"""Package {pkg}: data access layer generated by schemagen. DO NOT EDIT."""'])


def collect_imports(schema: Schema, fixed: Iterable[str] = ()) -> list[str]:
    """Import identifiers in emission order; duplicates are left for the toolchain."""
    imports = list(BASELINE_IMPORTS)
    imports.extend(fixed)
    for t in schema.tables:
        for c in t.columns:
            if isinstance(c.type, CustomType):
                for mode in (Mode.MANDATORY, Mode.OPTIONAL, Mode.CRITERIA):
                    py = c.type.py_type(mode)
                    if py is not None and py.module:
                        imports.append(py.module)
    return imports


def render_imports(schema: Schema, fixed: Iterable[str] = ()) -> str:
    lines = ["from __future__ import annotations", ""]
    lines.extend(f"import {imp}" for imp in collect_imports(schema, fixed))
    return block(lines)


def render_statics(opts: GeneratorOptions) -> str:
    lines = [
        "class Prop:",
        '    """Scan target that assigns a row value to an entity attribute."""',
        "",
        '    __slots__ = ("obj", "attr")',
        "",
        "    def __init__(self, obj, attr):",
        "        self.obj = obj",
        "        self.attr = attr",
        "",
        "    def set(self, value):",
        "        if self.obj is not None:",
        "            setattr(self.obj, self.attr, value)",
        "",
        "",
        "def scan_row(row, props):",
        "    if len(row) != len(props):",
        '        raise ValueError("scan: expected %d values, got %d" % (len(props), len(row)))',
        "    for prop, value in zip(props, row):",
        "        prop.set(value)",
    ]
    if opts.has(Components.REPOSITORY):
        lines += [
            "",
            "",
            "LogFunc = typing.Callable[[str, str, typing.Sequence[typing.Any]], None]",
        ]
    if opts.has(Components.FIND, Components.COUNT, Components.HELPERS):
        lines += [
            "",
            "",
            "class Rows(typing.Protocol):",
            "    description: typing.Any",
            "",
            "    def fetchone(self) -> typing.Any: ...",
            "",
            "    def close(self) -> None: ...",
        ]
    if opts.has(Components.FIND, Components.COUNT):
        lines += [
            "",
            "",
            "class JoinType(enum.Enum):",
            '    DEFAULT = ""',
            '    INNER = "INNER JOIN"',
            '    LEFT = "LEFT JOIN"',
            '    RIGHT = "RIGHT JOIN"',
            '    FULL = "FULL JOIN"',
            "",
            "    def clause(self):",
            '        return self.value or "JOIN"',
            "",
            "",
            "@dataclasses.dataclass",
            "class RowOrder:",
            "    name: str",
            "    descending: bool = False",
        ]
    return block(lines)


def render_constraints(t: Table) -> str:
    lines: list[str] = []
    constraints = working_constraints(t)
    partition(constraints)
    for c in constraints:
        cols = "_".join(col.name for col in c.primary_columns)
        if c.type is ConstraintType.PRIMARY_KEY:
            name = constant("table", t.name, "constraint", "primary", "key")
        else:
            name = constant("table", t.name, "constraint", cols, c.type.name)
        lines.append(f"{name} = {name_of(c)!r}")
    if not lines:
        return ""
    return block(lines)


def render_columns(t: Table) -> str:
    n = TableNames(t)
    lines = [f"{n.table_const} = {t.full_name()!r}"]
    for c in t.columns:
        lines.append(f"{n.column_const(c)} = {c.name!r}")
    lines += ["", f"{n.columns_const} = ["]
    for c in t.columns:
        if not c.dynamic:
            lines.append(f"    {n.column_const(c)},")
    lines.append("]")
    return block(lines)


def render_entity(t: Table, fields: list[EntityField], opts: GeneratorOptions) -> str:
    n = TableNames(t)
    lines = ["@dataclasses.dataclass", f"class {n.entity}:"]
    body: list[str] = []
    for f in fields:
        if f.column is not None:
            typ = column_type(f.column, entity_mode(f.column), opts)
            if typ is None:
                continue
            if f.read_only:
                body.append(f"# {f.name} is read only")
            body.append(f"{f.name}: {typ} = None")
        elif f.cardinality is Cardinality.COLLECTION:
            body.append(
                f"{f.name}: typing.List[{TableNames(f.related).entity}] = dataclasses.field(default_factory=list)"
            )
        else:
            body.append(f"{f.name}: typing.Optional[{TableNames(f.related).entity}] = None")

    body += ["", "def prop(self, cn):"]
    for f in fields:
        if f.column is None:
            continue
        attr = f.name if column_type(f.column, entity_mode(f.column), opts) is not None else None
        body.append(f"    if cn == {n.column_const(f.column)}:")
        if attr is None:
            body.append("        return Prop(None, None)")
        else:
            body.append(f"        return Prop(self, {attr!r})")
    body += [
        '    raise ValueError("unexpected column provided: %s" % cn)',
        "",
        "def props(self, *cns):",
        "    if not cns:",
        f"        cns = {n.columns_const}",
        "    return [self.prop(cn) for cn in cns]",
    ]
    lines += indent(body)
    return block(lines)


def render_scan_rows(t: Table) -> str:
    n = TableNames(t)
    return block(
        [
            f"def scan_{n.func}_rows(rows):",
            f'    """Materialize every remaining row of ``rows`` into {n.entity} instances."""',
            "    entities = []",
            "    row = rows.fetchone()",
            "    while row is not None:",
            f"        ent = {n.entity}()",
            "        scan_row(row, ent.props())",
            "        entities.append(ent)",
            "        row = rows.fetchone()",
            "    return entities",
        ]
    )


def render_iterator(t: Table) -> str:
    n = TableNames(t)
    if n.func in ITERATOR_RESERVED:
        raise ConfigurationError(f"table {t.name}: name clashes with a generated iterator method")
    lines = [
        f"class {n.iterator}:",
        f'    """{n.iterator} is not thread safe."""',
        "",
        "    def __init__(self, rows, expr=None):",
        "        self._rows = rows",
        f"        self._expr = expr if expr is not None else {n.find_expr}()",
        "        self._cols = None",
        "        self._row = None",
        "        self._error = None",
        "",
        "    def __iter__(self):",
        "        while self.next():",
        f"            yield self.{n.func}()",
        "        if self._error is not None:",
        "            raise self._error",
        "",
        "    def next(self):",
        "        try:",
        "            self._row = self._rows.fetchone()",
        "        except Exception as exc:",
        "            self._error = exc",
        "            self._row = None",
        "        return self._row is not None",
        "",
        "    def close(self):",
        "        self._rows.close()",
        "",
        "    def err(self):",
        "        return self._error",
        "",
        "    def columns(self):",
        '        """Column names of the result set, cached after the first call."""',
        "        if self._cols is None:",
        "            self._cols = [d[0] for d in self._rows.description]",
        "        return self._cols",
        "",
        "    def ent(self):",
        f"        return self.{n.func}()",
        "",
        f"    def {n.func}(self):",
        f"        ent = {n.entity}()",
        f"        own = len(self._expr.columns or {n.columns_const})",
        "        props = ent.props(*self.columns()[:own])",
    ]
    lines += indent(scan_joinable_relationships(t, "self._expr"), 2)
    lines += [
        "        scan_row(self._row, props)",
        "        return ent",
    ]
    return block(lines)


def scan_joinable_relationships(t: Table, sel: str) -> list[str]:
    lines: list[str] = []
    for r in joinable_relationships(t):
        # Owned single-valued relationships share their name with the join field.
        name = join_name(r)
        jn = f"{sel}.join_{name}"
        lines += [
            f"if {jn} is not None and {jn}.fetch:",
            f"    ent.{name} = {TableNames(r.inversed_table).entity}()",
            f"    props.extend(ent.{name}.props())",
        ]
    return lines


def criteria_columns(t: Table, opts: GeneratorOptions) -> list[tuple[Column, str]]:
    out: list[tuple[Column, str]] = []
    for c in t.columns:
        typ = column_type(c, Mode.CRITERIA, opts)
        if typ is None:
            continue
        if snake(c.name) in CRITERIA_RESERVED:
            raise ConfigurationError(f"table {t.name}: column {c.name!r} clashes with a criteria tree attribute")
        out.append((c, typ))
    return out


def render_criteria(t: Table, opts: GeneratorOptions) -> str:
    n = TableNames(t)
    lines = ["@dataclasses.dataclass", f"class {n.criteria}:"]
    for c, typ in criteria_columns(t, opts):
        lines.append(f"    {snake(c.name)}: {typ} = None")
    lines += [
        '    operator: str = ""',
        f"    child: typing.Optional[{n.criteria}] = dataclasses.field(default=None, repr=False, compare=False)",
        f"    sibling: typing.Optional[{n.criteria}] = dataclasses.field(default=None, repr=False, compare=False)",
        f"    parent: typing.Optional[{n.criteria}] = dataclasses.field(default=None, repr=False, compare=False)",
        "",
        "    def operands(self):",
        "        node = self.child",
        "        while node is not None:",
        "            yield node",
        "            node = node.sibling",
    ]
    return block(lines)


def render_operand(t: Table) -> str:
    n = TableNames(t)
    return block(
        [
            f"def {n.func}_operand(operator, *operands):",
            "    if not operands:",
            f"        return {n.criteria}(operator=operator)",
            "",
            f"    parent = {n.criteria}(operator=operator, child=operands[0])",
            "    for i, operand in enumerate(operands):",
            "        if i < len(operands) - 1:",
            "            operand.sibling = operands[i + 1]",
            "        operand.parent = parent",
            "    return parent",
            "",
            "",
            f"def {n.func}_or(*operands):",
            f'    return {n.func}_operand("OR", *operands)',
            "",
            "",
            f"def {n.func}_and(*operands):",
            f'    return {n.func}_operand("AND", *operands)',
        ]
    )


def render_where_clause(t: Table, opts: GeneratorOptions) -> str:
    n = TableNames(t)
    lines = [
        f'def {n.where_clause}(c, alias=""):',
        '    """Render criteria tree ``c`` into an SQL boolean expression and its arguments."""',
        "    if c is None:",
        '        return "", []',
        "    if c.child is None:",
        '        prefix = alias + "." if alias else ""',
        "        parts = []",
        "        args = []",
    ]
    for c, _ in criteria_columns(t, opts):
        attr = snake(c.name)
        lines += [
            f"        if c.{attr} is not None:",
            f'            parts.append(prefix + {n.column_const(c)} + " = %s")',
            f"            args.append(c.{attr})",
        ]
    lines += [
        '        return " AND ".join(parts), args',
        "",
        "    parts = []",
        "    args = []",
        "    for node in c.operands():",
        f"        sql, node_args = {n.where_clause}(node, alias)",
        "        if sql:",
        "            parts.append(sql)",
        "            args.extend(node_args)",
        "    if not parts:",
        '        return "", []',
        '    return "(" + (" " + c.operator + " ").join(parts) + ")", args',
    ]
    return block(lines)


def join_fields(t: Table) -> list[str]:
    return [
        f"join_{join_name(r)}: typing.Optional[{TableNames(r.inversed_table).join}] = None"
        for r in joinable_relationships(t)
    ]


def render_find_expr(t: Table) -> str:
    n = TableNames(t)
    lines = [
        "@dataclasses.dataclass",
        f"class {n.find_expr}:",
        f"    where: typing.Optional[{n.criteria}] = None",
        "    offset: int = 0",
        "    limit: int = 0",
        "    columns: typing.List[str] = dataclasses.field(default_factory=list)",
        "    order_by: typing.List[RowOrder] = dataclasses.field(default_factory=list)",
    ]
    lines += indent(join_fields(t))
    return block(lines)


def render_count_expr(t: Table) -> str:
    n = TableNames(t)
    lines = [
        "@dataclasses.dataclass",
        f"class {n.count_expr}:",
        f"    where: typing.Optional[{n.criteria}] = None",
    ]
    lines += indent(join_fields(t))
    return block(lines)


def render_join(t: Table) -> str:
    n = TableNames(t)
    lines = [
        "@dataclasses.dataclass",
        f"class {n.join}:",
        f"    on: typing.Optional[{n.criteria}] = None",
        f"    where: typing.Optional[{n.criteria}] = None",
        "    fetch: bool = False",
        "    kind: JoinType = JoinType.INNER",
    ]
    lines += indent(join_fields(t))
    return block(lines)


def patch_columns(t: Table, opts: GeneratorOptions) -> list[tuple[Column, str]]:
    out: list[tuple[Column, str]] = []
    for c in t.columns:
        if c.primary_key or c.dynamic:
            continue
        typ = column_type(c, Mode.OPTIONAL, opts)
        if typ is not None:
            out.append((c, typ))
    return out


def render_patch(t: Table, opts: GeneratorOptions) -> str:
    n = TableNames(t)
    lines = ["@dataclasses.dataclass", f"class {n.patch}:"]
    fields = patch_columns(t, opts)
    for c, typ in fields:
        lines.append(f"    {snake(c.name)}: {typ} = None")
    if not fields:
        lines.append("    pass")
    return block(lines)


def key_clause(cols: list[Column]) -> str:
    return " AND ".join(f"{c.name} = %s" for c in cols)


def key_params(cols: list[Column], prefix: str = "pk") -> list[str]:
    return [snake(prefix, c.name) for c in cols]


def unique_constraints(t: Table) -> list[list[Column]]:
    return [c.primary_columns for c in t.constraints if c.type is ConstraintType.UNIQUE and c.primary_columns]


def render_repository(t: Table, opts: GeneratorOptions) -> str:
    n = TableNames(t)
    pk = t.primary_key_columns()
    lines = [
        f"class {n.repository}:",
        f"    def __init__(self, db, table={n.table_const}, columns=None, log=None):",
        "        self.table = table",
        f"        self.columns = list(columns) if columns is not None else list({n.columns_const})",
        "        self.db = db",
        "        self.log = log",
        "",
        "    def _execute(self, name, query, args):",
        "        if self.log is not None:",
        "            self.log(name, query, args)",
        "        cur = self.db.cursor()",
        "        cur.execute(query, args)",
        "        return cur",
        "",
        "    def _fetch_one(self, cur):",
        "        row = cur.fetchone()",
        "        if row is None:",
        "            return None",
        f"        ent = {n.entity}()",
        "        scan_row(row, ent.props(*self.columns))",
        "        return ent",
    ]
    body: list[str] = []
    if opts.has(Components.INSERT, Components.UPSERT):
        body += repository_insert(t, opts)
    if opts.has(Components.FIND, Components.COUNT):
        body += repository_query(t)
    if opts.has(Components.FIND):
        body += repository_find(t, pk)
    if opts.has(Components.UPDATE, Components.UPSERT):
        body += repository_patch_sets(t, opts)
    if opts.has(Components.UPDATE):
        body += repository_update(t, pk)
    if opts.has(Components.UPSERT):
        body += repository_upsert(t)
    if opts.has(Components.COUNT):
        body += repository_count(t)
    if opts.has(Components.DELETE) and pk:
        body += [
            "",
            f"def delete_one_by_primary_key(self, {', '.join(key_params(pk))}):",
            f'    query = "DELETE FROM " + self.table + " WHERE " + {key_clause(pk)!r}',
            f'    cur = self._execute("delete by primary key", query, [{", ".join(key_params(pk))}])',
            "    return cur.rowcount",
        ]
    lines += indent(body)
    return block(lines)


def repository_insert(t: Table, opts: GeneratorOptions) -> list[str]:
    n = TableNames(t)
    lines = [
        "",
        "def insert_query(self, e, read=True):",
        "    columns = []",
        "    values = []",
    ]
    for c in t.columns:
        if c.dynamic or c.read_only:
            continue
        if column_type(c, entity_mode(c), opts) is None:
            continue
        attr = snake(c.name)
        lines += [
            f"    if e.{attr} is not None:",
            f"        columns.append({n.column_const(c)})",
            f"        values.append(e.{attr})",
        ]
    lines += [
        "    if columns:",
        "        query = (",
        '            "INSERT INTO " + self.table + " (" + ", ".join(columns) + ") VALUES ("',
        '            + ", ".join(["%s"] * len(values)) + ")"',
        "        )",
        "    else:",
        '        query = "INSERT INTO " + self.table + " DEFAULT VALUES"',
        "    if read:",
        '        query += " RETURNING " + ", ".join(self.columns)',
        "    return query, values",
    ]
    if opts.has(Components.INSERT):
        lines += [
            "",
            "def insert(self, e):",
            "    query, args = self.insert_query(e)",
            '    cur = self._execute("insert", query, args)',
            "    row = cur.fetchone()",
            "    scan_row(row, e.props(*self.columns))",
            "    return e",
        ]
    return lines


def repository_query(t: Table) -> list[str]:
    lines = [
        "",
        "def _query(self, expr, count=False):",
        "    if count:",
        '        selected = ["COUNT(*)"]',
        "    else:",
        '        selected = ["t0." + c for c in (expr.columns or self.columns)]',
        "    joins = []",
        "    args = []",
        "    where_parts = []",
        "    where_args = []",
        f'    sql, node_args = {TableNames(t).where_clause}(expr.where, "t0")',
        "    if sql:",
        "        where_parts.append(sql)",
        "        where_args.extend(node_args)",
    ]
    for idx, r in enumerate(joinable_relationships(t), start=1):
        if not r.owner_columns or len(r.owner_columns) != len(r.inversed_columns):
            raise ConfigurationError(
                f"table {t.name}: joinable relationship to {r.inversed_table.name} requires matching owner and inversed columns"
            )
        alias = f"t{idx}"
        rn = TableNames(r.inversed_table)
        on = " AND ".join(f"t0.{oc.name} = {alias}.{ic.name}" for oc, ic in zip(r.owner_columns, r.inversed_columns))
        lines += [
            f"    je = expr.join_{join_name(r)}",
            "    if je is not None:",
            "        if je.fetch and not count:",
            f'            selected.extend({alias + "."!r} + c for c in {rn.columns_const})',
            f"        on = {on!r}",
            f"        sql, node_args = {rn.where_clause}(je.on, {alias!r})",
            "        if sql:",
            '            on += " AND " + sql',
            "            args.extend(node_args)",
            f'        joins.append(" " + je.kind.clause() + " " + {rn.table_const} + {" AS " + alias + " ON "!r} + on)',
            f"        sql, node_args = {rn.where_clause}(je.where, {alias!r})",
            "        if sql:",
            "            where_parts.append(sql)",
            "            where_args.extend(node_args)",
        ]
    lines += [
        '    query = "SELECT " + ", ".join(selected) + " FROM " + self.table + " AS t0" + "".join(joins)',
        "    args.extend(where_args)",
        "    if where_parts:",
        '        query += " WHERE " + " AND ".join(where_parts)',
        "    if count:",
        "        return query, args",
        "    if expr.order_by:",
        '        query += " ORDER BY " + ", ".join(',
        '            "t0." + o.name + (" DESC" if o.descending else "") for o in expr.order_by',
        "        )",
        "    if expr.offset > 0:",
        '        query += " OFFSET %s"',
        "        args.append(expr.offset)",
        "    if expr.limit > 0:",
        '        query += " LIMIT %s"',
        "        args.append(expr.limit)",
        "    return query, args",
    ]
    return lines


def repository_find(t: Table, pk: list[Column]) -> list[str]:
    n = TableNames(t)
    lines = [
        "",
        "def find_query(self, fe):",
        "    return self._query(fe)",
        "",
        "def find(self, fe=None):",
        "    return list(self.find_iter(fe))",
        "",
        "def find_iter(self, fe=None):",
        "    if fe is None:",
        f"        fe = {n.find_expr}()",
        "    if not fe.columns:",
        "        fe = dataclasses.replace(fe, columns=list(self.columns))",
        "    query, args = self.find_query(fe)",
        '    cur = self._execute("find", query, args)',
        f"    return {n.iterator}(cur, fe)",
        "",
        "def _find_one(self, name, where, args):",
        '    query = "SELECT " + ", ".join(self.columns) + " FROM " + self.table + " WHERE " + where',
        "    cur = self._execute(name, query, args)",
        "    return self._fetch_one(cur)",
    ]
    if pk:
        params = key_params(pk)
        lines += [
            "",
            f"def find_one_by_primary_key(self, {', '.join(params)}):",
            f'    return self._find_one("find by primary key", {key_clause(pk)!r}, [{", ".join(params)}])',
        ]
    for cols in unique_constraints(t):
        params = key_params(cols, "by")
        method = snake("find_one_by", *[c.name for c in cols])
        lines += [
            "",
            f"def {method}(self, {', '.join(params)}):",
            f"    return self._find_one({method!r}, {key_clause(cols)!r}, [{', '.join(params)}])",
        ]
    return lines


def repository_patch_sets(t: Table, opts: GeneratorOptions) -> list[str]:
    n = TableNames(t)
    lines = [
        "",
        "def _patch_sets(self, p):",
        "    sets = []",
        "    args = []",
    ]
    for c, _ in patch_columns(t, opts):
        attr = snake(c.name)
        lines += [
            f"    if p.{attr} is not None:",
            f'        sets.append({n.column_const(c)} + " = %s")',
            f"        args.append(p.{attr})",
        ]
        default = c.default_on(Event.UPDATE)
        if default:
            lines += [
                "    else:",
                f"        sets.append({n.column_const(c)} + {' = ' + default!r})",
            ]
    lines.append("    return sets, args")
    return lines


def repository_update(t: Table, pk: list[Column]) -> list[str]:
    lines = [
        "",
        "def _update_query(self, where, where_args, p):",
        "    sets, args = self._patch_sets(p)",
        "    if not sets:",
        f'        raise ValueError("{t.name} update failure, nothing to update")',
        "    query = (",
        '        "UPDATE " + self.table + " SET " + ", ".join(sets) + " WHERE " + where',
        '        + " RETURNING " + ", ".join(self.columns)',
        "    )",
        "    return query, args + list(where_args)",
    ]
    keys: list[tuple[str, list[Column]]] = []
    if pk:
        keys.append(("primary_key", pk))
    for cols in unique_constraints(t):
        keys.append(("_".join(snake(c.name) for c in cols), cols))
    for suffix, cols in keys:
        params = key_params(cols) if cols is pk else key_params(cols, "by")
        method = snake("update_one_by", suffix)
        lines += [
            "",
            f"def {method}_query(self, {', '.join(params)}, p):",
            f"    return self._update_query({key_clause(cols)!r}, [{', '.join(params)}], p)",
            "",
            f"def {method}(self, {', '.join(params)}, p):",
            f"    query, args = self.{method}_query({', '.join(params)}, p)",
            f"    cur = self._execute({method!r}, query, args)",
            "    return self._fetch_one(cur)",
        ]
    return lines


def repository_upsert(t: Table) -> list[str]:
    return [
        "",
        "def upsert_query(self, e, p, *inf):",
        "    query, args = self.insert_query(e, read=False)",
        "    sets, set_args = self._patch_sets(p)",
        '    query += " ON CONFLICT "',
        "    if inf:",
        '        query += "(" + ", ".join(inf) + ") "',
        "    if sets:",
        "        if not inf:",
        f'            raise ValueError("{t.name} upsert failure, conflict target required to update")',
        '        query += "DO UPDATE SET " + ", ".join(sets)',
        "        args = args + set_args",
        "    else:",
        '        query += "DO NOTHING"',
        '    query += " RETURNING " + ", ".join(self.columns)',
        "    return query, args",
        "",
        "def upsert(self, e, p, *inf):",
        "    query, args = self.upsert_query(e, p, *inf)",
        '    cur = self._execute("upsert", query, args)',
        "    return self._fetch_one(cur)",
    ]


def repository_count(t: Table) -> list[str]:
    n = TableNames(t)
    return [
        "",
        "def count(self, c=None):",
        "    if c is None:",
        f"        c = {n.count_expr}()",
        "    query, args = self._query(c, count=True)",
        '    cur = self._execute("count", query, args)',
        "    return cur.fetchone()[0]",
    ]


def render_table(t: Table, opts: GeneratorOptions) -> list[str]:
    if not t.name:
        raise StructuralError("missing table name")
    if not t.columns:
        raise StructuralError(f"table {t.name} has no columns")

    fields = entity_fields(t)
    blocks = [render_constraints(t), render_columns(t), render_entity(t, fields, opts)]
    if opts.has(Components.HELPERS):
        blocks.append(render_scan_rows(t))
    if opts.has(Components.FIND, Components.COUNT):
        blocks += [
            render_iterator(t),
            render_criteria(t, opts),
            render_operand(t),
            render_where_clause(t, opts),
            render_find_expr(t),
            render_join(t),
        ]
    if opts.has(Components.COUNT):
        blocks.append(render_count_expr(t))
    if opts.has(Components.UPDATE, Components.UPSERT):
        blocks.append(render_patch(t, opts))
    if opts.has(Components.REPOSITORY):
        blocks.append(render_repository(t, opts))
    return [b for b in blocks if b]


def render_plugin_statics(schema: Schema, opts: GeneratorOptions) -> list[str]:
    out: list[str] = []
    for plugin in opts.plugins:
        hook = getattr(plugin, "static", None)
        if hook is None:
            continue
        text = hook(schema)
        if text:
            out.append(text.rstrip("\n") + "\n")
    return out


def generate_code(schema: Schema, opts: GeneratorOptions | None = None) -> str:
    """Return unformatted Python source for ``schema``; blocks are separated by two blank lines."""
    opts = opts or GeneratorOptions()
    blocks = [render_package(opts.package), render_imports(schema, opts.imports), render_statics(opts)]
    for t in schema.tables:
        blocks.extend(render_table(t, opts))
    blocks.extend(render_plugin_statics(schema, opts))
    return "\n\n".join(blocks)
