"""In-memory relational schema model consumed by the SQL and Python generators."""

from __future__ import annotations

import dataclasses
import enum


class GenerationError(ValueError):
    """Base class for every error that aborts a generation run."""


class StructuralError(GenerationError):
    pass


class ReferentialError(GenerationError):
    pass


class ClassificationError(GenerationError):
    pass


class ConfigurationError(GenerationError):
    pass


class ConstraintType(enum.Enum):
    PRIMARY_KEY = "pkey"
    UNIQUE = "key"
    FOREIGN_KEY = "fkey"
    CHECK = "check"
    INDEX = "index"
    UNIQUE_INDEX = "uindex"
    EXCLUSION = "excl"


class RelationshipType(enum.Enum):
    ONE_TO_ONE = "one_to_one"
    ONE_TO_MANY = "one_to_many"
    MANY_TO_ONE = "many_to_one"
    MANY_TO_MANY = "many_to_many"


class ReferentialAction(enum.Enum):
    CASCADE = "CASCADE"
    RESTRICT = "RESTRICT"
    SET_NULL = "SET NULL"
    SET_DEFAULT = "SET DEFAULT"


class FunctionBehaviour(enum.Enum):
    UNSPECIFIED = ""
    VOLATILE = "VOLATILE"
    IMMUTABLE = "IMMUTABLE"
    STABLE = "STABLE"


class Event(enum.Enum):
    INSERT = "insert"
    UPDATE = "update"


class Mode(enum.Enum):
    MANDATORY = "mandatory"
    OPTIONAL = "optional"
    CRITERIA = "criteria"


@dataclasses.dataclass(frozen=True)
class PyType:
    name: str
    module: str = ""


@dataclasses.dataclass(frozen=True)
class BaseType:
    sql: str
    python: PyType | None = None
    criteria: bool = True

    def type_of(self, mode: Mode) -> str | None:
        if self.python is None:
            return None
        if mode is Mode.MANDATORY:
            return self.python.name
        if mode is Mode.CRITERIA and not self.criteria:
            return None
        return f"typing.Optional[{self.python.name}]"

    def __str__(self) -> str:
        return self.sql


@dataclasses.dataclass(frozen=True)
class CustomType:
    """SQL type whose Python representation is supplied per mode by the user."""

    sql: str
    mandatory: PyType | None = None
    optional: PyType | None = None
    criteria: PyType | None = None

    def py_type(self, mode: Mode) -> PyType | None:
        return {
            Mode.MANDATORY: self.mandatory,
            Mode.OPTIONAL: self.optional,
            Mode.CRITERIA: self.criteria,
        }[mode]

    def type_of(self, mode: Mode) -> str | None:
        py = self.py_type(mode)
        return py.name if py is not None else None

    def __str__(self) -> str:
        return self.sql


def _py(name: str, module: str = "") -> PyType:
    return PyType(name=name, module=module)


BUILTIN_TYPES: dict[str, BaseType] = {
    "BOOL": BaseType("BOOL", _py("bool")),
    "BOOLEAN": BaseType("BOOLEAN", _py("bool")),
    "SMALLINT": BaseType("SMALLINT", _py("int")),
    "INTEGER": BaseType("INTEGER", _py("int")),
    "INT": BaseType("INT", _py("int")),
    "BIGINT": BaseType("BIGINT", _py("int")),
    "SERIAL": BaseType("SERIAL", _py("int")),
    "BIGSERIAL": BaseType("BIGSERIAL", _py("int")),
    "REAL": BaseType("REAL", _py("float")),
    "DOUBLE PRECISION": BaseType("DOUBLE PRECISION", _py("float")),
    "NUMERIC": BaseType("NUMERIC", _py("decimal.Decimal", "decimal")),
    "DECIMAL": BaseType("DECIMAL", _py("decimal.Decimal", "decimal")),
    "TEXT": BaseType("TEXT", _py("str")),
    "VARCHAR": BaseType("VARCHAR", _py("str")),
    "CHAR": BaseType("CHAR", _py("str")),
    "CITEXT": BaseType("CITEXT", _py("str")),
    "BYTEA": BaseType("BYTEA", _py("bytes")),
    "UUID": BaseType("UUID", _py("uuid.UUID", "uuid")),
    "DATE": BaseType("DATE", _py("datetime.date", "datetime")),
    "TIME": BaseType("TIME", _py("datetime.time", "datetime")),
    "TIMESTAMP": BaseType("TIMESTAMP", _py("datetime.datetime", "datetime")),
    "TIMESTAMPTZ": BaseType("TIMESTAMPTZ", _py("datetime.datetime", "datetime")),
    "INTERVAL": BaseType("INTERVAL", _py("datetime.timedelta", "datetime")),
    "JSON": BaseType("JSON", _py("typing.Any"), criteria=False),
    "JSONB": BaseType("JSONB", _py("typing.Any"), criteria=False),
    "TSVECTOR": BaseType("TSVECTOR", None),
}


def type_from_sql(sql: str) -> BaseType:
    """Map an SQL type literal such as ``VARCHAR(255)`` or ``TEXT[]`` to a BaseType.

    Arrays become lists of the element type and are not usable as criteria.
    Unknown names keep their SQL text but get no Python representation.
    """
    text = sql.strip()
    if text.endswith("[]"):
        element = type_from_sql(text[:-2])
        if element.python is None:
            return BaseType(text)
        return BaseType(text, _py(f"typing.List[{element.python.name}]"), criteria=False)

    key = text.split("(", 1)[0].strip().upper()
    known = BUILTIN_TYPES.get(key)
    if known is None:
        return BaseType(text)
    return dataclasses.replace(known, sql=text)


@dataclasses.dataclass
class Column:
    name: str
    type: BaseType | CustomType
    not_null: bool = False
    collate: str = ""
    defaults: dict[Event, str] = dataclasses.field(default_factory=dict)
    primary_key: bool = False
    unique: bool = False
    dynamic: bool = False
    read_only: bool = False

    def default_on(self, event: Event) -> str | None:
        return self.defaults.get(event)


@dataclasses.dataclass(eq=False)
class Constraint:
    type: ConstraintType
    primary_table: Table | None = dataclasses.field(default=None, repr=False)
    primary_columns: list[Column] = dataclasses.field(default_factory=list)
    table: Table | None = dataclasses.field(default=None, repr=False)
    columns: list[Column] = dataclasses.field(default_factory=list)
    check: str = ""
    where: str = ""
    on_delete: ReferentialAction | None = None
    on_update: ReferentialAction | None = None
    using: str = "gist"
    operators: list[str] = dataclasses.field(default_factory=list)


@dataclasses.dataclass(eq=False)
class Relationship:
    type: RelationshipType
    owner_table: Table = dataclasses.field(repr=False)
    inversed_table: Table = dataclasses.field(repr=False)
    owner_columns: list[Column] = dataclasses.field(default_factory=list)
    inversed_columns: list[Column] = dataclasses.field(default_factory=list)
    owner_name: str = ""
    inversed_name: str = ""
    through_table: Table | None = dataclasses.field(default=None, repr=False)
    owner_foreign_key: Constraint | None = dataclasses.field(default=None, repr=False)


@dataclasses.dataclass(eq=False)
class Table:
    name: str
    schema: Schema | None = dataclasses.field(default=None, repr=False)
    columns: list[Column] = dataclasses.field(default_factory=list)
    constraints: list[Constraint] = dataclasses.field(default_factory=list)
    temporary: bool = False
    if_not_exists: bool = False
    owned_relationships: list[Relationship] = dataclasses.field(default_factory=list, repr=False)
    inversed_relationships: list[Relationship] = dataclasses.field(default_factory=list, repr=False)
    many_to_many_relationships: list[Relationship] = dataclasses.field(default_factory=list, repr=False)

    def full_name(self) -> str:
        if self.schema is None or not self.schema.name:
            return self.name
        return f"{self.schema.name}.{self.name}"

    def column(self, name: str) -> Column | None:
        for col in self.columns:
            if col.name == name:
                return col
        return None

    def primary_key_columns(self) -> list[Column]:
        return [c for c in self.columns if c.primary_key]


@dataclasses.dataclass
class FunctionArgument:
    name: str
    type: BaseType | CustomType


@dataclasses.dataclass
class Function:
    name: str
    type: BaseType | CustomType
    body: str
    args: list[FunctionArgument] = dataclasses.field(default_factory=list)
    behaviour: FunctionBehaviour = FunctionBehaviour.UNSPECIFIED


@dataclasses.dataclass(eq=False)
class Schema:
    name: str = ""
    if_not_exists: bool = False
    tables: list[Table] = dataclasses.field(default_factory=list)
    functions: list[Function] = dataclasses.field(default_factory=list)

    def add_table(self, table: Table) -> Table:
        table.schema = self
        self.tables.append(table)
        return table

    def table(self, name: str) -> Table | None:
        for t in self.tables:
            if t.name == name:
                return t
        return None


def relate(
    rel_type: RelationshipType,
    owner: Table,
    inversed: Table,
    owner_columns: list[Column] | None = None,
    inversed_columns: list[Column] | None = None,
    owner_name: str = "",
    inversed_name: str = "",
    through: Table | None = None,
    on_delete: ReferentialAction | None = None,
    on_update: ReferentialAction | None = None,
) -> Relationship:
    """Create a relationship and register it on both participating tables.

    With exactly one owner column a plain ForeignKey constraint is appended to
    the owner table. With more than one the constraint is kept on the
    relationship and only synthesized into the owner's DDL at generation time.
    """
    rel = Relationship(
        type=rel_type,
        owner_table=owner,
        inversed_table=inversed,
        owner_columns=list(owner_columns or []),
        inversed_columns=list(inversed_columns or []),
        owner_name=owner_name,
        inversed_name=inversed_name,
        through_table=through,
    )

    if rel_type is RelationshipType.MANY_TO_MANY:
        owner.many_to_many_relationships.append(rel)
        if inversed is not owner:
            inversed.many_to_many_relationships.append(rel)
        return rel

    owner.owned_relationships.append(rel)
    inversed.inversed_relationships.append(rel)

    if rel.owner_columns:
        fk = Constraint(
            type=ConstraintType.FOREIGN_KEY,
            primary_table=owner,
            primary_columns=list(rel.owner_columns),
            table=inversed,
            columns=list(rel.inversed_columns),
            on_delete=on_delete,
            on_update=on_update,
        )
        if len(rel.owner_columns) == 1:
            owner.constraints.append(fk)
        else:
            rel.owner_foreign_key = fk
    return rel
