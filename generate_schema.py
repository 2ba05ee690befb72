#!/usr/bin/env python3
"""Generate schema SQL + Python data access code from a declarative YAML schema."""

from __future__ import annotations

import argparse
import ast
import difflib
import re
import sys
from pathlib import Path
from typing import Callable

from generate_code import GeneratorOptions, generate_code, parse_components
from generate_sql import generate_sql, write_text
from load_schema import load_schema_file
from schema_model import Schema

Formatter = Callable[[str], str]


def format_source(text: str) -> str:
    """Canonicalize generated Python; raises SyntaxError if it does not parse."""
    ast.parse(text)
    lines = [line.rstrip() for line in text.splitlines()]
    out = "\n".join(lines).strip("\n")
    out = re.sub(r"\n{4,}", "\n\n\n", out)
    return out + "\n"


def generate_outputs(
    schema: Schema,
    options: GeneratorOptions | None = None,
    formatter: Formatter = format_source,
) -> tuple[str, str]:
    options = options or GeneratorOptions()
    sql_output = generate_sql(schema, options.version)
    py_output = formatter(generate_code(schema, options))
    return sql_output, py_output


def check_equal(path: Path, generated: str) -> bool:
    if not path.exists():
        print(f"[check] missing file: {path}", file=sys.stderr)
        return False

    existing = path.read_text(encoding="utf-8")
    if existing == generated:
        return True

    print(f"[check] drift detected: {path}", file=sys.stderr)
    diff = difflib.unified_diff(
        existing.splitlines(),
        generated.splitlines(),
        fromfile=str(path),
        tofile=f"generated:{path}",
        lineterm="",
    )
    for idx, line in enumerate(diff):
        if idx > 200:
            print("... (diff truncated)", file=sys.stderr)
            break
        print(line, file=sys.stderr)
    return False


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate schema SQL and Python data access code")
    parser.add_argument("--schema", default="schema.yaml", help="Input YAML schema")
    parser.add_argument("--out-sql", default="schema.sql", help="Output SQL file")
    parser.add_argument("--out-py", default="schema_gen.py", help="Output Python module")
    parser.add_argument("--version", type=float, default=None, help="Target PostgreSQL version")
    parser.add_argument("--package", default=None, help="Package name of the generated module")
    parser.add_argument("--components", default=None, help="Comma separated components, e.g. insert,find,count")
    parser.add_argument("--check", action="store_true", help="Verify outputs are up-to-date without writing")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    schema, options = load_schema_file(Path(args.schema))
    if args.version is not None:
        options.version = args.version
    if args.package is not None:
        options.package = args.package
    if args.components is not None:
        options.components = parse_components(args.components)

    out_sql = Path(args.out_sql)
    out_py = Path(args.out_py)
    sql_output, py_output = generate_outputs(schema, options)

    if args.check:
        sql_ok = check_equal(out_sql, sql_output)
        py_ok = check_equal(out_py, py_output)
        return 0 if sql_ok and py_ok else 1

    write_text(out_sql, sql_output)
    write_text(out_py, py_output)
    print(f"Generated {out_sql}")
    print(f"Generated {out_py}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
