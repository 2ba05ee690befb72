"""Identifier formatting for generated Python code."""

from __future__ import annotations

import re
from keyword import iskeyword

COLLECTION_SUFFIX = "s"

_WORD_RE = re.compile(r"[A-Za-z0-9]+")


def words(*parts: str) -> list[str]:
    out: list[str] = []
    for part in parts:
        # Split camelCase as well as snake_case and dotted names.
        part = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", part)
        out.extend(w.lower() for w in _WORD_RE.findall(part))
    return out


def public(*parts: str) -> str:
    """``public("news_item", "entity")`` -> ``NewsItemEntity``."""
    name = "".join(w[:1].upper() + w[1:] for w in words(*parts))
    return _safe(name)


def snake(*parts: str) -> str:
    return _safe("_".join(words(*parts)))


def constant(*parts: str) -> str:
    return _safe("_".join(words(*parts)).upper())


def pluralize(name: str) -> str:
    return name + COLLECTION_SUFFIX


def _safe(name: str) -> str:
    if not name:
        return "_"
    if name[0].isdigit():
        name = "_" + name
    if iskeyword(name):
        name += "_"
    return name
