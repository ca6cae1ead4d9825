"""Identifier case conversion and comment annotation parsing."""

from __future__ import annotations

import enum
import re

__all__ = [
    "CaseType",
    "convert_case",
    "pascal_case",
    "snake_case",
    "parse_bulk_not_null_columns",
    "has_not_null_annotation",
    "has_flatten_annotation",
]

NOT_NULL_ANNOTATION = "@pgrpc_not_null"
FLATTEN_ANNOTATION = "@pgrpc_flatten"

_SEGMENT_SPLIT = re.compile(r"[\W_]+")
_WORD = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]*[^A-Z]+|[A-Z]+")
_BULK_NOT_NULL = re.compile(r"@pgrpc_not_null\(([^)]+)\)")


class CaseType(enum.Enum):
    """Target case style for generated identifiers."""

    PASCAL = "pascal"
    SNAKE = "snake"


def _words(name: str) -> list[str]:
    """Split a name into words on separators and case boundaries."""
    return [
        word
        for segment in _SEGMENT_SPLIT.split(name)
        if segment
        for word in _WORD.findall(segment)
    ]


def pascal_case(name: str) -> str:
    """Convert a name such as ``user_name`` to ``UserName``."""
    return "".join(word[0].upper() + word[1:].lower() for word in _words(name))


def snake_case(name: str) -> str:
    """Convert a name such as ``UserName`` to ``user_name``."""
    return "_".join(word.lower() for word in _words(name))


def convert_case(name: str, case: CaseType) -> str:
    """Convert ``name`` to the given case style."""
    if case is CaseType.PASCAL:
        return pascal_case(name)
    if case is CaseType.SNAKE:
        return snake_case(name)
    raise ValueError(f"unsupported case type: {case!r}")


def parse_bulk_not_null_columns(comment: str | None) -> set[str]:
    """Collect column names listed in ``@pgrpc_not_null(a, b, ...)`` annotations."""
    if comment is None:
        return set()
    return {
        column.strip()
        for match in _BULK_NOT_NULL.finditer(comment)
        for column in match.group(1).split(",")
        if column.strip()
    }


def has_not_null_annotation(comment: str | None) -> bool:
    """Whether a comment carries a ``@pgrpc_not_null`` annotation."""
    return comment is not None and NOT_NULL_ANNOTATION in comment


def has_flatten_annotation(comment: str | None) -> bool:
    """Whether a comment carries a ``@pgrpc_flatten`` annotation."""
    return comment is not None and FLATTEN_ANNOTATION in comment