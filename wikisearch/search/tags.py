from __future__ import annotations

"""Tag expressions such as ``status``, ``color=red`` or ``age>3``."""

import operator
import re
from dataclasses import dataclass
from typing import Any, Callable

from sqlalchemy import Float, and_, cast, not_, or_, true
from sqlalchemy.sql.elements import ColumnElement

TAG_OPERATORS: tuple[str, ...] = ("<=", ">=", "=", "<", ">", "like", "!=")

_TAG_RE = re.compile(
    r"^(.*?)((" + "|".join(re.escape(op) for op in TAG_OPERATORS) + r")(.*?))?$",
    re.DOTALL,
)
_NUMERIC_RE = re.compile(r"^[-+]?(\d+(\.\d*)?|\.\d+)$")
_NUMERIC_SQL_PATTERN = r"^[-+]?([0-9]+(\.[0-9]*)?|\.[0-9]+)$"

_COMPARATORS: dict[str, Callable[[Any, Any], bool]] = {
    "<=": operator.le,
    ">=": operator.ge,
    "=": operator.eq,
    "<": operator.lt,
    ">": operator.gt,
    "!=": operator.ne,
}


def is_numeric(value: str) -> bool:
    return bool(_NUMERIC_RE.match(value.strip()))


@dataclass(frozen=True)
class TagPredicate:
    """Parsed tag comparison; ``operator`` is empty for a name-only predicate."""
    name: str
    operator: str = ""
    value: str = ""

    @property
    def has_value(self) -> bool:
        return bool(self.operator)

    @property
    def numeric(self) -> bool:
        return self.has_value and self.operator != "like" and is_numeric(self.value)

    def matches(self, name: str, value: str) -> bool:
        """Evaluate the predicate against one tag name/value pair."""
        if self.name and name != self.name:
            return False
        if not self.has_value:
            return True
        if self.operator == "like":
            return self.value in value
        compare = _COMPARATORS[self.operator]
        if self.numeric and is_numeric(value):
            return compare(float(value), float(self.value))
        return compare(value, self.value)

    def clause(self, tags_table) -> ColumnElement[bool]:
        """Build the SQL condition for rows of the tag relation."""
        name_col = tags_table.c.name
        value_col = tags_table.c.value
        conditions = []
        if self.name:
            conditions.append(name_col == self.name)
        if self.has_value:
            conditions.append(self._value_clause(value_col))
        if not conditions:
            return true()
        return and_(*conditions)

    def _value_clause(self, value_col) -> ColumnElement[bool]:
        if self.operator == "like":
            return value_col.contains(self.value, autoescape=True)
        compare = _COMPARATORS[self.operator]
        text_clause = compare(value_col, self.value)
        if not self.numeric:
            return text_clause
        looks_numeric = value_col.regexp_match(_NUMERIC_SQL_PATTERN)
        return or_(
            and_(looks_numeric, compare(cast(value_col, Float), float(self.value))),
            and_(not_(looks_numeric), text_clause),
        )

    def __str__(self) -> str:
        return f"{self.name}{self.operator}{self.value}"


def parse_tag_expression(expression: str) -> TagPredicate:
    """Split a tag expression on its first operator occurrence."""
    match = _TAG_RE.match(expression)
    if match is None:
        return TagPredicate(name=expression)
    name = match.group(1)
    tag_operator = match.group(3) or ""
    value = match.group(4) or ""
    if (not value or tag_operator not in TAG_OPERATORS) and name:
        return TagPredicate(name=name)
    return TagPredicate(name=name, operator=tag_operator, value=value)
