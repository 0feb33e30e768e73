"""Condition mappings and their translation into SQLAlchemy clauses.

A condition is a plain mapping describing which records an operation
targets:

    {"status": "active"}                       # equality
    {"parent_id": None}                        # IS NULL
    {"id": [1, 2, 3]}                          # IN
    {"stars": {"$gte": 10, "$lt": 100}}        # operators, AND-ed
    {"$or": [{"name": {"$like": "%jo%"}}, {"email": {"$like": "%jo%"}}]}

An empty mapping matches every record; an empty "$or" matches none.

Helpers that add clauses (with_tombstone, merge_or) always return a new
mapping and leave the caller's untouched.
"""

import operator
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from sqlalchemy import String, and_, cast, false, inspect as sa_inspect, or_, true
from sqlalchemy.orm import DeclarativeBase, InstrumentedAttribute
from sqlalchemy.sql.elements import ColumnElement

from repokit.repositories.exceptions import InvalidQueryError

Condition = Mapping[str, Any]

OR = "$or"
AND = "$and"
LIKE = "$like"
ILIKE = "$ilike"


def _as_text(column: Any) -> Any:
    # Pattern matching on numeric or date columns compares their text form
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        python_type = None
    return column if python_type is str else cast(column, String)


_OPERATORS: dict[str, Callable[[Any, Any], ColumnElement[bool]]] = {
    "$eq": operator.eq,
    "$ne": operator.ne,
    "$gt": operator.gt,
    "$gte": operator.ge,
    "$lt": operator.lt,
    "$lte": operator.le,
    "$in": lambda column, value: column.in_(list(value)),
    "$notin": lambda column, value: column.not_in(list(value)),
    LIKE: lambda column, value: _as_text(column).like(value),
    ILIKE: lambda column, value: _as_text(column).ilike(value),
}


def column_attributes(model: type[DeclarativeBase]) -> dict[str, InstrumentedAttribute[Any]]:
    """Map every column attribute name of the model to its instrumented attribute."""
    return {prop.key: getattr(model, prop.key) for prop in sa_inspect(model).column_attrs}


def compile_condition(
    model: type[DeclarativeBase], condition: Condition | None
) -> ColumnElement[bool]:
    """Translate a condition mapping into a WHERE clause for the model.

    Raises:
        InvalidQueryError: On unknown fields, unknown operators or malformed
            combinators
    """
    if condition is None:
        return true()
    if not isinstance(condition, Mapping):
        raise InvalidQueryError(
            f"Condition must be a mapping, got {type(condition).__name__}"
        )
    return _compile(column_attributes(model), condition)


def _compile(columns: dict[str, Any], condition: Condition) -> ColumnElement[bool]:
    clauses: list[ColumnElement[bool]] = []
    for key, value in condition.items():
        if key in (OR, AND):
            clauses.append(_combine(columns, key, value))
        elif key in columns:
            clauses.append(_field_clause(key, columns[key], value))
        else:
            raise InvalidQueryError(f"Unknown field in condition: {key!r}")

    if not clauses:
        return true()
    if len(clauses) == 1:
        return clauses[0]
    return and_(*clauses)


def _combine(columns: dict[str, Any], key: str, value: Any) -> ColumnElement[bool]:
    if isinstance(value, (str, bytes, Mapping)) or not isinstance(value, Sequence):
        raise InvalidQueryError(f"{key} expects a list of conditions")

    parts = []
    for part in value:
        if not isinstance(part, Mapping):
            raise InvalidQueryError(f"{key} expects a list of conditions")
        parts.append(_compile(columns, part))

    if key == OR:
        return or_(*parts) if parts else false()
    return and_(*parts) if parts else true()


def _field_clause(name: str, column: Any, value: Any) -> ColumnElement[bool]:
    if isinstance(value, Mapping):
        if not value:
            raise InvalidQueryError(f"Empty operator mapping for field {name!r}")
        clauses = []
        for op_name, operand in value.items():
            op = _OPERATORS.get(op_name)
            if op is None:
                raise InvalidQueryError(f"Unknown operator {op_name!r} for field {name!r}")
            clauses.append(op(column, operand))
        return clauses[0] if len(clauses) == 1 else and_(*clauses)

    if isinstance(value, (list, tuple, set, frozenset)):
        return column.in_(list(value))

    return column == value


def with_tombstone(condition: Condition | None, field: str, live_value: Any) -> dict[str, Any]:
    """Return a copy of the condition restricted to live records."""
    scoped = dict(condition or {})
    scoped[field] = live_value
    return scoped


def merge_or(condition: Condition | None, clauses: Sequence[Condition]) -> dict[str, Any]:
    """Return a copy of the condition AND-ed with an OR over clauses.

    An "$or" already present in the condition is kept; the new one then
    goes into "$and".
    """
    merged = dict(condition or {})
    if OR in merged:
        merged[AND] = [*merged.get(AND, ()), {OR: list(clauses)}]
    else:
        merged[OR] = list(clauses)
    return merged
