"""Metadata filter expressions, their in-process evaluation and backend compilers.

Expressions are small immutable trees: :class:`Condition` leaves combined by
:class:`Group` nodes.  :class:`~trove.search.types.SearchFilters` produces
them from the user-facing fields; each vector store either evaluates them
directly (:func:`matches`) or compiles them to its native filter syntax.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any, TypeAlias


class FilterOp(StrEnum):
    """Field operators.  Values are the Mongo-style names Pinecone accepts."""

    EQ = "$eq"
    NE = "$ne"
    GT = "$gt"
    GTE = "$gte"
    LT = "$lt"
    LTE = "$lte"
    IN = "$in"
    NOT_IN = "$nin"
    EXISTS = "$exists"


class LogicalOp(StrEnum):
    AND = "$and"
    OR = "$or"


_RANGE_OPS = frozenset({FilterOp.GT, FilterOp.GTE, FilterOp.LT, FilterOp.LTE})
_NEGATED_OPS = frozenset({FilterOp.NE, FilterOp.NOT_IN})


@dataclass(frozen=True, slots=True)
class Condition:
    """``field <op> value``.  ``value`` is a tuple for ``IN``/``NOT_IN``
    and a bool for ``EXISTS``."""

    field: str
    op: FilterOp
    value: Any


@dataclass(frozen=True, slots=True)
class Group:
    op: LogicalOp
    children: tuple[FilterExpression, ...]


FilterExpression: TypeAlias = Condition | Group


# ------------------------------------------------------------------
# Builders
# ------------------------------------------------------------------


def eq(field: str, value: Any) -> Condition:
    return Condition(field, FilterOp.EQ, value)


def ne(field: str, value: Any) -> Condition:
    return Condition(field, FilterOp.NE, value)


def gt(field: str, value: Any) -> Condition:
    return Condition(field, FilterOp.GT, value)


def gte(field: str, value: Any) -> Condition:
    return Condition(field, FilterOp.GTE, value)


def lt(field: str, value: Any) -> Condition:
    return Condition(field, FilterOp.LT, value)


def lte(field: str, value: Any) -> Condition:
    return Condition(field, FilterOp.LTE, value)


def in_(field: str, values: list[Any] | tuple[Any, ...]) -> Condition:
    """Matches when the field (or, for list fields, any element) is one of *values*."""
    return Condition(field, FilterOp.IN, tuple(values))


def not_in(field: str, values: list[Any] | tuple[Any, ...]) -> Condition:
    return Condition(field, FilterOp.NOT_IN, tuple(values))


def exists(field: str, *, exists: bool = True) -> Condition:
    return Condition(field, FilterOp.EXISTS, exists)


def and_(*exprs: FilterExpression) -> Group:
    return Group(LogicalOp.AND, exprs)


def or_(*exprs: FilterExpression) -> Group:
    return Group(LogicalOp.OR, exprs)


# ------------------------------------------------------------------
# In-process evaluation
# ------------------------------------------------------------------


def matches(expr: FilterExpression, metadata: dict[str, Any]) -> bool:
    """Evaluate *expr* against one record's metadata.

    Mirrors the remote backends on list-valued fields: a positive operator
    holds if any element satisfies it, ``NE``/``NOT_IN`` only if none
    matches.  A missing or ``None`` field satisfies nothing except the
    negated operators and ``exists(..., exists=False)``.
    """
    if isinstance(expr, Group):
        outcomes = (matches(child, metadata) for child in expr.children)
        return all(outcomes) if expr.op is LogicalOp.AND else any(outcomes)

    raw = metadata.get(expr.field)
    if expr.op is FilterOp.EXISTS:
        return (raw is not None) is bool(expr.value)

    if raw is None:
        elements: list[Any] = []
    elif isinstance(raw, list | tuple):
        elements = list(raw)
    else:
        elements = [raw]

    if expr.op in _NEGATED_OPS:
        positive = FilterOp.EQ if expr.op is FilterOp.NE else FilterOp.IN
        return not any(_holds(positive, e, expr.value) for e in elements)
    return any(_holds(expr.op, e, expr.value) for e in elements)


def _holds(op: FilterOp, element: Any, operand: Any) -> bool:
    if op is FilterOp.EQ:
        return element == operand
    if op is FilterOp.IN:
        return element in operand
    try:
        match op:
            case FilterOp.GT:
                return element > operand
            case FilterOp.GTE:
                return element >= operand
            case FilterOp.LT:
                return element < operand
            case _:
                return element <= operand
    except TypeError:
        # e.g. a string field compared against a number
        return False


# ------------------------------------------------------------------
# Backend compilers
# ------------------------------------------------------------------


def compile_pinecone(expr: FilterExpression) -> dict[str, Any]:
    """Pinecone metadata filter dict.

    ``and_(eq("category", "code"), gte("modified_time", 1.7e9))`` becomes
    ``{"$and": [{"category": {"$eq": "code"}}, {"modified_time": {"$gte": 1.7e9}}]}``.
    """
    if isinstance(expr, Group):
        return {expr.op.value: [compile_pinecone(child) for child in expr.children]}
    value = list(expr.value) if isinstance(expr.value, tuple) else expr.value
    return {expr.field: {expr.op.value: value}}


def compile_qdrant(expr: FilterExpression) -> Any:
    """A ``qdrant_client.models.Filter``.

    Every leaf is wrapped in its own ``Filter`` so groups nest uniformly:
    ``AND`` maps to ``must``, ``OR`` to ``should``.  Negated operators go
    under ``must_not``; ``IN`` becomes ``MatchAny``, which Qdrant applies
    element-wise to array payloads.
    """
    from qdrant_client import models

    if isinstance(expr, Group):
        children = [compile_qdrant(child) for child in expr.children]
        if expr.op is LogicalOp.AND:
            return models.Filter(must=children)
        return models.Filter(should=children)

    if expr.op is FilterOp.EXISTS:
        is_empty = models.IsEmptyCondition(is_empty=models.PayloadField(key=expr.field))
        return models.Filter(must_not=[is_empty]) if expr.value else models.Filter(must=[is_empty])

    if expr.op in _RANGE_OPS:
        bounds = {expr.op.name.lower(): expr.value}
        return models.Filter(
            must=[models.FieldCondition(key=expr.field, range=models.Range(**bounds))]
        )

    if expr.op in (FilterOp.IN, FilterOp.NOT_IN):
        match = models.MatchAny(any=list(expr.value))
    else:
        match = models.MatchValue(value=expr.value)
    condition = models.FieldCondition(key=expr.field, match=match)
    if expr.op in _NEGATED_OPS:
        return models.Filter(must_not=[condition])
    return models.Filter(must=[condition])
