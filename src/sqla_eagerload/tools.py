from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Sequence
from typing import Any, TypeVar

import sqlalchemy as sa


_E = TypeVar("_E")
_S = TypeVar("_S")

Constraint = Callable[[sa.Select[Any]], sa.Select[Any]]


def add_conditions(*conditions: sa.ColumnExpressionArgument[bool]) -> Constraint:
    """Create a constraint that adds WHERE conditions to a relation's fetch query.

    Args:
        *conditions: SQLAlchemy column expressions that evaluate to boolean.

    Returns:
        A function that takes a select query and returns it with added conditions.

    Example:
        >>> loader = Loader(users, {"roles": add_conditions(Role.level > 3)})
    """

    def _add(query: sa.Select[Any]) -> sa.Select[Any]:
        return query.where(*conditions)

    return _add


def add_order_by(*clauses: sa.ColumnExpressionArgument[Any]) -> Constraint:
    """Create a constraint that orders a relation's fetch query.

    Collections are attached in the order rows come back, so this is the way
    to get deterministically ordered ``HAS_MANY`` lists.
    """

    def _add(query: sa.Select[Any]) -> sa.Select[Any]:
        return query.order_by(*clauses)

    return _add


def chain_constraints(*constraints: Constraint) -> Constraint:
    """Combine several constraints into one, applied left to right."""

    def _chain(query: sa.Select[Any]) -> sa.Select[Any]:
        for constraint in constraints:
            query = constraint(query)

        return query

    return _chain


def unique_entities(entities: Iterable[_E]) -> list[_E]:
    """Distinct entities in first-seen order, compared by identity.

    Mapped dataclasses define value equality and are unhashable, so neither
    ``==`` nor ``hash`` can tell identity-map instances apart.
    """
    return list({id(entity): entity for entity in entities}.values())


def chunked(items: Sequence[_S], size: int) -> Iterator[Sequence[_S]]:
    """Yield consecutive slices of *items* holding at most *size* elements."""
    if size < 1:
        raise ValueError(f"chunk size must be positive, got {size}")

    for start in range(0, len(items), size):
        yield items[start : start + size]
