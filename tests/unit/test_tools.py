from __future__ import annotations

import pytest
import sqlalchemy as sa

from sqla_eagerload.tools import (
    add_conditions,
    add_order_by,
    chain_constraints,
    chunked,
    unique_entities,
)

from ..models import Chapter, Role, User


def _sql(query: sa.Select[tuple[Role]]) -> str:
    return str(query.compile(compile_kwargs={"literal_binds": True}))


class TestAddConditions:
    def test_single_condition(self) -> None:
        cond_fn = add_conditions(Role.level > 3)
        assert "level > 3" in _sql(cond_fn(sa.select(Role)))

    def test_multiple_conditions(self) -> None:
        cond_fn = add_conditions(Role.level > 3, Role.name == "admin")
        compiled = _sql(cond_fn(sa.select(Role)))
        assert "level > 3" in compiled
        assert "admin" in compiled

    def test_returns_callable(self) -> None:
        assert callable(add_conditions(User.active.is_(True)))


class TestAddOrderBy:
    def test_order_by(self) -> None:
        compiled = _sql(add_order_by(Role.level.desc())(sa.select(Role)))
        assert "ORDER BY roles.level DESC" in compiled


class TestChainConstraints:
    def test_applies_in_order(self) -> None:
        chained = chain_constraints(add_conditions(Role.level > 3), add_order_by(Role.name))
        compiled = _sql(chained(sa.select(Role)))

        assert "level > 3" in compiled
        assert "ORDER BY roles.name" in compiled

    def test_empty_chain_is_identity(self) -> None:
        query = sa.select(Role)
        assert chain_constraints()(query) is query


class TestUniqueEntities:
    def test_keeps_first_seen_order(self) -> None:
        alice = User(id=1, name="alice")
        bob = User(id=2, name="bob")

        assert unique_entities([bob, alice, bob, alice]) == [bob, alice]

    def test_equal_but_distinct_kept(self) -> None:
        first = Chapter(id=1, title="intro")
        second = Chapter(id=1, title="intro")

        assert first == second
        assert unique_entities([first, second, first]) == [first, second]
        assert unique_entities([first, second])[1] is second


class TestChunked:
    def test_even_split(self) -> None:
        assert list(chunked([1, 2, 3, 4], 2)) == [[1, 2], [3, 4]]

    def test_remainder(self) -> None:
        assert list(chunked([1, 2, 3], 2)) == [[1, 2], [3]]

    def test_empty(self) -> None:
        assert list(chunked([], 3)) == []

    def test_invalid_size(self) -> None:
        with pytest.raises(ValueError, match="positive"):
            list(chunked([1], 0))
