from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Sequence
from typing import Any, Protocol

import sqlalchemy as sa
from sqlalchemy import exc, orm
from sqlalchemy.orm.attributes import set_committed_value

from .catalog import Relation, RelationKind
from .tools import Constraint, chunked, unique_entities


logger = logging.getLogger(__name__)


class _Root(Protocol):
    @property
    def session(self) -> orm.Session | None: ...

    @property
    def chunk_size(self) -> int: ...

    def get_subject(self) -> list[Any] | None: ...


class EagerLoad:
    """One resolved step of a relation tree.

    A node fetches the ``relation`` of every entity its parent holds (the
    loader's subject for a top-level node, the parent node's ``results``
    otherwise) in batched ``IN`` queries and attaches the rows to the parent
    entities as committed state.
    """

    __slots__ = ("constraints", "parent", "relation", "results")

    def __init__(
        self,
        relation: Relation,
        constraints: Constraint | None,
        parent: EagerLoad | _Root,
    ) -> None:
        self.relation = relation
        self.constraints = constraints
        self.parent = parent
        self.results: list[Any] = []

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__} {self.relation.model.__name__}.{self.relation.alias}"
            f" -> {self.relation.referenced_model.__name__}>"
        )

    def get_referenced_model(self) -> type[Any]:
        return self.relation.get_referenced_model()

    @property
    def root(self) -> _Root:
        parent = self.parent
        while isinstance(parent, EagerLoad):
            parent = parent.parent

        return parent

    @property
    def session(self) -> orm.Session | None:
        return self.root.session

    @property
    def chunk_size(self) -> int:
        return self.root.chunk_size

    def get_subject(self) -> list[Any] | None:
        return self.results

    def load(self) -> None:
        """Fetch the related rows and attach them to every parent entity.

        Raises:
            sqlalchemy.exc.InvalidRequestError: If no session is available.
        """
        parents = self.parent.get_subject() or []
        relation = self.relation
        self.results = []

        if not parents:
            return

        # column values, deduplicated by equality
        keys = list(
            dict.fromkeys(
                value
                for parent in parents
                if (value := getattr(parent, relation.fields)) is not None  # type: ignore[arg-type]
            )
        )

        if relation.kind is RelationKind.HAS_MANY_THROUGH:
            grouped = self._fetch_through(keys)
        else:
            grouped = self._fetch(keys)

        for parent in parents:
            matches = grouped.get(getattr(parent, relation.fields), ())  # type: ignore[arg-type]
            if relation.kind is RelationKind.HAS_MANY or (
                relation.kind is RelationKind.HAS_MANY_THROUGH and relation.many
            ):
                value: Any = list(matches)
            else:
                value = matches[0] if matches else None

            set_committed_value(parent, relation.alias, value)

        logger.debug(
            "Loaded %s.%s: %d parent(s), %d key(s), %d row(s)",
            relation.model.__name__,
            relation.alias,
            len(parents),
            len(keys),
            len(self.results),
        )

    def _require_session(self) -> orm.Session:
        if (session := self.session) is None:
            raise exc.InvalidRequestError(
                f"Cannot eager load `{self.relation.model.__name__}.{self.relation.alias}`: "
                "subject is not bound to a Session and no session was given"
            )

        return session

    def _constrain(self, query: sa.Select[Any]) -> sa.Select[Any]:
        return self.constraints(query) if self.constraints is not None else query

    def _fetch(self, keys: Sequence[Any]) -> dict[Any, list[Any]]:
        grouped: dict[Any, list[Any]] = defaultdict(list)
        if not keys:
            return grouped

        session = self._require_session()
        target = self.relation.referenced_model
        column = getattr(target, self.relation.referenced_fields)  # type: ignore[arg-type]

        for chunk in chunked(keys, self.chunk_size):
            query = self._constrain(sa.select(target).where(column.in_(chunk)))
            for entity in session.scalars(query).unique():
                grouped[getattr(entity, self.relation.referenced_fields)].append(entity)  # type: ignore[arg-type]
                self.results.append(entity)

        self.results = unique_entities(self.results)
        return grouped

    def _fetch_through(self, keys: Sequence[Any]) -> dict[Any, list[Any]]:
        grouped: dict[Any, list[Any]] = defaultdict(list)
        if not keys:
            return grouped

        relation = self.relation
        assert relation.intermediate is not None, "HAS_MANY_THROUGH requires an intermediate table"

        session = self._require_session()
        target = relation.referenced_model
        owner = relation.intermediate.c[relation.intermediate_fields]
        link = relation.intermediate.c[relation.intermediate_referenced_fields]

        for chunk in chunked(keys, self.chunk_size):
            query = self._constrain(
                sa.select(target, owner)
                .join(relation.intermediate, link == getattr(target, relation.referenced_fields))  # type: ignore[arg-type]
                .where(owner.in_(chunk))
            )
            for entity, key in session.execute(query).unique():
                grouped[key].append(entity)
                self.results.append(entity)

        self.results = unique_entities(self.results)
        return grouped
