from __future__ import annotations

import logging
import sys
import warnings
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Final


if sys.version_info >= (3, 11):
    from typing import Self, TypedDict, Unpack
else:
    from typing_extensions import Self, TypedDict, Unpack

import sqlalchemy as sa
from sqlalchemy import orm

from .catalog import SUPPORTED_KINDS, Catalog, Relation, RelationCatalog
from .eager_load import EagerLoad
from .errors import (
    CompositeKeyUnsupported,
    EmptyArguments,
    InvalidArgument,
    InvalidRelationAlias,
    InvalidSubject,
    RelationNotFound,
    UnsupportedRelationKind,
)
from .tools import Constraint


if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE: Final[int] = 500
E_INVALID_SUBJECT: Final[str] = (
    "Expected value of `subject` is either a mapped instance, a Result "
    "or an iterable of mapped instances"
)


class _AsyncLoaderParams(TypedDict, total=False):
    catalog: RelationCatalog
    chunk_size: int


class _LoaderParams(_AsyncLoaderParams, total=False):
    session: orm.Session


def _is_entity(value: Any) -> bool:
    return isinstance(sa.inspect(value, raiseerr=False), orm.InstanceState)


def _is_result(value: Any) -> bool:
    return isinstance(value, (sa.Result, sa.ScalarResult))


def _is_collection(value: Any) -> bool:
    return isinstance(value, Iterable) and not isinstance(value, (str, bytes, bytearray))


@dataclass(slots=True, frozen=True)
class Subject:
    """Canonical root input: one mapped class and the entities of that class.

    ``single`` records that the caller passed one instance rather than a
    collection, so :meth:`Loader.get` can hand back the same shape.
    """

    model: type[Any] | None = None
    entities: list[Any] | None = None
    single: bool = False

    @property
    def is_empty(self) -> bool:
        return self.entities is None


def normalize_subject(value: Any) -> Subject:
    """Classify the root input of a loader.

    Args:
        value: A mapped instance, a ``Result``/``ScalarResult``, an iterable of
            mapped instances of one class, ``None`` or ``False``.

    Returns:
        The canonical subject. Empty inputs (``None``, ``False``, an exhausted
        result, a collection holding only falsy items) become an empty subject.

    Raises:
        InvalidSubject: On any other value, or on a collection mixing classes
            or holding something that is not a mapped instance.
    """
    if _is_entity(value):
        return Subject(model=type(value), entities=[value], single=True)

    if _is_result(value):
        # one-shot: the result is consumed here
        entities = list(value.scalars() if isinstance(value, sa.Result) else value)
        return Subject(model=type(entities[0]), entities=entities) if entities else Subject()

    if value is None or value is False:
        return Subject()

    if not _is_collection(value):
        raise InvalidSubject(E_INVALID_SUBJECT)

    items = value.values() if isinstance(value, Mapping) else value
    entities = [item for item in items if item]
    model: type[Any] | None = None
    for entity in entities:
        if not _is_entity(entity) or (model is not None and type(entity) is not model):
            raise InvalidSubject(E_INVALID_SUBJECT)

        model = type(entity)

    return Subject(model=model, entities=entities) if entities else Subject()


def parse_arguments(arguments: Sequence[Any]) -> dict[str, Constraint | None]:
    """Canonicalize relation path arguments into ``{path: constraint}``.

    Two calling forms are accepted. A single mapping (or list/tuple) argument
    is read entry by entry: a string key is a path whose value is kept as its
    constraint when callable; a non-string key contributes its value when that
    is a string. Otherwise every string argument is a path without constraint.
    Repeated paths keep the last constraint seen.

    Raises:
        EmptyArguments: If *arguments* is empty.
        InvalidArgument: If no usable path was found.
    """
    if not arguments:
        raise EmptyArguments("Arguments can not be empty")

    relations: dict[str, Constraint | None] = {}

    if len(arguments) == 1 and isinstance(arguments[0], (Mapping, list, tuple)):
        entries = arguments[0].items() if isinstance(arguments[0], Mapping) else enumerate(arguments[0])
        for alias, constraints in entries:
            if isinstance(alias, str):
                relations[alias] = constraints if callable(constraints) else None
            elif isinstance(constraints, str):
                relations[constraints] = None
    else:
        for alias in arguments:
            if isinstance(alias, str):
                relations[alias] = None
            else:
                warnings.warn(
                    f"Ignoring non-string relation path argument: {alias!r}",
                    stacklevel=3,
                )

    if not relations:
        raise InvalidArgument("No relation path could be parsed from the arguments")

    return relations


def _check_relation(relation: Relation) -> None:
    if relation.kind not in SUPPORTED_KINDS:
        raise UnsupportedRelationKind(relation.kind)

    if relation.is_composite:
        raise CompositeKeyUnsupported(relation)


def build_tree(
    model: type[Any],
    eager_loads: Mapping[str, Constraint | None],
    catalog: RelationCatalog,
    root: Any,
) -> dict[str, EagerLoad]:
    """Resolve relation paths into eager-load nodes.

    Paths are visited in lexicographic order, so a path always comes after its
    own prefixes. Each dotted prefix gets exactly one node, shared by every
    path that goes through it; a path's constraint goes to its last segment
    only.

    Args:
        model: Mapped class of the subject.
        eager_loads: ``{dotted path: constraint or None}``.
        catalog: Relation lookup service.
        root: Parent of the top-level nodes (the loader).

    Returns:
        ``{dotted prefix: node}``; insertion order puts ancestors first.

    Raises:
        RelationNotFound: If a segment is not a relation of its parent class.
        UnsupportedRelationKind: If the relation kind cannot be eager loaded.
        CompositeKeyUnsupported: If the relation is keyed by more than one field.
    """
    tree: dict[str, EagerLoad] = {}

    for path in sorted(eager_loads):
        aliases = path.split(".")
        depth = len(aliases)

        # longest prefix already resolved by an earlier path
        start = 0
        while start < depth - 1 and ".".join(aliases[: start + 1]) in tree:
            start += 1

        parent: Any = tree[".".join(aliases[:start])] if start else root
        for level in range(start, depth):
            alias = aliases[level]
            parent_model = model if level == 0 else parent.get_referenced_model()

            relation = catalog.lookup(parent_model, alias)
            if relation is None:
                raise RelationNotFound(parent_model, alias)

            _check_relation(relation)

            constraints = eager_loads[path] if level == depth - 1 else None
            node = EagerLoad(relation, constraints, parent)
            tree[".".join(aliases[: level + 1])] = node
            parent = node

    logger.debug("Resolved %d eager load(s) for %s: %s", len(tree), model.__name__, list(tree))

    return tree


class Loader:
    """Eager-loads relation paths onto already fetched entities.

    The subject (one instance, a result or a collection of one mapped class)
    is normalized once at construction. Every :meth:`execute` resolves the
    relation paths into a fresh tree of :class:`EagerLoad` nodes and runs them
    ancestors first; the subject entities are mutated in place.

    Example::

        users = session.scalars(sa.select(User)).all()
        Loader(users, "posts.comments", "roles").execute()

        Loader(user, {"posts": add_conditions(Post.published.is_(True))}).execute().get()
    """

    __slots__ = ("_catalog", "_chunk_size", "_eager_loads", "_session", "_subject")

    def __init__(
        self,
        subject: Any,
        *arguments: Any,
        catalog: RelationCatalog | None = None,
        session: orm.Session | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")

        self._subject = normalize_subject(subject)
        self._eager_loads: dict[str, Constraint | None] = (
            {} if self._subject.is_empty or not arguments else parse_arguments(arguments)
        )
        self._catalog = catalog
        self._session = session
        self._chunk_size = chunk_size

    def __repr__(self) -> str:
        model = self._subject.model.__name__ if self._subject.model else None
        return f"<{type(self).__name__} {model} {sorted(self._eager_loads)}>"

    @property
    def catalog(self) -> RelationCatalog:
        """The explicit catalog, else the :class:`Catalog` singleton."""
        return self._catalog if self._catalog is not None else Catalog()

    @property
    def session(self) -> orm.Session | None:
        """The explicit session, else the session the first subject entity belongs to."""
        if self._session is not None:
            return self._session

        entities = self._subject.entities
        return orm.object_session(entities[0]) if entities else None

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @property
    def eager_loads(self) -> Mapping[str, Constraint | None]:
        return MappingProxyType(self._eager_loads)

    def add_eager_load(self, relation_alias: str, constraints: Constraint | None = None) -> Self:
        """Register one more relation path, replacing the constraint of a known one.

        Raises:
            InvalidRelationAlias: If *relation_alias* is not a non-empty string.
            InvalidArgument: If *constraints* is neither ``None`` nor callable.
        """
        if not isinstance(relation_alias, str) or not relation_alias:
            raise InvalidRelationAlias(
                f"`relation_alias` expects to be a non-empty string, "
                f"`{type(relation_alias).__name__}` given"
            )

        if constraints is not None and not callable(constraints):
            raise InvalidArgument(
                f"`constraints` expects to be callable, `{type(constraints).__name__}` given"
            )

        self._eager_loads[relation_alias] = constraints

        return self

    def _build_tree(self) -> dict[str, EagerLoad]:
        if self._subject.is_empty or not self._eager_loads:
            return {}

        assert self._subject.model is not None
        return build_tree(self._subject.model, self._eager_loads, self.catalog, self)

    def execute(self) -> Self:
        """Resolve the relation tree and run every node, ancestors first."""
        for eager_load in self._build_tree().values():
            eager_load.load()

        return self

    def load(self) -> Self:
        """Alias of :meth:`execute`."""
        return self.execute()

    def get(self) -> Any:
        """The subject in the shape it was given: an instance, a list, or ``None``."""
        entities = self._subject.entities
        if entities is not None and self._subject.single:
            return entities[0]

        return entities

    def get_subject(self) -> list[Any] | None:
        return self._subject.entities

    @classmethod
    def from_subject(cls, subject: Any, *arguments: Any, **params: Unpack[_LoaderParams]) -> Any:
        """Eager-load onto *subject* and return it, dispatching on its shape.

        Unlike the constructor, ``None`` and ``False`` are rejected.

        Raises:
            InvalidSubject: If *subject* is not an instance, a result or an iterable.
        """
        if _is_entity(subject):
            return cls.from_model(subject, *arguments, **params)

        if _is_result(subject):
            return cls.from_result(subject, *arguments, **params)

        if _is_collection(subject):
            return cls.from_iterable(subject, *arguments, **params)

        raise InvalidSubject(E_INVALID_SUBJECT)

    @classmethod
    def from_model(cls, subject: Any, *arguments: Any, **params: Unpack[_LoaderParams]) -> Any:
        if not _is_entity(subject):
            raise InvalidSubject(E_INVALID_SUBJECT)

        return cls(subject, *arguments, **params).execute().get()

    @classmethod
    def from_result(
        cls,
        subject: sa.Result[Any] | sa.ScalarResult[Any],
        *arguments: Any,
        **params: Unpack[_LoaderParams],
    ) -> list[Any] | None:
        if not _is_result(subject):
            raise InvalidSubject(E_INVALID_SUBJECT)

        return cls(subject, *arguments, **params).execute().get()

    @classmethod
    def from_iterable(
        cls,
        subject: Iterable[Any],
        *arguments: Any,
        **params: Unpack[_LoaderParams],
    ) -> list[Any] | None:
        if not _is_collection(subject):
            raise InvalidSubject(E_INVALID_SUBJECT)

        return cls(subject, *arguments, **params).execute().get()


def eager_load(subject: Any, *loads: Any, **params: Unpack[_LoaderParams]) -> Any:
    """Eager-load relation paths onto *subject* and return it.

    Args:
        subject: A mapped instance, a ``Result``/``ScalarResult``, an iterable
            of mapped instances of one class, or ``None``.
        *loads: Dotted relation paths, or a single ``{path: constraint}`` mapping.
        catalog: RelationCatalog
            Relation lookup service. Defaults to the :class:`Catalog` singleton.
        session: orm.Session
            Session used for the fetch queries. Defaults to the session the
            subject entities belong to.
        chunk_size: int
            Maximum number of keys per ``IN`` query. Defaults to 500.

    Returns:
        The subject in the shape it was given, with the relations attached.

    Examples:
        Nested paths share their prefixes::

            users = eager_load(users, "posts", "posts.comments.reactions")

        Constraints apply to the last segment of their path::

            user = eager_load(
                user,
                {
                    "posts": add_order_by(Post.id.desc()),
                    "posts.comments": add_conditions(Comment.text != ""),
                },
            )
    """
    return Loader(subject, *loads, **params).execute().get()


async def eager_load_async(
    session: AsyncSession,
    subject: Any,
    *loads: Any,
    **params: Unpack[_AsyncLoaderParams],
) -> Any:
    """:func:`eager_load` for an ``AsyncSession``.

    The loader runs inside ``session.run_sync`` against the underlying sync
    session. *subject* must be already materialized (an instance or a list).

    Example::

        users = (await session.scalars(sa.select(User))).all()
        users = await eager_load_async(session, users, "posts.comments")
    """

    def _run(sync_session: orm.Session) -> Any:
        return Loader(subject, *loads, session=sync_session, **params).execute().get()

    return await session.run_sync(_run)
