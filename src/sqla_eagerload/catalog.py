from __future__ import annotations

import enum
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, ClassVar, Protocol, final

import sqlalchemy as sa
from sqlalchemy import orm


class RelationKind(enum.Enum):
    BELONGS_TO = "belongs_to"
    HAS_ONE = "has_one"
    HAS_MANY = "has_many"
    HAS_MANY_THROUGH = "has_many_through"


SUPPORTED_KINDS: frozenset[RelationKind] = frozenset(RelationKind)

Fields = str | tuple[str, ...]


@dataclass(slots=True, frozen=True)
class Relation:
    """Join metadata for one relationship alias of a mapped class.

    Key fields are attribute names. A single field is stored as a plain
    ``str``; a composite key is stored as a tuple of names. For
    ``HAS_MANY_THROUGH`` the ``intermediate_*`` fields are column keys on the
    ``intermediate`` table: ``intermediate_fields`` point back at ``fields``
    and ``intermediate_referenced_fields`` point at ``referenced_fields``.
    """

    alias: str
    kind: RelationKind
    model: type[Any]
    fields: Fields
    referenced_model: type[Any]
    referenced_fields: Fields
    many: bool = False
    intermediate: sa.FromClause | None = None
    intermediate_fields: Fields | None = None
    intermediate_referenced_fields: Fields | None = None

    def get_referenced_model(self) -> type[Any]:
        return self.referenced_model

    @property
    def is_composite(self) -> bool:
        return any(
            isinstance(fields, tuple)
            for fields in (
                self.fields,
                self.referenced_fields,
                self.intermediate_fields,
                self.intermediate_referenced_fields,
            )
        )


class RelationCatalog(Protocol):
    def lookup(self, model: type[Any], alias: str) -> Relation | None: ...


def _fields(names: Iterable[str]) -> Fields:
    names = tuple(names)
    return names[0] if len(names) == 1 else names


def _attribute_keys(mapper: orm.Mapper[Any], columns: Iterable[sa.ColumnElement[Any]]) -> Fields:
    return _fields(mapper.get_property_by_column(column).key for column in columns)


def describe_relationship(rel: orm.RelationshipProperty[Any]) -> Relation:
    """Translate a SQLAlchemy relationship into a :class:`Relation`.

    Args:
        rel: Configured relationship property.

    Returns:
        The relation descriptor. ``MANYTOONE`` becomes ``BELONGS_TO``,
        ``ONETOMANY`` becomes ``HAS_MANY`` (or ``HAS_ONE`` when ``uselist`` is
        off) and anything routed through a ``secondary`` table becomes
        ``HAS_MANY_THROUGH``.
    """
    parent = rel.parent
    target = rel.mapper

    if rel.secondary is not None:
        return Relation(
            alias=rel.key,
            kind=RelationKind.HAS_MANY_THROUGH,
            model=parent.class_,
            fields=_attribute_keys(parent, (local for local, _ in rel.synchronize_pairs)),
            referenced_model=target.class_,
            referenced_fields=_attribute_keys(
                target, (remote for remote, _ in rel.secondary_synchronize_pairs or ())
            ),
            many=bool(rel.uselist),
            intermediate=rel.secondary,
            intermediate_fields=_fields(column.key for _, column in rel.synchronize_pairs),
            intermediate_referenced_fields=_fields(
                column.key for _, column in rel.secondary_synchronize_pairs or ()
            ),
        )

    if rel.direction is orm.MANYTOONE:
        kind = RelationKind.BELONGS_TO
    else:
        kind = RelationKind.HAS_MANY if rel.uselist else RelationKind.HAS_ONE

    return Relation(
        alias=rel.key,
        kind=kind,
        model=parent.class_,
        fields=_attribute_keys(parent, (local for local, _ in rel.local_remote_pairs)),
        referenced_model=target.class_,
        referenced_fields=_attribute_keys(target, (remote for _, remote in rel.local_remote_pairs)),
        many=bool(rel.uselist),
    )


@final
class Catalog:
    """Singleton registry of relation descriptors, keyed by mapped class and alias.

    Initialize it once at startup with :func:`init_catalog`; afterwards every
    ``Catalog()`` call returns the same instance. A :class:`~sqla_eagerload.Loader`
    built without an explicit catalog resolves its relation paths here.
    """

    __instance: ClassVar[Catalog | None] = None
    _catalog: Mapping[type[Any], Mapping[str, Relation]]

    def __new__(
        cls,
        catalog: Mapping[type[Any], Mapping[str, Relation]] | None = None,
    ) -> Catalog:
        if cls.__instance is None:
            instance = super().__new__(cls)
            if catalog is not None:
                instance.set_catalog(catalog)

            cls.__instance = instance

        if not getattr(cls.__instance, "_catalog", None):
            raise RuntimeError("Catalog is not initialized or empty")

        return cls.__instance

    def get(self, model: type[Any]) -> Mapping[str, Relation]:
        """Return the relations declared on *model*, empty if the model is unknown."""
        return self.catalog.get(model, MappingProxyType({}))

    def __getitem__(self, model: type[Any]) -> Mapping[str, Relation]:
        """Return the relations declared on *model*, raising ``KeyError`` if unknown."""
        return self.catalog[model]

    def lookup(self, model: type[Any], alias: str) -> Relation | None:
        """Find the relation *alias* of *model*.

        Args:
            model: Mapped class owning the relation.
            alias: Relationship key.

        Returns:
            The relation descriptor, or ``None`` when the model has no such alias.
        """
        return self.get(model).get(alias)

    @property
    def catalog(self) -> Mapping[type[Any], Mapping[str, Relation]]:
        """The underlying model-to-relations mapping (read-only)."""
        return self._catalog

    def set_catalog(self, catalog: Mapping[type[Any], Mapping[str, Relation]]) -> None:
        self._catalog = catalog

    @classmethod
    def reset(cls) -> None:
        """Destroy the singleton, allowing re-initialization (primarily for tests)."""
        cls._catalog = {}
        cls.__instance = None


def get_catalog(base: type[orm.DeclarativeBase]) -> Mapping[type[Any], Mapping[str, Relation]]:
    """Describe every relationship of every mapper registered on *base*.

    Args:
        base: SQLAlchemy declarative base class.

    Returns:
        Read-only mapping of ``{model: {alias: Relation}}``.

    Raises:
        AssertionError: If base is not a subclass of orm.DeclarativeBase.
    """
    assert orm.DeclarativeBase in getattr(base, "__bases__", ()), (
        "base must be a subclass of orm.DeclarativeBase"
    )
    orm.configure_mappers()

    return MappingProxyType({
        mapper.class_: MappingProxyType({
            key: describe_relationship(rel) for key, rel in mapper.relationships.items()
        })
        for mapper in base.registry.mappers
    })


def init_catalog(catalog: Mapping[type[Any], Mapping[str, Relation]]) -> None:
    """Initialize the global Catalog singleton.

    Example:
        >>> from myapp.models import Base
        >>> init_catalog(get_catalog(Base))
    """
    Catalog(catalog)
