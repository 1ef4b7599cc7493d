"""Exceptions raised while preparing an eager load.

Every error here is raised at construction or tree-build time, before any
query is issued and before any entity is touched. Errors raised by SQLAlchemy
while a node fetches its rows are not wrapped.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from .catalog import Relation


class EagerLoadError(Exception):
    """Base class for every eager-loading error."""


class InvalidSubject(EagerLoadError, TypeError):
    """The root input is neither a mapped instance, a result nor a homogeneous iterable."""


class InvalidRelationAlias(EagerLoadError, TypeError):
    """A relation path passed to ``Loader.add_eager_load`` is not a non-empty string."""


class EmptyArguments(EagerLoadError, ValueError):
    """No relation path arguments were given at all."""


class InvalidArgument(EagerLoadError, ValueError):
    """Relation path arguments were given but none of them is usable."""


class RelationNotFound(EagerLoadError, LookupError):
    def __init__(self, model: type[Any], alias: str) -> None:
        self.model = model
        self.alias = alias
        super().__init__(
            f"There is no defined relation for the model `{model.__name__}` using alias `{alias}`"
        )


class UnsupportedRelationKind(EagerLoadError, RuntimeError):
    def __init__(self, kind: Any) -> None:
        self.kind = kind
        super().__init__(f"Unknown relation type `{kind}`")


class CompositeKeyUnsupported(EagerLoadError, RuntimeError):
    def __init__(self, relation: Relation) -> None:
        self.relation = relation
        super().__init__(
            f"Relations with composite keys are not supported "
            f"(`{relation.model.__name__}.{relation.alias}`)"
        )
