"""Batched eager loading of relationships onto already fetched SQLAlchemy entities.

sqla_eagerload resolves dotted relation paths (``"posts.comments"``) against
a catalog of relation descriptors and loads each level once, in batched
``IN`` queries, attaching the rows to the entities you already hold. Initialize
the ``Catalog`` singleton at startup with your declarative base, then call
``eager_load(users, "posts.comments", "roles")`` or drive a ``Loader``
directly.
"""

from ._version import __version__, __version_tuple__
from .catalog import (
    Catalog,
    Relation,
    RelationCatalog,
    RelationKind,
    describe_relationship,
    get_catalog,
    init_catalog,
)
from .core import (
    DEFAULT_CHUNK_SIZE,
    Loader,
    Subject,
    build_tree,
    eager_load,
    eager_load_async,
    normalize_subject,
    parse_arguments,
)
from .eager_load import EagerLoad
from .errors import (
    CompositeKeyUnsupported,
    EagerLoadError,
    EmptyArguments,
    InvalidArgument,
    InvalidRelationAlias,
    InvalidSubject,
    RelationNotFound,
    UnsupportedRelationKind,
)
from .mixins import EagerLoadingMixin
from .tools import add_conditions, add_order_by, chain_constraints, chunked, unique_entities


__all__ = (
    "DEFAULT_CHUNK_SIZE",
    "Catalog",
    "CompositeKeyUnsupported",
    "EagerLoad",
    "EagerLoadError",
    "EagerLoadingMixin",
    "EmptyArguments",
    "InvalidArgument",
    "InvalidRelationAlias",
    "InvalidSubject",
    "Loader",
    "Relation",
    "RelationCatalog",
    "RelationKind",
    "RelationNotFound",
    "Subject",
    "UnsupportedRelationKind",
    "__version__",
    "__version_tuple__",
    "add_conditions",
    "add_order_by",
    "build_tree",
    "chain_constraints",
    "chunked",
    "describe_relationship",
    "eager_load",
    "eager_load_async",
    "get_catalog",
    "init_catalog",
    "normalize_subject",
    "parse_arguments",
    "unique_entities",
)
