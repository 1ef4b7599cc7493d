from __future__ import annotations

import sys
from typing import Any


if sys.version_info >= (3, 11):
    from typing import Self, Unpack
else:
    from typing_extensions import Self, Unpack

import sqlalchemy as sa
from sqlalchemy import orm

from .core import Loader, _AsyncLoaderParams


class EagerLoadingMixin:
    """Model-side shortcuts around :class:`~sqla_eagerload.Loader`.

    Mix into declarative models::

        class User(EagerLoadingMixin, Base):
            ...

        users = User.find_with(session, "posts.comments")
        user.eager_load("roles")
    """

    @classmethod
    def find_with(
        cls,
        session: orm.Session,
        *loads: Any,
        query: sa.Select[Any] | None = None,
        **params: Unpack[_AsyncLoaderParams],
    ) -> list[Self]:
        """Run *query* (``select(cls)`` by default) and eager-load every row."""
        entities = session.scalars(query if query is not None else sa.select(cls)).unique().all()

        return Loader(entities, *loads, session=session, **params).execute().get() or []

    @classmethod
    def find_first_with(
        cls,
        session: orm.Session,
        *loads: Any,
        query: sa.Select[Any] | None = None,
        **params: Unpack[_AsyncLoaderParams],
    ) -> Self | None:
        """Like :meth:`find_with` for the first row only; ``None`` if nothing matched."""
        entity = session.scalars(
            (query if query is not None else sa.select(cls)).limit(1)
        ).unique().first()
        if entity is None:
            return None

        return Loader(entity, *loads, session=session, **params).execute().get()

    def eager_load(self, *loads: Any, **params: Unpack[_AsyncLoaderParams]) -> Self:
        """Eager-load relation paths onto this instance and return it."""
        return Loader(self, *loads, **params).execute().get()
