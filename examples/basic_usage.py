"""Basic sqla-eagerload usage examples.

Demonstrates initialization, simple and dotted paths, constraints,
incremental paths, the model mixin and async sessions.

NOTE: This file is illustrative, it will not run standalone
without a database and seeded data.
"""

from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy import orm
from sqlalchemy.ext.asyncio import AsyncSession

from sqla_eagerload import (
    Loader,
    add_conditions,
    add_order_by,
    chain_constraints,
    eager_load,
    eager_load_async,
    get_catalog,
    init_catalog,
)

from .models import Base, Comment, Post, Role, User


# ── 1. Initialize once at startup ────────────────────────────────────


def setup() -> None:
    # Call once, describes every relationship of every mapped class
    init_catalog(get_catalog(Base))


# ── 2. Simple paths ──────────────────────────────────────────────────


def get_users_with_posts(session: orm.Session) -> list[User]:
    users = session.scalars(sa.select(User)).all()
    return eager_load(users, "posts")


def get_user_with_all(session: orm.Session, user_id: int) -> User:
    user = session.get_one(User, user_id)
    return eager_load(user, "posts", "roles")


# ── 3. Dotted paths (each prefix is loaded once) ─────────────────────


def get_users_deep(session: orm.Session) -> list[User]:
    users = session.scalars(sa.select(User)).all()
    return eager_load(users, "posts", "posts.comments", "posts.author")


# ── 4. Constraints (applied to the last segment of their path) ──────


def get_users_with_senior_roles(session: orm.Session) -> list[User]:
    users = session.scalars(sa.select(User)).all()
    return eager_load(users, {"roles": add_conditions(Role.level > 3)})  # noqa: PLR2004


def get_users_with_published_posts(session: orm.Session) -> list[User]:
    users = session.scalars(sa.select(User)).all()
    return eager_load(
        users,
        {
            "posts": chain_constraints(
                add_conditions(Post.published.is_(True)),
                add_order_by(Post.id.desc()),
            ),
            "posts.comments": add_order_by(Comment.id),
        },
    )


# ── 5. Incremental paths and straight from a result ─────────────────


def get_users_incremental(session: orm.Session, with_roles: bool) -> list[User] | None:
    loader = Loader(session.scalars(sa.select(User)), "posts")
    if with_roles:
        loader.add_eager_load("roles")

    return loader.execute().get()


# ── 6. Model mixin ───────────────────────────────────────────────────


def find_users(session: orm.Session) -> list[User]:
    return User.find_with(session, "posts.comments", query=sa.select(User).order_by(User.name))


# ── 7. Async sessions ────────────────────────────────────────────────


async def get_users_async(session: AsyncSession) -> list[User]:
    users = (await session.scalars(sa.select(User))).all()
    return await eager_load_async(session, users, "posts.comments", "roles")
