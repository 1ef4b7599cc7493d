"""Minimal models for sqla-eagerload examples."""

from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy import orm

from sqla_eagerload import EagerLoadingMixin


class Base(orm.DeclarativeBase):
    pass


user_roles = sa.Table(
    "user_roles",
    Base.metadata,
    sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), primary_key=True),
    sa.Column("role_id", sa.Integer, sa.ForeignKey("roles.id"), primary_key=True),
)


class User(EagerLoadingMixin, Base):
    __tablename__ = "users"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    name: orm.Mapped[str] = orm.mapped_column(sa.String(100))

    posts: orm.Mapped[list[Post]] = orm.relationship(back_populates="author", lazy="noload")
    roles: orm.Mapped[list[Role]] = orm.relationship(
        secondary=user_roles, back_populates="users", lazy="noload"
    )


class Post(Base):
    __tablename__ = "posts"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    title: orm.Mapped[str] = orm.mapped_column(sa.String(200))
    published: orm.Mapped[bool] = orm.mapped_column(default=True)
    author_id: orm.Mapped[int] = orm.mapped_column(sa.ForeignKey("users.id"))

    author: orm.Mapped[User] = orm.relationship(back_populates="posts", lazy="noload")
    comments: orm.Mapped[list[Comment]] = orm.relationship(back_populates="post", lazy="noload")


class Comment(Base):
    __tablename__ = "comments"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    text: orm.Mapped[str] = orm.mapped_column(sa.Text)
    post_id: orm.Mapped[int] = orm.mapped_column(sa.ForeignKey("posts.id"))

    post: orm.Mapped[Post] = orm.relationship(back_populates="comments", lazy="noload")


class Role(Base):
    __tablename__ = "roles"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    name: orm.Mapped[str] = orm.mapped_column(sa.String(50))
    level: orm.Mapped[int] = orm.mapped_column(default=0)

    users: orm.Mapped[list[User]] = orm.relationship(
        secondary=user_roles, back_populates="roles", lazy="noload"
    )
