"""Minimal models for sqla-json-relations examples."""

from __future__ import annotations

from typing import Any

import sqlalchemy as sa
from sqlalchemy import orm

from sqla_json_relations import BelongsToJson


class Base(orm.DeclarativeBase):
    pass


class Role(Base):
    __tablename__ = "roles"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    name: orm.Mapped[str] = orm.mapped_column(sa.String(50), unique=True)
    level: orm.Mapped[int] = orm.mapped_column(default=0)


class User(Base):
    __tablename__ = "users"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    name: orm.Mapped[str] = orm.mapped_column(sa.String(100))
    # {"role_ids": [1, 2], "roles": [{"role_id": 1, "active": true}]}
    settings: orm.Mapped[dict[str, Any]] = orm.mapped_column(sa.JSON, default=dict)

    roles = BelongsToJson(Role, "settings->role_ids")
    memberships = BelongsToJson(Role, "settings->roles[]->role_id", pivot_attribute="membership")
    role_names = BelongsToJson(Role, "settings->role_names", owner_key="name")


class Category(Base):
    __tablename__ = "categories"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    name: orm.Mapped[str] = orm.mapped_column(sa.String(100))
    # [{"category_id": 4, "weight": 0.5}, ...]
    related: orm.Mapped[list[dict[str, Any]]] = orm.mapped_column(sa.JSON, default=list)
    options: orm.Mapped[dict[str, Any]] = orm.mapped_column(sa.JSON, default=dict)

    see_also = BelongsToJson("Category", "options->see_also_ids")
    weighted = BelongsToJson("Category", "related[]->category_id")
