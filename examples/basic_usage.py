"""Basic sqla-json-relations usage examples.

Demonstrates grammar initialization, batch and single loads, pivot
attributes, conditions and existence filters.

NOTE: This file is illustrative — it won't run standalone
without a database and seeded data.
"""

from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from sqla_json_relations import add_conditions, init_json_grammar, json_aload, json_select, unique_scalars

from .models import Base, Role, User


# ── 1. Initialize once at startup ────────────────────────────────────

engine = create_async_engine("sqlite+aiosqlite:///:memory:")


async def setup() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # Relations declared without dialect= compile with this grammar
    init_json_grammar(engine)


# ── 2. Batch loads ───────────────────────────────────────────────────


async def get_users_with_roles(session: AsyncSession) -> list[User]:
    users = list(unique_scalars(await session.execute(sa.select(User))))
    # One query for all users, roles ordered like each user's role_ids
    await json_aload(session, users, loads=("roles",))
    return users


async def get_users_with_everything(session: AsyncSession) -> list[User]:
    users = list(unique_scalars(await session.execute(sa.select(User))))
    await json_aload(session, users, loads=("roles", "memberships", "role_names"))
    return users


# ── 3. Single instance ───────────────────────────────────────────────


async def get_user_roles(session: AsyncSession, user_id: int) -> list[Role]:
    user = await session.get(User, user_id)
    if user is None:
        return []

    await json_aload(session, user, loads=("roles",))
    return user.roles


# ── 4. Pivot attributes ──────────────────────────────────────────────


async def get_active_memberships(session: AsyncSession, user: User) -> list[str]:
    await json_aload(session, user, loads=("memberships",))
    return [role.name for role in user.memberships if role.membership.get("active")]  # type: ignore[attr-defined]


# ── 5. Conditions ────────────────────────────────────────────────────


async def get_users_with_senior_roles(session: AsyncSession) -> list[User]:
    users = list(unique_scalars(await session.execute(sa.select(User))))
    await json_aload(
        session,
        users,
        loads=("roles",),
        conditions={
            "roles": add_conditions(Role.level > 3),  # noqa: PLR2004
        },
    )
    return users


# ── 6. Building the query yourself ───────────────────────────────────


async def get_roles_by_name(session: AsyncSession, users: list[User]) -> list[Role]:
    query = json_select(users, "roles").order_by(Role.name)
    return list(unique_scalars(await session.execute(query)))


# ── 7. Existence filters ─────────────────────────────────────────────


async def get_users_with_any_role(session: AsyncSession) -> list[User]:
    query = sa.select(User).where(User.roles.has())
    return list(unique_scalars(await session.execute(query)))


async def get_admins(session: AsyncSession) -> list[User]:
    query = sa.select(User).where(User.roles.has(Role.name == "admin"))
    return list(unique_scalars(await session.execute(query)))
