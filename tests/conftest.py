from __future__ import annotations

import os
from collections.abc import AsyncIterator, Iterator
from typing import Final

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    create_async_engine,
)

from sqla_json_relations import json_cache_clear
from sqla_json_relations.grammar import init_json_grammar, reset_json_grammar

from .models import Base, Post, Tag


GRAMMAR_BY_BACKEND: Final[dict[str, str]] = {
    "postgres": "postgresql",
    "mysql": "mysql",
    "mariadb": "mariadb",
    "sqlite": "sqlite",
}

pytestmark = pytest.mark.anyio


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--db",
        default="sqlite",
        choices=["postgres", "mysql", "mariadb", "sqlite"],
        help="Database backend to test against",
    )


@pytest.fixture(scope="session")
def db_backend(request: pytest.FixtureRequest) -> str:
    value: str = request.config.getoption("--db")

    return value


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def _init_grammar(db_backend: str) -> Iterator[None]:
    """Configure the default JSON grammar for the selected backend.

    Sync, no DB needed -- safe to run for all tests including unit tests.
    """
    init_json_grammar(GRAMMAR_BY_BACKEND[db_backend])
    yield
    reset_json_grammar()


@pytest.fixture(scope="session")
def db_config(db_backend: str, tmp_path_factory: pytest.TempPathFactory) -> Iterator[str]:
    match db_backend:
        case "postgres":
            from testcontainers.postgres import PostgresContainer

            pg = PostgresContainer(image="postgres:latest")
            if os.name == "nt":
                pg.get_container_host_ip = lambda: "127.0.0.1"
            with pg:
                host = pg.get_container_host_ip()
                dsn = (
                    f"postgresql+asyncpg://{pg.username}:{pg.password}"
                    f"@{host}:{pg.get_exposed_port(pg.port)}/{pg.dbname}"
                )
                yield dsn

        case "mysql":
            from testcontainers.mysql import MySqlContainer

            my = MySqlContainer(image="mysql:8.0")
            if os.name == "nt":
                my.get_container_host_ip = lambda: "127.0.0.1"
            with my:
                host = my.get_container_host_ip()
                port = my.get_exposed_port(my.port)
                dsn = (
                    f"mysql+asyncmy://{my.username}:{my.password}"
                    f"@{host}:{port}/{my.dbname}"
                )
                yield dsn

        case "mariadb":
            from testcontainers.mysql import MySqlContainer as MariaDBContainer

            ma = MariaDBContainer(image="mariadb:latest")
            if os.name == "nt":
                ma.get_container_host_ip = lambda: "127.0.0.1"
            with ma:
                host = ma.get_container_host_ip()
                port = ma.get_exposed_port(ma.port)
                dsn = (
                    f"mysql+asyncmy://{ma.username}:{ma.password}"
                    f"@{host}:{port}/{ma.dbname}"
                )
                yield dsn

        case "sqlite":
            tmp = tmp_path_factory.mktemp("db")
            yield f"sqlite+aiosqlite:///{tmp}/test.db"


@pytest.fixture(scope="session")
def engine(db_config: str) -> AsyncEngine:
    return create_async_engine(db_config, echo=False)


@pytest.fixture(scope="session")
async def _create_tables(engine: AsyncEngine) -> AsyncIterator[None]:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def connection(
    engine: AsyncEngine, _create_tables: None
) -> AsyncIterator[AsyncConnection]:
    async with engine.connect() as conn:
        trans = await conn.begin()
        yield conn
        await trans.rollback()


@pytest.fixture
async def session(connection: AsyncConnection) -> AsyncIterator[AsyncSession]:
    sess = AsyncSession(bind=connection, expire_on_commit=False)
    yield sess
    await sess.close()


@pytest.fixture
async def seed_data(session: AsyncSession) -> dict[str, list[Base]]:
    python = Tag(id=1, name="python")
    sqlalchemy = Tag(id=2, name="sqlalchemy")
    json = Tag(id=3, name="json")
    session.add_all([python, sqlalchemy, json])
    await session.flush()

    post1 = Post(
        id=1,
        title="Post 1",
        options={
            "recommendation_ids": [2, 5],
            "recommendations": [
                {"post_id": 3, "score": 0.9},
                {"post_id": 9, "score": 0.5},
            ],
            "tag_ids": [2, 1],
            "tags": [{"tag_id": 1, "rank": 2}, {"tag_id": 3, "rank": 1}],
            "tag_names": ["json", "missing", "python"],
        },
        picks=[{"post_id": 2, "note": "classic"}, {"post_id": 4, "note": "fresh"}],
    )
    post2 = Post(
        id=2,
        title="Post 2",
        options={
            "recommendation_ids": [5, 3],
            "recommendations": [{"post_id": 1, "score": 0.1, "reason": "same author"}],
        },
        picks=[],
    )
    post3 = Post(id=3, title="Post 3", options={"recommendation_ids": [9]}, picks=[])
    post4 = Post(id=4, title="Post 4", options={}, picks=[])
    post5 = Post(id=5, title="Post 5", options={"recommendation_ids": [3, 3, 1]}, picks=[])
    session.add_all([post1, post2, post3, post4, post5])
    await session.flush()

    session.expunge_all()

    return {
        "tags": [python, sqlalchemy, json],
        "posts": [post1, post2, post3, post4, post5],
    }


@pytest.fixture(autouse=True)
def clear_lru_caches() -> Iterator[None]:
    yield
    json_cache_clear()
