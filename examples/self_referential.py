"""Self-referential JSON relation example.

Demonstrates loading and filtering relations whose JSON keys point back
at the same table (Category).
"""

from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from sqla_json_relations import json_aload, unique_scalars

from .models import Category


async def get_categories_with_see_also(session: AsyncSession) -> list[Category]:
    categories = list(unique_scalars(await session.execute(sa.select(Category))))
    await json_aload(session, categories, loads=("see_also", "weighted"))
    return categories


async def get_weights(session: AsyncSession, category: Category) -> dict[str, float]:
    await json_aload(session, category, loads=("weighted",))
    return {related.name: related.pivot.weight for related in category.weighted}  # type: ignore[attr-defined]


async def get_referenced_categories(session: AsyncSession) -> list[Category]:
    # The related side is aliased automatically, so criteria on Category
    # apply to the referenced rows, not the outer ones
    query = sa.select(Category).where(Category.see_also.has(Category.name.startswith("py")))
    return list(unique_scalars(await session.execute(query)))
