from __future__ import annotations

import pytest

from familytree.domain.models import Base
from familytree.persistence.db import engine


@pytest.fixture(autouse=True)
async def reset_schema_between_tests() -> None:
    # Every integration test starts from an empty schema.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
