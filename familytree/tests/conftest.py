from __future__ import annotations

import os
import tempfile

# Settings are cached on first import, so the test database must be chosen before any app module loads.
_DEFAULT_TEST_DB = os.path.join(tempfile.gettempdir(), f"familytree-test-{os.getpid()}.db")
os.environ["DATABASE_URL"] = os.getenv("FAMILYTREE_TEST_DATABASE_URL", f"sqlite+aiosqlite:///{_DEFAULT_TEST_DB}")
os.environ.setdefault("AUTH_JWT_SECRET", "test-secret-with-enough-length-for-hs256")
os.environ.setdefault("AUTH_DEV_BYPASS", "true")

import pytest  # noqa: E402

from familytree.persistence.db import engine  # noqa: E402


@pytest.fixture(autouse=True)
async def dispose_engine_between_tests() -> None:
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    yield
    await engine.dispose()
