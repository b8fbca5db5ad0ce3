"""Shared fixtures: a throwaway SQLite database per test and a recording notifier."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "api"))

# Must be set before config / db.database are imported.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["RENEWAL_SCHEDULER_ENABLED"] = "false"
os.environ.pop("TELEGRAM_BOT_TOKEN", None)

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

import models  # noqa: F401  (registers every table on Base.metadata)
from db.database import Base


class RecordingNotifier:
    """Stands in for the Telegram sender; remembers every message."""

    def __init__(self):
        self.sent: list[tuple[int | None, str]] = []

    async def __call__(self, telegram_id, message):
        self.sent.append((telegram_id, message))
        return True

    def messages(self) -> list[str]:
        return [message for _, message in self.sent]


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'subscriptions.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def notifier():
    return RecordingNotifier()
