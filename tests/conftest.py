"""Pytest configuration and shared fixtures."""

from collections.abc import Callable, Iterator
from datetime import datetime, timezone

import pytest
from sqlalchemy import text
from sqlalchemy.engine import Engine

from retention_rules.classify import ClassificationEngine
from retention_rules.config import Settings
from retention_rules.db import build_engine, ensure_schema
from retention_rules.models import PendingMessage
from retention_rules.repository import message_repository
from retention_rules.rules import RuleMutationEngine, RuleSetCache

OWNER = "alice@example.org"
OTHER_OWNER = "bob@example.org"


@pytest.fixture
def mock_settings(tmp_path) -> Settings:
    """Provide settings pointing at a throwaway SQLite database."""
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'rules.sqlite3'}",
        log_level="DEBUG",
        debug=True,
    )


@pytest.fixture
def engine(mock_settings: Settings) -> Iterator[Engine]:
    eng = build_engine(settings=mock_settings)
    ensure_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def cache() -> RuleSetCache:
    return RuleSetCache(ttl_seconds=60.0)


@pytest.fixture
def mutations(engine: Engine, cache: RuleSetCache) -> RuleMutationEngine:
    return RuleMutationEngine(engine, cache=cache)


@pytest.fixture
def classifier(engine: Engine, cache: RuleSetCache) -> ClassificationEngine:
    return ClassificationEngine(engine, cache=cache)


@pytest.fixture
def row_count(engine: Engine) -> Callable[[str], int]:
    """Count rows of a table."""

    def _count(table: str) -> int:
        with engine.connect() as conn:
            return int(conn.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar_one())

    return _count


@pytest.fixture
def ingest(engine: Engine) -> Callable[..., PendingMessage]:
    """Store one pending message and return it as supplied."""

    counter = {"n": 0}

    def _ingest(
        from_email: str,
        subject: str = "",
        *,
        owner: str = OWNER,
        to_email: str = OWNER,
        email_date: datetime | None = None,
        message_id: str | None = None,
    ) -> PendingMessage:
        counter["n"] += 1
        msg = PendingMessage(
            message_id=message_id or f"msg-{counter['n']}",
            owner_user_id=owner,
            from_email=from_email,
            to_email=to_email,
            subject=subject,
            email_date=email_date or datetime(2026, 1, 1, tzinfo=timezone.utc),
        )
        message_repository.upsert_pending_messages(engine=engine, messages=[msg])
        return msg

    return _ingest
