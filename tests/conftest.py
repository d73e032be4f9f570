"""Shared pytest fixtures for the link shortener tests.

Cassandra and Redis are replaced by in-memory doubles so that the repository
and HTTP layers can be exercised without running either server.
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from cassandra import InvalidRequest

from utils.snowflake import SnowflakeIDGenerator


def unix_ms(iso: str) -> int:
    """Convert an ISO-8601 UTC timestamp to Unix milliseconds."""
    return int(datetime.fromisoformat(iso).replace(tzinfo=timezone.utc).timestamp() * 1000)


class FakeClock:
    """Manually driven millisecond clock."""

    def __init__(self, now_ms: int) -> None:
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


class FakeSession:
    """In-memory stand-in for a Cassandra session.

    Only the statements issued by ``database.repo`` are understood. Prepared
    statements are the normalized CQL text.
    """

    def __init__(self) -> None:
        self.links: dict[str, dict] = {}
        self.clicks: list[dict] = []
        self.click_counts: dict[str, int] = {}
        self.taken: set[str] = set()
        self.error: Exception | None = None

    def prepare(self, query: str) -> str:
        return " ".join(query.split())

    def execute_async(self, query: str, params: list):
        if self.error is not None:
            raise self.error
        future = MagicMock()
        future.result.return_value = self._execute(query, params)
        return future

    def _execute(self, query: str, params: list):
        if query.startswith("INSERT INTO link (") and query.endswith("IF NOT EXISTS"):
            slug, original_url, description, created_at = params
            applied = slug not in self.links and slug not in self.taken
            if applied:
                self.links[slug] = {
                    "slug": slug,
                    "original_url": original_url,
                    "description": description,
                    "created_at": created_at,
                }
            return MagicMock(was_applied=applied)
        if query.startswith("SELECT * FROM link WHERE"):
            slug = params[0]
            return [self.links[slug]] if slug in self.links else []
        if query.startswith("SELECT clicks FROM link_click_counts"):
            slug = params[0]
            return [{"clicks": self.click_counts[slug]}] if slug in self.click_counts else []
        if query.startswith("INSERT INTO link_clicks"):
            slug, click_id, user_agent, ip_address, clicked_at = params
            self.clicks.append(
                {"slug": slug, "id": click_id, "user_agent": user_agent, "ip_address": ip_address}
            )
            return []
        if query.startswith("UPDATE link_click_counts"):
            slug = params[0]
            self.click_counts[slug] = self.click_counts.get(slug, 0) + 1
            return []
        if query.startswith("UPDATE link SET description"):
            description, slug = params
            if slug not in self.links:
                return MagicMock(was_applied=False)
            self.links[slug]["description"] = description
            return MagicMock(was_applied=True)
        if query.startswith("DELETE FROM link WHERE"):
            slug = params[0]
            return MagicMock(was_applied=self.links.pop(slug, None) is not None)
        if query.startswith("DELETE FROM link_clicks"):
            self.clicks = [c for c in self.clicks if c["slug"] != params[0]]
            return []
        if query.startswith("DELETE FROM link_click_counts"):
            self.click_counts.pop(params[0], None)
            return []
        raise InvalidRequest(f"Unexpected statement: {query}")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(unix_ms("2024-01-01T00:00:00"))


@pytest.fixture
def generator(clock: FakeClock) -> SnowflakeIDGenerator:
    return SnowflakeIDGenerator(worker_id=7, clock=clock)


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def redis_client() -> AsyncMock:
    client = AsyncMock()
    client.hgetall.return_value = {}
    return client
