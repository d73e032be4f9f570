"""Tests for the link repository (Cassandra and Redis replaced by doubles)."""

from unittest.mock import AsyncMock
from urllib.parse import parse_qs, urlsplit

import pytest
from cassandra import InvalidRequest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from core.config import settings
from core.exceptions import SlugAlreadyExistsError, SlugCollisionError
from database.repo import (
    delete_link,
    generate_short_url,
    read_link_by_slug,
    read_original_url_by_slug,
    record_click,
    update_link_description,
)
from database.schema import CreateLink, UTMParams


class TestGenerateShortUrl:
    """Tests for link creation."""

    @pytest.mark.asyncio
    async def test_generated_slug_is_stored_and_cached(
        self, generator, redis_client, session
    ) -> None:
        result = await generate_short_url(
            CreateLink(original_url="https://example.com"), generator, redis_client, session
        )

        slug = result["slug"]
        assert result["short_url"] == f"{settings.DOMAIN}/{slug}"
        assert result["original_url"] == "https://example.com"
        assert session.links[slug]["original_url"] == "https://example.com"
        redis_client.hset.assert_awaited_once_with(
            name=f"link:{slug}",
            mapping={"original_url": "https://example.com", "description": ""},
        )
        redis_client.expire.assert_awaited_once_with(f"link:{slug}", settings.CACHE_TTL)

    @pytest.mark.asyncio
    async def test_collision_is_retried_with_fresh_slug(
        self, generator, redis_client, session, monkeypatch
    ) -> None:
        slugs = iter(["taken1", "fresh2"])
        monkeypatch.setattr(generator, "generate", AsyncMock(side_effect=lambda: next(slugs)))
        session.taken.add("taken1")

        result = await generate_short_url(
            CreateLink(original_url="https://example.com"), generator, redis_client, session
        )

        assert result["slug"] == "fresh2"
        assert "taken1" not in session.links
        assert generator.generate.await_count == 2

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise(
        self, generator, redis_client, session, monkeypatch
    ) -> None:
        monkeypatch.setattr(generator, "generate", AsyncMock(return_value="taken"))
        session.taken.add("taken")

        with pytest.raises(SlugCollisionError):
            await generate_short_url(
                CreateLink(original_url="https://example.com"),
                generator,
                redis_client,
                session,
            )
        assert generator.generate.await_count == settings.SLUG_MAX_RETRIES
        redis_client.hset.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_custom_slug_bypasses_generator(
        self, generator, redis_client, session, monkeypatch
    ) -> None:
        monkeypatch.setattr(generator, "generate", AsyncMock())

        result = await generate_short_url(
            CreateLink(original_url="https://example.com", custom_slug="spring-sale"),
            generator,
            redis_client,
            session,
        )

        assert result["slug"] == "spring-sale"
        generator.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_taken_custom_slug_raises(self, generator, redis_client, session) -> None:
        session.taken.add("spring-sale")

        with pytest.raises(SlugAlreadyExistsError, match="spring-sale"):
            await generate_short_url(
                CreateLink(original_url="https://example.com", custom_slug="spring-sale"),
                generator,
                redis_client,
                session,
            )

    @pytest.mark.asyncio
    async def test_utm_params_are_applied(self, generator, redis_client, session) -> None:
        result = await generate_short_url(
            CreateLink(
                original_url="https://example.com/page?ref=home",
                description="Newsletter link",
                utm_params=UTMParams(utm_source="newsletter", utm_medium="email"),
            ),
            generator,
            redis_client,
            session,
        )

        query = parse_qs(urlsplit(result["original_url"]).query)
        assert query == {
            "ref": ["home"],
            "utm_source": ["newsletter"],
            "utm_medium": ["email"],
        }
        assert session.links[result["slug"]]["description"] == "Newsletter link"

    @pytest.mark.asyncio
    async def test_storage_error_propagates(self, generator, redis_client, session) -> None:
        session.error = InvalidRequest("keyspace missing")

        with pytest.raises(InvalidRequest):
            await generate_short_url(
                CreateLink(original_url="https://example.com"),
                generator,
                redis_client,
                session,
            )


class TestReadOriginalUrl:
    """Tests for slug resolution."""

    @pytest.mark.asyncio
    async def test_cache_hit_skips_database(self, redis_client, session) -> None:
        redis_client.hgetall.return_value = {"original_url": "https://cached.example"}
        session.error = InvalidRequest("should not be queried")

        assert await read_original_url_by_slug("abc", redis_client, session) == (
            "https://cached.example"
        )

    @pytest.mark.asyncio
    async def test_cache_miss_reads_database_and_caches(self, redis_client, session) -> None:
        session.links["abc"] = {
            "slug": "abc",
            "original_url": "https://stored.example",
            "description": None,
        }

        assert await read_original_url_by_slug("abc", redis_client, session) == (
            "https://stored.example"
        )
        redis_client.hset.assert_awaited_once_with(
            name="link:abc",
            mapping={"original_url": "https://stored.example", "description": ""},
        )

    @pytest.mark.asyncio
    async def test_unknown_slug_returns_none(self, redis_client, session) -> None:
        assert await read_original_url_by_slug("missing", redis_client, session) is None

    @pytest.mark.asyncio
    async def test_redis_error_propagates(self, redis_client, session) -> None:
        redis_client.hgetall.side_effect = ResponseError("WRONGTYPE")

        with pytest.raises(ResponseError):
            await read_original_url_by_slug("abc", redis_client, session)


class TestClicks:
    """Tests for click tracking and link details."""

    def test_record_click_writes_event_and_counter(self, session) -> None:
        record_click("abc", "Mozilla/5.0", "203.0.113.7", session)
        record_click("abc", None, "unknown", session)

        assert session.click_counts == {"abc": 2}
        assert [c["ip_address"] for c in session.clicks] == ["203.0.113.7", "unknown"]
        assert session.clicks[0]["user_agent"] == "Mozilla/5.0"

    def test_link_details_include_click_count(self, session) -> None:
        session.links["abc"] = {
            "slug": "abc",
            "original_url": "https://stored.example",
            "description": "Docs",
        }
        record_click("abc", None, "unknown", session)

        details = read_link_by_slug("abc", session)

        assert details == {
            "slug": "abc",
            "short_url": f"{settings.DOMAIN}/abc",
            "original_url": "https://stored.example",
            "description": "Docs",
            "click_count": 1,
        }

    def test_link_details_without_clicks(self, session) -> None:
        session.links["abc"] = {"slug": "abc", "original_url": "https://x.example"}

        assert read_link_by_slug("abc", session)["click_count"] == 0

    def test_link_details_unknown_slug(self, session) -> None:
        assert read_link_by_slug("missing", session) is None


class TestUpdateAndDelete:
    """Tests for description updates and link deletion."""

    @pytest.mark.asyncio
    async def test_update_description_invalidates_cache(self, redis_client, session) -> None:
        session.links["abc"] = {"slug": "abc", "original_url": "https://x.example"}

        assert await update_link_description("abc", "  New docs ", redis_client, session)

        assert session.links["abc"]["description"] == "New docs"
        redis_client.delete.assert_awaited_once_with("link:abc")

    @pytest.mark.asyncio
    async def test_blank_description_is_cleared(self, redis_client, session) -> None:
        session.links["abc"] = {
            "slug": "abc",
            "original_url": "https://x.example",
            "description": "Old",
        }

        assert await update_link_description("abc", "   ", redis_client, session)
        assert session.links["abc"]["description"] is None

    @pytest.mark.asyncio
    async def test_update_unknown_slug(self, redis_client, session) -> None:
        assert not await update_link_description("missing", "x", redis_client, session)
        redis_client.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delete_removes_link_clicks_and_cache(self, redis_client, session) -> None:
        session.links["abc"] = {"slug": "abc", "original_url": "https://x.example"}
        record_click("abc", None, "unknown", session)
        record_click("other", None, "unknown", session)

        assert await delete_link("abc", redis_client, session)

        assert "abc" not in session.links
        assert session.click_counts == {"other": 1}
        assert [c["slug"] for c in session.clicks] == ["other"]
        redis_client.delete.assert_awaited_once_with("link:abc")

    @pytest.mark.asyncio
    async def test_delete_unknown_slug(self, redis_client, session) -> None:
        assert not await delete_link("missing", redis_client, session)
        redis_client.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_redis_connection_error_propagates(self, redis_client, session) -> None:
        session.links["abc"] = {"slug": "abc", "original_url": "https://x.example"}
        redis_client.delete.side_effect = RedisConnectionError("refused")

        with pytest.raises(RedisConnectionError):
            await delete_link("abc", redis_client, session)
