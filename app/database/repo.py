"""
Database Repository Module for the Link Shortener Service

This module provides the data access layer of the service, using Cassandra as
the source of truth and Redis as a read-through cache.

Storage Architecture:
    - Cassandra: Persistent link records, click events and click counters
    - Redis: Cache of slug to destination URL with a configurable TTL

Data Flow:
    1. Link Creation: Generate Snowflake slug → Conditional insert in Cassandra
       (IF NOT EXISTS) → Retry with a fresh slug on collision → Cache in Redis
    2. Link Resolution: Check Redis cache → Fallback to Cassandra → Update cache
    3. Click Tracking: Insert a click event → Increment the click counter

Error Handling:
    - Driver errors are logged and re-raised for the HTTP layer to translate
    - A taken custom slug raises SlugAlreadyExistsError
    - Exhausted retries on generated slugs raise SlugCollisionError

Dependencies:
    - cassandra-driver: Prepared statements on the shared session
    - redis.asyncio: Async Redis client for caching operations
    - utils.snowflake: Unique slug generation
"""

from datetime import datetime, timezone
from typing import Optional

from cassandra import InvalidRequest
from cassandra.cluster import Session
from cassandra.util import uuid_from_time
import redis.asyncio as redis
from redis.exceptions import ConnectionError, ResponseError, TimeoutError

from core.config import settings
from core.exceptions import SlugAlreadyExistsError, SlugCollisionError
from database.schema import CreateLink
from services.logger import setup_logger
from utils.snowflake import SnowflakeIDGenerator
from utils.url import apply_utm_params

logger = setup_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _cache_key(slug: str) -> str:
    return f"link:{slug}"


def _short_url(slug: str) -> str:
    return f"{settings.DOMAIN}/{slug}"


async def _cache_link(slug: str, data: dict, redis_client: redis.Redis):
    """Cache the link mapping in Redis.

    Args:
        slug (str): The slug the mapping belongs to.
        data (dict): The link fields to cache. None values are stored as "".
        redis_client (redis.Redis): Async Redis client.
    """
    key = _cache_key(slug)
    mapping = {field: "" if value is None else value for field, value in data.items()}
    await redis_client.hset(name=key, mapping=mapping)
    await redis_client.expire(key, settings.CACHE_TTL)


def _insert_link(
    session: Session, slug: str, original_url: str, description: Optional[str]
) -> bool:
    """Insert a link row unless the slug is already taken.

    Returns:
        bool: True if the row was written, False if the slug already exists.
    """
    query = session.prepare(
        """
        INSERT INTO link (slug, original_url, description, created_at)
        VALUES (?, ?, ?, ?)
        IF NOT EXISTS
        """
    )
    future = session.execute_async(
        query, [slug, original_url, description, _utcnow()]
    )
    return future.result().was_applied


async def generate_short_url(
    link_data: CreateLink,
    snowflake_generator: SnowflakeIDGenerator,
    redis_client: redis.Redis,
    session: Session,
) -> dict:
    """Create a shortened link for the given original URL.

    A custom slug bypasses the generator. Otherwise a Snowflake slug is
    generated and inserted conditionally; when the database reports that the
    slug already exists, a new one is generated, up to SLUG_MAX_RETRIES times.

    Args:
        link_data (CreateLink): Data for the link to be shortened.
        snowflake_generator (SnowflakeIDGenerator): Generator of unique slugs.
        redis_client (redis.Redis): Async Redis client for caching operations.
        session (Session): Cassandra session.

    Returns:
        dict: The slug, short URL, original URL and description.

    Raises:
        SlugAlreadyExistsError: If the custom slug is taken.
        SlugCollisionError: If every generated slug collided.
        IdGenerationError: If the generator failed to produce a slug.
        InvalidRequest: If the Cassandra operation fails.
        ResponseError: If the Redis operation fails.
        TimeoutError: If the Redis operation times out.
    """
    original_url = apply_utm_params(
        link_data.original_url,
        link_data.utm_params.model_dump() if link_data.utm_params else None,
    )

    try:
        if link_data.custom_slug:
            slug = link_data.custom_slug
            if not _insert_link(session, slug, original_url, link_data.description):
                logger.warning("Custom slug '%s' is already in use.", slug)
                raise SlugAlreadyExistsError(
                    f"Slug '{slug}' is already in use. Please choose another one."
                )
        else:
            for attempt in range(1, settings.SLUG_MAX_RETRIES + 1):
                slug = await snowflake_generator.generate()
                if _insert_link(session, slug, original_url, link_data.description):
                    break
                logger.warning(
                    "Generated slug '%s' collided (attempt %d/%d)",
                    slug,
                    attempt,
                    settings.SLUG_MAX_RETRIES,
                )
            else:
                raise SlugCollisionError(
                    f"Could not allocate a unique slug after {settings.SLUG_MAX_RETRIES} attempts"
                )

        result_data = {
            "slug": slug,
            "short_url": _short_url(slug),
            "original_url": original_url,
            "description": link_data.description,
        }

        await _cache_link(
            slug,
            {"original_url": original_url, "description": link_data.description},
            redis_client,
        )
        logger.info("Successfully generated short URL for: %s", original_url)
        return result_data

    except (InvalidRequest, ConnectionError, ResponseError, TimeoutError) as e:
        logger.error("Short URL generation failed: %s", e)
        raise


async def read_original_url_by_slug(
    slug: str, redis_client: redis.Redis, session: Session
) -> Optional[str]:
    """Retrieve the original URL for a given slug.

    Args:
        slug (str): The slug of the shortened link.
        redis_client (redis.Redis): Async Redis client for cache operations.
        session (Session): Cassandra session.

    Returns:
        The original URL, or None if not found.

    Raises:
        InvalidRequest: If the Cassandra operation fails.
        ResponseError: If the Redis operation fails.
        TimeoutError: If the Redis operation times out.
    """
    try:
        cached_data = await redis_client.hgetall(_cache_key(slug))
        if cached_data:
            logger.debug("Cache hit for slug: %s", slug)
            return cached_data["original_url"]

        logger.debug("Cache miss for slug: %s, querying database", slug)

        query = session.prepare("SELECT * FROM link WHERE slug=?")
        rows = session.execute_async(query, [slug]).result()

        if not rows:
            logger.warning("Slug not found in database: %s", slug)
            return None

        db_data = rows[0]
        await _cache_link(
            slug,
            {
                "original_url": db_data["original_url"],
                "description": db_data.get("description"),
            },
            redis_client,
        )
        logger.info("Successfully retrieved and cached URL for slug: %s", slug)
        return db_data["original_url"]

    except (InvalidRequest, ConnectionError, ResponseError, TimeoutError) as e:
        logger.error("Failed to read original URL for slug %s: %s", slug, e)
        raise


def _read_click_count(slug: str, session: Session) -> int:
    query = session.prepare("SELECT clicks FROM link_click_counts WHERE slug=?")
    rows = session.execute_async(query, [slug]).result()
    if not rows:
        return 0
    return rows[0]["clicks"] or 0


def read_link_by_slug(slug: str, session: Session) -> Optional[dict]:
    """Retrieve a stored link together with its total click count.

    Returns:
        The link fields plus ``click_count``, or None if not found.

    Raises:
        InvalidRequest: If the Cassandra operation fails.
    """
    try:
        query = session.prepare("SELECT * FROM link WHERE slug=?")
        rows = session.execute_async(query, [slug]).result()
        if not rows:
            return None

        db_data = rows[0]
        return {
            "slug": slug,
            "short_url": _short_url(slug),
            "original_url": db_data["original_url"],
            "description": db_data.get("description"),
            "click_count": _read_click_count(slug, session),
        }
    except InvalidRequest as e:
        logger.error("Failed to read link %s: %s", slug, e)
        raise


def record_click(
    slug: str, user_agent: Optional[str], ip_address: str, session: Session
) -> None:
    """Record one redirect through a link.

    Writes a click event and increments the slug's click counter. Counter
    updates cannot share a batch with regular writes, so two statements are
    issued.

    Raises:
        InvalidRequest: If the Cassandra operation fails.
    """
    now = _utcnow()
    try:
        insert_click = session.prepare(
            """
            INSERT INTO link_clicks (slug, id, user_agent, ip_address, clicked_at)
            VALUES (?, ?, ?, ?, ?)
            """
        )
        increment = session.prepare(
            "UPDATE link_click_counts SET clicks = clicks + 1 WHERE slug=?"
        )
        click_future = session.execute_async(
            insert_click, [slug, uuid_from_time(now), user_agent, ip_address, now]
        )
        count_future = session.execute_async(increment, [slug])
        click_future.result()
        count_future.result()
        logger.debug("Recorded click for slug %s from %s", slug, ip_address)
    except InvalidRequest as e:
        logger.error("Failed to record click for slug %s: %s", slug, e)
        raise


async def update_link_description(
    slug: str, description: Optional[str], redis_client: redis.Redis, session: Session
) -> bool:
    """Replace the description of a stored link.

    Blank descriptions are stored as null. The cached entry is dropped so the
    next lookup repopulates it from Cassandra.

    Returns:
        bool: True if the link exists and was updated, False otherwise.

    Raises:
        InvalidRequest: If the Cassandra operation fails.
        ResponseError: If the Redis operation fails.
    """
    description = (description or "").strip() or None
    try:
        query = session.prepare("UPDATE link SET description=? WHERE slug=? IF EXISTS")
        if not session.execute_async(query, [description, slug]).result().was_applied:
            logger.warning("Cannot update missing slug: %s", slug)
            return False

        await redis_client.delete(_cache_key(slug))
        logger.info("Updated description of slug: %s", slug)
        return True
    except (InvalidRequest, ConnectionError, ResponseError, TimeoutError) as e:
        logger.error("Failed to update link %s: %s", slug, e)
        raise


async def delete_link(slug: str, redis_client: redis.Redis, session: Session) -> bool:
    """Delete a link together with its click events and counter.

    Returns:
        bool: True if the link existed and was deleted, False otherwise.

    Raises:
        InvalidRequest: If the Cassandra operation fails.
        ResponseError: If the Redis operation fails.
    """
    try:
        query = session.prepare("DELETE FROM link WHERE slug=? IF EXISTS")
        if not session.execute_async(query, [slug]).result().was_applied:
            logger.warning("Cannot delete missing slug: %s", slug)
            return False

        clicks_future = session.execute_async(
            session.prepare("DELETE FROM link_clicks WHERE slug=?"), [slug]
        )
        count_future = session.execute_async(
            session.prepare("DELETE FROM link_click_counts WHERE slug=?"), [slug]
        )
        clicks_future.result()
        count_future.result()

        await redis_client.delete(_cache_key(slug))
        logger.info("Deleted slug: %s", slug)
        return True
    except (InvalidRequest, ConnectionError, ResponseError, TimeoutError) as e:
        logger.error("Failed to delete link %s: %s", slug, e)
        raise
