"""
Database Connection and Model Module for the Link Shortener Service

This module handles all database connectivity and model definitions for the link
shortening service. It manages connections to both Cassandra (primary storage)
and Redis (caching layer) with retry logic and environment-specific configuration.

Database Architecture:
    - Cassandra: Primary persistent storage, either DataStax Astra DB (secure
      connect bundle) or a plain cluster reachable at CASSANDRA_HOST
    - Redis: Caching layer for slug to URL lookups

Model Design:
    - Link: one row per slug, inserted with a lightweight transaction
      (IF NOT EXISTS) so that a slug collision is detected by the database
    - LinkClick: one row per redirect, clustered by time within a slug
    - LinkClickCount: Cassandra counter holding the total clicks of a slug

Connection Resilience:
    - Multi-attempt Cassandra connection with a fixed delay between attempts
    - Detailed logging for connection status and failure diagnosis

Dependencies:
    - cassandra-driver: DataStax Python driver for Cassandra connectivity
    - redis: Async Redis client for caching
    - core.config: Environment configuration and settings management
    - services.logger: Logging for monitoring and debugging
"""

import base64
import os
from datetime import datetime
from time import sleep

from cassandra.auth import PlainTextAuthProvider
from cassandra.cluster import Cluster, ConnectionException, NoHostAvailable
from cassandra.cqlengine import columns, connection
from cassandra.cqlengine.management import sync_table
from cassandra.cqlengine.models import Model
from cassandra.policies import RoundRobinPolicy
from cassandra.query import dict_factory
import redis.asyncio as redis
from redis.exceptions import ConnectionError

from core.config import settings
from services.logger import setup_logger

# Global Redis client instance
redis_client: redis.Redis = None

# Setup logger
logger = setup_logger()


class Link(Model):
    """
    Cassandra model representing a shortened link.

    Attributes:
        slug (Text): Generated Base62 Snowflake slug or a custom slug. Primary
                     key, so redirects are single-partition reads.
        original_url (Text): Destination URL, UTM parameters already applied.
        description (Text): Optional free-text description.
        created_at (DateTime): When the link was created.
    """

    __keyspace__ = settings.KEYSPACE
    __table_name__ = "link"

    slug = columns.Text(primary_key=True, required=True)
    original_url = columns.Text(required=True)
    description = columns.Text()
    created_at = columns.DateTime(default=datetime.now)


class LinkClick(Model):
    """
    Cassandra model recording a single redirect through a link.

    Attributes:
        slug (Text): Partition key, the slug that was visited.
        id (TimeUUID): Clustering key, newest clicks first.
        user_agent (Text): User-Agent header of the visitor, if any.
        ip_address (Text): Client address or "unknown".
        clicked_at (DateTime): When the redirect happened.
    """

    __keyspace__ = settings.KEYSPACE
    __table_name__ = "link_clicks"

    slug = columns.Text(partition_key=True)
    id = columns.TimeUUID(primary_key=True, clustering_order="DESC")
    user_agent = columns.Text()
    ip_address = columns.Text()
    clicked_at = columns.DateTime(default=datetime.now)


class LinkClickCount(Model):
    """Cassandra counter model holding the total clicks of a slug."""

    __keyspace__ = settings.KEYSPACE
    __table_name__ = "link_click_counts"

    slug = columns.Text(primary_key=True)
    clicks = columns.Counter()


def _build_cluster() -> Cluster:
    """Create a Cluster for Astra DB when a bundle is configured, else for CASSANDRA_HOST."""
    if settings.ASTRA_BUNDLE_B64:
        base_dir = os.path.dirname(os.path.abspath(__file__))
        bundle_path = os.path.join(base_dir, "secure-connect-bundle.zip")

        with open(bundle_path, "wb") as bundle_file:
            bundle_file.write(base64.b64decode(settings.ASTRA_BUNDLE_B64))

        return Cluster(
            cloud={"secure_connect_bundle": bundle_path},
            auth_provider=PlainTextAuthProvider(
                username=settings.CASSANDRA_CLIENT_ID,
                password=settings.CASSANDRA_CLIENT_SECRET,
            ),
            load_balancing_policy=RoundRobinPolicy(),
            idle_heartbeat_interval=3,
            protocol_version=4,
        )

    auth_provider = None
    if settings.CASSANDRA_CLIENT_ID:
        auth_provider = PlainTextAuthProvider(
            username=settings.CASSANDRA_CLIENT_ID,
            password=settings.CASSANDRA_CLIENT_SECRET,
        )

    return Cluster(
        contact_points=[settings.CASSANDRA_HOST],
        auth_provider=auth_provider,
        load_balancing_policy=RoundRobinPolicy(),
        idle_heartbeat_interval=3,
        protocol_version=4,
    )


def connect_to_db() -> None:
    """
    Establish connection to Cassandra with retry logic and table initialization.

    Connection Process:
        1. Builds the cluster (Astra secure connect bundle or plain contact point)
        2. Opens a session on the configured keyspace
        3. Sets up the dictionary row factory
        4. Registers the session with cqlengine and synchronizes the tables

    Retry Strategy:
        - Maximum 10 connection attempts with 5-second delays

    Raises:
        RuntimeError: If all connection attempts fail.
    """
    MAX_RETRIES = 10
    RETRY_DELAY = 5  # seconds

    for attempt in range(1, MAX_RETRIES + 1):
        try:
            logger.info(
                "Attempting to connect to Cassandra (Attempt %d/%d)...",
                attempt,
                MAX_RETRIES,
            )

            cluster = _build_cluster()

            session = cluster.connect(settings.KEYSPACE)
            session.row_factory = dict_factory

            # Set global session for CQL Engine models
            connection.set_session(session)

            sync_table(Link)
            sync_table(LinkClick)
            sync_table(LinkClickCount)

            logger.info(
                "Cassandra connection established and tables are created successfully."
            )
            return

        except (NoHostAvailable, ConnectionException) as e:
            logger.error("Connection attempt %d failed: %s", attempt, e)
            if attempt < MAX_RETRIES:
                logger.info("Retrying in %d seconds...", RETRY_DELAY)
                sleep(RETRY_DELAY)
            else:
                logger.error("All connection attempts exhausted")

    logger.error("Failed to establish Cassandra connection after all retry attempts")
    raise RuntimeError("Failed to connect to Cassandra after multiple attempts.")


def connect_to_redis() -> redis.Redis:
    """
    Create the global Redis client for the current environment.

    Development (ENV="dev") connects to REDIS_HOST_DEV with optional
    username/password authentication. Any other environment connects to
    REDIS_HOST_PROD, which is expected to be reachable on a private network.

    Raises:
        ConnectionError: If the client cannot be configured.
    """
    global redis_client

    logger.info("Initializing Redis connection...")

    try:
        is_dev = settings.ENV == "dev"
        host = settings.REDIS_HOST_DEV if is_dev else settings.REDIS_HOST_PROD
        username = settings.REDIS_USERNAME if is_dev else None
        password = settings.REDIS_PASSWORD if is_dev else None

        logger.info(
            "Connecting to Redis at %s:%d (Auth: %s)",
            host,
            settings.REDIS_PORT,
            bool(username or password),
        )

        redis_client = redis.Redis(
            host=host,
            port=settings.REDIS_PORT,
            username=username,
            password=password,
            decode_responses=True,  # Automatically decode responses to strings
            retry_on_timeout=True,
            health_check_interval=30,
            socket_connect_timeout=20,
            socket_timeout=10,
        )

        logger.info("Redis connection established successfully.")

        return redis_client
    except ConnectionError as e:
        logger.error("Redis connection failed: %s", e)
        raise


def get_redis_client() -> redis.Redis:
    """
    Retrieve the global Redis client instance for dependency injection.

    Raises:
        RuntimeError: If called before `connect_to_redis()`.
    """
    if redis_client is None:
        logger.error("Redis client not initialized. Call connect_to_redis() first.")
        raise RuntimeError("Redis client not initialized")

    return redis_client
