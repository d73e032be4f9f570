"""
FastAPI Link Shortener Service

A URL shortening service built with FastAPI, Cassandra, and Redis. It creates
short Base62 slugs for long URLs, redirects visitors from a slug to the original
destination, and records every click.

Key Features:
    - Time-ordered, collision-resistant slugs from a Snowflake ID generator
    - Optional custom slugs, descriptions and UTM parameters
    - Transparent retry when a generated slug collides with a stored one
    - Fast slug resolution with Redis caching
    - Click tracking (event log and counter) in Cassandra

Architecture:
    - FastAPI for the web framework and automatic API documentation
    - Cassandra for persistent link storage and click tracking
    - Redis for caching slug lookups
    - One Snowflake ID generator per process, injected into the handlers
"""

from contextlib import asynccontextmanager

from cassandra import InvalidRequest
from cassandra.cluster import Session
from cassandra.cqlengine import connection
from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Path, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse, Response
import redis.asyncio as redis
from redis.exceptions import ConnectionError, ResponseError, TimeoutError

from core.config import settings
from core.exceptions import IdGenerationError, SlugAlreadyExistsError, SlugCollisionError
from database import connect_to_db, connect_to_redis, get_redis_client
from database.connect import get_cassandra_session
from database.repo import (
    delete_link,
    generate_short_url,
    read_link_by_slug,
    read_original_url_by_slug,
    record_click,
    update_link_description,
)
from database.schema import CreateLink, LinkDetails, LinkResponse, UpdateLink
from services.logger import setup_logger
from utils.snowflake import SnowflakeIDGenerator
from utils.url import client_ip

logger = setup_logger()

# Initialize Snowflake ID generator, a random worker ID is drawn when unset
snowflake_generator = SnowflakeIDGenerator(settings.WORKER_ID, settings.EPOCH)
logger.info("Snowflake generator ready with worker ID %d", snowflake_generator.worker_id)


def get_id_generator() -> SnowflakeIDGenerator:
    """Returns the process-wide Snowflake ID generator."""
    return snowflake_generator


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan event handler to initialize and cleanup connections.

    Args:
        app (FastAPI): The FastAPI application instance

    Raises:
        HTTPException: 503 Service Unavailable if Cassandra or Redis
            initialization fails

    Yields:
        None: Control to the application during its lifetime
    """
    logger.info("Starting application and initializing database...")

    try:
        connect_to_db()
        connect_to_redis()
        app.state.redis = get_redis_client()

    except RuntimeError as e:
        logger.error("Database initialization failed: %s", e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database initialization failed",
        )
    except ConnectionError as e:
        logger.error("Redis connection failed: %s", e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Redis connection failed",
        )

    yield

    logger.info("Application is shutting down.")

    session = connection.get_session()
    session.shutdown()
    session.cluster.shutdown()
    await get_redis_client().aclose()


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.post(
    "/shorten",
    status_code=status.HTTP_201_CREATED,
    response_model=LinkResponse,
    summary="Create a shortened URL",
    description="""
    Generate a short slug for a given original URL.

    Without a custom slug, a Snowflake ID is generated and Base62 encoded. The
    slug is stored with a conditional insert; if it already exists a fresh one
    is generated transparently. With a custom slug the generator is bypassed
    and a taken slug is reported as a 400 error.
    """,
    responses={
        400: {
            "description": "Custom slug already in use",
            "content": {
                "application/json": {
                    "example": {"detail": "Slug 'spring-sale' is already in use."}
                }
            },
        },
        500: {
            "description": "Internal server error during URL generation",
            "content": {
                "application/json": {
                    "example": {"detail": "Short URL generation failed"}
                }
            },
        },
        503: {
            "description": "No unique slug could be allocated",
            "content": {
                "application/json": {
                    "example": {"detail": "Could not allocate a unique slug"}
                }
            },
        },
    },
)
async def create_url(
    link_data: CreateLink,
    generator: SnowflakeIDGenerator = Depends(get_id_generator),
    redis_client: redis.Redis = Depends(get_redis_client),
    session: Session = Depends(get_cassandra_session),
):
    """Create a shortened URL for a single original URL.

    Args:
        link_data (CreateLink): The request body containing the original URL.
        generator (SnowflakeIDGenerator): Generator of unique slugs.
        redis_client (redis.Redis): Redis client instance for caching.
        session (Session): Cassandra session.

    Returns:
        dict: The slug, short URL, original URL and description.
    """
    try:
        return await generate_short_url(link_data, generator, redis_client, session)
    except (InvalidRequest, ConnectionError, ResponseError, TimeoutError) as e:
        logger.error("Short URL generation failed: %s", e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Short URL generation failed",
        )
    except IdGenerationError as e:
        logger.error("Slug generation failed: %s", e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Short URL generation failed",
        )
    except SlugAlreadyExistsError as e:
        logger.error("Slug already exists: %s", e)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )
    except SlugCollisionError as e:
        logger.error("Slug collisions exhausted: %s", e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not allocate a unique slug",
        )


@app.get(
    "/links/{slug}",
    response_model=LinkDetails,
    summary="Get link details",
    description="Return the stored link and the number of recorded clicks.",
)
async def get_link(
    slug: str = Path(..., description="The slug of the shortened link"),
    session: Session = Depends(get_cassandra_session),
):
    """Return a stored link with its click count."""
    try:
        link = read_link_by_slug(slug, session)
    except InvalidRequest as e:
        logger.error("Error retrieving link: %s", e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error retrieving link",
        )
    if link is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Link not found")
    return link


@app.patch(
    "/links/{slug}",
    response_model=LinkDetails,
    summary="Update link description",
    description="Replace the description of a link. A blank description clears it.",
)
async def update_link(
    update: UpdateLink,
    slug: str = Path(..., description="The slug of the shortened link"),
    redis_client: redis.Redis = Depends(get_redis_client),
    session: Session = Depends(get_cassandra_session),
):
    """Update the description of a stored link and return the link."""
    try:
        updated = await update_link_description(
            slug, update.description, redis_client, session
        )
        link = read_link_by_slug(slug, session) if updated else None
    except (InvalidRequest, ConnectionError, ResponseError, TimeoutError) as e:
        logger.error("Error updating link: %s", e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error updating link",
        )
    if link is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Link not found")
    return link


@app.delete(
    "/links/{slug}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete link",
    description="Delete a link, its recorded clicks and its cached lookup entry.",
)
async def remove_link(
    slug: str = Path(..., description="The slug of the shortened link"),
    redis_client: redis.Redis = Depends(get_redis_client),
    session: Session = Depends(get_cassandra_session),
):
    """Delete a stored link."""
    try:
        deleted = await delete_link(slug, redis_client, session)
    except (InvalidRequest, ConnectionError, ResponseError, TimeoutError) as e:
        logger.error("Error deleting link: %s", e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error deleting link",
        )
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Link not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get(
    "/{slug}",
    summary="Redirect to original URL",
    description="""
    Resolve a slug and redirect the user to the original destination.

    The lookup first checks the Redis cache and falls back to Cassandra. The
    click is recorded after the response has been sent. The redirect uses HTTP
    307 (Temporary Redirect).
    """,
    responses={
        307: {"description": "Temporary redirect to the original URL"},
        404: {
            "description": "Short URL not found",
            "content": {
                "application/json": {"example": {"detail": "Short URL not found"}}
            },
        },
        500: {
            "description": "Internal server error during URL retrieval",
            "content": {
                "application/json": {
                    "example": {"detail": "Error retrieving original URL"}
                }
            },
        },
    },
)
async def get_url(
    request: Request,
    background_tasks: BackgroundTasks,
    slug: str = Path(
        ...,
        description="The slug of the shortened link",
        examples=["2mK9xQv4bA"],
    ),
    redis_client: redis.Redis = Depends(get_redis_client),
    session: Session = Depends(get_cassandra_session),
):
    """Redirect to the original URL for a given slug and record the click.

    Args:
        request (Request): The incoming request, used for click metadata.
        background_tasks (BackgroundTasks): Runs the click recording.
        slug (str): The slug of the shortened link.
        redis_client (redis.Redis): Redis client instance for caching.
        session (Session): Cassandra session.

    Returns:
        RedirectResponse: HTTP 307 redirect to the original URL.
    """
    try:
        original_url = await read_original_url_by_slug(slug, redis_client, session)
    except (InvalidRequest, ConnectionError, ResponseError, TimeoutError) as e:
        logger.error("Error retrieving original URL: %s", e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error retrieving original URL",
        )

    if not original_url:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Short URL not found")

    background_tasks.add_task(
        record_click,
        slug,
        request.headers.get("user-agent"),
        client_ip(
            request.headers.get("x-forwarded-for"),
            request.client.host if request.client else None,
        ),
        session,
    )
    return RedirectResponse(url=original_url)
