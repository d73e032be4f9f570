"""
Snowflake ID Generator Module

An asyncio implementation of Twitter's Snowflake algorithm for generating unique,
time-ordered 64-bit identifiers that are handed out as short Base62 slugs.

Algorithm Overview:
    The Snowflake algorithm generates 64-bit IDs with the following structure:

    |         42 bits         |  10 bits  |  12 bits  |
    |       timestamp         | worker_id | sequence  |
    | ms since custom epoch   |  0-1023   |  0-4095   |

    - Timestamp: milliseconds elapsed since 2021-01-01T00:00:00Z
    - Worker ID: 10 bits = 1024 possible workers, drawn at random per process
      unless configured explicitly
    - Sequence: 12 bits = 4096 IDs per millisecond per worker

Key Features:
    - **Unique**: Strictly unique within a process, probabilistically unique
      across processes (random worker IDs may collide)
    - **Time-ordered**: IDs never decrease within a process
    - **Compact**: Base62 slugs are 8-13 characters for realistic dates
    - **Async-safe**: Uses an asyncio.Lock, waiters are served first-in-first-out

Clock Considerations:
    - Handles same-millisecond generation with the sequence counter
    - Waits for the next millisecond when the sequence is exhausted, yielding to
      the event loop between clock reads
    - Clamps to the last timestamp when the clock moves backwards and logs a
      warning instead of failing

Based on: Twitter's Snowflake algorithm
"""

import asyncio
import random
import time
from typing import Callable, Optional

from core.exceptions import IdGenerationError
from services.logger import setup_logger
from utils import base62

logger = setup_logger()

# 2021-01-01T00:00:00Z in milliseconds
DEFAULT_EPOCH = 1609459200000


def _current_timestamp() -> int:
    """Returns the current Unix timestamp in milliseconds."""
    return int(time.time() * 1000)


class SnowflakeIDGenerator:
    """An asyncio-safe Snowflake ID generator for creating unique slugs.

    One instance is meant to be shared by every request handler in the process.
    Concurrent callers are serialized on an internal lock so that two calls can
    never observe the same (timestamp, sequence) pair.

    Attributes:
        worker_id: The worker ID embedded in every generated ID (0-1023).
        epoch: The custom epoch timestamp in milliseconds.
        last_timestamp: Timestamp delta used by the most recent ID, -1 before
            the first call.
        sequence: Counter used within the current millisecond.
    """

    TIMESTAMP_BITS = 42
    WORKER_ID_BITS = 10
    SEQUENCE_BITS = 12
    MAX_WORKER_ID = (1 << WORKER_ID_BITS) - 1
    MAX_SEQUENCE = (1 << SEQUENCE_BITS) - 1
    WORKER_ID_SHIFT = SEQUENCE_BITS
    TIMESTAMP_SHIFT = WORKER_ID_BITS + SEQUENCE_BITS

    def __init__(
        self,
        worker_id: Optional[int] = None,
        epoch: int = DEFAULT_EPOCH,
        clock: Callable[[], int] = _current_timestamp,
    ):
        """Initializes a new Snowflake ID generator instance.

        Args:
            worker_id: Identifier for this process (0-1023). A random one is
                drawn when omitted.
            epoch: The custom epoch timestamp in milliseconds.
            clock: Callable returning the current Unix time in milliseconds.

        Raises:
            ValueError: If the worker_id is outside the valid range (0-1023).
        """
        if worker_id is None:
            worker_id = random.randint(0, self.MAX_WORKER_ID)

        if not 0 <= worker_id <= self.MAX_WORKER_ID:
            raise ValueError(f"Worker ID must be between 0 and {self.MAX_WORKER_ID}")

        self.worker_id = worker_id
        self.epoch = epoch
        self.sequence = 0
        self.last_timestamp = -1
        self._clock = clock
        self._lock = asyncio.Lock()

    def _current_timestamp(self) -> int:
        """Returns the milliseconds elapsed since the generator's epoch."""
        return self._clock() - self.epoch

    async def _wait_for_next_millis(self, last_timestamp: int) -> int:
        """Waits until the clock moves past the given timestamp.

        Args:
            last_timestamp: The timestamp of the last generated ID.

        Returns:
            The next millisecond timestamp.
        """
        timestamp = self._current_timestamp()
        while timestamp <= last_timestamp:
            await asyncio.sleep(0)
            timestamp = self._current_timestamp()
        return timestamp

    async def next_id(self) -> int:
        """Generates a new unique Snowflake ID.

        Returns:
            A 64-bit unique Snowflake ID.
        """
        async with self._lock:
            timestamp = self._current_timestamp()

            if timestamp < self.last_timestamp:
                logger.warning(
                    "Clock moved backwards by %d ms, reusing last timestamp %d",
                    self.last_timestamp - timestamp,
                    self.last_timestamp,
                )
                timestamp = self.last_timestamp

            if timestamp == self.last_timestamp:
                self.sequence = (self.sequence + 1) & self.MAX_SEQUENCE
                if self.sequence == 0:
                    timestamp = await self._wait_for_next_millis(self.last_timestamp)
            else:
                self.sequence = 0

            self.last_timestamp = timestamp

            return (
                (timestamp << self.TIMESTAMP_SHIFT)
                | (self.worker_id << self.WORKER_ID_SHIFT)
                | self.sequence
            )

    async def generate(self) -> str:
        """Generates a new unique slug.

        Returns:
            The Base62 encoding of a fresh Snowflake ID.

        Raises:
            IdGenerationError: If the ID cannot be encoded.
        """
        snowflake_id = await self.next_id()
        try:
            return base62.encode(snowflake_id)
        except ValueError as e:
            logger.error("Failed to encode Snowflake ID %d: %s", snowflake_id, e)
            raise IdGenerationError("Failed to generate unique ID") from e


def unpack(snowflake_id: int, epoch: int = DEFAULT_EPOCH) -> tuple[int, int, int]:
    """Splits a Snowflake ID into its (unix_ms, worker_id, sequence) fields."""
    timestamp = snowflake_id >> SnowflakeIDGenerator.TIMESTAMP_SHIFT
    worker_id = (
        snowflake_id >> SnowflakeIDGenerator.WORKER_ID_SHIFT
    ) & SnowflakeIDGenerator.MAX_WORKER_ID
    sequence = snowflake_id & SnowflakeIDGenerator.MAX_SEQUENCE
    return timestamp + epoch, worker_id, sequence
