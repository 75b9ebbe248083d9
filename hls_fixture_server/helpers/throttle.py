"""Helpers for pacing a byte buffer onto a (slow) response stream."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Protocol

from hls_fixture_server.constants import LOGGER_NAME, THROTTLE_TICKS_PER_SECOND, VERBOSE_LOG_LEVEL
from hls_fixture_server.errors import WriteError

if TYPE_CHECKING:
    from hls_fixture_server.models.rules import SuccessRule

LOGGER = logging.getLogger(f"{LOGGER_NAME}.throttle")


class ByteSink(Protocol):
    """Anything we can (asynchronously) write bytes to, e.g. an aiohttp StreamResponse."""

    async def write(self, data: bytes) -> None:
        """Write a chunk of data."""


def chunk_size_for_rate(
    bytes_per_second: float, ticks_per_second: int = THROTTLE_TICKS_PER_SECOND
) -> int:
    """Return the number of bytes to write per tick for the given rate.

    Always at least 1 byte, so extremely low rates still make progress.
    """
    return max(1, int(bytes_per_second // ticks_per_second))


def bytes_per_second_for_rule(rule: SuccessRule, data_length: int) -> float | None:
    """Derive the delivery rate (bytes per second) from a success rule.

    A total response time takes precedence over a bitrate.
    Returns None if the rule does not ask for throttling.
    """
    if rule.response_time_ms:
        return data_length * 1000 / rule.response_time_ms
    if rule.response_bits_per_sec:
        return rule.response_bits_per_sec / 8
    return None


class ThrottleCursor:
    """Cursor over a byte buffer which hands out fixed-size chunks in order."""

    def __init__(self, data: bytes, chunk_size: int) -> None:
        """Initialize cursor."""
        if chunk_size < 1:
            msg = f"Chunk size must be at least 1 byte, got {chunk_size}"
            raise ValueError(msg)
        self._data = memoryview(data)
        self.chunk_size = chunk_size
        self.offset = 0

    @property
    def total(self) -> int:
        """Return the total number of bytes in the buffer."""
        return len(self._data)

    @property
    def remaining(self) -> int:
        """Return the number of bytes not yet handed out."""
        return self.total - self.offset

    @property
    def done(self) -> bool:
        """Return True when all bytes have been handed out."""
        return self.remaining <= 0

    def next_chunk(self) -> bytes:
        """Return the next chunk (empty when done) and advance the cursor."""
        end = min(self.offset + self.chunk_size, self.total)
        chunk = self._data[self.offset : end].tobytes()
        self.offset = end
        return chunk


async def write_throttled(
    data: bytes,
    sink: ByteSink,
    bytes_per_second: float,
    ticks_per_second: int = THROTTLE_TICKS_PER_SECOND,
) -> None:
    """
    Write data to the sink, paced to approximate the given rate.

    Every tick one chunk is written, after which we sleep for the duration of one tick.
    A failing write aborts the delivery immediately.

    :param data: The bytes to deliver.
    :param sink: The stream to write to.
    :param bytes_per_second: Target average delivery rate.
    :param ticks_per_second: Number of chunks to write per second.
    :raises WriteError: If the sink rejects a write.
    """
    cursor = ThrottleCursor(data, chunk_size_for_rate(bytes_per_second, ticks_per_second))
    tick_interval = 1 / ticks_per_second
    LOGGER.debug(
        "Writing %s bytes at %.1f bytes per second (%s bytes per tick)",
        cursor.total,
        bytes_per_second,
        cursor.chunk_size,
    )
    while chunk := cursor.next_chunk():
        try:
            await sink.write(chunk)
        except (BrokenPipeError, ConnectionResetError, ConnectionError) as err:
            msg = f"Write failed after {cursor.offset - len(chunk)} of {cursor.total} bytes"
            raise WriteError(msg) from err
        LOGGER.log(VERBOSE_LOG_LEVEL, "Wrote chunk, %s bytes left", cursor.remaining)
        await asyncio.sleep(tick_interval)
