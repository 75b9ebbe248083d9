"""All constants for the HLS Fixture Server."""

from __future__ import annotations

from typing import Final

LOGGER_NAME: Final[str] = "hls_fixture_server"
VERBOSE_LOG_LEVEL: Final[int] = 5

DEFAULT_BIND_IP: Final[str] = "127.0.0.1"
DEFAULT_BIND_PORT: Final[int] = 3000
DEFAULT_SHUTDOWN_TIMEOUT: Final[float] = 10

# name of the multivariant playlist inside each stream directory
STREAM_PLAYLIST_NAME: Final[str] = "stream.m3u8"
MEDIA_PLAYLIST_NAME: Final[str] = "playlist.m3u8"
DEFAULT_SEGMENT_EXTENSION: Final[str] = "ts"

DEFAULT_CONTENT_TYPE: Final[str] = "application/octet-stream"
HLS_CONTENT_TYPES: Final[dict[str, str]] = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".ts": "video/mp2t",
    ".m4s": "video/iso.segment",
    ".aac": "audio/aac",
}

# throttled responses are paced in ticks of 1/10th of a second
THROTTLE_TICKS_PER_SECOND: Final[int] = 10

DEFAULT_REDIRECT_CODE: Final[int] = 302
DEFAULT_FAIL_CODE: Final[int] = 500
