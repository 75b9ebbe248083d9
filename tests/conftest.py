"""Fixtures for testing the HLS Fixture Server."""

import logging
import pathlib
import socket
from collections.abc import AsyncGenerator

import pytest

from hls_fixture_server.config import FixtureServerConfig
from hls_fixture_server.server import FixtureServer

SEGMENT_DURATION = 10.0
SEGMENT_COUNT = 4
VARIANTS = ("720p", "360p")

STREAM_PLAYLIST = """#EXTM3U
#EXT-X-VERSION:3
#EXT-X-STREAM-INF:BANDWIDTH=2560000,RESOLUTION=1280x720
720p/playlist.m3u8
#EXT-X-STREAM-INF:BANDWIDTH=640000,RESOLUTION=640x360
360p/playlist.m3u8
"""


def get_free_port() -> int:
    """Get a free port number.

    :return: Available port number.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("", 0))
        s.listen(1)
        port: int = s.getsockname()[1]
        return port


def media_playlist_text(
    segment_count: int = SEGMENT_COUNT, start_offset: float | None = None
) -> str:
    """Return the text of a VOD media playlist with numbered .ts segments."""
    lines = ["#EXTM3U", "#EXT-X-VERSION:3", f"#EXT-X-TARGETDURATION:{int(SEGMENT_DURATION)}"]
    if start_offset is not None:
        lines.append(f"#EXT-X-START:TIME-OFFSET={start_offset}")
    for index in range(segment_count):
        lines += [f"#EXTINF:{SEGMENT_DURATION},", f"{index}.ts"]
    lines.append("#EXT-X-ENDLIST")
    return "\n".join(lines) + "\n"


def segment_bytes(variant: str, index: int) -> bytes:
    """Return the (unique) content of a fixture segment."""
    return f"{variant}-segment-{index}|".encode() * 50


@pytest.fixture(name="caplog")
def caplog_fixture(caplog: pytest.LogCaptureFixture) -> pytest.LogCaptureFixture:
    """Set log level to debug for tests using the caplog fixture."""
    caplog.set_level(logging.DEBUG)
    return caplog


@pytest.fixture
def fixture_dir(tmp_path: pathlib.Path) -> pathlib.Path:
    """Create a fixture directory with a stream `live` (two variants) and some plain files.

    :param tmp_path: Temporary directory for test data.
    """
    base_dir = tmp_path / "files"
    stream_dir = base_dir / "live"
    stream_dir.mkdir(parents=True)
    (stream_dir / "stream.m3u8").write_text(STREAM_PLAYLIST)
    for variant in VARIANTS:
        variant_dir = stream_dir / variant
        variant_dir.mkdir()
        (variant_dir / "playlist.m3u8").write_text(media_playlist_text())
        for index in range(SEGMENT_COUNT):
            (variant_dir / f"{index}.ts").write_bytes(segment_bytes(variant, index))
    (base_dir / "file1.txt").write_text("Hello fixture world\n" * 20)
    (base_dir / "blob.fixturedata").write_bytes(bytes(range(256)))
    return base_dir


@pytest.fixture
def server_config(fixture_dir: pathlib.Path) -> FixtureServerConfig:
    """Return a server config for the fixture dir, listening on a free port.

    :param fixture_dir: The fixture directory.
    """
    return FixtureServerConfig(
        base_dir=str(fixture_dir), bind_port=get_free_port(), shutdown_timeout=2
    )


@pytest.fixture
async def fixture_server(
    server_config: FixtureServerConfig,
) -> AsyncGenerator[FixtureServer, None]:
    """Start a FixtureServer for the fixture dir.

    :param server_config: The server config.
    """
    server = FixtureServer(server_config)
    await server.start()
    try:
        yield server
    finally:
        await server.stop()
