"""HLS Fixture Server: a configurable mock HTTP server for HLS client tests."""

from hls_fixture_server.config import FixtureServerConfig, load_config
from hls_fixture_server.loader import load_media_playlist, load_stream
from hls_fixture_server.server import FixtureServer

__all__ = [
    "FixtureServer",
    "FixtureServerConfig",
    "load_config",
    "load_media_playlist",
    "load_stream",
]
