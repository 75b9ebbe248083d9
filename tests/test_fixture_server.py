"""Tests for serving fixtures over HTTP."""

from __future__ import annotations

import asyncio
import pathlib

import aiohttp
import pytest

from hls_fixture_server.config import FixtureServerConfig
from hls_fixture_server.errors import ConfigurationError
from hls_fixture_server.models.rules import NO_RULE, FailRule
from hls_fixture_server.server import FixtureServer
from tests.conftest import SEGMENT_COUNT, VARIANTS, segment_bytes


async def fetch(
    server: FixtureServer, route: str, method: str = "GET"
) -> tuple[aiohttp.ClientResponse, bytes]:
    """Request a route without following redirects, return the response and its body."""
    async with (
        aiohttp.ClientSession() as session,
        session.request(method, server.url_for(route), allow_redirects=False) as response,
    ):
        return response, await response.read()


async def test_serves_files_as_is(
    fixture_server: FixtureServer, fixture_dir: pathlib.Path
) -> None:
    """Test every file below the base dir is served at its relative path."""
    response, body = await fetch(fixture_server, "/file1.txt")
    assert response.status == 200
    assert body == (fixture_dir / "file1.txt").read_bytes()
    assert response.headers["Content-Type"].startswith("text/plain")
    assert response.headers["Cache-Control"] == "no-cache"

    response, body = await fetch(fixture_server, "/blob.fixturedata")
    assert response.status == 200
    assert body == bytes(range(256))
    assert response.headers["Content-Type"] == "application/octet-stream"

    response, body = await fetch(fixture_server, "/live/360p/2.ts")
    assert response.status == 200
    assert body == segment_bytes("360p", 2)
    assert response.headers["Content-Type"] == "video/mp2t"


async def test_unknown_route(fixture_server: FixtureServer) -> None:
    """Test routes without a file are not found."""
    response, _ = await fetch(fixture_server, "/live/720p/99.ts")
    assert response.status == 404

    # rules alone do not create routes
    fixture_server.request_succeeds("/nothing-here.ts")
    response, _ = await fetch(fixture_server, "/nothing-here.ts")
    assert response.status == 404


async def test_removed_file(fixture_server: FixtureServer, fixture_dir: pathlib.Path) -> None:
    """Test a registered file which disappeared from disk results in an error response."""
    (fixture_dir / "blob.fixturedata").unlink()

    response, _ = await fetch(fixture_server, "/blob.fixturedata")
    assert response.status == 500

    # failing does not need the file
    fixture_server.request_fails("/blob.fixturedata", status_code=418)
    response, _ = await fetch(fixture_server, "/blob.fixturedata")
    assert response.status == 418


async def test_success_headers(fixture_server: FixtureServer) -> None:
    """Test extra headers are added and a Content-Type header overrides the default."""
    fixture_server.request_succeeds(
        "/blob.fixturedata", headers={"Content-Type": "video/mp2t", "X-Fixture": "blob"}
    )

    response, body = await fetch(fixture_server, "/blob.fixturedata")

    assert response.status == 200
    assert body == bytes(range(256))
    assert response.headers["Content-Type"] == "video/mp2t"
    assert response.headers["X-Fixture"] == "blob"


async def test_fail(fixture_server: FixtureServer) -> None:
    """Test a failing route responds with the configured status, not the file."""
    fixture_server.request_fails(
        "/file1.txt",
        status_code=503,
        status_message="Busy",
        headers={"Retry-After": "5"},
        error_body="try later",
    )

    response, body = await fetch(fixture_server, "/file1.txt")

    assert response.status == 503
    assert response.reason == "Busy"
    assert response.headers["Retry-After"] == "5"
    assert body == b"try later"


async def test_fail_defaults(fixture_server: FixtureServer) -> None:
    """Test a failing route without details responds with an empty 500."""
    fixture_server.request_fails("live/720p/0.ts")

    response, body = await fetch(fixture_server, "/live/720p/0.ts")

    assert response.status == 500
    assert not response.reason
    assert body == b""


async def test_redirect(fixture_server: FixtureServer) -> None:
    """Test a redirect to a relative path is rooted, an absolute URL is kept as-is."""
    fixture_server.request_redirects("/live/720p/0.ts", "live/360p/0.ts")
    response, _ = await fetch(fixture_server, "/live/720p/0.ts")
    assert response.status == 302
    assert response.headers["Location"] == "/live/360p/0.ts"

    fixture_server.request_redirects(
        "/file1.txt", "https://cdn.example.com/file1.txt?token=abc", code=307
    )
    response, _ = await fetch(fixture_server, "/file1.txt")
    assert response.status == 307
    assert response.headers["Location"] == "https://cdn.example.com/file1.txt?token=abc"


async def test_redirect_followed(fixture_server: FixtureServer) -> None:
    """Test a client following the redirect gets the target file."""
    fixture_server.request_redirects("/live/720p/0.ts", "/live/360p/3.ts")

    async with (
        aiohttp.ClientSession() as session,
        session.get(fixture_server.url_for("/live/720p/0.ts")) as response,
    ):
        assert response.status == 200
        assert await response.read() == segment_bytes("360p", 3)


async def test_last_rule_wins_and_removal(fixture_server: FixtureServer) -> None:
    """Test the last rule set for a route is used, removing it restores the file."""
    fixture_server.request_fails("/file1.txt", status_code=404)
    fixture_server.request_redirects("/file1.txt", "blob.fixturedata")
    fixture_server.request_fails("/file1.txt", status_code=410)

    assert fixture_server.get_rule("/file1.txt") == FailRule(status_code=410)
    response, _ = await fetch(fixture_server, "/file1.txt")
    assert response.status == 410

    fixture_server.remove_rules("/file1.txt")
    assert fixture_server.get_rule("/file1.txt") is NO_RULE
    response, _ = await fetch(fixture_server, "/file1.txt")
    assert response.status == 200

    fixture_server.request_fails("/file1.txt")
    fixture_server.request_fails("/blob.fixturedata")
    fixture_server.clear_rules()
    for route in ("/file1.txt", "/blob.fixturedata"):
        response, _ = await fetch(fixture_server, route)
        assert response.status == 200


async def test_throttled_response_time(
    fixture_server: FixtureServer, fixture_dir: pathlib.Path
) -> None:
    """Test a throttled file is delivered completely in about the requested time."""
    expected = (fixture_dir / "file1.txt").read_bytes()
    fixture_server.request_succeeds("/file1.txt", response_time_ms=500)
    loop = asyncio.get_running_loop()

    start = loop.time()
    response, body = await fetch(fixture_server, "/file1.txt")
    elapsed = loop.time() - start

    assert response.status == 200
    assert body == expected
    assert response.headers["Content-Length"] == str(len(expected))
    assert response.headers["Content-Type"].startswith("text/plain")
    assert 0.4 <= elapsed < 3


async def test_throttled_bitrate(fixture_server: FixtureServer) -> None:
    """Test a bitrate-throttled segment is delivered completely."""
    data = segment_bytes("720p", 1)
    # a second worth of data
    fixture_server.request_succeeds(
        "/live/720p/1.ts", headers={"X-Throttled": "1"}, response_bits_per_sec=len(data) * 8
    )
    loop = asyncio.get_running_loop()

    start = loop.time()
    response, body = await fetch(fixture_server, "/live/720p/1.ts")
    elapsed = loop.time() - start

    assert response.status == 200
    assert response.headers["X-Throttled"] == "1"
    assert body == data
    assert 0.8 <= elapsed < 4


async def test_throttled_head(fixture_server: FixtureServer, fixture_dir: pathlib.Path) -> None:
    """Test a HEAD request to a throttled route returns the headers only."""
    fixture_server.request_succeeds("/file1.txt", response_time_ms=5000)

    response, body = await fetch(fixture_server, "/file1.txt", method="HEAD")

    assert response.status == 200
    assert response.headers["Content-Length"] == str(len((fixture_dir / "file1.txt").read_bytes()))
    assert body == b""


async def test_load_stream_routes(fixture_server: FixtureServer) -> None:
    """Test a loaded stream knows the routes of its files."""
    stream = await fixture_server.load_stream("live")

    assert stream.playlist_file.route == "/live/stream.m3u8"
    for variant_name, variant in zip(VARIANTS, stream.variants, strict=True):
        assert variant.playlist_file.route == f"/live/{variant_name}/playlist.m3u8"
        assert [segment.segment_file.route for segment in variant.segments] == [
            f"/live/{variant_name}/{index}.ts" for index in range(SEGMENT_COUNT)
        ]


async def test_clone_stream(fixture_server: FixtureServer) -> None:
    """Test a cloned stream serves the original files at new routes."""
    stream = await fixture_server.load_stream("live")

    clone = fixture_server.clone_stream(stream, "clone")

    assert clone.stream_name == "clone"
    assert clone.playlist_file.relative_path == "clone/stream.m3u8"
    assert clone.playlist_file.route == "/clone/stream.m3u8"
    assert len(clone.variants) == len(stream.variants)
    for original, cloned in zip(stream.variants, clone.variants, strict=True):
        assert len(cloned.segments) == len(original.segments)
        assert cloned.playlist_file.relative_path.startswith("clone/")
        assert all(
            segment.segment_file.relative_path.startswith("clone/") for segment in cloned.segments
        )
        assert cloned.total_duration == original.total_duration

    response, body = await fetch(fixture_server, "/clone/720p/1.ts")
    assert response.status == 200
    assert body == segment_bytes("720p", 1)
    _, original_body = await fetch(fixture_server, "/live/stream.m3u8")
    _, cloned_body = await fetch(fixture_server, "/clone/stream.m3u8")
    assert cloned_body == original_body


async def test_clone_rules_are_independent(fixture_server: FixtureServer) -> None:
    """Test rules on a cloned route do not affect the original route."""
    stream = await fixture_server.load_stream("live")
    clone = fixture_server.clone_stream(stream, "clone")
    cloned_route = clone.variants[1].segments[0].segment_file.route
    assert cloned_route == "/clone/360p/0.ts"

    fixture_server.request_fails(cloned_route, status_code=404)

    response, _ = await fetch(fixture_server, cloned_route)
    assert response.status == 404
    response, body = await fetch(fixture_server, "/live/360p/0.ts")
    assert response.status == 200
    assert body == segment_bytes("360p", 0)


async def test_register_route(
    fixture_server: FixtureServer, fixture_dir: pathlib.Path
) -> None:
    """Test a file can be served at an additional route."""
    route = fixture_server.register_route("file1.txt", "aliases/readme.txt")
    assert route == "/aliases/readme.txt"

    response, body = await fetch(fixture_server, route)
    assert response.status == 200
    assert body.startswith(b"Hello fixture world")

    with pytest.raises(ConfigurationError):
        fixture_server.register_route("missing.txt", "/also-missing.txt")

    (fixture_dir.parent / "escape.txt").write_text("outside")
    with pytest.raises(ConfigurationError, match="outside the base dir"):
        fixture_server.register_route("../escape.txt", "/escape.txt")


async def test_rules_from_config(server_config: FixtureServerConfig) -> None:
    """Test rules in the config are active once the server runs."""
    server_config.rules = {"/file1.txt": {"type": "fail", "status_code": 404}}

    async with FixtureServer(server_config) as server:
        response, _ = await fetch(server, "/file1.txt")
        assert response.status == 404
        response, _ = await fetch(server, "/blob.fixturedata")
        assert response.status == 200


async def test_any_free_port(server_config: FixtureServerConfig) -> None:
    """Test the server can pick a free port itself."""
    server = FixtureServer(server_config)
    await server.start(port=0)
    try:
        assert server.port
        assert server.base_url == f"http://127.0.0.1:{server.port}"
        response, _ = await fetch(server, "/file1.txt")
        assert response.status == 200
    finally:
        await server.stop()


async def test_stopped_server_refuses_connections(server_config: FixtureServerConfig) -> None:
    """Test the server no longer accepts connections once stopped."""
    async with FixtureServer(server_config) as server:
        url = server.url_for("/file1.txt")
        assert server.webserver.running
    assert not server.webserver.running

    async with aiohttp.ClientSession() as session:
        with pytest.raises(aiohttp.ClientConnectionError):
            await session.get(url)


async def test_clone_of_clone(fixture_server: FixtureServer, fixture_dir: pathlib.Path) -> None:
    """Test a cloned stream can be cloned again, still serving the original files."""
    stream = await fixture_server.load_stream("live")
    clone = fixture_server.clone_stream(stream, "clone")

    second = fixture_server.clone_stream(clone, "clone2")

    assert second.playlist_file.route == "/clone2/stream.m3u8"
    assert second.variants[0].segments[2].segment_file.relative_path == "clone2/720p/2.ts"
    assert fixture_server.webserver.resolve("/clone2/stream.m3u8") == str(
        fixture_dir / "live" / "stream.m3u8"
    )
    response, body = await fetch(fixture_server, "/clone2/720p/2.ts")
    assert response.status == 200
    assert body == segment_bytes("720p", 2)


async def test_unregister_route(fixture_server: FixtureServer) -> None:
    """Test an unregistered route is no longer served."""
    assert fixture_server.webserver.unregister_route("file1.txt")
    assert not fixture_server.webserver.unregister_route("/file1.txt")

    response, _ = await fetch(fixture_server, "/file1.txt")
    assert response.status == 404


async def test_throttled_client_disconnect(
    fixture_server: FixtureServer, caplog: pytest.LogCaptureFixture
) -> None:
    """Test a client going away mid-delivery aborts the response, the server keeps serving."""
    fixture_server.request_succeeds("/file1.txt", response_time_ms=2000)
    reader, writer = await asyncio.open_connection("127.0.0.1", fixture_server.port)
    writer.write(b"GET /file1.txt HTTP/1.1\r\nHost: 127.0.0.1\r\n\r\n")
    await writer.drain()
    head = await reader.readuntil(b"\r\n\r\n")
    assert head.startswith(b"HTTP/1.1 200")
    writer.close()
    await writer.wait_closed()

    # the next paced write notices the closed connection
    async with asyncio.timeout(5):
        while not any("aborted" in record.getMessage() for record in caplog.records):
            await asyncio.sleep(0.05)

    response, body = await fetch(fixture_server, "/blob.fixturedata")
    assert response.status == 200
    assert body == bytes(range(256))
