"""
The FixtureServer: serves fixture files over HTTP with per-route rules.

Every file below the base directory is served at its relative path. Tests can make
individual routes slow (throttled), redirect or fail, and clone parsed streams
under a new name to get fresh routes for the same files.
"""

from __future__ import annotations

import logging
import os
from dataclasses import replace
from typing import TYPE_CHECKING, Self

import aiofiles
from aiofiles.os import wrap
from aiohttp import web

from hls_fixture_server import loader
from hls_fixture_server.constants import DEFAULT_FAIL_CODE, DEFAULT_REDIRECT_CODE, LOGGER_NAME
from hls_fixture_server.errors import ConfigurationError, FileReadError, WriteError
from hls_fixture_server.helpers.paths import (
    content_type_for_path,
    is_absolute_url,
    replace_leading_component,
    route_from_path,
)
from hls_fixture_server.helpers.throttle import bytes_per_second_for_rule, write_throttled
from hls_fixture_server.helpers.webserver import Webserver
from hls_fixture_server.models.fixtures import (
    FixtureFile,
    FixtureMediaPlaylist,
    FixtureSegment,
    FixtureStream,
)
from hls_fixture_server.models.rules import (
    FailRule,
    NoRule,
    RedirectRule,
    Rule,
    RuleStore,
    SuccessRule,
)

if TYPE_CHECKING:
    from types import TracebackType

    from hls_fixture_server.config import FixtureServerConfig

LOGGER = logging.getLogger(f"{LOGGER_NAME}.server")

DEFAULT_FILE_HEADERS = {"Cache-Control": "no-cache"}

isfile = wrap(os.path.isfile)


class FixtureServer:
    """HTTP server for HLS (and other) fixture files with configurable per-route behavior."""

    def __init__(self, config: FixtureServerConfig) -> None:
        """Initialize the server and register a route for every fixture file.

        :param config: The server configuration.
        :raises ConfigurationError: If the configuration is invalid.
        """
        config.validate()
        self.config = config
        self.base_dir = os.path.abspath(config.base_dir)
        self.rules = RuleStore()
        self.webserver = Webserver(logging.getLogger(f"{LOGGER_NAME}.webserver"), self._respond)
        count = self.webserver.register_tree(self.base_dir)
        LOGGER.debug("Registered %s fixture routes below %s", count, self.base_dir)
        for route, rule in config.parsed_rules().items():
            self.rules.set(route, rule)

    async def start(self, port: int | None = None) -> None:
        """Start listening, returns once the server accepts connections.

        :param port: Port to listen on, overrides the configured port (0 for any free port).
        """
        bind_port = self.config.bind_port if port is None else port
        await self.webserver.setup(
            bind_ip=self.config.bind_ip,
            bind_port=bind_port,
            shutdown_timeout=self.config.shutdown_timeout,
        )
        LOGGER.info("Fixture server running at %s", self.base_url)

    async def stop(self) -> None:
        """Stop the server, returns once all connections are closed."""
        await self.webserver.close()
        LOGGER.info("Fixture server stopped")

    async def __aenter__(self) -> Self:
        """Start the server when entering the context."""
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Stop the server when leaving the context."""
        await self.stop()

    @property
    def port(self) -> int | None:
        """Return the port the server listens on."""
        return self.webserver.port

    @property
    def base_url(self) -> str:
        """Return the base URL of the server."""
        return self.webserver.base_url

    def url_for(self, route: str) -> str:
        """Return the full URL for a route."""
        return f"{self.base_url}{route_from_path(route)}"

    # rules

    def set_rule(self, route: str, rule: Rule) -> None:
        """Set the rule for a route, replacing any previous rule."""
        self.rules.set(route, rule)

    def get_rule(self, route: str) -> Rule | NoRule:
        """Return the active rule for a route."""
        return self.rules.get(route)

    def request_succeeds(
        self,
        route: str,
        headers: dict[str, str] | None = None,
        response_time_ms: float | None = None,
        response_bits_per_sec: float | None = None,
    ) -> None:
        """Serve the file at the route, optionally with extra headers and/or throttled.

        :param route: The route (or relative path) to apply the rule to.
        :param headers: Extra response headers, a Content-Type here overrides the default.
        :param response_time_ms: Deliver the whole file in (approximately) this time.
        :param response_bits_per_sec: Deliver the file at (approximately) this bitrate.
        """
        self.rules.set(
            route,
            SuccessRule(
                headers=headers,
                response_time_ms=response_time_ms,
                response_bits_per_sec=response_bits_per_sec,
            ),
        )

    def request_redirects(
        self,
        route: str,
        location: str,
        code: int = DEFAULT_REDIRECT_CODE,
        headers: dict[str, str] | None = None,
    ) -> None:
        """Redirect requests for the route to another route, path or absolute URL."""
        self.rules.set(route, RedirectRule(location=location, code=code, headers=headers))

    def request_fails(
        self,
        route: str,
        status_code: int = DEFAULT_FAIL_CODE,
        status_message: str | None = None,
        headers: dict[str, str] | None = None,
        error_body: bytes | str | None = None,
    ) -> None:
        """Fail requests for the route with the given status (without reading the file)."""
        if isinstance(error_body, str):
            error_body = error_body.encode("utf-8")
        self.rules.set(
            route,
            FailRule(
                status_code=status_code,
                status_message=status_message,
                headers=headers,
                error_body=error_body,
            ),
        )

    def remove_rules(self, route: str) -> None:
        """Remove the rule of a route, it serves the file as-is again."""
        self.rules.remove(route)

    def clear_rules(self) -> None:
        """Remove all rules."""
        self.rules.clear()

    # routes and streams

    def register_route(self, rel_path: str, new_route: str) -> str:
        """Serve the file at `rel_path` (relative to the base dir) at an additional route.

        :raises ConfigurationError: If there is no such file below the base dir.
        """
        abs_path = os.path.normpath(os.path.join(self.base_dir, rel_path.lstrip("/")))
        if os.path.commonpath([self.base_dir, abs_path]) != self.base_dir:
            msg = f"Can not register route {new_route}: {rel_path} is outside the base dir"
            raise ConfigurationError(msg)
        if not os.path.isfile(abs_path):
            msg = f"Can not register route {new_route}: no file at {rel_path}"
            raise ConfigurationError(msg)
        LOGGER.debug("Cloning route %s -> %s", rel_path, new_route)
        return self.webserver.register_file_route(new_route, abs_path)

    async def load_stream(self, stream_name: str) -> FixtureStream:
        """Load a fixture stream from the base dir, with the routes of its files filled in."""
        stream = await loader.load_stream(self.base_dir, stream_name)
        return replace(
            stream,
            playlist_file=self._with_route(stream.playlist_file),
            variants=[
                replace(
                    variant,
                    playlist_file=self._with_route(variant.playlist_file),
                    segments=[
                        replace(segment, segment_file=self._with_route(segment.segment_file))
                        for segment in variant.segments
                    ],
                )
                for variant in stream.variants
            ],
        )

    def clone_stream(self, original: FixtureStream, new_stream_name: str) -> FixtureStream:
        """Clone a stream under a new name, registering new routes for all of its files.

        The new routes serve the original files, nothing is copied on disk.
        """
        return FixtureStream(
            stream_name=new_stream_name,
            playlist_file=self._clone_file(original.playlist_file, new_stream_name),
            master_playlist=original.master_playlist,
            variants=[
                self.clone_media_playlist(variant, new_stream_name)
                for variant in original.variants
            ],
        )

    def clone_media_playlist(
        self, original: FixtureMediaPlaylist, new_stream_name: str
    ) -> FixtureMediaPlaylist:
        """Clone a media playlist (and its segments) into another stream name."""
        return FixtureMediaPlaylist(
            playlist_file=self._clone_file(original.playlist_file, new_stream_name),
            media_playlist=original.media_playlist,
            segments=[
                self.clone_segment(segment, new_stream_name) for segment in original.segments
            ],
        )

    def clone_segment(self, original: FixtureSegment, new_stream_name: str) -> FixtureSegment:
        """Clone a segment into another stream name."""
        return FixtureSegment(
            segment_file=self._clone_file(original.segment_file, new_stream_name),
            media_segment=original.media_segment,
        )

    def _clone_file(self, original: FixtureFile, new_stream_name: str) -> FixtureFile:
        cloned_path = replace_leading_component(original.relative_path, new_stream_name)
        # a cloned file has no file of its own on disk, follow its route instead
        if original.route and (abs_path := self.webserver.resolve(original.route)):
            LOGGER.debug("Cloning route %s -> %s", original.route, cloned_path)
            route = self.webserver.register_file_route(cloned_path, abs_path)
        else:
            route = self.register_route(original.relative_path, cloned_path)
        return FixtureFile(relative_path=cloned_path, route=route)

    def _with_route(self, fixture_file: FixtureFile) -> FixtureFile:
        route = route_from_path(fixture_file.relative_path)
        if self.webserver.resolve(route) is None:
            return fixture_file
        return replace(fixture_file, route=route)

    # request handling

    async def _respond(self, request: web.Request, abs_path: str) -> web.StreamResponse:
        """Respond to a request for a fixture file according to the active rule."""
        rule = self.rules.get(request.path)
        if isinstance(rule, FailRule):
            return self._respond_fail(rule)
        if isinstance(rule, RedirectRule):
            return self._respond_redirect(rule)
        if not await isfile(abs_path):
            # removed from disk after its route was registered
            LOGGER.error("Unable to serve %s: no file at %s", request.path, abs_path)
            return web.Response(status=500)
        if isinstance(rule, SuccessRule) and rule.is_throttled:
            return await self._respond_throttled(request, abs_path, rule)
        headers = rule.headers if isinstance(rule, SuccessRule) else None
        return web.FileResponse(abs_path, headers=self._success_headers(abs_path, headers))

    def _respond_fail(self, rule: FailRule) -> web.Response:
        LOGGER.debug("Failing request with status %s", rule.status_code)
        return web.Response(
            status=rule.status_code,
            # an empty reason phrase unless a message is configured
            reason=rule.status_message if rule.status_message is not None else "",
            headers=rule.headers,
            body=rule.error_body,
        )

    def _respond_redirect(self, rule: RedirectRule) -> web.Response:
        if is_absolute_url(rule.location):
            location = rule.location
        else:
            location = route_from_path(rule.location)
        LOGGER.debug("Redirecting request (%s) to %s", rule.code, location)
        response = web.Response(status=rule.code, headers=rule.headers)
        # the location always wins over a location in the configured headers
        response.headers["Location"] = location
        return response

    async def _respond_throttled(
        self, request: web.Request, abs_path: str, rule: SuccessRule
    ) -> web.StreamResponse:
        try:
            data = await self._read_file(abs_path)
        except FileReadError as err:
            LOGGER.error("Unable to serve %s: %s", request.path, err)
            return web.Response(status=500)
        bytes_per_second = bytes_per_second_for_rule(rule, len(data))
        assert bytes_per_second is not None  # for type checking
        response = web.StreamResponse(
            status=200, reason="OK", headers=self._success_headers(abs_path, rule.headers)
        )
        response.content_length = len(data)
        await response.prepare(request)

        # return early if this is not a GET request
        if request.method != "GET":
            return response

        LOGGER.debug(
            "%s: writing out %s bytes at %.1f bytes per second",
            request.path,
            len(data),
            bytes_per_second,
        )
        try:
            await write_throttled(
                data, response, bytes_per_second, self.config.throttle_ticks_per_second
            )
        except WriteError as err:
            # client disconnected, nothing more we can (or should) write
            LOGGER.warning("Throttled response for %s aborted: %s", request.path, err)
            return response
        await response.write_eof()
        return response

    async def _read_file(self, abs_path: str) -> bytes:
        try:
            async with aiofiles.open(abs_path, "rb") as _file:
                data: bytes = await _file.read()
                return data
        except OSError as err:
            msg = f"Unable to read {abs_path}: {err}"
            raise FileReadError(msg) from err

    def _success_headers(self, abs_path: str, headers: dict[str, str] | None) -> dict[str, str]:
        # explicit headers first, defaults only where not overridden
        result = dict(headers or {})
        present = {key.lower() for key in result}
        for key, value in DEFAULT_FILE_HEADERS.items():
            if key.lower() not in present:
                result[key] = value
        if "content-type" not in present:
            result["Content-Type"] = content_type_for_path(abs_path)
        return result
