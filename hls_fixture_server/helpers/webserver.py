"""Base Webserver logic for an HTTPServer that serves files from a dynamic route table."""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Coroutine, Iterator
from typing import TYPE_CHECKING, Any, Final

from aiohttp import web

from hls_fixture_server.errors import FixtureServerError
from hls_fixture_server.helpers.paths import relative_posix_path, route_from_path

if TYPE_CHECKING:
    import logging

    from aiohttp.typedefs import Handler, Middleware


MAX_LINE_SIZE: Final = 24570

# Type alias for the handler which serves a file for a request
FileRouteHandler = Callable[
    [web.Request, str], Coroutine[Any, Any, web.Response | web.StreamResponse]
]


def discover_files(base_dir: str) -> Iterator[tuple[str, str]]:
    """Yield (route, absolute path) for every file below the base directory."""
    base_dir = os.path.abspath(base_dir)
    for dirpath, dirnames, filenames in os.walk(base_dir):
        # walk in a stable order
        dirnames.sort()
        for filename in sorted(filenames):
            abs_path = os.path.join(dirpath, filename)
            yield route_from_path(relative_posix_path(abs_path, base_dir)), abs_path


def create_error_middleware(logger: logging.Logger) -> Middleware:
    """Return middleware which turns unhandled errors into a plain 500 response."""

    @web.middleware
    async def error_middleware(
        request: web.Request, handler: Handler
    ) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except Exception:
            logger.exception("Error while handling %s %s", request.method, request.path)
            return web.Response(status=500)

    return error_middleware


class Webserver:
    """Base Webserver logic for an HTTPServer that serves files from a dynamic route table."""

    def __init__(
        self,
        logger: logging.Logger,
        file_handler: FileRouteHandler,
    ) -> None:
        """Initialize instance."""
        self.logger = logger
        self._file_handler = file_handler
        # route -> absolute path of the file it serves
        self._routes: dict[str, str] = {}
        # the below gets initialized in async setup
        self._apprunner: web.AppRunner | None = None
        self._webapp: web.Application | None = None
        self._tcp_site: web.TCPSite | None = None
        self._bind_ip: str | None = None
        self._bind_port: int | None = None
        self._shutdown_timeout: float = 10

    async def setup(
        self,
        bind_ip: str | None,
        bind_port: int,
        shutdown_timeout: float = 10,
    ) -> None:
        """Async initialize of module.

        :param bind_ip: IP address to bind to.
        :param bind_port: Port to bind to (0 to pick any free port).
        :param shutdown_timeout: Seconds to wait for open connections on close.
        """
        self._bind_ip = bind_ip
        self._shutdown_timeout = shutdown_timeout
        self._webapp = web.Application(
            logger=self.logger,
            middlewares=[create_error_middleware(self.logger)],
            handler_args={
                "max_line_size": MAX_LINE_SIZE,
                "max_field_size": MAX_LINE_SIZE,
            },
        )
        self._apprunner = web.AppRunner(
            self._webapp, access_log=None, shutdown_timeout=shutdown_timeout
        )
        # register catch-all route to resolve the file routes at request time
        self._webapp.router.add_get("/{tail:.*}", self._handle_catch_all)
        await self._apprunner.setup()
        # set host to None to bind to all addresses on both IPv4 and IPv6
        host = None if bind_ip == "0.0.0.0" else bind_ip
        self._tcp_site = web.TCPSite(self._apprunner, host=host, port=bind_port)
        await self._tcp_site.start()
        # resolve the actual port in case we were asked for any free port
        self._bind_port = self._apprunner.addresses[0][1] if bind_port == 0 else bind_port
        self.logger.debug("Webserver listening on %s", self.base_url)

    async def close(self) -> None:
        """Cleanup on exit, waits for open connections to drain.

        :raises FixtureServerError: If the shutdown does not complete in time.
        """
        try:
            # the runner itself waits up to shutdown_timeout for connections
            async with asyncio.timeout(self._shutdown_timeout * 2):
                if self._tcp_site:
                    await self._tcp_site.stop()
                if self._apprunner:
                    await self._apprunner.cleanup()
        except TimeoutError as err:
            msg = f"Webserver did not shut down within {self._shutdown_timeout} seconds"
            raise FixtureServerError(msg) from err
        finally:
            self._tcp_site = None
            self._apprunner = None
            self._webapp = None

    @property
    def running(self) -> bool:
        """Return True if the webserver is listening."""
        return self._tcp_site is not None

    @property
    def base_url(self) -> str:
        """Return the base URL of this webserver."""
        host = self._bind_ip if self._bind_ip and self._bind_ip != "0.0.0.0" else "127.0.0.1"
        if ":" in host:
            host = f"[{host}]"
        return f"http://{host}:{self._bind_port}"

    @property
    def port(self) -> int | None:
        """Return the port of this webserver."""
        return self._bind_port

    @property
    def routes(self) -> dict[str, str]:
        """Return a copy of the route table (route -> absolute file path)."""
        return dict(self._routes)

    def register_tree(self, base_dir: str) -> int:
        """Register a route for every file below the base directory, returns the count."""
        count = 0
        for route, abs_path in discover_files(base_dir):
            self.register_file_route(route, abs_path)
            count += 1
        return count

    def register_file_route(self, route: str, abs_path: str) -> str:
        """Register a route which serves the given file, returns the (normalized) route."""
        route = route_from_path(route)
        self.logger.debug("Adding route: %s -> %s", route, abs_path)
        self._routes[route] = abs_path
        return route

    def unregister_route(self, route: str) -> bool:
        """Unregister a route, returns True if it was registered."""
        return self._routes.pop(route_from_path(route), None) is not None

    def resolve(self, route: str) -> str | None:
        """Return the absolute path of the file served at the route, if any."""
        return self._routes.get(route_from_path(route))

    async def _handle_catch_all(self, request: web.Request) -> web.Response | web.StreamResponse:
        """Serve the file registered for the requested route."""
        if abs_path := self._routes.get(request.path):
            return await self._file_handler(request, abs_path)
        # deny all other requests
        self.logger.warning(
            "Received unhandled %s request to %s from %s",
            request.method,
            request.path,
            request.remote,
        )
        return web.Response(status=404)
