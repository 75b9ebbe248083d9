"""Configuration of the fixture server."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any

import aiofiles
from mashumaro import DataClassDictMixin

from hls_fixture_server.constants import (
    DEFAULT_BIND_IP,
    DEFAULT_BIND_PORT,
    DEFAULT_SHUTDOWN_TIMEOUT,
    LOGGER_NAME,
    THROTTLE_TICKS_PER_SECOND,
)
from hls_fixture_server.errors import ConfigurationError
from hls_fixture_server.models.rules import Rule, rule_from_dict

LOGGER = logging.getLogger(f"{LOGGER_NAME}.config")


@dataclass
class FixtureServerConfig(DataClassDictMixin):
    """Settings for a FixtureServer instance."""

    base_dir: str
    bind_ip: str = DEFAULT_BIND_IP
    bind_port: int = DEFAULT_BIND_PORT
    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT
    throttle_ticks_per_second: int = THROTTLE_TICKS_PER_SECOND
    # route -> rule dict (with a `type` key), applied when the server starts
    rules: dict[str, dict[str, Any]] = field(default_factory=dict)

    def validate(self) -> None:
        """Validate the configuration.

        :raises ConfigurationError: If any of the values is invalid.
        """
        if not os.path.isdir(self.base_dir):
            msg = f"Base directory {self.base_dir} does not exist"
            raise ConfigurationError(msg)
        if not 0 <= self.bind_port <= 65535:
            msg = f"Invalid port {self.bind_port}"
            raise ConfigurationError(msg)
        if self.shutdown_timeout <= 0:
            msg = f"Shutdown timeout must be positive, got {self.shutdown_timeout}"
            raise ConfigurationError(msg)
        if self.throttle_ticks_per_second < 1:
            msg = (
                "Throttle ticks per second must be at least 1, "
                f"got {self.throttle_ticks_per_second}"
            )
            raise ConfigurationError(msg)
        # parsing validates the rules
        self.parsed_rules()

    def parsed_rules(self) -> dict[str, Rule]:
        """Return the configured rules as rule objects."""
        return {route: rule_from_dict(rule) for route, rule in self.rules.items()}


async def load_config(filename: str) -> FixtureServerConfig:
    """Load (and validate) the server configuration from a JSON file.

    A relative base_dir is resolved against the directory of the config file.
    """
    try:
        async with aiofiles.open(filename, encoding="utf-8") as _file:
            data = json.loads(await _file.read())
    except FileNotFoundError as err:
        msg = f"Config file {filename} not found"
        raise ConfigurationError(msg) from err
    except json.JSONDecodeError as err:
        msg = f"Config file {filename} is not valid JSON: {err}"
        raise ConfigurationError(msg) from err
    if not isinstance(data, dict):
        msg = f"Config file {filename} must contain a JSON object"
        raise ConfigurationError(msg)
    try:
        config = FixtureServerConfig.from_dict(data)
    except Exception as err:
        msg = f"Invalid config in {filename}: {err}"
        raise ConfigurationError(msg) from err
    if not os.path.isabs(config.base_dir):
        config.base_dir = os.path.join(os.path.dirname(os.path.abspath(filename)), config.base_dir)
    config.validate()
    LOGGER.debug("Loaded config from %s", filename)
    return config
