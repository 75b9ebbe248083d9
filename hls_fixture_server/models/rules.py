"""Per-route response rules and the store which holds them."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from mashumaro import DataClassDictMixin, field_options

from hls_fixture_server.constants import DEFAULT_FAIL_CODE, DEFAULT_REDIRECT_CODE, LOGGER_NAME
from hls_fixture_server.errors import ConfigurationError
from hls_fixture_server.helpers.paths import route_from_path

LOGGER = logging.getLogger(f"{LOGGER_NAME}.rules")


def _body_to_bytes(value: str | bytes | None) -> bytes | None:
    if isinstance(value, str):
        return value.encode("utf-8")
    return value


def _body_to_str(value: bytes | None) -> str | None:
    if value is None:
        return None
    return value.decode("utf-8", errors="replace")


def _validate_headers(headers: dict[str, str] | None) -> None:
    if headers is None:
        return
    for key, value in headers.items():
        if not isinstance(key, str) or not isinstance(value, str):
            msg = f"Headers must map strings to strings, got {key!r}: {value!r}"
            raise ConfigurationError(msg)


@dataclass(frozen=True)
class SuccessRule(DataClassDictMixin):
    """Serve the file, optionally with extra headers and throttled delivery."""

    headers: dict[str, str] | None = None
    response_time_ms: float | None = None
    response_bits_per_sec: float | None = None

    def __post_init__(self) -> None:
        """Validate the rule."""
        _validate_headers(self.headers)
        if self.response_time_ms is not None and self.response_time_ms < 0:
            msg = f"response_time_ms must not be negative, got {self.response_time_ms}"
            raise ConfigurationError(msg)
        if self.response_bits_per_sec is not None and self.response_bits_per_sec < 0:
            msg = f"response_bits_per_sec must not be negative, got {self.response_bits_per_sec}"
            raise ConfigurationError(msg)

    @property
    def is_throttled(self) -> bool:
        """Return True if the response should be paced."""
        return bool(self.response_time_ms or self.response_bits_per_sec)


@dataclass(frozen=True)
class RedirectRule(DataClassDictMixin):
    """Respond with a redirect to another route or an absolute URL."""

    location: str
    code: int = DEFAULT_REDIRECT_CODE
    headers: dict[str, str] | None = None

    def __post_init__(self) -> None:
        """Validate the rule."""
        _validate_headers(self.headers)
        if not self.location:
            msg = "Redirect location must not be empty"
            raise ConfigurationError(msg)
        if not 300 <= self.code <= 399:
            msg = f"Redirect code must be a 3xx status code, got {self.code}"
            raise ConfigurationError(msg)


@dataclass(frozen=True)
class FailRule(DataClassDictMixin):
    """Respond with an error status (and optional body) without reading the file."""

    status_code: int = DEFAULT_FAIL_CODE
    status_message: str | None = None
    headers: dict[str, str] | None = None
    error_body: bytes | None = field(
        default=None,
        metadata=field_options(serialize=_body_to_str, deserialize=_body_to_bytes),
    )

    def __post_init__(self) -> None:
        """Validate the rule."""
        _validate_headers(self.headers)
        if not 100 <= self.status_code <= 599:
            msg = f"Status code must be between 100 and 599, got {self.status_code}"
            raise ConfigurationError(msg)
        if self.status_message is not None and (
            "\n" in self.status_message or "\r" in self.status_message
        ):
            msg = "Status message must not contain line breaks"
            raise ConfigurationError(msg)
        if isinstance(self.error_body, str):
            # frozen dataclass, so bypass the regular setattr
            object.__setattr__(self, "error_body", self.error_body.encode("utf-8"))


@dataclass(frozen=True)
class NoRule:
    """No rule configured for a route: serve the file as-is."""


NO_RULE = NoRule()

Rule = SuccessRule | RedirectRule | FailRule

RULE_TYPES: dict[str, type[SuccessRule] | type[RedirectRule] | type[FailRule]] = {
    "success": SuccessRule,
    "redirect": RedirectRule,
    "fail": FailRule,
}


def rule_from_dict(data: dict[str, Any]) -> Rule:
    """Create a rule from a dict with a `type` key (success, redirect or fail)."""
    data = dict(data)
    rule_type = data.pop("type", None)
    if rule_type not in RULE_TYPES:
        msg = f"Unknown rule type {rule_type!r}, expected one of {', '.join(RULE_TYPES)}"
        raise ConfigurationError(msg)
    try:
        return RULE_TYPES[rule_type].from_dict(data)
    except ConfigurationError:
        raise
    except Exception as err:
        msg = f"Invalid {rule_type} rule: {err}"
        raise ConfigurationError(msg) from err


class RuleStore:
    """Maps routes to their (single) active rule."""

    def __init__(self) -> None:
        """Initialize the (empty) store."""
        self._rules: dict[str, Rule] = {}

    def set(self, route: str, rule: Rule) -> None:
        """Set the rule for a route, replacing any previous rule."""
        route = route_from_path(route)
        LOGGER.debug("Setting rule for %s: %s", route, rule)
        self._rules[route] = rule

    def get(self, route: str) -> Rule | NoRule:
        """Return the active rule for a route, or NO_RULE."""
        return self._rules.get(route_from_path(route), NO_RULE)

    def remove(self, route: str) -> bool:
        """Remove the rule for a route, returns True if there was one."""
        route = route_from_path(route)
        LOGGER.debug("Removing rule for %s", route)
        return self._rules.pop(route, None) is not None

    def clear(self) -> None:
        """Remove all rules."""
        self._rules.clear()

    @property
    def routes(self) -> list[str]:
        """Return all routes which currently have a rule."""
        return list(self._rules)

    def __contains__(self, route: object) -> bool:
        """Return True if the route has an active rule."""
        return isinstance(route, str) and route_from_path(route) in self._rules

    def __len__(self) -> int:
        """Return the number of active rules."""
        return len(self._rules)
