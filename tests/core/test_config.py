"""Tests for the server configuration."""

from __future__ import annotations

import json
import pathlib

import pytest

from hls_fixture_server.config import FixtureServerConfig, load_config
from hls_fixture_server.errors import ConfigurationError
from hls_fixture_server.models.rules import FailRule, SuccessRule


async def test_load_config(tmp_path: pathlib.Path, fixture_dir: pathlib.Path) -> None:
    """Test loading a config file, with a base dir relative to the file."""
    config_file = tmp_path / "fixtures.json"
    config_file.write_text(
        json.dumps(
            {
                "base_dir": "files",
                "bind_port": 0,
                "rules": {
                    "/file1.txt": {"type": "success", "response_time_ms": 2000},
                    "live/720p/0.ts": {"type": "fail", "status_code": 404},
                },
            }
        )
    )

    config = await load_config(str(config_file))

    assert pathlib.Path(config.base_dir) == fixture_dir
    assert config.bind_port == 0
    assert config.bind_ip == "127.0.0.1"
    assert config.throttle_ticks_per_second == 10
    assert config.parsed_rules() == {
        "/file1.txt": SuccessRule(response_time_ms=2000),
        "live/720p/0.ts": FailRule(status_code=404),
    }


async def test_load_config_errors(tmp_path: pathlib.Path, fixture_dir: pathlib.Path) -> None:
    """Test invalid config files raise a ConfigurationError."""
    with pytest.raises(ConfigurationError, match="not found"):
        await load_config(str(tmp_path / "missing.json"))

    config_file = tmp_path / "broken.json"
    config_file.write_text("{not json")
    with pytest.raises(ConfigurationError, match="not valid JSON"):
        await load_config(str(config_file))

    config_file.write_text(json.dumps({"bind_port": 3000}))
    with pytest.raises(ConfigurationError, match="Invalid config"):
        await load_config(str(config_file))

    config_file.write_text(
        json.dumps({"base_dir": str(fixture_dir), "rules": {"/a.ts": {"type": "nope"}}})
    )
    with pytest.raises(ConfigurationError, match="Unknown rule type"):
        await load_config(str(config_file))


@pytest.mark.parametrize(
    "overrides",
    [
        {"base_dir": "/definitely/not/here"},
        {"bind_port": 70000},
        {"shutdown_timeout": 0},
        {"throttle_ticks_per_second": 0},
    ],
)
def test_validate(fixture_dir: pathlib.Path, overrides: dict[str, object]) -> None:
    """Test out of range values are rejected."""
    config = FixtureServerConfig.from_dict({"base_dir": str(fixture_dir), **overrides})
    with pytest.raises(ConfigurationError):
        config.validate()
