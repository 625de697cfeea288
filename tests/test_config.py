from __future__ import annotations

import logging

import pytest

from playout.errors import ConfigError
from playout.utils import configure_logging, load_config, resolve_level


def test_defaults_without_file() -> None:
    config = load_config(environ={})

    assert config.remote_base_url == "https://app.singular.live/apiv2"
    assert config.offair_payload == "empty"
    assert config.policy_for("rundown-1") == "sparse"
    assert config.policy_for("variables") == "dense"
    assert config.policy_for("anything-else") == "sparse"
    assert config.control_url("abc") == "https://app.singular.live/apiv2/controlapps/abc/control"


def test_missing_file_falls_back_to_defaults(tmp_path) -> None:
    config = load_config(tmp_path / "absent.yaml", environ={})

    assert config.port == 8044


def test_yaml_file_and_environment(tmp_path) -> None:
    path = tmp_path / "playout.yaml"
    path.write_text(
        "remote_base_url: http://renderer.local/api/\n"
        "request_timeout: 3\n"
        "max_retries: -4\n"
        "collection_policies:\n"
        "  rundown-1: DENSE\n"
        "mystery: 1\n",
        encoding="utf-8",
    )

    config = load_config(path, environ={"PLAYOUT_REQUEST_TIMEOUT": "1.5", "LOG_LEVEL": "DEBUG"})

    assert config.control_url("t") == "http://renderer.local/api/controlapps/t/control"
    assert config.request_timeout == 1.5
    assert config.max_retries == 0
    assert config.log_level == "DEBUG"
    assert config.collection_policies == {"rundown-1": "dense", "variables": "dense", "tables": "dense"}


@pytest.mark.parametrize(
    "document",
    [
        "- just\n- a list\n",
        "offair_payload: sometimes\n",
        "collection_policies:\n  rundown-1: shuffled\n",
        "collection_policies: dense\n",
        "key: [unclosed\n",
    ],
)
def test_invalid_configuration(tmp_path, document) -> None:
    path = tmp_path / "playout.yaml"
    path.write_text(document, encoding="utf-8")

    with pytest.raises(ConfigError):
        load_config(path, environ={})


def test_bad_environment_value() -> None:
    with pytest.raises(ConfigError):
        load_config(environ={"PLAYOUT_REQUEST_TIMEOUT": "soon"})


def test_resolve_level() -> None:
    assert resolve_level("debug") == logging.DEBUG
    assert resolve_level(logging.WARNING) == logging.WARNING
    assert resolve_level("chatty") == logging.INFO


def test_configure_logging_sets_root_level() -> None:
    root = logging.getLogger()
    previous = root.level
    try:
        configure_logging("WARNING")
        assert root.level == logging.WARNING
    finally:
        root.setLevel(previous)
