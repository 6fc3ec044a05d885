from __future__ import annotations

from pathlib import Path

import pytest

from gcr_plugin.config import (
    ConfigParseError,
    DecodeError,
    decode_auth_key,
    load_config,
    load_environment,
    parse_config,
    prepare_config,
    qualify_repository,
)
from gcr_plugin.models import PluginConfig


@pytest.mark.parametrize(
    ("repo", "expected"),
    [
        ("myorg/myapp", "gcr.io/myorg/myapp"),
        ("myapp", "myapp"),
        ("eu.gcr.io/myorg/myapp", "eu.gcr.io/myorg/myapp"),
        ("gcr.io/myorg/team/myapp", "gcr.io/myorg/team/myapp"),
    ],
)
def test_qualify_repository(repo: str, expected: str) -> None:
    assert qualify_repository(repo, "gcr.io") == expected


def test_qualify_repository_is_a_no_op_once_qualified() -> None:
    once = qualify_repository("myorg/myapp", "gcr.io")
    assert qualify_repository(once, "gcr.io") == once


def test_decode_auth_key_unescapes_yaml_string() -> None:
    raw = '"{\\"type\\": \\"service_account\\",\\n \\"private_key\\": \\"abc\\"}"'
    assert decode_auth_key(raw) == '{"type": "service_account",\n "private_key": "abc"}'


def test_decode_auth_key_accepts_plain_scalar() -> None:
    assert decode_auth_key("s3cr3t") == "s3cr3t"


@pytest.mark.parametrize("raw", ["12345", "yes", "2001-12-14", "3.5", "null"])
def test_decode_auth_key_keeps_non_string_scalars_as_text(raw: str) -> None:
    assert decode_auth_key(raw) == raw


@pytest.mark.parametrize("raw", ['"unterminated', '{"type": "service_account"}', "- a\n- b", "''"])
def test_decode_auth_key_rejects_malformed_input(raw: str) -> None:
    with pytest.raises(DecodeError):
        decode_auth_key(raw)


def test_parse_config_defaults() -> None:
    config = parse_config({"PLUGIN_AUTH_KEY": "key", "PLUGIN_REPO": "myorg/myapp"})
    assert config.registry == "gcr.io"
    assert config.name == "00000000"
    assert config.dockerfile == "Dockerfile"
    assert config.context == "."
    assert config.tags == ("latest",)
    assert config.build_args == ()
    assert config.dry_run is False
    assert config.debug is False
    assert config.storage_driver == ""


def test_parse_config_reads_prefixed_before_plain_names() -> None:
    config = parse_config(
        {
            "PLUGIN_AUTH_KEY": "key",
            "REPO": "plain/repo",
            "PLUGIN_REPO": "prefixed/repo",
            "DRONE_COMMIT_SHA": "abc123",
            "PLUGIN_DRY_RUN": "true",
            "PLUGIN_TAGS": "latest, v1,,v2 ",
            "PLUGIN_ARGS": "A=1,B=2",
        }
    )
    assert config.repo == "prefixed/repo"
    assert config.name == "abc123"
    assert config.dry_run is True
    assert config.tags == ("latest", "v1", "v2")
    assert config.build_args == ("A=1", "B=2")


def test_parse_config_treats_empty_values_as_unset() -> None:
    config = parse_config({"AUTH_KEY": "key", "REPO": "a/b", "PLUGIN_TAGS": "", "PLUGIN_REGISTRY": ""})
    assert config.tags == ("latest",)
    assert config.registry == "gcr.io"


@pytest.mark.parametrize("missing", ["PLUGIN_AUTH_KEY", "PLUGIN_REPO"])
def test_parse_config_requires_auth_key_and_repo(missing: str) -> None:
    environ = {"PLUGIN_AUTH_KEY": "key", "PLUGIN_REPO": "a/b"}
    del environ[missing]
    with pytest.raises(ConfigParseError):
        parse_config(environ)


def test_parse_config_rejects_bad_boolean() -> None:
    with pytest.raises(ConfigParseError, match="DEBUG"):
        parse_config({"PLUGIN_AUTH_KEY": "key", "PLUGIN_REPO": "a/b", "PLUGIN_DEBUG": "yes"})


def test_parse_config_rejects_unknown_log_format() -> None:
    with pytest.raises(ConfigParseError, match="LOG_FORMAT"):
        parse_config({"PLUGIN_AUTH_KEY": "key", "PLUGIN_REPO": "a/b", "PLUGIN_LOG_FORMAT": "xml"})


def test_prepare_config_returns_new_value() -> None:
    raw = PluginConfig(auth_key='"sec\\tret"', repo="myorg/myapp", registry="eu.gcr.io")
    prepared = prepare_config(raw)
    assert prepared.auth_key == "sec\tret"
    assert prepared.repo == "eu.gcr.io/myorg/myapp"
    assert raw.auth_key == '"sec\\tret"'
    assert raw.repo == "myorg/myapp"


def test_load_environment_reads_env_file_without_overriding(tmp_path: Path) -> None:
    env_file = tmp_path / "plugin.env"
    env_file.write_text("PLUGIN_REPO=from/file\nPLUGIN_TAGS=v1,v2\n")
    environ = {"PLUGIN_ENV_FILE": str(env_file), "PLUGIN_REPO": "from/env"}

    merged = load_environment(environ)
    assert merged["PLUGIN_REPO"] == "from/env"
    assert merged["PLUGIN_TAGS"] == "v1,v2"


def test_load_environment_skips_missing_env_file(tmp_path: Path) -> None:
    environ = {"PLUGIN_ENV_FILE": str(tmp_path / "missing.env"), "PLUGIN_REPO": "a/b"}
    assert load_environment(environ) == environ


def test_load_config_end_to_end(tmp_path: Path) -> None:
    env_file = tmp_path / "plugin.env"
    env_file.write_text("PLUGIN_AUTH_KEY='\"s3cr3t\"'\n")
    config = load_config(
        {"PLUGIN_REPO": "myorg/myapp", "PLUGIN_REGISTRY": "gcr.io", "PLUGIN_TAGS": "latest,v2"},
        env_file=str(env_file),
    )
    assert config.auth_key == "s3cr3t"
    assert config.repo == "gcr.io/myorg/myapp"
    assert config.tags == ("latest", "v2")
