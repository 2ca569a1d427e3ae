from pathlib import Path

import pytest

from masterdom_chat import config, token_store


def test_defaults():
    loaded = config.load_config({})

    assert loaded.base_url == config.DEFAULT_BASE_URL
    assert loaded.token_path == token_store.TOKEN_PATH
    assert loaded.request_timeout_s == config.DEFAULT_REQUEST_TIMEOUT_S
    assert loaded.watch_expiry is False


def test_environment_overrides_defaults(tmp_path: Path):
    env = {
        config.ENV_BASE_URL: "https://api.example.com",
        config.ENV_TOKEN_PATH: str(tmp_path / "token.json"),
        config.ENV_REQUEST_TIMEOUT: "2.5",
        config.ENV_WATCH_EXPIRY: "yes",
    }

    loaded = config.load_config(env)

    assert loaded.base_url == "https://api.example.com"
    assert loaded.token_path == tmp_path / "token.json"
    assert loaded.request_timeout_s == 2.5
    assert loaded.watch_expiry is True


def test_arguments_override_environment(tmp_path: Path):
    env = {config.ENV_BASE_URL: "https://env.example.com", config.ENV_REQUEST_TIMEOUT: "9"}

    loaded = config.load_config(
        env,
        base_url="http://127.0.0.1:9000",
        token_path=str(tmp_path / "cli.json"),
        request_timeout_s=0,
    )

    assert loaded.base_url == "http://127.0.0.1:9000"
    assert loaded.token_path == tmp_path / "cli.json"
    assert loaded.request_timeout_s is None


def test_invalid_timeout_in_environment():
    with pytest.raises(ValueError):
        config.load_config({config.ENV_REQUEST_TIMEOUT: "soon"})


def test_profile_gets_its_own_token_file(tmp_path: Path, monkeypatch):
    monkeypatch.setattr(config, "PROFILES_DIR", tmp_path / "profiles")

    loaded = config.load_config({}, profile="work")

    assert loaded.token_path == tmp_path / "profiles" / "work" / "session.json"
    assert (tmp_path / "profiles" / "work").is_dir()
