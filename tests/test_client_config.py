import json
import tomllib

import pytest

from maco.client_config import DEFAULT_TIMEOUT, ClientConfig, from_path


@pytest.mark.parametrize("suffix", [".toml", ".yaml", ".yml", ".json"])
def test_save_and_load_round_trip(tmp_path, suffix):
    cfg = ClientConfig(
        target="127.0.0.1:4500",
        dial_timeout=3.0,
        request_timeout=0.5,
        cert_file="client.pem",
        key_file="client.key",
        ca_file="ca.pem",
    )
    path = tmp_path / f"client{suffix}"
    cfg.save(path)
    assert from_path(path) == cfg


def test_json_durations_are_nanoseconds(tmp_path):
    path = tmp_path / "client.json"
    ClientConfig(target="localhost:4500").save(path)
    data = json.loads(path.read_text())
    assert data["dial-timeout"] == 10_000_000_000
    assert data["request-timeout"] == data["dial-timeout"]
    assert data["target"] == "localhost:4500"


def test_toml_durations_are_strings(tmp_path):
    path = tmp_path / "client.toml"
    ClientConfig(target="localhost:4500").save(path)
    with open(path, "rb") as fh:
        data = tomllib.load(fh)
    assert data["dial-timeout"] == "10s"
    assert data["cert-file"] == ""


def test_toml_accepts_strings_and_nanoseconds(tmp_path):
    path = tmp_path / "client.toml"
    path.write_text('target = "m:1"\ndial-timeout = "2s"\nrequest-timeout = 3000000000\n')
    cfg = from_path(path)
    assert cfg.dial_timeout == 2.0
    assert cfg.request_timeout == 3.0


def test_invalid_duration_raises(tmp_path):
    path = tmp_path / "client.toml"
    path.write_text('target = "m:1"\ndial-timeout = "soon"\n')
    with pytest.raises(ValueError):
        from_path(path)


def test_wrong_type_raises(tmp_path):
    path = tmp_path / "client.json"
    path.write_text('{"target": 5}')
    with pytest.raises(ValueError):
        from_path(path)


@pytest.mark.parametrize("name", ["client.ini", "client"])
def test_invalid_extension(tmp_path, name):
    with pytest.raises(ValueError, match="invalid config format"):
        from_path(tmp_path / name)
    with pytest.raises(ValueError, match="invalid config format"):
        ClientConfig(target="x").save(tmp_path / name)


def test_init_requires_target_only_once():
    cfg = ClientConfig()
    with pytest.raises(ValueError, match="missing target"):
        cfg.init()
    assert cfg.init() is None


def test_init_fills_missing_timeouts(tmp_path):
    path = tmp_path / "client.toml"
    path.write_text('target = "localhost:4500"\n')
    cfg = from_path(path)
    assert cfg.dial_timeout == 0.0
    cfg.init()
    assert cfg.dial_timeout == DEFAULT_TIMEOUT
    assert cfg.request_timeout == DEFAULT_TIMEOUT