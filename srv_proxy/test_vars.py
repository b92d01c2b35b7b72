import importlib

import pytest
from pydantic import ValidationError

from srv_proxy.vars import DEFAULT_PORT, ProxyConfig, load_config


def test_defaults():
    config = load_config({})

    assert config.host is None
    assert config.port == DEFAULT_PORT == 3000
    assert config.listen_address == "0.0.0.0"


def test_host_and_port_from_environment():
    config = load_config({"HOST": "example.com", "PORT": "8080"})

    assert config.host == "example.com"
    assert config.port == 8080


def test_blank_host_is_unset():
    assert load_config({"HOST": "   "}).host is None


@pytest.mark.parametrize("port", ["abc", "0", "70000", "-1"])
def test_invalid_port_fails_fast(port):
    with pytest.raises(ValidationError):
        load_config({"HOST": "example.com", "PORT": port})


@pytest.mark.parametrize(
    "host",
    ["https://example.com", "example.com:443", "example.com/path", "exa mple.com"],
)
def test_host_must_be_bare_hostname(host):
    with pytest.raises(ValidationError):
        load_config({"HOST": host})


def test_config_is_immutable():
    config = ProxyConfig(host="example.com")

    with pytest.raises(ValidationError):
        config.host = "other.example.com"


def test_module_reads_process_environment(monkeypatch):
    monkeypatch.setenv("HOST", "svc.example.net")
    monkeypatch.setenv("PORT", "9090")
    import srv_proxy.vars as vars_module

    try:
        importlib.reload(vars_module)
        config = vars_module.load_config()
        assert config.host == "svc.example.net"
        assert config.port == 9090
    finally:
        monkeypatch.undo()
        importlib.reload(vars_module)
