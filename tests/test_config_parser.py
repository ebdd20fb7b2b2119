"""
Brief: Tests for prdnsd.config (durations, listen addresses, CLI/YAML merging).

Inputs:
  - None

Outputs:
  - None
"""

from __future__ import annotations

import pytest

from prdnsd.config.config_parser import (
    DEFAULT_CHROOT,
    ServerConfig,
    parse_config,
    parse_listen_address,
)
from prdnsd.config.durations import parse_duration
from prdnsd.errors import ConfigError
from prdnsd.upstream.router import DEFAULT_UPSTREAM


@pytest.mark.parametrize(
    "text,expected",
    [
        ("200ms", 0.2),
        ("1.5s", 1.5),
        ("1m30s", 90.0),
        ("2h", 7200.0),
        ("1h2m3s", 3723.0),
        ("500us", 0.0005),
        ("3", 3.0),
        ("0", 0.0),
        ("", 0.0),
        (None, 0.0),
        (2, 2.0),
        (0.25, 0.25),
        ("-1s", -1.0),
    ],
)
def test_parse_duration(text, expected):
    assert parse_duration(text) == pytest.approx(expected)


@pytest.mark.parametrize("text", ["abc", "10x", "s", "1s2", "ms200", "nan", True])
def test_parse_duration_rejects_garbage(text):
    with pytest.raises(ConfigError):
        parse_duration(text)


def test_parse_listen_address_forms():
    assert parse_listen_address(":53") == ("", 53)
    assert parse_listen_address("127.0.0.1:5353") == ("127.0.0.1", 5353)
    assert parse_listen_address("[::1]:853") == ("::1", 853)
    assert parse_listen_address("") is None


@pytest.mark.parametrize("addr", ["127.0.0.1", ":http", ":99999"])
def test_parse_listen_address_rejects_invalid(addr):
    with pytest.raises(ConfigError):
        parse_listen_address(addr)


def test_defaults():
    cfg = parse_config([])
    assert cfg.listen == ":53"
    assert cfg.tls_listen == ":853"
    assert cfg.upstream == [DEFAULT_UPSTREAM]
    assert cfg.debounce == pytest.approx(0.2)
    assert cfg.count == 100
    assert cfg.client_timeout == 0.0
    assert cfg.store == ""
    assert cfg.chroot == DEFAULT_CHROOT
    assert cfg.silent is False
    # DoT is off until a certificate is configured
    assert cfg.tls_address is None
    assert cfg.udp_address == ("", 53)


def test_cli_flags():
    cfg = parse_config(
        [
            "--listen", "127.0.0.1:5353",
            "--upstream", "udp://9.9.9.9:53",
            "--upstream", ".corp=tcp://10.0.0.2:53",
            "--debounce", "1s",
            "--count", "3",
            "--ctmout", "2s",
            "--store", "/tmp/ptr.db",
            "--chroot", "",
            "--cert", "server.pem",
            "--silent",
        ]
    )
    assert cfg.udp_address == ("127.0.0.1", 5353)
    assert cfg.upstream == ["udp://9.9.9.9:53", ".corp=tcp://10.0.0.2:53"]
    assert cfg.debounce == 1.0
    assert cfg.count == 3
    assert cfg.client_timeout == 2.0
    assert cfg.store == "/tmp/ptr.db"
    assert cfg.chroot == ""
    assert cfg.silent is True
    assert cfg.key_file == "server.pem"
    assert cfg.tls_address == ("", 853)


def test_yaml_file_then_cli_precedence(tmp_path):
    path = tmp_path / "prdnsd.yaml"
    path.write_text(
        "listen: 127.0.0.1:5300\n"
        "upstream:\n"
        "  - udp://1.1.1.1:53\n"
        "debounce: 500ms\n"
        "count: 7\n"
        "logging:\n"
        "  level: debug\n",
        encoding="utf-8",
    )
    cfg = parse_config(["--config", str(path), "--count", "9"])
    assert cfg.listen == "127.0.0.1:5300"
    assert cfg.upstream == ["udp://1.1.1.1:53"]
    assert cfg.debounce == pytest.approx(0.5)
    assert cfg.count == 9
    assert cfg.logging == {"level": "debug"}


def test_yaml_single_upstream_string(tmp_path):
    path = tmp_path / "c.yaml"
    path.write_text("upstream: tcp-tls://9.9.9.9:853\n", encoding="utf-8")
    assert parse_config(["--config", str(path)]).upstream == ["tcp-tls://9.9.9.9:853"]


def test_bad_duration_is_config_error():
    with pytest.raises(ConfigError):
        parse_config(["--debounce", "soon"])


def test_unknown_yaml_key_is_config_error(tmp_path):
    path = tmp_path / "c.yaml"
    path.write_text("listne: ':53'\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        parse_config(["--config", str(path)])


def test_non_mapping_yaml_is_config_error(tmp_path):
    path = tmp_path / "c.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        parse_config(["--config", str(path)])


def test_missing_yaml_is_config_error(tmp_path):
    with pytest.raises(ConfigError):
        parse_config(["--config", str(tmp_path / "missing.yaml")])


def test_negative_count_rejected():
    with pytest.raises(ConfigError):
        parse_config(["--count", "-1"])


def test_server_config_accepts_numbers_for_durations():
    cfg = ServerConfig(debounce=0.05, client_timeout=3)
    assert cfg.debounce == 0.05
    assert cfg.client_timeout == 3.0
