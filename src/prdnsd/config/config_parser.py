"""Command-line and YAML configuration for the prdnsd server.

Values are merged with increasing precedence: built-in defaults, the YAML
file named by ``--config`` (when given), then explicit command-line flags.
The merged mapping is validated into a :class:`ServerConfig`.
"""

from __future__ import annotations

import argparse
import logging
from typing import Any, Dict, List, Optional, Tuple

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from ..errors import ConfigError
from ..upstream.router import DEFAULT_UPSTREAM
from .durations import parse_duration

logger = logging.getLogger(__name__)

DEFAULT_CHROOT = "/var/tmp"


class ServerConfig(BaseModel):
    """Brief: Validated server configuration.

    Inputs:
      - listen: UDP listen address '[host]:port'; '' disables the listener.
      - tls_listen: DoT listen address; only used when cert is set.
      - cert: PEM certificate for the DoT listener; '' disables DoT.
      - key: PEM private key; defaults to cert.
      - upstream: Ordered '[domain=]protocol://host:port' specs.
      - debounce: Debounce window in seconds (accepts '200ms' style strings).
      - count: Replies allowed inside a debounce window.
      - client_timeout: Upstream timeout in seconds; 0 waits forever.
      - store: sqlite3 path for persisting PTR data; '' disables it.
      - chroot: Directory to chroot into after start; '' disables it.
      - silent: Hide routine per-query logging.
      - logging: Mapping passed to init_logging.

    Outputs:
      - ServerConfig instance with normalized field types.
    """

    listen: str = ":53"
    tls_listen: str = ":853"
    cert: str = ""
    key: str = ""
    upstream: List[str] = Field(default_factory=lambda: [DEFAULT_UPSTREAM])
    debounce: float = Field(default=0.2, ge=0.0)
    count: int = Field(default=100, ge=0)
    client_timeout: float = Field(default=0.0, ge=0.0)
    store: str = ""
    chroot: str = DEFAULT_CHROOT
    silent: bool = False
    logging: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        extra = "forbid"

    @field_validator("debounce", "client_timeout", mode="before")
    @classmethod
    def _parse_duration(cls, value: Any) -> float:
        try:
            return parse_duration(value)
        except ConfigError as e:
            raise ValueError(str(e)) from e

    @field_validator("upstream", mode="before")
    @classmethod
    def _default_upstream(cls, value: Any) -> Any:
        if value is None or value == []:
            return [DEFAULT_UPSTREAM]
        if isinstance(value, str):
            return [value]
        return value

    @property
    def key_file(self) -> str:
        return self.key or self.cert

    @property
    def udp_address(self) -> Optional[Tuple[str, int]]:
        return parse_listen_address(self.listen)

    @property
    def tls_address(self) -> Optional[Tuple[str, int]]:
        if not self.cert:
            return None
        return parse_listen_address(self.tls_listen)


def parse_listen_address(addr: Optional[str]) -> Optional[Tuple[str, int]]:
    """Brief: Split a listen address into (host, port).

    Inputs:
      - addr: '[host]:port', e.g. ':53', '127.0.0.1:5353', '[::1]:853'.

    Outputs:
      - (host, port) with host '' for all interfaces; None when addr is empty.

    Raises:
      - ConfigError when the port is missing or invalid.

    Example:
      >>> parse_listen_address(":53")
      ('', 53)
    """
    if not addr:
        return None
    text = str(addr).strip()
    host, sep, port_text = text.rpartition(":")
    if not sep:
        raise ConfigError(f"listen address {addr!r} needs a port")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port = int(port_text)
    except ValueError:
        raise ConfigError(f"invalid port in listen address {addr!r}") from None
    if not 0 <= port <= 65535:
        raise ConfigError(f"port out of range in listen address {addr!r}")
    return host, port


def build_arg_parser() -> argparse.ArgumentParser:
    """Brief: Build the server's argument parser; every flag defaults to None."""
    parser = argparse.ArgumentParser(
        prog="prdnsd",
        description="Forwarding DNS server with a passive reverse-DNS cache",
    )
    parser.add_argument("--config", help="Path to YAML config")
    parser.add_argument(
        "--upstream",
        action="append",
        help="upstream DNS server (tcp-tls:// prefix for DoT), multi-val, "
        "can prefix with .domain=",
    )
    parser.add_argument("--listen", help="listen address (default ':53')")
    parser.add_argument(
        "--tlslisten", dest="tls_listen", help="TCP-TLS listener address (default ':853')"
    )
    parser.add_argument(
        "--cert", help="TCP-TLS listener certificate (required for tls listener)"
    )
    parser.add_argument(
        "--key", help="TCP-TLS certificate key (default same as --cert value)"
    )
    parser.add_argument(
        "--debounce",
        help="Required time duration between UDP replies to single IP to prevent DoS "
        "(default 200ms)",
    )
    parser.add_argument(
        "--count",
        type=int,
        help="Count of replies allowed before debounce delay is applied (default 100)",
    )
    parser.add_argument("--store", help="Store PTR data to specified file")
    parser.add_argument(
        "--chroot", help=f"chroot to directory after start (default {DEFAULT_CHROOT!r})"
    )
    parser.add_argument(
        "--silent",
        action="store_const",
        const=True,
        help="Don't report normal data",
    )
    parser.add_argument(
        "--ctmout", dest="client_timeout", help="Client timeout for upstream queries"
    )
    return parser


def load_yaml_config(path: str) -> Dict[str, Any]:
    """Brief: Read a YAML mapping from ``path``.

    Inputs:
      - path: file path.

    Outputs:
      - dict (empty for an empty file).

    Raises:
      - ConfigError when the file is unreadable, not YAML, or not a mapping.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"cannot read config {path!r}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config {path!r} must be a mapping")
    return data


def parse_config(argv: Optional[List[str]] = None) -> ServerConfig:
    """Brief: Build the ServerConfig from command-line arguments and optional YAML.

    Inputs:
      - argv: argument list (defaults to sys.argv[1:]).

    Outputs:
      - ServerConfig.

    Raises:
      - ConfigError on unreadable files or invalid values.
    """
    args = build_arg_parser().parse_args(argv)

    merged: Dict[str, Any] = {}
    if args.config:
        merged.update(load_yaml_config(args.config))

    for name, value in vars(args).items():
        if name == "config" or value is None:
            continue
        merged[name] = value

    try:
        return ServerConfig(**merged)
    except ValidationError as e:
        raise ConfigError(f"invalid configuration: {e}") from e
