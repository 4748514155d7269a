"""
Agent Configuration
===================

Settings come from three places, later ones winning:

  1. JSON file   (~/.node-agent/agent.json, or --config)
  2. Environment (LISTEN_ADDR, DSTACK_URL, REGISTRY_URL, …)
  3. CLI flags

Only the values consumed by the core are validated here: the listen
address, the backend URL, and the owner address when a registry is set.
"""

from __future__ import annotations
import argparse
import json
import os
import re
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Mapping, Optional, Sequence

from .errors import ConfigError
from .transport import DEFAULT_PROBE_TIMEOUT, Endpoint, parse_endpoint
from .registration import DEFAULT_REGISTRY_TIMEOUT

CONFIG_PATH = Path.home() / ".node-agent" / "agent.json"

_OWNER_ADDRESS = re.compile(r"^0x[0-9a-fA-F]{40}$")

_STRING_FIELDS = (
    "listen_addr", "dstack_url", "data_dir", "registry_url",
    "owner_address", "node_type", "advertise_ip",
)

# field → environment variables, first one set wins
ENV_VARS = {
    "listen_addr":      ("LISTEN_ADDR",),
    "dstack_url":       ("DSTACK_URL", "DSTACK_BACKEND_DSTACK_URL"),
    "data_dir":         ("DATA_DIR",),
    "registry_url":     ("REGISTRY_URL",),
    "owner_address":    ("OWNER_ADDRESS",),
    "node_type":        ("NODE_TYPE",),
    "advertise_ip":     ("ADVERTISE_IP",),
    "probe_timeout":    ("PROBE_TIMEOUT",),
    "registry_timeout": ("REGISTRY_TIMEOUT",),
}


def load_config(path: Path) -> dict:
    if path.exists():
        try:
            data = json.loads(path.read_text())
        except (OSError, ValueError) as e:
            raise ConfigError(f"cannot read config file {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"config file {path} must contain a JSON object")
        return data
    return {}


def parse_listen_addr(addr: str) -> tuple[str, int]:
    host, sep, port = addr.rpartition(":")
    if not sep or not host or not port.isdigit() or not 0 <= int(port) <= 65535:
        raise ConfigError(f"invalid listen address {addr!r}")
    return host.strip("[]"), int(port)


@dataclass
class AgentConfig:
    listen_addr:      str = "0.0.0.0:8080"
    dstack_url:       str = "http://localhost:19060"
    data_dir:         str = "./data"
    registry_url:     Optional[str] = None
    owner_address:    Optional[str] = None
    node_type:        Optional[str] = None
    advertise_ip:     Optional[str] = None
    probe_timeout:    float = DEFAULT_PROBE_TIMEOUT
    registry_timeout: float = DEFAULT_REGISTRY_TIMEOUT

    # ─── Derived values ───────────────────────────────────────────────────────

    @property
    def endpoint(self) -> Endpoint:
        return parse_endpoint(self.dstack_url)

    @property
    def listen_host_port(self) -> tuple[str, int]:
        return parse_listen_addr(self.listen_addr)

    @property
    def registration_enabled(self) -> bool:
        return bool(self.registry_url)

    def validate(self):
        parse_listen_addr(self.listen_addr)
        parse_endpoint(self.dstack_url)
        if self.probe_timeout < 0 or self.registry_timeout <= 0:
            raise ConfigError("timeouts must be positive")
        if self.registration_enabled:
            if not self.owner_address:
                raise ConfigError("OWNER_ADDRESS is required for worker registration")
            if not _OWNER_ADDRESS.match(self.owner_address):
                raise ConfigError(f"OWNER_ADDRESS must be a valid Ethereum address, got {self.owner_address!r}")

    # ─── Sources ──────────────────────────────────────────────────────────────

    @classmethod
    def from_sources(
        cls,
        file_values: Mapping,
        env:         Mapping[str, str],
        cli_values:  Mapping,
    ) -> "AgentConfig":
        known  = {f.name for f in fields(cls)}
        values = {k: v for k, v in file_values.items() if k in known and v is not None}

        for name, env_names in ENV_VARS.items():
            for env_name in env_names:
                if env.get(env_name):
                    values[name] = env[env_name]
                    break

        values.update({k: v for k, v in cli_values.items() if k in known and v is not None})

        for name in ("probe_timeout", "registry_timeout"):
            if name in values:
                try:
                    values[name] = float(values[name])
                except (TypeError, ValueError) as e:
                    raise ConfigError(f"{name} must be a number, got {values[name]!r}") from e

        for name in _STRING_FIELDS:
            if name in values and not isinstance(values[name], str):
                raise ConfigError(f"{name} must be a string, got {values[name]!r}")

        for name in ("dstack_url", "registry_url", "owner_address", "node_type", "advertise_ip"):
            if name in values:
                values[name] = values[name].strip() or None

        cfg = cls(**values)
        if cfg.dstack_url is None:
            raise ConfigError("backend URL is empty")
        return cfg


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="dstack node health agent")
    parser.add_argument("--config", type=Path, default=CONFIG_PATH,
                        help=f"JSON config file (default: {CONFIG_PATH})")
    parser.add_argument("--listen-addr", dest="listen_addr",
                        help="host:port to serve /health on (default: 0.0.0.0:8080)")
    parser.add_argument("--dstack-url", dest="dstack_url",
                        help="Backend URL, http://… or unix:///path/to.sock")
    parser.add_argument("--data-dir", dest="data_dir",
                        help="Directory holding the node key (default: ./data)")
    parser.add_argument("--registry-url", dest="registry_url",
                        help="Fleet registry base URL; registration is skipped when unset")
    parser.add_argument("--owner-address", dest="owner_address",
                        help="Owner's 0x address, required with --registry-url")
    parser.add_argument("--node-type", dest="node_type",
                        help="Explicit node type; resolved from the GPU inventory when unset")
    parser.add_argument("--advertise-ip", dest="advertise_ip",
                        help="IP address to report; detected when unset")
    parser.add_argument("--probe-timeout", dest="probe_timeout", type=float,
                        help=f"Seconds per backend probe, 0 to disable (default: {DEFAULT_PROBE_TIMEOUT})")
    parser.add_argument("--registry-timeout", dest="registry_timeout", type=float,
                        help=f"Seconds per registry request (default: {DEFAULT_REGISTRY_TIMEOUT})")
    return parser


def parse_config(argv: Optional[Sequence[str]] = None, env: Optional[Mapping[str, str]] = None) -> AgentConfig:
    args = build_parser().parse_args(argv)
    env  = os.environ if env is None else env
    cli  = {k: v for k, v in vars(args).items() if k != "config"}

    cfg = AgentConfig.from_sources(load_config(args.config), env, cli)
    cfg.validate()
    return cfg
