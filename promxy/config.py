"""Loading the configuration file and applying it to reloadable components."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List

import yaml

PROMXY_KEY = "promxy"
TLS_KEY = "tls_server_config"


class ConfigError(Exception):
    """The configuration file could not be read or decoded."""


@dataclass
class TLSConfig:
    """TLS settings for the web server."""

    cert_file: str = ""
    key_file: str = ""
    client_auth_type: str = ""
    client_ca_file: str = ""


@dataclass
class PromxyConfig:
    """Settings specific to the proxy, found under the ``promxy`` key."""

    server_groups: List[Any] = field(default_factory=list)


@dataclass
class Config:
    """The whole configuration file.

    ``prom_config`` holds every top-level key of the Prometheus configuration;
    the proxy's own settings and the TLS settings are kept apart.
    """

    prom_config: Dict[str, Any] = field(default_factory=dict)
    promxy: PromxyConfig = field(default_factory=PromxyConfig)
    web_config: TLSConfig = field(default_factory=TLSConfig)

    @property
    def server_groups(self) -> List[Any]:
        return self.promxy.server_groups


def _scalar_to_str(key: str, value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        raise ConfigError(f"error unmarshaling config: {key} must be a string")
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _tls_from_document(data: Any) -> TLSConfig:
    if data is None:
        return TLSConfig()
    if not isinstance(data, dict):
        raise ConfigError(f"error unmarshaling config: {TLS_KEY} must be a mapping")
    return TLSConfig(
        cert_file=_scalar_to_str("cert_file", data.get("cert_file")),
        key_file=_scalar_to_str("key_file", data.get("key_file")),
        client_auth_type=_scalar_to_str("client_auth_type", data.get("client_auth_type")),
        client_ca_file=_scalar_to_str("client_ca_file", data.get("client_ca_file")),
    )


def _promxy_from_document(data: Any) -> PromxyConfig:
    if data is None:
        return PromxyConfig()
    if not isinstance(data, dict):
        raise ConfigError(f"error unmarshaling config: {PROMXY_KEY} must be a mapping")
    groups = data.get("server_groups")
    if groups is None:
        return PromxyConfig()
    if not isinstance(groups, list):
        raise ConfigError("error unmarshaling config: server_groups must be a list")
    return PromxyConfig(server_groups=groups)


def config_from_file(path) -> Config:
    """Load the configuration file at ``path``."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"error loading config: {exc}") from exc
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"error unmarshaling config: {exc}") from exc

    if document is None:
        return Config()
    if not isinstance(document, dict):
        raise ConfigError("error unmarshaling config: top level must be a mapping")

    prom_config = {
        key: value for key, value in document.items() if key not in (PROMXY_KEY, TLS_KEY)
    }
    return Config(
        prom_config=prom_config,
        promxy=_promxy_from_document(document.get(PROMXY_KEY)),
        web_config=_tls_from_document(document.get(TLS_KEY)),
    )


@dataclass
class PromReloadableWrap:
    """Adapts something that applies a Prometheus config to the whole ``Config``."""

    reloadable: Any

    def apply_config(self, config: Config) -> None:
        """Apply the Prometheus part of ``config``."""
        self.reloadable.apply_config(config.prom_config)


def wrap_prom_reloadable(reloadable: Any) -> PromReloadableWrap:
    """Wrap an object applying a Prometheus config so it accepts a ``Config``."""
    return PromReloadableWrap(reloadable)


@dataclass
class ApplyConfigFunc:
    """Turns a single function into an object with ``apply_config``."""

    func: Callable[[Any], None]

    def apply_config(self, config: Any) -> None:
        """Call the wrapped function with ``config``."""
        self.func(config)