"""YAML configuration loader for the ippool agent."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

import httpx
import yaml

from ippool_mirror.models import EndPolicy
from ippool_mirror.poster import (
    DEFAULT_ENDPOINT_URL,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_SEND_INTERVAL,
)

from .server import DEFAULT_LISTEN_ADDRESS, DEFAULT_SHUTDOWN_TIMEOUT, parse_listen_address
from .watchers.kube import (
    DEFAULT_RETRY_INTERVAL,
    DEFAULT_WATCH_TIMEOUT,
    IPPOOL_RESOURCE,
    ResourceRef,
)
from .watchers.resource import DEFAULT_RESYNC_INTERVAL


class ConfigError(ValueError):
    """The configuration file is unreadable or invalid."""


@dataclass
class KubernetesConfig:
    kubeconfig: Optional[Path] = None
    context: Optional[str] = None
    resource: ResourceRef = IPPOOL_RESOURCE
    namespace: Optional[str] = None


@dataclass
class WatcherConfig:
    resync_interval: float = DEFAULT_RESYNC_INTERVAL
    watch_timeout: float = DEFAULT_WATCH_TIMEOUT
    retry_interval: float = DEFAULT_RETRY_INTERVAL
    end_policy: EndPolicy = EndPolicy.REQUIRED


@dataclass
class PosterConfig:
    endpoint_url: str = DEFAULT_ENDPOINT_URL
    send_interval: float = DEFAULT_SEND_INTERVAL
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT


@dataclass
class ServerConfig:
    listen_address: str = DEFAULT_LISTEN_ADDRESS
    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT


@dataclass
class AgentConfig:
    kubernetes: KubernetesConfig = field(default_factory=KubernetesConfig)
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    poster: PosterConfig = field(default_factory=PosterConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    section = data.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' section must be a mapping")
    return section


def _seconds(section: Mapping[str, Any], key: str, default: float) -> float:
    value = section.get(key, default)
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"'{key}' must be a number of seconds, got {value!r}") from None
    return seconds


def _positive(section: Mapping[str, Any], key: str, default: float) -> float:
    seconds = _seconds(section, key, default)
    if seconds <= 0:
        raise ConfigError(f"'{key}' must be positive, got {seconds}")
    return seconds


def _optional_str(section: Mapping[str, Any], key: str) -> Optional[str]:
    value = section.get(key)
    return None if value is None else str(value)


def _endpoint_url(section: Mapping[str, Any]) -> str:
    value = str(section.get("endpoint_url") or DEFAULT_ENDPOINT_URL)
    try:
        url = httpx.URL(value)
    except httpx.InvalidURL as exc:
        raise ConfigError(f"invalid endpoint_url {value!r}: {exc}") from None
    if url.scheme not in ("http", "https") or not url.host:
        raise ConfigError(f"endpoint_url must be an http(s) URL with a host, got {value!r}")
    return value


def _parse_kubernetes(section: Mapping[str, Any]) -> KubernetesConfig:
    kubeconfig = _optional_str(section, "kubeconfig")
    return KubernetesConfig(
        kubeconfig=Path(kubeconfig).expanduser() if kubeconfig else None,
        context=_optional_str(section, "context"),
        resource=ResourceRef(
            group=str(section.get("group", IPPOOL_RESOURCE.group)),
            version=str(section.get("version", IPPOOL_RESOURCE.version)),
            plural=str(section.get("plural", IPPOOL_RESOURCE.plural)),
        ),
        namespace=_optional_str(section, "namespace") or None,
    )


def _parse_watcher(section: Mapping[str, Any]) -> WatcherConfig:
    require_end = section.get("require_end", True)
    if not isinstance(require_end, bool):
        raise ConfigError("'require_end' must be a boolean")
    return WatcherConfig(
        resync_interval=_positive(section, "resync_interval", DEFAULT_RESYNC_INTERVAL),
        watch_timeout=_positive(section, "watch_timeout", DEFAULT_WATCH_TIMEOUT),
        retry_interval=_positive(section, "retry_interval", DEFAULT_RETRY_INTERVAL),
        end_policy=EndPolicy.REQUIRED if require_end else EndPolicy.OPTIONAL,
    )


def _parse_poster(section: Mapping[str, Any]) -> PosterConfig:
    # Intervals at or below the poster's floor are replaced there, not here.
    return PosterConfig(
        endpoint_url=_endpoint_url(section),
        send_interval=_seconds(section, "send_interval", DEFAULT_SEND_INTERVAL),
        request_timeout=_positive(section, "request_timeout", DEFAULT_REQUEST_TIMEOUT),
    )


def _parse_server(section: Mapping[str, Any]) -> ServerConfig:
    listen_address = str(section.get("listen_address", DEFAULT_LISTEN_ADDRESS))
    try:
        parse_listen_address(listen_address)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc
    return ServerConfig(
        listen_address=listen_address,
        shutdown_timeout=_positive(section, "shutdown_timeout", DEFAULT_SHUTDOWN_TIMEOUT),
    )


def parse_config(data: Any) -> AgentConfig:
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("Agent configuration must be a mapping")

    return AgentConfig(
        kubernetes=_parse_kubernetes(_section(data, "kubernetes")),
        watcher=_parse_watcher(_section(data, "watcher")),
        poster=_parse_poster(_section(data, "poster")),
        server=_parse_server(_section(data, "server")),
    )


def load_config(path: Optional[Path]) -> AgentConfig:
    """Load ``path``; without a path every option keeps its default."""

    if path is None:
        return AgentConfig()
    try:
        data = yaml.safe_load(Path(path).read_text())
    except OSError as exc:
        raise ConfigError(f"cannot read configuration {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"cannot parse configuration {path}: {exc}") from exc
    return parse_config(data)
