"""Entry point for the ippool mirror agent."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.config.config_exception import ConfigException

from ippool_mirror.health import HealthRegistry
from ippool_mirror.poster import Poster

from .config import AgentConfig, ConfigError, KubernetesConfig, load_config
from .lifecycle import Lifecycle
from .server import HealthServer, HealthServerError
from .watchers import KubernetesPoolSource, ResourceWatcher

LOG = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_CLIENT_ERROR = 2
EXIT_SERVER_ERROR = 3
EXIT_RUNTIME_ERROR = 4


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )


def _load_credentials(cfg: KubernetesConfig) -> None:
    if cfg.kubeconfig is not None:
        LOG.info("using kubeconfig %s", cfg.kubeconfig)
        k8s_config.load_kube_config(config_file=str(cfg.kubeconfig), context=cfg.context)
    else:
        LOG.info("using in-cluster configuration")
        k8s_config.load_incluster_config()


def build_lifecycle(config: AgentConfig, api) -> Lifecycle:
    source = KubernetesPoolSource(
        api,
        config.kubernetes.resource,
        namespace=config.kubernetes.namespace,
        watch_timeout=config.watcher.watch_timeout,
        retry_interval=config.watcher.retry_interval,
    )
    watcher = ResourceWatcher(source, end_policy=config.watcher.end_policy)
    poster = Poster(
        watcher,
        send_interval=config.poster.send_interval,
        endpoint_url=config.poster.endpoint_url,
        request_timeout=config.poster.request_timeout,
    )

    registry = HealthRegistry()
    registry.register("watcher", watcher)
    registry.register("poster", poster)

    server = HealthServer(
        registry,
        listen_address=config.server.listen_address,
        shutdown_timeout=config.server.shutdown_timeout,
    )
    return Lifecycle(
        watcher,
        poster,
        server,
        resync_interval=config.watcher.resync_interval,
    )


def exit_code_for(error: Optional[BaseException]) -> int:
    if error is None:
        return EXIT_OK
    if isinstance(error, HealthServerError):
        return EXIT_SERVER_ERROR
    return EXIT_RUNTIME_ERROR


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Mirror IP pools to a downstream endpoint")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to the agent configuration file (defaults apply without one)",
    )
    parser.add_argument(
        "--kubeconfig",
        type=Path,
        default=None,
        help="Path to a kubeconfig file; in-cluster configuration is used otherwise",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        LOG.error("invalid configuration: %s", exc)
        return EXIT_CONFIG_ERROR
    if args.kubeconfig is not None:
        config.kubernetes.kubeconfig = args.kubeconfig

    try:
        _load_credentials(config.kubernetes)
    except (ConfigException, OSError) as exc:
        LOG.error("cannot load cluster credentials: %s", exc)
        return EXIT_CONFIG_ERROR

    try:
        api = k8s_client.CustomObjectsApi(k8s_client.ApiClient())
    except Exception as exc:
        LOG.error("cannot construct cluster client: %s", exc)
        return EXIT_CLIENT_ERROR

    lifecycle = build_lifecycle(config, api)

    def _shutdown(signum, frame):  # pragma: no cover - signal handler
        LOG.info("received signal %s, shutting down", signum)
        lifecycle.cancel()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    error = lifecycle.run()
    code = exit_code_for(error)
    if error is not None:
        LOG.error("ippool agent stopped with error: %s", error)
    else:
        LOG.info("ippool agent stopped")
    return code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
