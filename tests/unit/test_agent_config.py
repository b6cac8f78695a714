from pathlib import Path

import pytest

from ippool_agent.config import ConfigError, load_config
from ippool_agent import main as agent_main
from ippool_agent.main import (
    EXIT_CLIENT_ERROR,
    EXIT_CONFIG_ERROR,
    EXIT_OK,
    EXIT_RUNTIME_ERROR,
    EXIT_SERVER_ERROR,
    exit_code_for,
    main,
)
from ippool_agent.server import ShutdownError
from ippool_mirror.models import EndPolicy


def test_load_config(tmp_path: Path):
    config_path = tmp_path / "agent.yaml"
    config_path.write_text(
        """
kubernetes:
  kubeconfig: /etc/kube/config
  context: lab
  namespace: harvester-system
watcher:
  resync_interval: 120
  watch_timeout: 30
  require_end: false
poster:
  endpoint_url: http://collector.local:9000/pools
  send_interval: 15
server:
  listen_address: 127.0.0.1:3001
  shutdown_timeout: 20
"""
    )

    cfg = load_config(config_path)

    assert cfg.kubernetes.kubeconfig == Path("/etc/kube/config")
    assert cfg.kubernetes.context == "lab"
    assert cfg.kubernetes.namespace == "harvester-system"
    assert cfg.kubernetes.resource.group == "network.harvesterhci.io"
    assert cfg.kubernetes.resource.plural == "ippools"
    assert cfg.watcher.resync_interval == pytest.approx(120.0)
    assert cfg.watcher.watch_timeout == pytest.approx(30.0)
    assert cfg.watcher.retry_interval == pytest.approx(5.0)
    assert cfg.watcher.end_policy is EndPolicy.OPTIONAL
    assert cfg.poster.endpoint_url == "http://collector.local:9000/pools"
    assert cfg.poster.send_interval == pytest.approx(15.0)
    assert cfg.poster.request_timeout == pytest.approx(10.0)
    assert cfg.server.listen_address == "127.0.0.1:3001"
    assert cfg.server.shutdown_timeout == pytest.approx(20.0)


def test_defaults_without_file():
    cfg = load_config(None)

    assert cfg.kubernetes.kubeconfig is None
    assert cfg.kubernetes.namespace is None
    assert cfg.watcher.resync_interval == pytest.approx(300.0)
    assert cfg.watcher.end_policy is EndPolicy.REQUIRED
    assert cfg.poster.endpoint_url == "http://localhost:8080/"
    assert cfg.poster.send_interval == pytest.approx(10.0)
    assert cfg.server.listen_address == ":3000"
    assert cfg.server.shutdown_timeout == pytest.approx(60.0)


def test_empty_file_uses_defaults(tmp_path: Path):
    config_path = tmp_path / "agent.yaml"
    config_path.write_text("")

    assert load_config(config_path).poster.send_interval == pytest.approx(10.0)


@pytest.mark.parametrize(
    "content",
    [
        "- not\n- a mapping\n",
        "watcher: []\n",
        "watcher:\n  resync_interval: soon\n",
        "watcher:\n  resync_interval: 0\n",
        "watcher:\n  require_end: maybe\n",
        "server:\n  listen_address: localhost\n",
        "poster: {endpoint_url: [unclosed\n",
        "poster:\n  endpoint_url: \"http://consumer:notaport/\"\n",
        "poster:\n  endpoint_url: ftp://consumer/pools\n",
        "poster:\n  endpoint_url: consumer/pools\n",
    ],
)
def test_invalid_config_rejected(tmp_path: Path, content: str):
    config_path = tmp_path / "agent.yaml"
    config_path.write_text(content)

    with pytest.raises(ConfigError):
        load_config(config_path)


def test_missing_file_rejected(tmp_path: Path):
    with pytest.raises(ConfigError):
        load_config(tmp_path / "absent.yaml")


def test_main_exits_with_config_error(tmp_path: Path):
    config_path = tmp_path / "agent.yaml"
    config_path.write_text("server:\n  shutdown_timeout: -1\n")

    assert main(["--config", str(config_path)]) == EXIT_CONFIG_ERROR


def test_main_exits_with_config_error_on_bad_kubeconfig(tmp_path: Path):
    assert main(["--kubeconfig", str(tmp_path / "missing-kubeconfig")]) == EXIT_CONFIG_ERROR


class BrokenClientModule:
    """Stand-in for the kubernetes client module whose API cannot be built."""

    class ApiClient:
        pass

    class CustomObjectsApi:
        def __init__(self, api_client):
            raise RuntimeError("no cluster host configured")


def test_main_exits_with_client_error(monkeypatch):
    monkeypatch.setattr(agent_main, "_load_credentials", lambda cfg: None)
    monkeypatch.setattr(agent_main, "k8s_client", BrokenClientModule)

    assert main([]) == EXIT_CLIENT_ERROR


def test_exit_codes():
    assert exit_code_for(None) == EXIT_OK
    assert exit_code_for(ShutdownError("late")) == EXIT_SERVER_ERROR
    assert exit_code_for(RuntimeError("boom")) == EXIT_RUNTIME_ERROR
