import json
import subprocess

import pytest

from dynamic_networks.exceptions import RuntimeClientError
from dynamic_networks_agent.clients import cri
from dynamic_networks_agent.clients.cri import CrictlRuntime, normalize_unix_endpoint


def fake_run(stdout="", returncode=0, stderr="", calls=None):
    def run(cmd, **kwargs):
        if calls is not None:
            calls.append(cmd)
        return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr=stderr)

    return run


def test_normalize_unix_endpoint():
    assert normalize_unix_endpoint("/run/crio/crio.sock") == "unix:///run/crio/crio.sock"
    assert normalize_unix_endpoint("unix:///run/x.sock") == "unix:///run/x.sock"
    with pytest.raises(ValueError):
        normalize_unix_endpoint("")


def test_containerd_netns_from_pid(monkeypatch):
    calls = []
    monkeypatch.setattr(
        cri.subprocess, "run", fake_run(json.dumps({"info": {"pid": 4242}}), calls=calls)
    )

    runtime = CrictlRuntime("/run/containerd/containerd.sock", "containerd")

    assert runtime.netns_path("abc123") == "/proc/4242/ns/net"
    assert calls == [
        [
            "crictl",
            "--runtime-endpoint",
            "unix:///run/containerd/containerd.sock",
            "inspect",
            "--output",
            "json",
            "abc123",
        ]
    ]


def test_crio_netns_from_runtime_spec(monkeypatch):
    info = {
        "info": {
            "pid": 4242,
            "runtimeSpec": {
                "linux": {
                    "namespaces": [
                        {"type": "pid"},
                        {"type": "network", "path": "/var/run/netns/2f8a"},
                    ]
                }
            },
        }
    }
    monkeypatch.setattr(cri.subprocess, "run", fake_run(json.dumps(info)))

    assert CrictlRuntime("/run/crio/crio.sock", "crio").netns_path("abc123") == "/var/run/netns/2f8a"


def test_missing_pid_raises(monkeypatch):
    monkeypatch.setattr(cri.subprocess, "run", fake_run(json.dumps({"info": {}})))

    with pytest.raises(RuntimeClientError):
        CrictlRuntime("/run/containerd/containerd.sock").netns_path("abc123")


def test_crictl_failure_raises(monkeypatch):
    monkeypatch.setattr(
        cri.subprocess, "run", fake_run(returncode=1, stderr="container not found")
    )

    with pytest.raises(RuntimeClientError, match="container not found"):
        CrictlRuntime("/run/containerd/containerd.sock").netns_path("abc123")


def test_unsupported_runtime_rejected():
    with pytest.raises(ValueError):
        CrictlRuntime("/run/docker.sock", "docker")
