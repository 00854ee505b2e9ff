"""
Pytest config.

Pins the repo root on sys.path so `import netdiag` / `import main` work from a plain
checkout, and provides an in-memory Kubernetes provider so no test touches a cluster.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

from netdiag.errors import ProbeError, ResourceNotFound  # noqa: E402
from netdiag.providers.k8s_provider import ExecResult  # noqa: E402


def make_service(
    name: str,
    namespace: str = "myproject",
    *,
    selector: Optional[Dict[str, str]] = None,
    ports: Optional[List[Dict[str, Any]]] = None,
    cluster_ip: Any = "172.30.12.34",
) -> Dict[str, Any]:
    spec: Dict[str, Any] = {
        "selector": selector if selector is not None else {"app": name},
        "ports": ports if ports is not None else [{"port": 443, "targetPort": 8443, "protocol": "TCP"}],
    }
    # `cluster_ip=...` (Ellipsis) leaves the field out entirely.
    if cluster_ip is not ...:
        spec["clusterIP"] = cluster_ip
    return {"metadata": {"name": name, "namespace": namespace}, "spec": spec}


def make_pod(
    name: str,
    namespace: str = "myproject",
    *,
    labels: Optional[Dict[str, str]] = None,
    ports: Optional[List[Dict[str, Any]]] = None,
    phase: str = "Running",
    ip: str = "10.128.0.10",
    container: str = "app",
) -> Dict[str, Any]:
    c: Dict[str, Any] = {"name": container, "image": "quay.io/example/app:1"}
    if ports is not None:
        c["ports"] = ports
    return {
        "metadata": {"name": name, "namespace": namespace, "labels": dict(labels or {})},
        "spec": {"containers": [c]},
        "status": {"phase": phase, "podIP": ip},
    }


class FakeK8sProvider:
    """In-memory stand-in for DefaultK8sProvider; records every call."""

    def __init__(self) -> None:
        self.services: Dict[tuple, Dict[str, Any]] = {}
        self.pods: Dict[tuple, Dict[str, Any]] = {}
        self.policies: Dict[str, List[Dict[str, Any]]] = {}
        self.workloads: Dict[str, List[Dict[str, Any]]] = {}
        self.ns_labels: Dict[str, Dict[str, str]] = {}
        self.exec_results: Dict[str, Any] = {}
        self.fail: Dict[str, Exception] = {}
        self.calls: List[tuple] = []

    # -- setup helpers ----------------------------------------------------------

    def add_service(self, svc: Dict[str, Any]) -> "FakeK8sProvider":
        m = svc["metadata"]
        self.services[(m["namespace"], m["name"])] = svc
        return self

    def add_pod(self, pod: Dict[str, Any]) -> "FakeK8sProvider":
        m = pod["metadata"]
        self.pods[(m["namespace"], m["name"])] = pod
        return self

    def add_policy(self, policy: Dict[str, Any]) -> "FakeK8sProvider":
        self.policies.setdefault(policy["metadata"]["namespace"], []).append(policy)
        return self

    def _maybe_fail(self, op: str) -> None:
        if op in self.fail:
            raise self.fail[op]

    # -- K8sProvider ------------------------------------------------------------

    def get_service(self, name: str, namespace: str) -> Dict[str, Any]:
        self.calls.append(("get_service", name, namespace))
        self._maybe_fail("get_service")
        try:
            return self.services[(namespace, name)]
        except KeyError:
            raise ResourceNotFound("Service", name, namespace)

    def find_services(self, name: str) -> List[Dict[str, Any]]:
        self.calls.append(("find_services", name))
        self._maybe_fail("find_services")
        return [{"name": n, "namespace": ns} for (ns, n) in sorted(self.services) if n == name]

    def get_pod(self, name: str, namespace: str) -> Dict[str, Any]:
        self.calls.append(("get_pod", name, namespace))
        self._maybe_fail("get_pod")
        try:
            return self.pods[(namespace, name)]
        except KeyError:
            raise ResourceNotFound("Pod", name, namespace)

    def list_pods(self, namespace: str, label_selector: Optional[str] = None) -> List[Dict[str, Any]]:
        self.calls.append(("list_pods", namespace, label_selector))
        self._maybe_fail("list_pods")
        wanted = dict(kv.split("=", 1) for kv in label_selector.split(",")) if label_selector else {}
        out = []
        for (ns, _), pod in sorted(self.pods.items()):
            labels = pod["metadata"].get("labels") or {}
            if ns == namespace and all(labels.get(k) == v for k, v in wanted.items()):
                out.append(pod)
        return out

    def get_namespace_labels(self, namespace: str) -> Dict[str, str]:
        self.calls.append(("get_namespace_labels", namespace))
        labels = dict(self.ns_labels.get(namespace) or {})
        labels.setdefault("kubernetes.io/metadata.name", namespace)
        return labels

    def list_network_policies(self, namespace: str) -> List[Dict[str, Any]]:
        self.calls.append(("list_network_policies", namespace))
        self._maybe_fail("list_network_policies")
        return list(self.policies.get(namespace) or [])

    def list_workloads(self, namespace: str) -> List[Dict[str, Any]]:
        self.calls.append(("list_workloads", namespace))
        return list(self.workloads.get(namespace) or [])

    def exec_in_pod(self, name, namespace, command, *, container=None, timeout_s=None) -> ExecResult:
        self.calls.append(("exec_in_pod", name, namespace, tuple(command)))
        res = self.exec_results.get(name)
        if res is None:
            raise ProbeError(f"Cannot exec into pod `{name}`: 404 Not Found", pod=name, namespace=namespace)
        if isinstance(res, Exception):
            raise res
        return res


@pytest.fixture
def k8s() -> FakeK8sProvider:
    return FakeK8sProvider()


@pytest.fixture(autouse=True)
def _clean_netdiag_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Environment configuration must not leak from the developer's shell into tests."""
    for name in (
        "NETDIAG_TIMEOUT_SECONDS",
        "NETDIAG_NAMESPACE",
        "NETDIAG_PARALLEL_VERIFICATIONS",
        "NETDIAG_CLUSTER_DOMAIN",
        "NETDIAG_PROBE_BINARY",
        "NETDIAG_FULL_REPORT",
        "NETDIAG_VERBOSE",
        "NETDIAG_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
