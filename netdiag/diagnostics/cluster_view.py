"""Memoized, read-only view of the cluster state one diagnosis needs.

Several verifications look at the same objects (the target Service, its backing pods).
Reads are cached per session so parallel verifications don't repeat API calls and every
verification sees the same snapshot. Failed reads are cached too and re-raised.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from netdiag.core.models import ProbeTarget
from netdiag.core.selectors import selector_to_string
from netdiag.core.targets import ServiceAddress, is_ip_literal, parse_service_host
from netdiag.errors import ResourceNotFound
from netdiag.probe.runner import LOCAL_SOURCE
from netdiag.providers.k8s_provider import ExecResult, K8sProvider

logger = logging.getLogger(__name__)

PortRef = Union[int, str]


class ClusterView:
    def __init__(
        self,
        provider: K8sProvider,
        *,
        target: ProbeTarget,
        source_pod: str,
        namespace: str,
        cluster_domain: str = "cluster.local",
    ) -> None:
        self.provider = provider
        self.target = target
        self.source_pod = source_pod
        self.namespace = namespace
        self.cluster_domain = cluster_domain
        self.address: Optional[ServiceAddress] = parse_service_host(
            target.host, default_namespace=namespace, cluster_domain=cluster_domain
        )
        self._cache: Dict[Tuple[Any, ...], Any] = {}
        self._key_locks: Dict[Tuple[Any, ...], threading.Lock] = {}
        self._lock = threading.Lock()

    # -- memoization ---------------------------------------------------------------

    def _memo(self, key: Tuple[Any, ...], fetch: Callable[[], Any]) -> Any:
        # One lock per key: concurrent verifications wait for an in-flight read of the same
        # object instead of repeating it, while reads of different objects proceed in parallel.
        with self._lock:
            key_lock = self._key_locks.setdefault(key, threading.Lock())
        with key_lock:
            if key in self._cache:
                hit = self._cache[key]
                if isinstance(hit, Exception):
                    raise hit
                return hit
            logger.debug("cluster read: %s", key)
            try:
                value = fetch()
            except Exception as e:
                self._cache[key] = e
                raise
            self._cache[key] = value
            return value

    # -- identity ------------------------------------------------------------------

    @property
    def is_ip_target(self) -> bool:
        return is_ip_literal(self.target.host)

    @property
    def is_local_source(self) -> bool:
        return self.source_pod == LOCAL_SOURCE

    @property
    def service_name(self) -> Optional[str]:
        return self.address.service if self.address else None

    @property
    def service_namespace(self) -> str:
        return self.address.namespace if self.address else self.namespace

    # -- reads ---------------------------------------------------------------------

    def service(self) -> Optional[Dict[str, Any]]:
        """The target Service, or None when the host isn't a Service name or no such Service exists."""
        if self.address is None:
            return None

        def _fetch() -> Optional[Dict[str, Any]]:
            try:
                return self.provider.get_service(self.address.service, self.address.namespace)
            except ResourceNotFound:
                return None

        return self._memo(("service", self.address.service, self.address.namespace), _fetch)

    def services_named(self, name: str) -> List[Dict[str, Any]]:
        return self._memo(("services_named", name), lambda: self.provider.find_services(name))

    def service_spec(self) -> Dict[str, Any]:
        svc = self.service() or {}
        return svc.get("spec") or {}

    def service_selector(self) -> Dict[str, str]:
        return dict(self.service_spec().get("selector") or {})

    def pods(self, namespace: str, label_selector: Optional[str] = None) -> List[Dict[str, Any]]:
        return self._memo(
            ("pods", namespace, label_selector or ""),
            lambda: self.provider.list_pods(namespace, label_selector=label_selector),
        )

    def backing_pods(self) -> List[Dict[str, Any]]:
        """Pods selected by the target Service (empty when it has no selector)."""
        selector = self.service_selector()
        if not selector:
            return []
        return self.pods(self.service_namespace, selector_to_string(selector))

    def source_pod_info(self) -> Optional[Dict[str, Any]]:
        if self.is_local_source:
            return None
        return self._memo(("pod", self.source_pod, self.namespace), lambda: self.provider.get_pod(self.source_pod, self.namespace))

    def namespace_labels(self, namespace: str) -> Dict[str, str]:
        return self._memo(("ns_labels", namespace), lambda: self.provider.get_namespace_labels(namespace))

    def network_policies(self, namespace: str) -> List[Dict[str, Any]]:
        return self._memo(("netpol", namespace), lambda: self.provider.list_network_policies(namespace))

    def workloads(self, namespace: str) -> List[Dict[str, Any]]:
        return self._memo(("workloads", namespace), lambda: self.provider.list_workloads(namespace))

    def exec(self, pod: str, namespace: str, command: List[str], *, timeout_s: float = 5.0) -> ExecResult:
        return self._memo(
            ("exec", pod, namespace, tuple(command)),
            lambda: self.provider.exec_in_pod(pod, namespace, command, timeout_s=timeout_s),
        )

    # -- port resolution -----------------------------------------------------------

    def service_ports(self) -> List[Dict[str, Any]]:
        return list(self.service_spec().get("ports") or [])

    def matching_service_port(self) -> Optional[Dict[str, Any]]:
        """The `spec.ports[]` entry for the probed port, if the Service exposes it."""
        for p in self.service_ports():
            if p.get("port") == self.target.port:
                return p
        return None

    @staticmethod
    def target_port_of(port_entry: Dict[str, Any]) -> PortRef:
        # targetPort defaults to port.
        tp = port_entry.get("targetPort")
        if tp is None or tp == "":
            return int(port_entry.get("port"))
        if isinstance(tp, str) and tp.isdigit():
            return int(tp)
        return tp

    @staticmethod
    def container_ports(pods: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """All declared container ports across pods: [{pod, container, name, containerPort, protocol}]."""
        out: List[Dict[str, Any]] = []
        for pod in pods:
            pod_name = (pod.get("metadata") or {}).get("name")
            for c in (pod.get("spec") or {}).get("containers") or []:
                for p in c.get("ports") or []:
                    out.append(
                        {
                            "pod": pod_name,
                            "container": c.get("name"),
                            "name": p.get("name"),
                            "containerPort": p.get("containerPort"),
                            "protocol": p.get("protocol") or "TCP",
                        }
                    )
        return out

    def resolve_numeric_target_port(self) -> Optional[int]:
        """Numeric port the backing pods receive traffic on, resolving named targetPorts via container ports."""
        entry = self.matching_service_port()
        if entry is None:
            return None
        tp = self.target_port_of(entry)
        if isinstance(tp, int):
            return tp
        for p in self.container_ports(self.backing_pods()):
            if p.get("name") == tp and p.get("containerPort") is not None:
                return int(p["containerPort"])
        return None
