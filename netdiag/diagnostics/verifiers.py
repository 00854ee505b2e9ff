"""Read-only verification for each candidate cause.

A verifier answers one yes/no question about cluster state ("is `.spec.clusterIP` None?")
and returns `confirmed`, `refuted` or `inconclusive` with the evidence it looked at.
Verifiers may raise (API failures); the resolver turns that into `inconclusive`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, List, Optional, Set

from netdiag.core.models import VerificationStatus
from netdiag.core.selectors import matches_equality, near_misses, selector_to_string
from netdiag.diagnostics.cluster_view import ClusterView
from netdiag.diagnostics.netpol import (
    PolicyEndpoint,
    egress_admits,
    ingress_admits,
    isolating_policies,
    policy_name,
)
from netdiag.errors import ProbeError

# TCP state code for LISTEN in /proc/net/tcp{,6}.
_TCP_LISTEN = "0A"
_LOOPBACK_V4 = "0100007F"
_LOOPBACK_V6 = "00000000000000000000000001000000"


@dataclass
class Verification:
    status: VerificationStatus
    why: List[str] = field(default_factory=list)
    refs: List[str] = field(default_factory=list)


def _confirmed(*why: str, refs: Optional[List[str]] = None) -> Verification:
    return Verification(status="confirmed", why=list(why), refs=refs or [])


def _refuted(*why: str, refs: Optional[List[str]] = None) -> Verification:
    return Verification(status="refuted", why=list(why), refs=refs or [])


def _inconclusive(*why: str, refs: Optional[List[str]] = None) -> Verification:
    return Verification(status="inconclusive", why=list(why), refs=refs or [])


def _svc_ref(view: ClusterView) -> str:
    return f"service/{view.service_namespace}/{view.service_name}"


def _require_service(view: ClusterView) -> Optional[Verification]:
    """Common guard: most checks need the target Service to exist."""
    if view.address is None:
        return _inconclusive(f"`{view.target.host}` is not a Service name; Service fields cannot be checked.")
    if view.service() is None:
        return _inconclusive(
            f"Service `{view.service_name}` not found in namespace `{view.service_namespace}`.",
            refs=[_svc_ref(view)],
        )
    return None


# -- DNSFailure -------------------------------------------------------------------


def verify_service_missing(view: ClusterView) -> Verification:
    """Does a Service object with this name exist in the target namespace?"""
    if view.is_ip_target:
        return _refuted(f"`{view.target.host}` is an IP address; no DNS lookup involved.")
    if view.address is None:
        return _inconclusive(f"`{view.target.host}` does not map onto a Service name.")

    ref = _svc_ref(view)
    if view.service() is None:
        return _confirmed(
            f"No Service named `{view.service_name}` exists in namespace `{view.service_namespace}`.",
            refs=[ref],
        )
    cluster_ip = view.service_spec().get("clusterIP")
    return _refuted(
        f"Service `{view.service_name}` exists in namespace `{view.service_namespace}`"
        + (f" (clusterIP {cluster_ip})." if cluster_ip else "."),
        refs=[ref],
    )


def verify_hostname_convention(view: ClusterView) -> Verification:
    """Is the hostname `<service>` (same namespace) or `<service>.<namespace>[.svc[.<domain>]]`?"""
    host = view.target.host
    if view.is_ip_target:
        return _refuted(f"`{host}` is an IP address; naming convention does not apply.")
    if view.address is None:
        return _confirmed(
            f"`{host}` is not of the form <service>, <service>.<namespace> or "
            f"<service>.<namespace>.svc[.{view.cluster_domain}].",
        )

    if view.address.form != "short":
        return _refuted(f"`{host}` follows the <service>.<namespace> convention.")

    # Short names only resolve through the caller's own namespace search domain.
    if view.service() is not None:
        return _refuted(f"`{host}` names a Service in the caller's namespace `{view.namespace}`.", refs=[_svc_ref(view)])
    elsewhere = [s.get("namespace") for s in view.services_named(view.address.service) if s.get("namespace")]
    if elsewhere:
        fq = ", ".join(f"`{view.address.service}.{ns}`" for ns in elsewhere)
        return _confirmed(
            f"Service `{view.address.service}` lives in namespace(s) {', '.join(elsewhere)}, "
            f"but the short name only resolves within `{view.namespace}`.",
            f"Use {fq} instead.",
            refs=[f"service/{ns}/{view.address.service}" for ns in elsewhere],
        )
    return _refuted(f"`{host}` is a valid short Service name; no Service with that name exists in any namespace.")


# -- ConnectionTimeout ------------------------------------------------------------


def _pod_endpoint(view: ClusterView, pod: Dict, default_namespace: Optional[str] = None) -> PolicyEndpoint:
    meta = pod.get("metadata") or {}
    ns = meta.get("namespace") or default_namespace or view.service_namespace
    return PolicyEndpoint(
        name=meta.get("name") or "",
        namespace=ns,
        labels=dict(meta.get("labels") or {}),
        namespace_labels=view.namespace_labels(ns),
        ip=(pod.get("status") or {}).get("podIP"),
    )


def _port_names(view: ClusterView, pods: List[Dict], port: int) -> FrozenSet[str]:
    return frozenset(
        p["name"] for p in view.container_ports(pods) if p.get("name") and p.get("containerPort") == port
    )


def verify_network_policy_blocks(view: ClusterView) -> Verification:
    """Does a NetworkPolicy isolate the destination (ingress) or the source (egress) without admitting the flow?"""
    guard = _require_service(view)
    if guard is not None:
        return guard
    pods = view.backing_pods()
    if not pods:
        return _inconclusive("Destination pods unknown (Service selects no pods); policies cannot be evaluated.")

    # Policies act on the pod port (after Service translation); headless Services have none.
    dest_port = view.resolve_numeric_target_port() or view.target.port
    names = _port_names(view, pods, dest_port)

    source_pod = view.source_pod_info()
    source = _pod_endpoint(view, source_pod, view.namespace) if source_pod else None

    ingress = view.network_policies(view.service_namespace)
    blocked_by: Set[str] = set()
    blocked_pods = 0
    unknown_source = False
    for pod in pods:
        dest = _pod_endpoint(view, pod)
        iso = isolating_policies(ingress, dest, "Ingress")
        if not iso:
            continue
        if any(ingress_admits(p, source, dest_port, names) for p in iso):
            continue
        blocked_pods += 1
        blocked_by.update(policy_name(p) for p in iso)
        if source is None:
            unknown_source = True

    refs = [f"networkpolicy/{n}" for n in sorted(blocked_by)]
    if blocked_pods == len(pods):
        if unknown_source:
            return _inconclusive(
                f"Ingress to the destination pods is restricted by {', '.join(sorted(blocked_by))}; "
                "the local source cannot be matched against pod/namespace selectors.",
                refs=refs,
            )
        return _confirmed(
            f"Ingress policies {', '.join(sorted(blocked_by))} isolate all {len(pods)} destination pod(s) "
            f"and no rule admits `{view.source_pod}` ({view.namespace}) on port {dest_port}.",
            refs=refs,
        )

    if source is not None:
        egress = view.network_policies(source.namespace)
        iso = isolating_policies(egress, source, "Egress")
        if iso:
            dests = [_pod_endpoint(view, pod) for pod in pods]
            if not any(egress_admits(p, d, dest_port, names) for p in iso for d in dests):
                names_iso = sorted(policy_name(p) for p in iso)
                return _confirmed(
                    f"Egress policies {', '.join(names_iso)} isolate `{view.source_pod}` "
                    f"and no rule admits traffic to the destination pods on port {dest_port}.",
                    refs=[f"networkpolicy/{n}" for n in names_iso],
                )

    return _refuted(
        f"No NetworkPolicy blocks `{view.source_pod}` -> {view.service_name} on port {dest_port}.",
        refs=refs,
    )


# -- NoRouteToHost ----------------------------------------------------------------


def verify_selector_mismatch(view: ClusterView) -> Verification:
    """Does the Service selector match the labels of any pod (or pod template)?"""
    guard = _require_service(view)
    if guard is not None:
        return guard
    selector = view.service_selector()
    ref = _svc_ref(view)
    if not selector:
        return _inconclusive("Service has no selector; its endpoints are managed manually.", refs=[ref])

    sel = selector_to_string(selector)
    pods = view.backing_pods()
    if pods:
        names = [(p.get("metadata") or {}).get("name") for p in pods]
        return _refuted(f"Selector `{sel}` matches {len(pods)} pod(s): {', '.join(n for n in names if n)}.", refs=[ref])

    ns = view.service_namespace
    for w in view.workloads(ns):
        if matches_equality(selector, w.get("template_labels")) and not w.get("replicas"):
            return _inconclusive(
                f"Selector `{sel}` matches the pod template of {w['kind']} `{w['name']}`, which is scaled to 0.",
                refs=[ref, f"{w['kind'].lower()}/{ns}/{w['name']}"],
            )

    why = [f"Selector `{sel}` matches no pod in namespace `{ns}`."]
    for miss in near_misses(selector, view.pods(ns))[:3]:
        diffs = ", ".join(f"{k}={actual!r} (selector wants {wanted!r})" for k, (wanted, actual) in miss["mismatched"].items())
        why.append(f"Pod `{miss['name']}` has {diffs}.")
    return _confirmed(*why, refs=[ref])


def verify_service_port_mismatch(view: ClusterView) -> Verification:
    """Is the probed port one of the Service's `spec.ports[].port`?"""
    guard = _require_service(view)
    if guard is not None:
        return guard
    ports = [p.get("port") for p in view.service_ports()]
    ref = _svc_ref(view)
    if view.target.port in ports:
        return _refuted(f"Service exposes port {view.target.port}.", refs=[ref])
    exposed = ", ".join(str(p) for p in ports) if ports else "no ports"
    return _confirmed(f"Probe used port {view.target.port}, but the Service exposes {exposed}.", refs=[ref])


def verify_named_target_port_missing(view: ClusterView) -> Verification:
    """Is every named targetPort declared as a container port name on the backing pods?"""
    guard = _require_service(view)
    if guard is not None:
        return guard
    entry = view.matching_service_port()
    entries = [entry] if entry is not None else view.service_ports()
    named = sorted({tp for tp in (view.target_port_of(e) for e in entries) if isinstance(tp, str)})
    ref = _svc_ref(view)
    if not named:
        return _refuted("targetPort is numeric; no named port lookup involved.", refs=[ref])

    pods = view.backing_pods()
    if not pods:
        return _inconclusive(f"Named targetPort {', '.join(named)} cannot be checked: the Service selects no pods.", refs=[ref])

    declared = {p["name"] for p in view.container_ports(pods) if p.get("name")}
    missing = [n for n in named if n not in declared]
    if missing:
        have = ", ".join(sorted(declared)) if declared else "none"
        return _confirmed(
            f"targetPort `{missing[0]}` is not declared by any container (declared port names: {have}).", refs=[ref]
        )
    return _refuted(f"Named targetPort {', '.join(named)} is declared on the backing containers.", refs=[ref])


# -- ConnectionRefused ------------------------------------------------------------


def verify_headless_service(view: ClusterView) -> Verification:
    """Is `.spec.clusterIP` equal to `None`?"""
    guard = _require_service(view)
    if guard is not None:
        return guard
    cluster_ip = view.service_spec().get("clusterIP")
    ref = _svc_ref(view)
    if cluster_ip == "None":
        return _confirmed("Service has `clusterIP: None` (headless); traffic goes straight to pod IPs.", refs=[ref])
    if not cluster_ip:
        return _refuted("Service has no clusterIP field set (a virtual IP will be allocated).", refs=[ref])
    return _refuted(f"Service has clusterIP {cluster_ip}.", refs=[ref])


def verify_target_port_mismatch(view: ClusterView) -> Verification:
    """Does the Service's targetPort equal a declared containerPort of the backing pods?"""
    guard = _require_service(view)
    if guard is not None:
        return guard
    ref = _svc_ref(view)
    entry = view.matching_service_port()
    if entry is None:
        return _inconclusive(f"Service does not expose port {view.target.port}; targetPort cannot be attributed.", refs=[ref])

    pods = view.backing_pods()
    if not pods:
        return _inconclusive("Service selects no pods; container ports cannot be compared.", refs=[ref])
    tp = view.target_port_of(entry)
    cports = view.container_ports(pods)

    if isinstance(tp, str):
        if any(p.get("name") == tp for p in cports):
            return _refuted(f"Named targetPort `{tp}` resolves to a declared container port.", refs=[ref])
        return _confirmed(f"Named targetPort `{tp}` matches no declared container port.", refs=[ref])

    numbers = sorted({int(p["containerPort"]) for p in cports if p.get("containerPort") is not None})
    if not numbers:
        return _inconclusive(f"Containers declare no ports; targetPort {tp} cannot be compared.", refs=[ref])
    if tp in numbers:
        return _refuted(f"targetPort {tp} is a declared containerPort.", refs=[ref])
    return _confirmed(
        f"Service forwards port {entry.get('port')} to targetPort {tp}, "
        f"but containers declare {', '.join(str(n) for n in numbers)}.",
        refs=[ref],
    )


def parse_listening_ports(proc_net_tcp: str) -> Dict[int, List[str]]:
    """
    Parse /proc/net/tcp{,6} content into {port: [local_ip_hex, ...]} for LISTEN sockets.

    Line shape: `  0: 00000000:1F90 00000000:0000 0A ...`
    """
    out: Dict[int, List[str]] = {}
    for line in (proc_net_tcp or "").splitlines():
        parts = line.split()
        if len(parts) < 4 or not parts[0].endswith(":") or ":" not in parts[1]:
            continue
        if parts[3].upper() != _TCP_LISTEN:
            continue
        ip_hex, _, port_hex = parts[1].rpartition(":")
        try:
            port = int(port_hex, 16)
        except ValueError:
            continue
        out.setdefault(port, []).append(ip_hex.upper())
    return out


def verify_container_not_listening(view: ClusterView) -> Verification:
    """Does the backing container have a listening socket on targetPort (on a non-loopback address)?"""
    guard = _require_service(view)
    if guard is not None:
        return guard
    pods = view.backing_pods()
    if not pods:
        return _inconclusive("Service selects no pods; nothing to inspect.", refs=[_svc_ref(view)])
    port = view.resolve_numeric_target_port()
    if view.service_spec().get("clusterIP") == "None" or port is None:
        # Headless: clients hit the pod directly on the probed port.
        port = view.target.port

    pod = pods[0]
    pod_name = (pod.get("metadata") or {}).get("name") or ""
    ns = (pod.get("metadata") or {}).get("namespace") or view.service_namespace
    ref = f"pod/{ns}/{pod_name}"
    try:
        res = view.exec(pod_name, ns, ["cat", "/proc/net/tcp", "/proc/net/tcp6"])
    except ProbeError as e:
        return _inconclusive(f"Cannot inspect sockets in `{pod_name}`: {e}", refs=[ref])
    if res.timed_out or not res.stdout.strip():
        return _inconclusive(f"Socket table of `{pod_name}` unavailable.", refs=[ref])

    listening = parse_listening_ports(res.stdout)
    addrs = listening.get(port)
    if not addrs:
        others = ", ".join(str(p) for p in sorted(listening)) or "none"
        return _confirmed(f"Nothing in `{pod_name}` listens on port {port} (listening: {others}).", refs=[ref])
    if all(a in (_LOOPBACK_V4, _LOOPBACK_V6) for a in addrs):
        return _confirmed(f"`{pod_name}` listens on port {port} on loopback only.", refs=[ref])
    return _refuted(f"`{pod_name}` listens on port {port}.", refs=[ref])


VERIFIERS: Dict[str, Callable[[ClusterView], Verification]] = {
    "service_missing": verify_service_missing,
    "hostname_convention": verify_hostname_convention,
    "network_policy_blocks": verify_network_policy_blocks,
    "selector_mismatch": verify_selector_mismatch,
    "service_port_mismatch": verify_service_port_mismatch,
    "named_target_port_missing": verify_named_target_port_missing,
    "headless_service": verify_headless_service,
    "target_port_mismatch": verify_target_port_mismatch,
    "container_not_listening": verify_container_not_listening,
}
