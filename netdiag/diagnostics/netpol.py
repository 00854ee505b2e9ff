"""NetworkPolicy evaluation (pure functions over manifest-shaped dicts).

Semantics follow the networking.k8s.io/v1 API:
- a pod is isolated for a direction once any policy of that type selects it
- isolated traffic is allowed only if some selecting policy has a rule admitting it
- rules are OR'ed; within a rule, a peer list and a port list must both match
- an absent/empty `from`/`to` admits every peer, an absent/empty `ports` every port
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

from netdiag.core.selectors import matches_label_selector


@dataclass(frozen=True)
class PolicyEndpoint:
    name: str
    namespace: str
    labels: Mapping[str, str] = field(default_factory=dict)
    namespace_labels: Mapping[str, str] = field(default_factory=dict)
    ip: Optional[str] = None


def policy_name(policy: Dict[str, Any]) -> str:
    meta = policy.get("metadata") or {}
    return f"{meta.get('namespace')}/{meta.get('name')}"


def policy_types(policy: Dict[str, Any]) -> List[str]:
    spec = policy.get("spec") or {}
    declared = spec.get("policyTypes")
    if declared:
        return list(declared)
    # Defaulting done by the API server when policyTypes is omitted.
    types = ["Ingress"]
    if spec.get("egress"):
        types.append("Egress")
    return types


def selects(policy: Dict[str, Any], endpoint: PolicyEndpoint) -> bool:
    meta = policy.get("metadata") or {}
    if meta.get("namespace") != endpoint.namespace:
        return False
    return matches_label_selector((policy.get("spec") or {}).get("podSelector"), endpoint.labels)


def _ip_in_block(ip: Optional[str], block: Dict[str, Any]) -> bool:
    if not ip:
        return False
    try:
        addr = ipaddress.ip_address(ip)
        if addr not in ipaddress.ip_network(block.get("cidr"), strict=False):
            return False
        return not any(addr in ipaddress.ip_network(x, strict=False) for x in (block.get("except") or []))
    except (TypeError, ValueError):
        return False


def peer_matches(peer: Dict[str, Any], endpoint: PolicyEndpoint, policy_namespace: str) -> bool:
    if peer.get("ipBlock"):
        return _ip_in_block(endpoint.ip, peer["ipBlock"])

    pod_sel = peer.get("podSelector")
    ns_sel = peer.get("namespaceSelector")
    if pod_sel is None and ns_sel is None:
        return False

    if ns_sel is None:
        ns_ok = endpoint.namespace == policy_namespace
    else:
        ns_ok = matches_label_selector(ns_sel, endpoint.namespace_labels)
    pod_ok = True if pod_sel is None else matches_label_selector(pod_sel, endpoint.labels)
    return ns_ok and pod_ok


def port_matches(rule_ports: Optional[List[Dict[str, Any]]], port: int, port_names: FrozenSet[str]) -> bool:
    if not rule_ports:
        return True
    for p in rule_ports:
        if (p.get("protocol") or "TCP") != "TCP":
            continue
        val = p.get("port")
        if val is None:
            return True
        if isinstance(val, int) or (isinstance(val, str) and val.isdigit()):
            start = int(val)
            end = int(p.get("endPort") or start)
            if start <= port <= end:
                return True
        elif val in port_names:
            return True
    return False


def _admits(
    policy: Dict[str, Any],
    *,
    rules_key: str,
    peers_key: str,
    peer: Optional[PolicyEndpoint],
    port: int,
    port_names: FrozenSet[str],
) -> bool:
    ns = (policy.get("metadata") or {}).get("namespace") or ""
    for rule in (policy.get("spec") or {}).get(rules_key) or []:
        if not port_matches(rule.get("ports"), port, port_names):
            continue
        peers = rule.get(peers_key)
        if not peers:
            return True
        # An unknown peer can only be admitted by a rule open to everyone.
        if peer is None:
            continue
        if any(peer_matches(x, peer, ns) for x in peers):
            return True
    return False


def ingress_admits(
    policy: Dict[str, Any], source: Optional[PolicyEndpoint], port: int, port_names: FrozenSet[str] = frozenset()
) -> bool:
    return _admits(policy, rules_key="ingress", peers_key="from", peer=source, port=port, port_names=port_names)


def egress_admits(
    policy: Dict[str, Any], destination: PolicyEndpoint, port: int, port_names: FrozenSet[str] = frozenset()
) -> bool:
    return _admits(policy, rules_key="egress", peers_key="to", peer=destination, port=port, port_names=port_names)


def isolating_policies(policies: List[Dict[str, Any]], endpoint: PolicyEndpoint, direction: str) -> List[Dict[str, Any]]:
    return [p for p in policies if direction in policy_types(p) and selects(p, endpoint)]
