"""Candidate cause catalog and the symptom -> causes table.

Each symptom maps to an ordered tuple of cause ids, most likely first. The resolver checks
causes in exactly this order, so appending a new cause is a data change only.

`next_tests` support {namespace}, {service}, {port} and {pod} interpolation.
"""

from __future__ import annotations

from typing import Dict, List, Tuple

from netdiag.core.models import CandidateCause, Symptom

SERVICE_MISSING = CandidateCause(
    cause_id="service_missing",
    title="Service resource missing",
    description="No Service with the probed name exists in the target namespace, so cluster DNS has no record for it.",
    remediation=(
        "Create the Service (or fix its name) in the target namespace.",
        "If the workload lives in another namespace, address it as <service>.<namespace>.",
    ),
    next_tests=(
        "kubectl -n {namespace} get svc {service}",
        "kubectl get svc -A --field-selector metadata.name={service}",
    ),
)

HOSTNAME_CONVENTION = CandidateCause(
    cause_id="hostname_convention",
    title="Hostname does not follow the <service> / <service>.<namespace> convention",
    description=(
        "In-cluster names resolve as <service> (same namespace only) or <service>.<namespace>[.svc[.cluster.local]]. "
        "Other shapes, or a short name used across namespaces, never reach the Service."
    ),
    remediation=(
        "Use <service> only from pods in the Service's own namespace.",
        "From other namespaces use <service>.<namespace> (or the full <service>.<namespace>.svc.cluster.local).",
    ),
    next_tests=(
        "kubectl -n {namespace} exec {pod} -- cat /etc/resolv.conf",
        "kubectl -n {namespace} exec {pod} -- nslookup {service}",
    ),
)

NETWORK_POLICY_BLOCKS = CandidateCause(
    cause_id="network_policy_blocks",
    title="Network isolation policy blocks the flow",
    description=(
        "A NetworkPolicy isolates the destination pods (or the source pod's egress) and no rule admits this flow, "
        "so packets are silently dropped and the connection times out."
    ),
    remediation=(
        "Add an ingress rule admitting the source pod/namespace on the target port to the destination's policy.",
        "If the source namespace restricts egress, add a matching egress rule (and allow DNS on port 53).",
    ),
    next_tests=(
        "kubectl -n {namespace} get networkpolicy -o yaml",
        "kubectl -n {namespace} describe networkpolicy",
    ),
)

SELECTOR_MISMATCH = CandidateCause(
    cause_id="selector_mismatch",
    title="Service selector does not match pod labels",
    description="The Service's selector matches no running pod, so it has no endpoints to route to.",
    remediation=(
        "Align the Service's spec.selector with the pod template labels of the intended Deployment/DeploymentConfig.",
    ),
    next_tests=(
        "kubectl -n {namespace} get svc {service} -o jsonpath='{{.spec.selector}}'",
        "kubectl -n {namespace} get pods --show-labels",
        "kubectl -n {namespace} get endpoints {service}",
    ),
)

SERVICE_PORT_MISMATCH = CandidateCause(
    cause_id="service_port_mismatch",
    title="Service port misconfigured",
    description="The probed port is not one of the ports the Service exposes (spec.ports[].port).",
    remediation=(
        "Connect to one of the Service's declared ports, or add the port to spec.ports.",
    ),
    next_tests=(
        "kubectl -n {namespace} get svc {service} -o jsonpath='{{.spec.ports}}'",
    ),
)

NAMED_TARGET_PORT_MISSING = CandidateCause(
    cause_id="named_target_port_missing",
    title="Service targetPort references a named port absent from the workload",
    description="The Service forwards to a named targetPort, but no container in the backing pods declares a port with that name.",
    remediation=(
        "Declare the named port under the container's ports (name: <targetPort>), or use a numeric targetPort.",
    ),
    next_tests=(
        "kubectl -n {namespace} get svc {service} -o jsonpath='{{.spec.ports[*].targetPort}}'",
        "kubectl -n {namespace} get pods -o jsonpath='{{.items[*].spec.containers[*].ports}}'",
    ),
)

HEADLESS_SERVICE = CandidateCause(
    cause_id="headless_service",
    title="Service clusterIP is None (headless)",
    description=(
        "A headless Service has no virtual IP: its name resolves straight to pod IPs, so the Service port "
        "mapping is bypassed and only ports the pods actually listen on are reachable."
    ),
    remediation=(
        "Remove `clusterIP: None` (recreate the Service) if load-balanced access through the Service port is intended.",
        "Otherwise connect to the container port directly.",
    ),
    next_tests=(
        "kubectl -n {namespace} get svc {service} -o jsonpath='{{.spec.clusterIP}}'",
    ),
)

TARGET_PORT_MISMATCH = CandidateCause(
    cause_id="target_port_mismatch",
    title="Service targetPort wrong",
    description="The Service forwards to a targetPort that none of the backing containers declare as a containerPort.",
    remediation=(
        "Set the Service's targetPort to the containerPort the application serves on.",
    ),
    next_tests=(
        "kubectl -n {namespace} get svc {service} -o jsonpath='{{.spec.ports}}'",
        "kubectl -n {namespace} get pods -o jsonpath='{{.items[*].spec.containers[*].ports}}'",
    ),
)

CONTAINER_NOT_LISTENING = CandidateCause(
    cause_id="container_not_listening",
    title="Container does not listen on targetPort",
    description="The backing container has no listening socket on the targetPort (wrong bind port, or bound to 127.0.0.1 only).",
    remediation=(
        "Make the application listen on the targetPort, on all interfaces (0.0.0.0 / ::).",
    ),
    next_tests=(
        "kubectl -n {namespace} exec <backend-pod> -- cat /proc/net/tcp",
        "kubectl -n {namespace} logs <backend-pod> | grep -i listen",
    ),
)

CAUSES: Dict[str, CandidateCause] = {
    c.cause_id: c
    for c in (
        SERVICE_MISSING,
        HOSTNAME_CONVENTION,
        NETWORK_POLICY_BLOCKS,
        SELECTOR_MISMATCH,
        SERVICE_PORT_MISMATCH,
        NAMED_TARGET_PORT_MISSING,
        HEADLESS_SERVICE,
        TARGET_PORT_MISMATCH,
        CONTAINER_NOT_LISTENING,
    )
}

SYMPTOM_CAUSES: Dict[Symptom, Tuple[str, ...]] = {
    "DNSFailure": ("service_missing", "hostname_convention"),
    "ConnectionTimeout": ("network_policy_blocks",),
    "NoRouteToHost": ("selector_mismatch", "service_port_mismatch", "named_target_port_missing"),
    "ConnectionRefused": ("headless_service", "target_port_mismatch", "container_not_listening"),
    "Success": (),
}


def candidate_causes(symptom: Symptom) -> List[CandidateCause]:
    """Ordered candidate causes for a symptom (stable, independent of any verification)."""
    return [CAUSES[cid] for cid in SYMPTOM_CAUSES.get(symptom, ())]
