"""Per-cause verification against an in-memory cluster."""

import pytest

from conftest import make_pod, make_service
from netdiag.core.models import ProbeTarget
from netdiag.diagnostics.cluster_view import ClusterView
from netdiag.diagnostics.verifiers import (
    parse_listening_ports,
    verify_container_not_listening,
    verify_headless_service,
    verify_hostname_convention,
    verify_named_target_port_missing,
    verify_network_policy_blocks,
    verify_selector_mismatch,
    verify_service_missing,
    verify_service_port_mismatch,
    verify_target_port_mismatch,
)
from netdiag.errors import VerificationError
from netdiag.providers.k8s_provider import ExecResult

PROC_NET_TCP_HEADER = "  sl  local_address rem_address   st tx_queue rx_queue tr tm->when retrnsmt   uid  timeout inode\n"


def _view(k8s, host="hello-world", port=443, *, source="frontend", namespace="myproject"):
    return ClusterView(k8s, target=ProbeTarget(host=host, port=port), source_pod=source, namespace=namespace)


def _proc_line(local: str, state: str = "0A") -> str:
    return f"   0: {local} 00000000:0000 {state} 00000000:00000000 00:00000000 00000000  1001        0 12345 1\n"


class TestServiceMissing:
    def test_confirmed_when_no_service(self, k8s):
        v = verify_service_missing(_view(k8s))
        assert v.status == "confirmed"
        assert "hello-world" in v.why[0]
        assert v.refs == ["service/myproject/hello-world"]

    def test_refuted_when_service_exists(self, k8s):
        k8s.add_service(make_service("hello-world"))
        assert verify_service_missing(_view(k8s)).status == "refuted"

    def test_namespaced_host_checks_that_namespace(self, k8s):
        k8s.add_service(make_service("hello-world", "backend"))
        assert verify_service_missing(_view(k8s, "hello-world.backend.svc.cluster.local")).status == "refuted"
        assert verify_service_missing(_view(k8s, "hello-world.other")).status == "confirmed"

    def test_ip_target_is_refuted(self, k8s):
        assert verify_service_missing(_view(k8s, "172.30.12.34")).status == "refuted"

    def test_external_name_is_inconclusive(self, k8s):
        assert verify_service_missing(_view(k8s, "api.example.com")).status == "inconclusive"


class TestHostnameConvention:
    def test_short_name_used_across_namespaces(self, k8s):
        k8s.add_service(make_service("hello-world", "backend"))
        v = verify_hostname_convention(_view(k8s))
        assert v.status == "confirmed"
        assert any("`hello-world.backend`" in w for w in v.why)
        assert v.refs == ["service/backend/hello-world"]

    def test_malformed_service_suffix(self, k8s):
        assert verify_hostname_convention(_view(k8s, "hello-world.myproject.svcc")).status == "confirmed"

    def test_namespaced_forms_are_refuted(self, k8s):
        assert verify_hostname_convention(_view(k8s, "hello-world.backend")).status == "refuted"
        assert verify_hostname_convention(_view(k8s, "hello-world.backend.svc")).status == "refuted"

    def test_short_name_in_own_namespace(self, k8s):
        k8s.add_service(make_service("hello-world"))
        assert verify_hostname_convention(_view(k8s)).status == "refuted"

    def test_short_name_nowhere(self, k8s):
        assert verify_hostname_convention(_view(k8s)).status == "refuted"


DENY_ALL_INGRESS = {
    "metadata": {"name": "deny-all", "namespace": "myproject"},
    "spec": {"podSelector": {}, "policyTypes": ["Ingress"]},
}


def _allow_frontend(port):
    return {
        "metadata": {"name": "allow-frontend", "namespace": "myproject"},
        "spec": {
            "podSelector": {"matchLabels": {"app": "hello-world"}},
            "ingress": [
                {
                    "from": [{"podSelector": {"matchLabels": {"app": "frontend"}}}],
                    "ports": [{"port": port, "protocol": "TCP"}],
                }
            ],
        },
    }


class TestNetworkPolicyBlocks:
    @pytest.fixture
    def cluster(self, k8s):
        k8s.add_service(make_service("hello-world"))
        k8s.add_pod(make_pod("hello-world-1", labels={"app": "hello-world"}, ports=[{"name": "https", "containerPort": 8443}]))
        k8s.add_pod(make_pod("frontend", labels={"app": "frontend"}, ip="10.128.0.20"))
        return k8s

    def test_deny_all_ingress_confirms(self, cluster):
        cluster.add_policy(DENY_ALL_INGRESS)
        v = verify_network_policy_blocks(_view(cluster))
        assert v.status == "confirmed"
        assert v.refs == ["networkpolicy/myproject/deny-all"]

    def test_allow_rule_on_pod_port_refutes(self, cluster):
        cluster.add_policy(DENY_ALL_INGRESS).add_policy(_allow_frontend(8443))
        assert verify_network_policy_blocks(_view(cluster)).status == "refuted"

    def test_allow_rule_by_named_port_refutes(self, cluster):
        cluster.add_policy(DENY_ALL_INGRESS).add_policy(_allow_frontend("https"))
        assert verify_network_policy_blocks(_view(cluster)).status == "refuted"

    def test_allow_rule_on_service_port_does_not_admit(self, cluster):
        # Policies see the pod port (8443), not the Service port (443).
        cluster.add_policy(DENY_ALL_INGRESS).add_policy(_allow_frontend(443))
        assert verify_network_policy_blocks(_view(cluster)).status == "confirmed"

    def test_egress_isolation_confirms(self, cluster):
        cluster.add_policy(
            {
                "metadata": {"name": "dns-only", "namespace": "myproject"},
                "spec": {
                    "podSelector": {"matchLabels": {"app": "frontend"}},
                    "policyTypes": ["Egress"],
                    "egress": [{"ports": [{"port": 53, "protocol": "UDP"}]}],
                },
            }
        )
        v = verify_network_policy_blocks(_view(cluster))
        assert v.status == "confirmed"
        assert "Egress" in v.why[0]

    def test_no_policies_refutes(self, cluster):
        assert verify_network_policy_blocks(_view(cluster)).status == "refuted"

    def test_local_source_is_inconclusive(self, cluster):
        cluster.add_policy(DENY_ALL_INGRESS)
        assert verify_network_policy_blocks(_view(cluster, source="local")).status == "inconclusive"

    def test_no_backing_pods_is_inconclusive(self, k8s):
        k8s.add_service(make_service("hello-world"))
        assert verify_network_policy_blocks(_view(k8s)).status == "inconclusive"

    def test_cross_namespace_namespace_selector(self, k8s):
        k8s.add_service(make_service("hello-world", "backend"))
        k8s.add_pod(make_pod("hello-world-1", "backend", labels={"app": "hello-world"}, ports=[{"containerPort": 8443}]))
        k8s.add_pod(make_pod("frontend", "web", labels={"app": "frontend"}))
        k8s.add_policy(
            {
                "metadata": {"name": "from-web-team", "namespace": "backend"},
                "spec": {
                    "podSelector": {},
                    "ingress": [{"from": [{"namespaceSelector": {"matchLabels": {"team": "web"}}}]}],
                },
            }
        )
        v = verify_network_policy_blocks(_view(k8s, "hello-world.backend", namespace="web"))
        assert v.status == "confirmed"

        k8s.ns_labels["web"] = {"team": "web"}
        v = verify_network_policy_blocks(_view(k8s, "hello-world.backend", namespace="web"))
        assert v.status == "refuted"


class TestSelectorMismatch:
    def test_matching_pod_refutes(self, k8s):
        k8s.add_service(make_service("hello-world", selector={"app": "hello-world"}))
        k8s.add_pod(make_pod("hello-world-1", labels={"app": "hello-world"}))
        v = verify_selector_mismatch(_view(k8s))
        assert v.status == "refuted"
        assert "hello-world-1" in v.why[0]

    def test_mismatched_labels_confirm_with_near_miss(self, k8s):
        k8s.add_service(make_service("hello-world", selector={"app": "hello-world"}))
        k8s.add_pod(make_pod("hello-world-1", labels={"app": "other"}))
        v = verify_selector_mismatch(_view(k8s))
        assert v.status == "confirmed"
        assert any("hello-world-1" in w and "'other'" in w for w in v.why)

    def test_scaled_to_zero_workload_is_inconclusive(self, k8s):
        k8s.add_service(make_service("hello-world", selector={"app": "hello-world"}))
        k8s.workloads["myproject"] = [
            {"kind": "DeploymentConfig", "name": "hello-world", "replicas": 0, "template_labels": {"app": "hello-world"}}
        ]
        v = verify_selector_mismatch(_view(k8s))
        assert v.status == "inconclusive"
        assert "deploymentconfig/myproject/hello-world" in v.refs

    def test_service_without_selector_is_inconclusive(self, k8s):
        k8s.add_service(make_service("hello-world", selector={}))
        assert verify_selector_mismatch(_view(k8s)).status == "inconclusive"

    def test_missing_service_is_inconclusive(self, k8s):
        assert verify_selector_mismatch(_view(k8s)).status == "inconclusive"


class TestServicePortMismatch:
    def test_exposed_port_refutes(self, k8s):
        k8s.add_service(make_service("hello-world"))
        assert verify_service_port_mismatch(_view(k8s, port=443)).status == "refuted"

    def test_unexposed_port_confirms(self, k8s):
        k8s.add_service(make_service("hello-world"))
        v = verify_service_port_mismatch(_view(k8s, port=80))
        assert v.status == "confirmed"
        assert "443" in v.why[0]


class TestNamedTargetPortMissing:
    def _setup(self, k8s, pod_ports):
        k8s.add_service(make_service("hello-world", ports=[{"port": 443, "targetPort": "https"}]))
        k8s.add_pod(make_pod("hello-world-1", labels={"app": "hello-world"}, ports=pod_ports))

    def test_undeclared_name_confirms(self, k8s):
        self._setup(k8s, [{"name": "web", "containerPort": 8443}])
        v = verify_named_target_port_missing(_view(k8s))
        assert v.status == "confirmed"
        assert "`https`" in v.why[0]

    def test_declared_name_refutes(self, k8s):
        self._setup(k8s, [{"name": "https", "containerPort": 8443}])
        assert verify_named_target_port_missing(_view(k8s)).status == "refuted"

    def test_numeric_target_port_refutes(self, k8s):
        k8s.add_service(make_service("hello-world"))
        assert verify_named_target_port_missing(_view(k8s)).status == "refuted"

    def test_no_pods_is_inconclusive(self, k8s):
        k8s.add_service(make_service("hello-world", ports=[{"port": 443, "targetPort": "https"}]))
        assert verify_named_target_port_missing(_view(k8s)).status == "inconclusive"


class TestHeadlessService:
    def test_cluster_ip_none_confirms(self, k8s):
        k8s.add_service(make_service("hello-world", cluster_ip="None"))
        assert verify_headless_service(_view(k8s)).status == "confirmed"

    def test_absent_cluster_ip_refutes(self, k8s):
        k8s.add_service(make_service("hello-world", cluster_ip=...))
        assert verify_headless_service(_view(k8s)).status == "refuted"

    def test_allocated_cluster_ip_refutes(self, k8s):
        k8s.add_service(make_service("hello-world"))
        v = verify_headless_service(_view(k8s))
        assert v.status == "refuted"
        assert "172.30.12.34" in v.why[0]


class TestTargetPortMismatch:
    def _setup(self, k8s, container_ports):
        k8s.add_service(make_service("hello-world", ports=[{"port": 443, "targetPort": 8443}]))
        k8s.add_pod(make_pod("hello-world-1", labels={"app": "hello-world"}, ports=container_ports))

    def test_wrong_target_port_confirms(self, k8s):
        self._setup(k8s, [{"containerPort": 8080}])
        v = verify_target_port_mismatch(_view(k8s))
        assert v.status == "confirmed"
        assert "8080" in v.why[0]

    def test_matching_target_port_refutes(self, k8s):
        self._setup(k8s, [{"containerPort": 8443}])
        assert verify_target_port_mismatch(_view(k8s)).status == "refuted"

    def test_no_declared_ports_is_inconclusive(self, k8s):
        self._setup(k8s, None)
        assert verify_target_port_mismatch(_view(k8s)).status == "inconclusive"

    def test_target_port_defaults_to_port(self, k8s):
        k8s.add_service(make_service("hello-world", ports=[{"port": 8080}]))
        k8s.add_pod(make_pod("hello-world-1", labels={"app": "hello-world"}, ports=[{"containerPort": 8080}]))
        assert verify_target_port_mismatch(_view(k8s, port=8080)).status == "refuted"

    def test_unexposed_probe_port_is_inconclusive(self, k8s):
        self._setup(k8s, [{"containerPort": 8443}])
        assert verify_target_port_mismatch(_view(k8s, port=9999)).status == "inconclusive"


class TestContainerNotListening:
    @pytest.fixture
    def cluster(self, k8s):
        k8s.add_service(make_service("hello-world"))
        k8s.add_pod(make_pod("hello-world-1", labels={"app": "hello-world"}, ports=[{"containerPort": 8443}]))
        return k8s

    def _socket_table(self, k8s, *lines):
        k8s.exec_results["hello-world-1"] = ExecResult(stdout=PROC_NET_TCP_HEADER + "".join(lines), stderr="", exit_code=0)

    def test_listening_on_all_interfaces_refutes(self, cluster):
        self._socket_table(cluster, _proc_line("00000000:20FB"))
        assert verify_container_not_listening(_view(cluster)).status == "refuted"

    def test_nothing_on_target_port_confirms(self, cluster):
        self._socket_table(cluster, _proc_line("00000000:1F90"))
        v = verify_container_not_listening(_view(cluster))
        assert v.status == "confirmed"
        assert "8080" in v.why[0]

    def test_loopback_only_confirms(self, cluster):
        self._socket_table(cluster, _proc_line("0100007F:20FB"))
        v = verify_container_not_listening(_view(cluster))
        assert v.status == "confirmed"
        assert "loopback" in v.why[0]

    def test_established_socket_is_not_listening(self, cluster):
        self._socket_table(cluster, _proc_line("0A80000A:20FB", state="01"))
        assert verify_container_not_listening(_view(cluster)).status == "confirmed"

    def test_exec_failure_is_inconclusive(self, cluster):
        assert verify_container_not_listening(_view(cluster)).status == "inconclusive"

    def test_headless_checks_probed_port(self, k8s):
        k8s.add_service(make_service("hello-world", cluster_ip="None", ports=[{"port": 443, "targetPort": 8443}]))
        k8s.add_pod(make_pod("hello-world-1", labels={"app": "hello-world"}))
        self._socket_table(k8s, _proc_line("00000000:01BB"))
        assert verify_container_not_listening(_view(k8s)).status == "refuted"


def test_parse_listening_ports():
    text = PROC_NET_TCP_HEADER + _proc_line("00000000:1F90") + _proc_line("0100007F:0CEA") + _proc_line("0A80000A:01BB", "01")
    assert parse_listening_ports(text) == {8080: ["00000000"], 3306: ["0100007F"]}


class TestClusterView:
    def test_reads_are_memoized(self, k8s):
        k8s.add_service(make_service("hello-world"))
        view = _view(k8s)
        view.service()
        view.service()
        view.service_spec()
        assert [c for c in k8s.calls if c[0] == "get_service"] == [("get_service", "hello-world", "myproject")]

    def test_failed_reads_are_cached_and_reraised(self, k8s):
        k8s.fail["get_service"] = VerificationError("forbidden", status=403)
        view = _view(k8s)
        for _ in range(2):
            with pytest.raises(VerificationError):
                view.service()
        assert len([c for c in k8s.calls if c[0] == "get_service"]) == 1

    def test_named_target_port_resolution(self, k8s):
        k8s.add_service(make_service("hello-world", ports=[{"port": 443, "targetPort": "https"}]))
        k8s.add_pod(make_pod("hello-world-1", labels={"app": "hello-world"}, ports=[{"name": "https", "containerPort": 8443}]))
        assert _view(k8s).resolve_numeric_target_port() == 8443
