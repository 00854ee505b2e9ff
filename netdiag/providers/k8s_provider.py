"""Kubernetes API client for read-only resource queries and in-pod exec."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from netdiag.errors import ProbeError, ResourceNotFound, VerificationError

logger = logging.getLogger(__name__)

_api_client = None
_core_v1_api = None
_apps_v1_api = None
_networking_v1_api = None
_custom_objects_api = None
_config_loaded = False
_init_lock = threading.Lock()

# OpenShift DeploymentConfigs are served as a custom API group on OpenShift clusters only.
_DC_GROUP = "apps.openshift.io"
_DC_VERSION = "v1"
_DC_PLURAL = "deploymentconfigs"


@dataclass(frozen=True)
class ExecResult:
    stdout: str
    stderr: str
    exit_code: Optional[int]
    timed_out: bool = False

    @property
    def output(self) -> str:
        return "\n".join(x for x in (self.stdout, self.stderr) if x)


@runtime_checkable
class K8sProvider(Protocol):
    def get_service(self, name: str, namespace: str) -> Dict[str, Any]: ...

    def find_services(self, name: str) -> List[Dict[str, Any]]: ...

    def get_pod(self, name: str, namespace: str) -> Dict[str, Any]: ...

    def list_pods(self, namespace: str, label_selector: Optional[str] = None) -> List[Dict[str, Any]]: ...

    def get_namespace_labels(self, namespace: str) -> Dict[str, str]: ...

    def list_network_policies(self, namespace: str) -> List[Dict[str, Any]]: ...

    def list_workloads(self, namespace: str) -> List[Dict[str, Any]]: ...

    def exec_in_pod(
        self,
        name: str,
        namespace: str,
        command: List[str],
        *,
        container: Optional[str] = None,
        timeout_s: Optional[float] = None,
    ) -> ExecResult: ...


class DefaultK8sProvider:
    def get_service(self, name: str, namespace: str) -> Dict[str, Any]:
        return get_service(name, namespace)

    def find_services(self, name: str) -> List[Dict[str, Any]]:
        return find_services(name)

    def get_pod(self, name: str, namespace: str) -> Dict[str, Any]:
        return get_pod(name, namespace)

    def list_pods(self, namespace: str, label_selector: Optional[str] = None) -> List[Dict[str, Any]]:
        return list_pods(namespace, label_selector=label_selector)

    def get_namespace_labels(self, namespace: str) -> Dict[str, str]:
        return get_namespace_labels(namespace)

    def list_network_policies(self, namespace: str) -> List[Dict[str, Any]]:
        return list_network_policies(namespace)

    def list_workloads(self, namespace: str) -> List[Dict[str, Any]]:
        return list_workloads(namespace)

    def exec_in_pod(
        self,
        name: str,
        namespace: str,
        command: List[str],
        *,
        container: Optional[str] = None,
        timeout_s: Optional[float] = None,
    ) -> ExecResult:
        return exec_in_pod(name, namespace, command, container=container, timeout_s=timeout_s)


def get_k8s_provider() -> K8sProvider:
    """Seam for swapping provider implementations (tests inject fakes here)."""
    return DefaultK8sProvider()


def _load_config() -> None:
    """Load in-cluster config, falling back to kubeconfig. Caller holds `_init_lock`."""
    global _config_loaded, _api_client
    try:
        from kubernetes import client, config
    except Exception as import_err:
        raise VerificationError(f"Kubernetes client not available: {import_err}")

    if not _config_loaded:
        try:
            config.load_incluster_config()
        except config.ConfigException:
            config.load_kube_config()
        _config_loaded = True
    if _api_client is None:
        _api_client = client.ApiClient()


def _get_core_v1():
    """
    Return a cached CoreV1Api client.

    Config loading and the client object are cached so one diagnosis session (which issues
    several small reads) doesn't pay the initialization cost per query.
    """
    global _core_v1_api
    if _core_v1_api is not None:
        return _core_v1_api

    with _init_lock:
        if _core_v1_api is not None:
            return _core_v1_api
        _load_config()
        from kubernetes import client

        _core_v1_api = client.CoreV1Api(_api_client)
        return _core_v1_api


def _get_apps_v1():
    """Return a cached AppsV1Api client (thread-safe lazy init)."""
    global _apps_v1_api
    if _apps_v1_api is not None:
        return _apps_v1_api

    with _init_lock:
        if _apps_v1_api is not None:
            return _apps_v1_api
        _load_config()
        from kubernetes import client

        _apps_v1_api = client.AppsV1Api(_api_client)
        return _apps_v1_api


def _get_networking_v1():
    """Return a cached NetworkingV1Api client (thread-safe lazy init)."""
    global _networking_v1_api
    if _networking_v1_api is not None:
        return _networking_v1_api

    with _init_lock:
        if _networking_v1_api is not None:
            return _networking_v1_api
        _load_config()
        from kubernetes import client

        _networking_v1_api = client.NetworkingV1Api(_api_client)
        return _networking_v1_api


def _get_custom_objects():
    """Return a cached CustomObjectsApi client (thread-safe lazy init)."""
    global _custom_objects_api
    if _custom_objects_api is not None:
        return _custom_objects_api

    with _init_lock:
        if _custom_objects_api is not None:
            return _custom_objects_api
        _load_config()
        from kubernetes import client

        _custom_objects_api = client.CustomObjectsApi(_api_client)
        return _custom_objects_api


def _to_dict(obj: Any) -> Dict[str, Any]:
    """Serialize a client model to the manifest shape (camelCase keys, as in `kubectl get -o json`)."""
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return obj
    return _api_client.sanitize_for_serialization(obj) if _api_client is not None else obj.to_dict()


def _api_error(e: Exception, *, kind: str, name: str, namespace: Optional[str]) -> VerificationError:
    """Map client exceptions onto the error taxonomy, preserving ApiException details."""
    from kubernetes.client.rest import ApiException

    if isinstance(e, ApiException):
        if e.status == 404:
            return ResourceNotFound(kind, name, namespace)
        return VerificationError(
            f"Kubernetes API error reading {kind} `{name}`: {e.status} {e.reason}", status=e.status, reason=e.reason
        )
    if isinstance(e, VerificationError):
        return e
    return VerificationError(f"Failed to read {kind} `{name}`: {str(e)}")


def get_service(name: str, namespace: str) -> Dict[str, Any]:
    """
    Read a Service.

    Raises:
        ResourceNotFound: the Service does not exist in `namespace`
        VerificationError: any other API failure
    """
    try:
        v1 = _get_core_v1()
        return _to_dict(v1.read_namespaced_service(name=name, namespace=namespace))
    except Exception as e:
        raise _api_error(e, kind="Service", name=name, namespace=namespace)


def find_services(name: str) -> List[Dict[str, Any]]:
    """
    Find Services with this name in any namespace (needs cluster-wide list permission).

    Returns [{name, namespace}] sorted by namespace.
    """
    try:
        v1 = _get_core_v1()
        svc_list = v1.list_service_for_all_namespaces(field_selector=f"metadata.name={name}")
        out = []
        for s in svc_list.items or []:
            meta = _to_dict(s).get("metadata") or {}
            out.append({"name": meta.get("name"), "namespace": meta.get("namespace")})
        out.sort(key=lambda x: x.get("namespace") or "")
        return out
    except Exception as e:
        raise _api_error(e, kind="ServiceList", name=name, namespace=None)


def get_pod(name: str, namespace: str) -> Dict[str, Any]:
    try:
        v1 = _get_core_v1()
        return _to_dict(v1.read_namespaced_pod(name=name, namespace=namespace))
    except Exception as e:
        raise _api_error(e, kind="Pod", name=name, namespace=namespace)


def list_pods(namespace: str, label_selector: Optional[str] = None) -> List[Dict[str, Any]]:
    """List pods in a namespace, optionally filtered by a label selector string (`k=v,k2=v2`)."""
    try:
        v1 = _get_core_v1()
        if label_selector:
            pod_list = v1.list_namespaced_pod(namespace=namespace, label_selector=label_selector)
        else:
            pod_list = v1.list_namespaced_pod(namespace=namespace)
        pods = [_to_dict(p) for p in (pod_list.items or [])]
        pods.sort(key=lambda p: (p.get("metadata") or {}).get("name") or "")
        return pods
    except Exception as e:
        raise _api_error(e, kind="PodList", name=label_selector or "*", namespace=namespace)


def get_namespace_labels(namespace: str) -> Dict[str, str]:
    try:
        v1 = _get_core_v1()
        ns = _to_dict(v1.read_namespace(name=namespace))
        labels = dict((ns.get("metadata") or {}).get("labels") or {})
        # Set by the API server since 1.21; older clusters may not have it.
        labels.setdefault("kubernetes.io/metadata.name", namespace)
        return labels
    except Exception as e:
        raise _api_error(e, kind="Namespace", name=namespace, namespace=None)


def list_network_policies(namespace: str) -> List[Dict[str, Any]]:
    try:
        net = _get_networking_v1()
        items = net.list_namespaced_network_policy(namespace=namespace).items or []
        policies = [_to_dict(p) for p in items]
        policies.sort(key=lambda p: (p.get("metadata") or {}).get("name") or "")
        return policies
    except Exception as e:
        raise _api_error(e, kind="NetworkPolicyList", name="*", namespace=namespace)


def _workload_summary(kind: str, obj: Dict[str, Any]) -> Dict[str, Any]:
    meta = obj.get("metadata") or {}
    spec = obj.get("spec") or {}
    template = spec.get("template") or {}
    selector = spec.get("selector") or {}
    # Deployment selectors are LabelSelectors; DeploymentConfig selectors are plain maps.
    if kind == "Deployment":
        selector = selector.get("matchLabels") or {}
    return {
        "kind": kind,
        "name": meta.get("name"),
        "namespace": meta.get("namespace"),
        "replicas": spec.get("replicas"),
        "selector": dict(selector),
        "template_labels": dict((template.get("metadata") or {}).get("labels") or {}),
        "containers": list((template.get("spec") or {}).get("containers") or []),
    }


def list_workloads(namespace: str) -> List[Dict[str, Any]]:
    """
    List pod-template owners (Deployments, plus DeploymentConfigs on OpenShift).

    Each entry: {kind,name,namespace,replicas,selector,template_labels,containers}
    """
    from kubernetes.client.rest import ApiException

    out: List[Dict[str, Any]] = []
    try:
        apps = _get_apps_v1()
        for d in apps.list_namespaced_deployment(namespace=namespace).items or []:
            out.append(_workload_summary("Deployment", _to_dict(d)))
    except Exception as e:
        raise _api_error(e, kind="DeploymentList", name="*", namespace=namespace)

    try:
        custom = _get_custom_objects()
        dcs = custom.list_namespaced_custom_object(
            group=_DC_GROUP, version=_DC_VERSION, namespace=namespace, plural=_DC_PLURAL
        )
        for dc in (dcs or {}).get("items") or []:
            out.append(_workload_summary("DeploymentConfig", dc))
    except ApiException as e:
        # Not an OpenShift cluster (API group absent).
        if e.status != 404:
            raise _api_error(e, kind="DeploymentConfigList", name="*", namespace=namespace)
        logger.debug("DeploymentConfig API not served; skipping (%s)", namespace)
    except Exception as e:
        raise _api_error(e, kind="DeploymentConfigList", name="*", namespace=namespace)

    out.sort(key=lambda w: (w["kind"], w.get("name") or ""))
    return out


def _returncode(resp: Any) -> Optional[int]:
    # The exit status arrives as a Status object on the error channel; absent when the
    # server closed the stream without one.
    try:
        return resp.returncode
    except Exception:
        return None


def exec_in_pod(
    name: str,
    namespace: str,
    command: List[str],
    *,
    container: Optional[str] = None,
    timeout_s: Optional[float] = None,
) -> ExecResult:
    """
    Run a command inside a pod (equivalent to `kubectl exec`) and collect its output.

    A command still running after `timeout_s` is abandoned and reported with `timed_out=True`.

    Raises:
        ProbeError: the exec session could not be established (pod missing, not running,
            exec forbidden, websocket failure)
    """
    try:
        from kubernetes.client.rest import ApiException
        from kubernetes.stream import stream
    except Exception as import_err:
        raise ProbeError(f"Kubernetes client not available: {import_err}", pod=name, namespace=namespace)

    try:
        v1 = _get_core_v1()
        kwargs: Dict[str, Any] = {
            "command": command,
            "stderr": True,
            "stdin": False,
            "stdout": True,
            "tty": False,
            "_preload_content": False,
        }
        if container:
            kwargs["container"] = container
        resp = stream(v1.connect_get_namespaced_pod_exec, name, namespace, **kwargs)
    except ApiException as e:
        raise ProbeError(f"Cannot exec into pod `{name}`: {e.status} {e.reason}", pod=name, namespace=namespace)
    except Exception as e:
        raise ProbeError(f"Cannot exec into pod `{name}`: {str(e)}", pod=name, namespace=namespace)

    try:
        resp.run_forever(timeout=timeout_s)
        timed_out = resp.is_open()
        stdout = resp.read_stdout() or ""
        stderr = resp.read_stderr() or ""
        exit_code = None if timed_out else _returncode(resp)
    except Exception as e:
        raise ProbeError(f"Exec stream to pod `{name}` failed: {str(e)}", pod=name, namespace=namespace)
    finally:
        resp.close()

    logger.debug("exec in %s/%s: %s -> rc=%s timed_out=%s", namespace, name, command[:1], exit_code, timed_out)
    return ExecResult(stdout=stdout, stderr=stderr, exit_code=exit_code, timed_out=timed_out)
