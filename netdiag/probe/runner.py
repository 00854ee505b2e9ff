"""Probe runners: one connection attempt, from a pod or from this machine."""

from __future__ import annotations

import errno
import logging
import math
import posixpath
import socket
from typing import List, Optional, Protocol, runtime_checkable

from netdiag.core.models import ProbeResult, ProbeTarget
from netdiag.errors import InvocationError, ProbeError, ResourceNotFound, VerificationError
from netdiag.probe.patterns import classify_trace
from netdiag.providers.k8s_provider import K8sProvider, get_k8s_provider

logger = logging.getLogger(__name__)

LOCAL_SOURCE = "local"

# Extra time granted to the exec session on top of the client's own deadline, so the client
# reports its timeout itself rather than being cut off mid-write.
_EXEC_GRACE_S = 3.0

# Time curl may spend after connecting (TLS, reply) on top of the connect timeout. Stays
# below the exec grace so the client always reports first.
_TRANSFER_EXTRA_S = 2

# Shell-level "command not found" / "not executable".
_MISSING_BINARY_EXIT_CODES = (126, 127)
_MISSING_BINARY_MARKERS = ("executable file not found", "no such file or directory", "not found in $path")


@runtime_checkable
class ProbeRunner(Protocol):
    def run(self, target: ProbeTarget, *, pod: str, namespace: str, timeout_s: float) -> ProbeResult: ...


def build_probe_command(target: ProbeTarget, *, timeout_s: float, binary: str = "curl") -> List[str]:
    """
    Build the verbose client invocation for a single attempt.

    curl is preferred (distinguishes every failure class, speaks `telnet://` for raw TCP);
    busybox wget is accepted for minimal images but cannot probe plain TCP.
    """
    connect_s = max(1, int(math.ceil(timeout_s)))
    secs = str(connect_s)
    tool = posixpath.basename(binary)
    if tool == "wget":
        if target.scheme == "tcp":
            raise InvocationError("tcp probes require curl in the source container (use --scheme http/https)")
        return [binary, "-T", secs, "-O", "/dev/null", "-S", target.url]
    return [
        binary,
        "-v",
        "-sS",
        "-o",
        "/dev/null",
        "-k",
        "--connect-timeout",
        secs,
        "--max-time",
        str(connect_s + _TRANSFER_EXTRA_S),
        target.url,
    ]


class ExecProbeRunner:
    """Run the probe inside a workload's network namespace via the platform exec primitive."""

    def __init__(self, provider: Optional[K8sProvider] = None, *, probe_binary: str = "curl") -> None:
        self.provider = provider or get_k8s_provider()
        self.probe_binary = probe_binary

    def _ensure_running(self, pod: str, namespace: str) -> Optional[str]:
        try:
            info = self.provider.get_pod(pod, namespace)
        except ResourceNotFound:
            raise ProbeError(f"source pod `{pod}` not found in namespace `{namespace}`", pod=pod, namespace=namespace)
        except VerificationError as e:
            raise ProbeError(f"cannot read source pod `{pod}`: {e}", pod=pod, namespace=namespace)

        phase = (info.get("status") or {}).get("phase")
        if phase and phase != "Running":
            raise ProbeError(f"source pod `{pod}` is {phase}, not Running", pod=pod, namespace=namespace)
        containers = (info.get("spec") or {}).get("containers") or []
        # Exec into the first (main) container; sidecars share the network namespace.
        return containers[0].get("name") if containers else None

    def run(self, target: ProbeTarget, *, pod: str, namespace: str, timeout_s: float) -> ProbeResult:
        container = self._ensure_running(pod, namespace)
        command = build_probe_command(target, timeout_s=timeout_s, binary=self.probe_binary)
        logger.info("Probing %s from pod %s/%s", target.url, namespace, pod)

        res = self.provider.exec_in_pod(pod, namespace, command, container=container, timeout_s=timeout_s + _EXEC_GRACE_S)
        trace = res.output

        lowered = trace.lower()
        if res.exit_code in _MISSING_BINARY_EXIT_CODES or (
            res.exit_code is None
            and not res.timed_out
            and (not trace.strip() or any(m in lowered for m in _MISSING_BINARY_MARKERS))
        ):
            raise ProbeError(
                f"probe client `{self.probe_binary}` could not run in pod `{pod}`"
                + (f": {trace.strip().splitlines()[-1]}" if trace.strip() else ""),
                pod=pod,
                namespace=namespace,
            )

        outcome = classify_trace(trace, res.exit_code, timed_out=res.timed_out)
        logger.info("Probe outcome: %s (exit=%s)", outcome, res.exit_code)
        return ProbeResult(
            target=target,
            source_pod=pod,
            namespace=namespace,
            outcome=outcome,
            exit_code=res.exit_code,
            raw_output=trace,
            timed_out=res.timed_out,
        )


def _errno_outcome(err: OSError) -> Optional[str]:
    code = getattr(err, "errno", None)
    if code in (errno.EHOSTUNREACH, errno.ENETUNREACH):
        return "NoRouteToHost"
    if code == errno.ECONNREFUSED:
        return "ConnectionRefused"
    if code == errno.ETIMEDOUT:
        return "ConnectionTimeout"
    return None


class LocalProbeRunner:
    """
    Probe from the machine running the tool (TCP handshake only).

    Useful when the operator is already inside the cluster network (e.g. `oc rsh` session)
    and wants the same classification without an exec hop.
    """

    def run(self, target: ProbeTarget, *, pod: str = LOCAL_SOURCE, namespace: str, timeout_s: float) -> ProbeResult:
        lines = [f"* Trying {target.address}..."]
        outcome = None
        try:
            conn = socket.create_connection((target.host, target.port), timeout=timeout_s)
        except socket.gaierror as e:
            outcome = "DNSFailure"
            lines.append(f"* Could not resolve host: {target.host} ({e})")
        except socket.timeout:
            outcome = "ConnectionTimeout"
            lines.append(f"* Connection timed out after {int(timeout_s * 1000)} milliseconds")
        except OSError as e:
            outcome = _errno_outcome(e)
            if outcome is None:
                raise ProbeError(f"local probe to {target.address} failed: {e}", pod=pod, namespace=namespace)
            lines.append(f"* connect to {target.address} failed: {e.strerror or e}")
        else:
            with conn:
                peer = conn.getpeername()
            outcome = "Success"
            lines.append(f"* Connected to {target.host} ({peer[0]}) port {target.port}")

        logger.info("Local probe outcome: %s", outcome)
        return ProbeResult(
            target=target,
            source_pod=pod,
            namespace=namespace,
            outcome=outcome,
            raw_output="\n".join(lines),
            timed_out=outcome == "ConnectionTimeout",
        )


def get_probe_runner(
    source_pod: str, *, provider: Optional[K8sProvider] = None, probe_binary: str = "curl"
) -> ProbeRunner:
    if source_pod == LOCAL_SOURCE:
        return LocalProbeRunner()
    return ExecProbeRunner(provider, probe_binary=probe_binary)
