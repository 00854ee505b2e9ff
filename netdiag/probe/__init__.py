"""Connection probes.

A probe is exactly one connection attempt (no retries) from a given execution context,
classified into a terminal `ProbeOutcome` from its verbose trace.
"""

from .patterns import classify_trace
from .runner import ExecProbeRunner, LocalProbeRunner, ProbeRunner, get_probe_runner

__all__ = ["ExecProbeRunner", "LocalProbeRunner", "ProbeRunner", "classify_trace", "get_probe_runner"]
