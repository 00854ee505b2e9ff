from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Optional


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "y", "on")


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip().lower().rstrip("s")
    if not raw:
        return default
    try:
        return float(raw)
    except Exception:
        return default


@dataclass(frozen=True)
class DiagnoseSettings:
    # Probe
    timeout_s: float = 5.0
    probe_binary: str = "curl"

    # Scope
    namespace: str = "default"
    cluster_domain: str = "cluster.local"

    # Verification
    parallel_verifications: int = 4
    full_report: bool = False

    # Output
    verbose: bool = False
    log_level: str = "INFO"

    def with_overrides(self, **overrides: Optional[object]) -> "DiagnoseSettings":
        """Return a copy with every non-None override applied (CLI flags win over env)."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def load_settings() -> DiagnoseSettings:
    timeout_s = _env_float("NETDIAG_TIMEOUT_SECONDS", 5.0)
    if timeout_s <= 0:
        timeout_s = 5.0
    return DiagnoseSettings(
        timeout_s=timeout_s,
        probe_binary=(os.getenv("NETDIAG_PROBE_BINARY") or "").strip() or "curl",
        namespace=(os.getenv("NETDIAG_NAMESPACE") or "").strip() or "default",
        cluster_domain=(os.getenv("NETDIAG_CLUSTER_DOMAIN") or "").strip().strip(".") or "cluster.local",
        parallel_verifications=max(1, _env_int("NETDIAG_PARALLEL_VERIFICATIONS", 4)),
        full_report=_env_bool("NETDIAG_FULL_REPORT", False),
        verbose=_env_bool("NETDIAG_VERBOSE", False),
        log_level=((os.getenv("NETDIAG_LOG_LEVEL") or "").strip().upper() or "INFO"),
    )
