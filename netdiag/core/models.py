"""Canonical domain models (single source of truth).

This file is the one place where we define models used across:
- probing (target, raw trace, terminal outcome)
- diagnosis (symptoms, candidate causes, verification findings)
- rendering (reports, JSON dumps)

Design note:
- Reference data (`CandidateCause`) and probe targets are frozen; nothing here outlives a
  single troubleshooting session.
"""

from __future__ import annotations

import ipaddress
import re
from typing import List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

Scheme = Literal["http", "https", "tcp"]

# Hostname label (RFC 1123, underscores tolerated as resolvers do).
_HOST_LABEL = re.compile(r"^[a-z0-9_]([-a-z0-9_]{0,61}[a-z0-9_])?$")

ProbeOutcome = Literal["DNSFailure", "ConnectionTimeout", "NoRouteToHost", "ConnectionRefused", "Success"]
Symptom = Literal["DNSFailure", "ConnectionTimeout", "NoRouteToHost", "ConnectionRefused", "Success"]

PROBE_OUTCOMES: Tuple[ProbeOutcome, ...] = (
    "DNSFailure",
    "ConnectionTimeout",
    "NoRouteToHost",
    "ConnectionRefused",
    "Success",
)

VerificationStatus = Literal["confirmed", "refuted", "inconclusive"]

EXIT_SUCCESS = 0
EXIT_CONFIRMED = 1
EXIT_INCONCLUSIVE = 2
EXIT_INVOCATION_ERROR = 3


class BaseModelStrict(BaseModel):
    model_config = ConfigDict(extra="forbid")


class BaseModelFrozen(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class ProbeTarget(BaseModelFrozen):
    host: str
    port: int = Field(ge=1, le=65535)
    scheme: Scheme = "tcp"

    @field_validator("host")
    @classmethod
    def _normalize_host(cls, v: str) -> str:
        # DNS names are case-insensitive; a trailing dot is an absolute name, same lookup.
        host = (v or "").strip().rstrip(".").lower()
        if not host:
            raise ValueError("host must not be empty")
        try:
            ipaddress.ip_address(host)
            return host
        except ValueError:
            pass
        if len(host) > 253 or not all(_HOST_LABEL.match(lbl) for lbl in host.split(".")):
            raise ValueError(f"`{host}` is neither an IP address nor a valid DNS name")
        return host

    @property
    def address(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"

    @property
    def url(self) -> str:
        if self.scheme == "tcp":
            return f"telnet://{self.address}"
        return f"{self.scheme}://{self.address}/"


class ProbeResult(BaseModelStrict):
    target: ProbeTarget
    source_pod: str
    namespace: str
    # None only when the probe could not be attempted at all.
    outcome: Optional[ProbeOutcome] = None
    exit_code: Optional[int] = None
    raw_output: str = ""
    timed_out: bool = False
    error: Optional[str] = None


class CandidateCause(BaseModelFrozen):
    cause_id: str
    title: str
    description: str
    remediation: Tuple[str, ...] = ()
    next_tests: Tuple[str, ...] = ()


class CauseFinding(BaseModelStrict):
    cause: CandidateCause
    rank: int
    status: VerificationStatus
    why: List[str] = Field(default_factory=list)
    refs: List[str] = Field(default_factory=list)


class DiagnosisReport(BaseModelStrict):
    """
    Outcome of one troubleshooting session.

    Deliberately carries no wall-clock timestamps: diagnosing the same flow twice against
    unchanged cluster state yields an equal report.
    """

    target: ProbeTarget
    source_pod: str
    namespace: str
    outcome: Optional[ProbeOutcome] = None
    symptom: Optional[Symptom] = None
    findings: List[CauseFinding] = Field(default_factory=list)
    suppressed_refuted: int = 0
    short_circuited: bool = False
    verbose: bool = False
    errors: List[str] = Field(default_factory=list)
    probe_output: str = ""

    @property
    def confirmed(self) -> List[CauseFinding]:
        return [f for f in self.findings if f.status == "confirmed"]

    @property
    def inconclusive(self) -> List[CauseFinding]:
        return [f for f in self.findings if f.status == "inconclusive"]

    @property
    def top_cause(self) -> Optional[CauseFinding]:
        confirmed = self.confirmed
        return confirmed[0] if confirmed else None

    @property
    def exit_code(self) -> int:
        if self.outcome == "Success":
            return EXIT_SUCCESS
        if self.confirmed:
            return EXIT_CONFIRMED
        return EXIT_INCONCLUSIVE


class DiagnoseRequest(BaseModelStrict):
    source_pod: str
    target: ProbeTarget
    namespace: str = "default"
    timeout_s: float = Field(default=5.0, gt=0)
    verbose: bool = False
    full: bool = False
