"""Probe trace patterns.

Verbose client output (`curl -v`, busybox `wget -S`) is matched against a small pattern library
to recover the terminal connection error. A trace showing the TCP connection was established
is `Success` whatever fails afterwards (slow reply, TLS error). Otherwise failure patterns
are checked in declaration order and the first match wins, so a trace that mentions both a
timeout and a refused retry is classified by the earlier, more specific failure.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from netdiag.core.models import ProbeOutcome


@dataclass
class TracePattern:
    """A known connection failure signature."""

    outcome: ProbeOutcome
    """Outcome reported when this pattern matches"""

    patterns: List[str]
    """Regex patterns matched (case-insensitive) against the combined trace text"""

    exit_codes: List[int] = field(default_factory=list)
    """curl exit codes that imply this outcome when no text pattern matched"""

    def matches(self, trace: str) -> bool:
        return any(re.search(p, trace, re.IGNORECASE | re.MULTILINE) for p in self.patterns)


CONNECTION_ESTABLISHED = TracePattern(
    outcome="Success",
    patterns=[
        r"^\*\s+Connected to ",
        # Response status line: curl prints `< HTTP/1.1 ...`, busybox wget -S `  HTTP/1.1 ...`.
        r"^(?:<|[ \t])[ \t]*HTTP/\d",
    ],
)

DNS_FAILURE = TracePattern(
    outcome="DNSFailure",
    patterns=[
        r"Could not resolve host",
        r"Resolving(?: host)? timed out",
        r"no servers could be reached",
        r"lookup \S+ on \S+:\d+: ",
        r"Name or service not known",
        r"Temporary failure in name resolution",
        r"bad address '",
        r"no such host",
        r"nodename nor servname provided",
    ],
    exit_codes=[6],
)

CONNECTION_TIMEOUT = TracePattern(
    outcome="ConnectionTimeout",
    patterns=[
        r"Connection timed out",
        r"Operation timed out",
        r"Connection timeout after",
        r"download timed out",
        r"i/o timeout",
        r"Timeout was reached",
    ],
    exit_codes=[28],
)

NO_ROUTE_TO_HOST = TracePattern(
    outcome="NoRouteToHost",
    patterns=[
        r"No route to host",
        r"Host is unreachable",
        r"Network is unreachable",
    ],
)

CONNECTION_REFUSED = TracePattern(
    outcome="ConnectionRefused",
    patterns=[
        r"Connection refused",
        r"ECONNREFUSED",
    ],
    exit_codes=[7],
)

TRACE_PATTERNS: Sequence[TracePattern] = (DNS_FAILURE, CONNECTION_TIMEOUT, NO_ROUTE_TO_HOST, CONNECTION_REFUSED)


def classify_trace(trace: str, exit_code: Optional[int] = None, *, timed_out: bool = False) -> ProbeOutcome:
    """
    Map a probe's verbose output (and client exit code) to its terminal outcome.

    - connection established -> Success, even if the request failed afterwards
    - unresolved name (including a resolver timeout) -> DNSFailure
    - connect exceeded the deadline (or the exec session itself did) -> ConnectionTimeout
    - routing layer reports unreachable -> NoRouteToHost
    - remote actively rejects -> ConnectionRefused
    - anything else -> Success (the TCP handshake completed)
    """
    text = trace or ""
    if CONNECTION_ESTABLISHED.matches(text):
        return "Success"
    for pattern in TRACE_PATTERNS:
        if pattern.matches(text):
            return pattern.outcome
    if timed_out:
        return "ConnectionTimeout"
    if exit_code is not None:
        for pattern in TRACE_PATTERNS:
            if exit_code in pattern.exit_codes:
                return pattern.outcome
    return "Success"
