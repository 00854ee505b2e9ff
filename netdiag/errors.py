"""Error taxonomy.

- InvocationError: bad arguments; fatal, reported immediately (exit code 3)
- ProbeError: the connection attempt could not be made at all
- VerificationError: a platform read failed; recovered as an `inconclusive` finding
"""

from __future__ import annotations

from typing import Optional


class NetdiagError(Exception):
    """Base class for all diagnosis errors."""


class InvocationError(NetdiagError):
    pass


class ProbeError(NetdiagError):
    def __init__(self, message: str, *, pod: Optional[str] = None, namespace: Optional[str] = None) -> None:
        super().__init__(message)
        self.pod = pod
        self.namespace = namespace


class VerificationError(NetdiagError):
    def __init__(self, message: str, *, status: Optional[int] = None, reason: Optional[str] = None) -> None:
        super().__init__(message)
        self.status = status
        self.reason = reason


class ResourceNotFound(VerificationError):
    """The queried object does not exist (HTTP 404)."""

    def __init__(self, kind: str, name: str, namespace: Optional[str] = None) -> None:
        where = f" in namespace `{namespace}`" if namespace else ""
        super().__init__(f"{kind} `{name}` not found{where}", status=404, reason="NotFound")
        self.kind = kind
        self.name = name
        self.namespace = namespace
