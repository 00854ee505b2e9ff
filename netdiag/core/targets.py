"""Target parsing helpers.

Two concerns live here:
- turning operator input (`host:port`, `https://host:port/path`) into a `ProbeTarget`
- deciding whether a hostname follows the in-cluster Service naming convention:
  `<service>`, `<service>.<namespace>`, `<service>.<namespace>.svc`,
  `<service>.<namespace>.svc.<cluster-domain>`
"""

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass
from typing import Literal, Optional
from urllib.parse import urlsplit

from pydantic import ValidationError

from netdiag.core.models import ProbeTarget, Scheme
from netdiag.errors import InvocationError

# RFC 1123 label, which is what Service and Namespace names must be.
_DNS_LABEL = re.compile(r"^[a-z0-9]([-a-z0-9]{0,61}[a-z0-9])?$")

_DEFAULT_PORTS = {"http": 80, "https": 443}

ServiceHostForm = Literal["short", "namespaced", "svc", "fqdn"]


@dataclass(frozen=True)
class ServiceAddress:
    service: str
    namespace: str
    form: ServiceHostForm


def default_scheme_for_port(port: int) -> Scheme:
    if port == 443 or port == 8443:
        return "https"
    if port in (80, 8080):
        return "http"
    return "tcp"


def parse_target(raw: str, *, scheme: Optional[str] = None) -> ProbeTarget:
    """
    Parse operator input into a ProbeTarget.

    Accepted shapes:
      hello-world:443
      https://hello-world.myproject.svc:8443/healthz
      http://hello-world           (port defaults from scheme)
    """
    text = (raw or "").strip()
    if not text:
        raise InvocationError("target is required (expected host:port)")

    url_scheme: Optional[str] = None
    if "://" in text:
        parts = urlsplit(text)
        url_scheme = (parts.scheme or "").lower()
        host = parts.hostname or ""
        try:
            port = parts.port
        except ValueError:
            raise InvocationError(f"invalid port in target `{raw}`")
        if port is None:
            port = _DEFAULT_PORTS.get(url_scheme)
    else:
        host, sep, port_raw = text.rpartition(":")
        if not sep:
            raise InvocationError(f"target `{raw}` has no port (expected host:port)")
        host = host.strip("[]")
        try:
            port = int(port_raw)
        except ValueError:
            raise InvocationError(f"invalid port in target `{raw}`")

    chosen = (scheme or url_scheme or "").lower() or None
    if chosen is not None and chosen not in ("http", "https", "tcp"):
        raise InvocationError(f"unsupported scheme `{chosen}` (expected http, https or tcp)")
    if port is None:
        raise InvocationError(f"target `{raw}` has no port (expected host:port)")

    try:
        return ProbeTarget(host=host, port=port, scheme=chosen or default_scheme_for_port(port))
    except ValidationError as e:
        problems = "; ".join(err.get("msg", "") for err in e.errors())
        raise InvocationError(f"invalid target `{raw}`: {problems}")


def is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address((host or "").strip("[]"))
        return True
    except ValueError:
        return False


def parse_service_host(
    host: str, *, default_namespace: str, cluster_domain: str = "cluster.local"
) -> Optional[ServiceAddress]:
    """
    Map a hostname onto (service, namespace) using the cluster DNS convention.

    Returns None for IP literals and for names the cluster resolver would never map onto a
    Service (external names, typos like `svc.ns.svcc`, invalid labels).
    """
    h = (host or "").strip().rstrip(".").lower()
    if not h or is_ip_literal(h):
        return None

    labels = h.split(".")
    if not all(_DNS_LABEL.match(lbl) for lbl in labels):
        return None

    domain = [d for d in (cluster_domain or "").strip(".").lower().split(".") if d]
    if len(labels) == 1:
        return ServiceAddress(service=labels[0], namespace=default_namespace, form="short")
    if len(labels) == 2:
        return ServiceAddress(service=labels[0], namespace=labels[1], form="namespaced")
    if len(labels) == 3 and labels[2] == "svc":
        return ServiceAddress(service=labels[0], namespace=labels[1], form="svc")
    if len(labels) > 3 and labels[2] == "svc" and labels[3:] == domain:
        return ServiceAddress(service=labels[0], namespace=labels[1], form="fqdn")
    return None
