#!/usr/bin/env python3
"""
netdiag - Service Connectivity Diagnosis
Probe a Service from inside a pod and explain why the connection fails.
"""

import argparse
import json
import logging
import re
import sys
from typing import List, Optional

from netdiag.errors import InvocationError

#
# NOTE: Keep netdiag imports lazy (inside functions) so
# `--help` and argument errors never touch the Kubernetes client.
#

_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class _ArgumentParser(argparse.ArgumentParser):
    """argparse exits with status 2 on bad input; usage errors here must exit 3."""

    def error(self, message: str) -> None:  # type: ignore[override]
        raise InvocationError(message)


def parse_timeout(raw: str) -> float:
    """Parse `5`, `5s`, `2.5s` or `500ms` into seconds."""
    m = re.fullmatch(r"\s*(\d+(?:\.\d+)?)\s*(ms|s)?\s*", raw or "")
    if not m:
        raise InvocationError(f"invalid timeout `{raw}` (expected e.g. 5 or 5s)")
    value = float(m.group(1))
    if m.group(2) == "ms":
        value /= 1000.0
    if value <= 0:
        raise InvocationError("timeout must be positive")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="netdiag",
        description="Diagnose service-to-service connectivity failures from inside a pod",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Probe the hello-world Service from a pod in the same namespace
  netdiag --from frontend-7d9f8-abcde --to hello-world:443 -n myproject

  # Cross-namespace, check every candidate cause and show refuted ones too
  netdiag --from frontend-7d9f8-abcde --to hello-world.backend:8080 --full --verbose

Exit codes:
  0 connection succeeded
  1 failure, at least one cause confirmed
  2 failure, no cause confirmed (inconclusive)
  3 invocation/usage error
        """,
    )
    parser.add_argument(
        "--from",
        dest="source_pod",
        required=True,
        metavar="POD",
        help="Pod whose network namespace the probe runs in (`local` probes from this machine)",
    )
    parser.add_argument("--to", dest="target", required=True, metavar="HOST:PORT", help="Destination host:port or URL")
    parser.add_argument("--namespace", "-n", help="Namespace of the source pod (default: NETDIAG_NAMESPACE or `default`)")
    parser.add_argument("--timeout", help="Connect timeout, e.g. 5 or 5s (default: NETDIAG_TIMEOUT_SECONDS or 5s)")
    parser.add_argument(
        "--scheme", choices=["http", "https", "tcp"], help="Probe scheme (default: inferred from port/URL)"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Show refuted causes, the raw probe trace and debug logs"
    )
    parser.add_argument(
        "--full", action="store_true", help="Verify every candidate cause instead of stopping at the first confirmed"
    )
    parser.add_argument(
        "--dump-json", action="store_true", help="Print the diagnosis as JSON on stdout instead of the markdown report"
    )
    return parser


def _configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=_LOG_FORMAT, stream=sys.stderr)
    # The websocket/urllib3 stack is chatty at DEBUG; keep it at WARNING.
    for name in ("urllib3", "websocket", "kubernetes"):
        logging.getLogger(name).setLevel(logging.WARNING)


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    from netdiag.config import load_settings
    from netdiag.core.models import EXIT_INVOCATION_ERROR, DiagnoseRequest
    from netdiag.core.targets import parse_target

    try:
        args = build_parser().parse_args(argv)
        settings = load_settings()
        timeout_s = parse_timeout(args.timeout) if args.timeout else settings.timeout_s
        settings = settings.with_overrides(
            namespace=args.namespace,
            timeout_s=timeout_s,
            verbose=True if args.verbose else None,
            full_report=True if args.full else None,
        )
        target = parse_target(args.target, scheme=args.scheme)
        source_pod = (args.source_pod or "").strip()
        if not source_pod:
            raise InvocationError("--from must name a pod (or `local`)")
        request = DiagnoseRequest(
            source_pod=source_pod,
            target=target,
            namespace=settings.namespace,
            timeout_s=settings.timeout_s,
            verbose=settings.verbose,
            full=settings.full_report,
        )
    except InvocationError as e:
        print(f"netdiag: error: {e}", file=sys.stderr)
        return EXIT_INVOCATION_ERROR

    _configure_logging("DEBUG" if settings.verbose else settings.log_level)

    from netdiag.diagnostics.engine import run_diagnosis
    from netdiag.dump import report_to_json_dict
    from netdiag.report import render_report

    try:
        report = run_diagnosis(request, settings=settings)
    except InvocationError as e:
        print(f"netdiag: error: {e}", file=sys.stderr)
        return EXIT_INVOCATION_ERROR

    if args.dump_json:
        print(json.dumps(report_to_json_dict(report), indent=2, sort_keys=False))
    else:
        print(render_report(report), end="")
    return report.exit_code


if __name__ == "__main__":
    sys.exit(main())
