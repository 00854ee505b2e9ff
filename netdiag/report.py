"""Diagnosis report builder and markdown renderer.

`build_report` is pure aggregation (no I/O): confirmed causes first, then inconclusive,
then refuted ones (verbose mode only). Within a group, findings keep their likelihood rank.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from netdiag.core.models import CauseFinding, DiagnosisReport, ProbeResult
from netdiag.core.targets import parse_service_host
from netdiag.diagnostics.classifier import classify

_STATUS_ORDER = {"confirmed": 0, "inconclusive": 1, "refuted": 2}

_STATUS_BADGE = {"confirmed": "CONFIRMED", "inconclusive": "INCONCLUSIVE", "refuted": "refuted"}

_OUTCOME_TEXT = {
    "DNSFailure": "DNS resolution failed",
    "ConnectionTimeout": "connection timed out",
    "NoRouteToHost": "no route to host",
    "ConnectionRefused": "connection refused",
    "Success": "connected",
}


def build_report(
    probe: ProbeResult,
    findings: List[CauseFinding],
    *,
    short_circuited: bool = False,
    verbose: bool = False,
    errors: Optional[List[str]] = None,
) -> DiagnosisReport:
    symptom = classify(probe.outcome) if probe.outcome is not None else None
    ordered = sorted(findings, key=lambda f: (_STATUS_ORDER.get(f.status, 3), f.rank))
    kept = ordered if verbose else [f for f in ordered if f.status != "refuted"]

    errs = list(errors or [])
    if probe.error and probe.error not in errs:
        errs.insert(0, probe.error)

    return DiagnosisReport(
        target=probe.target,
        source_pod=probe.source_pod,
        namespace=probe.namespace,
        outcome=probe.outcome,
        symptom=symptom,
        findings=kept,
        suppressed_refuted=len(ordered) - len(kept),
        short_circuited=short_circuited,
        verbose=verbose,
        errors=errs,
        probe_output=probe.raw_output,
    )


def _placeholders(report: DiagnosisReport) -> Dict[str, str]:
    addr = parse_service_host(report.target.host, default_namespace=report.namespace)
    return {
        "namespace": addr.namespace if addr else report.namespace,
        "service": addr.service if addr else report.target.host,
        "port": str(report.target.port),
        "pod": report.source_pod,
    }


def _render_finding(f: CauseFinding, lines: List[str], subs: Dict[str, str]) -> None:
    lines.append(f"### [{_STATUS_BADGE.get(f.status, f.status)}] {f.cause.title}")
    lines.append("")
    for w in f.why:
        lines.append(f"- {w}")
    if f.status == "refuted":
        lines.append("")
        return
    if f.cause.remediation:
        lines.append("")
        lines.append("**Remediation:**")
        for r in f.cause.remediation:
            lines.append(f"- {r}")
    if f.cause.next_tests:
        lines.append("")
        lines.append("**Next tests:**")
        lines.append("```bash")
        for t in f.cause.next_tests:
            lines.append(t.format(**subs))
        lines.append("```")
    lines.append("")


def render_report(report: DiagnosisReport) -> str:
    lines: List[str] = []
    lines.append(f"# Connectivity Diagnosis: {report.target.address}")
    lines.append("")
    lines.append(f"**From:** `{report.source_pod}` (namespace `{report.namespace}`)")
    lines.append(f"**To:** `{report.target.url}`")
    if report.outcome is None:
        lines.append("**Outcome:** probe could not be run")
    else:
        lines.append(f"**Outcome:** `{report.outcome}` ({_OUTCOME_TEXT.get(report.outcome, report.outcome)})")
    if report.symptom is not None:
        lines.append(f"**Symptom:** `{report.symptom}`")
    lines.append("")

    if report.outcome == "Success":
        lines.append("Connection succeeded; nothing to diagnose.")
        lines.append("")
    elif report.outcome is not None:
        lines.append("## Likely causes (ranked)")
        lines.append("")
        subs = _placeholders(report)
        if not report.findings:
            lines.append("- No candidate cause could be confirmed or kept open.")
            lines.append("")
        for f in report.findings:
            _render_finding(f, lines, subs)
        notes = []
        if report.suppressed_refuted:
            notes.append(f"{report.suppressed_refuted} refuted cause(s) hidden (use --verbose)")
        if report.short_circuited:
            notes.append("stopped at the first confirmed cause (use --full to check all)")
        if notes:
            lines.append(f"_{'; '.join(notes)}._")
            lines.append("")

    if report.errors:
        lines.append("## Errors")
        lines.append("")
        for e in report.errors:
            lines.append(f"- {e}")
        lines.append("")

    if report.verbose and report.probe_output:
        lines.append("## Appendix: probe trace")
        lines.append("")
        lines.append("```")
        lines.extend(report.probe_output.rstrip().splitlines())
        lines.append("```")
        lines.append("")

    return "\n".join(lines).rstrip() + "\n"
