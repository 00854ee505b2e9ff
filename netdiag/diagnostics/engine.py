from __future__ import annotations

import logging
from typing import List, Optional

from netdiag.config import DiagnoseSettings, load_settings
from netdiag.core.models import CauseFinding, DiagnoseRequest, DiagnosisReport, ProbeResult
from netdiag.diagnostics.classifier import classify
from netdiag.diagnostics.cluster_view import ClusterView
from netdiag.diagnostics.resolver import resolve
from netdiag.errors import ProbeError
from netdiag.probe.runner import ProbeRunner, get_probe_runner
from netdiag.providers.k8s_provider import K8sProvider, get_k8s_provider
from netdiag.report import build_report

logger = logging.getLogger(__name__)


def run_diagnosis(
    request: DiagnoseRequest,
    *,
    provider: Optional[K8sProvider] = None,
    runner: Optional[ProbeRunner] = None,
    settings: Optional[DiagnoseSettings] = None,
) -> DiagnosisReport:
    """
    Probe -> Outcome -> Symptom -> Causes -> Report, single pass.

    Never raises for probe or verification failures: an unattempted probe yields a report
    with no outcome (exit code 2) and a failed verification yields an `inconclusive` finding.
    InvocationError (bad arguments) is raised before any I/O happens.
    """
    cfg = settings or load_settings()
    k8s = provider or get_k8s_provider()
    probe_runner = runner or get_probe_runner(request.source_pod, provider=k8s, probe_binary=cfg.probe_binary)

    try:
        probe = probe_runner.run(
            request.target, pod=request.source_pod, namespace=request.namespace, timeout_s=request.timeout_s
        )
    except ProbeError as e:
        logger.error("Probe could not be run: %s", e)
        probe = ProbeResult(
            target=request.target, source_pod=request.source_pod, namespace=request.namespace, error=f"Probe: {e}"
        )

    if probe.outcome is None:
        return build_report(probe, [], verbose=request.verbose)

    symptom = classify(probe.outcome)
    logger.info("Symptom: %s", symptom)

    findings: List[CauseFinding] = []
    short_circuited = False
    if symptom != "Success":
        view = ClusterView(
            k8s,
            target=request.target,
            source_pod=request.source_pod,
            namespace=request.namespace,
            cluster_domain=cfg.cluster_domain,
        )
        findings, short_circuited = resolve(
            symptom, view, full=request.full, parallel=cfg.parallel_verifications
        )

    report = build_report(probe, findings, short_circuited=short_circuited, verbose=request.verbose)
    top = report.top_cause
    logger.info(
        "Diagnosis complete: outcome=%s confirmed=%d top=%s",
        report.outcome,
        len(report.confirmed),
        top.cause.cause_id if top else None,
    )
    return report
