from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional, Tuple

from netdiag.core.models import CandidateCause, CauseFinding, Symptom
from netdiag.diagnostics.causes import candidate_causes
from netdiag.diagnostics.cluster_view import ClusterView
from netdiag.diagnostics.verifiers import VERIFIERS, Verification

logger = logging.getLogger(__name__)

Verifier = Callable[[ClusterView], Verification]


def verify_cause(
    cause: CandidateCause, rank: int, view: ClusterView, *, verifiers: Optional[Dict[str, Verifier]] = None
) -> CauseFinding:
    """
    Run one cause's verification. Never raises.

    API failures and verifier bugs alike become `inconclusive`: a partial platform outage
    must still yield a best-effort report.
    """
    fn = (verifiers or VERIFIERS).get(cause.cause_id)
    if fn is None:
        return CauseFinding(cause=cause, rank=rank, status="inconclusive", why=["No verification available."])
    try:
        v = fn(view)
    except Exception as e:
        logger.warning("Verification %s failed: %s", cause.cause_id, e)
        return CauseFinding(cause=cause, rank=rank, status="inconclusive", why=[f"Verification failed: {e}"])
    logger.debug("Verification %s -> %s", cause.cause_id, v.status)
    return CauseFinding(cause=cause, rank=rank, status=v.status, why=list(v.why), refs=list(v.refs))


def resolve(
    symptom: Symptom,
    view: ClusterView,
    *,
    full: bool = False,
    parallel: int = 1,
    verifiers: Optional[Dict[str, Verifier]] = None,
) -> Tuple[List[CauseFinding], bool]:
    """
    Verify a symptom's candidate causes in likelihood order.

    Stops after the first `confirmed` cause unless `full` is set. With `full` and
    `parallel > 1`, independent verifications run concurrently; findings are always
    returned in table order.

    Returns:
        (findings, short_circuited)
    """
    causes = candidate_causes(symptom)
    if not causes:
        return [], False

    if full and parallel > 1 and len(causes) > 1:
        with ThreadPoolExecutor(max_workers=min(parallel, len(causes)), thread_name_prefix="verify") as pool:
            futures = [pool.submit(verify_cause, c, i, view, verifiers=verifiers) for i, c in enumerate(causes)]
            findings = [f.result() for f in futures]
        return sorted(findings, key=lambda f: f.rank), False

    findings: List[CauseFinding] = []
    for i, cause in enumerate(causes):
        finding = verify_cause(cause, i, view, verifiers=verifiers)
        findings.append(finding)
        if finding.status == "confirmed" and not full:
            return findings, i < len(causes) - 1
    return findings, False
