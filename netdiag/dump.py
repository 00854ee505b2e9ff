"""JSON dump helpers (CLI-friendly, testable).

We keep CLI printing logic out of core modules; this returns plain dicts.
"""

from __future__ import annotations

from typing import Any, Dict

from netdiag.core.models import DiagnosisReport


def report_to_json_dict(report: DiagnosisReport) -> Dict[str, Any]:
    # Pydantic v2: mode="json" produces JSON-serializable types.
    payload = report.model_dump(mode="json")
    payload["exit_code"] = report.exit_code
    top = report.top_cause
    payload["top_cause"] = top.cause.cause_id if top else None
    if not report.verbose:
        payload.pop("probe_output", None)
    return payload
