from __future__ import annotations

from typing import Dict

from netdiag.core.models import ProbeOutcome, Symptom

# One symptom per outcome. Kept as data so a finer-grained symptom can be split out of an
# outcome later without touching control flow.
OUTCOME_SYMPTOMS: Dict[ProbeOutcome, Symptom] = {
    "DNSFailure": "DNSFailure",
    "ConnectionTimeout": "ConnectionTimeout",
    "NoRouteToHost": "NoRouteToHost",
    "ConnectionRefused": "ConnectionRefused",
    "Success": "Success",
}


def classify(outcome: ProbeOutcome) -> Symptom:
    """Map a terminal probe outcome to its symptom (total, never raises for a valid outcome)."""
    return OUTCOME_SYMPTOMS[outcome]
