"""Symptom classification and cause resolution.

- classifier: probe outcome -> symptom (static table)
- causes: symptom -> ordered candidate causes (static table)
- verifiers: one read-only check per cause, over a memoized `ClusterView`
- resolver: runs the checks in likelihood order
- engine: the end-to-end pipeline
"""

from .causes import CAUSES, SYMPTOM_CAUSES, candidate_causes
from .classifier import classify
from .resolver import resolve

__all__ = ["CAUSES", "SYMPTOM_CAUSES", "candidate_causes", "classify", "resolve"]
