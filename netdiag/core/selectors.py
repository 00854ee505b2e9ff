"""Label selector helpers.

Services use plain equality maps (`spec.selector`); NetworkPolicies and Deployments use
LabelSelectors (`matchLabels` + `matchExpressions`). An empty LabelSelector selects
everything; an empty Service selector selects nothing (endpoints are managed by hand).
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional


def selector_to_string(selector: Mapping[str, Any]) -> str:
    """Render an equality map as a `label_selector` query string (`k=v,k2=v2`), keys sorted."""
    return ",".join(f"{k}={selector[k]}" for k in sorted(selector))


def matches_equality(selector: Mapping[str, Any], labels: Optional[Mapping[str, Any]]) -> bool:
    if not selector:
        return False
    lbl = labels or {}
    return all(k in lbl and str(lbl[k]) == str(v) for k, v in selector.items())


def _expression_matches(expr: Mapping[str, Any], labels: Mapping[str, Any]) -> bool:
    key = expr.get("key")
    op = expr.get("operator")
    values = [str(v) for v in (expr.get("values") or [])]
    if op == "In":
        return key in labels and str(labels[key]) in values
    if op == "NotIn":
        return key not in labels or str(labels[key]) not in values
    if op == "Exists":
        return key in labels
    if op == "DoesNotExist":
        return key not in labels
    # Unknown operators never match (the API server rejects them anyway).
    return False


def matches_label_selector(selector: Optional[Mapping[str, Any]], labels: Optional[Mapping[str, Any]]) -> bool:
    """Evaluate a LabelSelector. `None` or `{}` selects everything."""
    if not selector:
        return True
    lbl = labels or {}
    for k, v in (selector.get("matchLabels") or {}).items():
        if k not in lbl or str(lbl[k]) != str(v):
            return False
    return all(_expression_matches(e, lbl) for e in (selector.get("matchExpressions") or []))


def near_misses(selector: Mapping[str, Any], objects: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Objects sharing at least one selector key but failing the match.

    These are the usual suspects behind a selector typo (`app: hello-world` vs `app: helloworld`).
    Returns [{name, labels, mismatched: {key: (wanted, actual)}}]
    """
    out: List[Dict[str, Any]] = []
    for obj in objects:
        meta = obj.get("metadata") or {}
        labels = meta.get("labels") or {}
        shared = [k for k in selector if k in labels]
        if not shared or matches_equality(selector, labels):
            continue
        mismatched = {k: (str(selector[k]), str(labels.get(k)) if k in labels else None) for k in selector}
        mismatched = {k: v for k, v in mismatched.items() if v[0] != v[1]}
        out.append({"name": meta.get("name"), "labels": dict(labels), "mismatched": mismatched})
    return out
