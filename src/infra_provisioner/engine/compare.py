"""Attribute comparison used by the reconciler."""

from __future__ import annotations

from typing import Any


def values_differ(desired: Any, prior: Any) -> bool:
    """Check whether a desired value differs from the prior (stored) value.

    - For dict values, only keys present in *desired* are compared; extra
      keys present only in *prior* (provider-added defaults) are ignored.
    - Non-dict values use strict equality.
    """
    if isinstance(desired, dict) and isinstance(prior, dict):
        return any(values_differ(v, prior.get(k)) for k, v in desired.items())
    return desired != prior


def attribute_diff(desired: dict[str, Any], prior: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Per-key ``{"from": ..., "to": ...}`` for every changed or removed key."""
    diff = {
        k: {"from": prior.get(k), "to": v}
        for k, v in desired.items()
        if values_differ(v, prior.get(k))
    }
    for k in prior.keys() - desired.keys():
        diff[k] = {"from": prior[k], "to": None}
    return diff
