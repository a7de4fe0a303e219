"""
Variable merging for product rollouts.
"""
from typing import Dict, Mapping, Optional

from stackgo.schemas.catalog import StackDefinition


def _put(merged: Dict[str, str], keys: Dict[str, str], name: str, value: str) -> None:
    # Keys compare case-insensitively; the first spelling seen is kept
    key = keys.setdefault(name.lower(), name)
    merged[key] = value


def merge_variables(
    stack: StackDefinition,
    existing: Optional[Mapping[str, str]] = None,
    shared: Optional[Mapping[str, str]] = None,
    per_stack: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """
    Merge the variables of one stack.

    Precedence, lowest first: stack defaults, values of the existing
    deployment (upgrades only), product-level shared variables, per-stack
    overrides. Defaults that are empty are skipped.
    """
    merged: Dict[str, str] = {}
    keys: Dict[str, str] = {}

    for variable in stack.variables:
        if variable.default_value:
            _put(merged, keys, variable.name, variable.default_value)

    for layer in (existing, shared, per_stack):
        for name, value in (layer or {}).items():
            _put(merged, keys, name, value)

    return merged
