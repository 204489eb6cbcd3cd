"""Control plane logging facilities and desired/observed state diffing.

The universe of facilities is closed and ordered. Operators declare the
facilities they want enabled; everything else in the universe is disabled.

EXPANSION RULES:
- "all" or "*" anywhere in the declared list replaces the whole list with the
  universe in canonical order (wildcards are absolute, not additive)
- every remaining entry must belong to the universe, checked on every call

DIFF RULES:
- an update is required iff the observed enabled set differs from the desired
  enabled set (set equality, list order is irrelevant)
- the disabled side is always universe minus desired, never derived from the
  observed disabled set
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

SUPPORTED_LOGGING_TYPES: tuple[str, ...] = (
    "api",
    "audit",
    "authenticator",
    "controllerManager",
    "scheduler",
)

WILDCARD_TOKENS: frozenset[str] = frozenset({"all", "*"})


class UnknownFacilityError(ValueError):
    """Raised when a declared facility is not part of the universe."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f'log type "{name}" is unknown')


@dataclass(frozen=True)
class ObservedFacilityState:
    """Facilities reported by the provider for one reconciliation cycle."""

    enabled: frozenset[str] = field(default_factory=frozenset)
    disabled: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class FacilityDiff:
    """Result of comparing desired against observed facilities.

    Attributes:
        to_enable: Desired enabled facilities, in declared order.
        to_disable: Universe minus desired, in universe order.
        changed: Whether the observed enabled set differs from the desired one.
    """

    to_enable: tuple[str, ...]
    to_disable: tuple[str, ...]
    changed: bool


def expand_facilities(
    declared: Sequence[str],
    universe: Sequence[str] = SUPPORTED_LOGGING_TYPES,
) -> list[str]:
    """Expand wildcards and validate a declared facility list.

    Args:
        declared: Facility names as written by the operator.
        universe: Ordered set of known facilities.

    Returns:
        The expanded list. Without wildcards this is the declared list unchanged.

    Raises:
        UnknownFacilityError: For the first entry that is not in the universe.
    """
    if any(name in WILDCARD_TOKENS for name in declared):
        expanded = list(universe)
    else:
        expanded = list(declared)

    known = set(universe)
    for name in expanded:
        if name not in known:
            raise UnknownFacilityError(name)

    return expanded


def derive_disabled(
    enabled: Iterable[str],
    universe: Sequence[str] = SUPPORTED_LOGGING_TYPES,
) -> tuple[str, ...]:
    """Return universe minus enabled, in universe order."""
    enabled_set = set(enabled)
    return tuple(name for name in universe if name not in enabled_set)


def _unique(names: Iterable[str]) -> tuple[str, ...]:
    seen: set[str] = set()
    ordered = []
    for name in names:
        if name not in seen:
            seen.add(name)
            ordered.append(name)
    return tuple(ordered)


def reconcile(
    observed: ObservedFacilityState,
    desired_enabled: Sequence[str],
    universe: Sequence[str] = SUPPORTED_LOGGING_TYPES,
) -> FacilityDiff:
    """Compute the update needed to move observed facilities to desired ones.

    Args:
        observed: Enabled/disabled sets fetched from the provider.
        desired_enabled: Expanded desired list (see expand_facilities).
        universe: Ordered set of known facilities.

    Returns:
        FacilityDiff with the full enable/disable lists for an update call.
    """
    to_enable = _unique(desired_enabled)
    to_disable = derive_disabled(to_enable, universe)
    changed = set(observed.enabled) != set(to_enable)
    return FacilityDiff(to_enable=to_enable, to_disable=to_disable, changed=changed)


def describe_types(verb: str, types: Sequence[str]) -> str:
    """Render "enable types: a, b", "no types to enable" or "no types enabled"."""
    if not types:
        if verb.endswith("ed"):
            return f"no types {verb}"
        return f"no types to {verb}"
    return f"{verb} types: {', '.join(types)}"
