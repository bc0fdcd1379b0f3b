"""
Threshold policies for the alert engine.

A policy is a pure, stateless classifier. It maps a raw signal value to an
integer *tier* and defines how tiers compare (``is_more_severe``), when a
tracked high-water mark may be cleared (``should_clear``) and whether a value
sits in the "watch more closely" band that drives adaptive polling.

Variants:
    - ``BandedProbabilityPolicy`` -- ``none / elevated / critical`` from
      ascending cutoffs over a probability, with a hysteresis margin.
    - ``OrdinalLevelPolicy`` -- the tiers are the levels themselves; the
      severity direction is an explicit property of the policy.
    - ``BooleanFlagPolicy`` -- ``inactive / active``.

Every policy validates itself on construction and raises
``PolicyConfigError`` so misconfiguration fails at startup, never during
evaluation.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from itertools import permutations
from typing import Callable, Sequence

logger = logging.getLogger(__name__)


class PolicyConfigError(ValueError):
    """Raised when a policy or gate is constructed with inconsistent settings."""

    pass


# ---------------------------------------------------------------------------
# Global Gate
# ---------------------------------------------------------------------------


class GlobalGate:
    """Auxiliary system-wide condition a crossing must satisfy to notify.

    The gate only controls notification emission; tracked state is updated
    either way. With ``clear_on_closed`` the engine additionally discards all
    tracked state while the gate is closed, so every still-active entity is
    notified fresh once the gate reopens.

    Parameters
    ----------
    name : str
        Human-readable description used in log lines.
    predicate : callable
        ``predicate(global_level) -> bool``; True means the gate is open.
    clear_on_closed : bool
        Reset the store whenever the gate is evaluated closed.
    default_level : float or None
        Level assumed when a snapshot carries no global indicator.
    """

    def __init__(
        self,
        name: str,
        predicate: Callable[[float], bool],
        clear_on_closed: bool = False,
        default_level: float | None = None,
    ) -> None:
        if not callable(predicate):
            raise PolicyConfigError(f"Gate '{name}' predicate is not callable")
        self.name = name
        self._predicate = predicate
        self.clear_on_closed = clear_on_closed
        self.default_level = default_level

    @classmethod
    def at_most(
        cls, bound: float, clear_on_closed: bool = False, default_level: float | None = None
    ) -> GlobalGate:
        """Gate that is open while the global level is ``<= bound``."""
        return cls(
            name=f"global level <= {bound:g}",
            predicate=lambda level: level <= bound,
            clear_on_closed=clear_on_closed,
            default_level=default_level,
        )

    def is_open(self, global_level: float | None) -> bool:
        level = global_level if global_level is not None else self.default_level
        if level is None:
            # No indicator at all: nothing to hold the crossing back.
            return True
        return bool(self._predicate(level))

    def __repr__(self) -> str:
        return f"GlobalGate({self.name!r}, clear_on_closed={self.clear_on_closed})"


# ---------------------------------------------------------------------------
# Policy Interface
# ---------------------------------------------------------------------------


class ThresholdPolicy(ABC):
    """Abstract base for value -> tier classification."""

    #: Tier meaning "nothing happening".
    floor: int = 0
    hysteresis_margin: float = 0.0
    gate: GlobalGate | None = None

    @abstractmethod
    def classify(self, value: float) -> int:
        """Map a raw value to its tier."""
        ...

    @abstractmethod
    def is_more_severe(self, a: int, b: int) -> bool:
        """Return True if tier ``a`` is strictly more severe than tier ``b``."""
        ...

    @abstractmethod
    def tier_name(self, tier: int) -> str:
        ...

    def is_alerting(self, tier: int) -> bool:
        """True if ``tier`` is above the no-alert floor."""
        return self.is_more_severe(tier, self.floor)

    def should_clear(self, value: float, previous_tier: int) -> bool:
        """Whether a value at the floor has receded far enough to drop the record."""
        return not self.is_alerting(self.classify(value))

    def in_watch_band(self, value: float) -> bool:
        """Whether ``value`` is "happening but not yet happened"."""
        return False

    def gate_open(self, global_level: float | None) -> bool:
        if self.gate is None:
            return True
        return self.gate.is_open(global_level)


# ---------------------------------------------------------------------------
# Banded Probability
# ---------------------------------------------------------------------------

NONE = 0
ELEVATED = 1
CRITICAL = 2

_DEFAULT_BAND_NAMES = ("none", "elevated", "critical")


class BandedProbabilityPolicy(ThresholdPolicy):
    """Probability in [0, 1] split into bands by ascending cutoffs.

    ``value >= cutoffs[i]`` reaches tier ``i + 1``. A tracked tier is cleared
    only once the value falls strictly below that tier's cutoff minus the
    hysteresis margin, so a value wobbling just under the boundary neither
    clears nor re-notifies.

    Parameters
    ----------
    cutoffs : sequence of float
        Strictly ascending boundaries within (0, 1].
    margin : float
        Hysteresis margin; must be non-negative and smaller than the lowest
        cutoff.
    names : sequence of str
        One name per tier, floor first.
    gate : GlobalGate or None
        Optional global gate.
    """

    def __init__(
        self,
        cutoffs: Sequence[float] = (0.65, 0.99),
        margin: float = 0.10,
        names: Sequence[str] = _DEFAULT_BAND_NAMES,
        gate: GlobalGate | None = None,
    ) -> None:
        cutoffs = tuple(float(c) for c in cutoffs)
        if not cutoffs:
            raise PolicyConfigError("Banded policy needs at least one cutoff")
        if any(c <= 0.0 or c > 1.0 for c in cutoffs):
            raise PolicyConfigError(f"Cutoffs must lie in (0, 1]: {cutoffs}")
        if any(b <= a for a, b in zip(cutoffs, cutoffs[1:])):
            raise PolicyConfigError(f"Cutoffs must be strictly ascending: {cutoffs}")
        if margin < 0.0 or margin >= cutoffs[0]:
            raise PolicyConfigError(
                f"Hysteresis margin {margin} must be in [0, {cutoffs[0]})"
            )
        if len(names) != len(cutoffs) + 1:
            raise PolicyConfigError(
                f"Expected {len(cutoffs) + 1} tier names, got {len(names)}"
            )

        self.cutoffs = cutoffs
        self.hysteresis_margin = float(margin)
        self.names = tuple(names)
        self.gate = gate
        self.floor = NONE

    def classify(self, value: float) -> int:
        tier = NONE
        for i, cutoff in enumerate(self.cutoffs):
            if value >= cutoff:
                tier = i + 1
        return tier

    def is_more_severe(self, a: int, b: int) -> bool:
        return a > b

    def tier_name(self, tier: int) -> str:
        if 0 <= tier < len(self.names):
            return self.names[tier]
        return str(tier)

    def boundary(self, tier: int) -> float:
        """Lower cutoff of ``tier``; the floor has boundary 0."""
        if tier <= NONE:
            return 0.0
        return self.cutoffs[min(tier, len(self.cutoffs)) - 1]

    def should_clear(self, value: float, previous_tier: int) -> bool:
        return value < self.boundary(previous_tier) - self.hysteresis_margin

    def in_watch_band(self, value: float) -> bool:
        return self.cutoffs[0] < value < self.cutoffs[-1]

    def __repr__(self) -> str:
        return (
            f"BandedProbabilityPolicy(cutoffs={self.cutoffs}, "
            f"margin={self.hysteresis_margin})"
        )


# ---------------------------------------------------------------------------
# Ordinal Level
# ---------------------------------------------------------------------------


class OrdinalLevelPolicy(ThresholdPolicy):
    """Ordinal severity scale where the tiers are the levels themselves.

    The direction of the scale is explicit: with ``lower_is_worse`` (the
    default, e.g. defcon-style 1..5) level 1 is the most severe and
    ``is_more_severe(a, b)`` is ``a < b``. A level alerts when it is at or
    beyond ``ceiling`` in the severe direction.

    Parameters
    ----------
    levels : sequence of int
        Every level the scale can report.
    ceiling : int
        Least severe level that still alerts.
    lower_is_worse : bool
        Severity direction of the scale.
    baseline : int or None
        Level assumed before anything was observed. Defaults to the least
        severe level.
    names : dict or None
        Optional display names per level.
    comparator : callable or None
        Custom ``(a, b) -> bool`` "more severe" predicate. Validated to be a
        strict total order over ``levels``.
    """

    def __init__(
        self,
        levels: Sequence[int] = (1, 2, 3, 4, 5),
        ceiling: int = 4,
        lower_is_worse: bool = True,
        baseline: int | None = None,
        names: dict[int, str] | None = None,
        comparator: Callable[[int, int], bool] | None = None,
        gate: GlobalGate | None = None,
    ) -> None:
        levels = tuple(sorted(set(int(lv) for lv in levels)))
        if len(levels) < 2:
            raise PolicyConfigError("Ordinal policy needs at least two levels")
        if ceiling not in levels:
            raise PolicyConfigError(f"Ceiling {ceiling} is not one of {levels}")

        self.levels = levels
        self.lower_is_worse = lower_is_worse
        if comparator is None:
            if lower_is_worse:
                comparator = _lower_is_worse
            else:
                comparator = _higher_is_worse
        self._more_severe = comparator
        _validate_strict_order(levels, comparator)

        # Least severe and most severe levels under the comparator.
        self.least_severe = min(
            levels, key=lambda lv: sum(comparator(lv, o) for o in levels)
        )
        self.most_severe = max(
            levels, key=lambda lv: sum(comparator(lv, o) for o in levels)
        )

        if baseline is None:
            baseline = self.least_severe
        if baseline not in levels:
            raise PolicyConfigError(f"Baseline {baseline} is not one of {levels}")
        if ceiling == self.least_severe:
            raise PolicyConfigError(
                f"Ceiling {ceiling} is the least severe level; every reading would alert"
            )

        self.ceiling = ceiling
        self.baseline = baseline
        self.floor = self.least_severe
        self.names = dict(names or {})
        self.gate = gate

    def classify(self, value: float) -> int:
        return int(value)

    def is_more_severe(self, a: int, b: int) -> bool:
        return bool(self._more_severe(a, b))

    def is_alerting(self, tier: int) -> bool:
        return tier == self.ceiling or self.is_more_severe(tier, self.ceiling)

    def should_clear(self, value: float, previous_tier: int) -> bool:
        return not self.is_alerting(self.classify(value))

    def in_watch_band(self, value: float) -> bool:
        level = self.classify(value)
        return self.is_alerting(level) and level != self.most_severe

    def tier_name(self, tier: int) -> str:
        return self.names.get(tier, str(tier))

    def __repr__(self) -> str:
        direction = "lower" if self.lower_is_worse else "higher"
        return (
            f"OrdinalLevelPolicy(levels={self.levels}, ceiling={self.ceiling}, "
            f"{direction}_is_worse)"
        )


def _lower_is_worse(a: int, b: int) -> bool:
    return a < b


def _higher_is_worse(a: int, b: int) -> bool:
    return a > b


def _validate_strict_order(
    levels: Sequence[int], more_severe: Callable[[int, int], bool]
) -> None:
    """Reject comparators that are not a strict total order over ``levels``."""
    for lv in levels:
        if more_severe(lv, lv):
            raise PolicyConfigError(f"Comparator is not irreflexive at level {lv}")
    for a, b in permutations(levels, 2):
        ab, ba = bool(more_severe(a, b)), bool(more_severe(b, a))
        if ab and ba:
            raise PolicyConfigError(f"Comparator is not asymmetric for {a}, {b}")
        if not ab and not ba:
            raise PolicyConfigError(f"Comparator leaves {a} and {b} unordered")
    for a, b, c in permutations(levels, 3):
        if more_severe(a, b) and more_severe(b, c) and not more_severe(a, c):
            raise PolicyConfigError(
                f"Comparator is not transitive: {a} > {b} > {c} but not {a} > {c}"
            )


# ---------------------------------------------------------------------------
# Boolean Flag
# ---------------------------------------------------------------------------

INACTIVE = 0
ACTIVE = 1


class BooleanFlagPolicy(ThresholdPolicy):
    """Presence/absence signal such as a spike flag. No intermediate bands."""

    def __init__(self, gate: GlobalGate | None = None) -> None:
        self.gate = gate
        self.floor = INACTIVE

    def classify(self, value: float) -> int:
        return ACTIVE if value else INACTIVE

    def is_more_severe(self, a: int, b: int) -> bool:
        return a > b

    def tier_name(self, tier: int) -> str:
        return "active" if tier == ACTIVE else "inactive"

    def __repr__(self) -> str:
        return f"BooleanFlagPolicy(gate={self.gate!r})"
