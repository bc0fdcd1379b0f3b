"""
Core alert logic.

This package contains the threshold policies, the alert state store and the
engine that combines them.

Public API:
    - ``AlertEngine`` -- Evaluates snapshots (``evaluate``) and scalar levels
      (``evaluate_escalation``).
    - ``AlertStore`` -- Per-entity high-water marks.
    - ``BandedProbabilityPolicy`` / ``OrdinalLevelPolicy`` /
      ``BooleanFlagPolicy`` -- Classification strategies.
    - ``GlobalGate`` -- Auxiliary condition for notification emission.
    - ``PolicyConfigError`` -- Raised for inconsistent policy settings.
"""

from feedwatch.alerts.logic.evaluator import ESCALATION_KEY, AlertEngine
from feedwatch.alerts.logic.policy import (
    BandedProbabilityPolicy,
    BooleanFlagPolicy,
    GlobalGate,
    OrdinalLevelPolicy,
    PolicyConfigError,
    ThresholdPolicy,
)
from feedwatch.alerts.logic.store import AlertStore

__all__ = [
    "AlertEngine",
    "AlertStore",
    "ESCALATION_KEY",
    "BandedProbabilityPolicy",
    "BooleanFlagPolicy",
    "GlobalGate",
    "OrdinalLevelPolicy",
    "PolicyConfigError",
    "ThresholdPolicy",
]
