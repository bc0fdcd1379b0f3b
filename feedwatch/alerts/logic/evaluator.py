"""
Core alert engine.

``AlertEngine.evaluate`` consumes one ``Snapshot`` together with the
monitor's ``AlertStore`` and ``ThresholdPolicy`` and decides, per entity,
whether a crossing is new (notify), a duplicate (suppress), an escalation
(notify and raise the mark) or has receded (clear silently).

Per-entity rules:
    1. ``tier = policy.classify(value)``; ``previous = store.get(key)``.
    2. Alerting tier:
       - no previous mark, or strictly more severe than it -> notify at
         ``tier`` and ``store.upsert(key, tier)``;
       - otherwise nothing. An entity oscillating within an already
         notified band never re-fires.
    3. Floor tier:
       - previous mark and ``policy.should_clear`` -> ``store.clear(key)``,
         never with a notification;
       - otherwise the mark is kept (hysteresis guard).
    4. Keys missing from the snapshot are purged.
    5. Cadence hint is True iff any entity sits in the policy's watch band.
    6. A closed global gate discards the cycle's notifications but keeps the
       store updates; gates with ``clear_on_closed`` also reset the store.

``AlertEngine.evaluate_escalation`` is the scalar, escalation-only variant:
a single level compared against the last observed level, notifying only on
a strictly worse level at or beyond the policy ceiling.
"""

from __future__ import annotations

import logging

from feedwatch.alerts.logic.policy import OrdinalLevelPolicy, ThresholdPolicy
from feedwatch.alerts.logic.store import AlertStore
from feedwatch.alerts.models import (
    Entity,
    EvaluationResult,
    Notification,
    Snapshot,
)

logger = logging.getLogger(__name__)

# Store key used by escalation-only trackers.
ESCALATION_KEY = "level"


class AlertEngine:
    """Stateless evaluator; all state lives in the ``AlertStore`` passed in."""

    def evaluate(
        self,
        snapshot: Snapshot,
        store: AlertStore,
        policy: ThresholdPolicy,
    ) -> EvaluationResult:
        """Evaluate one snapshot against tracked state.

        Mutates ``store`` in place and returns the batch of notifications for
        this cycle along with the cadence hint.

        Parameters
        ----------
        snapshot : Snapshot
            All entities reported by the source in one fetch.
        store : AlertStore
            High-water marks from previous cycles.
        policy : ThresholdPolicy
            Classification and comparison rules.

        Returns
        -------
        EvaluationResult
        """
        notifications: list[Notification] = []
        cleared: list[str] = []
        cadence_hint = False

        for entity in snapshot.entities:
            tier = policy.classify(entity.value)
            previous = store.get(entity.key)

            if policy.in_watch_band(entity.value):
                cadence_hint = True

            if policy.is_alerting(tier):
                if previous is None or policy.is_more_severe(tier, previous):
                    notifications.append(
                        _build_notification(entity, tier, previous, policy)
                    )
                    store.upsert(entity.key, tier)
                    logger.debug(
                        "%s: %s crossed into %s (previous=%s, value=%s)",
                        snapshot.source,
                        entity.key,
                        policy.tier_name(tier),
                        previous,
                        entity.value,
                    )
                continue

            if previous is not None and policy.should_clear(entity.value, previous):
                store.clear(entity.key)
                cleared.append(entity.key)
                logger.info(
                    "%s: clearing alert for %s (value=%s, was %s, margin=%s)",
                    snapshot.source,
                    entity.key,
                    entity.value,
                    policy.tier_name(previous),
                    policy.hysteresis_margin,
                )

        purged = store.purge_missing(snapshot.keys())

        gate_open = policy.gate_open(snapshot.global_level)
        suppressed = 0
        if not gate_open:
            suppressed = len(notifications)
            if suppressed:
                logger.info(
                    "%s: gate '%s' closed at global level %s; suppressing %d notification(s)",
                    snapshot.source,
                    policy.gate.name if policy.gate else "",
                    snapshot.global_level,
                    suppressed,
                )
            notifications = []
            if policy.gate is not None and policy.gate.clear_on_closed:
                store.reset()

        return EvaluationResult(
            notifications=notifications,
            cadence_hint=cadence_hint,
            gate_open=gate_open,
            suppressed=suppressed,
            cleared=cleared,
            purged=purged,
        )

    def evaluate_escalation(
        self,
        snapshot: Snapshot,
        store: AlertStore,
        policy: OrdinalLevelPolicy,
        key: str = ESCALATION_KEY,
    ) -> EvaluationResult:
        """Escalation-only evaluation of a single ordinal level.

        The snapshot must hold exactly one entity. The tracked level defaults
        to ``policy.baseline`` and is always replaced by the current level,
        improvements included; it is never purged.

        Raises
        ------
        ValueError
            If the snapshot does not contain exactly one entity.
        """
        if len(snapshot.entities) != 1:
            raise ValueError(
                f"Escalation evaluation expects one entity, got {len(snapshot.entities)}"
            )

        entity = snapshot.entities[0]
        level = policy.classify(entity.value)
        previous = store.get(key)
        if previous is None:
            previous = policy.baseline

        notifications: list[Notification] = []
        if policy.is_more_severe(level, previous) and policy.is_alerting(level):
            logger.info(
                "%s: level escalated from %s to %s", snapshot.source, previous, level
            )
            notifications.append(_build_notification(entity, level, previous, policy))
        elif policy.is_more_severe(previous, level):
            logger.info(
                "%s: level improved from %s to %s", snapshot.source, previous, level
            )
        else:
            logger.debug("%s: level unchanged at %s", snapshot.source, level)

        store.track(key, level)

        gate_open = policy.gate_open(snapshot.global_level)
        suppressed = 0
        if not gate_open:
            suppressed = len(notifications)
            notifications = []

        return EvaluationResult(
            notifications=notifications,
            cadence_hint=policy.in_watch_band(level),
            gate_open=gate_open,
            suppressed=suppressed,
        )


def _build_notification(
    entity: Entity,
    tier: int,
    previous: int | None,
    policy: ThresholdPolicy,
) -> Notification:
    return Notification(
        key=entity.key,
        tier=tier,
        tier_name=policy.tier_name(tier),
        previous_tier=previous,
        value=entity.value,
        entity=entity,
    )
