"""
Domain models for the feed alert monitors.

Pydantic v2 models for the three upstream feed payloads, the normalized
``Snapshot`` handed to the alert engine, and the engine's output
(``Notification`` / ``EvaluationResult``).

Upstream field names follow the JSON the feeds actually return, including
the camelCase keys of the commute index (mapped with ``Field(alias=...)``).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Normalized snapshot (Signal Source -> Alert Engine)
# ---------------------------------------------------------------------------


class Entity(BaseModel):
    """One monitored subject in a snapshot.

    ``value`` is the comparable signal: a probability (float), an ordinal
    level (int) or a spike flag (bool). ``attributes`` carries the raw
    upstream record so the notifier can render it.
    """

    model_config = {"populate_by_name": True}

    key: str
    value: float | int | bool
    label: str = ""
    attributes: dict[str, Any] = {}


class Snapshot(BaseModel):
    """Atomic unit of evaluation: every entity a feed reported in one fetch.

    ``global_level`` is the auxiliary system-wide indicator checked by a
    policy's global gate (e.g. the spike feed's defcon level).
    """

    model_config = {"populate_by_name": True}

    source: str
    entities: list[Entity] = []
    global_level: float | None = None
    fetched_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )

    def keys(self) -> set[str]:
        return {e.key for e in self.entities}


# ---------------------------------------------------------------------------
# Engine output
# ---------------------------------------------------------------------------


class Notification(BaseModel):
    """An entity that requires a new notification this cycle."""

    model_config = {"populate_by_name": True}

    key: str
    tier: int
    tier_name: str
    previous_tier: int | None = None
    value: float | int | bool
    entity: Entity

    @property
    def is_escalation(self) -> bool:
        return self.previous_tier is not None


class EvaluationResult(BaseModel):
    """Outcome of one ``AlertEngine`` evaluation.

    ``notifications`` is the full batch for the cycle; message composition is
    left to the notifier. ``cadence_hint`` asks the poller to check again
    sooner than its base interval.
    """

    model_config = {"populate_by_name": True}

    notifications: list[Notification] = []
    cadence_hint: bool = False
    gate_open: bool = True
    suppressed: int = 0
    cleared: list[str] = []
    purged: list[str] = []


# ---------------------------------------------------------------------------
# Upstream: spike feed (dashboard-data)
# ---------------------------------------------------------------------------


class PizzaPlace(BaseModel):
    """A venue reported by the spike feed."""

    model_config = {"populate_by_name": True}

    place_id: str
    name: str = ""
    address: str = ""
    current_popularity: float | None = None
    is_spike: bool = False
    spike_magnitude: float | None = None
    percentage_of_usual: float | None = None
    recorded_at: str | None = None


class SpikeFeedResponse(BaseModel):
    """Body of the spike feed endpoint."""

    model_config = {"populate_by_name": True}

    success: bool
    data: list[PizzaPlace]
    defcon_level: int | None = None


# ---------------------------------------------------------------------------
# Upstream: probability index (neh-index/doomsday)
# ---------------------------------------------------------------------------


class NehMarket(BaseModel):
    """A prediction market with an event probability in [0, 1]."""

    model_config = {"populate_by_name": True}

    slug: str
    label: str = ""
    region: str = ""
    price: float = Field(ge=0.0, le=1.0)
    image: str | None = None


class NehResponse(BaseModel):
    """Body of the probability index endpoint."""

    model_config = {"populate_by_name": True}

    markets: list[NehMarket]
    timestamp: str | None = None


# ---------------------------------------------------------------------------
# Upstream: commute index
# ---------------------------------------------------------------------------


class CommuteTimeWindow(BaseModel):
    model_config = {"populate_by_name": True}

    label: str = ""
    hour_et: int | None = Field(default=None, alias="hourET")
    window: str = ""
    is_weekend: bool = Field(default=False, alias="isWeekend")


class Optempo(BaseModel):
    """Operational tempo reading. ``level`` 1 is the most severe, 5 is normal."""

    model_config = {"populate_by_name": True}

    level: int
    label: str = ""
    color: str = ""
    value: float | None = None
    description: str = ""
    time_window: CommuteTimeWindow = Field(
        default_factory=CommuteTimeWindow, alias="timeWindow"
    )


class CommuteResponse(BaseModel):
    """Body of the commute index endpoint."""

    model_config = {"populate_by_name": True}

    success: bool
    optempo: Optempo | None = None
    timestamp: str | None = None
