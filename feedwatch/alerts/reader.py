"""
Signal sources: HTTP readers for the upstream feeds.

Each source fetches one JSON document and converts it into a normalized
``Snapshot``. Any failure -- network error, timeout, non-2xx status,
undecodable JSON, a body that fails validation, an explicit
``success: false`` or duplicate entity keys -- surfaces as ``FetchError``.
A source never returns a partial snapshot.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import requests
from pydantic import BaseModel, ValidationError

from feedwatch.alerts.models import (
    CommuteResponse,
    Entity,
    NehResponse,
    Snapshot,
    SpikeFeedResponse,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0

# Spike feed omits the global level when things are quiet; 5 is "normal".
DEFAULT_DEFCON_LEVEL = 5

COMMUTE_ENTITY_KEY = "optempo"


# ---------------------------------------------------------------------------
# Custom Exceptions
# ---------------------------------------------------------------------------


class FetchError(Exception):
    """Raised when a feed cannot be fetched or its body is unusable.

    The monitor catches this at the cycle boundary, logs it and leaves its
    alert state untouched until the next scheduled cycle.
    """

    pass


# ---------------------------------------------------------------------------
# Source Interface
# ---------------------------------------------------------------------------


class SignalSource(ABC):
    """Abstract base for anything that produces snapshots."""

    name: str = "source"

    @abstractmethod
    def fetch(self) -> Snapshot:
        """Fetch the current snapshot.

        Raises
        ------
        FetchError
            On any transport, status or shape problem.
        """
        ...


class HttpJsonSource(SignalSource):
    """Shared GET-and-validate logic for JSON feeds.

    Parameters
    ----------
    url : str
        Feed endpoint.
    timeout : float
        Per-request timeout in seconds.
    session : requests.Session or None
        Injected session; one is created when omitted.
    """

    response_model: type[BaseModel]

    def __init__(
        self,
        url: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ) -> None:
        self.url = url
        self._timeout = timeout
        self._session = session or requests.Session()

    def fetch(self) -> Snapshot:
        body = self._get_json()
        try:
            parsed = self.response_model.model_validate(body)
        except ValidationError as exc:
            raise FetchError(
                f"{self.name}: response failed validation: "
                f"{exc.error_count()} error(s): {exc.errors()[0]['msg']}"
            ) from exc

        snapshot = self._to_snapshot(parsed)
        _ensure_unique_keys(self.name, snapshot)
        logger.debug(
            "%s: fetched %d entities (global_level=%s)",
            self.name,
            len(snapshot.entities),
            snapshot.global_level,
        )
        return snapshot

    def _get_json(self) -> Any:
        try:
            response = self._session.get(self.url, timeout=self._timeout)
        except requests.RequestException as exc:
            raise FetchError(f"{self.name}: request to {self.url} failed: {exc}") from exc

        if not response.ok:
            raise FetchError(
                f"{self.name}: HTTP error! status: {response.status_code}"
            )

        try:
            return response.json()
        except ValueError as exc:
            raise FetchError(f"{self.name}: response body is not valid JSON") from exc

    @abstractmethod
    def _to_snapshot(self, parsed: Any) -> Snapshot:
        ...


def _ensure_unique_keys(name: str, snapshot: Snapshot) -> None:
    seen: set[str] = set()
    for entity in snapshot.entities:
        if entity.key in seen:
            raise FetchError(f"{name}: duplicate entity key {entity.key!r} in snapshot")
        seen.add(entity.key)


# ---------------------------------------------------------------------------
# Concrete Sources
# ---------------------------------------------------------------------------


class SpikeFeedSource(HttpJsonSource):
    """Venue traffic spikes; one boolean entity per venue."""

    name = "spikes"
    response_model = SpikeFeedResponse

    def _to_snapshot(self, parsed: SpikeFeedResponse) -> Snapshot:
        if not parsed.success:
            raise FetchError(f"{self.name}: Invalid API response format")

        entities = [
            Entity(
                key=place.place_id,
                value=place.is_spike,
                label=place.name,
                attributes=place.model_dump(),
            )
            for place in parsed.data
        ]
        return Snapshot(
            source=self.name,
            entities=entities,
            global_level=parsed.defcon_level or DEFAULT_DEFCON_LEVEL,
        )


class ProbabilityIndexSource(HttpJsonSource):
    """Prediction-market probabilities; one entity per market slug."""

    name = "probabilities"
    response_model = NehResponse

    def _to_snapshot(self, parsed: NehResponse) -> Snapshot:
        entities = [
            Entity(
                key=market.slug,
                value=market.price,
                label=market.label,
                attributes=market.model_dump(),
            )
            for market in parsed.markets
        ]
        return Snapshot(source=self.name, entities=entities)


class CommuteIndexSource(HttpJsonSource):
    """Commute-derived operational tempo; a single ordinal level."""

    name = "commute"
    response_model = CommuteResponse

    def _to_snapshot(self, parsed: CommuteResponse) -> Snapshot:
        if not parsed.success or parsed.optempo is None:
            raise FetchError(f"{self.name}: Invalid Commute API response")

        optempo = parsed.optempo
        entity = Entity(
            key=COMMUTE_ENTITY_KEY,
            value=optempo.level,
            label=optempo.label,
            attributes=optempo.model_dump(),
        )
        return Snapshot(source=self.name, entities=[entity])
