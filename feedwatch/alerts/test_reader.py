"""
Unit tests for the HTTP signal sources.

Validates:
1. Successful fetches are normalized into snapshots.
2. Transport errors, non-2xx statuses and undecodable bodies raise FetchError.
3. Bodies that fail validation or report ``success: false`` raise FetchError.
4. Duplicate entity keys are rejected instead of silently merged.
5. The spike feed defaults a missing global level to 5.
6. Commute payloads with camelCase keys parse into the optempo entity.
"""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import pytest
import requests

from feedwatch.alerts.reader import (
    COMMUTE_ENTITY_KEY,
    DEFAULT_DEFCON_LEVEL,
    CommuteIndexSource,
    FetchError,
    ProbabilityIndexSource,
    SpikeFeedSource,
)


# ---------------------------------------------------------------------------
# Fixtures & Helpers
# ---------------------------------------------------------------------------


def _make_response(body: Any = None, status: int = 200, bad_json: bool = False) -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.ok = 200 <= status < 300
    if bad_json:
        response.json.side_effect = ValueError("Expecting value")
    else:
        response.json.return_value = body
    return response


def _make_session(response: MagicMock | None = None, error: Exception | None = None) -> MagicMock:
    session = MagicMock(spec=requests.Session)
    if error is not None:
        session.get.side_effect = error
    else:
        session.get.return_value = response
    return session


def _place(place_id: str, is_spike: bool = True, **extra: Any) -> dict[str, Any]:
    return {
        "place_id": place_id,
        "name": f"Place {place_id}",
        "address": f"https://maps.example/{place_id}",
        "current_popularity": 80,
        "is_spike": is_spike,
        "spike_magnitude": 25,
        "percentage_of_usual": 140,
        "recorded_at": "2025-01-01T12:30:00Z",
        **extra,
    }


SPIKE_URL = "https://feeds.example/dashboard-data"
NEH_URL = "https://feeds.example/neh-index/doomsday"
COMMUTE_URL = "https://feeds.example/commute-index"


# ---------------------------------------------------------------------------
# Transport failures (shared by every source)
# ---------------------------------------------------------------------------


class TestTransportFailures:
    def test_request_exception(self) -> None:
        session = _make_session(error=requests.ConnectionError("connection refused"))
        source = SpikeFeedSource(SPIKE_URL, session=session)

        with pytest.raises(FetchError, match="request to"):
            source.fetch()

    def test_timeout(self) -> None:
        session = _make_session(error=requests.Timeout("read timed out"))
        with pytest.raises(FetchError):
            ProbabilityIndexSource(NEH_URL, session=session).fetch()

    def test_non_2xx_status(self) -> None:
        session = _make_session(_make_response(status=503))
        with pytest.raises(FetchError, match="status: 503"):
            SpikeFeedSource(SPIKE_URL, session=session).fetch()

    def test_invalid_json(self) -> None:
        session = _make_session(_make_response(bad_json=True))
        with pytest.raises(FetchError, match="not valid JSON"):
            CommuteIndexSource(COMMUTE_URL, session=session).fetch()

    def test_uses_configured_timeout(self) -> None:
        session = _make_session(_make_response({"markets": []}))
        ProbabilityIndexSource(NEH_URL, timeout=3.5, session=session).fetch()
        session.get.assert_called_once_with(NEH_URL, timeout=3.5)


# ---------------------------------------------------------------------------
# Spike feed
# ---------------------------------------------------------------------------


class TestSpikeFeedSource:
    def test_parses_places(self) -> None:
        body = {
            "success": True,
            "data": [_place("a"), _place("b", is_spike=False)],
            "defcon_level": 2,
        }
        snapshot = SpikeFeedSource(SPIKE_URL, session=_make_session(_make_response(body))).fetch()

        assert snapshot.source == "spikes"
        assert snapshot.global_level == 2
        assert [e.key for e in snapshot.entities] == ["a", "b"]
        assert snapshot.entities[0].value is True
        assert snapshot.entities[1].value is False
        assert snapshot.entities[0].label == "Place a"
        assert snapshot.entities[0].attributes["spike_magnitude"] == 25

    def test_missing_defcon_defaults(self) -> None:
        body = {"success": True, "data": [_place("a")]}
        snapshot = SpikeFeedSource(SPIKE_URL, session=_make_session(_make_response(body))).fetch()
        assert snapshot.global_level == DEFAULT_DEFCON_LEVEL == 5

    def test_null_defcon_defaults(self) -> None:
        body = {"success": True, "data": [], "defcon_level": None}
        snapshot = SpikeFeedSource(SPIKE_URL, session=_make_session(_make_response(body))).fetch()
        assert snapshot.global_level == 5

    def test_success_false(self) -> None:
        body = {"success": False, "data": []}
        with pytest.raises(FetchError, match="Invalid API response format"):
            SpikeFeedSource(SPIKE_URL, session=_make_session(_make_response(body))).fetch()

    def test_missing_data_fails_validation(self) -> None:
        with pytest.raises(FetchError, match="validation"):
            SpikeFeedSource(
                SPIKE_URL, session=_make_session(_make_response({"success": True}))
            ).fetch()

    def test_duplicate_keys_rejected(self) -> None:
        body = {"success": True, "data": [_place("a"), _place("a")]}
        with pytest.raises(FetchError, match="duplicate"):
            SpikeFeedSource(SPIKE_URL, session=_make_session(_make_response(body))).fetch()


# ---------------------------------------------------------------------------
# Probability index
# ---------------------------------------------------------------------------


class TestProbabilityIndexSource:
    def test_parses_markets(self) -> None:
        body = {
            "markets": [
                {"slug": "m1", "label": "Market One", "region": "EU", "price": 0.7},
                {"slug": "m2", "label": "Market Two", "region": "ME", "price": 0.1},
            ],
            "timestamp": "2025-01-01T00:00:00Z",
        }
        snapshot = ProbabilityIndexSource(
            NEH_URL, session=_make_session(_make_response(body))
        ).fetch()

        assert snapshot.source == "probabilities"
        assert snapshot.global_level is None
        assert {e.key: e.value for e in snapshot.entities} == {"m1": 0.7, "m2": 0.1}
        assert snapshot.entities[0].label == "Market One"

    def test_empty_market_list(self) -> None:
        snapshot = ProbabilityIndexSource(
            NEH_URL, session=_make_session(_make_response({"markets": []}))
        ).fetch()
        assert snapshot.entities == []

    def test_probability_out_of_range(self) -> None:
        body = {"markets": [{"slug": "m1", "price": 1.7}]}
        with pytest.raises(FetchError):
            ProbabilityIndexSource(NEH_URL, session=_make_session(_make_response(body))).fetch()

    def test_body_is_not_an_object(self) -> None:
        with pytest.raises(FetchError):
            ProbabilityIndexSource(
                NEH_URL, session=_make_session(_make_response(["not", "an", "object"]))
            ).fetch()


# ---------------------------------------------------------------------------
# Commute index
# ---------------------------------------------------------------------------


class TestCommuteIndexSource:
    def test_parses_optempo(self) -> None:
        body = {
            "success": True,
            "optempo": {
                "level": 3,
                "label": "Elevated",
                "color": "#ff0",
                "value": 1.8,
                "description": "Above-normal evening activity",
                "timeWindow": {
                    "label": "Evening",
                    "hourET": 19,
                    "window": "evening",
                    "isWeekend": False,
                },
            },
            "timestamp": "2025-01-01T00:00:00Z",
        }
        snapshot = CommuteIndexSource(
            COMMUTE_URL, session=_make_session(_make_response(body))
        ).fetch()

        assert snapshot.source == "commute"
        assert len(snapshot.entities) == 1
        entity = snapshot.entities[0]
        assert entity.key == COMMUTE_ENTITY_KEY
        assert entity.value == 3
        assert entity.label == "Elevated"
        assert entity.attributes["time_window"]["label"] == "Evening"
        assert entity.attributes["time_window"]["hour_et"] == 19

    def test_success_false(self) -> None:
        body = {"success": False, "optempo": {"level": 3}}
        with pytest.raises(FetchError, match="Invalid Commute API response"):
            CommuteIndexSource(COMMUTE_URL, session=_make_session(_make_response(body))).fetch()

    def test_missing_optempo(self) -> None:
        with pytest.raises(FetchError, match="Invalid Commute API response"):
            CommuteIndexSource(
                COMMUTE_URL, session=_make_session(_make_response({"success": True}))
            ).fetch()
