"""
Webhook notifier and message renderers.

``WebhookNotifier.send`` POSTs a Discord-compatible ``{"content": text}``
body. A missing destination degrades to a logged no-op; transport failures
raise ``DeliveryError``, which the monitor logs and swallows. A batch is
never retried or re-queued.

Renderers turn one cycle's ``EvaluationResult`` into a single message.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

import requests

from feedwatch.alerts.models import (
    Entity,
    EvaluationResult,
    Notification,
    Snapshot,
)

logger = logging.getLogger(__name__)

SOURCE_LINK = "https://www.pizzint.watch/"
MARKET_LINK = "https://polymarket.com/event/{slug}"

#: ``renderer(result, snapshot) -> str``
Renderer = Callable[[EvaluationResult, Snapshot], str]


class DeliveryError(Exception):
    """Raised when the webhook rejects a message or cannot be reached."""

    pass


class WebhookNotifier:
    """Posts rendered text to a chat webhook.

    Parameters
    ----------
    url : str or None
        Webhook destination. ``None``/empty makes ``send`` a logged no-op.
    timeout : float
        Request timeout in seconds.
    session : requests.Session or None
        Injected session; one is created when omitted.
    """

    def __init__(
        self,
        url: str | None,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self._url = url or None
        self._timeout = timeout
        self._session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return self._url is not None

    def send(self, text: str) -> bool:
        """Deliver ``text``.

        Returns
        -------
        bool
            True if the webhook accepted the message, False if no destination
            is configured or ``text`` is empty.

        Raises
        ------
        DeliveryError
            On network errors or a non-2xx response.
        """
        if not self._url:
            logger.error("DISCORD_WEBHOOK_URL is not set; dropping notification")
            return False
        if not text:
            return False

        try:
            response = self._session.post(
                self._url,
                json={"content": text},
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise DeliveryError(f"Error sending webhook: {exc}") from exc

        if not response.ok:
            raise DeliveryError(
                f"Failed to send webhook: {response.status_code} {response.reason} "
                f"body={response.text[:500]}"
            )

        logger.info("Alert sent successfully (%d chars)", len(text))
        return True


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _safe_format(value: Any, suffix: str = "") -> str:
    if value is None:
        return "N/A"
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return f"{value}{suffix}"


def _format_time(raw: str | None) -> str:
    if not raw:
        return "Unknown Time"
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return "Unknown Time"
    return parsed.strftime("%H:%M:%S")


# ---------------------------------------------------------------------------
# Renderers
# ---------------------------------------------------------------------------


def render_spike_alert(result: EvaluationResult, snapshot: Snapshot) -> str:
    """One message listing every newly spiking venue."""
    places = [n.entity.attributes for n in result.notifications]
    level = _safe_format(snapshot.global_level)

    lines = [
        "# 🚨 **Unusual traffic detected near the Pentagon!**",
        f"**Doughcon:** {level}",
        f"**{len(places)}** places currently showing spikes:",
        "",
    ]
    for place in places:
        address = place.get("address")
        map_link = f"[Map](<{address}>)" if address else "No Address"
        lines.append(f"### 🍕 **{place.get('name') or 'Unknown Place'}**")
        lines.append(
            f"> **Popularity:** {_safe_format(place.get('current_popularity'), '%')} | "
            f"**Spike:** {_safe_format(place.get('spike_magnitude'))} | "
            f"**Normal:** {_safe_format(place.get('percentage_of_usual'), '%')}"
        )
        lines.append(f"> 📍 {map_link} • 🕒 {_format_time(place.get('recorded_at'))}")
        lines.append("")

    lines.append(f"_Report generated at {_now_iso()} [Source](<{SOURCE_LINK}>)_")
    return "\n".join(lines)


def _market_status(notification: Notification, top_tier: int) -> tuple[str, str]:
    if notification.tier >= top_tier:
        return "🔥", "IT HAPPENED"
    return "⚠️", "HAPPENING"


def make_probability_renderer(top_tier: int) -> Renderer:
    """Renderer for probability markets; ``top_tier`` gets the "happened" label."""

    def render(result: EvaluationResult, snapshot: Snapshot) -> str:
        lines = [
            "# 🚨 **SOMETHING IS HAPPENING**",
            f"**{len(result.notifications)}** event(s) monitoring active:",
            "",
        ]
        for n in result.notifications:
            icon, label = _market_status(n, top_tier)
            lines.append(f"### {icon} **{n.entity.label or n.key}**")
            lines.append(f"> **Status:** {label}")
            lines.append(f"> **Probability:** {float(n.value) * 100:.1f}%")
            lines.append(f"> [View Market]({MARKET_LINK.format(slug=n.key)})")
            lines.append("")
        lines.append(f"_Checked at {_now_iso()}_")
        return "\n".join(lines)

    return render


def render_commute_alert(result: EvaluationResult, snapshot: Snapshot) -> str:
    """Single-level commute alert; only the most recent notification is shown."""
    if not result.notifications:
        return ""
    entity: Entity = result.notifications[-1].entity
    attrs = entity.attributes
    window = attrs.get("time_window") or {}

    lines = [
        f"# 🚨 Pentagon Commute Alert: {entity.value} ({entity.label})",
        f"> **Time Window:** {window.get('label', '')}",
        f"> **Description:** {attrs.get('description', '')}",
        "",
        f"_Report generated at {_now_iso()} [Source](<{SOURCE_LINK}>)_",
    ]
    return "\n".join(lines)


def render_test_message() -> str:
    """Sample spike message used to check webhook wiring."""
    now = _now_iso()
    entities = [
        Entity(
            key="mock-id-123",
            value=True,
            label="Joe's Pizza (Mock)",
            attributes={
                "name": "Joe's Pizza (Mock)",
                "address": "https://goo.gl/maps/mockaddress",
                "current_popularity": 85,
                "spike_magnitude": 30,
                "percentage_of_usual": 150,
                "recorded_at": now,
            },
        ),
        Entity(
            key="mock-id-456",
            value=True,
            label="Luigi's Trattoria",
            attributes={
                "name": "Luigi's Trattoria",
                "address": "https://goo.gl/maps/mockaddress2",
                "current_popularity": 92,
                "spike_magnitude": 45,
                "percentage_of_usual": 200,
                "recorded_at": now,
            },
        ),
    ]
    result = EvaluationResult(
        notifications=[
            Notification(key=e.key, tier=1, tier_name="active", value=True, entity=e)
            for e in entities
        ]
    )
    return render_spike_alert(result, Snapshot(source="test", entities=entities, global_level=3))
