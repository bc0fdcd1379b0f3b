"""
Monitor cycle and polling scheduler.

A ``Monitor`` binds one signal source to a policy, an alert store, a
notifier and a state repository, and runs one cycle at a time:

    fetch -> evaluate -> notify (if non-empty) -> persist

A ``MonitorLoop`` drives one monitor in its own thread, indefinitely, sleeping
the monitor's base interval between cycles, or its heightened interval when
the last cycle reported a cadence hint. Loops for different monitors share
nothing and never block each other. Within a loop the phases are strictly
sequential, so a store is never evaluated concurrently.

Error Handling:
    - ``FetchError``: logged, store untouched, cycle reports no cadence hint.
    - ``DeliveryError``: logged and swallowed; the batch is not retried.
    - ``PersistenceError``: logged; in-memory state stays authoritative.
    - Anything else: logged with traceback at the loop boundary; the loop
      reschedules.
    - ``PolicyConfigError``: raised while building monitors, before any loop
      starts.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Literal

import requests

from feedwatch.alerts.config import Settings
from feedwatch.alerts.logic.evaluator import ESCALATION_KEY, AlertEngine
from feedwatch.alerts.logic.policy import (
    BandedProbabilityPolicy,
    BooleanFlagPolicy,
    GlobalGate,
    OrdinalLevelPolicy,
    ThresholdPolicy,
)
from feedwatch.alerts.logic.store import AlertStore
from feedwatch.alerts.models import EvaluationResult
from feedwatch.alerts.notifier import (
    DeliveryError,
    Renderer,
    WebhookNotifier,
    make_probability_renderer,
    render_commute_alert,
    render_spike_alert,
)
from feedwatch.alerts.reader import (
    DEFAULT_DEFCON_LEVEL,
    CommuteIndexSource,
    FetchError,
    ProbabilityIndexSource,
    SignalSource,
    SpikeFeedSource,
)
from feedwatch.alerts.repo import (
    JsonFileStateRepository,
    PersistenceError,
    PostgresStateRepository,
    StateRepository,
)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logger = logging.getLogger(__name__)

# Module keys under which each monitor's state is persisted.
SPIKE_MODULE_KEY = "pizzaAlert"
PROBABILITY_MODULE_KEY = "nothingEverHappens"
COMMUTE_MODULE_KEY = "optempoAlert"

EvaluationMode = Literal["entities", "escalation"]


# ---------------------------------------------------------------------------
# Monitor
# ---------------------------------------------------------------------------


class Monitor:
    """One source's alerting pipeline.

    Parameters
    ----------
    name : str
        Display name for logs.
    module_key : str
        Persistence key for this monitor's state.
    source : SignalSource
        Produces snapshots.
    policy : ThresholdPolicy
        Classification rules.
    notifier : WebhookNotifier
        Delivery channel.
    renderer : Renderer
        Turns an evaluation result into message text.
    repository : StateRepository or None
        Where state is persisted between restarts. None disables persistence.
    mode : {"entities", "escalation"}
        ``entities`` tracks a high-water mark per entity; ``escalation``
        tracks a single level and only notifies when it worsens.
    base_interval : float
        Seconds between cycles.
    heightened_interval : float or None
        Seconds between cycles while the cadence hint is set. None disables
        adaptive polling.
    engine : AlertEngine or None
        Injected engine; a default one is created when omitted.
    """

    def __init__(
        self,
        name: str,
        module_key: str,
        source: SignalSource,
        policy: ThresholdPolicy,
        notifier: WebhookNotifier,
        renderer: Renderer,
        repository: StateRepository | None = None,
        mode: EvaluationMode = "entities",
        base_interval: float = 15 * 60,
        heightened_interval: float | None = None,
        engine: AlertEngine | None = None,
    ) -> None:
        if mode == "escalation" and not isinstance(policy, OrdinalLevelPolicy):
            raise ValueError(f"Monitor {name}: escalation mode needs an OrdinalLevelPolicy")
        if base_interval <= 0:
            raise ValueError(f"Monitor {name}: base_interval must be positive")
        if heightened_interval is not None and not 0 < heightened_interval < base_interval:
            raise ValueError(
                f"Monitor {name}: heightened_interval must be positive and shorter "
                f"than base_interval"
            )

        self.name = name
        self.module_key = module_key
        self.source = source
        self.policy = policy
        self.notifier = notifier
        self.renderer = renderer
        self.repository = repository
        self.mode = mode
        self.base_interval = base_interval
        self.heightened_interval = heightened_interval
        self.engine = engine or AlertEngine()
        self.store = AlertStore(is_more_severe=policy.is_more_severe)
        self.last_result: EvaluationResult | None = None

    def restore(self) -> None:
        """Load persisted state into the store; absence means a fresh start."""
        if self.repository is None:
            return
        state = self.repository.load(self.module_key)
        if self.mode == "escalation":
            state = _upgrade_escalation_state(state)
        self.store.load_dict(state)
        if state is not None:
            logger.info(
                "%s: restored %d tracked record(s) from %s",
                self.name,
                len(self.store),
                self.module_key,
            )

    def run_cycle(self) -> bool:
        """Run one fetch/evaluate/notify/persist cycle.

        Returns
        -------
        bool
            The cadence hint. False when the fetch failed.
        """
        logger.info("%s: checking %s", self.name, self.source.name)
        try:
            snapshot = self.source.fetch()
        except FetchError as exc:
            logger.error("%s: error fetching data: %s", self.name, exc)
            return False

        if self.mode == "escalation":
            result = self.engine.evaluate_escalation(snapshot, self.store, self.policy)  # type: ignore[arg-type]
        else:
            result = self.engine.evaluate(snapshot, self.store, self.policy)
        self.last_result = result

        try:
            if result.notifications:
                logger.info(
                    "%s: %d new alert(s) across %d entities; sending alert",
                    self.name,
                    len(result.notifications),
                    len(snapshot.entities),
                )
                self._deliver(self.renderer(result, snapshot))
            elif result.suppressed:
                logger.info(
                    "%s: %d crossing(s) held back by global gate",
                    self.name,
                    result.suppressed,
                )
            else:
                logger.info(
                    "%s: no new alerts (%d tracked)", self.name, len(self.store)
                )
        finally:
            # Runs even when rendering raises.
            self._persist()
        return result.cadence_hint

    def next_interval(self, cadence_hint: bool) -> float:
        if cadence_hint and self.heightened_interval is not None:
            return self.heightened_interval
        return self.base_interval

    def _deliver(self, text: str) -> None:
        try:
            self.notifier.send(text)
        except DeliveryError as exc:
            logger.error("%s: %s", self.name, exc)

    def _persist(self) -> None:
        if self.repository is None:
            return
        try:
            self.repository.save(self.module_key, self.store.to_dict())
        except PersistenceError as exc:
            logger.error("%s: %s", self.name, exc)

    def __repr__(self) -> str:
        return f"Monitor({self.name!r}, policy={self.policy!r}, mode={self.mode!r})"


def _upgrade_escalation_state(state: dict[str, Any] | None) -> dict[str, Any] | None:
    """Map the legacy ``{"previousLevel": n}`` commute state onto store records."""
    if isinstance(state, dict) and "records" not in state and "previousLevel" in state:
        logger.info("Upgrading legacy escalation state %r", state)
        return {"records": {ESCALATION_KEY: state["previousLevel"]}}
    return state


# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------


class MonitorLoop(threading.Thread):
    """Runs one monitor's cycles back to back until ``stop_event`` is set.

    The stop event is only checked between cycles, so shutdown lets the
    in-flight cycle (including its persistence) finish.
    """

    def __init__(self, monitor: Monitor, stop_event: threading.Event) -> None:
        super().__init__(name=f"monitor-{monitor.name}", daemon=True)
        self.monitor = monitor
        self._stop_event = stop_event
        self.cycles = 0

    def run_once(self) -> float:
        """Run a single cycle and return the delay before the next one."""
        try:
            hint = self.monitor.run_cycle()
        except Exception:
            logger.exception("%s: unexpected error during cycle", self.monitor.name)
            hint = False
        self.cycles += 1
        interval = self.monitor.next_interval(hint)
        if hint:
            logger.info(
                "%s: something is happening; next check in %.0fs",
                self.monitor.name,
                interval,
            )
        return interval

    def run(self) -> None:
        logger.info(
            "%s: loop started (base=%.0fs, heightened=%s)",
            self.monitor.name,
            self.monitor.base_interval,
            self.monitor.heightened_interval,
        )
        while not self._stop_event.is_set():
            interval = self.run_once()
            if self._stop_event.wait(interval):
                break
        logger.info("%s: loop stopped after %d cycle(s)", self.monitor.name, self.cycles)


class Scheduler:
    """Owns one ``MonitorLoop`` per monitor and a shared stop event."""

    def __init__(self, monitors: list[Monitor]) -> None:
        self.monitors = monitors
        self._stop_event = threading.Event()
        self._loops: list[MonitorLoop] = []

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def start(self) -> None:
        if self._loops:
            raise RuntimeError("Scheduler already started")
        for monitor in self.monitors:
            monitor.restore()
            loop = MonitorLoop(monitor, self._stop_event)
            self._loops.append(loop)
            loop.start()
        logger.info("Scheduler started %d monitor loop(s)", len(self._loops))

    def request_stop(self) -> None:
        """Ask every loop to exit after its current cycle. Safe in signal handlers."""
        self._stop_event.set()

    def stop(self, timeout: float | None = None) -> None:
        """Signal every loop to stop and wait for in-flight cycles to finish."""
        self.request_stop()
        for loop in self._loops:
            loop.join(timeout)
            if loop.is_alive():
                logger.warning("%s: still running after %ss", loop.name, timeout)

    def wait(self, poll_seconds: float = 1.0) -> None:
        """Block until ``stop`` is called (e.g. from a signal handler)."""
        while not self._stop_event.wait(poll_seconds):
            pass


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def create_repository(settings: Settings) -> StateRepository:
    if settings.state_backend == "postgres":
        if settings.database_url is None:
            raise ValueError("STATE_BACKEND=postgres requires DATABASE_URL")
        repo = PostgresStateRepository(settings.database_url.get_secret_value())
        try:
            repo.ensure_schema()
        except PersistenceError as exc:
            logger.error("%s; will retry on first save", exc)
        return repo
    return JsonFileStateRepository(settings.state_file)


def create_monitors(
    settings: Settings,
    repository: StateRepository | None = None,
    session: requests.Session | None = None,
) -> list[Monitor]:
    """Build the enabled production monitors from settings.

    ``session`` is shared by every source and the notifier when given
    (tests); otherwise each component opens its own.

    Raises
    ------
    PolicyConfigError
        If a configured threshold is inconsistent.
    """
    webhook = settings.discord_webhook_url
    notifier = WebhookNotifier(
        webhook.get_secret_value() if webhook else None,
        timeout=settings.http_timeout_seconds,
        session=session,
    )
    if not notifier.configured:
        logger.warning("DISCORD_WEBHOOK_URL is not set; alerts will only be logged")

    timeout = settings.http_timeout_seconds
    monitors: list[Monitor] = []

    if settings.enable_spike_monitor:
        gate = GlobalGate.at_most(
            settings.spike_max_global_level,
            clear_on_closed=True,
            default_level=DEFAULT_DEFCON_LEVEL,
        )
        monitors.append(
            Monitor(
                name="spikes",
                module_key=SPIKE_MODULE_KEY,
                source=SpikeFeedSource(settings.spike_feed_url, timeout, session),
                policy=BooleanFlagPolicy(gate=gate),
                notifier=notifier,
                renderer=render_spike_alert,
                repository=repository,
                base_interval=settings.poll_interval_seconds,
            )
        )

    if settings.enable_probability_monitor:
        heightened: float | None = settings.heightened_poll_interval_seconds
        if heightened is not None and not 0 < heightened < settings.poll_interval_seconds:
            logger.warning(
                "HEIGHTENED_POLL_INTERVAL_SECONDS=%s is not shorter than "
                "POLL_INTERVAL_SECONDS=%s; adaptive polling disabled",
                heightened,
                settings.poll_interval_seconds,
            )
            heightened = None
        policy = BandedProbabilityPolicy(
            cutoffs=(0.65, 0.99),
            margin=0.10,
            names=("quiet", "happening", "happened"),
        )
        monitors.append(
            Monitor(
                name="probabilities",
                module_key=PROBABILITY_MODULE_KEY,
                source=ProbabilityIndexSource(settings.probability_feed_url, timeout, session),
                policy=policy,
                notifier=notifier,
                renderer=make_probability_renderer(top_tier=len(policy.cutoffs)),
                repository=repository,
                base_interval=settings.poll_interval_seconds,
                heightened_interval=heightened,
            )
        )

    if settings.enable_commute_monitor:
        monitors.append(
            Monitor(
                name="commute",
                module_key=COMMUTE_MODULE_KEY,
                source=CommuteIndexSource(settings.commute_feed_url, timeout, session),
                policy=OrdinalLevelPolicy(
                    levels=(1, 2, 3, 4, 5),
                    ceiling=settings.commute_alert_ceiling,
                    lower_is_worse=True,
                    baseline=5,
                ),
                notifier=notifier,
                renderer=render_commute_alert,
                repository=repository,
                mode="escalation",
                base_interval=settings.poll_interval_seconds,
            )
        )

    return monitors
