"""
Alert state store.

``AlertStore`` maps an entity key to its high-water mark: the most severe
tier already notified and not yet cleared. A key is present iff the entity
needs no new notification at its current tier.

Invariants:
    - ``upsert`` only sets or raises a mark; it never lowers one.
    - A mark disappears only through ``clear`` (hysteresis), ``purge_missing``
      (entity left the feed) or ``reset``.
    - ``track`` is the single exception: escalation-only trackers record the
      latest level unconditionally so that an improvement followed by a
      regression counts as a fresh escalation.

The store is single-writer. The scheduler runs at most one evaluation per
store at a time, so no locking is done here.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable

logger = logging.getLogger(__name__)


class AlertStore:
    """Mapping from entity key to last notified tier.

    Parameters
    ----------
    is_more_severe : callable or None
        ``(a, b) -> bool`` comparator used to enforce that ``upsert`` never
        lowers a mark. Usually the owning policy's ``is_more_severe``.
        Defaults to numeric ascending.
    records : dict or None
        Initial contents, e.g. restored from persistence.
    """

    def __init__(
        self,
        is_more_severe: Callable[[int, int], bool] | None = None,
        records: dict[str, int] | None = None,
    ) -> None:
        self._is_more_severe = is_more_severe or (lambda a, b: a > b)
        self._records: dict[str, int] = dict(records or {})

    # -- queries ------------------------------------------------------------

    def get(self, key: str) -> int | None:
        return self._records.get(key)

    def keys(self) -> set[str]:
        return set(self._records)

    def snapshot(self) -> dict[str, int]:
        """Copy of the current records, for inspection in tests and logs."""
        return dict(self._records)

    def __contains__(self, key: object) -> bool:
        return key in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __repr__(self) -> str:
        return f"AlertStore({self._records!r})"

    # -- mutations ----------------------------------------------------------

    def upsert(self, key: str, tier: int) -> None:
        """Set or raise the high-water mark for ``key``.

        Raises
        ------
        ValueError
            If ``tier`` is less severe than the existing mark.
        """
        current = self._records.get(key)
        if current is not None and self._is_more_severe(current, tier):
            raise ValueError(
                f"Refusing to lower high-water mark for {key!r} from {current} to {tier}"
            )
        self._records[key] = tier

    def track(self, key: str, tier: int) -> None:
        """Record ``tier`` unconditionally (escalation-only trackers)."""
        self._records[key] = tier

    def clear(self, key: str) -> None:
        """Drop the record for ``key``, if any."""
        self._records.pop(key, None)

    def purge_missing(self, current_keys: Iterable[str]) -> list[str]:
        """Remove every record whose key is not in ``current_keys``.

        Returns
        -------
        list[str]
            The purged keys, sorted.
        """
        keep = set(current_keys)
        purged = sorted(k for k in self._records if k not in keep)
        for key in purged:
            del self._records[key]
        if purged:
            logger.debug("Purged %d records absent from snapshot: %s", len(purged), purged)
        return purged

    def reset(self) -> None:
        self._records.clear()

    # -- persistence --------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {"records": dict(self._records)}

    def load_dict(self, data: dict[str, Any] | None) -> None:
        """Replace contents with persisted state, tolerating bad shapes.

        Anything that is not ``{"records": {str: int}}`` is treated as "no
        prior state" and logged.
        """
        self._records.clear()
        if not data:
            return
        records = data.get("records") if isinstance(data, dict) else None
        if not isinstance(records, dict):
            logger.warning("Ignoring persisted state with unexpected shape: %r", data)
            return
        for key, tier in records.items():
            try:
                self._records[str(key)] = int(tier)
            except (TypeError, ValueError):
                logger.warning("Ignoring persisted record %r=%r", key, tier)
