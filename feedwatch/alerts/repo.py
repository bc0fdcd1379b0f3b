"""
Repository: durable snapshot/restore of monitor alert state.

State is stored per *module key* (one per monitor) so several monitors can
share a single backing store without touching each other's entries.

Backends:
    - ``JsonFileStateRepository`` -- one shared JSON file, the default.
    - ``PostgresStateRepository`` -- one row per module key in
      ``alert_module_state`` using ``psycopg`` (v3).

Loading never raises: a missing file, missing key, unreachable database or
corrupt content all mean "no prior state" and callers start from an empty
store. Saving raises ``PersistenceError``; the monitor logs it and carries on.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import psycopg
from psycopg.rows import dict_row

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Raised when state cannot be written (I/O, serialization, database)."""

    pass


# ---------------------------------------------------------------------------
# Repository Interface
# ---------------------------------------------------------------------------


class StateRepository(ABC):
    """Abstract base for module-keyed state persistence."""

    @abstractmethod
    def load(self, module_key: str) -> dict[str, Any] | None:
        """Return the persisted state for ``module_key``, or None if absent.

        Must not raise for missing or corrupt data.
        """
        ...

    @abstractmethod
    def save(self, module_key: str, state: dict[str, Any]) -> None:
        """Persist ``state`` under ``module_key``, leaving other keys intact.

        Raises
        ------
        PersistenceError
            If the state could not be written.
        """
        ...


# ---------------------------------------------------------------------------
# JSON File Backend
# ---------------------------------------------------------------------------


class JsonFileStateRepository(StateRepository):
    """All module states in one JSON object on disk.

    Parameters
    ----------
    path : str or Path
        Location of the shared state file.
    """

    def __init__(self, path: str | Path = "state.json") -> None:
        self.path = Path(path)

    def _read_all(self) -> dict[str, Any]:
        """Read the whole file. Raises on missing/corrupt content."""
        raw = self.path.read_text(encoding="utf-8")
        parsed = json.loads(raw)
        if not isinstance(parsed, dict):
            raise ValueError(f"State file root is {type(parsed).__name__}, expected object")
        return parsed

    def load(self, module_key: str) -> dict[str, Any] | None:
        if not self.path.exists():
            return None
        try:
            state = self._read_all().get(module_key)
        except (OSError, ValueError) as exc:
            logger.error("Failed to load state file %s: %s", self.path, exc)
            return None
        if state is not None and not isinstance(state, dict):
            logger.warning(
                "Ignoring non-object state for module=%s in %s", module_key, self.path
            )
            return None
        return state

    def save(self, module_key: str, state: dict[str, Any]) -> None:
        existing: dict[str, Any] = {}
        if self.path.exists():
            try:
                existing = self._read_all()
            except (OSError, ValueError):
                logger.warning("State file %s is corrupt; starting fresh", self.path)

        existing[module_key] = state

        try:
            payload = json.dumps(existing, indent=2)
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=".state-", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(payload)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceError(
                f"Failed to save state for module={module_key} to {self.path}: {exc}"
            ) from exc


# ---------------------------------------------------------------------------
# PostgreSQL Backend
# ---------------------------------------------------------------------------

_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS alert_module_state (
    module_key TEXT PRIMARY KEY,
    state JSONB NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
)
"""

_LOAD_STATE_SQL = """\
SELECT state
FROM alert_module_state
WHERE module_key = %s
"""

_UPSERT_STATE_SQL = """\
INSERT INTO alert_module_state (module_key, state, updated_at)
VALUES (%s, %s, now())
ON CONFLICT (module_key) DO UPDATE SET
    state = EXCLUDED.state,
    updated_at = EXCLUDED.updated_at
"""


class PostgresStateRepository(StateRepository):
    """PostgreSQL-backed state repository using psycopg v3.

    Parameters
    ----------
    conninfo : str
        PostgreSQL connection string (DSN).
    """

    def __init__(self, conninfo: str) -> None:
        self._conninfo = conninfo
        self._schema_ready = False

    def _connect(self) -> psycopg.Connection:
        """Create a new database connection with dict rows."""
        return psycopg.connect(
            self._conninfo,
            row_factory=dict_row,
            autocommit=False,
        )

    def ensure_schema(self) -> None:
        """Create the state table if it does not exist.

        Until this succeeds, every ``save`` creates the table first.
        """
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(_CREATE_TABLE_SQL)
        except psycopg.Error as exc:
            raise PersistenceError(f"Failed to create state table: {exc}") from exc
        self._schema_ready = True

    def load(self, module_key: str) -> dict[str, Any] | None:
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(_LOAD_STATE_SQL, (module_key,))
                    row = cur.fetchone()
        except psycopg.Error as exc:
            logger.error("Failed to load state for module=%s: %s", module_key, exc)
            return None

        if row is None:
            return None

        state = row["state"]
        if isinstance(state, str):
            try:
                state = json.loads(state)
            except ValueError:
                logger.warning("Corrupt state row for module=%s", module_key)
                return None
        if not isinstance(state, dict):
            return None
        return state

    def save(self, module_key: str, state: dict[str, Any]) -> None:
        try:
            payload = json.dumps(state)
            with self._connect() as conn:
                with conn.cursor() as cur:
                    if not self._schema_ready:
                        cur.execute(_CREATE_TABLE_SQL)
                    cur.execute(_UPSERT_STATE_SQL, (module_key, payload))
        except (psycopg.Error, TypeError, ValueError) as exc:
            raise PersistenceError(
                f"Failed to save state for module={module_key}: {exc}"
            ) from exc
        self._schema_ready = True
