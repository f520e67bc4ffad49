"""SQLite persistence for deployments and their release histories.

Design:
- One row per deployment; ``key`` and ``name`` are unique system-wide.
- One row per release, ordered by ``position`` within its deployment.
- A history is always written whole: ``save_history()`` replaces every row
  of a deployment in a single transaction, so concurrent readers see
  either the previous or the new snapshot, never a mix.
- Releases are stored as pydantic JSON and re-validated on read, so
  callers only ever hold fresh, frozen copies.
- WAL journal mode for concurrent readers.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from pushgate.models.release import Deployment, Release


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_DEPLOYMENTS = """
CREATE TABLE IF NOT EXISTS deployments (
    id          TEXT PRIMARY KEY,
    key         TEXT NOT NULL UNIQUE,
    name        TEXT NOT NULL UNIQUE,
    created_at  TEXT NOT NULL
);
"""

_CREATE_RELEASES = """
CREATE TABLE IF NOT EXISTS releases (
    deployment_id  TEXT NOT NULL REFERENCES deployments(id) ON DELETE CASCADE,
    position       INTEGER NOT NULL,
    label          TEXT NOT NULL,
    payload_json   TEXT NOT NULL,
    PRIMARY KEY (deployment_id, position)
);
"""

_CREATE_IDX_LABEL = """
CREATE INDEX IF NOT EXISTS idx_release_label ON releases(deployment_id, label);
"""


class LedgerStore:
    """Deployment and release-history tables.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Connection that commits on success, rolls back on error, then closes."""
        conn = self._connect()
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._transaction() as conn:
            conn.execute(_CREATE_DEPLOYMENTS)
            conn.execute(_CREATE_RELEASES)
            conn.execute(_CREATE_IDX_LABEL)

    # ------------------------------------------------------------------
    # Deployments
    # ------------------------------------------------------------------

    def add_deployment(self, deployment: Deployment) -> Deployment:
        """Insert a deployment. Raises ``sqlite3.IntegrityError`` on a
        duplicate id, key or name."""
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO deployments (id, key, name, created_at) VALUES (?, ?, ?, ?)",
                (
                    deployment.id,
                    deployment.key,
                    deployment.name,
                    deployment.created_at.isoformat(),
                ),
            )
        return deployment

    def get_deployment(self, deployment_id: str) -> Deployment | None:
        return self._fetch_deployment("id", deployment_id)

    def get_deployment_by_key(self, key: str) -> Deployment | None:
        return self._fetch_deployment("key", key)

    def get_deployment_by_name(self, name: str) -> Deployment | None:
        return self._fetch_deployment("name", name)

    def _fetch_deployment(self, column: str, value: str) -> Deployment | None:
        # column is one of a fixed set chosen above, never user input
        with self._transaction() as conn:
            row = conn.execute(
                f"SELECT id, key, name, created_at FROM deployments WHERE {column} = ?",
                (value,),
            ).fetchone()
        return self._row_to_deployment(row) if row else None

    def list_deployments(self) -> list[Deployment]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT id, key, name, created_at FROM deployments ORDER BY created_at, name"
            ).fetchall()
        return [self._row_to_deployment(row) for row in rows]

    # ------------------------------------------------------------------
    # Release history
    # ------------------------------------------------------------------

    def load_history(self, deployment_id: str) -> list[Release]:
        """Return a deployment's releases, oldest first."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT payload_json FROM releases WHERE deployment_id = ? ORDER BY position ASC",
                (deployment_id,),
            ).fetchall()
        return [Release.model_validate_json(row[0]) for row in rows]

    def load_history_by_key(self, key: str) -> list[Release] | None:
        """History of the deployment owning ``key``, or None for an unknown key."""
        with self._transaction() as conn:
            found = conn.execute(
                "SELECT id FROM deployments WHERE key = ?", (key,)
            ).fetchone()
            if found is None:
                return None
            rows = conn.execute(
                "SELECT payload_json FROM releases WHERE deployment_id = ? ORDER BY position ASC",
                (found[0],),
            ).fetchall()
        return [Release.model_validate_json(row[0]) for row in rows]

    def save_history(self, deployment_id: str, releases: list[Release]) -> None:
        """Replace a deployment's entire history atomically."""
        with self._transaction() as conn:
            conn.execute("DELETE FROM releases WHERE deployment_id = ?", (deployment_id,))
            conn.executemany(
                "INSERT INTO releases (deployment_id, position, label, payload_json) "
                "VALUES (?, ?, ?, ?)",
                [
                    (deployment_id, position, release.label, release.model_dump_json())
                    for position, release in enumerate(releases)
                ],
            )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_deployment(row: tuple) -> Deployment:
        deployment_id, key, name, created_at = row
        return Deployment(
            id=deployment_id,
            key=key,
            name=name,
            created_at=datetime.fromisoformat(created_at),
        )
