"""Key/value entity store backed by SQLite.

Every entity is stored as one JSON document keyed by ``(namespace, key)``.
Writes are full overwrites (upsert); reads return freshly validated
Pydantic models.  There is no partial update: callers that need
read-modify-write semantics serialize themselves (see
``releaseboard.core.orchestrator.ReleaseLocks``).

Design:
- One connection per call, so the store is safe to use from worker threads.
- WAL journal mode for concurrent readers.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

from pydantic import ValidationError

from releaseboard.models.release import Client, Release, ReleaseStatus, User


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_ENTITIES = """
CREATE TABLE IF NOT EXISTS entities (
    namespace   TEXT NOT NULL,
    key         TEXT NOT NULL,
    value_json  TEXT NOT NULL,
    updated_at  TEXT NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (namespace, key)
);
"""

_RELEASES = "release"
_CLIENTS = "client"
_USERS = "user"
_SESSIONS = "session"


class StoreError(RuntimeError):
    """Raised when the underlying database cannot be read or written."""


class ReleaseStore:
    """Entity store for releases, clients, users and login sessions.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.  Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        except sqlite3.Error as exc:
            raise StoreError(f"Cannot open store at {self._db_path}: {exc}") from exc
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StoreError(f"Store operation failed: {exc}") from exc
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_ENTITIES)

    # ------------------------------------------------------------------
    # Raw key/value operations
    # ------------------------------------------------------------------

    def _put(self, namespace: str, key: str, value_json: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO entities (namespace, key, value_json, updated_at)
                VALUES (?, ?, ?, datetime('now'))
                ON CONFLICT (namespace, key)
                DO UPDATE SET value_json = excluded.value_json,
                              updated_at = excluded.updated_at
                """,
                (namespace, key, value_json),
            )

    def _get(self, namespace: str, key: str) -> str | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value_json FROM entities WHERE namespace = ? AND key = ?",
                (namespace, key),
            ).fetchone()
        return row[0] if row else None

    def _delete(self, namespace: str, key: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM entities WHERE namespace = ? AND key = ?",
                (namespace, key),
            )
            return cursor.rowcount > 0

    def _scan(self, namespace: str) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT value_json FROM entities WHERE namespace = ? ORDER BY key",
                (namespace,),
            ).fetchall()
        return [row[0] for row in rows]

    # ------------------------------------------------------------------
    # Releases
    # ------------------------------------------------------------------

    def save_release(self, release: Release) -> None:
        """Upsert a release (full overwrite)."""
        self._put(_RELEASES, str(release.id), release.model_dump_json())

    def get_release(self, release_id: uuid.UUID | str) -> Release | None:
        raw = self._get(_RELEASES, str(release_id))
        return self._load_release(raw) if raw is not None else None

    def delete_release(self, release_id: uuid.UUID | str) -> bool:
        """Delete a release.  Returns ``False`` if it did not exist."""
        return self._delete(_RELEASES, str(release_id))

    def get_all_releases(self) -> list[Release]:
        """Return every release, oldest first."""
        releases = [self._load_release(raw) for raw in self._scan(_RELEASES)]
        return sorted(releases, key=lambda r: r.created_at)

    def get_releases_matching(
        self, predicate: Callable[[ReleaseStatus], bool]
    ) -> list[Release]:
        """Return releases whose status satisfies *predicate*."""
        return [r for r in self.get_all_releases() if predicate(r.status)]

    @staticmethod
    def _load_release(raw: str) -> Release:
        try:
            return Release.model_validate_json(raw)
        except ValidationError as exc:
            raise StoreError(f"Corrupt release record: {exc}") from exc

    # ------------------------------------------------------------------
    # Clients
    # ------------------------------------------------------------------

    def save_client(self, client: Client) -> None:
        self._put(_CLIENTS, str(client.id), client.model_dump_json())

    def get_client(self, client_id: uuid.UUID | str) -> Client | None:
        raw = self._get(_CLIENTS, str(client_id))
        return Client.model_validate_json(raw) if raw is not None else None

    def get_all_clients(self) -> list[Client]:
        clients = [Client.model_validate_json(raw) for raw in self._scan(_CLIENTS)]
        return sorted(clients, key=lambda c: c.name)

    # ------------------------------------------------------------------
    # Users and login sessions
    # ------------------------------------------------------------------

    def save_user(self, user: User) -> None:
        self._put(_USERS, user.id, user.model_dump_json())

    def get_user(self, user_id: str) -> User | None:
        raw = self._get(_USERS, user_id)
        return User.model_validate_json(raw) if raw is not None else None

    def save_session(self, session_id: str, user_id: str) -> None:
        self._put(_SESSIONS, session_id, json.dumps(user_id))

    def get_session(self, session_id: str) -> str | None:
        """Return the user id bound to a login session, or None."""
        raw = self._get(_SESSIONS, session_id)
        return json.loads(raw) if raw is not None else None

    def delete_session(self, session_id: str) -> bool:
        return self._delete(_SESSIONS, session_id)
