"""
Persistent user table for the Plume RPC server.

The store keeps every user record in memory, keyed by username, and rewrites
the whole table to a single JSON file after each accepted insert. The
in-memory table is the authoritative view for the life of the process.

File format:
    {"alice": {"username": "alice", "password": "<hash>", ...}, ...}

Records are stored verbatim, so extra fields supplied at signup survive a
restart untouched.
"""

from __future__ import annotations

import asyncio
import copy
import json
import os
import tempfile
from pathlib import Path
from typing import Any

from plume_rpc.errors import ConflictError, StartupError
from plume_rpc.logging import get_logger

logger = get_logger(__name__)

UserRecord = dict[str, Any]


class UserStore:
    """
    Mapping of username to user record, backed by a JSON file.

    Example:
        >>> store = UserStore("data/users.json")
        >>> store.load()
        >>> await store.insert({"username": "alice", "password": "<hash>"})
        >>> store.exists("alice")
        True
    """

    def __init__(self, path: Path | str) -> None:
        """
        Initialize an empty store.

        Args:
            path: Location of the backing JSON file.
        """
        self._path = Path(path)
        self._users: dict[str, UserRecord] = {}
        self._write_lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        """Backing file location."""
        return self._path

    def load(self) -> None:
        """
        Read the backing file, replacing the in-memory table.

        A missing file yields an empty store; an empty file is treated as an
        empty table.

        Raises:
            StartupError: If the path is not a regular file, or its contents
                are not a JSON object of user records.
        """
        self._users = {}

        if not self._path.exists():
            logger.info("No users file, starting empty", extra={"path": str(self._path)})
            return

        if not self._path.is_file():
            raise StartupError(f"expected usersPath to be a file: {self._path}")

        try:
            contents = self._path.read_text(encoding="utf-8")
            users = json.loads(contents or "{}")
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error(
                "Failed to load users file",
                extra={"path": str(self._path), "error": str(e)},
            )
            raise StartupError(f"failed to load users file: {e}") from e

        if not isinstance(users, dict) or not all(
            isinstance(record, dict) for record in users.values()
        ):
            raise StartupError(
                f"users file must contain a JSON object of user records: {self._path}"
            )

        self._users = users
        logger.info(
            "Loaded users",
            extra={"path": str(self._path), "user_count": len(self._users)},
        )

    def lookup(self, username: str) -> UserRecord | None:
        """Return the record for ``username``, or None."""
        return self._users.get(username)

    def exists(self, username: str) -> bool:
        """Check whether ``username`` has a record."""
        return username in self._users

    async def insert(self, user: UserRecord) -> None:
        """
        Add a new user and persist the whole table.

        The write is awaited; if it fails the user is removed again so the
        in-memory table never holds a record the file does not.

        Args:
            user: Record with a non-empty "username" and "password" (hash).

        Raises:
            ValueError: If the record lacks a username or password hash.
            ConflictError: If the username is already present.
            OSError: If the backing file cannot be written.
        """
        username = user.get("username")
        if not isinstance(username, str) or not username:
            raise ValueError("user record requires a non-empty username")
        password_hash = user.get("password")
        if not isinstance(password_hash, str) or not password_hash:
            raise ValueError("user record requires a non-empty password hash")

        if username in self._users:
            raise ConflictError("username taken", details={"username": username})

        self._users[username] = user
        try:
            await self.save()
        except OSError:
            self._users.pop(username, None)
            raise

    def remove(self, username: str) -> bool:
        """
        Drop a user from the in-memory table (out-of-band administration).

        Call save() afterwards to persist the removal.

        Returns:
            True if a record was removed.
        """
        return self._users.pop(username, None) is not None

    async def save(self) -> None:
        """
        Write the whole table to the backing file.

        Writes are serialized; the table is snapshotted before the first
        suspension point so each write reflects a consistent state.
        """
        async with self._write_lock:
            payload = json.dumps(self._users)
            try:
                await asyncio.to_thread(self._write_file, payload)
            except OSError as e:
                logger.error(
                    "Failed to write users file",
                    extra={"path": str(self._path), "error": str(e)},
                )
                raise

    def _write_file(self, payload: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def snapshot(self) -> dict[str, UserRecord]:
        """Return a deep copy of the user table."""
        return copy.deepcopy(self._users)

    def __contains__(self, username: object) -> bool:
        return username in self._users

    def __len__(self) -> int:
        return len(self._users)
