"""Pluggable secure token storage backends.

Provides the KeyValueStore ABC with in-memory, JSON file and OS keyring
implementations, plus TokenRecordStore, which keeps the access token and
the cached profile in two named slots so that a record is either
restored whole or not at all.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import threading

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from ..exceptions import StorageFailure
from ..types import TokenRecord, freeze_profile


logger = logging.getLogger("appauth.auth")


class KeyValueStore(ABC):
    """Abstract durable key-value store for string secrets.

    All methods are async and atomic from the caller's perspective.
    Implementations raise StorageFailure for any backend error.
    """

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the value stored under ``key``.

        Parameters
        ----------
        key : str
            Slot name.

        Returns
        -------
        str or None
            The stored value, or None if the slot is empty.
        """

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``.

        Parameters
        ----------
        key : str
            Slot name.
        value : str
            Opaque string value.
        """

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Remove ``key``. Removing an empty slot is not an error.

        Parameters
        ----------
        key : str
            Slot name.
        """


class MemoryKeyValueStore(KeyValueStore):
    """In-memory store for tests and ephemeral sessions.

    Not durable across process restarts.
    """

    def __init__(self) -> None:
        """Initialize the memory store."""
        self._data: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> str | None:
        """Load a value from memory."""
        async with self._lock:
            return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        """Save a value in memory."""
        async with self._lock:
            self._data[key] = value

    async def remove(self, key: str) -> None:
        """Delete a value from memory."""
        async with self._lock:
            self._data.pop(key, None)

    def snapshot(self) -> dict[str, str]:
        """Copy of the stored slots."""
        return dict(self._data)


class FileKeyValueStore(KeyValueStore):
    """JSON file store, durable across restarts.

    Every write replaces the whole file via temp-file + ``os.replace`` and
    restricts it to the current user.

    Parameters
    ----------
    path : str or Path
        Location of the JSON file. Parent directories are created on write.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        """Initialize the file store."""
        self.path = Path(path).expanduser()
        self._lock = asyncio.Lock()

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        data = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            msg = f"{self.path} does not hold a JSON object"
            raise ValueError(msg)
        return data

    def _write(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, separators=(",", ":"), sort_keys=True)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, self.path)

    def _update(self, key: str, value: str | None) -> None:
        data = self._read()
        if value is None:
            if key not in data:
                return
            data.pop(key)
        else:
            data[key] = value
        self._write(data)

    async def get(self, key: str) -> str | None:
        """Load a value from the file."""
        async with self._lock:
            try:
                data = await asyncio.to_thread(self._read)
            except (OSError, ValueError) as exc:
                msg = f"Could not read {self.path}: {exc}"
                raise StorageFailure(msg, operation="get") from exc
        value = data.get(key)
        return value if isinstance(value, str) else None

    async def set(self, key: str, value: str) -> None:
        """Save a value to the file."""
        async with self._lock:
            try:
                await asyncio.to_thread(self._update, key, value)
            except (OSError, ValueError) as exc:
                msg = f"Could not write {self.path}: {exc}"
                raise StorageFailure(msg, operation="set") from exc

    async def remove(self, key: str) -> None:
        """Delete a value from the file."""
        async with self._lock:
            try:
                await asyncio.to_thread(self._update, key, None)
            except (OSError, ValueError) as exc:
                msg = f"Could not update {self.path}: {exc}"
                raise StorageFailure(msg, operation="remove") from exc


class KeyringKeyValueStore(KeyValueStore):
    """OS keyring-backed store for platform secure storage.

    Requires the ``keyring`` package: ``pip install appauth[keyring]``

    Parameters
    ----------
    service_name : str
        Service name for keyring storage (default "appauth").
    """

    def __init__(self, service_name: str = "appauth") -> None:
        """Initialize the keyring store."""
        try:
            import keyring as _keyring

            from keyring.errors import KeyringError, PasswordDeleteError
        except ImportError:
            msg = "Install keyring for OS secure storage: pip install appauth[keyring]"
            raise ImportError(msg) from None
        self._service_name = service_name
        self._keyring = _keyring
        self._keyring_error = KeyringError
        self._delete_error = PasswordDeleteError

    async def get(self, key: str) -> str | None:
        """Load a value from the OS keyring."""
        try:
            return await asyncio.to_thread(self._keyring.get_password, self._service_name, key)
        except self._keyring_error as exc:
            msg = f"Keyring read failed: {exc}"
            raise StorageFailure(msg, operation="get") from exc

    async def set(self, key: str, value: str) -> None:
        """Save a value to the OS keyring."""
        try:
            await asyncio.to_thread(self._keyring.set_password, self._service_name, key, value)
        except self._keyring_error as exc:
            msg = f"Keyring write failed: {exc}"
            raise StorageFailure(msg, operation="set") from exc

    async def remove(self, key: str) -> None:
        """Delete a value from the OS keyring."""
        try:
            await asyncio.to_thread(self._keyring.delete_password, self._service_name, key)
        except self._delete_error:
            # Nothing stored under this key
            return
        except self._keyring_error as exc:
            msg = f"Keyring delete failed: {exc}"
            raise StorageFailure(msg, operation="remove") from exc


class TokenRecordStore:
    """Persisted ``{access_token, profile}`` record over two store slots.

    The token slot is written last and erased first, so a record whose
    write or erase was interrupted is never restored as complete.

    Parameters
    ----------
    store : KeyValueStore
        Backend holding the two slots.
    token_key : str
        Slot name for the access token.
    profile_key : str
        Slot name for the JSON-serialized profile.
    """

    def __init__(
        self,
        store: KeyValueStore,
        token_key: str = "auth_token",  # noqa: S107
        profile_key: str = "user_data",
    ) -> None:
        """Initialize the record store."""
        self.store = store
        self.token_key = token_key
        self.profile_key = profile_key

    async def load(self) -> TokenRecord | None:
        """Read the persisted record.

        Returns
        -------
        TokenRecord or None
            The complete record, or None if either slot is empty.

        Raises
        ------
        StorageFailure
            If the backend fails or the stored profile cannot be decoded.
        """
        token = await self.store.get(self.token_key)
        profile_text = await self.store.get(self.profile_key)
        if not token or not profile_text:
            if token or profile_text:
                logger.info("Ignoring partial token record in store")
            return None

        try:
            profile = json.loads(profile_text)
        except ValueError as exc:
            msg = "Stored profile is not valid JSON"
            raise StorageFailure(msg, operation="get") from exc
        if not isinstance(profile, dict):
            msg = "Stored profile is not a JSON object"
            raise StorageFailure(msg, operation="get")
        return TokenRecord(access_token=token, profile=freeze_profile(profile))

    async def read_slots(self) -> tuple[str | None, str | None]:
        """Return the raw token and profile slot values.

        Returns
        -------
        tuple
            ``(token, profile_text)``; either may be None.
        """
        return await self.store.get(self.token_key), await self.store.get(self.profile_key)

    async def restore_slots(self, slots: tuple[str | None, str | None]) -> None:
        """Put both slots back to values returned by :meth:`read_slots`.

        Only slots that differ are written. A token that must go is removed
        before the profile changes and a token that must come back is
        written after it.

        Raises
        ------
        StorageFailure
            If the backend cannot write or remove a slot.
        """
        token, profile_text = slots
        current_token, current_profile = await self.read_slots()
        if token is None and current_token is not None:
            await self.store.remove(self.token_key)
        if profile_text != current_profile:
            if profile_text is None:
                await self.store.remove(self.profile_key)
            else:
                await self.store.set(self.profile_key, profile_text)
        if token is not None and token != current_token:
            await self.store.set(self.token_key, token)

    async def save(self, record: TokenRecord) -> None:
        """Write the record as one unit.

        Parameters
        ----------
        record : TokenRecord
            The token and profile to persist.

        Raises
        ------
        StorageFailure
            If any write fails; both slots are put back as they were.
        """
        profile_text = json.dumps(dict(record.profile), separators=(",", ":"))
        previous = await self.read_slots()
        try:
            await self.store.set(self.profile_key, profile_text)
            await self.store.set(self.token_key, record.access_token)
        except StorageFailure:
            try:
                await self.restore_slots(previous)
            except StorageFailure:
                logger.exception("Could not restore the previous token record")
            raise

    async def erase(self) -> None:
        """Remove the record.

        Raises
        ------
        StorageFailure
            If the backend cannot remove a slot.
        """
        await self.store.remove(self.token_key)
        await self.store.remove(self.profile_key)


_token_store_instance: KeyValueStore | None = None
_token_store_lock = threading.Lock()


def get_token_store(backend: str = "file", **kwargs: Any) -> KeyValueStore:
    """Factory function for key-value stores.

    Returns a singleton instance. Call ``reset_token_store()`` to clear
    the cached instance (e.g. in tests).

    Parameters
    ----------
    backend : str
        Storage backend: "file", "keyring", or "memory".
    **kwargs : Any
        ``path`` for the file backend, ``service_name`` for keyring.

    Returns
    -------
    KeyValueStore
        A configured store instance.
    """
    global _token_store_instance  # noqa: PLW0603

    with _token_store_lock:
        if _token_store_instance is not None:
            return _token_store_instance

        if backend == "memory":
            _token_store_instance = MemoryKeyValueStore()
        elif backend == "file":
            path = kwargs.get("path")
            if path is None:
                msg = "The file token store requires a path"
                raise ValueError(msg)
            _token_store_instance = FileKeyValueStore(path)
        elif backend == "keyring":
            service_name = kwargs.get("service_name", "appauth")
            _token_store_instance = KeyringKeyValueStore(service_name=service_name)
        else:
            msg = f"Unknown token store backend: {backend}"
            raise ValueError(msg)

        return _token_store_instance


def reset_token_store() -> None:
    """Reset the singleton store instance.

    Useful for tests that need a fresh store between runs.
    """
    global _token_store_instance  # noqa: PLW0603

    with _token_store_lock:
        _token_store_instance = None
