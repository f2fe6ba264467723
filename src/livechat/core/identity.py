"""Stable per-browser visitor identity.

``VisitorIdentity`` is an explicitly constructed context object: it is
created once per browser profile, handed to the orchestrator, and
disposed with it.  The token itself lives in an ``IdentityStorage``
(file-backed for a Python client, in-memory for tests).
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path

from livechat.infra.id_utils import new_visitor_id

logger = logging.getLogger(__name__)


class IdentityStorage(ABC):
    """Durable slot holding one visitor token."""

    @abstractmethod
    def load(self) -> str | None:
        """Return the stored token, or ``None`` when nothing is stored.

        Raises:
            OSError: when the storage cannot be read.
        """

    @abstractmethod
    def save(self, value: str) -> None:
        """Persist *value*.

        Raises:
            OSError: when the storage cannot be written.
        """


class MemoryIdentityStorage(IdentityStorage):
    def __init__(self, value: str | None = None) -> None:
        self.value = value

    def load(self) -> str | None:
        return self.value

    def save(self, value: str) -> None:
        self.value = value


class FileIdentityStorage(IdentityStorage):
    """Stores the token as a single line of text at *path*."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def load(self) -> str | None:
        try:
            value = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        return value or None

    def save(self, value: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(value + "\n", encoding="utf-8")


class VisitorIdentity:
    """Get-or-create access to the visitor token.

    Storage failures never propagate: the caller gets a freshly
    generated ephemeral id, reused for the lifetime of this object.
    """

    def __init__(self, storage: IdentityStorage) -> None:
        self._storage = storage
        self._value: str | None = None

    def get_or_create(self) -> str:
        if self._value is not None:
            return self._value

        try:
            stored = self._storage.load()
        except OSError:
            logger.warning(
                "Visitor identity storage unreadable; using ephemeral id",
                exc_info=True,
            )
            self._value = new_visitor_id()
            return self._value

        if stored:
            self._value = stored
            return stored

        value = new_visitor_id()
        try:
            self._storage.save(value)
        except OSError:
            logger.warning(
                "Visitor identity could not be persisted; id %s is ephemeral",
                value,
                exc_info=True,
            )
        else:
            logger.info("New visitor identity %s", value)
        self._value = value
        return value

    def dispose(self) -> None:
        """Forget the in-memory value; durable storage is left untouched."""
        self._value = None
