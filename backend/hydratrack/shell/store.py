"""Record Store - Key-value persistence backends.

Every backend maps string keys to string values and translates its own
failures into StorageError subclasses. All I/O is contained here; the rules
for what the values mean live in the core module.
"""

import errno
import json
import logging
import os
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Protocol

from google.api_core import exceptions as google_exceptions
from google.cloud import firestore


logger = logging.getLogger(__name__)


class StorageError(Exception):
    """A key-value store operation failed."""


class StorageUnavailable(StorageError):
    """The store could not be reached or read."""


class StorageQuotaExceeded(StorageError):
    """The store refused a write because it is full."""


class RecordStore(Protocol):
    """String keys to string values, surviving restarts."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...


# ==================== In-Memory Store ====================


class InMemoryRecordStore:
    """Dict-backed store, optionally limited to a byte quota.

    Size is counted as UTF-8 bytes of every key plus its value.
    """

    def __init__(self, quota_bytes: int | None = None) -> None:
        self._data: dict[str, str] = {}
        self.quota_bytes = quota_bytes

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if self.quota_bytes is not None:
            used = sum(
                _entry_size(k, v) for k, v in self._data.items() if k != key
            )
            if used + _entry_size(key, value) > self.quota_bytes:
                raise StorageQuotaExceeded(
                    f"Writing {key} would exceed the {self.quota_bytes} byte quota"
                )
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


def _entry_size(key: str, value: str) -> int:
    return len(key.encode()) + len(value.encode())


# ==================== JSON File Store ====================


@dataclass
class FileStoreConfig:
    """Configuration for the JSON file store.

    Attributes:
        path: File holding every key as one JSON object
    """

    path: Path = field(default_factory=lambda: Path.home() / ".hydratrack" / "store.json")


class JsonFileRecordStore:
    """Store kept as a single JSON object on local disk.

    The file is re-read on every call and replaced atomically on every write,
    so a crash mid-write leaves the previous contents intact.
    Entries other apps wrote with non-string values are kept as they are.
    """

    def __init__(self, config: FileStoreConfig | None = None) -> None:
        self.config = config or FileStoreConfig()

    @property
    def path(self) -> Path:
        return self.config.path

    @contextmanager
    def _translate_errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except OSError as e:
            if e.errno in (errno.ENOSPC, errno.EDQUOT):
                raise StorageQuotaExceeded(f"Disk full while trying to {action}") from e
            raise StorageUnavailable(f"Failed to {action}: {e}") from e

    def _read(self) -> dict[str, Any]:
        with self._translate_errors(f"read {self.path}"):
            if not self.path.exists():
                return {}
            text = self.path.read_text(encoding="utf-8")

        if not text.strip():
            return {}
        try:
            data = json.loads(text)
        except ValueError as e:
            logger.error("Store file %s is not valid JSON: %s", self.path, str(e))
            raise StorageUnavailable(f"Store file {self.path} is not valid JSON") from e
        if not isinstance(data, dict):
            raise StorageUnavailable(f"Store file {self.path} does not hold an object")
        return data

    def _write(self, data: dict[str, Any]) -> None:
        with self._translate_errors(f"write {self.path}"):
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2, sort_keys=True)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise

    def get(self, key: str) -> str | None:
        value = self._read().get(key)
        if value is not None and not isinstance(value, str):
            logger.warning("Ignoring non-string value stored under %s", key)
            return None
        return value

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)

    def keys(self) -> list[str]:
        return list(self._read())


# ==================== Firestore Store ====================


@dataclass
class FirestoreConfig:
    """Configuration for the Firestore store.

    Attributes:
        project_id: GCP project ID (None for default)
        database: Firestore database name (None for default database)
        collection: Collection holding one document per key
    """

    project_id: str | None = None
    database: str | None = None
    collection: str = "hydratrack"


class FirestoreRecordStore:
    """Store kept in a Firestore collection.

    Document structure:
        {collection}/{key}: { value: "<json string>", updated_at }
    """

    def __init__(self, config: FirestoreConfig | None = None) -> None:
        self.config = config or FirestoreConfig()
        self._client: firestore.Client | None = None

    @property
    def client(self) -> firestore.Client:
        """Lazy initialization of Firestore client."""
        if self._client is None:
            kwargs: dict[str, Any] = {}
            if self.config.project_id:
                kwargs["project"] = self.config.project_id
            if self.config.database:
                kwargs["database"] = self.config.database
            self._client = firestore.Client(**kwargs)
        return self._client

    def _collection(self) -> firestore.CollectionReference:
        return self.client.collection(self.config.collection)

    @contextmanager
    def _translate_errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except google_exceptions.ResourceExhausted as e:
            raise StorageQuotaExceeded(f"Firestore quota exceeded while trying to {action}") from e
        except google_exceptions.GoogleAPIError as e:
            raise StorageUnavailable(f"Failed to {action}: {e}") from e

    def get(self, key: str) -> str | None:
        with self._translate_errors(f"get {key}"):
            doc = self._collection().document(key).get()
        if not doc.exists:
            return None
        value = (doc.to_dict() or {}).get("value")
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        with self._translate_errors(f"set {key}"):
            self._collection().document(key).set({
                "value": value,
                "updated_at": datetime.utcnow(),
            })

    def remove(self, key: str) -> None:
        with self._translate_errors(f"remove {key}"):
            self._collection().document(key).delete()

    def keys(self) -> list[str]:
        with self._translate_errors("list keys"):
            return [ref.id for ref in self._collection().list_documents()]
