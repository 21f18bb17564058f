"""Key-value snapshot stores used to persist grid contents."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class SnapshotStore(Protocol):
    """String key-value storage (browser ``localStorage`` semantics)."""

    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str) -> None:
        ...


class MemorySnapshotStore:
    """In-process snapshot store."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def __contains__(self, key: object) -> bool:
        return key in self._data


class JsonFileSnapshotStore:
    """Snapshot store backed by one JSON object file of ``key -> value``.

    The file is rewritten on every ``set``; a missing file reads as empty.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        with self._path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{self._path} does not hold a JSON object")
        return data

    def get(self, key: str) -> str | None:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            with tmp.open("w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp, self._path)
        finally:
            tmp.unlink(missing_ok=True)
        logger.debug("Wrote snapshot %r to %s", key, self._path)


def encode_snapshot(data: dict[str, dict[str, str]]) -> str:
    return json.dumps(data, separators=(",", ":"))


def decode_snapshot(text: str) -> dict[str, dict[str, str]]:
    """Parse a stored snapshot, rejecting anything but ``row -> col -> str``."""
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("Snapshot must be a JSON object of rows")
    for row_key, row in data.items():
        if not isinstance(row, dict):
            raise ValueError(f"Snapshot row {row_key!r} is not an object")
        for col_key, value in row.items():
            if not isinstance(value, str):
                raise ValueError(
                    f"Snapshot cell ({col_key}, {row_key}) is not a string: {value!r}"
                )
    return data
