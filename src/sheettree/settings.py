"""Document-scoped key/value settings stores.

The tree is persisted as one text blob under a single key.  Stores are
async so that a host-backed store (a round trip per call) and the local
ones share one contract.
"""

from __future__ import annotations

import json
import os
from abc import ABC, abstractmethod
from pathlib import Path


class SettingsStore(ABC):
    """Key/value store scoped to one workbook document."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the stored value, or None if the key is absent."""

    @abstractmethod
    async def add(self, key: str, value: str) -> None:
        """Store *value* under *key*."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove *key*.  Removing an absent key is a no-op."""


class MemorySettingsStore(SettingsStore):
    """Settings held in a dict; lost when the process exits."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.values: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self.values.get(key)

    async def add(self, key: str, value: str) -> None:
        self.values[key] = value

    async def delete(self, key: str) -> None:
        self.values.pop(key, None)


class JsonFileSettingsStore(SettingsStore):
    """Settings kept in a JSON sidecar file next to the workbook.

    Every write goes through a temp file and ``os.replace`` so readers
    never observe a partially written file.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    @classmethod
    def for_workbook(cls, workbook_path: Path) -> JsonFileSettingsStore:
        """Return the store for ``<book>.xlsx.sheettree.json``."""
        return cls(workbook_path.with_name(workbook_path.name + ".sheettree.json"))

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} does not contain a settings object")
        return data

    def _write(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False), encoding="utf-8")
        os.replace(str(tmp_path), str(self.path))

    async def get(self, key: str) -> str | None:
        return self._read().get(key)

    async def add(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    async def delete(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)
