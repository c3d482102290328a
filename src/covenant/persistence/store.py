"""Attestation stores — durable key-value storage keyed by attestation id.

The engine only needs round-trip fidelity of the canonical bytes it hands
over. Two implementations ship: an in-memory map and a directory of JSON
files written with atomic replace so a crash never leaves a torn record.

Both assume a single writing process per storage location. Locks are
in-process only, so two processes updating the same attestation race and
the later save wins.
"""

from __future__ import annotations

import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Protocol

from covenant.errors import NotFound


_SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


class AttestationStore(Protocol):
    def load(self, attestation_id: str) -> bytes:
        ...

    def save(self, attestation_id: str, data: bytes) -> None:
        ...

    def delete(self, attestation_id: str) -> None:
        ...

    def ids(self) -> list[str]:
        ...


class InMemoryAttestationStore:
    """Process-local store. Default when no data directory is configured."""

    def __init__(self) -> None:
        self._records: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def load(self, attestation_id: str) -> bytes:
        with self._lock:
            data = self._records.get(attestation_id)
        if data is None:
            raise NotFound("attestation", attestation_id)
        return data

    def save(self, attestation_id: str, data: bytes) -> None:
        with self._lock:
            self._records[attestation_id] = bytes(data)

    def delete(self, attestation_id: str) -> None:
        with self._lock:
            self._records.pop(attestation_id, None)

    def ids(self) -> list[str]:
        with self._lock:
            return sorted(self._records)


class FileAttestationStore:
    """One ``<id>.json`` file per attestation under ``storage_dir``."""

    def __init__(self, storage_dir: Path) -> None:
        self._dir = storage_dir
        self._dir.mkdir(parents=True, exist_ok=True)

    def _path(self, attestation_id: str) -> Path:
        if not _SAFE_ID.match(attestation_id):
            raise NotFound("attestation", attestation_id)
        return self._dir / f"{attestation_id}.json"

    def load(self, attestation_id: str) -> bytes:
        path = self._path(attestation_id)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise NotFound("attestation", attestation_id) from None

    def save(self, attestation_id: str, data: bytes) -> None:
        path = self._path(attestation_id)
        fd, tmp_name = tempfile.mkstemp(dir=self._dir, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def delete(self, attestation_id: str) -> None:
        self._path(attestation_id).unlink(missing_ok=True)

    def ids(self) -> list[str]:
        return sorted(p.stem for p in self._dir.glob("*.json") if not p.name.startswith("."))
