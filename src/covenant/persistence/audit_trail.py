"""Append-only audit trail — the hash-chained record of every attestation.

Every lifecycle event of an attestation (created, signed, finalized) is
appended here and chained to the event before it:

    event_hash = sha256(previous_hash ‖ event_type ‖ canonical(payload))

The first event of each attestation chains to CHAIN_SEED. Editing,
deleting or reordering any event breaks every hash after it, and
``check_chain`` reports the first sequence number where that happens.

Publishing to an external ledger is decoupled from appending. ``append``
only enqueues the event; ``publish_pending`` is called by the owner of the
trail and retries failed publishes with exponential backoff. A failed
publish never touches the local chain.

The trail can be persisted to a JSONL file (one JSON object per line):
event lines and receipt lines, both append-only, replayed on load. One
process writes a given file. A second writer appending to the same file
produces duplicate sequence numbers, and the next load refuses the file.
"""

from __future__ import annotations

import dataclasses
import json
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

import structlog

from covenant.crypto.anchor import LedgerPublisher
from covenant.errors import ChainIntegrityError, NotFound, PublishUnavailable
from covenant.models.attestation import utc_timestamp
from covenant.models.audit import (
    CHAIN_SEED,
    AuditEvent,
    AuditEventType,
    LifecycleEvent,
    chain_hash,
)

logger = structlog.get_logger(__name__)


@dataclass
class _PendingPublish:
    attestation_id: str
    sequence_no: int
    attempts: int = 0
    next_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None


class AuditTrail:
    """Hash-chained event log per attestation, with a pending-publish queue.

    Usage:
        trail = AuditTrail(Path("data/audit.jsonl"))
        event = trail.append(att_id, AuditEventType.CREATED, {...})
        trail.publish_pending(publisher)
        assert trail.verify_chain(att_id)
    """

    def __init__(
        self,
        storage_path: Optional[Path] = None,
        backoff_seconds: float = 30.0,
        backoff_max_seconds: float = 3600.0,
    ) -> None:
        self._storage_path = storage_path
        self._backoff = backoff_seconds
        self._backoff_max = backoff_max_seconds
        self._events: dict[str, list[AuditEvent]] = {}
        self._pending: dict[tuple[str, int], _PendingPublish] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    # ------------------------------------------------------------------
    # Appending
    # ------------------------------------------------------------------

    def append(
        self,
        attestation_id: str,
        event_type: AuditEventType,
        payload: Mapping[str, Any],
        now: Optional[datetime] = None,
    ) -> AuditEvent:
        """Chain one event onto the attestation's trail and queue it for publishing."""
        return self.append_all(attestation_id, [LifecycleEvent(event_type, dict(payload))], now)[0]

    def append_all(
        self,
        attestation_id: str,
        lifecycle_events: Iterable[LifecycleEvent],
        now: Optional[datetime] = None,
    ) -> list[AuditEvent]:
        """Append several events as one unit.

        The events are chained and written before any of them becomes
        visible. If the write raises, the trail is left as it was.
        """
        with self._lock_for(attestation_id):
            with self._guard:
                chain = self._events.get(attestation_id, [])
                previous_hash = chain[-1].event_hash if chain else CHAIN_SEED
                events: list[AuditEvent] = []
                for offset, lifecycle in enumerate(lifecycle_events):
                    payload = dict(lifecycle.payload)
                    event = AuditEvent(
                        attestation_id=attestation_id,
                        event_type=lifecycle.event_type,
                        sequence_no=len(chain) + offset,
                        previous_hash=previous_hash,
                        event_hash=chain_hash(previous_hash, lifecycle.event_type, payload),
                        payload=payload,
                        created_at=utc_timestamp(now),
                    )
                    events.append(event)
                    previous_hash = event.event_hash
                if self._storage_path and events:
                    self._write_lines([{"kind": "event", **_event_record(e)} for e in events])
                self._events.setdefault(attestation_id, []).extend(events)
                for event in events:
                    self._pending[(attestation_id, event.sequence_no)] = _PendingPublish(
                        attestation_id, event.sequence_no
                    )

        for event in events:
            logger.debug(
                "audit_event_appended",
                attestation_id=attestation_id,
                event_type=event.event_type.value,
                sequence_no=event.sequence_no,
                event_hash=event.event_hash,
            )
        return events

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def publish_pending(
        self,
        publisher: LedgerPublisher,
        now: Optional[datetime] = None,
    ) -> dict[str, int]:
        """Publish every pending event whose backoff has elapsed.

        Returns counts of published, deferred (failed this round), waiting
        (backoff not yet elapsed) and conflicts (another publisher already
        anchored the event under a different receipt). One failing event
        never stops the rest of the round.
        """
        now = now or datetime.now(timezone.utc)
        with self._guard:
            due = [
                p for p in self._pending.values()
                if p.next_attempt_at is None or p.next_attempt_at <= now
            ]
            waiting = len(self._pending) - len(due)

        published = deferred = conflicts = 0
        for entry in due:
            event = self.event(entry.attestation_id, entry.sequence_no)
            try:
                receipt = publisher.publish(event.publish_bytes())
            except PublishUnavailable as exc:
                self._defer(entry, exc.reason, now)
                deferred += 1
                continue
            except Exception as exc:
                logger.error(
                    "publisher_failed",
                    attestation_id=entry.attestation_id,
                    sequence_no=entry.sequence_no,
                    error=str(exc),
                    exc_info=True,
                )
                self._defer(entry, f"{type(exc).__name__}: {exc}", now)
                deferred += 1
                continue
            try:
                self.attach_receipt(entry.attestation_id, entry.sequence_no, receipt)
            except ChainIntegrityError as exc:
                logger.error("publish_receipt_conflict", **exc.details())
                conflicts += 1
                continue
            published += 1

        return {
            "published": published,
            "deferred": deferred,
            "waiting": waiting,
            "conflicts": conflicts,
        }

    def _defer(self, entry: _PendingPublish, reason: str, now: datetime) -> None:
        delay = min(self._backoff * (2 ** entry.attempts), self._backoff_max)
        with self._guard:
            entry.attempts += 1
            entry.last_error = reason
            entry.next_attempt_at = now + timedelta(seconds=delay)
        logger.warning(
            "publish_deferred",
            attestation_id=entry.attestation_id,
            sequence_no=entry.sequence_no,
            attempts=entry.attempts,
            retry_in_seconds=delay,
            reason=reason,
        )

    def attach_receipt(self, attestation_id: str, sequence_no: int, receipt: str) -> AuditEvent:
        """Record the ledger receipt for an event.

        Attaching the same receipt again is a no-op. A different receipt for
        an event that already has one raises ChainIntegrityError.
        """
        with self._guard:
            event = self._event_locked(attestation_id, sequence_no)
            if event.external_receipt == receipt:
                self._pending.pop((attestation_id, sequence_no), None)
                return event
            if event.external_receipt is not None:
                raise ChainIntegrityError(
                    attestation_id,
                    sequence_no,
                    event.external_receipt,
                    receipt,
                    reason="conflicting external receipt",
                )
            if self._storage_path:
                self._write_lines([{
                    "kind": "receipt",
                    "attestation_id": attestation_id,
                    "sequence_no": sequence_no,
                    "receipt": receipt,
                }])
            updated = dataclasses.replace(event, external_receipt=receipt)
            self._events[attestation_id][sequence_no] = updated
            self._pending.pop((attestation_id, sequence_no), None)

        logger.info(
            "audit_event_published",
            attestation_id=attestation_id,
            sequence_no=sequence_no,
            receipt=receipt,
        )
        return updated

    def pending(self) -> list[dict[str, Any]]:
        with self._guard:
            return [
                {
                    "attestation_id": p.attestation_id,
                    "sequence_no": p.sequence_no,
                    "attempts": p.attempts,
                    "next_attempt_at": utc_timestamp(p.next_attempt_at) if p.next_attempt_at else None,
                    "last_error": p.last_error,
                }
                for p in self._pending.values()
            ]

    # ------------------------------------------------------------------
    # Reading and verification
    # ------------------------------------------------------------------

    def events(self, attestation_id: str) -> list[AuditEvent]:
        with self._guard:
            return list(self._events.get(attestation_id, []))

    def event(self, attestation_id: str, sequence_no: int) -> AuditEvent:
        with self._guard:
            return self._event_locked(attestation_id, sequence_no)

    def head(self, attestation_id: str) -> Optional[str]:
        """Hash of the last event: the digest of the whole trail."""
        events = self.events(attestation_id)
        return events[-1].event_hash if events else None

    def attestation_ids(self) -> list[str]:
        with self._guard:
            return sorted(self._events)

    @property
    def count(self) -> int:
        with self._guard:
            return sum(len(chain) for chain in self._events.values())

    def verify_chain(self, attestation_id: str) -> bool:
        try:
            self.check_chain(attestation_id)
        except ChainIntegrityError:
            return False
        return True

    def check_chain(self, attestation_id: str) -> None:
        """Recompute the chain; raise at the first event that does not match."""
        previous_hash = CHAIN_SEED
        for index, event in enumerate(self.events(attestation_id)):
            if event.sequence_no != index:
                raise ChainIntegrityError(
                    attestation_id, index, str(index), str(event.sequence_no),
                    reason="sequence gap",
                )
            if event.previous_hash != previous_hash:
                raise ChainIntegrityError(
                    attestation_id, index, previous_hash, event.previous_hash,
                    reason="previous hash mismatch",
                )
            expected = chain_hash(previous_hash, event.event_type, event.payload)
            if event.event_hash != expected:
                raise ChainIntegrityError(attestation_id, index, expected, event.event_hash)
            previous_hash = event.event_hash

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock_for(self, attestation_id: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(attestation_id, threading.Lock())

    def _event_locked(self, attestation_id: str, sequence_no: int) -> AuditEvent:
        chain = self._events.get(attestation_id, [])
        if not 0 <= sequence_no < len(chain):
            raise NotFound("audit event", f"{attestation_id}#{sequence_no}")
        return chain[sequence_no]

    def _write_lines(self, records: list[dict[str, Any]]) -> None:
        text = "".join(
            json.dumps(record, sort_keys=True, ensure_ascii=False) + "\n" for record in records
        )
        with self._storage_path.open("a", encoding="utf-8") as f:
            f.write(text)

    def _load_from_file(self, path: Path) -> None:
        """Replay events and receipts from a JSONL file.

        Fail-closed on duplicate or out-of-order sequence numbers. Hash
        tampering is left for ``check_chain`` to report precisely.
        """
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)
                kind = data.pop("kind", None)

                if kind == "event":
                    event = AuditEvent.from_dict(data)
                    chain = self._events.setdefault(event.attestation_id, [])
                    if event.sequence_no != len(chain):
                        raise ChainIntegrityError(
                            event.attestation_id,
                            event.sequence_no,
                            str(len(chain)),
                            str(event.sequence_no),
                            reason=f"duplicate or out-of-order sequence on load (line {line_num})",
                        )
                    chain.append(event)
                    self._pending[(event.attestation_id, event.sequence_no)] = _PendingPublish(
                        event.attestation_id, event.sequence_no
                    )
                elif kind == "receipt":
                    key = (data["attestation_id"], int(data["sequence_no"]))
                    event = self._event_locked(*key)
                    self._events[key[0]][key[1]] = dataclasses.replace(
                        event, external_receipt=data["receipt"]
                    )
                    self._pending.pop(key, None)
                else:
                    raise ValueError(f"Unknown audit record kind (line {line_num}): {kind!r}")


def _event_record(event: AuditEvent) -> dict[str, Any]:
    record = event.to_dict()
    record.pop("external_receipt")
    return record
