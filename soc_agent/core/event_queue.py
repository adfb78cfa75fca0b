# soc_agent/core/event_queue.py
"""
Event Queue - Bounded FIFO between detection and delivery

Overflow policy is drop-oldest: when ``max_size`` events are pending and no
spool is configured, the oldest pending event is discarded and
``dropped_overflow`` is incremented once. With a spool file configured, new
events spill to SQLite instead and are moved back into memory as the
uploader drains.

All public methods are thread-safe and never block on I/O other than the
optional spool.
"""

import json
import logging
import sqlite3
import threading
from collections import deque
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, Deque, Dict, List, Optional

from soc_agent.schemas.events import Event

DEFAULT_MAX_SIZE = 1000
DEFAULT_MAX_RETRIES = 5
SPOOL_SIZE_FACTOR = 10


@dataclass
class QueueStats:
    """Event queue counters"""
    enqueued: int = 0
    delivered: int = 0
    deduplicated: int = 0
    requeued: int = 0
    dropped_overflow: int = 0
    dropped_retries: int = 0
    spooled: int = 0


class EventSpool:
    """SQLite spill area for events that do not fit in memory

    Rows are ordered by ``seq``; head insertion uses a sequence number below
    the current minimum so requeued events keep their place.
    """

    def __init__(self, db_path: str):
        self.logger = logging.getLogger(__name__)
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.db_path), timeout=30.0, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        with self._transaction() as conn:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS spooled_events (
                    seq INTEGER PRIMARY KEY,
                    event_id TEXT NOT NULL,
                    dedup_key TEXT NOT NULL,
                    payload TEXT NOT NULL
                )
            ''')

    @contextmanager
    def _transaction(self):
        try:
            yield self._conn
            self._conn.commit()
        except sqlite3.Error as e:
            self._conn.rollback()
            self.logger.error(f"❌ Spool database error, rolled back: {e}")
            raise

    def __len__(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM spooled_events").fetchone()[0]

    def append(self, event: Event):
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO spooled_events (seq, event_id, dedup_key, payload) "
                "VALUES ((SELECT COALESCE(MAX(seq), 0) + 1 FROM spooled_events), ?, ?, ?)",
                (event.event_id, event.dedup_key, json.dumps(event.to_dict(), default=str)))

    def prepend(self, event: Event):
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO spooled_events (seq, event_id, dedup_key, payload) "
                "VALUES ((SELECT COALESCE(MIN(seq), 1) - 1 FROM spooled_events), ?, ?, ?)",
                (event.event_id, event.dedup_key, json.dumps(event.to_dict(), default=str)))

    def pop_front(self, count: int) -> List[Event]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT seq, payload FROM spooled_events ORDER BY seq LIMIT ?", (count,)).fetchall()
            if rows:
                conn.execute("DELETE FROM spooled_events WHERE seq <= ?", (rows[-1][0],))
        return [Event.from_dict(json.loads(payload)) for _, payload in rows]

    def dedup_keys(self) -> List[str]:
        return [row[0] for row in self._conn.execute("SELECT dedup_key FROM spooled_events")]

    def close(self):
        try:
            self._conn.close()
        except sqlite3.Error as e:
            self.logger.debug(f"Spool close failed: {e}")


class EventQueue:
    """Bounded, deduplicating FIFO of classified events"""

    def __init__(self, max_size: int = DEFAULT_MAX_SIZE, max_retries: int = DEFAULT_MAX_RETRIES,
                 spool_path: Optional[str] = None):
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.logger = logging.getLogger(__name__)
        self.max_size = max_size
        self.max_retries = max_retries
        self.stats = QueueStats()

        self._lock = threading.Lock()
        self._events: Deque[Event] = deque()
        self._pending_keys: Dict[str, int] = {}
        self._attempts: Dict[str, int] = {}
        self._listeners: List[Callable[[int], None]] = []

        self._spool: Optional[EventSpool] = None
        self._spool_limit = max_size * SPOOL_SIZE_FACTOR
        if spool_path:
            self._spool = EventSpool(spool_path)
            for key in self._spool.dedup_keys():
                self._pending_keys[key] = self._pending_keys.get(key, 0) + 1
            self.logger.info(f"📦 Event spool ready: {spool_path} ({len(self._spool)} pending)")

    def add_listener(self, callback: Callable[[int], None]):
        """Register a callback invoked with the pending count after each enqueue"""
        self._listeners.append(callback)

    def __len__(self) -> int:
        with self._lock:
            return self._size_locked()

    def _size_locked(self) -> int:
        return len(self._events) + (len(self._spool) if self._spool is not None else 0)

    def enqueue(self, event: Event) -> bool:
        """Add an event; returns False when it was coalesced with a pending duplicate"""
        with self._lock:
            if event.dedup_key in self._pending_keys:
                self.stats.deduplicated += 1
                return False

            if self._spool is not None and (len(self._events) >= self.max_size or len(self._spool)):
                self._spill_locked(event)
            else:
                if len(self._events) >= self.max_size:
                    self._drop_oldest_locked()
                self._events.append(event)

            self._track_locked(event)
            self.stats.enqueued += 1
            size = self._size_locked()

        for listener in self._listeners:
            try:
                listener(size)
            except Exception as e:
                self.logger.error(f"❌ Queue listener failed: {e}")
        return True

    def _spill_locked(self, event: Event):
        if len(self._spool) >= self._spool_limit:
            self._drop_oldest_locked()
            self._refill_locked()
        self._spool.append(event)
        self.stats.spooled += 1

    def _drop_oldest_locked(self):
        oldest = self._events.popleft() if self._events else self._spool.pop_front(1)[0]
        self._untrack_locked(oldest)
        self.stats.dropped_overflow += 1
        self.logger.warning(f"⚠️ Event queue full ({self.max_size}), dropped oldest event {oldest.event_id}")

    def _track_locked(self, event: Event):
        self._pending_keys[event.dedup_key] = self._pending_keys.get(event.dedup_key, 0) + 1

    def _untrack_locked(self, event: Event):
        count = self._pending_keys.get(event.dedup_key, 0) - 1
        if count > 0:
            self._pending_keys[event.dedup_key] = count
        else:
            self._pending_keys.pop(event.dedup_key, None)
        self._attempts.pop(event.event_id, None)

    def _refill_locked(self):
        if self._spool is None:
            return
        room = self.max_size - len(self._events)
        if room > 0:
            self._events.extend(self._spool.pop_front(room))

    def drain_batch(self, max_n: int) -> List[Event]:
        """Remove up to ``max_n`` events from the head, oldest first

        Drained events stay registered for deduplication until they are
        acknowledged or dropped.
        """
        batch: List[Event] = []
        with self._lock:
            while len(batch) < max_n:
                if not self._events:
                    self._refill_locked()
                    if not self._events:
                        break
                batch.append(self._events.popleft())
            self._refill_locked()
        return batch

    def ack(self, events: List[Event]):
        """Mark events as delivered"""
        with self._lock:
            for event in events:
                self._untrack_locked(event)
            self.stats.delivered += len(events)

    def requeue(self, events: List[Event]) -> int:
        """Put undelivered events back at the head in their original order

        Events that already reached ``max_retries`` are dropped.
        Returns the number of events put back.
        """
        restored = 0
        with self._lock:
            for event in reversed(events):
                attempts = self._attempts.get(event.event_id, 0) + 1
                if attempts > self.max_retries:
                    self._untrack_locked(event)
                    self.stats.dropped_retries += 1
                    self.logger.warning(f"⚠️ Dropping event {event.event_id} after {attempts - 1} delivery attempts")
                    continue
                self._attempts[event.event_id] = attempts
                self._events.appendleft(event)
                restored += 1

            self.stats.requeued += restored
            while len(self._events) > self.max_size:
                if self._spool is not None:
                    self._spool.prepend(self._events.pop())
                    self.stats.spooled += 1
                else:
                    self._drop_oldest_locked()
        return restored

    def attempts(self, event: Event) -> int:
        with self._lock:
            return self._attempts.get(event.event_id, 0)

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            stats = asdict(self.stats)
            stats['pending'] = self._size_locked()
        return stats

    def close(self):
        if self._spool is not None:
            self._spool.close()
