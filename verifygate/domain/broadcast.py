"""
Review broadcast hub - Fan-out of state changes to admin sessions.

Every connected admin session owns a bounded queue. ``publish`` never
blocks: it puts the event on each live queue without waiting, and a
session whose queue is full is dropped (backpressure by drop). A dropped
or departed session simply stops receiving; the publisher is never told.

Events are numbered by the hub. The most recent ``replay_window`` events
are retained so a reconnecting session that supplies the last sequence it
saw can resume without a gap. When the gap is older than the window the
session starts live with ``replay_complete`` False and must re-fetch state
from storage.
"""

import logging
import queue
import secrets
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from .ports import AccountStatus, utcnow

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    REGISTER = "register"
    CONFIRM = "confirm"
    APPROVE = "approve"
    REJECT = "reject"
    REMOVE = "remove"


@dataclass(frozen=True)
class ReviewEvent:
    """State change pushed to admin sessions."""

    type: EventType
    account_id: str
    old_status: Optional[AccountStatus]
    new_status: Optional[AccountStatus]
    timestamp: datetime = field(default_factory=utcnow)
    sequence: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "account_id": self.account_id,
            "old_status": self.old_status.value if self.old_status else None,
            "new_status": self.new_status.value if self.new_status else None,
            "timestamp": self.timestamp.isoformat(),
            "sequence": self.sequence,
        }


class Session:
    """A connected admin session. Created by ReviewHub.subscribe()."""

    def __init__(self, session_id: str, maxsize: int) -> None:
        self.session_id = session_id
        self.replay_complete = True
        self._queue: "queue.Queue[ReviewEvent]" = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()
        self.dropped = False

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def get(self, timeout: Optional[float] = None) -> Optional[ReviewEvent]:
        """
        Pull the next event for this session.

        Returns None on timeout or once the session is closed.
        """
        if self.closed:
            return None
        try:
            event = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if self.closed:
            return None
        return event

    def pending(self) -> int:
        return self._queue.qsize()

    def _offer(self, event: ReviewEvent) -> bool:
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            return False
        return True

    def _close(self) -> None:
        self._closed.set()


class ReviewHub:
    """Connected admin sessions and non-blocking event fan-out."""

    def __init__(
        self,
        *,
        queue_size: int = 100,
        replay_window: int = 256,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if queue_size < 1:
            raise ValueError("queue_size must be positive")
        self._queue_size = queue_size
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._history: deque[ReviewEvent] = deque(maxlen=max(replay_window, 0))
        self._sequence = 0
        self._lock = threading.Lock()

    def subscribe(self, last_sequence: Optional[int] = None) -> Session:
        """
        Register a new admin session.

        Args:
            last_sequence: Last event sequence a reconnecting client saw

        Returns:
            Session whose queue is pre-filled with missed events when they
            are all still inside the replay window
        """
        session = Session(secrets.token_urlsafe(16), self._queue_size)
        with self._lock:
            if last_sequence is not None and last_sequence < self._sequence:
                missed = [e for e in self._history if e.sequence > last_sequence]
                oldest_kept = self._history[0].sequence if self._history else self._sequence + 1
                if oldest_kept > last_sequence + 1 or len(missed) > self._queue_size:
                    session.replay_complete = False
                else:
                    for event in missed:
                        session._offer(event)
            elif last_sequence is not None and last_sequence > self._sequence:
                # Sequence from before a restart; the numbers will overlap.
                session.replay_complete = False
            self._sessions[session.session_id] = session

        logger.info(
            "Review session %s connected (%d live)", session.session_id, len(self._sessions)
        )
        return session

    def unsubscribe(self, session: Session) -> None:
        """Remove a session. Safe to call repeatedly or after a drop."""
        with self._lock:
            removed = self._sessions.pop(session.session_id, None)
        session._close()
        if removed is not None:
            logger.info("Review session %s disconnected", session.session_id)

    def publish(self, event: ReviewEvent) -> ReviewEvent:
        """
        Stamp and fan out an event without ever waiting on a session.

        Returns:
            The event with its hub sequence assigned
        """
        dropped: list[Session] = []
        with self._lock:
            self._sequence += 1
            stamped = replace(event, sequence=self._sequence)
            self._history.append(stamped)
            for session in list(self._sessions.values()):
                if not session._offer(stamped):
                    del self._sessions[session.session_id]
                    session.dropped = True
                    session._close()
                    dropped.append(session)

        for session in dropped:
            logger.warning(
                "Dropped review session %s: queue full at sequence %d",
                session.session_id,
                stamped.sequence,
            )
        return stamped

    def emit(
        self,
        event_type: EventType,
        account_id: str,
        old_status: Optional[AccountStatus],
        new_status: Optional[AccountStatus],
    ) -> ReviewEvent:
        """Build an event stamped with the hub clock and publish it."""
        return self.publish(
            ReviewEvent(
                type=event_type,
                account_id=account_id,
                old_status=old_status,
                new_status=new_status,
                timestamp=self._clock(),
            )
        )

    def session_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    @property
    def last_sequence(self) -> int:
        with self._lock:
            return self._sequence
