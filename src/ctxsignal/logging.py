"""Bridge event log.

The logger records structured entries for what the signal bridges do:
which interrupts were subscribed, which event won each race, which
cause was recorded, and when the subscription was released.  It is the
audit trail you read when a program stopped and you want to know why.

- **LogLevel** — severity levels ordered for filtering (DEBUG < ERROR).
- **LogEntry** — a single structured record (level, message, source,
  thread).
- **Logger** — a bounded, append-only buffer with filtering and
  clearing, in the spirit of a kernel ring buffer (``dmesg``).

Design choices:
    - **IntEnum for levels** so they compare naturally with ``<``.
    - **Frozen dataclass for entries** — log records should be immutable.
    - **Ring buffer** — a long-running process may create many short
      bridges; only the most recent ``capacity`` entries are kept.
    - **Thread-safe** — coordinating threads log concurrently with the
      caller, so every access goes through one lock.
"""

import threading
from collections import deque
from dataclasses import dataclass
from enum import IntEnum

DEFAULT_CAPACITY = 1024


class LogLevel(IntEnum):
    """Severity levels for log entries.

    Using IntEnum means levels compare with ``<`` / ``>`` naturally,
    which makes minimum-level filtering trivial.
    """

    DEBUG = 0
    INFO = 1
    WARNING = 2
    ERROR = 3


@dataclass(frozen=True)
class LogEntry:
    """A single structured log record.

    Attributes:
        level: The severity of this event.
        message: A human-readable description of what happened.
        source: The component that generated the event (e.g. "bridge").
        thread: Name of the thread that logged the event.

    """

    level: LogLevel
    message: str
    source: str
    thread: str = ""

    def __str__(self) -> str:
        """Format as ``[LEVEL] source: message``."""
        return f"[{self.level.name}] {self.source}: {self.message}"


class Logger:
    """Bounded, thread-safe log buffer with filtering.

    Entries below ``min_level`` are dropped on arrival; once
    ``capacity`` entries are held, the oldest are discarded.
    """

    def __init__(
        self,
        *,
        capacity: int = DEFAULT_CAPACITY,
        min_level: LogLevel = LogLevel.DEBUG,
    ) -> None:
        """Create an empty logger.

        Args:
            capacity: Maximum number of entries retained.
            min_level: Entries below this level are not recorded.

        Raises:
            ValueError: If capacity is not positive.

        """
        if capacity <= 0:
            msg = f"Log capacity must be positive, got {capacity}"
            raise ValueError(msg)
        self._entries: deque[LogEntry] = deque(maxlen=capacity)
        self._min_level = min_level
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        """Return the maximum number of retained entries."""
        return self._entries.maxlen or 0

    @property
    def min_level(self) -> LogLevel:
        """Return the lowest level that is recorded."""
        return self._min_level

    @property
    def entries(self) -> list[LogEntry]:
        """Return retained entries in chronological order."""
        with self._lock:
            return list(self._entries)

    def log(
        self,
        level: LogLevel,
        message: str,
        *,
        source: str,
    ) -> None:
        """Append a new entry to the log.

        Args:
            level: Severity of the event.
            message: Human-readable event description.
            source: Component that generated the event.

        """
        if level < self._min_level:
            return
        entry = LogEntry(
            level=level,
            message=message,
            source=source,
            thread=threading.current_thread().name,
        )
        with self._lock:
            self._entries.append(entry)

    def filter(
        self,
        *,
        min_level: LogLevel | None = None,
        source: str | None = None,
    ) -> list[LogEntry]:
        """Return entries matching the given criteria.

        Args:
            min_level: If set, only return entries at or above this level.
            source: If set, only return entries from this source.

        Returns:
            A filtered list of log entries.

        """
        result = self.entries
        if min_level is not None:
            result = [e for e in result if e.level >= min_level]
        if source is not None:
            result = [e for e in result if e.source == source]
        return result

    def clear(self) -> None:
        """Remove all log entries."""
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        """Return the number of retained entries."""
        with self._lock:
            return len(self._entries)
