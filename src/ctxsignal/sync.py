"""Reader-writer lock — many concurrent readers OR one exclusive writer.

The signal registry is read far more often than it is written: every
cause query is a read, and each bridge writes at most once in its whole
life.  A reader-writer lock lets any number of queries run side by side
and only makes them step aside for the rare write.

Analogy: a museum exhibit.  Any number of visitors (readers) can look
at the painting at once.  When a restorer (writer) needs to work on it,
visitors already inside finish, no new visitors enter, and the restorer
gets the room to themselves.

Writer preference: once a writer is waiting, new readers queue behind
it, so a steady stream of queries can never starve a write.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class ReadWriteLock:
    """Reader-writer lock with writer preference.

    Built on a single ``threading.Condition``.  Not reentrant: a thread
    holding the write side must not acquire either side again.
    """

    def __init__(self, *, name: str) -> None:
        """Create an unlocked reader-writer lock with the given name."""
        self._name = name
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer: int | None = None
        self._writers_waiting = 0

    @property
    def name(self) -> str:
        """Return the lock name."""
        return self._name

    @property
    def reader_count(self) -> int:
        """Return the number of active readers."""
        return self._readers

    @property
    def is_writing(self) -> bool:
        """Return whether a writer currently holds the lock."""
        return self._writer is not None

    @property
    def writer_ident(self) -> int | None:
        """Return the thread ident of the active writer, or None."""
        return self._writer

    def acquire_read(self) -> None:
        """Block until read access is granted.

        Granted when there is no active writer and no writer waiting.
        """
        with self._cond:
            while self._writer is not None or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        """Release read access, waking a waiting writer if last out.

        Raises:
            ValueError: If no reader holds the lock.

        """
        with self._cond:
            if self._readers == 0:
                msg = f"Lock '{self._name}' has no active readers"
                raise ValueError(msg)
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        """Block until exclusive write access is granted."""
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer is not None or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = threading.get_ident()

    def release_write(self) -> None:
        """Release write access and wake every waiter.

        Raises:
            ValueError: If the calling thread is not the writer.

        """
        with self._cond:
            if self._writer != threading.get_ident():
                msg = f"Thread {threading.get_ident()} is not the writer of '{self._name}'"
                raise ValueError(msg)
            self._writer = None
            self._cond.notify_all()

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        """Hold read access for the duration of a ``with`` block."""
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        """Hold write access for the duration of a ``with`` block."""
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()

    def __repr__(self) -> str:
        """Return a developer-friendly representation."""
        if self._writer is not None:
            state = f"writing by {self._writer}"
        else:
            state = f"{self._readers} readers"
        return f"ReadWriteLock('{self._name}', {state})"
