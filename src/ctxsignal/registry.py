"""Signal registry — which interrupt closed which context.

A context's own state says *that* it closed and gives a coarse reason,
but the interesting detail, *which* signal arrived, is discovered
asynchronously by the bridge's coordinating thread, long after the
context was handed to the caller.  The registry is the side table where
that thread leaves the answer for whoever asks later.

Rules:
    - **Write once** — a context closes at most once, for exactly one
      reason, so its entry is written at most once and never replaced.
    - **Missing means "not by a signal"** — contexts that were never
      bridged, are still pending, or closed for another reason simply
      have no entry.  Lookups never block on the context itself.
    - **Scoped and weak** — each registry is an ordinary object (the
      bridge owns one), and entries are held by weak reference to the
      context, so a context that is no longer reachable takes its entry
      with it.
"""

import weakref

from ctxsignal.context import Context
from ctxsignal.signals import Interrupt
from ctxsignal.sync import ReadWriteLock


class SignalRegistry:
    """Thread-safe, write-once map from context to interrupt.

    Reads share a reader-writer lock; the rare write takes it
    exclusively.
    """

    def __init__(self) -> None:
        """Create an empty registry."""
        self._entries: weakref.WeakKeyDictionary[Context, Interrupt] = weakref.WeakKeyDictionary()
        self._lock = ReadWriteLock(name="signal-registry")

    def record(self, ctx: Context, kind: Interrupt) -> bool:
        """Record that *kind* closed *ctx*.

        Args:
            ctx: The context that closed.
            kind: The interrupt that closed it.

        Returns:
            True if the entry was written, False if *ctx* already had
            one (the existing entry is kept).

        """
        with self._lock.write_locked():
            if ctx in self._entries:
                return False
            self._entries[ctx] = kind
            return True

    def lookup(self, ctx: object) -> Interrupt | None:
        """Return the interrupt recorded for *ctx*, or None.

        Anything that is not a context has no entry.
        """
        if not isinstance(ctx, Context):
            return None
        with self._lock.read_locked():
            return self._entries.get(ctx)

    def forget(self, ctx: Context) -> bool:
        """Drop the entry for *ctx* ahead of garbage collection.

        Returns:
            True if an entry was removed.

        """
        with self._lock.write_locked():
            return self._entries.pop(ctx, None) is not None

    def __contains__(self, ctx: object) -> bool:
        """Return whether an entry exists for *ctx*."""
        return self.lookup(ctx) is not None

    def __len__(self) -> int:
        """Return the number of live entries."""
        with self._lock.read_locked():
            return len(self._entries)
