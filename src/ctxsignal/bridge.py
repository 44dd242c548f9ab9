"""Signal bridge — closing contexts when the process is interrupted.

A long-running operation already watches a context for deadlines and
explicit aborts.  The bridge lets the same context also close when the
process receives one of a chosen set of signals, and remembers *which*
signal did it so the program can report or act on the cause.

Each call to ``with_signals`` creates:
    1. a subscription for the requested interrupts,
    2. a child context derived from the caller's parent, and
    3. one coordinating thread that waits for the first of three events:

       - **interrupt** — a subscribed signal arrived;
       - **canceled** — the child was closed (its cancel function ran);
       - **parent closed** — the parent closed for any reason.

All three events land on the subscription's channel, so "first one
wins" is simply "first one taken off the queue".  On an interrupt the
thread closes the child and records the interrupt in the registry; on
either of the others it records nothing.  Whichever way the race goes,
the subscription is released before the thread ends.

Ordering: the registry write happens inside the child's close, after
its reason is fixed and before anything waiting on the child wakes up.
A caller that waits for the child and then asks ``closed()`` therefore
always sees the recorded interrupt; there is no window in which the
context looks closed but the cause is still missing.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from enum import StrEnum
from functools import partial
from itertools import count
from queue import SimpleQueue
from weakref import WeakKeyDictionary

from ctxsignal.config import Settings
from ctxsignal.context import CancelFunc, CloseReason, Context, DoneCallback, with_cancel
from ctxsignal.logging import Logger, LogLevel
from ctxsignal.notify import Notifier, Subscription, default_notifier
from ctxsignal.registry import SignalRegistry
from ctxsignal.signals import TERMINATION, Interrupt


class SignalNotFoundError(LookupError):
    """Raised when a context was not closed by a signal."""


class _Wakeup(StrEnum):
    """Non-signal events the coordinating thread can wake up for."""

    CANCELED = "canceled"
    PARENT_CLOSED = "parent-closed"


class SignalBridge:
    """Create signal-aware contexts and answer "which signal closed this?".

    A bridge owns its registry and log; the notifier may be shared
    (the default one is process-wide).  Inject your own collaborators
    to isolate tests or to scope the registry to one subsystem.
    """

    def __init__(
        self,
        *,
        registry: SignalRegistry | None = None,
        notifier: Notifier | None = None,
        logger: Logger | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Create a bridge.

        Args:
            registry: Where causes are recorded; a new one by default.
            notifier: Source of OS signals; the process-wide one by default.
            logger: Event log; built from *settings* by default.
            settings: Thread naming and logging settings.

        """
        self._settings = settings if settings is not None else Settings()
        self._registry = registry if registry is not None else SignalRegistry()
        self._notifier = notifier if notifier is not None else default_notifier()
        self._logger = (
            logger
            if logger is not None
            else Logger(capacity=self._settings.log_capacity, min_level=self._settings.log_level)
        )
        self._tasks: WeakKeyDictionary[Context, threading.Thread] = WeakKeyDictionary()
        self._tasks_lock = threading.Lock()
        self._seq = count(1)

    @property
    def registry(self) -> SignalRegistry:
        """Return the registry this bridge records causes in."""
        return self._registry

    @property
    def notifier(self) -> Notifier:
        """Return the notifier this bridge subscribes through."""
        return self._notifier

    @property
    def logger(self) -> Logger:
        """Return the bridge's event log."""
        return self._logger

    @property
    def settings(self) -> Settings:
        """Return the bridge's settings."""
        return self._settings

    @property
    def active_count(self) -> int:
        """Return the number of coordinating threads still running."""
        with self._tasks_lock:
            return sum(1 for thread in self._tasks.values() if thread.is_alive())

    def with_signals(self, parent: Context, *kinds: Interrupt) -> tuple[Context, CancelFunc]:
        """Derive a child of *parent* that also closes on any of *kinds*.

        Returns immediately.  The child closes on the first of: one of
        *kinds* arriving, its cancel function being called, or *parent*
        closing.  Only the first case records a cause.

        Args:
            parent: The context to derive from.
            *kinds: Interrupts to watch for (duplicates are ignored).

        Returns:
            The child context and its idempotent cancel function.

        Raises:
            ValueError: If no interrupts are given.
            SignalError: If the subscription cannot be established.

        """
        wanted = frozenset(Interrupt(kind) for kind in kinds)
        if not wanted:
            msg = "with_signals needs at least one interrupt"
            raise ValueError(msg)

        inbox: SimpleQueue[object] = SimpleQueue()
        subscription = self._notifier.subscribe(wanted, channel=inbox)

        def on_child_closed(_ctx: Context) -> None:
            inbox.put(_Wakeup.CANCELED)

        def on_parent_closed(_ctx: Context) -> None:
            inbox.put(_Wakeup.PARENT_CLOSED)

        names = ",".join(kind.name for kind in sorted(wanted))
        child: Context | None = None
        try:
            child, cancel = with_cancel(parent, name=f"signals({names})")
            child.add_done_callback(on_child_closed)
            parent.add_done_callback(on_parent_closed)

            thread = threading.Thread(
                target=self._coordinate,
                args=(child, parent, inbox, subscription, on_parent_closed),
                name=f"{self._settings.thread_prefix}-{next(self._seq)}",
                daemon=self._settings.daemon_threads,
            )
            with self._tasks_lock:
                self._tasks[child] = thread
            self._logger.log(LogLevel.DEBUG, f"{child.name}: subscribed", source="bridge")
            thread.start()
        except BaseException:
            self._abandon(child, parent, subscription, on_parent_closed)
            raise
        return child, cancel

    def with_termination(self, parent: Context) -> tuple[Context, CancelFunc]:
        """Derive a child of *parent* that closes on SIGINT or SIGTERM."""
        return self.with_signals(parent, *TERMINATION)

    @contextmanager
    def watching(self, parent: Context, *kinds: Interrupt) -> Iterator[Context]:
        """Run a block under a signal-aware child context.

        The child is canceled when the block exits, which tells the
        coordinating thread to release the subscription.
        """
        child, cancel = self.with_signals(parent, *kinds)
        try:
            yield child
        finally:
            cancel()

    def lookup(self, ctx: object) -> Interrupt | None:
        """Return the interrupt that closed *ctx*, or None.

        Never blocks on *ctx*: a context that is still pending, was not
        made by this bridge, or closed for another reason yields None.
        """
        return self._registry.lookup(ctx)

    def closed(self, ctx: object) -> Interrupt:
        """Return the interrupt that closed *ctx*.

        Wait for the context first (``ctx.wait()``); this is a pure
        query and does not block on a pending context.

        Raises:
            SignalNotFoundError: If *ctx* was not closed by a signal.

        """
        kind = self._registry.lookup(ctx)
        if kind is None:
            msg = f"{ctx!r} was not closed by a signal"
            raise SignalNotFoundError(msg)
        return kind

    def join(self, ctx: Context, timeout: float | None = None) -> bool:
        """Wait for the coordinating thread behind *ctx* to finish.

        Returns:
            True if the thread has finished (or *ctx* has none).

        """
        with self._tasks_lock:
            thread = self._tasks.get(ctx)
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def _coordinate(
        self,
        child: Context,
        parent: Context,
        inbox: SimpleQueue[object],
        subscription: Subscription,
        on_parent_closed: DoneCallback,
    ) -> None:
        """Wait for the first event, settle the child, then release."""
        try:
            event = inbox.get()
            if isinstance(event, Interrupt):
                self._settle_interrupt(child, event)
            elif event is _Wakeup.PARENT_CLOSED:
                child._close(CloseReason.PARENT_CLOSED, error=parent.err)
                self._logger.log(LogLevel.INFO, f"{child.name}: parent closed", source="bridge")
            else:
                self._logger.log(
                    LogLevel.INFO,
                    f"{child.name}: closed ({child.reason})",
                    source="bridge",
                )
        finally:
            self._notifier.unsubscribe(subscription)
            parent.remove_done_callback(on_parent_closed)
            self._logger.log(LogLevel.DEBUG, f"{child.name}: released", source="bridge")

    def _abandon(
        self,
        child: Context | None,
        parent: Context,
        subscription: Subscription,
        on_parent_closed: DoneCallback,
    ) -> None:
        """Undo a ``with_signals`` call whose coordinating thread never started."""
        self._notifier.unsubscribe(subscription)
        parent.remove_done_callback(on_parent_closed)
        if child is not None:
            with self._tasks_lock:
                self._tasks.pop(child, None)
            child._close(CloseReason.EXPLICIT_CANCEL)
            self._logger.log(LogLevel.WARNING, f"{child.name}: abandoned", source="bridge")

    def _settle_interrupt(self, child: Context, kind: Interrupt) -> None:
        record = partial(self._registry.record, child, kind)
        if child._close(CloseReason.SIGNAL_RECEIVED, hook=record):
            self._logger.log(LogLevel.INFO, f"{child.name}: closed by {kind.name}", source="bridge")
        else:
            self._logger.log(
                LogLevel.DEBUG,
                f"{child.name}: {kind.name} arrived after close, dropped",
                source="bridge",
            )


_default_lock = threading.Lock()
_default: SignalBridge | None = None


def default_bridge() -> SignalBridge:
    """Return the process-wide bridge, creating it on first use.

    Its settings come from the environment (see ``ctxsignal.config``).
    """
    global _default  # noqa: PLW0603
    with _default_lock:
        if _default is None:
            _default = SignalBridge(settings=Settings.from_env())
        return _default


def with_signals(parent: Context, *kinds: Interrupt) -> tuple[Context, CancelFunc]:
    """Derive a signal-aware child of *parent* using the default bridge."""
    return default_bridge().with_signals(parent, *kinds)


def with_termination(parent: Context) -> tuple[Context, CancelFunc]:
    """Derive a child of *parent* that closes on SIGINT or SIGTERM."""
    return default_bridge().with_termination(parent)


def closed(ctx: object) -> Interrupt:
    """Return the interrupt that closed *ctx* (default bridge).

    Raises:
        SignalNotFoundError: If *ctx* was not closed by a signal.

    """
    return default_bridge().closed(ctx)


def lookup(ctx: object) -> Interrupt | None:
    """Return the interrupt that closed *ctx* (default bridge), or None."""
    return default_bridge().lookup(ctx)
