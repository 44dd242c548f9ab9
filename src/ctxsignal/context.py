"""Cancellable contexts — cooperative one-shot "stop now" handles.

A **context** is a handle that a long-running operation carries around
and checks (or blocks on) to learn that it should stop.  Contexts form
a tree: every context except the root has a parent, and closing a
parent closes all of its descendants.

Context lifecycle (one-way, exactly once)::

    PENDING  →  CLOSED (reason)

The reason records *why* the context closed:
    - **explicit-cancel** — someone called the context's cancel function.
    - **parent-closed** — an ancestor closed first.
    - **deadline-exceeded** — a deadline on this context passed.
    - **signal-received** — a signal bridge closed it on an interrupt.

Key design properties:
    - **Closing is idempotent** — only the first close takes effect;
      later calls are no-ops and report ``False``.
    - **Identity, not value** — contexts hash and compare by identity
      and are weak-referenceable, so side tables can be keyed on them
      without keeping them alive.
    - **Hooked closure** — a close can carry a hook that runs after the
      reason is fixed but before anyone waiting on the context wakes
      up, which lets a caller attach extra state atomically from an
      observer's point of view.
"""

import threading
from collections.abc import Callable
from enum import StrEnum
from itertools import count
from math import isfinite
from time import monotonic
from typing import override


class CloseReason(StrEnum):
    """Why a context closed (``UNSET`` while it is still pending)."""

    UNSET = "unset"
    EXPLICIT_CANCEL = "explicit-cancel"
    PARENT_CLOSED = "parent-closed"
    DEADLINE_EXCEEDED = "deadline-exceeded"
    SIGNAL_RECEIVED = "signal-received"


class ContextError(Exception):
    """Base class for the error associated with a closed context."""


class CanceledError(ContextError):
    """The context was canceled."""

    def __init__(self) -> None:
        """Create the error with its fixed message."""
        super().__init__("context canceled")


class DeadlineExceededError(ContextError):
    """The context's deadline passed before it was canceled."""

    def __init__(self) -> None:
        """Create the error with its fixed message."""
        super().__init__("context deadline exceeded")


type DoneCallback = Callable[["Context"], None]
type CancelFunc = Callable[[], None]

_ids = count(1)


class Context:
    """A node in the context tree.

    Contexts are created through ``background()``, ``with_cancel()``,
    ``with_deadline()`` and ``with_timeout()``; the constructor is not
    part of the public surface.  Everything on a context is safe to
    call from any thread.
    """

    def __init__(
        self,
        *,
        name: str,
        parent: "Context | None" = None,
        deadline: float | None = None,
    ) -> None:
        """Create a pending context and attach it to *parent*.

        Args:
            name: Human-readable label used in reprs and logs.
            parent: The parent context, or None for a root.
            deadline: Absolute ``time.monotonic()`` deadline, if any.

        """
        self._id = next(_ids)
        self._name = name
        self._parent = parent
        self._deadline = deadline
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._reason = CloseReason.UNSET
        self._error: ContextError | None = None
        self._children: set[Context] = set()
        self._callbacks: list[DoneCallback] = []
        self._timer: threading.Timer | None = None

        if parent is not None and not parent._attach(self):
            self._transition(CloseReason.PARENT_CLOSED, parent._error or CanceledError())

    @property
    def name(self) -> str:
        """Return the context's label."""
        return self._name

    @property
    def parent(self) -> "Context | None":
        """Return the parent context, or None for a root."""
        return self._parent

    @property
    def deadline(self) -> float | None:
        """Return the ``time.monotonic()`` deadline, or None."""
        return self._deadline

    @property
    def is_closed(self) -> bool:
        """Return whether the context has closed.

        Becomes true only after any close hook has run.
        """
        return self._done.is_set()

    @property
    def reason(self) -> CloseReason:
        """Return why the context closed, or ``UNSET`` while pending."""
        if not self._done.is_set():
            return CloseReason.UNSET
        return self._reason

    @property
    def err(self) -> ContextError | None:
        """Return the error describing the closure, or None while pending."""
        if not self._done.is_set():
            return None
        return self._error

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the context closes.

        Args:
            timeout: Seconds to wait at most; None waits forever.

        Returns:
            True if the context is closed, False if the wait timed out.

        """
        return self._done.wait(timeout)

    def add_done_callback(self, fn: DoneCallback) -> None:
        """Arrange for ``fn(context)`` to run once when the context closes.

        Callbacks run in the thread that closes the context.  If the
        context is already closed, *fn* runs immediately in the calling
        thread.
        """
        with self._lock:
            if self._reason is CloseReason.UNSET:
                self._callbacks.append(fn)
                return
        self._done.wait()
        fn(self)

    def remove_done_callback(self, fn: DoneCallback) -> bool:
        """Remove a pending callback.

        Returns:
            True if the callback was registered and has been removed.

        """
        with self._lock:
            try:
                self._callbacks.remove(fn)
            except ValueError:
                return False
            return True

    def _close(
        self,
        reason: CloseReason,
        *,
        error: ContextError | None = None,
        hook: Callable[[], None] | None = None,
    ) -> bool:
        """Close the context for *reason*.

        Reserved for the code that created the context: callers close
        a context through its cancel function.

        Only the first close takes effect.  When it does, *hook* runs
        after the reason is fixed and before waiters, callbacks, or
        ``is_closed`` observe the closure.

        Args:
            reason: Why the context is closing (must not be ``UNSET``).
            error: The associated error; defaults to ``CanceledError``,
                or ``DeadlineExceededError`` for a passed deadline.
            hook: Optional callable run inside the close transition.

        Returns:
            True if this call closed the context, False if it was
            already closed.

        Raises:
            ValueError: If *reason* is ``UNSET``.

        """
        if reason is CloseReason.UNSET:
            msg = "Cannot close a context with reason 'unset'"
            raise ValueError(msg)
        if error is None:
            deadline_passed = reason is CloseReason.DEADLINE_EXCEEDED
            error = DeadlineExceededError() if deadline_passed else CanceledError()
        return self._transition(reason, error, hook)

    def _transition(
        self,
        reason: CloseReason,
        error: ContextError,
        hook: Callable[[], None] | None = None,
    ) -> bool:
        with self._lock:
            if self._reason is not CloseReason.UNSET:
                return False
            self._reason = reason
            self._error = error
            children = list(self._children)
            self._children.clear()
            callbacks = self._callbacks
            self._callbacks = []
            timer = self._timer
            self._timer = None

        try:
            if hook is not None:
                hook()
        finally:
            self._done.set()
            if timer is not None:
                timer.cancel()
            if self._parent is not None:
                self._parent._detach(self)
            for child in children:
                child._transition(CloseReason.PARENT_CLOSED, error)
            for fn in callbacks:
                fn(self)
        return True

    def _attach(self, child: "Context") -> bool:
        """Register *child*; return False if this context already closed."""
        with self._lock:
            if self._reason is not CloseReason.UNSET:
                return False
            self._children.add(child)
            return True

    def _detach(self, child: "Context") -> None:
        with self._lock:
            self._children.discard(child)

    def _arm(self, delay: float) -> None:
        """Start the timer that closes this context at its deadline."""
        timer = threading.Timer(delay, self._close, args=(CloseReason.DEADLINE_EXCEEDED,))
        timer.daemon = True
        with self._lock:
            if self._reason is not CloseReason.UNSET:
                return
            self._timer = timer
        timer.start()

    def __repr__(self) -> str:
        """Return a developer-friendly representation."""
        state = "pending" if not self._done.is_set() else f"closed: {self._reason}"
        return f"Context('{self._name}#{self._id}', {state})"


class _BackgroundContext(Context):
    """The root context, which has no cancel function and never closes."""

    @override
    def _close(
        self,
        reason: CloseReason,
        *,
        error: ContextError | None = None,
        hook: Callable[[], None] | None = None,
    ) -> bool:
        return False


_BACKGROUND = _BackgroundContext(name="background")


def background() -> Context:
    """Return the root context.

    The background context has no cancel function and never closes;
    it is the parent of top-level operations.
    """
    return _BACKGROUND


def with_cancel(parent: Context, *, name: str = "cancel") -> tuple[Context, CancelFunc]:
    """Derive a child context that closes when canceled or when *parent* closes.

    Args:
        parent: The context to derive from.
        name: Label for the child.

    Returns:
        The child and its idempotent cancel function.

    """
    child = Context(name=name, parent=parent, deadline=parent.deadline)
    return child, _cancel_func(child)


def with_deadline(
    parent: Context,
    deadline: float,
    *,
    name: str = "deadline",
) -> tuple[Context, CancelFunc]:
    """Derive a child context that also closes at *deadline*.

    If the parent's deadline is earlier, the child keeps the parent's
    deadline and simply closes with it.

    Args:
        parent: The context to derive from.
        deadline: Absolute ``time.monotonic()`` deadline.
        name: Label for the child.

    Returns:
        The child and its idempotent cancel function.

    Raises:
        ValueError: If *deadline* is not finite.

    """
    if not isfinite(deadline):
        msg = f"Deadline must be a finite number, got {deadline}"
        raise ValueError(msg)
    if parent.deadline is not None and parent.deadline <= deadline:
        return with_cancel(parent, name=name)

    child = Context(name=name, parent=parent, deadline=deadline)
    delay = deadline - monotonic()
    if delay <= 0:
        child._close(CloseReason.DEADLINE_EXCEEDED)
    else:
        child._arm(delay)
    return child, _cancel_func(child)


def with_timeout(
    parent: Context,
    timeout: float,
    *,
    name: str = "timeout",
) -> tuple[Context, CancelFunc]:
    """Derive a child context that closes after *timeout* seconds.

    Raises:
        ValueError: If *timeout* is negative or not finite.

    """
    if not isfinite(timeout) or timeout < 0:
        msg = f"Timeout must be a non-negative finite number, got {timeout}"
        raise ValueError(msg)
    return with_deadline(parent, monotonic() + timeout, name=name)


def _cancel_func(ctx: Context) -> CancelFunc:
    def cancel() -> None:
        ctx._close(CloseReason.EXPLICIT_CANCEL)

    return cancel
