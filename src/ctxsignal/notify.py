"""Signal notifier — turning OS signal delivery into queue messages.

Python runs signal handlers on the main thread, between bytecodes,
whatever that thread happens to be doing.  That is an awkward place to
do real work, so the notifier's handler does exactly one thing: it puts
the interrupt on the channel of every live subscription for it.  The
subscriber (a bridge's coordinating thread) picks it up from there on
its own schedule.

Key concepts:
    - **Subscription** — a registration for a set of interrupts plus the
      channel (a ``queue.SimpleQueue``) they are delivered to.  Each
      subscription is independent; two subscriptions for the same
      interrupt both receive it.
    - **Dispatch table** — one Python-level handler per interrupt, shared
      by all subscriptions, installed on first use.  The disposition it
      replaced is remembered so it can be put back.
    - **Release** — unsubscribing guarantees nothing more is put on the
      channel.  When the last subscription for an interrupt goes away on
      the main thread, the previous disposition is restored at once.
      Elsewhere ``signal.signal`` is off limits, so restoration is
      deferred: the next delivery that finds no subscribers restores
      the previous disposition and hands the signal to it, so the
      process behaves as if it had never subscribed.

``SimpleQueue.put`` is reentrant, which is what makes it safe to call
from a handler that may have interrupted another ``put`` on the same
channel.
"""

import signal
import threading
from collections.abc import Callable, Iterable
from queue import SimpleQueue
from types import FrameType

from ctxsignal.signals import Interrupt, SignalError

type Disposition = Callable[[int, FrameType | None], object] | int | signal.Handlers | None


class Subscription:
    """A live registration for a set of interrupts.

    Interrupts are delivered, in arrival order, to ``channel``.  The
    channel may be shared with other producers; the notifier only ever
    puts ``Interrupt`` values on it.
    """

    def __init__(self, *, kinds: frozenset[Interrupt], channel: SimpleQueue[object]) -> None:
        """Create an active subscription.

        Args:
            kinds: The interrupts subscribed to.
            channel: Where delivered interrupts are put.

        """
        self._kinds = kinds
        self._channel = channel
        self._active = True

    @property
    def kinds(self) -> frozenset[Interrupt]:
        """Return the interrupts this subscription receives."""
        return self._kinds

    @property
    def channel(self) -> SimpleQueue[object]:
        """Return the channel interrupts are delivered to."""
        return self._channel

    @property
    def is_active(self) -> bool:
        """Return whether the subscription still receives interrupts."""
        return self._active

    def _release(self) -> bool:
        """Mark the subscription released; return whether it was active."""
        was_active = self._active
        self._active = False
        return was_active

    def __repr__(self) -> str:
        """Return a developer-friendly representation."""
        names = ",".join(sorted(kind.name for kind in self._kinds))
        state = "active" if self._active else "released"
        return f"Subscription({names}, {state})"


class Notifier:
    """Fan OS signals out to subscriptions.

    All bookkeeping is guarded by one reentrant lock, so the handler
    can run even if it interrupted the main thread inside ``subscribe``.
    """

    def __init__(self) -> None:
        """Create a notifier with no handlers installed."""
        self._lock = threading.RLock()
        self._subscribers: dict[Interrupt, list[Subscription]] = {}
        self._previous: dict[Interrupt, Disposition] = {}
        self._delivered = 0

    @property
    def total_delivered(self) -> int:
        """Return how many interrupt deliveries reached a subscriber."""
        return self._delivered

    def installed_kinds(self) -> frozenset[Interrupt]:
        """Return the interrupts whose handler is currently installed."""
        with self._lock:
            return frozenset(self._previous)

    def subscribed_kinds(self) -> frozenset[Interrupt]:
        """Return the interrupts that have at least one subscription."""
        with self._lock:
            return frozenset(self._subscribers)

    def subscription_count(self, kind: Interrupt) -> int:
        """Return the number of live subscriptions for *kind*."""
        with self._lock:
            return len(self._subscribers.get(kind, ()))

    def subscribe(
        self,
        kinds: Iterable[Interrupt],
        *,
        channel: SimpleQueue[object] | None = None,
    ) -> Subscription:
        """Subscribe to *kinds*.

        The first subscription for an interrupt installs its handler,
        which requires the main thread.

        Args:
            kinds: Interrupts to receive (duplicates are ignored).
            channel: Channel to deliver to; a new one by default.

        Returns:
            The active subscription.

        Raises:
            ValueError: If *kinds* is empty.
            SignalError: If a handler could not be installed.

        """
        wanted = frozenset(Interrupt(kind) for kind in kinds)
        if not wanted:
            msg = "At least one interrupt is required"
            raise ValueError(msg)

        subscription = Subscription(
            kinds=wanted,
            channel=channel if channel is not None else SimpleQueue(),
        )
        with self._lock:
            installed: list[Interrupt] = []
            try:
                for kind in sorted(wanted - set(self._previous)):
                    self._install(kind)
                    installed.append(kind)
            except SignalError:
                for kind in installed:
                    self._restore(kind)
                raise
            for kind in wanted:
                self._subscribers.setdefault(kind, []).append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        """Release *subscription*.

        Safe to call from any thread and more than once.  Once it
        returns, nothing more is put on the subscription's channel.

        Returns:
            True if the subscription was active.

        """
        on_main = threading.current_thread() is threading.main_thread()
        with self._lock:
            if not subscription._release():
                return False
            for kind in subscription.kinds:
                remaining = self._subscribers.get(kind, [])
                if subscription in remaining:
                    remaining.remove(subscription)
                if not remaining:
                    self._subscribers.pop(kind, None)
                    if on_main and kind in self._previous:
                        self._restore(kind)
        return True

    def deliver(self, kind: Interrupt) -> int:
        """Put *kind* on the channel of every live subscription for it.

        This is the handler's dispatch path; tests call it directly to
        simulate a signal without involving the OS.

        Returns:
            The number of subscriptions the interrupt was delivered to.

        """
        with self._lock:
            subscriptions = self._subscribers.get(kind, ())
            for subscription in subscriptions:
                subscription.channel.put(kind)
            if subscriptions:
                self._delivered += 1
            return len(subscriptions)

    def reset(self) -> None:
        """Release every subscription and restore every disposition.

        Raises:
            SignalError: If called off the main thread while handlers
                are installed.

        """
        with self._lock:
            for subscriptions in self._subscribers.values():
                for subscription in subscriptions:
                    subscription._release()
            self._subscribers.clear()
            for kind in sorted(self._previous):
                self._restore(kind)

    def _handle(self, signum: int, frame: FrameType | None) -> None:
        """Dispatch a signal; fall back to the old disposition if unwanted."""
        kind = Interrupt(signum)
        if self.deliver(kind):
            return
        with self._lock:
            if kind not in self._previous:
                return
            previous = self._previous[kind]
            self._restore(kind)
        if callable(previous):
            previous(signum, frame)
        elif previous in (signal.SIG_DFL, None):
            signal.raise_signal(signum)

    def _install(self, kind: Interrupt) -> None:
        try:
            self._previous[kind] = signal.signal(kind, self._handle)
        except (OSError, ValueError) as exc:
            msg = f"Cannot subscribe to {kind.name}: {exc}"
            raise SignalError(msg) from exc

    def _restore(self, kind: Interrupt) -> None:
        previous = self._previous.pop(kind)
        try:
            signal.signal(kind, signal.SIG_DFL if previous is None else previous)
        except (OSError, ValueError) as exc:
            self._previous[kind] = previous
            msg = f"Cannot restore the handler for {kind.name}: {exc}"
            raise SignalError(msg) from exc


_DEFAULT = Notifier()


def default_notifier() -> Notifier:
    """Return the process-wide notifier shared by the default bridge."""
    return _DEFAULT
