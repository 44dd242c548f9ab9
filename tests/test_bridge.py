"""Tests for the signal bridge.

The bridge derives a child context that closes on the first of: a
subscribed signal arriving, its cancel function running, or its parent
closing.  Only a signal leaves a cause behind for ``closed()`` to find.

Most tests simulate delivery through a private notifier; the
``TestRealSignals`` group sends genuine signals to this process, the
way an operator's ``kill`` would.
"""

import os
import threading
from collections.abc import Iterator

import pytest

import ctxsignal
from ctxsignal.bridge import SignalBridge, SignalNotFoundError, default_bridge
from ctxsignal.config import Settings
from ctxsignal.context import (
    CanceledError,
    CloseReason,
    Context,
    DeadlineExceededError,
    background,
    with_cancel,
    with_timeout,
)
from ctxsignal.logging import Logger, LogLevel
from ctxsignal.notify import Notifier, default_notifier
from ctxsignal.registry import SignalRegistry
from ctxsignal.signals import TERMINATION, Interrupt

# Named constants to satisfy PLR2004
WAIT = 2.0
SHORT_TIMEOUT = 0.05
BRIDGES_5 = 5


@pytest.fixture
def notifier() -> Iterator[Notifier]:
    """Return a private notifier, restoring every handler afterwards."""
    n = Notifier()
    yield n
    n.reset()


@pytest.fixture
def bridge(notifier: Notifier) -> SignalBridge:
    """Return a bridge with a private notifier and a verbose log."""
    return SignalBridge(notifier=notifier, logger=Logger(min_level=LogLevel.DEBUG))


def _settled(bridge: SignalBridge, ctx: Context) -> None:
    """Wait for *ctx* to close and its coordinating thread to finish."""
    assert ctx.wait(timeout=WAIT)
    assert bridge.join(ctx, timeout=WAIT)


class TestWithSignals:
    """Verify closing on a subscribed interrupt."""

    @pytest.mark.parametrize("kind", list(Interrupt))
    def test_interrupt_closes_and_records(self, bridge: SignalBridge, kind: Interrupt) -> None:
        """Any subscribed kind closes the child and is reported by closed()."""
        others = [k for k in Interrupt if k is not kind][:1]
        ctx, cancel = bridge.with_signals(background(), kind, *others)
        bridge.notifier.deliver(kind)
        _settled(bridge, ctx)
        assert ctx.reason is CloseReason.SIGNAL_RECEIVED
        assert isinstance(ctx.err, CanceledError)
        assert bridge.closed(ctx) is kind
        assert bridge.lookup(ctx) is kind
        cancel()

    def test_returns_pending_child(self, bridge: SignalBridge) -> None:
        """with_signals returns at once with a pending child of the parent."""
        parent, cancel_parent = with_cancel(background())
        ctx, cancel = bridge.with_signals(parent, Interrupt.SIGHUP)
        assert not ctx.is_closed
        assert ctx.parent is parent
        assert bridge.active_count == 1
        cancel()
        cancel_parent()

    def test_cause_visible_as_soon_as_closed(self, bridge: SignalBridge) -> None:
        """Waiting for the child is enough; no extra synchronization needed."""
        ctx, _cancel = bridge.with_signals(background(), Interrupt.SIGHUP)
        bridge.notifier.deliver(Interrupt.SIGHUP)
        assert ctx.wait(timeout=WAIT)
        assert bridge.closed(ctx) is Interrupt.SIGHUP

    def test_unsubscribed_kind_ignored(self, bridge: SignalBridge) -> None:
        """A kind the child did not ask for leaves it pending."""
        ctx, cancel = bridge.with_signals(background(), Interrupt.SIGUSR1)
        assert bridge.notifier.deliver(Interrupt.SIGUSR2) == 0
        assert not ctx.wait(timeout=SHORT_TIMEOUT)
        cancel()

    def test_empty_kinds_raise(self, bridge: SignalBridge) -> None:
        """At least one interrupt is required."""
        with pytest.raises(ValueError, match="at least one"):
            bridge.with_signals(background())

    def test_subscription_released_after_signal(self, bridge: SignalBridge) -> None:
        """The coordinating thread releases its subscription on exit."""
        ctx, _cancel = bridge.with_signals(background(), Interrupt.SIGUSR1)
        bridge.notifier.deliver(Interrupt.SIGUSR1)
        _settled(bridge, ctx)
        assert bridge.notifier.subscription_count(Interrupt.SIGUSR1) == 0
        assert bridge.active_count == 0

    def test_log_records_cause(self, bridge: SignalBridge) -> None:
        """The event log tells the story of the race."""
        ctx, _cancel = bridge.with_signals(background(), Interrupt.SIGHUP)
        bridge.notifier.deliver(Interrupt.SIGHUP)
        _settled(bridge, ctx)
        messages = [e.message for e in bridge.logger.filter(source="bridge")]
        assert messages == [
            "signals(SIGHUP): subscribed",
            "signals(SIGHUP): closed by SIGHUP",
            "signals(SIGHUP): released",
        ]

    def test_thread_named_from_settings(self, notifier: Notifier) -> None:
        """Coordinating threads are named with the configured prefix."""
        bridge = SignalBridge(notifier=notifier, settings=Settings(thread_prefix="watch"))
        ctx, _cancel = bridge.with_signals(background(), Interrupt.SIGHUP)
        bridge.notifier.deliver(Interrupt.SIGHUP)
        _settled(bridge, ctx)
        (entry,) = [e for e in bridge.logger.entries if e.message.endswith("closed by SIGHUP")]
        assert entry.thread == "watch-1"


class TestExplicitCancel:
    """Verify that canceling never records a cause."""

    def test_cancel_before_signal(self, bridge: SignalBridge) -> None:
        """Cancel first: closed, no cause, and nothing later changes that."""
        ctx, cancel = bridge.with_signals(background(), Interrupt.SIGUSR1)
        cancel()
        _settled(bridge, ctx)
        assert ctx.reason is CloseReason.EXPLICIT_CANCEL
        assert bridge.lookup(ctx) is None
        assert bridge.notifier.deliver(Interrupt.SIGUSR1) == 0
        with pytest.raises(SignalNotFoundError, match="not closed by a signal"):
            bridge.closed(ctx)

    def test_cancel_from_another_thread(self, bridge: SignalBridge) -> None:
        """Cancel is safe to call from any thread."""
        ctx, cancel = bridge.with_signals(background(), Interrupt.SIGUSR1)
        threading.Thread(target=cancel).start()
        _settled(bridge, ctx)
        assert bridge.lookup(ctx) is None

    def test_cancel_is_idempotent(self, bridge: SignalBridge) -> None:
        """Repeated cancels have no further effect."""
        ctx, cancel = bridge.with_signals(background(), Interrupt.SIGUSR1)
        cancel()
        cancel()
        _settled(bridge, ctx)
        cancel()
        assert ctx.reason is CloseReason.EXPLICIT_CANCEL
        assert len(bridge.registry) == 0

    def test_cancel_after_signal_is_noop(self, bridge: SignalBridge) -> None:
        """Canceling a signaled child keeps the recorded cause."""
        ctx, cancel = bridge.with_signals(background(), Interrupt.SIGHUP)
        bridge.notifier.deliver(Interrupt.SIGHUP)
        _settled(bridge, ctx)
        cancel()
        cancel()
        assert ctx.reason is CloseReason.SIGNAL_RECEIVED
        assert bridge.closed(ctx) is Interrupt.SIGHUP
        assert len(bridge.registry) == 1

    def test_watching_cancels_on_exit(self, bridge: SignalBridge) -> None:
        """The context-manager form cancels when the block ends."""
        with bridge.watching(background(), Interrupt.SIGUSR2) as ctx:
            assert not ctx.is_closed
        _settled(bridge, ctx)
        assert ctx.reason is CloseReason.EXPLICIT_CANCEL
        assert bridge.lookup(ctx) is None


class TestParentClosed:
    """Verify that a closing parent never records a cause."""

    def test_parent_cancel(self, bridge: SignalBridge) -> None:
        """Canceling the parent closes the child without a cause."""
        parent, cancel_parent = with_cancel(background())
        ctx, _cancel = bridge.with_signals(parent, Interrupt.SIGUSR1)
        cancel_parent()
        _settled(bridge, ctx)
        assert ctx.reason is CloseReason.PARENT_CLOSED
        assert bridge.lookup(ctx) is None
        assert bridge.notifier.subscription_count(Interrupt.SIGUSR1) == 0

    def test_parent_deadline(self, bridge: SignalBridge) -> None:
        """A parent's deadline closes the child with the deadline error."""
        parent, cancel_parent = with_timeout(background(), SHORT_TIMEOUT)
        ctx, _cancel = bridge.with_signals(parent, Interrupt.SIGUSR1)
        _settled(bridge, ctx)
        assert ctx.reason is CloseReason.PARENT_CLOSED
        assert isinstance(ctx.err, DeadlineExceededError)
        assert bridge.lookup(ctx) is None
        cancel_parent()

    def test_parent_already_closed(self, bridge: SignalBridge) -> None:
        """A closed parent closes the child at once and releases promptly."""
        parent, cancel_parent = with_cancel(background())
        cancel_parent()
        ctx, _cancel = bridge.with_signals(parent, Interrupt.SIGUSR1)
        assert ctx.is_closed
        _settled(bridge, ctx)
        assert bridge.lookup(ctx) is None
        assert bridge.notifier.subscription_count(Interrupt.SIGUSR1) == 0

    def test_parent_callback_removed(self, bridge: SignalBridge) -> None:
        """Finished bridges leave nothing registered on a long-lived parent."""
        parent, cancel_parent = with_cancel(background())
        ctx, cancel = bridge.with_signals(parent, Interrupt.SIGUSR1)
        cancel()
        _settled(bridge, ctx)
        assert parent._callbacks == []
        cancel_parent()

    def test_thread_start_failure_releases_everything(
        self,
        bridge: SignalBridge,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """If the coordinating thread cannot start, nothing is left subscribed."""

        def refuse(_self: threading.Thread) -> None:
            msg = "can't start new thread"
            raise RuntimeError(msg)

        parent, cancel_parent = with_cancel(background())
        monkeypatch.setattr(threading.Thread, "start", refuse)
        with pytest.raises(RuntimeError, match="can't start"):
            bridge.with_signals(parent, Interrupt.SIGUSR1)
        monkeypatch.undo()
        assert bridge.notifier.subscription_count(Interrupt.SIGUSR1) == 0
        assert parent._callbacks == []
        assert parent._children == set()
        assert bridge.active_count == 0
        assert any("abandoned" in entry.message for entry in bridge.logger.entries)
        cancel_parent()


class TestRace:
    """Verify first-arrival resolution."""

    def test_two_signals_record_only_the_first(self, bridge: SignalBridge) -> None:
        """Two kinds in quick succession: exactly one is recorded."""
        ctx, _cancel = bridge.with_signals(background(), Interrupt.SIGUSR1, Interrupt.SIGUSR2)
        bridge.notifier.deliver(Interrupt.SIGUSR1)
        bridge.notifier.deliver(Interrupt.SIGUSR2)
        _settled(bridge, ctx)
        assert bridge.closed(ctx) is Interrupt.SIGUSR1
        assert len(bridge.registry) == 1

    def test_cancel_racing_signal(self, bridge: SignalBridge) -> None:
        """Cancel and signal racing: closed once, cause iff the signal won."""
        ctx, cancel = bridge.with_signals(background(), Interrupt.SIGHUP)
        canceler = threading.Thread(target=cancel)
        canceler.start()
        bridge.notifier.deliver(Interrupt.SIGHUP)
        canceler.join(WAIT)
        _settled(bridge, ctx)
        if ctx.reason is CloseReason.SIGNAL_RECEIVED:
            assert bridge.closed(ctx) is Interrupt.SIGHUP
        else:
            assert ctx.reason is CloseReason.EXPLICIT_CANCEL
            assert bridge.lookup(ctx) is None

    def test_bridges_are_independent(self, bridge: SignalBridge) -> None:
        """One delivery reaches every bridge subscribed to it."""
        contexts = [bridge.with_signals(background(), Interrupt.SIGHUP)[0] for _ in range(BRIDGES_5)]
        assert bridge.notifier.deliver(Interrupt.SIGHUP) == BRIDGES_5
        for ctx in contexts:
            _settled(bridge, ctx)
            assert bridge.closed(ctx) is Interrupt.SIGHUP


class TestClosedQuery:
    """Verify the cause query on contexts the bridge does not know."""

    def test_foreign_context(self, bridge: SignalBridge) -> None:
        """A context that no bridge made has no cause."""
        ctx, cancel = with_cancel(background())
        cancel()
        assert bridge.lookup(ctx) is None
        with pytest.raises(SignalNotFoundError):
            bridge.closed(ctx)

    def test_background(self, bridge: SignalBridge) -> None:
        """The root context has no cause."""
        with pytest.raises(LookupError):
            bridge.closed(background())

    def test_pending_context(self, bridge: SignalBridge) -> None:
        """A pending bridged context has no cause yet; the query never blocks."""
        ctx, cancel = bridge.with_signals(background(), Interrupt.SIGHUP)
        with pytest.raises(SignalNotFoundError):
            bridge.closed(ctx)
        cancel()

    def test_registries_are_scoped(self, notifier: Notifier) -> None:
        """A bridge only answers for contexts recorded in its registry."""
        first = SignalBridge(notifier=notifier, registry=SignalRegistry())
        second = SignalBridge(notifier=notifier)
        ctx, _cancel = first.with_signals(background(), Interrupt.SIGHUP)
        notifier.deliver(Interrupt.SIGHUP)
        _settled(first, ctx)
        assert first.closed(ctx) is Interrupt.SIGHUP
        assert second.lookup(ctx) is None

    def test_join_unknown_context(self, bridge: SignalBridge) -> None:
        """Joining a context without a thread returns at once."""
        assert bridge.join(background()) is True

    @pytest.mark.parametrize("thing", [None, "ctx", 42])
    def test_non_context_has_no_cause(self, bridge: SignalBridge, thing: object) -> None:
        """Asking about something that is not a context reports not-found."""
        assert bridge.lookup(thing) is None
        with pytest.raises(SignalNotFoundError):
            bridge.closed(thing)


class TestWithTermination:
    """Verify the termination convenience."""

    @pytest.mark.parametrize("kind", sorted(TERMINATION))
    def test_termination_kinds(self, bridge: SignalBridge, kind: Interrupt) -> None:
        """SIGINT and SIGTERM both close a termination context."""
        ctx, _cancel = bridge.with_termination(background())
        assert bridge.notifier.subscribed_kinds() == TERMINATION
        bridge.notifier.deliver(kind)
        _settled(bridge, ctx)
        assert bridge.closed(ctx) is kind


class TestRealSignals:
    """Deliver genuine signals to this process."""

    def test_hangup(self, bridge: SignalBridge) -> None:
        """A real SIGHUP closes the child and reads as ``hangup``."""
        ctx, cancel = bridge.with_signals(background(), Interrupt.SIGHUP)
        os.kill(os.getpid(), Interrupt.SIGHUP)
        assert ctx.wait(timeout=WAIT)
        kind = bridge.closed(ctx)
        assert kind is Interrupt.SIGHUP
        assert str(kind) == "hangup"
        cancel()

    def test_termination_interrupt(self, bridge: SignalBridge) -> None:
        """A real SIGINT closes a termination context instead of raising."""
        ctx, cancel = bridge.with_termination(background())
        os.kill(os.getpid(), Interrupt.SIGINT)
        assert ctx.wait(timeout=WAIT)
        assert bridge.closed(ctx) is Interrupt.SIGINT
        cancel()

    def test_user_signal_with_cancel_only(self, bridge: SignalBridge) -> None:
        """No signal, just cancel: closed without a cause."""
        ctx, cancel = bridge.with_signals(background(), Interrupt.SIGUSR1)
        cancel()
        assert ctx.wait(timeout=WAIT)
        with pytest.raises(SignalNotFoundError):
            bridge.closed(ctx)


class TestDefaultBridge:
    """Verify the module-level functions."""

    @pytest.fixture(autouse=True)
    def _restore_handlers(self) -> Iterator[None]:
        """Undo handlers installed through the default notifier."""
        yield
        default_notifier().reset()

    def test_default_bridge_is_shared(self) -> None:
        """default_bridge() always returns the same instance."""
        assert default_bridge() is default_bridge()
        assert default_bridge().notifier is default_notifier()

    def test_module_functions(self) -> None:
        """with_signals and closed work through the default bridge."""
        ctx, cancel = ctxsignal.with_signals(ctxsignal.background(), Interrupt.SIGUSR2)
        os.kill(os.getpid(), Interrupt.SIGUSR2)
        assert ctx.wait(timeout=WAIT)
        assert ctxsignal.closed(ctx) is Interrupt.SIGUSR2
        assert ctxsignal.lookup(ctx) is Interrupt.SIGUSR2
        cancel()

    def test_module_termination_cancel(self) -> None:
        """with_termination followed by cancel has no cause."""
        ctx, cancel = ctxsignal.with_termination(ctxsignal.background())
        cancel()
        assert ctx.wait(timeout=WAIT)
        with pytest.raises(ctxsignal.SignalNotFoundError):
            ctxsignal.closed(ctx)
