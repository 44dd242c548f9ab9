"""ctxsignal — cancellable contexts that close on process signals.

Re-exports public symbols so callers can write::

    from ctxsignal import background, closed, with_termination

    ctx, cancel = with_termination(background())
    try:
        ctx.wait()
        print("stopping:", closed(ctx))
    finally:
        cancel()
"""

from ctxsignal.bridge import (
    SignalBridge,
    SignalNotFoundError,
    closed,
    default_bridge,
    lookup,
    with_signals,
    with_termination,
)
from ctxsignal.config import Settings
from ctxsignal.context import (
    CanceledError,
    CloseReason,
    Context,
    ContextError,
    DeadlineExceededError,
    background,
    with_cancel,
    with_deadline,
    with_timeout,
)
from ctxsignal.notify import Notifier, Subscription, default_notifier
from ctxsignal.registry import SignalRegistry
from ctxsignal.signals import TERMINATION, Interrupt, SignalError, parse_interrupt

__all__ = [
    "TERMINATION",
    "CanceledError",
    "CloseReason",
    "Context",
    "ContextError",
    "DeadlineExceededError",
    "Interrupt",
    "Notifier",
    "Settings",
    "SignalBridge",
    "SignalError",
    "SignalNotFoundError",
    "SignalRegistry",
    "Subscription",
    "background",
    "closed",
    "default_bridge",
    "default_notifier",
    "lookup",
    "parse_interrupt",
    "with_cancel",
    "with_deadline",
    "with_signals",
    "with_termination",
    "with_timeout",
]
