"""Command-line waiter — block until the process receives a signal.

``python -m ctxsignal`` is the smallest useful program built on the
bridge: it prints its PID, waits for one of the named signals, and
prints the description of the one that arrived::

    $ python -m ctxsignal HUP USR1 &
    waiting for SIGHUP, SIGUSR1 (pid 4242)
    $ kill -HUP 4242
    hangup

With no signal names it waits for the termination set (SIGINT and
SIGTERM).  Exit status: 0 when a signal arrived, 1 when ``--timeout``
ran out first, 2 for unknown signal names or a bad ``--timeout``, 130 on
an unwatched Ctrl+C.

The helpers (``resolve_kinds``, ``format_waiting``, ``format_outcome``)
are pure and testable; ``run()`` is the I/O entrypoint.
"""

import argparse
import math
import os
import sys
from collections.abc import Sequence

from ctxsignal.bridge import SignalBridge, default_bridge
from ctxsignal.context import Context, background, with_timeout
from ctxsignal.signals import TERMINATION, Interrupt, SignalError, parse_interrupt

EXIT_SIGNALED = 0
EXIT_TIMEOUT = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the waiter."""
    parser = argparse.ArgumentParser(
        prog="ctxsignal",
        description="Wait until the process receives one of the given signals.",
    )
    parser.add_argument(
        "signals",
        nargs="*",
        metavar="SIGNAL",
        help="signal names or numbers, e.g. HUP, SIGUSR1, 15 (default: INT TERM)",
    )
    parser.add_argument(
        "--timeout",
        type=parse_timeout,
        default=None,
        help="give up after this many seconds",
    )
    return parser


def parse_timeout(text: str) -> float:
    """Parse a ``--timeout`` value: a finite, non-negative number of seconds.

    Raises:
        argparse.ArgumentTypeError: If *text* is not such a number.

    """
    try:
        seconds = float(text)
    except ValueError:
        msg = f"invalid timeout: {text!r}"
        raise argparse.ArgumentTypeError(msg) from None
    if not math.isfinite(seconds) or seconds < 0:
        msg = f"timeout must be a non-negative number of seconds, got {text!r}"
        raise argparse.ArgumentTypeError(msg)
    return seconds


def resolve_kinds(names: Sequence[str]) -> frozenset[Interrupt]:
    """Turn signal names into interrupts; no names means the termination set.

    Raises:
        SignalError: If a name is not a catchable interrupt.

    """
    if not names:
        return TERMINATION
    return frozenset(parse_interrupt(name) for name in names)


def format_waiting(kinds: frozenset[Interrupt], pid: int) -> str:
    """Format the banner printed while waiting."""
    names = ", ".join(kind.name for kind in sorted(kinds))
    return f"waiting for {names} (pid {pid})"


def format_outcome(ctx: Context, kind: Interrupt | None) -> str:
    """Describe how the wait ended.

    Args:
        ctx: The context that was waited on (closed).
        kind: The interrupt that closed it, if any.

    Returns:
        The interrupt's description, or the context's error text.

    """
    if kind is not None:
        return kind.description
    return str(ctx.err) if ctx.err is not None else "not closed"


def run(argv: Sequence[str] | None = None, *, bridge: SignalBridge | None = None) -> int:
    """Parse *argv*, wait for a signal, and report it.

    Returns:
        The process exit status.

    """
    args = build_parser().parse_args(argv)
    try:
        kinds = resolve_kinds(args.signals)
    except SignalError as exc:
        print(f"ctxsignal: {exc}", file=sys.stderr)  # noqa: T201
        return EXIT_USAGE

    bridge = bridge if bridge is not None else default_bridge()
    parent, cancel_parent = (
        with_timeout(background(), args.timeout) if args.timeout is not None else (background(), None)
    )
    ctx, cancel = bridge.with_signals(parent, *kinds)
    print(format_waiting(kinds, os.getpid()), file=sys.stderr, flush=True)  # noqa: T201
    try:
        ctx.wait()
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    finally:
        cancel()
        if cancel_parent is not None:
            cancel_parent()

    kind = bridge.lookup(ctx)
    if kind is None:
        print(format_outcome(ctx, kind), file=sys.stderr)  # noqa: T201
        return EXIT_TIMEOUT
    print(format_outcome(ctx, kind))  # noqa: T201
    return EXIT_SIGNALED
