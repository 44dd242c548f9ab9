"""Interrupt kinds — the external signals a context can be tied to.

Signals are asynchronous notifications the operating system delivers to
a process.  Most of them mean "please stop" in one form or another, and
a long-running operation wants to learn about them through the same
cancellation mechanism it already uses for deadlines and explicit
aborts.

Five interrupts can be subscribed to:
    - **SIGHUP** — hangup.  The controlling terminal went away; daemons
      conventionally treat it as "reload".
    - **SIGINT** — interrupt.  What Ctrl+C sends.
    - **SIGUSR1** — user-defined signal 1.  No built-in meaning.
    - **SIGUSR2** — user-defined signal 2.  Same as SIGUSR1.
    - **SIGTERM** — polite termination request from an operator or a
      process supervisor.

Uncatchable signals (SIGKILL, SIGSTOP) are deliberately absent: a
process never gets to run user code when they arrive, so there is
nothing to subscribe to.

Design choices:
    - **IntEnum with the host's signal numbers** — an ``Interrupt`` can
      be passed straight to ``signal.signal`` or ``os.kill``.
    - **Descriptions match the classic strsignal text** — ``str()`` of a
      kind reads ``hangup`` or ``terminated``, which is what a program
      reporting "why did I stop?" wants to print.
"""

import signal
from enum import IntEnum


class Interrupt(IntEnum):
    """Catchable process interrupts, valued by the host's signal numbers."""

    SIGHUP = int(signal.SIGHUP)
    SIGINT = int(signal.SIGINT)
    SIGUSR1 = int(signal.SIGUSR1)
    SIGUSR2 = int(signal.SIGUSR2)
    SIGTERM = int(signal.SIGTERM)

    @property
    def description(self) -> str:
        """Return the conventional human-readable description."""
        return DESCRIPTIONS[self]

    def __str__(self) -> str:
        """Format as the conventional description (e.g. ``hangup``)."""
        return self.description


DESCRIPTIONS: dict[Interrupt, str] = {
    Interrupt.SIGHUP: "hangup",
    Interrupt.SIGINT: "interrupt",
    Interrupt.SIGUSR1: "user defined signal 1",
    Interrupt.SIGUSR2: "user defined signal 2",
    Interrupt.SIGTERM: "terminated",
}
"""Map every interrupt to the text ``strsignal(3)`` reports for it."""

TERMINATION: frozenset[Interrupt] = frozenset({Interrupt.SIGINT, Interrupt.SIGTERM})
"""The conventional "please stop" signals.

SIGINT comes from a user at a terminal, SIGTERM from an operator or a
supervisor such as systemd or Kubernetes.
"""


class SignalError(Exception):
    """Raised when an interrupt cannot be parsed or subscribed to."""


def parse_interrupt(text: str) -> Interrupt:
    """Parse an interrupt from a name or number.

    Accepts the forms people type at a shell: ``HUP``, ``SIGHUP``,
    ``hup``, or the numeric value ``1``.

    Args:
        text: The name or number to parse.

    Returns:
        The matching Interrupt.

    Raises:
        SignalError: If the text names no catchable interrupt.

    """
    cleaned = text.strip().upper()
    if cleaned.isdigit():
        try:
            return Interrupt(int(cleaned))
        except ValueError:
            msg = f"Signal {text!r} is not a catchable interrupt"
            raise SignalError(msg) from None
    if not cleaned.startswith("SIG"):
        cleaned = f"SIG{cleaned}"
    try:
        return Interrupt[cleaned]
    except KeyError:
        msg = f"Unknown signal {text!r}"
        raise SignalError(msg) from None
