"""Settings — tunables for signal bridges, read from the environment.

Every process has an environment: a set of ``KEY=VALUE`` string pairs
inherited from its parent.  Operators already use it to configure
services, so the few knobs a bridge has are read from there too:

    - ``CTXSIGNAL_THREAD_PREFIX`` — name prefix for coordinating threads
      (default ``ctxsignal``); threads are named ``<prefix>-<n>``.
    - ``CTXSIGNAL_LOG_CAPACITY`` — how many log entries to retain
      (default 1024).
    - ``CTXSIGNAL_LOG_LEVEL`` — lowest level recorded: ``debug``,
      ``info``, ``warning`` or ``error`` (default ``info``).
    - ``CTXSIGNAL_DAEMON_THREADS`` — whether coordinating threads are
      daemons (default ``1``); a non-daemon thread keeps the
      interpreter alive until its context closes.

Key design properties:
    - **Strings in, typed values out** — the environment only holds
      strings; ``from_env`` validates and converts them once.
    - **Copy, never reference** — settings are a frozen snapshot, so
      later changes to ``os.environ`` don't affect running bridges.
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass

from ctxsignal.logging import DEFAULT_CAPACITY, LogLevel

ENV_PREFIX = "CTXSIGNAL_"

_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off"})


@dataclass(frozen=True)
class Settings:
    """Immutable bridge settings.

    Attributes:
        thread_prefix: Name prefix for coordinating threads.
        log_capacity: Number of log entries retained.
        log_level: Lowest level the log records.
        daemon_threads: Whether coordinating threads are daemons.

    """

    thread_prefix: str = "ctxsignal"
    log_capacity: int = DEFAULT_CAPACITY
    log_level: LogLevel = LogLevel.INFO
    daemon_threads: bool = True

    def __post_init__(self) -> None:
        """Validate field values.

        Raises:
            ValueError: If the prefix is empty or the capacity is not
                positive.

        """
        if not self.thread_prefix:
            msg = "Thread prefix must not be empty"
            raise ValueError(msg)
        if self.log_capacity <= 0:
            msg = f"Log capacity must be positive, got {self.log_capacity}"
            raise ValueError(msg)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from an environment mapping.

        Args:
            environ: Variables to read (copied); defaults to ``os.environ``.

        Returns:
            Settings with every unset variable at its default.

        Raises:
            ValueError: If a variable holds an invalid value.

        """
        env = dict(os.environ if environ is None else environ)
        defaults = cls()
        return cls(
            thread_prefix=env.get(f"{ENV_PREFIX}THREAD_PREFIX", defaults.thread_prefix),
            log_capacity=_parse_int(env, "LOG_CAPACITY", defaults.log_capacity),
            log_level=_parse_level(env, "LOG_LEVEL", defaults.log_level),
            daemon_threads=_parse_bool(env, "DAEMON_THREADS", default=defaults.daemon_threads),
        )


def _parse_int(env: dict[str, str], key: str, default: int) -> int:
    raw = env.get(ENV_PREFIX + key)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        msg = f"{ENV_PREFIX}{key} must be an integer, got {raw!r}"
        raise ValueError(msg) from None


def _parse_level(env: dict[str, str], key: str, default: LogLevel) -> LogLevel:
    raw = env.get(ENV_PREFIX + key)
    if raw is None:
        return default
    try:
        return LogLevel[raw.strip().upper()]
    except KeyError:
        names = ", ".join(level.name.lower() for level in LogLevel)
        msg = f"{ENV_PREFIX}{key} must be one of {names}, got {raw!r}"
        raise ValueError(msg) from None


def _parse_bool(env: dict[str, str], key: str, *, default: bool) -> bool:
    raw = env.get(ENV_PREFIX + key)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    msg = f"{ENV_PREFIX}{key} must be a boolean, got {raw!r}"
    raise ValueError(msg)
