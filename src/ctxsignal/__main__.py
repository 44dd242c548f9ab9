"""Entry point for ``python -m ctxsignal``."""

import sys

from ctxsignal.waiter import run

if __name__ == "__main__":
    sys.exit(run())
