"""
Centralized id generation.

Account ids keep the ``acc_<epoch-ms>`` form so that existing credential
files stay readable; collisions inside one millisecond get a counter suffix.
"""

from __future__ import annotations

import itertools
import threading
import time

_lock = threading.Lock()
_last_ms = 0
_counter = itertools.count()


def generate_account_id() -> str:
    """Generate a unique, time-ordered account id."""
    global _last_ms, _counter
    with _lock:
        ts_ms = int(time.time() * 1000)
        if ts_ms != _last_ms:
            _last_ms = ts_ms
            _counter = itertools.count()
            return f"acc_{ts_ms}"
        return f"acc_{ts_ms}_{next(_counter) + 1}"
