"""
Session Identifiers
===================

Mints unique, sortable identifiers for recording sessions.

Format:
    <UTC RFC3339 timestamp>_<counter>_<random hex>

    e.g. 2026-10-16T22:47:03Z_000007_3f9a61c2

The timestamp keeps session directories in chronological order, the
process-wide counter keeps ids unique within a process even when two
connections arrive in the same second, and the random suffix keeps them
unique across restarts.
"""

import itertools
import secrets
from datetime import datetime, timezone
from typing import Optional


_counter = itertools.count(1)


def new_session_id(now: Optional[datetime] = None) -> str:
    """
    Create a new session identifier.

    Args:
        now: Override for the current time (tests)

    Returns:
        Identifier safe to use as a directory name
    """
    moment = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    stamp = moment.strftime("%Y-%m-%dT%H:%M:%SZ")
    return f"{stamp}_{next(_counter):06d}_{secrets.token_hex(4)}"
