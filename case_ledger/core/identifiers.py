"""Record identifiers.

Ids are generated in-process so a record can be addressed before it is
written; the creator tag plus a millisecond suffix keeps them unique without
a round trip to the database.
"""

import random
import re
import time

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")
_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def creator_tag(username: str | None) -> str:
    """First three alphanumerics of the username, upper-cased."""
    tag = _NON_ALNUM.sub("", username or "")[:3].upper()
    return tag or "XX"


def _time_suffix() -> str:
    ts = _to_base36(_next_ms())[-6:]
    return f"{ts}{random.randint(1000, 9999)}"


def generate_account_id(username: str | None = None) -> str:
    """Id for a lead or confirmed client, e.g. ``C-KEJ-LV2K9C3721``."""
    return f"C-{creator_tag(username)}-{_time_suffix()}"


def generate_case_id(prefix: str, username: str | None = None) -> str:
    """Id for a case; ``CC`` for customer cases, ``CL`` for client cases."""
    return f"{prefix}-{creator_tag(username)}-{_time_suffix()}"


_last_ms = 0


def _next_ms() -> int:
    # Strictly increasing within the process so ids minted in one burst differ
    global _last_ms
    _last_ms = max(int(time.time() * 1000), _last_ms + 1)
    return _last_ms


def generate_short_id(prefix: str) -> str:
    """Id for dependent rows (history, notes, tasks, archive entries, ...)."""
    return f"{prefix}{_next_ms()}{random.randint(1000, 9999)}"
