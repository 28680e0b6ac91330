from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def system_clock() -> datetime:
    """Current time as a naive UTC datetime, matching what the SQL backend stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def fixed_clock(moment: datetime) -> Clock:
    return lambda: moment
