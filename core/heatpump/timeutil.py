"""Time helpers."""

import time

from .const import MATTER_EPOCH_OFFSET


def to_matter_epoch_seconds(unix_seconds: int | None = None) -> int:
    """Convert Unix seconds (default: now) to seconds since 2000-01-01 UTC."""
    seconds = unix_seconds if unix_seconds is not None else int(time.time())
    return seconds - MATTER_EPOCH_OFFSET
