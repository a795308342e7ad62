"""Override scoping rules.

Overrides are audit records. They never change a gate's status; they only
tell consumers to treat the current failing episode as non-blocking.
"""

from collections.abc import Iterable
from datetime import datetime

from gate_engine.domain.status import GateStatus, ensure_utc


def override_applies(
    status: GateStatus,
    failed_at: datetime | None,
    override_times: Iterable[datetime],
) -> bool:
    """Check whether any override covers the current failing episode.

    An override counts only if it was recorded at or after the episode
    started. A fresh failure after recovery has a later failed_at, so
    earlier overrides no longer apply.

    Args:
        status: Current gate status (after lazy expiry)
        failed_at: Start of the current failing episode
        override_times: created_at of override records for this merchant/gate

    Returns:
        True if the gate should be treated as non-blocking
    """
    if not status.is_blocking:
        return False
    episode_start = ensure_utc(failed_at)
    if episode_start is None:
        return False
    return any(ensure_utc(t) >= episode_start for t in override_times)
