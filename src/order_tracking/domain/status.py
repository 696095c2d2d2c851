"""Order status values and the tracking-number auto-transition table."""

from __future__ import annotations

from typing import Dict, Optional, Tuple

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_SHIPPED = "shipped"
STATUS_DELIVERED = "delivered"
STATUS_CANCELLED = "cancelled"

STATUS_CHOICES: Tuple[str, ...] = (
    STATUS_PENDING,
    STATUS_PROCESSING,
    STATUS_SHIPPED,
    STATUS_DELIVERED,
    STATUS_CANCELLED,
)

STATUS_DEFAULT = STATUS_PENDING

# Applied only when an order receives its first tracking number.
TRACKING_TRANSITIONS: Dict[str, str] = {
    STATUS_PENDING: STATUS_PROCESSING,
    STATUS_PROCESSING: STATUS_SHIPPED,
}


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def status_after_tracking(
    status: str,
    previous_tracking: Optional[str],
    new_tracking: Optional[str],
) -> str:
    """Return the status an order should have after a tracking assignment.

    The transition fires only on the null -> non-null edge of the tracking
    number; every other case (overwrite, clearing, terminal statuses) keeps
    the current status.
    """
    if not _is_blank(previous_tracking) or _is_blank(new_tracking):
        return status
    return TRACKING_TRANSITIONS.get(status, status)
