from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from order_tracking.domain.status import (
    STATUS_CANCELLED,
    STATUS_DELIVERED,
    STATUS_PENDING,
    STATUS_PROCESSING,
    STATUS_SHIPPED,
    status_after_tracking,
)


@pytest.mark.parametrize(
    "status,expected",
    [
        (STATUS_PENDING, STATUS_PROCESSING),
        (STATUS_PROCESSING, STATUS_SHIPPED),
        (STATUS_SHIPPED, STATUS_SHIPPED),
        (STATUS_DELIVERED, STATUS_DELIVERED),
        (STATUS_CANCELLED, STATUS_CANCELLED),
    ],
)
def test_first_tracking_assignment(status, expected):
    assert status_after_tracking(status, None, "TH1234567890") == expected


def test_overwriting_existing_tracking_keeps_status():
    assert status_after_tracking(STATUS_PENDING, "OLD1234567890", "NEW1234567890") == STATUS_PENDING
    assert status_after_tracking(STATUS_PROCESSING, "OLD1234567890", "NEW1234567890") == STATUS_PROCESSING


def test_blank_values_do_not_trigger():
    assert status_after_tracking(STATUS_PENDING, None, "  ") == STATUS_PENDING
    assert status_after_tracking(STATUS_PENDING, None, None) == STATUS_PENDING
    # An empty string counts as "no tracking yet"
    assert status_after_tracking(STATUS_PENDING, "", "TH1234567890") == STATUS_PROCESSING
