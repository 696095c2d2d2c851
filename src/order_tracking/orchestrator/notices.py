"""Operator-facing notices; every terminal state gets its own wording."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict

from ..errors import InputRejected, MatchingAborted
from .batch import BatchOutcome, BatchResult
from .commit import CommitReport

INFO = "info"
SUCCESS = "success"
WARNING = "warning"
ERROR = "error"


@dataclass(frozen=True)
class Notice:
    level: str
    title: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


def describe_batch(result: BatchResult) -> Notice:
    images = len(result.per_image)
    if result.outcome is BatchOutcome.NO_DATA:
        return Notice(
            WARNING,
            "No data found",
            f"No phone and tracking numbers were found in {images} image(s). Retake the label photos and try again.",
        )
    if result.outcome is BatchOutcome.NO_MATCHES:
        return Notice(
            WARNING,
            "No matching orders",
            f"Found {result.pair_count} tracking number(s) but none matched an open order. Match them manually.",
        )
    if result.outcome is BatchOutcome.CANCELLED:
        return Notice(INFO, "Import cancelled", f"Stopped after {images} image(s); nothing was matched.")
    return Notice(
        SUCCESS,
        "Tracking numbers found",
        f"Matched {len(result.matched)} of {result.pair_count} tracking number(s) to open orders.",
    )


def describe_commit(report: CommitReport) -> Notice:
    if report.total and report.success_count == report.total:
        return Notice(SUCCESS, "Orders updated", f"Updated {report.success_count} order(s) with tracking numbers.")
    if report.success_count == 0:
        return Notice(ERROR, "Update failed", f"None of the {report.total} order(s) could be updated.")
    return Notice(
        WARNING,
        "Partially updated",
        f"Updated {report.success_count} of {report.total} order(s); {len(report.failed)} failed.",
    )


def describe_rejection(err: InputRejected) -> Notice:
    return Notice(ERROR, "Invalid files", f"{err}. Only JPEG and PNG images are accepted.")


def describe_abort(err: MatchingAborted) -> Notice:
    return Notice(
        ERROR,
        "Order lookup failed",
        f"Could not match tracking numbers against orders: {err.cause}. Image results are kept.",
    )
