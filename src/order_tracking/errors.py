"""Exception types shared across the import pipeline."""

from __future__ import annotations

from typing import List, Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    from .domain.models import ImageResult


class TrackingImportError(Exception):
    """Base class for all pipeline errors."""


class InputRejected(TrackingImportError):
    """The image selection contains files that are not JPEG or PNG."""

    def __init__(self, rejected: Sequence[str], message: str | None = None) -> None:
        self.rejected: List[str] = list(rejected)
        if message is None:
            message = "Unsupported file type(s): " + ", ".join(self.rejected)
        super().__init__(message)


class ExtractionError(TrackingImportError):
    """OCR could not produce text for one image."""


class OrderStoreError(TrackingImportError):
    """A query or update against the order store failed."""


class OrderNotFound(OrderStoreError):
    def __init__(self, order_id: str) -> None:
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class MatchingAborted(TrackingImportError):
    """The matching pass stopped on a store error.

    Carries the per-image results computed before the failure so callers can
    still show them.
    """

    def __init__(self, per_image: Sequence["ImageResult"], cause: Exception) -> None:
        self.per_image = list(per_image)
        self.cause = cause
        super().__init__(f"Order matching aborted: {cause}")


class ReviewStateError(TrackingImportError):
    """An operation is not allowed in the review session's current stage."""
