"""Import pipeline: intake, OCR batch, matching, review and commit."""

from .batch import BatchOrchestrator, BatchOutcome, BatchResult
from .commit import CommitReport, commit_matches
from .intake import load_images, validate_selection
from .matcher import OrderMatcher
from .notices import Notice, describe_abort, describe_batch, describe_commit, describe_rejection
from .progress import BatchProgress
from .review import ReviewSession, ReviewStage, search_open_orders

__all__ = [
    "BatchOrchestrator",
    "BatchOutcome",
    "BatchResult",
    "BatchProgress",
    "CommitReport",
    "commit_matches",
    "load_images",
    "validate_selection",
    "OrderMatcher",
    "Notice",
    "describe_abort",
    "describe_batch",
    "describe_commit",
    "describe_rejection",
    "ReviewSession",
    "ReviewStage",
    "search_open_orders",
]
