"""Two-step operator review of a finished batch.

reviewing-results -> reviewing-matches -> committed | cancelled

While reviewing matches the operator can search open orders for each
unmatched entry and bind the entry to one of them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..domain.models import MatchCandidate, Order, UnmatchedEntry
from ..errors import ReviewStateError
from ..logging import get_logger
from ..store.db import OrderStore
from .batch import BatchOutcome, BatchResult
from .commit import CommitReport, commit_matches

LOG = get_logger("orchestrator-review")

SEARCH_MIN_LENGTH = 2
SEARCH_LIMIT = 5


class ReviewStage(str, Enum):
    REVIEWING_RESULTS = "reviewing-results"
    REVIEWING_MATCHES = "reviewing-matches"
    COMMITTED = "committed"
    CANCELLED = "cancelled"


def search_open_orders(
    store: OrderStore,
    text: str,
    *,
    min_length: int = SEARCH_MIN_LENGTH,
    limit: int = SEARCH_LIMIT,
) -> List[Order]:
    """Open orders by order code or contact; short queries never hit the store."""
    query = (text or "").strip()
    if len(query) < min_length:
        return []
    return store.search_open_orders(query, limit=limit)


@dataclass
class EntrySearch:
    text: str = ""
    results: List[Order] = field(default_factory=list)


class ReviewSession:
    def __init__(
        self,
        store: OrderStore,
        result: BatchResult,
        *,
        min_search_length: int = SEARCH_MIN_LENGTH,
        search_limit: int = SEARCH_LIMIT,
    ) -> None:
        self.store = store
        self.outcome = result.outcome
        self.per_image = list(result.per_image)
        self.pair_count = result.pair_count
        self.matched: List[MatchCandidate] = list(result.matched)
        self.unmatched: Dict[int, UnmatchedEntry] = {e.entry_id: e for e in result.unmatched}
        self.min_search_length = min_search_length
        self.search_limit = search_limit
        self.stage = ReviewStage.REVIEWING_RESULTS
        self.commit_report: Optional[CommitReport] = None
        self._searches: Dict[int, EntrySearch] = {}

    # --------------- Workflow ---------------
    @property
    def can_proceed(self) -> bool:
        return self.outcome in (BatchOutcome.MATCHED, BatchOutcome.NO_MATCHES)

    @property
    def initial_view(self) -> str:
        """Which list the match review opens on."""
        return "matched" if self.matched else "unmatched"

    def _require(self, stage: ReviewStage) -> None:
        if self.stage is not stage:
            raise ReviewStateError(f"Not allowed while {self.stage.value}")

    def proceed(self) -> None:
        self._require(ReviewStage.REVIEWING_RESULTS)
        if not self.can_proceed:
            raise ReviewStateError(f"Nothing to review for a {self.outcome.value} batch")
        self.stage = ReviewStage.REVIEWING_MATCHES

    def _clear(self) -> None:
        self.matched = []
        self.unmatched = {}
        self._searches = {}

    def cancel(self) -> None:
        if self.stage in (ReviewStage.COMMITTED, ReviewStage.CANCELLED):
            raise ReviewStateError(f"Session already {self.stage.value}")
        LOG.info(f"Review cancelled; discarding {len(self.matched)} match(es), {len(self.unmatched)} unmatched")
        self.stage = ReviewStage.CANCELLED
        self._clear()

    def commit(self) -> CommitReport:
        self._require(ReviewStage.REVIEWING_MATCHES)
        if not self.matched:
            raise ReviewStateError("No matches to commit")
        report = commit_matches(self.store, self.matched)
        self.commit_report = report
        self.stage = ReviewStage.COMMITTED
        self._clear()
        return report

    # --------------- Manual reconciliation ---------------
    def _entry(self, entry_id: int) -> UnmatchedEntry:
        entry = self.unmatched.get(entry_id)
        if entry is None:
            raise ReviewStateError(f"No unmatched entry {entry_id}")
        return entry

    def search(self, entry_id: int, text: str) -> List[Order]:
        self._require(ReviewStage.REVIEWING_MATCHES)
        self._entry(entry_id)
        state = self._searches.setdefault(entry_id, EntrySearch())
        state.text = text
        state.results = search_open_orders(
            self.store, text, min_length=self.min_search_length, limit=self.search_limit
        )
        return list(state.results)

    def search_state(self, entry_id: int) -> EntrySearch:
        return self._searches.get(entry_id, EntrySearch())

    def bind(self, entry_id: int, order_id: str) -> MatchCandidate:
        """Move an unmatched entry to the matched set, bound to `order_id`."""
        self._require(ReviewStage.REVIEWING_MATCHES)
        entry = self._entry(entry_id)
        order = self.store.get_order(order_id)
        if order.tracking_number:
            raise ReviewStateError(f"Order {order.order_code} already has a tracking number")
        taken = next((m for m in self.matched if m.order_id == order.id), None)
        if taken is not None:
            raise ReviewStateError(
                f"Order {order.order_code} is already matched to tracking {taken.tracking} in this batch"
            )
        candidate = MatchCandidate(
            order_id=order.id,
            order_code=order.order_code,
            customer_contact=order.customer_contact,
            phone=entry.phone,
            tracking=entry.tracking,
            manual=True,
        )
        del self.unmatched[entry_id]
        self._searches.pop(entry_id, None)
        self.matched.append(candidate)
        LOG.info(f"Bound tracking {entry.tracking} to order {order.order_code}")
        return candidate

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage.value,
            "outcome": self.outcome.value,
            "pair_count": self.pair_count,
            "initial_view": self.initial_view,
            "per_image": [r.to_dict() for r in self.per_image],
            "matched": [m.to_dict() for m in self.matched],
            "unmatched": [
                {**e.to_dict(), "search": self.search_state(e.entry_id).text}
                for e in self.unmatched.values()
            ],
            "commit": self.commit_report.to_dict() if self.commit_report else None,
        }
