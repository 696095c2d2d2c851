"""Batch run: OCR every image in order, then match all pairs against open orders."""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..domain.extract import extract_pairs, tracking_tokens
from ..domain.models import ExtractedPair, ImageResult, ImageSource, MatchCandidate, UnmatchedEntry
from ..errors import ExtractionError, MatchingAborted, OrderStoreError
from ..logging import get_logger, log_context
from ..ocr.engine import extract_text
from ..store.db import OrderStore
from .intake import validate_selection
from .matcher import OrderMatcher
from .progress import BatchProgress

LOG = get_logger("orchestrator-batch")

Extractor = Callable[..., str]


class BatchOutcome(str, Enum):
    MATCHED = "matched"
    NO_MATCHES = "no-matches"
    NO_DATA = "no-data"
    CANCELLED = "cancelled"


@dataclass
class BatchResult:
    outcome: BatchOutcome
    per_image: List[ImageResult]
    matched: List[MatchCandidate] = field(default_factory=list)
    unmatched: List[UnmatchedEntry] = field(default_factory=list)
    pair_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "pair_count": self.pair_count,
            "per_image": [r.to_dict() for r in self.per_image],
            "matched": [m.to_dict() for m in self.matched],
            "unmatched": [u.to_dict() for u in self.unmatched],
        }


class BatchOrchestrator:
    """Drives extraction and matching over an ordered list of images.

    Images are processed strictly one after another; the progress object is
    keyed to "current image / total" and would be meaningless otherwise.
    Matching is a second pass that starts only after every image is done.
    """

    def __init__(
        self,
        store: OrderStore,
        *,
        extractor: Optional[Extractor] = None,
        matcher: Optional[OrderMatcher] = None,
        progress: Optional[BatchProgress] = None,
        batch_id: Optional[str] = None,
    ) -> None:
        self.store = store
        self.batch_id = batch_id or uuid.uuid4().hex[:12]
        self.extractor = extractor or extract_text
        self.matcher = matcher or OrderMatcher(store)
        self.progress = progress or BatchProgress()
        self._cancel = threading.Event()

    def cancel(self) -> None:
        """Request a stop; checked between images and before matching."""
        LOG.info("Batch cancellation requested")
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def _extract_one(self, image: ImageSource) -> tuple[ImageResult, List[ExtractedPair]]:
        try:
            text = self.extractor(image, on_progress=self.progress.update_stage)
        except ExtractionError as exc:
            LOG.warning(f"Skipping {image.name}: {exc}")
            return ImageResult(file_name=image.name, tracking_count=0, error=str(exc)), []
        pairs = extract_pairs(text)
        numbers = tracking_tokens(pairs)
        LOG.info(f"{image.name}: {len(numbers)} tracking number(s)")
        return ImageResult(file_name=image.name, tracking_count=len(numbers), tracking_numbers=tuple(numbers)), pairs

    def _match_all(self, pairs: Sequence[ExtractedPair]) -> tuple[List[MatchCandidate], List[UnmatchedEntry]]:
        matched: List[MatchCandidate] = []
        unmatched: List[UnmatchedEntry] = []
        for pair in pairs:
            candidate = self.matcher.find_match(pair)
            if candidate is not None:
                matched.append(candidate)
            else:
                unmatched.append(UnmatchedEntry(entry_id=len(unmatched) + 1, phone=pair.phone, tracking=pair.tracking))
        return matched, unmatched

    def run_batch(self, images: Sequence[ImageSource]) -> BatchResult:
        """Run one batch. Raises InputRejected before any OCR, MatchingAborted on store errors.

        A cancel request applies to the run in progress (or the next one, if none
        is running) and is cleared when that run returns.
        """
        with log_context(f"batch {self.batch_id}"):
            try:
                return self._run(images)
            finally:
                self._cancel.clear()

    def _run(self, images: Sequence[ImageSource]) -> BatchResult:
        validate_selection(images)
        total = len(images)
        LOG.info(f"Starting batch over {total} image(s)")
        self.progress.start(total)

        per_image: List[ImageResult] = []
        pairs: List[ExtractedPair] = []
        for index, image in enumerate(images, start=1):
            if self.cancelled:
                break
            self.progress.begin_image(index, image.name)
            with log_context(image.name):
                result, image_pairs = self._extract_one(image)
            per_image.append(result)
            pairs.extend(image_pairs)
            self.progress.finish_image()

        if self.cancelled:
            LOG.info(f"Batch cancelled after {len(per_image)}/{total} image(s)")
            self.progress.finish()
            return BatchResult(outcome=BatchOutcome.CANCELLED, per_image=per_image, pair_count=len(pairs))

        if not pairs:
            LOG.info("No phone/tracking pairs found in any image")
            self.progress.finish()
            return BatchResult(outcome=BatchOutcome.NO_DATA, per_image=per_image)

        self.progress.begin_matching()
        try:
            matched, unmatched = self._match_all(pairs)
        except OrderStoreError as exc:
            LOG.error(f"Matching aborted: {exc}")
            self.progress.finish()
            raise MatchingAborted(per_image, exc) from exc
        self.progress.finish()

        outcome = BatchOutcome.MATCHED if matched else BatchOutcome.NO_MATCHES
        LOG.info(f"Batch finished: {len(pairs)} pair(s), {len(matched)} matched, {len(unmatched)} unmatched")
        return BatchResult(
            outcome=outcome,
            per_image=per_image,
            matched=matched,
            unmatched=unmatched,
            pair_count=len(pairs),
        )
