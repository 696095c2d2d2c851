from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Dict

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from order_tracking.domain.models import ImageSource
from order_tracking.errors import ExtractionError, InputRejected, MatchingAborted, OrderStoreError
from order_tracking.logging import BatchContextFilter, current_log_context, log_context
from order_tracking.orchestrator import BatchOrchestrator, BatchOutcome, BatchProgress
from order_tracking.store.db import OrderStore


def _store(tmp_path: Path) -> OrderStore:
    store = OrderStore(db_path=str(tmp_path / "orders.sqlite3"))
    store.insert_order({"order_code": "ORD-001", "customer_contact": "สมชาย\n0812345678\nBangkok"})
    store.insert_order({"order_code": "ORD-002", "customer_contact": "Malee\n0899999999"})
    return store


def _image(name: str, content_type: str = "image/jpeg") -> ImageSource:
    return ImageSource(name=name, content_type=content_type, data=b"\xff\xd8")


class FakeExtractor:
    """Maps image name -> OCR text, or to an exception to raise."""

    def __init__(self, texts: Dict[str, object]) -> None:
        self.texts = texts
        self.calls = []

    def __call__(self, image, *, on_progress=None):
        self.calls.append(image.name)
        if on_progress:
            on_progress("loading-engine", 0)
            on_progress("recognizing", 70)
        value = self.texts[image.name]
        if isinstance(value, Exception):
            raise value
        if on_progress:
            on_progress("recognizing", 100)
        return value


def test_label_text_is_matched_to_open_order(tmp_path: Path) -> None:
    store = _store(tmp_path)
    extractor = FakeExtractor({"a.jpg": "สมชาย 0812345678 TH1234567890XY"})
    result = BatchOrchestrator(store, extractor=extractor).run_batch([_image("a.jpg")])

    assert result.outcome is BatchOutcome.MATCHED
    assert len(result.matched) == 1
    match = result.matched[0]
    assert match.order_code == "ORD-001"
    assert match.tracking == "TH1234567890XY"
    assert match.phone == "0812345678"
    assert result.unmatched == []
    assert result.per_image[0].tracking_numbers == ("TH1234567890XY",)


def test_unknown_phone_lands_in_unmatched(tmp_path: Path) -> None:
    store = _store(tmp_path)
    extractor = FakeExtractor(
        {
            "a.jpg": "x 0812345678 TH1234567890XY",
            "b.png": "y 0855555555 KEX1234567890\nz 0866666666 KEX0987654321",
        }
    )
    result = BatchOrchestrator(store, extractor=extractor).run_batch([_image("a.jpg"), _image("b.png", "image/png")])
    assert result.outcome is BatchOutcome.MATCHED
    assert [u.tracking for u in result.unmatched] == ["KEX1234567890", "KEX0987654321"]
    assert [u.entry_id for u in result.unmatched] == [1, 2]
    assert result.pair_count == 3


def test_no_pairs_reports_no_data_not_no_matches(tmp_path: Path) -> None:
    store = _store(tmp_path)
    extractor = FakeExtractor({"a.jpg": "blurry\nnothing here", "b.jpg": "0812345678 only a phone"})
    result = BatchOrchestrator(store, extractor=extractor).run_batch([_image("a.jpg"), _image("b.jpg")])
    assert result.outcome is BatchOutcome.NO_DATA
    assert [r.tracking_count for r in result.per_image] == [0, 0]


def test_pairs_without_open_orders_report_no_matches(tmp_path: Path) -> None:
    store = _store(tmp_path)
    extractor = FakeExtractor({"a.jpg": "0811110000 TH1234567890XY"})
    result = BatchOrchestrator(store, extractor=extractor).run_batch([_image("a.jpg")])
    assert result.outcome is BatchOutcome.NO_MATCHES
    assert result.matched == []
    assert len(result.unmatched) == 1


def test_unreadable_image_is_skipped(tmp_path: Path) -> None:
    store = _store(tmp_path)
    extractor = FakeExtractor(
        {
            "bad.jpg": ExtractionError("Could not decode image: bad.jpg"),
            "good.jpg": "0899999999 TH5555555555",
        }
    )
    result = BatchOrchestrator(store, extractor=extractor).run_batch([_image("bad.jpg"), _image("good.jpg")])
    assert extractor.calls == ["bad.jpg", "good.jpg"]
    bad, good = result.per_image
    assert bad.tracking_count == 0 and bad.error
    assert good.tracking_count == 1
    assert result.matched[0].order_code == "ORD-002"


def test_wrong_file_type_rejects_whole_selection(tmp_path: Path) -> None:
    store = _store(tmp_path)
    extractor = FakeExtractor({"a.jpg": "0812345678 TH1234567890XY"})
    with pytest.raises(InputRejected) as info:
        BatchOrchestrator(store, extractor=extractor).run_batch(
            [_image("a.jpg"), _image("doc.pdf", "application/pdf")]
        )
    assert info.value.rejected == ["doc.pdf"]
    assert extractor.calls == []


def test_progress_is_sequential_and_matching_comes_last(tmp_path: Path) -> None:
    store = _store(tmp_path)
    progress = BatchProgress()
    seen = []
    progress.subscribe(lambda snap: seen.append((snap["state"], snap["image_index"], snap["image_count"], snap["percent"])))
    extractor = FakeExtractor({"a.jpg": "0812345678 TH1234567890XY", "b.jpg": "nothing"})
    BatchOrchestrator(store, extractor=extractor, progress=progress).run_batch([_image("a.jpg"), _image("b.jpg")])

    indexes = [idx for _, idx, _, _ in seen]
    assert indexes == sorted(indexes)
    assert all(total == 2 for _, _, total, _ in seen)
    states = [s for s, _, _, _ in seen]
    assert states[-2:] == ["matching", "finished"]
    assert states.index("matching") > max(i for i, s in enumerate(states) if s == "done")
    assert ("done", 1, 2, 100) in seen and ("done", 2, 2, 100) in seen
    assert progress.snapshot()["state"] == "finished"


def test_store_failure_aborts_matching_but_keeps_image_results(tmp_path: Path) -> None:
    store = _store(tmp_path)

    class BrokenMatcher:
        def find_match(self, pair):
            raise OrderStoreError("database is locked")

    extractor = FakeExtractor({"a.jpg": "0812345678 TH1234567890XY"})
    orchestrator = BatchOrchestrator(store, extractor=extractor, matcher=BrokenMatcher())
    with pytest.raises(MatchingAborted) as info:
        orchestrator.run_batch([_image("a.jpg")])
    assert [r.file_name for r in info.value.per_image] == ["a.jpg"]
    assert info.value.per_image[0].tracking_numbers == ("TH1234567890XY",)
    assert isinstance(info.value.cause, OrderStoreError)


def test_cancel_stops_between_images(tmp_path: Path) -> None:
    store = _store(tmp_path)
    texts = {"a.jpg": "0812345678 TH1234567890XY", "b.jpg": "0899999999 TH5555555555"}
    extractor = FakeExtractor(texts)
    orchestrator = BatchOrchestrator(store, extractor=extractor)

    def _cancel_after_first(image, *, on_progress=None):
        text = extractor(image, on_progress=on_progress)
        orchestrator.cancel()
        return text

    orchestrator.extractor = _cancel_after_first
    result = orchestrator.run_batch([_image("a.jpg"), _image("b.jpg")])
    assert result.outcome is BatchOutcome.CANCELLED
    assert extractor.calls == ["a.jpg"]
    assert [r.file_name for r in result.per_image] == ["a.jpg"]
    assert result.matched == [] and result.unmatched == []


def test_cancel_applies_to_one_run_only(tmp_path: Path) -> None:
    store = _store(tmp_path)
    extractor = FakeExtractor({"a.jpg": "0812345678 TH1234567890XY"})
    orchestrator = BatchOrchestrator(store, extractor=extractor)

    orchestrator.cancel()
    first = orchestrator.run_batch([_image("a.jpg")])
    assert first.outcome is BatchOutcome.CANCELLED
    assert first.per_image == []
    assert not orchestrator.cancelled

    second = orchestrator.run_batch([_image("a.jpg")])
    assert second.outcome is BatchOutcome.MATCHED
    assert extractor.calls == ["a.jpg"]


def test_log_lines_carry_batch_and_image_label(tmp_path: Path) -> None:
    store = _store(tmp_path)
    labels = []

    def _extractor(image, *, on_progress=None):
        labels.append(current_log_context())
        return "nothing here"

    orchestrator = BatchOrchestrator(store, extractor=_extractor, batch_id="b42")
    orchestrator.run_batch([_image("a.jpg"), _image("b.jpg")])
    assert labels == ["batch b42/a.jpg", "batch b42/b.jpg"]
    assert current_log_context() == ""

    record = logging.LogRecord("order_tracking.test", logging.INFO, __file__, 1, "msg", None, None)
    with log_context("batch b42"):
        BatchContextFilter().filter(record)
    assert record.log_context == " <batch b42>"
    BatchContextFilter().filter(record)
    assert record.log_context == ""
