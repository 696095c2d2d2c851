from __future__ import annotations

import sys
from pathlib import Path

import cv2
import numpy as np
import pytesseract
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from order_tracking.domain.models import ImageSource
from order_tracking.errors import ExtractionError
from order_tracking.ocr.engine import STAGE_BANDS, STAGES, TesseractEngine, extract_text


def _png_bytes() -> bytes:
    canvas = np.full((60, 120, 3), 255, dtype=np.uint8)
    cv2.putText(canvas, "0812345678", (2, 40), cv2.FONT_HERSHEY_SIMPLEX, 0.5, (0, 0, 0), 1)
    ok, buf = cv2.imencode(".png", canvas)
    assert ok
    return buf.tobytes()


@pytest.fixture
def fake_tesseract(monkeypatch):
    calls = {"image_to_string": []}

    def _image_to_string(image, lang=None, config="", timeout=0):
        calls["image_to_string"].append({"shape": image.shape, "lang": lang, "config": config, "timeout": timeout})
        return "สมชาย 0812345678 TH1234567890XY\n"

    monkeypatch.setattr(pytesseract, "get_tesseract_version", lambda: "5.3.0")
    monkeypatch.setattr(pytesseract, "get_languages", lambda config="": ["eng", "tha", "osd"])
    monkeypatch.setattr(pytesseract, "image_to_string", _image_to_string)
    return calls


def test_progress_walks_the_five_stage_bands(fake_tesseract):
    events = []
    image = ImageSource(name="label.png", content_type="image/png", data=_png_bytes())

    text = extract_text(image, on_progress=lambda stage, pct: events.append((stage, pct)), language="tha+eng")

    assert "TH1234567890XY" in text
    assert events == [(stage, STAGE_BANDS[stage][0]) for stage in STAGES] + [("recognizing", 100)]
    assert STAGE_BANDS["loading-engine"] == (0, 20)
    assert STAGE_BANDS["recognizing"] == (70, 100)
    call = fake_tesseract["image_to_string"][0]
    assert call["lang"] == "tha+eng"
    # Small images are upscaled and binarized to a single channel
    assert call["shape"] == (120, 240)


def test_undecodable_image_fails_and_engine_is_released(fake_tesseract):
    image = ImageSource(name="broken.jpg", content_type="image/jpeg", data=b"not really a jpeg")
    with pytest.raises(ExtractionError):
        with TesseractEngine(language="eng") as engine:
            engine.load()
            engine.recognize(image)
    assert engine.terminated
    assert fake_tesseract["image_to_string"] == []


def test_engine_is_released_after_success(fake_tesseract):
    image = ImageSource(name="label.png", content_type="image/png", data=_png_bytes())
    with TesseractEngine(language="eng") as engine:
        engine.recognize(image)
    assert engine.terminated
    with pytest.raises(ExtractionError):
        engine.recognize(image)


def test_missing_language_data(fake_tesseract):
    image = ImageSource(name="label.png", content_type="image/png", data=_png_bytes())
    with pytest.raises(ExtractionError, match="jpn"):
        extract_text(image, language="jpn+eng")


def test_tesseract_failure_becomes_extraction_error(fake_tesseract, monkeypatch):
    def _boom(*_, **__):
        raise pytesseract.TesseractError(1, "Error during processing.")

    monkeypatch.setattr(pytesseract, "image_to_string", _boom)
    image = ImageSource(name="label.png", content_type="image/png", data=_png_bytes())
    with pytest.raises(ExtractionError, match="label.png"):
        extract_text(image, language="eng")


def test_missing_binary(monkeypatch):
    def _not_found():
        raise pytesseract.TesseractNotFoundError()

    monkeypatch.setattr(pytesseract, "get_tesseract_version", _not_found)
    image = ImageSource(name="label.png", content_type="image/png", data=_png_bytes())
    with pytest.raises(ExtractionError, match="not available"):
        extract_text(image)
