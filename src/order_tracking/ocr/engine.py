"""Tesseract-backed text extraction for one label image at a time."""

from __future__ import annotations

from typing import Callable, Dict, Optional, Tuple

import cv2
import numpy as np
import pytesseract

from ..config import DEFAULT_OCR_LANG, DEFAULT_OCR_TIMEOUT
from ..domain.models import ImageSource
from ..errors import ExtractionError
from ..logging import get_logger

LOG = get_logger("ocr-engine")


STAGE_LOADING_ENGINE = "loading-engine"
STAGE_INITIALIZING = "initializing"
STAGE_LOADING_LANGUAGE = "loading-language"
STAGE_PREPARING = "preparing"
STAGE_RECOGNIZING = "recognizing"

STAGES: Tuple[str, ...] = (
    STAGE_LOADING_ENGINE,
    STAGE_INITIALIZING,
    STAGE_LOADING_LANGUAGE,
    STAGE_PREPARING,
    STAGE_RECOGNIZING,
)

# Share of the 0-100 per-image scale; recognition is by far the longest phase.
STAGE_BANDS: Dict[str, Tuple[int, int]] = {
    STAGE_LOADING_ENGINE: (0, 20),
    STAGE_INITIALIZING: (20, 40),
    STAGE_LOADING_LANGUAGE: (40, 60),
    STAGE_PREPARING: (60, 70),
    STAGE_RECOGNIZING: (70, 100),
}

# Block of text; labels are mostly left-aligned lines.
DEFAULT_PSM = 6

ProgressCallback = Callable[[str, int], None]


def preprocess(img: np.ndarray) -> np.ndarray:
    """Grayscale, upscale small photos and binarize with Otsu."""
    gray = cv2.cvtColor(img, cv2.COLOR_BGR2GRAY) if img.ndim == 3 else img
    h, w = gray.shape[:2]
    if max(h, w) < 1500:
        gray = cv2.resize(gray, (w * 2, h * 2), interpolation=cv2.INTER_CUBIC)
    gray = cv2.GaussianBlur(gray, (3, 3), 0)
    _, th = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
    return th


class TesseractEngine:
    """One engine instance per image.

    Use as a context manager; `terminate()` runs when the scope exits, whether
    recognition succeeded or not, and a terminated engine refuses further work.
    """

    def __init__(
        self,
        *,
        language: str = DEFAULT_OCR_LANG,
        tesseract_cmd: Optional[str] = None,
        timeout: int = DEFAULT_OCR_TIMEOUT,
        psm: int = DEFAULT_PSM,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        self.language = language
        self.tesseract_cmd = tesseract_cmd
        self.timeout = timeout
        self.psm = psm
        self._on_progress = on_progress
        self._config: Optional[str] = None
        self._image: Optional[np.ndarray] = None
        self._loaded = False
        self.terminated = False

    def __enter__(self) -> "TesseractEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.terminate()

    def _report(self, stage: str, percent: int) -> None:
        if self._on_progress is not None:
            self._on_progress(stage, percent)

    def _ensure_alive(self) -> None:
        if self.terminated:
            raise ExtractionError("OCR engine already terminated")

    def load(self) -> None:
        """Resolve the binary, build the engine config and check language data."""
        self._ensure_alive()
        self._report(STAGE_LOADING_ENGINE, STAGE_BANDS[STAGE_LOADING_ENGINE][0])
        if self.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = self.tesseract_cmd
        try:
            version = pytesseract.get_tesseract_version()
        except (pytesseract.TesseractNotFoundError, OSError) as exc:
            raise ExtractionError(f"Tesseract binary not available: {exc}") from exc
        LOG.debug(f"Tesseract version {version}")

        self._report(STAGE_INITIALIZING, STAGE_BANDS[STAGE_INITIALIZING][0])
        self._config = f"--oem 1 --psm {self.psm}"

        self._report(STAGE_LOADING_LANGUAGE, STAGE_BANDS[STAGE_LOADING_LANGUAGE][0])
        try:
            available = set(pytesseract.get_languages(config=""))
        except (pytesseract.TesseractError, OSError) as exc:
            raise ExtractionError(f"Could not list Tesseract languages: {exc}") from exc
        missing = [lang for lang in self.language.split("+") if lang and lang not in available]
        if missing:
            raise ExtractionError(f"Missing Tesseract language data: {', '.join(missing)}")
        self._loaded = True

    def recognize(self, image: ImageSource) -> str:
        """Return best-effort plain text for one image."""
        self._ensure_alive()
        if not self._loaded:
            self.load()

        self._report(STAGE_PREPARING, STAGE_BANDS[STAGE_PREPARING][0])
        buf = np.frombuffer(image.data or b"", dtype=np.uint8)
        decoded = cv2.imdecode(buf, cv2.IMREAD_COLOR) if buf.size else None
        if decoded is None:
            raise ExtractionError(f"Could not decode image: {image.name}")
        try:
            self._image = preprocess(decoded)
        except cv2.error as exc:
            raise ExtractionError(f"Preprocessing failed for {image.name}: {exc}") from exc

        self._report(STAGE_RECOGNIZING, STAGE_BANDS[STAGE_RECOGNIZING][0])
        try:
            text = pytesseract.image_to_string(
                self._image, lang=self.language, config=self._config or "", timeout=self.timeout
            )
        except pytesseract.TesseractError as exc:
            raise ExtractionError(f"Tesseract failed on {image.name}: {exc}") from exc
        except RuntimeError as exc:
            # pytesseract signals a timeout with RuntimeError
            raise ExtractionError(f"Tesseract timed out on {image.name}: {exc}") from exc
        self._report(STAGE_RECOGNIZING, STAGE_BANDS[STAGE_RECOGNIZING][1])
        LOG.debug(f"Recognized {len(text)} characters from {image.name}")
        return text

    def terminate(self) -> None:
        self._image = None
        self._config = None
        self._loaded = False
        self.terminated = True


def extract_text(
    image: ImageSource,
    *,
    on_progress: Optional[ProgressCallback] = None,
    language: str = DEFAULT_OCR_LANG,
    tesseract_cmd: Optional[str] = None,
    timeout: int = DEFAULT_OCR_TIMEOUT,
) -> str:
    """OCR one image in its own engine scope. Raises ExtractionError."""
    with TesseractEngine(
        language=language,
        tesseract_cmd=tesseract_cmd,
        timeout=timeout,
        on_progress=on_progress,
    ) as engine:
        engine.load()
        return engine.recognize(image)
