"""Text extraction from label photos (Tesseract via pytesseract)."""

from .engine import (
    STAGE_BANDS,
    STAGES,
    TesseractEngine,
    extract_text,
)

__all__ = ["STAGE_BANDS", "STAGES", "TesseractEngine", "extract_text"]
