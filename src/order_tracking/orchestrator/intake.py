"""Validation of the operator's image selection before any OCR work."""

from __future__ import annotations

from typing import Iterable, List, Sequence

from ..domain.models import ImageSource
from ..errors import InputRejected
from ..logging import get_logger
from ..paths import expand_abs

LOG = get_logger("orchestrator-intake")

ACCEPTED_CONTENT_TYPES = ("image/jpeg", "image/png")


def validate_selection(images: Sequence[ImageSource]) -> None:
    """Reject the whole selection if any file is not JPEG or PNG."""
    if not images:
        raise InputRejected([], "No images selected")
    rejected = [img.name for img in images if (img.content_type or "").lower() not in ACCEPTED_CONTENT_TYPES]
    if rejected:
        LOG.warning(f"Rejected selection; unsupported files: {rejected}")
        raise InputRejected(rejected)


def load_images(paths: Iterable[str]) -> List[ImageSource]:
    """Read image files from disk, guessing the MIME type from the name."""
    images: List[ImageSource] = []
    unreadable: List[str] = []
    for p in paths:
        path = expand_abs(p)
        try:
            images.append(ImageSource.from_path(path))
        except OSError as exc:
            LOG.error(f"Cannot read {path}: {exc}")
            unreadable.append(p)
    if unreadable:
        raise InputRejected(unreadable, "Unreadable file(s): " + ", ".join(unreadable))
    validate_selection(images)
    return images
