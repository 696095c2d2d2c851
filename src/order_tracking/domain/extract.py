"""Line-local extraction of (phone, tracking) pairs from OCR text."""

from __future__ import annotations

import re
from typing import List, Optional

from .models import ExtractedPair

# Local dialing format: 0 followed by exactly 9 digits.
PHONE_RE = re.compile(r"0\d{9}")
# Carrier-agnostic: any 10-20 run of uppercase letters and digits.
TRACKING_RE = re.compile(r"[A-Z0-9]{10,20}")


def _tracking_candidates(line: str) -> List[str]:
    # A bare phone number also fits the tracking shape; it is never a tracking number.
    return [m.group(0) for m in TRACKING_RE.finditer(line) if not PHONE_RE.fullmatch(m.group(0))]


def extract_pair_from_line(line: str) -> Optional[ExtractedPair]:
    """Return the pair for one line, or None when phone or tracking is missing.

    First phone on the line wins, last tracking token wins; labels commonly
    read as "<noise> <phone> <tracking>".
    """
    phone = PHONE_RE.search(line)
    if phone is None:
        return None
    trackings = _tracking_candidates(line)
    if not trackings:
        return None
    return ExtractedPair(phone=phone.group(0), tracking=trackings[-1])


def extract_pairs(text: str) -> List[ExtractedPair]:
    """Return one pair per qualifying line, in line order. No deduplication."""
    pairs: List[ExtractedPair] = []
    for line in (text or "").splitlines():
        pair = extract_pair_from_line(line)
        if pair is not None:
            pairs.append(pair)
    return pairs


def tracking_tokens(pairs: List[ExtractedPair]) -> List[str]:
    return [p.tracking for p in pairs]
