"""
Order tracking import – label OCR to order tracking numbers.

Shipping-label photos are read with Tesseract, phone/tracking pairs are pulled
out line by line, matched against open orders and, after operator review,
written back to the order store.
"""

__all__ = [
    "config",
    "logging",
    "paths",
]
