from __future__ import annotations

import mimetypes
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class ExtractedPair:
    phone: str
    tracking: str


@dataclass(frozen=True)
class ImageResult:
    file_name: str
    tracking_count: int
    tracking_numbers: Tuple[str, ...] = ()
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_name": self.file_name,
            "tracking_count": self.tracking_count,
            "tracking_numbers": list(self.tracking_numbers),
            "error": self.error,
        }


@dataclass
class MatchCandidate:
    order_id: str
    order_code: str
    customer_contact: str
    phone: str
    tracking: str
    manual: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "order_code": self.order_code,
            "customer_contact": self.customer_contact,
            "phone": self.phone,
            "tracking": self.tracking,
            "manual": self.manual,
        }


@dataclass
class UnmatchedEntry:
    entry_id: int
    phone: str
    tracking: str

    def to_dict(self) -> Dict[str, Any]:
        return {"entry_id": self.entry_id, "phone": self.phone, "tracking": self.tracking}


@dataclass
class Order:
    id: str
    order_code: str
    customer_contact: str
    status: str
    tracking_number: Optional[str] = None
    delivery_round: Optional[str] = None
    order_date: Optional[str] = None
    delivery_date: Optional[str] = None
    total_amount: float = 0.0
    remarks: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def customer_name(self) -> str:
        """First line of the contact block (conventionally the name)."""
        return (self.customer_contact or "").splitlines()[0].strip() if self.customer_contact else ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "order_code": self.order_code,
            "customer_contact": self.customer_contact,
            "customer_name": self.customer_name,
            "status": self.status,
            "tracking_number": self.tracking_number,
            "delivery_round": self.delivery_round,
            "order_date": self.order_date,
            "delivery_date": self.delivery_date,
            "total_amount": self.total_amount,
            "remarks": self.remarks,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class OrderItem:
    id: str
    order_id: str
    product_name: str
    quantity: int
    price: float
    total_price: float


@dataclass
class ImageSource:
    """One uploaded image: display name, declared MIME type and raw bytes."""

    name: str
    content_type: Optional[str]
    data: bytes = field(repr=False)

    @classmethod
    def from_path(cls, path: str) -> "ImageSource":
        content_type, _ = mimetypes.guess_type(path)
        with open(path, "rb") as f:
            data = f.read()
        return cls(name=os.path.basename(path), content_type=content_type, data=data)
