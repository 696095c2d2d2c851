from __future__ import annotations

from typing import Optional

from ..domain.models import ExtractedPair, MatchCandidate
from ..logging import get_logger
from ..store.db import OrderStore

LOG = get_logger("orchestrator-matcher")


class OrderMatcher:
    """Bind an extracted pair to the first open order whose contact block holds the phone."""

    def __init__(self, store: OrderStore) -> None:
        self.store = store

    def find_match(self, pair: ExtractedPair) -> Optional[MatchCandidate]:
        # Store errors propagate; the batch treats them as fatal for matching.
        orders = self.store.find_open_orders_by_contact(pair.phone, limit=2)
        if not orders:
            LOG.debug(f"No open order for phone {pair.phone}")
            return None
        if len(orders) > 1:
            LOG.warning(
                f"Phone {pair.phone} matches several open orders; using {orders[0].order_code}"
            )
        order = orders[0]
        return MatchCandidate(
            order_id=order.id,
            order_code=order.order_code,
            customer_contact=order.customer_contact,
            phone=pair.phone,
            tracking=pair.tracking,
        )
