from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence, Tuple

from ..domain.models import MatchCandidate
from ..domain.status import status_after_tracking
from ..errors import OrderStoreError
from ..logging import get_logger
from ..store.db import OrderStore

LOG = get_logger("orchestrator-commit")


@dataclass
class CommitReport:
    total: int
    success_count: int = 0
    failed: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def all_succeeded(self) -> bool:
        return self.success_count == self.total

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "success_count": self.success_count,
            "failed": [{"order_id": oid, "reason": reason} for oid, reason in self.failed],
        }


def commit_matches(store: OrderStore, matches: Sequence[MatchCandidate]) -> CommitReport:
    """Write each match's tracking number, advancing status on first assignment.

    Rows are independent: a failing row is logged and skipped, never retried.
    """
    report = CommitReport(total=len(matches))
    for m in matches:
        try:
            order = store.get_order(m.order_id)
            new_status = status_after_tracking(order.status, order.tracking_number, m.tracking)
            store.set_tracking(m.order_id, m.tracking, new_status)
        except OrderStoreError as exc:
            LOG.error(f"Tracking update failed for order {m.order_id} ({m.order_code}): {exc}")
            report.failed.append((m.order_id, str(exc)))
            continue
        report.success_count += 1
        LOG.debug(f"Order {m.order_code}: tracking={m.tracking} status={new_status}")
    LOG.info(f"Committed {report.success_count}/{report.total} tracking number(s)")
    return report
