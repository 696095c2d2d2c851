from __future__ import annotations

import csv
import os
import sqlite3
import uuid
from contextlib import contextmanager
from typing import IO, Any, Dict, Iterator, List, Optional, Sequence

from ..config import DEFAULT_DB_FILENAME, DEFAULT_DB_FOLDER
from ..domain.models import Order, OrderItem
from ..domain.status import STATUS_CHOICES, STATUS_DEFAULT, status_after_tracking
from ..errors import OrderNotFound, OrderStoreError
from ..logging import get_logger
from ..paths import find_project_root, var_dir


LOG = get_logger("order-store")

STATUS_ENUM_SQL = ", ".join(f"'{value}'" for value in STATUS_CHOICES)

SCHEMA_SQL = f"""
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS orders (
  id               TEXT PRIMARY KEY,
  order_code       TEXT NOT NULL UNIQUE,
  customer_contact TEXT NOT NULL,
  order_date       TEXT NOT NULL DEFAULT (date('now')),
  delivery_date    TEXT,
  delivery_round   TEXT,
  tracking_number  TEXT,
  total_amount     REAL NOT NULL DEFAULT 0,
  remarks          TEXT,
  status           TEXT NOT NULL DEFAULT '{STATUS_DEFAULT}'
                   CHECK(status IN ({STATUS_ENUM_SQL})),
  created_at       TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now')),
  updated_at       TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now'))
);

CREATE TABLE IF NOT EXISTS order_items (
  id           TEXT PRIMARY KEY,
  order_id     TEXT NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
  product_name TEXT NOT NULL,
  quantity     INTEGER NOT NULL CHECK(quantity > 0),
  price        REAL NOT NULL,
  total_price  REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_orders_tracking ON orders(tracking_number);
CREATE INDEX IF NOT EXISTS idx_orders_status   ON orders(status);
CREATE INDEX IF NOT EXISTS idx_items_order     ON order_items(order_id);
"""

ORDER_COLUMNS = (
    "id, order_code, customer_contact, status, tracking_number, delivery_round, "
    "order_date, delivery_date, total_amount, remarks, created_at, updated_at"
)

CSV_HEADER = (
    "Order Code",
    "Customer Contact",
    "Order Date",
    "Delivery Date",
    "Total Amount",
    "Status",
    "Tracking Number",
    "Delivery Round",
    "Remarks",
)


def _like_pattern(text: str) -> str:
    """Case-insensitive substring pattern with LIKE wildcards escaped."""
    escaped = text.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _fold(value: Optional[str]) -> Optional[str]:
    return value.lower() if value is not None else None


def _row_to_order(row: sqlite3.Row) -> Order:
    return Order(
        id=row["id"],
        order_code=row["order_code"],
        customer_contact=row["customer_contact"],
        status=row["status"],
        tracking_number=row["tracking_number"],
        delivery_round=row["delivery_round"],
        order_date=row["order_date"],
        delivery_date=row["delivery_date"],
        total_amount=float(row["total_amount"] or 0),
        remarks=row["remarks"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class OrderStore:
    """SQLite-backed order store.

    - Places the DB under `<repo-root>/var/orders/orders.sqlite3` unless an
      explicit `db_path` is given.
    - Ensures schema on first use.
    - Wraps every sqlite3 error in OrderStoreError.

    Open orders (tracking_number IS NULL) are read in insertion order so that
    "first match wins" is deterministic.
    """

    def __init__(self, root_dir: Optional[str] = None, *, db_path: Optional[str] = None) -> None:
        if db_path is None:
            root = find_project_root(root_dir)
            db_path = os.path.join(var_dir(root), DEFAULT_DB_FOLDER, DEFAULT_DB_FILENAME)
        folder = os.path.dirname(os.path.abspath(db_path))
        os.makedirs(folder, exist_ok=True)
        self.db_path = os.path.abspath(db_path)
        LOG.info(f"Order DB path: {self.db_path}")
        self._ensure_schema()

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as exc:
            raise OrderStoreError(f"Cannot open order DB {self.db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        # built-in LOWER() only folds ASCII
        conn.create_function("pylower", 1, _fold, deterministic=True)
        try:
            conn.execute("PRAGMA foreign_keys = ON;")
            yield conn
        except sqlite3.Error as exc:
            LOG.error(f"Order DB error: {exc}")
            raise OrderStoreError(str(exc)) from exc
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self.connect() as conn:
            cur = conn.cursor()
            try:
                cur.execute("PRAGMA journal_mode=WAL;")
                cur.execute("PRAGMA synchronous=NORMAL;")
            except sqlite3.OperationalError:
                # Non-fatal; continue with schema creation
                pass
            cur.executescript(SCHEMA_SQL)
            conn.commit()
            LOG.debug("Order DB schema ensured.")

    # --------------- Insert helpers ---------------
    def insert_order(self, o: Dict[str, Any]) -> str:
        order_id = str(o.get("id") or uuid.uuid4())
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO orders (
                  id, order_code, customer_contact, order_date, delivery_date,
                  delivery_round, tracking_number, total_amount, remarks, status
                )
                VALUES (?, ?, ?, COALESCE(?, date('now')), ?, ?, ?, ?, ?, ?);
                """,
                (
                    order_id,
                    o["order_code"],
                    o["customer_contact"],
                    o.get("order_date"),
                    o.get("delivery_date"),
                    o.get("delivery_round"),
                    o.get("tracking_number"),
                    float(o.get("total_amount") or 0),
                    o.get("remarks"),
                    o.get("status") or STATUS_DEFAULT,
                ),
            )
            conn.commit()
        return order_id

    def insert_items(self, order_id: str, items: List[Dict[str, Any]]) -> int:
        rows = []
        for it in items:
            quantity = int(it["quantity"])
            price = float(it["price"])
            total = it.get("total_price")
            rows.append(
                (
                    str(it.get("id") or uuid.uuid4()),
                    order_id,
                    it["product_name"],
                    quantity,
                    price,
                    float(total) if total is not None else quantity * price,
                )
            )
        with self.connect() as conn:
            conn.executemany(
                """
                INSERT INTO order_items (id, order_id, product_name, quantity, price, total_price)
                VALUES (?, ?, ?, ?, ?, ?);
                """,
                rows,
            )
            conn.commit()
        return len(rows)

    # --------------- Queries ---------------
    def get_order(self, order_id: str) -> Order:
        with self.connect() as conn:
            row = conn.execute(
                f"SELECT {ORDER_COLUMNS} FROM orders WHERE id = ?;", (order_id,)
            ).fetchone()
        if row is None:
            raise OrderNotFound(order_id)
        return _row_to_order(row)

    def get_order_items(self, order_id: str) -> List[OrderItem]:
        with self.connect() as conn:
            rows = conn.execute(
                """
                SELECT id, order_id, product_name, quantity, price, total_price
                FROM order_items WHERE order_id = ? ORDER BY rowid;
                """,
                (order_id,),
            ).fetchall()
        return [
            OrderItem(
                id=r["id"],
                order_id=r["order_id"],
                product_name=r["product_name"],
                quantity=int(r["quantity"]),
                price=float(r["price"]),
                total_price=float(r["total_price"]),
            )
            for r in rows
        ]

    def find_open_orders_by_contact(self, text: str, *, limit: Optional[int] = None) -> List[Order]:
        """Open orders whose contact block contains `text` (case-insensitive)."""
        sql = (
            f"SELECT {ORDER_COLUMNS} FROM orders "
            "WHERE tracking_number IS NULL AND pylower(customer_contact) LIKE ? ESCAPE '\\' "
            "ORDER BY rowid"
        )
        params: List[Any] = [_like_pattern(text)]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        with self.connect() as conn:
            rows = conn.execute(sql + ";", params).fetchall()
        return [_row_to_order(r) for r in rows]

    def search_open_orders(self, text: str, *, limit: int = 5) -> List[Order]:
        """Open orders whose order code OR contact block contains `text`."""
        like = _like_pattern(text)
        with self.connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {ORDER_COLUMNS} FROM orders
                WHERE tracking_number IS NULL
                  AND (pylower(order_code) LIKE ? ESCAPE '\\' OR pylower(customer_contact) LIKE ? ESCAPE '\\')
                ORDER BY rowid
                LIMIT ?;
                """,
                (like, like, int(limit)),
            ).fetchall()
        return [_row_to_order(r) for r in rows]

    def list_orders(self, *, search: Optional[str] = None, status: Optional[str] = None) -> List[Order]:
        """All orders newest first, filtered by code/contact/tracking text and status."""
        where: List[str] = []
        params: List[Any] = []
        if search:
            like = _like_pattern(search)
            where.append(
                "(pylower(order_code) LIKE ? ESCAPE '\\' OR pylower(customer_contact) LIKE ? ESCAPE '\\' "
                "OR pylower(COALESCE(tracking_number, '')) LIKE ? ESCAPE '\\')"
            )
            params.extend([like, like, like])
        if status and status != "all":
            if status not in STATUS_CHOICES:
                raise ValueError(f"Unknown status filter: {status}")
            where.append("status = ?")
            params.append(status)
        where_sql = f"WHERE {' AND '.join(where)}" if where else ""
        with self.connect() as conn:
            rows = conn.execute(
                f"SELECT {ORDER_COLUMNS} FROM orders {where_sql} ORDER BY created_at DESC, rowid DESC;",
                params,
            ).fetchall()
        return [_row_to_order(r) for r in rows]

    # --------------- Updates ---------------
    def set_tracking(self, order_id: str, tracking_number: str, status: str) -> None:
        """Write tracking number and status for one order in a single UPDATE."""
        if status not in STATUS_CHOICES:
            raise ValueError(f"Unknown status: {status}")
        with self.connect() as conn:
            cur = conn.execute(
                """
                UPDATE orders
                SET tracking_number = ?, status = ?,
                    updated_at = strftime('%Y-%m-%dT%H:%M:%f', 'now')
                WHERE id = ?;
                """,
                (tracking_number, status, order_id),
            )
            conn.commit()
            if cur.rowcount == 0:
                raise OrderNotFound(order_id)

    def set_delivery_round(self, order_ids: Sequence[str], delivery_round: Optional[str]) -> int:
        """Assign one delivery round to several orders. Returns rows updated."""
        ids = list(order_ids)
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        with self.connect() as conn:
            cur = conn.execute(
                f"""
                UPDATE orders
                SET delivery_round = ?, updated_at = strftime('%Y-%m-%dT%H:%M:%f', 'now')
                WHERE id IN ({placeholders});
                """,
                ((delivery_round or "").strip() or None, *ids),
            )
            conn.commit()
            return int(cur.rowcount)

    def update_order(
        self,
        order_id: str,
        *,
        tracking_number: Optional[str],
        delivery_round: Optional[str],
    ) -> Order:
        """Manual edit path: tracking number and delivery round.

        Applies the same auto-transition as the bulk commit when the order
        gets its first tracking number.
        """
        current = self.get_order(order_id)
        tracking = (tracking_number or "").strip() or None
        new_status = status_after_tracking(current.status, current.tracking_number, tracking)
        with self.connect() as conn:
            conn.execute(
                """
                UPDATE orders
                SET tracking_number = ?, delivery_round = ?, status = ?,
                    updated_at = strftime('%Y-%m-%dT%H:%M:%f', 'now')
                WHERE id = ?;
                """,
                (tracking, (delivery_round or "").strip() or None, new_status, order_id),
            )
            conn.commit()
        if new_status != current.status:
            LOG.info(f"Order {current.order_code}: status {current.status} -> {new_status}")
        return self.get_order(order_id)

    # --------------- Export ---------------
    @staticmethod
    def export_orders_csv(orders: Sequence[Order], fp: IO[str]) -> int:
        writer = csv.writer(fp)
        writer.writerow(CSV_HEADER)
        for o in orders:
            writer.writerow(
                [
                    o.order_code,
                    o.customer_contact,
                    o.order_date or "",
                    o.delivery_date or "",
                    o.total_amount,
                    o.status,
                    o.tracking_number or "",
                    o.delivery_round or "",
                    o.remarks or "",
                ]
            )
        return len(orders)
