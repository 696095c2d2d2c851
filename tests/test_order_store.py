from __future__ import annotations

import io
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from order_tracking.errors import OrderNotFound
from order_tracking.store.db import CSV_HEADER, OrderStore


def _store(tmp_path: Path) -> OrderStore:
    return OrderStore(db_path=str(tmp_path / "orders.sqlite3"))


def _seed(store: OrderStore) -> dict:
    ids = {}
    ids["a"] = store.insert_order(
        {"order_code": "ORD-001", "customer_contact": "Somchai\n081-234-5678\n0812345678 Bangkok", "total_amount": 350}
    )
    ids["b"] = store.insert_order(
        {"order_code": "ORD-002", "customer_contact": "Malee\n0899999999", "tracking_number": "TH0000000001", "status": "shipped"}
    )
    ids["c"] = store.insert_order(
        {"order_code": "ORD-003", "customer_contact": "Second order for 0812345678", "total_amount": 120}
    )
    return ids


def test_root_dir_places_db_under_var(tmp_path: Path) -> None:
    (tmp_path / "README.md").write_text("marker", encoding="utf-8")
    store = OrderStore(root_dir=str(tmp_path))
    assert Path(store.db_path) == tmp_path / "var" / "orders" / "orders.sqlite3"
    assert Path(store.db_path).exists()


def test_open_orders_by_contact_are_in_insertion_order(tmp_path: Path) -> None:
    store = _store(tmp_path)
    ids = _seed(store)
    found = store.find_open_orders_by_contact("0812345678")
    assert [o.id for o in found] == [ids["a"], ids["c"]]
    assert store.find_open_orders_by_contact("0812345678", limit=1)[0].order_code == "ORD-001"
    # ORD-002 has a tracking number and is never an open order
    assert store.find_open_orders_by_contact("0899999999") == []


def test_contact_match_is_case_insensitive_and_escapes_wildcards(tmp_path: Path) -> None:
    store = _store(tmp_path)
    _seed(store)
    assert [o.order_code for o in store.find_open_orders_by_contact("SOMCHAI")] == ["ORD-001"]
    assert store.find_open_orders_by_contact("%") == []
    assert store.find_open_orders_by_contact("_") == []


def test_search_folds_non_ascii_case(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.insert_order({"order_code": "ORD-É1", "customer_contact": "ÉMILE Durand\n0812345678"})

    assert [o.order_code for o in store.search_open_orders("émile")] == ["ORD-É1"]
    assert [o.order_code for o in store.search_open_orders("ÉMILE")] == ["ORD-É1"]
    assert [o.order_code for o in store.find_open_orders_by_contact("émile durand")] == ["ORD-É1"]
    assert [o.order_code for o in store.list_orders(search="ord-é1")] == ["ORD-É1"]


def test_search_open_orders_matches_code_or_contact(tmp_path: Path) -> None:
    store = _store(tmp_path)
    _seed(store)
    assert [o.order_code for o in store.search_open_orders("ord-00")] == ["ORD-001", "ORD-003"]
    assert [o.order_code for o in store.search_open_orders("malee")] == []
    for i in range(10):
        store.insert_order({"order_code": f"BULK-{i:02d}", "customer_contact": "Bulk buyer"})
    assert len(store.search_open_orders("bulk")) == 5


def test_set_tracking_and_missing_order(tmp_path: Path) -> None:
    store = _store(tmp_path)
    ids = _seed(store)
    store.set_tracking(ids["a"], "TH1234567890XY", "processing")
    order = store.get_order(ids["a"])
    assert order.tracking_number == "TH1234567890XY"
    assert order.status == "processing"
    with pytest.raises(OrderNotFound):
        store.set_tracking("missing", "TH1234567890XY", "processing")
    with pytest.raises(OrderNotFound):
        store.get_order("missing")


def test_manual_edit_applies_first_tracking_transition(tmp_path: Path) -> None:
    store = _store(tmp_path)
    ids = _seed(store)

    updated = store.update_order(ids["a"], tracking_number="TH1234567890XY", delivery_round="R1")
    assert updated.status == "processing"
    assert updated.delivery_round == "R1"

    # Overwriting an existing tracking number does not advance the status again
    again = store.update_order(ids["a"], tracking_number="TH9999999999XY", delivery_round="R1")
    assert again.status == "processing"
    assert again.tracking_number == "TH9999999999XY"

    shipped = store.update_order(ids["b"], tracking_number="TH0000000002", delivery_round=None)
    assert shipped.status == "shipped"


def test_delivery_round_bulk_and_listing(tmp_path: Path) -> None:
    store = _store(tmp_path)
    ids = _seed(store)
    assert store.set_delivery_round([ids["a"], ids["c"]], "Round 3") == 2
    assert store.set_delivery_round([], "Round 3") == 0

    shipped = store.list_orders(status="shipped")
    assert [o.order_code for o in shipped] == ["ORD-002"]
    by_tracking = store.list_orders(search="th0000")
    assert [o.order_code for o in by_tracking] == ["ORD-002"]
    everything = store.list_orders(status="all")
    assert {o.order_code for o in everything} == {"ORD-001", "ORD-002", "ORD-003"}
    with pytest.raises(ValueError):
        store.list_orders(status="lost")


def test_order_items_and_csv_export(tmp_path: Path) -> None:
    store = _store(tmp_path)
    ids = _seed(store)
    store.insert_items(ids["a"], [{"product_name": "Notebook", "quantity": 2, "price": 50}])
    items = store.get_order_items(ids["a"])
    assert items[0].total_price == 100.0

    buf = io.StringIO()
    count = store.export_orders_csv(store.list_orders(search="ORD-001"), buf)
    lines = buf.getvalue().splitlines()
    assert count == 1
    assert lines[0] == ",".join(CSV_HEADER)
    assert lines[1].startswith('ORD-001,"Somchai')
