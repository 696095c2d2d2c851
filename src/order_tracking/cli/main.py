from __future__ import annotations

import argparse
import functools
import json
import os
import sys
from typing import Dict, List, Sequence

from ..config import TrackingConfig, build_tracking_config
from ..errors import InputRejected, MatchingAborted, OrderStoreError, ReviewStateError
from ..logging import get_logger
from ..ocr.engine import extract_text
from ..orchestrator import (
    BatchOrchestrator,
    BatchOutcome,
    ReviewSession,
    describe_abort,
    describe_batch,
    describe_commit,
    describe_rejection,
    load_images,
    search_open_orders,
)
from ..paths import expand_abs
from ..store.db import OrderStore

LOG = get_logger("cli-main")


def _print_json(payload) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _store(cfg: TrackingConfig) -> OrderStore:
    return OrderStore(db_path=cfg.db_path)


def _extractor(cfg: TrackingConfig):
    return functools.partial(
        extract_text,
        language=cfg.ocr_language,
        tesseract_cmd=cfg.tesseract_cmd,
        timeout=cfg.ocr_timeout,
    )


def _log_notice(notice) -> None:
    level = {"error": "error", "warning": "warning"}.get(notice.level, "info")
    getattr(LOG, level)(f"{notice.title}: {notice.message}")


def _parse_binds(raw: Sequence[str] | None) -> Dict[int, str]:
    binds: Dict[int, str] = {}
    for item in raw or []:
        if "=" not in item:
            raise ValueError(f"--bind expects ENTRY_ID=ORDER_ID, got {item!r}")
        entry, order_id = item.split("=", 1)
        binds[int(entry)] = order_id.strip()
    return binds


def _handle_import(ns: argparse.Namespace, cfg: TrackingConfig) -> int:
    try:
        images = load_images(ns.image)
    except InputRejected as exc:
        _log_notice(describe_rejection(exc))
        return 2

    store = _store(cfg)
    orchestrator = BatchOrchestrator(store, extractor=_extractor(cfg))
    try:
        result = orchestrator.run_batch(images)
    except MatchingAborted as exc:
        _log_notice(describe_abort(exc))
        _print_json({"per_image": [r.to_dict() for r in exc.per_image]})
        return 3

    _log_notice(describe_batch(result))
    session = ReviewSession(store, result)
    binds = _parse_binds(ns.bind)
    if binds and not session.can_proceed:
        LOG.warning(f"Ignoring --bind: nothing to review for a {result.outcome.value} batch")
    if session.can_proceed and (binds or ns.commit):
        session.proceed()
        for entry_id, order_id in binds.items():
            try:
                session.bind(entry_id, order_id)
            except (ReviewStateError, OrderStoreError) as exc:
                LOG.error(f"Cannot bind entry {entry_id} to {order_id}: {exc}")
                return 4
        if ns.commit and session.matched:
            report = session.commit()
            _log_notice(describe_commit(report))
    _print_json(session.to_dict())
    return 1 if result.outcome is BatchOutcome.NO_DATA else 0


def _handle_search(ns: argparse.Namespace, cfg: TrackingConfig) -> int:
    rows = search_open_orders(_store(cfg), ns.text)
    _print_json([o.to_dict() for o in rows])
    return 0


def _handle_orders(ns: argparse.Namespace, cfg: TrackingConfig) -> int:
    rows = _store(cfg).list_orders(search=ns.search, status=ns.status)
    _print_json([o.to_dict() for o in rows])
    return 0


def _handle_edit(ns: argparse.Namespace, cfg: TrackingConfig) -> int:
    store = _store(cfg)
    current = store.get_order(ns.order_id)
    updated = store.update_order(
        ns.order_id,
        tracking_number=ns.tracking if ns.tracking is not None else current.tracking_number,
        delivery_round=ns.round if ns.round is not None else current.delivery_round,
    )
    _print_json(updated.to_dict())
    return 0


def _handle_round(ns: argparse.Namespace, cfg: TrackingConfig) -> int:
    count = _store(cfg).set_delivery_round(ns.order_ids, ns.round)
    LOG.info(f"Assigned delivery round {ns.round!r} to {count} order(s)")
    return 0 if count else 1


def _handle_export(ns: argparse.Namespace, cfg: TrackingConfig) -> int:
    store = _store(cfg)
    rows = store.list_orders(search=ns.search, status=ns.status)
    out = expand_abs(ns.output)
    os.makedirs(os.path.dirname(out) or ".", exist_ok=True)
    with open(out, "w", encoding="utf-8", newline="") as f:
        store.export_orders_csv(rows, f)
    LOG.info(f"Wrote {len(rows)} order(s) to {out}")
    return 0


def _handle_serve(ns: argparse.Namespace, cfg: TrackingConfig) -> int:
    from ..api.app import create_app
    import uvicorn

    app = create_app(
        db_path=cfg.db_path,
        allow_origins=ns.allow_origins,
        extractor=_extractor(cfg),
    )
    uvicorn.run(app, host=ns.host, port=ns.port, log_level=ns.log_level)
    return 0


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="order-tracking",
        description="Read shipping-label photos and assign tracking numbers to open orders.",
    )
    parser.add_argument("--db-path", help="Order SQLite DB (defaults to ORDER_DB_PATH or var/orders/)")
    parser.add_argument("--lang", help="Tesseract language(s), e.g. tha+eng (defaults to OCR_LANG)")
    parser.add_argument("--tesseract-cmd", help="Path to the tesseract binary (defaults to TESSERACT_CMD/PATH)")
    parser.add_argument("--ocr-timeout", type=int, help="Per-image OCR timeout in seconds")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init = subparsers.add_parser("init", help="Create/ensure the order DB schema exists")

    def _init(_: argparse.Namespace, cfg: TrackingConfig) -> int:
        print(_store(cfg).db_path)
        return 0

    init.set_defaults(handler=_init)

    imp = subparsers.add_parser("import", help="OCR label photos and match tracking numbers to open orders")
    imp.add_argument("--image", action="append", required=True, help="JPEG/PNG label photo (repeatable)")
    imp.add_argument("--bind", action="append", metavar="ENTRY_ID=ORDER_ID", help="Bind an unmatched entry to an order")
    imp.add_argument("--commit", action="store_true", help="Write matched tracking numbers to the orders")
    imp.set_defaults(handler=_handle_import)

    search = subparsers.add_parser("search", help="Search open orders by order code or customer contact")
    search.add_argument("text")
    search.set_defaults(handler=_handle_search)

    orders = subparsers.add_parser("orders", help="List orders")
    orders.add_argument("--search")
    orders.add_argument("--status")
    orders.set_defaults(handler=_handle_orders)

    edit = subparsers.add_parser("edit", help="Set tracking number and/or delivery round of one order")
    edit.add_argument("order_id")
    edit.add_argument("--tracking")
    edit.add_argument("--round")
    edit.set_defaults(handler=_handle_edit)

    rnd = subparsers.add_parser("round", help="Assign a delivery round to several orders")
    rnd.add_argument("--round", required=True)
    rnd.add_argument("order_ids", nargs="+")
    rnd.set_defaults(handler=_handle_round)

    export = subparsers.add_parser("export", help="Export orders to CSV")
    export.add_argument("--output", required=True)
    export.add_argument("--search")
    export.add_argument("--status")
    export.set_defaults(handler=_handle_export)

    serve = subparsers.add_parser("serve", help="Run the JSON API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8002)
    serve.add_argument("--log-level", default="info")
    serve.add_argument(
        "--allow-origin",
        action="append",
        dest="allow_origins",
        help="Allowed CORS origin (can be provided multiple times, use '*' for any).",
    )
    serve.set_defaults(handler=_handle_serve)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    provided: List[str] = list(argv) if argv is not None else sys.argv[1:]
    LOG.debug(f"CLI invoked with arguments: {provided}")
    args = build_arg_parser().parse_args(provided)
    cfg = build_tracking_config(args, script_dir=os.getcwd())
    try:
        code = args.handler(args, cfg)
    except OrderStoreError as exc:
        LOG.error(f"Order store error: {exc}")
        code = 5
    except ValueError as exc:
        LOG.error(str(exc))
        code = 2
    LOG.info(f"Subcommand '{args.command}' finished with exit code {code}.")
    return code


if __name__ == "__main__":
    sys.exit(main())
