from __future__ import annotations

import base64
import binascii
import io
import threading
import uuid
from datetime import date
from typing import Any, Dict, List, Optional

from starlette.applications import Starlette
from starlette.background import BackgroundTask
from starlette.exceptions import HTTPException
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from ..domain.models import ImageSource
from ..errors import InputRejected, MatchingAborted, OrderNotFound, OrderStoreError, ReviewStateError
from ..logging import get_logger
from ..orchestrator import (
    BatchOrchestrator,
    BatchProgress,
    ReviewSession,
    describe_abort,
    describe_batch,
    describe_commit,
    describe_rejection,
    validate_selection,
)
from ..orchestrator.batch import Extractor
from ..store.db import OrderStore


LOG = get_logger("api")

JOB_RUNNING = "running"
JOB_FINISHED = "finished"
JOB_FAILED = "failed"

DEFAULT_MAX_JOBS = 50


class BatchJob:
    """One uploaded batch: the running orchestrator, then its review session."""

    def __init__(self, store: OrderStore, images: List[ImageSource], extractor: Optional[Extractor]) -> None:
        self.id = uuid.uuid4().hex
        self.images = images
        self.progress = BatchProgress()
        self.orchestrator = BatchOrchestrator(
            store, extractor=extractor, progress=self.progress, batch_id=self.id
        )
        self.status = JOB_RUNNING
        self.session: Optional[ReviewSession] = None
        self.notice: Optional[Dict[str, str]] = None
        self.per_image: List[Dict[str, Any]] = []
        self._store = store

    def run(self) -> None:
        try:
            result = self.orchestrator.run_batch(self.images)
        except MatchingAborted as exc:
            self.per_image = [r.to_dict() for r in exc.per_image]
            self.notice = describe_abort(exc).to_dict()
            self.status = JOB_FAILED
            return
        except Exception:
            LOG.exception(f"Batch {self.id} crashed")
            self.notice = {"level": "error", "title": "Import failed", "message": "Unexpected error while processing images."}
            self.status = JOB_FAILED
            raise
        finally:
            self.images = []
        self.session = ReviewSession(self._store, result)
        self.per_image = [r.to_dict() for r in result.per_image]
        self.notice = describe_batch(result).to_dict()
        self.status = JOB_FINISHED

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "batch_id": self.id,
            "status": self.status,
            "progress": self.progress.snapshot(),
            "notice": self.notice,
            "per_image": self.per_image,
        }
        if self.session is not None:
            payload["review"] = self.session.to_dict()
        return payload


def _decode_images(payload: Any) -> List[ImageSource]:
    items = payload.get("images") if isinstance(payload, dict) else None
    if not isinstance(items, list):
        raise HTTPException(status_code=400, detail="Body must contain an 'images' list")
    images: List[ImageSource] = []
    for i, item in enumerate(items):
        if not isinstance(item, dict):
            raise HTTPException(status_code=400, detail=f"images[{i}] must be an object")
        try:
            data = base64.b64decode(item.get("data") or "", validate=True)
        except (binascii.Error, ValueError) as exc:
            raise HTTPException(status_code=400, detail=f"images[{i}].data is not valid base64") from exc
        images.append(
            ImageSource(
                name=str(item.get("name") or f"image-{i + 1}"),
                content_type=item.get("content_type"),
                data=data,
            )
        )
    return images


def create_app(
    root_dir: Optional[str] = None,
    *,
    db_path: Optional[str] = None,
    allow_origins: Optional[List[str]] = None,
    extractor: Optional[Extractor] = None,
    max_jobs: int = DEFAULT_MAX_JOBS,
) -> Starlette:
    """Create a Starlette app exposing order management and the tracking import.

    Batches live in memory. A batch is dropped once its review is committed or
    cancelled, and beyond `max_jobs` the oldest batches that are no longer
    running are dropped first.
    """

    store = OrderStore(root_dir=root_dir, db_path=db_path)
    jobs: Dict[str, BatchJob] = {}
    jobs_lock = threading.Lock()

    def _job(request: Request) -> BatchJob:
        with jobs_lock:
            job = jobs.get(request.path_params["batch_id"])
        if job is None:
            raise HTTPException(status_code=404, detail="Batch not found")
        return job

    def _register(job: BatchJob) -> None:
        with jobs_lock:
            jobs[job.id] = job
            idle = [jid for jid, j in jobs.items() if j.status != JOB_RUNNING]
            for jid in idle[: max(0, len(jobs) - max_jobs)]:
                del jobs[jid]
                LOG.info(f"Dropped batch {jid} (registry full)")

    def _forget(job: BatchJob) -> None:
        with jobs_lock:
            jobs.pop(job.id, None)
        LOG.info(f"Batch {job.id} closed")

    def _session(job: BatchJob) -> ReviewSession:
        if job.session is None:
            raise HTTPException(status_code=409, detail=f"Batch is {job.status}; no review available")
        return job.session

    async def health(_: Request) -> JSONResponse:
        return JSONResponse({"status": "ok", "db_path": store.db_path})

    # --------------- Orders ---------------
    async def orders(request: Request) -> JSONResponse:
        qp = request.query_params
        rows = store.list_orders(search=qp.get("search") or None, status=qp.get("status") or None)
        return JSONResponse({"total": len(rows), "items": [o.to_dict() for o in rows]})

    async def order_detail(request: Request) -> JSONResponse:
        order_id = request.path_params["order_id"]
        order = store.get_order(order_id)
        items = store.get_order_items(order_id)
        payload = order.to_dict()
        payload["items"] = [
            {
                "id": it.id,
                "product_name": it.product_name,
                "quantity": it.quantity,
                "price": it.price,
                "total_price": it.total_price,
            }
            for it in items
        ]
        return JSONResponse(payload)

    async def order_update(request: Request) -> JSONResponse:
        order_id = request.path_params["order_id"]
        body = await request.json()
        if not isinstance(body, dict):
            raise HTTPException(status_code=400, detail="Body must be a JSON object")
        current = store.get_order(order_id)
        updated = store.update_order(
            order_id,
            tracking_number=body.get("tracking_number", current.tracking_number),
            delivery_round=body.get("delivery_round", current.delivery_round),
        )
        return JSONResponse(updated.to_dict())

    async def delivery_round(request: Request) -> JSONResponse:
        body = await request.json()
        order_ids = body.get("order_ids") if isinstance(body, dict) else None
        if not isinstance(order_ids, list) or not order_ids:
            raise HTTPException(status_code=400, detail="'order_ids' must be a non-empty list")
        count = store.set_delivery_round([str(x) for x in order_ids], body.get("delivery_round"))
        return JSONResponse({"updated": count})

    async def orders_csv(request: Request) -> Response:
        qp = request.query_params
        rows = store.list_orders(search=qp.get("search") or None, status=qp.get("status") or None)
        buf = io.StringIO()
        store.export_orders_csv(rows, buf)
        filename = f"orders_{date.today().isoformat()}.csv"
        return Response(
            buf.getvalue(),
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    # --------------- Tracking import ---------------
    async def batch_create(request: Request) -> JSONResponse:
        images = _decode_images(await request.json())
        try:
            validate_selection(images)
        except InputRejected as exc:
            return JSONResponse({"notice": describe_rejection(exc).to_dict(), "rejected": exc.rejected}, status_code=400)
        job = BatchJob(store, images, extractor)
        _register(job)
        LOG.info(f"Queued batch {job.id} with {len(images)} image(s)")
        return JSONResponse(
            {"batch_id": job.id, "status": job.status, "image_count": len(images)},
            status_code=202,
            background=BackgroundTask(job.run),
        )

    async def batch_list(_: Request) -> JSONResponse:
        with jobs_lock:
            listed = [{"batch_id": j.id, "status": j.status} for j in jobs.values()]
        return JSONResponse({"total": len(listed), "items": listed})

    async def batch_detail(request: Request) -> JSONResponse:
        return JSONResponse(_job(request).to_dict())

    async def batch_abort(request: Request) -> JSONResponse:
        job = _job(request)
        job.orchestrator.cancel()
        return JSONResponse({"batch_id": job.id, "status": job.status})

    async def review_proceed(request: Request) -> JSONResponse:
        session = _session(_job(request))
        session.proceed()
        return JSONResponse(session.to_dict())

    async def review_search(request: Request) -> JSONResponse:
        session = _session(_job(request))
        qp = request.query_params
        try:
            entry_id = int(qp.get("entry_id", ""))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid entry_id") from exc
        results = session.search(entry_id, qp.get("q") or "")
        return JSONResponse({"entry_id": entry_id, "items": [o.to_dict() for o in results]})

    async def review_bind(request: Request) -> JSONResponse:
        session = _session(_job(request))
        body = await request.json()
        if not isinstance(body, dict) or "entry_id" not in body or "order_id" not in body:
            raise HTTPException(status_code=400, detail="Body needs 'entry_id' and 'order_id'")
        try:
            entry_id = int(body["entry_id"])
        except (TypeError, ValueError) as exc:
            raise HTTPException(status_code=400, detail="Invalid entry_id") from exc
        candidate = session.bind(entry_id, str(body["order_id"]))
        return JSONResponse({"match": candidate.to_dict(), "review": session.to_dict()})

    async def review_commit(request: Request) -> JSONResponse:
        job = _job(request)
        session = _session(job)
        report = session.commit()
        payload = {"notice": describe_commit(report).to_dict(), "report": report.to_dict()}
        _forget(job)
        return JSONResponse(payload)

    async def review_cancel(request: Request) -> JSONResponse:
        job = _job(request)
        session = _session(job)
        session.cancel()
        payload = session.to_dict()
        _forget(job)
        return JSONResponse(payload)

    # --------------- Error mapping ---------------
    async def not_found(_: Request, exc: Exception) -> JSONResponse:
        return JSONResponse({"detail": str(exc)}, status_code=404)

    async def conflict(_: Request, exc: Exception) -> JSONResponse:
        return JSONResponse({"detail": str(exc)}, status_code=409)

    async def store_failure(_: Request, exc: Exception) -> JSONResponse:
        LOG.error(f"Order store failure: {exc}")
        return JSONResponse({"detail": f"Order store unavailable: {exc}"}, status_code=503)

    async def bad_request(_: Request, exc: Exception) -> JSONResponse:
        return JSONResponse({"detail": str(exc)}, status_code=400)

    routes = [
        Route("/api/health", health, methods=["GET"]),
        Route("/api/orders", orders, methods=["GET"]),
        Route("/api/orders/export.csv", orders_csv, methods=["GET"]),
        Route("/api/orders/delivery-round", delivery_round, methods=["POST"]),
        Route("/api/orders/{order_id:str}", order_detail, methods=["GET"]),
        Route("/api/orders/{order_id:str}", order_update, methods=["PATCH"]),
        Route("/api/tracking/batches", batch_list, methods=["GET"]),
        Route("/api/tracking/batches", batch_create, methods=["POST"]),
        Route("/api/tracking/batches/{batch_id:str}", batch_detail, methods=["GET"]),
        Route("/api/tracking/batches/{batch_id:str}/abort", batch_abort, methods=["POST"]),
        Route("/api/tracking/batches/{batch_id:str}/proceed", review_proceed, methods=["POST"]),
        Route("/api/tracking/batches/{batch_id:str}/search", review_search, methods=["GET"]),
        Route("/api/tracking/batches/{batch_id:str}/bind", review_bind, methods=["POST"]),
        Route("/api/tracking/batches/{batch_id:str}/commit", review_commit, methods=["POST"]),
        Route("/api/tracking/batches/{batch_id:str}/cancel", review_cancel, methods=["POST"]),
    ]

    app = Starlette(
        debug=False,
        routes=routes,
        exception_handlers={
            OrderNotFound: not_found,
            ReviewStateError: conflict,
            OrderStoreError: store_failure,
            ValueError: bad_request,
        },
    )

    origins = allow_origins or ["http://localhost:5173", "http://127.0.0.1:5173"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if "*" in origins else origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    return app


__all__ = ["create_app"]
