from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Request
from pydantic import ValidationError

from . import db
from .api_models import EnqueueResponse, HealthResponse, PassRecord, QueueSnapshot, WebsiteRef
from .dispatcher import Dispatcher
from .models import ObjectKey


def _dispatcher(request: Request) -> Dispatcher:
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        raise HTTPException(status_code=503, detail="Controller is not running")
    return dispatcher


def create_app(dispatcher: Dispatcher | None = None, lifespan: Any = None) -> FastAPI:
    """Admin API: health, queue state, operator events and manual triggers.

    The dispatcher can be passed directly (tests) or set on ``app.state`` by
    the lifespan handler once the controller is built.
    """
    app = FastAPI(title="Website Operator", lifespan=lifespan)
    app.state.dispatcher = dispatcher

    @app.get("/healthz", response_model=HealthResponse)
    def healthz(request: Request) -> HealthResponse:
        d = _dispatcher(request)
        return HealthResponse(status="ok", workers=d.workers, running=d.running)

    @app.get("/queue", response_model=QueueSnapshot)
    def queue(request: Request) -> dict[str, Any]:
        return _dispatcher(request).snapshot()

    @app.get("/events")
    def events(limit: int = Query(50, ge=1, le=1000)) -> list[dict[str, Any]]:
        return db.latest_events(limit)

    @app.get("/passes", response_model=list[PassRecord])
    def passes(
        limit: int = Query(50, ge=1, le=1000),
        namespace: str | None = None,
        name: str | None = None,
    ) -> list[dict[str, Any]]:
        return [asdict(p) for p in db.latest_passes(limit, namespace=namespace, name=name)]

    @app.post("/websites/{namespace}/{name}/reconcile", response_model=EnqueueResponse)
    def reconcile(namespace: str, name: str, request: Request) -> EnqueueResponse:
        try:
            ref = WebsiteRef(namespace=namespace, name=name)
        except ValidationError as e:
            raise HTTPException(status_code=422, detail=[err["msg"] for err in e.errors()]) from e
        d = _dispatcher(request)
        key = ObjectKey(ref.namespace, ref.name)
        d.enqueue(key)
        db.log_event("INFO", "Reconcile requested via API", namespace=key.namespace, name=key.name)
        return EnqueueResponse(queued=True, key=str(key))

    return app
