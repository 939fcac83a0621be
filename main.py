"""Process entry point: wires the controller together and serves the admin API.

    uvicorn main:app --port 8080
    python main.py
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from threading import Event

from wop import db
from wop.api import create_app
from wop.cluster import KubeCluster, load_config
from wop.dispatcher import Dispatcher
from wop.reconciler import Reconciler
from wop.settings import settings
from wop.watcher import Watcher


@dataclass
class Controller:
    cluster: KubeCluster
    reconciler: Reconciler
    dispatcher: Dispatcher
    watcher: Watcher

    def start(self) -> None:
        db.init_db()
        self.dispatcher.start()
        self.watcher.start()
        db.log_event("INFO", "Website operator started")

    def stop(self) -> None:
        self.watcher.stop()
        self.dispatcher.stop()
        db.log_event("INFO", "Website operator stopped")


def build_controller(cluster: KubeCluster | None = None) -> Controller:
    """One shared cluster client, one stop flag, injected into every component."""
    if cluster is None:
        load_config()
        cluster = KubeCluster()
    stop = Event()
    reconciler = Reconciler(cluster, stop=stop)
    dispatcher = Dispatcher(reconciler, workers=settings.workers, stop=stop)
    watcher = Watcher(cluster, dispatcher.enqueue, stop=stop)
    return Controller(cluster=cluster, reconciler=reconciler, dispatcher=dispatcher, watcher=watcher)


@asynccontextmanager
async def lifespan(app):
    controller = build_controller()
    app.state.dispatcher = controller.dispatcher
    controller.start()
    try:
        yield
    finally:
        # Joining workers blocks; keep it off the event loop.
        await asyncio.to_thread(controller.stop)


app = create_app(lifespan=lifespan)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
