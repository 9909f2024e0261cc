"""
Operator health endpoint. GET /health -> service identity and the last tick.

Served by uvicorn in a daemon thread beside the scheduler; it only reads
the scheduler's last report and never touches the ledger.
"""

import logging
import threading
from typing import Tuple

import uvicorn
from fastapi import FastAPI

from fulfiller import __version__
from fulfiller.scheduler import Scheduler

logger = logging.getLogger(__name__)


def create_app(scheduler: Scheduler, service_address: str, attestor_address: str) -> FastAPI:
    app = FastAPI(title="fulfiller", version=__version__)

    @app.get("/health")
    def health():
        report = scheduler.last_report
        return {
            "status": "stopping" if scheduler.stopped else "ok",
            "service": service_address,
            "attestor": attestor_address,
            "interval_seconds": scheduler.interval,
            "last_tick": report.model_dump(mode="json") if report else None,
        }

    return app


def serve_in_background(app: FastAPI, port: int, host: str = "0.0.0.0") -> Tuple[uvicorn.Server, threading.Thread]:
    """Start uvicorn in a daemon thread. Set `server.should_exit = True` to stop it."""
    config = uvicorn.Config(app, host=host, port=port, log_level="warning")
    server = uvicorn.Server(config)
    t = threading.Thread(target=server.run, name="fulfiller-health", daemon=True)
    t.start()
    logger.info("health endpoint listening on http://%s:%d/health", host, port)
    return server, t
