import logging
import threading
from contextlib import asynccontextmanager
from typing import List

from fastapi import FastAPI

from campus_escrow.api.errors import register_exception_handlers
from campus_escrow.api.v1.router import v1_router
from campus_escrow.core.config import Settings, get_settings
from campus_escrow.core.logging import configure_logging
from campus_escrow.core.middleware import RequestIdMiddleware
from campus_escrow.db.session import default_store
from campus_escrow.services.outbox_service import OutboxDispatcher
from campus_escrow.services.reconciliation_service import ReconciliationService

logger = logging.getLogger(__name__)


def _background_workers(settings: Settings, stop: threading.Event) -> List[threading.Thread]:
    store = default_store()
    workers = []
    if settings.reconciliation_enabled:
        workers.append(
            threading.Thread(
                target=ReconciliationService().sweep_forever,
                args=(store,),
                kwargs={"stop": stop, "interval_seconds": settings.reconciliation_interval_seconds},
                name="reconciliation-sweeper",
                daemon=True,
            )
        )
    if settings.outbox_dispatch_enabled:
        workers.append(
            threading.Thread(
                target=OutboxDispatcher().dispatch_forever,
                args=(store,),
                kwargs={"stop": stop, "interval_seconds": settings.outbox_dispatch_interval_seconds},
                name="outbox-dispatcher",
                daemon=True,
            )
        )
    return workers


def _lifespan(settings: Settings):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        stop = threading.Event()
        workers = _background_workers(settings, stop)
        for worker in workers:
            worker.start()
            logger.info("[app] started %s", worker.name)
        try:
            yield
        finally:
            stop.set()
            for worker in workers:
                worker.join(timeout=5)

    return lifespan


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        version="0.1.0",
        lifespan=_lifespan(settings),
    )
    app.add_middleware(RequestIdMiddleware, header_name=settings.request_id_header)
    register_exception_handlers(app)
    app.include_router(v1_router, prefix=settings.api_prefix)

    logger.info("[app] %s ready (env=%s)", settings.app_name, settings.environment)
    return app


app = create_app()
