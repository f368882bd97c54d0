from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from questions_hub.importing import ImportBackgroundService, RetryDispatcher, recover_stale_jobs

from api.dependencies import build_worker, get_job_queue, get_options, get_repo, get_worker_config
from api.routes.imports import router as imports_router
from api.routes.jobs import router as jobs_router
from api.routes.media import router as media_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if os.getenv("IMPORT_BACKGROUND_ENABLED", "1") == "0":
        yield
        return

    repo = get_repo()
    await asyncio.to_thread(recover_stale_jobs, repo)

    queue = get_job_queue()
    if queue is not None:
        # RQ workers run the jobs; this process only re-dispatches retries
        config = get_worker_config()
        service = RetryDispatcher(repo, lambda job_id: queue.enqueue_import_job(job_id, config), get_options())
    else:
        service = ImportBackgroundService(repo, build_worker(), get_options())

    task = asyncio.create_task(service.run())
    try:
        yield
    finally:
        service.stop()
        await task


def create_app() -> FastAPI:
    app = FastAPI(title="Questions Hub Import API", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(imports_router)
    app.include_router(jobs_router)
    app.include_router(media_router)

    @app.get("/healthz")
    def health() -> dict:
        return {"status": "ok"}

    return app


app = create_app()
