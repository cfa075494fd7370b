from __future__ import annotations

import logging
from pathlib import Path
from typing import List

from fastapi import FastAPI, BackgroundTasks, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from patchpro.core import remediate
from patchpro.core import storage
from patchpro.core.config import ConfigError, get_settings
from patchpro.core.feed import FeedError
from patchpro.core.log import setup_logging

setup_logging(get_settings().log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="PatchPro API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"]
)


class RunRequest(BaseModel):
    feed_paths: List[str]
    repo_map_path: str
    notify: bool = True


def _run_in_background(run_id: str, req: RunRequest) -> None:
    try:
        remediate.perform_run(
            [Path(p) for p in req.feed_paths],
            Path(req.repo_map_path),
            get_settings(),
            notify=req.notify,
            run_id=run_id,
        )
    except (ConfigError, FeedError) as exc:
        logger.error("Run %s aborted: %s", run_id, exc)


@app.get("/api/health")
def health():
    return {"status": "ok"}


@app.post("/api/runs")
def start_run(req: RunRequest, background_tasks: BackgroundTasks):
    settings = get_settings()
    try:
        feed, repo_map, _ = remediate.load_inputs([Path(p) for p in req.feed_paths], Path(req.repo_map_path))
        settings.check_credentials(remediate.mapped_urls(feed, repo_map))
    except (ConfigError, FeedError) as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    run_id = storage.create_run_id()
    background_tasks.add_task(_run_in_background, run_id, req)
    return {"run_id": run_id, "status": "started"}


@app.get("/api/runs")
def list_runs():
    return storage.list_runs()


@app.get("/api/runs/{run_id}")
def get_run(run_id: str):
    data = storage.load_run(run_id)
    if not data:
        raise HTTPException(status_code=404, detail="Run not found")
    return data


@app.get("/api/runs/{run_id}/feed")
def get_run_feed(run_id: str):
    data = storage.load_feed_snapshot(run_id)
    if data is None:
        raise HTTPException(status_code=404, detail="Feed snapshot not found")
    return data
