"""HTTP service exposing the crawl job orchestrator.

Routes:
  POST /crawl/start          start a job, returns {"job_id"}
  POST /crawl/{id}/stop      cooperative stop
  GET  /crawl/{id}           persisted job merged with live progress
  GET  /crawl/active         jobs still tracked in memory
"""

from __future__ import annotations

import json
import logging
import sys
from typing import Optional

import aiosqlite
from aiohttp import web
from pydantic import ValidationError

from .config import DB_PATH, SERVICE_HOST, SERVICE_PORT, ensure_dirs
from .database.models import initialize_db
from .database.repository import CrawlJobRepository
from .errors import JobAlreadyRunningError, JobNotFoundError, LicenseError, UnsupportedSiteError
from .models.crawl import StartCrawlRequest
from .orchestrator import CrawlJobOrchestrator

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


def _job_id(request: web.Request) -> int:
    return int(request.match_info["job_id"])


# ── Handlers ─────────────────────────────────────────────────────────────────


async def handle_start(request: web.Request) -> web.Response:
    orchestrator: CrawlJobOrchestrator = request.app["orchestrator"]

    try:
        body = await request.json() if request.can_read_body else {}
        crawl_request = StartCrawlRequest.model_validate(body)
    except (json.JSONDecodeError, ValidationError) as e:
        return web.json_response({"error": f"Invalid request: {e}"}, status=400)

    try:
        result = await orchestrator.start(crawl_request)
    except UnsupportedSiteError as e:
        return web.json_response({"error": str(e)}, status=400)
    except LicenseError as e:
        return web.json_response({"error": str(e)}, status=403)
    except JobAlreadyRunningError as e:
        return web.json_response({"error": str(e)}, status=409)

    return web.json_response(result)


async def handle_stop(request: web.Request) -> web.Response:
    orchestrator: CrawlJobOrchestrator = request.app["orchestrator"]
    job_id = _job_id(request)

    stopped = await orchestrator.stop(job_id)
    if not stopped:
        return web.json_response({"error": f"Crawl job {job_id} is not running"}, status=404)
    return web.json_response({"job_id": job_id, "stopped": True})


async def handle_status(request: web.Request) -> web.Response:
    orchestrator: CrawlJobOrchestrator = request.app["orchestrator"]

    try:
        status = await orchestrator.status(_job_id(request))
    except JobNotFoundError as e:
        return web.json_response({"error": str(e)}, status=404)

    job = status["job"]
    progress = status["progress"]
    return web.json_response(
        {
            "job": job.model_dump(mode="json") if job else None,
            "is_active": status["is_active"],
            "is_stopping": status["is_stopping"],
            "progress": progress.model_dump() if progress else None,
        }
    )


async def handle_active(request: web.Request) -> web.Response:
    orchestrator: CrawlJobOrchestrator = request.app["orchestrator"]
    jobs = [
        {
            "job_id": entry["job_id"],
            "is_running": entry["is_running"],
            "progress": entry["progress"].model_dump(),
        }
        for entry in orchestrator.active_jobs()
    ]
    return web.json_response({"jobs": jobs, "count": len(jobs)})


# ── App Factory ──────────────────────────────────────────────────────────────


async def on_startup(app: web.Application):
    if "orchestrator" in app:
        return
    ensure_dirs()
    db = await aiosqlite.connect(str(DB_PATH))
    await initialize_db(db)
    repo = CrawlJobRepository(db)
    await repo.recover_interrupted_jobs()
    app["db"] = db
    app["orchestrator"] = CrawlJobOrchestrator(repo)
    logger.info(f"Harvester service started on {SERVICE_HOST}:{SERVICE_PORT}")


async def on_cleanup(app: web.Application):
    orchestrator: CrawlJobOrchestrator = app["orchestrator"]
    await orchestrator.cleanup()
    db: Optional[aiosqlite.Connection] = app.get("db")
    if db is not None:
        await db.close()
    logger.info("Harvester service stopped.")


def create_app(orchestrator: Optional[CrawlJobOrchestrator] = None) -> web.Application:
    app = web.Application()
    if orchestrator is not None:
        app["orchestrator"] = orchestrator
    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)

    app.router.add_post("/crawl/start", handle_start)
    app.router.add_get("/crawl/active", handle_active)
    app.router.add_post(r"/crawl/{job_id:\d+}/stop", handle_stop)
    app.router.add_get(r"/crawl/{job_id:\d+}", handle_status)

    return app


def main():
    """Run the harvester as a standalone HTTP service."""
    logging.basicConfig(
        stream=sys.stderr,
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    web.run_app(create_app(), host=SERVICE_HOST, port=SERVICE_PORT)


if __name__ == "__main__":
    main()
