import time
from datetime import date
from typing import Optional
from fastapi import FastAPI, Depends, HTTPException, Header
from fastapi.responses import PlainTextResponse
from .config import settings

app = FastAPI(title="Kodi Watched Sync")
service = None  # SyncService, set on construction

def get_token(x_token: Optional[str] = Header(None, alias="X-Token")):
    if settings.HTTP_SERVER_TOKEN and x_token != settings.HTTP_SERVER_TOKEN:
        raise HTTPException(status_code=401, detail="Invalid token")

@app.get("/healthz")
def healthz():
    if not service or not service.last_report:
        return {"status": "starting"}

    finished = service.last_report.finished_at
    age = time.time() - finished.timestamp() if finished else None
    # Lenient threshold: a few missed intervals
    if age is not None and settings.SYNC_INTERVAL_SECONDS > 0 and age > (settings.SYNC_INTERVAL_SECONDS * 3 + 60):
        return {"status": "lagging", "last_sync_age": age}

    return {"status": "ok"}

@app.get("/status", dependencies=[Depends(get_token)])
def status():
    if not service:
        return {"status": "not_ready"}

    return {
        "last_run": service.last_report.model_dump(mode="json") if service.last_report else None,
        "config": {
            "libraries": [
                {"name": e.name, "address": e.address, "api_url": e.api_url}
                for e in settings.endpoints()
            ],
            "interval": settings.SYNC_INTERVAL_SECONDS,
            "dry_run": settings.DRY_RUN
        }
    }

@app.get("/changes", dependencies=[Depends(get_token)])
def changes():
    if not service:
        return []
    return [entry.model_dump(mode="json") for entry in service.state_manager.read_changes(date.today())]

@app.get("/metrics", response_class=PlainTextResponse)
def metrics():
    # Simple prometheus-style text format
    if not service or not service.last_report:
        return ""

    report = service.last_report
    lines = [f'watchsync_last_run_timestamp {report.finished_at.timestamp() if report.finished_at else 0}',
             f'watchsync_changes {report.changes}']
    for lane in report.lanes:
        labels = f'library="{lane.name}"'
        lines.extend([
            f'watchsync_online{{{labels}}} {1 if lane.state == "online" else 0}',
            f'watchsync_movies{{{labels}}} {lane.movies}',
            f'watchsync_episodes{{{labels}}} {lane.episodes}',
            f'watchsync_updated{{{labels}}} {lane.updated}',
            f'watchsync_failed{{{labels}}} {lane.failed}',
        ])
    return "\n".join(lines)
