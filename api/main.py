"""
FastAPI Application — scheduling API + engine host.

Provides:
- REST API for scheduling batches and inspecting / clearing the queue
- Transport controls (reconnect, disconnect)
- WebSocket feed of engine events for a dashboard
- The DeliveryEngine itself, started and stopped by the app lifespan
"""
from __future__ import annotations

import asyncio
import structlog
from datetime import datetime, timezone
from typing import Any, Optional
from contextlib import asynccontextmanager

# Load .env before anything reads os.environ
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from config.settings import get_settings
from core.engine import DeliveryEngine
from core.events import QUEUE_UPDATE, TRANSPORT_STATE
from database.jobs import CLEAR_MODES
from database.store_base import StoreError
from job_queue.batches import ScheduleRequest, schedule_batch
from models.schemas import ValidationError, format_timestamp

logger = structlog.get_logger()

_engine: Optional[DeliveryEngine] = None


def get_engine() -> DeliveryEngine:
    if _engine is None:
        raise HTTPException(503, "Engine not started")
    return _engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _engine
    settings = get_settings()
    _engine = DeliveryEngine(settings)
    await _engine.start()
    logger.info("scheduled_delivery_started", app=settings.app_name,
                store_backend=settings.store.backend, timezone=settings.timezone)
    yield

    await _engine.stop()
    _engine = None
    logger.info("scheduled_delivery_stopped")


# ──────────────────────────────────────────────────────────────
#  App
# ──────────────────────────────────────────────────────────────

app = FastAPI(
    title="Scheduled Delivery API",
    description="Deferred message delivery with recurring reminders",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ──────────────────────────────────────────────────────────────
#  Request Models
# ──────────────────────────────────────────────────────────────

class ClearRequest(BaseModel):
    mode: str = "sent"


def _job_view(job) -> dict[str, Any]:
    return {
        "id": job.id,
        "batch_id": job.batch_id,
        "recipient": job.recipient,
        "caption": job.caption,
        "media_url": job.media_url,
        "media_type": job.media_type,
        "send_at": format_timestamp(job.send_at),
        "status": job.status.value,
        "error": job.error,
        "sent_at": format_timestamp(job.sent_at),
    }


# ══════════════════════════════════════════════════════════════
#  HEALTH & STATUS
# ══════════════════════════════════════════════════════════════

@app.get("/health")
async def health():
    engine = get_engine()
    return {
        "status": "healthy",
        "timestamp": format_timestamp(datetime.now(timezone.utc)),
        "transport": engine.transport.state.value,
    }


@app.get("/api/status")
async def status():
    return await get_engine().status()


# ══════════════════════════════════════════════════════════════
#  SCHEDULE
# ══════════════════════════════════════════════════════════════

@app.post("/api/schedule")
async def create_schedule(req: ScheduleRequest):
    engine = get_engine()
    try:
        jobs = await schedule_batch(engine.jobs, req, engine.tz, events=engine.events)
    except ValidationError as e:
        raise HTTPException(400, str(e))
    except StoreError as e:
        logger.error("schedule_store_failed", error=str(e))
        raise HTTPException(503, "Row store unavailable")
    return {"ok": True, "batch_id": jobs[0].batch_id, "count": len(jobs)}


@app.get("/api/schedule")
async def list_schedule(status: Optional[str] = None):
    engine = get_engine()
    try:
        jobs = await engine.jobs.list_jobs()
    except StoreError as e:
        logger.error("schedule_list_failed", error=str(e))
        raise HTTPException(503, "Row store unavailable")
    if status:
        jobs = [j for j in jobs if j.status.value == status]
    jobs.sort(key=lambda j: j.send_at)
    return {"items": [_job_view(j) for j in jobs], "count": len(jobs)}


@app.post("/api/schedule/clear")
async def clear_schedule(req: ClearRequest):
    if req.mode not in CLEAR_MODES:
        raise HTTPException(400, f"mode must be one of {', '.join(CLEAR_MODES)}")
    engine = get_engine()
    try:
        deleted = await engine.jobs.clear(req.mode)
        pending = await engine.jobs.count_pending()
    except StoreError as e:
        logger.error("schedule_clear_failed", error=str(e))
        raise HTTPException(503, "Row store unavailable")
    engine.events.emit(QUEUE_UPDATE, size=pending)
    return {"ok": True, "mode": req.mode, "deleted": deleted}


# ══════════════════════════════════════════════════════════════
#  TRANSPORT
# ══════════════════════════════════════════════════════════════

@app.post("/api/transport/reconnect")
async def reconnect_transport():
    engine = get_engine()
    connected = await engine.reconnect()
    return {"ok": connected, "state": engine.transport.state.value,
            "error": engine.transport.connection.last_error or None}


@app.post("/api/transport/disconnect")
async def disconnect_transport():
    engine = get_engine()
    await engine.disconnect()
    return {"ok": True, "state": engine.transport.state.value}


# ══════════════════════════════════════════════════════════════
#  WEBSOCKET — engine events
# ══════════════════════════════════════════════════════════════

@app.websocket("/ws/events")
async def websocket_events(websocket: WebSocket):
    """Pushes queue:update, queue:item, reminder:scheduled and transport:state."""
    await websocket.accept()
    engine = get_engine()
    outbox: asyncio.Queue = asyncio.Queue(maxsize=100)

    def forward(name: str, payload: dict[str, Any]) -> None:
        if not outbox.full():
            outbox.put_nowait({"event": name, "data": payload})

    unsubscribe = engine.events.subscribe(forward)
    try:
        await websocket.send_json({"event": TRANSPORT_STATE,
                                   "data": {"state": engine.transport.state.value}})
        while True:
            await websocket.send_json(await outbox.get())
    except WebSocketDisconnect:
        pass
    finally:
        unsubscribe()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
