# ==============================================================================
# == backend/lifebeacon/main.py - LifeBeacon Emergency Engine API             ==
# ==============================================================================

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, List

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, Depends, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from mqtt_bridge import MQTTBridge

from . import schemas
from .config import settings
from .session import BeaconSession, SessionScheduler
from .websocket import manager as ws_manager

# Cấu hình Logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - API - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(settings.LOG_FILE, encoding='utf-8'),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)

# ============================================================================
# GLOBAL INSTANCES
# ============================================================================
session = BeaconSession()
scheduler = SessionScheduler(session, ws_manager.broadcast)


def get_session() -> BeaconSession:
    return session


def get_scheduler() -> SessionScheduler:
    return scheduler


async def ingest_and_publish(
    session: BeaconSession,
    scheduler: SessionScheduler,
    kind: str,
    payload: Dict[str, Any]
) -> List[Dict[str, Any]]:
    """Đường xử lý chung cho dữ liệu từ HTTP và MQTT."""
    events = session.ingest(kind, payload)
    await scheduler.dispatch(events)
    await scheduler.broadcast({
        "type": "sensor_data",
        "sensor_type": kind,
        "data": session.snapshot().sensor_data.model_dump(mode="json")
    })
    return events


async def handle_sensor(kind: str, payload: Dict[str, Any]):
    await ingest_and_publish(session, scheduler, kind, payload)


mqtt_service = MQTTBridge(handle_sensor)

# ============================================================================
# LIFESPAN MANAGEMENT
# ============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 LifeBeacon engine starting...")
    mqtt_started = False

    try:
        session.begin_initialization()
        scheduler.start()

        if settings.MQTT_ENABLED:
            mqtt_started = mqtt_service.start()

        logger.info("=" * 60)
        logger.info("🎉 Beacon ready - waiting for capability report")
        logger.info("=" * 60)

        yield

    finally:
        logger.info("🛑 Shutting down...")
        await scheduler.stop()
        await ws_manager.close()
        if mqtt_started:
            mqtt_service.stop()
        logger.info("✅ Shutdown complete")

# ============================================================================
# APP SETUP
# ============================================================================
app = FastAPI(
    title="LifeBeacon Emergency API",
    lifespan=lifespan,
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ============================================================================
# SENSOR ADAPTER -> ENGINE
# ============================================================================
@app.post("/api/capabilities")
async def report_capabilities(
    report: schemas.CapabilityReport,
    session: BeaconSession = Depends(get_session),
    scheduler: SessionScheduler = Depends(get_scheduler)
):
    if session.status == schemas.SystemStatus.INITIALIZING:
        session.begin_initialization()

    simulated = session.complete_initialization(report.results)
    for capability in simulated:
        scheduler.start_simulation(capability)

    return {"system_status": session.status.value, "simulated": simulated}

@app.post("/api/sensor")
async def push_sensor_data(
    sensor_in: schemas.SensorPayload,
    session: BeaconSession = Depends(get_session),
    scheduler: SessionScheduler = Depends(get_scheduler)
):
    try:
        events = await ingest_and_publish(session, scheduler, sensor_in.kind, sensor_in.payload)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "status": "ok",
        "system_status": session.status.value,
        "events": [e['type'] for e in events]
    }

# ============================================================================
# ENGINE -> PRESENTATION
# ============================================================================
@app.get("/api/state", response_model=schemas.EngineSnapshot)
async def get_state(session: BeaconSession = Depends(get_session)):
    return session.snapshot()

@app.get("/api/physics", response_model=schemas.PhysicsReadout)
async def get_physics(session: BeaconSession = Depends(get_session)):
    if session.physics is None:
        return session.run_physics_tick()
    return session.physics

@app.get("/api/map", response_model=schemas.MapView)
async def get_map(session: BeaconSession = Depends(get_session)):
    return session.map_view()

# ============================================================================
# USER ACTIONS
# ============================================================================
@app.post("/api/emergency/trigger")
async def trigger_emergency(
    session: BeaconSession = Depends(get_session),
    scheduler: SessionScheduler = Depends(get_scheduler)
):
    events = session.trigger_emergency()
    await scheduler.dispatch(events)

    snapshot = session.snapshot()
    return {
        "system_status": snapshot.system_status.value,
        "earthquake_metrics": snapshot.earthquake_metrics,
        "emergency_contacts": snapshot.emergency_contacts
    }

@app.post("/api/sos", response_model=schemas.SosResponse)
async def send_sos(
    sos_in: schemas.SosCreate,
    session: BeaconSession = Depends(get_session),
    scheduler: SessionScheduler = Depends(get_scheduler)
):
    record = session.send_sos(sos_in.message, sos_in.lat, sos_in.lng)
    await scheduler.broadcast({
        "type": "alert",
        "level": "CRITICAL",
        "category": "sos",
        "message": record.message,
        "details": record.model_dump(mode="json")
    })
    return record

@app.get("/api/sos", response_model=List[schemas.SosResponse])
async def list_sos(session: BeaconSession = Depends(get_session)):
    return session.list_sos()

@app.post("/api/gps/refresh")
async def refresh_gps(
    session: BeaconSession = Depends(get_session),
    scheduler: SessionScheduler = Depends(get_scheduler)
):
    request = session.refresh_gps()
    await scheduler.dispatch([request])
    return request

# ============================================================================
# WEBSOCKET & HEALTH CHECK
# ============================================================================
@app.websocket("/ws/updates")
async def websocket_endpoint(websocket: WebSocket):
    await ws_manager.connect(websocket)
    try:
        await websocket.send_json({"type": "snapshot", "data": session.snapshot().model_dump(mode="json")})
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        ws_manager.disconnect(websocket)

@app.get("/api/health")
async def health_check(
    session: BeaconSession = Depends(get_session),
    scheduler: SessionScheduler = Depends(get_scheduler)
):
    return {
        "status": "ok",
        "time": time.time(),
        "system_status": session.status.value,
        "scheduler_running": scheduler.running
    }
