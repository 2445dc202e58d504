"""
Heat Pump Simulator API Endpoints
"""

import os
import sys
from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from loguru import logger
from pydantic import BaseModel

# Add repository root to Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.heatpump.const import EVENT_SYSTEM_UPDATED
from core.heatpump.controller import HeatPumpController
from core.heatpump.exceptions import HeatPumpError, SetpointOutOfRange
from core.heatpump.models import SystemMode

router = APIRouter()

VERSION = "0.1.0"


class SetpointRequest(BaseModel):
    """Request body for a manual setpoint change."""
    temperature: float


class RaiseLowerRequest(BaseModel):
    """Request body for a relative setpoint change in 0.1 °C steps."""
    amount: int


def get_controller(request: Request) -> HeatPumpController:
    controller = getattr(request.app.state, "controller", None)
    if controller is None:
        raise HTTPException(status_code=503, detail="Controller not initialized")
    return controller


@router.get("/api/health")
async def health_check(request: Request):
    """Health check endpoint."""
    state = request.app.state
    return {
        "status": "healthy",
        "app": "Heat Pump Simulator",
        "version": VERSION,
        "model_degraded": getattr(state, "model_degraded", None),
        "weather_degraded": getattr(state, "weather_degraded", None),
        "ticker_running": state.ticker.running if getattr(state, "ticker", None) else False,
    }


@router.get("/status")
async def get_status(request: Request):
    """Current mode, hour, setpoint, power and schedule/hold state."""
    return get_controller(request).status()


@router.post("/reset", status_code=201)
async def reset(request: Request):
    """Re-seed the current hour from the wall clock and recompute."""
    await get_controller(request).reset()


@router.post("/on", status_code=201)
async def turn_on(request: Request):
    logger.info("Turning On...")
    await get_controller(request).set_system_mode(SystemMode.HEAT, source="api")


@router.post("/off", status_code=201)
async def turn_off(request: Request):
    logger.info("Turning Off...")
    await get_controller(request).set_system_mode(SystemMode.OFF, source="api")


@router.put("/setpoint")
async def set_setpoint(request: Request, body: SetpointRequest):
    """Manually change the setpoint, starting a temporary hold."""
    controller = get_controller(request)
    try:
        await controller.set_setpoint(body.temperature, source="api")
    except SetpointOutOfRange as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except HeatPumpError as e:
        logger.error(f"Failed to set setpoint: {e}")
        raise HTTPException(status_code=500, detail=str(e)) from e

    return {
        "target_temperature": controller.state.setpoint,
        "hold_expiry": controller.state.hold_expiry.isoformat() if controller.state.hold_expiry else None,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.post("/setpoint/raise-lower")
async def raise_lower_setpoint(request: Request, body: RaiseLowerRequest):
    """Raise or lower the setpoint by amount x 0.1 °C."""
    controller = get_controller(request)
    try:
        target = await controller.setpoint_raise_lower(body.amount, source="api")
    except HeatPumpError as e:
        logger.error(f"Failed to adjust setpoint: {e}")
        raise HTTPException(status_code=500, detail=str(e)) from e
    return {"target_temperature": target}


@router.get("/forecast")
async def get_forecast(request: Request):
    """Power forecast for the rest of today, null while off."""
    forecast = get_controller(request).forecast
    return forecast.to_dict() if forecast else None


@router.get("/outdoortemperatures")
async def get_outdoor_temperatures(request: Request):
    return get_controller(request).temperatures.to_list()


@router.get("/heatingschedule")
async def get_heating_schedule(request: Request):
    return get_controller(request).schedule.to_list()


@router.get("/hotwaterschedule")
async def get_hot_water_schedule():
    # Hot water is not simulated
    return []


@router.get("/api/events")
async def get_events(request: Request, hours: int = Query(24, ge=1, le=24)):
    """Control events (setpoint changes, schedule transitions, mode changes).

    Args:
        hours: How many hours of events to retrieve (default: 24)
    """
    events = get_controller(request).history.get_control_events(hours=hours)
    return {"hours": hours, "count": len(events), "events": events}


@router.get("/api/snapshots")
async def get_snapshots(request: Request, hours: int = Query(24, ge=1, le=24)):
    """Outputs of recent control-loop passes."""
    snapshots = get_controller(request).history.get_snapshots(hours=hours)
    return {"hours": hours, "count": len(snapshots), "snapshots": snapshots}


@router.websocket("/ws")
async def system_updates(websocket: WebSocket):
    """Push systemUpdated events to a connected client."""
    await websocket.accept()
    logger.info("A user connected")

    bus = websocket.app.state.bus
    controller = websocket.app.state.controller

    async def forward(event: str, payload: dict):
        await websocket.send_json({"event": event, "data": payload})

    bus.subscribe(forward)
    try:
        await websocket.send_json({"event": EVENT_SYSTEM_UPDATED, "data": controller.summary()})
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("A user disconnected")
    finally:
        bus.unsubscribe(forward)
