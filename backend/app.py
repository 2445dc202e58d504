"""
Heat Pump Simulator Backend Application

FastAPI application hosting the simulated heat pump: control loop, hourly
schedule ticker, HTTP commands and WebSocket status pushes.
"""

import asyncio
import os
import sys
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable

import log_config  # noqa: F401
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

# Add repository root to Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

# Import API router
from api import VERSION
from api import router as api_router

from core.heatpump.controller import HeatPumpController
from core.heatpump.device_store import DeviceStateStore, default_constraints, default_layout
from core.heatpump.notifications import NotificationBus
from core.heatpump.settings import HeatPumpSettings, load_settings
from core.heatpump.thermal_model import LinearPowerModel, load_model_parameters
from core.heatpump.ticker import ScheduleTicker
from core.heatpump.weather import OpenMeteoClient, load_outdoor_temperatures


def create_app(
    settings: HeatPumpSettings | None = None,
    clock: Callable[[], datetime] = datetime.now,
    weather_client: OpenMeteoClient | None = None,
) -> FastAPI:
    """Build the application.

    Args:
        settings: Settings (loaded from options.json/config.yaml when omitted)
        clock: Wall-clock source for the controller
        weather_client: Optional weather client override
    """
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan manager for startup/shutdown."""
        logger.info("Heat pump simulator starting")

        model_result = load_model_parameters(settings.resolved_model_path)
        # requests is blocking, keep it off the event loop
        weather_result = await asyncio.to_thread(load_outdoor_temperatures, settings, weather_client)

        store = DeviceStateStore(default_layout(settings), default_constraints(settings))
        bus = NotificationBus()
        controller = HeatPumpController(
            settings,
            store,
            bus,
            weather_result.value,
            LinearPowerModel(model_result.value),
            clock=clock,
        )
        await controller.start()

        ticker = ScheduleTicker(controller, settings.tick_interval_seconds)
        await ticker.start()

        app.state.settings = settings
        app.state.store = store
        app.state.bus = bus
        app.state.controller = controller
        app.state.ticker = ticker
        app.state.model_degraded = model_result.degraded
        app.state.weather_degraded = weather_result.degraded

        if model_result.degraded or weather_result.degraded:
            logger.warning(
                f"⚠️ Running degraded (model: {model_result.reason or 'ok'}, "
                f"weather: {weather_result.reason or 'ok'})"
            )

        yield

        # Shutdown
        logger.info("Heat pump simulator shutting down")
        await ticker.stop()
        await bus.drain()

    app = FastAPI(
        title="Heat Pump Simulator API",
        description="Simulated heat pump with schedule-driven control and power forecasting",
        version=VERSION,
        lifespan=lifespan,
    )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc):
        """Handle all unhandled exceptions gracefully."""
        logger.opt(exception=exc).error(f"Unhandled exception on {request.url.path}: {exc}")

        return JSONResponse(
            status_code=500,
            content={
                "detail": str(exc),
                "type": type(exc).__name__,
                "message": "Internal server error",
            },
        )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "PUT"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    return app


app = create_app()


# For development
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", 3000)))
