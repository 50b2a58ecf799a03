# Run:
# uvicorn services.realtime.main:app --host 0.0.0.0 --port 20010 --reload
# Docs: http://127.0.0.1:20010/docs
# WebSocket: ws://127.0.0.1:20010/ws

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional, Tuple

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

from fastapi import FastAPI, Query, Request, WebSocket
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine

from common.constants import ServiceEvents, TrackingEvents
from common.errors import FleetError, NotFoundError
from libs.config import Config, config
from libs.fastapi_service import (
    CORSMiddlewareConfig,
    FastAPIServiceFactory,
    ServiceAppConfig,
)
from libs.memory_store import create_memory_store
from libs.store import FleetStore
from libs.ws_hub import ConnectionHub
from services.realtime.handlers import EventHandlers, build_coordinators
from services.realtime.schemas import (
    AlertStatusPatch,
    EmergencyCreateRequest,
    Location,
    ServiceCreateRequest,
    ServiceReschedulePatch,
    VehicleCreateRequest,
)

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

SERVICE_NAME = "realtime"


def build_store(settings: Config) -> Tuple[FleetStore, Optional[AsyncEngine]]:
    """Pick the store backend from STORE_BACKEND; the engine is None for memory."""
    if settings.uses_sql_store():
        from libs.db import create_session_factory
        from libs.sql_store import create_sql_store

        session_factory = create_session_factory(settings.DATABASE_URL)
        logger.info("Using SQL store")
        return create_sql_store(session_factory), session_factory.kw["bind"]
    logger.info("Using in-memory store")
    return create_memory_store(), None


def create_app(
    store: Optional[FleetStore] = None,
    settings: Config = config,
    **overrides: Any,
) -> FastAPI:
    """
    Build the real-time service app.

    Args:
        store: Store to use; chosen from settings when omitted
        settings: Configuration
        **overrides: ``clock`` / ``timer_factory`` passed to the coordinators
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if engine is not None:
            from libs.db import create_schema

            await create_schema(engine)
        yield
        app.state.coordinators.reminders.shutdown()
        logger.info("Pending service reminders cancelled")
        if engine is not None:
            await engine.dispose()

    factory = FastAPIServiceFactory(
        ServiceAppConfig(
            title="Fleet Real-Time Service",
            description="Live vehicle tracking, emergency alerts and service reminders.",
            service_name=SERVICE_NAME,
            cors_config=CORSMiddlewareConfig(allow_origins=settings.CORS_ALLOW_ORIGINS),
            lifespan=lifespan,
        )
    )
    app = factory.create_app()

    metrics = {
        "location_updates": factory.add_business_metric(
            "location_updates",
            "realtime_location_updates_total",
            "Total vehicle location updates applied",
        ),
        "alerts_created": factory.add_business_metric(
            "alerts_created",
            "realtime_alerts_created_total",
            "Total emergency alerts created",
            ["severity"],
        ),
        "reminders_fired": factory.add_business_metric(
            "reminders_fired",
            "realtime_service_reminders_fired_total",
            "Total service reminders broadcast",
        ),
    }
    ws_events = factory.add_business_metric(
        "ws_events",
        "realtime_ws_events_total",
        "Total inbound WebSocket events",
        ["event"],
    )

    engine = None
    if store is None:
        store, engine = build_store(settings)
    hub = ConnectionHub(event_counter=ws_events)
    coordinators = build_coordinators(store, hub, settings, metrics, **overrides)
    EventHandlers(hub, coordinators).register()

    app.state.store = store
    app.state.hub = hub
    app.state.coordinators = coordinators

    tracking = coordinators.tracking
    alerts = coordinators.alerts
    reminders = coordinators.reminders

    @app.exception_handler(FleetError)
    async def fleet_error_handler(request: Request, exc: FleetError):
        if exc.http_status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=exc.http_status, content={"detail": str(exc)})

    @app.get("/")
    async def index():
        return {"service": SERVICE_NAME, "status": "running"}

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await hub.serve(websocket)

    # ========= Vehicles =========

    @app.post("/v1/vehicles", status_code=201)
    async def create_vehicle(req: VehicleCreateRequest):
        return await store.vehicles.insert(req.model_dump())

    @app.get("/v1/vehicles/{vehicle_id}")
    async def get_vehicle(vehicle_id: str):
        vehicle = await store.vehicles.find_by_id(vehicle_id)
        if vehicle is None:
            raise NotFoundError("Vehicle", vehicle_id)
        return vehicle

    @app.patch("/v1/vehicles/{vehicle_id}/location")
    async def update_vehicle_location(vehicle_id: str, req: Location):
        return await tracking.update_location(vehicle_id, req.latitude, req.longitude)

    # ========= Tracking =========

    @app.get("/v1/tracking")
    async def list_tracking():
        return tracking.get_all_sessions()

    @app.get("/v1/tracking/{vehicle_id}")
    async def get_tracking(vehicle_id: str):
        session = tracking.get_session(vehicle_id)
        if session is None:
            raise NotFoundError("Tracking session", vehicle_id)
        return session

    @app.get("/v1/tracking/{vehicle_id}/stats")
    async def get_tracking_stats(vehicle_id: str):
        stats = tracking.statistics(vehicle_id)
        if stats is None:
            raise NotFoundError("Tracking session", vehicle_id)
        return stats

    @app.post("/v1/tracking/{vehicle_id}/start")
    async def start_tracking(vehicle_id: str):
        return await tracking.start_tracking(vehicle_id)

    @app.post("/v1/tracking/{vehicle_id}/stop")
    async def stop_tracking(vehicle_id: str):
        session = tracking.stop_tracking(vehicle_id)
        if session is None:
            raise NotFoundError("Tracking session", vehicle_id)
        await hub.broadcast(TrackingEvents.STOPPED, {"vehicle_id": vehicle_id, "tracking": session})
        return session

    # ========= Emergencies =========

    @app.post("/v1/emergencies", status_code=201)
    async def report_emergency(req: EmergencyCreateRequest):
        return await alerts.create_alert(req)

    @app.get("/v1/emergencies/status/active")
    async def active_emergencies():
        return await alerts.get_active_alerts()

    @app.get("/v1/emergencies/severity/critical")
    async def critical_emergencies():
        return await alerts.get_critical_alerts()

    @app.get("/v1/emergencies/stats")
    async def emergency_stats():
        return await alerts.alert_statistics()

    @app.patch("/v1/emergencies/{emergency_id}/status")
    async def update_emergency_status(emergency_id: str, req: AlertStatusPatch):
        return await alerts.update_alert_status(emergency_id, req.status)

    @app.post("/v1/emergencies/{emergency_id}/close")
    async def close_emergency(emergency_id: str):
        return await alerts.close_alert(emergency_id)

    # ========= Services =========

    @app.post("/v1/services", status_code=201)
    async def schedule_service(req: ServiceCreateRequest):
        service = await reminders.schedule_service(req)
        await hub.broadcast(ServiceEvents.SCHEDULED_BROADCAST, service)
        return service

    @app.get("/v1/services/upcoming")
    async def upcoming_services(days: Optional[float] = Query(None, ge=0)):
        return await reminders.get_upcoming_services(days)

    @app.get("/v1/services/overdue")
    async def overdue_services():
        return await reminders.get_overdue_services()

    @app.get("/v1/services/stats")
    async def service_stats():
        return await reminders.service_statistics()

    @app.get("/v1/services/vehicle/{vehicle_id}")
    async def vehicle_services(vehicle_id: str):
        return await reminders.get_services_by_vehicle(vehicle_id)

    @app.post("/v1/services/{service_id}/complete")
    async def complete_service(service_id: str):
        service = await reminders.complete_service(service_id)
        await hub.broadcast(ServiceEvents.COMPLETED_BROADCAST, service)
        return service

    @app.patch("/v1/services/{service_id}/reschedule")
    async def reschedule_service(service_id: str, req: ServiceReschedulePatch):
        service = await reminders.reschedule_service(service_id, req.new_date)
        await hub.broadcast(ServiceEvents.RESCHEDULED_BROADCAST, service)
        return service

    return app


app = create_app()
