"""
WebSocket event wiring.

Maps the named inbound events onto coordinator calls and emits the replies
and broadcasts. Every handler reports failure to the sender as an ``error``
event carrying a short message; the connection stays open.
"""

import functools
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, Optional

from common.constants import (
    ERROR_EVENT,
    AlertEvents,
    ServiceEvents,
    TrackingEvents,
)
from common.errors import FleetError, InvalidInputError
from common.fleet_status import AlertSeverity
from libs.config import Config
from libs.store import FleetStore
from libs.ws_hub import ConnectionHub
from services.realtime.alerts import AlertCoordinator
from services.realtime.reminders import ReminderScheduler
from services.realtime.schemas import (
    AlertStatusUpdateRequest,
    LocationUpdateRequest,
    ServiceRescheduleRequest,
    parse_payload,
)
from services.realtime.tracking import TrackingCoordinator

logger = logging.getLogger(__name__)

Handler = Callable[["EventHandlers", str, Any], Awaitable[None]]


@dataclass
class RealtimeCoordinators:
    """The three coordinators, constructed once per process."""

    tracking: TrackingCoordinator
    alerts: AlertCoordinator
    reminders: ReminderScheduler


def build_coordinators(
    store: FleetStore,
    hub: ConnectionHub,
    settings: Config,
    metrics: Optional[Dict[str, Any]] = None,
    **overrides,
) -> RealtimeCoordinators:
    """
    Construct the coordinators over a store and a hub.

    Args:
        store: Persisted-record collaborator
        hub: Connection hub used for pushes and broadcasts
        settings: Config supplying fan-out policy and reminder lead time
        metrics: Optional business counters keyed by name
        **overrides: ``clock`` and/or ``timer_factory`` replacements (tests)
    """
    metrics = metrics or {}
    clock_kwargs = {"clock": overrides["clock"]} if "clock" in overrides else {}
    return RealtimeCoordinators(
        tracking=TrackingCoordinator(
            store,
            hub,
            location_counter=metrics.get("location_updates"),
            **clock_kwargs,
        ),
        alerts=AlertCoordinator(
            store,
            hub,
            fanout_policy=settings.validate_fanout_policy(),
            alert_counter=metrics.get("alerts_created"),
            **clock_kwargs,
        ),
        reminders=ReminderScheduler(
            store,
            hub,
            timer_factory=overrides.get("timer_factory"),
            lead_time=timedelta(hours=settings.SERVICE_REMINDER_LEAD_HOURS),
            reminder_counter=metrics.get("reminders_fired"),
            upcoming_days=settings.UPCOMING_SERVICES_DEFAULT_DAYS,
            **clock_kwargs,
        ),
    )


def _identifier(payload: Any, key: str) -> str:
    """Accept a bare id or an object carrying it under ``key``."""
    if isinstance(payload, dict):
        payload = payload.get(key)
    if not isinstance(payload, str) or not payload:
        raise InvalidInputError(f"Missing {key}")
    return payload


def _days(payload: Any):
    if isinstance(payload, dict):
        payload = payload.get("days")
    return payload


def guarded(failure_message: str):
    """Turn any handler failure into an ``error`` event for the sender."""

    def decorator(fn: Handler) -> Handler:
        @functools.wraps(fn)
        async def wrapper(self: "EventHandlers", client_id: str, payload: Any) -> None:
            try:
                await fn(self, client_id, payload)
            except FleetError as e:
                logger.error(f"{failure_message} ({client_id}): {e}")
                await self.hub.send_to(client_id, ERROR_EVENT, {"message": failure_message})
            except Exception:
                logger.exception(f"{failure_message} ({client_id})")
                await self.hub.send_to(client_id, ERROR_EVENT, {"message": failure_message})

        return wrapper

    return decorator


class EventHandlers:
    def __init__(self, hub: ConnectionHub, coordinators: RealtimeCoordinators) -> None:
        self.hub = hub
        self.tracking = coordinators.tracking
        self.alerts = coordinators.alerts
        self.reminders = coordinators.reminders

    def register(self) -> None:
        routes = {
            TrackingEvents.SUBSCRIBE: self.subscribe_tracking,
            TrackingEvents.UNSUBSCRIBE: self.unsubscribe_tracking,
            TrackingEvents.START: self.start_tracking,
            TrackingEvents.STOP: self.stop_tracking,
            TrackingEvents.UPDATE_LOCATION: self.update_location,
            TrackingEvents.GET_STATS: self.get_stats,
            TrackingEvents.GET_ALL: self.get_all_tracking,
            AlertEvents.SUBSCRIBE: self.subscribe_alerts,
            AlertEvents.UNSUBSCRIBE: self.unsubscribe_alerts,
            AlertEvents.REPORT: self.report_emergency,
            AlertEvents.UPDATE_STATUS: self.update_alert_status,
            AlertEvents.CLOSE: self.close_alert,
            AlertEvents.GET_CRITICAL: self.get_critical_alerts,
            AlertEvents.GET_ACTIVE: self.get_active_alerts,
            AlertEvents.GET_STATS: self.get_alert_stats,
            ServiceEvents.SCHEDULE: self.schedule_service,
            ServiceEvents.COMPLETE: self.complete_service,
            ServiceEvents.RESCHEDULE: self.reschedule_service,
            ServiceEvents.GET_UPCOMING: self.get_upcoming_services,
            ServiceEvents.GET_OVERDUE: self.get_overdue_services,
            ServiceEvents.GET_STATS: self.get_service_stats,
            ServiceEvents.GET_VEHICLE_SERVICES: self.get_vehicle_services,
        }
        for event_name, handler in routes.items():
            self.hub.on(event_name, handler)
        self.hub.on_disconnect(self.forget_client)

    def forget_client(self, client_id: str) -> None:
        """Purge a disconnected client from every subscriber set."""
        self.tracking.remove_client(client_id)
        self.alerts.remove_client(client_id)

    # ---- tracking -----------------------------------------------------

    @guarded("Failed to subscribe to tracking")
    async def subscribe_tracking(self, client_id, payload):
        vehicle_id = _identifier(payload, "vehicle_id")
        self.tracking.subscribe(vehicle_id, client_id)
        session = self.tracking.get_session(vehicle_id)
        if session is not None:
            await self.hub.send_to(client_id, TrackingEvents.TRACKING_DATA, session)

    @guarded("Failed to unsubscribe from tracking")
    async def unsubscribe_tracking(self, client_id, payload):
        self.tracking.unsubscribe(_identifier(payload, "vehicle_id"), client_id)

    @guarded("Failed to start tracking")
    async def start_tracking(self, client_id, payload):
        session = await self.tracking.start_tracking(_identifier(payload, "vehicle_id"))
        await self.hub.send_to(client_id, TrackingEvents.STARTED, session)

    @guarded("Failed to stop tracking")
    async def stop_tracking(self, client_id, payload):
        vehicle_id = _identifier(payload, "vehicle_id")
        session = self.tracking.stop_tracking(vehicle_id)
        await self.hub.broadcast(
            TrackingEvents.STOPPED, {"vehicle_id": vehicle_id, "tracking": session}
        )

    @guarded("Failed to update location")
    async def update_location(self, client_id, payload):
        request = parse_payload(LocationUpdateRequest, payload)
        vehicle = await self.tracking.update_location(
            request.vehicle_id, request.latitude, request.longitude
        )
        await self.hub.send_to(
            client_id,
            TrackingEvents.LOCATION_UPDATED,
            {"vehicle_id": request.vehicle_id, "vehicle": vehicle},
        )

    @guarded("Failed to get statistics")
    async def get_stats(self, client_id, payload):
        stats = self.tracking.statistics(_identifier(payload, "vehicle_id"))
        await self.hub.send_to(client_id, TrackingEvents.STATS, stats)

    @guarded("Failed to get tracking data")
    async def get_all_tracking(self, client_id, payload):
        await self.hub.send_to(client_id, TrackingEvents.ALL, self.tracking.get_all_sessions())

    # ---- alerts -------------------------------------------------------

    @guarded("Failed to subscribe to alerts")
    async def subscribe_alerts(self, client_id, payload):
        severity = _identifier(payload, "severity")
        self.alerts.subscribe_to_alerts(severity, client_id)
        if severity == AlertSeverity.CRITICAL.value:
            alerts = await self.alerts.get_critical_alerts()
        else:
            alerts = await self.alerts.get_active_alerts()
        await self.hub.send_to(client_id, AlertEvents.ACTIVE_ALERTS, alerts)

    @guarded("Failed to unsubscribe from alerts")
    async def unsubscribe_alerts(self, client_id, payload):
        self.alerts.unsubscribe_from_alerts(_identifier(payload, "severity"), client_id)

    @guarded("Failed to report emergency")
    async def report_emergency(self, client_id, payload):
        emergency = await self.alerts.create_alert(payload)
        await self.hub.send_to(client_id, AlertEvents.REPORTED, emergency)

    @guarded("Failed to update alert status")
    async def update_alert_status(self, client_id, payload):
        request = parse_payload(AlertStatusUpdateRequest, payload)
        emergency = await self.alerts.update_alert_status(request.emergency_id, request.status)
        await self.hub.send_to(client_id, AlertEvents.STATUS_UPDATED, emergency)

    @guarded("Failed to close alert")
    async def close_alert(self, client_id, payload):
        emergency = await self.alerts.close_alert(_identifier(payload, "emergency_id"))
        await self.hub.send_to(client_id, AlertEvents.CLOSED, emergency)

    @guarded("Failed to get critical alerts")
    async def get_critical_alerts(self, client_id, payload):
        alerts = await self.alerts.get_critical_alerts()
        await self.hub.send_to(client_id, AlertEvents.CRITICAL_ALERTS, alerts)

    @guarded("Failed to get active alerts")
    async def get_active_alerts(self, client_id, payload):
        alerts = await self.alerts.get_active_alerts()
        await self.hub.send_to(client_id, AlertEvents.ACTIVE_ALERTS, alerts)

    @guarded("Failed to get alert statistics")
    async def get_alert_stats(self, client_id, payload):
        stats = await self.alerts.alert_statistics()
        await self.hub.send_to(client_id, AlertEvents.STATS, stats)

    # ---- services -----------------------------------------------------

    @guarded("Failed to schedule service")
    async def schedule_service(self, client_id, payload):
        service = await self.reminders.schedule_service(payload)
        await self.hub.send_to(client_id, ServiceEvents.SCHEDULED, service)
        await self.hub.broadcast(ServiceEvents.SCHEDULED_BROADCAST, service)

    @guarded("Failed to complete service")
    async def complete_service(self, client_id, payload):
        service = await self.reminders.complete_service(_identifier(payload, "service_id"))
        await self.hub.send_to(client_id, ServiceEvents.COMPLETED, service)
        await self.hub.broadcast(ServiceEvents.COMPLETED_BROADCAST, service)

    @guarded("Failed to reschedule service")
    async def reschedule_service(self, client_id, payload):
        request = parse_payload(ServiceRescheduleRequest, payload)
        service = await self.reminders.reschedule_service(request.service_id, request.new_date)
        await self.hub.send_to(client_id, ServiceEvents.RESCHEDULED, service)
        await self.hub.broadcast(ServiceEvents.RESCHEDULED_BROADCAST, service)

    @guarded("Failed to get upcoming services")
    async def get_upcoming_services(self, client_id, payload):
        services = await self.reminders.get_upcoming_services(_days(payload))
        await self.hub.send_to(client_id, ServiceEvents.UPCOMING, services)

    @guarded("Failed to get overdue services")
    async def get_overdue_services(self, client_id, payload):
        services = await self.reminders.get_overdue_services()
        await self.hub.send_to(client_id, ServiceEvents.OVERDUE, services)

    @guarded("Failed to get service statistics")
    async def get_service_stats(self, client_id, payload):
        stats = await self.reminders.service_statistics()
        await self.hub.send_to(client_id, ServiceEvents.STATS, stats)

    @guarded("Failed to get vehicle services")
    async def get_vehicle_services(self, client_id, payload):
        services = await self.reminders.get_services_by_vehicle(_identifier(payload, "vehicle_id"))
        await self.hub.send_to(client_id, ServiceEvents.VEHICLE_SERVICES, services)
