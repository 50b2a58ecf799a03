"""
Service scheduling and reminder timers.

Every scheduled service gets one one-shot timer that fires a lead time
(24h by default) before the service date and broadcasts a
``service-reminder`` to every connected client. Timer handles are kept per
vehicle and cancelled directly on completion or reschedule; a fired timer
removes itself.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from common.clock import utcnow
from common.constants import (
    SERVICE_REMINDER_LEAD_HOURS,
    UPCOMING_SERVICES_DEFAULT_DAYS,
    ServiceEvents,
)
from common.errors import InvalidInputError, NotFoundError
from common.fleet_status import ServiceStatus
from libs.store import FleetStore, eq, gte, lt, lte
from libs.timers import AsyncioTimerFactory
from libs.ws_hub import ConnectionHub
from services.realtime.schemas import (
    ServiceCreateRequest,
    ServiceReschedulePatch,
    parse_payload,
)

logger = logging.getLogger(__name__)

POPULATE = ("vehicle",)


@dataclass(eq=False)
class ScheduledReminder:
    service_id: str
    fire_at: datetime
    handle: Any = None


class ReminderScheduler:
    def __init__(
        self,
        store: FleetStore,
        hub: ConnectionHub,
        timer_factory=None,
        clock: Callable[[], datetime] = utcnow,
        lead_time: timedelta = timedelta(hours=SERVICE_REMINDER_LEAD_HOURS),
        reminder_counter=None,
        upcoming_days: float = UPCOMING_SERVICES_DEFAULT_DAYS,
    ) -> None:
        self._services = store.services
        self._vehicles = store.vehicles
        self._hub = hub
        self._timer_factory = timer_factory or AsyncioTimerFactory()
        self._clock = clock
        self._lead_time = lead_time
        self._reminder_counter = reminder_counter
        self._upcoming_days = upcoming_days
        # vehicle_id -> pending reminders in arming order
        self._reminders: Dict[str, List[ScheduledReminder]] = {}

    # ---- scheduling -----------------------------------------------------

    async def schedule_service(self, data: Any) -> Dict[str, Any]:
        """
        Persist a service and arm its reminder.

        No reminder is armed when the reminder time has already passed.

        Raises:
            InvalidInputError: payload fails validation
            NotFoundError: the referenced vehicle does not exist
        """
        request = parse_payload(ServiceCreateRequest, data)
        if await self._vehicles.find_by_id(request.vehicle_id) is None:
            raise NotFoundError("Vehicle", request.vehicle_id)

        created = await self._services.insert(request.model_dump())
        service = await self._services.find_by_id(created["id"], populate=POPULATE)
        if service is None:
            raise NotFoundError("Service", created["id"])
        logger.info(
            f"Scheduled {service['service_type']} for vehicle {service['vehicle_id']} "
            f"on {service['service_date'].isoformat()}"
        )

        if service["status"] == ServiceStatus.SCHEDULED.value:
            self._arm(service)
        return service

    async def complete_service(self, service_id: str) -> Dict[str, Any]:
        """Mark a service completed, cancel its reminder and tell every client."""
        service = await self._services.update_by_id(
            service_id,
            {"status": ServiceStatus.COMPLETED.value, "completed_at": self._clock()},
            populate=POPULATE,
        )
        if service is None:
            raise NotFoundError("Service", service_id)

        self._cancel(service["vehicle_id"], service_id)
        logger.info(f"Service {service_id} completed")

        await self._hub.broadcast(
            ServiceEvents.COMPLETED,
            {
                "service_id": service_id,
                "vehicle_id": service["vehicle_id"],
                "service_type": service["service_type"],
            },
        )
        return service

    async def reschedule_service(self, service_id: str, new_date: Any) -> Dict[str, Any]:
        """Move a service to a new date and re-arm its reminder."""
        new_date = parse_payload(ServiceReschedulePatch, {"new_date": new_date}).new_date
        service = await self._services.update_by_id(
            service_id, {"service_date": new_date}, populate=POPULATE
        )
        if service is None:
            raise NotFoundError("Service", service_id)

        self._cancel(service["vehicle_id"], service_id)
        if service["status"] == ServiceStatus.SCHEDULED.value:
            self._arm(service)
        logger.info(f"Service {service_id} rescheduled to {new_date.isoformat()}")

        await self._hub.broadcast(
            ServiceEvents.RESCHEDULED,
            {
                "service_id": service_id,
                "new_date": new_date,
                "vehicle_id": service["vehicle_id"],
            },
        )
        return service

    # ---- queries ----------------------------------------------------------

    async def get_upcoming_services(self, days: Any = None) -> List[Dict[str, Any]]:
        """Scheduled services due within ``days`` (the configured window when None)."""
        if days is None:
            days = self._upcoming_days
        if isinstance(days, bool) or not isinstance(days, (int, float)) or days < 0:
            raise InvalidInputError(f"days must be a non-negative number, got {days!r}")
        now = self._clock()
        try:
            until = now + timedelta(days=days)
        except (OverflowError, ValueError):
            raise InvalidInputError(f"days is out of range, got {days!r}")
        return await self._services.query(
            eq("status", ServiceStatus.SCHEDULED.value),
            gte("service_date", now),
            lte("service_date", until),
            order_by="service_date",
            populate=POPULATE,
        )

    async def get_overdue_services(self) -> List[Dict[str, Any]]:
        return await self._services.query(
            eq("status", ServiceStatus.SCHEDULED.value),
            lt("service_date", self._clock()),
            order_by="service_date",
            populate=POPULATE,
        )

    async def get_services_by_vehicle(self, vehicle_id: str) -> List[Dict[str, Any]]:
        return await self._services.query(
            eq("vehicle_id", vehicle_id),
            order_by="service_date",
            descending=True,
        )

    async def service_statistics(self) -> Dict[str, Any]:
        total = await self._services.count_where()
        scheduled = await self._services.count_where(eq("status", ServiceStatus.SCHEDULED.value))
        completed = await self._services.count_where(eq("status", ServiceStatus.COMPLETED.value))
        in_progress = await self._services.count_where(
            eq("status", ServiceStatus.IN_PROGRESS.value)
        )
        total_cost = await self._services.sum_where(
            "cost", eq("status", ServiceStatus.COMPLETED.value)
        )
        return {
            "total": total,
            "scheduled": scheduled,
            "completed": completed,
            "in_progress": in_progress,
            "total_cost": total_cost,
            "completion_rate": round(completed / total * 100, 2) if total > 0 else 0,
        }

    def pending_reminders(self, vehicle_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Snapshot of armed reminders, optionally for one vehicle."""
        if vehicle_id is not None:
            items = [(vehicle_id, r) for r in self._reminders.get(vehicle_id, [])]
        else:
            items = [(vid, r) for vid, rs in self._reminders.items() for r in rs]
        return [
            {"vehicle_id": vid, "service_id": r.service_id, "fire_at": r.fire_at}
            for vid, r in items
        ]

    def shutdown(self) -> None:
        """Cancel every pending timer."""
        for reminders in self._reminders.values():
            for reminder in reminders:
                reminder.handle.cancel()
        self._reminders.clear()

    # ---- timers -------------------------------------------------------------

    def _arm(self, service: Dict[str, Any]) -> Optional[ScheduledReminder]:
        vehicle_id = service["vehicle_id"]
        service_id = service["id"]
        service_type = service["service_type"]
        service_date = service["service_date"]

        fire_at = service_date - self._lead_time
        delay = (fire_at - self._clock()).total_seconds()
        if delay <= 0:
            logger.info(f"No reminder for service {service_id}: reminder time already passed")
            return None

        reminder = ScheduledReminder(service_id=service_id, fire_at=fire_at)

        async def fire() -> None:
            await self._fire(vehicle_id, reminder, service_type, service_date)

        reminder.handle = self._timer_factory(delay, fire)
        self._reminders.setdefault(vehicle_id, []).append(reminder)
        logger.info(f"Reminder for service {service_id} armed for {fire_at.isoformat()}")
        return reminder

    def _cancel(self, vehicle_id: str, service_id: str) -> None:
        reminders = self._reminders.get(vehicle_id, [])
        for reminder in [r for r in reminders if r.service_id == service_id]:
            reminder.handle.cancel()
            reminders.remove(reminder)
            logger.info(f"Reminder for service {service_id} cancelled")

    async def _fire(
        self,
        vehicle_id: str,
        reminder: ScheduledReminder,
        service_type: str,
        service_date: datetime,
    ) -> None:
        reminders = self._reminders.get(vehicle_id, [])
        if reminder not in reminders:
            # cancelled after the timer was already due
            return
        reminders.remove(reminder)

        if self._reminder_counter is not None:
            self._reminder_counter.inc()
        logger.info(f"Service reminder fired for service {reminder.service_id}")

        await self._hub.broadcast(
            ServiceEvents.REMINDER,
            {
                "vehicle_id": vehicle_id,
                "service_id": reminder.service_id,
                "service_type": service_type,
                "scheduled_date": service_date,
                "message": (
                    f"Service reminder: {service_type} scheduled for "
                    f"{service_date.strftime('%Y-%m-%d')}"
                ),
            },
        )
