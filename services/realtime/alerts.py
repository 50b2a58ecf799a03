"""
Emergency alert coordination.

Persists emergencies through the store, keeps an in-memory mirror of the
alerts raised by this process and fans them out to severity subscribers.

Fan-out policies:
    union   every severity topic receives every ``emergency-alert``
            (matches the behaviour existing dashboards rely on)
    scoped  only the alert's own severity and the "all" topic receive it
Critical alerts are additionally broadcast to every connected client as
``critical-alert`` under both policies.
"""

import copy
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from common.clock import utcnow
from common.constants import (
    ALL_SEVERITIES_TOPIC,
    FANOUT_POLICIES,
    FANOUT_POLICY_SCOPED,
    FANOUT_POLICY_UNION,
    AlertEvents,
)
from common.errors import InvalidInputError, NotFoundError
from common.fleet_status import ACTIVE_ALERT_STATUSES, AlertSeverity, AlertStatus
from libs.store import FleetStore, eq, in_
from libs.ws_hub import ConnectionHub
from services.realtime.registry import SubscriptionRegistry
from services.realtime.schemas import EmergencyCreateRequest, parse_payload

logger = logging.getLogger(__name__)

POPULATE = ("vehicle",)
ALERT_TOPICS = {s.value for s in AlertSeverity} | {ALL_SEVERITIES_TOPIC}
MIRROR_FIELDS = (
    "id",
    "vehicle_id",
    "emergency_type",
    "severity",
    "description",
    "status",
    "created_at",
    "location",
)


def _alert_view(record: Dict[str, Any]) -> Dict[str, Any]:
    return {field: copy.deepcopy(record.get(field)) for field in MIRROR_FIELDS}


class AlertCoordinator:
    def __init__(
        self,
        store: FleetStore,
        hub: ConnectionHub,
        fanout_policy: str = FANOUT_POLICY_UNION,
        clock: Callable[[], datetime] = utcnow,
        alert_counter=None,
    ) -> None:
        if fanout_policy not in FANOUT_POLICIES:
            raise ValueError(f"Unknown alert fan-out policy: {fanout_policy}")
        self.fanout_policy = fanout_policy
        self._emergencies = store.emergencies
        self._vehicles = store.vehicles
        self._hub = hub
        self._clock = clock
        self._alert_counter = alert_counter
        self._active: Dict[str, Dict[str, Any]] = {}
        self._subscribers = SubscriptionRegistry()

    # ---- alert lifecycle ----------------------------------------------

    async def create_alert(self, data: Any) -> Dict[str, Any]:
        """
        Record a new emergency and fan it out.

        Args:
            data: Emergency fields (dict or EmergencyCreateRequest)

        Returns:
            The persisted emergency with its vehicle populated

        Raises:
            InvalidInputError: payload fails validation
            NotFoundError: the referenced vehicle does not exist
        """
        request = parse_payload(EmergencyCreateRequest, data)
        if await self._vehicles.find_by_id(request.vehicle_id) is None:
            raise NotFoundError("Vehicle", request.vehicle_id)

        fields = request.model_dump()
        if fields["reported_date"] is None:
            fields["reported_date"] = self._clock()

        created = await self._emergencies.insert(fields)
        emergency = await self._emergencies.find_by_id(created["id"], populate=POPULATE)
        if emergency is None:
            raise NotFoundError("Emergency", created["id"])

        alert = _alert_view(emergency)
        self._active[emergency["id"]] = alert
        if self._alert_counter is not None:
            self._alert_counter.labels(severity=alert["severity"]).inc()
        logger.info(
            f"Emergency {emergency['id']} reported for vehicle {alert['vehicle_id']} "
            f"({alert['emergency_type']}, severity={alert['severity']})"
        )

        await self._fan_out(alert)
        return emergency

    async def update_alert_status(self, alert_id: str, status: str) -> Dict[str, Any]:
        """
        Change an emergency's status and re-announce it.

        Raises:
            InvalidInputError: unknown status value
            NotFoundError: alert id does not resolve
        """
        status = _coerce_status(status)
        emergency = await self._emergencies.update_by_id(
            alert_id, {"status": status}, populate=POPULATE
        )
        if emergency is None:
            raise NotFoundError("Emergency", alert_id)

        alert = self._active.get(alert_id)
        if alert is not None:
            alert["status"] = status
        else:
            alert = _alert_view(emergency)
        logger.info(f"Emergency {alert_id} status -> {status}")

        await self._fan_out(alert)
        return emergency

    async def close_alert(self, alert_id: str) -> Dict[str, Any]:
        """Close an emergency, drop its mirror and tell every client."""
        emergency = await self._emergencies.update_by_id(
            alert_id,
            {"status": AlertStatus.CLOSED.value, "resolved_date": self._clock()},
            populate=POPULATE,
        )
        if emergency is None:
            raise NotFoundError("Emergency", alert_id)

        self._active.pop(alert_id, None)
        logger.info(f"Emergency {alert_id} closed")

        await self._hub.broadcast(
            AlertEvents.CLOSED,
            {"emergency_id": alert_id, "status": AlertStatus.CLOSED.value},
        )
        return emergency

    # ---- subscriptions --------------------------------------------------

    def subscribe_to_alerts(self, severity: str, client_id: str) -> None:
        self._subscribers.subscribe(_coerce_topic(severity), client_id)
        logger.info(f"Client {client_id} subscribed to {severity} alerts")

    def unsubscribe_from_alerts(self, severity: str, client_id: str) -> None:
        self._subscribers.unsubscribe(_coerce_topic(severity), client_id)
        logger.info(f"Client {client_id} unsubscribed from {severity} alerts")

    def subscribers_of(self, severity: str) -> List[str]:
        return self._subscribers.subscribers_of(severity)

    def remove_client(self, client_id: str) -> None:
        self._subscribers.remove_client(client_id)

    # ---- queries ----------------------------------------------------------

    async def get_critical_alerts(self) -> List[Dict[str, Any]]:
        return await self._emergencies.query(
            eq("severity", AlertSeverity.CRITICAL.value),
            in_("status", ACTIVE_ALERT_STATUSES),
            populate=POPULATE,
        )

    async def get_active_alerts(self) -> List[Dict[str, Any]]:
        return await self._emergencies.query(
            in_("status", ACTIVE_ALERT_STATUSES),
            populate=POPULATE,
        )

    async def alert_statistics(self) -> Dict[str, Any]:
        total = await self._emergencies.count_where()
        critical = await self._emergencies.count_where(
            eq("severity", AlertSeverity.CRITICAL.value)
        )
        active = await self._emergencies.count_where(in_("status", ACTIVE_ALERT_STATUSES))
        resolved = await self._emergencies.count_where(
            eq("status", AlertStatus.RESOLVED.value)
        )
        return {
            "total": total,
            "critical": critical,
            "active": active,
            "resolved": resolved,
            "resolution_rate": round(resolved / total * 100, 2) if total > 0 else 0,
        }

    def get_active_alert(self, alert_id: str) -> Optional[Dict[str, Any]]:
        alert = self._active.get(alert_id)
        return copy.deepcopy(alert) if alert is not None else None

    def active_alert_ids(self) -> List[str]:
        return list(self._active)

    # ---- fan-out ----------------------------------------------------------

    def recipients_for(self, severity: str) -> List[str]:
        """Clients that receive ``emergency-alert`` for an alert of this severity."""
        if self.fanout_policy == FANOUT_POLICY_SCOPED:
            topics = [severity, ALL_SEVERITIES_TOPIC]
        else:
            topics = [severity] + [t for t in self._subscribers.topics() if t != severity]

        recipients: List[str] = []
        for topic in topics:
            for client_id in self._subscribers.subscribers_of(topic):
                if client_id not in recipients:
                    recipients.append(client_id)
        return recipients

    async def _fan_out(self, alert: Dict[str, Any]) -> None:
        severity = alert["severity"]
        for client_id in self.recipients_for(severity):
            await self._hub.send_to(client_id, AlertEvents.EMERGENCY_ALERT, alert)
        if severity == AlertSeverity.CRITICAL.value:
            await self._hub.broadcast(AlertEvents.CRITICAL_ALERT, alert)


def _coerce_status(status: Any) -> str:
    try:
        return AlertStatus(status).value
    except ValueError:
        raise InvalidInputError(f"Unknown alert status: {status}") from None


def _coerce_topic(severity: Any) -> str:
    if not isinstance(severity, str) or severity not in ALERT_TOPICS:
        raise InvalidInputError(f"Unknown alert severity: {severity}")
    return severity
