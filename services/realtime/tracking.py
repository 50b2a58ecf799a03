"""
Live vehicle tracking.

Owns one TrackingSession per vehicle and pushes every change to the clients
subscribed to that vehicle. Location writes for the same vehicle are
serialized so the distance accumulation is never interleaved across the
store round-trip.
"""

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from common.clock import utcnow
from common.constants import TrackingEvents
from common.errors import NotFoundError
from common.fleet_status import TrackingStatus
from common.geo import distance_km
from libs.store import FleetStore
from libs.ws_hub import ConnectionHub
from services.realtime.registry import SubscriptionRegistry

logger = logging.getLogger(__name__)


@dataclass
class TrackingSession:
    vehicle_id: str
    status: str
    start_time: datetime
    last_update: datetime
    current_location: Dict[str, float]
    distance: float = 0.0
    speed: float = 0.0
    end_time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class TrackingCoordinator:
    def __init__(
        self,
        store: FleetStore,
        hub: ConnectionHub,
        clock: Callable[[], datetime] = utcnow,
        location_counter=None,
    ) -> None:
        self._vehicles = store.vehicles
        self._hub = hub
        self._clock = clock
        self._location_counter = location_counter
        self._sessions: Dict[str, TrackingSession] = {}
        self._subscribers = SubscriptionRegistry()
        # vehicle_id -> lock, kept only while someone holds or waits on it
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = defaultdict(int)

    async def start_tracking(self, vehicle_id: str) -> Dict[str, Any]:
        """
        Open (or replace) the tracking session for a vehicle.

        The vehicle's last known location becomes the starting point.

        Raises:
            NotFoundError: vehicle id does not resolve
        """
        async with self._vehicle_lock(vehicle_id):
            vehicle = await self._vehicles.find_by_id(vehicle_id)
            if vehicle is None:
                raise NotFoundError("Vehicle", vehicle_id)

            location = vehicle.get("current_location") or {}
            now = self._clock()
            session = TrackingSession(
                vehicle_id=vehicle_id,
                status=TrackingStatus.TRACKING.value,
                start_time=now,
                last_update=now,
                current_location={
                    "latitude": location.get("latitude") or 0.0,
                    "longitude": location.get("longitude") or 0.0,
                },
            )
            self._sessions[vehicle_id] = session
            logger.info(f"Started tracking vehicle {vehicle_id}")

            await self._push(vehicle_id, session.to_dict())
            return session.to_dict()

    async def update_location(
        self, vehicle_id: str, latitude: float, longitude: float
    ) -> Dict[str, Any]:
        """
        Persist a new position and fold the leg into the live session.

        Returns:
            The updated vehicle record

        Raises:
            NotFoundError: vehicle id does not resolve
        """
        async with self._vehicle_lock(vehicle_id):
            now = self._clock()
            new_location = {"latitude": latitude, "longitude": longitude}
            vehicle = await self._vehicles.update_by_id(
                vehicle_id,
                {"current_location": {**new_location, "last_updated": now}},
            )
            if vehicle is None:
                raise NotFoundError("Vehicle", vehicle_id)

            session = self._sessions.get(vehicle_id)
            if session is not None:
                session.distance += distance_km(session.current_location, new_location)
                session.current_location = new_location
                session.last_update = now
                payload = session.to_dict()
            else:
                payload = {"vehicle_id": vehicle_id, "current_location": new_location}

            if self._location_counter is not None:
                self._location_counter.inc()

            await self._push(vehicle_id, payload)
            return vehicle

    def stop_tracking(self, vehicle_id: str) -> Optional[Dict[str, Any]]:
        """Mark the session stopped; returns None when the vehicle was never tracked."""
        session = self._sessions.get(vehicle_id)
        if session is None:
            return None
        session.status = TrackingStatus.STOPPED.value
        session.end_time = self._clock()
        logger.info(f"Stopped tracking vehicle {vehicle_id} after {session.distance:.2f} km")
        return session.to_dict()

    def subscribe(self, vehicle_id: str, client_id: str) -> None:
        self._subscribers.subscribe(vehicle_id, client_id)
        logger.info(f"Client {client_id} subscribed to vehicle {vehicle_id}")

    def unsubscribe(self, vehicle_id: str, client_id: str) -> None:
        self._subscribers.unsubscribe(vehicle_id, client_id)
        logger.info(f"Client {client_id} unsubscribed from vehicle {vehicle_id}")

    def subscribers_of(self, vehicle_id: str) -> List[str]:
        return self._subscribers.subscribers_of(vehicle_id)

    def remove_client(self, client_id: str) -> None:
        self._subscribers.remove_client(client_id)

    def get_session(self, vehicle_id: str) -> Optional[Dict[str, Any]]:
        session = self._sessions.get(vehicle_id)
        return session.to_dict() if session is not None else None

    def get_all_sessions(self) -> List[Dict[str, Any]]:
        return [session.to_dict() for session in self._sessions.values()]

    def statistics(self, vehicle_id: str) -> Optional[Dict[str, Any]]:
        session = self._sessions.get(vehicle_id)
        if session is None:
            return None

        elapsed = (self._clock() - session.start_time).total_seconds()
        hours = elapsed / 3600
        average_speed = session.distance / hours if hours > 0 else 0.0

        return {
            "vehicle_id": vehicle_id,
            "distance": session.distance,
            "duration_seconds": int(elapsed),
            "average_speed": average_speed,
            "current_speed": session.speed,
            "status": session.status,
        }

    async def _push(self, vehicle_id: str, payload: Dict[str, Any]) -> None:
        for client_id in self._subscribers.subscribers_of(vehicle_id):
            await self._hub.send_to(client_id, TrackingEvents.LOCATION_UPDATE, payload)

    @asynccontextmanager
    async def _vehicle_lock(self, vehicle_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(vehicle_id)
        if lock is None:
            lock = self._locks[vehicle_id] = asyncio.Lock()
        self._lock_users[vehicle_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[vehicle_id] -= 1
            if not self._lock_users[vehicle_id]:
                del self._lock_users[vehicle_id]
                del self._locks[vehicle_id]
