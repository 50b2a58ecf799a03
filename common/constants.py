"""
Application-wide constants for the fleet backend.

This module contains all shared constants used across the application.
"""

import os

# ========= Service Configuration =========
# Service configuration: service_name -> (module_path, port)
SERVICES = {
    "realtime": ("services.realtime.main", 20010),
}

# ========= Subscription Topics =========
# Sentinel alert topic: subscribers receive alerts of every severity
ALL_SEVERITIES_TOPIC = "all"

# ========= Alert Fan-out =========
# "union": emergency-alert goes to every severity subscriber (legacy behaviour)
# "scoped": emergency-alert goes to the alert's severity and "all" subscribers only
FANOUT_POLICY_UNION = "union"
FANOUT_POLICY_SCOPED = "scoped"
FANOUT_POLICIES = {FANOUT_POLICY_UNION, FANOUT_POLICY_SCOPED}

# ========= Service Reminders =========
# How long before the service date the reminder fires (hours)
SERVICE_REMINDER_LEAD_HOURS = int(os.getenv("SERVICE_REMINDER_LEAD_HOURS", "24"))
UPCOMING_SERVICES_DEFAULT_DAYS = int(os.getenv("UPCOMING_SERVICES_DEFAULT_DAYS", "7"))

# ========= Geo =========
EARTH_RADIUS_KM = 6371.0


# ========= WebSocket Events =========
class TrackingEvents:
    """Tracking event names (inbound and outbound)."""

    SUBSCRIBE = "subscribe-tracking"
    UNSUBSCRIBE = "unsubscribe-tracking"
    START = "start-tracking"
    STOP = "stop-tracking"
    UPDATE_LOCATION = "update-location"
    GET_STATS = "get-stats"
    GET_ALL = "get-all-tracking"

    TRACKING_DATA = "tracking-data"
    LOCATION_UPDATE = "location-update"
    LOCATION_UPDATED = "location-updated"
    STARTED = "tracking-started"
    STOPPED = "tracking-stopped"
    STATS = "tracking-stats"
    ALL = "all-tracking"


class AlertEvents:
    """Emergency alert event names (inbound and outbound)."""

    SUBSCRIBE = "subscribe-alerts"
    UNSUBSCRIBE = "unsubscribe-alerts"
    REPORT = "report-emergency"
    UPDATE_STATUS = "update-alert-status"
    CLOSE = "close-alert"
    GET_CRITICAL = "get-critical-alerts"
    GET_ACTIVE = "get-active-alerts"
    GET_STATS = "get-alert-stats"

    EMERGENCY_ALERT = "emergency-alert"
    CRITICAL_ALERT = "critical-alert"
    REPORTED = "emergency-reported"
    ACTIVE_ALERTS = "active-alerts"
    CRITICAL_ALERTS = "critical-alerts"
    STATUS_UPDATED = "alert-status-updated"
    CLOSED = "alert-closed"
    STATS = "alert-stats"


class ServiceEvents:
    """Service scheduling event names (inbound and outbound)."""

    SCHEDULE = "schedule-service"
    COMPLETE = "complete-service"
    RESCHEDULE = "reschedule-service"
    GET_UPCOMING = "get-upcoming-services"
    GET_OVERDUE = "get-overdue-services"
    GET_STATS = "get-service-stats"
    GET_VEHICLE_SERVICES = "get-vehicle-services"

    SCHEDULED = "service-scheduled"
    SCHEDULED_BROADCAST = "service-scheduled-broadcast"
    COMPLETED = "service-completed"
    COMPLETED_BROADCAST = "service-completed-broadcast"
    RESCHEDULED = "service-rescheduled"
    RESCHEDULED_BROADCAST = "service-rescheduled-broadcast"
    REMINDER = "service-reminder"
    UPCOMING = "upcoming-services"
    OVERDUE = "overdue-services"
    STATS = "service-stats"
    VEHICLE_SERVICES = "vehicle-services"


ERROR_EVENT = "error"
