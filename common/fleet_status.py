"""
Fleet Status Enums
Shared status enumerations for vehicles, emergencies, services and tracking.
"""

from enum import Enum


class TrackingStatus(str, Enum):
    """Live tracking session status values"""
    TRACKING = "tracking"
    STOPPED = "stopped"


class VehicleStatus(str, Enum):
    """Vehicle status values"""
    ACTIVE = "active"
    INACTIVE = "inactive"
    MAINTENANCE = "maintenance"
    RETIRED = "retired"


class AlertSeverity(str, Enum):
    """Emergency severity levels"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertStatus(str, Enum):
    """Emergency lifecycle status values"""
    REPORTED = "reported"
    IN_PROGRESS = "in-progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class EmergencyType(str, Enum):
    """Emergency categories"""
    BREAKDOWN = "breakdown"
    ACCIDENT = "accident"
    THEFT = "theft"
    MEDICAL = "medical"
    OTHER = "other"


class ServiceStatus(str, Enum):
    """Vehicle service status values"""
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ServiceType(str, Enum):
    """Vehicle service categories"""
    OIL_CHANGE = "oil_change"
    TIRE_REPLACEMENT = "tire_replacement"
    MAINTENANCE = "maintenance"
    REPAIR = "repair"
    INSPECTION = "inspection"


# Statuses that count as an open emergency
ACTIVE_ALERT_STATUSES = [AlertStatus.REPORTED.value, AlertStatus.IN_PROGRESS.value]
