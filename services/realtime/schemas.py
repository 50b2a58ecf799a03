from datetime import datetime, timezone
from typing import Any, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from common.errors import InvalidInputError
from common.fleet_status import (
    AlertSeverity,
    AlertStatus,
    EmergencyType,
    ServiceStatus,
    ServiceType,
    VehicleStatus,
)

ModelT = TypeVar("ModelT", bound=BaseModel)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC and normalise aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_payload(model: Type[ModelT], payload: Any) -> ModelT:
    """Validate an inbound payload, raising InvalidInputError on failure."""
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload if payload is not None else {})
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) or "payload" for err in e.errors())
        raise InvalidInputError(f"Invalid {model.__name__}: {fields}") from e


class FleetModel(BaseModel):
    model_config = ConfigDict(use_enum_values=True)


class Location(FleetModel):
    latitude: float
    longitude: float


class VehicleCreateRequest(FleetModel):
    registration_number: str = Field(min_length=1)
    make: str = Field(min_length=1)
    model: str = Field(min_length=1)
    year: int
    license_plate: str = Field(min_length=1)
    color: Optional[str] = None
    status: VehicleStatus = VehicleStatus.ACTIVE
    current_location: Optional[Location] = None


class LocationUpdateRequest(FleetModel):
    vehicle_id: str = Field(min_length=1)
    latitude: float
    longitude: float


class EmergencyLocation(FleetModel):
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None


class EmergencyCreateRequest(FleetModel):
    vehicle_id: str = Field(min_length=1)
    trip_id: Optional[str] = None
    emergency_type: EmergencyType
    description: str = Field(min_length=1)
    location: Optional[EmergencyLocation] = None
    severity: AlertSeverity = AlertSeverity.MEDIUM
    status: AlertStatus = AlertStatus.REPORTED
    reported_date: Optional[datetime] = None
    cost: Optional[float] = None
    notes: Optional[str] = None

    @field_validator("reported_date")
    @classmethod
    def normalise_dates(cls, value):
        return ensure_utc(value)

    @field_validator("location")
    @classmethod
    def drop_empty_location(cls, value):
        # Same rule the SQL row uses when rebuilding the location
        if value is None or value.latitude is not None or value.longitude is not None:
            return value
        return value if value.address else None


class AlertStatusUpdateRequest(FleetModel):
    emergency_id: str = Field(min_length=1)
    status: AlertStatus


class AlertStatusPatch(FleetModel):
    status: AlertStatus


class ServiceCreateRequest(FleetModel):
    vehicle_id: str = Field(min_length=1)
    service_type: ServiceType
    description: Optional[str] = None
    cost: float = Field(ge=0)
    service_date: datetime
    next_service_date: Optional[datetime] = None
    mileage: Optional[int] = None
    provider: Optional[str] = None
    status: ServiceStatus = ServiceStatus.SCHEDULED
    notes: Optional[str] = None

    @field_validator("service_date", "next_service_date")
    @classmethod
    def normalise_dates(cls, value):
        return ensure_utc(value)


class ServiceRescheduleRequest(FleetModel):
    service_id: str = Field(min_length=1)
    new_date: datetime

    @field_validator("new_date")
    @classmethod
    def normalise_dates(cls, value):
        return ensure_utc(value)


class ServiceReschedulePatch(FleetModel):
    new_date: datetime

    @field_validator("new_date")
    @classmethod
    def normalise_dates(cls, value):
        return ensure_utc(value)
