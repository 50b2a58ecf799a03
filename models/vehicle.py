from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from models.base import SCHEMA, Base, RecordMixin


class Vehicle(RecordMixin, Base):
    __tablename__ = "vehicle"

    registration_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    make: Mapped[str] = mapped_column(String(100), nullable=False)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    license_plate: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    color: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")

    current_latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    current_longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    location_updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'inactive', 'maintenance', 'retired')",
            name="chk_vehicle_status",
        ),
        {"schema": SCHEMA},
    )

    def apply(self, data):
        data = dict(data)
        location = data.pop("current_location", None)
        if location is not None:
            self.current_latitude = location.get("latitude")
            self.current_longitude = location.get("longitude")
            self.location_updated_at = location.get("last_updated")
        super().apply(data)

    def to_dict(self):
        location = None
        if self.current_latitude is not None and self.current_longitude is not None:
            location = {
                "latitude": self.current_latitude,
                "longitude": self.current_longitude,
                "last_updated": self.location_updated_at,
            }
        return {
            "id": self.id,
            "registration_number": self.registration_number,
            "make": self.make,
            "model": self.model,
            "year": self.year,
            "license_plate": self.license_plate,
            "color": self.color,
            "status": self.status,
            "current_location": location,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
