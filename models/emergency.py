from datetime import datetime
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import SCHEMA, Base, RecordMixin
from models.vehicle import Vehicle


class Emergency(RecordMixin, Base):
    __tablename__ = "emergency"

    vehicle_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey(f"{SCHEMA}.vehicle.id"),
        nullable=False,
        index=True,
    )

    trip_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    emergency_type: Mapped[str] = mapped_column(String(20), nullable=False)

    description: Mapped[str] = mapped_column(Text, nullable=False)

    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    reported_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    resolved_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="reported")
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default="medium")

    cost: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    vehicle: Mapped[Vehicle] = relationship(lazy="selectin")

    __table_args__ = (
        CheckConstraint(
            "emergency_type IN ('breakdown', 'accident', 'theft', 'medical', 'other')",
            name="chk_emergency_type",
        ),
        CheckConstraint(
            "status IN ('reported', 'in-progress', 'resolved', 'closed')",
            name="chk_emergency_status",
        ),
        CheckConstraint(
            "severity IN ('low', 'medium', 'high', 'critical')",
            name="chk_emergency_severity",
        ),
        Index("idx_emergency_status_severity", "status", "severity"),
        {"schema": SCHEMA},
    )

    def apply(self, data):
        data = dict(data)
        location = data.pop("location", None)
        if location is not None:
            self.latitude = location.get("latitude")
            self.longitude = location.get("longitude")
            self.address = location.get("address")
        super().apply(data)

    def to_dict(self):
        location = None
        if self.latitude is not None or self.longitude is not None or self.address:
            location = {
                "latitude": self.latitude,
                "longitude": self.longitude,
                "address": self.address,
            }
        return {
            "id": self.id,
            "vehicle_id": self.vehicle_id,
            "trip_id": self.trip_id,
            "emergency_type": self.emergency_type,
            "description": self.description,
            "location": location,
            "reported_date": self.reported_date,
            "resolved_date": self.resolved_date,
            "status": self.status,
            "severity": self.severity,
            "cost": self.cost,
            "notes": self.notes,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
