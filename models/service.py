from datetime import datetime
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from models.base import SCHEMA, Base, RecordMixin
from models.vehicle import Vehicle


class Service(RecordMixin, Base):
    __tablename__ = "service"

    vehicle_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey(f"{SCHEMA}.vehicle.id"),
        nullable=False,
        index=True,
    )

    service_type: Mapped[str] = mapped_column(String(30), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cost: Mapped[float] = mapped_column(Float, nullable=False)

    service_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    next_service_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    mileage: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    provider: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="scheduled")
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    vehicle: Mapped[Vehicle] = relationship(lazy="selectin")

    __table_args__ = (
        CheckConstraint(
            "service_type IN ('oil_change', 'tire_replacement', 'maintenance', 'repair', 'inspection')",
            name="chk_service_type",
        ),
        CheckConstraint(
            "status IN ('scheduled', 'in-progress', 'completed', 'cancelled')",
            name="chk_service_status",
        ),
        Index("idx_service_status_date", "status", "service_date"),
        {"schema": SCHEMA},
    )

    def to_dict(self):
        return {
            "id": self.id,
            "vehicle_id": self.vehicle_id,
            "service_type": self.service_type,
            "description": self.description,
            "cost": self.cost,
            "service_date": self.service_date,
            "next_service_date": self.next_service_date,
            "completed_at": self.completed_at,
            "mileage": self.mileage,
            "provider": self.provider,
            "status": self.status,
            "notes": self.notes,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
