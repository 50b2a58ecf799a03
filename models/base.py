# models/base.py
import uuid
from datetime import datetime
from typing import Any, Dict

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

SCHEMA = "fleet"


def new_id() -> str:
    return uuid.uuid4().hex


class Base(DeclarativeBase):
    pass


class RecordMixin:
    """Shared id and timestamp columns plus dict conversion."""

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def apply(self, data: Dict[str, Any]) -> None:
        """Copy record fields onto the row; nested shapes are handled by subclasses."""
        for key, value in data.items():
            if key in ("id", "created_at", "updated_at"):
                continue
            if not hasattr(type(self), key):
                raise ValueError(f"{type(self).__name__} has no field '{key}'")
            setattr(self, key, value)

    def to_dict(self) -> Dict[str, Any]:
        raise NotImplementedError
