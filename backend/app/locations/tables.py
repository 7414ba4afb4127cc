"""ORM table for user locations (read-only from this service's point of view)."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Numeric, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.core.database import Base


class UserLocationRow(Base):
    __tablename__ = "user_locations"

    location_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    latitude: Mapped[Optional[float]] = mapped_column(Numeric(10, 8, asdecimal=False))
    longitude: Mapped[Optional[float]] = mapped_column(Numeric(11, 8, asdecimal=False))
    timezone: Mapped[Optional[str]] = mapped_column(String(50), default="UTC")
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[Optional[bool]] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
