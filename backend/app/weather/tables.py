"""ORM tables backing the database weather cache store."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Float, ForeignKey, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.core.database import Base


class WeatherDataRow(Base):
    __tablename__ = "weather_data"
    __table_args__ = (
        UniqueConstraint("location_id", "recorded_at", name="uq_weather_data_location_recorded"),
    )

    weather_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    location_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("user_locations.location_id", ondelete="CASCADE"),
        nullable=False,
    )
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    air_temp_f: Mapped[Optional[float]] = mapped_column(Float)
    uv_index: Mapped[Optional[float]] = mapped_column(Float)
    rainfall_in: Mapped[Optional[float]] = mapped_column(Float)
    wind_speed_mph: Mapped[Optional[float]] = mapped_column(Float)
    humidity_percent: Mapped[Optional[float]] = mapped_column(Float)
    pressure_inhg: Mapped[Optional[float]] = mapped_column(Float)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )


class WeatherFetchStateRow(Base):
    """Timestamp of the last successful upstream fetch per location."""
    __tablename__ = "weather_fetch_state"

    location_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False),
        ForeignKey("user_locations.location_id", ondelete="CASCADE"),
        primary_key=True,
    )
    last_fetch_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
