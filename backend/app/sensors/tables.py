"""ORM table for integration sensor readings."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import BigInteger, DateTime, Index, Integer, Numeric, String, Uuid, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.core.database import Base


class SensorReadingRow(Base):
    __tablename__ = "sensor_readings"
    __table_args__ = (
        Index("ix_sensor_readings_recorded_at", "recorded_at"),
    )

    reading_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    pool_id: Mapped[str] = mapped_column(Uuid(as_uuid=False), nullable=False, index=True)
    integration_id: Mapped[Optional[str]] = mapped_column(Uuid(as_uuid=False))
    device_id: Mapped[Optional[str]] = mapped_column(Uuid(as_uuid=False))
    metric: Mapped[str] = mapped_column(String(40), nullable=False)
    value: Mapped[float] = mapped_column(Numeric(12, 4, asdecimal=False), nullable=False)
    unit: Mapped[Optional[str]] = mapped_column(String(16))
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    source: Mapped[str] = mapped_column(String(40), nullable=False, default="integration")
    quality: Mapped[Optional[int]] = mapped_column(Integer)
    raw_payload: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
