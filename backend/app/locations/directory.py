"""
Location lookup used by the weather service for access checks and
coordinates. Location CRUD lives elsewhere; this module only reads.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .tables import UserLocationRow


@dataclass
class Location:
    location_id: str
    user_id: str
    name: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    is_active: Optional[bool] = True


class LocationDirectory(ABC):

    @abstractmethod
    async def get(self, location_id: str) -> Optional[Location]:
        ...


class SqlLocationDirectory(LocationDirectory):

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, location_id: str) -> Optional[Location]:
        async with self._session_factory() as session:
            row = await session.scalar(
                select(UserLocationRow).where(UserLocationRow.location_id == location_id)
            )
        if row is None:
            return None
        return Location(
            location_id=str(row.location_id),
            user_id=str(row.user_id),
            name=row.name,
            latitude=float(row.latitude) if row.latitude is not None else None,
            longitude=float(row.longitude) if row.longitude is not None else None,
            is_active=row.is_active,
        )
