import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from core.errors import PositionError
from utils.geofence import Coordinate

logger = logging.getLogger(__name__)


class PositionUnavailableError(Exception):
    """Raised by a geolocation provider that cannot produce a fix."""

    def __init__(self, cause: PositionError):
        super().__init__(cause.value)
        self.cause = cause


class GeolocationProvider(Protocol):
    async def get_current_position(self) -> Coordinate: ...


@dataclass(frozen=True)
class PositionFix:
    coordinate: Optional[Coordinate]
    error: Optional[PositionError] = None


# Position reported by the client device alongside the request
class ReportedPosition:
    def __init__(self, latitude: Optional[float], longitude: Optional[float]):
        self.latitude = latitude
        self.longitude = longitude

    async def get_current_position(self) -> Coordinate:
        if self.latitude is None or self.longitude is None:
            raise PositionUnavailableError(PositionError.UNAVAILABLE)
        return Coordinate(latitude=self.latitude, longitude=self.longitude)


async def obtain_position(provider: GeolocationProvider, timeout: float) -> PositionFix:
    """Ask the provider for a fix, failing instead of hanging past `timeout`."""
    try:
        coordinate = await asyncio.wait_for(provider.get_current_position(), timeout)
    except asyncio.TimeoutError:
        logger.warning(f"[GEOLOCATION] ⏱️ No position fix after {timeout}s")
        return PositionFix(None, PositionError.TIMEOUT)
    except PositionUnavailableError as e:
        logger.warning(f"[GEOLOCATION] ❌ Position unavailable: {e.cause.value}")
        return PositionFix(None, e.cause)

    logger.info(
        f"[GEOLOCATION] ✅ Position obtained: ({coordinate.latitude}, {coordinate.longitude})"
    )
    return PositionFix(coordinate)
