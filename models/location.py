from typing import Optional
from uuid import uuid4

from sqlmodel import Field, Index, SQLModel

from utils.geofence import Coordinate

# Defines the Structure of Data for Comparing an Employee Clock In/Out to Expected Location


# Work Location w/ Circular Geofence, Owned By One Company
class ServiceLocation(SQLModel, table=True):
    __tablename__ = "service_locations"

    __table_args__ = (Index("ix_service_locations_company_id", "company_id"),)

    id: str = Field(default_factory=lambda: uuid4().hex, primary_key=True)
    company_id: str = Field(..., description="Tenant that owns this location")
    name: str = Field(..., description="Human-friendly location name")
    address: Optional[str] = Field(default=None)
    latitude: float = Field(..., description="Latitude of geofence center")
    longitude: float = Field(..., description="Longitude of geofence center")
    radius_meters: int = Field(..., description="Allowed clock-in radius in meters")

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(latitude=self.latitude, longitude=self.longitude)
