from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import field_serializer
from sqlmodel import Field, Index, SQLModel

from utils.timezone_helpers import format_utc_datetime


# The four legal attendance events, in cycle order
class AttendanceType(str, Enum):
    ENTRY = "ENTRY"
    BREAK_START = "BREAK_START"
    BREAK_END = "BREAK_END"
    EXIT = "EXIT"


class PunctualityStatus(str, Enum):
    PERFECT = "PERFECT"
    GOOD = "GOOD"
    LATE = "LATE"
    NEUTRAL = "NEUTRAL"


# Append-only attendance timeline; rows are never updated through the normal flow
class AttendanceRecord(SQLModel, table=True):
    __tablename__ = "attendance"

    __table_args__ = (
        Index("ix_attendance_employee_id", "employee_id"),
        Index("ix_attendance_timestamp", "timestamp"),
        # Matches the live "latest records for employee" query
        Index("ix_attendance_employee_id_timestamp", "employee_id", "timestamp"),
        Index("ix_attendance_company_id_timestamp", "company_id", "timestamp"),
    )

    id: str = Field(default_factory=lambda: uuid4().hex, primary_key=True)
    employee_id: str
    employee_name: str = Field(default="")
    company_id: str
    location_id: str
    location_name: str = Field(default="")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    type: str
    latitude: float
    longitude: float
    distance_meters: int = Field(default=0)
    photo_snapshot: Optional[str] = Field(default=None)
    verified: bool = Field(default=False)
    score: int = Field(default=0)
    punctuality_status: str = Field(default=PunctualityStatus.NEUTRAL.value)
    punctuality_message: str = Field(default="")

    @field_serializer("timestamp")
    def serialize_timestamp(self, dt: datetime) -> str:
        """Ensure timestamp is formatted as UTC with Z suffix"""
        return format_utc_datetime(dt)
