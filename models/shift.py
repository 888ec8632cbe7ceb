from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field


# A named daily schedule; times are "HH:MM" 24-hour local strings.
# Stored embedded in the employee row, so this is a plain Pydantic model.
class Shift(BaseModel):
    id: str = Field(default_factory=lambda: uuid4().hex)
    company_id: Optional[str] = None
    name: str
    entry_time: Optional[str] = None
    exit_time: Optional[str] = None
    break_start_time: Optional[str] = None
    break_end_time: Optional[str] = None

    @property
    def has_break(self) -> bool:
        # Both ends must be present for a break to count
        return bool(self.break_start_time) and bool(self.break_end_time)
