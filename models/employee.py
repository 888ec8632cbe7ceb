from typing import List, Optional
from uuid import uuid4

import numpy as np
from sqlalchemy import JSON, Column
from sqlmodel import Field, Index, SQLModel

from models.shift import Shift

DEFAULT_WORK_DAYS = [1, 2, 3, 4, 5]  # 0=Sun .. 6=Sat


class Employee(SQLModel, table=True):
    __tablename__ = "employees"

    __table_args__ = (
        Index("ix_employees_company_id", "company_id"),
        Index("ix_employees_company_id_cpf", "company_id", "cpf"),
    )

    id: str = Field(default_factory=lambda: uuid4().hex, primary_key=True)
    company_id: str
    name: str
    cpf: str = Field(default="")
    role: str = Field(default="")
    whatsapp: str = Field(default="")
    pin: Optional[str] = Field(default=None)
    work_days: List[int] = Field(
        default_factory=lambda: list(DEFAULT_WORK_DAYS), sa_column=Column(JSON)
    )
    location_ids: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    # Serialized Shift dicts
    shifts: List[dict] = Field(default_factory=list, sa_column=Column(JSON))
    # Reference photo and the embedding extracted from it
    photo_base64: Optional[str] = Field(default=None)
    face_embedding: Optional[List[float]] = Field(default=None, sa_column=Column(JSON))

    @property
    def has_photo(self) -> bool:
        return bool(self.photo_base64)

    def shift_list(self) -> List[Shift]:
        return [Shift.model_validate(s) for s in (self.shifts or [])]

    def find_shift(self, shift_id: str) -> Optional[Shift]:
        for shift in self.shift_list():
            if shift.id == shift_id:
                return shift
        return None

    def reference_embedding(self) -> Optional[np.ndarray]:
        if not self.face_embedding:
            return None
        return np.asarray(self.face_embedding, dtype=np.float64)
