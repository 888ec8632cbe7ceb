from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlmodel import Field, Index, SQLModel


class PaymentTransaction(SQLModel, table=True):
    __tablename__ = "payment_transactions"

    id: str = Field(default_factory=lambda: uuid4().hex, primary_key=True)
    company_id: str
    amount: float
    slots: int
    status: str = Field(default="pending")  # pending | approved | cancelled | expired
    payment_method: str = Field(default="pix")
    external_reference: Optional[str] = Field(default=None)
    description: str = Field(default="")
    qr_code: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    approved_at: Optional[datetime] = Field(default=None)

    __table_args__ = (
        Index("ix_payment_transactions_company_id", "company_id"),
        Index("ix_payment_transactions_external_reference", "external_reference"),
    )
