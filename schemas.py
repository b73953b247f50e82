from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from models import TransactionKind


class TemplateIn(BaseModel):
    kind: TransactionKind = TransactionKind.expense
    status: str = "CONFIRMADO"
    cost_center_id: str = Field(..., min_length=1, max_length=64)
    equipment_id: Optional[str] = None
    value: Decimal
    date: date
    category: Optional[str] = "diversos"
    sector: Optional[str] = None
    description: str = Field(..., min_length=1, max_length=255)
    payment_method: Optional[str] = None
    reference: Optional[str] = None
    duration_months: int = Field(..., ge=1, le=600)

    @field_validator("description", "cost_center_id")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class DateShiftIn(BaseModel):
    description_contains: str = Field(..., min_length=1)
    target_year: int = Field(..., ge=1970, le=3000)
    target_month: int = Field(..., ge=1, le=12)
    anchor_day: Optional[int] = Field(default=None, ge=1, le=31)


class SectorRelabelIn(BaseModel):
    description_contains: str = Field(..., min_length=1)
    sector: str = Field(..., min_length=1, max_length=100)


class CategoryRelabelIn(BaseModel):
    old_category: str = Field(..., min_length=1, max_length=100)
    new_category: str = Field(..., min_length=1, max_length=100)
