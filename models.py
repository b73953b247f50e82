import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


class TransactionKind(str, Enum):
    expense = "DESPESA"
    receipt = "RECEITA"


TRANSACTION_KIND_ENUM = SAEnum(
    TransactionKind,
    name="transactionkind",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


def _new_id() -> str:
    return str(uuid.uuid4())


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class LedgerTransaction(Base, TimestampMixin):
    __tablename__ = "financial_transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    type: Mapped[TransactionKind] = mapped_column(
        TRANSACTION_KIND_ENUM, nullable=False
    )
    status: Mapped[Optional[str]] = mapped_column(String(40))
    cost_center_id: Mapped[str] = mapped_column(String(64), nullable=False)
    equipment_id: Mapped[Optional[str]] = mapped_column(String(64))
    value: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100))
    sector: Mapped[Optional[str]] = mapped_column(String(100))
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    payment_method: Mapped[Optional[str]] = mapped_column(String(60))
    reference: Mapped[Optional[str]] = mapped_column(Text)
    is_fixed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    fixed_duration_months: Mapped[Optional[int]] = mapped_column(Integer)
    installment_number: Mapped[Optional[int]] = mapped_column(Integer)

    __table_args__ = (
        Index(
            "ix_financial_transactions_description_center",
            "description",
            "cost_center_id",
        ),
        Index("ix_financial_transactions_type_fixed", "type", "is_fixed"),
        CheckConstraint(
            "installment_number IS NULL OR installment_number >= 1",
            name="ck_financial_transactions_installment_positive",
        ),
    )
