"""
Credit ledger - append-only history of every balance change.

Rows are inserted in the same transaction as the balance update and never
modified afterwards, so the sum of `delta` for an account always equals its
current balance.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class LedgerReason(str, Enum):
    """Why the balance changed."""
    GENERATION_CHARGE = "GENERATION_CHARGE"
    GENERATION_REFUND = "GENERATION_REFUND"
    GRANT = "GRANT"


class CreditLedgerEntry(Base):
    """SQLAlchemy ORM model for the 'credit_ledger' table."""

    __tablename__ = "credit_ledger"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # delta: Signed change (negative for charges)
    delta: Mapped[int] = mapped_column(Integer, nullable=False)

    reason: Mapped[str] = mapped_column(String(32), nullable=False)

    # session_ref: Generation session this change belongs to. Charges happen
    # before the session row exists, so this is a plain reference, not a FK.
    session_ref: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
