"""
Account model - the paying identity behind every generation.

Holds the subscription tier and the single unified credit balance. The
balance is only ever changed through CreditService, which pairs every change
with a row in credit_ledger.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, DateTime, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class Account(Base):
    """SQLAlchemy ORM model for the 'accounts' table."""

    __tablename__ = "accounts"

    # The database refuses a negative balance even if a caller forgets the
    # conditional update.
    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_accounts_credits_non_negative"),
    )

    # id: Same value as the "sub" claim of the caller's JWT
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # tier: FREE / REFINED / ENHANCED / ULTIMATE / PRO (see app.generation.policy.Tier)
    tier: Mapped[str] = mapped_column(String(20), nullable=False, default="FREE")

    # credits: Unified credit pool. Legacy per-bucket counters are not modeled.
    credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # version: Bumped on every balance change (optimistic concurrency marker)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<Account {self.id} tier={self.tier} credits={self.credits}>"
