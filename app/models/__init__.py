"""ORM models. Importing this package registers every table on Base.metadata."""

from app.models.account import Account
from app.models.credit_ledger import CreditLedgerEntry, LedgerReason
from app.models.generation_session import (
    GenerationSession,
    GenerationSnapshot,
    SessionStatus,
)
from app.models.project import Project

__all__ = [
    "Account",
    "CreditLedgerEntry",
    "LedgerReason",
    "GenerationSession",
    "GenerationSnapshot",
    "SessionStatus",
    "Project",
]
