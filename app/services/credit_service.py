"""
Credit Service - the only code path that changes an account balance.

Every change is one transaction that updates `accounts` and appends a row to
`credit_ledger`, so the balance always equals the running sum of the ledger.

Charging is a single conditional UPDATE:

    UPDATE accounts
       SET credits = credits - :cost, version = version + 1
     WHERE id = :account_id AND credits >= :cost

Two concurrent charges against a balance that covers only one of them cannot
both succeed: the second UPDATE re-evaluates `credits >= :cost` against the
committed balance and matches no row.

Usage:
    from app.services.credit_service import credit_service

    credit_service.check_balance(account_id, cost)        # read-only pre-check
    result = credit_service.charge_if_affordable(account_id, cost, session_ref)
    if not result.ok:
        raise GenerationError(ErrorCode.CREDITS_EXHAUSTED)
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from app.ai.monitoring import generation_logger
from app.core.errors import ErrorCode, GenerationError
from app.db.session import SessionLocal
from app.models.account import Account
from app.models.credit_ledger import CreditLedgerEntry, LedgerReason

logger = logging.getLogger("genui.services.credits")

# Credits granted when a Pro subscription is activated
PRO_MONTHLY_CREDITS = 300


@dataclass(frozen=True)
class ChargeResult:
    ok: bool
    new_balance: int


class CreditService:
    """Atomic balance operations backed by the database."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self._session_factory = session_factory

    # ---------------------------------------------------------------------------
    # READS
    # ---------------------------------------------------------------------------

    def get_balance(self, account_id: uuid.UUID) -> int:
        with self._session_factory() as db:
            balance = db.scalar(select(Account.credits).where(Account.id == account_id))
        if balance is None:
            raise GenerationError(ErrorCode.UNAUTHORIZED, f"account {account_id} not found")
        return balance

    def check_balance(self, account_id: uuid.UUID, cost: int) -> int:
        """
        Read-only affordability check. No side effects.

        Raises:
            GenerationError(CREDITS_EXHAUSTED): balance below cost
        """
        balance = self.get_balance(account_id)
        if balance < cost:
            raise GenerationError(
                ErrorCode.CREDITS_EXHAUSTED, f"balance={balance} cost={cost}"
            )
        return balance

    def balance_from_ledger(self, account_id: uuid.UUID) -> int:
        """Running sum of the ledger; equals the stored balance."""
        with self._session_factory() as db:
            total = db.scalar(
                select(func.coalesce(func.sum(CreditLedgerEntry.delta), 0)).where(
                    CreditLedgerEntry.account_id == account_id
                )
            )
        return int(total or 0)

    # ---------------------------------------------------------------------------
    # WRITES
    # ---------------------------------------------------------------------------

    def charge_if_affordable(
        self, account_id: uuid.UUID, cost: int, session_ref: str
    ) -> ChargeResult:
        """
        Atomically decrement the balance by `cost` if it covers it.

        Returns:
            ChargeResult(ok=False) with the unchanged balance when unaffordable
        """
        with self._session_factory() as db:
            result = db.execute(
                update(Account)
                .where(Account.id == account_id, Account.credits >= cost)
                .values(credits=Account.credits - cost, version=Account.version + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                balance = db.scalar(select(Account.credits).where(Account.id == account_id)) or 0
                generation_logger.credit_event(
                    session_ref, str(account_id), "charge", cost, balance, success=False
                )
                return ChargeResult(ok=False, new_balance=balance)

            new_balance = db.scalar(select(Account.credits).where(Account.id == account_id))
            db.add(
                CreditLedgerEntry(
                    account_id=account_id,
                    delta=-cost,
                    reason=LedgerReason.GENERATION_CHARGE.value,
                    session_ref=session_ref,
                    balance_after=new_balance,
                )
            )
            db.commit()

        generation_logger.credit_event(session_ref, str(account_id), "charge", cost, new_balance)
        return ChargeResult(ok=True, new_balance=new_balance)

    def refund(self, account_id: uuid.UUID, amount: int, session_ref: str) -> int:
        """Give back a charge. Callers guarantee at most one refund per session."""
        new_balance = self._credit(account_id, amount, LedgerReason.GENERATION_REFUND, session_ref)
        generation_logger.credit_event(session_ref, str(account_id), "refund", amount, new_balance)
        return new_balance

    def grant(
        self, account_id: uuid.UUID, amount: int = PRO_MONTHLY_CREDITS, session_ref: Optional[str] = None
    ) -> int:
        """Add purchased or subscription credits."""
        new_balance = self._credit(account_id, amount, LedgerReason.GRANT, session_ref)
        generation_logger.credit_event(session_ref or "-", str(account_id), "grant", amount, new_balance)
        return new_balance

    def _credit(
        self, account_id: uuid.UUID, amount: int, reason: LedgerReason, session_ref: Optional[str]
    ) -> int:
        if amount <= 0:
            raise ValueError("credit amount must be positive")
        with self._session_factory() as db:
            result = db.execute(
                update(Account)
                .where(Account.id == account_id)
                .values(credits=Account.credits + amount, version=Account.version + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                raise GenerationError(ErrorCode.UNAUTHORIZED, f"account {account_id} not found")
            new_balance = db.scalar(select(Account.credits).where(Account.id == account_id))
            db.add(
                CreditLedgerEntry(
                    account_id=account_id,
                    delta=amount,
                    reason=reason.value,
                    session_ref=session_ref,
                    balance_after=new_balance,
                )
            )
            db.commit()
        return new_balance


credit_service = CreditService()
