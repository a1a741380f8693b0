"""
Wallet and points movements.
Every balance change goes through here so each one leaves a LedgerEntry behind.
"""

import logging
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from errors import ValidationFailed
from models import LedgerEntry, User

logger = logging.getLogger(__name__)

PRIZE = "prize"
PARTICIPATION_REWARD = "participation_reward"
WITHDRAWAL_DEBIT = "withdrawal_debit"
WITHDRAWAL_REFUND = "withdrawal_refund"


def credit_wallet(db: Session, user_id: int, amount: float, reason: str, reference: Optional[str] = None):
    db.query(User).filter(User.id == user_id).update(
        {User.wallet_balance: User.wallet_balance + amount}, synchronize_session=False
    )
    db.add(LedgerEntry(user_id=user_id, currency="rupees", amount=amount, reason=reason, reference=reference))


def debit_wallet(db: Session, user_id: int, amount: float, reason: str, reference: Optional[str] = None):
    """Debit only if the balance covers the amount; the check and the update are one statement."""
    updated = db.query(User).filter(User.id == user_id, User.wallet_balance >= amount).update(
        {User.wallet_balance: User.wallet_balance - amount}, synchronize_session=False
    )
    if not updated:
        raise ValidationFailed("Insufficient wallet balance")
    db.add(LedgerEntry(user_id=user_id, currency="rupees", amount=-amount, reason=reason, reference=reference))


def credit_points(db: Session, user_id: int, points: int, reason: str, reference: Optional[str] = None):
    db.query(User).filter(User.id == user_id).update(
        {User.points: User.points + points}, synchronize_session=False
    )
    db.add(LedgerEntry(user_id=user_id, currency="points", amount=points, reason=reason, reference=reference))


def ledger_balance(db: Session, user_id: int, currency: str = "rupees") -> float:
    """Sum of a user's ledger entries; matches the stored balance when nothing bypassed the ledger."""
    total = db.query(func.coalesce(func.sum(LedgerEntry.amount), 0.0)).filter(
        LedgerEntry.user_id == user_id, LedgerEntry.currency == currency
    ).scalar()
    return float(total)
