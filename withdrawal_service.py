"""
Withdrawal requests and their approval or rejection.

The amount leaves the wallet when the user asks for it. Approving only records
the decision; rejecting or cancelling puts the amount back.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

import ledger
from config import MIN_WITHDRAWAL_AMOUNT
from errors import ConflictError, NotFoundError, ValidationFailed
from models import User, Withdrawal

logger = logging.getLogger(__name__)

DEFAULT_APPROVAL_NOTE = "Approved. Amount will be transferred within 24 hours."


def request_withdrawal(db: Session, user_id: int, amount: float, method: str,
                       upi_id: Optional[str] = None, bank_details: Optional[dict] = None) -> Withdrawal:
    if amount < MIN_WITHDRAWAL_AMOUNT:
        raise ValidationFailed(f"Minimum withdrawal amount is ₹{MIN_WITHDRAWAL_AMOUNT:g}")
    if not db.query(User.id).filter(User.id == user_id).first():
        raise NotFoundError("User not found")

    withdrawal = Withdrawal(user_id=user_id, amount=amount, method=method)
    if method == "upi":
        withdrawal.upi_id = upi_id
    else:
        for field, value in (bank_details or {}).items():
            setattr(withdrawal, field, value)
    db.add(withdrawal)
    db.flush()

    try:
        ledger.debit_wallet(db, user_id, amount, ledger.WITHDRAWAL_DEBIT, f"withdrawal:{withdrawal.id}")
    except ValidationFailed:
        db.rollback()
        raise
    db.commit()
    db.refresh(withdrawal)
    logger.info(f"Withdrawal {withdrawal.id} requested by user {user_id}: ₹{amount} via {method}")
    return withdrawal


def process_withdrawal(db: Session, withdrawal_id: int, new_status: str, processed_by: str,
                       admin_notes: Optional[str] = None, rejection_reason: Optional[str] = None) -> Withdrawal:
    """Approve (completed) or reject a pending withdrawal. Only the first decision sticks."""
    withdrawal = _get(db, withdrawal_id)

    rejection_reason = (rejection_reason or "").strip()
    admin_notes = (admin_notes or "").strip()
    if new_status == "rejected" and not rejection_reason:
        raise ValidationFailed("A rejection reason is required to reject a withdrawal")
    if withdrawal.status != "pending":
        raise ConflictError(f"Withdrawal has already been {withdrawal.status}")

    values = {
        Withdrawal.status: new_status,
        Withdrawal.processed_at: datetime.utcnow(),
        Withdrawal.processed_by: processed_by,
    }
    if new_status == "completed":
        values[Withdrawal.admin_notes] = admin_notes or DEFAULT_APPROVAL_NOTE
    else:
        values[Withdrawal.admin_notes] = admin_notes or "Withdrawal request rejected."
        values[Withdrawal.rejection_reason] = rejection_reason

    _transition_from_pending(db, withdrawal, values)
    if new_status == "rejected":
        ledger.credit_wallet(db, withdrawal.user_id, withdrawal.amount, ledger.WITHDRAWAL_REFUND,
                             f"withdrawal:{withdrawal.id}")
    db.commit()
    db.refresh(withdrawal)
    logger.info(f"Withdrawal {withdrawal_id} {new_status} by {processed_by}")
    return withdrawal


def cancel_withdrawal(db: Session, withdrawal_id: int, user_id: int) -> Withdrawal:
    withdrawal = _get(db, withdrawal_id)
    if withdrawal.user_id != user_id:
        raise NotFoundError("Withdrawal not found")
    if withdrawal.status != "pending":
        raise ConflictError(f"Withdrawal has already been {withdrawal.status}")

    _transition_from_pending(db, withdrawal, {
        Withdrawal.status: "cancelled",
        Withdrawal.processed_at: datetime.utcnow(),
    })
    ledger.credit_wallet(db, withdrawal.user_id, withdrawal.amount, ledger.WITHDRAWAL_REFUND,
                         f"withdrawal:{withdrawal.id}")
    db.commit()
    db.refresh(withdrawal)
    logger.info(f"Withdrawal {withdrawal_id} cancelled by user {user_id}")
    return withdrawal


def _get(db: Session, withdrawal_id: int) -> Withdrawal:
    withdrawal = db.query(Withdrawal).filter(Withdrawal.id == withdrawal_id).first()
    if not withdrawal:
        raise NotFoundError("Withdrawal not found")
    return withdrawal


def _transition_from_pending(db: Session, withdrawal: Withdrawal, values: dict):
    updated = db.query(Withdrawal).filter(
        Withdrawal.id == withdrawal.id,
        Withdrawal.status == "pending",
    ).update(values, synchronize_session=False)
    if not updated:
        db.rollback()
        raise ConflictError("Withdrawal has already been processed")
