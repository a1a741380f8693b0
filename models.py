from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Text, Float, ForeignKey, Table, UniqueConstraint
)
from sqlalchemy.orm import relationship
from datetime import datetime

# Import Base from database module to ensure consistency
from database import Base

CAMPAIGN_STATUSES = ("draft", "active", "completed", "cancelled")
CAMPAIGN_TYPES = ("premium", "point-based", "free")
SUBMISSION_STATUSES = ("pending", "approved", "winner", "runner_up")
WITHDRAWAL_STATUSES = ("pending", "completed", "rejected", "cancelled")
WITHDRAWAL_METHODS = ("upi", "bank")
DISCOUNT_TYPES = ("percentage", "fixed")

coupon_campaigns = Table(
    "coupon_campaigns",
    Base.metadata,
    Column("coupon_id", Integer, ForeignKey("coupons.id", ondelete="CASCADE"), primary_key=True),
    Column("campaign_id", Integer, ForeignKey("campaigns.id", ondelete="CASCADE"), primary_key=True),
)


class Admin(Base):
    __tablename__ = "admins"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, index=True, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    mobile_number = Column(String(15), unique=True, index=True, nullable=False)
    username = Column(String(64), unique=True, index=True, nullable=True)
    points = Column(Integer, default=0, nullable=False)
    wallet_balance = Column(Float, default=0.0, nullable=False)
    referral_code = Column(String(16), unique=True, nullable=True)
    status = Column(String(16), default="pending", nullable=False)  # pending / verified
    created_at = Column(DateTime, default=datetime.utcnow)

    submissions = relationship("Submission", back_populates="user")
    withdrawals = relationship("Withdrawal", back_populates="user")


class Campaign(Base):
    __tablename__ = "campaigns"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    reference_image = Column(String, nullable=False)
    rules = Column(Text, default="")
    category = Column(String(32), default="drawing")
    age_group = Column(String(32), default="all")
    campaign_type = Column(String(16), default="premium", nullable=False)
    max_participants = Column(Integer, default=20, nullable=False)
    current_participants = Column(Integer, default=0, nullable=False)
    entry_fee_amount = Column(Float, default=0.0)
    entry_fee_type = Column(String(16), default="rupees")  # rupees / points
    points_required = Column(Integer, default=0)
    first_prize = Column(Float, default=0.0)
    second_prize = Column(Float, default=0.0)
    platform_share = Column(Float, default=0.0)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)
    submission_deadline = Column(DateTime, nullable=True)
    result_date = Column(DateTime, nullable=True)
    status = Column(String(16), default="draft", index=True, nullable=False)
    submission_type = Column(String(16), default="offline")
    prizes_distributed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    submissions = relationship("Submission", back_populates="campaign", cascade="all, delete-orphan")


class Submission(Base):
    __tablename__ = "submissions"

    id = Column(Integer, primary_key=True, index=True)
    campaign_id = Column(Integer, ForeignKey("campaigns.id"), index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    submission_image = Column(String, nullable=False)
    title = Column(String(200), default="")
    description = Column(Text, default="")
    likes = Column(Integer, default=0)
    votes = Column(Integer, default=0)
    admin_rating = Column(Float, default=0.0)
    admin_notes = Column(Text, default="")
    status = Column(String(16), default="pending", nullable=False)
    prize_amount = Column(Float, default=0.0)
    created_at = Column(DateTime, default=datetime.utcnow)

    campaign = relationship("Campaign", back_populates="submissions")
    user = relationship("User", back_populates="submissions")

    __table_args__ = (UniqueConstraint("campaign_id", "user_id", name="uq_submission_per_user"),)


class Withdrawal(Base):
    __tablename__ = "withdrawals"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    amount = Column(Float, nullable=False)
    method = Column(String(8), nullable=False)  # upi / bank
    upi_id = Column(String(64), nullable=True)
    account_holder_name = Column(String(128), nullable=True)
    account_number = Column(String(32), nullable=True)
    ifsc_code = Column(String(16), nullable=True)
    bank_name = Column(String(128), nullable=True)
    status = Column(String(16), default="pending", index=True, nullable=False)
    admin_notes = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    requested_at = Column(DateTime, default=datetime.utcnow)
    processed_at = Column(DateTime, nullable=True)
    processed_by = Column(String, nullable=True)  # Admin username who processed

    user = relationship("User", back_populates="withdrawals")


class LedgerEntry(Base):
    __tablename__ = "ledger_entries"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    currency = Column(String(8), nullable=False)  # rupees / points
    amount = Column(Float, nullable=False)  # signed
    reason = Column(String(32), nullable=False)
    reference = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(32), unique=True, index=True, nullable=False)
    description = Column(Text, default="")
    discount_type = Column(String(16), nullable=False)
    discount_value = Column(Float, nullable=False)
    min_purchase_amount = Column(Float, default=0.0)
    max_discount_amount = Column(Float, nullable=True)
    expiry_date = Column(DateTime, nullable=False)
    usage_limit = Column(Integer, nullable=True)  # None = unlimited
    used_count = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    applicable_campaigns = relationship("Campaign", secondary=coupon_campaigns)


class PushSubscription(Base):
    __tablename__ = "push_subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=True)
    endpoint = Column(String, unique=True, nullable=False)
    p256dh_key = Column(String, nullable=False)
    auth_key = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
