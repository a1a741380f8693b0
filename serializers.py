"""Convert ORM rows to the JSON shapes the admin console reads."""

from datetime import datetime
from typing import Optional

from coupon_rules import coupon_display_status
from models import Campaign, Coupon, Submission, User, Withdrawal


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "mobile_number": user.mobile_number,
        "username": user.username,
        "points": user.points,
        "wallet": {"balance": round(user.wallet_balance or 0.0, 2)},
        "referral_code": user.referral_code,
        "status": user.status,
        "createdAt": _iso(user.created_at),
    }


def serialize_campaign(campaign: Campaign, total_submissions: Optional[int] = None) -> dict:
    if total_submissions is None:
        total_submissions = len(campaign.submissions)
    return {
        "id": campaign.id,
        "name": campaign.name,
        "reference_image": campaign.reference_image,
        "rules": campaign.rules,
        "category": campaign.category,
        "age_group": campaign.age_group,
        "campaign_type": campaign.campaign_type,
        "max_participants": campaign.max_participants,
        "current_participants": campaign.current_participants,
        "entry_fee": {"amount": campaign.entry_fee_amount, "type": campaign.entry_fee_type},
        "points_required": campaign.points_required,
        "prizes": {
            "first_prize": campaign.first_prize,
            "second_prize": campaign.second_prize,
            "platform_share": campaign.platform_share,
        },
        "start_date": _iso(campaign.start_date),
        "end_date": _iso(campaign.end_date),
        "submission_deadline": _iso(campaign.submission_deadline),
        "result_date": _iso(campaign.result_date),
        "status": campaign.status,
        "submission_type": campaign.submission_type,
        "total_submissions": total_submissions,
        "prizes_distributed_at": _iso(campaign.prizes_distributed_at),
        "created_at": _iso(campaign.created_at),
        "updated_at": _iso(campaign.updated_at),
    }


def serialize_submission(submission: Submission) -> dict:
    user = submission.user
    return {
        "id": submission.id,
        "campaign_id": submission.campaign_id,
        "user_id": {
            "id": user.id,
            "username": user.username,
            "mobile_number": user.mobile_number,
        } if user else None,
        "submission_image": submission.submission_image,
        "title": submission.title,
        "description": submission.description,
        "likes": submission.likes,
        "votes": submission.votes,
        "admin_rating": submission.admin_rating,
        "admin_notes": submission.admin_notes,
        "status": submission.status,
        "prize_won": {"amount": submission.prize_amount or 0.0},
        "created_at": _iso(submission.created_at),
    }


def serialize_withdrawal(withdrawal: Withdrawal) -> dict:
    if withdrawal.method == "upi":
        details = {"upi_id": withdrawal.upi_id}
    else:
        details = {
            "bank_details": {
                "account_holder_name": withdrawal.account_holder_name,
                "account_number": withdrawal.account_number,
                "ifsc_code": withdrawal.ifsc_code,
                "bank_name": withdrawal.bank_name,
            }
        }
    user = withdrawal.user
    return {
        "id": withdrawal.id,
        "user": {
            "id": user.id,
            "username": user.username,
            "mobile": user.mobile_number,
        } if user else None,
        "amount": withdrawal.amount,
        "method": withdrawal.method,
        "details": details,
        "status": withdrawal.status,
        "admin_notes": withdrawal.admin_notes,
        "rejection_reason": withdrawal.rejection_reason,
        "requested_at": _iso(withdrawal.requested_at),
        "processed_at": _iso(withdrawal.processed_at),
        "processed_by": withdrawal.processed_by,
    }


def serialize_coupon(coupon: Coupon, now: Optional[datetime] = None) -> dict:
    return {
        "id": coupon.id,
        "code": coupon.code,
        "description": coupon.description,
        "discount_type": coupon.discount_type,
        "discount_value": coupon.discount_value,
        "min_purchase_amount": coupon.min_purchase_amount,
        "max_discount_amount": coupon.max_discount_amount,
        "expiry_date": _iso(coupon.expiry_date),
        "usage_limit": coupon.usage_limit,
        "used_count": coupon.used_count,
        "applicable_campaigns": [{"id": c.id, "name": c.name} for c in coupon.applicable_campaigns],
        "is_active": coupon.is_active,
        "display_status": coupon_display_status(
            is_active=coupon.is_active,
            expiry_date=coupon.expiry_date,
            usage_limit=coupon.usage_limit,
            used_count=coupon.used_count,
            now=now,
        ),
        "created_at": _iso(coupon.created_at),
    }
