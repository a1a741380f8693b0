"""
Campaign lifecycle, submission judging and prize distribution.

Status moves one way (draft -> active -> completed) and any campaign that is not
already cancelled may be cancelled. Completion is gated on judging: a campaign
needs at least one submission and at least one flagged winner or runner-up.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import ledger
from config import PARTICIPATION_POINTS
from errors import ConflictError, NotFoundError, ValidationFailed
from models import Campaign, Submission, User, coupon_campaigns

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    "draft": {"active", "cancelled"},
    "active": {"completed", "cancelled"},
    "completed": {"cancelled"},
    "cancelled": set(),
}

PRIZE_FLAGS = ("winner", "runner_up")
PRIZE_FIELDS = ("first_prize", "second_prize", "platform_share")
DATE_FIELDS = ("start_date", "end_date", "submission_deadline")


def get_campaign(db: Session, campaign_id: int) -> Campaign:
    campaign = db.query(Campaign).filter(Campaign.id == campaign_id).first()
    if not campaign:
        raise NotFoundError("Campaign not found")
    return campaign


def count_submissions(db: Session, campaign_id: int) -> int:
    return db.query(func.count(Submission.id)).filter(Submission.campaign_id == campaign_id).scalar()


def review_path(campaign_id: int) -> str:
    return f"/submissions/{campaign_id}"


def check_completion_gate(db: Session, campaign: Campaign):
    """Refuse completion until there are submissions and judging has flagged a winner."""
    if count_submissions(db, campaign.id) == 0:
        raise ConflictError(
            "Cannot complete campaign with no submissions. "
            "Please wait for participants to submit their artwork.",
            reason="no_submissions",
        )
    flagged = db.query(func.count(Submission.id)).filter(
        Submission.campaign_id == campaign.id,
        Submission.status.in_(PRIZE_FLAGS),
    ).scalar()
    if not flagged:
        raise ConflictError(
            "This campaign has no winners set yet. Review submissions and select winners "
            "before completing the campaign.",
            reason="winners_not_selected",
            review_path=review_path(campaign.id),
        )


def create_campaign(db: Session, data: dict) -> Campaign:
    if data.get("campaign_type") == "free":
        data["entry_fee_amount"] = 0
    campaign = Campaign(**{k: v for k, v in data.items() if v is not None})
    db.add(campaign)
    db.commit()
    db.refresh(campaign)
    logger.info(f"Campaign {campaign.id} created: {campaign.name}")
    return campaign


def update_campaign(db: Session, campaign_id: int, changes: dict) -> Campaign:
    campaign = get_campaign(db, campaign_id)
    changes = {k: v for k, v in changes.items() if v is not None}

    new_max = changes.get("max_participants")
    if new_max is not None and new_max < campaign.current_participants:
        raise ValidationFailed(
            f"Max participants cannot be lower than current participants ({campaign.current_participants})"
        )
    if campaign.prizes_distributed_at and any(
        field in changes and changes[field] != getattr(campaign, field) for field in PRIZE_FIELDS
    ):
        raise ConflictError("Prize amounts cannot change after prizes have been distributed")

    # Dates sent alone are checked against the stored ones
    start, end, deadline = (changes.get(f, getattr(campaign, f)) for f in DATE_FIELDS)
    if start and end and end < start:
        raise ValidationFailed("End date must be after start date")
    if start and deadline and deadline < start:
        raise ValidationFailed("Submission deadline must be after start date")

    if changes.get("campaign_type") == "free":
        changes["entry_fee_amount"] = 0

    for field, value in changes.items():
        setattr(campaign, field, value)
    db.commit()
    db.refresh(campaign)
    return campaign


def delete_campaign(db: Session, campaign_id: int):
    campaign = get_campaign(db, campaign_id)
    if campaign.status not in ("draft", "cancelled") and count_submissions(db, campaign_id):
        raise ConflictError("Campaigns with submissions can only be deleted once cancelled")
    db.execute(coupon_campaigns.delete().where(coupon_campaigns.c.campaign_id == campaign_id))
    db.delete(campaign)
    db.commit()
    logger.info(f"Campaign {campaign_id} deleted")


def change_status(db: Session, campaign_id: int, new_status: str) -> Optional[dict]:
    """Move a campaign to new_status. Returns settlement results when completion paid out prizes."""
    campaign = get_campaign(db, campaign_id)
    if new_status == campaign.status:
        raise ConflictError(f"Campaign is already {campaign.status}")
    if new_status not in ALLOWED_TRANSITIONS[campaign.status]:
        raise ConflictError(f"Cannot change campaign status from {campaign.status} to {new_status}")

    results = None
    if new_status == "completed":
        check_completion_gate(db, campaign)
        submissions = _campaign_submissions(db, campaign.id)
        first = next((s for s in submissions if s.status == "winner"), None)
        second = next((s for s in submissions if s.status == "runner_up"), None)
        _claim_distribution(db, campaign.id)
        results = _settle(db, campaign, submissions, first, second)
    else:
        updated = db.query(Campaign).filter(
            Campaign.id == campaign_id, Campaign.status == campaign.status
        ).update({Campaign.status: new_status, Campaign.updated_at: datetime.utcnow()},
                 synchronize_session=False)
        if not updated:
            db.rollback()
            raise ConflictError("Campaign status changed concurrently, please refresh")

    db.commit()
    logger.info(f"Campaign {campaign_id} status changed to {new_status}")
    return results


def enter_submission(db: Session, campaign_id: int, user_id: int, submission_image: str,
                     title: str = "", description: str = "") -> Submission:
    campaign = get_campaign(db, campaign_id)
    if campaign.status != "active":
        raise ValidationFailed("This campaign is not accepting submissions")
    if campaign.submission_deadline and campaign.submission_deadline < datetime.utcnow():
        raise ValidationFailed("The submission deadline for this campaign has passed")
    if not db.query(User.id).filter(User.id == user_id).first():
        raise NotFoundError("User not found")

    seat = db.query(Campaign).filter(
        Campaign.id == campaign_id,
        Campaign.current_participants < Campaign.max_participants,
    ).update({Campaign.current_participants: Campaign.current_participants + 1},
             synchronize_session=False)
    if not seat:
        db.rollback()
        raise ConflictError("This campaign is full")

    submission = Submission(
        campaign_id=campaign_id,
        user_id=user_id,
        submission_image=submission_image,
        title=title or "",
        description=description or "",
    )
    db.add(submission)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("You have already submitted to this campaign")
    db.refresh(submission)
    return submission


def rate_submission(db: Session, submission_id: int, rating: float, notes: Optional[str] = None,
                    prize_position: Optional[str] = None) -> Submission:
    submission = db.query(Submission).filter(Submission.id == submission_id).first()
    if not submission:
        raise NotFoundError("Submission not found")
    campaign = submission.campaign
    if prize_position and campaign.prizes_distributed_at:
        raise ConflictError("Prize positions are locked once prizes have been distributed")

    submission.admin_rating = rating
    if notes is not None:
        submission.admin_notes = notes

    if prize_position:
        flag = "winner" if prize_position == "first" else "runner_up"
        # One holder per flag: the previous holder goes back to approved
        db.query(Submission).filter(
            Submission.campaign_id == campaign.id,
            Submission.status == flag,
            Submission.id != submission.id,
        ).update({Submission.status: "approved"}, synchronize_session=False)
        submission.status = flag
    elif submission.status == "pending":
        submission.status = "approved"

    db.commit()
    db.refresh(submission)
    return submission


def distribute_prizes(db: Session, campaign_id: int, first_winner_id: int, second_winner_id: int) -> dict:
    """
    Pay out a campaign: first prize to the winner, second prize to the runner-up and
    participation points to everyone else, then mark the campaign completed.

    Runs at most once per campaign; the claim on prizes_distributed_at is a
    conditional update so a concurrent second call gets a ConflictError.
    """
    if first_winner_id == second_winner_id:
        raise ValidationFailed("First and second prize winners must be different")

    campaign = get_campaign(db, campaign_id)
    if campaign.prizes_distributed_at:
        raise ConflictError("Prizes have already been distributed for this campaign")
    if campaign.status != "active":
        raise ConflictError(f"Prizes can only be distributed for active campaigns (status: {campaign.status})")

    submissions = _campaign_submissions(db, campaign_id)
    by_id = {s.id: s for s in submissions}
    first = by_id.get(first_winner_id)
    second = by_id.get(second_winner_id)
    if first is None or second is None:
        raise ValidationFailed("Selected winners must be submissions of this campaign")

    _claim_distribution(db, campaign_id)
    results = _settle(db, campaign, submissions, first, second)
    db.commit()
    logger.info(
        f"Prizes distributed for campaign {campaign_id}: winner={first.id} runner_up={second.id} "
        f"participants_rewarded={results['participation_rewards']['non_winners_count']}"
    )
    return results


def dashboard_stats(db: Session) -> dict:
    total_campaigns = db.query(func.count(Campaign.id)).scalar()
    active_campaigns = db.query(func.count(Campaign.id)).filter(Campaign.status == "active").scalar()
    total_submissions = db.query(func.count(Submission.id)).scalar()
    total_revenue = db.query(
        func.coalesce(func.sum(Campaign.entry_fee_amount * Campaign.current_participants), 0.0)
    ).filter(
        Campaign.campaign_type == "premium",
        Campaign.entry_fee_type == "rupees",
        Campaign.status != "cancelled",
    ).scalar()
    return {
        "total_campaigns": total_campaigns,
        "active_campaigns": active_campaigns,
        "total_submissions": total_submissions,
        "total_revenue": round(float(total_revenue), 2),
    }


def _campaign_submissions(db: Session, campaign_id: int):
    return db.query(Submission).filter(Submission.campaign_id == campaign_id).order_by(Submission.id).all()


def _claim_distribution(db: Session, campaign_id: int):
    now = datetime.utcnow()
    claimed = db.query(Campaign).filter(
        Campaign.id == campaign_id,
        Campaign.status == "active",
        Campaign.prizes_distributed_at.is_(None),
    ).update({
        Campaign.prizes_distributed_at: now,
        Campaign.status: "completed",
        Campaign.updated_at: now,
    }, synchronize_session=False)
    if not claimed:
        db.rollback()
        raise ConflictError("Prizes have already been distributed for this campaign")


def _settle(db: Session, campaign: Campaign, submissions, first: Optional[Submission],
            second: Optional[Submission]) -> dict:
    reference = f"campaign:{campaign.id}"
    non_winners = 0

    for submission in submissions:
        if first is not None and submission.id == first.id:
            submission.status = "winner"
            submission.prize_amount = campaign.first_prize or 0.0
        elif second is not None and submission.id == second.id:
            submission.status = "runner_up"
            submission.prize_amount = campaign.second_prize or 0.0
        else:
            if submission.status in PRIZE_FLAGS:
                submission.status = "approved"
            submission.prize_amount = 0.0
            ledger.credit_points(db, submission.user_id, PARTICIPATION_POINTS,
                                 ledger.PARTICIPATION_REWARD, reference)
            non_winners += 1
            continue
        if submission.prize_amount > 0:
            ledger.credit_wallet(db, submission.user_id, submission.prize_amount, ledger.PRIZE, reference)

    def _winner(submission):
        if submission is None:
            return None
        return {
            "submission_id": submission.id,
            "user_id": submission.user_id,
            "prize_amount": submission.prize_amount,
        }

    return {
        "campaign_id": campaign.id,
        "first_winner": _winner(first),
        "second_winner": _winner(second),
        "participation_rewards": {
            "non_winners_count": non_winners,
            "points_per_participant": PARTICIPATION_POINTS,
        },
    }
