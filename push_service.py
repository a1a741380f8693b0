"""
Web Push delivery for admin notifications.
Targets are resolved to PushSubscription rows; subscriptions the push service
reports as gone (404/410) are removed.
"""

import json
import logging
from typing import Callable, Iterable, Optional

from pywebpush import webpush, WebPushException
from sqlalchemy.orm import Session

from config import VAPID_PRIVATE_KEY, VAPID_CLAIM_EMAIL
from errors import NotFoundError, ServiceUnavailable
from models import Campaign, PushSubscription, Submission, User

logger = logging.getLogger(__name__)

GONE_STATUSES = (404, 410)


class PushDispatcher:
    """Sends one payload to many subscriptions and reports sent/failed counts."""

    def __init__(self, vapid_private_key: str = VAPID_PRIVATE_KEY, claim_email: str = VAPID_CLAIM_EMAIL,
                 send: Callable = webpush):
        self.vapid_private_key = vapid_private_key
        self.claim_email = claim_email
        self._send = send

    def dispatch(self, db: Session, subscriptions: Iterable[PushSubscription], message: dict) -> dict:
        if not self.vapid_private_key:
            raise ServiceUnavailable("Push notifications are not configured (missing VAPID key)")

        payload = json.dumps({
            "title": message["title"],
            "body": message["body"],
            "icon": message.get("icon") or "/logo_purple.png",
            "data": {"url": message.get("url") or "/"},
        })
        sent, failed, stale = 0, 0, []

        for subscription in subscriptions:
            try:
                self._send(
                    subscription_info={
                        "endpoint": subscription.endpoint,
                        "keys": {"auth": subscription.auth_key, "p256dh": subscription.p256dh_key},
                    },
                    data=payload,
                    vapid_private_key=self.vapid_private_key,
                    vapid_claims={"sub": f"mailto:{self.claim_email}"},
                )
                sent += 1
            except WebPushException as e:
                failed += 1
                status_code = getattr(e.response, "status_code", None)
                if status_code in GONE_STATUSES:
                    stale.append(subscription)
                logger.warning(f"Web push to subscription {subscription.id} failed: {e}")

        for subscription in stale:
            db.delete(subscription)
        if stale:
            db.commit()
            logger.info(f"Removed {len(stale)} expired push subscriptions")

        return {"sent": sent, "failed": failed}


def subscribe(db: Session, endpoint: str, p256dh: str, auth: str, user_id: Optional[int] = None) -> PushSubscription:
    subscription = db.query(PushSubscription).filter(PushSubscription.endpoint == endpoint).first()
    if subscription is None:
        subscription = PushSubscription(endpoint=endpoint)
        db.add(subscription)
    subscription.p256dh_key = p256dh
    subscription.auth_key = auth
    if user_id is not None:
        subscription.user_id = user_id
    db.commit()
    db.refresh(subscription)
    return subscription


def all_subscriptions(db: Session):
    return db.query(PushSubscription).all()


def user_subscriptions(db: Session, user_id: int):
    if not db.query(User.id).filter(User.id == user_id).first():
        raise NotFoundError("User not found")
    return db.query(PushSubscription).filter(PushSubscription.user_id == user_id).all()


def campaign_subscriptions(db: Session, campaign_id: int):
    if not db.query(Campaign.id).filter(Campaign.id == campaign_id).first():
        raise NotFoundError("Campaign not found")
    participant_ids = db.query(Submission.user_id).filter(Submission.campaign_id == campaign_id)
    return db.query(PushSubscription).filter(PushSubscription.user_id.in_(participant_ids)).all()


def subscription_stats(db: Session) -> dict:
    total = db.query(PushSubscription).count()
    with_user = db.query(PushSubscription).filter(PushSubscription.user_id.isnot(None)).count()
    return {"total_subscriptions": total, "user_subscriptions": with_user, "anonymous_subscriptions": total - with_user}
