"""
Push Notifications

Web Push delivery via pywebpush with VAPID keys.

Fan-out runs in a thread pool. Workers only talk to the push services;
all database work (loading subscriptions, deleting dead ones) stays on the
calling thread. Results come back as a DeliveryReport; a failing endpoint
never stops delivery to the others.
"""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
import json
import logging
import time
from pywebpush import WebPushException, webpush
from sqlalchemy.orm import Session

from fitos.config import get_settings
from fitos.core.exceptions import InvalidInputError
from fitos.models.notification import PushSubscription
from fitos.models.user import User, UserRole

logger = logging.getLogger(__name__)

# Push services answer these when the subscription no longer exists
GONE_STATUSES = (404, 410)

SENT = "sent"
FAILED = "failed"
GONE = "gone"


@dataclass
class DeliveryReport:
    sent: int = 0
    failed: int = 0
    removed: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return self.sent + self.failed + self.removed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sent": self.sent,
            "failed": self.failed,
            "removed": self.removed,
            "attempted": self.attempted,
            "errors": self.errors,
        }


def build_payload(
    title: str,
    body: str,
    data: Optional[Dict[str, Any]] = None,
    actions: Optional[List[Dict[str, str]]] = None,
    tag: Optional[str] = None,
    require_interaction: bool = False,
    icon: Optional[str] = None,
) -> Dict[str, Any]:
    """Notification JSON as the service worker expects it."""
    return {
        "title": title,
        "body": body,
        "icon": icon or "/icons/icon-192x192.png",
        "badge": "/icons/badge-72x72.png",
        "data": data or {},
        "actions": actions or [],
        "requireInteraction": require_interaction,
        "tag": tag,
        "vibrate": [200, 100, 200],
        "timestamp": int(time.time() * 1000),
    }


def workout_reminder_payload(workout_name: str, scheduled_time: datetime) -> Dict[str, Any]:
    return build_payload(
        title="Workout reminder",
        body=f"Time for your workout: {workout_name}",
        data={
            "type": "workout_reminder",
            "workout": workout_name,
            "scheduledTime": scheduled_time.isoformat(),
        },
        actions=[
            {"action": "start_workout", "title": "Start workout"},
            {"action": "snooze", "title": "Snooze 15min"},
        ],
        tag="workout_reminder",
        require_interaction=True,
    )


def progress_update_payload(achievement: str) -> Dict[str, Any]:
    return build_payload(
        title="Congratulations!",
        body=achievement,
        data={"type": "progress_update", "achievement": achievement},
        actions=[{"action": "view_progress", "title": "View progress"}],
        tag="progress_update",
    )


def direct_message_payload(sender_name: str, message: str, conversation_id: Optional[str] = None) -> Dict[str, Any]:
    preview = message if len(message) <= 100 else message[:97] + "..."
    return build_payload(
        title=f"New message from {sender_name}",
        body=preview,
        data={"type": "message", "sender": sender_name, "conversationId": conversation_id},
        actions=[{"action": "reply", "title": "Reply"}],
        tag=f"message_{conversation_id}" if conversation_id else "message",
    )


# ============================================================================
# Subscriptions
# ============================================================================

def save_subscription(db: Session, user: User, endpoint: str, p256dh: str, auth: str) -> PushSubscription:
    """Upsert by endpoint; a browser re-subscribing moves the row to this user."""
    if not endpoint.startswith("https://"):
        raise InvalidInputError("Push endpoint must be an https URL")

    subscription = db.query(PushSubscription).filter(PushSubscription.endpoint == endpoint).first()
    if subscription is None:
        subscription = PushSubscription(endpoint=endpoint)
        db.add(subscription)
    subscription.user_id = user.id
    subscription.tenant_id = user.tenant_id
    subscription.p256dh = p256dh
    subscription.auth = auth
    db.commit()
    db.refresh(subscription)
    logger.info("Push subscription saved", extra={"user_id": user.id, "tenant_id": user.tenant_id})
    return subscription


def remove_subscription(db: Session, user: User, endpoint: Optional[str] = None) -> int:
    """Remove one endpoint, or every subscription of the user."""
    query = db.query(PushSubscription).filter(PushSubscription.user_id == user.id)
    if endpoint:
        query = query.filter(PushSubscription.endpoint == endpoint)
    count = query.delete(synchronize_session=False)
    db.commit()
    return count


def list_subscriptions(db: Session, user: User) -> List[PushSubscription]:
    return db.query(PushSubscription).filter(PushSubscription.user_id == user.id).all()


# ============================================================================
# Delivery
# ============================================================================

def _deliver_one(subscription_info: Dict[str, Any], data: str) -> Dict[str, Any]:
    """Runs in a worker thread. Never raises."""
    settings = get_settings()
    try:
        webpush(
            subscription_info=subscription_info,
            data=data,
            vapid_private_key=settings.VAPID_PRIVATE_KEY,
            vapid_claims={"sub": settings.VAPID_SUBJECT},
        )
        return {"endpoint": subscription_info["endpoint"], "outcome": SENT}
    except WebPushException as e:
        status_code = getattr(e.response, "status_code", None)
        outcome = GONE if status_code in GONE_STATUSES else FAILED
        return {"endpoint": subscription_info["endpoint"], "outcome": outcome, "error": str(e)}
    except Exception as e:  # noqa: BLE001
        return {"endpoint": subscription_info["endpoint"], "outcome": FAILED, "error": str(e)}


def deliver(db: Session, subscriptions: Sequence[PushSubscription], payload: Dict[str, Any]) -> DeliveryReport:
    """Send one payload to many subscriptions and delete the gone ones."""
    report = DeliveryReport()
    if not subscriptions:
        return report

    settings = get_settings()
    if not settings.VAPID_PRIVATE_KEY:
        logger.warning("VAPID keys not configured; push delivery skipped")
        report.failed = len(subscriptions)
        report.errors.append("VAPID keys not configured")
        return report

    data = json.dumps(payload, default=str)
    infos = [sub.subscription_info() for sub in subscriptions]
    workers = max(1, min(settings.PUSH_MAX_WORKERS, len(infos)))

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="push") as pool:
        results = list(pool.map(lambda info: _deliver_one(info, data), infos))

    gone = []
    for result in results:
        if result["outcome"] == SENT:
            report.sent += 1
        elif result["outcome"] == GONE:
            gone.append(result["endpoint"])
        else:
            report.failed += 1
            report.errors.append(result.get("error", "unknown error"))

    if gone:
        report.removed = (
            db.query(PushSubscription)
            .filter(PushSubscription.endpoint.in_(gone))
            .delete(synchronize_session=False)
        )
        db.commit()

    logger.info(f"Push delivery: {report.sent} sent, {report.failed} failed, {report.removed} removed")
    return report


def send_to_users(db: Session, tenant_id: str, user_ids: Sequence[str], payload: Dict[str, Any]) -> DeliveryReport:
    """Deliver to every device of the given users, within one tenant."""
    subscriptions = (
        db.query(PushSubscription)
        .filter(PushSubscription.tenant_id == tenant_id, PushSubscription.user_id.in_(list(user_ids)))
        .all()
    )
    return deliver(db, subscriptions, payload)


def send_to_tenant(
    db: Session,
    tenant_id: str,
    payload: Dict[str, Any],
    roles: Optional[Sequence[UserRole]] = None,
) -> DeliveryReport:
    """Deliver to every subscribed user of a tenant, optionally only some roles."""
    query = db.query(PushSubscription).filter(PushSubscription.tenant_id == tenant_id)
    if roles:
        query = query.join(User, User.id == PushSubscription.user_id).filter(User.role.in_(list(roles)))
    return deliver(db, query.all(), payload)
