"""
Side-effect dispatcher: role sync and entitlement cache invalidation.

The reconciliation engine calls ``dispatch_entitlement_refresh`` after every
transition to ``active`` or ``cancelled``. Failures are logged and swallowed so
they never fail a webhook acknowledgement.
"""
import logging
import time
from threading import Lock
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from marketplace_billing.core import config
from marketplace_billing.db.models.user import User
from marketplace_billing.db.models.subscription import Subscription, SubscriptionStatus
from marketplace_billing.db.models.plan import Plan

logger = logging.getLogger(__name__)

PUBLISHER_ROLE = "publisher"
CLIENT_ROLE = "client"


class EntitlementCache:
    """Small TTL cache of computed entitlements, keyed by user id."""

    def __init__(self, ttl_seconds: int = config.ENTITLEMENT_CACHE_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds
        self._entries: Dict[str, Tuple[float, Dict[str, Any]]] = {}
        self._lock = Lock()

    def get(self, user_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._entries.get(user_id)
            if not entry:
                return None
            stored_at, value = entry
            if time.monotonic() - stored_at > self.ttl_seconds:
                del self._entries[user_id]
                return None
            return value

    def set(self, user_id: str, value: Dict[str, Any]) -> None:
        with self._lock:
            self._entries[user_id] = (time.monotonic(), value)

    def invalidate(self, user_id: str) -> None:
        with self._lock:
            self._entries.pop(user_id, None)


entitlement_cache = EntitlementCache()


def compute_entitlements(db: Session, user_id: str) -> Dict[str, Any]:
    """Derive the user's publisher status and limits from their active subscription."""
    subscription = db.query(Subscription).filter(
        Subscription.user_id == user_id,
        Subscription.status == SubscriptionStatus.ACTIVE.value,
    ).order_by(Subscription.created_at.desc()).first()

    plan = db.get(Plan, subscription.plan_id) if subscription else None
    return {
        "userId": user_id,
        "hasActiveSubscription": subscription is not None,
        "isPublisher": subscription is not None,
        "subscriptionId": subscription.id if subscription else None,
        "planId": plan.id if plan else None,
        "planName": plan.name if plan else None,
        "maxPosts": plan.max_posts if plan else 0,
        "maxBookings": plan.max_bookings if plan else 0,
    }


def get_entitlements(db: Session, user_id: str, cache: EntitlementCache = entitlement_cache) -> Dict[str, Any]:
    cached = cache.get(user_id)
    if cached is not None:
        return cached
    entitlements = compute_entitlements(db, user_id)
    cache.set(user_id, entitlements)
    return entitlements


class SideEffectDispatcher:
    """Default dispatcher: writes roles/limits onto the user row."""

    def __init__(self, db: Session, cache: EntitlementCache = entitlement_cache):
        self.db = db
        self.cache = cache

    def invalidate_user_cache(self, user_id: str) -> None:
        self.cache.invalidate(user_id)
        logger.debug(f"Entitlement cache invalidated for user_id={user_id}")

    def recompute_roles_and_entitlements(self, user_id: str) -> Dict[str, Any]:
        user = self.db.get(User, user_id)
        if not user:
            raise ValueError(f"User not found: {user_id}")

        entitlements = compute_entitlements(self.db, user_id)
        roles = [role for role in (user.roles or []) if role != PUBLISHER_ROLE]
        if CLIENT_ROLE not in roles:
            roles.insert(0, CLIENT_ROLE)
        if entitlements["isPublisher"]:
            roles.append(PUBLISHER_ROLE)

        user.roles = roles
        user.max_posts = entitlements["maxPosts"]
        user.max_bookings = entitlements["maxBookings"]
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Roles recomputed: user_id={user_id}, roles={roles}, "
            f"max_posts={user.max_posts}, max_bookings={user.max_bookings}"
        )
        return entitlements


def dispatch_entitlement_refresh(dispatcher, user_id: str) -> bool:
    """
    Invalidate the user's cache entry and recompute roles.

    Returns:
        True if both calls succeeded. Errors are logged, never raised.
    """
    ok = True
    try:
        dispatcher.invalidate_user_cache(user_id)
    except Exception as e:
        ok = False
        logger.error(f"Failed to invalidate user cache: user_id={user_id}: {e}", exc_info=True)
    try:
        dispatcher.recompute_roles_and_entitlements(user_id)
    except Exception as e:
        ok = False
        logger.error(f"Failed to recompute roles: user_id={user_id}: {e}", exc_info=True)
    return ok
