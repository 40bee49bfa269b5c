"""
Points ledger and level tiers.

Every change to a user's points goes through apply_points so the stored
level always matches the point total.
"""
import logging
from typing import Any, Dict, Optional, Tuple

from pymongo import ReturnDocument
from pymongo.database import Database

from database import now_utc, parse_object_id

logger = logging.getLogger(__name__)

# Lower bound of each tier, highest first
LEVEL_THRESHOLDS = (
    (1000, "Diamond Swapper"),
    (500, "Platinum Swapper"),
    (200, "Gold Swapper"),
    (50, "Silver Swapper"),
    (0, "Bronze Swapper"),
)


class InsufficientPoints(Exception):
    def __init__(self, user_id: str, required: int):
        super().__init__(f"User {user_id} has fewer than {required} points")
        self.user_id = user_id
        self.required = required


def level_for_points(points: int) -> str:
    for threshold, level in LEVEL_THRESHOLDS:
        if points >= threshold:
            return level
    return LEVEL_THRESHOLDS[-1][1]


def apply_points(db: Database, user_id: str, delta: int, session=None) -> Optional[Dict[str, Any]]:
    """
    Atomically add delta to a user's points and refresh their level.

    A debit only applies when the balance covers it; returns None when the
    user is missing or cannot afford it.
    """
    filt: Dict[str, Any] = {"_id": parse_object_id(user_id)}
    if delta < 0:
        filt["points"] = {"$gte": -delta}
    doc = db["user"].find_one_and_update(
        filt,
        {"$inc": {"points": delta}, "$set": {"updated_at": now_utc()}},
        return_document=ReturnDocument.AFTER,
        session=session,
    )
    if doc is None:
        return None
    level = level_for_points(doc.get("points", 0))
    if doc.get("level") != level:
        db["user"].update_one({"_id": doc["_id"]}, {"$set": {"level": level}}, session=session)
        logger.info("User %s moved to %s", user_id, level)
        doc["level"] = level
    return doc


def transfer_points(db: Database, payer_id: str, payee_id: str, amount: int, session=None) -> None:
    if amount <= 0:
        return
    if apply_points(db, payer_id, -amount, session=session) is None:
        raise InsufficientPoints(payer_id, amount)
    apply_points(db, payee_id, amount, session=session)
    logger.info("Transferred %d points from %s to %s", amount, payer_id, payee_id)


def payer_and_payee(swap: Dict[str, Any]) -> Optional[Tuple[str, str]]:
    """Return (payer_id, payee_id) for a swap, or None when no points change hands."""
    if swap.get("points_involved", 0) <= 0:
        return None
    if swap["swap_type"] == "item_for_points":
        return swap["requester_id"], swap["provider_id"]
    if swap["swap_type"] == "points_for_item":
        return swap["provider_id"], swap["requester_id"]
    return None


def user_balance(db: Database, user_id: str, session=None) -> int:
    doc = db["user"].find_one({"_id": parse_object_id(user_id)}, {"points": 1}, session=session)
    return int(doc.get("points", 0)) if doc else 0
