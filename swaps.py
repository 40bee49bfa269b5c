"""
Swap lifecycle.

    pending  -> accepted | rejected | cancelled
    accepted -> completed | cancelled

rejected, completed and cancelled are terminal. Every status change is a
compare-and-swap on the current status, and completion settles points and
counters inside run_atomically.
"""
import logging
import math
from datetime import timezone
from typing import Any, Dict, List, Literal, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from database import create_document, get_db, now_utc, pagination, parse_object_id, run_atomically, to_str_id
from ledger import InsufficientPoints, payer_and_payee, transfer_points, user_balance
from schemas import Swap, SwapMessage, SwapStatus, SwapType
from security import AuthedUser, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/swaps", tags=["swaps"])

TRANSITIONS: Dict[str, set] = {
    "pending": {"accepted", "rejected", "cancelled"},
    "accepted": {"completed", "cancelled"},
}
TERMINAL = {"rejected", "completed", "cancelled"}
ACTIVE = {"pending", "accepted"}

STAMPS = {
    "accepted": "responded_at",
    "rejected": "responded_at",
    "completed": "completed_at",
    "cancelled": "cancelled_at",
}


class CreateSwapBody(BaseModel):
    requested_item_id: str
    offered_item_id: Optional[str] = None
    swap_type: SwapType
    points_involved: int = Field(0, ge=0)
    message: str = Field("", max_length=500)


class StatusBody(BaseModel):
    status: Literal["accepted", "rejected", "completed", "cancelled"]


class MessageBody(BaseModel):
    message: str = Field(..., min_length=1, max_length=500)


class RateBody(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field("", max_length=300)


def participant_filter(user_id: str) -> Dict[str, Any]:
    return {"$or": [{"requester_id": user_id}, {"provider_id": user_id}]}


def _aware(dt):
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt


def serialize_swap(doc: Dict[str, Any]) -> Dict[str, Any]:
    swap = to_str_id(doc)
    swap["is_active"] = swap.get("status") in ACTIVE
    started = swap.get("requested_at") or swap.get("created_at")
    if started is not None:
        ended = swap.get("completed_at") or now_utc()
        seconds = (_aware(ended) - _aware(started)).total_seconds()
        swap["duration_days"] = max(0, math.ceil(seconds / 86400))
    return swap


def load_swap(db: Database, swap_id: str) -> Dict[str, Any]:
    doc = db["swap"].find_one({"_id": parse_object_id(swap_id)})
    if not doc:
        raise HTTPException(status_code=404, detail="Swap not found")
    return doc


def load_participant_swap(db: Database, swap_id: str, user: AuthedUser, action: str) -> Dict[str, Any]:
    doc = load_swap(db, swap_id)
    if user.id not in (doc["requester_id"], doc["provider_id"]):
        raise HTTPException(status_code=403, detail=f"Not authorized to {action} this swap")
    return doc


def check_transition(current: str, target: str) -> None:
    if current in TERMINAL:
        raise HTTPException(status_code=400, detail=f"Cannot update {current} swap")
    if target not in TRANSITIONS.get(current, set()):
        raise HTTPException(status_code=400, detail=f"Cannot change swap status from {current} to {target}")


def transition(db: Database, swap: Dict[str, Any], target: str, session=None) -> Dict[str, Any]:
    check_transition(swap["status"], target)
    now = now_utc()
    updated = db["swap"].find_one_and_update(
        {"_id": swap["_id"], "status": swap["status"]},
        {"$set": {"status": target, STAMPS[target]: now, "updated_at": now}},
        return_document=ReturnDocument.AFTER,
        session=session,
    )
    if updated is None:
        raise HTTPException(status_code=409, detail="Swap status changed concurrently; please retry")
    logger.info("Swap %s: %s -> %s", swap["_id"], swap["status"], target)
    return updated


def swap_item_ids(swap: Dict[str, Any]) -> List[ObjectId]:
    ids = [ObjectId(swap["requested_item_id"])]
    if swap.get("offered_item_id"):
        ids.append(ObjectId(swap["offered_item_id"]))
    return ids


def require_items_available(db: Database, swap: Dict[str, Any]) -> None:
    ids = swap_item_ids(swap)
    if db["item"].count_documents({"_id": {"$in": ids}, "status": "available"}) < len(ids):
        raise HTTPException(status_code=400, detail="Item is no longer available")


def _claim_items(db: Database, item_ids: List[ObjectId], session=None) -> List[ObjectId]:
    """Flip each available item to swapped; returns the ids actually claimed."""
    claimed = []
    for item_id in item_ids:
        result = db["item"].update_one(
            {"_id": item_id, "status": "available"},
            {"$set": {"status": "swapped", "updated_at": now_utc()}},
            session=session,
        )
        if result.modified_count:
            claimed.append(item_id)
    return claimed


def _roll_back_completion(db: Database, swap: Dict[str, Any], claimed: List[ObjectId]) -> None:
    if claimed:
        db["item"].update_many(
            {"_id": {"$in": claimed}, "status": "swapped"},
            {"$set": {"status": "available", "updated_at": now_utc()}},
        )
    db["swap"].update_one(
        {"_id": swap["_id"], "status": "completed"},
        {"$set": {"status": "accepted", "updated_at": now_utc()}, "$unset": {"completed_at": ""}},
    )


def complete_swap(db: Database, swap: Dict[str, Any]) -> Dict[str, Any]:
    """Move an accepted swap to completed and settle points, counters and items together."""

    def _complete(session):
        updated = transition(db, swap, "completed", session=session)

        # Items are claimed before any points move so one listing cannot settle twice
        item_ids = swap_item_ids(updated)
        claimed = _claim_items(db, item_ids, session=session)
        if len(claimed) < len(item_ids):
            if session is None:
                _roll_back_completion(db, updated, claimed)
            logger.warning("Swap %s rolled back to accepted: an item was already swapped", updated["_id"])
            raise HTTPException(status_code=409, detail="Item is no longer available")

        parties = payer_and_payee(updated)
        if parties:
            try:
                transfer_points(db, parties[0], parties[1], updated["points_involved"], session=session)
            except InsufficientPoints:
                if session is None:
                    _roll_back_completion(db, updated, claimed)
                logger.warning("Swap %s rolled back to accepted: payer %s short of points", updated["_id"], parties[0])
                raise HTTPException(status_code=400, detail="Insufficient points")

        for user_id in (updated["requester_id"], updated["provider_id"]):
            db["user"].update_one({"_id": ObjectId(user_id)}, {"$inc": {"total_swaps": 1}}, session=session)
        db["user"].update_one({"_id": ObjectId(updated["requester_id"])}, {"$inc": {"items_received": 1}}, session=session)
        if updated.get("offered_item_id"):
            db["user"].update_one({"_id": ObjectId(updated["provider_id"])}, {"$inc": {"items_received": 1}}, session=session)
        return updated

    return run_atomically(db, _complete)


@router.post("", status_code=201)
def create_swap(body: CreateSwapBody, db: Database = Depends(get_db), user: AuthedUser = Depends(get_current_user)):
    requested = db["item"].find_one({"_id": parse_object_id(body.requested_item_id)})
    if not requested:
        raise HTTPException(status_code=404, detail="Requested item not found")
    if requested["uploader_id"] == user.id:
        raise HTTPException(status_code=400, detail="Cannot swap your own item")
    if requested.get("status") != "available":
        raise HTTPException(status_code=400, detail="Requested item is not available")

    if body.offered_item_id:
        offered = db["item"].find_one({"_id": parse_object_id(body.offered_item_id)})
        if not offered:
            raise HTTPException(status_code=404, detail="Offered item not found")
        if offered["uploader_id"] != user.id:
            raise HTTPException(status_code=403, detail="You can only offer items you own")
        if offered.get("status") != "available":
            raise HTTPException(status_code=400, detail="Offered item is not available")
    elif body.swap_type == "item_for_item":
        raise HTTPException(status_code=400, detail="An offered item is required for item_for_item swaps")

    swap = Swap(
        requester_id=user.id,
        provider_id=requested["uploader_id"],
        requested_item_id=body.requested_item_id,
        offered_item_id=body.offered_item_id,
        swap_type=body.swap_type,
        points_involved=body.points_involved,
        requested_at=now_utc(),
    )
    parties = payer_and_payee(swap.model_dump())
    if parties and user_balance(db, parties[0]) < body.points_involved:
        raise HTTPException(status_code=400, detail="Insufficient points")

    message = body.message.strip()
    if message:
        swap.messages.append(SwapMessage(sender_id=user.id, message=message, created_at=now_utc()))

    swap_id = create_document(db, "swap", swap)
    logger.info("Swap %s requested by %s for item %s", swap_id, user.id, body.requested_item_id)
    return {"message": "Swap request created successfully", "swap": serialize_swap(db["swap"].find_one({"_id": ObjectId(swap_id)}))}


@router.get("")
def list_swaps(
    status: Optional[SwapStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    db: Database = Depends(get_db),
    user: AuthedUser = Depends(get_current_user),
):
    filt = participant_filter(user.id)
    if status:
        filt["status"] = status
    skip = (page - 1) * limit
    docs = db["swap"].find(filt).sort("created_at", DESCENDING).skip(skip).limit(limit)
    total = db["swap"].count_documents(filt)
    return {"swaps": [serialize_swap(d) for d in docs], "pagination": pagination(page, limit, total)}


@router.get("/stats")
def swap_stats(db: Database = Depends(get_db), user: AuthedUser = Depends(get_current_user)):
    base = participant_filter(user.id)
    me = db["user"].find_one({"_id": ObjectId(user.id)}, {"rating": 1}) or {}
    return {
        "stats": {
            "total_swaps": db["swap"].count_documents(base),
            "pending_swaps": db["swap"].count_documents({**base, "status": "pending"}),
            "completed_swaps": db["swap"].count_documents({**base, "status": "completed"}),
            "cancelled_swaps": db["swap"].count_documents({**base, "status": "cancelled"}),
            "average_rating": me.get("rating", 0),
        }
    }


@router.get("/{swap_id}")
def get_swap(swap_id: str, db: Database = Depends(get_db), user: AuthedUser = Depends(get_current_user)):
    return {"swap": serialize_swap(load_participant_swap(db, swap_id, user, "view"))}


@router.put("/{swap_id}/status")
def update_swap_status(swap_id: str, body: StatusBody, db: Database = Depends(get_db), user: AuthedUser = Depends(get_current_user)):
    swap = load_swap(db, swap_id)
    if swap["provider_id"] != user.id:
        raise HTTPException(status_code=403, detail="Only the item provider can update swap status")
    check_transition(swap["status"], body.status)
    if body.status == "accepted":
        require_items_available(db, swap)

    if body.status == "completed":
        updated = complete_swap(db, swap)
    else:
        updated = transition(db, swap, body.status)
    return {"message": f"Swap {body.status} successfully", "swap": serialize_swap(updated)}


@router.post("/{swap_id}/messages")
def add_message(swap_id: str, body: MessageBody, db: Database = Depends(get_db), user: AuthedUser = Depends(get_current_user)):
    swap = load_participant_swap(db, swap_id, user, "add messages to")
    if swap["status"] not in ACTIVE:
        raise HTTPException(status_code=400, detail="Cannot add messages to an inactive swap")
    message = SwapMessage(sender_id=user.id, message=body.message.strip(), created_at=now_utc())
    db["swap"].update_one(
        {"_id": swap["_id"]},
        {"$push": {"messages": message.model_dump()}, "$set": {"updated_at": now_utc()}},
    )
    return {"message": "Message added successfully"}


@router.post("/{swap_id}/rate")
def rate_swap(swap_id: str, body: RateBody, db: Database = Depends(get_db), user: AuthedUser = Depends(get_current_user)):
    swap = load_participant_swap(db, swap_id, user, "rate")
    if swap["status"] != "completed":
        raise HTTPException(status_code=400, detail="Can only rate completed swaps")

    if user.id == swap["requester_id"]:
        field, partner_id = "requester_rating", swap["provider_id"]
    else:
        field, partner_id = "provider_rating", swap["requester_id"]

    rating = {"rating": body.rating, "comment": body.comment.strip(), "submitted_at": now_utc()}
    result = db["swap"].update_one({"_id": swap["_id"], field: None}, {"$set": {field: rating}})
    if result.modified_count == 0:
        raise HTTPException(status_code=400, detail="You have already rated this swap")

    partner = db["user"].find_one_and_update(
        {"_id": ObjectId(partner_id)},
        {"$inc": {"rating_sum": body.rating, "total_ratings": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if partner is not None:
        average = round(partner["rating_sum"] / partner["total_ratings"], 2)
        db["user"].update_one({"_id": partner["_id"]}, {"$set": {"rating": average}})
    return {"message": "Rating submitted successfully"}


@router.put("/{swap_id}/cancel")
def cancel_swap(swap_id: str, db: Database = Depends(get_db), user: AuthedUser = Depends(get_current_user)):
    swap = load_participant_swap(db, swap_id, user, "cancel")
    updated = transition(db, swap, "cancelled")
    return {"message": "Swap cancelled successfully", "swap": serialize_swap(updated)}
