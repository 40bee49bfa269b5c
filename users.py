import logging
import re
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, HttpUrl
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

import config
from database import get_db, now_utc, pagination, parse_object_id, to_str_id
from items import listable_filter, serialize_item
from security import AuthedUser, get_current_user
from swaps import participant_filter, serialize_swap

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])

PUBLIC_FIELDS = {
    "first_name": 1,
    "last_name": 1,
    "avatar_url": 1,
    "location": 1,
    "bio": 1,
    "points": 1,
    "level": 1,
    "total_swaps": 1,
    "items_listed": 1,
    "rating": 1,
    "total_ratings": 1,
    "created_at": 1,
}

LEADERBOARD_FIELDS = {
    "points": "points",
    "swaps": "total_swaps",
    "items": "items_listed",
    "rating": "rating",
}


class AvatarBody(BaseModel):
    avatar: HttpUrl


class NotificationPrefsBody(BaseModel):
    email: Optional[bool] = None
    push: Optional[bool] = None


class PrivacyPrefsBody(BaseModel):
    show_location: Optional[bool] = None
    show_stats: Optional[bool] = None


class PreferencesBody(BaseModel):
    notifications: Optional[NotificationPrefsBody] = None
    privacy: Optional[PrivacyPrefsBody] = None


def public_user(doc: Dict[str, Any]) -> Dict[str, Any]:
    user = to_str_id(doc)
    for private in ("password_hash", "rating_sum", "email", "preferences", "is_admin"):
        user.pop(private, None)
    return user


def require_self(user_id: str, user: AuthedUser, action: str) -> None:
    if user_id != user.id:
        raise HTTPException(status_code=403, detail=f"Not authorized to {action} for another user")


def load_user(db: Database, user_id: str) -> Dict[str, Any]:
    doc = db["user"].find_one({"_id": parse_object_id(user_id)})
    if not doc:
        raise HTTPException(status_code=404, detail="User not found")
    return doc


# Static paths first so they are not captured by /{user_id}
@router.get("/leaderboard")
def leaderboard(
    type: Literal["points", "swaps", "items", "rating"] = "points",
    limit: int = Query(10, ge=1, le=config.MAX_PAGE_SIZE),
    db: Database = Depends(get_db),
):
    sort_field = LEADERBOARD_FIELDS[type]
    docs = db["user"].find({"is_active": True}, PUBLIC_FIELDS).sort(sort_field, DESCENDING).limit(limit)
    return {"users": [public_user(d) for d in docs]}


@router.get("/search")
def search_users(
    q: str = "",
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=config.MAX_PAGE_SIZE),
    db: Database = Depends(get_db),
):
    if not q.strip():
        raise HTTPException(status_code=400, detail="Search query is required")
    pattern = re.escape(q.strip())
    filt = {
        "$or": [{field: {"$regex": pattern, "$options": "i"}} for field in ("first_name", "last_name", "email")],
        "is_active": True,
    }
    skip = (page - 1) * limit
    docs = db["user"].find(filt, PUBLIC_FIELDS).skip(skip).limit(limit)
    total = db["user"].count_documents(filt)
    return {"users": [public_user(d) for d in docs], "pagination": pagination(page, limit, total)}


@router.get("/{user_id}")
def get_user(user_id: str, db: Database = Depends(get_db)):
    doc = db["user"].find_one({"_id": parse_object_id(user_id)}, PUBLIC_FIELDS)
    if not doc:
        raise HTTPException(status_code=404, detail="User not found")
    return {"user": public_user(doc)}


@router.get("/{user_id}/items")
def get_user_items(
    user_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(config.DEFAULT_PAGE_SIZE, ge=1, le=config.MAX_PAGE_SIZE),
    db: Database = Depends(get_db),
):
    filt = {**listable_filter(), "uploader_id": user_id}
    skip = (page - 1) * limit
    docs = db["item"].find(filt).sort("created_at", DESCENDING).skip(skip).limit(limit)
    total = db["item"].count_documents(filt)
    return {"items": [serialize_item(d) for d in docs], "pagination": pagination(page, limit, total)}


@router.get("/{user_id}/swaps")
def get_user_swaps(user_id: str, db: Database = Depends(get_db), user: AuthedUser = Depends(get_current_user)):
    require_self(user_id, user, "view swaps")
    docs = db["swap"].find(participant_filter(user_id)).sort("created_at", DESCENDING)
    return {"swaps": [serialize_swap(d) for d in docs]}


@router.get("/{user_id}/pending-swaps")
def get_pending_swaps(user_id: str, db: Database = Depends(get_db), user: AuthedUser = Depends(get_current_user)):
    require_self(user_id, user, "view pending swaps")
    docs = db["swap"].find({"provider_id": user_id, "status": "pending"}).sort("created_at", DESCENDING)
    return {"swaps": [serialize_swap(d) for d in docs]}


@router.put("/{user_id}/avatar")
def update_avatar(user_id: str, body: AvatarBody, db: Database = Depends(get_db), user: AuthedUser = Depends(get_current_user)):
    require_self(user_id, user, "update avatar")
    doc = db["user"].find_one_and_update(
        {"_id": parse_object_id(user_id)},
        {"$set": {"avatar_url": str(body.avatar), "updated_at": now_utc()}},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise HTTPException(status_code=404, detail="User not found")
    return {"message": "Avatar updated successfully", "avatar": doc["avatar_url"]}


@router.get("/{user_id}/stats")
def get_user_stats(user_id: str, db: Database = Depends(get_db), user: AuthedUser = Depends(get_current_user)):
    require_self(user_id, user, "view stats")
    doc = load_user(db, user_id)
    engagement = list(db["item"].aggregate([
        {"$match": {"uploader_id": user_id}},
        {"$group": {"_id": None, "views": {"$sum": "$views"}, "likes": {"$sum": "$likes"}}},
    ]))
    totals = engagement[0] if engagement else {}
    swaps = participant_filter(user_id)
    return {
        "stats": {
            "total_items": db["item"].count_documents({"uploader_id": user_id}),
            "active_items": db["item"].count_documents({**listable_filter(), "uploader_id": user_id}),
            "total_views": totals.get("views", 0),
            "total_likes": totals.get("likes", 0),
            "completed_swaps": db["swap"].count_documents({**swaps, "status": "completed"}),
            "pending_swaps": db["swap"].count_documents({**swaps, "status": {"$in": ["pending", "accepted"]}}),
            "average_rating": doc.get("rating", 0),
        }
    }


@router.put("/{user_id}/preferences")
def update_preferences(user_id: str, body: PreferencesBody, db: Database = Depends(get_db), user: AuthedUser = Depends(get_current_user)):
    require_self(user_id, user, "update preferences")
    load_user(db, user_id)
    changes: Dict[str, Any] = {"updated_at": now_utc()}
    for group, prefs in (("notifications", body.notifications), ("privacy", body.privacy)):
        if prefs is None:
            continue
        for key, value in prefs.model_dump(exclude_none=True).items():
            changes[f"preferences.{group}.{key}"] = value
    doc = db["user"].find_one_and_update(
        {"_id": parse_object_id(user_id)},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    return {"message": "Preferences updated successfully", "preferences": doc.get("preferences", {})}


@router.put("/{user_id}/deactivate")
def deactivate_account(user_id: str, db: Database = Depends(get_db), user: AuthedUser = Depends(get_current_user)):
    require_self(user_id, user, "deactivate account")
    load_user(db, user_id)
    db["user"].update_one({"_id": parse_object_id(user_id)}, {"$set": {"is_active": False, "updated_at": now_utc()}})
    logger.info("User %s deactivated their account", user_id)
    return {"message": "Account deactivated successfully"}
