"""
Item listings: browsing, CRUD, likes, inline swap requests and moderation.
"""
import logging
import re
from typing import Any, Dict, List, Literal, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, HttpUrl, field_validator
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database

import config
from database import create_document, get_db, now_utc, pagination, parse_object_id, to_str_id
from schemas import SIZES, Category, Condition, Item
from security import AuthedUser, get_current_user, get_optional_user, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/items", tags=["items"])

SORT_OPTIONS = {
    "newest": [("created_at", DESCENDING)],
    "oldest": [("created_at", ASCENDING)],
    "points_high": [("points", DESCENDING)],
    "points_low": [("points", ASCENDING)],
    "popular": [("views", DESCENDING), ("likes", DESCENDING)],
}

UPLOADER_FIELDS = {"first_name": 1, "last_name": 1, "avatar_url": 1, "rating": 1, "total_swaps": 1, "location": 1}


def listable_filter() -> Dict[str, Any]:
    return {"status": "available", "is_approved": True}


def _check_size(v: Optional[str]) -> Optional[str]:
    if v is not None and v not in SIZES:
        raise ValueError("Invalid size")
    return v


def _check_tags(v: Optional[List[str]]) -> Optional[List[str]]:
    if v is None:
        return v
    tags = [t.strip() for t in v if t and t.strip()]
    if any(len(t) > 30 for t in tags):
        raise ValueError("Tag cannot exceed 30 characters")
    return tags


class CreateItemBody(BaseModel):
    title: str = Field(..., min_length=3, max_length=100)
    description: str = Field(..., min_length=10, max_length=1000)
    category: Category
    type: Optional[str] = Field(None, max_length=50)
    size: str
    condition: Condition
    points: int = Field(..., ge=1, le=1000)
    tags: List[str] = Field(default_factory=list)
    images: List[HttpUrl] = Field(..., min_length=1, max_length=5)
    brand: Optional[str] = Field(None, max_length=50)
    material: Optional[str] = Field(None, max_length=100)
    color: Optional[str] = Field(None, max_length=30)
    season: Literal["Spring", "Summer", "Fall", "Winter", "All Season"] = "All Season"
    gender: Literal["Men", "Women", "Unisex", "Kids"] = "Unisex"
    location: Optional[str] = None
    shipping_preference: Literal["local_only", "willing_to_ship", "shipping_only"] = "local_only"
    notes: Optional[str] = Field(None, max_length=300)

    @field_validator("size")
    @classmethod
    def check_size(cls, v):
        return _check_size(v)

    @field_validator("tags")
    @classmethod
    def check_tags(cls, v):
        return _check_tags(v)


class UpdateItemBody(BaseModel):
    title: Optional[str] = Field(None, min_length=3, max_length=100)
    description: Optional[str] = Field(None, min_length=10, max_length=1000)
    category: Optional[Category] = None
    type: Optional[str] = Field(None, max_length=50)
    size: Optional[str] = None
    condition: Optional[Condition] = None
    points: Optional[int] = Field(None, ge=1, le=1000)
    tags: Optional[List[str]] = None
    brand: Optional[str] = Field(None, max_length=50)
    material: Optional[str] = Field(None, max_length=100)
    color: Optional[str] = Field(None, max_length=30)
    season: Optional[Literal["Spring", "Summer", "Fall", "Winter", "All Season"]] = None
    gender: Optional[Literal["Men", "Women", "Unisex", "Kids"]] = None
    location: Optional[str] = None
    shipping_preference: Optional[Literal["local_only", "willing_to_ship", "shipping_only"]] = None
    notes: Optional[str] = Field(None, max_length=300)

    @field_validator("size")
    @classmethod
    def check_size(cls, v):
        return _check_size(v)

    @field_validator("tags")
    @classmethod
    def check_tags(cls, v):
        return _check_tags(v)


class SwapRequestBody(BaseModel):
    message: str = Field("", max_length=500)


def serialize_item(doc: Dict[str, Any], uploader: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    item = to_str_id(doc)
    # availability is display-only; status is the single source of truth
    item["availability"] = item.get("status", "pending").capitalize()
    requests = item.get("swap_requests", [])
    item["total_swap_requests"] = len(requests)
    item["pending_swap_requests"] = sum(1 for r in requests if r.get("status") == "pending")
    if uploader is not None:
        item["uploader"] = uploader
    return item


def with_uploaders(db: Database, docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    ids = {d["uploader_id"] for d in docs if ObjectId.is_valid(d.get("uploader_id", ""))}
    users = {
        str(u["_id"]): to_str_id(u)
        for u in db["user"].find({"_id": {"$in": [ObjectId(i) for i in ids]}}, UPLOADER_FIELDS)
    }
    return [serialize_item(d, users.get(d.get("uploader_id"))) for d in docs]


def load_item(db: Database, item_id: str) -> Dict[str, Any]:
    doc = db["item"].find_one({"_id": parse_object_id(item_id)})
    if not doc:
        raise HTTPException(status_code=404, detail="Item not found")
    return doc


def load_owned_item(db: Database, item_id: str, user: AuthedUser, action: str) -> Dict[str, Any]:
    doc = load_item(db, item_id)
    if doc["uploader_id"] != user.id:
        raise HTTPException(status_code=403, detail=f"Not authorized to {action} this item")
    return doc


@router.get("")
def list_items(
    page: int = Query(1, ge=1),
    limit: int = Query(config.DEFAULT_PAGE_SIZE, ge=1, le=config.MAX_PAGE_SIZE),
    category: Optional[str] = None,
    size: Optional[str] = None,
    condition: Optional[str] = None,
    min_points: Optional[int] = Query(None, ge=0),
    max_points: Optional[int] = Query(None, ge=0),
    search: Optional[str] = None,
    sort: Literal["newest", "oldest", "points_high", "points_low", "popular"] = "newest",
    db: Database = Depends(get_db),
):
    filt = listable_filter()
    if category:
        filt["category"] = category
    if size:
        filt["size"] = size
    if condition:
        filt["condition"] = condition
    if min_points is not None or max_points is not None:
        filt["points"] = {}
        if min_points is not None:
            filt["points"]["$gte"] = min_points
        if max_points is not None:
            filt["points"]["$lte"] = max_points
    if search:
        pattern = re.escape(search)
        filt["$or"] = [
            {field: {"$regex": pattern, "$options": "i"}}
            for field in ("title", "description", "tags", "brand")
        ]

    skip = (page - 1) * limit
    docs = list(db["item"].find(filt).sort(SORT_OPTIONS[sort]).skip(skip).limit(limit))
    total = db["item"].count_documents(filt)
    return {"items": with_uploaders(db, docs), "pagination": pagination(page, limit, total)}


@router.get("/trending")
def trending_items(db: Database = Depends(get_db)):
    docs = list(db["item"].find(listable_filter()).sort(SORT_OPTIONS["popular"]).limit(config.TRENDING_LIMIT))
    return {"items": with_uploaders(db, docs)}


@router.get("/category/{category}")
def items_by_category(category: str, db: Database = Depends(get_db)):
    docs = list(db["item"].find({**listable_filter(), "category": category}).sort(SORT_OPTIONS["newest"]))
    return {"items": with_uploaders(db, docs)}


@router.get("/{item_id}")
def get_item(item_id: str, db: Database = Depends(get_db), user: Optional[AuthedUser] = Depends(get_optional_user)):
    doc = load_item(db, item_id)
    if user is not None:
        doc = db["item"].find_one_and_update(
            {"_id": doc["_id"]},
            {"$inc": {"views": 1}},
            return_document=ReturnDocument.AFTER,
        ) or doc
    return {"item": with_uploaders(db, [doc])[0]}


@router.post("", status_code=201)
def create_item(body: CreateItemBody, db: Database = Depends(get_db), user: AuthedUser = Depends(get_current_user)):
    data = body.model_dump()
    data["images"] = [str(u) for u in body.images]
    item = Item(**data, uploader_id=user.id)
    item_id = create_document(db, "item", item)
    db["user"].update_one({"_id": ObjectId(user.id)}, {"$inc": {"items_listed": 1}})
    logger.info("Item %s listed by %s", item_id, user.id)
    return {"item": serialize_item(db["item"].find_one({"_id": ObjectId(item_id)}))}


@router.put("/{item_id}")
def update_item(item_id: str, body: UpdateItemBody, db: Database = Depends(get_db), user: AuthedUser = Depends(get_current_user)):
    doc = load_owned_item(db, item_id, user, "update")
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    if changes:
        changes["updated_at"] = now_utc()
        doc = db["item"].find_one_and_update(
            {"_id": doc["_id"]},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
    return {"item": serialize_item(doc)}


@router.delete("/{item_id}")
def delete_item(item_id: str, db: Database = Depends(get_db), user: AuthedUser = Depends(get_current_user)):
    doc = load_owned_item(db, item_id, user, "delete")
    db["item"].delete_one({"_id": doc["_id"]})
    logger.info("Item %s deleted by %s", item_id, user.id)
    return {"message": "Item deleted successfully"}


@router.post("/{item_id}/like")
def toggle_like(item_id: str, db: Database = Depends(get_db), user: AuthedUser = Depends(get_current_user)):
    doc = load_item(db, item_id)
    is_liked = user.id not in doc.get("liked_by", [])
    update = {"$addToSet": {"liked_by": user.id}} if is_liked else {"$pull": {"liked_by": user.id}}
    doc = db["item"].find_one_and_update({"_id": doc["_id"]}, update, return_document=ReturnDocument.AFTER)
    if doc is None:
        raise HTTPException(status_code=404, detail="Item not found")
    # likes mirrors liked_by so the counter cannot drift
    likes = len(doc.get("liked_by", []))
    db["item"].update_one({"_id": doc["_id"]}, {"$set": {"likes": likes}})
    return {"likes": likes, "is_liked": is_liked}


@router.post("/{item_id}/swap-request")
def add_swap_request(item_id: str, body: SwapRequestBody, db: Database = Depends(get_db), user: AuthedUser = Depends(get_current_user)):
    doc = load_item(db, item_id)
    if doc["uploader_id"] == user.id:
        raise HTTPException(status_code=400, detail="Cannot request swap for your own item")
    for request in doc.get("swap_requests", []):
        if request.get("requester_id") == user.id and request.get("status") == "pending":
            raise HTTPException(status_code=400, detail="You already have a pending swap request for this item")

    request = {
        "id": str(ObjectId()),
        "requester_id": user.id,
        "message": body.message.strip(),
        "status": "pending",
        "created_at": now_utc(),
    }
    db["item"].update_one({"_id": doc["_id"]}, {"$push": {"swap_requests": request}})
    return {"message": "Swap request sent successfully", "request_id": request["id"]}


@router.put("/{item_id}/approve")
def approve_item(item_id: str, db: Database = Depends(get_db), admin: AuthedUser = Depends(require_admin)):
    doc = load_item(db, item_id)
    changes: Dict[str, Any] = {
        "is_approved": True,
        "approved_by": admin.id,
        "approved_at": now_utc(),
        "updated_at": now_utc(),
    }
    if doc.get("status") == "pending":
        changes["status"] = "available"
    doc = db["item"].find_one_and_update({"_id": doc["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER)
    logger.info("Item %s approved by %s", item_id, admin.id)
    return {"item": serialize_item(doc)}
