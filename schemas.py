"""
Database Schemas for ReWear

Each Pydantic model maps to a MongoDB collection. Collection name is the lowercase of the class name.
References to other documents are stored as ObjectId strings.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

import config

Category = Literal[
    "Tops",
    "Bottoms",
    "Dresses",
    "Outerwear",
    "Shoes",
    "Accessories",
    "Activewear",
    "Formal Wear",
    "Underwear",
    "Swimwear",
]

Condition = Literal["New with tags", "Like new", "Excellent", "Very good", "Good", "Fair", "Poor"]

SIZES = (
    ["XS", "S", "M", "L", "XL", "XXL", "XXXL", "One Size", "Free Size"]
    + [str(n) for n in range(2, 101, 2)]
)

ItemStatus = Literal["pending", "available", "swapped", "removed"]
SwapType = Literal["item_for_item", "item_for_points", "points_for_item"]
SwapStatus = Literal["pending", "accepted", "rejected", "completed", "cancelled"]
Level = Literal["Bronze Swapper", "Silver Swapper", "Gold Swapper", "Platinum Swapper", "Diamond Swapper"]


# Users
class NotificationPrefs(BaseModel):
    email: bool = True
    push: bool = True


class PrivacyPrefs(BaseModel):
    show_location: bool = True
    show_stats: bool = True


class Preferences(BaseModel):
    notifications: NotificationPrefs = Field(default_factory=NotificationPrefs)
    privacy: PrivacyPrefs = Field(default_factory=PrivacyPrefs)


class User(BaseModel):
    first_name: str = Field(..., max_length=50)
    last_name: str = Field(..., max_length=50)
    email: EmailStr = Field(..., description="Unique, lowercased email address")
    password_hash: str = Field(..., description="BCrypt password hash")
    avatar_url: Optional[str] = None
    location: Optional[str] = None
    bio: Optional[str] = Field(None, max_length=500)
    points: int = Field(config.WELCOME_POINTS, ge=0)
    level: Level = "Bronze Swapper"
    total_swaps: int = 0
    items_listed: int = 0
    items_received: int = 0
    rating: float = Field(0.0, ge=0, le=5, description="Average rating received")
    total_ratings: int = 0
    rating_sum: int = 0
    is_verified: bool = False
    is_active: bool = True
    is_admin: bool = False
    preferences: Preferences = Field(default_factory=Preferences)


# Items
class SwapRequest(BaseModel):
    id: str
    requester_id: str
    message: str = Field("", max_length=500)
    status: Literal["pending", "accepted", "rejected"] = "pending"
    created_at: Optional[datetime] = None


class Item(BaseModel):
    title: str = Field(..., min_length=3, max_length=100)
    description: str = Field(..., min_length=10, max_length=1000)
    category: Category
    type: Optional[str] = Field(None, max_length=50)
    size: str
    condition: Condition
    points: int = Field(..., ge=1, le=1000)
    tags: List[str] = Field(default_factory=list)
    images: List[str] = Field(..., min_length=1, max_length=5)
    uploader_id: str
    status: ItemStatus = "pending"
    location: Optional[str] = None
    shipping_preference: Literal["local_only", "willing_to_ship", "shipping_only"] = "local_only"
    views: int = 0
    likes: int = 0
    liked_by: List[str] = Field(default_factory=list)
    swap_requests: List[SwapRequest] = Field(default_factory=list)
    is_flagged: bool = False
    flag_reason: Optional[str] = Field(None, max_length=200)
    is_approved: bool = False
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    brand: Optional[str] = Field(None, max_length=50)
    material: Optional[str] = Field(None, max_length=100)
    color: Optional[str] = Field(None, max_length=30)
    season: Literal["Spring", "Summer", "Fall", "Winter", "All Season"] = "All Season"
    gender: Literal["Men", "Women", "Unisex", "Kids"] = "Unisex"
    notes: Optional[str] = Field(None, max_length=300)


# Swaps
class SwapMessage(BaseModel):
    sender_id: str
    message: str = Field(..., min_length=1, max_length=500)
    created_at: Optional[datetime] = None


class Rating(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field("", max_length=300)
    submitted_at: Optional[datetime] = None


class Swap(BaseModel):
    requester_id: str
    provider_id: str
    requested_item_id: str
    offered_item_id: Optional[str] = None
    swap_type: SwapType
    points_involved: int = Field(0, ge=0)
    status: SwapStatus = "pending"
    messages: List[SwapMessage] = Field(default_factory=list)
    requested_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    requester_rating: Optional[Rating] = None
    provider_rating: Optional[Rating] = None
    is_disputed: bool = False
    dispute_reason: Optional[str] = Field(None, max_length=500)
