import logging
import re
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from auth import get_current_user, optional_user
from database import db, now_utc, oid
from responses import ok, pagination
from schemas import Item as ItemSchema, ItemCondition, ItemStatus, ReportReason

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/items", tags=["items"])

SORTABLE = {"created_at", "price", "views", "title"}


class CreateItem(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=1000)
    price: float = Field(..., ge=0, le=1000000)
    originalPrice: Optional[float] = Field(None, ge=0)
    category: str
    subcategory: Optional[str] = None
    condition: ItemCondition
    images: List[str] = []
    tags: List[str] = []
    negotiable: bool = True
    urgent: bool = False


class UpdateItem(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    price: Optional[float] = Field(None, ge=0, le=1000000)
    originalPrice: Optional[float] = Field(None, ge=0)
    subcategory: Optional[str] = None
    condition: Optional[ItemCondition] = None
    images: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    negotiable: Optional[bool] = None
    urgent: Optional[bool] = None


class ReportPayload(BaseModel):
    reason: ReportReason
    description: Optional[str] = Field(None, max_length=500)


class StatusPayload(BaseModel):
    status: ItemStatus


def _load_active(item_id: str):
    item = db["item"].find_one({"_id": oid(item_id)})
    if not item or not item.get("isActive", True):
        raise HTTPException(404, "Item not found")
    return item


def _load_owned(item_id: str, user):
    item = db["item"].find_one({"_id": oid(item_id)})
    if not item:
        raise HTTPException(404, "Item not found")
    if item["seller"] != user["_id"]:
        raise HTTPException(403, "Not authorized to modify this item")
    return item


def _with_like_flags(item, user):
    item["likeCount"] = len(item.get("likes", []))
    if user:
        item["isLiked"] = any(l["user"] == user["_id"] for l in item.get("likes", []))
    return item


@router.get("")
def list_items(
    page: int = 1,
    limit: int = 12,
    q: Optional[str] = None,
    category: Optional[str] = None,
    minPrice: Optional[float] = None,
    maxPrice: Optional[float] = None,
    condition: Optional[str] = None,
    seller: Optional[str] = None,
    sortBy: str = "created_at",
    sortOrder: str = "desc",
    user=Depends(optional_user),
):
    page, limit = max(page, 1), min(max(limit, 1), 100)
    filt = {"isActive": True, "availability.status": "available"}
    if q:
        pattern = {"$regex": re.escape(q), "$options": "i"}
        filt["$or"] = [{"title": pattern}, {"description": pattern}, {"tags": pattern}]
    if category:
        filt["category"] = category
    if minPrice is not None or maxPrice is not None:
        pr = {}
        if minPrice is not None:
            pr["$gte"] = minPrice
        if maxPrice is not None:
            pr["$lte"] = maxPrice
        filt["price"] = pr
    if condition:
        filt["condition"] = condition
    if seller:
        filt["seller"] = oid(seller)
    if sortBy not in SORTABLE:
        raise HTTPException(400, f"Cannot sort by {sortBy}")

    total = db["item"].count_documents(filt)
    cursor = (
        db["item"].find(filt)
        .sort(sortBy, -1 if sortOrder == "desc" else 1)
        .skip((page - 1) * limit)
        .limit(limit)
    )
    items = [_with_like_flags(i, user) for i in cursor]
    return ok({"items": items, "pagination": pagination(page, limit, total)})


@router.get("/{item_id}")
def get_item(item_id: str, user=Depends(optional_user)):
    item = _load_active(item_id)
    if not user or user["_id"] != item["seller"]:
        db["item"].update_one({"_id": item["_id"]}, {"$inc": {"views": 1}})
        item["views"] = item.get("views", 0) + 1
    return ok({"item": _with_like_flags(item, user)})


@router.post("", status_code=201)
def create_item(payload: CreateItem, user=Depends(get_current_user)):
    if payload.originalPrice is not None and payload.originalPrice < payload.price:
        raise HTTPException(400, "Original price should be greater than or equal to selling price")
    item = ItemSchema(
        **payload.model_dump(exclude={"tags"}),
        tags=[t.strip().lower() for t in payload.tags if t.strip()],
        seller=user["_id"],
    )
    doc = item.model_dump(exclude_none=True)
    doc["created_at"] = doc["updated_at"] = now_utc()
    res = db["item"].insert_one(doc)
    log.info("Item %s listed by %s", res.inserted_id, user["_id"])
    return ok({"item": db["item"].find_one({"_id": res.inserted_id})}, "Item created successfully")


@router.put("/{item_id}")
def update_item(item_id: str, payload: UpdateItem, user=Depends(get_current_user)):
    item = _load_owned(item_id, user)
    update = payload.model_dump(exclude_none=True)
    price = update.get("price", item["price"])
    original = update.get("originalPrice", item.get("originalPrice"))
    if original is not None and original < price:
        raise HTTPException(400, "Original price should be greater than or equal to selling price")
    if "tags" in update:
        update["tags"] = [t.strip().lower() for t in update["tags"] if t.strip()]
    update["updated_at"] = now_utc()
    db["item"].update_one({"_id": item["_id"]}, {"$set": update})
    return ok({"item": db["item"].find_one({"_id": item["_id"]})}, "Item updated successfully")


@router.delete("/{item_id}")
def delete_item(item_id: str, user=Depends(get_current_user)):
    item = _load_owned(item_id, user)
    if item.get("availability", {}).get("status") == "reserved":
        raise HTTPException(400, "Item has an open order and cannot be deleted")
    db["item"].delete_one({"_id": item["_id"], "availability.status": {"$ne": "reserved"}})
    return ok(message="Item deleted successfully")


@router.post("/{item_id}/like")
def toggle_like(item_id: str, user=Depends(get_current_user)):
    item = _load_active(item_id)
    liked = any(l["user"] == user["_id"] for l in item.get("likes", []))
    if liked:
        db["item"].update_one({"_id": item["_id"]}, {"$pull": {"likes": {"user": user["_id"]}}})
    else:
        db["item"].update_one(
            {"_id": item["_id"], "likes.user": {"$ne": user["_id"]}},
            {"$push": {"likes": {"user": user["_id"], "createdAt": now_utc()}}},
        )
    fresh = db["item"].find_one({"_id": item["_id"]})
    return ok({"isLiked": not liked, "likeCount": len(fresh.get("likes", []))}, "Like toggled successfully")


@router.post("/{item_id}/report")
def report_item(item_id: str, payload: ReportPayload, user=Depends(get_current_user)):
    item = _load_active(item_id)
    report = {"user": user["_id"], "reason": payload.reason, "description": payload.description, "createdAt": now_utc()}
    # the filter keeps a racing duplicate out as well
    res = db["item"].update_one(
        {"_id": item["_id"], "reports.user": {"$ne": user["_id"]}},
        {"$push": {"reports": report}},
    )
    if res.modified_count == 0:
        raise HTTPException(400, "You have already reported this item")
    log.info("Item %s reported by %s (%s)", item["_id"], user["_id"], payload.reason)
    return ok(message="Item reported successfully")


@router.put("/{item_id}/status")
def update_status(item_id: str, payload: StatusPayload, user=Depends(get_current_user)):
    item = _load_owned(item_id, user)
    current = item.get("availability", {}).get("status", "available")
    if current == "reserved" or payload.status == "reserved":
        raise HTTPException(400, "Reservations are managed through orders")
    db["item"].update_one({"_id": item["_id"]}, {"$set": {"availability.status": payload.status, "updated_at": now_utc()}})
    return ok({"item": db["item"].find_one({"_id": item["_id"]})}, "Item status updated successfully")
