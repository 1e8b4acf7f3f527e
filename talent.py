import logging
import re
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from auth import get_current_user, optional_user
from database import db, now_utc, oid
from errors import ConcurrentUpdateError, OrderTransitionError
from responses import ok, pagination
from schemas import (
    TalentAvailability,
    TalentCategory,
    TalentPackage,
    TalentProduct as TalentSchema,
    TalentStatus,
    TalentType,
)

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/talent", tags=["talent"])


class CreateTalent(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=2000)
    price: float = Field(..., ge=0, le=100000)
    category: TalentCategory
    type: TalentType = "service"
    images: List[str] = []
    tags: List[str] = []
    packages: List[TalentPackage] = []
    slots: Optional[int] = Field(None, ge=0)


class UpdateTalent(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=2000)
    price: Optional[float] = Field(None, ge=0, le=100000)
    images: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    packages: Optional[List[TalentPackage]] = None
    slots: Optional[int] = Field(None, ge=0)


class StatusPayload(BaseModel):
    status: TalentStatus


def package_price(product, package_name: Optional[str]) -> float:
    if not package_name:
        return float(product["price"])
    for pkg in product.get("pricing", {}).get("packages", []):
        if pkg["name"] == package_name:
            return float(pkg["price"])
    raise OrderTransitionError(f"Unknown package: {package_name}")


def book_slot(product):
    """Take one slot on a talent product, racing other bookers on bookedSlots."""
    availability = product.get("availability", {})
    if availability.get("status", "available") != "available":
        raise OrderTransitionError("Talent product is not available for purchase")
    booked = availability.get("bookedSlots", 0)
    slots = availability.get("slots")
    if slots is not None and booked >= slots:
        raise OrderTransitionError("No slots available")
    res = db["talentproduct"].update_one(
        {"_id": product["_id"], "availability.bookedSlots": booked},
        {"$inc": {"availability.bookedSlots": 1, "stats.orders": 1}},
    )
    if res.modified_count == 0:
        raise ConcurrentUpdateError("Talent product was booked by someone else, please retry")


def release_slot(product_id):
    db["talentproduct"].update_one(
        {"_id": product_id, "availability.bookedSlots": {"$gt": 0}},
        {"$inc": {"availability.bookedSlots": -1}},
    )


def _load_owned(product_id: str, user):
    product = db["talentproduct"].find_one({"_id": oid(product_id)})
    if not product:
        raise HTTPException(404, "Talent product not found")
    if product["creator"] != user["_id"]:
        raise HTTPException(403, "Not authorized to modify this talent product")
    return product


@router.get("")
def list_talent(
    page: int = 1,
    limit: int = 12,
    q: Optional[str] = None,
    category: Optional[str] = None,
    type: Optional[str] = None,
    minPrice: Optional[float] = None,
    maxPrice: Optional[float] = None,
    creator: Optional[str] = None,
    sortBy: str = "created_at",
    sortOrder: str = "desc",
):
    page, limit = max(page, 1), min(max(limit, 1), 100)
    filt = {"isActive": True}
    if q:
        pattern = {"$regex": re.escape(q), "$options": "i"}
        filt["$or"] = [{"name": pattern}, {"description": pattern}, {"tags": pattern}]
    if category:
        filt["category"] = category
    if type:
        filt["type"] = type
    if minPrice is not None or maxPrice is not None:
        pr = {}
        if minPrice is not None:
            pr["$gte"] = minPrice
        if maxPrice is not None:
            pr["$lte"] = maxPrice
        filt["price"] = pr
    if creator:
        filt["creator"] = oid(creator)
    if sortBy not in ("created_at", "price", "stats.rating", "stats.orders"):
        raise HTTPException(400, f"Cannot sort by {sortBy}")
    total = db["talentproduct"].count_documents(filt)
    cursor = (
        db["talentproduct"].find(filt)
        .sort(sortBy, -1 if sortOrder == "desc" else 1)
        .skip((page - 1) * limit)
        .limit(limit)
    )
    return ok({"products": list(cursor), "pagination": pagination(page, limit, total)})


@router.get("/{product_id}")
def get_talent(product_id: str, user=Depends(optional_user)):
    product = db["talentproduct"].find_one({"_id": oid(product_id)})
    if not product or not product.get("isActive", True):
        raise HTTPException(404, "Talent product not found")
    if not user or user["_id"] != product["creator"]:
        db["talentproduct"].update_one({"_id": product["_id"]}, {"$inc": {"stats.views": 1}})
    return ok({"product": product})


@router.post("", status_code=201)
def create_talent(payload: CreateTalent, user=Depends(get_current_user)):
    product = TalentSchema(
        name=payload.name,
        description=payload.description,
        price=payload.price,
        category=payload.category,
        type=payload.type,
        creator=user["_id"],
        images=payload.images,
        tags=[t.strip().lower() for t in payload.tags if t.strip()],
        pricing={"basePrice": payload.price, "packages": [p.model_dump() for p in payload.packages]},
        availability=TalentAvailability(slots=payload.slots),
    )
    doc = product.model_dump()
    doc["created_at"] = doc["updated_at"] = now_utc()
    res = db["talentproduct"].insert_one(doc)
    log.info("Talent product %s created by %s", res.inserted_id, user["_id"])
    return ok({"product": db["talentproduct"].find_one({"_id": res.inserted_id})}, "Talent product created successfully")


@router.put("/{product_id}")
def update_talent(product_id: str, payload: UpdateTalent, user=Depends(get_current_user)):
    product = _load_owned(product_id, user)
    data = payload.model_dump(exclude_none=True)
    update = {"updated_at": now_utc()}
    for key in ("name", "description", "images"):
        if key in data:
            update[key] = data[key]
    if "price" in data:
        update["price"] = update["pricing.basePrice"] = data["price"]
    if "tags" in data:
        update["tags"] = [t.strip().lower() for t in data["tags"] if t.strip()]
    if "packages" in data:
        update["pricing.packages"] = data["packages"]
    if "slots" in data:
        update["availability.slots"] = data["slots"]
    db["talentproduct"].update_one({"_id": product["_id"]}, {"$set": update})
    return ok({"product": db["talentproduct"].find_one({"_id": product["_id"]})}, "Talent product updated successfully")


@router.delete("/{product_id}")
def delete_talent(product_id: str, user=Depends(get_current_user)):
    product = _load_owned(product_id, user)
    open_orders = db["order"].count_documents(
        {"talentProduct": product["_id"], "status": {"$in": ["pending", "paid", "delivered"]}}
    )
    if open_orders:
        raise HTTPException(400, "Talent product has open orders and cannot be deleted")
    db["talentproduct"].delete_one({"_id": product["_id"]})
    return ok(message="Talent product deleted successfully")


@router.put("/{product_id}/status")
def update_talent_status(product_id: str, payload: StatusPayload, user=Depends(get_current_user)):
    product = _load_owned(product_id, user)
    db["talentproduct"].update_one(
        {"_id": product["_id"]}, {"$set": {"availability.status": payload.status, "updated_at": now_utc()}}
    )
    return ok({"product": db["talentproduct"].find_one({"_id": product["_id"]})}, "Availability updated successfully")
