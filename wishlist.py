from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from auth import get_current_user
from database import db, oid
from responses import ok, pagination

router = APIRouter(prefix="/api/wishlist", tags=["wishlist"])

# url segment -> (wishlist field, collection, owner field, label)
KINDS = {
    "items": ("items", "item", "seller", "Item"),
    "talent": ("talentProducts", "talentproduct", "creator", "Talent product"),
}


def _kind(kind: str):
    if kind not in KINDS:
        raise HTTPException(400, "Type must be items or talent")
    return KINDS[kind]


def _wishlist_ids(user, field):
    return user.get("wishlist", {}).get(field, [])


def add_to_wishlist(user, kind: str, product_id: str):
    field, collection, owner, label = _kind(kind)
    product = db[collection].find_one({"_id": oid(product_id)})
    if not product or not product.get("isActive", True):
        raise HTTPException(404, f"{label} not found or not available")
    if product[owner] == user["_id"]:
        raise HTTPException(400, f"You cannot add your own {label.lower()} to wishlist")
    res = db["user"].update_one(
        {"_id": user["_id"], f"wishlist.{field}": {"$ne": product["_id"]}},
        {"$push": {f"wishlist.{field}": product["_id"]}},
    )
    if res.modified_count == 0:
        raise HTTPException(400, f"{label} is already in your wishlist")
    return ok(message=f"{label} added to wishlist successfully")


def remove_from_wishlist(user, kind: str, product_id: str):
    field, _, _, label = _kind(kind)
    pid = oid(product_id)
    if pid not in _wishlist_ids(user, field):
        raise HTTPException(400, f"{label} is not in your wishlist")
    db["user"].update_one({"_id": user["_id"]}, {"$pull": {f"wishlist.{field}": pid}})
    return ok(message=f"{label} removed from wishlist successfully")


@router.get("")
def get_wishlist(page: int = 1, limit: int = 12, type: Optional[str] = None, user=Depends(get_current_user)):
    page, limit = max(page, 1), min(max(limit, 1), 100)
    kinds = [type] if type else list(KINDS)
    entries = []
    for kind in kinds:
        field, collection, _, _ = _kind(kind)
        ids = _wishlist_ids(user, field)
        if not ids:
            continue
        for doc in db[collection].find({"_id": {"$in": ids}, "isActive": True}):
            doc["wishlistType"] = "item" if kind == "items" else "talent"
            entries.append(doc)
    entries.sort(key=lambda d: d.get("created_at"), reverse=True)
    start = (page - 1) * limit
    return ok({
        "wishlist": entries[start:start + limit],
        "pagination": pagination(page, limit, len(entries)),
    })


@router.post("/items/{item_id}")
def add_item(item_id: str, user=Depends(get_current_user)):
    return add_to_wishlist(user, "items", item_id)


@router.delete("/items/{item_id}")
def remove_item(item_id: str, user=Depends(get_current_user)):
    return remove_from_wishlist(user, "items", item_id)


@router.post("/talent/{product_id}")
def add_talent(product_id: str, user=Depends(get_current_user)):
    return add_to_wishlist(user, "talent", product_id)


@router.delete("/talent/{product_id}")
def remove_talent(product_id: str, user=Depends(get_current_user)):
    return remove_from_wishlist(user, "talent", product_id)


@router.delete("/clear")
def clear_wishlist(user=Depends(get_current_user)):
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"wishlist.items": [], "wishlist.talentProducts": []}})
    return ok(message="Wishlist cleared successfully")


@router.get("/check/{kind}/{product_id}")
def check_wishlist(kind: str, product_id: str, user=Depends(get_current_user)):
    field, _, _, _ = _kind(kind)
    return ok({"inWishlist": oid(product_id) in _wishlist_ids(user, field)})
