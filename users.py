import re
from typing import Optional, get_args

from fastapi import APIRouter, Depends, HTTPException

from auth import get_current_user
from database import db, oid
from order_workflow import order_stats
from responses import ok, pagination
from schemas import ItemStatus

router = APIRouter(prefix="/api/users", tags=["users"])

# contact details and the wishlist stay private
PUBLIC_FIELDS = {"name": 1, "bio": 1, "hostel": 1, "role": 1, "stats": 1, "created_at": 1}


def _load_public(user_id: str):
    user = db["user"].find_one({"_id": oid(user_id), "isActive": True}, PUBLIC_FIELDS)
    if not user:
        raise HTTPException(404, "User not found")
    return user


@router.get("")
def list_users(page: int = 1, limit: int = 20, search: Optional[str] = None, hostel: Optional[str] = None):
    page, limit = max(page, 1), min(max(limit, 1), 100)
    filt = {"isActive": True}
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        filt["$or"] = [{"name": pattern}, {"bio": pattern}]
    if hostel:
        filt["hostel"] = hostel
    total = db["user"].count_documents(filt)
    users = list(
        db["user"].find(filt, PUBLIC_FIELDS)
        .sort([("stats.rating", -1), ("created_at", -1)])
        .skip((page - 1) * limit)
        .limit(limit)
    )
    return ok({"users": users, "pagination": pagination(page, limit, total)})


@router.get("/me/dashboard")
def my_dashboard(user=Depends(get_current_user)):
    uid = user["_id"]
    listed = list(db["item"].find({"seller": uid, "isActive": True}, {"views": 1, "likes": 1}))
    stats = {
        "activeItems": db["item"].count_documents({"seller": uid, "isActive": True, "availability.status": "available"}),
        "soldItems": db["item"].count_documents({"seller": uid, "availability.status": "sold"}),
        "talentProducts": db["talentproduct"].count_documents({"creator": uid, "isActive": True}),
        "totalViews": sum(i.get("views", 0) for i in listed),
        "totalLikes": sum(len(i.get("likes", [])) for i in listed),
        "orders": {"buyer": order_stats(uid, "buyer"), "seller": order_stats(uid, "seller")},
    }
    recent_items = list(
        db["item"].find({"seller": uid, "isActive": True}, {"title": 1, "price": 1, "images": 1, "views": 1,
                                                           "availability.status": 1, "created_at": 1})
        .sort("created_at", -1).limit(5)
    )
    return ok({
        "stats": stats,
        "recentItems": recent_items,
        "recentBuyerOrders": list(db["order"].find({"buyer": uid}).sort("created_at", -1).limit(5)),
        "recentSellerOrders": list(db["order"].find({"seller": uid}).sort("created_at", -1).limit(5)),
    })


@router.get("/{user_id}")
def get_profile(user_id: str):
    user = _load_public(user_id)
    items = list(
        db["item"].find({"seller": user["_id"], "isActive": True, "availability.status": "available"})
        .sort("created_at", -1).limit(6)
    )
    talent = list(
        db["talentproduct"].find({"creator": user["_id"], "isActive": True}).sort("created_at", -1).limit(6)
    )
    return ok({"user": user, "items": items, "talentProducts": talent})


@router.get("/{user_id}/items")
def user_items(user_id: str, page: int = 1, limit: int = 12, status: str = "available"):
    user = _load_public(user_id)
    page, limit = max(page, 1), min(max(limit, 1), 100)
    filt = {"seller": user["_id"], "isActive": True}
    if status != "all":
        if status not in get_args(ItemStatus):
            raise HTTPException(400, f"Invalid status: {status}")
        filt["availability.status"] = status
    total = db["item"].count_documents(filt)
    items = list(db["item"].find(filt).sort("created_at", -1).skip((page - 1) * limit).limit(limit))
    return ok({"items": items, "pagination": pagination(page, limit, total)})


@router.get("/{user_id}/talent")
def user_talent(user_id: str, page: int = 1, limit: int = 12):
    user = _load_public(user_id)
    page, limit = max(page, 1), min(max(limit, 1), 100)
    filt = {"creator": user["_id"], "isActive": True}
    total = db["talentproduct"].count_documents(filt)
    products = list(db["talentproduct"].find(filt).sort("created_at", -1).skip((page - 1) * limit).limit(limit))
    return ok({"talentProducts": products, "pagination": pagination(page, limit, total)})
