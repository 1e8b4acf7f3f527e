import logging
import re
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

import commission
from auth import admin_required, hash_password
from database import create_document, db, get_documents, now_utc, oid
from errors import MarketplaceError
from payment_service import PaymentService
from payments import load_payment
from responses import ok, pagination
from schemas import Item as ItemSchema, TalentProduct as TalentProductSchema, User as UserSchema

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(admin_required)])


class UserStatusPayload(BaseModel):
    isActive: bool


class ItemModerationPayload(BaseModel):
    isActive: Optional[bool] = None
    availabilityStatus: Optional[Literal["available", "sold", "inactive"]] = None


class ResolveReportsPayload(BaseModel):
    action: Literal["dismiss", "remove"]


class CommissionPayload(BaseModel):
    year: int = Field(..., ge=2000, le=2100)
    month: int = Field(..., ge=1, le=12)


class BankTransferPayload(BaseModel):
    reference: Optional[str] = None
    account: Optional[str] = None
    notes: Optional[str] = None


class ResolveDisputePayload(BaseModel):
    resolution: str = Field(..., min_length=1, max_length=1000)


def _page(page: int, limit: int):
    return max(page, 1), min(max(limit, 1), 100)


def _money_totals() -> dict:
    rows = list(db["payment"].aggregate([
        {"$match": {"status": {"$in": ["completed", "disputed"]}}},
        {"$group": {
            "_id": "$escrowStatus",
            "amount": {"$sum": "$totalAmount"},
            "commission": {"$sum": "$platformCommission"},
            "count": {"$sum": 1},
        }},
    ]))
    by_escrow = {r["_id"]: r for r in rows}
    held = by_escrow.get("held", {})
    released = by_escrow.get("released", {})
    frozen = by_escrow.get("frozen", {})
    return {
        "volume": sum(r["amount"] for r in rows),
        "heldInEscrow": held.get("amount", 0),
        "frozenAwaitingRefund": frozen.get("amount", 0),
        "releasedToSellers": released.get("amount", 0),
        "commissionEarned": released.get("commission", 0),
        "completedPayments": sum(r["count"] for r in rows),
    }


# Dashboard

@router.get("/dashboard")
def dashboard():
    stats = {
        "users": {
            "total": db["user"].count_documents({}),
            "active": db["user"].count_documents({"isActive": True}),
        },
        "items": {
            "total": db["item"].count_documents({}),
            "active": db["item"].count_documents({"isActive": True, "availability.status": "available"}),
            "sold": db["item"].count_documents({"availability.status": "sold"}),
            "reported": db["item"].count_documents({"reports.0": {"$exists": True}}),
        },
        "talentProducts": db["talentproduct"].count_documents({"isActive": True}),
        "orders": {
            "total": db["order"].count_documents({}),
            "pending": db["order"].count_documents({"status": "pending"}),
            "completed": db["order"].count_documents({"status": "completed"}),
        },
        "payments": _money_totals(),
        "openDisputes": db["payment"].count_documents({"status": "disputed"}),
    }
    recent = {
        "users": list(db["user"].find({}, {"name": 1, "email": 1, "created_at": 1}).sort("created_at", -1).limit(5)),
        "items": list(db["item"].find({}, {"title": 1, "price": 1, "seller": 1, "created_at": 1}).sort("created_at", -1).limit(5)),
        "orders": list(db["order"].find().sort("created_at", -1).limit(5)),
    }
    return ok({"stats": stats, "recent": recent})


# Users

@router.get("/users")
def list_users(page: int = 1, limit: int = 20, q: Optional[str] = None, isActive: Optional[bool] = None):
    page, limit = _page(page, limit)
    filt = {}
    if q:
        pattern = {"$regex": re.escape(q), "$options": "i"}
        filt["$or"] = [{"name": pattern}, {"email": pattern}]
    if isActive is not None:
        filt["isActive"] = isActive
    total = db["user"].count_documents(filt)
    users = list(db["user"].find(filt).sort("created_at", -1).skip((page - 1) * limit).limit(limit))
    return ok({"users": users, "pagination": pagination(page, limit, total)})


@router.put("/users/{user_id}/status")
def set_user_status(user_id: str, payload: UserStatusPayload, admin=Depends(admin_required)):
    uid = oid(user_id)
    if uid == admin["_id"] and not payload.isActive:
        raise HTTPException(400, "You cannot deactivate your own account")
    res = db["user"].update_one({"_id": uid}, {"$set": {"isActive": payload.isActive, "updated_at": now_utc()}})
    if res.matched_count == 0:
        raise HTTPException(404, "User not found")
    if not payload.isActive:
        db["session"].delete_many({"user": uid})
    log.info("User %s %s by %s", uid, "activated" if payload.isActive else "deactivated", admin["_id"])
    return ok(
        {"user": db["user"].find_one({"_id": uid})},
        f"User {'activated' if payload.isActive else 'deactivated'} successfully",
    )


# Items

@router.get("/items")
def list_items(page: int = 1, limit: int = 20, status: Optional[str] = None, isActive: Optional[bool] = None):
    page, limit = _page(page, limit)
    filt = {}
    if status:
        filt["availability.status"] = status
    if isActive is not None:
        filt["isActive"] = isActive
    total = db["item"].count_documents(filt)
    items = list(db["item"].find(filt).sort("created_at", -1).skip((page - 1) * limit).limit(limit))
    return ok({"items": items, "pagination": pagination(page, limit, total)})


@router.put("/items/{item_id}/status")
def moderate_item(item_id: str, payload: ItemModerationPayload):
    item = db["item"].find_one({"_id": oid(item_id)})
    if not item:
        raise HTTPException(404, "Item not found")
    update = {}
    if payload.isActive is not None:
        update["isActive"] = payload.isActive
    if payload.availabilityStatus:
        if item.get("availability", {}).get("status") == "reserved":
            raise HTTPException(400, "Item has an open order, cancel the order first")
        update["availability.status"] = payload.availabilityStatus
    if not update:
        raise HTTPException(400, "Nothing to update")
    update["updated_at"] = now_utc()
    db["item"].update_one({"_id": item["_id"]}, {"$set": update})
    return ok({"item": db["item"].find_one({"_id": item["_id"]})}, "Item status updated successfully")


@router.get("/reports")
def reported_items(page: int = 1, limit: int = 20, reason: Optional[str] = None):
    page, limit = _page(page, limit)
    filt = {"reports.0": {"$exists": True}}
    if reason:
        filt["reports.reason"] = reason
    total = db["item"].count_documents(filt)
    items = list(db["item"].find(filt).sort("created_at", -1).skip((page - 1) * limit).limit(limit))
    return ok({"reportedItems": items, "pagination": pagination(page, limit, total)})


@router.post("/items/{item_id}/resolve-reports")
def resolve_reports(item_id: str, payload: ResolveReportsPayload):
    item = db["item"].find_one({"_id": oid(item_id)})
    if not item:
        raise HTTPException(404, "Item not found")
    update = {"reports": [], "updated_at": now_utc()}
    if payload.action == "remove":
        update["isActive"] = False
    db["item"].update_one({"_id": item["_id"]}, {"$set": update})
    log.info("Reports on item %s resolved (%s)", item["_id"], payload.action)
    message = "Reports dismissed successfully" if payload.action == "dismiss" else "Reports resolved and item removed successfully"
    return ok({"item": db["item"].find_one({"_id": item["_id"]})}, message)


# Commissions

@router.post("/commissions", status_code=201)
def create_commission(payload: CommissionPayload, admin=Depends(admin_required)):
    try:
        batch = commission.create_monthly_commission(payload.year, payload.month, admin["_id"])
    except MarketplaceError as e:
        raise e.to_http()
    return ok({"commission": batch}, "Monthly commission calculated successfully")


@router.get("/commissions")
def list_commissions(page: int = 1, limit: int = 12, year: Optional[int] = None, status: Optional[str] = None):
    page, limit = _page(page, limit)
    filt = {}
    if year:
        filt["year"] = year
    if status:
        filt["status"] = status
    total = db["commission"].count_documents(filt)
    cursor = db["commission"].find(filt).sort([("year", -1), ("month", -1)]).skip((page - 1) * limit).limit(limit)
    return ok({"commissions": list(cursor), "pagination": pagination(page, limit, total)})


@router.get("/commissions/yearly/{year}")
def yearly_commissions(year: int):
    return ok({"summary": commission.yearly_commission(year)})


@router.put("/commissions/{batch_id}/processed")
def commission_processed(batch_id: str, admin=Depends(admin_required)):
    try:
        batch = commission.mark_processed(batch_id, admin["_id"])
    except LookupError as e:
        raise HTTPException(404, str(e))
    except MarketplaceError as e:
        raise e.to_http()
    return ok({"commission": batch}, "Commission marked as processed")


@router.put("/commissions/{batch_id}/paid")
def commission_paid(batch_id: str, payload: Optional[BankTransferPayload] = None):
    bank_transfer = payload.model_dump(exclude_none=True) if payload else None
    try:
        batch = commission.mark_paid(batch_id, bank_transfer)
    except LookupError as e:
        raise HTTPException(404, str(e))
    except MarketplaceError as e:
        raise e.to_http()
    return ok({"commission": batch}, "Commission marked as paid")


# Disputes

@router.get("/disputes")
def open_disputes():
    return ok({"payments": list(db["payment"].find({"status": "disputed"}, {"gatewaySignature": 0}).sort("disputeRaisedAt", 1))})


@router.post("/payments/{payment_id}/resolve-dispute")
def resolve_dispute(payment_id: str, payload: ResolveDisputePayload, admin=Depends(admin_required)):
    payment = load_payment(payment_id)
    try:
        payment = PaymentService.resolve_dispute(payment, payload.resolution.strip(), admin)
    except MarketplaceError as e:
        raise e.to_http()
    payment.pop("gatewaySignature", None)
    return ok({"payment": payment}, "Dispute resolved")


# Seed data
DEMO_SELLER = {"name": "Demo Seller", "email": "demo.seller@campus.edu", "hostel": "H1", "room": "101"}

SAMPLE_ITEMS = [
    {"title": "Engineering Mathematics by B.S. Grewal", "description": "43rd edition, a few highlights, no torn pages.",
     "price": 350, "originalPrice": 750, "category": "Books", "condition": "Good", "tags": ["books", "maths"]},
    {"title": "Casio fx-991ES Plus calculator", "description": "Allowed in exams. Works perfectly, with cover.",
     "price": 600, "originalPrice": 1100, "category": "Electronics", "condition": "Like New", "tags": ["calculator"]},
    {"title": "Hercules cycle with lock", "description": "Single speed, new tyres last semester.",
     "price": 2500, "category": "Cycles", "condition": "Fair", "tags": ["cycle", "transport"], "negotiable": True},
    {"title": "Study table lamp", "description": "LED, three brightness levels, USB powered.",
     "price": 400, "category": "Hostel", "condition": "Good", "tags": ["lamp", "hostel"]},
    {"title": "Lab coat (size M)", "description": "Used for one semester of chemistry lab.",
     "price": 150, "originalPrice": 300, "category": "Clothing", "condition": "Good", "tags": ["lab"], "urgent": True},
]

SAMPLE_TALENT = [
    {"name": "Portrait sketches", "description": "Pencil portrait from a photo, A4 size.", "price": 300,
     "category": "Art", "type": "physical", "tags": ["sketch", "portrait"],
     "pricing": {"basePrice": 300, "packages": [{"name": "A3", "price": 500, "deliveryTime": "5 days"}]},
     "availability": {"status": "available", "slots": 5}},
    {"name": "Python assignment help", "description": "One hour walkthrough of your code and concepts.", "price": 250,
     "category": "Tutoring", "type": "service", "tags": ["python", "tutoring"],
     "pricing": {"basePrice": 250, "packages": []}},
]


@router.post("/seed")
def seed():
    seller = db["user"].find_one({"email": DEMO_SELLER["email"]})
    if not seller:
        user = UserSchema(**DEMO_SELLER, passwordHash=hash_password("demo1234"))
        seller_id = oid(create_document("user", user))
    else:
        seller_id = seller["_id"]

    existing = get_documents("item", {"seller": seller_id})
    if len(existing) >= len(SAMPLE_ITEMS):
        return ok({"seeded": True, "items": len(existing)})

    for data in SAMPLE_ITEMS:
        create_document("item", ItemSchema(**data, seller=seller_id))
    for data in SAMPLE_TALENT:
        create_document("talentproduct", TalentProductSchema(**data, creator=seller_id))
    log.info("Seeded %s items and %s talent products", len(SAMPLE_ITEMS), len(SAMPLE_TALENT))
    return ok({"seeded": True, "items": len(SAMPLE_ITEMS), "talentProducts": len(SAMPLE_TALENT)})
