import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from pymongo.errors import PyMongoError

from auth import get_current_user
from database import db, now_utc, oid
from errors import MarketplaceError
from order_workflow import (
    actor_role,
    generate_order_id,
    order_stats,
    release_item,
    reserve_item,
    transition_order,
    workflow_definition,
)
from payment_service import PaymentService
from responses import ok, pagination
from schemas import Order as OrderSchema, OrderMessage, OrderStatus, OrderType, PaymentMethod
from talent import book_slot, package_price, release_slot

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders", tags=["orders"])


class CreateOrderPayload(BaseModel):
    type: OrderType
    item: Optional[str] = None
    talentProduct: Optional[str] = None
    seller: Optional[str] = None
    amount: Optional[float] = Field(None, ge=0)
    paymentMethod: PaymentMethod
    deliveryInfo: Dict[str, Any] = {}
    metadata: Dict[str, Any] = {}


class StatusPayload(BaseModel):
    status: OrderStatus
    metadata: Dict[str, Any] = {}


class MessagePayload(BaseModel):
    message: str = Field(..., max_length=500)


def load_order(order_id: str):
    order = db["order"].find_one({"_id": oid(order_id)})
    if not order:
        raise HTTPException(404, "Order not found")
    return order


def load_participant_order(order_id: str, user, action: str = "view"):
    order = load_order(order_id)
    if actor_role(order, user["_id"]) is None:
        raise HTTPException(403, f"Access denied. You can only {action} your own orders.")
    return order


def _resolve_product(payload: CreateOrderPayload):
    """Return (collection, product, owner id, amount, category) for the order."""
    if payload.type == "item":
        if not payload.item:
            raise HTTPException(400, "Item ID is required for item orders")
        product = db["item"].find_one({"_id": oid(payload.item)})
        if not product or not product.get("isActive", True) or product["availability"]["status"] != "available":
            raise HTTPException(400, "Item is not available for purchase")
        return "item", product, product["seller"], float(product["price"]), product.get("category")

    if not payload.talentProduct:
        raise HTTPException(400, "Talent product ID is required for talent orders")
    product = db["talentproduct"].find_one({"_id": oid(payload.talentProduct)})
    if not product or not product.get("isActive", True):
        raise HTTPException(400, "Talent product is not available for purchase")
    try:
        amount = package_price(product, payload.metadata.get("packageSelected"))
    except MarketplaceError as e:
        raise e.to_http()
    return "talentproduct", product, product["creator"], amount, product.get("category")


@router.get("/workflow")
def get_workflow():
    return ok({"workflow": workflow_definition()})


@router.post("", status_code=201)
def create_order(payload: CreateOrderPayload, user=Depends(get_current_user)):
    collection, product, seller_id, amount, category = _resolve_product(payload)

    if payload.seller and oid(payload.seller) != seller_id:
        raise HTTPException(400, "Seller does not own this product")
    if not db["user"].find_one({"_id": seller_id, "isActive": True}):
        raise HTTPException(404, "Seller not found")
    if seller_id == user["_id"]:
        raise HTTPException(400, "You cannot purchase your own items")
    if payload.amount is not None and round(payload.amount, 2) != round(amount, 2):
        raise HTTPException(400, "Amount does not match the listed price")

    if collection == "item":
        if not reserve_item(product["_id"], user["_id"]):
            log.warning("Item %s was taken before %s could reserve it", product["_id"], user["_id"])
            raise HTTPException(400, "Item is not available for purchase")
    else:
        try:
            book_slot(product)
        except MarketplaceError as e:
            raise e.to_http()

    order = OrderSchema(
        orderId=generate_order_id(),
        buyer=user["_id"],
        seller=seller_id,
        item=product["_id"] if collection == "item" else None,
        talentProduct=product["_id"] if collection == "talentproduct" else None,
        type=payload.type,
        category=category,
        amount=amount,
        paymentMethod=payload.paymentMethod,
        deliveryInfo=payload.deliveryInfo,
        metadata=payload.metadata,
        statusHistory=[{"status": "pending", "by": user["_id"], "role": "buyer", "at": now_utc()}],
    )
    doc = order.model_dump(exclude_none=True)
    doc["created_at"] = doc["updated_at"] = now_utc()
    try:
        res = db["order"].insert_one(doc)
    except PyMongoError:
        log.exception("Order insert failed, releasing %s %s", collection, product["_id"])
        if collection == "item":
            release_item(product["_id"], user["_id"])
        else:
            release_slot(product["_id"])
        raise

    log.info("Order %s created: buyer=%s seller=%s amount=%s", doc["orderId"], user["_id"], seller_id, amount)
    return ok({"order": db["order"].find_one({"_id": res.inserted_id})}, "Order created successfully")


@router.get("")
def list_orders(
    page: int = 1,
    limit: int = 10,
    status: Optional[str] = None,
    type: Optional[str] = None,
    role: str = "buyer",
    user=Depends(get_current_user),
):
    page, limit = max(page, 1), min(max(limit, 1), 100)
    if role == "buyer":
        filt = {"buyer": user["_id"]}
    elif role == "seller":
        filt = {"seller": user["_id"]}
    else:
        filt = {"$or": [{"buyer": user["_id"]}, {"seller": user["_id"]}]}
    if status:
        filt["status"] = status
    if type:
        filt["type"] = type
    total = db["order"].count_documents(filt)
    cursor = db["order"].find(filt).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    return ok({"orders": list(cursor), "pagination": pagination(page, limit, total)})


@router.get("/stats")
def get_stats(user=Depends(get_current_user)):
    return ok({"buyer": order_stats(user["_id"], "buyer"), "seller": order_stats(user["_id"], "seller")})


@router.get("/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user)):
    return ok({"order": load_participant_order(order_id, user)})


@router.put("/{order_id}/status")
def update_order_status(order_id: str, payload: StatusPayload, user=Depends(get_current_user)):
    order = load_order(order_id)
    try:
        updated = transition_order(order, payload.status, actor_role(order, user["_id"]), user["_id"], payload.metadata)
    except MarketplaceError as e:
        raise e.to_http()
    if payload.status == "refunded":
        PaymentService.settle_seller_refund(updated, user)
    elif payload.status == "cancelled":
        PaymentService.freeze_escrow(updated, user)
    elif payload.status == "completed":
        PaymentService.release_escrow(updated, user)
    return ok({"order": updated}, "Order status updated successfully")


@router.post("/{order_id}/messages")
def add_message(order_id: str, payload: MessagePayload, user=Depends(get_current_user)):
    text = payload.message.strip()
    if not text:
        raise HTTPException(400, "Message content is required")
    order = load_participant_order(order_id, user, "message on")
    db["order"].update_one(
        {"_id": order["_id"]},
        {"$push": {"communication": OrderMessage(sender=user["_id"], message=text, timestamp=now_utc()).model_dump()}},
    )
    return ok({"order": db["order"].find_one({"_id": order["_id"]})}, "Message added successfully")


@router.put("/{order_id}/messages/read")
def mark_messages_read(order_id: str, user=Depends(get_current_user)):
    order = load_participant_order(order_id, user, "mark messages as read on")
    communication = order.get("communication", [])
    for msg in communication:
        if msg["sender"] != user["_id"]:
            msg["isRead"] = True
    db["order"].update_one({"_id": order["_id"]}, {"$set": {"communication": communication}})
    return ok({"order": db["order"].find_one({"_id": order["_id"]})}, "Messages marked as read")
