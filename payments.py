import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from auth import admin_required, get_current_user
from config import RAZORPAY_KEY_ID
from database import db
from errors import MarketplaceError
from orders import load_order
from payment_service import PaymentService
from responses import ok

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"])


# Models for API
class CreateGatewayOrder(BaseModel):
    orderId: str
    amount: Optional[float] = Field(None, ge=0)


class VerifyPayload(BaseModel):
    orderId: str
    razorpay_order_id: str = Field(..., min_length=1)
    razorpay_payment_id: str = Field(..., min_length=1)
    razorpay_signature: str = Field(..., min_length=1)


class UpiUploadPayload(BaseModel):
    orderId: str
    transactionId: str = Field(..., min_length=1)
    screenshot: Optional[str] = None


class DisputePayload(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)


class RefundPayload(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)
    amount: Optional[float] = None


def _buyer_order(order_id: str, user):
    order = load_order(order_id)
    if order["buyer"] != user["_id"]:
        raise HTTPException(403, "Access denied. This is not your order.")
    return order


def load_payment(payment_id: str):
    payment = db["payment"].find_one({"paymentId": payment_id})
    if not payment:
        raise HTTPException(404, "Payment not found")
    return payment


def _visible_payment(payment_id: str, user):
    payment = load_payment(payment_id)
    if user["_id"] not in (payment["buyer"], payment["seller"]) and user.get("role") != "admin":
        raise HTTPException(403, "Access denied. You can only view your own payments.")
    return payment


def _public_payment(payment):
    hidden = {"gatewaySignature"}
    return {k: v for k, v in payment.items() if k not in hidden}


# Routes
@router.post("/create-order")
def create_gateway_order(payload: CreateGatewayOrder, user=Depends(get_current_user)):
    order = _buyer_order(payload.orderId, user)
    if order["status"] != "pending":
        raise HTTPException(400, "Order is not in pending status")
    if order["paymentMethod"] != "razorpay":
        raise HTTPException(400, "This order is not set for online payment")
    if payload.amount is not None and round(payload.amount, 2) != round(order["amount"], 2):
        raise HTTPException(400, "Amount does not match the order")

    try:
        gateway_order = PaymentService.create_gateway_order(order)
        payment = PaymentService.open_payment(order, "razorpay", gateway_order["id"])
    except MarketplaceError as e:
        raise e.to_http()
    db["order"].update_one({"_id": order["_id"]}, {"$set": {"paymentDetails.razorpayOrderId": gateway_order["id"]}})
    log.info("Gateway order %s opened for order %s", gateway_order["id"], order["orderId"])
    return ok({
        "razorpayOrderId": gateway_order["id"],
        "amount": gateway_order["amount"],
        "currency": gateway_order["currency"],
        "key": RAZORPAY_KEY_ID,
        "paymentId": payment["paymentId"],
    }, "Payment order created successfully")


@router.post("/verify")
def verify_payment(payload: VerifyPayload, user=Depends(get_current_user)):
    order = _buyer_order(payload.orderId, user)
    try:
        payment, order = PaymentService.process_payment(
            order, payload.razorpay_order_id, payload.razorpay_payment_id, payload.razorpay_signature, user
        )
    except MarketplaceError as e:
        raise e.to_http()
    return ok({"payment": _public_payment(payment), "order": order}, "Payment verified successfully")


@router.post("/upi-upload")
def upi_upload(payload: UpiUploadPayload, user=Depends(get_current_user)):
    order = _buyer_order(payload.orderId, user)
    try:
        payment, order = PaymentService.record_upi_payment(order, payload.transactionId, payload.screenshot, user)
    except MarketplaceError as e:
        raise e.to_http()
    return ok({"payment": _public_payment(payment), "order": order}, "UPI payment details uploaded successfully")


@router.get("/order/{order_id}")
def payment_for_order(order_id: str, user=Depends(get_current_user)):
    order = load_order(order_id)
    if user["_id"] not in (order["buyer"], order["seller"]):
        raise HTTPException(403, "Access denied. You can only view payment details for your own orders.")
    payment = db["payment"].find_one({"order": order["_id"]})
    return ok({
        "payment": {
            "orderId": order["_id"],
            "amount": order["amount"],
            "paymentMethod": order["paymentMethod"],
            "status": order["status"],
            "createdAt": order.get("created_at"),
            "paymentDetails": {
                "razorpayOrderId": order.get("paymentDetails", {}).get("razorpayOrderId"),
                "upiTransactionId": order.get("paymentDetails", {}).get("upiTransactionId"),
            },
            "record": _public_payment(payment) if payment else None,
        }
    })


@router.get("/earnings")
def earnings(period: str = "month", user=Depends(get_current_user)):
    return ok({"earnings": PaymentService.seller_earnings(user["_id"], period)})


@router.get("/{payment_id}")
def get_payment(payment_id: str, user=Depends(get_current_user)):
    return ok({"payment": _public_payment(_visible_payment(payment_id, user))})


@router.get("/{payment_id}/receipt")
def get_receipt(payment_id: str, user=Depends(get_current_user)):
    return ok({"receipt": PaymentService.generate_receipt(_visible_payment(payment_id, user))})


@router.post("/{payment_id}/confirm-delivery")
def confirm_delivery(payment_id: str, user=Depends(get_current_user)):
    payment = load_payment(payment_id)
    try:
        payment = PaymentService.confirm_delivery(payment, user)
    except MarketplaceError as e:
        raise e.to_http()
    return ok({"payment": _public_payment(payment)}, "Delivery confirmed, payment released to seller")


@router.post("/{payment_id}/dispute")
def raise_dispute(payment_id: str, payload: DisputePayload, user=Depends(get_current_user)):
    payment = load_payment(payment_id)
    try:
        payment = PaymentService.raise_dispute(payment, payload.reason.strip(), user)
    except MarketplaceError as e:
        raise e.to_http()
    return ok({"payment": _public_payment(payment)}, "Dispute raised successfully")


@router.post("/{payment_id}/refund")
def refund_payment(payment_id: str, payload: RefundPayload, admin=Depends(admin_required)):
    payment = load_payment(payment_id)
    try:
        payment, refund = PaymentService.process_refund(payment, payload.amount, payload.reason.strip(), admin)
    except MarketplaceError as e:
        raise e.to_http()
    message = "Refund processed successfully"
    if refund.get("manual"):
        message = "Payment marked as refunded. Manual refund process required."
    return ok({"payment": _public_payment(payment), "refund": refund}, message)
