import hashlib
import hmac
import logging
import time
from datetime import datetime, timedelta
from typing import Optional

import requests

from commission import compute_commission
from config import COMMISSION_RATE, CURRENCY, RAZORPAY_API, RAZORPAY_KEY_ID, RAZORPAY_KEY_SECRET
from database import db, now_utc
from errors import (
    ConcurrentUpdateError,
    MarketplaceError,
    OrderTransitionError,
    PaymentGatewayError,
    TransitionForbidden,
)
from order_workflow import actor_role, check_transition, transition_order
from schemas import Payment as PaymentSchema

log = logging.getLogger(__name__)

GATEWAY_TIMEOUT = 10


def gateway_enabled() -> bool:
    return bool(RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET)


def to_paise(amount) -> int:
    return int(round(float(amount) * 100))


class PaymentService:
    # Gateway

    @staticmethod
    def create_gateway_order(order) -> dict:
        body = {
            "amount": to_paise(order["amount"]),
            "currency": CURRENCY,
            "receipt": f"order_{order['orderId']}",
            "notes": {
                "orderId": str(order["_id"]),
                "buyerId": str(order["buyer"]),
                "sellerId": str(order["seller"]),
            },
        }
        if not gateway_enabled():
            # development mode, no keys configured
            return {"id": f"order_dev_{order['orderId']}", "amount": body["amount"], "currency": CURRENCY}
        try:
            resp = requests.post(
                f"{RAZORPAY_API}/orders",
                auth=(RAZORPAY_KEY_ID, RAZORPAY_KEY_SECRET),
                json=body,
                timeout=GATEWAY_TIMEOUT,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            log.error("Razorpay order creation failed for %s: %s", order["orderId"], e)
            raise PaymentGatewayError("Failed to create payment order with gateway")
        return resp.json()

    @staticmethod
    def refund_gateway_payment(payment, amount, reason: str) -> dict:
        if payment.get("gateway") != "razorpay" or not payment.get("gatewayPaymentId"):
            return {"id": None, "amount": to_paise(amount), "manual": True}
        if not gateway_enabled():
            return {"id": f"rfnd_dev_{payment['paymentId']}", "amount": to_paise(amount)}
        try:
            resp = requests.post(
                f"{RAZORPAY_API}/payments/{payment['gatewayPaymentId']}/refund",
                auth=(RAZORPAY_KEY_ID, RAZORPAY_KEY_SECRET),
                json={"amount": to_paise(amount), "notes": {"reason": reason, "paymentId": payment["paymentId"]}},
                timeout=GATEWAY_TIMEOUT,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            log.error("Razorpay refund failed for %s: %s", payment["paymentId"], e)
            raise PaymentGatewayError("Failed to process refund through gateway")
        return resp.json()

    @staticmethod
    def verify_signature(gateway_order_id: str, gateway_payment_id: str, signature: str) -> bool:
        if not RAZORPAY_KEY_SECRET or not signature:
            return False
        msg = f"{gateway_order_id}|{gateway_payment_id}".encode()
        expected = hmac.new(RAZORPAY_KEY_SECRET.encode(), msg, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature)

    # Payment records

    @staticmethod
    def open_payment(order, gateway: str, gateway_order_id: Optional[str] = None):
        """Create, or refresh while still pending, the payment record for ``order``."""
        commission, seller_amount = compute_commission(order["amount"], COMMISSION_RATE)
        existing = db["payment"].find_one({"order": order["_id"]})
        if existing:
            if existing["status"] != "pending":
                raise OrderTransitionError("Payment for this order has already been processed")
            db["payment"].update_one(
                {"_id": existing["_id"], "status": "pending"},
                {"$set": {
                    "gateway": gateway,
                    "gatewayOrderId": gateway_order_id,
                    "totalAmount": order["amount"],
                    "commissionRate": COMMISSION_RATE,
                    "platformCommission": commission,
                    "sellerAmount": seller_amount,
                    "updated_at": now_utc(),
                }},
            )
            return db["payment"].find_one({"_id": existing["_id"]})

        payment = PaymentSchema(
            paymentId=f"PAY_{int(time.time() * 1000)}_{order['_id']}",
            order=order["_id"],
            buyer=order["buyer"],
            seller=order["seller"],
            totalAmount=order["amount"],
            commissionRate=COMMISSION_RATE,
            platformCommission=commission,
            sellerAmount=seller_amount,
            gateway=gateway,
            gatewayOrderId=gateway_order_id,
            currency=CURRENCY,
        )
        doc = payment.model_dump(exclude_none=True)
        doc["created_at"] = doc["updated_at"] = now_utc()
        res = db["payment"].insert_one(doc)
        return db["payment"].find_one({"_id": res.inserted_id})

    @staticmethod
    def _complete(payment, fields: dict):
        res = db["payment"].update_one(
            {"_id": payment["_id"], "status": "pending"},
            {"$set": {"status": "completed", "escrowStatus": "held", "updated_at": now_utc(), **fields}},
        )
        if res.modified_count == 0:
            raise ConcurrentUpdateError("Payment has already been processed")

    @staticmethod
    def _reopen(payment):
        db["payment"].update_one(
            {"_id": payment["_id"], "status": "completed"},
            {
                "$set": {"status": "pending", "verificationStatus": "pending", "updated_at": now_utc()},
                "$unset": {"gatewayPaymentId": "", "gatewaySignature": "", "paymentProof": ""},
            },
        )

    @classmethod
    def process_payment(cls, order, gateway_order_id: str, gateway_payment_id: str, signature: str, user):
        """Verify a gateway callback and settle the order into escrow.

        Nothing is written unless the signature checks out. If the order can no
        longer move to ``paid`` the payment is put back to pending.
        """
        if order.get("paymentDetails", {}).get("razorpayOrderId") != gateway_order_id:
            raise OrderTransitionError("Payment does not belong to this order")
        if not cls.verify_signature(gateway_order_id, gateway_payment_id, signature):
            log.warning("Rejected payment signature for order %s", order["orderId"])
            raise OrderTransitionError("Payment verification failed. Invalid signature.")

        payment = db["payment"].find_one({"order": order["_id"]})
        if not payment:
            raise OrderTransitionError("No payment has been initiated for this order")
        cls._complete(payment, {
            "gatewayPaymentId": gateway_payment_id,
            "gatewaySignature": signature,
            "verificationStatus": "verified",
            "paymentProof": {"transactionId": gateway_payment_id, "timestamp": now_utc()},
        })
        try:
            updated_order = transition_order(order, "paid", actor_role(order, user["_id"]), user["_id"])
        except MarketplaceError:
            cls._reopen(payment)
            raise
        db["order"].update_one(
            {"_id": order["_id"]},
            {"$set": {
                "paymentDetails.razorpayPaymentId": gateway_payment_id,
                "paymentDetails.razorpaySignature": signature,
            }},
        )
        log.info("Payment %s verified for order %s, held in escrow", payment["paymentId"], order["orderId"])
        return db["payment"].find_one({"_id": payment["_id"]}), updated_order

    @classmethod
    def record_upi_payment(cls, order, transaction_id: str, screenshot: Optional[str], user):
        if order["paymentMethod"] != "upi":
            raise OrderTransitionError("This order is not set for UPI payment")
        payment = cls.open_payment(order, "upi")
        cls._complete(payment, {
            "gatewayPaymentId": transaction_id,
            "paymentProof": {"transactionId": transaction_id, "screenshot": screenshot, "timestamp": now_utc()},
        })
        try:
            updated_order = transition_order(order, "paid", actor_role(order, user["_id"]), user["_id"])
        except MarketplaceError:
            cls._reopen(payment)
            raise
        details = {"paymentDetails.upiTransactionId": transaction_id}
        if screenshot:
            details["paymentDetails.screenshot"] = screenshot
        db["order"].update_one({"_id": order["_id"]}, {"$set": details})
        log.info("UPI payment %s recorded for order %s, awaiting seller verification", transaction_id, order["orderId"])
        return db["payment"].find_one({"_id": payment["_id"]}), updated_order

    # Escrow, disputes, refunds

    @staticmethod
    def _hold_again(payment):
        db["payment"].update_one(
            {"_id": payment["_id"], "escrowStatus": "released"},
            {
                "$set": {"escrowStatus": "held", "deliveryConfirmed": False, "updated_at": now_utc()},
                "$unset": {"deliveryConfirmedAt": "", "deliveryConfirmedBy": ""},
            },
        )

    @classmethod
    def confirm_delivery(cls, payment, user):
        """Release the escrow to the seller and complete the delivered order.

        If the order cannot be completed the escrow goes back to ``held``.
        """
        if payment["buyer"] != user["_id"]:
            raise TransitionForbidden("Only the buyer can confirm delivery")
        if payment["status"] != "completed" or payment["escrowStatus"] != "held":
            raise OrderTransitionError("Payment is not in escrow")
        order = db["order"].find_one({"_id": payment["order"]})
        if order is None or order["status"] != "delivered":
            raise OrderTransitionError("Order must be delivered before confirming delivery")

        stamp = now_utc()
        res = db["payment"].update_one(
            {"_id": payment["_id"], "status": "completed", "escrowStatus": "held"},
            {"$set": {
                "escrowStatus": "released",
                "deliveryConfirmed": True,
                "deliveryConfirmedAt": stamp,
                "deliveryConfirmedBy": user["_id"],
                "updated_at": stamp,
            }},
        )
        if res.modified_count == 0:
            raise ConcurrentUpdateError("Payment was updated by another request, please reload")
        try:
            transition_order(order, "completed", "buyer", user["_id"])
        except MarketplaceError:
            cls._hold_again(payment)
            raise
        log.info("Escrow released for payment %s", payment["paymentId"])
        return db["payment"].find_one({"_id": payment["_id"]})

    @staticmethod
    def raise_dispute(payment, reason: str, user):
        if user["_id"] not in (payment["buyer"], payment["seller"]):
            raise TransitionForbidden("Only the buyer or seller can raise a dispute")
        if payment["status"] != "completed":
            raise OrderTransitionError(f"Cannot dispute a payment that is {payment['status']}")
        stamp = now_utc()
        res = db["payment"].update_one(
            {"_id": payment["_id"], "status": "completed"},
            {"$set": {
                "status": "disputed",
                "disputeRaised": True,
                "disputeReason": reason,
                "disputeRaisedAt": stamp,
                "disputeRaisedBy": user["_id"],
                "updated_at": stamp,
            }},
        )
        if res.modified_count == 0:
            raise ConcurrentUpdateError("Payment was updated by another request, please reload")
        log.info("Dispute raised on payment %s: %s", payment["paymentId"], reason)
        return db["payment"].find_one({"_id": payment["_id"]})

    @staticmethod
    def resolve_dispute(payment, resolution: str, admin):
        if payment["status"] != "disputed":
            raise OrderTransitionError("Payment is not disputed")
        stamp = now_utc()
        res = db["payment"].update_one(
            {"_id": payment["_id"], "status": "disputed"},
            {"$set": {
                "status": "completed",
                "disputeResolution": resolution,
                "disputeResolvedAt": stamp,
                "disputeResolvedBy": admin["_id"],
                "updated_at": stamp,
            }},
        )
        if res.modified_count == 0:
            raise ConcurrentUpdateError("Payment was updated by another request, please reload")
        log.info("Dispute on payment %s resolved by %s", payment["paymentId"], admin["_id"])
        return db["payment"].find_one({"_id": payment["_id"]})

    @classmethod
    def process_refund(cls, payment, amount: Optional[float], reason: str, admin):
        if payment["status"] not in ("completed", "disputed"):
            raise OrderTransitionError(f"Cannot refund a payment that is {payment['status']}")
        amount = payment["totalAmount"] if amount is None else amount
        if amount <= 0 or amount > payment["totalAmount"]:
            raise OrderTransitionError("Refund amount must be greater than 0 and at most the amount paid")

        order = db["order"].find_one({"_id": payment["order"]})
        # check before calling the gateway so a refund is never issued for an order that cannot move
        check_transition(order, "refunded", "admin")

        refund = cls.refund_gateway_payment(payment, amount, reason)
        stamp = now_utc()
        res = db["payment"].update_one(
            {"_id": payment["_id"], "status": payment["status"]},
            {"$set": {
                "status": "refunded",
                "escrowStatus": "refunded",
                "refundAmount": amount,
                "refundReason": reason,
                "refundProcessedAt": stamp,
                "refundProcessedBy": admin["_id"],
                "refundTransactionId": refund.get("id"),
                "updated_at": stamp,
            }},
        )
        if res.modified_count == 0:
            log.error("Refund %s issued but payment %s changed concurrently", refund.get("id"), payment["paymentId"])
            raise ConcurrentUpdateError("Payment was updated by another request, please reload")
        transition_order(order, "refunded", "admin", admin["_id"], {"refundReason": reason})
        log.info("Refunded %s on payment %s (%s)", amount, payment["paymentId"], reason)
        return db["payment"].find_one({"_id": payment["_id"]}), refund

    @staticmethod
    def settle_seller_refund(order, seller):
        """Close the escrowed payment of an order the seller refunded themselves."""
        stamp = now_utc()
        res = db["payment"].update_one(
            {"order": order["_id"], "status": {"$in": ["completed", "disputed"]}, "escrowStatus": "held"},
            {"$set": {
                "status": "refunded",
                "escrowStatus": "refunded",
                "refundAmount": order["amount"],
                "refundReason": "Refunded by seller",
                "refundProcessedAt": stamp,
                "refundProcessedBy": seller["_id"],
                "updated_at": stamp,
            }},
        )
        if res.modified_count:
            log.info("Escrowed payment for order %s refunded by seller", order["orderId"])

    @staticmethod
    def release_escrow(order, buyer):
        """Release the held payment of an order the buyer completed through the orders route."""
        stamp = now_utc()
        res = db["payment"].update_one(
            {"order": order["_id"], "status": "completed", "escrowStatus": "held"},
            {"$set": {
                "escrowStatus": "released",
                "deliveryConfirmed": True,
                "deliveryConfirmedAt": stamp,
                "deliveryConfirmedBy": buyer["_id"],
                "updated_at": stamp,
            }},
        )
        if res.modified_count:
            log.info("Escrow released for completed order %s", order["orderId"])

    @staticmethod
    def freeze_escrow(order, user):
        """Hold back the escrow of a cancelled order until an admin refunds it."""
        res = db["payment"].update_one(
            {"order": order["_id"], "status": {"$in": ["completed", "disputed"]}, "escrowStatus": "held"},
            {"$set": {
                "escrowStatus": "frozen",
                "frozenAt": now_utc(),
                "frozenBy": user["_id"],
                "updated_at": now_utc(),
            }},
        )
        if res.modified_count:
            log.info("Escrow frozen for cancelled order %s, awaiting refund", order["orderId"])

    # Reporting

    @staticmethod
    def seller_earnings(seller_id, period: str = "month") -> dict:
        now = now_utc()
        if period == "week":
            start, end = now - timedelta(days=7), now
        elif period == "year":
            start, end = datetime(now.year, 1, 1), datetime(now.year + 1, 1, 1)
        else:
            period = "month"
            start = datetime(now.year, now.month, 1)
            end = datetime(now.year + 1, 1, 1) if now.month == 12 else datetime(now.year, now.month + 1, 1)

        earned = list(db["payment"].aggregate([
            {"$match": {"seller": seller_id, "created_at": {"$gte": start, "$lt": end}, "escrowStatus": "released"}},
            {"$group": {
                "_id": None,
                "totalEarnings": {"$sum": "$sellerAmount"},
                "totalOrders": {"$sum": 1},
                "averageOrderValue": {"$avg": "$totalAmount"},
                "totalCommissionPaid": {"$sum": "$platformCommission"},
            }},
        ]))
        pending = list(db["payment"].aggregate([
            {"$match": {"seller": seller_id, "status": {"$in": ["completed", "disputed"]}, "escrowStatus": "held"}},
            {"$group": {"_id": None, "pendingAmount": {"$sum": "$sellerAmount"}, "pendingOrders": {"$sum": 1}}},
        ]))
        for rows in (earned, pending):
            if rows:
                rows[0].pop("_id", None)
        return {
            "period": period,
            "earnings": earned[0] if earned else {
                "totalEarnings": 0, "totalOrders": 0, "averageOrderValue": 0, "totalCommissionPaid": 0,
            },
            "pending": pending[0] if pending else {"pendingAmount": 0, "pendingOrders": 0},
        }

    @staticmethod
    def generate_receipt(payment) -> dict:
        return {
            "receiptId": f"RCP_{payment['paymentId']}",
            "paymentId": payment["paymentId"],
            "orderId": payment["order"],
            "amount": payment["totalAmount"],
            "commission": payment["platformCommission"],
            "sellerAmount": payment["sellerAmount"],
            "currency": payment.get("currency", CURRENCY),
            "gateway": payment["gateway"],
            "transactionId": payment.get("gatewayPaymentId"),
            "timestamp": payment.get("created_at"),
            "status": payment["status"],
        }
