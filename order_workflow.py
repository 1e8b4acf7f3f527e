"""
Order lifecycle.

The transition table below is the single definition of which party may move
an order from one status to another; routes, the payment service and any
client that wants to pre-validate read it from here (``GET
/api/orders/workflow`` serves it as JSON).

Status writes are compare-and-swap on the current status. Item side effects
are compare-and-swap on the item's reservation, and a failed "mark sold"
rolls the order write back, so an order and its item never disagree about
who owns the sale.
"""
import logging
import random
import string
import time
from collections import namedtuple
from typing import Optional

from database import db, now_utc
from errors import ConcurrentUpdateError, OrderTransitionError, TransitionForbidden
from talent import release_slot

log = logging.getLogger(__name__)

ORDER_STATES = ("pending", "paid", "delivered", "completed", "cancelled", "refunded")
TERMINAL_STATES = ("completed", "cancelled", "refunded")

Transition = namedtuple("Transition", "source target actors")

TRANSITIONS = (
    Transition("pending", "paid", ("buyer",)),
    Transition("paid", "delivered", ("seller",)),
    Transition("delivered", "completed", ("buyer",)),
    Transition("pending", "cancelled", ("buyer", "seller")),
    Transition("paid", "cancelled", ("buyer", "seller")),
    Transition("delivered", "cancelled", ("buyer", "seller")),
    Transition("paid", "refunded", ("seller", "admin")),
    Transition("delivered", "refunded", ("seller", "admin")),
    Transition("completed", "refunded", ("admin",)),
    Transition("cancelled", "refunded", ("admin",)),
)


def allowed_actors(target: str) -> set:
    return {a for t in TRANSITIONS if t.target == target for a in t.actors}


def find_transition(source: str, target: str) -> Optional[Transition]:
    for t in TRANSITIONS:
        if t.source == source and t.target == target:
            return t
    return None


def workflow_definition() -> dict:
    return {
        "states": list(ORDER_STATES),
        "terminal": list(TERMINAL_STATES),
        "transitions": [t._asdict() for t in TRANSITIONS],
    }


def actor_role(order, user_id) -> Optional[str]:
    if order["buyer"] == user_id:
        return "buyer"
    if order["seller"] == user_id:
        return "seller"
    return None


def check_transition(order, target: str, role: Optional[str]) -> Transition:
    if target not in ORDER_STATES:
        raise OrderTransitionError(f"Invalid status: {target}")
    if role is None or role not in allowed_actors(target):
        raise TransitionForbidden("You are not authorized to change order to this status")
    t = find_transition(order["status"], target)
    if t is None:
        raise OrderTransitionError(f"Cannot change order from {order['status']} to {target}")
    if role not in t.actors:
        raise TransitionForbidden("You are not authorized to change order to this status")
    return t


def generate_order_id() -> str:
    stamp = _base36(int(time.time() * 1000))
    tail = "".join(random.choices(string.ascii_lowercase + string.digits, k=5))
    return f"CMP{stamp}{tail}".upper()


def _base36(n: int) -> str:
    digits = string.digits + string.ascii_lowercase
    out = ""
    while n:
        n, r = divmod(n, 36)
        out = digits[r] + out
    return out or "0"


# Item reservation

def reserve_item(item_id, buyer_id) -> bool:
    res = db["item"].update_one(
        {"_id": item_id, "isActive": True, "availability.status": "available"},
        {"$set": {
            "availability.status": "reserved",
            "availability.reservedBy": buyer_id,
            "availability.reservedAt": now_utc(),
        }},
    )
    return res.modified_count == 1


def release_item(item_id, buyer_id) -> bool:
    res = db["item"].update_one(
        {"_id": item_id, "availability.status": "reserved", "availability.reservedBy": buyer_id},
        {
            "$set": {"availability.status": "available"},
            "$unset": {"availability.reservedBy": "", "availability.reservedAt": ""},
        },
    )
    return res.modified_count == 1


def sell_item(item_id, buyer_id) -> bool:
    res = db["item"].update_one(
        {"_id": item_id, "availability.status": "reserved", "availability.reservedBy": buyer_id},
        {"$set": {
            "availability.status": "sold",
            "availability.soldTo": buyer_id,
            "availability.soldAt": now_utc(),
        }},
    )
    return res.modified_count == 1


# Transitions

def transition_order(order, target: str, role: Optional[str], by, metadata: Optional[dict] = None):
    """Move ``order`` to ``target`` on behalf of ``role`` and apply side effects.

    Returns the updated order document. Raises ``TransitionForbidden`` or
    ``OrderTransitionError`` before writing anything, and
    ``ConcurrentUpdateError`` when another request changed the order (or the
    item it sells) first.
    """
    check_transition(order, target, role)
    source = order["status"]
    stamp = now_utc()
    update = {"status": target, "updated_at": stamp}
    if target == "delivered":
        update["deliveryInfo.actualDelivery"] = stamp
    for key, value in (metadata or {}).items():
        update[f"metadata.{key}"] = value

    res = db["order"].update_one(
        {"_id": order["_id"], "status": source},
        {"$set": update, "$push": {"statusHistory": {"status": target, "by": by, "role": role, "at": stamp}}},
    )
    if res.modified_count == 0:
        log.warning("Order %s moved away from %s before %s could be applied", order["orderId"], source, target)
        raise ConcurrentUpdateError("Order was updated by another request, please reload")

    try:
        _apply_side_effects(order, source, target)
    except ConcurrentUpdateError:
        _rollback(order, source, target)
        raise

    log.info("Order %s: %s -> %s by %s", order["orderId"], source, target, role)
    return db["order"].find_one({"_id": order["_id"]})


def _apply_side_effects(order, source: str, target: str):
    # a cancelled order already gave its reservation back
    releases = target in ("cancelled", "refunded") and source in ("pending", "paid", "delivered")
    if order["type"] == "item":
        if releases:
            release_item(order["item"], order["buyer"])
        elif target == "completed":
            if not sell_item(order["item"], order["buyer"]):
                raise ConcurrentUpdateError("Item is no longer reserved for this order")
    elif releases:
        release_slot(order["talentProduct"])

    if target == "completed":
        sold_key = "stats.itemsSold" if order["type"] == "item" else "stats.talentProductsSold"
        db["user"].update_one({"_id": order["seller"]}, {"$inc": {sold_key: 1}})
        if order["type"] == "item":
            db["user"].update_one({"_id": order["buyer"]}, {"$inc": {"stats.itemsBought": 1}})


def _rollback(order, source: str, target: str):
    db["order"].update_one(
        {"_id": order["_id"], "status": target},
        {"$set": {"status": source, "updated_at": now_utc()}, "$pop": {"statusHistory": 1}},
    )
    log.warning("Order %s rolled back to %s after failed %s side effect", order["orderId"], source, target)


def order_stats(user_id, as_role: str = "buyer") -> dict:
    key = "buyer" if as_role == "buyer" else "seller"
    stats = list(db["order"].aggregate([
        {"$match": {key: user_id}},
        {"$group": {
            "_id": None,
            "totalOrders": {"$sum": 1},
            "totalAmount": {"$sum": "$amount"},
            "completedOrders": {"$sum": {"$cond": [{"$eq": ["$status", "completed"]}, 1, 0]}},
            "pendingOrders": {"$sum": {"$cond": [{"$eq": ["$status", "pending"]}, 1, 0]}},
            "cancelledOrders": {"$sum": {"$cond": [{"$eq": ["$status", "cancelled"]}, 1, 0]}},
        }},
    ]))
    if not stats:
        return {"totalOrders": 0, "totalAmount": 0, "completedOrders": 0, "pendingOrders": 0, "cancelledOrders": 0}
    stats[0].pop("_id", None)
    return stats[0]
