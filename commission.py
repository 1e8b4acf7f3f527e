"""
Platform commission: the per-payment split and the monthly rollup.

``compute_commission`` is the only place the split is calculated; payments
store its result and the monthly batch sums what the payments stored.
"""
import logging
import time
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple

from pymongo.errors import DuplicateKeyError

from config import COMMISSION_RATE
from database import db, now_utc
from errors import CommissionExistsError, MarketplaceError
from schemas import Commission as CommissionSchema

log = logging.getLogger(__name__)

TOP_SELLERS = 10


def _round_half_up(value: Decimal) -> Decimal:
    return value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def compute_commission(total_amount, rate=COMMISSION_RATE) -> Tuple[float, float]:
    """Split ``total_amount`` into (platform commission, seller amount).

    The commission is ``total * rate / 100`` rounded half-up to a whole
    currency unit; the seller gets the remainder, so the two always add up to
    the total.
    """
    if total_amount < 0:
        raise ValueError("Amount cannot be negative")
    if not 0 <= rate <= 100:
        raise ValueError("Commission rate must be between 0 and 100")
    total = Decimal(str(total_amount))
    commission = _round_half_up(total * Decimal(str(rate)) / Decimal(100))
    return float(commission), float(total - commission)


def month_range(year: int, month: int) -> Tuple[datetime, datetime]:
    start = datetime(year, month, 1)
    end = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)
    return start, end


def released_payments_match(year: int, month: int) -> dict:
    start, end = month_range(year, month)
    return {
        "$match": {
            "created_at": {"$gte": start, "$lt": end},
            "status": "completed",
            "escrowStatus": "released",
        }
    }


def summarize(year: int, month: int) -> dict:
    rows = list(db["payment"].aggregate([
        released_payments_match(year, month),
        {"$group": {
            "_id": None,
            "totalCommission": {"$sum": "$platformCommission"},
            "totalTransactions": {"$sum": 1},
            "totalVolume": {"$sum": "$totalAmount"},
            "avgCommissionRate": {"$avg": "$commissionRate"},
        }},
    ]))
    if not rows:
        return {"totalCommission": 0, "totalTransactions": 0, "totalVolume": 0, "averageCommissionRate": COMMISSION_RATE}
    row = rows[0]
    return {
        "totalCommission": row.get("totalCommission") or 0,
        "totalTransactions": row.get("totalTransactions") or 0,
        "totalVolume": row.get("totalVolume") or 0,
        "averageCommissionRate": row.get("avgCommissionRate") or COMMISSION_RATE,
    }


def category_breakdown(year: int, month: int) -> list:
    rows = db["payment"].aggregate([
        released_payments_match(year, month),
        {"$lookup": {"from": "order", "localField": "order", "foreignField": "_id", "as": "orderDoc"}},
        {"$unwind": "$orderDoc"},
        {"$group": {
            "_id": "$orderDoc.category",
            "commission": {"$sum": "$platformCommission"},
            "transactions": {"$sum": 1},
            "volume": {"$sum": "$totalAmount"},
        }},
    ])
    breakdown = [
        {
            "category": row["_id"] or "Unknown",
            "commission": row["commission"],
            "transactions": row["transactions"],
            "volume": row["volume"],
        }
        for row in rows
    ]
    return sorted(breakdown, key=lambda c: c["commission"], reverse=True)


def top_sellers(year: int, month: int, limit: int = TOP_SELLERS) -> list:
    rows = db["payment"].aggregate([
        released_payments_match(year, month),
        {"$group": {
            "_id": "$seller",
            "commissionGenerated": {"$sum": "$platformCommission"},
            "transactions": {"$sum": 1},
            "volume": {"$sum": "$totalAmount"},
        }},
        {"$sort": {"commissionGenerated": -1}},
        {"$limit": limit},
    ])
    return [
        {
            "seller": row["_id"],
            "commissionGenerated": row["commissionGenerated"],
            "transactions": row["transactions"],
            "volume": row["volume"],
        }
        for row in rows
    ]


def create_monthly_commission(year: int, month: int, calculated_by=None):
    if not 1 <= month <= 12:
        raise ValueError("Month must be between 1 and 12")
    if db["commission"].find_one({"year": year, "month": month}):
        raise CommissionExistsError("Commission for this month already exists")

    batch_id = f"COMM_{year}_{month:02d}_{int(time.time() * 1000)}"
    commission = CommissionSchema(
        year=year,
        month=month,
        batchId=batch_id,
        categoryBreakdown=category_breakdown(year, month),
        topSellers=top_sellers(year, month),
        calculatedBy=calculated_by,
        **summarize(year, month),
    )
    doc = commission.model_dump(exclude_none=True)
    doc["created_at"] = doc["updated_at"] = now_utc()
    try:
        res = db["commission"].insert_one(doc)
    except DuplicateKeyError:
        raise CommissionExistsError("Commission for this month already exists")

    start, end = month_range(year, month)
    db["payment"].update_many(
        {"created_at": {"$gte": start, "$lt": end}, "status": "completed", "escrowStatus": "released"},
        {"$set": {"monthlyCommissionBatch": batch_id}},
    )
    log.info(
        "Commission batch %s: %s transactions, commission %s",
        batch_id, doc["totalTransactions"], doc["totalCommission"],
    )
    return db["commission"].find_one({"_id": res.inserted_id})


def mark_processed(batch_id: str, processed_by):
    return _advance(batch_id, "calculated", "processed", {"processedAt": now_utc(), "processedBy": processed_by})


def mark_paid(batch_id: str, bank_transfer: Optional[dict] = None):
    fields = {"paidAt": now_utc(), "bankTransfer": bank_transfer or {}}
    commission = _advance(batch_id, "processed", "paid", fields)
    db["payment"].update_many(
        {"monthlyCommissionBatch": batch_id},
        {"$set": {"commissionPaid": True, "commissionPaidAt": fields["paidAt"]}},
    )
    return commission


def _advance(batch_id: str, source: str, target: str, fields: dict):
    res = db["commission"].update_one(
        {"batchId": batch_id, "status": source},
        {"$set": {"status": target, "updated_at": now_utc(), **fields}},
    )
    if res.modified_count == 0:
        if not db["commission"].find_one({"batchId": batch_id}):
            raise LookupError("Commission batch not found")
        raise MarketplaceError(f"Commission batch must be {source} to mark it {target}")
    log.info("Commission batch %s marked %s", batch_id, target)
    return db["commission"].find_one({"batchId": batch_id})


def yearly_commission(year: int) -> dict:
    rows = list(db["commission"].aggregate([
        {"$match": {"year": year}},
        {"$sort": {"month": 1}},
        {"$group": {
            "_id": None,
            "totalCommission": {"$sum": "$totalCommission"},
            "totalTransactions": {"$sum": "$totalTransactions"},
            "totalVolume": {"$sum": "$totalVolume"},
            "monthlyData": {"$push": {
                "month": "$month",
                "commission": "$totalCommission",
                "transactions": "$totalTransactions",
                "volume": "$totalVolume",
            }},
        }},
    ]))
    if not rows:
        return {"year": year, "totalCommission": 0, "totalTransactions": 0, "totalVolume": 0, "monthlyData": []}
    row = rows[0]
    row.pop("_id", None)
    row["year"] = year
    return row
