from datetime import datetime

import pytest
from bson import ObjectId

from commission import compute_commission, create_monthly_commission, mark_paid, mark_processed, month_range
from errors import CommissionExistsError, MarketplaceError


def test_three_percent_of_a_thousand():
    assert compute_commission(1000, 3) == (30.0, 970.0)


@pytest.mark.parametrize("total,expected", [
    (50, 2.0),      # 1.5 rounds up
    (49, 1.0),      # 1.47 rounds down
    (150, 5.0),     # 4.5 rounds up
    (0, 0.0),
])
def test_commission_rounds_half_up(total, expected):
    commission, seller_amount = compute_commission(total, 3)
    assert commission == expected
    assert commission + seller_amount == total


def test_commission_rejects_negative_amount():
    with pytest.raises(ValueError):
        compute_commission(-1, 3)


def test_month_range_ends_at_next_month():
    assert month_range(2024, 2) == (datetime(2024, 2, 1), datetime(2024, 3, 1))
    assert month_range(2024, 12) == (datetime(2024, 12, 1), datetime(2025, 1, 1))


def _payment(db, total, created_at, escrow="released", status="completed", seller=None):
    commission, seller_amount = compute_commission(total, 3)
    db["payment"].insert_one({
        "paymentId": f"PAY_{ObjectId()}",
        "order": ObjectId(),
        "buyer": ObjectId(),
        "seller": seller or ObjectId(),
        "totalAmount": total,
        "commissionRate": 3,
        "platformCommission": commission,
        "sellerAmount": seller_amount,
        "status": status,
        "escrowStatus": escrow,
        "created_at": created_at,
    })


def test_monthly_batch_counts_only_released_payments_in_month(db):
    seller = ObjectId()
    _payment(db, 1000, datetime(2024, 3, 5), seller=seller)
    _payment(db, 500, datetime(2024, 3, 31, 23, 59), seller=seller)
    _payment(db, 800, datetime(2024, 3, 10), escrow="held")
    _payment(db, 700, datetime(2024, 4, 1))

    batch = create_monthly_commission(2024, 3)

    assert batch["totalTransactions"] == 2
    assert batch["totalVolume"] == 1500
    assert batch["totalCommission"] == 45
    assert batch["status"] == "calculated"
    assert batch["batchId"].startswith("COMM_2024_03_")
    assert batch["topSellers"][0]["seller"] == seller
    assert db["payment"].count_documents({"monthlyCommissionBatch": batch["batchId"]}) == 2


def test_monthly_batch_is_unique_per_month(db):
    create_monthly_commission(2024, 1)
    with pytest.raises(CommissionExistsError):
        create_monthly_commission(2024, 1)
    assert db["commission"].count_documents({"year": 2024, "month": 1}) == 1


def test_batch_moves_calculated_processed_paid(db):
    _payment(db, 1000, datetime(2024, 5, 2))
    batch = create_monthly_commission(2024, 5)

    with pytest.raises(MarketplaceError):
        mark_paid(batch["batchId"])

    assert mark_processed(batch["batchId"], None)["status"] == "processed"
    paid = mark_paid(batch["batchId"], {"reference": "NEFT123"})
    assert paid["status"] == "paid"
    assert db["payment"].find_one({"monthlyCommissionBatch": batch["batchId"]})["commissionPaid"] is True


def test_unknown_batch_is_lookup_error():
    with pytest.raises(LookupError):
        mark_processed("COMM_1999_01_0", None)
