import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from pymongo.errors import DuplicateKeyError

from auth import get_current_user
from database import db, now_utc, oid
from order_workflow import actor_role
from responses import ok, pagination
from schemas import Review as ReviewSchema, ReviewType

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reviews", tags=["reviews"])

VISIBLE = {"isActive": True, "moderationStatus": "approved"}


class CreateReview(BaseModel):
    reviewee: str
    orderId: str
    type: ReviewType
    itemId: Optional[str] = None
    talentProductId: Optional[str] = None
    rating: int = Field(..., ge=1, le=5)
    title: str = Field(..., min_length=1, max_length=100)
    comment: str = Field(..., min_length=1, max_length=1000)
    images: List[str] = []


class UpdateReview(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    comment: Optional[str] = Field(None, min_length=1, max_length=1000)
    images: Optional[List[str]] = None


class VotePayload(BaseModel):
    helpful: bool


class ResponsePayload(BaseModel):
    comment: str = Field(..., max_length=1000)


def can_user_review(reviewer_id, order_id) -> dict:
    order = db["order"].find_one({"_id": oid(order_id)})
    if not order or order["status"] != "completed":
        return {"canReview": False, "reason": "Order must be completed to leave a review"}
    if actor_role(order, reviewer_id) is None:
        return {"canReview": False, "reason": "You can only review orders you were part of"}
    if db["review"].find_one({"reviewer": reviewer_id, "order": order["_id"]}):
        return {"canReview": False, "reason": "You have already reviewed this order"}
    return {"canReview": True}


def average_rating(target_id, target_type: str) -> dict:
    fields = {"user": "reviewee", "item": "item", "talent": "talentProduct"}
    if target_type not in fields:
        raise ValueError("Invalid target type")
    ratings = [
        r["rating"]
        for r in db["review"].find({fields[target_type]: target_id, **VISIBLE}, {"rating": 1})
    ]
    distribution = {str(n): 0 for n in range(1, 6)}
    for r in ratings:
        distribution[str(r)] += 1
    if not ratings:
        return {"averageRating": 0, "totalReviews": 0, "ratingDistribution": distribution}
    return {
        "averageRating": round(sum(ratings) / len(ratings), 1),
        "totalReviews": len(ratings),
        "ratingDistribution": distribution,
    }


def refresh_user_rating(user_id):
    stats = average_rating(user_id, "user")
    db["user"].update_one(
        {"_id": user_id},
        {"$set": {"stats.rating": stats["averageRating"], "stats.totalRatings": stats["totalReviews"]}},
    )


def refresh_talent_rating(product_id):
    if product_id is None:
        return
    stats = average_rating(product_id, "talent")
    db["talentproduct"].update_one(
        {"_id": product_id},
        {"$set": {"stats.rating": stats["averageRating"], "stats.totalReviews": stats["totalReviews"]}},
    )


def _load_review(review_id: str, visible_only: bool = False):
    review = db["review"].find_one({"_id": oid(review_id)})
    if not review or (visible_only and not review.get("isActive")):
        raise HTTPException(404, "Review not found")
    return review


@router.post("", status_code=201)
def create_review(payload: CreateReview, user=Depends(get_current_user)):
    eligibility = can_user_review(user["_id"], payload.orderId)
    if not eligibility["canReview"]:
        raise HTTPException(400, eligibility["reason"])

    order = db["order"].find_one({"_id": oid(payload.orderId)})
    reviewee = oid(payload.reviewee)
    other_party = order["seller"] if order["buyer"] == user["_id"] else order["buyer"]
    if reviewee != other_party:
        raise HTTPException(400, "You can only review the other party of the order")
    if payload.type == "item" and not payload.itemId:
        raise HTTPException(400, "Item ID is required for item reviews")
    if payload.type == "talent" and not payload.talentProductId:
        raise HTTPException(400, "Talent product ID is required for talent reviews")

    review = ReviewSchema(
        reviewer=user["_id"],
        reviewee=reviewee,
        order=order["_id"],
        item=oid(payload.itemId) if payload.type == "item" else None,
        talentProduct=oid(payload.talentProductId) if payload.type == "talent" else None,
        type=payload.type,
        rating=payload.rating,
        title=payload.title.strip(),
        comment=payload.comment.strip(),
        images=payload.images,
        isVerified=True,
    )
    doc = review.model_dump(exclude_none=True)
    doc["created_at"] = doc["updated_at"] = now_utc()
    try:
        res = db["review"].insert_one(doc)
    except DuplicateKeyError:
        raise HTTPException(400, "You have already reviewed this order")

    rating_field = "buyerRating" if order["buyer"] == user["_id"] else "sellerRating"
    db["order"].update_one(
        {"_id": order["_id"]},
        {"$set": {f"rating.{rating_field}": {"rating": payload.rating, "comment": doc["comment"], "createdAt": doc["created_at"]}}},
    )
    refresh_user_rating(reviewee)
    refresh_talent_rating(doc.get("talentProduct"))
    log.info("Review %s on order %s by %s", res.inserted_id, order["orderId"], user["_id"])
    return ok({"review": db["review"].find_one({"_id": res.inserted_id})}, "Review created successfully")


@router.get("")
def list_reviews(
    page: int = 1,
    limit: int = 10,
    reviewee: Optional[str] = None,
    item: Optional[str] = None,
    talentProduct: Optional[str] = None,
    type: Optional[str] = None,
    rating: Optional[int] = None,
    sortBy: str = "created_at",
    sortOrder: str = "desc",
):
    page, limit = max(page, 1), min(max(limit, 1), 100)
    filt = dict(VISIBLE)
    if reviewee:
        filt["reviewee"] = oid(reviewee)
    if item:
        filt["item"] = oid(item)
    if talentProduct:
        filt["talentProduct"] = oid(talentProduct)
    if type:
        filt["type"] = type
    if rating:
        filt["rating"] = rating
    if sortBy not in ("created_at", "rating", "helpfulVotes"):
        raise HTTPException(400, f"Cannot sort by {sortBy}")
    total = db["review"].count_documents(filt)
    cursor = (
        db["review"].find(filt)
        .sort(sortBy, -1 if sortOrder == "desc" else 1)
        .skip((page - 1) * limit)
        .limit(limit)
    )
    return ok({"reviews": list(cursor), "pagination": pagination(page, limit, total)})


@router.get("/stats/{target_id}/{target_type}")
def review_stats(target_id: str, target_type: str):
    if target_type not in ("user", "item", "talent"):
        raise HTTPException(400, "Target type must be user, item, or talent")
    return ok({"stats": average_rating(oid(target_id), target_type)})


@router.get("/can-review/{order_id}")
def can_review(order_id: str, user=Depends(get_current_user)):
    order = db["order"].find_one({"_id": oid(order_id)})
    if not order:
        raise HTTPException(404, "Order not found")
    role = actor_role(order, user["_id"])
    if role is None:
        return ok({"canReview": False, "reason": "You can only review orders you were part of"})
    data = can_user_review(user["_id"], order["_id"])
    if role == "buyer":
        data.update(reviewee=order["seller"], revieweeType="seller")
    else:
        data.update(reviewee=order["buyer"], revieweeType="buyer")
    return ok(data)


@router.get("/{review_id}")
def get_review(review_id: str):
    review = _load_review(review_id)
    if not review.get("isActive") or review.get("moderationStatus") != "approved":
        raise HTTPException(404, "Review not found")
    return ok({"review": review})


@router.put("/{review_id}")
def update_review(review_id: str, payload: UpdateReview, user=Depends(get_current_user)):
    review = _load_review(review_id, visible_only=True)
    if review["reviewer"] != user["_id"]:
        raise HTTPException(403, "You can only update your own reviews")
    update = payload.model_dump(exclude_none=True)
    for key in ("title", "comment"):
        if key in update:
            update[key] = update[key].strip()
    update["updated_at"] = now_utc()
    db["review"].update_one({"_id": review["_id"]}, {"$set": update})
    if payload.rating is not None:
        refresh_user_rating(review["reviewee"])
        refresh_talent_rating(review.get("talentProduct"))
    return ok({"review": db["review"].find_one({"_id": review["_id"]})}, "Review updated successfully")


@router.delete("/{review_id}")
def delete_review(review_id: str, user=Depends(get_current_user)):
    review = _load_review(review_id)
    if review["reviewer"] != user["_id"] and user.get("role") != "admin":
        raise HTTPException(403, "You can only delete your own reviews")
    db["review"].update_one({"_id": review["_id"]}, {"$set": {"isActive": False, "updated_at": now_utc()}})
    refresh_user_rating(review["reviewee"])
    refresh_talent_rating(review.get("talentProduct"))
    return ok(message="Review deleted successfully")


@router.post("/{review_id}/helpful")
def vote_helpful(review_id: str, payload: VotePayload, user=Depends(get_current_user)):
    review = _load_review(review_id, visible_only=True)
    if review["reviewer"] == user["_id"]:
        raise HTTPException(400, "You cannot vote on your own review")
    votes = [v for v in review.get("votedBy", []) if v["user"] != user["_id"]]
    votes.append({"user": user["_id"], "helpful": payload.helpful})
    helpful = sum(1 for v in votes if v["helpful"])
    db["review"].update_one({"_id": review["_id"]}, {"$set": {"votedBy": votes, "helpfulVotes": helpful}})
    return ok({"helpfulVotes": helpful, "totalVotes": len(votes)}, "Vote recorded successfully")


@router.post("/{review_id}/response")
def add_response(review_id: str, payload: ResponsePayload, user=Depends(get_current_user)):
    text = payload.comment.strip()
    if not text:
        raise HTTPException(400, "Response comment is required")
    review = _load_review(review_id, visible_only=True)
    if review["reviewee"] != user["_id"]:
        raise HTTPException(403, "You can only respond to reviews about you")
    res = db["review"].update_one(
        {"_id": review["_id"], "response.comment": {"$exists": False}},
        {"$set": {"response": {"comment": text, "respondedAt": now_utc(), "respondedBy": user["_id"]}}},
    )
    if res.modified_count == 0:
        raise HTTPException(400, "You have already responded to this review")
    return ok({"review": db["review"].find_one({"_id": review["_id"]})}, "Response added successfully")
