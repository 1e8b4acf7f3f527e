import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from pymongo.errors import DuplicateKeyError

from auth import admin_required
from database import db, now_utc, oid
from responses import ok
from schemas import Category as CategorySchema

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/categories", tags=["categories"])


class CategoryPayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=200)
    icon: Optional[str] = None
    color: Optional[str] = None
    subcategories: list = []
    order: int = 0
    isFeatured: bool = False


class UpdateCategory(BaseModel):
    description: Optional[str] = Field(None, max_length=200)
    icon: Optional[str] = None
    color: Optional[str] = None
    subcategories: Optional[list] = None
    order: Optional[int] = None
    isFeatured: Optional[bool] = None
    isActive: Optional[bool] = None


def slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


def category_counts(name: str) -> dict:
    return {
        "itemCount": db["item"].count_documents(
            {"category": name, "isActive": True, "availability.status": "available"}
        ),
        "talentProductCount": db["talentproduct"].count_documents({"category": name, "isActive": True}),
    }


def _load(category_id: str):
    category = db["category"].find_one({"_id": oid(category_id)})
    if not category:
        raise HTTPException(404, "Category not found")
    return category


@router.get("")
def list_categories(featured: bool = False):
    filt = {"isActive": True}
    if featured:
        filt["isFeatured"] = True
    return ok({"categories": list(db["category"].find(filt).sort([("order", 1), ("name", 1)]))})


@router.get("/popular")
def popular_categories(limit: int = 10):
    cursor = (
        db["category"].find({"isActive": True})
        .sort([("stats.itemCount", -1), ("stats.talentProductCount", -1)])
        .limit(min(max(limit, 1), 50))
    )
    return ok({"categories": list(cursor)})


@router.get("/slug/{slug}")
def get_by_slug(slug: str):
    category = db["category"].find_one({"slug": slug, "isActive": True})
    if not category:
        raise HTTPException(404, "Category not found")
    return ok({"category": category})


@router.get("/{category_id}")
def get_category(category_id: str):
    category = _load(category_id)
    if not category["isActive"]:
        raise HTTPException(404, "Category not found")
    return ok({"category": category})


@router.post("", status_code=201)
def create_category(payload: CategoryPayload, admin=Depends(admin_required)):
    name = payload.name.strip()
    category = CategorySchema(
        **payload.model_dump(exclude={"name"}),
        name=name,
        slug=slugify(name),
        stats=category_counts(name),
        createdBy=admin["_id"],
    )
    doc = category.model_dump(exclude_none=True)
    doc["created_at"] = doc["updated_at"] = now_utc()
    try:
        res = db["category"].insert_one(doc)
    except DuplicateKeyError:
        raise HTTPException(400, "Category already exists")
    log.info("Category %s created by %s", name, admin["_id"])
    return ok({"category": db["category"].find_one({"_id": res.inserted_id})}, "Category created successfully")


@router.put("/{category_id}")
def update_category(category_id: str, payload: UpdateCategory, admin=Depends(admin_required)):
    category = _load(category_id)
    changes = payload.model_dump(exclude_none=True)
    changes["updated_at"] = now_utc()
    db["category"].update_one({"_id": category["_id"]}, {"$set": changes})
    return ok({"category": db["category"].find_one({"_id": category["_id"]})}, "Category updated successfully")


@router.delete("/{category_id}")
def delete_category(category_id: str, admin=Depends(admin_required)):
    category = _load(category_id)
    in_use = db["item"].count_documents({"category": category["name"]})
    if in_use:
        raise HTTPException(400, f"Cannot delete category. It has {in_use} items associated with it.")
    db["category"].delete_one({"_id": category["_id"]})
    return ok(message="Category deleted successfully")


@router.put("/{category_id}/stats")
def refresh_stats(category_id: str, admin=Depends(admin_required)):
    category = _load(category_id)
    stats = category_counts(category["name"])
    db["category"].update_one({"_id": category["_id"]}, {"$set": {"stats": stats, "updated_at": now_utc()}})
    return ok({"stats": stats}, "Category statistics updated")
