import re
from typing import Optional, Dict, Any

from bson import ObjectId

from database import utcnow

SORT_FIELDS = {"created_at", "price", "rating", "title"}

# matches no category, used when a category filter names something unknown
NO_MATCH_ID = "000000000000000000000000"


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.strip().lower())
    return slug.strip("-")


def resolve_category_id(db, category: str) -> str:
    if ObjectId.is_valid(category):
        return category
    found = db["category"].find_one({"$or": [
        {"slug": category.lower()},
        {"name": {"$regex": f"^{re.escape(category)}$", "$options": "i"}},
    ]})
    return str(found["_id"]) if found else NO_MATCH_ID


def build_product_query(db, category: Optional[str] = None, brand: Optional[str] = None,
                        min_price: Optional[float] = None, max_price: Optional[float] = None,
                        size: Optional[str] = None, color: Optional[str] = None,
                        search: Optional[str] = None, featured: Optional[bool] = None) -> Dict[str, Any]:
    filt: Dict[str, Any] = {"is_active": True}
    if category:
        filt["category_id"] = resolve_category_id(db, category)
    if brand:
        filt["brand"] = {"$regex": re.escape(brand), "$options": "i"}
    price_cond = {}
    if min_price is not None:
        price_cond["$gte"] = min_price
    if max_price is not None:
        price_cond["$lte"] = max_price
    if price_cond:
        filt["price"] = price_cond
    if size:
        filt["sizes"] = size
    if color:
        filt["colors"] = {"$regex": f"^{re.escape(color)}$", "$options": "i"}
    if featured:
        filt["is_featured"] = True
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        filt["$or"] = [{"title": pattern}, {"brand": pattern}, {"description": pattern}]
    return filt


def update_product_rating(db, product_id: str):
    stats = list(db["review"].aggregate([
        {"$match": {"product_id": product_id}},
        {"$group": {"_id": "$product_id", "average_rating": {"$avg": "$rating"}, "num_reviews": {"$sum": 1}}},
    ]))
    if stats:
        rating = round(stats[0]["average_rating"], 1)
        count = stats[0]["num_reviews"]
    else:
        rating, count = 0, 0
    db["product"].update_one(
        {"_id": ObjectId(product_id)},
        {"$set": {"rating": rating, "num_reviews": count, "updated_at": utcnow()}},
    )
    return rating, count
