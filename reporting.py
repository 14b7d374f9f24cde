import calendar
from datetime import datetime
from typing import Optional

from bson import ObjectId
from pymongo import DESCENDING

from database import serialize_doc, utcnow


def months_ago(now: datetime, months: int) -> datetime:
    month_index = now.year * 12 + (now.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(now.day, calendar.monthrange(year, month)[1])
    return now.replace(year=year, month=month, day=day)


def dashboard_stats(db, now: Optional[datetime] = None, low_stock_threshold: int = 10) -> dict:
    """Admin dashboard figures. Recomputed on every call, nothing is written."""
    now = now or utcnow()

    overview = {
        "total_users": db["user"].count_documents({}),
        "total_products": db["product"].count_documents({"is_active": True}),
        "total_categories": db["category"].count_documents({"is_active": True}),
        "total_orders": db["order"].count_documents({}),
    }

    revenue = list(db["order"].aggregate([
        {"$match": {"payment_status": "paid"}},
        {"$group": {
            "_id": None,
            "total_revenue": {"$sum": "$total_amount"},
            "average_order_value": {"$avg": "$total_amount"},
        }},
    ]))

    by_status = db["order"].aggregate([
        {"$group": {"_id": "$order_status", "count": {"$sum": 1}}},
    ])

    by_month = db["order"].aggregate([
        {"$match": {"payment_status": "paid", "created_at": {"$gte": months_ago(now, 6)}}},
        {"$group": {
            "_id": {"year": {"$year": "$created_at"}, "month": {"$month": "$created_at"}},
            "revenue": {"$sum": "$total_amount"},
            "orders": {"$sum": 1},
        }},
        {"$sort": {"_id.year": 1, "_id.month": 1}},
    ])

    recent = list(
        db["order"].find({}, {"user_id": 1, "total_amount": 1, "order_status": 1, "payment_status": 1, "created_at": 1})
        .sort("created_at", DESCENDING)
        .limit(5)
    )
    user_ids = [ObjectId(o["user_id"]) for o in recent if ObjectId.is_valid(o.get("user_id", ""))]
    users = {str(u["_id"]): u for u in db["user"].find({"_id": {"$in": user_ids}}, {"name": 1, "email": 1})}
    recent_orders = []
    for o in recent:
        item = serialize_doc(o)
        u = users.get(o.get("user_id"))
        item["user"] = {"id": o["user_id"], "name": u.get("name"), "email": u.get("email")} if u else None
        recent_orders.append(item)

    low_stock = db["product"].find(
        {"is_active": True, "stock": {"$lte": low_stock_threshold}},
        {"title": 1, "brand": 1, "stock": 1},
    ).limit(10)

    return {
        "overview": overview,
        "revenue": {
            "total": (revenue[0]["total_revenue"] or 0) if revenue else 0,
            "average_order_value": (revenue[0]["average_order_value"] or 0) if revenue else 0,
        },
        "orders_by_status": {row["_id"]: row["count"] for row in by_status},
        "revenue_by_month": [
            {"year": row["_id"]["year"], "month": row["_id"]["month"], "revenue": row["revenue"], "orders": row["orders"]}
            for row in by_month
        ],
        "recent_orders": recent_orders,
        "low_stock_products": [serialize_doc(p) for p in low_stock],
    }
