"""Admin dashboard numbers."""
import calendar
from datetime import datetime, timedelta
from typing import Literal, Optional, Tuple

from pymongo.database import Database

from database import ORDERS, RUGS, naive_utc, utcnow
from errors import ValidationError
from order_status import OrderStatus

TimeRange = Literal["today", "last_7_days", "last_month", "last_3_months", "last_year", "all_time"]
TIME_RANGES = ("today", "last_7_days", "last_month", "last_3_months", "last_year", "all_time")


def shift_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def range_dates(time: Optional[str], now: Optional[datetime] = None) -> Tuple[Optional[datetime], datetime]:
    now = now or utcnow()
    if not time or time == "all_time":
        return None, now
    if time == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0), now
    if time == "last_7_days":
        return now - timedelta(days=7), now
    if time == "last_month":
        return shift_months(now, -1), now
    if time == "last_3_months":
        return shift_months(now, -3), now
    if time == "last_year":
        return shift_months(now, -12), now
    raise ValidationError(f"Invalid time range. Allowed values: {', '.join(TIME_RANGES)}")


def overview(db: Database, time: Optional[str] = None, now: Optional[datetime] = None) -> dict:
    start, end = range_dates(time, now)
    created = {"createdAt": {"$gte": naive_utc(start), "$lte": naive_utc(end)}} if start else {}
    completed = {**created, "status": OrderStatus.COMPLETED.value}

    revenue = list(db[ORDERS].aggregate([
        {"$match": completed},
        {"$group": {"_id": None, "total": {"$sum": "$totalPrice"}}},
    ]))

    month_start = end.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    previous_month_start = shift_months(month_start, -1)
    current_completed = db[ORDERS].count_documents(
        {"status": OrderStatus.COMPLETED.value,
         "createdAt": {"$gte": naive_utc(month_start), "$lte": naive_utc(end)}}
    )
    previous_completed = db[ORDERS].count_documents(
        {"status": OrderStatus.COMPLETED.value,
         "createdAt": {"$gte": naive_utc(previous_month_start), "$lt": naive_utc(month_start)}}
    )
    if previous_completed == 0:
        growth_ratio = 1 if current_completed > 0 else 0
    else:
        growth_ratio = (current_completed - previous_completed) / previous_completed

    return {
        "time": {
            "value": time or "all_time",
            "from": start.isoformat() if start else None,
            "to": end.isoformat(),
        },
        "totalOrders": db[ORDERS].count_documents(created),
        "totalRevenue": revenue[0]["total"] if revenue else 0,
        "totalRugs": db[RUGS].count_documents(created),
        "completedOrders": db[ORDERS].count_documents(completed),
        "customerCount": len(db[ORDERS].distinct("email", created)),
        "growthRatio": growth_ratio,
        "growth": {
            "currentCompletedOrders": current_completed,
            "previousCompletedOrders": previous_completed,
        },
    }
