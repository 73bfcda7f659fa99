"""
Revenue reports over paid orders.

Orders are bucketed by ``paid_at``; an order is paid at most once, so each
paid order contributes exactly once to every figure.
"""
from datetime import datetime, time, timedelta, timezone
from enum import Enum

from sqlmodel import Session, select

from .models import Order, OrderStatus, StaffMember


class ReportRange(str, Enum):
    today = "today"
    week = "week"
    month = "month"


RANGE_DAYS = {
    ReportRange.today: 0,
    ReportRange.week: 7,
    ReportRange.month: 30,
}


def range_bounds(report_range: ReportRange, now: datetime | None = None) -> tuple[datetime, datetime]:
    now = now or datetime.now(timezone.utc)
    start_day = (now - timedelta(days=RANGE_DAYS[report_range])).date()
    start = datetime.combine(start_day, time.min, tzinfo=timezone.utc)
    end = datetime.combine(now.date(), time.max, tzinfo=timezone.utc)
    return start, end


def paid_orders(session: Session, tenant_id: int, start: datetime, end: datetime) -> list[Order]:
    return list(
        session.exec(
            select(Order)
            .where(
                Order.tenant_id == tenant_id,
                Order.status == OrderStatus.paid,
                Order.paid_at >= start,
                Order.paid_at <= end,
            )
            .order_by(Order.paid_at.desc())
        ).all()
    )


def summarize(session: Session, orders: list[Order]) -> dict:
    total = sum(o.total_cents for o in orders)
    count = len(orders)

    names = {}
    staff_ids = {o.created_by_id for o in orders}
    if staff_ids:
        for staff in session.exec(select(StaffMember).where(StaffMember.id.in_(staff_ids))).all():
            names[staff.id] = staff.name

    waiters: dict[int, dict] = {}
    by_method: dict[str, int] = {}
    for order in orders:
        stats = waiters.setdefault(
            order.created_by_id,
            {"staff_id": order.created_by_id, "name": names.get(order.created_by_id, "Unknown"), "count": 0, "revenue_cents": 0},
        )
        stats["count"] += 1
        stats["revenue_cents"] += order.total_cents
        method = order.payment_method.value if order.payment_method else "unknown"
        by_method[method] = by_method.get(method, 0) + order.total_cents

    return {
        "total_revenue_cents": total,
        "order_count": count,
        "average_order_cents": round(total / count) if count else 0,
        "waiters": sorted(waiters.values(), key=lambda s: s["revenue_cents"], reverse=True),
        "by_payment_method": by_method,
    }


def revenue_report(session: Session, tenant_id: int, report_range: ReportRange, now: datetime | None = None) -> dict:
    start, end = range_bounds(report_range, now)
    report = summarize(session, paid_orders(session, tenant_id, start, end))
    report.update({"range": report_range.value, "start": start.isoformat(), "end": end.isoformat()})
    return report


def daily_total(session: Session, tenant_id: int, now: datetime | None = None) -> int:
    start, end = range_bounds(ReportRange.today, now)
    return sum(o.total_cents for o in paid_orders(session, tenant_id, start, end))
