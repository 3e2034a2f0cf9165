"""Spending report aggregation.

Everything here is pure: the caller fetches the expenses for ``[start, end]``
and the user's category map, and :func:`build_report` only computes. Amounts
are summed as integer cents so totals are exact; only percentages are floats.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable, Mapping, Optional, Protocol

from models import Category


class ExpenseLike(Protocol):
    amount_cents: int
    date: date
    category_id: int


@dataclass(frozen=True)
class CategoryShare:
    category_id: int
    category: Optional[Category]
    total_cents: int
    percentage: float


@dataclass(frozen=True)
class BucketTotal:
    key: str
    total_cents: int


@dataclass(frozen=True)
class Report:
    start: date
    end: date
    total_cents: int = 0
    category_breakdown: list[CategoryShare] = field(default_factory=list)
    daily_trends: list[BucketTotal] = field(default_factory=list)
    weekly_trends: list[BucketTotal] = field(default_factory=list)
    monthly_trends: list[BucketTotal] = field(default_factory=list)
    highest_spending_day: Optional[BucketTotal] = None
    top_category: Optional[CategoryShare] = None

    @property
    def is_empty(self) -> bool:
        return not self.category_breakdown

    def as_dict(self) -> dict[str, object]:
        highest = self.highest_spending_day or BucketTotal(self.start.isoformat(), 0)
        if self.top_category is None:
            top: dict[str, object] = {"category": None, "total": 0}
        else:
            top = {
                "category": _category_dict(self.top_category.category),
                "total": cents_to_amount(self.top_category.total_cents),
            }
        return {
            "totalExpenses": cents_to_amount(self.total_cents),
            "categoryBreakdown": [
                {
                    "category": _category_dict(share.category),
                    "total": cents_to_amount(share.total_cents),
                    "percentage": share.percentage,
                }
                for share in self.category_breakdown
            ],
            "dailyTrends": _buckets(self.daily_trends, "date"),
            "weeklyTrends": _buckets(self.weekly_trends, "week"),
            "monthlyTrends": _buckets(self.monthly_trends, "month"),
            "highestSpendingDay": {
                "date": highest.key,
                "total": cents_to_amount(highest.total_cents),
            },
            "topCategory": top,
        }


def cents_to_amount(cents: int) -> float:
    return cents / 100


def _category_dict(category: Optional[Category]) -> Optional[dict[str, object]]:
    return category.as_dict() if category is not None else None


def _buckets(items: list[BucketTotal], key_name: str) -> list[dict[str, object]]:
    return [
        {key_name: item.key, "total": cents_to_amount(item.total_cents)}
        for item in items
    ]


def week_start(day: date) -> date:
    """Monday of the week containing ``day``."""
    return day - timedelta(days=day.weekday())


def month_key(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def _sorted_buckets(totals: Mapping[str, int]) -> list[BucketTotal]:
    # ISO keys sort chronologically as strings.
    return [BucketTotal(key, totals[key]) for key in sorted(totals)]


def build_report(
    expenses: Iterable[ExpenseLike],
    categories: Mapping[int, Category],
    start: date,
    end: date,
) -> Report:
    items = list(expenses)
    if not items:
        return Report(start=start, end=end)

    total = 0
    by_category: dict[int, int] = defaultdict(int)
    by_day: dict[str, int] = defaultdict(int)
    by_week: dict[str, int] = defaultdict(int)
    by_month: dict[str, int] = defaultdict(int)
    for expense in items:
        cents = expense.amount_cents
        total += cents
        by_category[expense.category_id] += cents
        by_day[expense.date.isoformat()] += cents
        by_week[week_start(expense.date).isoformat()] += cents
        by_month[month_key(expense.date)] += cents

    breakdown = [
        CategoryShare(
            category_id=category_id,
            category=categories.get(category_id),
            total_cents=cents,
            percentage=cents / total * 100,
        )
        for category_id, cents in by_category.items()
    ]
    breakdown.sort(key=lambda share: share.total_cents, reverse=True)

    daily = _sorted_buckets(by_day)
    highest = daily[0]
    for bucket in daily[1:]:
        if bucket.total_cents > highest.total_cents:
            highest = bucket

    return Report(
        start=start,
        end=end,
        total_cents=total,
        category_breakdown=breakdown,
        daily_trends=daily,
        weekly_trends=_sorted_buckets(by_week),
        monthly_trends=_sorted_buckets(by_month),
        highest_spending_day=highest,
        top_category=breakdown[0],
    )
