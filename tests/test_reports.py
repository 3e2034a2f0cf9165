from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import Category, Expense
from reports import build_report, month_key, week_start
from schemas import CategoryIn, ExpenseIn
from services import CategoryService, ExpenseService, ReportService


def _category(category_id: int, name: str) -> Category:
    return Category(
        id=category_id,
        user_id=1,
        name=name,
        color="#FFFFFF",
        icon="📦",
        is_default=False,
        created_at=datetime(2024, 1, 1),
    )


def _expense(cents: int, day: date, category_id: int) -> Expense:
    return Expense(amount_cents=cents, date=day, category_id=category_id)


def test_week_start_is_monday_and_month_key():
    assert week_start(date(2024, 1, 3)) == date(2024, 1, 1)
    assert week_start(date(2024, 1, 7)) == date(2024, 1, 1)
    assert week_start(date(2024, 1, 8)) == date(2024, 1, 8)
    assert month_key(date(2024, 3, 9)) == "2024-03"


def test_build_report_aggregates_by_category_and_time():
    categories = {1: _category(1, "A"), 2: _category(2, "B")}
    expenses = [
        _expense(1000, date(2024, 1, 1), 1),
        _expense(500, date(2024, 1, 1), 2),
        _expense(2000, date(2024, 1, 8), 1),
    ]
    report = build_report(expenses, categories, date(2024, 1, 1), date(2024, 1, 31))

    assert report.total_cents == 3500
    assert [s.category.name for s in report.category_breakdown] == ["A", "B"]
    assert [s.total_cents for s in report.category_breakdown] == [3000, 500]
    assert report.category_breakdown[0].percentage == pytest.approx(85.714, abs=1e-3)
    assert report.category_breakdown[1].percentage == pytest.approx(14.286, abs=1e-3)

    data = report.as_dict()
    assert data["totalExpenses"] == 35.0
    assert data["dailyTrends"] == [
        {"date": "2024-01-01", "total": 15.0},
        {"date": "2024-01-08", "total": 20.0},
    ]
    assert data["weeklyTrends"] == [
        {"week": "2024-01-01", "total": 15.0},
        {"week": "2024-01-08", "total": 20.0},
    ]
    assert data["monthlyTrends"] == [{"month": "2024-01", "total": 35.0}]
    assert data["highestSpendingDay"] == {"date": "2024-01-08", "total": 20.0}
    assert data["topCategory"]["category"]["name"] == "A"
    assert data["topCategory"]["total"] == 30.0


def test_breakdown_totals_match_overall_total():
    categories = {i: _category(i, f"C{i}") for i in range(1, 4)}
    expenses = [
        _expense(333, date(2024, 5, 1), 1),
        _expense(333, date(2024, 5, 2), 2),
        _expense(334, date(2024, 5, 3), 3),
        _expense(1, date(2024, 6, 30), 3),
    ]
    report = build_report(expenses, categories, date(2024, 5, 1), date(2024, 6, 30))
    assert sum(s.total_cents for s in report.category_breakdown) == report.total_cents
    assert sum(s.percentage for s in report.category_breakdown) == pytest.approx(100.0)
    assert sum(b.total_cents for b in report.daily_trends) == report.total_cents
    assert sum(b.total_cents for b in report.weekly_trends) == report.total_cents
    assert [b.key for b in report.monthly_trends] == ["2024-05", "2024-06"]


def test_weekly_bucket_uses_preceding_monday():
    report = build_report(
        [_expense(700, date(2024, 1, 3), 1)],
        {1: _category(1, "A")},
        date(2024, 1, 1),
        date(2024, 1, 31),
    )
    assert report.as_dict()["weeklyTrends"] == [{"week": "2024-01-01", "total": 7.0}]


def test_highest_spending_day_tie_keeps_earliest():
    report = build_report(
        [_expense(500, date(2024, 1, 9), 1), _expense(500, date(2024, 1, 2), 1)],
        {1: _category(1, "A")},
        date(2024, 1, 1),
        date(2024, 1, 31),
    )
    assert report.highest_spending_day.key == "2024-01-02"


def test_unknown_category_is_reported_without_details():
    report = build_report(
        [_expense(250, date(2024, 1, 2), 9)], {}, date(2024, 1, 1), date(2024, 1, 31)
    )
    assert report.as_dict()["categoryBreakdown"] == [
        {"category": None, "total": 2.5, "percentage": 100.0}
    ]


def test_empty_report_has_zero_totals():
    report = build_report([], {}, date(2024, 1, 1), date(2024, 1, 31))
    assert report.is_empty
    assert report.as_dict() == {
        "totalExpenses": 0.0,
        "categoryBreakdown": [],
        "dailyTrends": [],
        "weeklyTrends": [],
        "monthlyTrends": [],
        "highestSpendingDay": {"date": "2024-01-01", "total": 0.0},
        "topCategory": {"category": None, "total": 0},
    }


def test_report_service_uses_the_users_range():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        categories = CategoryService(session, user_id=1)
        food = next(c for c in categories.list_all() if c.name == "Food")
        travel = categories.create(CategoryIn(name="Travel"))
        expenses = ExpenseService(session, user_id=1)
        for amount, day, category_id in (
            ("10", date(2024, 1, 1), food.id),
            ("5", date(2024, 1, 1), travel.id),
            ("20", date(2024, 1, 8), food.id),
            ("99", date(2024, 2, 1), food.id),
        ):
            expenses.create(
                ExpenseIn(amount=Decimal(amount), date=day, category_id=category_id)
            )
        CategoryService(session, user_id=2).list_all()
        ExpenseService(session, user_id=2).create(
            ExpenseIn(amount=Decimal("1000"), date=date(2024, 1, 2), category_id=1)
        )

        report = ReportService(session, user_id=1).generate(
            date(2024, 1, 1), date(2024, 1, 31)
        )
        assert report.total_cents == 3500
        assert report.top_category.category.id == food.id
        assert report.highest_spending_day.key == "2024-01-08"

        inverted = ReportService(session, user_id=1).generate(
            date(2024, 1, 31), date(2024, 1, 1)
        )
        assert inverted.is_empty
        assert inverted.total_cents == 0
