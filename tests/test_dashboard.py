from datetime import date
from decimal import Decimal

from insights import BudgetTier, budget_usage, build_dashboard, percentage_of
from models import Transaction, TransactionType


def txn(kind: str, category: str, amount: str, on: date) -> Transaction:
    return Transaction(
        type=TransactionType(kind),
        category=category,
        amount=Decimal(amount),
        date=on,
        description="",
    )


def test_dashboard_example_month() -> None:
    txns = [
        txn("expense", "Food", "50", date(2024, 6, 5)),
        txn("expense", "Food", "30", date(2024, 6, 20)),
        txn("income", "Salary", "2000", date(2024, 6, 1)),
    ]

    result = build_dashboard(txns, date(2024, 6, 1))

    assert result.total_income == Decimal("2000")
    assert result.total_expense == Decimal("80")
    assert [(c.category, c.amount) for c in result.category_breakdown] == [
        ("Food", Decimal("80"))
    ]
    assert [(c.category, c.amount) for c in result.top_categories] == [
        ("Food", Decimal("80"))
    ]
    assert result.category_breakdown[0].percentage == 100.0


def test_dashboard_window_is_half_open() -> None:
    txns = [
        txn("expense", "Food", "10", date(2024, 5, 31)),
        txn("expense", "Food", "20", date(2024, 6, 1)),
        txn("expense", "Food", "40", date(2024, 6, 30)),
        txn("expense", "Food", "80", date(2024, 7, 1)),
        txn("income", "Gift", "5", date(2024, 7, 1)),
    ]

    result = build_dashboard(txns, date(2024, 6, 1))

    assert result.total_expense == Decimal("60")
    assert result.total_income == Decimal("0")


def test_monthly_trends_has_six_zero_filled_months_across_year_boundary() -> None:
    txns = [
        txn("income", "Salary", "1000", date(2023, 10, 15)),
        txn("expense", "Housing", "700", date(2024, 2, 3)),
        txn("expense", "Housing", "700", date(2023, 8, 3)),  # outside the trend
    ]

    result = build_dashboard(txns, date(2024, 2, 1))

    assert [t.month for t in result.monthly_trends] == [
        "2023-09",
        "2023-10",
        "2023-11",
        "2023-12",
        "2024-01",
        "2024-02",
    ]
    by_month = {t.month: (t.income, t.expense) for t in result.monthly_trends}
    assert by_month["2023-09"] == (Decimal("0"), Decimal("0"))
    assert by_month["2023-10"] == (Decimal("1000"), Decimal("0"))
    assert by_month["2024-02"] == (Decimal("0"), Decimal("700"))


def test_monthly_trends_for_empty_history() -> None:
    result = build_dashboard([], date(2024, 6, 1))

    assert len(result.monthly_trends) == 6
    assert all(t.income == 0 and t.expense == 0 for t in result.monthly_trends)
    assert result.category_breakdown == []
    assert result.top_categories == []


def test_top_categories_are_stable_and_truncated() -> None:
    on = date(2024, 6, 10)
    txns = [
        txn("expense", "Food", "50", on),
        txn("expense", "Shopping", "80", on),
        txn("expense", "Utilities", "50", on),
        txn("expense", "Other", "10", on),
        txn("expense", "Entertainment", "80", on),
    ]

    result = build_dashboard(txns, date(2024, 6, 1))

    assert [c.category for c in result.category_breakdown] == [
        "Food",
        "Shopping",
        "Utilities",
        "Other",
        "Entertainment",
    ]
    assert [c.category for c in result.top_categories] == [
        "Shopping",
        "Entertainment",
        "Food",
    ]


def test_percentage_guards_zero_denominator() -> None:
    assert percentage_of(Decimal("10"), Decimal("0")) == 0.0
    assert percentage_of(Decimal("0"), Decimal("0")) == 0.0


def test_budget_usage_tiers() -> None:
    usage = budget_usage(Decimal("100"), Decimal("80"))
    assert usage.percentage == 80.0
    assert usage.tier == BudgetTier.warning

    assert budget_usage(Decimal("100"), Decimal("74.99")).tier == BudgetTier.nominal
    assert budget_usage(Decimal("100"), Decimal("90")).tier == BudgetTier.critical
    assert budget_usage(Decimal("100"), Decimal("150")).percentage == 150.0

    empty = budget_usage(Decimal("0"), Decimal("25"))
    assert empty.percentage == 0.0
    assert empty.tier == BudgetTier.nominal
