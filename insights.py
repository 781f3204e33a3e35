from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional, Protocol

from models import CENT, TransactionType
from periods import Period, add_months, month_key, month_period, month_start


ZERO = Decimal("0")

WARNING_THRESHOLD = 75
CRITICAL_THRESHOLD = 90
EXPENSE_INCREASE_ALERT = Decimal("1.10")
TREND_MONTHS = 6


class TransactionLike(Protocol):
    amount: Decimal
    category: str
    type: TransactionType
    date: date


class BudgetLike(Protocol):
    category: str
    amount: Decimal
    month: str


class GoalLike(Protocol):
    title: str
    current_amount: Decimal
    target_amount: Decimal
    deadline: Optional[date]


class BudgetTier(str, Enum):
    nominal = "nominal"
    warning = "warning"
    critical = "critical"


@dataclass(frozen=True)
class CategoryAmount:
    category: str
    amount: Decimal
    percentage: float


@dataclass(frozen=True)
class MonthlyTrend:
    month: str
    income: Decimal
    expense: Decimal


@dataclass(frozen=True)
class DashboardResult:
    total_income: Decimal
    total_expense: Decimal
    category_breakdown: list[CategoryAmount]
    top_categories: list[CategoryAmount]
    monthly_trends: list[MonthlyTrend]


@dataclass(frozen=True)
class BudgetUsage:
    spent: Decimal
    percentage: float
    tier: BudgetTier


def percentage_of(part: Decimal, whole: Decimal) -> float:
    if not whole:
        return 0.0
    return float(Decimal(part) / Decimal(whole) * 100)


def in_period(
    transactions: Iterable[TransactionLike], period: Optional[Period]
) -> list[TransactionLike]:
    if period is None:
        return list(transactions)
    return [t for t in transactions if period.contains(t.date)]


def income_expense(transactions: Iterable[TransactionLike]) -> tuple[Decimal, Decimal]:
    income = ZERO
    expense = ZERO
    for txn in transactions:
        if txn.type == TransactionType.income:
            income += txn.amount
        elif txn.type == TransactionType.expense:
            expense += txn.amount
    return income, expense


def expense_by_category(transactions: Iterable[TransactionLike]) -> dict[str, Decimal]:
    """Sum expense amounts per category, keyed in first-seen order."""
    totals: dict[str, Decimal] = {}
    for txn in transactions:
        if txn.type != TransactionType.expense:
            continue
        totals[txn.category] = totals.get(txn.category, ZERO) + txn.amount
    return totals


def rank_categories(totals: Mapping[str, Decimal]) -> list[tuple[str, Decimal]]:
    # sorted() is stable with reverse=True, so ties keep first-seen order
    return sorted(totals.items(), key=lambda item: item[1], reverse=True)


def build_dashboard(
    transactions: Iterable[TransactionLike], month: date
) -> DashboardResult:
    """Totals, category breakdown and a six month trend for ``month``.

    Every window is the half-open range ``[first of month, first of next
    month)``. The trend always has exactly six entries ending with ``month``,
    oldest first, with zeroes for months without data.
    """
    all_txns = list(transactions)
    current = month_period(month)
    window = in_period(all_txns, current)

    total_income, total_expense = income_expense(window)

    breakdown = [
        CategoryAmount(
            category=category,
            amount=amount,
            percentage=percentage_of(amount, total_expense),
        )
        for category, amount in expense_by_category(window).items()
    ]
    top = sorted(breakdown, key=lambda c: c.amount, reverse=True)[:3]

    trends: list[MonthlyTrend] = []
    for offset in range(TREND_MONTHS - 1, -1, -1):
        target = add_months(current.start, -offset)
        income, expense = income_expense(in_period(all_txns, month_period(target)))
        trends.append(
            MonthlyTrend(month=month_key(target), income=income, expense=expense)
        )

    return DashboardResult(
        total_income=total_income,
        total_expense=total_expense,
        category_breakdown=breakdown,
        top_categories=top,
        monthly_trends=trends,
    )


def usage_tier(percentage: float) -> BudgetTier:
    if percentage >= CRITICAL_THRESHOLD:
        return BudgetTier.critical
    if percentage >= WARNING_THRESHOLD:
        return BudgetTier.warning
    return BudgetTier.nominal


def budget_usage(amount: Decimal, spent: Decimal) -> BudgetUsage:
    percentage = percentage_of(spent, amount)
    return BudgetUsage(spent=spent, percentage=percentage, tier=usage_tier(percentage))


@dataclass(frozen=True)
class ChatSummary:
    period: Optional[Period]
    total_income: Decimal
    total_expense: Decimal
    savings: Decimal
    transaction_count: int
    biggest_category: Optional[tuple[str, Decimal]]
    avg_monthly_income: Decimal
    avg_monthly_expense: Decimal
    expense_increase: Optional[float]


def monthly_averages(
    transactions: Iterable[TransactionLike], today: date
) -> tuple[Decimal, Decimal]:
    """Average income and expense over the six months ending with ``today``.

    Only months holding at least one transaction count towards the divisor.
    """
    window = Period(
        add_months(month_start(today), -(TREND_MONTHS - 1)),
        add_months(month_start(today), 1),
    )
    by_month: dict[str, list[TransactionLike]] = {}
    for txn in in_period(transactions, window):
        by_month.setdefault(month_key(txn.date), []).append(txn)
    if not by_month:
        return ZERO, ZERO

    income_total = ZERO
    expense_total = ZERO
    for txns in by_month.values():
        income, expense = income_expense(txns)
        income_total += income
        expense_total += expense
    months = Decimal(len(by_month))
    return income_total / months, expense_total / months


def expense_increase(
    transactions: Iterable[TransactionLike], today: date
) -> Optional[float]:
    """Percent growth of last month's expenses over the month before.

    Returns ``None`` unless the growth exceeds 10%.
    """
    all_txns = list(transactions)
    last = add_months(month_start(today), -1)
    prior = add_months(month_start(today), -2)
    _, last_expense = income_expense(in_period(all_txns, month_period(last)))
    _, prior_expense = income_expense(in_period(all_txns, month_period(prior)))
    if not prior_expense:
        return None
    if last_expense <= prior_expense * EXPENSE_INCREASE_ALERT:
        return None
    return percentage_of(last_expense - prior_expense, prior_expense)


def summarize_for_chat(
    transactions: Iterable[TransactionLike],
    *,
    today: date,
    period: Optional[Period] = None,
) -> ChatSummary:
    all_txns = list(transactions)
    scoped = in_period(all_txns, period)
    income, expense = income_expense(scoped)
    ranked = rank_categories(expense_by_category(scoped))
    avg_income, avg_expense = monthly_averages(all_txns, today)
    return ChatSummary(
        period=period,
        total_income=income,
        total_expense=expense,
        savings=income - expense,
        transaction_count=len(scoped),
        biggest_category=ranked[0] if ranked else None,
        avg_monthly_income=avg_income,
        avg_monthly_expense=avg_expense,
        expense_increase=expense_increase(all_txns, today),
    )


def _money(value: Decimal) -> str:
    return f"{Decimal(value).quantize(CENT):.2f}"


def format_chat_context(
    summary: ChatSummary,
    budgets: Sequence[BudgetLike] = (),
    goals: Sequence[GoalLike] = (),
    spent_by_category: Optional[Mapping[str, Decimal]] = None,
) -> str:
    spent_by_category = spent_by_category or {}
    if summary.period is None:
        scope = "all recorded transactions"
    else:
        scope = summary.period.start.strftime("%B %Y")

    lines = [
        "You are a helpful personal finance assistant. Use the user's financial "
        "data below to give specific, practical advice. Keep answers concise.",
        "",
        f"Financial summary ({scope}):",
        f"- Total income: {_money(summary.total_income)}",
        f"- Total expenses: {_money(summary.total_expense)}",
        f"- Estimated savings: {_money(summary.savings)}",
        f"- Number of transactions: {summary.transaction_count}",
    ]
    if summary.biggest_category:
        category, amount = summary.biggest_category
        lines.append(f"- Biggest expense category: {category} ({_money(amount)})")
    else:
        lines.append("- Biggest expense category: none")
    lines.append(
        f"- Average monthly income (last 6 months): {_money(summary.avg_monthly_income)}"
    )
    lines.append(
        f"- Average monthly expenses (last 6 months): {_money(summary.avg_monthly_expense)}"
    )
    if summary.expense_increase is not None:
        lines.append(
            f"- Alert: expenses last month increased by {summary.expense_increase:.1f}% "
            "compared to the month before."
        )

    lines.append("")
    lines.append("Current budgets:")
    if budgets:
        for budget in budgets:
            spent = spent_by_category.get(budget.category, ZERO)
            lines.append(
                f"- {budget.category}: {_money(budget.amount)} for {budget.month} "
                f"(spent {_money(spent)})"
            )
    else:
        lines.append("- none")

    lines.append("")
    lines.append("Savings goals:")
    if goals:
        for goal in goals:
            line = (
                f"- {goal.title}: {_money(goal.current_amount)} / "
                f"{_money(goal.target_amount)}"
            )
            if goal.deadline:
                line += f" by {goal.deadline.isoformat()}"
            lines.append(line)
    else:
        lines.append("- none")

    return "\n".join(lines)
