import json
from datetime import date
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from completion import CompletionClient, CompletionError
from config import Settings
from database import Base
from insights import format_chat_context, summarize_for_chat
from models import Transaction, TransactionType, User
from periods import extract_month_period
from schemas import BudgetIn, SavingGoalIn, TransactionIn
from services import BudgetService, ChatService, SavingGoalService, TransactionService


def txn(kind: str, category: str, amount: str, on: date) -> Transaction:
    return Transaction(
        type=TransactionType(kind),
        category=category,
        amount=Decimal(amount),
        date=on,
        description="",
    )


def make_client(handler, api_key: str = "test-key") -> CompletionClient:
    settings = Settings(
        database_url="sqlite://",
        timezone="UTC",
        auth_secret="test-secret",
        token_max_age_hours=1,
        completion_api_key=api_key,
        completion_base_url="https://llm.test/v1",
        completion_model="test-model",
        completion_timeout_secs=5,
        cors_origins=["*"],
    )
    http = httpx.Client(
        base_url=settings.completion_base_url, transport=httpx.MockTransport(handler)
    )
    return CompletionClient(settings, http)


def reply_with(content: str):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, json={"choices": [{"message": {"role": "assistant", "content": content}}]}
        )

    return handler


def test_summary_totals_for_extracted_month() -> None:
    today = date(2024, 8, 15)
    txns = [
        txn("expense", "Food", "50", date(2024, 6, 5)),
        txn("expense", "Food", "30", date(2024, 6, 20)),
        txn("income", "Salary", "2000", date(2024, 6, 1)),
        txn("expense", "Housing", "900", date(2024, 7, 1)),
    ]
    period = extract_month_period("How was June 2024?", today=today)

    summary = summarize_for_chat(txns, today=today, period=period)

    assert summary.total_income == Decimal("2000")
    assert summary.total_expense == Decimal("80")
    assert summary.savings == Decimal("1920")
    assert summary.transaction_count == 3
    assert summary.biggest_category == ("Food", Decimal("80"))


def test_summary_without_period_uses_everything() -> None:
    today = date(2024, 8, 15)
    txns = [
        txn("expense", "Food", "50", date(2021, 6, 5)),
        txn("income", "Gift", "10", date(2024, 8, 1)),
    ]

    summary = summarize_for_chat(txns, today=today)

    assert summary.transaction_count == 2
    assert summary.savings == Decimal("-40")


def test_biggest_category_ties_keep_first_encountered() -> None:
    on = date(2024, 6, 5)
    txns = [
        txn("expense", "Shopping", "40", on),
        txn("expense", "Food", "40", on),
    ]

    summary = summarize_for_chat(txns, today=date(2024, 6, 30))

    assert summary.biggest_category == ("Shopping", Decimal("40"))


def test_monthly_averages_only_count_months_with_transactions() -> None:
    today = date(2024, 6, 10)
    txns = [
        txn("income", "Salary", "3000", date(2024, 1, 1)),
        txn("expense", "Food", "100", date(2024, 1, 2)),
        txn("income", "Salary", "1000", date(2024, 4, 1)),
        txn("expense", "Food", "300", date(2024, 6, 1)),
        txn("income", "Salary", "9999", date(2023, 12, 1)),  # outside the window
    ]

    summary = summarize_for_chat(txns, today=today)

    # January, April and June hold data; February, March and May do not count
    assert summary.avg_monthly_income == Decimal("4000") / 3
    assert summary.avg_monthly_expense == Decimal("400") / 3


def test_expense_increase_alert_over_ten_percent() -> None:
    today = date(2024, 6, 10)
    txns = [
        txn("expense", "Food", "200", date(2024, 4, 10)),
        txn("expense", "Food", "250", date(2024, 5, 10)),
    ]

    summary = summarize_for_chat(txns, today=today)

    assert summary.expense_increase == pytest.approx(25.0)
    text = format_chat_context(summary)
    assert "increased by 25.0%" in text


def test_expense_increase_alert_requires_more_than_ten_percent() -> None:
    today = date(2024, 6, 10)
    exactly_ten = [
        txn("expense", "Food", "100", date(2024, 4, 10)),
        txn("expense", "Food", "110", date(2024, 5, 10)),
    ]
    no_prior = [txn("expense", "Food", "110", date(2024, 5, 10))]

    assert summarize_for_chat(exactly_ten, today=today).expense_increase is None
    assert summarize_for_chat(no_prior, today=today).expense_increase is None


def test_chat_context_sends_summary_and_returns_first_choice() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["path"] = request.url.path
        captured["auth"] = request.headers.get("Authorization")
        captured["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "choices": [
                    {"message": {"content": "Cut back on takeout."}},
                    {"message": {"content": "ignored"}},
                ]
            },
        )

    with Session(engine) as session:
        user = User(email="a@example.com", password_hash="x")
        session.add(user)
        session.commit()

        txns = TransactionService(session, user.id)
        for kind, category, amount, on in [
            ("expense", "Food", "50", date(2024, 6, 5)),
            ("expense", "Food", "30", date(2024, 6, 20)),
            ("income", "Salary", "2000", date(2024, 6, 1)),
        ]:
            txns.create(
                TransactionIn(
                    type=TransactionType(kind),
                    category=category,
                    amount=Decimal(amount),
                    date=on,
                )
            )
        BudgetService(session, user.id).create(
            BudgetIn(category="Food", amount=Decimal("100"), month="2024-06")
        )
        goals = SavingGoalService(session, user.id)
        car = goals.create(SavingGoalIn(title="Car", target_amount=Decimal("2000")))
        goals.contribute(car.id, Decimal("500"))

        service = ChatService(session, user.id, make_client(handler))
        reply = service.ask("Any tips for June 2024?", today=date(2024, 6, 25))

    assert reply == "Cut back on takeout."
    assert captured["path"] == "/v1/chat/completions"
    assert captured["auth"] == "Bearer test-key"
    body = captured["body"]
    assert body["model"] == "test-model"
    system, user_message = body["messages"]
    assert system["role"] == "system"
    assert user_message == {"role": "user", "content": "Any tips for June 2024?"}
    assert "Total income: 2000.00" in system["content"]
    assert "Total expenses: 80.00" in system["content"]
    assert "Estimated savings: 1920.00" in system["content"]
    assert "Biggest expense category: Food (80.00)" in system["content"]
    assert "- Food: 100.00 for 2024-06 (spent 80.00)" in system["content"]
    assert "- Car: 500.00 / 2000.00" in system["content"]


def test_completion_errors_are_raised() -> None:
    def failing(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"error": "overloaded"})

    def malformed(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": []})

    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("boom", request=request)

    for handler in (failing, malformed, unreachable):
        with pytest.raises(CompletionError):
            make_client(handler).ask("system", "hello")

    with pytest.raises(CompletionError, match="not configured"):
        make_client(reply_with("hi"), api_key="").ask("system", "hello")
