from __future__ import annotations

import json
import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from categories import EXPENSE_CATEGORIES, snap_category, validate_category
from completion import CompletionClient, CompletionError
from insights import (
    BudgetTier,
    BudgetUsage,
    DashboardResult,
    budget_usage,
    build_dashboard,
    expense_by_category,
    format_chat_context,
    percentage_of,
    summarize_for_chat,
)
from models import (
    Budget,
    Notification,
    SavingGoal,
    Transaction,
    TransactionType,
    User,
    to_cents,
)
from periods import (
    Period,
    add_months,
    extract_month_period,
    month_key,
    month_period,
    parse_month_key,
    today_local,
)
from schemas import (
    BudgetIn,
    ReceiptItem,
    SavingGoalIn,
    TransactionIn,
    UserCreate,
    UserLogin,
)
from security import hash_password, issue_token, verify_password


logger = logging.getLogger(__name__)


class NotFoundError(ValueError):
    pass


class AuthenticationError(ValueError):
    pass


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    @staticmethod
    def _normalize_email(email: str) -> str:
        return email.strip().lower()

    def get_by_email(self, email: str) -> Optional[User]:
        return self.session.scalar(
            select(User).where(User.email == self._normalize_email(email))
        )

    def register(self, data: UserCreate) -> User:
        email = self._normalize_email(data.email)
        if self.get_by_email(email):
            raise ValueError("User already exists")

        user = User(email=email, password_hash=hash_password(data.password))
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ValueError("User already exists") from exc
        self.session.refresh(user)
        logger.info(f"user_registered: user_id={user.id}")
        return user

    def authenticate(self, data: UserLogin) -> User:
        user = self.get_by_email(data.email)
        if not user or not verify_password(data.password, user.password_hash):
            raise AuthenticationError("Invalid credentials")
        return user

    def login(self, data: UserLogin) -> str:
        user = self.authenticate(data)
        logger.info(f"user_login: user_id={user.id}")
        return issue_token(user.id)


class TransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    @staticmethod
    def _validate(data: TransactionIn) -> None:
        if not validate_category(data.category, data.type):
            raise ValueError("Invalid category for transaction type.")

    def list_all(self) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def chronological(self, period: Optional[Period] = None) -> list[Transaction]:
        stmt = select(Transaction).where(Transaction.user_id == self.user_id)
        if period is not None:
            stmt = stmt.where(
                Transaction.date >= period.start, Transaction.date < period.end
            )
        stmt = stmt.order_by(Transaction.date.asc(), Transaction.id.asc())
        return list(self.session.scalars(stmt).all())

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.user_id != self.user_id:
            raise NotFoundError("Transaction not found")
        return txn

    def create(self, data: TransactionIn) -> Transaction:
        self._validate(data)
        txn = Transaction(
            user_id=self.user_id,
            amount=data.amount,
            category=data.category,
            type=data.type,
            date=data.date,
            description=data.description.strip(),
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        logger.info(
            f"transaction_created: user_id={self.user_id} id={txn.id} "
            f"type={txn.type.value} category={txn.category}"
        )
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        self._validate(data)

        txn.amount = data.amount
        txn.category = data.category
        txn.type = data.type
        txn.date = data.date
        txn.description = data.description.strip()

        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()
        logger.info(f"transaction_deleted: user_id={self.user_id} id={transaction_id}")


class NotificationService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Notification]:
        stmt = (
            select(Notification)
            .where(Notification.user_id == self.user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def create(self, message: str) -> Notification:
        notification = Notification(user_id=self.user_id, message=message.strip())
        self.session.add(notification)
        self.session.commit()
        self.session.refresh(notification)
        return notification

    def _by_key(self, unique_key: str) -> Optional[Notification]:
        return self.session.scalar(
            select(Notification).where(
                Notification.user_id == self.user_id,
                Notification.unique_key == unique_key,
            )
        )

    def emit(self, message: str, unique_key: str) -> Notification:
        """Store at most one notification per ``unique_key`` for this user."""
        existing = self._by_key(unique_key)
        if existing:
            return existing

        notification = Notification(
            user_id=self.user_id, message=message, unique_key=unique_key
        )
        self.session.add(notification)
        try:
            self.session.commit()
        except IntegrityError:
            # lost a race with another request emitting the same key
            self.session.rollback()
            existing = self._by_key(unique_key)
            if existing is None:
                raise
            return existing
        self.session.refresh(notification)
        logger.info(
            f"notification_emitted: user_id={self.user_id} key={unique_key}"
        )
        return notification

    def mark_read(self, notification_id: int) -> None:
        notification = self.session.get(Notification, notification_id)
        if not notification or notification.user_id != self.user_id:
            raise NotFoundError("Notification not found")
        notification.is_read = True
        self.session.commit()


class BudgetService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    @staticmethod
    def _validate(data: BudgetIn) -> str:
        """Check ``data`` and return its month in canonical ``YYYY-MM`` form."""
        month = month_key(parse_month_key(data.month))
        if data.category not in EXPENSE_CATEGORIES:
            raise ValueError("Invalid budget category.")
        return month

    def _find(
        self, category: str, month: str, exclude_id: Optional[int] = None
    ) -> Optional[Budget]:
        stmt = select(Budget).where(
            Budget.user_id == self.user_id,
            Budget.category == category,
            Budget.month == month,
        )
        if exclude_id is not None:
            stmt = stmt.where(Budget.id != exclude_id)
        return self.session.scalar(stmt)

    def get(self, budget_id: int) -> Budget:
        budget = self.session.get(Budget, budget_id)
        if not budget or budget.user_id != self.user_id:
            raise NotFoundError("Budget not found")
        return budget

    def list_for_month(self, month: str) -> list[Budget]:
        parse_month_key(month)
        stmt = (
            select(Budget)
            .where(Budget.user_id == self.user_id, Budget.month == month)
            .order_by(Budget.category.asc())
        )
        return list(self.session.scalars(stmt).all())

    def spent_by_category(self, month: str) -> dict[str, Decimal]:
        period = month_period(parse_month_key(month))
        txns = self.session.scalars(
            select(Transaction).where(
                Transaction.user_id == self.user_id,
                Transaction.type == TransactionType.expense,
                Transaction.date >= period.start,
                Transaction.date < period.end,
            )
        ).all()
        return expense_by_category(txns)

    def usage(self, budget: Budget) -> BudgetUsage:
        spent = self.spent_by_category(budget.month).get(budget.category, Decimal("0"))
        return budget_usage(budget.amount, spent)

    def usage_for_month(self, month: str) -> list[tuple[Budget, BudgetUsage]]:
        """Budgets for ``month`` joined with their spending.

        Every budget at or above the critical threshold raises a one-off
        notification for the user.
        """
        budgets = self.list_for_month(month)
        spent = self.spent_by_category(month)
        notifications = NotificationService(self.session, self.user_id)

        results: list[tuple[Budget, BudgetUsage]] = []
        for budget in budgets:
            usage = budget_usage(budget.amount, spent.get(budget.category, Decimal("0")))
            if usage.tier == BudgetTier.critical:
                notifications.emit(
                    f"You've used {usage.percentage:.1f}% of your "
                    f"{budget.category} budget for {budget.month}!",
                    f"budget-{budget.id}-90",
                )
            results.append((budget, usage))
        return results

    def create(self, data: BudgetIn) -> Budget:
        month = self._validate(data)
        message = (
            f"Budget already exists for category '{data.category}' "
            f"and month '{month}'."
        )
        if self._find(data.category, month):
            raise ValueError(message)

        budget = Budget(
            user_id=self.user_id,
            category=data.category,
            amount=data.amount,
            month=month,
        )
        self.session.add(budget)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ValueError(message) from exc
        self.session.refresh(budget)
        logger.info(
            f"budget_created: user_id={self.user_id} category={budget.category} "
            f"month={budget.month}"
        )
        return budget

    def update(self, budget_id: int, data: BudgetIn) -> Budget:
        budget = self.get(budget_id)
        month = self._validate(data)
        message = (
            f"A budget for category '{data.category}' already exists for this month"
        )
        if self._find(data.category, month, exclude_id=budget_id):
            raise ValueError(message)

        budget.category = data.category
        budget.amount = data.amount
        budget.month = month
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ValueError(message) from exc
        self.session.refresh(budget)
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        self.session.delete(budget)
        self.session.commit()


class SavingGoalService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    @staticmethod
    def progress(goal: SavingGoal) -> float:
        return percentage_of(goal.current_amount, goal.target_amount)

    def get(self, goal_id: int) -> SavingGoal:
        goal = self.session.get(SavingGoal, goal_id)
        if not goal or goal.user_id != self.user_id:
            raise NotFoundError("Saving goal not found")
        return goal

    def list_all(self) -> list[SavingGoal]:
        stmt = (
            select(SavingGoal)
            .where(SavingGoal.user_id == self.user_id)
            .order_by(SavingGoal.id.asc())
        )
        return list(self.session.scalars(stmt).all())

    def list_with_notifications(self) -> list[SavingGoal]:
        goals = self.list_all()
        notifications = NotificationService(self.session, self.user_id)
        for goal in goals:
            percent = self.progress(goal)
            if percent >= 100:
                notifications.emit(
                    f"You've reached your saving goal: {goal.title}!",
                    f"savings-{goal.id}-100",
                )
            elif percent >= 75:
                notifications.emit(
                    f"You're {percent:.0f}% of the way to your goal: {goal.title}.",
                    f"savings-{goal.id}-75",
                )
        return goals

    def create(self, data: SavingGoalIn) -> SavingGoal:
        goal = SavingGoal(
            user_id=self.user_id,
            title=data.title.strip(),
            target_amount=data.target_amount,
            current_amount=Decimal("0"),
            deadline=data.deadline,
        )
        self.session.add(goal)
        self.session.commit()
        self.session.refresh(goal)
        logger.info(f"goal_created: user_id={self.user_id} id={goal.id}")
        return goal

    def contribute(self, goal_id: int, amount: Decimal) -> SavingGoal:
        if amount <= 0:
            raise ValueError("Contribution must be greater than zero.")
        goal = self.get(goal_id)
        goal.current_cents = goal.current_cents + to_cents(amount)
        self.session.commit()
        self.session.refresh(goal)
        logger.info(
            f"goal_contribution: user_id={self.user_id} id={goal.id} amount={amount}"
        )
        return goal

    def delete(self, goal_id: int) -> None:
        goal = self.get(goal_id)
        self.session.delete(goal)
        self.session.commit()


class DashboardService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def for_month(self, month: date) -> DashboardResult:
        start = month.replace(day=1)
        window = Period(add_months(start, -5), add_months(start, 1))
        txns = TransactionService(self.session, self.user_id).chronological(window)
        return build_dashboard(txns, start)


class ChatService:
    def __init__(
        self, session: Session, user_id: int, client: CompletionClient
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.client = client

    def build_context(self, message: str, *, today: Optional[date] = None) -> str:
        today = today or today_local()
        period = extract_month_period(message, today=today)
        txns = TransactionService(self.session, self.user_id).chronological()
        summary = summarize_for_chat(txns, today=today, period=period)

        current = month_key(today)
        budgets = BudgetService(self.session, self.user_id)
        goals = SavingGoalService(self.session, self.user_id).list_all()
        return format_chat_context(
            summary,
            budgets=budgets.list_for_month(current),
            goals=goals,
            spent_by_category=budgets.spent_by_category(current),
        )

    def ask(self, message: str, *, today: Optional[date] = None) -> str:
        context = self.build_context(message, today=today)
        logger.info(f"chat_request: user_id={self.user_id} chars={len(message)}")
        return self.client.ask(context, message)


RECEIPT_PROMPT = """Extract the expense items from the receipt text below.

Return ONLY a JSON array. Each element must be an object with the fields
"amount" (number), "category" (one of: {categories}), "date" (YYYY-MM-DD, or ""
when the receipt does not show a readable date) and "description" (short text).

The text comes from OCR and may contain noise; ignore anything that is not a
purchased item or a total. Example:

[{{"amount": 12.50, "category": "Food", "date": "2025-06-10", "description": "Lunch at Joe's Diner"}}]

Receipt text:
{text}
"""


class ReceiptService:
    def __init__(self, client: CompletionClient) -> None:
        self.client = client

    @staticmethod
    def _strip_fences(content: str) -> str:
        text = content.strip()
        if text.startswith("```"):
            text = text.split("\n", 1)[1] if "\n" in text else ""
            if text.rstrip().endswith("```"):
                text = text.rstrip()[:-3]
        return text.strip()

    def parse(self, ocr_text: str) -> list[ReceiptItem]:
        text = (ocr_text or "").strip()
        if not text:
            raise ValueError("OCR text is required.")

        prompt = RECEIPT_PROMPT.format(
            categories=", ".join(EXPENSE_CATEGORIES), text=text
        )
        content = self._strip_fences(
            self.client.ask("You are an expert receipt parser.", prompt)
        )
        if not content.startswith("["):
            raise CompletionError("Completion returned invalid JSON")
        try:
            raw_items = json.loads(content)
        except json.JSONDecodeError as exc:
            raise CompletionError("Completion returned invalid JSON") from exc

        items: list[ReceiptItem] = []
        for raw in raw_items:
            if not isinstance(raw, dict):
                continue
            fields = {str(k).lower(): v for k, v in raw.items()}
            try:
                item = ReceiptItem.model_validate(fields)
            except ValidationError:
                logger.info("receipt_item_skipped: reason=invalid")
                continue
            item.category = snap_category(item.category, TransactionType.expense)
            items.append(item)
        logger.info(f"receipt_parsed: items={len(items)} skipped={len(raw_items) - len(items)}")
        return items
