import datetime as dt
from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from insights import BudgetTier
from models import TransactionType


class ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class UserCreate(ApiModel):
    email: str = Field(..., min_length=3, max_length=254, pattern=r"^[^@\s]+@[^@\s]+$")
    password: str = Field(..., min_length=6, max_length=128)

    @field_validator("email", mode="before")
    @classmethod
    def _strip_email(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value


class UserLogin(ApiModel):
    email: str = Field(..., min_length=1, max_length=254)
    password: str = Field(..., min_length=1, max_length=128)


class UserOut(ApiModel):
    id: int
    email: str


class TokenOut(ApiModel):
    token: str


class CategoriesOut(ApiModel):
    income: list[str]
    expense: list[str]


class TransactionIn(ApiModel):
    amount: Decimal = Field(..., ge=0, max_digits=18, decimal_places=2)
    category: str = Field(..., min_length=1, max_length=50)
    type: TransactionType
    date: dt.date
    description: str = Field(default="", max_length=500)


class TransactionOut(ApiModel):
    id: int
    amount: float
    category: str
    type: TransactionType
    date: date
    description: str


class BudgetIn(ApiModel):
    category: str = Field(..., min_length=1, max_length=50)
    amount: Decimal = Field(..., ge=0, max_digits=18, decimal_places=2)
    month: str


class BudgetOut(ApiModel):
    id: int
    category: str
    amount: float
    month: str
    spent: float
    percentage: float
    tier: BudgetTier


class SavingGoalIn(ApiModel):
    title: str = Field(..., min_length=1, max_length=120)
    target_amount: Decimal = Field(..., gt=0, max_digits=18, decimal_places=2)
    deadline: Optional[dt.date] = None


class ContributionIn(ApiModel):
    amount: Decimal = Field(..., gt=0, max_digits=18, decimal_places=2)


class SavingGoalOut(ApiModel):
    id: int
    title: str
    target_amount: float
    current_amount: float
    deadline: Optional[date]
    created_at: datetime
    progress: float


class NotificationIn(ApiModel):
    message: str = Field(..., min_length=1, max_length=500)


class NotificationOut(ApiModel):
    id: int
    message: str
    created_at: datetime
    is_read: bool
    unique_key: Optional[str]


class CategoryAmountOut(ApiModel):
    category: str
    amount: float
    percentage: float


class MonthlyTrendOut(ApiModel):
    month: str
    income: float
    expense: float


class DashboardOut(ApiModel):
    total_income: float
    total_expense: float
    category_breakdown: list[CategoryAmountOut]
    top_categories: list[CategoryAmountOut]
    monthly_trends: list[MonthlyTrendOut]


class ChatIn(ApiModel):
    message: str = Field(..., min_length=1, max_length=2000)


class ChatOut(ApiModel):
    reply: str


class ReceiptParseIn(ApiModel):
    ocr_text: str = Field(default="", max_length=20_000)


class ReceiptItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    amount: Decimal = Field(..., ge=0)
    category: str = ""
    date: Optional[dt.date] = None
    description: str = ""

    @field_validator("date", mode="before")
    @classmethod
    def _lenient_date(cls, value: object) -> object:
        if isinstance(value, str):
            try:
                return dt.date.fromisoformat(value.strip()[:10])
            except ValueError:
                return None
        return value


class ReceiptItemOut(ApiModel):
    amount: float
    category: str
    date: Optional[date]
    description: str
    type: Literal["expense"]
