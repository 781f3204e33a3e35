import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from categories import EXPENSE_CATEGORIES, INCOME_CATEGORIES
from completion import CompletionClient, CompletionError, get_completion_client
from config import get_settings
from database import SessionLocal, init_db
from insights import BudgetUsage, DashboardResult
from models import Budget, SavingGoal
from periods import parse_month_key, today_local
from schemas import (
    BudgetIn,
    BudgetOut,
    CategoriesOut,
    ChatIn,
    ChatOut,
    ContributionIn,
    DashboardOut,
    NotificationIn,
    NotificationOut,
    ReceiptItemOut,
    ReceiptParseIn,
    SavingGoalIn,
    SavingGoalOut,
    TokenOut,
    TransactionIn,
    TransactionOut,
    UserCreate,
    UserLogin,
    UserOut,
)
from security import read_token
from services import (
    AuthenticationError,
    BudgetService,
    ChatService,
    DashboardService,
    NotFoundError,
    NotificationService,
    ReceiptService,
    SavingGoalService,
    TransactionService,
    UserService,
)


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="FinAI API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

bearer_scheme = HTTPBearer(auto_error=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> int:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=401,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    user_id = read_token(credentials.credentials)
    if user_id is None:
        raise HTTPException(
            status_code=401,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id


@app.on_event("startup")
def startup_event():
    init_db()
    logger.info("startup: schema ready")


@app.on_event("shutdown")
def shutdown_event():
    get_completion_client().close()


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"store_error: path={request.url.path}", exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def budget_payload(budget: Budget, usage: BudgetUsage) -> BudgetOut:
    return BudgetOut(
        id=budget.id,
        category=budget.category,
        amount=budget.amount,
        month=budget.month,
        spent=usage.spent,
        percentage=usage.percentage,
        tier=usage.tier,
    )


def goal_payload(goal: SavingGoal) -> SavingGoalOut:
    return SavingGoalOut(
        id=goal.id,
        title=goal.title,
        target_amount=goal.target_amount,
        current_amount=goal.current_amount,
        deadline=goal.deadline,
        created_at=goal.created_at,
        progress=SavingGoalService.progress(goal),
    )


def dashboard_payload(result: DashboardResult) -> DashboardOut:
    return DashboardOut(
        total_income=result.total_income,
        total_expense=result.total_expense,
        category_breakdown=[vars(c) for c in result.category_breakdown],
        top_categories=[vars(c) for c in result.top_categories],
        monthly_trends=[vars(t) for t in result.monthly_trends],
    )


@app.post("/api/auth/register", response_model=UserOut)
def register(data: UserCreate, db: Session = Depends(get_db)):
    try:
        user = UserService(db).register(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return user


@app.post("/api/auth/login", response_model=TokenOut)
def login(data: UserLogin, db: Session = Depends(get_db)):
    try:
        token = UserService(db).login(data)
    except AuthenticationError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    return TokenOut(token=token)


@app.get("/api/categories", response_model=CategoriesOut)
def list_categories(user_id: int = Depends(current_user_id)):
    return CategoriesOut(income=list(INCOME_CATEGORIES), expense=list(EXPENSE_CATEGORIES))


@app.get("/api/transactions", response_model=list[TransactionOut])
def list_transactions(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
):
    return TransactionService(db, user_id).list_all()


@app.post("/api/transactions", response_model=TransactionOut)
def create_transaction(
    data: TransactionIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        return TransactionService(db, user_id).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/transactions/{transaction_id}", response_model=TransactionOut)
def get_transaction(
    transaction_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        return TransactionService(db, user_id).get(transaction_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.put("/api/transactions/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: int,
    data: TransactionIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        return TransactionService(db, user_id).update(transaction_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        TransactionService(db, user_id).delete(transaction_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.post("/api/budgets", response_model=BudgetOut)
def create_budget(
    data: BudgetIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    service = BudgetService(db, user_id)
    try:
        budget = service.create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return budget_payload(budget, service.usage(budget))


@app.get("/api/budgets/{month}", response_model=list[BudgetOut])
def list_budgets(
    month: str,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        usage = BudgetService(db, user_id).usage_for_month(month)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [budget_payload(budget, u) for budget, u in usage]


@app.put("/api/budgets/{budget_id}", response_model=BudgetOut)
def update_budget(
    budget_id: int,
    data: BudgetIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    service = BudgetService(db, user_id)
    try:
        budget = service.update(budget_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return budget_payload(budget, service.usage(budget))


@app.delete("/api/budgets/{budget_id}")
def delete_budget(
    budget_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        BudgetService(db, user_id).delete(budget_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"message": "Budget deleted successfully"}


@app.get("/api/savinggoals", response_model=list[SavingGoalOut])
def list_goals(user_id: int = Depends(current_user_id), db: Session = Depends(get_db)):
    goals = SavingGoalService(db, user_id).list_with_notifications()
    return [goal_payload(goal) for goal in goals]


@app.post("/api/savinggoals", response_model=SavingGoalOut)
def create_goal(
    data: SavingGoalIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return goal_payload(SavingGoalService(db, user_id).create(data))


@app.put("/api/savinggoals/{goal_id}/contribute", response_model=SavingGoalOut)
def contribute_to_goal(
    goal_id: int,
    data: ContributionIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        goal = SavingGoalService(db, user_id).contribute(goal_id, data.amount)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return goal_payload(goal)


@app.delete("/api/savinggoals/{goal_id}", status_code=204)
def delete_goal(
    goal_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        SavingGoalService(db, user_id).delete(goal_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.get("/api/notifications", response_model=list[NotificationOut])
def list_notifications(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
):
    return NotificationService(db, user_id).list_all()


@app.post("/api/notifications", response_model=NotificationOut)
def create_notification(
    data: NotificationIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return NotificationService(db, user_id).create(data.message)


@app.put("/api/notifications/{notification_id}/read", status_code=204)
def mark_notification_read(
    notification_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        NotificationService(db, user_id).mark_read(notification_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.get("/api/dashboard", response_model=DashboardOut)
def current_dashboard(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
):
    result = DashboardService(db, user_id).for_month(today_local())
    return dashboard_payload(result)


@app.get("/api/dashboard/{month}", response_model=DashboardOut)
def dashboard(
    month: str,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        start = parse_month_key(month)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    result = DashboardService(db, user_id).for_month(start)
    return dashboard_payload(result)


@app.post("/api/chat", response_model=ChatOut)
def chat(
    data: ChatIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
    client: CompletionClient = Depends(get_completion_client),
):
    try:
        reply = ChatService(db, user_id, client).ask(data.message)
    except CompletionError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return ChatOut(reply=reply)


@app.post("/api/receipts/parse", response_model=list[ReceiptItemOut])
def parse_receipt(
    data: ReceiptParseIn,
    user_id: int = Depends(current_user_id),
    client: CompletionClient = Depends(get_completion_client),
):
    try:
        items = ReceiptService(client).parse(data.ocr_text)
    except CompletionError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [
        ReceiptItemOut(
            amount=item.amount,
            category=item.category,
            date=item.date,
            description=item.description,
            type="expense",
        )
        for item in items
    ]


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
